"""Tests for the Heston model and its semi-analytic engines."""

import datetime as dt

import numpy as np
import pytest

from pricekit import (
    CALL, PUT, SimpleQuote, FlatForward, ZeroCurve, Actual365Fixed, ActualActual,
    add_months, VanillaOption, PlainVanillaPayoff, EuropeanExercise, AmericanExercise,
    HestonProcess, HestonModel, PiecewiseTimeDependentHestonModel, ComplexLogFormula,
    Integration, AnalyticHestonEngine, AnalyticPTDHestonEngine, ConfigurationError,
    black_scholes_price,
)

LEWIS_DATE = dt.date(2002, 7, 5)
LEWIS_MATURITY = dt.date(2003, 7, 5)

# strike -> (put, call)
LEWIS_PRICES = {
    80.0: (7.958878113256768, 26.774758743998854),
    90.0: (12.017966707346305, 20.933349000596710),
    100.0: (17.055270961270109, 16.070154917028834),
    110.0: (23.017825898442801, 12.132211516709845),
    120.0: (29.811026202682472, 9.024913483457836),
}

CACHED_DATE = dt.date(2004, 12, 27)
CACHED_MATURITY = dt.date(2005, 3, 28)


@pytest.fixture
def lewis_model():
    dc = Actual365Fixed()
    process = HestonProcess(FlatForward(LEWIS_DATE, 0.01, dc), FlatForward(LEWIS_DATE, 0.02, dc),
                            SimpleQuote(100.0), 0.04, 4.0, 0.25, 1.0, -0.5)
    return HestonModel(process)


def _option(kind, strike, maturity):
    return VanillaOption(PlainVanillaPayoff(kind, strike), EuropeanExercise(maturity))


def _equity_fx_model():
    dc = ActualActual()
    process = HestonProcess(FlatForward(CACHED_DATE, 0.05, dc), FlatForward(CACHED_DATE, 0.03, dc),
                            1.0, 0.07, 2.0, 0.04, 0.55, -0.8)
    return HestonModel(process)


class TestHestonModel:
    def test_parameter_vector(self, lewis_model):
        np.testing.assert_allclose(lewis_model.params(), [0.25, 4.0, 1.0, -0.5, 0.04])
        lewis_model.set_params([0.2, 3.0, 0.8, -0.3, 0.05])
        assert lewis_model.theta() == 0.2
        assert lewis_model.kappa() == 3.0
        assert lewis_model.sigma() == 0.8
        assert lewis_model.rho() == -0.3
        assert lewis_model.v0() == 0.05

    def test_constraints(self, lewis_model):
        c = lewis_model.constraints
        assert c[0].test(0.1) and not c[0].test(-0.1)
        assert c[3].test(0.99) and not c[3].test(1.5)

    def test_feller_not_enforced(self):
        dc = Actual365Fixed()
        process = HestonProcess(FlatForward(LEWIS_DATE, 0.01, dc), FlatForward(LEWIS_DATE, 0.0, dc),
                                100.0, 0.04, 0.5, 0.04, 1.0, -0.5)
        assert not process.feller_satisfied()

    def test_invalid_rho(self):
        dc = Actual365Fixed()
        with pytest.raises(ConfigurationError):
            HestonProcess(FlatForward(LEWIS_DATE, 0.01, dc), FlatForward(LEWIS_DATE, 0.0, dc),
                          100.0, 0.04, 1.0, 0.04, 0.5, -1.5)


class TestAnalyticHestonEngine:
    @pytest.mark.parametrize("strike", sorted(LEWIS_PRICES))
    def test_lewis_reference_prices(self, lewis_model, strike):
        engine = AnalyticHestonEngine(lewis_model, integration=Integration.gauss_laguerre(128))
        for kind, expected in zip((PUT, CALL), LEWIS_PRICES[strike]):
            option = _option(kind, strike, LEWIS_MATURITY)
            option.set_pricing_engine(engine)
            calculated = option.npv()
            rel = abs(calculated - expected) / expected
            assert rel < 1e-8, f"{kind} K={strike}: {calculated} vs {expected} (rel {rel:.2e})"

    def test_cached_value(self):
        dc = ActualActual()
        process = HestonProcess(FlatForward(CACHED_DATE, 0.0225, dc),
                                FlatForward(CACHED_DATE, 0.02, dc),
                                1.0, 0.1, 3.16, 0.09, 0.4, -0.2)
        option = _option(CALL, 1.05, CACHED_MATURITY)
        option.set_pricing_engine(AnalyticHestonEngine(HestonModel(process), 64))
        assert abs(option.npv() - 0.0404774515) < 1e-8, f"got {option.npv()}"

    def test_put_call_parity(self, lewis_model):
        engine = AnalyticHestonEngine(lewis_model)
        call, put = _option(CALL, 105.0, LEWIS_MATURITY), _option(PUT, 105.0, LEWIS_MATURITY)
        call.set_pricing_engine(engine)
        put.set_pricing_engine(engine)
        p = lewis_model.process
        fwd_value = 100.0 * p.dividend_yield.discount(1.0) - 105.0 * p.risk_free_rate.discount(1.0)
        assert call.npv() - put.npv() == pytest.approx(fwd_value, abs=1e-9)

    def test_low_vol_of_vol_tends_to_black(self):
        dc = Actual365Fixed()
        process = HestonProcess(FlatForward(LEWIS_DATE, 0.03, dc), FlatForward(LEWIS_DATE, 0.01, dc),
                                100.0, 0.04, 1.0, 0.04, 1e-6, 0.0)
        option = _option(CALL, 100.0, LEWIS_MATURITY)
        option.set_pricing_engine(AnalyticHestonEngine(HestonModel(process)))
        expected = black_scholes_price(100.0, 100.0, 1.0, 0.03, 0.01, 0.2, CALL)
        assert abs(option.npv() - expected) < 1e-5

    def test_branch_correction_matches_gatheral(self, lewis_model):
        engines = [AnalyticHestonEngine(lewis_model, 128, cpx_log=log)
                   for log in ComplexLogFormula]
        for strike in (80.0, 100.0, 120.0):
            prices = []
            for engine in engines:
                option = _option(CALL, strike, LEWIS_MATURITY)
                option.set_pricing_engine(engine)
                prices.append(option.npv())
            assert abs(prices[0] - prices[1]) < 1e-6, f"K={strike}: {prices}"

    def test_branch_correction_rejects_adaptive(self, lewis_model):
        with pytest.raises(ConfigurationError):
            AnalyticHestonEngine(lewis_model, integration=Integration.gauss_lobatto(None, 1e-8),
                                 cpx_log=ComplexLogFormula.BranchCorrection)

    def test_evaluation_count(self, lewis_model):
        engine = AnalyticHestonEngine(lewis_model, integration=Integration.gauss_legendre(64))
        option = _option(CALL, 100.0, LEWIS_MATURITY)
        option.set_pricing_engine(engine)
        option.npv()
        assert engine.number_of_evaluations() == 128
        assert option.result("evaluations") == 128

    def test_reprices_after_parameter_change(self, lewis_model):
        option = _option(CALL, 100.0, LEWIS_MATURITY)
        option.set_pricing_engine(AnalyticHestonEngine(lewis_model))
        before = option.npv()
        lewis_model.set_params([0.25, 4.0, 1.0, -0.5, 0.09])
        assert option.npv() > before

    def test_rejects_american(self, lewis_model):
        option = VanillaOption(PlainVanillaPayoff(CALL, 100.0),
                               AmericanExercise(LEWIS_DATE, LEWIS_MATURITY))
        option.set_pricing_engine(AnalyticHestonEngine(lewis_model))
        with pytest.raises(ConfigurationError):
            option.npv()

    def test_laguerre_order_limit(self):
        with pytest.raises(ConfigurationError):
            Integration.gauss_laguerre(500)


class TestIntegrationRules:
    MATURITIES = (1, 3, 12, 60)
    STRIKES = (0.7, 1.0, 1.5)

    @pytest.mark.parametrize("integration", [
        Integration.gauss_legendre(512),
        Integration.gauss_chebyshev(512),
        Integration.gauss_chebyshev2nd(512),
        Integration.gauss_lobatto(None, 1e-8),
        Integration.gauss_kronrod(1e-8),
    ], ids=repr)
    def test_rules_agree_with_laguerre(self, integration):
        model = _equity_fx_model()
        reference = AnalyticHestonEngine(model, integration=Integration.gauss_laguerre(128))
        engine = AnalyticHestonEngine(model, integration=integration)
        max_diff = 0.0
        for months in self.MATURITIES:
            maturity = add_months(CACHED_DATE, months)
            for strike in self.STRIKES:
                for kind in (PUT, CALL):
                    option = _option(kind, strike, maturity)
                    a = reference.calculate(option).value
                    b = engine.calculate(option).value
                    max_diff = max(max_diff, abs(a - b))
        assert max_diff < 1e-3, f"{integration!r}: max difference {max_diff:.2e}"


class TestPiecewiseTimeDependentHeston:
    def test_constant_parameters_match_heston(self):
        dc = ActualActual()
        dates = [CACHED_DATE, dt.date(2007, 1, 1)]
        r_ts = ZeroCurve(dates, [0.0, 0.2], dc)
        q_ts = ZeroCurve(dates, [0.0, 0.3], dc)
        s0 = SimpleQuote(1.0)

        ptd = PiecewiseTimeDependentHestonModel(r_ts, q_ts, s0, 0.1, 0.09, 3.16, 4.40, -0.8,
                                                [10.0, 20.0])
        option = _option(CALL, 1.0, CACHED_MATURITY)
        option.set_pricing_engine(AnalyticPTDHestonEngine(ptd))
        calculated = option.npv()

        heston = HestonModel(HestonProcess(r_ts, q_ts, s0, 0.1, 3.16, 0.09, 4.40, -0.8))
        option.set_pricing_engine(AnalyticHestonEngine(heston))
        expected = option.npv()
        assert abs(calculated - expected) < 1e-9, f"{calculated} vs {expected}"

    def test_piecewise_parameters(self):
        dc = Actual365Fixed()
        r_ts = FlatForward(LEWIS_DATE, 0.02, dc)
        q_ts = FlatForward(LEWIS_DATE, 0.0, dc)
        ptd = PiecewiseTimeDependentHestonModel(r_ts, q_ts, 100.0, 0.04,
                                                [0.04, 0.06], 1.5, 0.3, -0.6, [0.5, 2.0])
        assert ptd.theta(0.25) == 0.04
        assert ptd.theta(1.0) == 0.06
        assert ptd.params().size == 4 * 2 + 1

        option = _option(CALL, 100.0, LEWIS_MATURITY)
        option.set_pricing_engine(AnalyticPTDHestonEngine(ptd))
        low = option.npv()
        ptd.set_params(np.concatenate([[0.04, 0.09], [1.5] * 2, [0.3] * 2, [-0.6] * 2, [0.04]]))
        assert option.npv() > low

    def test_maturity_beyond_grid(self):
        dc = Actual365Fixed()
        ptd = PiecewiseTimeDependentHestonModel(FlatForward(LEWIS_DATE, 0.02, dc),
                                                FlatForward(LEWIS_DATE, 0.0, dc),
                                                100.0, 0.04, 0.04, 1.5, 0.3, -0.6, [0.5])
        option = _option(CALL, 100.0, LEWIS_MATURITY)
        option.set_pricing_engine(AnalyticPTDHestonEngine(ptd))
        with pytest.raises(ConfigurationError):
            option.npv()
