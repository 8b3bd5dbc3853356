"""Tests for bump-and-reprice risk through market quotes."""

import datetime as dt

import numpy as np
import pytest

from pricekit import (
    CALL, PUT, SimpleQuote, FlatForward, BlackConstantVol, Actual365Fixed,
    BlackScholesMertonProcess, VanillaOption, PlainVanillaPayoff, EuropeanExercise,
    AnalyticEuropeanEngine, HestonProcess, HestonModel, AnalyticHestonEngine,
    numerical_greeks, scenario_grid, ConfigurationError,
)
from pricekit.risk import bumped

TODAY = dt.date(2024, 2, 1)
MATURITY = TODAY + dt.timedelta(days=365)


@pytest.fixture
def market():
    dc = Actual365Fixed()
    quotes = {
        "spot": SimpleQuote(100.0),
        "vol": SimpleQuote(0.2),
        "rate": SimpleQuote(0.05),
        "div": SimpleQuote(0.01),
    }
    process = BlackScholesMertonProcess(
        quotes["spot"], FlatForward(TODAY, quotes["div"], dc),
        FlatForward(TODAY, quotes["rate"], dc), BlackConstantVol(TODAY, quotes["vol"], dc),
    )
    return quotes, process


def _option(process, kind=CALL, strike=100.0):
    option = VanillaOption(PlainVanillaPayoff(kind, strike), EuropeanExercise(MATURITY))
    option.set_pricing_engine(AnalyticEuropeanEngine(process))
    return option


class TestNumericalGreeks:
    @pytest.mark.parametrize("kind", [CALL, PUT])
    def test_vs_analytical_black_scholes(self, market, kind):
        q, process = market
        option = _option(process, kind)
        ng = numerical_greeks(option, q["spot"], q["vol"], q["rate"], q["div"])
        assert abs(ng["delta"] - option.delta()) < 5e-4
        assert abs(ng["gamma"] - option.gamma()) < 1e-4
        assert abs(ng["vega"] - option.vega()) < 1e-2
        assert abs(ng["rho"] - option.rho()) < 1e-3
        assert abs(ng["dividend_rho"] - option.dividend_rho()) < 1e-3

    def test_quotes_restored(self, market):
        q, process = market
        option = _option(process)
        before = option.npv()
        numerical_greeks(option, q["spot"], q["vol"], q["rate"], q["div"])
        assert q["spot"].value() == 100.0
        assert q["vol"].value() == 0.2
        assert option.npv() == before

    def test_only_requested_keys(self, market):
        q, process = market
        ng = numerical_greeks(_option(process), spot_quote=q["spot"])
        assert set(ng) == {"delta", "gamma"}

    def test_put_delta_negative(self, market):
        q, process = market
        assert numerical_greeks(_option(process, PUT), q["spot"])["delta"] < 0.0

    def test_heston_delta_within_bounds(self):
        dc = Actual365Fixed()
        spot = SimpleQuote(100.0)
        process = HestonProcess(FlatForward(TODAY, 0.03, dc), FlatForward(TODAY, 0.0, dc),
                                spot, 0.04, 1.5, 0.04, 0.5, -0.7)
        option = VanillaOption(PlainVanillaPayoff(CALL, 100.0), EuropeanExercise(MATURITY))
        option.set_pricing_engine(AnalyticHestonEngine(HestonModel(process)))
        ng = numerical_greeks(option, spot_quote=spot)
        assert 0.0 < ng["delta"] < 1.0
        assert ng["gamma"] > 0.0

    def test_invalid_bump(self, market):
        q, process = market
        with pytest.raises(ConfigurationError):
            numerical_greeks(_option(process), q["spot"], bump_pct=0.0)


class TestScenarioGrid:
    def test_output_shape(self, market):
        q, process = market
        result = scenario_grid(_option(process), q["spot"], q["vol"],
                               [90.0, 100.0, 110.0], [0.15, 0.20, 0.25])
        assert result["prices"].shape == (3, 3)
        np.testing.assert_array_equal(result["spot_values"], [90.0, 100.0, 110.0])

    def test_call_monotone(self, market):
        q, process = market
        result = scenario_grid(_option(process), q["spot"], q["vol"],
                               np.linspace(80, 120, 5), [0.1, 0.2, 0.3])
        prices = result["prices"]
        assert np.all(np.diff(prices, axis=0) > 0), "call must increase with spot"
        assert np.all(np.diff(prices, axis=1) > 0), "call must increase with vol"

    def test_grid_point_matches_direct_price(self, market):
        q, process = market
        option = _option(process)
        result = scenario_grid(option, q["spot"], q["vol"], [110.0], [0.3])
        q["spot"].set_value(110.0)
        q["vol"].set_value(0.3)
        assert result["prices"][0, 0] == pytest.approx(option.npv(), rel=1e-14)


class TestBumped:
    def test_restores_on_error(self):
        quote = SimpleQuote(1.0)
        with pytest.raises(RuntimeError):
            with bumped(quote, 2.0):
                assert quote.value() == 2.0
                raise RuntimeError("boom")
        assert quote.value() == 1.0
