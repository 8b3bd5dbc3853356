"""Tests for random sequences and the Monte Carlo engines."""

import datetime as dt
import logging
import math

import numpy as np
import pytest
from scipy.stats import norm

from pricekit import (
    CALL, PUT, SimpleQuote, FlatForward, BlackConstantVol, Actual365Fixed, ActualActual,
    BlackScholesMertonProcess, HestonProcess, HestonModel, Discretization,
    VanillaOption, PlainVanillaPayoff, CashOrNothingPayoff, AssetOrNothingPayoff,
    EuropeanExercise, AmericanExercise, AnalyticEuropeanEngine, AnalyticHestonEngine,
    MCConfig, MCEuropeanEngine, MCEuropeanHestonEngine, MCDigitalEngine,
    ConfigurationError,
)
from pricekit.montecarlo import mc_statistics
from pricekit.randomnumbers import (
    PSEUDORANDOM, LOWDISCREPANCY, SobolGaussianSequence, make_gaussian_draws,
)
from pricekit.settings import MC_CONFIDENCE_FACTOR

TODAY = dt.date(2022, 1, 10)
MATURITY = TODAY + dt.timedelta(days=365)
N_SIGMA = 3.0


def _bsm(spot=100.0, r=0.03, q=0.01, vol=0.25):
    dc = Actual365Fixed()
    return BlackScholesMertonProcess(SimpleQuote(spot), FlatForward(TODAY, q, dc),
                                     FlatForward(TODAY, r, dc), BlackConstantVol(TODAY, vol, dc))


def _heston(discretization=Discretization.QuadraticExponentialMartingale):
    dc = Actual365Fixed()
    return HestonProcess(FlatForward(TODAY, 0.03, dc), FlatForward(TODAY, 0.01, dc),
                         SimpleQuote(100.0), 0.04, 2.0, 0.04, 0.3, -0.5, discretization)


def _vanilla(kind=CALL, strike=100.0):
    return VanillaOption(PlainVanillaPayoff(kind, strike), EuropeanExercise(MATURITY))


def _one_touch_up(spot, barrier, cash, r, q, vol, t):
    # cash paid when the barrier is first hit, continuous monitoring
    mu = (r - q - 0.5 * vol * vol) / (vol * vol)
    lam = math.sqrt(mu * mu + 2.0 * r / (vol * vol))
    z = math.log(barrier / spot) / (vol * math.sqrt(t)) + lam * vol * math.sqrt(t)
    eta = -1.0
    return cash * ((barrier / spot) ** (mu + lam) * norm.cdf(eta * z)
                   + (barrier / spot) ** (mu - lam)
                   * norm.cdf(eta * z - 2.0 * eta * lam * vol * math.sqrt(t)))


class TestRandomSequences:
    def test_antithetic_draws_are_mirrored(self):
        cfg = MCConfig(time_steps=1, samples=10, seed=7, antithetic=True)
        z = make_gaussian_draws(10, 3, cfg)
        assert z.shape == (3, 20)
        np.testing.assert_array_equal(z[:, 10:], -z[:, :10])

    def test_sobol_deterministic_for_seed(self):
        a = SobolGaussianSequence(4, seed=11).next_batch(64)
        b = SobolGaussianSequence(4, seed=11).next_batch(64)
        np.testing.assert_array_equal(a, b)
        assert a.shape == (4, 64)
        assert np.all(np.isfinite(a))

    def test_sobol_moments(self):
        z = SobolGaussianSequence(2, seed=3).next_batch(4096)
        assert abs(z.mean()) < 1e-2
        assert abs(z.std() - 1.0) < 1e-2

    def test_statistics(self):
        mean, err = mc_statistics([1.0, 2.0, 3.0, 4.0])
        assert mean == 2.5
        assert err == pytest.approx(np.std([1.0, 2.0, 3.0, 4.0], ddof=1) / 2.0)


class TestMCConfig:
    @pytest.mark.parametrize("kwargs", [
        dict(samples=100),
        dict(steps_per_year=12, time_steps=10, samples=100),
        dict(time_steps=1),
        dict(time_steps=1, samples=100, required_tolerance=0.1),
        dict(time_steps=1, samples=100, sequence_type="halton"),
        dict(time_steps=1, samples=100, brownian_bridge=True),
        dict(steps_per_year=0, samples=100),
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ConfigurationError):
            MCConfig(**kwargs)

    def test_steps(self):
        assert MCConfig(steps_per_year=12, samples=1).n_steps(0.5) == 6
        assert MCConfig(steps_per_year=1, samples=1).n_steps(0.25) == 1
        assert MCConfig(time_steps=7, samples=1).n_steps(3.0) == 7


class TestMCEuropeanEngine:
    @pytest.mark.parametrize("kind", [CALL, PUT])
    @pytest.mark.parametrize("sequence", [PSEUDORANDOM, LOWDISCREPANCY])
    def test_matches_black_scholes(self, kind, sequence):
        process = _bsm()
        option = _vanilla(kind)
        option.set_pricing_engine(AnalyticEuropeanEngine(process))
        expected = option.npv()

        cfg = MCConfig(time_steps=1, samples=20_000, seed=42, antithetic=True,
                       sequence_type=sequence)
        option.set_pricing_engine(MCEuropeanEngine(process, cfg))
        value, err = option.npv(), option.error_estimate()
        assert abs(value - expected) < N_SIGMA * err, (
            f"{kind}/{sequence}: {value:.5f} vs {expected:.5f} (stderr {err:.5f})"
        )

    def test_control_variate_reduces_error(self):
        process = _bsm()
        option = _vanilla(CALL, 70.0)
        plain = MCEuropeanEngine(process, MCConfig(time_steps=1, samples=20_000, seed=1))
        cv = MCEuropeanEngine(process, MCConfig(time_steps=1, samples=20_000, seed=1,
                                                control_variate=True))
        option.set_pricing_engine(plain)
        err_plain = option.error_estimate()
        option.set_pricing_engine(cv)
        err_cv = option.error_estimate()
        assert err_cv < 0.5 * err_plain, f"{err_cv} vs {err_plain}"

    def test_required_tolerance(self):
        process = _bsm()
        option = _vanilla()
        cfg = MCConfig(time_steps=1, required_tolerance=0.05, seed=5)
        option.set_pricing_engine(MCEuropeanEngine(process, cfg))
        assert option.error_estimate() <= 0.05
        assert option.result("samples") >= 1023

    def test_max_samples_reached(self, caplog):
        process = _bsm()
        option = _vanilla()
        cfg = MCConfig(time_steps=1, required_tolerance=1e-6, max_samples=2000, seed=5)
        option.set_pricing_engine(MCEuropeanEngine(process, cfg))
        with caplog.at_level(logging.WARNING, logger="pricekit.montecarlo"):
            err = option.error_estimate()
        assert err > 1e-6
        assert option.result("samples") == 2000
        assert "max_samples" in caplog.text

    def test_fixed_seed_reproducible(self):
        process = _bsm()
        cfg = MCConfig(steps_per_year=4, samples=5000, seed=99)
        a = MCEuropeanEngine(process, cfg).calculate(_vanilla())
        b = MCEuropeanEngine(process, cfg).calculate(_vanilla())
        assert a.value == b.value
        assert a.additional_results["time_steps"] == 4

    def test_rejects_heston_process(self):
        with pytest.raises(ConfigurationError):
            MCEuropeanEngine(_heston(), MCConfig(time_steps=1, samples=10))


class TestMCEuropeanHestonEngine:
    def test_cached_value(self):
        settlement = dt.date(2004, 12, 27)
        dc = ActualActual()
        process = HestonProcess(FlatForward(settlement, 0.7, dc), FlatForward(settlement, 0.4, dc),
                                SimpleQuote(1.05), 0.3, 1.16, 0.2, 0.8, 0.8)
        option = VanillaOption(PlainVanillaPayoff(PUT, 1.05),
                               EuropeanExercise(dt.date(2005, 3, 28)))
        cfg = MCConfig(steps_per_year=11, samples=50_000, seed=1234, antithetic=True)
        option.set_pricing_engine(MCEuropeanHestonEngine(process, cfg))
        expected = 0.0632851308977151
        value, err = option.npv(), option.error_estimate()
        assert abs(value - expected) < N_SIGMA * err, f"{value} vs {expected} +/- {err}"
        assert err < 7.5e-4

    @pytest.mark.parametrize("scheme", list(Discretization))
    def test_schemes_match_analytic(self, scheme):
        process = _heston(scheme)
        option = _vanilla()
        option.set_pricing_engine(AnalyticHestonEngine(HestonModel(process)))
        expected = option.npv()

        cfg = MCConfig(steps_per_year=50, samples=20_000, seed=2024, antithetic=True)
        option.set_pricing_engine(MCEuropeanHestonEngine(process, cfg))
        value, err = option.npv(), option.error_estimate()
        assert abs(value - expected) < N_SIGMA * err + 0.02, (
            f"{scheme.name}: {value:.4f} vs {expected:.4f} (stderr {err:.4f})"
        )

    def test_control_variate(self):
        process = _heston()
        option = _vanilla(CALL, 90.0)
        option.set_pricing_engine(AnalyticHestonEngine(HestonModel(process)))
        expected = option.npv()
        cfg = MCConfig(steps_per_year=20, samples=10_000, seed=3, control_variate=True)
        option.set_pricing_engine(MCEuropeanHestonEngine(process, cfg))
        assert abs(option.npv() - expected) < N_SIGMA * option.error_estimate() + 0.02


class TestMCDigitalEngine:
    @pytest.mark.parametrize("payoff", [
        CashOrNothingPayoff(CALL, 105.0, 10.0),
        CashOrNothingPayoff(PUT, 95.0, 10.0),
        AssetOrNothingPayoff(CALL, 100.0),
    ], ids=["cash-call", "cash-put", "asset-call"])
    def test_european_matches_analytic(self, payoff):
        process = _bsm()
        option = VanillaOption(payoff, EuropeanExercise(MATURITY))
        option.set_pricing_engine(AnalyticEuropeanEngine(process))
        expected = option.npv()
        cfg = MCConfig(time_steps=1, samples=50_000, seed=17, antithetic=True)
        option.set_pricing_engine(MCDigitalEngine(process, cfg))
        value, err = option.npv(), option.error_estimate()
        assert abs(value - expected) < N_SIGMA * err, f"{value} vs {expected} +/- {err}"

    def test_american_one_touch(self):
        process = _bsm(r=0.05, q=0.02, vol=0.2)
        option = VanillaOption(CashOrNothingPayoff(CALL, 115.0, 10.0),
                               AmericanExercise(TODAY, MATURITY))
        cfg = MCConfig(steps_per_year=100, samples=20_000, seed=8)
        option.set_pricing_engine(MCDigitalEngine(process, cfg))
        expected = _one_touch_up(100.0, 115.0, 10.0, 0.05, 0.02, 0.2, 1.0)
        value, err = option.npv(), option.error_estimate()
        assert abs(value - expected) < MC_CONFIDENCE_FACTOR * err + 0.02, (
            f"{value:.4f} vs {expected:.4f} (stderr {err:.4f})"
        )

    def test_already_touched(self):
        option = VanillaOption(CashOrNothingPayoff(CALL, 90.0, 10.0),
                               AmericanExercise(TODAY, MATURITY))
        option.set_pricing_engine(MCDigitalEngine(_bsm(), MCConfig(time_steps=4, samples=100)))
        assert option.npv() == pytest.approx(10.0)

    def test_rejects_vanilla(self):
        option = _vanilla()
        option.set_pricing_engine(MCDigitalEngine(_bsm(), MCConfig(time_steps=1, samples=100)))
        with pytest.raises(ConfigurationError):
            option.npv()
