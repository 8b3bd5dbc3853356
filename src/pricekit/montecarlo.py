# montecarlo.py
# Monte Carlo engines for European vanilla and digital options.
#
# Paths are simulated as vectorised batches.  Each engine keeps running
# sufficient statistics (n, sums of X, X^2, Y, Y^2, XY) of the discounted
# payoff X and of the control variate Y = D(T) S_T, whose expectation
# S0 * Dq(T) is known for any martingale model.

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np

from .core import (
    Results, StrikedTypePayoff, PlainVanillaPayoff, CashOrNothingPayoff, AssetOrNothingPayoff,
    EuropeanExercise, AmericanExercise,
)
from .errors import ConfigurationError, require
from .instruments import PricingEngine
from .processes import GeneralizedBlackScholesProcess, HestonProcess
from .randomnumbers import PSEUDORANDOM, LOWDISCREPANCY, gaussian_sequence
from .settings import MC_MIN_SAMPLES, MC_MAX_SAMPLES

logger = logging.getLogger(__name__)

__all__ = [
    "MCConfig",
    "mc_statistics",
    "MCEuropeanEngine",
    "MCEuropeanHestonEngine",
    "MCDigitalEngine",
]


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class MCConfig:
    """
    Monte Carlo engine settings.

    Exactly one of ``steps_per_year`` / ``time_steps`` and exactly one of
    ``samples`` / ``required_tolerance`` must be given.  With antithetic
    sampling a pair of mirrored paths counts as one sample.
    """
    steps_per_year: int | None = None
    time_steps: int | None = None
    samples: int | None = None
    required_tolerance: float | None = None
    max_samples: int = MC_MAX_SAMPLES
    seed: int | None = None
    antithetic: bool = False
    control_variate: bool = False
    sequence_type: str = PSEUDORANDOM
    brownian_bridge: bool = False

    def __post_init__(self):
        if (self.steps_per_year is None) == (self.time_steps is None):
            raise ConfigurationError("give exactly one of steps_per_year or time_steps")
        if self.steps_per_year is not None and self.steps_per_year <= 0:
            raise ConfigurationError(f"steps_per_year must be positive, got {self.steps_per_year}")
        if self.time_steps is not None and self.time_steps <= 0:
            raise ConfigurationError(f"time_steps must be positive, got {self.time_steps}")
        if (self.samples is None) == (self.required_tolerance is None):
            raise ConfigurationError("give exactly one of samples or required_tolerance")
        if self.samples is not None and self.samples <= 0:
            raise ConfigurationError(f"samples must be positive, got {self.samples}")
        if self.required_tolerance is not None and self.required_tolerance <= 0.0:
            raise ConfigurationError("required_tolerance must be positive")
        if self.max_samples <= 0:
            raise ConfigurationError("max_samples must be positive")
        if self.sequence_type.lower() not in (PSEUDORANDOM, LOWDISCREPANCY):
            raise ConfigurationError(f"unknown sequence type {self.sequence_type!r}")
        if self.brownian_bridge:
            raise ConfigurationError("Brownian-bridge path construction is not supported")

    def n_steps(self, maturity: float) -> int:
        if self.time_steps is not None:
            return int(self.time_steps)
        return max(1, int(self.steps_per_year * maturity))


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------
def mc_statistics(x) -> tuple[float, float]:
    """Sample mean and standard error of ``x``."""
    x = np.asarray(x, dtype=float)
    n = x.size
    require(n >= 2, "at least two samples are needed for an error estimate")
    return float(x.mean()), float(x.std(ddof=1) / math.sqrt(n))


class _SufficientStats:
    """Running sums for the plain and control-variate estimators."""

    def __init__(self):
        self.n = 0
        self.sum_x = self.sum_x2 = 0.0
        self.sum_y = self.sum_y2 = self.sum_xy = 0.0

    def add(self, x, y) -> None:
        self.n += x.size
        self.sum_x += float(x.sum())
        self.sum_x2 += float((x * x).sum())
        self.sum_y += float(y.sum())
        self.sum_y2 += float((y * y).sum())
        self.sum_xy += float((x * y).sum())

    def estimate(self, control_value: float | None = None) -> tuple[float, float]:
        n = self.n
        mean_x = self.sum_x / n
        # n / (n - 1) turns the population moments into sample moments
        bessel = n / (n - 1) if n > 1 else 1.0
        var_x = max(0.0, self.sum_x2 / n - mean_x * mean_x) * bessel
        if control_value is None:
            return mean_x, math.sqrt(var_x / n)

        # c_hat = Cov(X,Y)/Var(Y)
        mean_y = self.sum_y / n
        var_y = max(0.0, self.sum_y2 / n - mean_y * mean_y) * bessel
        cov_xy = (self.sum_xy / n - mean_x * mean_y) * bessel
        c_hat = 0.0 if var_y == 0.0 else cov_xy / var_y
        mean_cv = mean_x - c_hat * (mean_y - control_value)
        var_cv = var_x - 2.0 * c_hat * cov_xy + c_hat * c_hat * var_y
        return mean_cv, math.sqrt(max(0.0, var_cv) / n)


# ---------------------------------------------------------------------------
# Engine base
# ---------------------------------------------------------------------------
class _MCEngine(PricingEngine):
    """Shared sampling loop; subclasses simulate discounted payoffs."""

    process_type: type = GeneralizedBlackScholesProcess

    def __init__(self, process, config: MCConfig):
        super().__init__()
        if not isinstance(process, self.process_type):
            raise ConfigurationError(
                f"{type(self).__name__} needs a {self.process_type.__name__}"
            )
        self.process = process
        self.config = config
        self.register_with(process)

    def evaluation_date(self):
        return self.process.risk_free_rate.reference_date

    # --- per-instrument hooks ------------------------------------------------
    def _check(self, option) -> None:
        if not isinstance(option.exercise, EuropeanExercise):
            raise ConfigurationError("not a European option")
        if not isinstance(option.payoff, PlainVanillaPayoff):
            raise ConfigurationError("non plain vanilla payoff given")

    def _spot(self) -> float:
        return self.process.x0()

    def _time_grid(self, option, maturity: float) -> np.ndarray:
        n_steps = self.config.n_steps(maturity)
        return np.linspace(0.0, maturity, n_steps + 1)

    def _control_value(self, option, maturity: float) -> float:
        return self._spot() * self.process.dividend_yield.discount(maturity)

    def _simulate(self, option, times, z):
        """Return (X, Y) per path column of ``z``."""
        raise NotImplementedError

    # --- driver --------------------------------------------------------------
    def calculate(self, option) -> Results:
        self._check(option)
        cfg = self.config
        maturity = self.process.time(option.exercise.last_date())
        require(maturity > 0.0, "option has already expired")
        times = self._time_grid(option, maturity)
        n_steps = times.size - 1
        sequence = gaussian_sequence(cfg.sequence_type, self.process.size * n_steps, cfg.seed)
        self._uniforms = np.random.default_rng(None if cfg.seed is None else cfg.seed + 1)

        control_value = None
        if cfg.control_variate:
            control_value = self._control_value(option, maturity)

        stats = _SufficientStats()
        if cfg.samples is not None:
            self._add_batch(stats, option, times, sequence, int(cfg.samples))
        else:
            batch = min(MC_MIN_SAMPLES, cfg.max_samples)
            while True:
                self._add_batch(stats, option, times, sequence, batch)
                _, error = stats.estimate(control_value)
                if error <= cfg.required_tolerance:
                    break
                if stats.n >= cfg.max_samples:
                    logger.warning("%s: max_samples (%d) reached with error %.3e > tolerance %.3e",
                                   type(self).__name__, cfg.max_samples, error,
                                   cfg.required_tolerance)
                    break
                batch = min(stats.n, cfg.max_samples - stats.n)

        value, error = stats.estimate(control_value)
        logger.debug("%s: %d samples, %d steps, value %.6g +/- %.2g",
                     type(self).__name__, stats.n, n_steps, value, error)
        return Results(value=value, error_estimate=error,
                       additional_results={"samples": stats.n, "time_steps": n_steps})

    def _add_batch(self, stats, option, times, sequence, n) -> None:
        z = sequence.next_batch(n)
        x, y = self._simulate(option, times, z)
        if self.config.antithetic:
            xa, ya = self._simulate(option, times, -z)
            x, y = 0.5 * (x + xa), 0.5 * (y + ya)
        stats.add(x, y)


# ---------------------------------------------------------------------------
# Engines
# ---------------------------------------------------------------------------
class MCEuropeanEngine(_MCEngine):
    """European vanilla options on a Black-Scholes-Merton process."""

    def _simulate(self, option, times, z):
        s = np.full(z.shape[1], self.process.x0(), dtype=float)
        for k in range(times.size - 1):
            s = self.process.evolve(times[k], s, times[k + 1] - times[k], z[k])
        df = self.process.risk_free_rate.discount(times[-1])
        return df * option.payoff(s), df * s


class MCEuropeanHestonEngine(_MCEngine):
    """European vanilla options on a Heston process.

    The variance is stepped with the process's ``discretization``.
    """

    process_type = HestonProcess

    def _spot(self) -> float:
        return self.process.s0.value()

    def _simulate(self, option, times, z):
        n = z.shape[1]
        x = np.tile(self.process.x0()[:, None], (1, n))
        for k in range(times.size - 1):
            x = self.process.evolve(times[k], x, times[k + 1] - times[k], z[2 * k:2 * k + 2])
        s = x[0]
        df = self.process.risk_free_rate.discount(times[-1])
        return df * option.payoff(s), df * s


class MCDigitalEngine(_MCEngine):
    """Cash- and asset-or-nothing options on a Black-Scholes-Merton process.

    European exercise pays at maturity.  American exercise is a
    cash-or-nothing one-touch paid at the end of the step in which the
    strike is first reached; crossings inside a step are detected with
    the Brownian-bridge hitting probability.
    """

    def _check(self, option) -> None:
        payoff = option.payoff
        if not isinstance(payoff, (CashOrNothingPayoff, AssetOrNothingPayoff)):
            raise ConfigurationError("cash-or-nothing or asset-or-nothing payoff required")
        if isinstance(option.exercise, AmericanExercise):
            if not isinstance(payoff, CashOrNothingPayoff):
                raise ConfigurationError("American digitals must be cash-or-nothing")
        elif not isinstance(option.exercise, EuropeanExercise):
            raise ConfigurationError("European or American exercise required")

    def _simulate(self, option, times, z):
        p = self.process
        n = z.shape[1]
        s0 = p.x0()
        s = np.full(n, s0, dtype=float)

        if not isinstance(option.exercise, AmericanExercise):
            for k in range(times.size - 1):
                s = p.evolve(times[k], s, times[k + 1] - times[k], z[k])
            df = p.risk_free_rate.discount(times[-1])
            return df * option.payoff(s), df * s

        payoff: StrikedTypePayoff = option.payoff
        log_k = math.log(payoff.strike)
        # independent uniforms for the bridge test, one per step and path
        u = self._uniforms.random(z.shape)
        value = np.zeros(n)
        alive = np.ones(n, dtype=bool)
        up = payoff.sign > 0
        if (up and s0 >= payoff.strike) or (not up and s0 <= payoff.strike):
            value[:] = payoff.cash
            return value, p.risk_free_rate.discount(times[-1]) * s
        for k in range(times.size - 1):
            dt = times[k + 1] - times[k]
            s_new = p.evolve(times[k], s, dt, z[k])
            x0, x1 = np.log(s), np.log(s_new)
            var = p.std_deviation(times[k], dt, payoff.strike) ** 2
            crossed = (x1 >= log_k) if up else (x1 <= log_k)
            with np.errstate(over="ignore"):
                bridge = np.exp(-2.0 * (log_k - x0) * (log_k - x1) / max(var, 1e-300))
            crossed |= u[k] < bridge
            hit = alive & crossed
            value[hit] = payoff.cash * p.risk_free_rate.discount(times[k + 1])
            alive &= ~hit
            s = s_new
        df = p.risk_free_rate.discount(times[-1])
        return value, df * s

