# calibration.py
# Model calibration: Levenberg-Marquardt over transformed parameters,
# end criteria, and calibration helpers quoting implied volatilities.

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np
from scipy.optimize import brentq, least_squares

from .black import black_formula
from .core import CALL, PUT, PlainVanillaPayoff, EuropeanExercise
from .errors import ConfigurationError, ConvergenceError, require
from .instruments import VanillaOption, PricingEngine
from .quotes import LazyObject, Observable, Observer, SimpleQuote, as_quote
from .settings import (
    IMPLIED_VOL_MIN, IMPLIED_VOL_MAX, IMPLIED_VOL_ACCURACY, IMPLIED_VOL_MAX_EVALUATIONS,
)
from .termstructures import YieldTermStructure

logger = logging.getLogger(__name__)

__all__ = [
    "EndCriteriaType", "EndCriteria",
    "NoConstraint", "PositiveConstraint", "BoundaryConstraint",
    "LevenbergMarquardt", "CalibrationResult", "CalibratedModel",
    "CalibrationErrorType", "CalibrationHelper", "HestonModelHelper",
]


# ---------------------------------------------------------------------------
# End criteria
# ---------------------------------------------------------------------------
class EndCriteriaType(enum.Enum):
    None_ = "none"
    MaxIterations = "max_iterations"
    StationaryPoint = "stationary_point"
    StationaryFunctionValue = "stationary_function_value"
    StationaryFunctionAccuracy = "stationary_function_accuracy"
    ZeroGradientNorm = "zero_gradient_norm"
    Unknown = "unknown"

    @property
    def succeeded(self) -> bool:
        return self in (EndCriteriaType.StationaryPoint,
                        EndCriteriaType.StationaryFunctionValue,
                        EndCriteriaType.StationaryFunctionAccuracy,
                        EndCriteriaType.ZeroGradientNorm)


@dataclass(frozen=True)
class EndCriteria:
    """Stopping rules for an optimizer.

    Parameters
    ----------
    max_iterations : int
        Cap on cost-function evaluations (Jacobian evaluations included).
    max_stationary_state_iterations : int
        Iterations allowed without improvement.
    root_epsilon : float
        Relative tolerance on the parameter step.
    function_epsilon : float
        Relative tolerance on the cost reduction.
    gradient_norm_epsilon : float
        Tolerance on the scaled gradient.
    """
    max_iterations: int = 1000
    max_stationary_state_iterations: int = 100
    root_epsilon: float = 1e-8
    function_epsilon: float = 1e-8
    gradient_norm_epsilon: float = 1e-8

    def __post_init__(self):
        if self.max_iterations <= 0:
            raise ConfigurationError(f"max_iterations must be positive, got {self.max_iterations}")
        if self.max_stationary_state_iterations <= 1:
            raise ConfigurationError("max_stationary_state_iterations must be greater than one")
        if min(self.root_epsilon, self.function_epsilon, self.gradient_norm_epsilon) < 0:
            raise ConfigurationError("tolerances must be non-negative")


# ---------------------------------------------------------------------------
# Parameter constraints as transforms to an unconstrained space
# ---------------------------------------------------------------------------
class NoConstraint:
    def test(self, x: float) -> bool:
        return bool(np.isfinite(x))

    def to_unconstrained(self, x: float) -> float:
        return x

    def from_unconstrained(self, y: float) -> float:
        return y


class PositiveConstraint(NoConstraint):
    """x = exp(y)."""

    def test(self, x):
        return x > 0.0

    def to_unconstrained(self, x):
        return math.log(max(x, 1e-300))

    def from_unconstrained(self, y):
        return math.exp(min(y, 700.0))


class BoundaryConstraint(NoConstraint):
    """x = low + (high - low) * (tanh(y) + 1) / 2."""

    def __init__(self, low: float, high: float):
        require(low < high, f"invalid bounds [{low}, {high}]")
        self.low, self.high = low, high

    def test(self, x):
        return self.low <= x <= self.high

    def to_unconstrained(self, x):
        u = 2.0 * (x - self.low) / (self.high - self.low) - 1.0
        return math.atanh(min(max(u, -1.0 + 1e-12), 1.0 - 1e-12))

    def from_unconstrained(self, y):
        return self.low + (self.high - self.low) * 0.5 * (math.tanh(y) + 1.0)


# ---------------------------------------------------------------------------
# Levenberg-Marquardt
# ---------------------------------------------------------------------------
# MINPACK status as returned by scipy.optimize.least_squares(method="lm")
_LM_STATUS = {
    -1: EndCriteriaType.Unknown,
    0: EndCriteriaType.MaxIterations,
    1: EndCriteriaType.ZeroGradientNorm,
    2: EndCriteriaType.StationaryFunctionValue,
    3: EndCriteriaType.StationaryPoint,
    4: EndCriteriaType.StationaryFunctionValue,
}


class LevenbergMarquardt:
    """MINPACK Levenberg-Marquardt with a finite-difference Jacobian.

    Parameters
    ----------
    epsfcn : float
        Relative accuracy of function values; the forward-difference step
        is ``sqrt(epsfcn)`` relative to each parameter.
    xtol, gtol : float
        Overrides for the end criteria's root and gradient tolerances.
    """

    def __init__(self, epsfcn: float = 1e-8, xtol: float | None = None,
                 gtol: float | None = None):
        self.epsfcn = epsfcn
        self.xtol = xtol
        self.gtol = gtol

    def minimize(self, residuals, y0: np.ndarray, end_criteria: EndCriteria):
        """Minimise ``sum(residuals(y)**2)`` from ``y0``.

        Returns
        -------
        tuple
            ``(y_opt, EndCriteriaType, nfev, iterations, cost)``.  MINPACK
            reports no Jacobian count for a finite-difference Jacobian, so
            iterations are counted as Jacobian builds: ``n + 1`` evaluations
            each for ``n`` free parameters.
        """
        y0 = np.asarray(y0, dtype=float)
        res = least_squares(
            residuals, y0,
            method="lm",
            ftol=end_criteria.function_epsilon,
            xtol=self.xtol if self.xtol is not None else end_criteria.root_epsilon,
            gtol=self.gtol if self.gtol is not None else end_criteria.gradient_norm_epsilon,
            max_nfev=end_criteria.max_iterations,
            diff_step=math.sqrt(self.epsfcn),
        )
        nfev = int(res.nfev)
        if res.njev is not None:
            iterations = int(res.njev)
        else:
            iterations = max(1, nfev // (y0.size + 1))
        return (res.x, _LM_STATUS.get(res.status, EndCriteriaType.Unknown),
                nfev, iterations, float(res.cost))


# ---------------------------------------------------------------------------
# Calibrated models
# ---------------------------------------------------------------------------
@dataclass
class CalibrationResult:
    """Final parameters plus the per-helper calibration errors."""
    params: np.ndarray
    errors: list[float]
    end_criteria_type: EndCriteriaType
    iterations: int = 0
    function_evaluations: int = 0
    cost: float = float("nan")
    extra: dict = field(default_factory=dict)

    @property
    def converged(self) -> bool:
        return self.end_criteria_type.succeeded


class CalibratedModel(Observable, Observer):
    """Model with a parameter vector and one constraint per parameter.

    Subclasses provide ``params()``, ``set_params()`` and ``constraints``.
    """

    param_names: tuple[str, ...] = ()

    def __init__(self):
        Observable.__init__(self)
        self.end_criteria_type = EndCriteriaType.None_

    def update(self) -> None:
        self.notify_observers()

    @property
    def constraints(self) -> list[NoConstraint]:
        raise NotImplementedError

    def params(self) -> np.ndarray:
        raise NotImplementedError

    def set_params(self, params) -> None:
        raise NotImplementedError

    def calibrate(
        self,
        helpers: Sequence["CalibrationHelper"],
        method: Optional[LevenbergMarquardt] = None,
        end_criteria: Optional[EndCriteria] = None,
        weights: Optional[Sequence[float]] = None,
        fix_parameters: Optional[Sequence[bool]] = None,
    ) -> CalibrationResult:
        """Fit the model to ``helpers``.

        Running out of iterations is reported through
        ``CalibrationResult.end_criteria_type`` and logged; it does not
        raise.  The model is left at the best parameters found.
        """
        require(len(helpers) > 0, "no helpers given")
        method = method or LevenbergMarquardt()
        end_criteria = end_criteria or EndCriteria()
        weights = np.ones(len(helpers)) if weights is None else np.asarray(weights, dtype=float)
        require(weights.size == len(helpers),
                f"{weights.size} weights given for {len(helpers)} helpers")
        sqrt_w = np.sqrt(weights)

        p0 = self.params().astype(float)
        constraints = self.constraints
        fixed = (np.zeros(p0.size, dtype=bool) if fix_parameters is None
                 else np.asarray(fix_parameters, dtype=bool))
        require(fixed.size == p0.size,
                f"fix_parameters has {fixed.size} entries, model has {p0.size} parameters")
        free = np.flatnonzero(~fixed)
        require(free.size > 0, "all parameters are fixed")

        def to_params(y):
            p = p0.copy()
            for k, i in enumerate(free):
                p[i] = constraints[i].from_unconstrained(y[k])
            return p

        def residuals(y):
            self.set_params(to_params(y))
            return np.array([h.residual() for h in helpers]) * sqrt_w

        y0 = np.array([constraints[i].to_unconstrained(p0[i]) for i in free])
        logger.info("calibrating %s to %d helpers from %s",
                    type(self).__name__, len(helpers), np.round(p0, 6))

        y_opt, ec_type, nfev, iterations, cost = method.minimize(residuals, y0, end_criteria)
        params = to_params(y_opt)
        self.set_params(params)
        self.end_criteria_type = ec_type
        errors = [float(h.calibration_error()) for h in helpers]

        if ec_type.succeeded:
            logger.info("calibration finished (%s) after %d evaluations, cost %.3e",
                        ec_type.name, nfev, cost)
        else:
            logger.warning("calibration did not converge (%s) after %d evaluations, cost %.3e",
                           ec_type.name, nfev, cost)
        return CalibrationResult(params=params, errors=errors, end_criteria_type=ec_type,
                                 iterations=iterations, function_evaluations=nfev,
                                 cost=cost)


# ---------------------------------------------------------------------------
# Calibration helpers
# ---------------------------------------------------------------------------
class CalibrationErrorType(enum.Enum):
    RelativePriceError = "relative_price"
    PriceError = "price"
    ImpliedVolError = "implied_vol"


class CalibrationHelper(LazyObject):
    """Market instrument quoted by implied volatility.

    Subclasses implement ``black_price(vol)`` and ``model_value()``.
    """

    def __init__(self, volatility, error_type: CalibrationErrorType = CalibrationErrorType.RelativePriceError):
        super().__init__()
        self.volatility = as_quote(volatility)
        self.error_type = CalibrationErrorType(error_type)
        self._market_value = math.nan
        self._engine: PricingEngine | None = None
        self.register_with(self.volatility)

    def perform_calculations(self) -> None:
        self._market_value = self.black_price(self.volatility.value())

    def market_value(self) -> float:
        self.calculate()
        return self._market_value

    def set_pricing_engine(self, engine: PricingEngine) -> None:
        self._engine = engine

    def black_price(self, volatility: float) -> float:
        raise NotImplementedError

    def model_value(self) -> float:
        raise NotImplementedError

    def implied_volatility(self, target_value: float, accuracy: float = IMPLIED_VOL_ACCURACY,
                           max_evaluations: int = IMPLIED_VOL_MAX_EVALUATIONS,
                           min_vol: float = IMPLIED_VOL_MIN, max_vol: float = IMPLIED_VOL_MAX) -> float:
        try:
            return float(brentq(lambda v: self.black_price(v) - target_value,
                                min_vol, max_vol, xtol=accuracy, maxiter=max_evaluations))
        except (ValueError, RuntimeError) as exc:
            raise ConvergenceError(f"implied volatility not found: {exc}") from exc

    def residual(self) -> float:
        """Signed market-minus-model error fed to the optimizer."""
        if self.error_type is CalibrationErrorType.RelativePriceError:
            mkt = self.market_value()
            return (mkt - self.model_value()) / mkt
        if self.error_type is CalibrationErrorType.PriceError:
            return self.market_value() - self.model_value()
        # implied vol error, clamped to the search bracket
        model_price = self.model_value()
        if model_price <= self.black_price(IMPLIED_VOL_MIN):
            implied = IMPLIED_VOL_MIN
        elif model_price >= self.black_price(IMPLIED_VOL_MAX):
            implied = IMPLIED_VOL_MAX
        else:
            implied = self.implied_volatility(model_price)
        return implied - self.volatility.value()

    def calibration_error(self) -> float:
        """Reported error: absolute for relative prices, signed otherwise."""
        r = self.residual()
        if self.error_type is CalibrationErrorType.RelativePriceError:
            return abs(r)
        return r


class HestonModelHelper(CalibrationHelper):
    """European option quoted by Black vol, for Heston calibration.

    The helper is out of the money: a call when ``K Dr >= S Dq``,
    otherwise a put.

    Parameters
    ----------
    maturity : date
        Exercise date.
    s0 : float | SimpleQuote
        Spot.
    strike : float
    volatility : float | SimpleQuote
        Market implied Black vol.
    risk_free_ts, dividend_ts : YieldTermStructure
    """

    def __init__(self, maturity, s0, strike: float, volatility,
                 risk_free_ts: YieldTermStructure, dividend_ts: YieldTermStructure,
                 error_type: CalibrationErrorType = CalibrationErrorType.RelativePriceError):
        super().__init__(volatility, error_type)
        self.maturity = maturity
        self.s0 = as_quote(s0)
        self.strike = float(strike)
        self.risk_free_ts = risk_free_ts
        self.dividend_ts = dividend_ts
        self.tau = risk_free_ts.time_from_reference(maturity)
        require(self.tau > 0.0, f"maturity {maturity} must follow the reference date")
        self.register_with(self.s0, risk_free_ts, dividend_ts)

        self.option_type = (CALL if self.strike * risk_free_ts.discount(self.tau)
                            >= self.s0.value() * dividend_ts.discount(self.tau) else PUT)
        self.option = VanillaOption(PlainVanillaPayoff(self.option_type, self.strike),
                                    EuropeanExercise(maturity))

    def set_pricing_engine(self, engine: PricingEngine) -> None:
        super().set_pricing_engine(engine)
        self.option.set_pricing_engine(engine)

    def black_price(self, volatility: float) -> float:
        dr = self.risk_free_ts.discount(self.tau)
        dq = self.dividend_ts.discount(self.tau)
        stdev = volatility * math.sqrt(self.tau)
        forward = self.s0.value() * dq / dr
        return float(black_formula(self.option_type, self.strike, forward, stdev, dr))

    def model_value(self) -> float:
        if self._engine is None:
            raise ConfigurationError("no pricing engine set on the calibration helper")
        return self.option.npv()
