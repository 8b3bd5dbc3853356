"""Instrument / pricing-engine binding.

An ``Instrument`` holds the contract terms and a re-attachable
``PricingEngine``.  Results are cached until a quote, curve, process or
engine that the instrument depends on notifies a change; the next
``npv()`` then re-prices.  Asking for results before an engine is
attached raises ``EngineNotSetError``.
"""

from __future__ import annotations

from .core import Results, Payoff, StrikedTypePayoff, Exercise, EuropeanExercise
from .errors import ConfigurationError, EngineNotSetError
from .quotes import LazyObject, Observable, Observer

__all__ = [
    "PricingEngine",
    "Instrument",
    "OneAssetOption",
    "VanillaOption",
    "EuropeanOption",
]

_GREEKS = ("delta", "delta_forward", "elasticity", "gamma", "theta", "theta_per_day",
           "vega", "rho", "dividend_rho", "strike_sensitivity", "itm_cash_probability")


# ---------------------------------------------------------------------------
# Engines
# ---------------------------------------------------------------------------
class PricingEngine(Observable, Observer):
    """Stateless w.r.t. the instrument: ``calculate(instrument) -> Results``.

    Engines observe their process or curves and forward notifications to
    every instrument they are attached to.
    """

    def __init__(self):
        Observable.__init__(self)

    def update(self) -> None:
        self.notify_observers()

    def calculate(self, instrument) -> Results:
        raise NotImplementedError

    def evaluation_date(self):
        """Reference date of the curves the engine prices on, if it has one."""
        return None


# ---------------------------------------------------------------------------
# Instruments
# ---------------------------------------------------------------------------
class Instrument(LazyObject):
    def __init__(self):
        super().__init__()
        self._engine: PricingEngine | None = None
        self._results: Results | None = None

    @property
    def pricing_engine(self) -> PricingEngine | None:
        return self._engine

    def set_pricing_engine(self, engine: PricingEngine) -> None:
        if self._engine is not None:
            self._engine.unregister_observer(self)
        self._engine = engine
        if engine is not None:
            self.register_with(engine)
        self.update()

    def calculate(self) -> None:
        if self._engine is None:
            raise EngineNotSetError(
                f"null pricing engine: attach one to {type(self).__name__} first"
            )
        super().calculate()

    def perform_calculations(self) -> None:
        if self.is_expired(self._engine.evaluation_date()):
            self._results = self.expired_results()
        else:
            self._results = self._engine.calculate(self)

    def expired_results(self) -> Results:
        return Results(value=0.0, error_estimate=0.0)

    def is_expired(self, evaluation_date=None) -> bool:
        """True once the evaluation date is past the last relevant date."""
        last = self.maturity_date()
        if last is None or evaluation_date is None:
            return False
        return last < evaluation_date

    def maturity_date(self):
        return None

    # --- results -----------------------------------------------------------
    def results(self) -> Results:
        self.calculate()
        return self._results

    def npv(self) -> float:
        return float(self.results().value)

    def error_estimate(self) -> float:
        res = self.results()
        if res.error_estimate is None:
            raise ConfigurationError("error estimate not provided by the engine")
        return float(res.error_estimate)

    def result(self, name: str):
        """Look up a greek or an additional result by name."""
        res = self.results()
        if name in res.greeks:
            return res.greeks[name]
        if name in res.additional_results:
            return res.additional_results[name]
        raise ConfigurationError(f"{name} not provided")


class OneAssetOption(Instrument):
    """Option on a single underlying with closed-form greek accessors."""

    def __init__(self, payoff: Payoff, exercise: Exercise):
        super().__init__()
        self.payoff = payoff
        self.exercise = exercise

    def maturity_date(self):
        return self.exercise.last_date()

    def expired_results(self) -> Results:
        return Results(value=0.0, error_estimate=0.0, greeks=dict.fromkeys(_GREEKS, 0.0))

    def _greek(self, name: str) -> float:
        res = self.results()
        if name not in res.greeks:
            raise ConfigurationError(f"{name} not provided")
        return float(res.greeks[name])

    def delta(self) -> float:
        return self._greek("delta")

    def delta_forward(self) -> float:
        return self._greek("delta_forward")

    def elasticity(self) -> float:
        return self._greek("elasticity")

    def gamma(self) -> float:
        return self._greek("gamma")

    def theta(self) -> float:
        return self._greek("theta")

    def theta_per_day(self) -> float:
        return self._greek("theta_per_day")

    def vega(self) -> float:
        return self._greek("vega")

    def rho(self) -> float:
        return self._greek("rho")

    def dividend_rho(self) -> float:
        return self._greek("dividend_rho")

    def strike_sensitivity(self) -> float:
        return self._greek("strike_sensitivity")

    def itm_cash_probability(self) -> float:
        return self._greek("itm_cash_probability")


class VanillaOption(OneAssetOption):
    def __init__(self, payoff: StrikedTypePayoff, exercise: Exercise):
        if not isinstance(payoff, StrikedTypePayoff):
            raise ConfigurationError("a striked payoff is required")
        super().__init__(payoff, exercise)


class EuropeanOption(VanillaOption):
    def __init__(self, payoff: StrikedTypePayoff, exercise: EuropeanExercise):
        if not isinstance(exercise, EuropeanExercise):
            raise ConfigurationError("a European exercise is required")
        super().__init__(payoff, exercise)
