from __future__ import annotations
import datetime as dt
from dataclasses import dataclass, field
import numpy as np

from .errors import ConfigurationError

__all__ = [
    "CALL", "PUT", "option_type_sign",
    "Payoff", "StrikedTypePayoff", "PlainVanillaPayoff",
    "CashOrNothingPayoff", "AssetOrNothingPayoff",
    "Exercise", "EuropeanExercise", "AmericanExercise", "BermudanExercise",
    "Results",
]

CALL = "call"
PUT  = "put"


def option_type_sign(option_type: str) -> int:
    """+1 for a call, -1 for a put."""
    if option_type == CALL:
        return 1
    if option_type == PUT:
        return -1
    raise ConfigurationError(f"option type must be 'call' or 'put', got {option_type!r}")


# ---------------------------------------------------------------------------
# Payoffs: pure functions of the terminal spot, vectorised over arrays
# ---------------------------------------------------------------------------
class Payoff:
    name = "Payoff"

    def __call__(self, price):
        raise NotImplementedError


@dataclass(frozen=True)
class StrikedTypePayoff(Payoff):
    """Payoff with an option type and a fixed strike.

    Parameters
    ----------
    option_type : str
        ``"call"`` or ``"put"``.
    strike : float
        Strike level, immutable once built.
    """
    option_type: str
    strike: float

    def __post_init__(self):
        option_type_sign(self.option_type)
        if not np.isfinite(self.strike):
            raise ConfigurationError(f"strike must be finite, got {self.strike}")

    @property
    def sign(self) -> int:
        return option_type_sign(self.option_type)


@dataclass(frozen=True)
class PlainVanillaPayoff(StrikedTypePayoff):
    name = "Vanilla"

    def __call__(self, price):
        price = np.asarray(price, dtype=float)
        return np.maximum(self.sign * (price - self.strike), 0.0)


@dataclass(frozen=True)
class CashOrNothingPayoff(StrikedTypePayoff):
    """Pays ``cash`` if in the money at expiry, else nothing."""
    cash: float = 1.0
    name = "CashOrNothing"

    def __call__(self, price):
        price = np.asarray(price, dtype=float)
        return np.where(self.sign * (price - self.strike) > 0.0, self.cash, 0.0)


@dataclass(frozen=True)
class AssetOrNothingPayoff(StrikedTypePayoff):
    """Pays the asset if in the money at expiry, else nothing."""
    name = "AssetOrNothing"

    def __call__(self, price):
        price = np.asarray(price, dtype=float)
        return np.where(self.sign * (price - self.strike) > 0.0, price, 0.0)


# ---------------------------------------------------------------------------
# Exercises
# ---------------------------------------------------------------------------
class Exercise:
    """Finite ordered set of exercise dates; the last one is maturity."""
    kind = "exercise"

    def __init__(self, dates):
        dates = sorted(dates)
        if not dates:
            raise ConfigurationError("an exercise needs at least one date")
        self._dates = dates

    @property
    def dates(self) -> list[dt.date]:
        return list(self._dates)

    def last_date(self) -> dt.date:
        return self._dates[-1]

    def __repr__(self):
        return f"{type(self).__name__}({self._dates!r})"


class EuropeanExercise(Exercise):
    kind = "european"

    def __init__(self, date: dt.date):
        super().__init__([date])


class AmericanExercise(Exercise):
    kind = "american"

    def __init__(self, earliest: dt.date, latest: dt.date):
        if earliest > latest:
            raise ConfigurationError(
                f"earliest exercise {earliest} after latest {latest}"
            )
        super().__init__([earliest, latest])


class BermudanExercise(Exercise):
    kind = "bermudan"


# ---------------------------------------------------------------------------
# Engine results
# ---------------------------------------------------------------------------
@dataclass
class Results:
    """Uniform result contract filled in by every pricing engine.

    ``error_estimate`` is ``None`` for analytic engines and the standard
    error for Monte Carlo ones.  ``greeks`` holds closed-form
    sensitivities when the engine provides them; anything else
    (evaluation counts, loss statistics) goes to ``additional_results``.
    """
    value: float = float("nan")
    error_estimate: float | None = None
    greeks: dict[str, float] = field(default_factory=dict)
    additional_results: dict[str, object] = field(default_factory=dict)
