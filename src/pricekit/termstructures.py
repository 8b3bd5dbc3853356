# termstructures.py
# Yield and Black-volatility term structures.
#
# Every curve has a reference date (the evaluation date, passed in
# explicitly) and a day counter; methods accept either a ``date`` or a
# year fraction from the reference date.  Curves built on quotes register
# with them so a quote change invalidates every dependent price.

from __future__ import annotations
import datetime as dt
import math
import numpy as np

from .dates import DayCounter, Actual365Fixed
from .errors import ConfigurationError, require
from .quotes import LazyObject, SimpleQuote, as_quote

__all__ = [
    "TermStructure",
    "YieldTermStructure", "FlatForward", "ZeroCurve",
    "BlackVolTermStructure", "BlackConstantVol", "BlackVarianceCurve",
]

_DT = 1e-4   # step used for instantaneous forwards and t -> 0 limits


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class TermStructure(LazyObject):
    def __init__(self, reference_date: dt.date, day_counter: DayCounter | None = None):
        super().__init__()
        self._reference_date = reference_date
        self._day_counter = day_counter or Actual365Fixed()

    @property
    def reference_date(self) -> dt.date:
        return self._reference_date

    @property
    def day_counter(self) -> DayCounter:
        return self._day_counter

    def time_from_reference(self, d) -> float:
        """Year fraction from the reference date; floats pass through."""
        if isinstance(d, dt.date):
            return self._day_counter.year_fraction(self._reference_date, d)
        return float(d)

    def _times(self, t):
        if isinstance(t, dt.date):
            return self.time_from_reference(t)
        if isinstance(t, (list, tuple)):
            return np.array([self.time_from_reference(x) for x in t], dtype=float)
        return t

    def perform_calculations(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Yield curves
# ---------------------------------------------------------------------------
class YieldTermStructure(TermStructure):
    """Discount factors, continuously-compounded zero and forward rates."""

    def discount(self, t):
        t = self._times(t)
        self.calculate()
        return self._discount_impl(t)

    def _discount_impl(self, t):
        raise NotImplementedError

    def zero_rate(self, t):
        """Continuously-compounded zero rate to ``t``."""
        t = self._times(t)
        t_arr = np.maximum(np.asarray(t, dtype=float), _DT)
        z = -np.log(self.discount(t_arr)) / t_arr
        return float(z) if np.ndim(z) == 0 else z

    def forward_rate(self, t1, t2, compounding: str = "continuous") -> float:
        """Forward rate between ``t1`` and ``t2``.

        ``compounding`` is ``"continuous"`` or ``"simple"``.  Equal times
        return the instantaneous forward.
        """
        t1, t2 = self.time_from_reference(t1), self.time_from_reference(t2)
        if t2 < t1:
            raise ConfigurationError(f"t2 ({t2}) must not precede t1 ({t1})")
        if t2 - t1 < _DT:
            t2 = t1 + _DT
        tau = t2 - t1
        ratio = self.discount(t1) / self.discount(t2)
        if compounding == "continuous":
            return math.log(ratio) / tau
        if compounding == "simple":
            return (ratio - 1.0) / tau
        raise ConfigurationError(f"unknown compounding {compounding!r}")


class FlatForward(YieldTermStructure):
    """Flat continuously-compounded curve driven by a rate quote.

    Parameters
    ----------
    reference_date : date
        Evaluation date of the curve.
    forward : float | SimpleQuote
        Continuously-compounded rate.  A quote is observed, so setting
        a new value re-prices everything built on this curve.
    day_counter : DayCounter
        Converts dates to times (default Actual/365 Fixed).
    """

    def __init__(self, reference_date, forward, day_counter: DayCounter | None = None):
        super().__init__(reference_date, day_counter)
        self._quote = as_quote(forward)
        self.register_with(self._quote)

    @property
    def quote(self) -> SimpleQuote:
        return self._quote

    def rate(self) -> float:
        return self._quote.value()

    def _discount_impl(self, t):
        d = np.exp(-self._quote.value() * np.asarray(t, dtype=float))
        return float(d) if np.ndim(d) == 0 else d


class ZeroCurve(YieldTermStructure):
    """Zero curve linearly interpolated on continuously-compounded rates.

    The first date is the reference date.  Outside the pillar range
    the end rates are held flat.
    """

    def __init__(self, dates, rates, day_counter: DayCounter | None = None):
        require(len(dates) == len(rates),
                f"{len(dates)} dates but {len(rates)} rates given")
        require(len(dates) >= 2, "at least two pillars are required")
        dates = list(dates)
        require(all(a < b for a, b in zip(dates, dates[1:])),
                "pillar dates must be strictly increasing")
        super().__init__(dates[0], day_counter)
        self._dates = dates
        self._times_ = np.array([self.time_from_reference(d) for d in dates], dtype=float)
        self._rates = np.asarray(rates, dtype=float)

    @property
    def dates(self):
        return list(self._dates)

    def _discount_impl(self, t):
        t_arr = np.asarray(t, dtype=float)
        z = np.interp(t_arr, self._times_, self._rates)
        d = np.exp(-z * t_arr)
        return float(d) if np.ndim(d) == 0 else d


# ---------------------------------------------------------------------------
# Black volatility
# ---------------------------------------------------------------------------
class BlackVolTermStructure(TermStructure):
    """Black implied volatility as a function of time and strike."""

    def black_vol(self, t, strike: float = 0.0) -> float:
        t = self.time_from_reference(t)
        self.calculate()
        vol = self._black_vol_impl(t, strike)
        if vol < 0.0:
            raise ConfigurationError(f"negative volatility {vol} at t={t}")
        return vol

    def black_variance(self, t, strike: float = 0.0) -> float:
        t = self.time_from_reference(t)
        vol = self.black_vol(t, strike)
        return vol * vol * t

    def black_forward_variance(self, t1, t2, strike: float = 0.0) -> float:
        t1, t2 = self.time_from_reference(t1), self.time_from_reference(t2)
        require(t2 >= t1, "t2 must not precede t1")
        return self.black_variance(t2, strike) - self.black_variance(t1, strike)

    def _black_vol_impl(self, t: float, strike: float) -> float:
        raise NotImplementedError


class BlackConstantVol(BlackVolTermStructure):
    def __init__(self, reference_date, volatility, day_counter: DayCounter | None = None):
        super().__init__(reference_date, day_counter)
        self._quote = as_quote(volatility)
        self.register_with(self._quote)

    @property
    def quote(self) -> SimpleQuote:
        return self._quote

    def _black_vol_impl(self, t, strike):
        return self._quote.value()


class BlackVarianceCurve(BlackVolTermStructure):
    """Strike-independent vol curve, linear in total variance.

    Beyond the last pillar the last vol is held flat.
    """

    def __init__(self, reference_date, dates, vols, day_counter: DayCounter | None = None):
        super().__init__(reference_date, day_counter)
        require(len(dates) == len(vols),
                f"{len(dates)} dates but {len(vols)} volatilities given")
        require(len(dates) >= 1, "at least one pillar is required")
        times = np.array([self.time_from_reference(d) for d in dates], dtype=float)
        require(bool(np.all(times > 0.0)), "pillar dates must follow the reference date")
        require(bool(np.all(np.diff(times) > 0.0)), "pillar dates must be increasing")
        vols = np.asarray(vols, dtype=float)
        require(bool(np.all(vols >= 0.0)), "volatilities must be non-negative")
        variances = vols * vols * times
        if np.any(np.diff(variances) < 0.0):
            raise ConfigurationError("total variance must be non-decreasing in time")
        self._times_ = np.concatenate([[0.0], times])
        self._variances = np.concatenate([[0.0], variances])

    def _black_vol_impl(self, t, strike):
        if t <= 0.0:
            t = _DT
        if t <= self._times_[-1]:
            var = float(np.interp(t, self._times_, self._variances))
        else:
            var = self._variances[-1] * t / self._times_[-1]
        return math.sqrt(var / t)
