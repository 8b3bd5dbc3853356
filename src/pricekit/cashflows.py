# cashflows.py
# Cash flows, fixed and floating coupons, and leg builders.
#
# A leg is a plain list of cash flows sorted by payment date.  Floating
# coupons forecast their fixing from a forwarding curve; there is no
# fixing history, so a coupon whose fixing date is already past keeps
# using the curve forecast.

from __future__ import annotations
import datetime as dt

from .dates import DayCounter, Schedule
from .errors import require
from .quotes import Observable, Observer
from .settings import BASIS_POINT
from .termstructures import YieldTermStructure

__all__ = [
    "CashFlow", "SimpleCashFlow", "Redemption",
    "Coupon", "FixedRateCoupon", "FloatingRateCoupon", "IborCoupon",
    "fixed_rate_leg", "floating_rate_leg",
    "leg_npv", "leg_bps", "leg_accrued_amount",
]


# ---------------------------------------------------------------------------
# Cash flows
# ---------------------------------------------------------------------------
class CashFlow(Observable):
    """Single payment on ``date``."""

    def __init__(self, date: dt.date):
        super().__init__()
        self.date = date

    def amount(self) -> float:
        raise NotImplementedError

    def has_occurred(self, ref_date: dt.date | None) -> bool:
        """Flows on the reference date itself count as occurred."""
        if ref_date is None:
            return False
        return self.date <= ref_date

    def __repr__(self):
        return f"{type(self).__name__}({self.date}, {self.amount():.6g})"


class SimpleCashFlow(CashFlow):
    def __init__(self, amount: float, date: dt.date):
        super().__init__(date)
        self._amount = float(amount)

    def amount(self) -> float:
        return self._amount


class Redemption(SimpleCashFlow):
    """Principal repayment; excluded from coupon-only quantities."""
    pass


# ---------------------------------------------------------------------------
# Coupons
# ---------------------------------------------------------------------------
class Coupon(CashFlow):
    """Interest accrued on ``nominal`` over [accrual_start, accrual_end)."""

    def __init__(self, payment_date: dt.date, nominal: float, accrual_start: dt.date,
                 accrual_end: dt.date, day_counter: DayCounter):
        super().__init__(payment_date)
        require(accrual_start < accrual_end,
                f"accrual start {accrual_start} must precede accrual end {accrual_end}")
        self.nominal = float(nominal)
        self.accrual_start = accrual_start
        self.accrual_end = accrual_end
        self.day_counter = day_counter

    def accrual_period(self) -> float:
        return self.day_counter.year_fraction(self.accrual_start, self.accrual_end)

    def rate(self) -> float:
        raise NotImplementedError

    def amount(self) -> float:
        return self.rate() * self.accrual_period() * self.nominal

    def accrued_period(self, d: dt.date) -> float:
        if d <= self.accrual_start or d > self.date:
            return 0.0
        return self.day_counter.year_fraction(self.accrual_start, min(d, self.accrual_end))

    def accrued_amount(self, d: dt.date) -> float:
        """Interest accrued up to ``d``; zero outside the coupon's life."""
        return self.nominal * self.rate() * self.accrued_period(d)


class FixedRateCoupon(Coupon):
    """Simply-compounded fixed coupon."""

    def __init__(self, payment_date: dt.date, nominal: float, rate: float,
                 day_counter: DayCounter, accrual_start: dt.date, accrual_end: dt.date):
        super().__init__(payment_date, nominal, accrual_start, accrual_end, day_counter)
        self._rate = float(rate)

    def rate(self) -> float:
        return self._rate


class FloatingRateCoupon(Coupon, Observer):
    """
    Coupon paying ``gearing * L + spread``.

    The fixing ``L`` is the simply-compounded forward rate of
    ``forwarding_curve`` over the accrual period, measured with the
    coupon's day counter.

    Parameters
    ----------
    payment_date, nominal, accrual_start, accrual_end : as for ``Coupon``
    forwarding_curve : YieldTermStructure
        Curve the fixing is forecast from.
    day_counter : DayCounter, optional
        Accrual convention; defaults to the curve's.
    gearing, spread : float
        Linear transform of the fixing.
    fixing_days : int
        Calendar days between the fixing date and ``accrual_start``.
    """

    def __init__(self, payment_date: dt.date, nominal: float, accrual_start: dt.date,
                 accrual_end: dt.date, forwarding_curve: YieldTermStructure,
                 day_counter: DayCounter | None = None, gearing: float = 1.0,
                 spread: float = 0.0, fixing_days: int = 0):
        Coupon.__init__(self, payment_date, nominal, accrual_start, accrual_end,
                        day_counter or forwarding_curve.day_counter)
        require(gearing != 0.0, "null gearing not allowed")
        require(fixing_days >= 0, f"fixing days must be non-negative, got {fixing_days}")
        self.forwarding_curve = forwarding_curve
        self.gearing = float(gearing)
        self.spread = float(spread)
        self.fixing_days = int(fixing_days)
        self.register_with(forwarding_curve)

    def update(self) -> None:
        self.notify_observers()

    def fixing_date(self) -> dt.date:
        return self.accrual_start - dt.timedelta(days=self.fixing_days)

    def index_fixing(self) -> float:
        curve = self.forwarding_curve
        d1 = curve.discount(self.accrual_start)
        d2 = curve.discount(self.accrual_end)
        return (d1 / d2 - 1.0) / self.accrual_period()

    def adjusted_fixing(self) -> float:
        return self.index_fixing()

    def rate(self) -> float:
        return self.gearing * self.adjusted_fixing() + self.spread

    def price(self, discount_curve: YieldTermStructure) -> float:
        return self.amount() * discount_curve.discount(self.date)


IborCoupon = FloatingRateCoupon


# ---------------------------------------------------------------------------
# Leg builders
# ---------------------------------------------------------------------------
def _per_period(values, n: int, what: str) -> list[float]:
    """Broadcast a scalar, or pad a short list with its last element."""
    if isinstance(values, (int, float)):
        return [float(values)] * n
    values = [float(v) for v in values]
    require(len(values) >= 1, f"no {what} given")
    require(len(values) <= n, f"too many {what}: {len(values)}, max {n}")
    return values + [values[-1]] * (n - len(values))


def fixed_rate_leg(schedule: Schedule, nominals, rates, day_counter: DayCounter,
                   payment_lag: int = 0) -> list[FixedRateCoupon]:
    """One fixed coupon per schedule period, paid at the period end."""
    dates = schedule.dates
    n = len(dates) - 1
    nominals = _per_period(nominals, n, "nominals")
    rates = _per_period(rates, n, "coupon rates")
    return [
        FixedRateCoupon(dates[i + 1] + dt.timedelta(days=payment_lag), nominals[i], rates[i],
                        day_counter, dates[i], dates[i + 1])
        for i in range(n)
    ]


def floating_rate_leg(schedule: Schedule, nominals, forwarding_curve: YieldTermStructure,
                      day_counter: DayCounter | None = None, gearings=1.0,
                      spreads=0.0, fixing_days: int = 0) -> list[FloatingRateCoupon]:
    dates = schedule.dates
    n = len(dates) - 1
    nominals = _per_period(nominals, n, "nominals")
    gearings = _per_period(gearings, n, "gearings")
    spreads = _per_period(spreads, n, "spreads")
    return [
        FloatingRateCoupon(dates[i + 1], nominals[i], dates[i], dates[i + 1], forwarding_curve,
                           day_counter, gearings[i], spreads[i], fixing_days)
        for i in range(n)
    ]


# ---------------------------------------------------------------------------
# Leg analytics
# ---------------------------------------------------------------------------
def leg_npv(leg, discount_curve: YieldTermStructure, settlement_date: dt.date | None = None,
            npv_date: dt.date | None = None) -> float:
    """
    Sum of discounted flows paid after ``settlement_date``.

    The result is expressed at ``npv_date`` (default: the curve's
    reference date).
    """
    total = 0.0
    for cf in leg:
        if not cf.has_occurred(settlement_date):
            total += cf.amount() * discount_curve.discount(cf.date)
    if npv_date is not None:
        total /= discount_curve.discount(npv_date)
    return total


def leg_bps(leg, discount_curve: YieldTermStructure, settlement_date: dt.date | None = None,
            npv_date: dt.date | None = None) -> float:
    """Value of one basis point paid on every coupon's nominal."""
    total = 0.0
    for cf in leg:
        if isinstance(cf, Coupon) and not cf.has_occurred(settlement_date):
            total += cf.nominal * cf.accrual_period() * discount_curve.discount(cf.date)
    if npv_date is not None:
        total /= discount_curve.discount(npv_date)
    return total * BASIS_POINT


def leg_accrued_amount(leg, d: dt.date) -> float:
    return sum(cf.accrued_amount(d) for cf in leg if isinstance(cf, Coupon))
