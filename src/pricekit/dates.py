# dates.py
# Minimal date toolkit consumed by the pricing core: day counters,
# month arithmetic and a regular unadjusted coupon schedule.
# Holiday calendars and business-day adjustment are out of scope.

from __future__ import annotations
import calendar
import datetime as dt

from .errors import require

__all__ = [
    "Frequency",
    "DayCounter", "Actual360", "Actual365Fixed", "ActualActual", "Thirty360",
    "add_months", "add_years", "Schedule",
]


class Frequency:
    ONCE = 0
    ANNUAL = 1
    SEMIANNUAL = 2
    QUARTERLY = 4
    MONTHLY = 12


# ---------------------------------------------------------------------------
# Day counters
# ---------------------------------------------------------------------------
class DayCounter:
    """Base day counter: ``year_fraction = day_count / days_per_year``."""

    name = "DayCounter"
    days_per_year = 365.0

    def day_count(self, d1: dt.date, d2: dt.date) -> int:
        return (d2 - d1).days

    def year_fraction(self, d1: dt.date, d2: dt.date) -> float:
        return self.day_count(d1, d2) / self.days_per_year

    def __eq__(self, other):
        return type(self) is type(other)

    def __hash__(self):
        return hash(type(self))

    def __repr__(self):
        return f"{self.name}()"


class Actual360(DayCounter):
    name = "Actual/360"
    days_per_year = 360.0


class Actual365Fixed(DayCounter):
    name = "Actual/365 (Fixed)"
    days_per_year = 365.0


class ActualActual(DayCounter):
    """Actual/Actual (ISDA): each calendar year contributes days/len(year)."""

    name = "Actual/Actual (ISDA)"

    def year_fraction(self, d1: dt.date, d2: dt.date) -> float:
        if d1 == d2:
            return 0.0
        if d1 > d2:
            return -self.year_fraction(d2, d1)
        y1, y2 = d1.year, d2.year
        dib1 = 366.0 if calendar.isleap(y1) else 365.0
        dib2 = 366.0 if calendar.isleap(y2) else 365.0
        total = float(y2 - y1 - 1)
        total += (dt.date(y1 + 1, 1, 1) - d1).days / dib1
        total += (d2 - dt.date(y2, 1, 1)).days / dib2
        return total


class Thirty360(DayCounter):
    """30/360 Bond Basis."""

    name = "30/360 (Bond Basis)"
    days_per_year = 360.0

    def day_count(self, d1: dt.date, d2: dt.date) -> int:
        dd1, dd2 = d1.day, d2.day
        if dd1 == 31:
            dd1 = 30
        if dd2 == 31 and dd1 == 30:
            dd2 = 30
        return (360 * (d2.year - d1.year) + 30 * (d2.month - d1.month)
                + (dd2 - dd1))


# ---------------------------------------------------------------------------
# Date arithmetic
# ---------------------------------------------------------------------------
def add_months(d: dt.date, n: int) -> dt.date:
    """Shift ``d`` by ``n`` months, clamping to the end of the month."""
    m = d.month - 1 + n
    year = d.year + m // 12
    month = m % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return dt.date(year, month, day)


def add_years(d: dt.date, n: int) -> dt.date:
    return add_months(d, 12 * n)


class Schedule:
    """Regular unadjusted schedule generated backwards from termination.

    Parameters
    ----------
    effective : date
        First accrual start.
    termination : date
        Last accrual end (maturity).
    months : int
        Coupon tenor in months; 0 means a single period.
    """

    def __init__(self, effective: dt.date, termination: dt.date, months: int):
        require(effective < termination,
                f"effective date {effective} must precede termination {termination}")
        require(months >= 0, f"tenor must be non-negative, got {months}")
        dates = [termination]
        if months > 0:
            k = 1
            while True:
                d = add_months(termination, -months * k)
                if d <= effective:
                    break
                dates.append(d)
                k += 1
        dates.append(effective)
        self._dates = sorted(dates)

    @classmethod
    def from_dates(cls, dates) -> "Schedule":
        dates = sorted(dates)
        require(len(dates) >= 2, "a schedule needs at least two dates")
        obj = cls.__new__(cls)
        obj._dates = list(dates)
        return obj

    @property
    def dates(self) -> list[dt.date]:
        return list(self._dates)

    def start_date(self) -> dt.date:
        return self._dates[0]

    def end_date(self) -> dt.date:
        return self._dates[-1]

    def __len__(self):
        return len(self._dates)

    def __getitem__(self, i):
        return self._dates[i]

    def __iter__(self):
        return iter(self._dates)
