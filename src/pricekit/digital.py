# digital.py
# Digital options on floating-rate coupons, replicated with call/put spreads.
#
# A digital call struck at K is approximated by a tight spread of capped
# coupons at K - left and K + right, divided by the gap.  The position
# and the replication type (sub, central, super) decide how the gap is
# split around the strike, so sub-replication never overprices and
# super-replication never underprices the digital.

from __future__ import annotations
import datetime as dt
import enum
import math
from dataclasses import dataclass

from .black import black_formula
from .cashflows import FloatingRateCoupon
from .core import CALL, PUT, option_type_sign
from .errors import ConfigurationError, require
from .quotes import Observable, Observer, as_quote
from .termstructures import BlackVolTermStructure, YieldTermStructure

__all__ = [
    "Position",
    "Replication",
    "DigitalReplication",
    "BlackIborCouponPricer",
    "DigitalCoupon",
]

_ATM_EPS = 1.0e-16


class Position(enum.Enum):
    Long = "long"
    Short = "short"


class Replication(enum.Enum):
    Sub = "sub"
    Central = "central"
    Super = "super"


@dataclass(frozen=True)
class DigitalReplication:
    replication_type: Replication = Replication.Central
    gap: float = 1.0e-4

    def __post_init__(self):
        if not self.gap > 0.0:
            raise ConfigurationError(f"non-positive gap not allowed, got {self.gap}")
        object.__setattr__(self, "replication_type", Replication(self.replication_type))


# ---------------------------------------------------------------------------
# Optionlet pricer
# ---------------------------------------------------------------------------
class BlackIborCouponPricer(Observable, Observer):
    """
    Black caplet and floorlet rates on a floating coupon's fixing.

    Parameters
    ----------
    volatility : float | SimpleQuote | BlackVolTermStructure
        Optionlet volatility.  A flat number or quote measures time with
        the coupon's forwarding curve; a term structure uses its own
        reference date and day counter.

    Rates returned here are per unit of nominal and accrual, undiscounted,
    so they add directly to ``coupon.rate()``.
    """

    def __init__(self, volatility):
        super().__init__()
        if isinstance(volatility, BlackVolTermStructure):
            self.volatility = volatility
            self._quote = None
        else:
            self.volatility = None
            self._quote = as_quote(volatility)
            require(self._quote.value() >= 0.0,
                    f"negative optionlet volatility: {self._quote.value()}")
        self.register_with(self.volatility, self._quote)

    def update(self) -> None:
        self.notify_observers()

    def reference_date(self, coupon: FloatingRateCoupon) -> dt.date:
        if self.volatility is not None:
            return self.volatility.reference_date
        return coupon.forwarding_curve.reference_date

    def _variance(self, coupon: FloatingRateCoupon, strike: float) -> float:
        if self.volatility is not None:
            return self.volatility.black_variance(coupon.fixing_date(), strike)
        t = coupon.forwarding_curve.time_from_reference(coupon.fixing_date())
        vol = self._quote.value()
        return vol * vol * max(t, 0.0)

    def optionlet_rate(self, coupon: FloatingRateCoupon, option_type: str,
                       eff_strike: float) -> float:
        """Black option on the fixing, before gearing."""
        sign = option_type_sign(option_type)
        fixing = coupon.adjusted_fixing()
        if coupon.fixing_date() <= self.reference_date(coupon):
            return max(sign * (fixing - eff_strike), 0.0)
        if eff_strike <= 0.0:
            return fixing - eff_strike if sign > 0 else 0.0
        stdev = math.sqrt(self._variance(coupon, eff_strike))
        return black_formula(option_type, eff_strike, fixing, stdev)

    def _check(self, coupon: FloatingRateCoupon) -> None:
        if coupon.gearing <= 0.0:
            raise ConfigurationError("optionlets need a positive gearing")

    def swaplet_rate(self, coupon: FloatingRateCoupon) -> float:
        return coupon.rate()

    def caplet_rate(self, coupon: FloatingRateCoupon, cap: float) -> float:
        self._check(coupon)
        eff = (cap - coupon.spread) / coupon.gearing
        return coupon.gearing * self.optionlet_rate(coupon, CALL, eff)

    def floorlet_rate(self, coupon: FloatingRateCoupon, floor: float) -> float:
        self._check(coupon)
        eff = (floor - coupon.spread) / coupon.gearing
        return coupon.gearing * self.optionlet_rate(coupon, PUT, eff)

    def capped_rate(self, coupon: FloatingRateCoupon, cap: float) -> float:
        """Rate of ``min(coupon, cap)``."""
        return self.swaplet_rate(coupon) - self.caplet_rate(coupon, cap)

    def floored_rate(self, coupon: FloatingRateCoupon, floor: float) -> float:
        """Rate of ``max(coupon, floor)``."""
        return self.swaplet_rate(coupon) + self.floorlet_rate(coupon, floor)


# ---------------------------------------------------------------------------
# Digital coupon
# ---------------------------------------------------------------------------
class DigitalCoupon(Observable, Observer):
    """
    Floating coupon plus (or minus) digital call and/or put options.

    Parameters
    ----------
    underlying : FloatingRateCoupon
    call_strike, put_strike : float, optional
        Strikes on the coupon rate; ``None`` means no option on that side.
    call_position, put_position : Position
        Long adds the digital to the coupon, short subtracts it.
    is_call_atm_included, is_put_atm_included : bool
        Whether a fixing exactly at the strike pays, for fixings already
        in the past.
    call_digital_payoff, put_digital_payoff : float, optional
        Cash rate of a cash-or-nothing digital.  ``None`` with a strike
        gives an asset-or-nothing digital paying the coupon rate.
    replication : DigitalReplication, optional
        Gap and replication type (default central, gap 1e-4).
    naked_option : bool
        Price the options alone, without the underlying coupon.
    """

    def __init__(self, underlying: FloatingRateCoupon,
                 call_strike: float | None = None,
                 call_position: Position = Position.Long,
                 is_call_atm_included: bool = False,
                 call_digital_payoff: float | None = None,
                 put_strike: float | None = None,
                 put_position: Position = Position.Long,
                 is_put_atm_included: bool = False,
                 put_digital_payoff: float | None = None,
                 replication: DigitalReplication | None = None,
                 naked_option: bool = False):
        super().__init__()
        replication = replication or DigitalReplication()
        gap = replication.gap
        call_position, put_position = Position(call_position), Position(put_position)

        if put_strike is None:
            require(put_digital_payoff is None, "put cash rate not allowed without a put strike")
        if call_strike is None:
            require(call_digital_payoff is None, "call cash rate not allowed without a call strike")

        self.underlying = underlying
        self.replication = replication
        self.naked_option = bool(naked_option)
        self.is_call_atm_included = bool(is_call_atm_included)
        self.is_put_atm_included = bool(is_put_atm_included)
        self.call_strike = self.put_strike = None
        self.call_digital_payoff = call_digital_payoff
        self.put_digital_payoff = put_digital_payoff
        self.call_csi = self.put_csi = 0.0
        self.call_left_eps = self.call_right_eps = gap / 2.0
        self.put_left_eps = self.put_right_eps = gap / 2.0
        self._pricer: BlackIborCouponPricer | None = None

        if call_strike is not None:
            require(call_strike >= 0.0, f"negative call strike not allowed: {call_strike}")
            require(call_strike >= gap / 2.0, f"call strike {call_strike} < gap/2")
            self.call_strike = float(call_strike)
            self.call_csi = 1.0 if call_position is Position.Long else -1.0
        if put_strike is not None:
            require(put_strike >= 0.0, f"negative put strike not allowed: {put_strike}")
            self.put_strike = float(put_strike)
            self.put_csi = 1.0 if put_position is Position.Long else -1.0

        kind = replication.replication_type
        if kind is not Replication.Central:
            # sub-replication puts the whole gap on the side that lowers
            # the holder's value; super-replication on the other side
            lower = kind is Replication.Sub
            if self.call_strike is not None:
                left_first = (call_position is Position.Long) != lower
                self.call_left_eps, self.call_right_eps = (gap, 0.0) if left_first else (0.0, gap)
            if self.put_strike is not None:
                left_first = (put_position is Position.Long) == lower
                self.put_left_eps, self.put_right_eps = (gap, 0.0) if left_first else (0.0, gap)

        self.register_with(underlying)

    def update(self) -> None:
        self.notify_observers()

    # --- plumbing ------------------------------------------------------------
    def set_pricer(self, pricer: BlackIborCouponPricer) -> None:
        if self._pricer is not None:
            self._pricer.unregister_observer(self)
        self._pricer = pricer
        self.register_with(pricer)
        self.update()

    @property
    def pricer(self) -> BlackIborCouponPricer:
        if self._pricer is None:
            raise ConfigurationError("pricer not set")
        return self._pricer

    @property
    def date(self) -> dt.date:
        return self.underlying.date

    def has_call(self) -> bool:
        return self.call_strike is not None

    def has_put(self) -> bool:
        return self.put_strike is not None

    def accrual_period(self) -> float:
        return self.underlying.accrual_period()

    # --- option legs ---------------------------------------------------------
    def call_option_rate(self) -> float:
        """Replicated value of the digital call, per unit of accrual."""
        if not self.has_call():
            return 0.0
        pricer, c = self.pricer, self.underlying
        k, left, right = self.call_strike, self.call_left_eps, self.call_right_eps
        capped_right = pricer.capped_rate(c, k + right)
        capped_left = pricer.capped_rate(c, k - left)
        digital = (capped_right - capped_left) / (left + right)
        if self.call_digital_payoff is not None:
            return self.call_digital_payoff * digital
        # asset-or-nothing: K * digital + caplet(K)
        return k * digital + pricer.caplet_rate(c, k)

    def put_option_rate(self) -> float:
        """Replicated value of the digital put, per unit of accrual."""
        if not self.has_put():
            return 0.0
        pricer, c = self.pricer, self.underlying
        k, left, right = self.put_strike, self.put_left_eps, self.put_right_eps
        floored_right = pricer.floored_rate(c, k + right)
        floored_left = pricer.floored_rate(c, k - left)
        digital = (floored_right - floored_left) / (left + right)
        if self.put_digital_payoff is not None:
            return self.put_digital_payoff * digital
        # asset-or-nothing: K * digital - floorlet(K)
        return k * digital - pricer.floorlet_rate(c, k)

    def call_payoff(self) -> float:
        """Digital call paid on a fixing that is already known."""
        if not self.has_call():
            return 0.0
        rate = self.underlying.rate()
        pays = rate - self.call_strike > _ATM_EPS or (
            self.is_call_atm_included and abs(self.call_strike - rate) <= _ATM_EPS)
        if not pays:
            return 0.0
        return self.call_digital_payoff if self.call_digital_payoff is not None else rate

    def put_payoff(self) -> float:
        if not self.has_put():
            return 0.0
        rate = self.underlying.rate()
        pays = self.put_strike - rate > _ATM_EPS or (
            self.is_put_atm_included and abs(self.put_strike - rate) <= _ATM_EPS)
        if not pays:
            return 0.0
        return self.put_digital_payoff if self.put_digital_payoff is not None else rate

    # --- coupon interface ----------------------------------------------------
    def rate(self) -> float:
        pricer = self.pricer
        underlying_rate = 0.0 if self.naked_option else self.underlying.rate()
        if self.underlying.fixing_date() < pricer.reference_date(self.underlying):
            return (underlying_rate + self.call_csi * self.call_payoff()
                    + self.put_csi * self.put_payoff())
        return (underlying_rate + self.call_csi * self.call_option_rate()
                + self.put_csi * self.put_option_rate())

    def amount(self) -> float:
        return self.rate() * self.accrual_period() * self.underlying.nominal

    def price(self, discount_curve: YieldTermStructure) -> float:
        return self.amount() * discount_curve.discount(self.date)
