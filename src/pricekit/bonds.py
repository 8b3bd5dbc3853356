# bonds.py
# Fixed-rate bonds, asset swaps and their discounting engines.
#
# Prices follow the street convention of "per 100 of outstanding
# notional".  Settlement happens ``settlement_days`` calendar days after
# the evaluation date, which is the discount curve's reference date
# unless given explicitly; there is no holiday calendar.

from __future__ import annotations
import datetime as dt
import logging
import math

from scipy.optimize import brentq

from .cashflows import (
    CashFlow, Coupon, Redemption, SimpleCashFlow,
    fixed_rate_leg, floating_rate_leg, leg_npv, leg_bps, leg_accrued_amount,
)
from .core import Results
from .dates import DayCounter, Schedule
from .errors import ConfigurationError, ConvergenceError, require
from .instruments import Instrument, PricingEngine
from .settings import BASIS_POINT
from .termstructures import YieldTermStructure

logger = logging.getLogger(__name__)

__all__ = [
    "SIMPLE", "COMPOUNDED", "CONTINUOUS",
    "Bond", "FixedRateBond", "DiscountingBondEngine",
    "Swap", "AssetSwap", "DiscountingSwapEngine",
]

SIMPLE = "simple"
COMPOUNDED = "compounded"
CONTINUOUS = "continuous"


def _yield_discount(y: float, t: float, compounding: str, frequency: int) -> float:
    if compounding == CONTINUOUS:
        return math.exp(-y * t)
    if compounding == SIMPLE:
        growth = 1.0 + y * t
    elif compounding == COMPOUNDED:
        require(frequency > 0, f"compounded yields need a positive frequency, got {frequency}")
        growth = (1.0 + y / frequency) ** (frequency * t)
    else:
        raise ConfigurationError(f"unknown compounding {compounding!r}")
    if growth <= 0.0:
        raise ConfigurationError(f"yield {y} gives a non-positive growth factor")
    return 1.0 / growth


# ---------------------------------------------------------------------------
# Bonds
# ---------------------------------------------------------------------------
class Bond(Instrument):
    """
    Generic bond defined by its cash flows.

    Parameters
    ----------
    settlement_days : int
        Calendar days from evaluation to settlement.
    issue_date : date, optional
        Settlement never precedes this date.
    cashflows : list of CashFlow
        Coupons and redemptions; sorted by payment date on construction.
    """

    def __init__(self, settlement_days: int, issue_date: dt.date | None, cashflows):
        super().__init__()
        require(settlement_days >= 0, f"negative settlement days: {settlement_days}")
        cashflows = sorted(cashflows, key=lambda cf: cf.date)
        require(len(cashflows) > 0, "a bond needs at least one cash flow")
        self.settlement_days = int(settlement_days)
        self.issue_date = issue_date
        self.cashflows: list[CashFlow] = cashflows
        self.register_with(*cashflows)

    def maturity_date(self) -> dt.date:
        return self.cashflows[-1].date

    def evaluation_date(self) -> dt.date:
        engine = self.pricing_engine
        d = engine.evaluation_date() if engine is not None else None
        if d is None:
            raise ConfigurationError("no evaluation date: pass one or attach a discounting engine")
        return d

    def settlement_date(self, d: dt.date | None = None) -> dt.date:
        d = self.evaluation_date() if d is None else d
        settlement = d + dt.timedelta(days=self.settlement_days)
        if self.issue_date is not None:
            settlement = max(settlement, self.issue_date)
        return settlement

    def notional(self, d: dt.date | None = None) -> float:
        """Outstanding notional after ``d``; zero once every coupon is paid."""
        d = self.settlement_date() if d is None else d
        for cf in self.cashflows:
            if isinstance(cf, Coupon) and not cf.has_occurred(d):
                return cf.nominal
        for cf in self.cashflows:
            if isinstance(cf, Redemption) and not cf.has_occurred(d):
                return cf.amount()
        return 0.0

    def redemptions(self) -> list[Redemption]:
        return [cf for cf in self.cashflows if isinstance(cf, Redemption)]

    def is_expired(self, evaluation_date=None) -> bool:
        if evaluation_date is None:
            return False
        return all(cf.has_occurred(evaluation_date) for cf in self.cashflows)

    def expired_results(self) -> Results:
        d = self.evaluation_date()
        return Results(value=0.0, additional_results={
            "settlement_value": 0.0,
            "settlement_date": self.settlement_date(d),
            "valuation_date": d,
        })

    # --- accrual and prices --------------------------------------------------
    def accrued_amount(self, d: dt.date | None = None) -> float:
        """Accrued interest per 100 of notional at ``d`` (default: settlement)."""
        d = self.settlement_date() if d is None else d
        notional = self.notional(d)
        if notional == 0.0:
            return 0.0
        return leg_accrued_amount(self.cashflows, d) * 100.0 / notional

    def settlement_value(self) -> float:
        return float(self.results().additional_results["settlement_value"])

    def dirty_price(self) -> float:
        settlement = self.results().additional_results["settlement_date"]
        notional = self.notional(settlement)
        if notional == 0.0:
            return 0.0
        return self.settlement_value() * 100.0 / notional

    def clean_price(self) -> float:
        settlement = self.results().additional_results["settlement_date"]
        return self.dirty_price() - self.accrued_amount(settlement)

    # --- yield conventions ---------------------------------------------------
    def dirty_price_from_yield(self, y: float, day_counter: DayCounter,
                               compounding: str = COMPOUNDED, frequency: int = 1,
                               settlement: dt.date | None = None) -> float:
        settlement = self.settlement_date() if settlement is None else settlement
        notional = self.notional(settlement)
        require(notional > 0.0, "bond is fully redeemed at settlement")
        total = 0.0
        for cf in self.cashflows:
            if cf.has_occurred(settlement):
                continue
            t = day_counter.year_fraction(settlement, cf.date)
            total += cf.amount() * _yield_discount(y, t, compounding, frequency)
        return total * 100.0 / notional

    def clean_price_from_yield(self, y: float, day_counter: DayCounter,
                               compounding: str = COMPOUNDED, frequency: int = 1,
                               settlement: dt.date | None = None) -> float:
        settlement = self.settlement_date() if settlement is None else settlement
        return (self.dirty_price_from_yield(y, day_counter, compounding, frequency, settlement)
                - self.accrued_amount(settlement))

    def bond_yield(self, clean_price: float, day_counter: DayCounter,
                   compounding: str = COMPOUNDED, frequency: int = 1,
                   settlement: dt.date | None = None, accuracy: float = 1.0e-10,
                   max_evaluations: int = 100) -> float:
        """Yield reproducing ``clean_price``, solved with Brent."""
        settlement = self.settlement_date() if settlement is None else settlement
        target = clean_price + self.accrued_amount(settlement)

        def f(y):
            return self.dirty_price_from_yield(y, day_counter, compounding, frequency,
                                               settlement) - target

        lo, hi = -0.05, 0.25
        # price is decreasing in the yield: widen until the root is bracketed
        for _ in range(20):
            try:
                f_lo, f_hi = f(lo), f(hi)
            except ConfigurationError:
                lo = 0.5 * lo
                continue
            if f_lo >= 0.0 >= f_hi:
                break
            if f_lo < 0.0:
                lo -= 0.5 * (hi - lo)
            if f_hi > 0.0:
                hi *= 2.0
        else:
            raise ConvergenceError(f"could not bracket the yield for clean price {clean_price}")
        try:
            return float(brentq(f, lo, hi, xtol=accuracy, maxiter=max_evaluations))
        except (ValueError, RuntimeError) as exc:
            raise ConvergenceError(f"bond yield did not converge: {exc}") from exc


class FixedRateBond(Bond):
    """
    Bullet bond paying fixed coupons on ``face_amount``.

    ``redemption`` is quoted per 100 of face; ``coupons`` may be a single
    rate or one rate per period (the last one is repeated).
    """

    def __init__(self, settlement_days: int, face_amount: float, schedule: Schedule,
                 coupons, day_counter: DayCounter, redemption: float = 100.0,
                 issue_date: dt.date | None = None):
        require(face_amount > 0.0, f"face amount must be positive, got {face_amount}")
        leg = fixed_rate_leg(schedule, face_amount, coupons, day_counter)
        leg.append(Redemption(face_amount * redemption / 100.0, schedule.end_date()))
        super().__init__(settlement_days, issue_date or schedule.start_date(), leg)
        self.face_amount = float(face_amount)
        self.day_counter = day_counter


class DiscountingBondEngine(PricingEngine):
    """NPV at the curve's reference date and value at settlement."""

    def __init__(self, discount_curve: YieldTermStructure):
        super().__init__()
        self.discount_curve = discount_curve
        self.register_with(discount_curve)

    def evaluation_date(self):
        return self.discount_curve.reference_date

    def calculate(self, bond: Bond) -> Results:
        curve = self.discount_curve
        valuation = curve.reference_date
        settlement = bond.settlement_date(valuation)
        value = leg_npv(bond.cashflows, curve, valuation, valuation)
        settlement_value = leg_npv(bond.cashflows, curve, settlement, settlement)
        return Results(value=value, additional_results={
            "settlement_value": settlement_value,
            "settlement_date": settlement,
            "valuation_date": valuation,
        })


# ---------------------------------------------------------------------------
# Swaps
# ---------------------------------------------------------------------------
class Swap(Instrument):
    """Exchange of legs; ``payer[i]`` is -1 for a paid leg, +1 for a received one."""

    def __init__(self, legs, payer):
        super().__init__()
        require(len(legs) == len(payer),
                f"{len(legs)} legs but {len(payer)} payer flags given")
        self.legs = [list(leg) for leg in legs]
        self.payer = [float(p) for p in payer]
        for leg in self.legs:
            self.register_with(*leg)

    def maturity_date(self) -> dt.date:
        return max(cf.date for leg in self.legs for cf in leg)

    def leg_npv(self, i: int) -> float:
        return float(self.results().additional_results["leg_npv"][i])

    def leg_bps(self, i: int) -> float:
        return float(self.results().additional_results["leg_bps"][i])


def _leg_start_date(leg) -> dt.date:
    return min(cf.accrual_start if isinstance(cf, Coupon) else cf.date for cf in leg)


class DiscountingSwapEngine(PricingEngine):
    """Discounts every leg on one curve.

    Flows on or before the curve's reference date are excluded.
    """

    def __init__(self, discount_curve: YieldTermStructure):
        super().__init__()
        self.discount_curve = discount_curve
        self.register_with(discount_curve)

    def calculate(self, swap: Swap) -> Results:
        curve = self.discount_curve
        ref = curve.reference_date
        npvs, bps, start_discounts, end_discounts = [], [], [], []
        for leg, payer in zip(swap.legs, swap.payer):
            npvs.append(payer * leg_npv(leg, curve, ref, ref))
            bps.append(payer * leg_bps(leg, curve, ref, ref))
            start = _leg_start_date(leg)
            end = max(cf.date for cf in leg)
            start_discounts.append(curve.discount(start) if start >= ref else None)
            end_discounts.append(curve.discount(end) if end >= ref else None)
        return Results(value=sum(npvs), additional_results={
            "leg_npv": npvs,
            "leg_bps": bps,
            "start_discounts": start_discounts,
            "end_discounts": end_discounts,
            "npv_date_discount": curve.discount(ref),
        })


class AssetSwap(Swap):
    """
    Bond leg exchanged for a floating leg plus ``spread``.

    Parameters
    ----------
    pay_bond_coupon : bool
        True if the bond flows are paid and the floating leg received.
    bond : Bond
    bond_clean_price : float
        Clean price per 100 at the floating schedule's start date.
    float_schedule : Schedule, optional
        Must end on the bond's maturity.  Default: 6-month periods from
        the bond's settlement date.
    spread : float
        Spread over the floating fixing.
    float_day_counter : DayCounter, optional
        Accrual convention of the floating leg (default: the curve's).
    forwarding_curve : YieldTermStructure
        Curve the floating fixings are forecast from.
    par_asset_swap : bool
        Par swap (upfront ``dirty - 100`` and par back payment) or market
        swap (floating notional scaled by the dirty price).
    """

    def __init__(self, pay_bond_coupon: bool, bond: Bond, bond_clean_price: float,
                 float_schedule: Schedule | None, spread: float,
                 float_day_counter: DayCounter | None,
                 forwarding_curve: YieldTermStructure, par_asset_swap: bool = True):
        if float_schedule is None:
            start = bond.settlement_date(forwarding_curve.reference_date)
            float_schedule = Schedule(start, bond.maturity_date(), 6)
        require(float_schedule.end_date() == bond.maturity_date(),
                f"schedule end date ({float_schedule.end_date()}) must equal "
                f"the bond maturity date ({bond.maturity_date()})")

        self.bond = bond
        self.bond_clean_price = float(bond_clean_price)
        self.spread = float(spread)
        self.par_swap = bool(par_asset_swap)
        self.non_par_repayment = 100.0
        self.upfront_date = float_schedule.start_date()
        final_date = float_schedule.end_date()

        dirty_price = self.bond_clean_price + bond.accrued_amount(self.upfront_date)
        notional = bond.notional(self.upfront_date)
        if not self.par_swap:
            # the bond is bought for its full price; scale the floating notional to match
            notional *= dirty_price / 100.0

        floating: list = floating_rate_leg(float_schedule, notional, forwarding_curve,
                                           float_day_counter, spreads=self.spread)
        bond_leg = [cf for cf in bond.cashflows if not cf.has_occurred(self.upfront_date)]
        require(len(bond_leg) > 0, "empty bond leg to start with")

        if self.par_swap:
            upfront = (dirty_price - 100.0) / 100.0 * notional
            floating.insert(0, SimpleCashFlow(upfront, self.upfront_date))
        floating.append(SimpleCashFlow(notional, final_date))

        payer = [-1.0, 1.0] if pay_bond_coupon else [1.0, -1.0]
        super().__init__([bond_leg, floating], payer)
        logger.debug("AssetSwap: %s swap, notional %.6g, %d bond flows, %d floating flows",
                     "par" if self.par_swap else "market", notional,
                     len(bond_leg), len(floating))

    @property
    def bond_leg(self) -> list:
        return self.legs[0]

    @property
    def floating_leg(self) -> list:
        return self.legs[1]

    def pay_bond_coupon(self) -> bool:
        return self.payer[0] == -1.0

    def floating_leg_npv(self) -> float:
        return self.leg_npv(1)

    def floating_leg_bps(self) -> float:
        return self.leg_bps(1)

    def fair_spread(self) -> float:
        """Spread making the swap worth zero."""
        bps = self.floating_leg_bps()
        require(bps != 0.0, "fair spread not available: zero floating-leg BPS")
        return self.spread - self.npv() / bps * BASIS_POINT

    def fair_clean_price(self) -> float:
        """Bond clean price making the swap worth zero."""
        res = self.results().additional_results
        notional = self.bond.notional(self.upfront_date)
        if self.par_swap:
            start_discount = res["start_discounts"][1]
            require(start_discount is not None, "fair clean price not available for seasoned deal")
            return (self.bond_clean_price - self.payer[1] * self.npv() * res["npv_date_discount"]
                    / start_discount / (notional / 100.0))
        accrued = self.bond.accrued_amount(self.upfront_date)
        dirty_price = self.bond_clean_price + accrued
        fair_dirty = -self.leg_npv(0) / self.leg_npv(1) * dirty_price
        return fair_dirty - accrued

    def fair_non_par_repayment(self) -> float:
        res = self.results().additional_results
        end_discount = res["end_discounts"][1]
        require(end_discount is not None, "fair non-par repayment not available for expired leg")
        notional = self.bond.notional(self.upfront_date)
        return (self.non_par_repayment - self.payer[0] * self.npv() * res["npv_date_discount"]
                / end_discount / (notional / 100.0))
