# catbonds.py
# Catastrophe bonds: loss-event generators, notional-reduction policies,
# cat-bond instruments and a Monte Carlo engine over event paths.
#
# A cat-risk model hands out paths of (date, loss) events over the bond's
# life.  A notional-risk policy turns each path into a step function of
# the surviving notional fraction, and the engine averages over paths the
# risk-free NPV scaled by the notional that survives the path.

from __future__ import annotations
import bisect
import datetime as dt
import logging

import numpy as np

from .bonds import Bond
from .cashflows import Redemption, fixed_rate_leg, floating_rate_leg, leg_npv
from .core import Results
from .dates import DayCounter, Schedule, add_years
from .errors import ConfigurationError, require
from .instruments import PricingEngine
from .settings import CAT_BOND_MAX_PATHS
from .termstructures import YieldTermStructure

logger = logging.getLogger(__name__)

__all__ = [
    "CatRisk", "CatSimulation",
    "EventSet", "EventSetSimulation",
    "BetaRisk", "BetaRiskSimulation",
    "EventPaymentOffset", "NoOffset",
    "NotionalPath", "NotionalRisk", "DigitalNotionalRisk", "ProportionalNotionalRisk",
    "CatBond", "FixedRateCatBond", "FloatingCatBond",
    "MonteCarloCatBondEngine",
]


def _replace_year(d: dt.date, year: int) -> dt.date:
    return add_years(d, year - d.year)


# ---------------------------------------------------------------------------
# Loss-event generators
# ---------------------------------------------------------------------------
class CatSimulation:
    """Hands out event paths for the period [start, end]."""

    def __init__(self, start: dt.date, end: dt.date):
        require(start <= end, f"simulation start {start} after end {end}")
        self.start = start
        self.end = end

    def next_path(self, path: list) -> bool:
        """Refill ``path`` with the next list of (date, loss) events.

        Returns False, leaving ``path`` empty, once no more paths exist.
        """
        raise NotImplementedError


class CatRisk:
    def new_simulation(self, start: dt.date, end: dt.date) -> CatSimulation:
        raise NotImplementedError


class EventSetSimulation(CatSimulation):
    """
    Replays a historical event set, one window of the bond's length at
    a time.

    Each window keeps the bond's start day and month.  Events inside the
    window are shifted by whole years so that they fall in [start, end].
    """

    def __init__(self, events, events_start: dt.date, events_end: dt.date,
                 start: dt.date, end: dt.date):
        super().__init__(start, end)
        self.events = events
        self.events_start = events_start
        self.events_end = events_end
        self.years = end.year - start.year

        starts_later = (events_start.month, events_start.day) > (start.month, start.day)
        self.period_start = _replace_year(start, events_start.year + (1 if starts_later else 0))
        self.period_end = _replace_year(end, self.period_start.year + self.years)
        self._i = 0
        self._skip_before(self.period_start)

    def _skip_before(self, d: dt.date) -> None:
        while self._i < len(self.events) and self.events[self._i][0] < d:
            self._i += 1

    def next_path(self, path: list) -> bool:
        path.clear()
        if self.period_end > self.events_end:
            return False

        self._skip_before(self.period_start)
        shift = self.start.year - self.period_start.year
        while self._i < len(self.events) and self.events[self._i][0] <= self.period_end:
            date, loss = self.events[self._i]
            path.append((add_years(date, shift), loss))
            self._i += 1

        # roll to the first anniversary at or after the current period end
        step = self.years + 1 if add_years(self.start, self.years) < self.end else self.years
        step = max(step, 1)
        self.period_start = add_years(self.period_start, step)
        self.period_end = add_years(self.period_end, step)
        return True


class EventSet(CatRisk):
    """
    Historical (or externally simulated) catastrophe events.

    Parameters
    ----------
    events : list of (date, loss)
        Sorted by date on construction.
    events_start, events_end : date
        Window covered by the event data.
    """

    def __init__(self, events, events_start: dt.date, events_end: dt.date):
        require(events_start < events_end,
                f"events start {events_start} must precede events end {events_end}")
        self.events = sorted(((d, float(loss)) for d, loss in events), key=lambda e: e[0])
        self.events_start = events_start
        self.events_end = events_end

    def new_simulation(self, start: dt.date, end: dt.date) -> EventSetSimulation:
        return EventSetSimulation(self.events, self.events_start, self.events_end, start, end)


class BetaRiskSimulation(CatSimulation):
    """Poisson event arrivals with Beta-distributed losses."""

    def __init__(self, start: dt.date, end: dt.date, max_loss: float, intensity: float,
                 alpha: float, beta: float, max_paths: int, seed: int | None):
        super().__init__(start, end)
        self.max_loss = max_loss
        self.intensity = intensity
        self.alpha = alpha
        self.beta = beta
        self.max_paths = int(max_paths)
        self.day_count = (end - start).days
        self.rng = np.random.default_rng(seed)
        self.paths_drawn = 0

    def _loss(self) -> float:
        return float(self.rng.beta(self.alpha, self.beta)) * self.max_loss

    def next_path(self, path: list) -> bool:
        path.clear()
        if self.paths_drawn >= self.max_paths:
            return False
        self.paths_drawn += 1
        t = self.rng.exponential(1.0 / self.intensity)
        while True:
            event_date = self.start + dt.timedelta(days=int(round(t * 365.25)))
            if event_date > self.end:
                break
            path.append((event_date, self._loss()))
            t += self.rng.exponential(1.0 / self.intensity)
        return True


class BetaRisk(CatRisk):
    """
    Parametric cat risk: on average one event every ``years`` years,
    losses Beta-distributed on [0, max_loss] with the given moments.
    """

    def __init__(self, max_loss: float, years: float, mean: float, std_dev: float,
                 seed: int | None = None, max_paths: int = CAT_BOND_MAX_PATHS):
        require(max_loss > 0.0 and years > 0.0, "max loss and years must be positive")
        require(mean < max_loss,
                f"mean {mean} of the loss distribution must be less than the maximum loss {max_loss}")
        normalized_mean = mean / max_loss
        normalized_var = std_dev * std_dev / (max_loss * max_loss)
        require(normalized_var < normalized_mean * (1.0 - normalized_mean),
                f"standard deviation {std_dev} is impossible for a Beta distribution "
                f"with mean {mean}")
        nu = normalized_mean * (1.0 - normalized_mean) / normalized_var - 1.0
        self.max_loss = float(max_loss)
        self.intensity = 1.0 / years
        self.alpha = normalized_mean * nu
        self.beta = (1.0 - normalized_mean) * nu
        self.seed = seed
        self.max_paths = int(max_paths)

    def new_simulation(self, start: dt.date, end: dt.date) -> BetaRiskSimulation:
        return BetaRiskSimulation(start, end, self.max_loss, self.intensity, self.alpha,
                                  self.beta, self.max_paths, self.seed)


# ---------------------------------------------------------------------------
# Notional risk
# ---------------------------------------------------------------------------
class EventPaymentOffset:
    def payment_date(self, event_date: dt.date) -> dt.date:
        raise NotImplementedError


class NoOffset(EventPaymentOffset):
    """Reductions take effect on the event date."""

    def payment_date(self, event_date: dt.date) -> dt.date:
        return event_date


class NotionalPath:
    """Step function of the surviving notional fraction, 1.0 until reduced."""

    def __init__(self):
        self._dates: list[dt.date] = []
        self._rates: list[float] = []

    def notional_rate(self, d: dt.date) -> float:
        """Fraction applying to a flow paid on ``d``; reductions on ``d`` count."""
        i = bisect.bisect_right(self._dates, d)
        return self._rates[i - 1] if i > 0 else 1.0

    def reset(self) -> None:
        self._dates.clear()
        self._rates.clear()

    def add_reduction(self, d: dt.date, new_rate: float) -> None:
        require(not self._dates or d >= self._dates[-1],
                "reductions must be added in date order")
        self._dates.append(d)
        self._rates.append(float(new_rate))

    def loss(self) -> float:
        return 1.0 - (self._rates[-1] if self._rates else 1.0)


class NotionalRisk:
    def __init__(self, payment_offset: EventPaymentOffset | None = None):
        self.payment_offset = payment_offset or NoOffset()

    def update_path(self, events, path: NotionalPath) -> None:
        raise NotImplementedError


class DigitalNotionalRisk(NotionalRisk):
    """Whole notional lost on the first event with loss >= ``threshold``."""

    def __init__(self, payment_offset: EventPaymentOffset | None, threshold: float):
        super().__init__(payment_offset)
        self.threshold = float(threshold)

    def update_path(self, events, path: NotionalPath) -> None:
        path.reset()
        for date, loss in events:
            if loss >= self.threshold:
                path.add_reduction(self.payment_offset.payment_date(date), 0.0)


class ProportionalNotionalRisk(NotionalRisk):
    """
    Notional reduced linearly as cumulative losses go from ``attachment``
    to ``exhaustion``.
    """

    def __init__(self, payment_offset: EventPaymentOffset | None, attachment: float,
                 exhaustion: float):
        super().__init__(payment_offset)
        require(attachment < exhaustion,
                f"attachment {attachment} must be less than exhaustion {exhaustion}")
        self.attachment = float(attachment)
        self.exhaustion = float(exhaustion)

    def update_path(self, events, path: NotionalPath) -> None:
        path.reset()
        losses = 0.0
        notional = 1.0
        for date, loss in events:
            losses += loss
            if losses > self.attachment and notional > 0.0:
                notional = max(0.0, (self.exhaustion - losses) / (self.exhaustion - self.attachment))
                path.add_reduction(self.payment_offset.payment_date(date), notional)


# ---------------------------------------------------------------------------
# Instruments
# ---------------------------------------------------------------------------
class CatBond(Bond):
    """Bond whose notional is exposed to catastrophe losses."""

    def __init__(self, settlement_days: int, issue_date: dt.date | None, cashflows,
                 notional_risk: NotionalRisk):
        super().__init__(settlement_days, issue_date, cashflows)
        if not isinstance(notional_risk, NotionalRisk):
            raise ConfigurationError("a NotionalRisk policy is required")
        self.notional_risk = notional_risk

    def expired_results(self) -> Results:
        results = super().expired_results()
        results.additional_results.update(loss_probability=0.0, exhaustion_probability=0.0,
                                          expected_loss=0.0, paths=0)
        return results

    def start_date(self) -> dt.date:
        if self.issue_date is not None:
            return self.issue_date
        return min(getattr(cf, "accrual_start", cf.date) for cf in self.cashflows)

    def loss_probability(self) -> float:
        return float(self.result("loss_probability"))

    def exhaustion_probability(self) -> float:
        return float(self.result("exhaustion_probability"))

    def expected_loss(self) -> float:
        return float(self.result("expected_loss"))


class FixedRateCatBond(CatBond):
    def __init__(self, settlement_days: int, face_amount: float, schedule: Schedule,
                 coupons, day_counter: DayCounter, notional_risk: NotionalRisk,
                 redemption: float = 100.0, issue_date: dt.date | None = None):
        leg = fixed_rate_leg(schedule, face_amount, coupons, day_counter)
        leg.append(Redemption(face_amount * redemption / 100.0, schedule.end_date()))
        super().__init__(settlement_days, issue_date or schedule.start_date(), leg, notional_risk)
        self.face_amount = float(face_amount)


class FloatingCatBond(CatBond):
    """Cat bond paying ``gearing * L + spread`` on the surviving notional."""

    def __init__(self, settlement_days: int, face_amount: float, schedule: Schedule,
                 forwarding_curve: YieldTermStructure, day_counter: DayCounter | None,
                 notional_risk: NotionalRisk, fixing_days: int = 0, gearings=1.0,
                 spreads=0.0, redemption: float = 100.0, issue_date: dt.date | None = None):
        leg = floating_rate_leg(schedule, face_amount, forwarding_curve, day_counter,
                                gearings, spreads, fixing_days)
        leg.append(Redemption(face_amount * redemption / 100.0, schedule.end_date()))
        super().__init__(settlement_days, issue_date or schedule.start_date(), leg, notional_risk)
        self.face_amount = float(face_amount)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------
class MonteCarloCatBondEngine(PricingEngine):
    """
    Averages the bond's risky NPV over the paths of ``cat_risk``.

    A path values the whole bond at its risk-free NPV times the notional
    fraction surviving at the end of the path, so a path that exhausts
    the notional is worth nothing.  Loss statistics are path
    frequencies: a path counts as a loss if any notional is lost and as
    exhausted if all of it is.
    """

    def __init__(self, cat_risk: CatRisk, discount_curve: YieldTermStructure):
        super().__init__()
        self.cat_risk = cat_risk
        self.discount_curve = discount_curve
        self.register_with(discount_curve)

    def evaluation_date(self):
        return self.discount_curve.reference_date

    def _npv(self, bond: CatBond, settlement: dt.date, npv_date: dt.date):
        cashflows = bond.cashflows
        effective = max(bond.start_date(), settlement)
        simulation = self.cat_risk.new_simulation(effective, cashflows[-1].date)
        events: list = []
        notional_path = NotionalPath()
        risk_free_npv = leg_npv(cashflows, self.discount_curve, settlement)

        total = 0.0
        n_paths = n_loss = n_exhausted = 0
        expected_loss = 0.0
        while simulation.next_path(events):
            bond.notional_risk.update_path(events, notional_path)
            loss = notional_path.loss()
            total += risk_free_npv * (1.0 - loss)
            if loss > 0.0:
                n_loss += 1
                if loss == 1.0:
                    n_exhausted += 1
                expected_loss += loss
            n_paths += 1
        if n_paths == 0:
            raise ConfigurationError("the cat-risk model produced no paths for the bond's life")
        stats = {
            "loss_probability": n_loss / n_paths,
            "exhaustion_probability": n_exhausted / n_paths,
            "expected_loss": expected_loss / n_paths,
            "paths": n_paths,
        }
        return total / (n_paths * self.discount_curve.discount(npv_date)), stats

    def calculate(self, bond: CatBond) -> Results:
        if not isinstance(bond, CatBond):
            raise ConfigurationError("MonteCarloCatBondEngine needs a CatBond")
        valuation = self.discount_curve.reference_date
        value, stats = self._npv(bond, valuation, valuation)
        settlement = max(bond.settlement_date(valuation), valuation)
        settlement_value, _ = self._npv(bond, settlement, settlement)
        logger.debug("MonteCarloCatBondEngine: %d paths, loss probability %.4g",
                     stats["paths"], stats["loss_probability"])
        stats.update(settlement_value=settlement_value, settlement_date=settlement,
                     valuation_date=valuation)
        return Results(value=value, additional_results=stats)
