"""Tests for catastrophe bonds, event sets and notional-risk policies."""

import datetime as dt
import math

import pytest

from pricekit import (
    FlatForward, Actual360, Schedule, Bond, Redemption, floating_rate_leg,
    DiscountingBondEngine, EventSet, BetaRisk, NoOffset, DigitalNotionalRisk,
    ProportionalNotionalRisk, FixedRateCatBond, FloatingCatBond, MonteCarloCatBondEngine,
    FixedRateBond, SIMPLE, ConfigurationError,
)
from pricekit.catbonds import NotionalPath
from pricekit.settings import CAT_BOND_MAX_PATHS

TODAY = dt.date(2004, 11, 22)
ISSUE = dt.date(2004, 11, 30)
MATURITY = dt.date(2008, 11, 30)
FACE = 1_000_000.0

EVENTS = [(dt.date(2012, 2, 1), 100.0), (dt.date(2013, 7, 1), 150.0), (dt.date(2014, 1, 5), 50.0)]
EVENTS_START, EVENTS_END = dt.date(2011, 1, 1), dt.date(2014, 12, 31)


@pytest.fixture
def discount_curve():
    return FlatForward(TODAY, 0.025, Actual360())


@pytest.fixture
def forwarding_curve():
    return FlatForward(TODAY, 0.03, Actual360())


def _schedule():
    return Schedule(ISSUE, MATURITY, 6)


def _paths(simulation):
    out, path = [], []
    while simulation.next_path(path):
        out.append(list(path))
    assert path == []
    return out


class TestEventSetSimulation:
    def test_one_year_windows(self):
        sim = EventSet(EVENTS, EVENTS_START, EVENTS_END).new_simulation(
            dt.date(2015, 1, 1), dt.date(2015, 12, 31))
        assert _paths(sim) == [
            [],
            [(dt.date(2015, 2, 1), 100.0)],
            [(dt.date(2015, 7, 1), 150.0)],
            [(dt.date(2015, 1, 5), 50.0)],
        ]

    def test_windows_longer_than_a_year(self):
        sim = EventSet(EVENTS, EVENTS_START, EVENTS_END).new_simulation(
            dt.date(2015, 1, 2), dt.date(2016, 1, 5))
        assert _paths(sim) == [
            [],
            [(dt.date(2015, 7, 1), 150.0), (dt.date(2016, 1, 5), 50.0)],
        ]

    def test_no_events(self):
        sim = EventSet([], EVENTS_START, EVENTS_END).new_simulation(
            dt.date(2015, 1, 2), dt.date(2016, 1, 5))
        assert _paths(sim) == [[], []]

    def test_events_sorted_on_construction(self):
        events = EventSet(list(reversed(EVENTS)), EVENTS_START, EVENTS_END).events
        assert [d for d, _ in events] == sorted(d for d, _ in EVENTS)

    def test_invalid_window(self):
        with pytest.raises(ConfigurationError):
            EventSet(EVENTS, EVENTS_END, EVENTS_START)


class TestBetaRisk:
    def test_paths_capped(self):
        sim = BetaRisk(1000.0, 10.0, 100.0, 50.0, seed=3).new_simulation(ISSUE, MATURITY)
        paths = _paths(sim)
        assert len(paths) == CAT_BOND_MAX_PATHS
        for path in paths:
            for d, loss in path:
                assert ISSUE <= d <= MATURITY
                assert 0.0 <= loss <= 1000.0

    def test_event_frequency_and_mean_loss(self):
        sim = BetaRisk(1000.0, 10.0, 100.0, 50.0, seed=11, max_paths=20_000).new_simulation(
            ISSUE, MATURITY)
        paths = _paths(sim)
        years = (MATURITY - ISSUE).days / 365.25
        hit = sum(1 for p in paths if p) / len(paths)
        assert abs(hit - (1.0 - math.exp(-years / 10.0))) < 0.02
        losses = [loss for p in paths for _, loss in p]
        assert abs(sum(losses) / len(losses) - 100.0) < 5.0

    def test_seed_reproducible(self):
        risk = BetaRisk(1000.0, 5.0, 200.0, 100.0, seed=5, max_paths=50)
        a = _paths(risk.new_simulation(ISSUE, MATURITY))
        b = _paths(risk.new_simulation(ISSUE, MATURITY))
        assert a == b

    def test_impossible_moments(self):
        with pytest.raises(ConfigurationError):
            BetaRisk(1000.0, 10.0, 1200.0, 10.0)
        with pytest.raises(ConfigurationError):
            BetaRisk(1000.0, 10.0, 500.0, 600.0)


class TestNotionalRisk:
    def test_notional_path_step_function(self):
        path = NotionalPath()
        assert path.notional_rate(TODAY) == 1.0
        path.add_reduction(dt.date(2006, 1, 1), 0.5)
        assert path.notional_rate(dt.date(2005, 12, 31)) == 1.0
        assert path.notional_rate(dt.date(2006, 1, 1)) == 0.5
        assert path.loss() == 0.5
        with pytest.raises(ConfigurationError):
            path.add_reduction(dt.date(2005, 1, 1), 0.2)

    def test_digital_threshold(self):
        path = NotionalPath()
        risk = DigitalNotionalRisk(NoOffset(), 100.0)
        risk.update_path([(dt.date(2006, 1, 1), 99.0)], path)
        assert path.loss() == 0.0
        risk.update_path([(dt.date(2006, 1, 1), 99.0), (dt.date(2007, 1, 1), 100.0)], path)
        assert path.loss() == 1.0
        assert path.notional_rate(dt.date(2006, 6, 1)) == 1.0

    def test_proportional_accumulates(self):
        path = NotionalPath()
        risk = ProportionalNotionalRisk(NoOffset(), 500.0, 1500.0)
        risk.update_path([(dt.date(2006, 1, 1), 400.0), (dt.date(2007, 1, 1), 350.0)], path)
        assert path.notional_rate(dt.date(2006, 6, 1)) == 1.0
        assert path.notional_rate(dt.date(2007, 6, 1)) == pytest.approx(0.75)
        risk.update_path([(dt.date(2006, 1, 1), 2000.0)], path)
        assert path.loss() == 1.0

    def test_proportional_bounds(self):
        with pytest.raises(ConfigurationError):
            ProportionalNotionalRisk(NoOffset(), 1500.0, 500.0)


class TestCatBondPricing:
    def _fixed(self, risk, discount_curve, notional_risk):
        bond = FixedRateCatBond(1, FACE, _schedule(), 0.05, Actual360(), notional_risk,
                                issue_date=ISSUE)
        bond.set_pricing_engine(MonteCarloCatBondEngine(risk, discount_curve))
        return bond

    def test_doom(self, discount_curve):
        risk = EventSet([(ISSUE, 1000.0)], ISSUE, MATURITY)
        bond = self._fixed(risk, discount_curve, DigitalNotionalRisk(NoOffset(), 100.0))
        assert bond.clean_price() == 0.0
        assert bond.npv() == 0.0
        assert bond.loss_probability() == 1.0
        assert bond.exhaustion_probability() == 1.0
        assert bond.expected_loss() == 1.0

    def test_once_in_ten_digital(self, discount_curve):
        risk = EventSet([(MATURITY, 1000.0)], ISSUE, dt.date(2044, 11, 30))
        bond = self._fixed(risk, discount_curve, DigitalNotionalRisk(NoOffset(), 100.0))
        assert bond.loss_probability() == pytest.approx(0.1)
        assert bond.exhaustion_probability() == pytest.approx(0.1)
        assert bond.expected_loss() == pytest.approx(0.1)
        assert bond.result("paths") == 10

    def test_once_in_ten_proportional(self, discount_curve):
        risk = EventSet([(MATURITY, 1000.0)], ISSUE, dt.date(2044, 11, 30))
        bond = self._fixed(risk, discount_curve, ProportionalNotionalRisk(NoOffset(), 500.0, 1500.0))
        assert bond.loss_probability() == pytest.approx(0.1)
        assert bond.exhaustion_probability() == 0.0
        assert bond.expected_loss() == pytest.approx(0.05)

    def _floating_pair(self, notional_risk):
        # forecast on 2.5%, discount on 3%
        forecast = FlatForward(TODAY, 0.025, Actual360())
        discount = FlatForward(TODAY, 0.03, Actual360())
        doom = EventSet([(MATURITY, 1000.0)], ISSUE, dt.date(2044, 11, 30))
        no_risk = EventSet([], dt.date(2000, 1, 1), dt.date(2010, 12, 31))
        risky = FloatingCatBond(1, FACE, _schedule(), forecast, Actual360(), notional_risk,
                                issue_date=ISSUE)
        riskless = FloatingCatBond(1, FACE, _schedule(), forecast, Actual360(), notional_risk,
                                   issue_date=ISSUE)
        risky.set_pricing_engine(MonteCarloCatBondEngine(doom, discount))
        riskless.set_pricing_engine(MonteCarloCatBondEngine(no_risk, discount))
        return risky, riskless

    def test_doom_once_in_ten_wipes_out_one_path(self):
        risky, riskless = self._floating_pair(DigitalNotionalRisk(NoOffset(), 100.0))
        assert risky.loss_probability() == pytest.approx(0.1)
        assert riskless.loss_probability() == 0.0
        assert riskless.expected_loss() == 0.0
        assert abs(risky.clean_price() - 0.9 * riskless.clean_price()) < 1e-6
        assert risky.npv() == pytest.approx(0.9 * riskless.npv(), rel=1e-12)
        dc = Actual360()
        assert (riskless.bond_yield(riskless.clean_price(), dc, SIMPLE)
                < risky.bond_yield(risky.clean_price(), dc, SIMPLE))

    def test_doom_once_in_ten_proportional_halves_one_path(self):
        risky, riskless = self._floating_pair(ProportionalNotionalRisk(NoOffset(), 500.0, 1500.0))
        assert risky.exhaustion_probability() == 0.0
        assert risky.expected_loss() == pytest.approx(0.05)
        assert abs(risky.clean_price() - 0.95 * riskless.clean_price()) < 1e-6
        dc = Actual360()
        assert (riskless.bond_yield(riskless.clean_price(), dc, SIMPLE)
                < risky.bond_yield(risky.clean_price(), dc, SIMPLE))

    def test_risky_bond_cheaper_than_risk_free(self, discount_curve):
        risk = EventSet([(MATURITY, 1000.0)], ISSUE, dt.date(2044, 11, 30))
        risky = self._fixed(risk, discount_curve, DigitalNotionalRisk(NoOffset(), 100.0))
        riskless = FixedRateBond(1, FACE, _schedule(), 0.05, Actual360(), issue_date=ISSUE)
        riskless.set_pricing_engine(DiscountingBondEngine(discount_curve))

        assert risky.clean_price() < riskless.clean_price()
        assert risky.npv() < riskless.npv()
        risky_yield = risky.bond_yield(risky.clean_price(), Actual360())
        riskless_yield = riskless.bond_yield(riskless.clean_price(), Actual360())
        assert risky_yield > riskless_yield

    def test_no_events_match_plain_floating_bond(self, discount_curve, forwarding_curve):
        risk = EventSet([], dt.date(2000, 1, 1), dt.date(2010, 12, 31))
        cat = FloatingCatBond(1, FACE, _schedule(), forwarding_curve, Actual360(),
                              DigitalNotionalRisk(NoOffset(), 100.0), issue_date=ISSUE)
        cat.set_pricing_engine(MonteCarloCatBondEngine(risk, discount_curve))

        leg = floating_rate_leg(_schedule(), FACE, forwarding_curve, Actual360())
        leg.append(Redemption(FACE, MATURITY))
        plain = Bond(1, ISSUE, leg)
        plain.set_pricing_engine(DiscountingBondEngine(discount_curve))

        assert cat.npv() == pytest.approx(plain.npv(), rel=1e-12)
        assert cat.clean_price() == pytest.approx(plain.clean_price(), rel=1e-12)
        assert cat.loss_probability() == 0.0

    def test_beta_risk_between_bounds(self, discount_curve):
        risk = BetaRisk(1000.0, 10.0, 100.0, 50.0, seed=42, max_paths=2000)
        bond = self._fixed(risk, discount_curve, ProportionalNotionalRisk(NoOffset(), 50.0, 300.0))
        riskless = FixedRateBond(1, FACE, _schedule(), 0.05, Actual360(), issue_date=ISSUE)
        riskless.set_pricing_engine(DiscountingBondEngine(discount_curve))
        assert 0.0 < bond.clean_price() < riskless.clean_price()
        assert 0.0 < bond.expected_loss() < bond.loss_probability() <= 1.0

    def test_engine_needs_cat_bond(self, discount_curve):
        riskless = FixedRateBond(1, FACE, _schedule(), 0.05, Actual360(), issue_date=ISSUE)
        riskless.set_pricing_engine(MonteCarloCatBondEngine(EventSet([], ISSUE, MATURITY),
                                                            discount_curve))
        with pytest.raises(ConfigurationError):
            riskless.npv()
