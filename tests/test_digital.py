"""Tests for digital coupons replicated with call/put spreads."""

import datetime as dt
import math

import pytest
from scipy.stats import norm

from pricekit import (
    SimpleQuote, FlatForward, BlackConstantVol, Actual360, Actual365Fixed, add_years,
    FloatingRateCoupon, BlackIborCouponPricer, DigitalCoupon, DigitalReplication,
    Position, Replication, ConfigurationError,
)

TODAY = dt.date(2011, 5, 16)
NOMINAL = 1_000_000.0
VOLS = (0.05, 0.15, 0.30)
STRIKES = (0.01, 0.02, 0.03, 0.04, 0.05, 0.06, 0.07)
CASH = 0.01


@pytest.fixture
def curve():
    return FlatForward(TODAY, 0.05, Actual365Fixed())


def _coupon(curve, k, gearing=1.0, spread=0.0):
    start = add_years(TODAY, k + 1)
    end = add_years(TODAY, k + 2)
    return FloatingRateCoupon(end, NOMINAL, start, end, curve, gearing=gearing, spread=spread)


def _pricer(vol):
    return BlackIborCouponPricer(BlackConstantVol(TODAY, vol, Actual360()))


def _digital(underlying, vol, **kwargs):
    digital = DigitalCoupon(underlying, **kwargs)
    digital.set_pricer(_pricer(vol))
    return digital


class TestCallPutParity:
    @pytest.mark.parametrize("vol", VOLS)
    def test_cash_or_nothing(self, curve, vol):
        for k in range(10):
            for strike in STRIKES:
                c = _coupon(curve, k)
                digital = _digital(c, vol, call_strike=strike, call_digital_payoff=CASH,
                                   put_strike=strike, put_digital_payoff=CASH, naked_option=True)
                expected = NOMINAL * c.accrual_period() * curve.discount(c.date) * CASH
                calculated = digital.price(curve)
                assert abs(calculated - expected) < 1e-8, (
                    f"k={k} K={strike} vol={vol}: {calculated} vs {expected}"
                )

    @pytest.mark.parametrize("vol", VOLS)
    def test_asset_or_nothing(self, curve, vol):
        for k in range(10):
            for strike in STRIKES:
                c = _coupon(curve, k)
                digital = _digital(c, vol, call_strike=strike, put_strike=strike,
                                   naked_option=True)
                expected = (NOMINAL * c.accrual_period() * curve.discount(c.date)
                            * c.index_fixing())
                calculated = digital.price(curve)
                assert abs(calculated - expected) < 1e-7, (
                    f"k={k} K={strike} vol={vol}: {calculated} vs {expected}"
                )


class TestReplication:
    @pytest.mark.parametrize("position", list(Position))
    def test_sub_central_super_ordering(self, curve, position):
        for vol in VOLS:
            for strike in STRIKES:
                prices = []
                for kind in (Replication.Sub, Replication.Central, Replication.Super):
                    digital = _digital(_coupon(curve, 3), vol, call_strike=strike,
                                       call_position=position, call_digital_payoff=CASH,
                                       replication=DigitalReplication(kind, 1e-4))
                    prices.append(digital.price(curve))
                sub, central, sup = prices
                assert sub <= central + 1e-9 and central <= sup + 1e-9, (
                    f"{position} K={strike} vol={vol}: {prices}"
                )

    def test_short_put_ordering(self, curve):
        prices = []
        for kind in (Replication.Sub, Replication.Central, Replication.Super):
            digital = _digital(_coupon(curve, 2), 0.15, put_strike=0.04,
                               put_position=Position.Short, put_digital_payoff=CASH,
                               replication=DigitalReplication(kind, 1e-4))
            prices.append(digital.price(curve))
        assert prices[0] <= prices[1] + 1e-9 <= prices[2] + 2e-9

    def test_tight_gap_matches_black_digital(self, curve):
        gearing, spread = 3.0, -0.0002
        for vol in VOLS:
            for strike in STRIKES:
                c = _coupon(curve, 4, gearing, spread)
                digital = _digital(c, vol, call_strike=strike, call_digital_payoff=CASH,
                                   replication=DigitalReplication(Replication.Central, 1e-8),
                                   naked_option=True)
                eff_strike = (strike - spread) / gearing
                fwd = c.adjusted_fixing()
                stdev = vol * math.sqrt(Actual360().year_fraction(TODAY, c.fixing_date()))
                d2 = math.log(fwd / eff_strike) / stdev - 0.5 * stdev
                expected = (NOMINAL * c.accrual_period() * curve.discount(c.date)
                            * CASH * norm.cdf(d2))
                assert abs(digital.price(curve) - expected) < 1e-4, (
                    f"K={strike} vol={vol}: {digital.price(curve)} vs {expected}"
                )

    def test_invalid_gap(self):
        with pytest.raises(ConfigurationError):
            DigitalReplication(Replication.Central, 0.0)


class TestDigitalCoupon:
    def test_not_naked_adds_underlying(self, curve):
        c = _coupon(curve, 1)
        naked = _digital(c, 0.15, call_strike=0.04, call_digital_payoff=CASH, naked_option=True)
        dressed = _digital(c, 0.15, call_strike=0.04, call_digital_payoff=CASH)
        assert dressed.rate() == pytest.approx(naked.rate() + c.rate(), abs=1e-15)

    def test_short_position_subtracts(self, curve):
        c = _coupon(curve, 1)
        long_ = _digital(c, 0.15, call_strike=0.04, call_digital_payoff=CASH, naked_option=True)
        short = _digital(c, 0.15, call_strike=0.04, call_digital_payoff=CASH,
                         call_position=Position.Short, naked_option=True)
        assert short.rate() == pytest.approx(-long_.rate(), rel=1e-12)

    def test_fixed_in_the_past_pays_intrinsic(self, curve):
        start = TODAY - dt.timedelta(days=30)
        end = add_years(start, 1)
        c = FloatingRateCoupon(end, NOMINAL, start, end, curve)
        digital = _digital(c, 0.15, call_strike=0.01, call_digital_payoff=CASH)
        assert digital.rate() == pytest.approx(c.rate() + CASH)
        out = _digital(c, 0.15, call_strike=0.20, call_digital_payoff=CASH)
        assert out.rate() == pytest.approx(c.rate())

    def test_reprices_on_vol_change(self, curve):
        vol = SimpleQuote(0.10)
        digital = DigitalCoupon(_coupon(curve, 2), call_strike=0.06, call_digital_payoff=CASH,
                                naked_option=True)
        digital.set_pricer(BlackIborCouponPricer(vol))
        before = digital.rate()
        vol.set_value(0.30)
        assert digital.rate() > before

    def test_argument_checks(self, curve):
        c = _coupon(curve, 1)
        with pytest.raises(ConfigurationError):
            DigitalCoupon(c, put_digital_payoff=CASH)
        with pytest.raises(ConfigurationError):
            DigitalCoupon(c, call_strike=-0.01)
        with pytest.raises(ConfigurationError):
            DigitalCoupon(c, call_strike=1e-5)
        with pytest.raises(ConfigurationError):
            DigitalCoupon(c, call_strike=0.03).rate()
