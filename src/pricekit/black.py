# black.py
# Black / Black-Scholes-Merton closed forms with analytic greeks.
# ``black_formula`` accepts scalars *or* NumPy arrays and broadcasts.
# Zero standard deviation (zero vol or zero time) returns intrinsic value.

from __future__ import annotations
import math
import numpy as np
from scipy.optimize import brentq
from scipy.stats import norm

from .core import (
    CALL, option_type_sign, Results, StrikedTypePayoff,
    PlainVanillaPayoff, CashOrNothingPayoff, AssetOrNothingPayoff,
    EuropeanExercise,
)
from .errors import ConfigurationError, ConvergenceError, require
from .instruments import PricingEngine
from .settings import QL_EPSILON

_N = norm.cdf   # vectorised standard-normal CDF
_n = norm.pdf   # vectorised standard-normal PDF

__all__ = [
    "black_formula",
    "black_formula_std_dev_derivative",
    "black_implied_std_dev",
    "black_scholes_price",
    "black_scholes_implied_vol",
    "BlackCalculator",
    "AnalyticEuropeanEngine",
]


def _out(x):
    return float(x) if np.ndim(x) == 0 else x


# ---------------------------------------------------------------------------
# Black formula (vectorised)
# ---------------------------------------------------------------------------
def black_formula(option_type, strike, forward, stdev, discount=1.0, displacement=0.0):
    """Undiscounted Black price times ``discount``.

    Parameters
    ----------
    option_type : str
        ``"call"`` or ``"put"``.
    strike, forward : float or ndarray
        Strike and forward; ``displacement`` is added to both.
    stdev : float or ndarray
        Total standard deviation ``vol * sqrt(T)``.
    discount : float
        Discount factor to expiry.

    Returns
    -------
    float or ndarray
        Price.  ``stdev == 0`` or ``strike == 0`` give the intrinsic value.
    """
    sign = option_type_sign(option_type)
    K = np.asarray(strike, dtype=float) + displacement
    F = np.asarray(forward, dtype=float) + displacement
    stdev = np.asarray(stdev, dtype=float)
    if np.any(K < 0.0):
        raise ConfigurationError(f"strike + displacement must be non-negative, got {K}")
    if np.any(F <= 0.0):
        raise ConfigurationError(f"forward + displacement must be positive, got {F}")
    if np.any(stdev < 0.0):
        raise ConfigurationError(f"stdev must be non-negative, got {stdev}")
    if np.any(np.asarray(discount) <= 0.0):
        raise ConfigurationError(f"discount must be positive, got {discount}")

    intrinsic = np.maximum(sign * (F - K), 0.0)
    with np.errstate(divide="ignore", invalid="ignore"):
        d1 = np.log(F / K) / stdev + 0.5 * stdev
        d2 = d1 - stdev
        px = sign * (F * _N(sign * d1) - K * _N(sign * d2))
    px = np.where((stdev > 0.0) & (K > 0.0), np.maximum(px, 0.0), intrinsic)
    return _out(discount * px)


def black_formula_std_dev_derivative(strike, forward, stdev, discount=1.0, displacement=0.0):
    """dPrice/dStdev, identical for calls and puts."""
    K = np.asarray(strike, dtype=float) + displacement
    F = np.asarray(forward, dtype=float) + displacement
    stdev = np.asarray(stdev, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        d1 = np.log(F / K) / stdev + 0.5 * stdev
        out = discount * F * _n(d1)
    return _out(np.where((stdev > 0.0) & (K > 0.0), out, 0.0))


def black_implied_std_dev(
    option_type, strike, forward, black_price, discount=1.0, displacement=0.0,
    *, accuracy: float = 1e-12, max_stdev: float = 10.0,
) -> float:
    """Invert ``black_formula`` for the total standard deviation (Brent)."""
    sign = option_type_sign(option_type)
    F, K = forward + displacement, strike + displacement
    intrinsic = discount * max(sign * (F - K), 0.0)
    upper = discount * (F if sign > 0 else K)
    if not (intrinsic - accuracy <= black_price <= upper):
        raise ConfigurationError(
            f"price {black_price} outside no-arbitrage bounds [{intrinsic}, {upper}]"
        )
    if black_price - intrinsic <= accuracy:
        return 0.0

    def f(s):
        return black_formula(option_type, strike, forward, s, discount, displacement) - black_price

    try:
        return float(brentq(f, 1e-12, max_stdev, xtol=accuracy, maxiter=500))
    except ValueError as exc:
        raise ConvergenceError(f"implied stdev not bracketed: {exc}") from exc


# ---------------------------------------------------------------------------
# Black-Scholes convenience wrappers (flat r, q, sigma)
# ---------------------------------------------------------------------------
def black_scholes_price(S, K, T, r, q, sigma, kind):
    """Vectorised Black-Scholes-Merton price with flat parameters."""
    S, K, T, r, q, sigma = (np.asarray(x, dtype=float) for x in (S, K, T, r, q, sigma))
    disc_r = np.exp(-r * T)
    fwd = S * np.exp((r - q) * T)
    return black_formula(kind, K, fwd, sigma * np.sqrt(T), disc_r)


def black_scholes_implied_vol(price, S, K, T, r, q, kind) -> float:
    disc_r = math.exp(-r * T)
    fwd = S * math.exp((r - q) * T)
    stdev = black_implied_std_dev(kind, K, fwd, price, disc_r)
    return stdev / math.sqrt(T)


# ---------------------------------------------------------------------------
# BlackCalculator: value and closed-form greeks for striked payoffs
# ---------------------------------------------------------------------------
class BlackCalculator:
    """Black value and sensitivities for vanilla, cash- and asset-or-nothing.

    The price is written as ``discount * (forward * alpha + x * beta)``;
    greeks follow from differentiating alpha, beta and x through d1/d2.
    When ``stdev`` vanishes the d1/d2 derivative terms are dropped, which
    is their limit away from the money, so greeks stay finite.
    """

    def __init__(self, payoff: StrikedTypePayoff, forward: float, stdev: float,
                 discount: float = 1.0):
        require(forward > 0.0, f"positive forward required, got {forward}")
        require(stdev >= 0.0, f"non-negative stdev required, got {stdev}")
        require(discount > 0.0, f"positive discount required, got {discount}")
        self.payoff = payoff
        self.strike = payoff.strike
        self.forward = forward
        self.stdev = stdev
        self.discount = discount
        self.variance = stdev * stdev
        self._degenerate = stdev < QL_EPSILON

        K, F = self.strike, forward
        if not self._degenerate:
            if abs(K) < QL_EPSILON:
                self.d1 = self.d2 = math.inf
                cum_d1 = cum_d2 = 1.0
                n_d1 = n_d2 = 0.0
            else:
                self.d1 = math.log(F / K) / stdev + 0.5 * stdev
                self.d2 = self.d1 - stdev
                cum_d1, cum_d2 = float(_N(self.d1)), float(_N(self.d2))
                n_d1, n_d2 = float(_n(self.d1)), float(_n(self.d2))
        else:
            if abs(F - K) < QL_EPSILON * max(1.0, abs(K)):
                self.d1 = self.d2 = 0.0
                cum_d1 = cum_d2 = 0.5
            elif F > K:
                self.d1 = self.d2 = math.inf
                cum_d1 = cum_d2 = 1.0
            else:
                self.d1 = self.d2 = -math.inf
                cum_d1 = cum_d2 = 0.0
            n_d1 = n_d2 = 0.0
        self.cum_d1, self.cum_d2 = cum_d1, cum_d2
        self.n_d1, self.n_d2 = n_d1, n_d2

        self.x = K
        self.dx_dstrike = 1.0
        self.dx_ds = 0.0
        if payoff.option_type == CALL:
            self.alpha, self.dalpha_dd1 = cum_d1, n_d1
            self.beta, self.dbeta_dd2 = -cum_d2, -n_d2
        else:
            self.alpha, self.dalpha_dd1 = -1.0 + cum_d1, n_d1
            self.beta, self.dbeta_dd2 = 1.0 - cum_d2, -n_d2

        if isinstance(payoff, CashOrNothingPayoff):
            self.alpha = self.dalpha_dd1 = 0.0
            self.x = payoff.cash
            self.dx_dstrike = 0.0
            if payoff.option_type == CALL:
                self.beta, self.dbeta_dd2 = cum_d2, n_d2
            else:
                self.beta, self.dbeta_dd2 = 1.0 - cum_d2, -n_d2
        elif isinstance(payoff, AssetOrNothingPayoff):
            self.beta = self.dbeta_dd2 = 0.0
            if payoff.option_type == CALL:
                self.alpha, self.dalpha_dd1 = cum_d1, n_d1
            else:
                self.alpha, self.dalpha_dd1 = 1.0 - cum_d1, -n_d1
        elif not isinstance(payoff, PlainVanillaPayoff):
            raise ConfigurationError(f"unsupported payoff {type(payoff).__name__}")

    def _over_stdev(self, value: float, scale: float = 1.0) -> float:
        if self._degenerate or value == 0.0:
            return 0.0
        return value / (self.stdev * scale)

    # --- value -------------------------------------------------------------
    def value(self) -> float:
        return self.discount * (self.forward * self.alpha + self.x * self.beta)

    # --- forward greeks ----------------------------------------------------
    def delta_forward(self) -> float:
        dalpha = self._over_stdev(self.dalpha_dd1, self.forward)
        dbeta = self._over_stdev(self.dbeta_dd2, self.forward)
        return self.discount * (dalpha * self.forward + self.alpha + dbeta * self.x)

    def gamma_forward(self) -> float:
        F = self.forward
        dalpha = self._over_stdev(self.dalpha_dd1, F)
        dbeta = self._over_stdev(self.dbeta_dd2, F)
        d2alpha = d2beta = 0.0
        if not self._degenerate:
            d2alpha = -dalpha / F * (1.0 + self.d1 / self.stdev) if dalpha else 0.0
            d2beta = -dbeta / F * (1.0 + self.d2 / self.stdev) if dbeta else 0.0
        return self.discount * (d2alpha * F + 2.0 * dalpha + d2beta * self.x)

    # --- spot greeks -------------------------------------------------------
    def delta(self, spot: float) -> float:
        require(spot > 0.0, f"positive spot required, got {spot}")
        dfwd_ds = self.forward / spot
        dalpha = self._over_stdev(self.dalpha_dd1, spot)
        dbeta = self._over_stdev(self.dbeta_dd2, spot)
        out = dalpha * self.forward + self.alpha * dfwd_ds + dbeta * self.x + self.beta * self.dx_ds
        return self.discount * out

    def gamma(self, spot: float) -> float:
        require(spot > 0.0, f"positive spot required, got {spot}")
        dfwd_ds = self.forward / spot
        dalpha = self._over_stdev(self.dalpha_dd1, spot)
        dbeta = self._over_stdev(self.dbeta_dd2, spot)
        d2alpha = d2beta = 0.0
        if not self._degenerate:
            d2alpha = -dalpha / spot * (1.0 + self.d1 / self.stdev) if dalpha else 0.0
            d2beta = -dbeta / spot * (1.0 + self.d2 / self.stdev) if dbeta else 0.0
        out = (d2alpha * self.forward + 2.0 * dalpha * dfwd_ds
               + d2beta * self.x + 2.0 * dbeta * self.dx_ds)
        return self.discount * out

    def theta(self, spot: float, maturity: float) -> float:
        require(maturity >= 0.0, f"maturity ({maturity}) must be non-negative")
        if maturity == 0.0:
            return 0.0
        return -(math.log(self.discount) * self.value()
                 + math.log(self.forward / spot) * spot * self.delta(spot)
                 + 0.5 * self.variance * spot * spot * self.gamma(spot)) / maturity

    def theta_per_day(self, spot: float, maturity: float) -> float:
        return self.theta(spot, maturity) / 365.0

    def elasticity(self, spot: float) -> float:
        val, dlt = self.value(), self.delta(spot)
        if val > QL_EPSILON:
            return dlt / val * spot
        if abs(dlt) < QL_EPSILON:
            return 0.0
        return math.inf if dlt > 0.0 else -math.inf

    # --- parameter greeks --------------------------------------------------
    def vega(self, maturity: float) -> float:
        require(maturity >= 0.0, "negative maturity not allowed")
        if self._degenerate or self.strike <= 0.0:
            return 0.0
        temp = math.log(self.strike / self.forward) / self.variance
        dalpha = self.dalpha_dd1 * (temp + 0.5)
        dbeta = self.dbeta_dd2 * (temp - 0.5)
        return self.discount * math.sqrt(maturity) * (dalpha * self.forward + dbeta * self.x)

    def rho(self, maturity: float) -> float:
        require(maturity >= 0.0, "negative maturity not allowed")
        dalpha = self._over_stdev(self.dalpha_dd1)
        dbeta = self._over_stdev(self.dbeta_dd2)
        temp = dalpha * self.forward + self.alpha * self.forward + dbeta * self.x
        return maturity * (self.discount * temp - self.value())

    def dividend_rho(self, maturity: float) -> float:
        require(maturity >= 0.0, "negative maturity not allowed")
        dalpha = -self._over_stdev(self.dalpha_dd1)
        dbeta = -self._over_stdev(self.dbeta_dd2)
        temp = dalpha * self.forward - self.alpha * self.forward + dbeta * self.x
        return maturity * self.discount * temp

    def strike_sensitivity(self) -> float:
        if abs(self.strike) < QL_EPSILON:
            return self.discount * self.beta * self.dx_dstrike
        dalpha = -self._over_stdev(self.dalpha_dd1, self.strike)
        dbeta = -self._over_stdev(self.dbeta_dd2, self.strike)
        return self.discount * (dalpha * self.forward + dbeta * self.x
                                + self.beta * self.dx_dstrike)

    # --- probabilities -----------------------------------------------------
    def itm_cash_probability(self) -> float:
        return self.cum_d2 if self.payoff.option_type == CALL else 1.0 - self.cum_d2

    def itm_asset_probability(self) -> float:
        return self.cum_d1 if self.payoff.option_type == CALL else 1.0 - self.cum_d1


# ---------------------------------------------------------------------------
# Analytic European engine
# ---------------------------------------------------------------------------
class AnalyticEuropeanEngine(PricingEngine):
    """Black-Scholes-Merton engine for European vanilla and digital payoffs.

    Fills ``Results.greeks`` with delta, delta_forward, elasticity, gamma,
    theta, theta_per_day, vega, rho, dividend_rho, strike_sensitivity and
    itm_cash_probability.
    """

    def __init__(self, process):
        super().__init__()
        self.process = process
        self.register_with(process)

    def evaluation_date(self):
        return self.process.risk_free_rate.reference_date

    def calculate(self, option) -> Results:
        if not isinstance(option.exercise, EuropeanExercise):
            raise ConfigurationError("not a European option")
        payoff = option.payoff
        if not isinstance(payoff, StrikedTypePayoff):
            raise ConfigurationError("non-striked payoff given")
        p = self.process
        ex_date = option.exercise.last_date()

        variance = p.black_volatility.black_variance(ex_date, payoff.strike)
        dividend_discount = p.dividend_yield.discount(ex_date)
        risk_free_discount = p.risk_free_rate.discount(ex_date)
        spot = p.x0()
        require(spot > 0.0, "negative or null underlying given")
        forward = spot * dividend_discount / risk_free_discount

        black = BlackCalculator(payoff, forward, math.sqrt(variance), risk_free_discount)
        t_r = p.risk_free_rate.time_from_reference(ex_date)
        t_q = p.dividend_yield.time_from_reference(ex_date)
        t_v = p.black_volatility.time_from_reference(ex_date)

        res = Results(value=black.value())
        res.greeks = {
            "delta": black.delta(spot),
            "delta_forward": black.delta_forward(),
            "elasticity": black.elasticity(spot),
            "gamma": black.gamma(spot),
            "rho": black.rho(t_r),
            "dividend_rho": black.dividend_rho(t_q),
            "vega": black.vega(t_v),
            "theta": black.theta(spot, t_r),
            "theta_per_day": black.theta_per_day(spot, t_r),
            "strike_sensitivity": black.strike_sensitivity(),
            "itm_cash_probability": black.itm_cash_probability(),
        }
        return res
