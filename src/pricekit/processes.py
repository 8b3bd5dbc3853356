# processes.py
# Stochastic process descriptors consumed by analytic and Monte Carlo engines.
#
# Processes hold references (not copies) to the spot quote and the term
# structures, so a quote change is visible to every engine built on them.
# ``evolve`` steps a whole batch of paths at once: state arrays have
# shape (n_paths,) for one-factor and (2, n_paths) for two-factor models.

from __future__ import annotations
import enum
import math
import numpy as np
from scipy.stats import norm

from .errors import ConfigurationError, require
from .quotes import Observable, Observer, SimpleQuote, as_quote
from .termstructures import YieldTermStructure, BlackVolTermStructure, FlatForward

__all__ = [
    "StochasticProcess",
    "GeneralizedBlackScholesProcess",
    "BlackScholesMertonProcess",
    "BlackScholesProcess",
    "Discretization",
    "HestonProcess",
]


class StochasticProcess(Observable, Observer):
    """Base class: forwards notifications from quotes and curves."""

    size = 1

    def __init__(self):
        Observable.__init__(self)

    def update(self) -> None:
        self.notify_observers()

    def time(self, d) -> float:
        raise NotImplementedError

    def evolve(self, t0: float, x0, dt: float, dw):
        raise NotImplementedError


# -----------------------------
# 1) Black-Scholes-Merton
# -----------------------------
class GeneralizedBlackScholesProcess(StochasticProcess):
    """
    dS/S = (r(t) - q(t)) dt + sigma(t, S) dW

    Parameters
    ----------
    spot : float | SimpleQuote
    dividend_ts, risk_free_ts : YieldTermStructure
    black_vol_ts : BlackVolTermStructure
    """

    def __init__(self, spot, dividend_ts: YieldTermStructure,
                 risk_free_ts: YieldTermStructure, black_vol_ts: BlackVolTermStructure):
        super().__init__()
        self.spot = as_quote(spot)
        self.dividend_yield = dividend_ts
        self.risk_free_rate = risk_free_ts
        self.black_volatility = black_vol_ts
        self.register_with(self.spot, dividend_ts, risk_free_ts, black_vol_ts)

    def x0(self) -> float:
        return self.spot.value()

    def time(self, d) -> float:
        return self.risk_free_rate.time_from_reference(d)

    def forward(self, t) -> float:
        return self.x0() * self.dividend_yield.discount(t) / self.risk_free_rate.discount(t)

    def drift(self, t0: float, dt: float, strike: float | None = None) -> float:
        """Log-drift over [t0, t0+dt] per unit time."""
        t1 = t0 + dt
        r = self.risk_free_rate.forward_rate(t0, t1)
        q = self.dividend_yield.forward_rate(t0, t1)
        var = self.black_volatility.black_forward_variance(t0, t1, strike or self.x0())
        return r - q - 0.5 * var / dt

    def diffusion(self, t: float, x: float | None = None) -> float:
        """Local Black vol at time ``t`` and level ``x``."""
        x = self.x0() if x is None else x
        return self.black_volatility.black_vol(max(t, 1e-4), x)

    def std_deviation(self, t0: float, dt: float, strike: float | None = None) -> float:
        var = self.black_volatility.black_forward_variance(t0, t0 + dt, strike or self.x0())
        return math.sqrt(var)

    def evolve(self, t0: float, x0, dt: float, dw):
        """Exact log-normal step: S * exp(mu dt + sd * dw)."""
        x0 = np.asarray(x0, dtype=float)
        return x0 * np.exp(self.drift(t0, dt) * dt + self.std_deviation(t0, dt) * np.asarray(dw))


class BlackScholesMertonProcess(GeneralizedBlackScholesProcess):
    pass


class BlackScholesProcess(GeneralizedBlackScholesProcess):
    """Black-Scholes with no dividend yield."""

    def __init__(self, spot, risk_free_ts: YieldTermStructure,
                 black_vol_ts: BlackVolTermStructure):
        q_ts = FlatForward(risk_free_ts.reference_date, 0.0, risk_free_ts.day_counter)
        super().__init__(spot, q_ts, risk_free_ts, black_vol_ts)


# -------------------------------
# 2) Heston (CIR variance process)
# -------------------------------
class Discretization(enum.Enum):
    PartialTruncation = "partial_truncation"
    FullTruncation = "full_truncation"
    Reflection = "reflection"
    QuadraticExponential = "quadratic_exponential"
    QuadraticExponentialMartingale = "quadratic_exponential_martingale"


class HestonProcess(StochasticProcess):
    """
    Heston under Q:
        dS = (r - q) S dt + sqrt(v) S dW1
        dv = kappa (theta - v) dt + sigma sqrt(v) dW2,   corr(dW1, dW2) = rho

    The Feller condition ``2 kappa theta >= sigma^2`` is not enforced.
    The truncation schemes may carry a negative variance state but only
    its positive part enters the asset step; QE variance stays >= 0.
    Parameters are plain attributes so a calibrating model can update
    them in place.
    """

    size = 2

    def __init__(self, risk_free_ts: YieldTermStructure, dividend_ts: YieldTermStructure,
                 s0, v0: float, kappa: float, theta: float, sigma: float, rho: float,
                 discretization: Discretization = Discretization.QuadraticExponentialMartingale):
        super().__init__()
        require(-1.0 <= rho <= 1.0, f"rho must be in [-1, 1], got {rho}")
        require(v0 >= 0.0, f"v0 must be non-negative, got {v0}")
        require(kappa > 0.0 and theta > 0.0 and sigma >= 0.0,
                "kappa and theta must be positive and sigma non-negative")
        self.risk_free_rate = risk_free_ts
        self.dividend_yield = dividend_ts
        self.s0 = as_quote(s0)
        self.v0, self.kappa, self.theta, self.sigma, self.rho = v0, kappa, theta, sigma, rho
        self.discretization = Discretization(discretization)
        self.register_with(self.s0, risk_free_ts, dividend_ts)

    def set_parameters(self, v0=None, kappa=None, theta=None, sigma=None, rho=None) -> None:
        if v0 is not None:
            self.v0 = float(v0)
        if kappa is not None:
            self.kappa = float(kappa)
        if theta is not None:
            self.theta = float(theta)
        if sigma is not None:
            self.sigma = float(sigma)
        if rho is not None:
            self.rho = float(rho)
        self.notify_observers()

    def x0(self):
        return np.array([self.s0.value(), self.v0])

    def time(self, d) -> float:
        return self.risk_free_rate.time_from_reference(d)

    def feller_satisfied(self) -> bool:
        return 2.0 * self.kappa * self.theta >= self.sigma * self.sigma

    def evolve(self, t0: float, x0, dt: float, dw):
        """Advance (S, v) of shape (2, n_paths) by ``dt`` given normals ``dw``."""
        x0 = np.asarray(x0, dtype=float)
        dw = np.asarray(dw, dtype=float)
        s, v = x0[0], x0[1]
        mu = (self.risk_free_rate.forward_rate(t0, t0 + dt)
              - self.dividend_yield.forward_rate(t0, t0 + dt))
        kappa, theta, sigma, rho = self.kappa, self.theta, self.sigma, self.rho
        sdt = math.sqrt(dt)
        sq_rho = math.sqrt(max(0.0, 1.0 - rho * rho))
        scheme = self.discretization

        if scheme in (Discretization.PartialTruncation, Discretization.FullTruncation):
            vol = np.sqrt(np.maximum(v, 0.0))
            if scheme is Discretization.PartialTruncation:
                nu = kappa * (theta - v)
            else:
                nu = kappa * (theta - vol * vol)
            s_new = s * np.exp((mu - 0.5 * vol * vol) * dt + vol * sdt * dw[0])
            v_new = v + nu * dt + sigma * vol * sdt * (rho * dw[0] + sq_rho * dw[1])
            return np.stack([s_new, v_new])

        if scheme is Discretization.Reflection:
            vol = np.sqrt(np.abs(v))
            nu = kappa * (theta - vol * vol)
            s_new = s * np.exp((mu - 0.5 * vol * vol) * dt + vol * sdt * dw[0])
            v_new = vol * vol + nu * dt + sigma * vol * sdt * (rho * dw[0] + sq_rho * dw[1])
            return np.stack([s_new, v_new])

        if scheme in (Discretization.QuadraticExponential,
                      Discretization.QuadraticExponentialMartingale):
            return self._evolve_qe(s, v, mu, dt, dw,
                                   scheme is Discretization.QuadraticExponentialMartingale)

        raise ConfigurationError(f"unknown discretization {scheme!r}")

    def _evolve_qe(self, s, v, mu, dt, dw, martingale: bool):
        # Andersen (2008) quadratic-exponential scheme, psi_c = 1.5
        kappa, theta, sigma, rho = self.kappa, self.theta, self.sigma, self.rho
        v = np.maximum(v, 0.0)
        ex = math.exp(-kappa * dt)
        m = theta + (v - theta) * ex
        if sigma == 0.0:
            # deterministic variance, trapezoidal integration in the asset step
            s_new = s * np.exp(mu * dt - 0.25 * dt * (v + m)
                               + np.sqrt(0.5 * dt * (v + m)) * dw[0])
            return np.stack([s_new, m])
        s2 = (v * sigma * sigma * ex / kappa * (1.0 - ex)
              + theta * sigma * sigma / (2.0 * kappa) * (1.0 - ex) ** 2)
        psi = s2 / np.maximum(m * m, 1e-300)

        g1 = g2 = 0.5
        k0 = -rho * kappa * theta * dt / sigma
        k1 = g1 * dt * (kappa * rho / sigma - 0.5) - rho / sigma
        k2 = g2 * dt * (kappa * rho / sigma - 0.5) + rho / sigma
        k3 = g1 * dt * (1.0 - rho * rho)
        k4 = g2 * dt * (1.0 - rho * rho)
        A = k2 + 0.5 * k4

        quad = psi < 1.5
        # quadratic branch
        with np.errstate(divide="ignore", invalid="ignore"):
            inv_psi = 2.0 / psi
            b2 = inv_psi - 1.0 + np.sqrt(inv_psi * np.maximum(inv_psi - 1.0, 0.0))
            b = np.sqrt(np.maximum(b2, 0.0))
            a = m / (1.0 + b2)
            v_quad = a * (b + dw[1]) ** 2

            # exponential branch
            p = (psi - 1.0) / (psi + 1.0)
            beta = (1.0 - p) / m
            u = norm.cdf(dw[1])
            v_exp = np.where(u <= p, 0.0,
                             np.log((1.0 - p) / np.maximum(1.0 - u, 1e-300)) / beta)

        v_new = np.where(quad, v_quad, v_exp)
        v_new = np.where(np.isfinite(v_new), v_new, 0.0)

        k0v = np.full_like(v, k0)
        if martingale:
            with np.errstate(divide="ignore", invalid="ignore"):
                ok_quad = quad & (A * a < 0.5)
                k0_quad = (-A * b2 * a / (1.0 - 2.0 * A * a)
                           + 0.5 * np.log(np.where(ok_quad, 1.0 - 2.0 * A * a, 1.0))
                           - (k1 + 0.5 * k3) * v)
                ok_exp = (~quad) & (A < beta)
                k0_exp = (-np.log(np.where(ok_exp, p + beta * (1.0 - p) / (beta - A), 1.0))
                          - (k1 + 0.5 * k3) * v)
            k0v = np.where(ok_quad, k0_quad, np.where(ok_exp, k0_exp, k0v))

        s_new = s * np.exp(mu * dt + k0v + k1 * v + k2 * v_new
                           + np.sqrt(np.maximum(k3 * v + k4 * v_new, 0.0)) * dw[0])
        return np.stack([s_new, v_new])
