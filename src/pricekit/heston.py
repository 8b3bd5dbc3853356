# heston.py
# Heston model and semi-analytic (Fourier) engines.
#
# The engines price European vanilla options from the two probability
# integrals P1, P2 of the Heston characteristic function.  The integrals
# run over [0, inf); fixed Gaussian rules on finite domains and the
# adaptive integrators see them mapped through phi = -log(u) / c_inf.

from __future__ import annotations

import enum
import logging
import math
from typing import Sequence

import numpy as np

from .calibration import (
    CalibratedModel, PositiveConstraint, BoundaryConstraint,
)
from .core import CALL, PlainVanillaPayoff, EuropeanExercise, Results
from .errors import ConfigurationError, require
from .instruments import PricingEngine
from .integrals import (
    GaussLobattoIntegral, GaussKronrodIntegral, SimpsonIntegral, TrapezoidIntegral,
    GaussLaguerreIntegration, GaussLegendreIntegration,
    GaussChebyshevIntegration, GaussChebyshev2ndIntegration,
)
from .processes import HestonProcess
from .quotes import as_quote
from .settings import (
    QL_EPSILON, HESTON_DEFAULT_ORDER, HESTON_LAGUERRE_MAX_ORDER,
    HESTON_ADAPTIVE_MAX_EVALUATIONS, HESTON_CINF_MIN, HESTON_CINF_MAX,
)

logger = logging.getLogger(__name__)

__all__ = [
    "HestonModel",
    "PiecewiseTimeDependentHestonModel",
    "ComplexLogFormula",
    "Integration",
    "AnalyticHestonEngine",
    "AnalyticPTDHestonEngine",
]


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------
class HestonModel(CalibratedModel):
    """Calibratable wrapper around a ``HestonProcess``.

    The parameter vector is ``(theta, kappa, sigma, rho, v0)``.
    """

    param_names = ("theta", "kappa", "sigma", "rho", "v0")

    def __init__(self, process: HestonProcess):
        super().__init__()
        self.process = process
        self.register_with(process)
        self._constraints = [PositiveConstraint(), PositiveConstraint(), PositiveConstraint(),
                             BoundaryConstraint(-1.0, 1.0), PositiveConstraint()]

    @property
    def constraints(self):
        return self._constraints

    def params(self) -> np.ndarray:
        p = self.process
        return np.array([p.theta, p.kappa, p.sigma, p.rho, p.v0])

    def set_params(self, params) -> None:
        theta, kappa, sigma, rho, v0 = (float(x) for x in params)
        self.process.set_parameters(v0=v0, kappa=kappa, theta=theta, sigma=sigma, rho=rho)

    # parameter accessors
    def theta(self) -> float:
        return self.process.theta

    def kappa(self) -> float:
        return self.process.kappa

    def sigma(self) -> float:
        return self.process.sigma

    def rho(self) -> float:
        return self.process.rho

    def v0(self) -> float:
        return self.process.v0


class PiecewiseTimeDependentHestonModel(CalibratedModel):
    """Heston model with piecewise-constant theta, kappa, sigma and rho.

    Parameters
    ----------
    risk_free_ts, dividend_ts : YieldTermStructure
    s0 : float | SimpleQuote
    v0 : float
    theta, kappa, sigma, rho : float or sequence
        A scalar is held constant; a sequence gives one value per
        interval of ``time_grid``.
    time_grid : sequence of float
        Increasing interval boundaries in years.  A leading 0 is added
        when missing.
    """

    def __init__(self, risk_free_ts, dividend_ts, s0, v0: float,
                 theta, kappa, sigma, rho, time_grid: Sequence[float]):
        super().__init__()
        grid = np.asarray(time_grid, dtype=float)
        require(grid.size >= 1, "empty time grid")
        if grid[0] > 0.0:
            grid = np.concatenate([[0.0], grid])
        require(bool(np.all(np.diff(grid) > 0.0)), "time grid must be strictly increasing")
        self.time_grid = grid
        n = grid.size - 1

        def piecewise(name, x):
            arr = np.full(n, float(x)) if np.ndim(x) == 0 else np.asarray(x, dtype=float)
            require(arr.size == n, f"{name} needs {n} values, got {arr.size}")
            return arr

        self._theta = piecewise("theta", theta)
        self._kappa = piecewise("kappa", kappa)
        self._sigma = piecewise("sigma", sigma)
        self._rho = piecewise("rho", rho)
        require(bool(np.all(np.abs(self._rho) <= 1.0)), "rho must be in [-1, 1]")
        self._v0 = float(v0)

        self.risk_free_rate = risk_free_ts
        self.dividend_yield = dividend_ts
        self.s0 = as_quote(s0)
        self.register_with(self.s0, risk_free_ts, dividend_ts)

        self._constraints = ([PositiveConstraint()] * (3 * n)
                             + [BoundaryConstraint(-1.0, 1.0)] * n
                             + [PositiveConstraint()])

    @property
    def constraints(self):
        return self._constraints

    def params(self) -> np.ndarray:
        return np.concatenate([self._theta, self._kappa, self._sigma, self._rho, [self._v0]])

    def set_params(self, params) -> None:
        n = self.time_grid.size - 1
        p = np.asarray(params, dtype=float)
        require(p.size == 4 * n + 1, f"expected {4 * n + 1} parameters, got {p.size}")
        self._theta, self._kappa, self._sigma, self._rho = (p[k * n:(k + 1) * n].copy()
                                                            for k in range(4))
        self._v0 = float(p[-1])
        self.notify_observers()

    def time(self, d) -> float:
        return self.risk_free_rate.time_from_reference(d)

    def _index(self, t):
        i = np.searchsorted(self.time_grid, t, side="right") - 1
        return np.clip(i, 0, self.time_grid.size - 2)

    def theta(self, t):
        return self._theta[self._index(t)]

    def kappa(self, t):
        return self._kappa[self._index(t)]

    def sigma(self, t):
        return self._sigma[self._index(t)]

    def rho(self, t):
        return self._rho[self._index(t)]

    def v0(self) -> float:
        return self._v0


# ---------------------------------------------------------------------------
# Integration rules
# ---------------------------------------------------------------------------
class ComplexLogFormula(enum.Enum):
    Gatheral = "gatheral"
    BranchCorrection = "branch_correction"


class _Rule(enum.Enum):
    GaussLaguerre = "gauss_laguerre"
    GaussLegendre = "gauss_legendre"
    GaussChebyshev = "gauss_chebyshev"
    GaussChebyshev2nd = "gauss_chebyshev2nd"
    GaussLobatto = "gauss_lobatto"
    GaussKronrod = "gauss_kronrod"
    Simpson = "simpson"
    Trapezoid = "trapezoid"


def _on_minus_one_one(c_inf, f):
    # phi = -log((x + 1) / 2) / c_inf maps (-1, 1) onto (0, inf)
    def integrand(x):
        x = np.asarray(x, dtype=float)
        shape = x.shape
        x = np.atleast_1d(x)
        den = (x + 1.0) * c_inf
        out = np.zeros_like(x)
        ok = den > QL_EPSILON
        if ok.any():
            out[ok] = f(-np.log(0.5 * x[ok] + 0.5) / c_inf) / den[ok]
        return out.reshape(shape)
    return integrand


def _on_zero_one(c_inf, f):
    # phi = -log(x) / c_inf maps (0, 1] onto [0, inf)
    def integrand(x):
        x = np.asarray(x, dtype=float)
        shape = x.shape
        x = np.atleast_1d(x)
        den = x * c_inf
        out = np.zeros_like(x)
        ok = den > QL_EPSILON
        if ok.any():
            out[ok] = f(-np.log(x[ok]) / c_inf) / den[ok]
        return out.reshape(shape)
    return integrand


class Integration:
    """Quadrature used for the Heston probability integrals.

    Build one with the class-method factories, e.g.
    ``Integration.gauss_laguerre(128)`` or
    ``Integration.gauss_lobatto(1e-8, None, 10000)``.
    """

    def __init__(self, rule: _Rule, integrator=None, quadrature=None):
        self.rule = rule
        self.integrator = integrator
        self.quadrature = quadrature

    # --- factories ---------------------------------------------------------
    @classmethod
    def gauss_laguerre(cls, order: int = 128) -> "Integration":
        require(0 < order <= HESTON_LAGUERRE_MAX_ORDER,
                f"Gauss-Laguerre order {order} must be in [1, {HESTON_LAGUERRE_MAX_ORDER}]")
        return cls(_Rule.GaussLaguerre, quadrature=GaussLaguerreIntegration(order))

    @classmethod
    def gauss_legendre(cls, order: int = 128) -> "Integration":
        return cls(_Rule.GaussLegendre, quadrature=GaussLegendreIntegration(order))

    @classmethod
    def gauss_chebyshev(cls, order: int = 128) -> "Integration":
        return cls(_Rule.GaussChebyshev, quadrature=GaussChebyshevIntegration(order))

    @classmethod
    def gauss_chebyshev2nd(cls, order: int = 128) -> "Integration":
        return cls(_Rule.GaussChebyshev2nd, quadrature=GaussChebyshev2ndIntegration(order))

    @classmethod
    def gauss_lobatto(cls, rel_tolerance: float | None, abs_tolerance: float | None,
                      max_evaluations: int = HESTON_ADAPTIVE_MAX_EVALUATIONS) -> "Integration":
        require(rel_tolerance is not None or abs_tolerance is not None,
                "Gauss-Lobatto needs a relative or an absolute tolerance")
        return cls(_Rule.GaussLobatto,
                   integrator=GaussLobattoIntegral(max_evaluations, abs_tolerance, rel_tolerance,
                                                   use_convergence_estimate=False))

    @classmethod
    def gauss_kronrod(cls, abs_tolerance: float,
                      max_evaluations: int = HESTON_ADAPTIVE_MAX_EVALUATIONS) -> "Integration":
        return cls(_Rule.GaussKronrod,
                   integrator=GaussKronrodIntegral(abs_tolerance, max_evaluations))

    @classmethod
    def simpson(cls, abs_tolerance: float,
                max_evaluations: int = HESTON_ADAPTIVE_MAX_EVALUATIONS) -> "Integration":
        return cls(_Rule.Simpson, integrator=SimpsonIntegral(abs_tolerance, max_evaluations))

    @classmethod
    def trapezoid(cls, abs_tolerance: float,
                  max_evaluations: int = HESTON_ADAPTIVE_MAX_EVALUATIONS) -> "Integration":
        return cls(_Rule.Trapezoid, integrator=TrapezoidIntegral(abs_tolerance, max_evaluations))

    # --- evaluation ----------------------------------------------------------
    @property
    def is_adaptive(self) -> bool:
        return self.integrator is not None

    def number_of_evaluations(self) -> int:
        if self.integrator is not None:
            return self.integrator.number_of_evaluations
        return self.quadrature.order

    def calculate(self, c_inf: float, f) -> float:
        """Integral of ``f`` over [0, inf)."""
        if self.rule is _Rule.GaussLaguerre:
            return self.quadrature(f)
        if self.quadrature is not None:
            return self.quadrature(_on_minus_one_one(c_inf, f))
        return self.integrator(_on_zero_one(c_inf, f), 0.0, 1.0)

    def __repr__(self):
        if self.quadrature is not None:
            return f"Integration.{self.rule.value}({self.quadrature.order})"
        return f"Integration.{self.rule.value}()"


# ---------------------------------------------------------------------------
# Characteristic-function integrands
# ---------------------------------------------------------------------------
class _Fj:
    """Integrand of P_j, vectorised over phi.

    ``dd = log(S) - log(Dr / Dq)`` and ``sx = log(K)``.
    """

    def __init__(self, j: int, kappa, theta, sigma, v0, rho, term, dd, sx,
                 cpx_log: ComplexLogFormula):
        self.j = j
        self.kappa, self.theta, self.sigma, self.v0, self.rho = kappa, theta, sigma, v0, rho
        self.term, self.dd, self.sx = term, dd, sx
        self.cpx_log = cpx_log
        self.sigma2 = sigma * sigma
        self.rsigma = rho * sigma
        self.t0 = kappa - (self.rsigma if j == 1 else 0.0)
        self.sgn = 1.0 if j == 1 else -1.0

    def __call__(self, phi):
        phi = np.asarray(phi, dtype=float)
        shape = phi.shape
        phi = np.atleast_1d(phi)
        zero = phi == 0.0
        out = np.empty_like(phi)
        if zero.any():
            out[zero] = self._limit_at_zero()
        nz = ~zero
        if nz.any():
            out[nz] = self._integrand(phi[nz])
        return out.reshape(shape)

    def _limit_at_zero(self) -> float:
        # l'Hospital at phi -> 0
        kappa, theta, v0, term = self.kappa, self.theta, self.v0, self.term
        if self.j == 1:
            kmr = self.rsigma - kappa
            if abs(kmr) > 1e-7:
                return (self.dd - self.sx
                        + (math.exp(kmr * term) * kappa * theta - kappa * theta * (kmr * term + 1.0))
                        / (2.0 * kmr * kmr)
                        - v0 * (1.0 - math.exp(kmr * term)) / (2.0 * kmr))
            return self.dd - self.sx + 0.25 * kappa * theta * term * term + 0.5 * v0 * term
        return (self.dd - self.sx
                - (math.exp(-kappa * term) * kappa * theta + kappa * theta * (kappa * term - 1.0))
                / (2.0 * kappa * kappa)
                - v0 * (1.0 - math.exp(-kappa * term)) / (2.0 * kappa))

    def _integrand(self, phi):
        kappa, theta, v0, term = self.kappa, self.theta, self.v0, self.term
        sigma2 = self.sigma2
        t1 = self.t0 - 1j * self.rsigma * phi
        d = np.sqrt(t1 * t1 - sigma2 * phi * (-phi + 1j * self.sgn))
        ex = np.exp(-d * term)
        drift = 1j * phi * (self.dd - self.sx)

        with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
            if self.cpx_log is ComplexLogFormula.Gatheral:
                if self.sigma > 1e-5:
                    p = (t1 - d) / (t1 + d)
                    g = np.log((1.0 - p * ex) / (1.0 - p))
                    z = (v0 * (t1 - d) * (1.0 - ex) / (sigma2 * (1.0 - ex * p))
                         + kappa * theta / sigma2 * ((t1 - d) * term - 2.0 * g) + drift)
                else:
                    td = phi / (2.0 * t1) * (-phi + 1j * self.sgn)
                    p = td * sigma2 / (t1 + d)
                    g_over_s2 = td / (t1 + d) * (1.0 - ex)
                    z = (v0 * td * (1.0 - ex) / (1.0 - p * ex)
                         + kappa * theta * (td * term - 2.0 * g_over_s2) + drift)
                return np.exp(z).imag / phi

            # branch-corrected complex logarithm; phi arrives in node order,
            # the branch count runs over ascending phi
            order = np.argsort(phi)
            phi_s, t1_s, d_s, ex_s = phi[order], t1[order], d[order], ex[order]
            p = (t1_s + d_s) / (t1_s - d_s)
            e = np.log(p) + d_s * term
            g_direct = np.log((1.0 - p / ex_s) / (1.0 - p))
            g_asym = d_s * term + np.log(p / (p - 1.0))
            im = np.fmod(g_asym.imag, 2.0 * math.pi)
            im = np.where(im > math.pi, im - 2.0 * math.pi,
                          np.where(im <= -math.pi, im + 2.0 * math.pi, im))
            g_asym = g_asym.real + 1j * im
            g = np.where(np.exp(-e.real) > QL_EPSILON, g_direct, g_asym)

            prev = np.concatenate([[0.0], g.imag[:-1]])
            jump = g.imag - prev
            b = np.cumsum((jump <= -math.pi).astype(int) - (jump > math.pi).astype(int))
            g = g + 2j * math.pi * b

            z = (v0 * (t1_s + d_s) * (ex_s - 1.0) / (sigma2 * (ex_s - p))
                 + kappa * theta / sigma2 * ((t1_s + d_s) * term - 2.0 * g)
                 + 1j * phi_s * (self.dd - self.sx))
            out = np.empty_like(phi)
            out[order] = np.exp(z).imag / phi_s
            return out


class _PTDFj:
    """P_j integrand for piecewise-constant parameters.

    The Riccati coefficients are rolled backwards from maturity through
    each interval of the model's time grid.
    """

    def __init__(self, j: int, model: PiecewiseTimeDependentHestonModel, term, dd, sx):
        self.j = j
        self.model = model
        self.term, self.dd, self.sx = term, dd, sx
        self.sgn = 1.0 if j == 1 else -1.0

    def __call__(self, phi):
        phi = np.asarray(phi, dtype=float)
        shape = phi.shape
        phi = np.maximum(np.atleast_1d(phi), 1e-8)
        grid = self.model.time_grid
        term = self.term
        C = np.zeros_like(phi, dtype=complex)
        D = np.zeros_like(phi, dtype=complex)

        with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
            for i in range(grid.size - 1, 0, -1):
                begin = grid[i - 1]
                if begin >= term:
                    continue
                end = min(term, grid[i])
                tau = end - begin
                t = 0.5 * (begin + end)
                kappa = float(self.model.kappa(t))
                theta = float(self.model.theta(t))
                sigma = float(self.model.sigma(t))
                rho = float(self.model.rho(t))
                sigma2 = sigma * sigma

                t0 = kappa - (rho * sigma if self.j == 1 else 0.0)
                t1 = t0 - 1j * rho * sigma * phi
                d = np.sqrt(t1 * t1 - sigma2 * phi * (-phi + 1j * self.sgn))
                ex = np.exp(-d * tau)
                g = (t1 - d) / (t1 + d)
                gt = (t1 - d - D * sigma2) / (t1 + d - D * sigma2)
                D = (t1 + d) / sigma2 * (g - gt * ex) / (1.0 - gt * ex)
                C = C + kappa * theta / sigma2 * ((t1 - d) * tau
                                                  - 2.0 * np.log((1.0 - gt * ex) / (1.0 - gt)))

            z = self.model.v0() * D + C + 1j * phi * (self.dd - self.sx)
            out = np.exp(z).imag / phi
        return out.reshape(shape)


# ---------------------------------------------------------------------------
# Engines
# ---------------------------------------------------------------------------
def _c_inf(v0, kappa, theta, sigma, rho, term) -> float:
    ratio = math.sqrt(max(0.0, 1.0 - rho * rho)) / sigma if sigma > 0.0 else HESTON_CINF_MAX
    return min(HESTON_CINF_MAX, max(HESTON_CINF_MIN, ratio)) * (v0 + kappa * theta * term)


def _price_from_probabilities(option_type, spot, strike, dq, dr, p1, p2) -> float:
    if option_type == CALL:
        return spot * dq * (p1 + 0.5) - strike * dr * (p2 + 0.5)
    return spot * dq * (p1 - 0.5) - strike * dr * (p2 - 0.5)


class _HestonEngineBase(PricingEngine):
    def __init__(self, model, integration: Integration | None, integration_order: int,
                 cpx_log: ComplexLogFormula):
        super().__init__()
        self.model = model
        self.integration = integration or Integration.gauss_laguerre(integration_order)
        self.cpx_log = ComplexLogFormula(cpx_log)
        if self.cpx_log is ComplexLogFormula.BranchCorrection and self.integration.is_adaptive:
            raise ConfigurationError(
                "branch correction does not work in conjunction with adaptive integration methods"
            )
        self._evaluations = 0
        self.register_with(model)

    def number_of_evaluations(self) -> int:
        return self._evaluations

    def _market(self, option, risk_free_ts, dividend_ts, s0, time):
        if not isinstance(option.exercise, EuropeanExercise):
            raise ConfigurationError("not a European option")
        payoff = option.payoff
        if not isinstance(payoff, PlainVanillaPayoff):
            raise ConfigurationError("non plain vanilla payoff given")
        maturity = option.exercise.last_date()
        spot = s0.value()
        require(spot > 0.0, "negative or null underlying given")
        dr = risk_free_ts.discount(maturity)
        dq = dividend_ts.discount(maturity)
        return payoff, spot, dr, dq, time(maturity)

    def _integrate(self, c_inf, f1, f2):
        p1 = self.integration.calculate(c_inf, f1) / math.pi
        n1 = self.integration.number_of_evaluations()
        p2 = self.integration.calculate(c_inf, f2) / math.pi
        n2 = self.integration.number_of_evaluations()
        self._evaluations = n1 + n2
        logger.debug("%s: %d integrand evaluations", type(self).__name__, self._evaluations)
        return p1, p2


class AnalyticHestonEngine(_HestonEngineBase):
    """Heston (1993) semi-analytic engine for European vanilla options.

    Parameters
    ----------
    model : HestonModel
    integration_order : int
        Gauss-Laguerre order used when ``integration`` is not given.
    integration : Integration, optional
        Quadrature rule for the probability integrals.
    cpx_log : ComplexLogFormula
        Gatheral's "little trap" form or the explicit branch correction.
    """

    def __init__(self, model: HestonModel, integration_order: int = HESTON_DEFAULT_ORDER,
                 integration: Integration | None = None,
                 cpx_log: ComplexLogFormula = ComplexLogFormula.Gatheral):
        super().__init__(model, integration, integration_order, cpx_log)

    def evaluation_date(self):
        return self.model.process.risk_free_rate.reference_date

    def price(self, option_type, spot, strike, term, dr, dq) -> float:
        """Price from market inputs; ``dr``/``dq`` are the discount factors to ``term``."""
        m = self.model
        kappa, theta, sigma, rho, v0 = m.kappa(), m.theta(), m.sigma(), m.rho(), m.v0()
        dd = math.log(spot) - math.log(dr / dq)
        sx = math.log(strike)
        c_inf = _c_inf(v0, kappa, theta, sigma, rho, term)
        f1 = _Fj(1, kappa, theta, sigma, v0, rho, term, dd, sx, self.cpx_log)
        f2 = _Fj(2, kappa, theta, sigma, v0, rho, term, dd, sx, self.cpx_log)
        p1, p2 = self._integrate(c_inf, f1, f2)
        return _price_from_probabilities(option_type, spot, strike, dq, dr, p1, p2)

    def calculate(self, option) -> Results:
        process = self.model.process
        payoff, spot, dr, dq, term = self._market(option, process.risk_free_rate,
                                                  process.dividend_yield, process.s0, process.time)
        value = self.price(payoff.option_type, spot, payoff.strike, term, dr, dq)
        return Results(value=value, additional_results={"evaluations": self._evaluations})


class AnalyticPTDHestonEngine(_HestonEngineBase):
    """Semi-analytic engine for ``PiecewiseTimeDependentHestonModel``."""

    def __init__(self, model: PiecewiseTimeDependentHestonModel,
                 integration_order: int = HESTON_DEFAULT_ORDER,
                 integration: Integration | None = None):
        super().__init__(model, integration, integration_order, ComplexLogFormula.Gatheral)

    def evaluation_date(self):
        return self.model.risk_free_rate.reference_date

    def calculate(self, option) -> Results:
        m = self.model
        payoff, spot, dr, dq, term = self._market(option, m.risk_free_rate, m.dividend_yield,
                                                  m.s0, m.time)
        require(term <= m.time_grid[-1] + 1e-12,
                f"maturity ({term}) is beyond the model's time grid ({m.time_grid[-1]})")
        mids = 0.5 * (m.time_grid[1:] + m.time_grid[:-1])
        c_inf = _c_inf(m.v0(), float(np.mean(m.kappa(mids))), float(np.mean(m.theta(mids))),
                       float(np.mean(m.sigma(mids))), float(np.mean(m.rho(mids))), term)

        dd = math.log(spot) - math.log(dr / dq)
        sx = math.log(payoff.strike)
        p1, p2 = self._integrate(c_inf, _PTDFj(1, m, term, dd, sx), _PTDFj(2, m, term, dd, sx))
        value = _price_from_probabilities(payoff.option_type, spot, payoff.strike, dq, dr, p1, p2)
        return Results(value=value, additional_results={"evaluations": self._evaluations})
