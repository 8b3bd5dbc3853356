"""Numerical integration.

Adaptive integrators (Gauss-Lobatto, Simpson, trapezoid, Gauss-Kronrod)
refine until an absolute accuracy is met and raise ``ConvergenceError``
once their evaluation cap is exceeded.  Fixed Gaussian rules
(Legendre, Chebyshev, Chebyshev 2nd kind, Laguerre) have a stated order
and a fixed cost.

Integrands are NumPy-vectorised callables: they receive an ndarray of
abscissae and must return an ndarray of the same shape.
"""

from __future__ import annotations

import logging
import math
import numpy as np
from scipy import integrate as _sp_integrate
from scipy import special

from .errors import ConvergenceError, require
from .settings import (
    QL_EPSILON, LOBATTO_DEFAULT_MAX_EVALUATIONS, SIMPSON_DEFAULT_MAX_EVALUATIONS,
)

logger = logging.getLogger(__name__)

__all__ = [
    "Integrator",
    "GaussLobattoIntegral",
    "TrapezoidIntegral",
    "SimpsonIntegral",
    "GaussKronrodIntegral",
    "GaussianQuadrature",
    "GaussLegendreIntegration",
    "GaussChebyshevIntegration",
    "GaussChebyshev2ndIntegration",
    "GaussLaguerreIntegration",
    "GaussLegendreIntegral",
]


def _eval(f, x):
    return np.asarray(f(np.asarray(x, dtype=float)), dtype=float)


# ---------------------------------------------------------------------------
# Adaptive integrators
# ---------------------------------------------------------------------------
class Integrator:
    """Base for adaptive integrators with an accuracy target and a cap."""

    def __init__(self, absolute_accuracy: float | None, max_evaluations: int):
        require(max_evaluations >= 1,
                f"required maxEvaluations ({max_evaluations}) not allowed. It must be >= 1")
        self.absolute_accuracy = absolute_accuracy
        self.max_evaluations = int(max_evaluations)
        self.absolute_error = 0.0
        self.number_of_evaluations = 0

    def __call__(self, f, a: float, b: float) -> float:
        self.number_of_evaluations = 0
        self.absolute_error = 0.0
        if a == b:
            return 0.0
        if b > a:
            value = self.integrate(f, a, b)
        else:
            value = -self.integrate(f, b, a)
        logger.debug("%s: %d evaluations on [%g, %g]",
                     type(self).__name__, self.number_of_evaluations, a, b)
        return value

    def integration_success(self) -> bool:
        return (self.number_of_evaluations <= self.max_evaluations
                and (self.absolute_accuracy is None
                     or self.absolute_error <= self.absolute_accuracy))

    def integrate(self, f, a: float, b: float) -> float:
        raise NotImplementedError

    def _count(self, n: int) -> None:
        self.number_of_evaluations += n


class GaussLobattoIntegral(Integrator):
    """Adaptive Gauss-Lobatto integration (Gander & Gautschi, 2000).

    The stopping tolerance is derived from a 13-point Kronrod estimate of
    the integral, so ``rel_accuracy`` acts relative to the integral's
    magnitude.  Each refinement splits the interval in six.

    Parameters
    ----------
    max_evaluations : int
        Hard cap on integrand evaluations.
    abs_accuracy : float
        Absolute accuracy target.
    rel_accuracy : float, optional
        Relative accuracy target.
    use_convergence_estimate : bool
        Scale the tolerance by the observed convergence ratio.
    """

    alpha = math.sqrt(2.0 / 3.0)
    beta = 1.0 / math.sqrt(5.0)
    x1 = 0.94288241569547971906
    x2 = 0.64185334234578130578
    x3 = 0.23638319966214988028

    def __init__(self, max_evaluations: int = LOBATTO_DEFAULT_MAX_EVALUATIONS,
                 abs_accuracy: float = 1e-8, rel_accuracy: float | None = None,
                 use_convergence_estimate: bool = True):
        super().__init__(abs_accuracy, max_evaluations)
        self.rel_accuracy = rel_accuracy
        self.use_convergence_estimate = use_convergence_estimate

    def integrate(self, f, a, b):
        tol = self._calculate_abs_tolerance(f, a, b)
        fa, fb = _eval(f, [a, b])
        self._count(2)
        return self._adaptive_step(f, a, b, float(fa), float(fb), tol)

    def _calculate_abs_tolerance(self, f, a, b) -> float:
        rel_tol = max(self.rel_accuracy or 0.0, QL_EPSILON)
        m = 0.5 * (a + b)
        h = 0.5 * (b - a)
        al, be = self.alpha, self.beta
        x1, x2, x3 = self.x1, self.x2, self.x3
        pts = np.array([a, m - al * h, m - be * h, m, m + be * h, m + al * h, b,
                        m - x1 * h, m + x1 * h, m - x2 * h, m + x2 * h,
                        m - x3 * h, m + x3 * h])
        y1, y3, y5, y7, y9, y11, y13, f1, f2, f3, f4, f5, f6 = _eval(f, pts)
        self._count(13)

        acc = h * (0.0158271919734801831 * (y1 + y13)
                   + 0.0942738402188500455 * (f1 + f2)
                   + 0.1550719873365853963 * (y3 + y11)
                   + 0.1888215739601824544 * (f3 + f4)
                   + 0.1997734052268585268 * (y5 + y9)
                   + 0.2249264653333395270 * (f5 + f6)
                   + 0.2426110719014077338 * y7)
        if acc == 0.0 and np.any(np.array([f1, f2, f3, f4, f5, f6]) != 0.0):
            raise ConvergenceError("can not calculate absolute accuracy from relative accuracy")

        r = 1.0
        if self.use_convergence_estimate:
            integral2 = (h / 6.0) * (y1 + y13 + 5.0 * (y5 + y9))
            integral1 = (h / 1470.0) * (77.0 * (y1 + y13) + 432.0 * (y3 + y11)
                                        + 625.0 * (y5 + y9) + 672.0 * y7)
            if abs(integral2 - acc) != 0.0:
                r = abs(integral1 - acc) / abs(integral2 - acc)
            if r == 0.0 or r > 1.0:
                r = 1.0

        if self.absolute_accuracy is None:
            return abs(acc) * rel_tol / (r * QL_EPSILON)
        if self.rel_accuracy is not None:
            return min(self.absolute_accuracy, abs(acc) * rel_tol) / (r * QL_EPSILON)
        return self.absolute_accuracy / (r * QL_EPSILON)

    def _adaptive_step(self, f, a, b, fa, fb, acc) -> float:
        if self.number_of_evaluations >= self.max_evaluations:
            raise ConvergenceError("max number of iterations reached")
        h = 0.5 * (b - a)
        m = 0.5 * (a + b)
        mll = m - self.alpha * h
        ml = m - self.beta * h
        mr = m + self.beta * h
        mrr = m + self.alpha * h

        fmll, fml, fm, fmr, fmrr = (float(v) for v in _eval(f, [mll, ml, m, mr, mrr]))
        self._count(5)

        integral2 = (h / 6.0) * (fa + fb + 5.0 * (fml + fmr))
        integral1 = (h / 1470.0) * (77.0 * (fa + fb) + 432.0 * (fmll + fmrr)
                                    + 625.0 * (fml + fmr) + 672.0 * fm)

        dist = acc + (integral1 - integral2)
        if dist == acc or mll <= a or b <= mrr:
            if not (m > a and b > m):
                raise ConvergenceError("interval contains no more machine numbers")
            self.absolute_error = max(self.absolute_error, abs(integral1 - integral2))
            return integral1

        return (self._adaptive_step(f, a, mll, fa, fmll, acc)
                + self._adaptive_step(f, mll, ml, fmll, fml, acc)
                + self._adaptive_step(f, ml, m, fml, fm, acc)
                + self._adaptive_step(f, m, mr, fm, fmr, acc)
                + self._adaptive_step(f, mr, mrr, fmr, fmrr, acc)
                + self._adaptive_step(f, mrr, b, fmrr, fb, acc))


class TrapezoidIntegral(Integrator):
    """Iteratively refined trapezoid rule (interval halving).

    Refinement stops with ``ConvergenceError`` once more than
    ``max_evaluations`` integrand values have been used.
    """

    min_refinements = 5

    def __init__(self, accuracy: float, max_evaluations: int = SIMPSON_DEFAULT_MAX_EVALUATIONS):
        super().__init__(accuracy, max_evaluations)

    def _refine(self, f, a, b, I, N):
        dx = (b - a) / N
        x = a + dx / 2.0 + dx * np.arange(N)
        self._count(N)
        return 0.5 * (I + dx * float(_eval(f, x).sum()))

    def integrate(self, f, a, b):
        fa, fb = _eval(f, [a, b])
        self._count(2)
        I = float(fa + fb) * (b - a) / 2.0
        N = 1
        i = 0
        while self.number_of_evaluations + N <= self.max_evaluations:
            i += 1
            new_I = self._refine(f, a, b, I, N)
            N *= 2
            if abs(I - new_I) <= self.absolute_accuracy and i > self.min_refinements:
                self.absolute_error = abs(I - new_I)
                return new_I
            I = new_I
        raise ConvergenceError("max number of iterations reached")


class SimpsonIntegral(TrapezoidIntegral):
    """Richardson-extrapolated trapezoid refinement (Simpson's rule)."""

    def integrate(self, f, a, b):
        fa, fb = _eval(f, [a, b])
        self._count(2)
        I = float(fa + fb) * (b - a) / 2.0
        adj_I = I
        N = 1
        i = 0
        while self.number_of_evaluations + N <= self.max_evaluations:
            i += 1
            new_I = self._refine(f, a, b, I, N)
            N *= 2
            new_adj_I = (4.0 * new_I - I) / 3.0
            if abs(adj_I - new_adj_I) <= self.absolute_accuracy and i > self.min_refinements:
                self.absolute_error = abs(adj_I - new_adj_I)
                return new_adj_I
            I, adj_I = new_I, new_adj_I
        raise ConvergenceError("max number of iterations reached")


class GaussKronrodIntegral(Integrator):
    """Adaptive Gauss-Kronrod (QUADPACK via ``scipy.integrate.quad``)."""

    def __init__(self, abs_accuracy: float, max_evaluations: int = LOBATTO_DEFAULT_MAX_EVALUATIONS):
        super().__init__(abs_accuracy, max_evaluations)

    def integrate(self, f, a, b):
        limit = max(1, self.max_evaluations // 21)
        value, err, info = _sp_integrate.quad(
            lambda x: float(_eval(f, x)), a, b,
            epsabs=self.absolute_accuracy, epsrel=0.0, limit=limit, full_output=1,
        )[:3]
        self._count(int(info["neval"]))
        self.absolute_error = float(err)
        if err > self.absolute_accuracy and self.number_of_evaluations >= self.max_evaluations:
            raise ConvergenceError("max number of iterations reached")
        return float(value)


# ---------------------------------------------------------------------------
# Fixed Gaussian rules
# ---------------------------------------------------------------------------
class GaussianQuadrature:
    """Fixed-order rule ``sum_i w_i f(x_i)`` on its natural domain.

    Weights already include the inverse of the rule's weight function,
    so the rule integrates ``f`` itself.
    """

    domain = (-1.0, 1.0)

    def __init__(self, x: np.ndarray, w: np.ndarray):
        self.x = np.asarray(x, dtype=float)
        self.w = np.asarray(w, dtype=float)

    @property
    def order(self) -> int:
        return self.x.size

    def __call__(self, f) -> float:
        return float(np.dot(self.w, _eval(f, self.x)))


class GaussLegendreIntegration(GaussianQuadrature):
    def __init__(self, n: int):
        require(n > 0, "order must be positive")
        x, w = special.roots_legendre(n)
        super().__init__(x, w)


class GaussChebyshevIntegration(GaussianQuadrature):
    """First-kind Chebyshev nodes; weight 1/sqrt(1-x^2) divided out."""

    def __init__(self, n: int):
        require(n > 0, "order must be positive")
        x, w = special.roots_chebyt(n)
        super().__init__(x, w * np.sqrt(1.0 - x * x))


class GaussChebyshev2ndIntegration(GaussianQuadrature):
    """Second-kind Chebyshev nodes; weight sqrt(1-x^2) divided out."""

    def __init__(self, n: int):
        require(n > 0, "order must be positive")
        x, w = special.roots_chebyu(n)
        super().__init__(x, w / np.sqrt(1.0 - x * x))


class GaussLaguerreIntegration(GaussianQuadrature):
    """Gauss-Laguerre on [0, inf) with weight exp(-x) divided out.

    ``w_i exp(x_i) = x_i / ((n+1)^2 psi_{n+1}(x_i)^2)`` with the scaled
    Laguerre function ``psi_k(x) = exp(-x/2) L_k(x)``, which stays
    bounded where ``w_i`` alone would underflow.
    """

    domain = (0.0, math.inf)

    def __init__(self, n: int):
        require(n > 0, "order must be positive")
        x, _ = special.roots_laguerre(n)
        psi_prev = np.exp(-0.5 * x)
        psi = psi_prev * (1.0 - x)
        for k in range(1, n + 1):
            psi_prev, psi = psi, ((2 * k + 1 - x) * psi - k * psi_prev) / (k + 1)
        super().__init__(x, x / ((n + 1) ** 2 * psi * psi))


class GaussLegendreIntegral:
    """Fixed-order Gauss-Legendre mapped onto an arbitrary [a, b]."""

    def __init__(self, order: int):
        self.rule = GaussLegendreIntegration(order)
        self.number_of_evaluations = 0

    def __call__(self, f, a: float, b: float) -> float:
        c1, c2 = 0.5 * (b - a), 0.5 * (a + b)
        self.number_of_evaluations = self.rule.order
        return c1 * self.rule(lambda x: f(c1 * x + c2))
