"""Model validation helpers.

Cross-engine benchmarking of the Heston quadrature rules (optionally
against Monte Carlo) and convergence analysis of the Monte Carlo
engines as the sample count grows.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Optional

import numpy as np

from .black import AnalyticEuropeanEngine
from .heston import AnalyticHestonEngine, HestonModel, Integration
from .montecarlo import MCConfig, MCEuropeanEngine, MCEuropeanHestonEngine
from .processes import HestonProcess

__all__ = [
    "default_heston_integrations",
    "cross_validate_heston",
    "convergence_analysis",
]


def default_heston_integrations() -> dict[str, Integration]:
    return {
        "laguerre": Integration.gauss_laguerre(128),
        "legendre": Integration.gauss_legendre(512),
        "chebyshev": Integration.gauss_chebyshev(512),
        "chebyshev2nd": Integration.gauss_chebyshev2nd(512),
    }


# ---------------------------------------------------------------------------
# Cross-engine benchmarking
# ---------------------------------------------------------------------------
def cross_validate_heston(
    model: HestonModel,
    option,
    *,
    integrations: Optional[dict[str, Integration]] = None,
    reference: Optional[str] = None,
    mc_config: Optional[MCConfig] = None,
) -> dict:
    """Price ``option`` with several Heston engines and compare.

    Parameters
    ----------
    model : HestonModel
    option : VanillaOption
        European plain-vanilla option; its own engine is left untouched.
    integrations : dict, optional
        Name -> ``Integration``.  Default: Laguerre 128 and the three
        finite-domain Gaussian rules at order 512.
    reference : str, optional
        Key of the reference rule (default: the first one).
    mc_config : MCConfig, optional
        Also price with ``MCEuropeanHestonEngine`` under this config.

    Returns
    -------
    dict
        One price per rule, ``"mc"`` as (price, stderr) when requested,
        ``"reference"`` and ``"max_discrepancy"`` (over the rules only).
    """
    if integrations is None:
        integrations = default_heston_integrations()
    if reference is None:
        reference = next(iter(integrations))

    results: dict = {}
    for name, integration in integrations.items():
        engine = AnalyticHestonEngine(model, integration=integration)
        results[name] = float(engine.calculate(option).value)

    ref = results[reference]
    discs = [abs(v - ref) for k, v in results.items() if k != reference]
    results["reference"] = reference
    results["max_discrepancy"] = max(discs) if discs else 0.0

    if mc_config is not None:
        res = MCEuropeanHestonEngine(model.process, mc_config).calculate(option)
        results["mc"] = (float(res.value), float(res.error_estimate))

    return results


# ---------------------------------------------------------------------------
# Convergence analysis
# ---------------------------------------------------------------------------
def convergence_analysis(
    process,
    option,
    config: MCConfig,
    sample_counts,
    *,
    reference: Optional[float] = None,
) -> dict:
    """Analyse Monte Carlo convergence as the sample count varies.

    Parameters
    ----------
    process : GeneralizedBlackScholesProcess | HestonProcess
    option : VanillaOption
    config : MCConfig
        Template; ``samples`` is replaced for each run.
    sample_counts : array-like
        Sample counts to test.
    reference : float, optional
        True price.  Default: the analytic engine for the process.

    Returns
    -------
    dict
        ``"params"``, ``"prices"``, ``"stderrs"``, ``"errors"`` and
        ``"order"``, the decay order of the error estimate (about 0.5).
    """
    sample_counts = [int(n) for n in sample_counts]
    heston = isinstance(process, HestonProcess)

    if reference is None:
        engine = AnalyticHestonEngine(HestonModel(process)) if heston \
            else AnalyticEuropeanEngine(process)
        reference = float(engine.calculate(option).value)

    mc_engine = MCEuropeanHestonEngine if heston else MCEuropeanEngine
    prices, stderrs = [], []
    for n in sample_counts:
        cfg = replace(config, samples=n, required_tolerance=None)
        res = mc_engine(process, cfg).calculate(option)
        prices.append(float(res.value))
        stderrs.append(float(res.error_estimate))

    errors = [abs(p - reference) for p in prices]

    # Estimate convergence order from log-log regression of the stderr
    order = float("nan")
    valid = [(n, s) for n, s in zip(sample_counts, stderrs) if s > 0]
    if len(valid) >= 2:
        log_n = np.log([n for n, _ in valid])
        log_s = np.log([s for _, s in valid])
        # stderr ~ C / n^order  => log(s) = -order * log(n) + const
        coeffs = np.polyfit(log_n, log_s, 1)
        order = -float(coeffs[0])

    return {
        "params": sample_counts,
        "prices": prices,
        "stderrs": stderrs,
        "errors": errors,
        "reference": reference,
        "order": order,
    }
