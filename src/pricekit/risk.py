"""Bump-and-reprice risk through market quotes.

Greeks are central finite differences of ``instrument.npv()`` while one
``SimpleQuote`` is moved.  The instrument re-prices lazily through the
quote -> curve/process -> engine -> instrument notification chain, so any
engine works, analytic or Monte Carlo (use a fixed seed for the latter).
Every bumped quote is restored before returning.
"""

from __future__ import annotations

from contextlib import contextmanager

import numpy as np

from .errors import require
from .quotes import SimpleQuote

__all__ = [
    "bumped",
    "numerical_greeks",
    "scenario_grid",
]


@contextmanager
def bumped(quote: SimpleQuote, new_value: float):
    """Temporarily set ``quote`` to ``new_value``."""
    old = quote.value()
    quote.set_value(new_value)
    try:
        yield quote
    finally:
        quote.set_value(old)


def _central(instrument, quote: SimpleQuote, h: float) -> tuple[float, float, float]:
    x0 = quote.value()
    with bumped(quote, x0 + h):
        up = instrument.npv()
    with bumped(quote, x0 - h):
        down = instrument.npv()
    return up, instrument.npv(), down


# ---------------------------------------------------------------------------
# Numerical Greeks
# ---------------------------------------------------------------------------
def numerical_greeks(
    instrument,
    spot_quote: SimpleQuote | None = None,
    vol_quote: SimpleQuote | None = None,
    rate_quote: SimpleQuote | None = None,
    dividend_quote: SimpleQuote | None = None,
    *,
    bump_pct: float = 0.01,
    rate_bump: float = 1.0e-4,
) -> dict[str, float]:
    """Compute Greeks via central finite differences on quote bumps.

    Parameters
    ----------
    instrument : Instrument
        Priced through its attached engine.
    spot_quote, vol_quote, rate_quote, dividend_quote : SimpleQuote, optional
        Quotes the instrument's curves and process are built on.  Greeks
        for missing quotes are omitted.
    bump_pct : float
        Relative bump for spot and vol (default 1%).
    rate_bump : float
        Absolute bump for the rate and dividend quotes (default 1bp).

    Returns
    -------
    dict[str, float]
        A subset of ``delta``, ``gamma``, ``vega``, ``rho``, ``dividend_rho``.
    """
    require(bump_pct > 0.0 and rate_bump > 0.0, "bump sizes must be positive")
    greeks: dict[str, float] = {}

    # --- Delta & Gamma (spot bump) ---
    if spot_quote is not None:
        h = bump_pct * spot_quote.value()
        up, mid, down = _central(instrument, spot_quote, h)
        greeks["delta"] = (up - down) / (2.0 * h)
        greeks["gamma"] = (up - 2.0 * mid + down) / (h * h)

    # --- Vega (vol bump) ---
    if vol_quote is not None:
        h = max(bump_pct * vol_quote.value(), 1.0e-4)
        up, _, down = _central(instrument, vol_quote, h)
        greeks["vega"] = (up - down) / (2.0 * h)

    # --- Rho (rate bump) ---
    if rate_quote is not None:
        up, _, down = _central(instrument, rate_quote, rate_bump)
        greeks["rho"] = (up - down) / (2.0 * rate_bump)

    if dividend_quote is not None:
        up, _, down = _central(instrument, dividend_quote, rate_bump)
        greeks["dividend_rho"] = (up - down) / (2.0 * rate_bump)

    return {k: float(v) for k, v in greeks.items()}


# ---------------------------------------------------------------------------
# Scenario grid
# ---------------------------------------------------------------------------
def scenario_grid(instrument, spot_quote: SimpleQuote, vol_quote: SimpleQuote,
                  spot_range, vol_range) -> dict:
    """Re-price across a 2-D (spot x vol) grid.

    Returns
    -------
    dict
        ``"spot_values"``, ``"vol_values"``, ``"prices"`` (shape n_spot x n_vol).
    """
    spot_range = np.asarray(spot_range, dtype=float)
    vol_range = np.asarray(vol_range, dtype=float)
    prices = np.empty((len(spot_range), len(vol_range)))

    for i, s in enumerate(spot_range):
        with bumped(spot_quote, float(s)):
            for j, v in enumerate(vol_range):
                with bumped(vol_quote, float(v)):
                    prices[i, j] = instrument.npv()

    return {
        "spot_values": spot_range.copy(),
        "vol_values": vol_range.copy(),
        "prices": prices,
    }
