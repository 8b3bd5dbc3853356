# randomnumbers.py
# Gaussian draw generators for the Monte Carlo engines.
#
# Sequences hand out batches of shape (dimension, n): one row per
# (time step, factor) pair and one column per path.  A sequence keeps its
# state between batches, so tolerance-driven engines keep drawing fresh
# points from the same stream.

from __future__ import annotations
import warnings
import numpy as np
from scipy.stats import norm, qmc

from .errors import ConfigurationError, require

__all__ = [
    "PSEUDORANDOM",
    "LOWDISCREPANCY",
    "PseudoRandomGaussianSequence",
    "SobolGaussianSequence",
    "gaussian_sequence",
    "make_gaussian_draws",
]

PSEUDORANDOM = "pseudorandom"
LOWDISCREPANCY = "lowdiscrepancy"

_U_CLIP = 1e-12   # keeps norm.ppf finite at the unit-cube corners


class PseudoRandomGaussianSequence:
    """Standard normals from ``np.random.default_rng(seed)``."""

    def __init__(self, dimension: int, seed: int | None = None):
        require(dimension >= 1, f"dimension must be positive, got {dimension}")
        self.dimension = int(dimension)
        self.rng = np.random.default_rng(seed)

    def next_batch(self, n: int) -> np.ndarray:
        return self.rng.standard_normal((self.dimension, int(n)))


class SobolGaussianSequence:
    """Scrambled Sobol points mapped to normals with ``norm.ppf``.

    Deterministic for a given seed.
    """

    def __init__(self, dimension: int, seed: int | None = None):
        require(dimension >= 1, f"dimension must be positive, got {dimension}")
        self.dimension = int(dimension)
        self.sampler = qmc.Sobol(d=self.dimension, scramble=True, seed=seed)

    def next_batch(self, n: int) -> np.ndarray:
        with warnings.catch_warnings():
            # batch sizes follow the engines' sample counts, not powers of two
            warnings.simplefilter("ignore", UserWarning)
            u = self.sampler.random(int(n))
        u = np.clip(u, _U_CLIP, 1.0 - _U_CLIP)
        return norm.ppf(u).T


def gaussian_sequence(sequence_type: str, dimension: int, seed: int | None = None):
    """Factory for ``"pseudorandom"`` or ``"lowdiscrepancy"`` sequences."""
    kind = sequence_type.lower()
    if kind == PSEUDORANDOM:
        return PseudoRandomGaussianSequence(dimension, seed)
    if kind == LOWDISCREPANCY:
        return SobolGaussianSequence(dimension, seed)
    raise ConfigurationError(f"unknown sequence type {sequence_type!r}")


def make_gaussian_draws(n_paths: int, dimension: int, config=None, sequence=None) -> np.ndarray:
    """
    Draw ``n_paths`` Gaussian vectors of length ``dimension``.

    Parameters
    ----------
    n_paths : int
        Number of base draws (antithetic pairs count once).
    dimension : int
        Rows of the returned array.
    config : MCConfig, optional
        Supplies ``sequence_type``, ``seed`` and ``antithetic`` when no
        ``sequence`` is given.
    sequence : optional
        Existing generator to continue drawing from.

    Returns
    -------
    ndarray
        Shape ``(dimension, n_paths)``, or ``(dimension, 2 * n_paths)``
        with antithetic sampling: the mirrored block ``-Z`` follows ``Z``.
    """
    require(n_paths >= 1, f"n_paths must be positive, got {n_paths}")
    if sequence is None:
        sequence_type = getattr(config, "sequence_type", PSEUDORANDOM)
        seed = getattr(config, "seed", None)
        sequence = gaussian_sequence(sequence_type, dimension, seed)
    require(sequence.dimension == dimension,
            f"sequence dimension {sequence.dimension} does not match {dimension}")
    z = sequence.next_batch(n_paths)
    if getattr(config, "antithetic", False):
        z = np.concatenate([z, -z], axis=1)
    return z
