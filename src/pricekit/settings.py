"""
Centralised numeric conventions for pricekit.
Every default tolerance, cap and bracket used across engines is defined here.
"""

# --- Units ---
BASIS_POINT = 1.0e-4
QL_EPSILON = 2.220446049250313e-16

# --- Heston quadrature ---
HESTON_DEFAULT_ORDER = 144          # Gauss-Laguerre order when none is given
HESTON_LAGUERRE_MAX_ORDER = 192     # beyond this the Laguerre weights under/overflow
HESTON_ADAPTIVE_MAX_EVALUATIONS = 10_000
HESTON_CINF_MIN = 1e-4
HESTON_CINF_MAX = 10.0

# --- Adaptive integrators ---
LOBATTO_DEFAULT_MAX_EVALUATIONS = 10_000
SIMPSON_DEFAULT_MAX_EVALUATIONS = 1_000

# --- Monte Carlo ---
MC_MIN_SAMPLES = 1023               # first batch when sizing by tolerance
MC_MAX_SAMPLES = 2 ** 31 - 1
MC_CONFIDENCE_FACTOR = 2.33         # ~98% one-sided

# --- Implied volatility / calibration ---
IMPLIED_VOL_MIN = 0.001
IMPLIED_VOL_MAX = 10.0
IMPLIED_VOL_ACCURACY = 1.0e-12
IMPLIED_VOL_MAX_EVALUATIONS = 5_000

# --- Cat bonds ---
CAT_BOND_MAX_PATHS = 10_000

DEFAULTS = {
    "basis_point": BASIS_POINT,
    "heston_default_order": HESTON_DEFAULT_ORDER,
    "heston_laguerre_max_order": HESTON_LAGUERRE_MAX_ORDER,
    "heston_adaptive_max_evaluations": HESTON_ADAPTIVE_MAX_EVALUATIONS,
    "lobatto_default_max_evaluations": LOBATTO_DEFAULT_MAX_EVALUATIONS,
    "simpson_default_max_evaluations": SIMPSON_DEFAULT_MAX_EVALUATIONS,
    "mc_min_samples": MC_MIN_SAMPLES,
    "mc_max_samples": MC_MAX_SAMPLES,
    "mc_confidence_factor": MC_CONFIDENCE_FACTOR,
    "implied_vol_min": IMPLIED_VOL_MIN,
    "implied_vol_max": IMPLIED_VOL_MAX,
    "implied_vol_accuracy": IMPLIED_VOL_ACCURACY,
    "implied_vol_max_evaluations": IMPLIED_VOL_MAX_EVALUATIONS,
    "cat_bond_max_paths": CAT_BOND_MAX_PATHS,
}
