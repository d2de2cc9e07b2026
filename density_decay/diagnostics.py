"""Post-fit quality checks used to accept or reject a run."""

import math

import numpy as np

# GLM convention for "fitted probabilities numerically 0 or 1"
BOUNDARY_TOL = 10 * np.finfo(float).eps


def flag_boundary_probabilities(fitted, tol: float = BOUNDARY_TOL) -> np.ndarray:
    p = np.asarray(fitted, dtype=float)
    return (p <= tol) | (p >= 1.0 - tol)


def top_leverage_mask(leverage, top_fraction: float = 0.1) -> np.ndarray:
    """True for the ceil(top_fraction * n) observations with the largest leverage."""
    h = np.asarray(leverage, dtype=float)
    n = h.size
    mask = np.zeros(n, dtype=bool)
    if n == 0:
        return mask
    k = min(n, int(math.ceil(top_fraction * n)))
    # NaN leverage ranks last; ties keep observation order
    key = np.where(np.isnan(h), -np.inf, h)
    order = np.argsort(-key, kind="mergesort")
    mask[order[:k]] = True
    return mask


def detect_separation(fitted, leverage, top_fraction: float = 0.1, tol: float = BOUNDARY_TOL) -> bool:
    """
    Likely complete separation: some observation has a fitted probability
    within ``tol`` of 0 or 1 and is among the top ``top_fraction`` by leverage.
    """
    flagged = flag_boundary_probabilities(fitted, tol)
    if flagged.shape != np.shape(leverage):
        raise ValueError("fitted and leverage must have the same length")
    if not flagged.any():
        return False
    return bool(np.any(flagged & top_leverage_mask(leverage, top_fraction)))


def has_usable_covariance(cov) -> bool:
    c = np.asarray(cov, dtype=float)
    if c.ndim != 2 or c.shape[0] == 0 or c.shape[0] != c.shape[1]:
        return False
    if not np.all(np.isfinite(c)):
        return False
    return bool(np.all(np.diag(c) >= 0))
