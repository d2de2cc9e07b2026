"""
Fixed-radius neighbor pairs.

neighbor_pairs() returns every ordered pair (focal, neighbor, distance) with
focal != neighbor and distance <= radius. Each unordered pair appears twice,
once per role. Points with identical coordinates are kept (distance 0).

Methods:
  grid   - bucket points into square cells of side = radius and compare only
           points in the 3x3 block of cells around each cell (default)
  kdtree - scipy.spatial.cKDTree.query_pairs
  brute  - all-pairs scan; fallback for small N only
"""

import logging

import numpy as np
import pandas as pd
from scipy.spatial import cKDTree

from density_decay.errors import DataValidationError

logger = logging.getLogger(__name__)

PAIR_COLUMNS = ["focal", "neighbor", "distance"]
METHODS = ("grid", "kdtree", "brute")

# all-pairs scan refuses anything bigger than this
BRUTE_MAX_POINTS = 5000

# the 3x3 block of cells around (and including) a cell
_CELL_OFFSETS = [(dx, dy) for dx in (-1, 0, 1) for dy in (-1, 0, 1)]


def _empty_pairs(ids) -> pd.DataFrame:
    return pd.DataFrame({
        "focal": pd.Series([], dtype=np.asarray(ids).dtype),
        "neighbor": pd.Series([], dtype=np.asarray(ids).dtype),
        "distance": pd.Series([], dtype=float),
    })


def _check_inputs(ids, x, y, radius):
    ids = np.asarray(ids)
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if not (ids.shape == x.shape == y.shape) or ids.ndim != 1:
        raise DataValidationError("ids, x and y must be 1-D arrays of equal length")
    if not (np.all(np.isfinite(x)) and np.all(np.isfinite(y))):
        raise DataValidationError("Non-finite coordinate passed to neighbor search")
    radius = float(radius)
    if not np.isfinite(radius) or radius < 0:
        raise DataValidationError("Neighbor radius must be finite and >= 0, got {}".format(radius))
    return ids, x, y, radius


def _both_directions(i, j, d):
    # (i, j) -> focal/neighbor in both roles
    return np.concatenate([i, j]), np.concatenate([j, i]), np.concatenate([d, d])


def _grid_index_pairs(x, y, radius):
    """Positional pairs (i, j, d) with i != j, d <= radius, each ordered pair once."""
    pts = pd.DataFrame({
        "idx": np.arange(x.size),
        "cx": np.floor((x - x.min()) / radius).astype(np.int64),
        "cy": np.floor((y - y.min()) / radius).astype(np.int64),
    })

    ii, jj = [], []
    for dx, dy in _CELL_OFFSETS:
        shifted = pts.assign(cx=pts["cx"] + dx, cy=pts["cy"] + dy)
        m = shifted.merge(pts, on=["cx", "cy"], suffixes=("_f", "_n"))
        keep = m["idx_f"].to_numpy() != m["idx_n"].to_numpy()
        ii.append(m["idx_f"].to_numpy()[keep])
        jj.append(m["idx_n"].to_numpy()[keep])

    i = np.concatenate(ii)
    j = np.concatenate(jj)
    d = np.hypot(x[i] - x[j], y[i] - y[j])
    inside = d <= radius
    return i[inside], j[inside], d[inside]


def _kdtree_index_pairs(x, y, radius):
    tree = cKDTree(np.column_stack([x, y]))
    ij = tree.query_pairs(radius, output_type="ndarray")
    if ij.size == 0:
        empty = np.array([], dtype=np.int64)
        return empty, empty, np.array([], dtype=float)
    i, j = ij[:, 0], ij[:, 1]
    d = np.hypot(x[i] - x[j], y[i] - y[j])
    # query_pairs can admit pairs a rounding error past the radius
    inside = d <= radius
    return _both_directions(i[inside], j[inside], d[inside])


def _brute_index_pairs(x, y, radius):
    if x.size > BRUTE_MAX_POINTS:
        raise DataValidationError(
            "brute neighbor search is limited to {} points (got {}); use 'grid'".format(BRUTE_MAX_POINTS, x.size)
        )
    i, j = np.triu_indices(x.size, k=1)
    d = np.hypot(x[i] - x[j], y[i] - y[j])
    inside = d <= radius
    return _both_directions(i[inside], j[inside], d[inside])


def neighbor_pairs(ids, x, y, radius: float, method: str = "grid") -> pd.DataFrame:
    ids, x, y, radius = _check_inputs(ids, x, y, radius)
    if method not in METHODS:
        raise DataValidationError("Unknown neighbor search method '{}'; expected one of {}".format(method, list(METHODS)))

    if radius == 0 or ids.size < 2:
        return _empty_pairs(ids)

    if method == "grid":
        i, j, d = _grid_index_pairs(x, y, radius)
    elif method == "kdtree":
        i, j, d = _kdtree_index_pairs(x, y, radius)
    else:
        i, j, d = _brute_index_pairs(x, y, radius)

    pairs = pd.DataFrame({"focal": ids[i], "neighbor": ids[j], "distance": d})
    pairs = pairs.sort_values(["focal", "neighbor"], kind="mergesort").reset_index(drop=True)
    logger.debug("neighbor_pairs(%s): %d points, radius=%g -> %d ordered pairs", method, ids.size, radius, len(pairs))
    return pairs
