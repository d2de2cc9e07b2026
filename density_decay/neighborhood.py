"""
Neighborhood density aggregation.

For every focal stem that is not edge-affected, neighbors within the radius
are split into own-group and other-group, and for each decay shape we sum

    count:  w(d)
    size:   w(d) * neighbor_size

NODECAY (w = 1) gives the unweighted count and size-sum. The combined class
is own + other, derived from the two summed tables and never recomputed from
the pairs. Focal stems without neighbors get zeros everywhere.

Result layout: rows = focal ids, columns = MultiIndex(comparison, shape, basis).
"""

import logging

import numpy as np
import pandas as pd

from density_decay.census import EDGE, GROUP, ID, SIZE, X, Y, neighbor_size
from density_decay.decay import sorted_shapes, weights
from density_decay.edges import PlotWindow, classify_edges
from density_decay.errors import DataValidationError
from density_decay.proximity import neighbor_pairs

logger = logging.getLogger(__name__)

OWN, OTHER, COMBINED = "own", "other", "combined"
COMPARISONS = (OWN, OTHER, COMBINED)
COUNT, SIZE_BASIS = "count", "size"
BASES = (COUNT, SIZE_BASIS)
COLUMN_LEVELS = ["comparison", "shape", "basis"]


def feature_column(comparison: str, shape, basis: str) -> str:
    """Flat column name for one density metric, e.g. 'own_count_5' or 'combined_size_nodecay'."""
    label = shape if isinstance(shape, str) else shape.label
    return "{}_{}_{}".format(comparison, basis, label)


def _metric_index(shapes) -> pd.MultiIndex:
    return pd.MultiIndex.from_tuples(
        [(s.label, b) for s in shapes for b in BASES], names=["shape", "basis"]
    )


def aggregate_neighborhoods(
    census: pd.DataFrame,
    pairs: pd.DataFrame,
    shapes,
    kernel: str = "exponential",
    size_transform: str = "identity",
) -> pd.DataFrame:
    """
    census : canonical census table with an ``edge`` column
    pairs  : focal / neighbor / distance rows from ``neighbor_pairs``
    shapes : decay shapes (NODECAY is expected among them)
    """
    if EDGE not in census.columns:
        raise DataValidationError("aggregate_neighborhoods needs an '{}' column".format(EDGE))
    size = census[SIZE].to_numpy(dtype=float)
    if not np.all(np.isfinite(size)) or np.any(size < 0):
        raise DataValidationError("Size must be finite and >= 0 for every stem")
    if len(pairs) and (pairs["distance"].to_numpy() < 0).any():
        raise DataValidationError("Negative pair distance")

    shapes = sorted_shapes(shapes)
    metrics = _metric_index(shapes)

    focal_ids = pd.Index(census.loc[~census[EDGE].to_numpy(dtype=bool), ID], name=ID)
    attrs = census.set_index(ID)
    group = attrs[GROUP]
    nb_size_all = pd.Series(neighbor_size(attrs[SIZE], size_transform), index=attrs.index)

    p = pairs[pairs["focal"].isin(focal_ids)]

    if len(p) == 0:
        zeros = pd.DataFrame(0.0, index=focal_ids, columns=metrics)
        own_tbl, other_tbl = zeros, zeros.copy()
    else:
        d = p["distance"].to_numpy(dtype=float)
        focal = p["focal"].to_numpy()
        nb = p["neighbor"].to_numpy()
        same = group.reindex(focal).to_numpy() == group.reindex(nb).to_numpy()
        nb_size = nb_size_all.reindex(nb).to_numpy()

        values = np.empty((len(p), len(metrics)), dtype=float)
        col = 0
        for s in shapes:
            w = weights(s, d, kernel)
            values[:, col] = w
            values[:, col + 1] = w * nb_size
            col += 2

        contrib = pd.DataFrame(values, columns=metrics)
        cls = np.where(same, OWN, OTHER)
        sums = contrib.groupby([focal, cls]).sum()

        full = pd.MultiIndex.from_product([focal_ids, [OWN, OTHER]])
        sums = sums.reindex(full, fill_value=0.0)
        own_tbl = sums.xs(OWN, level=1)
        other_tbl = sums.xs(OTHER, level=1)
        own_tbl.index.name = ID
        other_tbl.index.name = ID

    combined = own_tbl + other_tbl
    density = pd.concat({OWN: own_tbl, OTHER: other_tbl, COMBINED: combined}, axis=1)
    density.columns = density.columns.set_names(COLUMN_LEVELS)

    logger.info(
        "aggregated %d focal stems (%d edge-affected excluded) over %d decay shapes",
        len(focal_ids), int(census[EDGE].sum()), len(shapes),
    )
    return density


def flatten_density(density: pd.DataFrame) -> pd.DataFrame:
    flat = density.copy()
    flat.columns = [feature_column(c, s, b) for c, s, b in density.columns]
    return flat


def join_features(census: pd.DataFrame, density: pd.DataFrame) -> pd.DataFrame:
    """Census attributes of the focal rows + every density metric as a flat column."""
    flat = flatten_density(density)
    base = census.set_index(ID).loc[density.index]
    joined = base.join(flat)
    joined.index.name = ID
    return joined.reset_index()


def resolve_edges(census: pd.DataFrame, window: PlotWindow = None, margin: float = 0.0) -> pd.DataFrame:
    """Keep a supplied edge flag, otherwise derive it from the window and margin."""
    if EDGE in census.columns:
        return census
    if window is None:
        window = PlotWindow.from_extent(census[X], census[Y])
    out = census.copy()
    out[EDGE] = classify_edges(out[X], out[Y], window, margin)
    return out


def build_feature_table(census: pd.DataFrame, config) -> pd.DataFrame:
    """
    Whole first stage for one census interval.

    config : NeighborhoodConfig
    """
    census = resolve_edges(census, config.window, config.edge_margin)
    pairs = neighbor_pairs(
        census[ID].to_numpy(), census[X].to_numpy(), census[Y].to_numpy(),
        config.radius, method=config.proximity_method,
    )
    density = aggregate_neighborhoods(
        census, pairs, config.decay_shapes,
        kernel=config.kernel, size_transform=config.size_transform,
    )
    return join_features(census, density)
