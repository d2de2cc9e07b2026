import math

import numpy as np
import pandas as pd
import pytest

from density_decay.config import NeighborhoodConfig
from density_decay.decay import DecayShape, parse_shapes
from density_decay.neighborhood import (
    BASES, COMPARISONS, aggregate_neighborhoods, build_feature_table, feature_column, join_features,
)
from density_decay.proximity import neighbor_pairs

SHAPES = parse_shapes("2,5,nodecay")


def _density(census, radius=10.0, shapes=SHAPES, **kwargs):
    pairs = neighbor_pairs(census["id"].to_numpy(), census["x"].to_numpy(), census["y"].to_numpy(), radius)
    return aggregate_neighborhoods(census, pairs, shapes, **kwargs)


def test_scenario_neighbor_counts(scenario_census):
    density = _density(scenario_census)
    assert list(density.index) == [1, 2, 3, 4]

    total = density[("combined", "nodecay", "count")]
    assert total.to_dict() == {1: 2.0, 2: 2.0, 3: 2.0, 4: 0.0}

    own = density[("own", "nodecay", "count")]
    other = density[("other", "nodecay", "count")]
    # 1:A sees 2:A and 3:B; 2:A sees 1:A and 3:B; 3:B sees only A stems
    assert own.to_dict() == {1: 1.0, 2: 1.0, 3: 0.0, 4: 0.0}
    assert other.to_dict() == {1: 1.0, 2: 1.0, 3: 2.0, 4: 0.0}


def test_scenario_weighted_values(scenario_census):
    density = _density(scenario_census)
    # stem 1: own neighbor stem 2 (dbh 20) at 5, other neighbor stem 3 (dbh 30) at 5
    assert density.loc[1, ("own", "5", "count")] == pytest.approx(math.exp(-1))
    assert density.loc[1, ("own", "5", "size")] == pytest.approx(20 * math.exp(-1))
    assert density.loc[1, ("other", "2", "size")] == pytest.approx(30 * math.exp(-2.5))
    assert density.loc[1, ("own", "nodecay", "size")] == 20.0
    # stem 2: other neighbor stem 3 at sqrt(50)
    assert density.loc[2, ("other", "5", "count")] == pytest.approx(math.exp(-math.sqrt(50) / 5))


def test_isolated_focal_has_all_zero_metrics(scenario_census):
    density = _density(scenario_census)
    assert (density.loc[4] == 0.0).all()
    assert len(density.loc[4]) == len(COMPARISONS) * len(SHAPES) * len(BASES)


def test_edge_stem_is_never_a_focal_row(scenario_census):
    density = _density(scenario_census)
    assert 5 not in density.index


def test_edge_stem_still_counts_as_neighbor():
    census = pd.DataFrame({
        "id": [1, 2],
        "group": ["A", "A"],
        "x": [0.0, 3.0],
        "y": [0.0, 0.0],
        "size": [1.0, 2.0],
        "edge": [False, True],
        "outcome": [0, 0],
        "interval": [1.0, 1.0],
    })
    density = _density(census)
    assert list(density.index) == [1]
    assert density.loc[1, ("own", "nodecay", "count")] == 1.0
    assert density.loc[1, ("own", "nodecay", "size")] == 2.0


def test_combined_is_exact_sum(random_census):
    census = random_census.assign(edge=False)
    density = _density(census, radius=15.0, shapes=parse_shapes("1,3.3,7,nodecay"))
    combined = density["combined"]
    summed = density["own"] + density["other"]
    pd.testing.assert_frame_equal(combined, summed, check_exact=True)


def test_radius_zero_gives_zero_metrics(random_census):
    census = random_census.assign(edge=False)
    density = _density(census, radius=0.0)
    assert len(density) == len(census)
    assert (density.to_numpy() == 0.0).all()


def test_column_layout(scenario_census):
    density = _density(scenario_census)
    assert density.columns.names == ["comparison", "shape", "basis"]
    assert list(density.columns.get_level_values(0).unique()) == ["own", "other", "combined"]
    assert list(density.columns.get_level_values(1).unique()) == ["2", "5", "nodecay"]


def test_basal_area_size_transform(scenario_census):
    density = _density(scenario_census, size_transform="basal_area")
    assert density.loc[1, ("own", "nodecay", "size")] == pytest.approx(math.pi * 10 ** 2)


def test_feature_column_names():
    assert feature_column("own", DecayShape(2.5), "count") == "own_count_2.5"
    assert feature_column("combined", "nodecay", "size") == "combined_size_nodecay"


def test_join_features(scenario_census):
    density = _density(scenario_census)
    joined = join_features(scenario_census, density)
    assert joined["id"].tolist() == [1, 2, 3, 4]
    assert joined.loc[0, "group"] == "A"
    assert joined.loc[2, "other_count_nodecay"] == 2.0
    assert "combined_size_5" in joined.columns


def test_build_feature_table_uses_supplied_edges(scenario_census):
    cfg = NeighborhoodConfig(radius=10.0, edge_margin=30.0, decay_shapes=SHAPES)
    features = build_feature_table(scenario_census, cfg)
    assert features["id"].tolist() == [1, 2, 3, 4]
    counts = features.set_index("id")["combined_count_nodecay"].to_dict()
    assert counts == {1: 2.0, 2: 2.0, 3: 2.0, 4: 0.0}


def test_build_feature_table_derives_edges(random_census):
    cfg = NeighborhoodConfig(radius=10.0, edge_margin=20.0, decay_shapes=SHAPES)
    features = build_feature_table(random_census, cfg)
    x, y = features["x"], features["y"]
    lo_x, hi_x = random_census["x"].min(), random_census["x"].max()
    lo_y, hi_y = random_census["y"].min(), random_census["y"].max()
    assert ((x - lo_x >= 20) & (hi_x - x >= 20) & (y - lo_y >= 20) & (hi_y - y >= 20)).all()
    assert 0 < len(features) < len(random_census)


def test_negative_size_fails(scenario_census):
    bad = scenario_census.copy()
    bad.loc[0, "size"] = -1.0
    pairs = neighbor_pairs(bad["id"].to_numpy(), bad["x"].to_numpy(), bad["y"].to_numpy(), 10.0)
    with pytest.raises(ValueError):
        aggregate_neighborhoods(bad, pairs, SHAPES)


def test_matches_brute_force_sums(random_census):
    census = random_census.assign(edge=False).head(60)
    density = _density(census, radius=25.0, shapes=parse_shapes("4,nodecay"))
    attrs = census.set_index("id")
    for fid in census["id"].head(10):
        f = attrs.loc[fid]
        own = 0.0
        for nid, n in attrs.iterrows():
            if nid == fid:
                continue
            d = math.hypot(f["x"] - n["x"], f["y"] - n["y"])
            if d <= 25.0 and n["group"] == f["group"]:
                own += math.exp(-d / 4) * n["size"]
        assert density.loc[fid, ("own", "4", "size")] == pytest.approx(own, rel=1e-12, abs=1e-12)
