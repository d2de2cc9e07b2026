"""
Test configuration
==================

Shared census tables and a deterministic stand-in for the model backend.
"""

import numpy as np
import pandas as pd
import pytest

from density_decay.census import DataColumns, standardize_census
from density_decay.errors import FitError
from density_decay.fitting import M_OWN, M_TOTAL, FitResult

RAW_COLUMNS = DataColumns(edge="edge_flag")


@pytest.fixture
def scenario_census():
    """Five stems in a 300 x 300 plot; only the stem at (299, 299) is edge-affected."""
    raw = pd.DataFrame({
        "treeID": [1, 2, 3, 4, 5],
        "sp": ["A", "A", "B", "A", "B"],
        "gx": [0.0, 5.0, 0.0, 150.0, 299.0],
        "gy": [0.0, 0.0, 5.0, 150.0, 299.0],
        "dbh": [10.0, 20.0, 30.0, 40.0, 50.0],
        "edge_flag": [False, False, False, False, True],
        "mort": [0, 1, 0, 0, 1],
        "interval": [5.0, 5.0, 5.0, 5.0, 5.0],
    })
    return standardize_census(raw, RAW_COLUMNS)


def make_census(n_per_group=(120, 120), extent=200.0, seed=0, deaths=True):
    """Random census; groups are 'sp0', 'sp1', ... with density-dependent deaths."""
    rng = np.random.default_rng(seed)
    frames = []
    next_id = 0
    for g, n in enumerate(n_per_group):
        x = rng.uniform(0, extent, n)
        y = rng.uniform(0, extent, n)
        dbh = rng.lognormal(mean=2.5, sigma=0.6, size=n)
        p = 1.0 / (1.0 + np.exp(-(-1.5 - 0.02 * dbh + rng.normal(0, 0.8, n))))
        mort = (rng.uniform(size=n) < p).astype(int) if deaths else np.zeros(n, dtype=int)
        frames.append(pd.DataFrame({
            "treeID": np.arange(next_id, next_id + n),
            "sp": "sp{}".format(g),
            "gx": x,
            "gy": y,
            "dbh": dbh,
            "mort": mort,
            "interval": rng.uniform(4.5, 5.5, n),
        }))
        next_id += n
    return pd.concat(frames, ignore_index=True)


@pytest.fixture
def random_census():
    return standardize_census(make_census(), DataColumns())


class FakeFitter:
    """
    Deterministic backend. The log-likelihood rewards a large own-density
    mean and a small total-density mean, so the best combination is known.
    ``behaviour`` forces a failure mode: 'raise', 'noconv', 'separation',
    'nocov' or a callable(spec, data) -> str | None.
    """

    def __init__(self, behaviour=None):
        self.behaviour = behaviour
        self.calls = 0

    def fit(self, spec, data):
        self.calls += 1
        mode = self.behaviour(spec, data) if callable(self.behaviour) else self.behaviour
        if mode == "raise":
            raise FitError("singular design")

        n = len(data)
        fitted = np.full(n, 0.3)
        leverage = np.linspace(0.9, 0.1, n) if n else np.array([])
        if mode == "separation" and n:
            fitted[0] = 0.0
        llf = float(data[M_OWN].mean() - data[M_TOTAL].mean()) if n else 0.0
        return FitResult(
            converged=(mode != "noconv"),
            llf=llf,
            fitted=fitted,
            leverage=leverage,
            has_covariance=(mode != "nocov"),
            nobs=n,
            n_params=7,
            aic=-2 * llf + 14,
        )


@pytest.fixture
def fake_fitter():
    return FakeFitter()


@pytest.fixture
def census_factory():
    def build(**kwargs):
        return standardize_census(make_census(**kwargs), DataColumns())
    return build


@pytest.fixture
def fitter_cls():
    return FakeFitter
