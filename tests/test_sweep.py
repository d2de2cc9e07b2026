import numpy as np
import pandas as pd
import pytest

from density_decay.config import NeighborhoodConfig
from density_decay.decay import NODECAY, DecayShape, parse_shapes
from density_decay.fitting import M_OWN, ModelSpec, smooth_df
from density_decay.neighborhood import build_feature_table
from density_decay.sweep import (
    RejectReason, RunKey, RunOutcome, RunState, RunStore, enumerate_runs, execute_run, model_frame,
    resolve_groups, run_sweep,
)

SHAPES = parse_shapes("3,nodecay")


@pytest.fixture
def features(random_census):
    cfg = NeighborhoodConfig(radius=10.0, edge_margin=10.0, decay_shapes=SHAPES)
    return build_feature_table(random_census, cfg)


def test_enumeration_order_and_size():
    runs = enumerate_runs(["b", "a"], [NODECAY, DecayShape(2)])
    assert len(runs) == 2 * 2 * 2 * 2
    assert runs[0] == RunKey("a", DecayShape(2), DecayShape(2), "count")
    assert runs[1] == RunKey("a", DecayShape(2), DecayShape(2), "size")
    assert runs[2] == RunKey("a", DecayShape(2), NODECAY, "count")
    assert runs[-1] == RunKey("b", NODECAY, NODECAY, "size")
    assert runs == enumerate_runs(["a", "b", "a"], [DecayShape(2), NODECAY])


def test_run_key_columns():
    key = RunKey("sp0", DecayShape(3), NODECAY, "size")
    assert key.own_column == "own_size_3"
    assert key.total_column == "combined_size_nodecay"
    assert key.label == "sp0|3|nodecay|size"


def test_smooth_df_rule():
    assert smooth_df(50, 10) == 10
    assert smooth_df(10, 10) == 10
    assert smooth_df(9, 10) == 8
    assert smooth_df(1, 6) == 4


def test_model_spec_from_data():
    data = pd.DataFrame({
        "size": np.arange(20.0),
        "own_density": np.repeat([0.0, 1.0], 10),
        "total_density": np.arange(20.0) % 7,
    })
    spec = ModelSpec.for_data(data, 10)
    assert (spec.df_size, spec.df_own, spec.df_total) == (10, 8, 8)
    assert spec.formula == (
        "outcome ~ bs(size, df=10) + bs(own_density, df=8) + bs(total_density, df=8)"
    )


def test_model_frame(features):
    key = RunKey("sp1", DecayShape(3), NODECAY, "count")
    data = model_frame(features, key)
    sub = features[features["group"] == "sp1"]
    assert len(data) == len(sub)
    assert list(data.columns) == ["outcome", "size", "own_density", "total_density", "interval"]
    np.testing.assert_array_equal(data["own_density"], sub["own_count_3"])
    np.testing.assert_array_equal(data["total_density"], sub["combined_count_nodecay"])


@pytest.mark.parametrize("behaviour,reason", [
    ("raise", RejectReason.FIT_FAILED),
    ("noconv", RejectReason.NO_CONVERGENCE),
    ("separation", RejectReason.SEPARATION),
    ("nocov", RejectReason.NO_COVARIANCE),
])
def test_rejection_reasons(features, fitter_cls, behaviour, reason):

    key = RunKey("sp0", DecayShape(3), DecayShape(3), "count")
    out = execute_run(key, 0, model_frame(features, key), fitter_cls(behaviour))
    assert out.state is RunState.REJECTED
    assert out.reason is reason
    assert out.fit is None


def test_rejection_precedence(features, fitter_cls):
    from density_decay.fitting import FitResult

    class Broken(fitter_cls):
        def fit(self, spec, data):
            n = len(data)
            return FitResult(
                converged=True, llf=-1.0, fitted=np.zeros(n), leverage=np.ones(n),
                has_covariance=False, nobs=n, n_params=3, aic=8.0,
            )

    key = RunKey("sp0", NODECAY, NODECAY, "count")
    out = execute_run(key, 0, model_frame(features, key), Broken())
    # separation is checked before covariance
    assert out.reason is RejectReason.SEPARATION


def test_accepted_run(features, fake_fitter):
    key = RunKey("sp0", NODECAY, NODECAY, "size")
    out = execute_run(key, 3, model_frame(features, key), fake_fitter)
    assert out.state is RunState.ACCEPTED
    assert out.reason is None
    assert out.spec is not None and out.fit is not None


def test_timeout_guard(features, fitter_cls):
    import time

    class Slow(fitter_cls):
        def fit(self, spec, data):
            time.sleep(0.05)
            return super().fit(spec, data)

    key = RunKey("sp0", NODECAY, NODECAY, "size")
    out = execute_run(key, 0, model_frame(features, key), Slow(), timeout=0.01)
    assert out.reason is RejectReason.FIT_FAILED
    assert "timeout" in out.detail


def test_run_sweep_accounts_for_every_run(features, fitter_cls):

    def flaky(spec, data):
        return "raise" if data[M_OWN].sum() == 0 else None

    store = run_sweep(features, SHAPES, fitter=fitter_cls(flaky))
    runs = enumerate_runs(resolve_groups(features), SHAPES)
    assert len(store) == len(runs)
    assert len(store.accepted) + len(store.rejected) == len(runs)
    rejected = store.rejected_frame()
    assert set(rejected["reason"]) <= {"fit-failed"}
    assert list(store.accepted_frame()["order"]) == sorted(store.accepted_frame()["order"])


def test_threaded_sweep_matches_serial(features, fitter_cls):

    serial = run_sweep(features, SHAPES, fitter=fitter_cls())
    threaded = run_sweep(features, SHAPES, fitter=fitter_cls(), nworkers=4)
    pd.testing.assert_frame_equal(
        serial.accepted_frame().drop(columns="elapsed"),
        threaded.accepted_frame().drop(columns="elapsed"),
    )


def test_sweep_resumes_from_store(features, fitter_cls):

    store = run_sweep(features, SHAPES, fitter=fitter_cls(), groups=["sp0"])
    n_first = len(store)
    fitter = fitter_cls()
    run_sweep(features, SHAPES, fitter=fitter, store=store)
    assert fitter.calls == len(store) - n_first
    assert len(store) == len(enumerate_runs(["sp0", "sp1"], SHAPES))


def test_sweep_group_restriction(features, fake_fitter):
    store = run_sweep(features, SHAPES, fitter=fake_fitter, groups=["sp1", "missing"])
    assert {k.group for k in store.accepted} | {k.group for k in store.rejected} == {"sp1"}


def test_store_is_keyed_and_append_only():
    store = RunStore()
    key = RunKey("a", NODECAY, NODECAY, "count")
    store.record(RunOutcome(key, 0).reject(RejectReason.SEPARATION))
    with pytest.raises(ValueError):
        store.record(RunOutcome(key, 0).reject(RejectReason.FIT_FAILED))
    with pytest.raises(ValueError):
        store.record(RunOutcome(RunKey("b", NODECAY, NODECAY, "count"), 1))
    assert store.reason_counts()["separation"] == 1
    assert key in store


def test_threaded_sweep_restores_warning_filters(features, fake_fitter):
    import warnings

    before = list(warnings.filters)
    run_sweep(features, SHAPES, fitter=fake_fitter, nworkers=4)
    assert warnings.filters == before
    run_sweep(features, SHAPES, fitter=fake_fitter)
    assert warnings.filters == before
