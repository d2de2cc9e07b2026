"""
Decay-shape sweep.

One run per (focal group, own-group decay shape, total decay shape, basis).
Each run moves PENDING -> FITTING -> ACCEPTED | REJECTED. Checks are applied
in a fixed order and the first failing one names the rejection:

    fit-failed      backend raised FitError (or the run overran its time guard)
    no-convergence  IRLS did not converge
    separation      boundary fitted probability among the top-leverage points
    no-covariance   covariance matrix missing or non-finite

Runs are independent. Accepted fits go into a RunStore keyed by RunKey, so
results can be merged from worker threads in any order.
"""

import enum
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

import pandas as pd

from density_decay.census import GROUP, INTERVAL, OUTCOME, SIZE
from density_decay.decay import DecayShape, sorted_shapes
from density_decay.diagnostics import detect_separation
from density_decay.errors import FitError
from density_decay.fitting import (
    M_INTERVAL, M_OUTCOME, M_OWN, M_SIZE, M_TOTAL, FitResult, ModelSpec, StatsmodelsFitter,
    quiet_fit_warnings,
)
from density_decay.neighborhood import BASES, COMBINED, OWN, feature_column

logger = logging.getLogger(__name__)


class RunState(enum.Enum):
    PENDING = "pending"
    FITTING = "fitting"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class RejectReason(enum.Enum):
    FIT_FAILED = "fit-failed"
    NO_CONVERGENCE = "no-convergence"
    SEPARATION = "separation"
    NO_COVARIANCE = "no-covariance"


@dataclass(frozen=True)
class RunKey:
    group: str
    own_shape: DecayShape
    total_shape: DecayShape
    basis: str

    @property
    def label(self) -> str:
        return "{}|{}|{}|{}".format(self.group, self.own_shape.label, self.total_shape.label, self.basis)

    @property
    def own_column(self) -> str:
        return feature_column(OWN, self.own_shape, self.basis)

    @property
    def total_column(self) -> str:
        return feature_column(COMBINED, self.total_shape, self.basis)


@dataclass
class RunOutcome:
    key: RunKey
    order: int
    state: RunState = RunState.PENDING
    reason: Optional[RejectReason] = None
    detail: str = ""
    spec: Optional[ModelSpec] = None
    fit: Optional[FitResult] = None

    def reject(self, reason: RejectReason, detail: str = "") -> "RunOutcome":
        self.state = RunState.REJECTED
        self.reason = reason
        self.detail = detail
        return self

    def accept(self, fit: FitResult) -> "RunOutcome":
        self.state = RunState.ACCEPTED
        self.fit = fit
        return self


class RunStore:
    """Append-only, lock-protected store of finished runs keyed by RunKey."""

    def __init__(self):
        self._lock = threading.Lock()
        self._accepted: Dict[RunKey, RunOutcome] = {}
        self._rejected: Dict[RunKey, RunOutcome] = {}

    def record(self, outcome: RunOutcome) -> None:
        if outcome.state not in (RunState.ACCEPTED, RunState.REJECTED):
            raise ValueError("Only finished runs can be stored (got {})".format(outcome.state))
        with self._lock:
            if outcome.key in self._accepted or outcome.key in self._rejected:
                raise ValueError("Run already stored: {}".format(outcome.key.label))
            if outcome.state is RunState.ACCEPTED:
                self._accepted[outcome.key] = outcome
            else:
                self._rejected[outcome.key] = outcome

    def __len__(self):
        with self._lock:
            return len(self._accepted) + len(self._rejected)

    def __contains__(self, key):
        with self._lock:
            return key in self._accepted or key in self._rejected

    @property
    def accepted(self) -> Dict[RunKey, RunOutcome]:
        with self._lock:
            return dict(self._accepted)

    @property
    def rejected(self) -> Dict[RunKey, RunOutcome]:
        with self._lock:
            return dict(self._rejected)

    def accepted_frame(self) -> pd.DataFrame:
        rows = []
        for o in sorted(self.accepted.values(), key=lambda o: o.order):
            rows.append({
                "order": o.order,
                "group": o.key.group,
                "own_shape": o.key.own_shape.label,
                "total_shape": o.key.total_shape.label,
                "basis": o.key.basis,
                "llf": o.fit.llf,
                "aic": o.fit.aic,
                "nobs": o.fit.nobs,
                "n_params": o.fit.n_params,
                "df_size": o.spec.df_size,
                "df_own": o.spec.df_own,
                "df_total": o.spec.df_total,
                "elapsed": o.fit.elapsed,
            })
        cols = ["order", "group", "own_shape", "total_shape", "basis", "llf", "aic", "nobs",
                "n_params", "df_size", "df_own", "df_total", "elapsed"]
        return pd.DataFrame(rows, columns=cols)

    def rejected_frame(self) -> pd.DataFrame:
        rows = []
        for o in sorted(self.rejected.values(), key=lambda o: o.order):
            rows.append({
                "order": o.order,
                "group": o.key.group,
                "own_shape": o.key.own_shape.label,
                "total_shape": o.key.total_shape.label,
                "basis": o.key.basis,
                "reason": o.reason.value,
                "detail": o.detail,
            })
        return pd.DataFrame(rows, columns=["order", "group", "own_shape", "total_shape", "basis", "reason", "detail"])

    def reason_counts(self) -> Dict[str, int]:
        counts = {r.value: 0 for r in RejectReason}
        for o in self.rejected.values():
            counts[o.reason.value] += 1
        return counts


def enumerate_runs(groups: Iterable[str], shapes: Sequence[DecayShape], bases: Sequence[str] = BASES) -> List[RunKey]:
    """All run keys in a fixed order: group, own shape, total shape, basis."""
    shapes = sorted_shapes(shapes)
    return [
        RunKey(str(g), own, total, basis)
        for g in sorted(set(str(g) for g in groups))
        for own in shapes
        for total in shapes
        for basis in bases
    ]


def resolve_groups(features: pd.DataFrame, groups: Optional[Iterable[str]] = None) -> List[str]:
    """Focal groups to sweep: all groups present, or the requested ones that are present."""
    present = set(features[GROUP].astype(str).unique())
    if groups is None:
        return sorted(present)
    wanted = set(str(g) for g in groups)
    unknown = sorted(wanted - present)
    if unknown:
        logger.warning("groups with no focal rows skipped: %s", unknown)
    return sorted(wanted & present)


def model_frame(features: pd.DataFrame, key: RunKey) -> pd.DataFrame:
    """Rows of the focal group with the columns one run's model needs."""
    sub = features[features[GROUP] == key.group]
    return pd.DataFrame({
        M_OUTCOME: sub[OUTCOME].to_numpy(),
        M_SIZE: sub[SIZE].to_numpy(dtype=float),
        M_OWN: sub[key.own_column].to_numpy(dtype=float),
        M_TOTAL: sub[key.total_column].to_numpy(dtype=float),
        M_INTERVAL: sub[INTERVAL].to_numpy(dtype=float),
    })


def execute_run(
    key: RunKey,
    order: int,
    data: pd.DataFrame,
    fitter,
    smooth_ceiling: int = 10,
    top_fraction: float = 0.1,
    timeout: Optional[float] = None,
) -> RunOutcome:
    """Fit one run and decide ACCEPTED / REJECTED. Never raises FitError."""
    outcome = RunOutcome(key=key, order=order)
    outcome.spec = ModelSpec.for_data(data, smooth_ceiling)
    outcome.state = RunState.FITTING

    t0 = time.perf_counter()
    try:
        fit = fitter.fit(outcome.spec, data)
    except FitError as exc:
        return outcome.reject(RejectReason.FIT_FAILED, str(exc))
    elapsed = time.perf_counter() - t0

    if timeout is not None and elapsed > timeout:
        return outcome.reject(RejectReason.FIT_FAILED, "timeout after {:.1f}s".format(elapsed))
    if not fit.converged:
        return outcome.reject(RejectReason.NO_CONVERGENCE)
    if detect_separation(fit.fitted, fit.leverage, top_fraction):
        return outcome.reject(RejectReason.SEPARATION)
    if not fit.has_covariance:
        return outcome.reject(RejectReason.NO_COVARIANCE)
    return outcome.accept(fit)


def _finish(store: RunStore, outcome: RunOutcome) -> None:
    store.record(outcome)
    if outcome.state is RunState.REJECTED:
        logger.debug("run %s rejected: %s %s", outcome.key.label, outcome.reason.value, outcome.detail)


def run_sweep(
    features: pd.DataFrame,
    shapes: Sequence[DecayShape],
    fitter=None,
    store: Optional[RunStore] = None,
    smooth_ceiling: int = 10,
    top_fraction: float = 0.1,
    nworkers: int = 1,
    timeout: Optional[float] = None,
    groups: Optional[Iterable[str]] = None,
) -> RunStore:
    """
    Fit every run over the joined feature table and return the store.

    features : flat table from ``join_features`` (focal rows only)
    fitter   : object with ``fit(spec, data)``; defaults to StatsmodelsFitter()
    store    : runs already in it are skipped, so an interrupted sweep can resume
    timeout  : per-run wall-clock limit in seconds. It is checked when a fit
               returns; a fit that never returns is not interrupted, so
               StatsmodelsFitter's ``maxiter`` is what bounds a single fit.

    Fit warnings are silenced here, once, in the calling thread; workers never
    touch the process-global warning filters.
    """
    if fitter is None:
        fitter = StatsmodelsFitter()
    if store is None:
        store = RunStore()
    groups = resolve_groups(features, groups)
    keys = enumerate_runs(groups, shapes)
    todo = [(order, key) for order, key in enumerate(keys) if key not in store]
    # read-only per-group slices shared by all workers
    frames = {g: features[features[GROUP] == g] for g in groups}

    def task(order, key):
        data = model_frame(frames[key.group], key)
        return execute_run(key, order, data, fitter, smooth_ceiling, top_fraction, timeout)

    logger.info("sweep: %d runs (%d already stored), %d worker(s)", len(keys), len(keys) - len(todo), nworkers)

    with quiet_fit_warnings():
        if nworkers <= 1:
            for i, (order, key) in enumerate(todo, start=1):
                _finish(store, task(order, key))
                if i % 100 == 0:
                    logger.info("sweep: %d/%d runs done", i, len(todo))
        else:
            _run_pool(store, todo, task, nworkers)
    return store


def _run_pool(store: RunStore, todo, task, nworkers: int) -> None:
    pool = ThreadPoolExecutor(max_workers=nworkers)
    try:
        futures = [pool.submit(task, order, key) for order, key in todo]
        for i, fut in enumerate(as_completed(futures), start=1):
            _finish(store, fut.result())
            if i % 100 == 0:
                logger.info("sweep: %d/%d runs done", i, len(todo))
    except KeyboardInterrupt:
        logger.warning("sweep interrupted; discarding unfinished runs (%d stored)", len(store))
        pool.shutdown(wait=False, cancel_futures=True)
        raise
    pool.shutdown(wait=True)
