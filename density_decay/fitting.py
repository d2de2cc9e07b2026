"""
Model fitting backend.

The sweep only needs ``fit(spec, data) -> FitResult`` (or a raised FitError).
The default backend is a Binomial GLM with complementary log-log link and
log(interval) offset, so the hazard scales with interval length, and
B-spline smooths on the three covariates:

    outcome ~ bs(size, df=k1) + bs(own_density, df=k2) + bs(total_density, df=k3)
              + offset(log(interval))
"""

import time
import warnings
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np
import pandas as pd
import statsmodels.api as sm
import statsmodels.formula.api as smf
from patsy import PatsyError
from statsmodels.tools.sm_exceptions import ConvergenceWarning, PerfectSeparationError

from density_decay.diagnostics import has_usable_covariance
from density_decay.errors import FitError

# model-frame column names
M_OUTCOME = "outcome"
M_SIZE = "size"
M_OWN = "own_density"
M_TOTAL = "total_density"
M_INTERVAL = "interval"


def smooth_df(n_distinct: int, ceiling: int) -> int:
    """
    Flexibility of one smooth term: the ceiling, or ceiling - 2 when the
    covariate has fewer distinct values than the ceiling.
    """
    if n_distinct < ceiling:
        return ceiling - 2
    return ceiling


@contextmanager
def quiet_fit_warnings():
    """
    Silence IRLS convergence and overflow chatter for the duration of a sweep.

    The warning filters are process-global, so this is entered once by the
    calling thread and never from inside a worker.
    """
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", ConvergenceWarning)
        warnings.simplefilter("ignore", RuntimeWarning)
        yield


@dataclass(frozen=True)
class ModelSpec:
    df_size: int
    df_own: int
    df_total: int
    response: str = M_OUTCOME
    offset: str = M_INTERVAL

    @property
    def formula(self) -> str:
        return "{} ~ bs({}, df={}) + bs({}, df={}) + bs({}, df={})".format(
            self.response,
            M_SIZE, self.df_size,
            M_OWN, self.df_own,
            M_TOTAL, self.df_total,
        )

    @classmethod
    def for_data(cls, data: pd.DataFrame, ceiling: int) -> "ModelSpec":
        return cls(
            df_size=smooth_df(int(data[M_SIZE].nunique()), ceiling),
            df_own=smooth_df(int(data[M_OWN].nunique()), ceiling),
            df_total=smooth_df(int(data[M_TOTAL].nunique()), ceiling),
        )


@dataclass
class FitResult:
    converged: bool
    llf: float
    fitted: np.ndarray
    leverage: np.ndarray
    has_covariance: bool
    nobs: int
    n_params: int
    aic: float
    artifact: Optional[Any] = None
    elapsed: float = 0.0


def check_design(exog) -> None:
    """
    Raise FitError for a design the GLM would only fit through a pseudo-inverse:
    no more rows than columns (saturated), or linearly dependent columns
    (e.g. a spline block over a constant covariate).
    """
    exog = np.asarray(exog, dtype=float)
    nobs, ncols = exog.shape
    if nobs <= ncols:
        raise FitError("insufficient data: {} rows for {} parameters".format(nobs, ncols))
    rank = int(np.linalg.matrix_rank(exog))
    if rank < ncols:
        raise FitError("rank-deficient design: rank {} of {} columns".format(rank, ncols))


class StatsmodelsFitter:
    """Binomial(cloglog) GLM via the statsmodels formula API."""

    def __init__(self, maxiter: int = 100, keep_artifact: bool = False):
        self.maxiter = int(maxiter)
        self.keep_artifact = keep_artifact

    def family(self):
        return sm.families.Binomial(link=sm.families.links.CLogLog())

    def fit(self, spec: ModelSpec, data: pd.DataFrame) -> FitResult:
        t0 = time.perf_counter()
        try:
            model = smf.glm(
                spec.formula,
                data,
                family=self.family(),
                offset=np.log(data[spec.offset].to_numpy(dtype=float)),
            )
            check_design(model.exog)
            res = model.fit(maxiter=self.maxiter)
            leverage = np.asarray(res.get_influence().hat_matrix_diag, dtype=float)
            cov = np.asarray(res.cov_params(), dtype=float)
        except (PerfectSeparationError, PatsyError, np.linalg.LinAlgError, ValueError, ArithmeticError) as exc:
            raise FitError("{}: {}".format(type(exc).__name__, exc)) from exc

        llf = float(res.llf)
        if not np.isfinite(llf):
            raise FitError("non-finite log-likelihood")

        return FitResult(
            converged=bool(getattr(res, "converged", True)),
            llf=llf,
            fitted=np.asarray(res.fittedvalues, dtype=float),
            leverage=leverage,
            has_covariance=has_usable_covariance(cov),
            nobs=int(res.nobs),
            n_params=int(len(res.params)),
            aic=float(res.aic),
            artifact=res if self.keep_artifact else None,
            elapsed=time.perf_counter() - t0,
        )
