"""
density_decay

Distance- and size-weighted neighborhood density for mapped stems, and a
decay-shape grid search over mortality models that picks the decay
parameterization with the best aggregated likelihood.
"""

from density_decay.decay import NODECAY, DecayShape, parse_shapes, weight, weights
from density_decay.errors import ConfigError, DataValidationError, DensityDecayError, FitError
from density_decay.neighborhood import aggregate_neighborhoods, build_feature_table, feature_column
from density_decay.proximity import neighbor_pairs
from density_decay.selection import SelectionResult, select
from density_decay.sweep import RejectReason, RunKey, RunState, RunStore, enumerate_runs, run_sweep

__version__ = "0.3.0"

__all__ = [
    "NODECAY",
    "DecayShape",
    "parse_shapes",
    "weight",
    "weights",
    "ConfigError",
    "DataValidationError",
    "DensityDecayError",
    "FitError",
    "aggregate_neighborhoods",
    "build_feature_table",
    "feature_column",
    "neighbor_pairs",
    "SelectionResult",
    "select",
    "RejectReason",
    "RunKey",
    "RunState",
    "RunStore",
    "enumerate_runs",
    "run_sweep",
]
