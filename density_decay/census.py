"""
Census table boundary.

The upstream collaborator hands over one cleaned row per stem alive at the
start of a census interval. Here the configured column names are mapped
onto canonical names and the table is validated; nothing is silently
coerced or dropped.

Canonical columns:
  id        stem identity (unique)
  group     group label (species), stored as str
  x, y      stem coordinates
  size      size measure (e.g. dbh), finite and >= 0
  edge      optional bool; True = edge-affected
  outcome   0/1 outcome at interval end (1 = died)
  interval  interval length, finite and > 0
"""

from dataclasses import dataclass
from typing import List, Optional

import numpy as np
import pandas as pd

from density_decay.errors import DataValidationError

ID, GROUP, X, Y, SIZE, EDGE, OUTCOME, INTERVAL = (
    "id", "group", "x", "y", "size", "edge", "outcome", "interval"
)
NEIGHBOR_SIZE = "neighbor_size"

SIZE_TRANSFORMS = ("identity", "basal_area")


@dataclass(frozen=True)
class DataColumns:
    id: str = "treeID"
    group: str = "sp"
    x: str = "gx"
    y: str = "gy"
    size: str = "dbh"
    edge: Optional[str] = None
    outcome: str = "mort"
    interval: str = "interval"

    def mapping(self) -> dict:
        m = {
            self.id: ID,
            self.group: GROUP,
            self.x: X,
            self.y: Y,
            self.size: SIZE,
            self.outcome: OUTCOME,
            self.interval: INTERVAL,
        }
        if self.edge:
            m[self.edge] = EDGE
        return m


def require_cols(df: pd.DataFrame, cols: List[str], name: str = "census") -> None:
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise DataValidationError(
            "{}: missing required columns: {}\nFound: {}".format(name, missing, list(df.columns))
        )


def _numeric(df: pd.DataFrame, col: str) -> pd.Series:
    try:
        return pd.to_numeric(df[col], errors="raise").astype(float)
    except (TypeError, ValueError) as exc:
        raise DataValidationError("Column '{}' must be numeric".format(col)) from exc


def standardize_census(df: pd.DataFrame, columns: DataColumns = DataColumns()) -> pd.DataFrame:
    """Rename to canonical columns and validate. Returns a new frame."""
    mapping = columns.mapping()
    require_cols(df, list(mapping.keys()))

    out = df[list(mapping.keys())].rename(columns=mapping).reset_index(drop=True)

    if out[ID].isna().any():
        raise DataValidationError("Missing stem identities")
    dup = out[ID].duplicated(keep=False)
    if dup.any():
        raise DataValidationError(
            "Duplicate stem identities: {}".format(out.loc[dup, ID].unique()[:10].tolist())
        )

    if out[GROUP].isna().any():
        raise DataValidationError("Missing group labels")
    out[GROUP] = out[GROUP].astype(str)

    for col in (X, Y):
        out[col] = _numeric(out, col)
        if not np.all(np.isfinite(out[col].to_numpy())):
            raise DataValidationError("Non-finite coordinate in column '{}'".format(col))

    out[SIZE] = _numeric(out, SIZE)
    size = out[SIZE].to_numpy()
    if not np.all(np.isfinite(size)):
        raise DataValidationError("Non-finite size values")
    if np.any(size < 0):
        raise DataValidationError("Negative size values: {} rows".format(int((size < 0).sum())))

    out[OUTCOME] = _numeric(out, OUTCOME)
    if not out[OUTCOME].isin([0.0, 1.0]).all():
        raise DataValidationError("Outcome must be 0/1 for every row")
    out[OUTCOME] = out[OUTCOME].astype(int)

    out[INTERVAL] = _numeric(out, INTERVAL)
    iv = out[INTERVAL].to_numpy()
    if not np.all(np.isfinite(iv)) or np.any(iv <= 0):
        raise DataValidationError("Interval length must be finite and > 0 for every row")

    if EDGE in out.columns:
        if out[EDGE].isna().any():
            raise DataValidationError("Missing values in edge flag column")
        out[EDGE] = out[EDGE].astype(bool)

    return out


def read_census(path, columns: DataColumns = DataColumns()) -> pd.DataFrame:
    df = pd.read_csv(path)
    return standardize_census(df, columns)


def neighbor_size(size, transform: str = "identity") -> np.ndarray:
    """Size used when summing neighbors (raw size or basal area)."""
    size = np.asarray(size, dtype=float)
    if transform == "identity":
        return size
    if transform == "basal_area":
        return np.pi * (size / 2.0) ** 2
    raise DataValidationError("Unknown size transform: {}".format(transform))
