"""
Selection of the best decay combination from the accepted runs.

A group is left out of all scoring when it has no deaths, no survivors, or
is missing an accepted run for any combination of the sweep. From the
remaining groups:

  global    per basis, the (own shape, total shape) with the largest
            log-likelihood summed over groups
  per group per group and basis, the combination with the largest
            log-likelihood

Ties go to the combination that comes first in sweep enumeration order.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

import pandas as pd

from density_decay.census import GROUP, OUTCOME

logger = logging.getLogger(__name__)

COMBO = ["own_shape", "total_shape", "basis"]

NO_POSITIVE = "no-positive-outcomes"
NO_NEGATIVE = "no-negative-outcomes"
INCOMPLETE = "incomplete"


@dataclass(frozen=True)
class SelectionResult:
    global_scores: pd.DataFrame
    global_optimum: pd.DataFrame
    group_scores: pd.DataFrame
    group_optimum: pd.DataFrame
    exclusions: pd.DataFrame

    @property
    def included_groups(self) -> List[str]:
        return sorted(self.group_scores["group"].unique().tolist())


def combo_order(runs) -> Dict[Tuple[str, str, str], int]:
    """Enumeration rank of each (own shape, total shape, basis) combination."""
    ranks = {}
    for key in runs:
        combo = (key.own_shape.label, key.total_shape.label, key.basis)
        if combo not in ranks:
            ranks[combo] = len(ranks)
    return ranks


def _in_sweep(df: pd.DataFrame, ranks) -> pd.Series:
    return pd.Series(
        [c in ranks for c in zip(df["own_shape"], df["total_shape"], df["basis"])],
        index=df.index, dtype=bool,
    )


def _with_combo_rank(df: pd.DataFrame, ranks) -> pd.DataFrame:
    out = df.copy()
    out["combo_rank"] = [ranks[c] for c in zip(out["own_shape"], out["total_shape"], out["basis"])]
    return out


def group_exclusions(features: pd.DataFrame, accepted: pd.DataFrame, runs: Sequence) -> pd.DataFrame:
    """One row per excluded group: group, reason, n_positive, n_negative, n_missing."""
    ranks = combo_order(runs)
    n_expected = pd.Series([k.group for k in runs]).value_counts()

    outcomes = features.assign(**{GROUP: features[GROUP].astype(str)}).groupby(GROUP)[OUTCOME]
    n_pos = outcomes.sum()
    n_all = outcomes.size()

    have = accepted[accepted["group"].isin(n_expected.index)]
    have = have[_in_sweep(have, ranks)]
    n_have = have.drop_duplicates(["group"] + COMBO).groupby("group").size()

    rows = []
    for g in sorted(n_expected.index):
        pos = int(n_pos.get(g, 0))
        neg = int(n_all.get(g, 0)) - pos
        missing = int(n_expected[g]) - int(n_have.get(g, 0))
        if pos == 0:
            reason = NO_POSITIVE
        elif neg == 0:
            reason = NO_NEGATIVE
        elif missing > 0:
            reason = INCOMPLETE
        else:
            continue
        rows.append({"group": g, "reason": reason, "n_positive": pos, "n_negative": neg, "n_missing": missing})

    return pd.DataFrame(rows, columns=["group", "reason", "n_positive", "n_negative", "n_missing"])


def _first_best(df: pd.DataFrame, by: List[str], score: str) -> pd.DataFrame:
    ranked = df.sort_values(by + [score, "combo_rank"], ascending=[True] * len(by) + [False, True], kind="mergesort")
    return ranked.groupby(by, sort=True).head(1).reset_index(drop=True)


def select(features: pd.DataFrame, accepted: pd.DataFrame, runs: Sequence) -> SelectionResult:
    """
    features : joined feature table (needs group and outcome)
    accepted : RunStore.accepted_frame()
    runs     : every RunKey of the sweep, in enumeration order
    """
    ranks = combo_order(runs)
    exclusions = group_exclusions(features, accepted, runs)
    for r in exclusions.itertuples(index=False):
        logger.warning("group %s excluded from selection: %s", r.group, r.reason)

    sweep_groups = set(k.group for k in runs)
    included = sweep_groups - set(exclusions["group"])

    acc = accepted[accepted["group"].isin(included)]
    acc = _with_combo_rank(acc[_in_sweep(acc, ranks)], ranks)

    group_scores = acc[["group"] + COMBO + ["llf", "aic", "nobs", "combo_rank"]].sort_values(
        ["group", "combo_rank"]
    ).reset_index(drop=True)

    score_cols = COMBO + ["n_runs", "sum_llf", "mean_llf", "delta_llf", "combo_rank"]
    if len(acc):
        global_scores = (
            acc.groupby(COMBO, sort=False)
            .agg(n_runs=("llf", "size"), sum_llf=("llf", "sum"), combo_rank=("combo_rank", "first"))
            .reset_index()
        )
        global_scores["mean_llf"] = global_scores["sum_llf"] / global_scores["n_runs"]
        best = global_scores.groupby("basis")["sum_llf"].transform("max")
        global_scores["delta_llf"] = global_scores["sum_llf"] - best
        global_scores = global_scores.sort_values(["basis", "combo_rank"]).reset_index(drop=True)[score_cols]
    else:
        global_scores = pd.DataFrame(columns=score_cols)

    if len(global_scores):
        global_optimum = _first_best(global_scores, ["basis"], "sum_llf")
    else:
        global_optimum = global_scores.copy()
        logger.warning("no groups left for global selection")

    group_optimum = _first_best(group_scores, ["group", "basis"], "llf") if len(group_scores) else group_scores.copy()

    return SelectionResult(
        global_scores=global_scores,
        global_optimum=global_optimum,
        group_scores=group_scores,
        group_optimum=group_optimum,
        exclusions=exclusions,
    )
