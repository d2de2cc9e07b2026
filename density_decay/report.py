"""
Output tables, run summary and optional figures.

Figures:
  <outdir>/llf_heatmap_<basis>.png   summed log-likelihood over own x total shape
  <outdir>/decay_curves.png          kernel weight vs distance per shape
"""

import json
import logging
import os

import numpy as np
import pandas as pd

from density_decay.decay import decay_curve_table, sorted_shapes
from density_decay.sweep import RunStore

logger = logging.getLogger(__name__)


def ensure_outdir(outdir: str) -> None:
    os.makedirs(outdir, exist_ok=True)


def summarize(store: RunStore, selection) -> dict:
    accepted = store.accepted
    rejected = store.rejected

    optimum = {}
    for r in selection.global_optimum.itertuples(index=False):
        optimum[r.basis] = {
            "own_shape": r.own_shape,
            "total_shape": r.total_shape,
            "sum_llf": float(r.sum_llf),
            "n_runs": int(r.n_runs),
        }

    return {
        "runs_total": len(accepted) + len(rejected),
        "runs_accepted": len(accepted),
        "runs_rejected": len(rejected),
        "rejected_by_reason": store.reason_counts(),
        "groups_included": selection.included_groups,
        "groups_excluded": {r.group: r.reason for r in selection.exclusions.itertuples(index=False)},
        "global_optimum": optimum,
    }


def write_outputs(outdir: str, features: pd.DataFrame, store: RunStore, selection) -> dict:
    ensure_outdir(outdir)
    tables = {
        "features.csv": features,
        "accepted_runs.csv": store.accepted_frame(),
        "rejected_runs.csv": store.rejected_frame(),
        "global_scores.csv": selection.global_scores,
        "global_optimum.csv": selection.global_optimum,
        "group_scores.csv": selection.group_scores,
        "group_optimum.csv": selection.group_optimum,
        "excluded_groups.csv": selection.exclusions,
    }
    for name, df in tables.items():
        df.to_csv(os.path.join(outdir, name), index=False)

    summary = summarize(store, selection)
    with open(os.path.join(outdir, "summary.json"), "w") as f:
        json.dump(summary, f, indent=2)

    logger.info("wrote %d tables + summary.json to %s", len(tables), outdir)
    return summary


# ----------------------------
# Figures
# ----------------------------
def plot_llf_heatmaps(outdir: str, selection, shapes) -> list:
    import matplotlib
    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    labels = [s.label for s in sorted_shapes(shapes)]
    written = []
    for basis, sub in selection.global_scores.groupby("basis"):
        mat = np.full((len(labels), len(labels)), np.nan, dtype=float)
        for r in sub.itertuples(index=False):
            mat[labels.index(r.own_shape), labels.index(r.total_shape)] = float(r.delta_llf)

        fig, ax = plt.subplots(figsize=(7.5, 6.4))
        im = ax.imshow(mat, aspect="auto", origin="lower")
        ax.set_xticks(np.arange(len(labels)))
        ax.set_xticklabels(labels, rotation=45, ha="right", fontsize=8)
        ax.set_yticks(np.arange(len(labels)))
        ax.set_yticklabels(labels, fontsize=8)
        ax.set_xlabel("total density decay shape")
        ax.set_ylabel("own-group density decay shape")
        ax.set_title("Summed log-likelihood vs best ({} basis)".format(basis))
        fig.colorbar(im, ax=ax, label="delta llf")
        fig.tight_layout()

        out = os.path.join(outdir, "llf_heatmap_{}.png".format(basis))
        fig.savefig(out, dpi=200)
        plt.close(fig)
        written.append(out)
    return written


def plot_decay_curves(outdir: str, shapes, max_distance: float, kernel: str = "exponential") -> str:
    import matplotlib
    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    curves = decay_curve_table(shapes, max_distance, kernel)
    fig, ax = plt.subplots(figsize=(7.2, 4.8))
    for label, sub in curves.groupby("shape", sort=False):
        ax.plot(sub["distance"], sub["weight"], linewidth=1.4, label=label)
    ax.set_xlabel("distance")
    ax.set_ylabel("weight")
    ax.set_ylim(0, 1.05)
    ax.set_title("{} decay kernels".format(kernel))
    ax.legend(title="shape", fontsize=7, ncol=2)
    fig.tight_layout()

    out = os.path.join(outdir, "decay_curves.png")
    fig.savefig(out, dpi=200)
    plt.close(fig)
    return out
