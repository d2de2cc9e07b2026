#!/usr/bin/env python3
"""
run_decay_sweep.py

Neighborhood density + decay-shape model selection for one census interval.

1) Read the census table (one row per stem alive at interval start)
2) Flag edge-affected stems (or use the supplied edge column)
3) Find neighbor pairs within the radius and sum own-group / other-group /
   combined density for every decay shape, by count and by size
4) Fit one mortality model per (group, own shape, total shape, basis)
5) Drop groups with no contrast or missing runs; pick the best decay
   combination globally and per group
6) Write tables (+ optional figures) to the output directory

Config: neighborhood.ini (see [Data], [Neighborhood], [Sweep], [Output]);
command-line flags override the file.
"""

import argparse
import logging
import sys

from density_decay.census import read_census
from density_decay.config import DEFAULT_CONFIG_FILE, load_config, with_overrides
from density_decay.errors import DataValidationError
from density_decay.fitting import StatsmodelsFitter
from density_decay.neighborhood import build_feature_table
from density_decay.report import plot_decay_curves, plot_llf_heatmaps, write_outputs
from density_decay.selection import select
from density_decay.sweep import enumerate_runs, resolve_groups, run_sweep


def parse_args():
    parser = argparse.ArgumentParser(
        description="Neighborhood density decay sweep (mortality models per decay-shape combination)"
    )
    parser.add_argument("--config", type=str, default=DEFAULT_CONFIG_FILE, help="INI config file.")
    parser.add_argument("--data", type=str, default=None, help="Census CSV (overrides [Data] path).")
    parser.add_argument("--outdir", type=str, default=None, help="Output directory (overrides [Output] outdir).")
    parser.add_argument("--radius", type=float, default=None, help="Neighbor radius.")
    parser.add_argument("--edge-margin", type=float, default=None, help="Edge margin.")
    parser.add_argument("--nworkers", type=int, default=None, help="Parallel fitting threads.")
    parser.add_argument("--plots", action="store_true", default=None, help="Write figures.")
    parser.add_argument("--log-level", type=str, default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser.parse_args()


def main():
    args = parse_args()
    logging.basicConfig(level=args.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    cfg = with_overrides(
        load_config(args.config),
        data_path=args.data,
        outdir=args.outdir,
        radius=args.radius,
        edge_margin=args.edge_margin,
        nworkers=args.nworkers,
        plots=args.plots,
    )
    if not cfg.data_path:
        raise DataValidationError("No census data path: set [Data] path or pass --data")

    nb = cfg.neighborhood
    sw = cfg.sweep

    census = read_census(cfg.data_path, cfg.columns)
    print("Loaded stems:", census.shape[0])
    print("Groups:", census["group"].nunique())
    print("Decay shapes:", [s.label for s in nb.decay_shapes])
    print("Radius: {} | edge margin: {} | kernel: {}".format(nb.radius, nb.edge_margin, nb.kernel))

    features = build_feature_table(census, nb)
    print("Focal rows (non-edge):", features.shape[0])

    store = run_sweep(
        features,
        nb.decay_shapes,
        fitter=StatsmodelsFitter(maxiter=sw.maxiter),
        smooth_ceiling=sw.smooth_ceiling,
        top_fraction=sw.separation_top_fraction,
        nworkers=sw.nworkers,
        timeout=sw.run_timeout,
        groups=sw.groups,
    )

    runs = enumerate_runs(resolve_groups(features, sw.groups), nb.decay_shapes)
    selection = select(features, store.accepted_frame(), runs)

    outdir = cfg.output.outdir
    summary = write_outputs(outdir, features, store, selection)

    if cfg.output.plots:
        plot_llf_heatmaps(outdir, selection, nb.decay_shapes)
        plot_decay_curves(outdir, nb.decay_shapes, nb.radius, nb.kernel)

    print("\n=== Sweep ===")
    print("[sweep] runs: {} | accepted: {} | rejected: {}".format(
        summary["runs_total"], summary["runs_accepted"], summary["runs_rejected"]))
    for reason, n in summary["rejected_by_reason"].items():
        print("[sweep]   {}: {}".format(reason, n))

    print("\n=== Selection ===")
    print("[select] groups included: {}".format(len(summary["groups_included"])))
    for g, reason in summary["groups_excluded"].items():
        print("[select] excluded {} ({})".format(g, reason))
    if selection.global_optimum.empty:
        print("[select] no global optimum (no included groups)")
    else:
        cols = ["basis", "own_shape", "total_shape", "n_runs", "sum_llf"]
        print(selection.global_optimum[cols].to_string(index=False))

    print("\nSaved to:", outdir)
    return 0


if __name__ == "__main__":
    sys.exit(main())
