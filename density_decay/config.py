"""
INI configuration.

    [Data]          path + column names of the census table
    [Neighborhood]  radius, edge margin, decay shapes, kernel, window
    [Sweep]         smoothness ceiling, workers, per-run guard
    [Output]        output directory, figures on/off

Every key has a fallback, so an empty (or missing) file gives a runnable
default configuration.
"""

import configparser
import math
import os
from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple

from density_decay.census import SIZE_TRANSFORMS, DataColumns
from density_decay.decay import DecayShape, check_kernel, parse_shapes
from density_decay.edges import PlotWindow
from density_decay.errors import ConfigError
from density_decay.proximity import METHODS

DEFAULT_CONFIG_FILE = "neighborhood.ini"
DEFAULT_DECAY_SHAPES = "1,2.5,5,7.5,10,12.5,15,17.5,20,22.5,25,nodecay"


@dataclass(frozen=True)
class NeighborhoodConfig:
    radius: float = 30.0
    edge_margin: float = 30.0
    decay_shapes: Tuple[DecayShape, ...] = field(default_factory=lambda: tuple(parse_shapes(DEFAULT_DECAY_SHAPES)))
    kernel: str = "exponential"
    size_transform: str = "identity"
    window: Optional[PlotWindow] = None
    proximity_method: str = "grid"

    def __post_init__(self):
        if not math.isfinite(self.radius) or self.radius < 0:
            raise ConfigError("radius must be finite and >= 0, got {}".format(self.radius))
        if not math.isfinite(self.edge_margin) or self.edge_margin < 0:
            raise ConfigError("edge_margin must be finite and >= 0, got {}".format(self.edge_margin))
        check_kernel(self.kernel)
        if self.size_transform not in SIZE_TRANSFORMS:
            raise ConfigError("size_transform must be one of {}".format(list(SIZE_TRANSFORMS)))
        if self.proximity_method not in METHODS:
            raise ConfigError("proximity_method must be one of {}".format(list(METHODS)))
        # normalise to the sorted, NODECAY-including tuple
        object.__setattr__(self, "decay_shapes", tuple(parse_shapes(self.decay_shapes)))


@dataclass(frozen=True)
class SweepConfig:
    smooth_ceiling: int = 10
    nworkers: int = 1
    run_timeout: Optional[float] = None
    maxiter: int = 100
    separation_top_fraction: float = 0.1
    groups: Optional[Tuple[str, ...]] = None

    def __post_init__(self):
        # a cubic B-spline term needs df >= 3 after the (ceiling - 2) reduction
        if self.smooth_ceiling < 5:
            raise ConfigError("smooth_ceiling must be >= 5, got {}".format(self.smooth_ceiling))
        if self.nworkers < 1:
            raise ConfigError("nworkers must be >= 1")
        if self.run_timeout is not None and not self.run_timeout > 0:
            raise ConfigError("run_timeout must be > 0 when set")
        if self.maxiter < 1:
            raise ConfigError("maxiter must be >= 1")
        if not 0 < self.separation_top_fraction <= 1:
            raise ConfigError("separation_top_fraction must be in (0, 1]")


@dataclass(frozen=True)
class OutputConfig:
    outdir: str = "decay_sweep_output"
    plots: bool = False


@dataclass(frozen=True)
class RunConfig:
    data_path: Optional[str] = None
    columns: DataColumns = DataColumns()
    neighborhood: NeighborhoodConfig = NeighborhoodConfig()
    sweep: SweepConfig = SweepConfig()
    output: OutputConfig = OutputConfig()


def _csv_list(text: str) -> List[str]:
    return [t.strip() for t in text.split(",") if t.strip()]


def _float(config, section, key, fallback):
    raw = config.get(section, key, fallback=str(fallback))
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError("[{}] {} must be a number, got {!r}".format(section, key, raw)) from exc


def _int(config, section, key, fallback):
    raw = config.get(section, key, fallback=str(fallback))
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError("[{}] {} must be an integer, got {!r}".format(section, key, raw)) from exc


def get_config(path: str = DEFAULT_CONFIG_FILE) -> configparser.ConfigParser:
    config = configparser.ConfigParser()
    if path and not os.path.exists(path) and path != DEFAULT_CONFIG_FILE:
        raise ConfigError("Config file not found: {}".format(path))
    config.read(path)
    return config


def load_config(path: str = DEFAULT_CONFIG_FILE) -> RunConfig:
    return config_from_parser(get_config(path))


def config_from_parser(config: configparser.ConfigParser) -> RunConfig:
    d = DataColumns()
    columns = DataColumns(
        id=config.get("Data", "col_id", fallback=d.id),
        group=config.get("Data", "col_group", fallback=d.group),
        x=config.get("Data", "col_x", fallback=d.x),
        y=config.get("Data", "col_y", fallback=d.y),
        size=config.get("Data", "col_size", fallback=d.size),
        edge=config.get("Data", "col_edge", fallback="").strip() or None,
        outcome=config.get("Data", "col_outcome", fallback=d.outcome),
        interval=config.get("Data", "col_interval", fallback=d.interval),
    )

    window_raw = config.get("Neighborhood", "window", fallback="").strip()
    neighborhood = NeighborhoodConfig(
        radius=_float(config, "Neighborhood", "radius", 30.0),
        edge_margin=_float(config, "Neighborhood", "edge_margin", 30.0),
        decay_shapes=tuple(parse_shapes(config.get("Neighborhood", "decay_shapes", fallback=DEFAULT_DECAY_SHAPES))),
        kernel=config.get("Neighborhood", "kernel", fallback="exponential").strip(),
        size_transform=config.get("Neighborhood", "size_transform", fallback="identity").strip(),
        window=PlotWindow.from_string(window_raw) if window_raw else None,
        proximity_method=config.get("Neighborhood", "proximity_method", fallback="grid").strip(),
    )

    timeout_raw = config.get("Sweep", "run_timeout", fallback="").strip()
    groups_raw = config.get("Sweep", "groups", fallback="").strip()
    sweep = SweepConfig(
        smooth_ceiling=_int(config, "Sweep", "smooth_ceiling", 10),
        nworkers=_int(config, "Sweep", "nworkers", 1),
        run_timeout=_float(config, "Sweep", "run_timeout", None) if timeout_raw else None,
        maxiter=_int(config, "Sweep", "maxiter", 100),
        separation_top_fraction=_float(config, "Sweep", "separation_top_fraction", 0.1),
        groups=tuple(_csv_list(groups_raw)) if groups_raw else None,
    )

    output = OutputConfig(
        outdir=config.get("Output", "outdir", fallback="decay_sweep_output"),
        plots=config.getboolean("Output", "plots", fallback=False),
    )

    data_path = config.get("Data", "path", fallback="").strip() or None
    return RunConfig(data_path=data_path, columns=columns, neighborhood=neighborhood, sweep=sweep, output=output)


def with_overrides(cfg: RunConfig, **overrides) -> RunConfig:
    """Apply non-None command-line overrides (flat keyword names)."""
    nb, sw, out = {}, {}, {}
    data_path = cfg.data_path
    for key, value in overrides.items():
        if value is None:
            continue
        if key == "data_path":
            data_path = value
        elif key in ("radius", "edge_margin"):
            nb[key] = float(value)
        elif key in ("nworkers", "smooth_ceiling"):
            sw[key] = int(value)
        elif key == "outdir":
            out["outdir"] = value
        elif key == "plots":
            out["plots"] = bool(value)
        else:
            raise ConfigError("Unknown override: {}".format(key))
    return replace(
        cfg,
        data_path=data_path,
        neighborhood=replace(cfg.neighborhood, **nb),
        sweep=replace(cfg.sweep, **sw),
        output=replace(cfg.output, **out),
    )
