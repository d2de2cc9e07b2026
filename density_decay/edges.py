"""Plot window and edge classification."""

from dataclasses import dataclass

import numpy as np

from density_decay.errors import ConfigError, DataValidationError


@dataclass(frozen=True)
class PlotWindow:
    xmin: float
    xmax: float
    ymin: float
    ymax: float

    def __post_init__(self):
        vals = (self.xmin, self.xmax, self.ymin, self.ymax)
        if not all(np.isfinite(vals)):
            raise ConfigError("Plot window bounds must be finite: {}".format(vals))
        if self.xmax <= self.xmin or self.ymax <= self.ymin:
            raise ConfigError("Plot window is empty or inverted: {}".format(vals))

    @classmethod
    def from_string(cls, text: str) -> "PlotWindow":
        parts = [p.strip() for p in text.split(",") if p.strip()]
        if len(parts) != 4:
            raise ConfigError("window must be 'xmin,xmax,ymin,ymax', got {!r}".format(text))
        try:
            return cls(*(float(p) for p in parts))
        except ValueError as exc:
            raise ConfigError("window must be numeric, got {!r}".format(text)) from exc

    @classmethod
    def from_extent(cls, x, y) -> "PlotWindow":
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        if x.size == 0:
            raise DataValidationError("Cannot derive a plot window from zero points")
        xmin, xmax = float(x.min()), float(x.max())
        ymin, ymax = float(y.min()), float(y.max())
        # degenerate extents (single row / column of stems) still need a positive area
        if xmax <= xmin:
            xmax = xmin + 1.0
        if ymax <= ymin:
            ymax = ymin + 1.0
        return cls(xmin, xmax, ymin, ymax)


def classify_edges(x, y, window: PlotWindow, margin: float) -> np.ndarray:
    """
    True where a point lies strictly closer than ``margin`` to any of the
    four window edges.
    """
    margin = float(margin)
    if not np.isfinite(margin) or margin < 0:
        raise DataValidationError("Edge margin must be finite and >= 0, got {}".format(margin))

    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if not (np.all(np.isfinite(x)) and np.all(np.isfinite(y))):
        raise DataValidationError("Non-finite coordinate passed to edge classification")

    return (
        (x - window.xmin < margin)
        | (window.xmax - x < margin)
        | (y - window.ymin < margin)
        | (window.ymax - y < margin)
    )
