"""
Decay kernels used to weight neighbors by distance.

A decay shape ``mu`` selects one member of a kernel family:

    exponential:  w(d) = exp(-d / mu)
    gaussian:     w(d) = exp(-(d / mu)^2)

Both are 1 at d = 0 and non-increasing in d; larger mu means slower decay.
The sentinel NODECAY (mu = inf) always weighs 1, so its decay-weighted sums
are the plain neighbor count and size-sum.
"""

import math
from dataclasses import dataclass
from typing import Iterable, List

import numpy as np
import pandas as pd

from density_decay.errors import ConfigError

NODECAY_LABEL = "nodecay"
KERNELS = ("exponential", "gaussian")


@dataclass(frozen=True, order=True)
class DecayShape:
    value: float

    def __post_init__(self):
        v = float(self.value)
        if math.isnan(v) or v <= 0:
            raise ConfigError("Decay shape must be a positive number, got {!r}".format(self.value))
        object.__setattr__(self, "value", v)

    @property
    def is_nodecay(self) -> bool:
        return math.isinf(self.value)

    @property
    def label(self) -> str:
        if self.is_nodecay:
            return NODECAY_LABEL
        return "{:g}".format(self.value)

    def __str__(self):
        return self.label


NODECAY = DecayShape(math.inf)


def parse_shapes(spec) -> List[DecayShape]:
    """
    Parse "1,2.5,5,nodecay" (or an iterable of numbers / labels) into sorted,
    de-duplicated shapes. NODECAY is always included.
    """
    if isinstance(spec, str):
        tokens = [t.strip() for t in spec.split(",") if t.strip()]
    else:
        tokens = list(spec)

    shapes = set()
    for tok in tokens:
        if isinstance(tok, DecayShape):
            shapes.add(tok)
        elif str(tok).strip().lower() in (NODECAY_LABEL, "none", "inf"):
            shapes.add(NODECAY)
        else:
            try:
                shapes.add(DecayShape(float(tok)))
            except (TypeError, ValueError) as exc:
                raise ConfigError("Unparseable decay shape: {!r}".format(tok)) from exc
    shapes.add(NODECAY)
    return sorted_shapes(shapes)


def sorted_shapes(shapes: Iterable[DecayShape]) -> List[DecayShape]:
    # numeric ascending; NODECAY (inf) sorts last
    return sorted(set(shapes), key=lambda s: s.value)


def check_kernel(kernel: str) -> str:
    if kernel not in KERNELS:
        raise ConfigError("Unknown decay kernel '{}'; expected one of {}".format(kernel, list(KERNELS)))
    return kernel


def weight(shape: DecayShape, distance: float, kernel: str = "exponential") -> float:
    if shape.is_nodecay:
        return 1.0
    if kernel == "exponential":
        return math.exp(-distance / shape.value)
    if kernel == "gaussian":
        r = distance / shape.value
        return math.exp(-r * r)
    raise ConfigError("Unknown decay kernel '{}'".format(kernel))


def weights(shape: DecayShape, distances, kernel: str = "exponential") -> np.ndarray:
    """Vectorized ``weight`` over an array of distances."""
    d = np.asarray(distances, dtype=float)
    if shape.is_nodecay:
        return np.ones_like(d)
    if kernel == "exponential":
        return np.exp(-d / shape.value)
    if kernel == "gaussian":
        return np.exp(-np.square(d / shape.value))
    raise ConfigError("Unknown decay kernel '{}'".format(kernel))


def decay_curve_table(shapes, max_distance: float, kernel: str = "exponential", n_grid: int = 200) -> pd.DataFrame:
    """Long table (shape, distance, weight) for plotting the configured kernels."""
    grid = np.linspace(0.0, float(max_distance), int(n_grid))
    frames = []
    for s in sorted_shapes(shapes):
        frames.append(pd.DataFrame({
            "shape": s.label,
            "distance": grid,
            "weight": weights(s, grid, kernel),
        }))
    return pd.concat(frames, ignore_index=True)
