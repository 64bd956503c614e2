"""Visual markers describing the state of a safe landing grid."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np

from safeland.landing import Grid

FRAME_ID = "local_origin"
_CELL_HEIGHT = 0.1
_HIGHLIGHT_HEIGHT = 0.8
_CELL_ALPHA = 0.5
_HUE_RANGE = 360.0
_COUNTER_MAX_VALUE = 400.0

Vector3 = tuple[float, float, float]
Color = tuple[float, float, float, float]


@dataclass
class Marker:
    """A cube or line strip drawn in the local frame."""

    id: int
    position: Vector3
    scale: Vector3
    color: Color
    kind: str = "cube"
    frame_id: str = FRAME_ID
    points: list[Vector3] = field(default_factory=list)


def _divide(numerator: float, denominator: float) -> float:
    """Floating point division that yields inf or nan instead of raising."""
    with np.errstate(divide="ignore", invalid="ignore"):
        return float(np.divide(np.float64(numerator), np.float64(denominator)))


def _sqrt(value: float) -> float:
    with np.errstate(invalid="ignore"):
        return float(np.sqrt(np.float64(value)))


def hsv_to_rgb(h: float, s: float, v: float) -> tuple[float, float, float]:
    """Convert hue in degrees, saturation and value to red, green and blue."""
    chroma = v * s
    h_prime = math.fmod(h / 60.0, 6) if math.isfinite(h) else math.nan
    x = chroma * (1 - abs(math.fmod(h_prime, 2) - 1)) if math.isfinite(h_prime) else math.nan
    m = v - chroma

    if 0 <= h_prime < 1:
        rgb = (chroma, x, 0.0)
    elif 1 <= h_prime < 2:
        rgb = (x, chroma, 0.0)
    elif 2 <= h_prime < 3:
        rgb = (0.0, chroma, x)
    elif 3 <= h_prime < 4:
        rgb = (0.0, x, chroma)
    elif 4 <= h_prime < 5:
        rgb = (x, 0.0, chroma)
    elif 5 <= h_prime < 6:
        rgb = (chroma, 0.0, x)
    else:
        rgb = (0.0, 0.0, 0.0)
    return rgb[0] + m, rgb[1] + m, rgb[2] + m


def _cell_xy(grid: Grid, i: int, j: int) -> tuple[float, float]:
    grid_min, _ = grid.limits()
    cell = grid.cell_size
    return i * cell + float(grid_min[0]) + cell / 2.0, j * cell + float(grid_min[1]) + cell / 2.0


def _cells(grid: Grid):
    size = grid.row_col_size
    for i in range(size):
        for j in range(size):
            yield i, j


def std_dev_markers(grid: Grid, std_dev_threshold: float) -> list[Marker]:
    """One cube per cell at its mean height, coloured by its standard deviation."""
    markers = []
    cell = grid.cell_size
    for marker_id, (i, j) in enumerate(_cells(grid)):
        x, y = _cell_xy(grid, i, j)
        std_dev = _sqrt(grid.variance[i, j])
        hue = _HUE_RANGE * _divide(std_dev, std_dev_threshold)
        r, g, b = hsv_to_rgb(hue, 1.0, 1.0)
        if std_dev > std_dev_threshold:
            r, g, b = 0.0, 0.0, 0.0
        markers.append(
            Marker(
                id=marker_id,
                position=(x, y, float(grid.mean[i, j])),
                scale=(cell, cell, _CELL_HEIGHT),
                color=(r, g, b, _CELL_ALPHA),
            )
        )
    return markers


def counter_markers(grid: Grid, n_points_threshold: float) -> list[Marker]:
    """One flat cube per cell, coloured by how many points fell into it."""
    markers = []
    cell = grid.cell_size
    for marker_id, (i, j) in enumerate(_cells(grid)):
        x, y = _cell_xy(grid, i, j)
        hue = _HUE_RANGE * _divide(
            float(grid.counter[i, j]) - n_points_threshold, _COUNTER_MAX_VALUE - n_points_threshold
        )
        r, g, b = hsv_to_rgb(hue, 1.0, 1.0)
        markers.append(
            Marker(
                id=marker_id,
                position=(x, y, 0.0),
                scale=(cell, cell, _CELL_HEIGHT),
                color=(r, g, b, _CELL_ALPHA),
            )
        )
    return markers


def land_markers(grid: Grid, smoothing_size: float) -> list[Marker]:
    """Green cubes for landable cells, red otherwise; the central window is drawn taller."""
    markers = []
    cell = grid.cell_size
    offset = grid.land.shape[0] // 2
    low, high = offset - smoothing_size, offset + smoothing_size
    for marker_id, (i, j) in enumerate(_cells(grid)):
        x, y = _cell_xy(grid, i, j)
        r, g = (0.0, 1.0) if grid.land[i, j] else (1.0, 0.0)
        height = _HIGHLIGHT_HEIGHT if low <= i < high and low <= j < high else _CELL_HEIGHT
        markers.append(
            Marker(
                id=marker_id,
                position=(x, y, 0.0),
                scale=(cell, cell, height),
                color=(r, g, 0.0, _CELL_ALPHA),
            )
        )
    return markers


class PathTracer:
    """Produces numbered line segments tracing the flown path."""

    def __init__(self) -> None:
        self.path_length = 0

    def segment(self, position, last_position) -> Marker:
        """Return a line strip from the last position to the current one."""
        start = tuple(float(v) for v in last_position)
        end = tuple(float(v) for v in position)
        marker = Marker(
            id=self.path_length,
            position=(0.0, 0.0, 0.0),
            scale=(0.03, 0.0, 0.0),
            color=(0.0, 1.0, 0.0, 1.0),
            kind="line_strip",
            points=[start, end],
        )
        self.path_length += 1
        return marker