import math

import pytest

from safeland.landing import Grid
from safeland.markers import (
    PathTracer,
    counter_markers,
    hsv_to_rgb,
    land_markers,
    std_dev_markers,
)


def _grid():
    return Grid(1.0, 0.25)


@pytest.mark.parametrize(
    "hue, expected",
    [
        (0.0, (1.0, 0.0, 0.0)),
        (120.0, (0.0, 1.0, 0.0)),
        (240.0, (0.0, 0.0, 1.0)),
    ],
)
def test_hsv_primary_colours(hue, expected):
    assert hsv_to_rgb(hue, 1.0, 1.0) == pytest.approx(expected)


def test_hsv_full_turn_wraps_to_start():
    assert hsv_to_rgb(360.0, 1.0, 1.0) == pytest.approx(hsv_to_rgb(0.0, 1.0, 1.0))


def test_hsv_zero_saturation_is_grey():
    r, g, b = hsv_to_rgb(75.0, 0.0, 0.6)
    assert r == pytest.approx(0.6)
    assert g == pytest.approx(0.6)
    assert b == pytest.approx(0.6)


def test_hsv_negative_and_nonfinite_hue_is_black():
    assert hsv_to_rgb(-30.0, 1.0, 1.0) == (0.0, 0.0, 0.0)
    assert hsv_to_rgb(math.inf, 1.0, 1.0) == (0.0, 0.0, 0.0)
    assert hsv_to_rgb(math.nan, 1.0, 1.0) == (0.0, 0.0, 0.0)


def test_std_dev_markers_cover_grid_with_sequential_ids():
    grid = _grid()
    grid.mean[1, 2] = 3.5
    markers = std_dev_markers(grid, 0.1)
    size = grid.row_col_size
    assert len(markers) == size * size
    assert [m.id for m in markers] == list(range(size * size))
    assert markers[1 * size + 2].position[2] == pytest.approx(3.5)
    assert markers[1].position[1] - markers[0].position[1] == pytest.approx(grid.cell_size)
    assert markers[size].position[0] - markers[0].position[0] == pytest.approx(grid.cell_size)


def test_std_dev_markers_black_above_threshold():
    grid = _grid()
    grid.variance[0, 0] = 4.0
    markers = std_dev_markers(grid, 0.1)
    assert markers[0].color[:3] == (0.0, 0.0, 0.0)
    assert markers[1].color[:3] == pytest.approx(hsv_to_rgb(0.0, 1.0, 1.0))
    assert all(m.color[3] == 0.5 for m in markers)


def test_counter_markers_at_threshold_and_midway():
    grid = _grid()
    grid.counter[:, :] = 25
    grid.counter[0, 0] = 200
    markers = counter_markers(grid, 25.0)
    assert markers[1].color[:3] == pytest.approx(hsv_to_rgb(0.0, 1.0, 1.0))
    assert markers[0].color[:3] != markers[1].color[:3]
    assert all(m.position[2] == 0.0 for m in markers)


def test_counter_markers_cyan_at_half_range():
    grid = _grid()
    grid.counter[:, :] = 200
    markers = counter_markers(grid, 0.0)
    assert markers[0].color[:3] == pytest.approx((0.0, 1.0, 1.0))


def test_land_markers_colours():
    grid = _grid()
    grid.land[:, :] = 1
    grid.land[3, 3] = 0
    markers = land_markers(grid, 0)
    size = grid.row_col_size
    assert markers[0].color[:3] == (0.0, 1.0, 0.0)
    assert markers[3 * size + 3].color[:3] == (1.0, 0.0, 0.0)
    assert all(m.scale[2] == pytest.approx(0.1) for m in markers)


def test_land_markers_highlight_central_window():
    grid = _grid()
    markers = land_markers(grid, 1)
    size = grid.row_col_size
    tall = {(m.id // size, m.id % size) for m in markers if m.scale[2] > 0.5}
    assert tall == {(1, 1), (1, 2), (2, 1), (2, 2)}


def test_path_tracer_segments_are_numbered():
    tracer = PathTracer()
    first = tracer.segment((1.0, 2.0, 3.0), (0.0, 0.0, 0.0))
    second = tracer.segment((2.0, 2.0, 3.0), (1.0, 2.0, 3.0))
    assert first.id == 0
    assert second.id == 1
    assert first.points == [(0.0, 0.0, 0.0), (1.0, 2.0, 3.0)]
    assert second.kind == "line_strip"
    assert tracer.path_length == 2