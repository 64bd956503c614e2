import math

import numpy as np
import pytest

from safeland.waypoints import LAND_SPEED, LandingWaypointGenerator, SLPState


class Recorder:
    def __init__(self):
        self.calls = []

    def __call__(self, position, velocity, yaw, yaw_speed):
        self.calls.append((position, velocity, yaw, yaw_speed))


def _landing_setup(landable: bool):
    recorder = Recorder()
    gen = LandingWaypointGenerator(publish=recorder)
    gen.grid_slp.mean.fill(0.0)
    gen.grid_slp.land.fill(1 if landable else 0)
    gen.position = np.array([0.0, 0.0, gen.loiter_height])
    gen.goal = gen.position.copy()
    gen.is_land_waypoint = True
    return gen, recorder


def _run_to_evaluation(gen):
    gen.calculate_waypoint()  # GOTO -> ALTITUDE_CHANGE
    assert gen.state is SLPState.ALTITUDE_CHANGE
    gen.calculate_waypoint()  # -> LOITER
    assert gen.state is SLPState.LOITER
    for seq in range(21):
        gen.grid_slp_seq = seq
        gen.calculate_waypoint()
        assert gen.state is SLPState.LOITER
    gen.grid_slp_seq = 21
    gen.calculate_waypoint()
    assert gen.state is SLPState.EVALUATE_GRID
    gen.calculate_waypoint()


def test_initial_state_is_goto():
    gen = LandingWaypointGenerator()
    assert gen.state is SLPState.GOTO
    assert str(SLPState.ALTITUDE_CHANGE) == "ALTITUDE CHANGE"


def test_mask_is_symmetric_disk():
    gen = LandingWaypointGenerator()
    gen.smoothing_land_cell = 2
    gen.initialize_mask()
    assert gen.mask.shape == (5, 5)
    assert np.array_equal(gen.mask, gen.mask.T)
    assert gen.mask[2, 2] == 1
    assert gen.mask[0, 0] == 0
    assert gen.mask[0, 2] == 1


def test_mask_resized_when_smoothing_changes():
    gen = LandingWaypointGenerator()
    gen.smoothing_land_cell = 1
    gen.update_slp_state()
    assert gen.mask.shape == (3, 3)
    assert gen.mask.sum() == 9


def test_evaluate_patch():
    gen = LandingWaypointGenerator()
    gen.can_land_hysteresis_result.fill(1)
    assert gen.evaluate_patch((0, 0)) is True
    gen.can_land_hysteresis_result[2, 2] = 0
    assert gen.evaluate_patch((0, 0)) is False
    with pytest.raises(IndexError):
        gen.evaluate_patch((-1, 0))
    with pytest.raises(IndexError):
        gen.evaluate_patch((39, 39))


def test_within_landing_radius():
    gen = LandingWaypointGenerator()
    gen.position = np.array([1.0, 1.0, 3.0])
    gen.goal = np.array([1.0, 1.0, math.nan])
    assert gen.within_landing_radius()
    gen.goal = np.array([10.0, 1.0, 3.0])
    assert not gen.within_landing_radius()


def test_in_vertical_range():
    gen = LandingWaypointGenerator()
    gen.altitude_landing_area_percentile = 0.0
    gen.position = np.array([0.0, 0.0, gen.loiter_height])
    assert gen.in_vertical_range()
    gen.position = np.array([0.0, 0.0, gen.loiter_height + 10.0])
    assert not gen.in_vertical_range()


def test_percentile_constant_and_bounds():
    gen = LandingWaypointGenerator()
    gen.grid_slp.mean.fill(2.5)
    assert gen.landing_area_height_percentile(80.0) == pytest.approx(2.5)
    gen.grid_slp.mean = np.arange(40 * 40, dtype=float).reshape(40, 40)
    low = gen.landing_area_height_percentile(0.0)
    high = gen.landing_area_height_percentile(80.0)
    window = gen.grid_slp.mean[18:23, 18:23]
    assert low == window.min()
    assert low < high <= window.max()
    with pytest.raises(IndexError):
        gen.landing_area_height_percentile(100.0)
    gen.smoothing_land_cell = 30
    with pytest.raises(IndexError):
        gen.landing_area_height_percentile(50.0)


def test_full_landing_sequence():
    gen, recorder = _landing_setup(landable=True)
    _run_to_evaluation(gen)
    assert gen.state is SLPState.GOTO_LAND
    assert gen.decision_taken and gen.can_land
    gen.calculate_waypoint()
    assert gen.state is SLPState.LAND
    gen.calculate_waypoint()
    assert gen.state is SLPState.LAND
    position, velocity, _, _ = recorder.calls[-1]
    assert velocity[2] == pytest.approx(-LAND_SPEED)
    assert math.isnan(position[2])
    assert math.isnan(velocity[0])


def test_altitude_change_commands_descent_speed():
    gen, recorder = _landing_setup(landable=True)
    gen.position[2] = gen.loiter_height + 5.0
    gen.calculate_waypoint()
    gen.calculate_waypoint()
    assert gen.state is SLPState.ALTITUDE_CHANGE
    _, velocity, _, _ = recorder.calls[-1]
    assert velocity[2] == pytest.approx(-LAND_SPEED)
    assert math.isnan(gen.goal[2])


def test_unlandable_grid_starts_exploration():
    gen, _ = _landing_setup(landable=False)
    _run_to_evaluation(gen)
    assert gen.state is SLPState.GOTO
    assert gen.decision_taken and not gen.can_land
    anchor = gen.loiter_position.copy()
    gen.calculate_waypoint()
    assert gen.state is SLPState.GOTO
    assert gen.exploration_is_active
    assert gen.n_explored_pattern == 0
    assert not gen.decision_taken
    assert np.linalg.norm(gen.goal[:2] - anchor[:2]) > gen.landing_radius
    assert gen.goal[2] == pytest.approx(anchor[2])


def test_reset_returns_to_goto():
    gen, _ = _landing_setup(landable=True)
    gen.calculate_waypoint()
    assert gen.state is SLPState.ALTITUDE_CHANGE
    gen.trigger_reset = True
    gen.calculate_waypoint()
    assert gen.state is SLPState.GOTO
    assert gen.trigger_reset is False


def test_not_land_waypoint_resets_decision():
    gen = LandingWaypointGenerator(publish=Recorder())
    gen.decision_taken = True
    gen.can_land = False
    gen.exploration_is_active = True
    gen.landing_radius = 0.5
    gen.calculate_waypoint()
    assert gen.decision_taken is False
    assert gen.can_land is True
    assert gen.exploration_is_active is False
    assert gen.n_explored_pattern == -1
    assert gen.landing_radius == 2.0
    assert gen.state is SLPState.GOTO