"""State machine that picks a safe landing spot and steers the vehicle there."""

from __future__ import annotations

import enum
import logging
import math
from typing import Callable

import numpy as np

from safeland.landing import Grid

log = logging.getLogger(__name__)

LAND_SPEED = 0.7

Publisher = Callable[[np.ndarray, np.ndarray, float, float], None]

DEFAULT_EXPLORATION_PATTERN: tuple[tuple[int, int], ...] = (
    (1, 0),
    (1, 1),
    (0, 1),
    (-1, 1),
    (-1, 0),
    (-1, -1),
    (0, -1),
    (1, -1),
)


def _nan_vector() -> np.ndarray:
    return np.full(3, math.nan)


def _next_yaw(position: np.ndarray, goal: np.ndarray) -> float:
    return math.atan2(float(goal[1] - position[1]), float(goal[0] - position[0]))


class SLPState(enum.Enum):
    GOTO = "GOTO"
    ALTITUDE_CHANGE = "ALTITUDE CHANGE"
    LOITER = "LOITER"
    LAND = "LAND"
    EVALUATE_GRID = "EVALUATE_GRID"
    GOTO_LAND = "GOTO_LAND"

    def __str__(self) -> str:
        return self.value


class _Transition(enum.Enum):
    REPEAT = enum.auto()
    NEXT1 = enum.auto()
    NEXT2 = enum.auto()
    ERROR = enum.auto()


_TRANSITIONS: dict[SLPState, dict[_Transition, SLPState]] = {
    SLPState.GOTO: {_Transition.NEXT1: SLPState.ALTITUDE_CHANGE},
    SLPState.ALTITUDE_CHANGE: {_Transition.NEXT1: SLPState.LOITER},
    SLPState.LOITER: {_Transition.NEXT1: SLPState.EVALUATE_GRID},
    SLPState.EVALUATE_GRID: {
        _Transition.NEXT1: SLPState.GOTO,
        _Transition.NEXT2: SLPState.GOTO_LAND,
    },
    SLPState.GOTO_LAND: {_Transition.NEXT1: SLPState.LAND},
    SLPState.LAND: {},
}
_ERROR_STATE = SLPState.GOTO


class LandingWaypointGenerator:
    """Descends over a goal, evaluates the landing grid and lands or explores around."""

    def __init__(
        self,
        publish: Publisher | None = None,
        grid: Grid | None = None,
        exploration_pattern=DEFAULT_EXPLORATION_PATTERN,
    ):
        self.unpublished: list[tuple[np.ndarray, np.ndarray, float, float]] = []
        self.publish: Publisher = publish if publish is not None else self._hold_setpoint
        self.grid_slp = grid if grid is not None else Grid()
        self.exploration_pattern = [tuple(p) for p in exploration_pattern]

        self.beta = 0.9
        self.can_land_thr = 0.4
        self.loiter_height = 4.0
        self.smoothing_land_cell = 2
        self.vertical_range_error = 1.0
        self.spiral_width = 2.0
        self.stride = 1

        self.position = np.zeros(3)
        self.goal = _nan_vector()
        self.velocity_setpoint = _nan_vector()
        self.yaw = math.nan
        self.yaw_setpoint = math.nan
        self.yaw_speed_setpoint = math.nan
        self.loiter_position = _nan_vector()
        self.loiter_yaw = math.nan
        self.exploration_anchor = _nan_vector()
        self.pos_index = (0, 0)

        self.is_land_waypoint = False
        self.trigger_reset = False
        self.update_smoothing_size = False
        self.decision_taken = False
        self.can_land = True
        self.exploration_is_active = False
        self.n_explored_pattern = -1
        self.factor_exploration = 1.0
        self.landing_radius = 2.0
        self.altitude_landing_area_percentile = math.nan
        self.grid_slp_seq = 0
        self.start_seq_landing_decision = 0

        self.state = SLPState.GOTO
        self.prev_slp_state = SLPState.GOTO
        self.state_changed = False

        shape = self.grid_slp.land.shape
        self.can_land_hysteresis_matrix = np.zeros(shape)
        self.can_land_hysteresis_result = np.zeros(shape, dtype=int)
        self.mask = np.zeros((0, 0), dtype=int)
        self.initialize_mask()

    def _hold_setpoint(self, position, velocity, yaw, yaw_speed) -> None:
        """Keep setpoints produced while no publisher is attached."""
        log.error("trajectory publisher not set in LandingWaypointGenerator")
        self.unpublished.append((np.array(position, dtype=float), np.array(velocity, dtype=float), yaw, yaw_speed))

    def initialize_mask(self) -> None:
        """Build the circular mask of the landing patch."""
        slc = self.smoothing_land_cell
        idx = np.arange(2 * slc + 1)
        rows, cols = np.meshgrid(idx, idx, indexing="ij")
        self.mask = (np.hypot(rows - slc, cols - slc) < slc + 0.5).astype(int)

    def calculate_waypoint(self) -> None:
        """Advance the state machine by one step and publish its setpoint."""
        self.update_slp_state()
        self._iterate_once()
        if self.state != self.prev_slp_state:
            log.info("[WGN] Update to %s state", self.state)

    def update_slp_state(self) -> None:
        """Resize internal matrices and reset the decision when not landing."""
        if self.update_smoothing_size or self.mask.shape[0] != self.smoothing_land_cell * 2 + 1:
            self.initialize_mask()
            self.update_smoothing_size = False

        shape = self.grid_slp.land.shape
        if self.can_land_hysteresis_matrix.shape != shape:
            self.can_land_hysteresis_matrix = np.zeros(shape)
            self.can_land_hysteresis_result = np.zeros(shape, dtype=int)

        if not self.is_land_waypoint:
            self.decision_taken = False
            self.can_land = True
            self.can_land_hysteresis_matrix.fill(0.0)
            self.exploration_is_active = False
            self.n_explored_pattern = -1
            self.factor_exploration = 1.0
            self.landing_radius = 2.0
            log.info("[WGN] Not a land waypoint")

    def _iterate_once(self) -> None:
        transition = self._run_current_state()
        if transition is _Transition.REPEAT:
            return
        self.prev_slp_state = self.state
        self.state_changed = True
        self.state = _TRANSITIONS[self.state].get(transition, _ERROR_STATE)

    def _run_current_state(self) -> _Transition:
        if self.trigger_reset:
            self.trigger_reset = False
            return _Transition.ERROR
        handlers = {
            SLPState.GOTO: self._run_goto,
            SLPState.ALTITUDE_CHANGE: self._run_altitude_change,
            SLPState.LOITER: self._run_loiter,
            SLPState.LAND: self._run_land,
            SLPState.EVALUATE_GRID: self._run_evaluate_grid,
            SLPState.GOTO_LAND: self._run_goto_land,
        }
        transition = handlers[self.state]()
        self.state_changed = False
        return transition

    def _run_goto(self) -> _Transition:
        if self.exploration_is_active:
            self.landing_radius = 0.5
            self.yaw_setpoint = _next_yaw(self.position, self.goal)

        self.publish(self.goal.copy(), self.velocity_setpoint.copy(), self.yaw_setpoint, self.yaw_speed_setpoint)
        log.info("[WGN] goTo %s - %s", self.goal, self.velocity_setpoint)
        self.altitude_landing_area_percentile = self.landing_area_height_percentile(80.0)
        self.can_land_hysteresis_matrix.fill(0.0)

        if not (self.within_landing_radius() and self.is_land_waypoint):
            return _Transition.REPEAT
        if not self.decision_taken:
            return _Transition.NEXT1
        if not self.can_land:
            if not self.exploration_is_active:
                self.exploration_anchor = self.loiter_position.copy()
                self.exploration_is_active = True
            self.n_explored_pattern += 1
            if self.n_explored_pattern == len(self.exploration_pattern):
                self.n_explored_pattern = 0
                self.factor_exploration += 1.0
            distance = (
                self.spiral_width
                * self.factor_exploration
                * 2.0
                * float(self.smoothing_land_cell)
                * self.grid_slp.cell_size
            )
            dx, dy = self.exploration_pattern[self.n_explored_pattern]
            anchor = self.exploration_anchor
            self.goal = np.array([anchor[0] + distance * dx, anchor[1] + distance * dy, anchor[2]])
            self.velocity_setpoint = _nan_vector()
            self.decision_taken = False
        return _Transition.REPEAT

    def _run_goto_land(self) -> _Transition:
        yaw = _next_yaw(self.position, self.goal)
        self.publish(self.goal.copy(), self.velocity_setpoint.copy(), yaw, self.yaw_speed_setpoint)
        log.info("[WGN] goToLand %s - %s yaw %f", self.goal, self.velocity_setpoint, yaw)
        if self.within_landing_radius():
            return _Transition.NEXT1
        return _Transition.REPEAT

    def _run_altitude_change(self) -> _Transition:
        if self.state_changed:
            self.loiter_yaw = self.yaw
        self.goal[2] = math.nan
        self.altitude_landing_area_percentile = self.landing_area_height_percentile(80.0)
        height = abs(self.position[2] - self.altitude_landing_area_percentile)
        direction = 1.0 if height - self.loiter_height < 0.0 else -1.0
        self.velocity_setpoint[2] = direction * LAND_SPEED
        self.publish(self.goal.copy(), self.velocity_setpoint.copy(), self.loiter_yaw, self.yaw_speed_setpoint)
        log.info("[WGN] altitudeChange %s - %s", self.goal, self.velocity_setpoint)

        if self.in_vertical_range():
            self.start_seq_landing_decision = self.grid_slp_seq
            return _Transition.NEXT1
        return _Transition.REPEAT

    def _run_loiter(self) -> _Transition:
        if self.state_changed:
            self.loiter_position = self.position.copy()
            self.goal = self.loiter_position.copy()

        self.publish(self.loiter_position.copy(), _nan_vector(), self.loiter_yaw, math.nan)
        log.info("[WGN] Loiter %s yaw %f", self.loiter_position, self.loiter_yaw)

        if abs(self.grid_slp_seq - self.start_seq_landing_decision) <= 20:
            land = self.grid_slp.land.astype(float)
            self.can_land_hysteresis_matrix = (
                self.beta * self.can_land_hysteresis_matrix + (1.0 - self.beta) * land
            )
            return _Transition.REPEAT

        matrix = self.can_land_hysteresis_matrix
        matrix = np.where(matrix <= self.can_land_thr, 0.0, matrix)
        matrix = np.where(matrix > self.can_land_thr, 1.0, matrix)
        self.can_land_hysteresis_matrix = matrix
        self.can_land_hysteresis_result = matrix.astype(int)
        return _Transition.NEXT1

    def _run_land(self) -> _Transition:
        if self.state_changed:
            self.loiter_position = self.position.copy()
            self.loiter_yaw = self.yaw
        self.loiter_position[2] = math.nan
        velocity = _nan_vector()
        velocity[2] = -LAND_SPEED
        self.publish(self.loiter_position.copy(), velocity, self.loiter_yaw, math.nan)
        log.info("[WGN] Land %s yaw %f", self.loiter_position, self.loiter_yaw)
        return _Transition.REPEAT

    def _run_evaluate_grid(self) -> _Transition:
        self.publish(self.loiter_position.copy(), _nan_vector(), self.loiter_yaw, math.nan)
        log.info("[WGN] runEvaluateGrid %s yaw %f", self.loiter_position, self.loiter_yaw)

        self.landing_radius = 0.5
        rows, cols = self.grid_slp.land.shape
        slc = self.smoothing_land_cell
        center = (rows // 2, cols // 2)

        self.can_land = self.evaluate_patch((center[0] - slc, center[1] - slc))
        if self.can_land:
            self.decision_taken = True
            return _Transition.NEXT2

        n_iterations = int((1 + int((rows - (2 * slc + 1)) / self.stride)) / 2)
        cell = self.grid_slp.cell_size
        for i in range(1, n_iterations):
            for dx, dy in self.exploration_pattern:
                corner = (center[0] + dx * i * self.stride - slc, center[1] + dy * i * self.stride - slc)
                if not self._patch_inside(corner):
                    continue
                self.can_land = self.evaluate_patch(corner)
                if self.can_land:
                    self.decision_taken = True
                    self.goal = np.array(
                        [
                            self.position[0] + (corner[0] + slc - rows // 2) * cell,
                            self.position[1] + (corner[1] + slc - cols // 2) * cell,
                            self.position[2],
                        ]
                    )
                    self.velocity_setpoint[2] = math.nan
                    log.info("[WGN] Found landing area in grid at %s", self.goal)
                    return _Transition.NEXT2
        self.decision_taken = True
        return _Transition.NEXT1

    def _patch_inside(self, corner) -> bool:
        rows, cols = self.can_land_hysteresis_result.shape
        height, width = self.mask.shape
        r, c = corner
        return r >= 0 and c >= 0 and r + height <= rows and c + width <= cols

    def evaluate_patch(self, corner) -> bool:
        """Whether every masked cell of the patch at corner is landable."""
        if not self._patch_inside(corner):
            raise IndexError(f"patch at {tuple(corner)} lies outside the grid")
        r, c = corner
        height, width = self.mask.shape
        block = self.can_land_hysteresis_result[r : r + height, c : c + width]
        return int((block * self.mask).sum()) == int(self.mask.sum())

    def within_landing_radius(self) -> bool:
        distance = float(np.linalg.norm(self.goal[:2] - self.position[:2]))
        return distance < self.landing_radius

    def in_vertical_range(self) -> bool:
        height = abs(self.position[2] - self.altitude_landing_area_percentile)
        return abs(height - self.loiter_height) < self.vertical_range_error

    def landing_area_height_percentile(self, percentile: float) -> float:
        """Height below which the given percent of the central landing patch lies."""
        slc = self.smoothing_land_cell
        center = self.grid_slp.land.shape[0] // 2
        low, high = center - slc, center + slc + 1
        if low < 0 or high > self.grid_slp.mean.shape[0] or high > self.grid_slp.mean.shape[1]:
            raise IndexError("landing patch lies outside the grid")
        heights = np.sort(self.grid_slp.mean[low:high, low:high], axis=None)
        index = int(math.floor(percentile / 100.0 * heights.size + 0.5))
        if index < 0 or index >= heights.size:
            raise IndexError(f"percentile {percentile} out of range")
        return float(heights[index])