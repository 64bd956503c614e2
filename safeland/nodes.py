"""Message handling around the landing waypoint generator and the landing grid."""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from typing import Callable, Sequence

import numpy as np

from safeland.landing import Grid
from safeland.waypoints import LandingWaypointGenerator

FRAME_ID = "local_origin"
MAV_CMD_NAV_LAND = 21


class MavState(enum.IntEnum):
    """System status reported to the flight controller."""

    UNINIT = 0
    BOOT = 1
    CALIBRATING = 2
    STANDBY = 3
    ACTIVE = 4
    CRITICAL = 5
    EMERGENCY = 6
    POWEROFF = 7
    FLIGHT_TERMINATION = 8


def _nan3() -> np.ndarray:
    return np.full(3, math.nan)


def _vector(values) -> np.ndarray:
    return np.array(values, dtype=float).reshape(3)


@dataclass
class TrajectorySetpoint:
    """One trajectory point: position, velocity and yaw targets plus a validity flag."""

    position: np.ndarray = field(default_factory=_nan3)
    velocity: np.ndarray = field(default_factory=_nan3)
    acceleration: np.ndarray = field(default_factory=_nan3)
    yaw: float = math.nan
    yaw_rate: float = math.nan
    valid: bool = False
    frame_id: str = FRAME_ID

    def __post_init__(self) -> None:
        self.position = _vector(self.position)
        self.velocity = _vector(self.velocity)
        self.acceleration = _vector(self.acceleration)
        self.yaw = float(self.yaw)
        self.yaw_rate = float(self.yaw_rate)


def make_trajectory_setpoint(position, velocity, yaw: float, yaw_speed: float) -> TrajectorySetpoint:
    """Build the setpoint sent to the flight controller.

    The point is valid when either the xy position or the xy velocity is finite;
    the vertical component is not checked.
    """
    pos = _vector(position)
    vel = _vector(velocity)
    xy_pos_valid = bool(np.all(np.isfinite(pos[:2])))
    xy_vel_valid = bool(np.all(np.isfinite(vel[:2])))
    return TrajectorySetpoint(
        position=pos,
        velocity=vel,
        yaw=yaw,
        yaw_rate=yaw_speed,
        valid=xy_pos_valid or xy_vel_valid,
    )


def check_failsafe(
    since_last_algo: float,
    since_start: float,
    timeout_critical: float,
    timeout_termination: float,
    current: MavState,
) -> MavState:
    """Return the system state after checking how long the planner has been silent."""
    if since_last_algo > timeout_termination and since_start > timeout_termination:
        return MavState.FLIGHT_TERMINATION
    if since_last_algo > timeout_critical and since_start > timeout_critical:
        return MavState.CRITICAL
    return current


def grid_to_message(grid: Grid, position_index, seq: int) -> dict:
    """Serialise a grid into a flat, row-major message."""
    rows, cols = grid.mean.shape
    with np.errstate(invalid="ignore"):
        std_dev = np.sqrt(grid.variance)
    x, y = position_index
    return {
        "frame_id": FRAME_ID,
        "seq": int(seq),
        "grid_size": float(grid.grid_size),
        "cell_size": float(grid.cell_size),
        "height": cols,
        "width": rows,
        "mean": [float(v) for v in grid.mean.ravel()],
        "land": [int(v) for v in grid.land.ravel()],
        "std_dev": [float(v) for v in std_dev.ravel()],
        "counter": [int(v) for v in grid.counter.ravel()],
        "curr_pos_index": (float(x), float(y)),
    }


def _yaw_from_quaternion(orientation) -> float:
    qx, qy, qz, qw = (float(v) for v in orientation)
    return math.atan2(2.0 * (qw * qz + qx * qy), 1.0 - 2.0 * (qy * qy + qz * qz))


def _reshape_layer(message: dict, key: str, height: int, width: int, dtype) -> np.ndarray:
    data = np.asarray(message[key], dtype=dtype)
    size = height * width
    if data.size < size:
        raise ValueError(f"grid message field {key!r} holds {data.size} values, expected {size}")
    return data[:size].reshape(height, width)


class WaypointGeneratorNode:
    """Feeds vehicle, mission and grid messages to the landing waypoint generator."""

    def __init__(
        self,
        publish: Callable[[TrajectorySetpoint], None] | None = None,
        generator: LandingWaypointGenerator | None = None,
    ):
        self.published: list[TrajectorySetpoint] = []
        self._sink = publish if publish is not None else self.published.append
        self.generator = generator if generator is not None else LandingWaypointGenerator()
        self.generator.publish = self._publish_setpoint
        self.goal_visualization = np.zeros(3)
        self.grid_received = False

    def _publish_setpoint(self, position, velocity, yaw, yaw_speed) -> None:
        self._sink(make_trajectory_setpoint(position, velocity, yaw, yaw_speed))

    def handle_pose(self, position, orientation) -> None:
        """Update the vehicle position and yaw; orientation is (x, y, z, w)."""
        self.generator.position = _vector(position)
        self.generator.yaw = _yaw_from_quaternion(orientation)

    def handle_trajectory(self, point_1, point_2, valid: Sequence[bool], command: Sequence[int]) -> None:
        """Take a new goal and yaw targets from the flight controller's desired trajectory."""
        gen = self.generator
        with np.errstate(invalid="ignore"):
            moved = float(np.linalg.norm(_vector(point_2.position) - self.goal_visualization)) > 0.01
        update = moved or bool(np.any(np.isnan(gen.goal[:2])))

        if update and valid[0]:
            gen.goal = _vector(point_1.position)
            gen.velocity_setpoint = _vector(point_1.velocity)
            gen.is_land_waypoint = int(command[1]) == MAV_CMD_NAV_LAND
        if valid[1]:
            self.goal_visualization = _vector(point_2.position)
            gen.yaw_setpoint = float(point_2.yaw)
            gen.yaw_speed_setpoint = float(point_2.yaw_rate)

    def handle_state(self, mode: str, armed: bool) -> None:
        """React to a flight mode or arming change."""
        gen = self.generator
        if mode == "AUTO.LAND":
            gen.is_land_waypoint = True
        elif mode != "AUTO.MISSION":
            gen.is_land_waypoint = False
            gen.trigger_reset = True

        if not armed:
            gen.is_land_waypoint = False
            gen.trigger_reset = True

    def handle_grid(self, message: dict) -> None:
        """Load a grid message into the generator's landing grid."""
        gen = self.generator
        grid = gen.grid_slp
        gen.grid_slp_seq = int(message["seq"])
        if grid.grid_size != message["grid_size"] or grid.cell_size != message["cell_size"]:
            grid.resize(message["grid_size"], message["cell_size"])

        height, width = int(message["height"]), int(message["width"])
        if height > grid.mean.shape[0] or width > grid.mean.shape[1]:
            raise ValueError("grid message is larger than the grid it describes")
        grid.mean[:height, :width] = _reshape_layer(message, "mean", height, width, float)
        grid.land[:height, :width] = _reshape_layer(message, "land", height, width, int)

        x, y = message["curr_pos_index"]
        gen.pos_index = (int(x), int(y))
        grid.set_filter_limits(gen.position)
        self.grid_received = True

    def step(self) -> bool:
        """Run the generator once if a new grid has arrived; return whether it ran."""
        if not self.grid_received:
            return False
        self.generator.calculate_waypoint()
        self.grid_received = False
        return True