"""Jerk-limited trajectory simulation towards a goal direction."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np

FLT_EPSILON = float(np.finfo(np.float32).eps)


def _vector(values) -> np.ndarray:
    return np.array(values, dtype=float).reshape(3)


def _normalized(vector: np.ndarray) -> np.ndarray:
    norm = np.linalg.norm(vector)
    if norm > 0:
        return vector / norm
    return vector.copy()


def _float32_sum(a: float, b: float) -> float:
    """Add two times the way single-precision clocks accumulate them."""
    return float(np.float32(a) + np.float32(b))


@dataclass
class SimulationLimits:
    """Kinematic limits the simulated vehicle has to respect."""

    max_z_velocity: float = math.nan
    min_z_velocity: float = math.nan
    max_xy_velocity_norm: float = math.nan
    max_acceleration_norm: float = math.nan
    max_jerk_norm: float = math.nan


@dataclass
class SimulationState:
    """Time, position, velocity and acceleration of the vehicle."""

    time: float = 0.0
    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))
    acceleration: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self) -> None:
        self.time = float(self.time)
        self.position = _vector(self.position)
        self.velocity = _vector(self.velocity)
        self.acceleration = _vector(self.acceleration)


def norm_clamp(vector, max_norm: float) -> np.ndarray:
    """Return the vector scaled down so its norm does not exceed max_norm."""
    values = np.array(vector, dtype=float)
    norm = np.linalg.norm(values)
    if norm > max_norm:
        return values * (max_norm / norm)
    return values


def _xy_norm_z_clamp(value: np.ndarray, max_xy_norm: float, min_z: float, max_z: float) -> np.ndarray:
    result = np.empty(3)
    result[:2] = norm_clamp(value[:2], max_xy_norm)
    result[2] = min(max_z, max(min_z, float(value[2])))
    return result


def simulate_step_constant_jerk(state: SimulationState, jerk, step_time: float) -> SimulationState:
    """Advance the state by step_time under a constant jerk."""
    jerk = _vector(jerk)
    dt = float(step_time)
    return SimulationState(
        time=_float32_sum(state.time, dt),
        position=state.position
        + dt * state.velocity
        + 0.5 * dt * dt * state.acceleration
        + (1.0 / 6.0) * dt**3 * jerk,
        velocity=state.velocity + state.acceleration * dt + 0.5 * dt * dt * jerk,
        acceleration=state.acceleration + dt * jerk,
    )


def jerk_for_velocity_setpoint(
    p_constant: float,
    d_constant: float,
    max_jerk_norm: float,
    desired_velocity,
    state: SimulationState,
) -> np.ndarray:
    """PD jerk that drives the velocity to the setpoint, clamped to the jerk limit."""
    velocity_diff = _vector(desired_velocity) - state.velocity
    accel_diff = -state.acceleration
    return norm_clamp(velocity_diff * p_constant + accel_diff * d_constant, max_jerk_norm)


class TrajectorySimulator:
    """Simulates a vehicle flying towards a direction within kinematic limits."""

    def __init__(self, config: SimulationLimits, start: SimulationState, step_time: float = 0.1):
        self.config = config
        self.start = start
        self.step_time = float(step_time)

    def generate_trajectory(self, goal_direction, simulation_duration: float) -> list[SimulationState]:
        """Return the simulated states, one per time step."""
        num_steps = math.ceil(np.float32(simulation_duration) / np.float32(self.step_time))
        if num_steps <= 0:
            return []

        cfg = self.config
        unit_goal = _normalized(_vector(goal_direction))
        z_limit = cfg.max_z_velocity if unit_goal[2] > 0 else cfg.min_z_velocity
        desired_velocity = _xy_norm_z_clamp(
            unit_goal * math.hypot(cfg.max_xy_velocity_norm, z_limit),
            cfg.max_xy_velocity_norm,
            cfg.min_z_velocity,
            cfg.max_z_velocity,
        )

        # P and D are chosen so that accelerating from rest hits the jerk limit
        max_accel_norm = min(2 * math.sqrt(cfg.max_jerk_norm), cfg.max_acceleration_norm)
        speed = np.float64(np.linalg.norm(desired_velocity))
        with np.errstate(divide="ignore", invalid="ignore"):
            p_constant = float(
                (np.sqrt(max_accel_norm**2 + cfg.max_jerk_norm * speed) - max_accel_norm) / speed * 10
            )
        d_constant = 2 * math.sqrt(p_constant)

        run_state = self.start
        timepoints: list[SimulationState] = []
        for _ in range(num_steps):
            single_step_time = self.step_time
            damped_jerk = jerk_for_velocity_setpoint(
                p_constant, d_constant, cfg.max_jerk_norm, desired_velocity, run_state
            )

            # shorten the step so the acceleration limit is not exceeded, and
            # stop jerking when already at the limit
            requested_accel = run_state.acceleration + single_step_time * damped_jerk
            jerk = damped_jerk
            if float(requested_accel @ requested_accel) > max_accel_norm**2:
                with np.errstate(divide="ignore", invalid="ignore"):
                    single_step_time = float(
                        (max_accel_norm - np.linalg.norm(run_state.acceleration))
                        / np.float64(np.linalg.norm(damped_jerk))
                    )
                if single_step_time <= FLT_EPSILON or single_step_time > self.step_time:
                    jerk = np.zeros(3)
                    single_step_time = self.step_time

            run_state = simulate_step_constant_jerk(run_state, jerk, single_step_time)
            timepoints.append(run_state)

        return timepoints