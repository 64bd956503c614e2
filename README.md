# safeland

Tools for deciding where a multicopter can land safely and for steering it there.

## Modules

- `safeland.trajectory` is a jerk-limited trajectory simulator. `TrajectorySimulator(limits, start, step_time=0.1)`
  takes `SimulationLimits` and a starting `SimulationState`. `generate_trajectory(goal_direction, duration)`
  returns one state per time step. A PD jerk law drives the velocity toward the goal direction and keeps
  the velocity, acceleration and jerk within the limits. The helpers `norm_clamp`,
  `simulate_step_constant_jerk` and `jerk_for_velocity_setpoint` are public as well.
- `safeland.landing` is the safe landing planner. `SafeLandingPlanner` bins a point cloud into a square
  `Grid` centred on the vehicle's xy position. Each cell holds a running mean height, a variance and a
  point count, kept with `online_mean_variance`. When the planner is built with `play_rosbag=True`, it
  loads a recorded `RawGrid` instead of a cloud. `run()` low-pass filters the grid against the previous
  one using `alpha`. `evaluate_landing()` then marks a cell landable (`grid.land == 1`) when three things
  hold: the cell has enough points, its height standard deviation is small enough, and its
  neighbourhood of `smoothing_size` cells holds enough landable cells and few height jumps. Parameters
  live in `PlannerConfig` and are applied with `configure()`. A change of size takes effect on the next
  `run()`.
- `safeland.waypoints` holds `LandingWaypointGenerator`, a state machine over `SLPState`:
  - `GOTO` flies to the goal.
  - `ALTITUDE_CHANGE` climbs or descends at 0.7 m/s until the vehicle is `loiter_height` above the 80th
    height percentile of the central patch.
  - `LOITER` builds a hysteresis over the landable cells across about 20 grid updates.
  - `EVALUATE_GRID` tests the centre patch against a circular mask, then patches further out.
  - `GOTO_LAND` flies to the patch that was found, and `LAND` descends.

  If no patch is landable, the generator returns to `GOTO` with exploration goals spiralling around
  the loiter point. Setpoints go to the `publish` callable, given as `(position, velocity, yaw,
  yaw_speed)`. Without one, they are logged as an error and kept in `unpublished`.
- `safeland.nodes` is the message handling around the generator:
  - `WaypointGeneratorNode` takes poses, desired trajectories, flight mode and arming state, and grid
    messages, and `step()` runs the generator once for each new grid.
  - `make_trajectory_setpoint` builds a `TrajectorySetpoint`.
  - `check_failsafe` maps planner silence to a `MavState`.
  - `grid_to_message` turns a `Grid` into the flat dict that `handle_grid` reads.
- `safeland.markers` turns a grid into coloured cube `Marker`s for display:
  - `std_dev_markers`, `counter_markers` and `land_markers` make one cube per cell.
  - `PathTracer` makes numbered line segments of the flown path.
  - `hsv_to_rgb` is the colour helper they use.

## Installation

```
pip install .
```

## Examples

Simulate a trajectory:

```python
import numpy as np
from safeland.trajectory import SimulationLimits, SimulationState, TrajectorySimulator

limits = SimulationLimits(
    max_z_velocity=1.0,
    min_z_velocity=-0.5,
    max_xy_velocity_norm=3.0,
    max_acceleration_norm=4.0,
    max_jerk_norm=20.0,
)
start = SimulationState(velocity=np.array([-3.0, 0.0, 0.0]))
steps = TrajectorySimulator(limits, start).generate_trajectory(np.array([1.0, 0.0, 0.0]), 10.0)
print(steps[-1].velocity)
```

Evaluate a flat patch of ground. The cloud is any iterable of `(x, y, z)` points, such as an `(N, 3)` array:

```python
import numpy as np
from safeland.landing import SafeLandingPlanner

planner = SafeLandingPlanner()
planner.set_pose(np.array([0.0, 0.0, 5.0]), None)
planner.cloud = np.random.default_rng(0).uniform([-5, -5, 0], [5, 5, 0.01], size=(100000, 3))
planner.run()
print(planner.grid.land.sum(), "landable cells of", planner.grid.land.size)
```

Feed the result to the waypoint generator:

```python
from safeland.nodes import WaypointGeneratorNode, grid_to_message

node = WaypointGeneratorNode()
node.handle_pose([0.0, 0.0, 10.0], [0.0, 0.0, 0.0, 1.0])
node.handle_state("AUTO.LAND", True)
node.handle_grid(grid_to_message(planner.grid, planner.pos_index, planner.grid_seq))
node.step()
print(node.generator.state, node.published[-1])
```

## What the package does not do

The package has no command-line program and does no networking. It does not subscribe to or publish
on any message bus. It runs no timers or worker threads, and it does not transform point clouds between
coordinate frames. The caller delivers poses, clouds and grid messages, calls `run()` or `step()` at
its own rate, and passes a callable to receive the setpoints. Markers are returned as plain objects
and are not drawn.

## Running the tests

```
pip install .[test]
pytest
```