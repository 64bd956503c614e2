"""Safe landing planner: per-cell height statistics around the vehicle."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view


def online_mean_variance(prev_mean: float, prev_variance: float, new_value: float, seq: float) -> tuple[float, float]:
    """Update a running mean and population variance with one sample (Welford)."""
    if seq <= 0:
        raise ValueError("sample count must be positive")
    mean = (prev_mean * (seq - 1) + new_value) / seq
    delta = new_value - prev_mean
    delta2 = new_value - mean
    m2 = prev_variance * (seq - 1) + delta * delta2
    return mean, m2 / seq


class Grid:
    """Square grid of cells centred on the vehicle holding height statistics."""

    def __init__(self, grid_size: float = 10.0, cell_size: float = 0.25):
        self.center = np.zeros(2)
        self.resize(grid_size, cell_size)

    def resize(self, grid_size: float, cell_size: float) -> None:
        """Change the grid dimensions; all cell data is cleared."""
        if cell_size <= 0 or grid_size <= 0:
            raise ValueError("grid and cell sizes must be positive")
        self.grid_size = float(grid_size)
        self.cell_size = float(cell_size)
        n = int(round(self.grid_size / self.cell_size))
        self.mean = np.zeros((n, n))
        self.variance = np.zeros((n, n))
        self.counter = np.zeros((n, n), dtype=int)
        self.land = np.zeros((n, n), dtype=int)

    @property
    def row_col_size(self) -> int:
        return self.mean.shape[0]

    def set_filter_limits(self, position) -> None:
        """Centre the grid on the xy of the given position."""
        self.center = np.array(position, dtype=float)[:2].copy()

    def reset(self) -> None:
        self.mean.fill(0.0)
        self.variance.fill(0.0)
        self.counter.fill(0)
        self.land.fill(0)

    def combine(self, previous: "Grid", alpha: float) -> None:
        """Low-pass the mean and variance with a previous grid; alpha weights this grid."""
        if previous.mean.shape != self.mean.shape or previous.cell_size != self.cell_size:
            return
        self.mean = alpha * self.mean + (1.0 - alpha) * previous.mean
        self.variance = alpha * self.variance + (1.0 - alpha) * previous.variance

    def limits(self) -> tuple[np.ndarray, np.ndarray]:
        """Return the (min, max) xy corners of the grid."""
        half = self.grid_size / 2.0
        return self.center - half, self.center + half


@dataclass
class RawGrid:
    """A recorded grid: per-cell mean height, standard deviation and point count."""

    seq: int
    grid_size: float
    cell_size: float
    mean: np.ndarray
    std_dev: np.ndarray
    counter: np.ndarray

    def __post_init__(self) -> None:
        self.mean = np.asarray(self.mean, dtype=float)
        self.std_dev = np.asarray(self.std_dev, dtype=float)
        self.counter = np.asarray(self.counter, dtype=int)


@dataclass
class PlannerConfig:
    """Tunable parameters of the safe landing planner."""

    n_points_threshold: float = 25.0
    std_dev_threshold: float = 0.1
    smoothing_size: int = 2
    mean_diff_thr: float = 0.3
    max_n_mean_diff_cells: int = 1
    grid_size: float = 10.0
    cell_size: float = 0.25
    alpha: float = 0.7
    timeout_critical: float = 0.5
    timeout_termination: float = 15.0
    min_n_land_cells: int = 9


class SafeLandingPlanner:
    """Bins a point cloud into a grid and decides which cells are safe to land on."""

    def __init__(self, config: PlannerConfig | None = None, play_rosbag: bool = False):
        config = config if config is not None else PlannerConfig()
        self.grid = Grid(config.grid_size, config.cell_size)
        self.previous_grid = Grid(config.grid_size, config.cell_size)
        self.n_lines_padding = config.smoothing_size
        self.play_rosbag = play_rosbag
        self.cloud: list = []
        self.raw_grid: RawGrid | None = None
        self.visualization_cloud: list[tuple[float, float, float, float]] = []
        self.position = np.zeros(3)
        self.pos_index = (0, 0)
        self.grid_seq = 0
        self.size_update = False
        self.configure(config)

    def configure(self, config: PlannerConfig) -> None:
        """Apply new parameters; a size change is applied on the next run."""
        self.config = config
        self.size_update = (
            self.grid.grid_size != config.grid_size
            or self.grid.cell_size != config.cell_size
            or self.n_lines_padding != config.smoothing_size
        )

    def run(self) -> None:
        """Process the latest input and update the landing decision of every cell."""
        if self.size_update:
            self.grid.resize(self.config.grid_size, self.config.cell_size)
            self.previous_grid.resize(self.config.grid_size, self.config.cell_size)
            self.n_lines_padding = self.config.smoothing_size
            self.size_update = False
        if self.play_rosbag:
            self.process_raw_grid()
        else:
            self.process_pointcloud()

        self.grid.combine(self.previous_grid, self.config.alpha)
        self.evaluate_landing()

    def process_pointcloud(self) -> None:
        """Bin the current cloud into a fresh grid centred on the vehicle."""
        self.grid, self.previous_grid = self.previous_grid, self.grid
        self.grid.set_filter_limits(self.position)
        self.grid_seq += 1
        self.grid.reset()
        self.visualization_cloud = []
        cells_per_row = self.config.grid_size / self.config.cell_size
        for point in self.cloud:
            x, y, z = (float(v) for v in point[:3])
            if np.isnan(x) or np.isnan(y) or np.isnan(z) or not self.is_inside_grid(x, y):
                continue
            index = self.grid_index(x, y)
            count = self.grid.counter[index] + 1
            self.grid.counter[index] = count
            mean, variance = online_mean_variance(
                self.grid.mean[index], self.grid.variance[index], z, float(count)
            )
            self.grid.mean[index] = mean
            self.grid.variance[index] = variance
            self.visualization_cloud.append((x, y, z, index[0] * cells_per_row + index[1]))

    def process_raw_grid(self) -> None:
        """Load the recorded grid into a fresh grid centred on the vehicle."""
        raw = self.raw_grid
        if raw is None:
            raise ValueError("no raw grid available")
        self.grid_seq = raw.seq
        self.grid, self.previous_grid = self.previous_grid, self.grid
        self.grid.reset()
        self.grid.set_filter_limits(self.position)
        if self.grid.grid_size != raw.grid_size or self.grid.cell_size != raw.cell_size:
            self.grid.resize(raw.grid_size, raw.cell_size)

        rows, cols = raw.mean.shape
        self.grid.mean[:rows, :cols] = raw.mean
        self.grid.variance[:rows, :cols] = raw.std_dev[:rows, :cols] ** 2
        self.grid.counter[:rows, :cols] = raw.counter[:rows, :cols]

    def evaluate_landing(self) -> None:
        """Mark cells landable from point count, spread and neighbourhood smoothness."""
        cfg = self.config
        grid = self.grid
        with np.errstate(invalid="ignore"):
            rejected = (grid.counter < cfg.n_points_threshold) | (np.sqrt(grid.variance) > cfg.std_dev_threshold)
        land = np.where(rejected, 0, 1)

        n = self.n_lines_padding
        if n > 0:
            window = (2 * n + 1, 2 * n + 1)
            land_windows = sliding_window_view(np.pad(land, n), window)
            mean_windows = sliding_window_view(np.pad(grid.mean, n), window)

            land_acc = land_windows.sum(axis=(2, 3))
            with np.errstate(invalid="ignore"):
                mean_acc = (np.abs(grid.mean[:, :, None, None] - mean_windows) > cfg.mean_diff_thr).sum(axis=(2, 3))

            land_acc = np.where(land_acc <= cfg.min_n_land_cells, 0, land_acc)
            land_acc = np.where(land_acc > cfg.min_n_land_cells, 1, land_acc)
            mean_acc = np.where(mean_acc <= cfg.max_n_mean_diff_cells, 1, mean_acc)
            mean_acc = np.where(mean_acc > cfg.max_n_mean_diff_cells, 0, mean_acc)
            land = mean_acc * land_acc

        grid.land = land.astype(int)
        self.pos_index = self.grid_index(self.position[0], self.position[1])

    def set_pose(self, position, orientation) -> None:
        """Record the vehicle position; the orientation is not used."""
        self.position = np.array(position, dtype=float).reshape(3)

    def is_inside_grid(self, x: float, y: float) -> bool:
        grid_min, grid_max = self.grid.limits()
        return grid_min[0] < x < grid_max[0] and grid_min[1] < y < grid_max[1]

    def grid_index(self, x: float, y: float) -> tuple[int, int]:
        """Return the (row, column) of the cell containing the xy point."""
        grid_min, _ = self.grid.limits()
        cell = self.grid.cell_size
        return int(np.floor((x - grid_min[0]) / cell)), int(np.floor((y - grid_min[1]) / cell))