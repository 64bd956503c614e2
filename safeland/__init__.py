"""Safe landing area detection, landing waypoints and trajectory simulation for multicopters."""

__version__ = "0.1.0"

__all__ = ["trajectory", "landing", "markers", "waypoints", "nodes"]