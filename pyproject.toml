[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "safeland"
version = "0.1.0"
description = "Safe landing area detection, landing waypoint generation and jerk-limited trajectory simulation for multicopters"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = ["drone", "landing", "planning", "uav", "trajectory", "occupancy grid"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["safeland"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]
