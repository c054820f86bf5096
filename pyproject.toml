[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sadmap"
version = "0.1.0"
description = "Offline lidar mapping tools: keyframes, loop-closure detection and verification, and map export"
requires-python = ">=3.10"
keywords = [
    "slam",
    "lidar",
    "mapping",
    "loop closure",
    "ndt",
    "point cloud",
    "pcd",
    "gnss",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering",
]
dependencies = [
    "numpy",
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
sadmap-loopclosure = "sadmap.loopclosure:main"
sadmap-dump-map = "sadmap.mapexport:dump_map_main"
sadmap-split-map = "sadmap.mapexport:split_map_main"

[tool.hatch.build.targets.wheel]
packages = ["sadmap"]

[tool.hatch.build.targets.sdist]
include = ["sadmap", "tests", "README.md"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
ignore_missing_imports = true
