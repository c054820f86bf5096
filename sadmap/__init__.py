"""Offline lidar mapping tools: geometry, keyframes, loop closure and map export."""

__version__ = "0.1.0"

__all__ = [
    "geometry",
    "datatypes",
    "mathutils",
    "timer",
    "pointcloud",
    "io_utils",
    "keyframe",
    "loopclosure",
    "mapexport",
]