"""Merging keyframe scans into one map and splitting a map into square tiles."""

from __future__ import annotations

import argparse
import logging
import math
import shutil
from collections.abc import Iterable, Mapping
from functools import reduce
from operator import add
from pathlib import Path

import numpy as np

from sadmap.keyframe import Keyframe, load_keyframes
from sadmap.pointcloud import PointCloud, save_cloud_to_file, voxel_grid

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = "./data/ch9"
GRID_SIZE = 100.0
GRID_OFFSET = 50.0
TILE_VOXEL_SIZE = 0.1

_POSE_SOURCES = {
    "lidar": "lidar_pose",
    "rtk": "rtk_pose",
    "opti1": "opti_pose_1",
    "opti2": "opti_pose_2",
}


def _frames(keyframes: Mapping[int, Keyframe] | Iterable[Keyframe]) -> list[Keyframe]:
    frames = keyframes.values() if isinstance(keyframes, Mapping) else keyframes
    return sorted(frames, key=lambda kf: kf.id)


def grid_index(x: float, y: float) -> tuple[int, int]:
    """Tile of a point: 100 m squares whose centres lie on multiples of 100 m."""
    return (
        math.floor((float(x) - GRID_OFFSET) / GRID_SIZE),
        math.floor((float(y) - GRID_OFFSET) / GRID_SIZE),
    )


def dump_map(keyframes, data_dir=DEFAULT_DATA_DIR, pose_source="lidar", voxel_size=0.1) -> PointCloud:
    """Merge every keyframe scan, placed by the chosen pose and voxel filtered."""
    try:
        attribute = _POSE_SOURCES[pose_source]
    except KeyError:
        raise ValueError(
            f"pose source must be one of {', '.join(_POSE_SOURCES)}, got {pose_source!r}"
        ) from None
    frames = _frames(keyframes)
    logger.info("merging")
    global_cloud = PointCloud()
    for count, kf in enumerate(frames):
        cloud = kf.load_scan(data_dir)
        voxeled = voxel_grid(cloud.transformed(getattr(kf, attribute)), voxel_size)
        global_cloud = global_cloud + voxeled
        kf.cloud = None
        logger.info(
            "merging %d in %d, pts: %d global pts: %d", count, len(frames), len(voxeled), len(global_cloud)
        )
    return global_cloud


def split_map(keyframes, data_dir=DEFAULT_DATA_DIR, voxel_size=0.1) -> dict[tuple[int, int], PointCloud]:
    """Place scans by their stage-2 pose and group the points into tiles, ordered by tile."""
    frames = _frames(keyframes)
    parts: dict[tuple[int, int], list[PointCloud]] = {}
    for kf in frames:
        cloud = kf.load_scan(data_dir)
        voxeled = voxel_grid(cloud.transformed(kf.opti_pose_2), voxel_size)
        logger.info("building kf %d in %d", kf.id, len(frames))
        if len(voxeled) == 0:
            continue
        xyz = voxeled.xyz.astype(np.float64)
        keys = np.floor((xyz[:, :2] - GRID_OFFSET) / GRID_SIZE).astype(np.int64)
        uniq, inverse = np.unique(keys, axis=0, return_inverse=True)
        inverse = inverse.reshape(-1)
        for k, key in enumerate(uniq):
            mask = inverse == k
            parts.setdefault((int(key[0]), int(key[1])), []).append(
                PointCloud(voxeled.xyz[mask], voxeled.intensity[mask])
            )
    return {key: voxel_grid(reduce(add, parts[key]), TILE_VOXEL_SIZE) for key in sorted(parts)}


def _clear_directory(directory: Path) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    for child in directory.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()


def _write_tiles(tiles: Mapping[tuple[int, int], PointCloud], map_dir: Path) -> None:
    _clear_directory(map_dir)
    with open(map_dir / "map_index.txt", "w", encoding="utf-8", newline="\n") as fout:
        for (gx, gy), cloud in tiles.items():
            fout.write(f"{gx} {gy}\n")
            save_cloud_to_file(map_dir / f"{gx}_{gy}.pcd", cloud)


def dump_map_main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Merge keyframe scans into one map file.")
    parser.add_argument("--voxel_size", type=float, default=0.1, help="map resolution")
    parser.add_argument("--pose_source", choices=tuple(_POSE_SOURCES), default="lidar", help="pose to place scans by")
    parser.add_argument("--dump_to", default=DEFAULT_DATA_DIR, help="output directory")
    parser.add_argument("--data_dir", default=DEFAULT_DATA_DIR, help="directory of keyframes and scans")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    try:
        keyframes = load_keyframes(Path(args.data_dir) / "keyframes.txt")
    except (OSError, ValueError) as exc:
        logger.error("failed to load keyframes.txt: %s", exc)
        return 1
    if not keyframes:
        logger.info("keyframes are empty")
        return 0
    global_cloud = dump_map(keyframes, args.data_dir, args.pose_source, args.voxel_size)
    if len(global_cloud) > 0:
        save_cloud_to_file(Path(args.dump_to) / "map.pcd", global_cloud)
    logger.info("done.")
    return 0


def split_map_main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Split the optimised map into 100 m tiles.")
    parser.add_argument("--map_path", default=DEFAULT_DATA_DIR, help="directory of keyframes and scans")
    parser.add_argument("--voxel_size", type=float, default=0.1, help="map resolution")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    data_dir = Path(args.map_path)
    try:
        keyframes = load_keyframes(data_dir / "keyframes.txt")
    except (OSError, ValueError) as exc:
        logger.error("failed to load keyframes: %s", exc)
        return 1
    tiles = split_map(keyframes, data_dir, args.voxel_size)
    logger.info("saving maps, grids: %d", len(tiles))
    _write_tiles(tiles, data_dir / "map_data")
    logger.info("done.")
    return 0