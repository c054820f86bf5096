"""Keyframes of a mapping run and their text storage."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

from sadmap.geometry import SE3, SO3
from sadmap.pointcloud import PointCloud, load_pcd, save_cloud_to_file

logger = logging.getLogger(__name__)

_POSE_FIELDS = 7
_HEADER_FIELDS = 5
_LINE_FIELDS = _HEADER_FIELDS + 4 * _POSE_FIELDS


def _pose_values(pose: SE3) -> list[float]:
    w, x, y, z = pose.rotation.quaternion()
    return [*pose.translation.tolist(), x, y, z, w]


def _pose_from_values(values: list[float]) -> SE3:
    tx, ty, tz, qx, qy, qz, qw = values
    return SE3(SO3.from_quaternion(qw, qx, qy, qz), np.array([tx, ty, tz]))


def _parse_flag(text: str) -> bool:
    if text not in ("0", "1"):
        raise ValueError(f"flag must be 0 or 1, got {text!r}")
    return text == "1"


@dataclass
class Keyframe:
    """A keyframe: its poses from each stage, RTK flags and optionally its scan."""

    timestamp: float = 0.0
    id: int = 0
    lidar_pose: SE3 = field(default_factory=SE3)
    rtk_pose: SE3 = field(default_factory=SE3)
    opti_pose_1: SE3 = field(default_factory=SE3)
    opti_pose_2: SE3 = field(default_factory=SE3)
    rtk_heading_valid: bool = False
    rtk_valid: bool = True
    rtk_inlier: bool = True
    cloud: PointCloud | None = None

    def _scan_path(self, path) -> Path:
        return Path(path) / f"{self.id}.pcd"

    def save_and_unload_scan(self, path) -> None:
        """Write the scan to <path>/<id>.pcd and drop it from memory."""
        if self.cloud is not None:
            save_cloud_to_file(self._scan_path(path), self.cloud)
            self.cloud = None

    def load_scan(self, path) -> PointCloud:
        """Read the scan back from <path>/<id>.pcd."""
        self.cloud = load_pcd(self._scan_path(path))
        return self.cloud

    def to_line(self) -> str:
        """One text line: id, time, flags, then four poses as t and q(x, y, z, w)."""
        fields = [
            str(self.id),
            f"{self.timestamp:.18g}",
            str(int(self.rtk_heading_valid)),
            str(int(self.rtk_valid)),
            str(int(self.rtk_inlier)),
        ]
        for pose in (self.lidar_pose, self.rtk_pose, self.opti_pose_1, self.opti_pose_2):
            fields.extend(f"{v:.18g}" for v in _pose_values(pose))
        return " ".join(fields) + " "

    @classmethod
    def from_line(cls, line: str) -> "Keyframe":
        tokens = line.split()
        if len(tokens) < _LINE_FIELDS:
            raise ValueError(f"keyframe line needs {_LINE_FIELDS} fields, got {len(tokens)}")
        kf_id = int(tokens[0])
        if kf_id < 0:
            raise ValueError(f"keyframe id must be non-negative, got {kf_id}")
        values = [float(t) for t in tokens[_HEADER_FIELDS:_LINE_FIELDS]]
        lidar, rtk, opti1, opti2 = (
            _pose_from_values(values[k : k + _POSE_FIELDS])
            for k in range(0, len(values), _POSE_FIELDS)
        )
        return cls(
            timestamp=float(tokens[1]),
            id=kf_id,
            lidar_pose=lidar,
            rtk_pose=rtk,
            opti_pose_1=opti1,
            opti_pose_2=opti2,
            rtk_heading_valid=_parse_flag(tokens[2]),
            rtk_valid=_parse_flag(tokens[3]),
            rtk_inlier=_parse_flag(tokens[4]),
        )


def load_keyframes(path) -> dict[int, Keyframe]:
    """Read keyframes up to the first blank line, keyed and ordered by id."""
    keyframes: dict[int, Keyframe] = {}
    with open(path, encoding="utf-8") as fin:
        for line in fin:
            if not line.strip():
                break
            kf = Keyframe.from_line(line)
            keyframes.setdefault(kf.id, kf)
    logger.info("Loaded kfs: %d", len(keyframes))
    return dict(sorted(keyframes.items()))


def save_keyframes(path, keyframes: Mapping[int, Keyframe] | Iterable[Keyframe]) -> None:
    """Write keyframes one per line in order of id."""
    frames = keyframes.values() if isinstance(keyframes, Mapping) else keyframes
    with open(path, "w", encoding="utf-8", newline="\n") as fout:
        for kf in sorted(frames, key=lambda k: k.id):
            fout.write(kf.to_line() + "\n")