"""Point clouds of XYZ-intensity points: filtering, transforms and PCD files."""

from __future__ import annotations

import logging
import struct
from pathlib import Path

import numpy as np

from sadmap.geometry import SE3

logger = logging.getLogger(__name__)


class PointCloud:
    """An ordered set of points with an intensity per point."""

    __slots__ = ("xyz", "intensity")

    def __init__(self, xyz=None, intensity=None):
        self.xyz = (
            np.zeros((0, 3), dtype=np.float32)
            if xyz is None
            else np.asarray(xyz, dtype=np.float32).reshape(-1, 3).copy()
        )
        if intensity is None:
            self.intensity = np.zeros(len(self.xyz), dtype=np.float32)
        else:
            self.intensity = np.asarray(intensity, dtype=np.float32).reshape(-1).copy()
        if len(self.intensity) != len(self.xyz):
            raise ValueError(
                f"{len(self.xyz)} points but {len(self.intensity)} intensity values"
            )

    def __len__(self) -> int:
        return len(self.xyz)

    def __add__(self, other: "PointCloud") -> "PointCloud":
        if not isinstance(other, PointCloud):
            return NotImplemented
        return PointCloud(
            np.vstack((self.xyz, other.xyz)),
            np.concatenate((self.intensity, other.intensity)),
        )

    def transformed(self, pose: SE3) -> "PointCloud":
        """A copy with every point moved by the pose; intensity is kept."""
        moved = pose.transform_points(self.xyz.astype(np.float64))
        return PointCloud(moved, self.intensity)

    def __repr__(self) -> str:
        return f"PointCloud({len(self)} points)"


def voxel_grid(cloud: PointCloud, voxel_size: float = 0.05) -> PointCloud:
    """Replace the points in each voxel by their centroid.

    Non-finite points are dropped. The output is ordered by voxel index with
    x varying fastest, then y, then z.
    """
    if voxel_size <= 0:
        raise ValueError("voxel size must be positive")
    finite = np.isfinite(cloud.xyz).all(axis=1)
    xyz = cloud.xyz[finite].astype(np.float64)
    intensity = cloud.intensity[finite].astype(np.float64)
    if len(xyz) == 0:
        return PointCloud()
    ijk = np.floor(xyz / voxel_size).astype(np.int64)
    _, inverse, counts = np.unique(
        ijk[:, ::-1], axis=0, return_inverse=True, return_counts=True
    )
    inverse = inverse.reshape(-1)
    sums = np.zeros((len(counts), 3))
    np.add.at(sums, inverse, xyz)
    intensity_sums = np.bincount(inverse, weights=intensity, minlength=len(counts))
    return PointCloud(sums / counts[:, None], intensity_sums / counts)


def remove_ground(cloud: PointCloud, z_min: float = 0.5) -> PointCloud:
    """Keep only the points strictly above z_min."""
    keep = cloud.xyz[:, 2] > z_min
    return PointCloud(cloud.xyz[keep], cloud.intensity[keep])


_PCD_HEADER = (
    "# .PCD v0.7 - Point Cloud Data file format\n"
    "VERSION 0.7\n"
    "FIELDS x y z intensity\n"
    "SIZE 4 4 4 4\n"
    "TYPE F F F F\n"
    "COUNT 1 1 1 1\n"
    "WIDTH {n}\n"
    "HEIGHT 1\n"
    "VIEWPOINT 0 0 0 1 0 0 0\n"
    "POINTS {n}\n"
    "DATA ascii\n"
)


def save_cloud_to_file(file_path, cloud: PointCloud) -> None:
    """Write the cloud as an ASCII PCD file, one row per point."""
    with open(file_path, "w", encoding="utf-8", newline="\n") as out:
        out.write(_PCD_HEADER.format(n=len(cloud)))
        for (x, y, z), i in zip(cloud.xyz.tolist(), cloud.intensity.tolist()):
            out.write(f"{x:.8g} {y:.8g} {z:.8g} {i:.8g}\n")


_PCD_TYPES = {
    ("F", 4): "<f4",
    ("F", 8): "<f8",
    ("I", 1): "<i1",
    ("I", 2): "<i2",
    ("I", 4): "<i4",
    ("I", 8): "<i8",
    ("U", 1): "<u1",
    ("U", 2): "<u2",
    ("U", 4): "<u4",
    ("U", 8): "<u8",
}


def _lzf_decompress(data: bytes, out_len: int) -> bytes:
    out = bytearray()
    i = 0
    n = len(data)
    while i < n:
        ctrl = data[i]
        i += 1
        if ctrl < 32:
            length = ctrl + 1
            if i + length > n:
                raise ValueError("truncated LZF literal run")
            out += data[i : i + length]
            i += length
            continue
        length = ctrl >> 5
        ref = len(out) - ((ctrl & 0x1F) << 8) - 1
        if length == 7:
            length += data[i]
            i += 1
        ref -= data[i]
        i += 1
        length += 2
        if ref < 0:
            raise ValueError("invalid LZF back reference")
        for _ in range(length):
            out.append(out[ref])
            ref += 1
    if len(out) != out_len:
        raise ValueError(f"LZF data gave {len(out)} bytes, expected {out_len}")
    return bytes(out)


def _read_header(raw: bytes) -> tuple[dict[str, list[str]], int]:
    header: dict[str, list[str]] = {}
    pos = 0
    while True:
        end = raw.find(b"\n", pos)
        if end < 0:
            raise ValueError("PCD header has no DATA line")
        line = raw[pos:end].decode("ascii", errors="replace").strip()
        pos = end + 1
        if not line or line.startswith("#"):
            continue
        key, *values = line.split()
        header[key.upper()] = values
        if key.upper() == "DATA":
            return header, pos


def _field_columns(raw: bytes) -> tuple[dict[str, np.ndarray], int]:
    header, pos = _read_header(raw)
    try:
        fields = header["FIELDS"]
        sizes = [int(s) for s in header["SIZE"]]
        types = [t.upper() for t in header["TYPE"]]
        data_kind = header["DATA"][0].lower()
    except (KeyError, IndexError) as exc:
        raise ValueError(f"PCD header is missing {exc}") from None
    counts = [int(c) for c in header.get("COUNT", ["1"] * len(fields))]
    if "POINTS" in header:
        n = int(header["POINTS"][0])
    else:
        n = int(header["WIDTH"][0]) * int(header.get("HEIGHT", ["1"])[0])
    if not len(fields) == len(sizes) == len(types) == len(counts):
        raise ValueError("PCD header field descriptions disagree in length")
    try:
        dtypes = [np.dtype(_PCD_TYPES[(t, s)]) for t, s in zip(types, sizes)]
    except KeyError as exc:
        raise ValueError(f"unsupported PCD field type {exc}") from None

    names = [f"{name}__{k}" for k, name in enumerate(fields)]
    columns: dict[str, np.ndarray] = {}
    if data_kind == "ascii":
        tokens = raw[pos:].decode("ascii").split()
        width = sum(counts)
        values = np.array(tokens[: n * width], dtype=np.float64)
        if len(values) != n * width:
            raise ValueError("PCD ascii data is shorter than the header says")
        values = values.reshape(n, width)
        offset = 0
        for field, count in zip(fields, counts):
            columns.setdefault(field, values[:, offset : offset + count])
            offset += count
    elif data_kind == "binary":
        record = np.dtype([(nm, dt, (c,)) for nm, dt, c in zip(names, dtypes, counts)])
        if len(raw) - pos < n * record.itemsize:
            raise ValueError("PCD binary data is shorter than the header says")
        arr = np.frombuffer(raw, dtype=record, count=n, offset=pos)
        for field, nm in zip(fields, names):
            columns.setdefault(field, arr[nm].reshape(n, -1).astype(np.float64))
    elif data_kind == "binary_compressed":
        comp_size, raw_size = struct.unpack_from("<II", raw, pos)
        start = pos + 8
        data = _lzf_decompress(raw[start : start + comp_size], raw_size)
        offset = 0
        for field, dt, count in zip(fields, dtypes, counts):
            nbytes = n * dt.itemsize * count
            block = np.frombuffer(data[offset : offset + nbytes], dtype=dt)
            if len(block) != n * count:
                raise ValueError("PCD compressed data is shorter than the header says")
            columns.setdefault(field, block.reshape(n, count).astype(np.float64))
            offset += nbytes
    else:
        raise ValueError(f"unknown PCD data kind {data_kind!r}")
    return columns, n


def load_pcd(file_path) -> PointCloud:
    """Read an ascii, binary or binary_compressed PCD file."""
    raw = Path(file_path).read_bytes()
    columns, n = _field_columns(raw)
    missing = [axis for axis in "xyz" if axis not in columns]
    if missing:
        raise ValueError(f"PCD file has no {', '.join(missing)} field")
    xyz = np.column_stack([columns[axis][:, 0] for axis in "xyz"]) if n else None
    intensity = columns["intensity"][:, 0] if "intensity" in columns and n else None
    return PointCloud(xyz, intensity)


def cast_to_int(value) -> np.ndarray:
    """Round each component half away from zero and cast to int."""
    v = np.asarray(value, dtype=np.float64)
    return (np.sign(v) * np.floor(np.abs(v) + 0.5)).astype(int)


class LocalMapAccumulator:
    """Builds a voxel-filtered local map from clouds given in the world frame.

    Once the map holds more than max_points points the leaf size grows by 26%.
    """

    def __init__(self, leaf_size: float, max_points: int = 600000):
        self.leaf_size = float(leaf_size)
        self.max_points = max_points
        self.local_map = PointCloud()
        self.pose = SE3()

    def set_pose_and_cloud(self, pose: SE3, cloud_world: PointCloud) -> None:
        filtered = voxel_grid(cloud_world, self.leaf_size)
        self.local_map = voxel_grid(self.local_map + filtered, self.leaf_size)
        self.pose = pose
        if len(self.local_map) > self.max_points:
            self.leaf_size *= 1.26
            logger.info("viewer set leaf size to %s", self.leaf_size)

    def save_map(self, path) -> bool:
        """Write the map to a PCD file; False if the map is empty."""
        if len(self.local_map) > 0:
            save_cloud_to_file(path, self.local_map)
            logger.info("save map to %s", path)
            return True
        logger.info("map is empty %s", path)
        return False

    def clean(self) -> None:
        self.local_map = PointCloud()

    def clear_and_reset_leaf_size(self, leaf_size: float) -> None:
        self.leaf_size = float(leaf_size)
        self.local_map = PointCloud()