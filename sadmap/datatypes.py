"""Sensor readings, navigation state and dataset descriptions."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

import numpy as np

from sadmap.geometry import SE3, SO3


class DatasetType(enum.Enum):
    UNKNOWN = -1
    NCLT = 0
    KITTI = 1
    ULHK = 3
    UTBM = 4
    AVIA = 5
    WXB_3D = 6


_NAMES = {
    "NCLT": DatasetType.NCLT,
    "KITTI": DatasetType.KITTI,
    "ULHK": DatasetType.ULHK,
    "UTBM": DatasetType.UTBM,
    "WXB3D": DatasetType.WXB_3D,
    "AVIA": DatasetType.AVIA,
}

NCLT_RTK_TOPIC = "gps_rtk_fix"

NCLT_LIDAR_TOPIC = "points_raw"
ULHK_LIDAR_TOPIC = "/velodyne_points_0"
WXB_LIDAR_TOPIC = "/velodyne_packets_1"
UTBM_LIDAR_TOPIC = "/velodyne_points"
AVIA_LIDAR_TOPIC = "/livox/lidar"

ULHK_IMU_TOPIC = "/imu/data"
UTBM_IMU_TOPIC = "/imu/data"
NCLT_IMU_TOPIC = "imu_raw"
WXB_IMU_TOPIC = "/ivsensorimu"
AVIA_IMU_TOPIC = "/livox/imu"

_LIDAR_TOPICS = {
    DatasetType.NCLT: NCLT_LIDAR_TOPIC,
    DatasetType.ULHK: ULHK_LIDAR_TOPIC,
    DatasetType.WXB_3D: WXB_LIDAR_TOPIC,
    DatasetType.UTBM: UTBM_LIDAR_TOPIC,
    DatasetType.AVIA: AVIA_LIDAR_TOPIC,
}

_IMU_TOPICS = {
    DatasetType.ULHK: ULHK_IMU_TOPIC,
    DatasetType.UTBM: UTBM_IMU_TOPIC,
    DatasetType.NCLT: NCLT_IMU_TOPIC,
    DatasetType.WXB_3D: WXB_IMU_TOPIC,
    DatasetType.AVIA: AVIA_IMU_TOPIC,
}


def dataset_type_from_name(name: str) -> DatasetType:
    """Map a dataset name to its type; unknown names give UNKNOWN."""
    return _NAMES.get(name, DatasetType.UNKNOWN)


def lidar_topic(dataset: DatasetType) -> str:
    try:
        return _LIDAR_TOPICS[dataset]
    except KeyError:
        raise ValueError(f"no lidar topic for dataset {dataset.name}") from None


def imu_topic(dataset: DatasetType) -> str:
    try:
        return _IMU_TOPICS[dataset]
    except KeyError:
        raise ValueError(f"cannot load imu topic name of dataset {dataset.value}") from None


class GpsStatusType(enum.Enum):
    GNSS_FLOAT_SOLUTION = 5
    GNSS_FIXED_SOLUTION = 4
    GNSS_PSEUDO_SOLUTION = 2
    GNSS_SINGLE_POINT_SOLUTION = 1
    GNSS_NOT_EXIST = 0
    GNSS_OTHER = -1


def _zeros(n: int):
    return field(default_factory=lambda: np.zeros(n))


@dataclass
class UTMCoordinate:
    zone: int = 0
    xy: np.ndarray = _zeros(2)
    z: float = 0.0
    north: bool = True


@dataclass
class GNSS:
    """One GNSS reading; latitude and longitude are in degrees, heading too."""

    unix_time: float = 0.0
    status: GpsStatusType = GpsStatusType.GNSS_NOT_EXIST
    lat_lon_alt: np.ndarray = _zeros(3)
    heading: float = 0.0
    heading_valid: bool = False
    utm: UTMCoordinate = field(default_factory=UTMCoordinate)
    utm_valid: bool = False
    utm_pose: SE3 = field(default_factory=SE3)

    def __post_init__(self):
        self.status = GpsStatusType(self.status)
        self.lat_lon_alt = np.asarray(self.lat_lon_alt, dtype=float).reshape(3)

    @classmethod
    def from_nav_sat_fix(cls, stamp, fix_status, latitude, longitude, altitude) -> "GNSS":
        """Build from a position fix; a fix status of 0 or more counts as fixed."""
        status = GpsStatusType.GNSS_FIXED_SOLUTION if int(fix_status) >= 0 else GpsStatusType.GNSS_OTHER
        return cls(unix_time=stamp, status=status, lat_lon_alt=np.array([latitude, longitude, altitude]))


@dataclass
class IMU:
    timestamp: float = 0.0
    gyro: np.ndarray = _zeros(3)
    acce: np.ndarray = _zeros(3)

    def __post_init__(self):
        self.gyro = np.asarray(self.gyro, dtype=float).reshape(3)
        self.acce = np.asarray(self.acce, dtype=float).reshape(3)


@dataclass
class Odom:
    timestamp: float = 0.0
    left_pulse: float = 0.0
    right_pulse: float = 0.0


@dataclass
class NavState:
    """Navigation state: rotation, position, velocity and IMU biases."""

    timestamp: float = 0.0
    R: SO3 = field(default_factory=SO3)
    p: np.ndarray = _zeros(3)
    v: np.ndarray = _zeros(3)
    bg: np.ndarray = _zeros(3)
    ba: np.ndarray = _zeros(3)

    def __post_init__(self):
        for name in ("p", "v", "bg", "ba"):
            setattr(self, name, np.asarray(getattr(self, name), dtype=float).reshape(3))

    @classmethod
    def from_pose(cls, timestamp, pose: SE3, vel=None) -> "NavState":
        return cls(
            timestamp=timestamp,
            R=pose.rotation,
            p=pose.translation.copy(),
            v=np.zeros(3) if vel is None else vel,
        )

    def se3(self) -> SE3:
        return SE3(self.R, self.p)

    def __str__(self) -> str:
        q = self.R.quaternion()
        coeffs = [q[1], q[2], q[3], q[0]]
        return (
            f"p: {self.p.tolist()}, v: {self.v.tolist()}, q: {coeffs}, "
            f"bg: {self.bg.tolist()}, ba: {self.ba.tolist()}"
        )