import numpy as np
import pytest

from sadmap.datatypes import (
    GNSS,
    IMU,
    DatasetType,
    GpsStatusType,
    NavState,
    Odom,
    UTMCoordinate,
    dataset_type_from_name,
    imu_topic,
    lidar_topic,
)
from sadmap.geometry import SE3, SO3


@pytest.mark.parametrize(
    "name, expected",
    [
        ("NCLT", DatasetType.NCLT),
        ("KITTI", DatasetType.KITTI),
        ("ULHK", DatasetType.ULHK),
        ("UTBM", DatasetType.UTBM),
        ("WXB3D", DatasetType.WXB_3D),
        ("AVIA", DatasetType.AVIA),
        ("nclt", DatasetType.UNKNOWN),
        ("", DatasetType.UNKNOWN),
    ],
)
def test_dataset_type_from_name(name, expected):
    assert dataset_type_from_name(name) is expected


def test_dataset_enum_values():
    assert dataset_type_from_name("no-such-set").value == -1
    assert dataset_type_from_name("NCLT").value == 0
    assert dataset_type_from_name("WXB3D").value == dataset_type_from_name("AVIA").value + 1


@pytest.mark.parametrize(
    "dataset, topic",
    [
        (DatasetType.NCLT, "points_raw"),
        (DatasetType.ULHK, "/velodyne_points_0"),
        (DatasetType.WXB_3D, "/velodyne_packets_1"),
        (DatasetType.UTBM, "/velodyne_points"),
        (DatasetType.AVIA, "/livox/lidar"),
    ],
)
def test_lidar_topics(dataset, topic):
    assert lidar_topic(dataset) == topic


@pytest.mark.parametrize(
    "dataset, topic",
    [
        (DatasetType.NCLT, "imu_raw"),
        (DatasetType.ULHK, "/imu/data"),
        (DatasetType.UTBM, "/imu/data"),
        (DatasetType.WXB_3D, "/ivsensorimu"),
        (DatasetType.AVIA, "/livox/imu"),
    ],
)
def test_imu_topics(dataset, topic):
    assert imu_topic(dataset) == topic


@pytest.mark.parametrize("dataset", [DatasetType.KITTI, DatasetType.UNKNOWN])
def test_missing_topics_raise(dataset):
    with pytest.raises(ValueError):
        imu_topic(dataset)
    with pytest.raises(ValueError):
        lidar_topic(dataset)


def test_gnss_status_from_int():
    g = GNSS(unix_time=10.0, status=4, lat_lon_alt=[1.0, 2.0, 3.0], heading=90.0, heading_valid=True)
    assert g.status is GpsStatusType.GNSS_FIXED_SOLUTION
    assert np.allclose(g.lat_lon_alt, [1.0, 2.0, 3.0])
    assert g.utm_valid is False


def test_gnss_invalid_status_raises():
    with pytest.raises(ValueError):
        GNSS(status=3)


def test_gnss_defaults():
    g = GNSS()
    assert g.status is GpsStatusType.GNSS_NOT_EXIST
    assert np.allclose(g.utm_pose.matrix(), np.eye(4))
    assert g.utm.north is True


def test_gnss_from_nav_sat_fix():
    fixed = GNSS.from_nav_sat_fix(5.0, 0, 42.0, -83.0, 270.0)
    assert fixed.status is GpsStatusType.GNSS_FIXED_SOLUTION
    assert np.allclose(fixed.lat_lon_alt, [42.0, -83.0, 270.0])
    no_fix = GNSS.from_nav_sat_fix(5.0, -1, 42.0, -83.0, 270.0)
    assert no_fix.status is GpsStatusType.GNSS_OTHER


def test_utm_coordinate_defaults_are_independent():
    a = UTMCoordinate()
    b = UTMCoordinate(zone=17)
    a.xy[0] = 5.0
    assert b.xy[0] == 0.0
    assert b.zone == 17


def test_imu_and_odom():
    imu = IMU(1.5, [0.1, 0.2, 0.3], [0.0, 0.0, 9.8])
    assert imu.timestamp == 1.5
    assert np.allclose(imu.acce, [0.0, 0.0, 9.8])
    odom = Odom(2.0, 10.0, 12.0)
    assert (odom.left_pulse, odom.right_pulse) == (10.0, 12.0)


def test_nav_state_se3_round_trip():
    pose = SE3(SO3.exp([0.1, -0.2, 0.3]), [1.0, 2.0, 3.0])
    state = NavState.from_pose(3.0, pose, vel=[0.5, 0.0, 0.0])
    assert np.allclose(state.se3().matrix(), pose.matrix())
    assert np.allclose(state.v, [0.5, 0.0, 0.0])
    assert np.allclose(state.bg, np.zeros(3))


def test_nav_state_str_mentions_fields():
    text = str(NavState(p=[1.0, 2.0, 3.0]))
    assert text.startswith("p: [1.0, 2.0, 3.0]")
    assert "ba:" in text