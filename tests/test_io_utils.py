import numpy as np
import pytest

from sadmap.datatypes import GNSS, IMU, GpsStatusType, Odom
from sadmap.io_utils import EXIT_REQUESTED, TxtIO, parse_line

DATA = (
    "# comment line\n"
    "IMU 1.5 0.1 0.2 0.3 1.0 2.0 9.8\n"
    "\n"
    "ODOM 1.6 10 12\n"
    "GNSS 1.7 30.5 114.2 20.0 45.0 1\n"
    "IMU 1.8 0.0 0.0 0.0 0.0 0.0 9.8\n"
    "OTHER 1 2 3\n"
)


def test_parse_imu():
    rec = parse_line("IMU 1.5 0.1 0.2 0.3 1.0 2.0 9.8")
    assert isinstance(rec, IMU)
    assert rec.timestamp == 1.5
    np.testing.assert_allclose(rec.gyro, [0.1, 0.2, 0.3])
    np.testing.assert_allclose(rec.acce, [1.0, 2.0, 9.8])


def test_parse_odom():
    rec = parse_line("ODOM 1.6 10 12")
    assert isinstance(rec, Odom)
    assert (rec.timestamp, rec.left_pulse, rec.right_pulse) == (1.6, 10.0, 12.0)


def test_parse_gnss_is_fixed_solution():
    rec = parse_line("GNSS 1.7 30.5 114.2 20.0 45.0 1")
    assert isinstance(rec, GNSS)
    assert rec.status is GpsStatusType.GNSS_FIXED_SOLUTION
    assert rec.heading == 45.0
    assert rec.heading_valid is True
    np.testing.assert_allclose(rec.lat_lon_alt, [30.5, 114.2, 20.0])


@pytest.mark.parametrize("line", ["", "   ", "# IMU 1 2 3 4 5 6 7", "WHEEL 1 2 3"])
def test_parse_skipped_lines(line):
    assert parse_line(line) is None


@pytest.mark.parametrize(
    "line",
    ["IMU 1 2 3", "ODOM 1", "GNSS 1 2 3 4 5", "GNSS 1 2 3 4 5 7", "IMU a b c d e f g"],
)
def test_parse_malformed(line):
    with pytest.raises(ValueError):
        parse_line(line)


def test_go_only_calls_registered(tmp_path):
    path = tmp_path / "data.txt"
    path.write_text(DATA)
    imus = []
    n = TxtIO(path, imu_proc=imus.append).go()
    assert n == 2
    assert [r.timestamp for r in imus] == [1.5, 1.8]


def test_go_all_callbacks(tmp_path):
    path = tmp_path / "data.txt"
    path.write_text(DATA)
    seen = []
    io = TxtIO(path, imu_proc=seen.append, odom_proc=seen.append, gnss_proc=seen.append)
    assert io.go() == 4
    assert [type(r) for r in seen] == [IMU, Odom, GNSS, IMU]


def test_go_ignores_malformed_unregistered(tmp_path):
    path = tmp_path / "data.txt"
    path.write_text("ODOM broken\nIMU 1 0 0 0 0 0 0\n")
    imus = []
    assert TxtIO(path, imu_proc=imus.append).go() == 1
    assert imus[0].timestamp == 1.0


def test_go_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        TxtIO(tmp_path / "nope.txt", imu_proc=print).go()


def test_go_stops_on_exit_flag(tmp_path):
    path = tmp_path / "data.txt"
    path.write_text(DATA)
    imus = []
    EXIT_REQUESTED.set()
    try:
        assert TxtIO(path, imu_proc=imus.append).go() == 0
    finally:
        EXIT_REQUESTED.clear()
    assert imus == []