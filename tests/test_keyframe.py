import numpy as np
import pytest

from sadmap.geometry import SE3, SO3
from sadmap.keyframe import Keyframe, load_keyframes, save_keyframes
from sadmap.pointcloud import PointCloud


def _pose(omega, t):
    return SE3(SO3.exp(omega), np.array(t, dtype=float))


def _sample(kf_id=7):
    return Keyframe(
        timestamp=1357847239.123456789,
        id=kf_id,
        lidar_pose=_pose([0.1, -0.2, 0.3], [1.5, 2.5, -3.0]),
        rtk_pose=_pose([0.0, 0.0, 1.0], [10.0, 20.0, 0.5]),
        opti_pose_1=_pose([0.2, 0.1, 0.0], [-4.0, 0.0, 9.0]),
        opti_pose_2=_pose([0.0, 0.5, 0.0], [0.25, 0.125, 0.0625]),
        rtk_heading_valid=True,
        rtk_valid=False,
        rtk_inlier=True,
    )


def _same_pose(a, b):
    return np.allclose(a.matrix(), b.matrix(), atol=1e-12)


def test_line_round_trip():
    kf = _sample()
    back = Keyframe.from_line(kf.to_line())
    assert back.id == kf.id
    assert back.timestamp == kf.timestamp
    assert (back.rtk_heading_valid, back.rtk_valid, back.rtk_inlier) == (True, False, True)
    for name in ("lidar_pose", "rtk_pose", "opti_pose_1", "opti_pose_2"):
        assert _same_pose(getattr(back, name), getattr(kf, name))


def test_default_line_layout():
    tokens = Keyframe(id=4).to_line().split()
    assert len(tokens) == 33
    assert tokens[:5] == ["4", "0", "0", "1", "1"]
    assert tokens[5:12] == ["0", "0", "0", "0", "0", "0", "1"]


def test_from_line_too_short():
    with pytest.raises(ValueError):
        Keyframe.from_line("1 2.0 0 1 1 0 0 0")


def test_from_line_bad_flag():
    tokens = Keyframe(id=1).to_line().split()
    tokens[2] = "2"
    with pytest.raises(ValueError):
        Keyframe.from_line(" ".join(tokens))


def test_save_and_load_keyframes(tmp_path):
    path = tmp_path / "keyframes.txt"
    frames = {3: _sample(3), 1: _sample(1), 2: _sample(2)}
    save_keyframes(path, frames)
    loaded = load_keyframes(path)
    assert list(loaded) == [1, 2, 3]
    assert _same_pose(loaded[2].opti_pose_1, frames[2].opti_pose_1)


def test_load_stops_at_blank_line_and_keeps_first(tmp_path):
    first = _sample(5)
    dup = Keyframe(id=5, timestamp=99.0)
    after = _sample(8)
    path = tmp_path / "kf.txt"
    path.write_text(first.to_line() + "\n" + dup.to_line() + "\n\n" + after.to_line() + "\n")
    loaded = load_keyframes(path)
    assert list(loaded) == [5]
    assert loaded[5].timestamp == first.timestamp


def test_load_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_keyframes(tmp_path / "nope.txt")


def test_scan_save_unload_and_load(tmp_path):
    xyz = np.array([[1.0, 2.0, 3.0], [-0.5, 0.25, 4.0]])
    kf = Keyframe(id=12, cloud=PointCloud(xyz, [10.0, 20.0]))
    kf.save_and_unload_scan(tmp_path)
    assert kf.cloud is None
    assert (tmp_path / "12.pcd").exists()
    cloud = kf.load_scan(tmp_path)
    assert np.allclose(cloud.xyz, xyz)
    assert np.allclose(cloud.intensity, [10.0, 20.0])


def test_unload_without_scan_writes_nothing(tmp_path):
    Keyframe(id=3).save_and_unload_scan(tmp_path)
    assert list(tmp_path.iterdir()) == []