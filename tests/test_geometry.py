import math

import numpy as np
import pytest

from sadmap.geometry import (
    SE3,
    SO3,
    a_matrix,
    cos_sinc_sqrt,
    exp_rotation,
    hat,
    jr,
    jr_inv,
    log_rotation,
    mat4_to_se3,
    quat_exp,
    rot_to_euler,
    rpy_to_rot,
    spatial_hash,
    vee,
)

OMEGAS = [
    np.array([0.1, -0.2, 0.3]),
    np.array([1.0, 0.5, -0.7]),
    np.array([1e-12, 0.0, 0.0]),
    np.array([0.0, 0.0, 2.5]),
]


@pytest.mark.parametrize("omega", OMEGAS)
def test_so3_exp_log_round_trip(omega):
    assert np.allclose(SO3.exp(omega).log(), omega, atol=1e-9)


@pytest.mark.parametrize("omega", OMEGAS)
def test_so3_matrix_is_orthonormal(omega):
    r = SO3.exp(omega).matrix()
    assert np.allclose(r @ r.T, np.eye(3))
    assert math.isclose(np.linalg.det(r), 1.0)


def test_so3_from_matrix_round_trip():
    r = rpy_to_rot(0.3, -1.2, 2.9)
    assert np.allclose(SO3.from_matrix(r).matrix(), r)


def test_so3_from_quaternion_normalises():
    q = SO3.from_quaternion(2.0, 0.0, 0.0, 0.0).quaternion()
    assert np.allclose(q, [1.0, 0.0, 0.0, 0.0])


def test_so3_zero_quaternion_raises():
    with pytest.raises(ValueError):
        SO3.from_quaternion(0.0, 0.0, 0.0, 0.0)


def test_so3_product_and_inverse():
    a = SO3.exp([0.2, 0.1, -0.4])
    b = SO3.exp([-0.5, 0.3, 0.9])
    assert np.allclose((a * b).matrix(), a.matrix() @ b.matrix())
    assert np.allclose((a * a.inverse()).matrix(), np.eye(3))


def test_so3_rotates_points():
    r = SO3.exp([0.0, 0.0, math.pi / 2])
    pts = np.array([[1.0, 0.0, 0.0], [0.0, 2.0, 0.0]])
    out = r * pts
    assert np.allclose(out[0], r * pts[0])
    assert np.allclose(out, pts @ r.matrix().T)


def test_hat_vee_round_trip():
    v = np.array([0.3, -1.0, 2.0])
    assert np.allclose(vee(hat(v)), v)
    assert np.allclose(hat(v) @ v, np.zeros(3))


@pytest.mark.parametrize("omega", OMEGAS)
def test_jr_and_inverse(omega):
    assert np.allclose(jr(omega) @ jr_inv(omega), np.eye(3), atol=1e-9)


def test_jr_first_order_property():
    v = np.array([0.4, -0.3, 0.2])
    delta = np.array([1e-6, -2e-6, 1.5e-6])
    lhs = SO3.exp(v + delta).matrix()
    rhs = (SO3.exp(v) * SO3.exp(jr(v) @ delta)).matrix()
    assert np.allclose(lhs, rhs, atol=1e-10)


def test_se3_exp_log_round_trip():
    xi = np.array([1.0, -2.0, 0.5, 0.3, -0.1, 0.7])
    assert np.allclose(SE3.exp(xi).log(), xi, atol=1e-9)


def test_se3_pure_translation_exp():
    pose = SE3.exp([1.0, 2.0, 3.0, 0.0, 0.0, 0.0])
    assert np.allclose(pose.translation, [1.0, 2.0, 3.0])
    assert np.allclose(pose.matrix()[:3, :3], np.eye(3))


def test_se3_inverse_and_composition():
    a = SE3(SO3.exp([0.1, 0.2, 0.3]), [1.0, 2.0, 3.0])
    b = SE3(SO3.exp([-0.4, 0.0, 0.9]), [-3.0, 0.5, 1.0])
    assert np.allclose((a * a.inverse()).matrix(), np.eye(4))
    assert np.allclose((a * b).matrix(), a.matrix() @ b.matrix())


def test_se3_matrix_round_trip():
    a = SE3(SO3.exp([0.7, -0.2, 0.1]), [4.0, -1.0, 2.0])
    back = SE3.from_matrix(a.matrix())
    assert np.allclose(back.matrix(), a.matrix())


def test_se3_transform_points():
    a = SE3(SO3.exp([0.0, 0.3, 0.0]), [1.0, 0.0, -1.0])
    pts = np.array([[1.0, 2.0, 3.0], [0.0, 0.0, 0.0], [-1.0, 4.0, 2.0]])
    out = a.transform_points(pts)
    for p, o in zip(pts, out):
        homo = a.matrix() @ np.append(p, 1.0)
        assert np.allclose(o, homo[:3])
    assert np.allclose(a * pts[0], out[0])


def test_se3_interpolate_endpoints_and_midpoint():
    a = SE3(SO3.exp([0.0, 0.0, 0.2]), [0.0, 0.0, 0.0])
    b = SE3(SO3.exp([0.0, 0.0, 0.8]), [2.0, 4.0, 6.0])
    assert np.allclose(a.interpolate(b, 0.0).matrix(), a.matrix())
    assert np.allclose(a.interpolate(b, 1.0).matrix(), b.matrix())
    mid = a.interpolate(b, 0.5)
    assert np.allclose(mid.translation, (a.translation + b.translation) / 2)
    assert np.allclose(mid.rotation.log(), [0.0, 0.0, 0.5])


def test_exp_rotation_matches_so3_exp():
    w = np.array([0.2, -0.1, 0.4])
    assert np.allclose(exp_rotation(w, 0.5), SO3.exp(w * 0.5).matrix())
    assert np.allclose(exp_rotation(np.zeros(3)), np.eye(3))


@pytest.mark.parametrize("omega", [np.array([0.2, 0.1, -0.3]), np.array([1e-5, 0.0, 0.0])])
def test_log_rotation_inverts_exp(omega):
    assert np.allclose(log_rotation(exp_rotation(omega)), omega, atol=1e-8)


def test_rpy_euler_round_trip():
    angles = np.array([0.2, -0.4, 1.1])
    assert np.allclose(rot_to_euler(rpy_to_rot(*angles)), angles)


def test_cos_sinc_sqrt_consistency():
    for x2 in (0.0, 1e-9, 1e-3, 2.0):
        c, s = cos_sinc_sqrt(x2)
        x = math.sqrt(x2)
        assert math.isclose(c, math.cos(x), abs_tol=1e-12)
        expected = 1.0 if x == 0 else math.sin(x) / x
        assert math.isclose(s, expected, abs_tol=1e-12)


def test_cos_sinc_sqrt_negative_raises():
    with pytest.raises(ValueError):
        cos_sinc_sqrt(-1.0)


def test_quat_exp_is_double_angle_rotation():
    v = np.array([0.1, 0.2, -0.05])
    assert np.allclose(quat_exp(v).matrix(), SO3.exp(2 * v).matrix())
    assert np.allclose(quat_exp(v, 0.5).matrix(), SO3.exp(v).matrix())


def test_a_matrix_is_left_jacobian():
    v = np.array([0.3, -0.6, 0.2])
    assert np.allclose(a_matrix(v), jr(-v))
    assert np.allclose(a_matrix(np.zeros(3)), np.eye(3))


def test_mat4_to_se3_normalises_rotation():
    m = np.eye(4)
    m[:3, :3] = rpy_to_rot(0.1, 0.2, 0.3) * 1.0000001
    m[:3, 3] = [5.0, 6.0, 7.0]
    pose = mat4_to_se3(m)
    r = pose.rotation.matrix()
    assert np.allclose(r @ r.T, np.eye(3))
    assert np.allclose(pose.translation, [5.0, 6.0, 7.0])


def test_spatial_hash_values():
    assert spatial_hash((0, 0)) == 0
    assert spatial_hash((1, 0)) == 73856093 % 10_000_000
    for key in [(-5, 3), (123456, -987), (7, 8, 9), (-100, -200, -300)]:
        h = spatial_hash(key)
        assert 0 <= h < (1 << 64)


def test_spatial_hash_bad_dimension():
    with pytest.raises(ValueError):
        spatial_hash((1, 2, 3, 4))