"""Rigid-body rotations and poses, plus small Lie-group helpers."""

from __future__ import annotations

import math

import numpy as np

_EPS = 1e-10
_DBL_EPS = float(np.finfo(float).eps)


def _vec3(v) -> np.ndarray:
    arr = np.asarray(v, dtype=float).reshape(-1)
    if arr.shape != (3,):
        raise ValueError(f"expected a 3-vector, got shape {arr.shape}")
    return arr


def hat(v) -> np.ndarray:
    """Skew-symmetric matrix of a 3-vector."""
    x, y, z = _vec3(v)
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def vee(m) -> np.ndarray:
    """Inverse of :func:`hat`."""
    m = np.asarray(m, dtype=float)
    return np.array([m[2, 1], m[0, 2], m[1, 0]])


def _left_jacobian(omega) -> np.ndarray:
    omega = _vec3(omega)
    theta = float(np.linalg.norm(omega))
    w = hat(omega)
    if theta < 1e-8:
        return np.eye(3) + 0.5 * w + w @ w / 6.0
    theta2 = theta * theta
    return (
        np.eye(3)
        + (1.0 - math.cos(theta)) / theta2 * w
        + (theta - math.sin(theta)) / (theta2 * theta) * (w @ w)
    )


def _left_jacobian_inv(omega) -> np.ndarray:
    omega = _vec3(omega)
    theta = float(np.linalg.norm(omega))
    w = hat(omega)
    if theta < 1e-8:
        return np.eye(3) - 0.5 * w + w @ w / 12.0
    theta2 = theta * theta
    coeff = (1.0 - theta * math.sin(theta) / (2.0 * (1.0 - math.cos(theta)))) / theta2
    return np.eye(3) - 0.5 * w + coeff * (w @ w)


def jr(v) -> np.ndarray:
    """Right Jacobian of SO(3)."""
    return _left_jacobian(-_vec3(v))


def jr_inv(v) -> np.ndarray:
    """Inverse of the right Jacobian of SO(3)."""
    v = _vec3(v)
    theta = float(np.linalg.norm(v))
    w = hat(v)
    if theta < 1e-8:
        return np.eye(3) + 0.5 * w
    coeff = 1.0 / (theta * theta) - (1.0 + math.cos(theta)) / (2.0 * theta * math.sin(theta))
    return np.eye(3) + 0.5 * w + coeff * (w @ w)


def _quat_mul(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    aw, ax, ay, az = a
    bw, bx, by, bz = b
    return np.array(
        [
            aw * bw - ax * bx - ay * by - az * bz,
            aw * bx + ax * bw + ay * bz - az * by,
            aw * by - ax * bz + ay * bw + az * bx,
            aw * bz + ax * by - ay * bx + az * bw,
        ]
    )


class SO3:
    """A 3D rotation stored as a unit quaternion (w, x, y, z)."""

    __slots__ = ("_q",)

    def __init__(self, q=None):
        if q is None:
            self._q = np.array([1.0, 0.0, 0.0, 0.0])
            return
        q = np.asarray(q, dtype=float).reshape(4)
        n = float(np.linalg.norm(q))
        if n < _EPS:
            raise ValueError("quaternion must be non-zero")
        self._q = q / n

    @classmethod
    def exp(cls, omega) -> "SO3":
        omega = _vec3(omega)
        theta_sq = float(omega @ omega)
        theta = math.sqrt(theta_sq)
        if theta < _EPS:
            theta_po4 = theta_sq * theta_sq
            imag = 0.5 - theta_sq / 48.0 + theta_po4 / 3840.0
            real = 1.0 - theta_sq / 8.0 + theta_po4 / 384.0
        else:
            half = 0.5 * theta
            imag = math.sin(half) / theta
            real = math.cos(half)
        return cls(np.concatenate(([real], imag * omega)))

    @classmethod
    def from_quaternion(cls, w, x, y, z) -> "SO3":
        return cls(np.array([w, x, y, z], dtype=float))

    @classmethod
    def from_matrix(cls, m) -> "SO3":
        m = np.asarray(m, dtype=float)
        if m.shape != (3, 3):
            raise ValueError(f"expected a 3x3 matrix, got shape {m.shape}")
        diag_sum = m[0, 0] + m[1, 1] + m[2, 2]
        if diag_sum > 0.0:
            s = math.sqrt(diag_sum + 1.0)
            w = 0.5 * s
            s = 0.5 / s
            q = [w, (m[2, 1] - m[1, 2]) * s, (m[0, 2] - m[2, 0]) * s, (m[1, 0] - m[0, 1]) * s]
        else:
            i = int(np.argmax(np.diag(m)))
            j = (i + 1) % 3
            k = (j + 1) % 3
            s = math.sqrt(m[i, i] - m[j, j] - m[k, k] + 1.0)
            imag = [0.0, 0.0, 0.0]
            imag[i] = 0.5 * s
            s = 0.5 / s
            imag[j] = (m[j, i] + m[i, j]) * s
            imag[k] = (m[k, i] + m[i, k]) * s
            q = [(m[k, j] - m[j, k]) * s, *imag]
        return cls(np.array(q))

    def log(self) -> np.ndarray:
        w = self._q[0]
        v = self._q[1:]
        n = float(np.linalg.norm(v))
        if n < _EPS:
            factor = 2.0 / w - 2.0 / 3.0 * n * n / (w * w * w)
        elif abs(w) < _EPS:
            factor = (math.pi if w > 0 else -math.pi) / n
        else:
            factor = 2.0 * math.atan(n / w) / n
        return factor * v

    def matrix(self) -> np.ndarray:
        w, x, y, z = self._q
        return np.array(
            [
                [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
                [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
                [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
            ]
        )

    def quaternion(self) -> np.ndarray:
        """The unit quaternion as (w, x, y, z)."""
        return self._q.copy()

    def inverse(self) -> "SO3":
        w, x, y, z = self._q
        return SO3(np.array([w, -x, -y, -z]))

    def __mul__(self, other):
        if isinstance(other, SO3):
            return SO3(_quat_mul(self._q, other._q))
        pts = np.asarray(other, dtype=float)
        if pts.ndim == 1:
            return self.matrix() @ _vec3(pts)
        return pts @ self.matrix().T

    def __repr__(self) -> str:
        return f"SO3(q={self._q.tolist()})"


def _slerp(q0: np.ndarray, q1: np.ndarray, s: float) -> np.ndarray:
    d = float(q0 @ q1)
    abs_d = abs(d)
    if abs_d >= 1.0 - 1e-15:
        scale0, scale1 = 1.0 - s, s
    else:
        theta = math.acos(abs_d)
        sin_theta = math.sin(theta)
        scale0 = math.sin((1.0 - s) * theta) / sin_theta
        scale1 = math.sin(s * theta) / sin_theta
    if d < 0:
        scale1 = -scale1
    return scale0 * q0 + scale1 * q1


class SE3:
    """A rigid transform: rotation followed by translation."""

    __slots__ = ("rotation", "translation")

    def __init__(self, rotation=None, translation=None):
        if rotation is None:
            rotation = SO3()
        elif not isinstance(rotation, SO3):
            rotation = SO3.from_matrix(rotation)
        self.rotation: SO3 = rotation
        self.translation: np.ndarray = (
            np.zeros(3) if translation is None else _vec3(translation).copy()
        )

    @classmethod
    def exp(cls, xi) -> "SE3":
        """Exponential map of a twist ordered (translation, rotation)."""
        xi = np.asarray(xi, dtype=float).reshape(6)
        upsilon, omega = xi[:3], xi[3:]
        return cls(SO3.exp(omega), _left_jacobian(omega) @ upsilon)

    @classmethod
    def from_matrix(cls, m) -> "SE3":
        m = np.asarray(m, dtype=float)
        if m.shape != (4, 4):
            raise ValueError(f"expected a 4x4 matrix, got shape {m.shape}")
        return cls(SO3.from_matrix(m[:3, :3]), m[:3, 3])

    def matrix(self) -> np.ndarray:
        out = np.eye(4)
        out[:3, :3] = self.rotation.matrix()
        out[:3, 3] = self.translation
        return out

    def inverse(self) -> "SE3":
        r_inv = self.rotation.inverse()
        return SE3(r_inv, -(r_inv * self.translation))

    def log(self) -> np.ndarray:
        """Logarithm as a twist ordered (translation, rotation)."""
        omega = self.rotation.log()
        upsilon = _left_jacobian_inv(omega) @ self.translation
        return np.concatenate((upsilon, omega))

    def __mul__(self, other):
        if isinstance(other, SE3):
            return SE3(self.rotation * other.rotation, self.rotation * other.translation + self.translation)
        return self.transform_points(other)

    def transform_points(self, points) -> np.ndarray:
        pts = np.asarray(points, dtype=float)
        return self.rotation * pts + self.translation

    def interpolate(self, other: "SE3", s: float) -> "SE3":
        """Slerp the rotation and blend the translation linearly; s=0 gives self."""
        q = _slerp(self.rotation.quaternion(), other.rotation.quaternion(), s)
        return SE3(SO3(q), self.translation * (1.0 - s) + other.translation * s)

    def __repr__(self) -> str:
        return f"SE3(rotation={self.rotation!r}, translation={self.translation.tolist()})"


def exp_rotation(ang, dt=1.0) -> np.ndarray:
    """Rodrigues formula for an angular velocity applied over dt."""
    ang = _vec3(ang)
    norm = float(np.linalg.norm(ang))
    if norm <= 1e-7:
        return np.eye(3)
    k = hat(ang / norm)
    r_ang = norm * dt
    return np.eye(3) + math.sin(r_ang) * k + (1.0 - math.cos(r_ang)) * (k @ k)


def log_rotation(r) -> np.ndarray:
    """Rotation vector of a rotation matrix."""
    r = np.asarray(r, dtype=float)
    diag_sum = float(r[0, 0] + r[1, 1] + r[2, 2])
    if diag_sum > 3.0 - 1e-6:
        theta = 0.0
    else:
        theta = math.acos(max(-1.0, min(1.0, 0.5 * (diag_sum - 1.0))))
    k = np.array([r[2, 1] - r[1, 2], r[0, 2] - r[2, 0], r[1, 0] - r[0, 1]])
    if abs(theta) < 0.001:
        return 0.5 * k
    return 0.5 * theta / math.sin(theta) * k


def rot_to_euler(r) -> np.ndarray:
    """Roll, pitch, yaw of a rotation matrix."""
    r = np.asarray(r, dtype=float)
    sy = math.sqrt(r[0, 0] ** 2 + r[1, 0] ** 2)
    if sy >= 1e-6:
        x = math.atan2(r[2, 1], r[2, 2])
        y = math.atan2(-r[2, 0], sy)
        z = math.atan2(r[1, 0], r[0, 0])
    else:
        x = math.atan2(-r[1, 2], r[1, 1])
        y = math.atan2(-r[2, 0], sy)
        z = 0.0
    return np.array([x, y, z])


def rpy_to_rot(roll, pitch, yaw) -> np.ndarray:
    """Rotation matrix Rz(yaw) * Ry(pitch) * Rx(roll)."""
    cr, sr = math.cos(roll), math.sin(roll)
    cp, sp = math.cos(pitch), math.sin(pitch)
    cy, sy = math.cos(yaw), math.sin(yaw)
    rx = np.array([[1, 0, 0], [0, cr, -sr], [0, sr, cr]])
    ry = np.array([[cp, 0, sp], [0, 1, 0], [-sp, 0, cp]])
    rz = np.array([[cy, -sy, 0], [sy, cy, 0], [0, 0, 1]])
    return rz @ ry @ rx


_TAYLOR_0_BOUND = _DBL_EPS
_TAYLOR_2_BOUND = math.sqrt(_TAYLOR_0_BOUND)
_TAYLOR_N_BOUND = math.sqrt(_TAYLOR_2_BOUND)


def cos_sinc_sqrt(x2) -> tuple[float, float]:
    """Return (cos(sqrt(x2)), sinc(sqrt(x2))) for a non-negative x2."""
    x2 = float(x2)
    if x2 < 0:
        raise ValueError("argument must be non-negative")
    if x2 >= _TAYLOR_N_BOUND:
        x = math.sqrt(x2)
        return math.cos(x), math.sin(x) / x
    inv = (1 / 3.0, 1 / 4.0, 1 / 5.0, 1 / 6.0, 1 / 7.0, 1 / 8.0, 1 / 9.0)
    cosi = 1.0
    sinc = 1.0
    term = -0.5 * x2
    for i in range(3):
        cosi += term
        term *= inv[2 * i]
        sinc += term
        term *= -inv[2 * i + 1] * x2
    return cosi, sinc


def quat_exp(vec, scale=1.0) -> SO3:
    """Rotation whose quaternion is (cos|s*v|, sinc|s*v| * s*v)."""
    vec = _vec3(vec)
    cos_part, sinc_part = cos_sinc_sqrt(scale * scale * float(vec @ vec))
    imag = sinc_part * scale * vec
    return SO3(np.concatenate(([cos_part], imag)))


def a_matrix(v) -> np.ndarray:
    """The SO(3) Jacobian I + (1-cos)/|v|^2 [v] + (1-sin/|v|)/|v|^2 [v]^2."""
    v = _vec3(v)
    squared = float(v @ v)
    norm = math.sqrt(squared)
    if norm < 1e-5:
        return np.eye(3)
    w = hat(v)
    return (
        np.eye(3)
        + (1.0 - math.cos(norm)) / squared * w
        + (1.0 - math.sin(norm) / norm) / squared * (w @ w)
    )


def mat4_to_se3(m) -> SE3:
    """Build a pose from a 4x4 matrix, renormalising its rotation."""
    return SE3.from_matrix(m)


def _wrap_i32(n: int) -> int:
    n &= 0xFFFFFFFF
    return n - (1 << 32) if n >= (1 << 31) else n


def spatial_hash(v) -> int:
    """Spatial hash of a 2D or 3D integer grid index."""
    values = [int(c) for c in v]
    if len(values) not in (2, 3):
        raise ValueError("spatial_hash takes a 2D or 3D index")
    h = 0
    for value, prime in zip(values, (73856093, 471943, 83492791)):
        h ^= _wrap_i32(value * prime)
    rem = abs(h) % 10_000_000
    if h < 0:
        rem = -rem
    return rem % (1 << 64)