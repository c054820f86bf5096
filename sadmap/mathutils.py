"""Statistics, fitting, interpolation and linear-algebra helpers."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any, TypeVar

import numpy as np

from sadmap.geometry import SE3

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEG2RAD = math.pi / 180.0
RAD2DEG = 180.0 / math.pi
G_M_S2 = 9.81
INVALID_ID = (1 << 64) - 1


def _values(data: Iterable[Any], getter: Callable[[Any], Any]) -> np.ndarray:
    values = np.array([np.asarray(getter(item), dtype=float) for item in data])
    if len(values) <= 1:
        raise ValueError("at least two samples are needed")
    return values


def compute_mean_and_cov_diag(data, getter) -> tuple[np.ndarray, np.ndarray]:
    """Mean and per-component sample variance of getter(item) over data."""
    values = _values(data, getter)
    mean = values.mean(axis=0)
    cov_diag = ((values - mean) ** 2).sum(axis=0) / (len(values) - 1)
    return mean, cov_diag


def compute_mean_and_cov(data, getter) -> tuple[np.ndarray, np.ndarray]:
    """Mean and full sample covariance of the vectors getter(item)."""
    values = _values(data, getter)
    mean = values.mean(axis=0)
    centered = values - mean
    cov = centered.T @ centered / (len(values) - 1)
    return mean, cov


def update_mean_and_cov(hist_m, curr_n, hist_mean, hist_var, curr_mean, curr_var):
    """Merge two Gaussians estimated from hist_m and curr_n samples."""
    if hist_m <= 0 or curr_n <= 0:
        raise ValueError("sample counts must be positive")
    hist_mean = np.asarray(hist_mean, dtype=float)
    curr_mean = np.asarray(curr_mean, dtype=float)
    hist_var = np.asarray(hist_var, dtype=float)
    curr_var = np.asarray(curr_var, dtype=float)
    total = hist_m + curr_n
    new_mean = (hist_m * hist_mean + curr_n * curr_mean) / total
    dh = hist_mean - new_mean
    dc = curr_mean - new_mean
    new_var = (
        hist_m * (hist_var + np.outer(dh, dh)) + curr_n * (curr_var + np.outer(dc, dc))
    ) / total
    return new_mean, new_var


def compute_median(data, getter):
    """The element at position len/2 of the sorted getter(item) values."""
    values = [getter(item) for item in data]
    if len(values) <= 1:
        raise ValueError("at least two samples are needed")
    return sorted(values)[len(values) // 2]


def fit_plane(data, eps=1e-2) -> np.ndarray | None:
    """Fit ax+by+cz+d=0 to the points; None if too few or too far off."""
    pts = np.asarray(data, dtype=float)
    if len(pts) < 3:
        return None
    a = np.hstack((pts, np.ones((len(pts), 1))))
    _, _, vt = np.linalg.svd(a, full_matrices=True)
    coeffs = vt[3]
    errors = pts @ coeffs[:3] + coeffs[3]
    if np.any(errors * errors > eps):
        return None
    return coeffs


def fit_line(data, eps=0.2) -> tuple[np.ndarray, np.ndarray] | None:
    """Fit a 3D line; returns (origin, direction) or None."""
    pts = np.asarray(data, dtype=float)
    if len(pts) < 2:
        return None
    origin = pts.mean(axis=0)
    y = pts - origin
    _, _, vt = np.linalg.svd(y, full_matrices=True)
    direction = vt[0]
    deviation = np.cross(direction, y)
    if np.any((deviation * deviation).sum(axis=1) > eps):
        return None
    return origin, direction


def fit_line_2d(data) -> np.ndarray | None:
    """Fit ax+by+c=0 to 2D points; None if fewer than two."""
    pts = np.asarray(data, dtype=float)
    if len(pts) < 2:
        return None
    a = np.hstack((pts, np.ones((len(pts), 1))))
    _, _, vt = np.linalg.svd(a, full_matrices=True)
    return vt[2]


def keep_angle_in_pi(angle: float) -> float:
    """Wrap an angle into [-pi, pi]."""
    while angle < -math.pi:
        angle += 2 * math.pi
    while angle > math.pi:
        angle -= 2 * math.pi
    return angle


def bilinear_pixel_value(img, x: float, y: float) -> float:
    """Bilinearly interpolated value of a 2D image at (x, y), clamped to bounds."""
    img = np.asarray(img)
    rows, cols = img.shape[:2]
    x = max(float(x), 0.0)
    y = max(float(y), 0.0)
    if x >= cols:
        x = cols - 1
    if y >= rows:
        y = rows - 1
    x0, y0 = math.floor(x), math.floor(y)
    x1, y1 = min(x0 + 1, cols - 1), min(y0 + 1, rows - 1)
    xx, yy = x - x0, y - y0
    return float(
        (1 - xx) * (1 - yy) * img[y0, x0]
        + xx * (1 - yy) * img[y0, x1]
        + (1 - xx) * yy * img[y1, x0]
        + xx * yy * img[y1, x1]
    )


def check_nan(m) -> bool:
    """True if the array holds a NaN."""
    arr = np.asarray(m, dtype=float)
    if np.isnan(arr).any():
        logger.error("matrix has nan: \n%s", arr)
        return True
    return False


def gaussian_pdf(mean, cov, x) -> float:
    """Normal density with a 2*pi normaliser, as for a 2D distribution."""
    mean = np.asarray(mean, dtype=float)
    cov = np.asarray(cov, dtype=float)
    d = np.asarray(x, dtype=float) - mean
    det = abs(float(np.linalg.det(cov)))
    exp_part = float(d @ np.linalg.inv(cov) @ d)
    return math.exp(-0.5 * exp_part) / (2 * math.pi * math.sqrt(det))


def limit_in_range(num, min_limit, max_limit):
    """Clamp num to [min_limit, max_limit]."""
    if num < min_limit:
        num = min_limit
    if num >= max_limit:
        num = max_limit
    return num


def esti_plane(points, threshold) -> np.ndarray | None:
    """Least-squares plane (a, b, c, d) with unit normal; None if a point is off it."""
    pts = np.asarray(points, dtype=float)
    if len(pts) < 3:
        raise ValueError(f"the number of points should not be less than 3, given {len(pts)}")
    b = -np.ones(len(pts))
    normvec, *_ = np.linalg.lstsq(pts, b, rcond=None)
    len_inv = 1.0 / float(np.linalg.norm(normvec))
    normvec = normvec * len_inv
    abcd = np.append(normvec, len_inv)
    if np.all(np.abs(pts @ normvec + len_inv) <= threshold):
        return abcd
    return None


def history_mean_and_var(hist_n, hist_mean, hist_var2, curr_n, curr_mean, curr_var2):
    """Merge scalar mean and variance from two batches of samples."""
    total = hist_n + curr_n
    new_mean = (hist_n * hist_mean + curr_n * curr_mean) / total
    new_var2 = (
        hist_n * (hist_var2 + (new_mean - hist_mean) ** 2)
        + curr_n * (curr_var2 + (new_mean - curr_mean) ** 2)
    ) / total
    return new_mean, new_var2


def _bracket(times: Sequence[float], query_time: float) -> int:
    return next(
        (i for i, (a, b) in enumerate(zip(times, times[1:])) if a < query_time <= b),
        0,
    )


def pose_interp(
    query_time: float, data: Mapping[float, T], take_pose: Callable[[T], SE3]
) -> tuple[SE3, T] | None:
    """Interpolate a pose from time-keyed data; None if empty or past the end.

    Returns (pose, best_match) where best_match is the nearer bracketing sample.
    """
    if not data:
        logger.info("data is empty")
        return None
    items = sorted(data.items(), key=lambda kv: kv[0])
    times = [t for t, _ in items]
    if query_time > times[-1]:
        logger.info("query time is later than last, query: %.18g, end time: %.18g", query_time, times[-1])
        return None
    if len(items) < 2:
        raise ValueError("interpolation needs at least two samples")
    i = _bracket(times, query_time)
    (t0, first), (t1, second) = items[i], items[i + 1]
    s = (query_time - t0) / (t1 - t0)
    result = take_pose(first).interpolate(take_pose(second), s)
    return result, (first if s < 0.5 else second)


def pose_interp_tolerant(
    query_time: float,
    data,
    take_time: Callable[[Any], float],
    take_pose: Callable[[Any], SE3],
    time_th: float = 0.5,
) -> tuple[SE3, Any] | None:
    """Interpolate a pose from time-ordered data, accepting queries up to time_th past the end.

    A mapping is read as its (key, value) items.
    """
    items = list(data.items()) if isinstance(data, Mapping) else list(data)
    if not items:
        logger.info("cannot interp because data is empty. ")
        return None
    last = items[-1]
    last_time = take_time(last)
    if query_time > last_time:
        if query_time < last_time + time_th:
            return take_pose(last), last
        return None
    if len(items) < 2:
        raise ValueError("interpolation needs at least two samples")
    times = [take_time(item) for item in items]
    i = _bracket(times, query_time)
    first, second = items[i], items[i + 1]
    dt = times[i + 1] - times[i]
    if abs(dt) < 1e-6:
        return take_pose(first), first
    s = (query_time - times[i]) / dt
    result = take_pose(first).interpolate(take_pose(second), s)
    return result, (first if s < 0.5 else second)


def pseudo_inverse(x) -> np.ndarray:
    """Moore-Penrose inverse of a 3x2 matrix."""
    x = np.asarray(x, dtype=float)
    if x.shape != (3, 2):
        raise ValueError(f"expected a 3x2 matrix, got shape {x.shape}")
    u, sv, vt = np.linalg.svd(x, full_matrices=True)
    tolerance = float(np.finfo(float).eps) * 3 * abs(sv[0])
    sv_inv = np.array([1.0 / s if abs(s) > tolerance else 0.0 for s in sv])
    return vt.T @ np.diag(sv_inv) @ u[:, :2].T


def marginalize(h, start: int, end: int) -> np.ndarray:
    """Schur-complement out rows/cols start..end (inclusive) of an information matrix."""
    h = np.asarray(h, dtype=float)
    n = h.shape[0]
    if not 0 <= start <= end < n:
        raise ValueError("invalid block to marginalize")
    b = np.arange(start, end + 1)
    r = np.setdiff1d(np.arange(n), b)
    u, s, vt = np.linalg.svd(h[np.ix_(b, b)])
    s_inv = np.where(s > 1e-6, 1.0 / np.where(s > 1e-6, s, 1.0), 0.0)
    inv_hb = vt.T @ np.diag(s_inv) @ u.T
    res = np.zeros_like(h)
    res[np.ix_(r, r)] = h[np.ix_(r, r)] - h[np.ix_(r, b)] @ inv_hb @ h[np.ix_(b, r)]
    return res


def rad2deg(radians):
    return radians * 180.0 / math.pi


def deg2rad(degrees):
    return degrees * math.pi / 180.0


def vec_from_array(v) -> np.ndarray:
    """A 3-vector from the first three entries of v."""
    return np.array([v[0], v[1], v[2]], dtype=float)


def mat_from_array(v) -> np.ndarray:
    """A 3x3 matrix from nine row-major entries."""
    return np.array(list(v)[:9], dtype=float).reshape(3, 3)