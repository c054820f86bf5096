"""Loop-closure detection between keyframes and NDT verification of candidates."""

from __future__ import annotations

import argparse
import itertools
import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
import yaml

from sadmap.geometry import SE3, SO3
from sadmap.keyframe import Keyframe, load_keyframes
from sadmap.pointcloud import PointCloud, load_pcd, remove_ground, voxel_grid

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = "./data/ch9"
DEFAULT_CONFIG = "./config/mapping.yaml"

SUBMAP_ID_RANGE = 40
SUBMAP_ID_STEP = 4
GROUND_Z_MIN = 0.1
NDT_RESOLUTIONS = (10.0, 5.0, 4.0, 3.0)
NDT_TRANSFORMATION_EPSILON = 0.05
NDT_STEP_SIZE = 0.7
NDT_MAX_ITERATIONS = 40
NDT_OUTLIER_RATIO = 0.55
NDT_MIN_POINTS_PER_VOXEL = 6


@dataclass
class LoopCandidate:
    """A pair of keyframes that may close a loop, with their relative pose."""

    idx1: int = 0
    idx2: int = 0
    tij: SE3 = field(default_factory=SE3)
    ndt_score: float = 0.0


def _pose_tokens(pose: SE3) -> list[str]:
    w, x, y, z = pose.rotation.quaternion()
    return [f"{v:g}" for v in (*pose.translation.tolist(), x, y, z, w)]


def save_loop_candidates(path, candidates: Iterable[LoopCandidate]) -> None:
    """Write candidates one per line: ids, score, translation and q(x, y, z, w)."""
    with open(path, "w", encoding="utf-8", newline="\n") as fout:
        for c in candidates:
            tokens = [str(c.idx1), str(c.idx2), f"{c.ndt_score:g}", *_pose_tokens(c.tij)]
            fout.write(" ".join(tokens) + " \n")


def load_loop_candidates(path) -> list[LoopCandidate]:
    """Read candidates up to the first blank line; an absent file gives none."""
    try:
        fin = open(path, encoding="utf-8")
    except FileNotFoundError:
        logger.warning("cannot load file: %s", path)
        return []
    candidates = []
    with fin:
        for line in fin:
            tokens = line.split()
            if not tokens:
                break
            if len(tokens) < 10:
                raise ValueError(f"loop line needs 10 fields, got {len(tokens)}")
            tx, ty, tz, qx, qy, qz, qw = (float(t) for t in tokens[3:10])
            candidates.append(
                LoopCandidate(
                    idx1=int(tokens[0]),
                    idx2=int(tokens[1]),
                    tij=SE3(SO3.from_quaternion(qw, qx, qy, qz), np.array([tx, ty, tz])),
                    ndt_score=float(tokens[2]),
                )
            )
    logger.info("loaded loops: %d", len(candidates))
    return candidates


def detect_loop_candidates(
    keyframes: Mapping[int, Keyframe],
    min_id_interval: int = 50,
    min_distance: float = 30.0,
    skip_id: int = 5,
) -> list[LoopCandidate]:
    """Pair keyframes far apart in id but close in x-y after the first optimisation.

    Once a pair is chosen, keyframes within skip_id of its members are passed over.
    """
    frames = [keyframes[k] for k in sorted(keyframes)]
    candidates: list[LoopCandidate] = []
    check_first: Keyframe | None = None
    check_second: Keyframe | None = None
    for i, kf_first in enumerate(frames):
        if check_first is not None and abs(kf_first.id - check_first.id) <= skip_id:
            continue
        for kf_second in frames[i:]:
            if check_second is not None and abs(kf_second.id - check_second.id) <= skip_id:
                continue
            if abs(kf_first.id - kf_second.id) < min_id_interval:
                continue
            dt = kf_first.opti_pose_1.translation - kf_second.opti_pose_1.translation
            if float(np.linalg.norm(dt[:2])) < min_distance:
                candidates.append(
                    LoopCandidate(
                        kf_first.id,
                        kf_second.id,
                        kf_first.opti_pose_1.inverse() * kf_second.opti_pose_1,
                    )
                )
                check_first = kf_first
                check_second = kf_second
    logger.info("detected candidates: %d", len(candidates))
    return candidates


_KEY_OFFSET = 1 << 20


def _encode(keys: np.ndarray) -> np.ndarray:
    k = keys + _KEY_OFFSET
    return (k[:, 0] << 42) | (k[:, 1] << 21) | k[:, 2]


def _hat_batch(p: np.ndarray) -> np.ndarray:
    out = np.zeros((len(p), 3, 3))
    out[:, 0, 1] = -p[:, 2]
    out[:, 0, 2] = p[:, 1]
    out[:, 1, 0] = p[:, 2]
    out[:, 1, 2] = -p[:, 0]
    out[:, 2, 0] = -p[:, 1]
    out[:, 2, 1] = p[:, 0]
    return out


class _NDTTarget:
    """Per-voxel Gaussians of a target cloud."""

    def __init__(self, cloud: PointCloud, resolution: float):
        self.resolution = resolution
        c1 = 10.0 * (1.0 - NDT_OUTLIER_RATIO)
        c2 = NDT_OUTLIER_RATIO / resolution**3
        d3 = -math.log(c2)
        self.d1 = -math.log(c1 + c2) - d3
        self.d2 = -2.0 * math.log((-math.log(c1 * math.exp(-0.5) + c2) - d3) / self.d1)

        xyz = cloud.xyz.astype(np.float64)
        xyz = xyz[np.isfinite(xyz).all(axis=1)]
        self.codes = np.zeros(0, dtype=np.int64)
        self.means = np.zeros((0, 3))
        self.icov = np.zeros((0, 3, 3))
        if len(xyz) == 0:
            return
        codes = _encode(np.floor(xyz / resolution).astype(np.int64))
        uniq, inverse, counts = np.unique(codes, return_inverse=True, return_counts=True)
        inverse = inverse.reshape(-1)
        sums = np.zeros((len(uniq), 3))
        np.add.at(sums, inverse, xyz)
        outer = np.zeros((len(uniq), 3, 3))
        np.add.at(outer, inverse, xyz[:, :, None] * xyz[:, None, :])
        keep = counts >= NDT_MIN_POINTS_PER_VOXEL
        if not keep.any():
            return
        n = counts[keep].astype(float)
        means = sums[keep] / n[:, None]
        cov = (outer[keep] - n[:, None, None] * means[:, :, None] * means[:, None, :]) / (
            n[:, None, None] - 1.0
        )
        vals, vecs = np.linalg.eigh(cov)
        largest = vals[:, -1]
        valid = largest > 0
        vals = np.maximum(vals[valid], 0.01 * largest[valid][:, None])
        vecs = vecs[valid]
        self.icov = np.einsum("nij,nj,nkj->nik", vecs, 1.0 / vals, vecs)
        self.means = means[valid]
        self.codes = uniq[keep][valid]

    def pairs(self, points: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Indices of (point, voxel) pairs whose voxel mean lies within the resolution."""
        if len(self.codes) == 0 or len(points) == 0:
            empty = np.zeros(0, dtype=np.int64)
            return empty, empty
        base = np.floor(points / self.resolution).astype(np.int64)
        point_idx, voxel_idx = [], []
        all_points = np.arange(len(points))
        for offset in itertools.product((-1, 0, 1), repeat=3):
            codes = _encode(base + np.array(offset))
            pos = np.clip(np.searchsorted(self.codes, codes), 0, len(self.codes) - 1)
            hit = self.codes[pos] == codes
            pi, vi = all_points[hit], pos[hit]
            near = np.linalg.norm(points[pi] - self.means[vi], axis=1) <= self.resolution
            point_idx.append(pi[near])
            voxel_idx.append(vi[near])
        return np.concatenate(point_idx), np.concatenate(voxel_idx)

    def derivatives(self, points: np.ndarray):
        """Score, gradient and Gauss-Newton Hessian of the negated score."""
        pi, vi = self.pairs(points)
        if len(pi) == 0:
            return 0.0, None, None
        p = points[pi]
        e = p - self.means[vi]
        cmat = self.icov[vi]
        ce = np.einsum("nij,nj->ni", cmat, e)
        ex = np.exp(-0.5 * self.d2 * np.sum(e * ce, axis=1))
        score = float(-self.d1 * ex.sum())
        w = -self.d1 * self.d2 * ex
        jac = np.zeros((len(p), 3, 6))
        jac[:, :, :3] = np.eye(3)
        jac[:, :, 3:] = -_hat_batch(p)
        grad = np.einsum("n,nji,nj->i", w, jac, ce)
        cj = np.einsum("njk,nkl->njl", cmat, jac)
        hess = np.einsum("n,nji,njl->il", w, jac, cj)
        return score, grad, hess


def _ndt_align(target: PointCloud, source: PointCloud, resolution: float, guess: SE3) -> tuple[SE3, float]:
    """Align source onto target from the guess; returns the pose and the score per point."""
    grid = _NDTTarget(target, resolution)
    src = source.xyz.astype(np.float64)
    src = src[np.isfinite(src).all(axis=1)]
    pose = guess
    if len(src) == 0:
        return pose, 0.0
    for _ in range(NDT_MAX_ITERATIONS):
        _, grad, hess = grid.derivatives(pose.transform_points(src))
        if grad is None:
            break
        delta = np.linalg.lstsq(hess, -grad, rcond=None)[0]
        norm = float(np.linalg.norm(delta))
        if not math.isfinite(norm):
            break
        if norm > NDT_STEP_SIZE:
            delta *= NDT_STEP_SIZE / norm
        pose = SE3.exp(delta) * pose
        if float(np.linalg.norm(delta)) < NDT_TRANSFORMATION_EPSILON:
            break
    score, _, _ = grid.derivatives(pose.transform_points(src))
    return pose, score / len(src)


def _load_scan(path: Path) -> PointCloud:
    try:
        return load_pcd(path)
    except FileNotFoundError:
        logger.error("cannot load %s", path)
        return PointCloud()


def _require(section: Mapping, key: str, kind):
    try:
        return kind(section[key])
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"loop_closing.{key} is missing or invalid in the config") from exc


class LoopClosure:
    """Finds loop candidates among saved keyframes and checks them with NDT."""

    def __init__(self, config_yaml, data_dir=DEFAULT_DATA_DIR):
        self.data_dir = Path(data_dir)
        self.keyframes = load_keyframes(self.data_dir / "keyframes.txt")
        logger.info("keyframes: %d", len(self.keyframes))
        with open(config_yaml, encoding="utf-8") as fin:
            config = yaml.safe_load(fin) or {}
        section = config.get("loop_closing") if isinstance(config, dict) else None
        if not isinstance(section, dict):
            raise ValueError("config has no loop_closing section")
        self.min_id_interval = _require(section, "min_id_interval", int)
        self.min_distance = _require(section, "min_distance", float)
        self.skip_id = _require(section, "skip_id", int)
        self.ndt_score_th = _require(section, "ndt_score_th", float)
        self.candidates: list[LoopCandidate] = []

    def run(self) -> list[LoopCandidate]:
        """Detect, verify and save candidates; returns those that passed."""
        logger.info("detecting loop candidates from pose in stage 1")
        self.candidates = detect_loop_candidates(
            self.keyframes, self.min_id_interval, self.min_distance, self.skip_id
        )
        for candidate in self.candidates:
            self.compute_for_candidate(candidate)
        succeeded = [c for c in self.candidates if c.ndt_score > self.ndt_score_th]
        logger.info("success: %d/%d", len(succeeded), len(self.candidates))
        self.candidates = succeeded
        save_loop_candidates(self.data_dir / "loops.txt", self.candidates)
        return self.candidates

    def _build_submap(self, given_id: int) -> PointCloud:
        submap = PointCloud()
        for idx in range(-SUBMAP_ID_RANGE, SUBMAP_ID_RANGE, SUBMAP_ID_STEP):
            kf_id = idx + given_id
            if kf_id < 0 or kf_id not in self.keyframes:
                continue
            cloud = remove_ground(_load_scan(self.data_dir / f"{kf_id}.pcd"), GROUND_Z_MIN)
            if len(cloud) == 0:
                continue
            submap = submap + cloud.transformed(self.keyframes[kf_id].opti_pose_1)
        return submap

    def compute_for_candidate(self, candidate: LoopCandidate) -> LoopCandidate:
        """Refine the candidate's relative pose by multi-resolution NDT and score it."""
        logger.info("aligning %d with %d", candidate.idx1, candidate.idx2)
        kf1 = self.keyframes[candidate.idx1]
        kf2 = self.keyframes[candidate.idx2]
        submap_kf1 = self._build_submap(kf1.id)
        submap_kf2 = _load_scan(self.data_dir / f"{kf2.id}.pcd")
        if len(submap_kf1) == 0 or len(submap_kf2) == 0:
            candidate.ndt_score = 0.0
            return candidate

        tw2 = kf2.opti_pose_1
        score = 0.0
        for r in NDT_RESOLUTIONS:
            rough_map1 = voxel_grid(submap_kf1, r * 0.1)
            rough_map2 = voxel_grid(submap_kf2, r * 0.1)
            tw2, score = _ndt_align(rough_map1, rough_map2, r, tw2)

        candidate.tij = kf1.opti_pose_1.inverse() * SE3.from_matrix(tw2.matrix())
        candidate.ndt_score = score
        return candidate


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Detect and verify loop closures between keyframes.")
    parser.add_argument("--config_yaml", default=DEFAULT_CONFIG, help="configuration file")
    parser.add_argument("--data_dir", default=DEFAULT_DATA_DIR, help="directory of keyframes and scans")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    try:
        loop_closure = LoopClosure(args.config_yaml, args.data_dir)
    except (OSError, ValueError) as exc:
        logger.error("failed to init loop closure: %s", exc)
        return 1
    loop_closure.run()
    return 0