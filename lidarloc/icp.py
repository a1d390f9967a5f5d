"""Point-to-point iterative closest point registration against a fixed target cloud."""

from __future__ import annotations

import sys
import time
from dataclasses import dataclass

import numpy as np
from scipy.spatial import cKDTree

from .cloud import remove_nan, transform_points

RANSAC_ITERATIONS = 1000
_RANSAC_BATCH = 100
_MSE_RELATIVE_THRESHOLD = 1e-5
_MIN_CORRESPONDENCES = 3


@dataclass(frozen=True, eq=False)
class IcpResult:
    """Outcome of one alignment.

    ``fitness_score`` is the mean squared distance from each aligned source
    point to its nearest target point; ``fitness_time`` is how long computing
    it took, in milliseconds.
    """

    transformation: np.ndarray
    fitness_score: float
    converged: bool
    iterations: int
    aligned: np.ndarray
    fitness_time: float = 0.0


def _rigid_transforms(src: np.ndarray, dst: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Least-squares rotations and translations mapping batches of ``src`` onto ``dst``.

    Both arguments have shape ``(k, n, 3)``; the result is ``(k, 3, 3)`` and ``(k, 3)``.
    """
    cs = src.mean(axis=1, keepdims=True)
    cd = dst.mean(axis=1, keepdims=True)
    h = np.einsum("kni,knj->kij", src - cs, dst - cd)
    u, _, vt = np.linalg.svd(h)
    r = np.swapaxes(vt, 1, 2) @ np.swapaxes(u, 1, 2)
    flip = np.linalg.det(r) < 0
    if flip.any():
        vt = vt.copy()
        vt[flip, -1, :] *= -1.0
        r = np.swapaxes(vt, 1, 2) @ np.swapaxes(u, 1, 2)
    t = cd[:, 0, :] - np.einsum("kij,kj->ki", r, cs[:, 0, :])
    return r, t


def _to_matrix(rotation: np.ndarray, translation: np.ndarray) -> np.ndarray:
    m = np.eye(4)
    m[:3, :3] = rotation
    m[:3, 3] = translation
    return m


class IterativeClosestPoint:
    """Registers a source cloud onto a target cloud by iterated nearest-neighbour fitting."""

    def __init__(
        self,
        maximum_iterations: int = 100,
        transformation_epsilon: float = 0.01,
        max_correspondence_distance: float = 1.0,
        euclidean_fitness_epsilon: float = 0.1,
        ransac_outlier_rejection_threshold: float = 1.0,
    ) -> None:
        self.maximum_iterations = maximum_iterations
        self.transformation_epsilon = transformation_epsilon
        self.max_correspondence_distance = max_correspondence_distance
        self.euclidean_fitness_epsilon = euclidean_fitness_epsilon
        self.ransac_outlier_rejection_threshold = ransac_outlier_rejection_threshold
        self._target: np.ndarray | None = None
        self._tree: cKDTree | None = None

    def set_target(self, points) -> None:
        """Set the cloud that sources are aligned to."""
        cloud = remove_nan(points)
        if len(cloud) == 0:
            raise ValueError("target cloud is empty")
        self._target = cloud[:, :3].copy()
        self._tree = cKDTree(self._target)

    def _ransac_inliers(self, src: np.ndarray, dst: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        n = len(src)
        threshold = self.ransac_outlier_rejection_threshold
        everything = np.ones(n, dtype=bool)
        if threshold <= 0 or n <= _MIN_CORRESPONDENCES:
            return everything
        best: np.ndarray | None = None
        best_count = 0
        remaining = RANSAC_ITERATIONS
        while remaining > 0:
            k = min(_RANSAC_BATCH, remaining)
            remaining -= k
            samples = rng.integers(0, n, size=(k, 3))
            distinct = (
                (samples[:, 0] != samples[:, 1])
                & (samples[:, 0] != samples[:, 2])
                & (samples[:, 1] != samples[:, 2])
            )
            samples = samples[distinct]
            if len(samples) == 0:
                continue
            r, t = _rigid_transforms(src[samples], dst[samples])
            moved = np.einsum("kij,nj->kni", r, src) + t[:, None, :]
            inliers = np.linalg.norm(moved - dst[None], axis=2) < threshold
            counts = inliers.sum(axis=1)
            i = int(np.argmax(counts))
            if counts[i] > best_count:
                best_count = int(counts[i])
                best = inliers[i]
        if best is None or best_count < _MIN_CORRESPONDENCES:
            return everything
        return best

    def align(self, source, initial_guess=None) -> IcpResult:
        """Align ``source`` to the target starting from ``initial_guess`` (4x4)."""
        if self._tree is None or self._target is None:
            raise RuntimeError("no target cloud set")
        cloud = remove_nan(source)
        if len(cloud) == 0:
            raise ValueError("source cloud is empty")
        guess = np.eye(4) if initial_guess is None else np.asarray(initial_guess, dtype=float)
        if guess.shape != (4, 4):
            raise ValueError(f"expected a 4x4 initial guess, got shape {guess.shape}")

        rng = np.random.default_rng(0)
        current = guess.copy()
        moved = transform_points(cloud, current)
        prev_mse = sys.float_info.max
        converged = False
        iterations = 0
        eps = self.transformation_epsilon

        while True:
            dist, idx = self._tree.query(moved[:, :3], distance_upper_bound=self.max_correspondence_distance)
            valid = np.isfinite(dist) & (dist <= self.max_correspondence_distance)
            if int(valid.sum()) < _MIN_CORRESPONDENCES:
                converged = False
                break
            src = moved[valid, :3]
            dst = self._target[idx[valid]]
            inliers = self._ransac_inliers(src, dst, rng)
            r, t = _rigid_transforms(src[inliers][None], dst[inliers][None])
            current = _to_matrix(r[0], t[0]) @ current
            moved = transform_points(cloud, current)
            iterations += 1
            mse = float(np.mean(dist[valid][inliers] ** 2))

            if iterations >= self.maximum_iterations:
                converged = True
                break
            diagonal_sum = float(r[0].diagonal().sum())
            cos_angle = 0.5 * (diagonal_sum - 1.0)
            translation_sqr = float(t[0] @ t[0])
            if cos_angle >= 1.0 - eps and translation_sqr <= eps:
                converged = True
                break
            change = abs(mse - prev_mse)
            if change < self.euclidean_fitness_epsilon or (
                prev_mse > 0 and change / prev_mse < _MSE_RELATIVE_THRESHOLD
            ):
                converged = True
                break
            prev_mse = mse

        start = time.perf_counter()
        nearest, _ = self._tree.query(moved[:, :3])
        fitness = float(np.mean(nearest**2)) if len(nearest) else sys.float_info.max
        fitness_time = (time.perf_counter() - start) * 1000.0
        return IcpResult(current, fitness, converged, iterations, moved, fitness_time)