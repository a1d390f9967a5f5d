"""Incremental point cloud mapping by registering each scan against the growing map."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Protocol

import numpy as np

from .cloud import range_filter, save_pcd, transform_points, voxel_grid_filter
from .icp import IterativeClosestPoint
from .pose import Pose, calc_diff_for_radian

DEFAULT_EXPORT_FILTER_RES = 0.3


class _AlignResult(Protocol):
    transformation: np.ndarray
    fitness_score: float
    converged: bool
    iterations: int


class Registration(Protocol):
    """What the mapper needs from a scan registration method."""

    def set_target(self, points) -> None: ...

    def align(self, source, initial_guess=None) -> _AlignResult: ...


@dataclass(frozen=True, eq=False)
class MappingStep:
    """Everything computed while adding one scan to the map."""

    stamp: float
    secs: float
    scan_points_num: int
    filtered_points_num: int
    transformed: np.ndarray
    map_size: int
    converged: bool
    fitness_score: float
    iterations: int
    guess_pose: Pose
    current_pose: Pose
    localizer_pose: Pose
    transformation: np.ndarray
    shift: float
    map_updated: bool


class ScanMapper:
    """Builds a map from successive scans, adding a scan whenever the vehicle has moved far enough."""

    def __init__(
        self,
        tf_btol=None,
        registration: Registration | None = None,
        min_add_scan_shift: float = 3.0,
        voxel_leaf_size: float = 2.0,
        min_scan_range: float = 5.0,
        max_scan_range: float = 200.0,
    ) -> None:
        btol = np.eye(4) if tf_btol is None else np.asarray(tf_btol, dtype=float)
        if btol.shape != (4, 4):
            raise ValueError(f"expected a 4x4 base-link to lidar transform, got shape {btol.shape}")
        self.tf_btol = btol
        self.tf_ltob = np.linalg.inv(btol)
        self.registration: Registration = registration if registration is not None else IterativeClosestPoint()
        self.min_add_scan_shift = min_add_scan_shift
        self.voxel_leaf_size = voxel_leaf_size
        self.min_scan_range = min_scan_range
        self.max_scan_range = max_scan_range

        self.map: np.ndarray | None = None
        self.previous_pose = Pose()
        self.current_pose = Pose()
        self.added_pose = Pose()
        self.localizer_pose = Pose()
        self.diff: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)
        self.previous_scan_time = 0.0
        self._target_set = False

    @property
    def map_size(self) -> int:
        return 0 if self.map is None else len(self.map)

    def on_points(self, points, stamp: float) -> MappingStep:
        """Register one scan, update the pose and grow the map if the vehicle moved enough."""
        scan = range_filter(points, self.min_scan_range, self.max_scan_range)

        if self.map is None:
            self.map = transform_points(scan, self.tf_btol)

        filtered = voxel_grid_filter(scan, self.voxel_leaf_size)
        snapshot = self.map.copy()

        if not self._target_set:
            self.registration.set_target(snapshot)
            self._target_set = True

        dx, dy, dz, dyaw = self.diff
        prev = self.previous_pose
        guess = Pose(prev.x + dx, prev.y + dy, prev.z + dz, prev.roll, prev.pitch, prev.yaw + dyaw)
        init_guess = guess.to_matrix() @ self.tf_btol

        result = self.registration.align(filtered, init_guess)
        t_localizer = np.asarray(result.transformation, dtype=float)
        t_base_link = t_localizer @ self.tf_ltob

        transformed = transform_points(scan, t_localizer)

        self.localizer_pose = Pose.from_matrix(t_localizer)
        current = Pose.from_matrix(t_base_link)
        self.current_pose = current

        secs = stamp - self.previous_scan_time
        self.diff = (
            current.x - prev.x,
            current.y - prev.y,
            current.z - prev.z,
            calc_diff_for_radian(current.yaw, prev.yaw),
        )
        self.previous_pose = current
        self.previous_scan_time = stamp

        shift = math.hypot(current.x - self.added_pose.x, current.y - self.added_pose.y)
        map_updated = shift >= self.min_add_scan_shift
        if map_updated:
            self.map = np.vstack([self.map, transformed]) if len(self.map) else transformed
            self.added_pose = current
            # The target is refreshed with the map as it stood before this scan was added.
            self.registration.set_target(snapshot)

        return MappingStep(
            stamp=stamp,
            secs=secs,
            scan_points_num=len(scan),
            filtered_points_num=len(filtered),
            transformed=transformed,
            map_size=len(self.map),
            converged=bool(result.converged),
            fitness_score=float(result.fitness_score),
            iterations=int(result.iterations),
            guess_pose=guess,
            current_pose=current,
            localizer_pose=self.localizer_pose,
            transformation=t_localizer,
            shift=shift,
            map_updated=map_updated,
        )

    def export_map(self, path, filter_res: float = DEFAULT_EXPORT_FILTER_RES) -> np.ndarray:
        """Write the map, voxel-filtered unless ``filter_res`` is zero, as binary PCD; return what was written."""
        cloud = self.map if self.map is not None else np.empty((0, 3))
        if filter_res != 0.0:
            cloud = voxel_grid_filter(cloud, filter_res)
        save_pcd(path, cloud, binary=True)
        return cloud