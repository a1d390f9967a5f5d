"""Localization by registering each scan against a fixed, previously built map."""

from __future__ import annotations

import os
from dataclasses import dataclass

import numpy as np

from .cloud import load_pcd, range_filter, remove_nan, transform_points, voxel_grid_filter
from .icp import IterativeClosestPoint
from .pose import Pose, calc_diff_for_radian
from .scan_mapper import Registration


@dataclass(frozen=True, eq=False)
class LocalizationStep:
    """Everything computed while localizing one scan."""

    stamp: float
    secs: float
    scan_points_num: int
    filtered_points_num: int
    transformed: np.ndarray
    converged: bool
    fitness_score: float
    iterations: int
    guess_pose: Pose
    current_pose: Pose
    localizer_pose: Pose
    transformation: np.ndarray


class MapLocalizer:
    """Tracks the vehicle pose in a fixed map, predicting each guess from the last motion."""

    def __init__(
        self,
        tf_btol=None,
        registration: Registration | None = None,
        map_points=None,
        voxel_leaf_size: float = 2.0,
        min_scan_range: float = 5.0,
        max_scan_range: float = 200.0,
    ) -> None:
        btol = np.eye(4) if tf_btol is None else np.asarray(tf_btol, dtype=float)
        if btol.shape != (4, 4):
            raise ValueError(f"expected a 4x4 base-link to lidar transform, got shape {btol.shape}")
        if map_points is None:
            raise ValueError("a map is required")
        if isinstance(map_points, (str, os.PathLike)):
            map_points = load_pcd(map_points)
        self.tf_btol = btol
        self.tf_ltob = np.linalg.inv(btol)
        self.registration: Registration = registration if registration is not None else IterativeClosestPoint()
        self.voxel_leaf_size = voxel_leaf_size
        self.min_scan_range = min_scan_range
        self.max_scan_range = max_scan_range

        self.map_points = remove_nan(map_points)
        self.registration.set_target(self.map_points)

        self.previous_pose = Pose()
        self.current_pose = Pose()
        self.localizer_pose = Pose()
        self.diff: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)
        self.previous_scan_time = 0.0

    def on_points(self, points, stamp: float) -> LocalizationStep:
        """Register one scan against the map and update the tracked pose."""
        scan = range_filter(points, self.min_scan_range, self.max_scan_range)
        filtered = voxel_grid_filter(scan, self.voxel_leaf_size)

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

        return LocalizationStep(
            stamp=stamp,
            secs=secs,
            scan_points_num=len(scan),
            filtered_points_num=len(filtered),
            transformed=transformed,
            converged=bool(result.converged),
            fitness_score=float(result.fitness_score),
            iterations=int(result.iterations),
            guess_pose=guess,
            current_pose=current,
            localizer_pose=self.localizer_pose,
            transformation=t_localizer,
        )