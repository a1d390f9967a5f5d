"""Localization against a point cloud map by iterative closest point matching."""

from __future__ import annotations

import math
import time
from collections.abc import Sequence
from dataclasses import dataclass, replace
from enum import Enum

import numpy as np

from .icp import IterativeClosestPoint
from .pose import Pose, baselink_to_lidar

VELOCITY_SMOOTH_FLOOR = 0.2
PREDICT_POSE_THRESHOLD = 0.5


class OffsetMode(str, Enum):
    """How the motion between scans is extrapolated into the next guess."""

    LINEAR = "linear"
    ZERO = "zero"
    QUADRATIC = "quadratic"


@dataclass(frozen=True)
class IcpConfig:
    """Run-time configuration: initial pose source and matcher parameters."""

    init_pos_gnss: bool = True
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    roll: float = 0.0
    pitch: float = 0.0
    yaw: float = 0.0
    maximum_iterations: int = 100
    transformation_epsilon: float = 0.01
    max_correspondence_distance: float = 1.0
    euclidean_fitness_epsilon: float = 0.1
    ransac_outlier_rejection_threshold: float = 1.0

    @property
    def initial_pose(self) -> Pose:
        return Pose(self.x, self.y, self.z, self.roll, self.pitch, self.yaw)


def _g(value: float) -> str:
    return f"{value:g}"


@dataclass(frozen=True, eq=False)
class MatchResult:
    """Everything computed for one scan. Times are in milliseconds."""

    seq: int
    stamp: float
    scan_points_num: int
    current_pose: Pose
    predict_pose: Pose
    icp_pose: Pose
    localizer_pose: Pose
    transformation: np.ndarray
    converged: bool
    fitness_score: float
    predict_pose_error: float
    velocity: float
    velocity_smooth: float
    acceleration: float
    angular_velocity: float
    exe_time: float
    align_time: float
    fitness_time: float

    @property
    def velocity_kmph(self) -> float:
        return self.velocity * 3.6

    def csv_row(self) -> str:
        """One line of the matching log, without the line ending."""
        cur, pred = self.current_pose, self.predict_pose
        fields = [
            str(self.seq),
            str(self.scan_points_num),
            *(_g(v) for v in (cur.x, cur.y, cur.z, cur.roll, cur.pitch, cur.yaw)),
            *(_g(v) for v in (pred.x, pred.y, pred.z, pred.roll, pred.pitch, pred.yaw)),
            _g(cur.x - pred.x),
            _g(cur.y - pred.y),
            _g(cur.z - pred.z),
            _g(cur.roll - pred.roll),
            _g(cur.pitch - pred.pitch),
            _g(cur.yaw - pred.yaw),
            _g(self.predict_pose_error),
            "",
            _g(self.fitness_score),
            "",
            _g(self.velocity),
            _g(self.velocity_smooth),
            _g(self.acceleration),
            _g(self.angular_velocity),
            _g(self.exe_time),
            _g(self.align_time),
            _g(self.fitness_time),
        ]
        return ",".join(fields)


def _div(a: float, b: float) -> float:
    """Floating-point division that yields inf or nan instead of raising."""
    if b == 0.0:
        if a == 0.0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1.0, b)
    return a / b


class IcpLocalizer:
    """Tracks the vehicle pose by matching each scan against a loaded map."""

    def __init__(
        self,
        tf_baselink2lidar: Sequence[float],
        offset: OffsetMode | str = OffsetMode.LINEAR,
        gnss_reinit_fitness: float = 500.0,
        use_gnss: bool = True,
    ) -> None:
        self.tf_btol, self.tf_ltob = baselink_to_lidar(tf_baselink2lidar)
        self.offset_mode = OffsetMode(offset)
        self.gnss_reinit_fitness = gnss_reinit_fitness
        self.use_gnss = bool(use_gnss)
        self.icp = IterativeClosestPoint()

        self.initial_pose = Pose()
        self.predict_pose = Pose()
        self.previous_pose = Pose()
        self.icp_pose = Pose()
        self.current_pose = Pose()
        self.localizer_pose = Pose()
        self.previous_gnss_pose = Pose()
        self.current_gnss_pose = Pose()
        self.offset: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)

        self.map_loaded = False
        self.init_pos_set = False
        self.fitness_score = 0.0

        self.previous_scan_time = 0.0
        self.previous_velocity = 0.0
        self.previous_previous_velocity = 0.0
        self.previous_velocity_xyz = (0.0, 0.0, 0.0)
        self.previous_accel = 0.0

    def apply_config(self, config: IcpConfig) -> None:
        """Take a new configuration; a manual initial pose is applied when it changes."""
        use_gnss = bool(config.init_pos_gnss)
        if self.use_gnss != use_gnss:
            self.init_pos_set = False
        elif not use_gnss and self.initial_pose != config.initial_pose:
            self.init_pos_set = False

        self.use_gnss = use_gnss

        if not use_gnss and not self.init_pos_set:
            self.initial_pose = config.initial_pose
            self.localizer_pose = self.initial_pose
            self.previous_pose = self.initial_pose
            self.current_pose = self.initial_pose
            self.init_pos_set = True

        self.icp.maximum_iterations = config.maximum_iterations
        self.icp.transformation_epsilon = config.transformation_epsilon
        self.icp.max_correspondence_distance = config.max_correspondence_distance
        self.icp.euclidean_fitness_epsilon = config.euclidean_fitness_epsilon
        self.icp.ransac_outlier_rejection_threshold = config.ransac_outlier_rejection_threshold

    def load_map(self, points) -> bool:
        """Set the map the first time it is offered; later maps are ignored."""
        if self.map_loaded:
            return False
        self.icp.set_target(points)
        self.map_loaded = True
        return True

    def on_gnss(self, pose: Pose) -> bool:
        """Record a GNSS pose; returns True if it (re)initialised the localizer."""
        self.current_gnss_pose = pose
        reset = (self.use_gnss and not self.init_pos_set) or self.fitness_score >= self.gnss_reinit_fitness
        if reset:
            self.previous_pose = self.previous_gnss_pose
            self.current_pose = pose
            self.offset = (
                self.current_pose.x - self.previous_pose.x,
                self.current_pose.y - self.previous_pose.y,
                self.current_pose.z - self.previous_pose.z,
                self.current_pose.yaw - self.previous_pose.yaw,
            )
            self.init_pos_set = True
        self.previous_gnss_pose = pose
        return reset

    def on_initial_pose(self, pose: Pose, frame_offset: Sequence[float] = (0.0, 0.0, 0.0)) -> None:
        """Place the vehicle at ``pose``, shifted by the origin of its frame in the map."""
        ox, oy, oz = (float(v) for v in frame_offset)
        self.current_pose = replace(pose, x=pose.x + ox, y=pose.y + oy, z=pose.z + oz)
        self.previous_pose = self.current_pose
        self.offset = (0.0, 0.0, 0.0, 0.0)

    def on_points(self, points, stamp: float, seq: int = 0) -> MatchResult | None:
        """Match one scan; returns None until a map and an initial pose are known."""
        if not (self.map_loaded and self.init_pos_set):
            return None
        matching_start = time.perf_counter()
        scan = np.asarray(points, dtype=float)
        scan_points_num = len(scan)

        ox, oy, oz, oyaw = self.offset
        prev = self.previous_pose
        predict = Pose(prev.x + ox, prev.y + oy, prev.z + oz, prev.roll, prev.pitch, prev.yaw + oyaw)
        self.predict_pose = predict
        init_guess = predict.to_matrix() @ self.tf_btol

        align_start = time.perf_counter()
        result = self.icp.align(scan, init_guess)
        align_time = (time.perf_counter() - align_start) * 1000.0

        t = result.transformation
        t2 = t @ self.tf_ltob
        self.fitness_score = result.fitness_score

        self.localizer_pose = Pose.from_matrix(t)
        self.icp_pose = Pose.from_matrix(t2)
        icp_pose = self.icp_pose

        predict_pose_error = math.dist((icp_pose.x, icp_pose.y, icp_pose.z), (predict.x, predict.y, predict.z))
        # The predicted pose is never substituted for the matched one.
        current = icp_pose
        self.current_pose = current

        secs = stamp - self.previous_scan_time
        diff_x = current.x - prev.x
        diff_y = current.y - prev.y
        diff_z = current.z - prev.z
        diff_yaw = current.yaw - prev.yaw
        diff = math.sqrt(diff_x * diff_x + diff_y * diff_y + diff_z * diff_z)

        velocity = _div(diff, secs)
        vx, vy, vz = _div(diff_x, secs), _div(diff_y, secs), _div(diff_z, secs)
        angular_velocity = _div(diff_yaw, secs)

        velocity_smooth = (velocity + self.previous_velocity + self.previous_previous_velocity) / 3.0
        if velocity_smooth < VELOCITY_SMOOTH_FLOOR:
            velocity_smooth = 0.0

        pvx, pvy, pvz = self.previous_velocity_xyz
        accel = _div(velocity - self.previous_velocity, secs)
        ax = _div(vx - pvx, secs)
        ay = _div(vy - pvy, secs)

        if self.offset_mode is OffsetMode.LINEAR:
            self.offset = (diff_x, diff_y, diff_z, diff_yaw)
        elif self.offset_mode is OffsetMode.QUADRATIC:
            self.offset = ((vx + ax * secs) * secs, (vy + ay * secs) * secs, diff_z, diff_yaw)
        else:
            self.offset = (0.0, 0.0, 0.0, 0.0)

        self.previous_pose = current
        self.previous_scan_time = stamp
        self.previous_previous_velocity = self.previous_velocity
        self.previous_velocity = velocity
        self.previous_velocity_xyz = (vx, vy, vz)
        self.previous_accel = accel

        exe_time = (time.perf_counter() - matching_start) * 1000.0
        return MatchResult(
            seq=seq,
            stamp=stamp,
            scan_points_num=scan_points_num,
            current_pose=current,
            predict_pose=predict,
            icp_pose=icp_pose,
            localizer_pose=self.localizer_pose,
            transformation=t,
            converged=result.converged,
            fitness_score=result.fitness_score,
            predict_pose_error=predict_pose_error,
            velocity=velocity,
            velocity_smooth=velocity_smooth,
            acceleration=accel,
            angular_velocity=angular_velocity,
            exe_time=exe_time,
            align_time=align_time,
            fitness_time=result.fitness_time,
        )