"""Six-degree-of-freedom poses and the rotation conventions used by the localizers."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import astuple, dataclass

import numpy as np

TWO_PI = 2.0 * math.pi


@dataclass(frozen=True)
class Pose:
    """Position and roll/pitch/yaw attitude in a fixed frame."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    roll: float = 0.0
    pitch: float = 0.0
    yaw: float = 0.0

    def to_matrix(self) -> np.ndarray:
        """Homogeneous transform: translation * Rz(yaw) * Ry(pitch) * Rx(roll)."""
        return transform_matrix(*astuple(self))

    @classmethod
    def from_matrix(cls, matrix) -> Pose:
        """Build a pose from a 4x4 homogeneous transform."""
        m = np.asarray(matrix, dtype=float)
        if m.shape != (4, 4):
            raise ValueError(f"expected a 4x4 matrix, got shape {m.shape}")
        roll, pitch, yaw = rpy_from_rotation(m[:3, :3])
        return cls(float(m[0, 3]), float(m[1, 3]), float(m[2, 3]), roll, pitch, yaw)


def calc_diff_for_radian(lhs: float, rhs: float) -> float:
    """Difference of two angles folded once into [-pi, pi)."""
    diff = lhs - rhs
    if diff >= math.pi:
        diff -= TWO_PI
    elif diff < -math.pi:
        diff += TWO_PI
    return diff


def wrap_angle(angle: float) -> float:
    """Fold an angle into [-pi, pi] by whole turns."""
    while angle < -math.pi:
        angle += TWO_PI
    while angle > math.pi:
        angle -= TWO_PI
    return angle


def quaternion_from_rpy(roll: float, pitch: float, yaw: float) -> tuple[float, float, float, float]:
    """Quaternion (x, y, z, w) for fixed-axis roll, pitch, yaw."""
    hr, hp, hy = roll * 0.5, pitch * 0.5, yaw * 0.5
    cr, sr = math.cos(hr), math.sin(hr)
    cp, sp = math.cos(hp), math.sin(hp)
    cy, sy = math.cos(hy), math.sin(hy)
    return (
        sr * cp * cy - cr * sp * sy,
        cr * sp * cy + sr * cp * sy,
        cr * cp * sy - sr * sp * cy,
        cr * cp * cy + sr * sp * sy,
    )


def _rotation_from_quaternion(x: float, y: float, z: float, w: float) -> np.ndarray:
    d = x * x + y * y + z * z + w * w
    if d == 0.0:
        raise ValueError("quaternion has zero length")
    s = 2.0 / d
    xs, ys, zs = x * s, y * s, z * s
    wx, wy, wz = w * xs, w * ys, w * zs
    xx, xy, xz = x * xs, x * ys, x * zs
    yy, yz, zz = y * ys, y * zs, z * zs
    return np.array(
        [
            [1.0 - (yy + zz), xy - wz, xz + wy],
            [xy + wz, 1.0 - (xx + zz), yz - wx],
            [xz - wy, yz + wx, 1.0 - (xx + yy)],
        ]
    )


def rpy_from_rotation(rotation) -> tuple[float, float, float]:
    """Roll, pitch, yaw of a 3x3 rotation matrix (first solution)."""
    r = np.asarray(rotation, dtype=float)
    if r.shape != (3, 3):
        raise ValueError(f"expected a 3x3 matrix, got shape {r.shape}")
    r20 = float(r[2, 0])
    if abs(r20) >= 1.0:
        yaw = 0.0
        roll = math.atan2(float(r[2, 1]), float(r[2, 2]))
        pitch = math.pi / 2 if r20 < 0 else -math.pi / 2
        return roll, pitch, yaw
    pitch = -math.asin(r20)
    cp = math.cos(pitch)
    roll = math.atan2(float(r[2, 1]) / cp, float(r[2, 2]) / cp)
    yaw = math.atan2(float(r[1, 0]) / cp, float(r[0, 0]) / cp)
    return roll, pitch, yaw


def rpy_from_quaternion(x: float, y: float, z: float, w: float) -> tuple[float, float, float]:
    """Roll, pitch, yaw of a quaternion given as (x, y, z, w)."""
    return rpy_from_rotation(_rotation_from_quaternion(x, y, z, w))


def transform_matrix(x: float, y: float, z: float, roll: float, pitch: float, yaw: float) -> np.ndarray:
    """4x4 transform: translation * Rz(yaw) * Ry(pitch) * Rx(roll)."""
    cr, sr = math.cos(roll), math.sin(roll)
    cp, sp = math.cos(pitch), math.sin(pitch)
    cy, sy = math.cos(yaw), math.sin(yaw)
    return np.array(
        [
            [cy * cp, cy * sp * sr - sy * cr, cy * sp * cr + sy * sr, x],
            [sy * cp, sy * sp * sr + cy * cr, sy * sp * cr - cy * sr, y],
            [-sp, cp * sr, cp * cr, z],
            [0.0, 0.0, 0.0, 1.0],
        ]
    )


def baselink_to_lidar(values: Sequence[float]) -> tuple[np.ndarray, np.ndarray]:
    """Base-link/lidar transforms from (x, y, z, yaw, pitch, roll).

    Returns ``(tf_btol, tf_ltob)``; the second is built from the negated
    parameters in the same composition order.
    """
    vals = [float(v) for v in values]
    if len(vals) != 6:
        raise ValueError("baselink to primary lidar transform is not valid.")
    x, y, z, yaw, pitch, roll = vals
    tf_btol = transform_matrix(x, y, z, roll, pitch, yaw)
    tf_ltob = transform_matrix(-x, -y, -z, -roll, -pitch, -yaw)
    return tf_btol, tf_ltob