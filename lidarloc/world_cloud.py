"""Re-projects each scan into the map frame using the pose known for its time stamp."""

from __future__ import annotations

from collections.abc import Callable

import numpy as np

Lookup = Callable[[float], "np.ndarray"]


def _with_intensity(points) -> np.ndarray:
    arr = np.asarray(points, dtype=float)
    if arr.size == 0:
        return np.empty((0, 4))
    if arr.ndim != 2 or arr.shape[1] < 3:
        raise ValueError(f"a cloud needs shape (N, 3) or (N, 4), got {arr.shape}")
    if arr.shape[1] == 3:
        return np.column_stack([arr, np.zeros(len(arr))])
    return arr[:, :4].copy()


class WorldCloudAccumulator:
    """Transforms the previous scan into the map frame once its pose is known.

    Points closer than ``min_distance`` to the sensor are dropped. Every
    ``save_every``-th scan's world points are kept in :attr:`saved`.
    """

    def __init__(self, min_distance: float = 3.0, save_every: int = 5) -> None:
        if save_every <= 0:
            raise ValueError("save_every must be positive")
        self.min_distance = min_distance
        self.save_every = save_every
        self.count = 0
        self.prev_points = np.empty((0, 4))
        self.prev_time = 0.0
        self.saved: list[np.ndarray] = []

    def on_points(self, points, stamp: float, lookup: Lookup) -> np.ndarray | None:
        """Take a new scan and return the previous one in the map frame.

        ``lookup(stamp)`` gives the 4x4 map-from-base-link transform at a time
        stamp and raises ``LookupError`` when it is unknown. Returns None when
        there is no previous scan or its transform is unavailable; in the
        latter case the previous scan is kept for the next call.
        """
        self.count += 1
        world: np.ndarray | None = None
        if len(self.prev_points) > 0:
            try:
                transform = np.asarray(lookup(self.prev_time), dtype=float)
            except LookupError:
                return None
            if transform.shape != (4, 4):
                raise ValueError(f"expected a 4x4 transform, got shape {transform.shape}")
            prev = self.prev_points
            distance_sq = np.einsum("ij,ij->i", prev[:, :3], prev[:, :3])
            kept = prev[~(distance_sq < self.min_distance * self.min_distance)]
            world = kept.copy()
            world[:, :3] = kept[:, :3] @ transform[:3, :3].T + transform[:3, 3]
            if self.count % self.save_every == 0:
                self.saved.append(world)
        self.prev_points = _with_intensity(points)
        self.prev_time = stamp
        return world