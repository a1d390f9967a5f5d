import math

import numpy as np
import pytest

from lidarloc.cloud import load_pcd
from lidarloc.icp import IcpResult
from lidarloc.pose import transform_matrix
from lidarloc.scan_mapper import ScanMapper


class FakeRegistration:
    """Returns the initial guess, optionally overridden by queued transforms."""

    def __init__(self, transforms=()):
        self.transforms = list(transforms)
        self.targets = []
        self.guesses = []

    def set_target(self, points):
        self.targets.append(np.asarray(points).copy())

    def align(self, source, initial_guess=None):
        guess = np.asarray(initial_guess, dtype=float)
        self.guesses.append(guess.copy())
        t = self.transforms.pop(0) if self.transforms else guess
        return IcpResult(t, 0.0, True, 1, np.asarray(source))


def _scan():
    return np.array(
        [
            [10.0, 0.0, 0.0, 1.0],
            [0.0, 20.0, 1.0, 2.0],
            [1.0, 0.0, 0.0, 3.0],  # too close
            [300.0, 0.0, 0.0, 4.0],  # too far
        ]
    )


def _lattice():
    xs = np.arange(-21.0, 22.0, 2.0)
    pts = [(x, y, z) for x in xs for y in xs for z in (1.0, 3.0) if math.hypot(x, y) > 6.0]
    return np.array(pts)


def test_first_scan_seeds_map_with_range_filtered_points():
    reg = FakeRegistration()
    mapper = ScanMapper(np.eye(4), reg)
    step = mapper.on_points(_scan(), 1.0)
    assert step.scan_points_num == 2
    assert step.map_size == 2
    np.testing.assert_allclose(mapper.map, _scan()[:2])
    assert len(reg.targets) == 1
    np.testing.assert_allclose(reg.targets[0], _scan()[:2])


def test_first_scan_uses_base_to_lidar_transform():
    tf_btol = transform_matrix(1.0, 2.0, 0.5, 0.0, 0.0, 0.3)
    reg = FakeRegistration()
    mapper = ScanMapper(tf_btol, reg)
    step = mapper.on_points(_scan(), 1.0)
    np.testing.assert_allclose(reg.guesses[0], tf_btol)
    np.testing.assert_allclose(mapper.map[:, :3], _scan()[:2, :3] @ tf_btol[:3, :3].T + tf_btol[:3, 3])
    assert step.current_pose.x == pytest.approx(0.0, abs=1e-9)
    assert step.map_updated is False


def test_small_motion_does_not_grow_map():
    reg = FakeRegistration([np.eye(4), transform_matrix(1.0, 0.0, 0.0, 0.0, 0.0, 0.0)])
    mapper = ScanMapper(np.eye(4), reg)
    mapper.on_points(_scan(), 1.0)
    step = mapper.on_points(_scan(), 2.0)
    assert step.shift == pytest.approx(1.0)
    assert not step.map_updated
    assert step.map_size == 2


def test_large_motion_adds_transformed_scan_and_refreshes_target():
    moved = transform_matrix(5.0, 0.0, 0.0, 0.0, 0.0, 0.0)
    reg = FakeRegistration([np.eye(4), moved])
    mapper = ScanMapper(np.eye(4), reg, min_add_scan_shift=3.0)
    mapper.on_points(_scan(), 1.0)
    step = mapper.on_points(_scan(), 2.0)
    assert step.map_updated
    assert step.map_size == 4
    np.testing.assert_allclose(mapper.map[2:, 0], _scan()[:2, 0] + 5.0)
    np.testing.assert_allclose(mapper.map[2:, 3], _scan()[:2, 3])
    assert len(reg.targets) == 2
    assert len(reg.targets[1]) == 2
    assert mapper.added_pose.x == pytest.approx(5.0)


def test_guess_extrapolates_previous_motion():
    moved = transform_matrix(5.0, 1.0, 0.0, 0.0, 0.0, 0.0)
    reg = FakeRegistration([np.eye(4), moved])
    mapper = ScanMapper(np.eye(4), reg)
    mapper.on_points(_scan(), 1.0)
    mapper.on_points(_scan(), 2.0)
    step = mapper.on_points(_scan(), 3.0)
    assert step.guess_pose.x == pytest.approx(10.0)
    assert step.guess_pose.y == pytest.approx(2.0)
    np.testing.assert_allclose(reg.guesses[2][:3, 3], [10.0, 2.0, 0.0])


def test_secs_is_time_since_previous_scan():
    mapper = ScanMapper(np.eye(4), FakeRegistration())
    first = mapper.on_points(_scan(), 4.0)
    second = mapper.on_points(_scan(), 4.5)
    assert first.secs == pytest.approx(4.0)
    assert second.secs == pytest.approx(0.5)


def test_yaw_difference_is_wrapped():
    reg = FakeRegistration(
        [
            transform_matrix(0.0, 0.0, 0.0, 0.0, 0.0, 3.0),
            transform_matrix(0.0, 0.0, 0.0, 0.0, 0.0, -3.0),
        ]
    )
    mapper = ScanMapper(np.eye(4), reg)
    mapper.on_points(_scan(), 1.0)
    mapper.on_points(_scan(), 2.0)
    assert abs(mapper.diff[3]) < math.pi
    assert mapper.diff[3] == pytest.approx(2 * math.pi - 6.0)


def test_rejects_bad_transform_shape():
    with pytest.raises(ValueError):
        ScanMapper(np.eye(3))


def test_export_map_unfiltered_round_trip(tmp_path):
    mapper = ScanMapper(np.eye(4), FakeRegistration())
    mapper.on_points(_scan(), 1.0)
    path = tmp_path / "map.pcd"
    written = mapper.export_map(path, filter_res=0.0)
    loaded = load_pcd(path)
    np.testing.assert_allclose(loaded, written, rtol=1e-6)
    assert len(loaded) == mapper.map_size


def test_export_map_filtered_merges_close_points(tmp_path):
    mapper = ScanMapper(np.eye(4), FakeRegistration(), voxel_leaf_size=0.01)
    scan = np.array([[10.0, 0.0, 0.0], [10.05, 0.0, 0.0], [0.0, 20.0, 0.0]])
    mapper.on_points(scan, 1.0)
    written = mapper.export_map(tmp_path / "map.pcd")
    assert mapper.map_size == 3
    assert len(written) == 2
    assert len(load_pcd(tmp_path / "map.pcd")) == 2


def test_real_registration_on_identical_scans_stays_put():
    lattice = _lattice()
    mapper = ScanMapper(np.eye(4))
    mapper.on_points(lattice, 1.0)
    step = mapper.on_points(lattice, 2.0)
    assert step.converged
    assert step.current_pose.x == pytest.approx(0.0, abs=1e-6)
    assert step.current_pose.y == pytest.approx(0.0, abs=1e-6)
    assert step.fitness_score == pytest.approx(0.0, abs=1e-9)
    assert step.map_size == len(lattice)