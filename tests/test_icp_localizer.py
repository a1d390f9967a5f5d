import math

import numpy as np
import pytest

from lidarloc.icp_localizer import IcpConfig, IcpLocalizer, OffsetMode
from lidarloc.pose import Pose

ZERO_TF = [0.0, 0.0, 0.0, 0.0, 0.0, 0.0]


@pytest.fixture
def cloud():
    rng = np.random.default_rng(1)
    return rng.uniform(-5.0, 5.0, size=(800, 3))


def _config(**kwargs):
    base = dict(
        init_pos_gnss=False,
        x=0.2,
        transformation_epsilon=1e-10,
        euclidean_fitness_epsilon=1e-12,
    )
    base.update(kwargs)
    return IcpConfig(**base)


def _ready(cloud, offset="linear"):
    loc = IcpLocalizer(ZERO_TF, offset=offset)
    loc.load_map(cloud)
    loc.apply_config(_config())
    return loc


def test_not_ready_returns_none(cloud):
    loc = IcpLocalizer(ZERO_TF)
    assert loc.on_points(cloud, 1.0) is None
    loc.load_map(cloud)
    assert loc.on_points(cloud, 1.0) is None


def test_map_loaded_only_once(cloud):
    loc = IcpLocalizer(ZERO_TF)
    assert loc.load_map(cloud) is True
    assert loc.load_map(cloud) is False


def test_manual_config_sets_poses():
    loc = IcpLocalizer(ZERO_TF)
    loc.apply_config(_config(y=1.0, yaw=0.3))
    expected = Pose(0.2, 1.0, 0.0, 0.0, 0.0, 0.3)
    assert loc.init_pos_set
    assert loc.current_pose == expected
    assert loc.previous_pose == expected
    assert loc.localizer_pose == expected
    assert loc.icp.transformation_epsilon == 1e-10


def test_switching_to_gnss_clears_initialisation():
    loc = IcpLocalizer(ZERO_TF)
    loc.apply_config(_config())
    loc.apply_config(IcpConfig(init_pos_gnss=True))
    assert loc.init_pos_set is False


def test_gnss_initialises(cloud):
    loc = IcpLocalizer(ZERO_TF)
    gnss = Pose(1.0, 2.0, 3.0, 0.0, 0.0, 0.5)
    assert loc.on_gnss(gnss) is True
    assert loc.current_pose == gnss
    assert loc.previous_pose == Pose()
    assert loc.offset == (1.0, 2.0, 3.0, 0.5)
    assert loc.on_gnss(Pose(9.0, 9.0, 9.0)) is False
    assert loc.current_pose == gnss
    assert loc.previous_gnss_pose == Pose(9.0, 9.0, 9.0)


def test_initial_pose_applies_frame_offset():
    loc = IcpLocalizer(ZERO_TF)
    loc.offset = (1.0, 1.0, 1.0, 1.0)
    loc.on_initial_pose(Pose(1.0, 2.0, 3.0, yaw=0.1), (10.0, 20.0, 30.0))
    assert loc.current_pose == Pose(11.0, 22.0, 33.0, yaw=0.1)
    assert loc.previous_pose == loc.current_pose
    assert loc.offset == (0.0, 0.0, 0.0, 0.0)


def test_matching_recovers_pose(cloud):
    loc = _ready(cloud)
    result = loc.on_points(cloud, 2.0, seq=7)
    assert result.current_pose.x == pytest.approx(0.0, abs=1e-3)
    assert result.current_pose.y == pytest.approx(0.0, abs=1e-3)
    assert result.current_pose.yaw == pytest.approx(0.0, abs=1e-3)
    assert result.predict_pose == Pose(0.2)
    assert result.scan_points_num == len(cloud)
    assert loc.previous_pose == result.current_pose


def test_velocity_and_error_invariants(cloud):
    loc = _ready(cloud)
    result = loc.on_points(cloud, 2.0)
    cur = result.current_pose
    assert result.velocity == pytest.approx(math.dist((cur.x, cur.y, cur.z), (0.2, 0.0, 0.0)) / 2.0)
    assert result.velocity_kmph == pytest.approx(result.velocity * 3.6)
    assert result.velocity_smooth == 0.0
    icp = result.icp_pose
    assert result.predict_pose_error == pytest.approx(math.dist((icp.x, icp.y, icp.z), (0.2, 0.0, 0.0)))


def test_linear_offset(cloud):
    loc = _ready(cloud)
    result = loc.on_points(cloud, 1.0)
    cur = result.current_pose
    assert loc.offset == pytest.approx((cur.x - 0.2, cur.y, cur.z, cur.yaw))


def test_zero_offset(cloud):
    loc = _ready(cloud, offset=OffsetMode.ZERO)
    loc.on_points(cloud, 1.0)
    assert loc.offset == (0.0, 0.0, 0.0, 0.0)


def test_quadratic_offset_keeps_z_difference(cloud):
    loc = _ready(cloud, offset="quadratic")
    result = loc.on_points(cloud, 1.0)
    assert loc.offset[2] == pytest.approx(result.current_pose.z)
    assert loc.offset[3] == pytest.approx(result.current_pose.yaw)


def test_csv_row_layout(cloud):
    loc = _ready(cloud)
    result = loc.on_points(cloud, 1.0, seq=42)
    fields = result.csv_row().split(",")
    assert len(fields) == 31
    assert fields[0] == "42"
    assert fields[1] == str(len(cloud))
    assert fields[21] == ""
    assert fields[23] == ""


def test_invalid_offset_mode():
    with pytest.raises(ValueError):
        IcpLocalizer(ZERO_TF, offset="cubic")


def test_invalid_transform_length():
    with pytest.raises(ValueError):
        IcpLocalizer([0.0, 0.0, 0.0])