# lidarloc

Building blocks for LiDAR localization and mapping: pose arithmetic,
point-cloud filtering and PCD files, iterative closest point (ICP)
registration, localization against a map, incremental map building,
re-projection of scans into the map frame, and a health monitor for a
scan-matching pipeline.

Everything is driven by plain method calls: you pass in point clouds
(`numpy` arrays of shape `(N, 3)` or `(N, 4)`, the fourth column being
intensity), poses and time stamps in seconds, and read back the results.

## Installation

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Modules

- `lidarloc.pose` – the frozen `Pose` record (x, y, z, roll, pitch, yaw)
  with `Pose.to_matrix()` (translation · Rz(yaw) · Ry(pitch) · Rx(roll))
  and `Pose.from_matrix()`; angle helpers `wrap_angle` and
  `calc_diff_for_radian`; conversions `quaternion_from_rpy`,
  `rpy_from_quaternion` and `rpy_from_rotation`; `transform_matrix`; and
  `baselink_to_lidar`, which turns a six-value `[x, y, z, yaw, pitch, roll]`
  setting into the pair `(tf_btol, tf_ltob)` and raises `ValueError` when
  it does not hold exactly six values.
- `lidarloc.cloud` – `voxel_grid_filter` (centroid per cubic voxel),
  `range_filter` (horizontal distance strictly between two bounds),
  `transform_points`, `remove_nan`, and PCD v0.7 input/output with
  `save_pcd` (binary or ascii, float fields) and `load_pcd`.
- `lidarloc.queue_counter` – `QueueCounter`; `on_input()` counts an
  incoming scan, `on_processed()` counts a result and returns a line such
  as `(Processed/Input): (3 / 5)`.
- `lidarloc.icp` – `IterativeClosestPoint`, point-to-point ICP with
  RANSAC outlier rejection on a k-d tree of the target. `set_target()`
  takes the target cloud; `align(source, initial_guess)` returns an
  `IcpResult` with the transformation, fitness score (mean squared
  nearest-neighbour distance), convergence flag, iteration count and the
  aligned cloud.
- `lidarloc.icp_localizer` – `IcpLocalizer`, which tracks a vehicle in a
  map loaded with `load_map()`. It is initialised from GNSS (`on_gnss`),
  from a manual pose in an `IcpConfig` passed to `apply_config`, or by
  `on_initial_pose`; GNSS also re-initialises it when the fitness score
  reaches `gnss_reinit_fitness`. Motion between scans is extrapolated as
  set by `OffsetMode` (`linear`, `quadratic`, `zero`). `on_points()`
  returns `None` until both a map and an initial pose are known, and then
  a `MatchResult` whose `csv_row()` gives one line of a matching log.
- `lidarloc.scan_mapper` – `ScanMapper`, which builds a map from
  consecutive scans, adding a scan whenever the vehicle has moved at
  least `min_add_scan_shift` horizontally since the last addition, and
  `export_map()` writes the map (voxel-filtered unless `filter_res` is 0)
  as a binary PCD file. Each scan yields a `MappingStep`.
- `lidarloc.map_localizer` – `MapLocalizer`, localizing scans against a
  fixed map given as an array or a PCD path; each scan yields a
  `LocalizationStep`.
- `lidarloc.monitor` – `NdtMatchingMonitor`, a state machine that reads
  iteration counts and score jumps (`on_ndt_stat`), judges each matched
  pose (`on_ndt_pose`) as one of the `NdtStatus` values, and returns a
  `MonitorOutput` with an `OverlayText` and, when matching goes wrong, a
  reset pose. Once `NDT_FATAL`, it stays there until `on_initial_pose`
  receives a pose differing in every component. `predict_next_pose`
  keeps the current position and orientation and advances the time stamp.
- `lidarloc.world_cloud` – `WorldCloudAccumulator`, which moves the
  previous scan into the map frame using a `lookup(stamp)` callable you
  supply (it raises `LookupError` when no transform is known), dropping
  points within `min_distance` of the sensor and keeping every
  `save_every`-th result in `saved`.

`ScanMapper` and `MapLocalizer` use `IterativeClosestPoint` by default;
any object with `set_target(points)` and `align(source, initial_guess)`
returning an object with `transformation`, `fitness_score`, `converged`
and `iterations` can be passed as `registration`.

## Example

```python
import numpy as np

from lidarloc.icp_localizer import IcpLocalizer
from lidarloc.pose import Pose

localizer = IcpLocalizer(
    tf_baselink2lidar=[0.0, 0.0, 1.8, 0.0, 0.0, 0.0],
    offset="linear",
    gnss_reinit_fitness=500.0,
    use_gnss=True,
)
localizer.load_map(np.load("map_points.npy"))
localizer.on_gnss(Pose(x=10.0, y=5.0, z=0.0, roll=0.0, pitch=0.0, yaw=0.3))

result = localizer.on_points(np.load("scan.npy"), stamp=0.1, seq=1)
print(result.csv_row())
```

Monitoring a matcher:

```python
from lidarloc.monitor import NdtMatchingMonitor, StampedPose

monitor = NdtMatchingMonitor(
    iteration_threshold_warning=10,
    iteration_threshold_stop=32,
    score_delta_threshold=14.0,
    min_stable_samples=30,
    fatal_time_threshold=2.0,
)
monitor.on_ndt_stat(iteration=4, score=1.2)
output = monitor.on_ndt_pose(StampedPose(stamp=1.0, frame_id="map"))
print(output.status_name, output.text.text)
```

## What it does not do

- There is no normal distributions transform (NDT) registration; the
  only registration method shipped is ICP. The monitor only interprets
  statistics you feed it.
- There is no command-line tool, no message bus and no network I/O: you
  call the classes yourself and decide where scans come from and where
  results go. Log lines (`MatchResult.csv_row()`, `QueueCounter`) are
  returned as strings, not written anywhere.
- There is no transform tree; frame transforms are passed in as 4×4
  matrices, offsets or a lookup callable.