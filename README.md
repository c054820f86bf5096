# sadmap

`sadmap` works on the keyframes that a lidar mapping run has written out. It
finds and verifies loop closures between them, and turns their scans into a
point-cloud map: either one merged file or a set of 100 m × 100 m tiles.

It also provides the building blocks on their own:

- `sadmap.geometry`: `SO3` and `SE3` (exp/log, inverse, composition, point
  transforms, interpolation), plus `hat`, `vee`, `jr`, `jr_inv`,
  `rpy_to_rot`, `rot_to_euler` and a few related helpers.
- `sadmap.mathutils`: mean and covariance, Gaussian merging, plane and line
  fitting, `pose_interp` and `pose_interp_tolerant`, `pseudo_inverse` and
  `marginalize` (a Schur complement over a block of an information matrix).
- `sadmap.pointcloud`: `PointCloud`, `voxel_grid`, `remove_ground`,
  `load_pcd` (ascii, binary and binary_compressed) and `save_cloud_to_file`
  (ascii), plus `LocalMapAccumulator`, which builds a voxel-filtered local map.
- `sadmap.datatypes`: `IMU`, `Odom`, `GNSS`, `NavState` and dataset names.
- `sadmap.io_utils`: `TxtIO` and `parse_line`, which read text logs made of
  `IMU`, `ODOM` and `GNSS` records.
- `sadmap.keyframe`: `Keyframe`, `load_keyframes` and `save_keyframes`.
- `sadmap.timer`: `Timer` and `evaluate_and_call`, which time calls.

## Installation

```
pip install .
```

To include the test dependencies:

```
pip install ".[test]"
```

You need Python 3.10 or newer. The package depends on numpy and PyYAML.

## Data layout

By default the commands read from and write to `./data/ch9`:

- `keyframes.txt`: one keyframe per line. Each line holds the id, the
  timestamp and three 0/1 flags (RTK heading valid, RTK valid, RTK inlier).
  These are followed by the lidar, RTK, stage-1 and stage-2 poses, each as
  `tx ty tz qx qy qz qw`. Reading stops at the first blank line.
- `<id>.pcd`: the scan of each keyframe.
- `loops.txt`: accepted loops, written by loop closure. Each line holds the
  two ids, the score and the relative pose.

Loop closure also reads a YAML configuration, by default
`./config/mapping.yaml`. It must have a `loop_closing` section that holds
`min_id_interval`, `min_distance`, `skip_id` and `ndt_score_th`.

## Commands

```
sadmap-loopclosure [--config_yaml PATH] [--data_dir DIR]
```

This pairs keyframes whose ids differ by at least `min_id_interval` and whose
stage-1 poses lie within `min_distance` in x–y. After a pair is chosen, the
next `skip_id` ids on either side are skipped. Each candidate is aligned
against a ground-removed submap of its first keyframe's neighbours, using NDT
at resolutions of 10, 5, 4 and 3 m. Candidates that score above
`ndt_score_th` are written to `loops.txt`.

```
sadmap-dump-map [--voxel_size 0.1] [--pose_source lidar|rtk|opti1|opti2] [--dump_to DIR] [--data_dir DIR]
```

This places every scan by the chosen pose, voxel-filters it, and writes the
merged cloud to `<dump_to>/map.pcd`.

```
sadmap-split-map [--map_path DIR] [--voxel_size 0.1]
```

This places every scan by its stage-2 pose and groups the points into tiles,
as given by `grid_index`. It then empties `<map_path>/map_data/` and writes
one `<gx>_<gy>.pcd` per tile there, along with `map_index.txt`.

## Library use

```python
from sadmap.geometry import SE3
from sadmap.keyframe import load_keyframes
from sadmap.loopclosure import detect_loop_candidates
from sadmap.mapexport import grid_index

keyframes = load_keyframes("./data/ch9/keyframes.txt")
for c in detect_loop_candidates(keyframes, 50, 30.0, 5):
    print(c.idx1, c.idx2)

pose = SE3.exp([0.0, 0.0, 0.1, 1.0, 2.0, 0.0])
print(pose.inverse().matrix())

print(grid_index(120.0, -30.0))  # (0, -1)
```

Timing a piece of code:

```python
from sadmap.timer import Timer

timer = Timer()
timer.evaluate(lambda: sum(range(100_000)), "sum")
print(timer.mean_time("sum"))
```

## What it does not do

`sadmap` does not optimise poses. The stage-1 and stage-2 poses in
`keyframes.txt` (`opti1` and `opti2`) must already be filled in by other
tools. Loop detection relies on the stage-1 poses, and the tiled map relies
on the stage-2 poses. The package also does not produce keyframes from raw
sensor recordings, and it does not display anything.

## Running the tests

```
pytest
```