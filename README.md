# elevmap

`elevmap` holds the building blocks of a robot-centric elevation map built
from range sensor data: sensor noise models that filter point clouds and
compute a height variance per point, a frame tree for transform lookups,
configurable input sources, a thread pool for postprocessing maps, the
propagation of robot pose uncertainty into cell variances, and conversions
of a grid into occupancy grids, point clouds and odometry.

It depends only on NumPy.

## Modules

| Module | Contents |
| --- | --- |
| `elevmap.distribution` | `WeightedEmpiricalCumulativeDistributionFunction`: weighted quantiles with linear interpolation |
| `elevmap.functors` | `VarianceClampOperator`: clamps variances to a valid range |
| `elevmap.threadsafe` | `ThreadSafeDataWrapper`: lock-guarded access to shared data |
| `elevmap.point_cloud` | `PointXYZRGBConfidenceRatio` and the column-wise `PointCloud` |
| `elevmap.geometry` | `skew`, quaternion and rotation helpers, `Pose`, `TransformBuffer`, `TransformError` |
| `elevmap.node` | `Node` with declared parameters and in-process `Publisher` topics |
| `elevmap.sensor_processors` | `SensorProcessorBase` and the `laser`, `perfect`, `stereo` and `structured_light` models |
| `elevmap.input_source` | `Input`, `InputParameters`, `expand_topic_name`, `create_sensor_processor` |
| `elevmap.input_manager` | `InputSourceManager`: configures all inputs from the node's parameters |
| `elevmap.postprocessing` | `PostprocessingPipelineFunctor`, `PostprocessingWorker`, `PostprocessorPool` |
| `elevmap.robot_motion` | `ElevationGrid`, `VarianceUpdate`, `RobotMotionMapUpdater` |
| `elevmap.conversions` | `to_occupancy_grid`, `binarize_occupancy`, `to_point_cloud`, `odometry_from_transform` |

## Quantiles of weighted samples

The smallest observation maps to probability 0, the largest to 1, and
values in between are interpolated linearly. Adding a value twice adds
up its weights.

```python
from elevmap.distribution import WeightedEmpiricalCumulativeDistributionFunction

cdf = WeightedEmpiricalCumulativeDistributionFunction()
for value in (1.0, 2.0, 3.0):
    cdf.add(value, 1.0)
cdf.compute()

cdf.quantile(0.0)   # 1.0
cdf.quantile(0.25)  # 1.5
cdf.quantile(1.0)   # 3.0
```

`compute()` returns `False` when there is no data; `quantile()` before a
successful `compute()` raises `RuntimeError`.

## Clamping variances

Variances below the minimum are raised to it; variances above the maximum
become infinite, marking the cell as unknown. Scalars and NumPy arrays are
both accepted.

```python
from elevmap.functors import VarianceClampOperator

clamp = VarianceClampOperator(0.1, 10.0)
clamp(0.01)  # 0.1
clamp(5.0)   # 5.0
clamp(20.0)  # inf
```

## Frames and transforms

A `TransformBuffer` stores, for each child frame, its `Pose` in the parent
frame, and finds the transform between any two connected frames.

```python
from elevmap.geometry import Pose, TransformBuffer

buffer = TransformBuffer()
buffer.set_transform("map", "base", Pose(position=[1.0, 0.0, 0.0]))
buffer.set_transform("base", "sensor", Pose(position=[0.0, 0.0, 0.5]))
buffer.lookup_transform("map", "sensor").position  # array([1. , 0. , 0.5])
```

An unknown or unconnected frame raises `TransformError`.

## Input sources and sensor processors

The `inputs` parameter of a `Node` lists the input source names. For each
name the parameters `<name>.type`, `<name>.topic`, `<name>.queue_size`,
`<name>.publish_on_update` and `<name>.sensor_processor.type` are read; the
processor type is one of `laser`, `perfect`, `stereo` or
`structured_light`. The parameters `robot_base_frame_id` and
`map_frame_id` must be declared before configuring.

```python
from elevmap.geometry import TransformBuffer
from elevmap.input_manager import InputSourceManager
from elevmap.node import Node

node = Node("elevation_mapping", parameter_overrides={
    "inputs": ["front"],
    "front.type": "pointcloud",
    "front.topic": "points",
    "front.sensor_processor.type": "laser",
})
node.declare_parameter("robot_base_frame_id", "base")
node.declare_parameter("map_frame_id", "map")

manager = InputSourceManager(node, TransformBuffer())
manager.configure_from_parameters("input_sources")  # True

def on_points(message, publish_on_update, processor):
    ...

manager.register_callbacks({"pointcloud": on_points})
node.create_publisher("/points").publish(message)  # calls on_points
```

Two inputs on the same topic, or an unknown processor type, make
`configure` return `False`; a source type without a callback makes
`register_callbacks` return `False`.

`SensorProcessorBase.process(point_cloud, robot_pose_covariance,
sensor_frame)` returns the cloud in the map frame and one `float32` height
variance per point. On the way it removes non-finite points from clouds
not marked dense, applies a voxel grid filter when
`apply_voxelgrid_filter` is set, applies the sensor's own depth cutoff
(stereo and structured light), transforms the cloud into the map frame
and, when `ignore_points_above` or `ignore_points_below` is finite, keeps
only points within that height band around the robot base and outside
the `ignore_points_inside_*` box. A missing transform raises
`TransformError`.

## Postprocessing

A `PostprocessorPool` runs a chain of filters (callables taking and
returning a map) on worker threads and publishes each result on the topic
named by the `output_topic` parameter (default `elevation_map_raw_post`).
Without a filter chain, or when a filter fails, the map is forwarded
unchanged. `run_task` returns `False` when every worker is busy; the map
is then skipped.

```python
from elevmap.postprocessing import PostprocessorPool

with PostprocessorPool(2, node, filter_chain=[my_filter]) as pool:
    pool.run_task(grid)
```

## Robot motion updates

`RobotMotionMapUpdater.update(grid, robot_pose, robot_pose_covariance,
time)` takes an `ElevationGrid`, the current robot `Pose`, its 6×6 pose
covariance (scaled by the `robot_motion_map_update/covariance_scale`
parameter once `read_parameters()` has been called) and a time stamp, and
returns a `VarianceUpdate` with the per-cell vertical and horizontal
variance increments. Cells without a finite height receive infinite
increments. A time stamp equal to the previous one returns `None`.

## Conversions

- `to_occupancy_grid(grid, layer, min_height, max_height)` scales a layer
  linearly onto occupancy values 0–100, with -1 for unknown cells.
- `binarize_occupancy(data)` turns every value above 0 into 100.
- `to_point_cloud(grid, layer)` gives one point per finite cell.
- `odometry_from_transform(pose)` gives an `Odometry` with a (w, x, y, z)
  orientation and a fixed diagonal covariance of 0.1.

A missing layer raises `KeyError`.

## What it does not do

- There is no command-line program and no network transport: `Node` and
  `Publisher` deliver messages only within the running process.
- There is no elevation map that stores and fuses measurements over time.
  `RobotMotionMapUpdater` returns the variance increments but does not
  apply them, and nothing loads or saves maps.