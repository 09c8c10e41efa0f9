"""Common point cloud processing shared by all sensor models."""

from __future__ import annotations

import abc
import math
from dataclasses import dataclass, field

import numpy as np

from elevmap.geometry import Pose, TransformBuffer
from elevmap.node import Node
from elevmap.point_cloud import PointCloud
from elevmap.threadsafe import ThreadSafeDataWrapper


def _as_xyz(points) -> np.ndarray:
    if isinstance(points, PointCloud):
        return points.xyz
    xyz = np.asarray(points, dtype=float)
    if xyz.size == 0:
        return xyz.reshape(0, 3)
    if xyz.ndim != 2 or xyz.shape[1] != 3:
        raise ValueError(f"points must have shape (N, 3), got {xyz.shape}")
    return xyz


def pass_through_indices(points, lower: float, upper: float) -> np.ndarray:
    """Indices of finite points whose z lies in the closed interval [lower, upper]."""
    xyz = _as_xyz(points)
    finite = np.isfinite(xyz).all(axis=1)
    z = xyz[:, 2]
    with np.errstate(invalid="ignore"):
        inside = finite & (z >= lower) & (z <= upper)
    return np.flatnonzero(inside)


def crop_box_indices(points, minimum, maximum, negative: bool = False) -> np.ndarray:
    """Indices of finite points inside the box, or outside it when ``negative``."""
    xyz = _as_xyz(points)
    low = np.asarray(minimum, dtype=float).reshape(-1)[:3]
    high = np.asarray(maximum, dtype=float).reshape(-1)[:3]
    finite = np.isfinite(xyz).all(axis=1)
    with np.errstate(invalid="ignore"):
        inside = ((xyz >= low) & (xyz <= high)).all(axis=1)
    selected = ~inside if negative else inside
    return np.flatnonzero(finite & selected)


def voxel_grid_filter(cloud: PointCloud, leaf_size: float) -> PointCloud:
    """Replace the points of every cubic voxel by their centroid."""
    if not leaf_size > 0.0:
        raise ValueError(f"voxel leaf size must be positive, got {leaf_size}")
    cloud = cloud.select(np.isfinite(cloud.xyz).all(axis=1))
    if len(cloud) == 0:
        return PointCloud(frame_id=cloud.frame_id, stamp=cloud.stamp, is_dense=True)

    keys = np.floor(cloud.xyz / leaf_size).astype(np.int64)
    # Voxels are ordered with x varying fastest, then y, then z.
    _, inverse, counts = np.unique(
        keys[:, ::-1], axis=0, return_inverse=True, return_counts=True
    )
    inverse = np.asarray(inverse).reshape(-1)

    def mean(values: np.ndarray) -> np.ndarray:
        return np.bincount(inverse, weights=values) / counts

    xyz = np.column_stack([mean(cloud.xyz[:, axis]) for axis in range(3)])
    rgba = cloud.rgba.astype(np.uint64)
    channels = [
        np.floor(mean(((rgba >> shift) & 0xFF).astype(float))).astype(np.uint64)
        for shift in (24, 16, 8, 0)
    ]
    packed = (channels[0] << 24) | (channels[1] << 16) | (channels[2] << 8) | channels[3]
    return PointCloud(
        xyz=xyz,
        rgba=packed.astype(np.uint32),
        confidence_ratio=mean(cloud.confidence_ratio),
        frame_id=cloud.frame_id,
        stamp=cloud.stamp,
        is_dense=True,
    )


@dataclass(frozen=True)
class GeneralParameters:
    """Frames every sensor processor needs to know."""

    robot_base_frame_id: str = "robot"
    map_frame_id: str = "map"


@dataclass
class SensorProcessorParameters:
    """Filtering limits read for one input source."""

    ignore_points_upper_threshold: float = math.inf
    ignore_points_lower_threshold: float = -math.inf
    ignore_points_inside_min_x: float = 0.0
    ignore_points_inside_max_x: float = 0.0
    ignore_points_inside_min_y: float = 0.0
    ignore_points_inside_max_y: float = 0.0
    ignore_points_inside_min_z: float = 0.0
    ignore_points_inside_max_z: float = 0.0
    apply_voxel_grid_filter: bool = False


class SensorProcessorBase(abc.ABC):
    """Cleans a point cloud, moves it into the map frame and computes height variances."""

    def __init__(
        self,
        node: Node,
        general_parameters: GeneralParameters | None = None,
        transform_buffer: TransformBuffer | None = None,
    ) -> None:
        self.node = node
        self.general_parameters = general_parameters or GeneralParameters()
        self.transform_buffer = transform_buffer if transform_buffer is not None else TransformBuffer()
        self.sensor_frame_id = ""
        self.sensor_parameters: dict[str, float] = {}
        self._parameters = ThreadSafeDataWrapper(SensorProcessorParameters())
        self._first_tf_available = False

        self.rotation_base_to_sensor = np.eye(3)
        self.translation_base_to_sensor_in_base_frame = np.zeros(3)
        self.rotation_map_to_base = np.eye(3)
        self.translation_map_to_base_in_map_frame = np.zeros(3)
        self.transformation_sensor_to_map = Pose()

    @property
    def parameters(self) -> SensorProcessorParameters:
        """A copy of the current filtering parameters."""
        return self._parameters.get()

    def _declare(self, input_source_name: str, key: str, default):
        return self.node.declare_parameter(f"{input_source_name}.sensor_processor.{key}", default)

    def read_parameters(self, input_source_name: str) -> None:
        """Declare and read the filtering parameters of ``input_source_name``."""
        declare = self._declare
        above = declare(input_source_name, "ignore_points_above", math.inf)
        below = declare(input_source_name, "ignore_points_below", -math.inf)
        apply_voxel = declare(input_source_name, "apply_voxelgrid_filter", False)
        voxel_size = declare(input_source_name, "voxelgrid_filter_size", 0.0)
        box = {
            key: declare(input_source_name, f"ignore_points_inside_{key}", 0.0)
            for key in ("min_x", "max_x", "min_y", "max_y", "min_z", "max_z")
        }
        self._parameters.set(
            SensorProcessorParameters(
                ignore_points_upper_threshold=above,
                ignore_points_lower_threshold=below,
                ignore_points_inside_min_x=box["min_x"],
                ignore_points_inside_max_x=box["max_x"],
                ignore_points_inside_min_y=box["min_y"],
                ignore_points_inside_max_y=box["max_y"],
                ignore_points_inside_min_z=box["min_z"],
                ignore_points_inside_max_z=box["max_z"],
                apply_voxel_grid_filter=apply_voxel,
            )
        )
        self.sensor_parameters["voxelgrid_filter_size"] = voxel_size

    def process(self, point_cloud: PointCloud, robot_pose_covariance, sensor_frame: str):
        """Return the cleaned cloud in the map frame and its height variances.

        Raises TransformError when a needed transform is unavailable.
        """
        self.sensor_frame_id = sensor_frame
        self.update_transformations()

        sensor_cloud = self.filter_point_cloud(point_cloud)
        sensor_cloud = self.filter_point_cloud_sensor_type(sensor_cloud)
        map_cloud = self.transform_point_cloud(sensor_cloud, self.general_parameters.map_frame_id)

        map_cloud, sensor_cloud = self.remove_points_outside_limits(map_cloud, [map_cloud, sensor_cloud])
        covariance = np.asarray(robot_pose_covariance, dtype=float)
        variances = self.compute_variances(sensor_cloud, covariance)
        return map_cloud, variances

    def update_transformations(self) -> None:
        """Refresh the sensor, base and map transforms; raises TransformError."""
        general = self.general_parameters
        buffer = self.transform_buffer
        sensor_to_map = buffer.lookup_transform(general.map_frame_id, self.sensor_frame_id)
        base_sensor = buffer.lookup_transform(general.robot_base_frame_id, self.sensor_frame_id)
        map_base = buffer.lookup_transform(general.map_frame_id, general.robot_base_frame_id)

        self.transformation_sensor_to_map = sensor_to_map
        self.rotation_base_to_sensor = np.array(base_sensor.rotation)
        self.translation_base_to_sensor_in_base_frame = np.array(base_sensor.position)
        self.rotation_map_to_base = np.array(map_base.rotation)
        self.translation_map_to_base_in_map_frame = np.array(map_base.position)
        self._first_tf_available = True

    def transform_point_cloud(self, point_cloud: PointCloud, target_frame: str) -> PointCloud:
        """Return ``point_cloud`` expressed in ``target_frame``; raises TransformError."""
        transform = self.transform_buffer.lookup_transform(target_frame, point_cloud.frame_id)
        return point_cloud.transformed(transform, target_frame)

    def remove_points_outside_limits(self, reference: PointCloud, point_clouds: list[PointCloud]) -> list[PointCloud]:
        """Drop points outside the height band and inside the ignore box, judged on ``reference``."""
        parameters = self.parameters
        clouds = list(point_clouds)
        if not math.isfinite(parameters.ignore_points_lower_threshold) and not math.isfinite(
            parameters.ignore_points_upper_threshold
        ):
            return clouds

        base = self.translation_map_to_base_in_map_frame
        inside = pass_through_indices(
            reference,
            base[2] + parameters.ignore_points_lower_threshold,
            base[2] + parameters.ignore_points_upper_threshold,
        )
        clouds = [cloud.select(inside) for cloud in clouds]

        minimum = np.array([
            parameters.ignore_points_inside_min_x,
            parameters.ignore_points_inside_min_y,
            parameters.ignore_points_inside_min_z,
        ]) + base
        maximum = np.array([
            parameters.ignore_points_inside_max_x,
            parameters.ignore_points_inside_max_y,
            parameters.ignore_points_inside_max_z,
        ]) + base
        outside_box = crop_box_indices(clouds[0], minimum, maximum, negative=True)
        return [cloud.select(outside_box) for cloud in clouds]

    def filter_point_cloud(self, point_cloud: PointCloud) -> PointCloud:
        """Remove non-finite points and, if enabled, thin the cloud with a voxel grid."""
        cloud = point_cloud
        if not cloud.is_dense:
            cloud = cloud.select(np.isfinite(cloud.xyz).all(axis=1))
            cloud.is_dense = True
        if self.parameters.apply_voxel_grid_filter:
            cloud = voxel_grid_filter(cloud, self.sensor_parameters["voxelgrid_filter_size"])
        return cloud

    def filter_point_cloud_sensor_type(self, point_cloud: PointCloud) -> PointCloud:
        """Sensor specific cleaning; the base processor keeps every point."""
        return point_cloud

    @abc.abstractmethod
    def compute_variances(self, point_cloud: PointCloud, robot_pose_covariance) -> np.ndarray:
        """Return the height variance of every point of ``point_cloud``."""

    def is_tf_available(self) -> bool:
        """True once a complete set of transforms has been found."""
        return self._first_tf_available