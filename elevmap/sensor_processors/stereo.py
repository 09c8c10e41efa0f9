"""Sensor model for stereo cameras, with disparity based depth noise."""

from __future__ import annotations

import sys

import numpy as np

from elevmap.geometry import skew
from elevmap.point_cloud import PointCloud
from elevmap.sensor_processors.base import SensorProcessorBase, pass_through_indices

_PROJECTION = np.array([0.0, 0.0, 1.0])
_MODEL_KEYS = ("p_1", "p_2", "p_3", "p_4", "p_5", "lateral_factor", "depth_to_disparity_factor")


class StereoSensorProcessor(SensorProcessorBase):
    """Sensor processor for stereo camera sensors.

    ``indices`` holds the original (image) index of every point of the
    cleaned cloud; when unset, a point's position in the cloud is used.
    ``original_width`` is the image width used to split an index into
    row and column.
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.indices: np.ndarray | None = None
        self.original_width = 1

    def read_parameters(self, input_source_name: str) -> None:
        """Read the common filters, the noise model and the depth cutoff."""
        super().read_parameters(input_source_name)
        for key in _MODEL_KEYS:
            self.sensor_parameters[key] = self._declare(input_source_name, key, 0.0)
        self.sensor_parameters["cutoff_min_depth"] = self._declare(
            input_source_name, "cutoff_min_depth", sys.float_info.min
        )
        self.sensor_parameters["cutoff_max_depth"] = self._declare(
            input_source_name, "cutoff_max_depth", sys.float_info.max
        )

    def _image_coordinates(self, count: int) -> tuple[np.ndarray, np.ndarray]:
        positions = np.arange(count)
        original = positions if self.indices is None else np.asarray(self.indices, dtype=int)[positions]
        return original // self.original_width, original % self.original_width

    def compute_variances(self, point_cloud: PointCloud, robot_pose_covariance) -> np.ndarray:
        """Height variance of every point from the stereo model and the pose covariance."""
        covariance = np.asarray(robot_pose_covariance, dtype=float)
        if covariance.shape != (6, 6):
            raise ValueError(f"robot pose covariance must be 6x6, got {covariance.shape}")
        params = {key: self.sensor_parameters[key] for key in _MODEL_KEYS}

        xyz = point_cloud.xyz
        row, column = self._image_coordinates(len(xyz))

        sensor_jacobian = _PROJECTION @ (self.rotation_map_to_base.T @ self.rotation_base_to_sensor.T)
        rotation_variance = covariance[3:, 3:]
        projected_map_to_base = _PROJECTION @ self.rotation_map_to_base.T
        base_to_sensor_skew = skew(self.translation_base_to_sensor_in_base_frame)

        factor = params["depth_to_disparity_factor"]
        with np.errstate(divide="ignore", invalid="ignore"):
            disparity = factor / xyz[:, 2]
            variance_normal = (factor / disparity**2) ** 2 * (
                (params["p_5"] * disparity + params["p_2"])
                * np.sqrt((params["p_3"] * disparity + params["p_4"] - column) ** 2 + (240 - row) ** 2)
                + params["p_1"]
            )
        distance = np.linalg.norm(xyz, axis=1)
        variance_lateral = (params["lateral_factor"] * distance) ** 2

        in_base = xyz @ self.rotation_base_to_sensor
        rotation_jacobian = np.cross(projected_map_to_base, in_base) + projected_map_to_base @ base_to_sensor_skew
        rotation_term = np.einsum("ni,ij,nj->n", rotation_jacobian, rotation_variance, rotation_jacobian)
        sensor_term = (
            variance_lateral * (sensor_jacobian[0] ** 2 + sensor_jacobian[1] ** 2)
            + variance_normal * sensor_jacobian[2] ** 2
        )
        return (rotation_term + sensor_term).astype(np.float32)

    def filter_point_cloud_sensor_type(self, point_cloud: PointCloud) -> PointCloud:
        """Keep only points whose depth lies within the cutoff interval."""
        inside = pass_through_indices(
            point_cloud,
            self.sensor_parameters["cutoff_min_depth"],
            self.sensor_parameters["cutoff_max_depth"],
        )
        return point_cloud.select(inside)