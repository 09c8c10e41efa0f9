"""Noiseless, perfect sensor: only the robot pose uncertainty contributes."""

from __future__ import annotations

import numpy as np

from elevmap.geometry import skew
from elevmap.point_cloud import PointCloud
from elevmap.sensor_processors.base import SensorProcessorBase

_PROJECTION = np.array([0.0, 0.0, 1.0])


class PerfectSensorProcessor(SensorProcessorBase):
    """Sensor processor for a sensor without measurement noise."""

    def read_parameters(self, input_source_name: str) -> None:
        """Read the common filtering parameters; the model has none of its own."""
        super().read_parameters(input_source_name)

    def compute_variances(self, point_cloud: PointCloud, robot_pose_covariance) -> np.ndarray:
        """Height variance of every point caused by the robot rotation covariance."""
        covariance = np.asarray(robot_pose_covariance, dtype=float)
        if covariance.shape != (6, 6):
            raise ValueError(f"robot pose covariance must be 6x6, got {covariance.shape}")

        xyz = point_cloud.xyz
        rotation_variance = covariance[3:, 3:]
        projected_map_to_base = _PROJECTION @ self.rotation_map_to_base.T
        base_to_sensor_skew = skew(self.translation_base_to_sensor_in_base_frame)

        in_base = xyz @ self.rotation_base_to_sensor
        rotation_jacobian = np.cross(projected_map_to_base, in_base) + projected_map_to_base @ base_to_sensor_skew
        rotation_term = np.einsum("ni,ij,nj->n", rotation_jacobian, rotation_variance, rotation_jacobian)
        # The sensor covariance is zero, so the sensor term vanishes.
        return rotation_term.astype(np.float32)