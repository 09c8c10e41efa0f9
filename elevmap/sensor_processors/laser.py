"""Anisotropic laser range sensor model.

The standard deviation in beam direction is ``min_radius``; the standard
deviation of the beam radius is ``beam_constant + beam_angle * distance``.
"""

from __future__ import annotations

import numpy as np

from elevmap.geometry import skew
from elevmap.point_cloud import PointCloud
from elevmap.sensor_processors.base import SensorProcessorBase

_PROJECTION = np.array([0.0, 0.0, 1.0])


def _checked_covariance(robot_pose_covariance) -> np.ndarray:
    covariance = np.asarray(robot_pose_covariance, dtype=float)
    if covariance.shape != (6, 6):
        raise ValueError(f"robot pose covariance must be 6x6, got {covariance.shape}")
    return covariance


class LaserSensorProcessor(SensorProcessorBase):
    """Sensor processor for laser range sensors."""

    def read_parameters(self, input_source_name: str) -> None:
        """Read the common filters and the laser noise model parameters."""
        super().read_parameters(input_source_name)
        for key in ("min_radius", "beam_angle", "beam_constant"):
            self.sensor_parameters[key] = self._declare(input_source_name, key, 0.0)

    def compute_variances(self, point_cloud: PointCloud, robot_pose_covariance) -> np.ndarray:
        """Height variance of every point from the sensor model and the pose covariance."""
        covariance = _checked_covariance(robot_pose_covariance)
        variance_normal = self.sensor_parameters["min_radius"] ** 2
        beam_constant = self.sensor_parameters["beam_constant"]
        beam_angle = self.sensor_parameters["beam_angle"]

        xyz = point_cloud.xyz
        sensor_jacobian = _PROJECTION @ (self.rotation_map_to_base @ self.rotation_base_to_sensor.T)
        rotation_variance = covariance[3:, 3:]
        projected_map_to_base = _PROJECTION @ self.rotation_map_to_base.T
        base_to_sensor_skew = skew(self.translation_base_to_sensor_in_base_frame)

        # P * C_BM^T * skew(v) equals the cross product of P * C_BM^T with v.
        in_base = xyz @ self.rotation_base_to_sensor
        rotation_jacobian = np.cross(projected_map_to_base, in_base) + projected_map_to_base @ base_to_sensor_skew
        rotation_term = np.einsum("ni,ij,nj->n", rotation_jacobian, rotation_variance, rotation_jacobian)

        distance = np.linalg.norm(xyz, axis=1)
        variance_lateral = (beam_constant + beam_angle * distance) ** 2
        sensor_term = (
            variance_lateral * (sensor_jacobian[0] ** 2 + sensor_jacobian[1] ** 2)
            + variance_normal * sensor_jacobian[2] ** 2
        )
        return (rotation_term + sensor_term).astype(np.float32)