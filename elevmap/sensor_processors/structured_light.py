"""Noise model for structured light (PrimeSense-type) depth sensors.

The standard deviation in normal direction is
``a + b * (distance - c)**2 + d * distance**e`` and the lateral standard
deviation is ``lateral_factor * distance``, where the distance is the
depth of the point along the sensor's z-axis.
"""

from __future__ import annotations

import sys

import numpy as np

from elevmap.geometry import skew
from elevmap.point_cloud import PointCloud
from elevmap.sensor_processors.base import SensorProcessorBase, pass_through_indices

_PROJECTION = np.array([0.0, 0.0, 1.0])
_MODEL_KEYS = (
    "normal_factor_a",
    "normal_factor_b",
    "normal_factor_c",
    "normal_factor_d",
    "normal_factor_e",
    "lateral_factor",
)
# Smallest positive normal single precision number; keeps the confidence scaling finite.
_EPSILON = float(np.finfo(np.float32).tiny)


class StructuredLightSensorProcessor(SensorProcessorBase):
    """Sensor processor for structured light sensors with per-point confidence."""

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

    def compute_variances(self, point_cloud: PointCloud, robot_pose_covariance) -> np.ndarray:
        """Height variance of every point; the sensor part is scaled by 1 / confidence**2."""
        covariance = np.asarray(robot_pose_covariance, dtype=float)
        if covariance.shape != (6, 6):
            raise ValueError(f"robot pose covariance must be 6x6, got {covariance.shape}")
        params = {key: self.sensor_parameters[key] for key in _MODEL_KEYS}

        xyz = point_cloud.xyz
        confidence = point_cloud.confidence_ratio

        sensor_jacobian = _PROJECTION @ (self.rotation_map_to_base.T @ self.rotation_base_to_sensor.T)
        rotation_variance = covariance[3:, 3:]
        projected_map_to_base = _PROJECTION @ self.rotation_map_to_base.T
        base_to_sensor_skew = skew(self.translation_base_to_sensor_in_base_frame)

        depth = xyz[:, 2]
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            deviation_normal = (
                params["normal_factor_a"]
                + params["normal_factor_b"] * (depth - params["normal_factor_c"]) ** 2
                + params["normal_factor_d"] * np.power(depth, params["normal_factor_e"])
            )
        variance_normal = deviation_normal**2
        variance_lateral = (params["lateral_factor"] * depth) ** 2

        in_base = xyz @ self.rotation_base_to_sensor
        rotation_jacobian = np.cross(projected_map_to_base, in_base) + projected_map_to_base @ base_to_sensor_skew
        rotation_term = np.einsum("ni,ij,nj->n", rotation_jacobian, rotation_variance, rotation_jacobian)
        sensor_term = (
            variance_lateral * (sensor_jacobian[0] ** 2 + sensor_jacobian[1] ** 2)
            + variance_normal * sensor_jacobian[2] ** 2
        )
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            scaled_sensor_term = sensor_term / (_EPSILON + confidence * confidence)
        return (rotation_term + scaled_sensor_term).astype(np.float32)

    def filter_point_cloud_sensor_type(self, point_cloud: PointCloud) -> PointCloud:
        """Keep only points whose depth lies within the cutoff interval."""
        inside = pass_through_indices(
            point_cloud,
            self.sensor_parameters["cutoff_min_depth"],
            self.sensor_parameters["cutoff_max_depth"],
        )
        return point_cloud.select(inside)