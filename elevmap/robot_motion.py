"""Propagates the robot pose uncertainty into the variances of the elevation map."""

from __future__ import annotations

import math
import time as _time
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from elevmap.geometry import (
    Pose,
    euler_zyx_from_matrix,
    rotation_matrix_from_rotation_vector,
    rotation_vector_from_matrix,
    skew,
)

ELEVATION_LAYER = "elevation"
COVARIANCE_SCALE_PARAMETER = "robot_motion_map_update/covariance_scale"


@dataclass
class ElevationGrid:
    """Regular grid of named layers, centred at ``position`` in the map frame.

    Index (0, 0) is the cell with the largest x and y coordinates; the first
    index runs along -x and the second along -y.
    """

    layers: dict[str, np.ndarray]
    resolution: float
    position: np.ndarray = field(default_factory=lambda: np.zeros(2))
    pose: Pose = field(default_factory=Pose)
    frame_id: str = "map"

    def __post_init__(self) -> None:
        if not self.resolution > 0.0:
            raise ValueError(f"resolution must be positive, got {self.resolution}")
        if not self.layers:
            raise ValueError("a grid needs at least one layer")
        layers = {name: np.array(values, dtype=float) for name, values in self.layers.items()}
        shapes = {values.shape for values in layers.values()}
        if len(shapes) != 1 or len(next(iter(shapes))) != 2:
            raise ValueError("all layers must be two-dimensional arrays of the same shape")
        self.layers = layers
        self.position = np.array(self.position, dtype=float).reshape(2)

    @classmethod
    def from_elevation(cls, elevation, resolution: float, position=(0.0, 0.0), **kwargs: Any) -> "ElevationGrid":
        """Grid with just an elevation layer."""
        return cls(layers={ELEVATION_LAYER: elevation}, resolution=resolution, position=position, **kwargs)

    @property
    def size(self) -> tuple[int, int]:
        rows, columns = next(iter(self.layers.values())).shape
        return rows, columns

    @property
    def length(self) -> np.ndarray:
        """Side lengths of the grid in x and y."""
        return np.array(self.size, dtype=float) * self.resolution

    def __getitem__(self, layer: str) -> np.ndarray:
        return self.layers[layer]

    def __contains__(self, layer: object) -> bool:
        return layer in self.layers

    def _origin(self) -> np.ndarray:
        return self.position + 0.5 * self.length

    def cell_position(self, index) -> np.ndarray:
        """Map-frame (x, y) of the centre of the cell at ``index``."""
        i, j = (int(k) for k in index)
        rows, columns = self.size
        if not (0 <= i < rows and 0 <= j < columns):
            raise IndexError(f"cell index {(i, j)} outside a grid of size {(rows, columns)}")
        return self._origin() - (np.array([i, j], dtype=float) + 0.5) * self.resolution

    def cell_positions(self) -> tuple[np.ndarray, np.ndarray]:
        """x and y coordinates of every cell centre, each shaped like a layer."""
        rows, columns = self.size
        i, j = np.meshgrid(np.arange(rows), np.arange(columns), indexing="ij")
        origin = self._origin()
        return origin[0] - (i + 0.5) * self.resolution, origin[1] - (j + 0.5) * self.resolution


@dataclass
class VarianceUpdate:
    """Per-cell variance increments caused by the robot motion; infinite for empty cells."""

    variance: np.ndarray
    horizontal_variance_x: np.ndarray
    horizontal_variance_y: np.ndarray
    horizontal_variance_xy: np.ndarray
    time: float


class RobotMotionMapUpdater:
    """Computes the map variance update from the pose covariance of the robot."""

    def __init__(self, node: Any = None, initial_time: float | None = None) -> None:
        self.node = node
        self.covariance_scale = 1.0
        self.previous_update_time = _time.time() if initial_time is None else initial_time
        self.previous_robot_pose = Pose()
        self.previous_reduced_covariance = np.zeros((4, 4))

    def read_parameters(self) -> None:
        """Read the covariance scale from the node (default 1.0)."""
        if self.node is None:
            raise RuntimeError("no node to read parameters from")
        self.covariance_scale = float(self.node.declare_parameter(COVARIANCE_SCALE_PARAMETER, 1.0))

    def update(self, grid: ElevationGrid, robot_pose: Pose, robot_pose_covariance, time: float) -> VarianceUpdate | None:
        """Return the variance update for ``grid``, or None if no update is needed at ``time``."""
        covariance = np.asarray(robot_pose_covariance, dtype=float)
        if covariance.shape != (6, 6):
            raise ValueError(f"robot pose covariance must be 6x6, got {covariance.shape}")
        covariance = self.covariance_scale * covariance

        if self.previous_update_time == time:
            return None

        reduced = self.compute_reduced_covariance(robot_pose, covariance)
        relative = self.compute_relative_covariance(robot_pose, reduced)

        position_covariance = relative[:3, :3]
        yaw_variance = relative[3, 3]

        map_rotation = grid.pose.rotation
        map_to_robot = robot_pose.rotation.T @ map_rotation
        map_to_previous_robot_inverted = (self.previous_robot_pose.rotation.T @ map_rotation).T

        translation_jacobian = -map_to_robot.T
        translation_update = np.diag(translation_jacobian @ position_covariance @ translation_jacobian.T)

        position_robot_to_map = grid.pose.inverse_rotate(grid.pose.position - self.previous_robot_pose.position)

        height = grid[ELEVATION_LAYER]
        valid = np.isfinite(height)
        xs, ys = grid.cell_positions()
        cells = np.stack([xs, ys, np.where(valid, height, 0.0)], axis=-1) + position_robot_to_map

        # Only the yaw entry of the rotation covariance is set, so only the third
        # column of the rotation Jacobian -skew(r) * R contributes.
        column = -np.cross(cells, map_to_previous_robot_inverted[:, 2])
        rotation_xx = yaw_variance * column[..., 0] ** 2
        rotation_yy = yaw_variance * column[..., 1] ** 2
        rotation_xy = yaw_variance * column[..., 0] * column[..., 1]

        def masked(values) -> np.ndarray:
            return np.where(valid, values, np.inf).astype(np.float32)

        result = VarianceUpdate(
            variance=masked(np.full(height.shape, translation_update[2])),
            horizontal_variance_x=masked(translation_update[0] + rotation_xx),
            horizontal_variance_y=masked(translation_update[1] + rotation_yy),
            horizontal_variance_xy=masked(rotation_xy),
            time=time,
        )
        self.previous_reduced_covariance = reduced
        self.previous_robot_pose = robot_pose
        return result

    def compute_reduced_covariance(self, robot_pose: Pose, robot_pose_covariance) -> np.ndarray:
        """Reduce the 6x6 (x, y, z, roll, pitch, yaw) covariance to 4x4 (x, y, z, yaw)."""
        covariance = np.asarray(robot_pose_covariance, dtype=float)
        yaw, pitch, _ = euler_zyx_from_matrix(robot_pose.rotation)
        tan_pitch = math.tan(pitch)
        jacobian = np.zeros((4, 6))
        jacobian[:3, :3] = np.eye(3)
        jacobian[3, 3:] = [math.cos(yaw) * tan_pitch, math.sin(yaw) * tan_pitch, 1.0]
        return jacobian @ covariance @ jacobian.T

    def compute_relative_covariance(self, robot_pose: Pose, reduced_covariance) -> np.ndarray:
        """Covariance between the current and the previous pose, in reduced form."""
        reduced = np.asarray(reduced_covariance, dtype=float)
        yaw_only = np.array([0.0, 0.0, rotation_vector_from_matrix(robot_pose.rotation)[2]])
        rotation_z_aligned = rotation_matrix_from_rotation_vector(yaw_only)

        previous = self.previous_robot_pose
        displacement = previous.inverse_rotate(robot_pose.position - previous.position)

        f = np.eye(4)
        f[:3, 3] = skew([0.0, 0.0, 1.0]) @ rotation_z_aligned @ displacement

        inv_g = np.zeros((4, 4))
        inv_g[3, 3] = 1.0
        inv_g_transpose = inv_g.copy()
        inv_g[:3, :3] = rotation_z_aligned.T
        inv_g_transpose[:3, :3] = rotation_z_aligned

        return inv_g @ (reduced - f @ self.previous_reduced_covariance @ f.T) @ inv_g_transpose