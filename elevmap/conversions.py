"""Conversions of elevation grids into occupancy grids, point clouds and odometry."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable

import numpy as np

from elevmap.geometry import Pose
from elevmap.point_cloud import PointCloud
from elevmap.robot_motion import ElevationGrid

OCCUPIED = 100
UNKNOWN = -1
POSE_VARIANCE = 0.1


@dataclass
class OccupancyGrid:
    """Occupancy values 0..100 (-1 unknown), stored row-major from the origin corner."""

    resolution: float
    width: int
    height: int
    origin: np.ndarray
    data: list[int] = field(default_factory=list)
    frame_id: str = ""


@dataclass
class Odometry:
    """Pose with a (w, x, y, z) orientation and a row-major 6x6 covariance."""

    position: np.ndarray
    orientation: tuple[float, float, float, float]
    covariance: tuple[float, ...]


def _layer(grid: ElevationGrid, layer: str) -> np.ndarray:
    if layer not in grid:
        raise KeyError(f"Layer '{layer}' does not exist in GridMap.")
    return grid[layer]


def to_occupancy_grid(grid: ElevationGrid, layer: str, min_height: float, max_height: float) -> OccupancyGrid:
    """Scale ``layer`` linearly from [min_height, max_height] to occupancy 0..100."""
    if max_height == min_height:
        raise ValueError("min_height and max_height must differ")
    values = _layer(grid, layer)
    with np.errstate(invalid="ignore"):
        scaled = (values - min_height) / (max_height - min_height)
        cells = np.where(np.isnan(scaled), UNKNOWN, np.clip(scaled, 0.0, 1.0) * OCCUPIED)
    # Occupancy grids run from the opposite corner to the grid's index order.
    data = np.trunc(cells).astype(np.int8).flatten(order="F")[::-1]
    rows, columns = grid.size
    origin = np.array([*(grid.position - 0.5 * grid.length), 0.0])
    return OccupancyGrid(
        resolution=grid.resolution,
        width=rows,
        height=columns,
        origin=origin,
        data=[int(v) for v in data],
        frame_id=grid.frame_id,
    )


def binarize_occupancy(data: Iterable[int]) -> list[int]:
    """Mark every partly occupied cell as fully occupied; free and unknown stay."""
    return [OCCUPIED if value > 0 else value for value in data]


def to_point_cloud(grid: ElevationGrid, layer: str) -> PointCloud:
    """One point per cell with a finite ``layer`` value, at (x, y, value)."""
    values = _layer(grid, layer)
    xs, ys = grid.cell_positions()
    valid = np.isfinite(values).flatten(order="F")
    xyz = np.column_stack(
        [xs.flatten(order="F"), ys.flatten(order="F"), values.flatten(order="F")]
    )[valid]
    return PointCloud(xyz=xyz, frame_id=grid.frame_id)


def _matrix_to_quaternion(r: np.ndarray) -> tuple[float, float, float, float]:
    diagonal_sum = float(r[0, 0] + r[1, 1] + r[2, 2])
    if diagonal_sum > 0.0:
        s = math.sqrt(diagonal_sum + 1.0) * 2.0
        q = (0.25 * s, (r[2, 1] - r[1, 2]) / s, (r[0, 2] - r[2, 0]) / s, (r[1, 0] - r[0, 1]) / s)
    elif r[0, 0] > r[1, 1] and r[0, 0] > r[2, 2]:
        s = math.sqrt(1.0 + r[0, 0] - r[1, 1] - r[2, 2]) * 2.0
        q = ((r[2, 1] - r[1, 2]) / s, 0.25 * s, (r[0, 1] + r[1, 0]) / s, (r[0, 2] + r[2, 0]) / s)
    elif r[1, 1] > r[2, 2]:
        s = math.sqrt(1.0 + r[1, 1] - r[0, 0] - r[2, 2]) * 2.0
        q = ((r[0, 2] - r[2, 0]) / s, (r[0, 1] + r[1, 0]) / s, 0.25 * s, (r[1, 2] + r[2, 1]) / s)
    else:
        s = math.sqrt(1.0 + r[2, 2] - r[0, 0] - r[1, 1]) * 2.0
        q = ((r[1, 0] - r[0, 1]) / s, (r[0, 2] + r[2, 0]) / s, (r[1, 2] + r[2, 1]) / s, 0.25 * s)
    quaternion = np.array(q, dtype=float)
    quaternion /= np.linalg.norm(quaternion)
    if quaternion[0] < 0.0:
        quaternion = -quaternion
    w, x, y, z = (float(v) for v in quaternion)
    return w, x, y, z


def odometry_from_transform(pose: Pose) -> Odometry:
    """Odometry for a looked-up transform, with a fixed diagonal covariance."""
    covariance = [0.0] * 36
    for k in range(6):
        covariance[7 * k] = POSE_VARIANCE
    return Odometry(
        position=np.array(pose.position, dtype=float),
        orientation=_matrix_to_quaternion(np.asarray(pose.rotation)),
        covariance=tuple(covariance),
    )