"""Point type with colour and confidence ratio, and a column-wise point cloud."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator

import numpy as np

_OPAQUE_BLACK = 0xFF000000


def _pack_rgba(r: int, g: int, b: int, a: int) -> int:
    return (a << 24) | (r << 16) | (g << 8) | b


@dataclass
class PointXYZRGBConfidenceRatio:
    """A 3-D point with an RGBA colour and a measurement confidence ratio."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    r: int = 0
    g: int = 0
    b: int = 0
    a: int = 255
    confidence_ratio: float = 1.0

    def __post_init__(self) -> None:
        for channel in (self.r, self.g, self.b, self.a):
            if not 0 <= channel <= 255:
                raise ValueError(f"colour channel out of range: {channel}")

    @property
    def rgba(self) -> int:
        """The colour packed as a 32-bit integer, alpha in the top byte."""
        return _pack_rgba(self.r, self.g, self.b, self.a)

    def __str__(self) -> str:
        return (
            f"({self.x:g},{self.y:g},{self.z:g} - {self.r},{self.g},{self.b},{self.a}"
            f" - {self.confidence_ratio:g})"
        )


@dataclass(eq=False)
class PointCloud:
    """Points stored column-wise; ``stamp`` is in microseconds."""

    xyz: np.ndarray = field(default_factory=lambda: np.empty((0, 3)))
    rgba: np.ndarray | None = None
    confidence_ratio: np.ndarray | None = None
    frame_id: str = ""
    stamp: int = 0
    is_dense: bool = True

    def __post_init__(self) -> None:
        xyz = np.array(self.xyz, dtype=float)
        if xyz.size == 0:
            xyz = xyz.reshape(0, 3)
        if xyz.ndim != 2 or xyz.shape[1] != 3:
            raise ValueError(f"points must have shape (N, 3), got {xyz.shape}")
        count = len(xyz)
        rgba = (
            np.full(count, _OPAQUE_BLACK, dtype=np.uint32)
            if self.rgba is None
            else np.array(self.rgba, dtype=np.uint32).reshape(-1)
        )
        confidence = (
            np.ones(count) if self.confidence_ratio is None
            else np.array(self.confidence_ratio, dtype=float).reshape(-1)
        )
        if len(rgba) != count or len(confidence) != count:
            raise ValueError("all point fields must have the same length")
        self.xyz = xyz
        self.rgba = rgba
        self.confidence_ratio = confidence

    @classmethod
    def from_points(
        cls,
        points: Iterable[PointXYZRGBConfidenceRatio],
        frame_id: str = "",
        stamp: int = 0,
    ) -> "PointCloud":
        """Build a cloud from individual points."""
        points = list(points)
        return cls(
            xyz=[(p.x, p.y, p.z) for p in points],
            rgba=[p.rgba for p in points],
            confidence_ratio=[p.confidence_ratio for p in points],
            frame_id=frame_id,
            stamp=stamp,
        )

    @property
    def z(self) -> np.ndarray:
        return self.xyz[:, 2]

    def __len__(self) -> int:
        return len(self.xyz)

    def __iter__(self) -> Iterator[PointXYZRGBConfidenceRatio]:
        for (x, y, z), rgba, confidence in zip(self.xyz, self.rgba, self.confidence_ratio):
            rgba = int(rgba)
            yield PointXYZRGBConfidenceRatio(
                float(x), float(y), float(z),
                (rgba >> 16) & 0xFF, (rgba >> 8) & 0xFF, rgba & 0xFF, (rgba >> 24) & 0xFF,
                float(confidence),
            )

    def select(self, indices) -> "PointCloud":
        """Return a cloud with the points at ``indices`` (integer indices or a mask)."""
        indices = np.asarray(indices)
        if indices.dtype != bool:
            indices = indices.astype(int).reshape(-1)
        return PointCloud(
            xyz=self.xyz[indices],
            rgba=self.rgba[indices],
            confidence_ratio=self.confidence_ratio[indices],
            frame_id=self.frame_id,
            stamp=self.stamp,
            is_dense=self.is_dense,
        )

    def transformed(self, transform, frame_id: str) -> "PointCloud":
        """Return the cloud moved by ``transform`` (a pose or 4x4 matrix) into ``frame_id``."""
        if isinstance(transform, np.ndarray) or isinstance(transform, (list, tuple)):
            matrix = np.asarray(transform, dtype=float)
            if matrix.shape != (4, 4):
                raise ValueError("a transformation matrix must be 4x4")
            xyz = self.xyz @ matrix[:3, :3].T + matrix[:3, 3]
        else:
            xyz = transform.apply(self.xyz)
        return PointCloud(
            xyz=xyz,
            rgba=self.rgba,
            confidence_ratio=self.confidence_ratio,
            frame_id=frame_id,
            stamp=self.stamp,
            is_dense=self.is_dense,
        )