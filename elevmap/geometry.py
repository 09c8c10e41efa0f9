"""Rotations, rigid poses and a frame tree for transform lookups."""

from __future__ import annotations

import math
import threading
from collections import deque
from dataclasses import dataclass, field

import numpy as np


def skew(vector) -> np.ndarray:
    """Return the cross-product matrix of a 3-vector."""
    x, y, z = np.asarray(vector, dtype=float).reshape(3)
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def quaternion_to_matrix(quaternion) -> np.ndarray:
    """Rotation matrix of a quaternion given as (w, x, y, z); it is normalised first."""
    q = np.asarray(quaternion, dtype=float).reshape(4)
    norm = np.linalg.norm(q)
    if norm == 0.0:
        raise ValueError("a zero quaternion is not a rotation")
    w, x, y, z = q / norm
    return np.array([
        [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
        [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
        [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
    ])


def euler_zyx_from_matrix(rotation) -> tuple[float, float, float]:
    """Return (yaw, pitch, roll) such that R = Rz(yaw) Ry(pitch) Rx(roll)."""
    r = np.asarray(rotation, dtype=float)
    cos_pitch = math.hypot(r[0, 0], r[1, 0])
    pitch = math.atan2(-r[2, 0], cos_pitch)
    if cos_pitch < 1e-9:
        if r[2, 0] < 0.0:
            return 0.0, pitch, math.atan2(r[0, 1], r[0, 2])
        return 0.0, pitch, math.atan2(-r[0, 1], -r[0, 2])
    return math.atan2(r[1, 0], r[0, 0]), pitch, math.atan2(r[2, 1], r[2, 2])


def rotation_vector_from_matrix(rotation) -> np.ndarray:
    """Axis times angle (angle in [0, pi]) of a rotation matrix."""
    r = np.asarray(rotation, dtype=float)
    diagonal_sum = float(np.diag(r).sum())
    cos_angle = float(np.clip((diagonal_sum - 1.0) / 2.0, -1.0, 1.0))
    angle = math.acos(cos_angle)
    vee = np.array([r[2, 1] - r[1, 2], r[0, 2] - r[2, 0], r[1, 0] - r[0, 1]])
    if angle < 1e-10:
        return 0.5 * vee
    if math.pi - angle < 1e-6:
        b = (r + np.eye(3)) / 2.0
        i = int(np.argmax(np.diag(b)))
        axis = b[:, i] / math.sqrt(max(b[i, i], 1e-300))
        axis /= np.linalg.norm(axis)
        if np.dot(axis, vee) < 0.0:
            axis = -axis
        return axis * angle
    return vee / (2.0 * math.sin(angle)) * angle


def rotation_matrix_from_rotation_vector(vector) -> np.ndarray:
    """Rotation matrix of an axis-times-angle vector (Rodrigues' formula)."""
    v = np.asarray(vector, dtype=float).reshape(3)
    angle = float(np.linalg.norm(v))
    if angle < 1e-12:
        return np.eye(3) + skew(v)
    k = skew(v / angle)
    return np.eye(3) + math.sin(angle) * k + (1.0 - math.cos(angle)) * (k @ k)


def _read_only(array: np.ndarray) -> np.ndarray:
    array.flags.writeable = False
    return array


@dataclass(frozen=True, eq=False)
class Pose:
    """Rigid transform mapping child-frame coordinates into the parent frame."""

    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))

    def __post_init__(self) -> None:
        position = np.array(self.position, dtype=float).reshape(3)
        rotation = np.array(self.rotation, dtype=float)
        if rotation.shape != (3, 3):
            raise ValueError("rotation must be a 3x3 matrix")
        object.__setattr__(self, "position", _read_only(position))
        object.__setattr__(self, "rotation", _read_only(rotation))

    @classmethod
    def from_quaternion(cls, position, quaternion) -> "Pose":
        """Pose from a position and a (w, x, y, z) quaternion."""
        return cls(position=position, rotation=quaternion_to_matrix(quaternion))

    @property
    def matrix(self) -> np.ndarray:
        """Homogeneous 4x4 matrix of the transform."""
        m = np.eye(4)
        m[:3, :3] = self.rotation
        m[:3, 3] = self.position
        return m

    def rotate(self, vector) -> np.ndarray:
        return self.rotation @ np.asarray(vector, dtype=float)

    def inverse_rotate(self, vector) -> np.ndarray:
        return self.rotation.T @ np.asarray(vector, dtype=float)

    def apply(self, points) -> np.ndarray:
        """Transform a point (3,) or points (N, 3) into the parent frame."""
        return np.asarray(points, dtype=float) @ self.rotation.T + self.position

    def compose(self, other: "Pose") -> "Pose":
        """Return the transform that applies ``other`` first, then this pose."""
        return Pose(
            position=self.rotation @ other.position + self.position,
            rotation=self.rotation @ other.rotation,
        )

    def inverted(self) -> "Pose":
        return Pose(position=-(self.rotation.T @ self.position), rotation=self.rotation.T)


class TransformError(LookupError):
    """Raised when a transform between two frames cannot be found."""


class TransformBuffer:
    """A tree of frames; each child stores its pose in its parent frame."""

    def __init__(self) -> None:
        self._parents: dict[str, tuple[str, Pose]] = {}
        self._lock = threading.Lock()

    def set_transform(self, parent: str, child: str, pose: Pose) -> None:
        """Store the pose of ``child`` expressed in ``parent``."""
        if parent == child:
            raise ValueError(f"frame '{child}' cannot be its own parent")
        with self._lock:
            self._parents[child] = (parent, pose)

    def lookup_transform(self, target: str, source: str) -> Pose:
        """Return the pose mapping ``source`` coordinates into ``target``."""
        with self._lock:
            edges = dict(self._parents)
        frames = set(edges) | {parent for parent, _ in edges.values()}
        for frame in (target, source):
            if frame not in frames:
                raise TransformError(f"frame '{frame}' does not exist")
        if target == source:
            return Pose()

        adjacency: dict[str, list[tuple[str, Pose]]] = {frame: [] for frame in frames}
        for child, (parent, pose) in edges.items():
            adjacency[child].append((parent, pose))
            adjacency[parent].append((child, pose.inverted()))

        visited = {source}
        queue = deque([(source, Pose())])
        while queue:
            frame, pose = queue.popleft()
            for neighbour, edge in adjacency[frame]:
                if neighbour in visited:
                    continue
                combined = edge.compose(pose)
                if neighbour == target:
                    return combined
                visited.add(neighbour)
                queue.append((neighbour, combined))
        raise TransformError(f"frames '{target}' and '{source}' are not connected")