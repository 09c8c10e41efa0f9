import math

import numpy as np
import pytest

from elevmap.geometry import Pose, rotation_matrix_from_rotation_vector
from elevmap.robot_motion import (
    COVARIANCE_SCALE_PARAMETER,
    ElevationGrid,
    RobotMotionMapUpdater,
)


class _ParameterNode:
    def __init__(self, values=None):
        self.values = values or {}
        self.declared = {}

    def declare_parameter(self, name, default):
        self.declared[name] = default
        return self.values.get(name, default)


def _random_covariance(seed=0):
    rng = np.random.default_rng(seed)
    a = rng.normal(size=(6, 6))
    return a @ a.T


def _grid():
    elevation = np.array([[0.5, np.nan, 1.0], [0.0, 2.0, -1.0], [0.3, 0.2, np.nan]])
    return ElevationGrid.from_elevation(elevation, resolution=1.0)


def test_cell_position_follows_grid_convention():
    grid = _grid()
    assert np.allclose(grid.cell_position((1, 1)), [0.0, 0.0])
    assert np.allclose(grid.cell_position((0, 0)), [1.0, 1.0])
    assert np.allclose(grid.cell_position((2, 0)), [-1.0, 1.0])


def test_cell_position_out_of_range():
    with pytest.raises(IndexError):
        _grid().cell_position((3, 0))


def test_cell_positions_match_cell_position():
    grid = ElevationGrid.from_elevation(np.zeros((4, 2)), resolution=0.5, position=(2.0, -1.0))
    xs, ys = grid.cell_positions()
    for i in range(4):
        for j in range(2):
            assert np.allclose(grid.cell_position((i, j)), [xs[i, j], ys[i, j]])


def test_invalid_resolution_rejected():
    with pytest.raises(ValueError):
        ElevationGrid.from_elevation(np.zeros((2, 2)), resolution=0.0)


def test_read_parameters_default_and_override():
    updater = RobotMotionMapUpdater(_ParameterNode())
    updater.read_parameters()
    assert updater.covariance_scale == 1.0

    updater = RobotMotionMapUpdater(_ParameterNode({COVARIANCE_SCALE_PARAMETER: 2.5}))
    updater.read_parameters()
    assert updater.covariance_scale == 2.5


def test_read_parameters_without_node():
    with pytest.raises(RuntimeError):
        RobotMotionMapUpdater().read_parameters()


def test_reduced_covariance_identity_pose_selects_entries():
    covariance = _random_covariance()
    reduced = RobotMotionMapUpdater(initial_time=0.0).compute_reduced_covariance(Pose(), covariance)
    keep = [0, 1, 2, 5]
    assert np.allclose(reduced, covariance[np.ix_(keep, keep)])


def test_reduced_covariance_is_symmetric():
    rotation = rotation_matrix_from_rotation_vector([0.2, 0.3, 0.4])
    reduced = RobotMotionMapUpdater(initial_time=0.0).compute_reduced_covariance(
        Pose(rotation=rotation), _random_covariance(1)
    )
    assert reduced.shape == (4, 4)
    assert np.allclose(reduced, reduced.T)


def test_relative_covariance_first_update_equals_reduced():
    updater = RobotMotionMapUpdater(initial_time=0.0)
    reduced = updater.compute_reduced_covariance(Pose(), _random_covariance(2))
    relative = updater.compute_relative_covariance(Pose(), reduced)
    assert np.allclose(relative, reduced)


def test_relative_covariance_vanishes_without_motion():
    updater = RobotMotionMapUpdater(initial_time=0.0)
    pose = Pose(position=[1.0, 2.0, 0.0])
    reduced = updater.compute_reduced_covariance(pose, _random_covariance(3))
    updater.previous_robot_pose = pose
    updater.previous_reduced_covariance = reduced
    assert np.allclose(updater.compute_relative_covariance(pose, reduced), 0.0)


def test_update_skipped_at_initial_time():
    updater = RobotMotionMapUpdater(initial_time=5.0)
    assert updater.update(_grid(), Pose(), np.eye(6), 5.0) is None


def test_update_marks_empty_cells_infinite():
    grid = _grid()
    result = RobotMotionMapUpdater(initial_time=0.0).update(grid, Pose(), np.eye(6), 1.0)
    empty = ~np.isfinite(grid["elevation"])
    for layer in (
        result.variance,
        result.horizontal_variance_x,
        result.horizontal_variance_y,
        result.horizontal_variance_xy,
    ):
        assert np.all(np.isinf(layer[empty]))
        assert np.all(np.isfinite(layer[~empty]))
    assert result.time == 1.0


def test_update_without_yaw_uncertainty_gives_translation_only():
    covariance = np.diag([0.1, 0.2, 0.3, 0.0, 0.0, 0.0])
    grid = _grid()
    result = RobotMotionMapUpdater(initial_time=0.0).update(grid, Pose(), covariance, 1.0)
    valid = np.isfinite(grid["elevation"])
    assert np.allclose(result.variance[valid], 0.3)
    assert np.allclose(result.horizontal_variance_x[valid], 0.1)
    assert np.allclose(result.horizontal_variance_y[valid], 0.2)
    assert np.allclose(result.horizontal_variance_xy[valid], 0.0)


def test_update_yaw_uncertainty_grows_with_distance():
    covariance = np.diag([0.0, 0.0, 0.0, 0.0, 0.0, 0.5])
    grid = ElevationGrid.from_elevation(np.zeros((5, 1)), resolution=1.0)
    result = RobotMotionMapUpdater(initial_time=0.0).update(grid, Pose(), covariance, 1.0)
    # Cells lie along x at y = 0: yaw uncertainty moves them in y only.
    horizontal_y = result.horizontal_variance_y[:, 0]
    assert np.allclose(result.horizontal_variance_x, 0.0)
    assert horizontal_y[2] == pytest.approx(0.0)
    assert horizontal_y[0] > horizontal_y[1] > horizontal_y[2]
    assert horizontal_y[0] == pytest.approx(horizontal_y[4])


def test_update_respects_covariance_scale():
    covariance = np.diag([0.1, 0.2, 0.3, 0.0, 0.0, 0.0])
    plain = RobotMotionMapUpdater(initial_time=0.0).update(_grid(), Pose(), covariance, 1.0)
    scaled_updater = RobotMotionMapUpdater(_ParameterNode({COVARIANCE_SCALE_PARAMETER: 2.0}), initial_time=0.0)
    scaled_updater.read_parameters()
    scaled = scaled_updater.update(_grid(), Pose(), covariance, 1.0)
    valid = np.isfinite(plain.variance)
    assert np.allclose(scaled.variance[valid], 2.0 * plain.variance[valid])


def test_update_remembers_pose():
    updater = RobotMotionMapUpdater(initial_time=0.0)
    pose = Pose(position=[1.0, 0.0, 0.0], rotation=rotation_matrix_from_rotation_vector([0, 0, math.pi / 4]))
    updater.update(_grid(), pose, np.eye(6), 1.0)
    assert updater.previous_robot_pose is pose
    second = updater.update(_grid(), pose, np.eye(6), 2.0)
    assert second.time == 2.0
    valid = np.isfinite(_grid()["elevation"])
    assert np.allclose(second.variance[valid], 0.0)


def test_update_rejects_bad_covariance_shape():
    with pytest.raises(ValueError):
        RobotMotionMapUpdater(initial_time=0.0).update(_grid(), Pose(), np.eye(4), 1.0)