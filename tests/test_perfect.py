import math

import numpy as np
import pytest

from elevmap.node import Node
from elevmap.point_cloud import PointCloud
from elevmap.sensor_processors.perfect import PerfectSensorProcessor


def _processor():
    processor = PerfectSensorProcessor(Node("mapper"))
    processor.read_parameters("camera")
    return processor


def _rotation_covariance(scale):
    covariance = np.zeros((6, 6))
    covariance[3:, 3:] = np.eye(3) * scale
    return covariance


def test_read_parameters_declares_common_parameters():
    processor = _processor()
    assert processor.node.has_parameter("camera.sensor_processor.ignore_points_above")
    assert processor.parameters.ignore_points_upper_threshold == math.inf
    assert processor.sensor_parameters["voxelgrid_filter_size"] == 0.0


def test_zero_covariance_gives_zero_variance():
    processor = _processor()
    cloud = PointCloud(xyz=[[1.0, 2.0, 3.0], [0.0, -4.0, 1.0]])
    assert np.array_equal(processor.compute_variances(cloud, np.zeros((6, 6))), np.zeros(2))


def test_variance_independent_of_depth_for_level_robot():
    processor = _processor()
    cloud = PointCloud(xyz=[[1.0, 0.0, 0.0], [1.0, 0.0, 5.0]])
    first, second = processor.compute_variances(cloud, _rotation_covariance(0.01))
    assert first == pytest.approx(second, rel=1e-6)
    assert first > 0.0


def test_variance_linear_in_covariance():
    processor = _processor()
    cloud = PointCloud(xyz=[[1.0, 2.0, 3.0], [-1.0, 0.5, 2.0]])
    single = processor.compute_variances(cloud, _rotation_covariance(0.01))
    triple = processor.compute_variances(cloud, _rotation_covariance(0.03))
    assert np.allclose(triple, 3.0 * single, rtol=1e-5)


def test_variances_nonnegative_for_random_points():
    rng = np.random.default_rng(7)
    processor = _processor()
    root = rng.normal(size=(6, 6))
    covariance = root @ root.T
    cloud = PointCloud(xyz=rng.normal(size=(50, 3)))
    variances = processor.compute_variances(cloud, covariance)
    assert len(variances) == 50
    assert (variances >= -1e-6).all()


def test_sensor_offset_adds_variance_at_origin():
    processor = _processor()
    cloud = PointCloud(xyz=[[0.0, 0.0, 0.0]])
    assert processor.compute_variances(cloud, _rotation_covariance(0.01))[0] == 0.0
    processor.translation_base_to_sensor_in_base_frame = np.array([1.0, 0.0, 0.0])
    assert processor.compute_variances(cloud, _rotation_covariance(0.01))[0] > 0.0


def test_wrong_covariance_shape_raises():
    with pytest.raises(ValueError):
        _processor().compute_variances(PointCloud(xyz=[[1.0, 0.0, 0.0]]), np.eye(4))