import sys

import numpy as np
import pytest

from elevmap.geometry import Pose, TransformBuffer, rotation_matrix_from_rotation_vector
from elevmap.node import Node
from elevmap.point_cloud import PointCloud
from elevmap.sensor_processors.base import GeneralParameters
from elevmap.sensor_processors.perfect import PerfectSensorProcessor
from elevmap.sensor_processors.structured_light import StructuredLightSensorProcessor


def make_processor(overrides=None, cls=StructuredLightSensorProcessor, buffer=None):
    prefixed = {f"cam.sensor_processor.{key}": value for key, value in (overrides or {}).items()}
    node = Node("mapper", parameter_overrides=prefixed)
    processor = cls(node, GeneralParameters("robot", "map"), buffer)
    processor.read_parameters("cam")
    return processor


def test_read_parameters_defaults():
    processor = make_processor()
    assert processor.sensor_parameters["normal_factor_a"] == 0.0
    assert processor.sensor_parameters["lateral_factor"] == 0.0
    assert processor.sensor_parameters["cutoff_min_depth"] == sys.float_info.min
    assert processor.sensor_parameters["cutoff_max_depth"] == sys.float_info.max


def test_read_parameters_uses_overrides():
    processor = make_processor({"normal_factor_b": 0.25, "cutoff_max_depth": 4.0})
    assert processor.sensor_parameters["normal_factor_b"] == 0.25
    assert processor.sensor_parameters["cutoff_max_depth"] == 4.0
    assert processor.node.get_parameter("cam.sensor_processor.normal_factor_b") == 0.25


def test_constant_normal_deviation_gives_its_square():
    a = 0.1
    processor = make_processor({"normal_factor_a": a})
    cloud = PointCloud(xyz=[[0.0, 0.0, 1.0], [0.3, -0.2, 2.5]])
    variances = processor.compute_variances(cloud, np.zeros((6, 6)))
    assert variances.dtype == np.float32
    assert variances == pytest.approx([a**2, a**2], rel=1e-5)


def test_confidence_scales_sensor_variance():
    processor = make_processor({"normal_factor_a": 0.2})
    cloud = PointCloud(xyz=[[0.0, 0.0, 1.0], [0.0, 0.0, 1.0]], confidence_ratio=[1.0, 0.5])
    full, half = processor.compute_variances(cloud, np.zeros((6, 6)))
    assert half == pytest.approx(4.0 * full, rel=1e-5)


def test_lateral_factor_has_no_effect_when_sensor_looks_down_z():
    xyz = [[0.5, 0.5, 1.0], [1.0, -1.0, 3.0]]
    plain = make_processor({"normal_factor_a": 0.05})
    lateral = make_processor({"normal_factor_a": 0.05, "lateral_factor": 0.7})
    cloud = PointCloud(xyz=xyz)
    assert lateral.compute_variances(cloud, np.zeros((6, 6))) == pytest.approx(
        plain.compute_variances(cloud, np.zeros((6, 6)))
    )


def test_lateral_factor_matters_for_tilted_sensor():
    rotation = rotation_matrix_from_rotation_vector([0.0, np.pi / 2, 0.0])
    plain = make_processor()
    lateral = make_processor({"lateral_factor": 0.5})
    for processor in (plain, lateral):
        processor.rotation_base_to_sensor = rotation
    cloud = PointCloud(xyz=[[0.0, 0.0, 2.0]])
    assert plain.compute_variances(cloud, np.zeros((6, 6)))[0] == pytest.approx(0.0, abs=1e-9)
    assert lateral.compute_variances(cloud, np.zeros((6, 6)))[0] > 0.0


def test_rotation_term_matches_perfect_sensor_without_noise():
    covariance = np.diag([0.0, 0.0, 0.0, 0.02, 0.03, 0.01])
    structured = make_processor()
    perfect = make_processor(cls=PerfectSensorProcessor)
    rotation = rotation_matrix_from_rotation_vector([0.1, -0.2, 0.3])
    for processor in (structured, perfect):
        processor.rotation_map_to_base = rotation
        processor.translation_base_to_sensor_in_base_frame = np.array([0.2, 0.0, 0.4])
    cloud = PointCloud(xyz=[[1.0, 0.5, 2.0], [-0.5, 0.3, 1.2]])
    result = structured.compute_variances(cloud, covariance)
    assert result == pytest.approx(perfect.compute_variances(cloud, covariance), rel=1e-5)
    assert (result > 0.0).all()


def test_wrong_covariance_shape_is_rejected():
    processor = make_processor()
    with pytest.raises(ValueError):
        processor.compute_variances(PointCloud(xyz=[[0.0, 0.0, 1.0]]), np.zeros((3, 3)))


def test_filter_keeps_points_within_cutoff():
    processor = make_processor({"cutoff_min_depth": 0.5, "cutoff_max_depth": 2.0})
    cloud = PointCloud(xyz=[[0.0, 0.0, 0.2], [1.0, 1.0, 1.0], [0.0, 0.0, 3.0], [0.0, 0.0, 2.0]])
    filtered = processor.filter_point_cloud_sensor_type(cloud)
    assert filtered.z.tolist() == [1.0, 2.0]


def test_default_cutoff_drops_non_positive_depth():
    processor = make_processor()
    cloud = PointCloud(xyz=[[0.0, 0.0, -1.0], [0.0, 0.0, 0.0], [0.0, 0.0, 5.0]])
    assert processor.filter_point_cloud_sensor_type(cloud).z.tolist() == [5.0]


def test_process_moves_cloud_into_map_frame():
    buffer = TransformBuffer()
    buffer.set_transform("map", "robot", Pose(position=[0.0, 0.0, 1.0]))
    buffer.set_transform("robot", "sensor", Pose())
    a = 0.1
    processor = make_processor({"normal_factor_a": a}, buffer=buffer)
    cloud = PointCloud(xyz=[[0.0, 0.0, 1.0], [0.5, 0.0, 2.0]], frame_id="sensor")
    map_cloud, variances = processor.process(cloud, np.zeros((6, 6)), "sensor")
    assert map_cloud.frame_id == "map"
    assert map_cloud.z.tolist() == pytest.approx([2.0, 3.0])
    assert variances == pytest.approx([a**2, a**2], rel=1e-5)
    assert processor.is_tf_available()