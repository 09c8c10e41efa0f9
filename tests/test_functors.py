import math

import numpy as np

from elevmap.functors import VarianceClampOperator


def test_value_below_minimum_is_raised():
    clamp = VarianceClampOperator(0.1, 4.0)
    assert clamp(0.01) == 0.1


def test_value_above_maximum_becomes_infinite():
    clamp = VarianceClampOperator(0.1, 4.0)
    assert clamp(5.0) == math.inf


def test_value_within_range_is_kept():
    clamp = VarianceClampOperator(0.1, 4.0)
    assert clamp(2.5) == 2.5
    assert clamp(0.1) == 0.1
    assert clamp(4.0) == 4.0


def test_nan_passes_through():
    clamp = VarianceClampOperator(0.1, 4.0)
    assert str(float(clamp(float("nan")))) == "nan"
    result = clamp(np.array([float("nan"), 2.5]))
    assert np.array_equal(result, np.array([float("nan"), 2.5]), equal_nan=True)


def test_array_is_clamped_element_wise():
    clamp = VarianceClampOperator(0.1, 4.0)
    result = clamp(np.array([0.01, 2.5, 5.0]))
    expected = np.array([clamp(0.01), clamp(2.5), clamp(5.0)])
    assert np.array_equal(result, expected)