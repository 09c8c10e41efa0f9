"""Element-wise operators applied to map layers."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class VarianceClampOperator:
    """Raises variances below the minimum to it; marks those above the maximum as infinite."""

    min_variance: float
    max_variance: float

    def __call__(self, x):
        if isinstance(x, np.ndarray):
            return np.where(
                x < self.min_variance,
                self.min_variance,
                np.where(x > self.max_variance, np.inf, x),
            )
        if x < self.min_variance:
            return self.min_variance
        if x > self.max_variance:
            return math.inf
        return x