"""Weighted empirical cumulative distribution function with quantile lookup."""

from __future__ import annotations

import bisect
from typing import Any


class WeightedEmpiricalCumulativeDistributionFunction:
    """Collects weighted observations and answers quantile queries.

    The smallest observation corresponds to a probability of 0 and the
    largest to a probability of 1; values in between are linearly
    interpolated.
    """

    def __init__(self) -> None:
        self._data: dict[Any, float] = {}
        self._distribution: dict[Any, float] = {}
        self._probabilities: list[float] = []
        self._values: list[Any] = []
        self._total_weight = 0.0
        self._is_computed = False

    def add(self, value: Any, weight: float = 1.0) -> None:
        """Add an observation; repeated values accumulate their weight."""
        self._is_computed = False
        self._data[value] = self._data.get(value, 0.0) + weight
        self._total_weight += weight

    def clear(self) -> None:
        """Remove all observations."""
        self._is_computed = False
        self._total_weight = 0.0
        self._data.clear()
        self._distribution.clear()
        self._probabilities = []
        self._values = []

    def compute(self) -> bool:
        """Build the inverse distribution. Returns False if there is no data."""
        if not self._data:
            return False
        self._distribution.clear()
        items = sorted(self._data.items())

        if len(items) == 1:
            value = items[0][0]
            self._probabilities = [0.0, 1.0]
            self._values = [value, value]
            self._is_computed = True
            return True

        first_weight = items[0][1]
        adapted_total_weight = self._total_weight - first_weight
        if adapted_total_weight == 0.0:
            raise ValueError("the weight above the smallest observation must not be zero")

        inverse: dict[float, Any] = {}
        cumulative_weight = -first_weight
        for value, weight in items:
            cumulative_weight += weight
            inverse.setdefault(cumulative_weight / adapted_total_weight, value)

        ordered = sorted(inverse.items())
        self._probabilities = [probability for probability, _ in ordered]
        self._values = [value for _, value in ordered]
        self._is_computed = True
        return True

    def quantile(self, probability: float) -> Any:
        """Return the value for the given probability (inverse distribution)."""
        if not self._is_computed:
            raise RuntimeError(
                "WeightedEmpiricalCumulativeDistributionFunction::quantile(...): "
                "The distribution functions needs to be computed (compute()) first."
            )
        if probability <= 0.0:
            return self._values[0]
        if probability >= 1.0:
            return self._values[-1]
        up = bisect.bisect_left(self._probabilities, probability)
        low = up - 1
        low_p, up_p = self._probabilities[low], self._probabilities[up]
        low_v, up_v = self._values[low], self._values[up]
        return low_v + (probability - low_p) * (up_v - low_v) / (up_p - low_p)

    def __str__(self) -> str:
        lines = ["Data points:"]
        lines.extend(
            f"[{i}] Value: {value:g} Weight: {weight:g}"
            for i, (value, weight) in enumerate(sorted(self._data.items()))
        )
        lines.append("Cumulative distribution function:")
        lines.extend(
            f"[{i}] Value: {value:g} Prob.: {probability:g}"
            for i, (value, probability) in enumerate(sorted(self._distribution.items()))
        )
        lines.append("Inverse distribution function:")
        lines.extend(
            f"[{i}] Prob.: {probability:g} Value: {value:g}"
            for i, (probability, value) in enumerate(zip(self._probabilities, self._values))
        )
        return "\n".join(lines) + "\n"