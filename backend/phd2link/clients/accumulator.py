"""Online statistics over raw guide distances."""

import math
from typing import List


class Accumulator:
    """Append-only sample series with standard deviation and peak queries."""

    def __init__(self) -> None:
        self._values: List[float] = []

    def __len__(self) -> int:
        return len(self._values)

    def add(self, value: float) -> None:
        self._values.append(float(value))

    def reset(self) -> None:
        self._values.clear()

    def stdev(self) -> float:
        """Sample standard deviation (n - 1 divisor); 0 for fewer than 2 samples."""
        n = len(self._values)
        if n < 2:
            return 0.0

        total = 0.0
        total_sq = 0.0
        for value in self._values:
            total += value
            total_sq += value * value

        mean = total / n
        variance = (total_sq - total * mean) / (n - 1)
        # Cancellation can push the variance slightly below zero
        return math.sqrt(max(0.0, variance))

    def peak(self) -> float:
        """Largest absolute sample, 0 when empty."""
        return max((abs(value) for value in self._values), default=0.0)
