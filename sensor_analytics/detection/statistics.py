"""
Rolling statistics over bounded per-device history.

This module provides the RollingWindow ring buffer used by the anomaly
detector plus the small set of summary statistics it needs.

Classes:
    RollingWindow: Fixed-capacity buffer of (timestamp, value) samples
    WindowStats: Mean and population standard deviation of a slice

Note:
    Standard deviation is the population form (n in the denominator), so a
    slice of identical values has std 0 and never produces a spike or drop.
"""

import math
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Deque, List, Optional, Sequence, Tuple


@dataclass
class WindowStats:
    """
    Summary of a slice of samples.

    Attributes:
        count: Number of samples summarized.
        mean: Arithmetic mean.
        std: Population standard deviation.
    """

    count: int
    mean: float
    std: float


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean; 0.0 for an empty sequence."""
    if not values:
        return 0.0
    return sum(values) / len(values)


def population_std(values: Sequence[float], avg: Optional[float] = None) -> float:
    """Population standard deviation; 0.0 for an empty sequence."""
    if not values:
        return 0.0
    if avg is None:
        avg = mean(values)
    variance = sum((x - avg) ** 2 for x in values) / len(values)
    return math.sqrt(variance)


def mean_abs_change(values: Sequence[float]) -> float:
    """Average absolute difference between successive values."""
    if len(values) < 2:
        return 0.0
    total = sum(abs(values[i] - values[i - 1]) for i in range(1, len(values)))
    return total / (len(values) - 1)


def summarize(values: Sequence[float]) -> WindowStats:
    """Mean and population std of a slice."""
    avg = mean(values)
    return WindowStats(count=len(values), mean=avg, std=population_std(values, avg))


class RollingWindow:
    """
    Fixed-capacity ring buffer of numeric samples.

    Appending beyond capacity evicts the oldest sample.

    Example:
        >>> window = RollingWindow(capacity=100)
        >>> window.append(101.0, datetime.now(timezone.utc))
        >>> window.last(5)
        [101.0]

    Attributes:
        capacity: Maximum number of samples retained.
    """

    def __init__(self, capacity: int = 100) -> None:
        """
        Initialize the window.

        Args:
            capacity: Maximum number of samples (must be positive).

        Raises:
            ValueError: If capacity < 1.
        """
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._values: Deque[float] = deque(maxlen=capacity)
        self._timestamps: Deque[datetime] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._values)

    def append(self, value: float, timestamp: datetime) -> None:
        """Add a sample, evicting the oldest if full."""
        self._values.append(value)
        self._timestamps.append(timestamp)

    def last(self, n: int) -> List[float]:
        """The most recent ``n`` values, oldest first."""
        if n <= 0:
            return []
        values = list(self._values)
        return values[-n:]

    def samples(self) -> List[Tuple[datetime, float]]:
        """All samples as (timestamp, value) pairs, oldest first."""
        return list(zip(self._timestamps, self._values))

    def clear(self) -> None:
        """Drop every sample."""
        self._values.clear()
        self._timestamps.clear()

    def __repr__(self) -> str:
        return f"RollingWindow(samples={len(self)}/{self.capacity})"
