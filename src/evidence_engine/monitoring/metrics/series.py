"""Bounded per-context sample storage."""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Dict, Generic, Iterator, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BoundedSeries(Generic[T]):
    """Ordered samples keyed by context id, each context capped at ``capacity``.

    Appending to a full context silently drops its oldest sample so memory
    stays bounded for long-running suites.
    """

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be a positive integer")
        self.capacity = capacity
        self._series: Dict[str, Deque[T]] = {}
        self._dropped: Dict[str, int] = {}

    def append(self, context_id: str, sample: T) -> None:
        series = self._series.get(context_id)
        if series is None:
            series = deque(maxlen=self.capacity)
            self._series[context_id] = series
        if len(series) == self.capacity:
            self._dropped[context_id] = self._dropped.get(context_id, 0) + 1
        series.append(sample)

    def get(self, context_id: str) -> List[T]:
        return list(self._series.get(context_id, ()))

    def latest(self, context_id: str) -> T | None:
        series = self._series.get(context_id)
        return series[-1] if series else None

    def dropped(self, context_id: str) -> int:
        """Number of samples evicted from ``context_id`` by the capacity bound."""
        return self._dropped.get(context_id, 0)

    def contexts(self) -> List[str]:
        return list(self._series.keys())

    def all(self) -> List[T]:
        return [sample for series in self._series.values() for sample in series]

    def clear(self) -> None:
        self._series.clear()
        self._dropped.clear()
        logger.debug("Cleared bounded series")

    def __len__(self) -> int:
        return sum(len(series) for series in self._series.values())

    def __iter__(self) -> Iterator[str]:
        return iter(self._series)

    def __contains__(self, context_id: object) -> bool:
        return context_id in self._series
