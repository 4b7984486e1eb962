"""Evidence domain models: items, collections, summaries and filters."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union


class EvidenceType(str, Enum):
    """Kinds of evidence produced by collectors."""

    SCREENSHOT = "screenshot"
    VIDEO = "video"
    LOG = "log"
    NETWORK = "network"
    TRACE = "trace"
    METRICS = "metrics"
    PERFORMANCE = "performance"

    @property
    def directory(self) -> str:
        """Name of the type-specific directory under the evidence root."""
        return _TYPE_DIRECTORIES[self]

    @property
    def extension(self) -> str:
        return _TYPE_EXTENSIONS[self]

    @property
    def compressible(self) -> bool:
        return self in COMPRESSIBLE_TYPES


_TYPE_DIRECTORIES = {
    EvidenceType.SCREENSHOT: "screenshots",
    EvidenceType.VIDEO: "videos",
    EvidenceType.LOG: "logs",
    EvidenceType.NETWORK: "logs",
    EvidenceType.TRACE: "traces",
    EvidenceType.METRICS: "metrics",
    EvidenceType.PERFORMANCE: "performance",
}

_TYPE_EXTENSIONS = {
    EvidenceType.SCREENSHOT: "png",
    EvidenceType.VIDEO: "webm",
    EvidenceType.LOG: "log",
    EvidenceType.NETWORK: "har",
    EvidenceType.TRACE: "zip",
    EvidenceType.METRICS: "json",
    EvidenceType.PERFORMANCE: "json",
}

COMPRESSIBLE_TYPES = frozenset(
    {EvidenceType.LOG, EvidenceType.METRICS, EvidenceType.PERFORMANCE, EvidenceType.NETWORK}
)

STORAGE_DIRECTORIES = (
    "screenshots",
    "videos",
    "logs",
    "traces",
    "metrics",
    "performance",
    "archives",
    "temp",
)


class CollectionState(str, Enum):
    """Lifecycle of an execution's evidence collection."""

    UNINITIALIZED = "uninitialized"
    COLLECTING = "collecting"
    FINALIZING = "finalizing"
    COMPLETED = "completed"


def now_ms() -> float:
    return time.time() * 1000.0


Payload = Union[str, Mapping[str, Any], Sequence[Any]]


@dataclass
class CollectedItem:
    """Raw evidence returned by a collector before the store persists it.

    At most one of ``data`` (bytes), ``content`` (text or a JSON-serialisable
    object) or ``path`` (a file the collector already wrote) is set. An item
    with none of them is recorded without a file.
    """

    type: EvidenceType
    scenario_id: str
    step_id: Optional[str] = None
    name: Optional[str] = None
    data: Optional[bytes] = None
    content: Optional[Payload] = None
    path: Optional[Union[str, Path]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    tags: List[str] = field(default_factory=list)
    timestamp: float = field(default_factory=now_ms)

    def __post_init__(self) -> None:
        if not isinstance(self.type, EvidenceType):
            self.type = EvidenceType(self.type)
        provided = [value for value in (self.data, self.content, self.path) if value is not None]
        if len(provided) > 1:
            raise ValueError("CollectedItem accepts only one of data, content or path")


@dataclass
class EvidenceItem:
    """One persisted artifact referenced by path; payloads are never re-embedded."""

    id: str
    type: EvidenceType
    scenario_id: str
    timestamp: float
    size: int
    path: Optional[str] = None
    step_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    tags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "scenarioId": self.scenario_id,
            "stepId": self.step_id,
            "timestamp": self.timestamp,
            "path": self.path,
            "size": self.size,
            "metadata": dict(self.metadata),
            "tags": list(self.tags),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "EvidenceItem":
        return cls(
            id=str(payload["id"]),
            type=EvidenceType(payload["type"]),
            scenario_id=str(payload.get("scenarioId", "")),
            step_id=payload.get("stepId"),
            timestamp=float(payload.get("timestamp", 0.0)),
            path=payload.get("path"),
            size=int(payload.get("size", 0)),
            metadata=dict(payload.get("metadata") or {}),
            tags=list(payload.get("tags") or []),
        )


@dataclass
class EvidenceSummary:
    total_items: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)
    total_size: int = 0
    duration: float = 0.0

    @classmethod
    def from_items(cls, items: Iterable[EvidenceItem], duration: float) -> "EvidenceSummary":
        summary = cls(duration=duration)
        for item in items:
            summary.total_items += 1
            summary.total_size += item.size
            summary.by_type[item.type.value] = summary.by_type.get(item.type.value, 0) + 1
        return summary

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalItems": self.total_items,
            "byType": dict(self.by_type),
            "totalSize": self.total_size,
            "duration": self.duration,
        }


@dataclass
class EvidenceCollection:
    """Aggregate root for one execution.

    ``summary`` is derived from ``items``; the mutating methods below are the
    only way items change and each one recomputes the summary before
    returning.
    """

    execution_id: str
    start_time: float = field(default_factory=now_ms)
    end_time: Optional[float] = None
    items: List[EvidenceItem] = field(default_factory=list)
    summary: EvidenceSummary = field(default_factory=EvidenceSummary)
    metadata: Dict[str, Any] = field(default_factory=dict)
    state: CollectionState = CollectionState.UNINITIALIZED

    def add_items(self, items: Iterable[EvidenceItem]) -> None:
        self.items.extend(items)
        self.recompute_summary()

    def remove_item(self, item_id: str) -> Optional[EvidenceItem]:
        for index, item in enumerate(self.items):
            if item.id == item_id:
                removed = self.items.pop(index)
                self.recompute_summary()
                return removed
        return None

    def oldest_item(self) -> Optional[EvidenceItem]:
        # min() keeps the first of equal timestamps, i.e. insertion order
        return min(self.items, key=lambda item: item.timestamp) if self.items else None

    def recompute_summary(self) -> EvidenceSummary:
        end = self.end_time if self.end_time is not None else now_ms()
        self.summary = EvidenceSummary.from_items(self.items, duration=max(0.0, end - self.start_time))
        return self.summary

    def find(self, item_id: str) -> Optional[EvidenceItem]:
        return next((item for item in self.items if item.id == item_id), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "executionId": self.execution_id,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "items": [item.to_dict() for item in self.items],
            "summary": self.summary.to_dict(),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "EvidenceCollection":
        collection = cls(
            execution_id=str(payload["executionId"]),
            start_time=float(payload.get("startTime", 0.0)),
            end_time=payload.get("endTime"),
            items=[EvidenceItem.from_dict(item) for item in payload.get("items", [])],
            metadata=dict(payload.get("metadata") or {}),
            state=CollectionState.COMPLETED,
        )
        collection.recompute_summary()
        return collection


@dataclass(frozen=True)
class EvidenceFilter:
    """Criteria used to narrow a collection; empty criteria match everything."""

    types: Optional[frozenset[EvidenceType]] = None
    scenario_ids: Optional[frozenset[str]] = None
    tags: Optional[frozenset[str]] = None
    start_time: Optional[float] = None
    end_time: Optional[float] = None

    def matches(self, item: EvidenceItem) -> bool:
        if self.types and item.type not in self.types:
            return False
        if self.scenario_ids and item.scenario_id not in self.scenario_ids:
            return False
        if self.tags and not self.tags.intersection(item.tags):
            return False
        if self.start_time is not None and item.timestamp < self.start_time:
            return False
        if self.end_time is not None and item.timestamp > self.end_time:
            return False
        return True


__all__ = [
    "COMPRESSIBLE_TYPES",
    "STORAGE_DIRECTORIES",
    "CollectedItem",
    "CollectionState",
    "EvidenceCollection",
    "EvidenceFilter",
    "EvidenceItem",
    "EvidenceSummary",
    "EvidenceType",
    "now_ms",
]
