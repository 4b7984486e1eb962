"""Data structures describing samples, aggregates, alerts and trends."""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class SampleDomain(str, Enum):
    """Domain a sample was read from."""

    SYSTEM = "system"
    BROWSER = "browser"
    TEST_STEP = "test-step"
    CUSTOM = "custom"


class AlertSeverity(str, Enum):
    """Severity attached to an alert."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class TrendDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


def _now_ms() -> float:
    return time.time() * 1000.0


@dataclass(frozen=True)
class CpuReading:
    """CPU usage over one measurement window."""

    usage: float = 0.0
    user_ms: float = 0.0
    system_ms: float = 0.0
    cores: int = 0
    load_average: tuple[float, ...] = ()


@dataclass(frozen=True)
class MemoryReading:
    """Process heap figures plus operating system totals (bytes)."""

    heap_used: int = 0
    heap_total: int = 0
    total: int = 0
    available: int = 0
    used: int = 0
    percent: float = 0.0


@dataclass(frozen=True)
class DiskReading:
    """Disk usage of the volume holding the evidence tree (bytes)."""

    total: int = 0
    used: int = 0
    free: int = 0
    percent: float = 0.0


@dataclass(frozen=True)
class SystemSample:
    """One tick of the system sampler."""

    cpu: CpuReading
    memory: MemoryReading
    disk: DiskReading
    timestamp: float = field(default_factory=_now_ms)
    domain: SampleDomain = SampleDomain.SYSTEM
    errors: tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["domain"] = self.domain.value
        payload["cpu"]["load_average"] = list(self.cpu.load_average)
        payload["errors"] = list(self.errors)
        return payload


@dataclass(frozen=True)
class StepSample:
    """Outcome and duration of one executed test step."""

    scenario_id: str
    step_id: str
    text: str
    status: str
    duration_ms: float
    timestamp: float = field(default_factory=_now_ms)
    domain: SampleDomain = SampleDomain.TEST_STEP

    @property
    def failed(self) -> bool:
        return self.status.lower() in {"failed", "error"}

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["domain"] = self.domain.value
        return payload


@dataclass(frozen=True)
class CustomSample:
    """A metric recorded explicitly by test code."""

    name: str
    value: float
    unit: str = ""
    tags: Dict[str, str] = field(default_factory=dict)
    timestamp: float = field(default_factory=_now_ms)
    domain: SampleDomain = SampleDomain.CUSTOM

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["domain"] = self.domain.value
        return payload


@dataclass(frozen=True)
class BrowserSample:
    """Browser side resource readings reported for a scenario."""

    scenario_id: str
    heap_used: Optional[int] = None
    heap_total: Optional[int] = None
    dom_nodes: Optional[int] = None
    event_listeners: Optional[int] = None
    timestamp: float = field(default_factory=_now_ms)
    domain: SampleDomain = SampleDomain.BROWSER

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["domain"] = self.domain.value
        return payload


@dataclass
class MetricAggregate:
    """Running min/max/sum/count for one metric; O(1) per update."""

    min: Optional[float] = None
    max: Optional[float] = None
    sum: float = 0.0
    count: int = 0

    def update(self, value: float) -> None:
        self.min = value if self.min is None else min(self.min, value)
        self.max = value if self.max is None else max(self.max, value)
        self.sum += value
        self.count += 1

    @property
    def avg(self) -> float:
        return self.sum / self.count if self.count else 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "min": self.min if self.min is not None else 0.0,
            "max": self.max if self.max is not None else 0.0,
            "avg": self.avg,
            "sum": self.sum,
            "count": self.count,
        }


@dataclass
class AggregatedMetrics:
    """Per-context aggregates for the system metrics."""

    context_id: str
    cpu: MetricAggregate = field(default_factory=MetricAggregate)
    memory: MetricAggregate = field(default_factory=MetricAggregate)
    disk: MetricAggregate = field(default_factory=MetricAggregate)
    first_timestamp: Optional[float] = None
    last_timestamp: Optional[float] = None

    def add(self, sample: SystemSample) -> None:
        self.cpu.update(sample.cpu.usage)
        self.memory.update(sample.memory.percent)
        self.disk.update(sample.disk.percent)
        if self.first_timestamp is None:
            self.first_timestamp = sample.timestamp
        self.last_timestamp = sample.timestamp

    @property
    def samples(self) -> int:
        return self.cpu.count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contextId": self.context_id,
            "samples": self.samples,
            "cpu": self.cpu.to_dict(),
            "memory": self.memory.to_dict(),
            "disk": self.disk.to_dict(),
            "firstTimestamp": self.first_timestamp,
            "lastTimestamp": self.last_timestamp,
        }


@dataclass(frozen=True)
class Alert:
    """An immutable record of a threshold breach or heuristic finding."""

    severity: AlertSeverity
    metric: str
    value: float
    threshold: float
    condition: str
    message: str
    context_id: str = "execution"
    growth_rate: Optional[float] = None
    id: str = field(default_factory=lambda: f"alert-{uuid.uuid4().hex[:12]}")
    timestamp: float = field(default_factory=_now_ms)

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "id": self.id,
            "severity": self.severity.value,
            "metric": self.metric,
            "value": self.value,
            "threshold": self.threshold,
            "condition": self.condition,
            "message": self.message,
            "contextId": self.context_id,
            "timestamp": self.timestamp,
        }
        if self.growth_rate is not None:
            payload["growthRate"] = self.growth_rate
        return payload


@dataclass(frozen=True)
class MetricTrend:
    """Direction and one-step forecast of a metric series."""

    metric: str
    direction: TrendDirection
    change_percent: float
    forecast: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric": self.metric,
            "direction": self.direction.value,
            "changePercent": self.change_percent,
            "forecast": self.forecast,
        }


__all__ = [
    "AggregatedMetrics",
    "Alert",
    "AlertSeverity",
    "BrowserSample",
    "CpuReading",
    "CustomSample",
    "DiskReading",
    "MemoryReading",
    "MetricAggregate",
    "MetricTrend",
    "SampleDomain",
    "StepSample",
    "SystemSample",
    "TrendDirection",
]
