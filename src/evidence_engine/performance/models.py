"""Pydantic models for browser probe payloads and typed vital records.

The probe payload mirrors the browser Performance API (camelCase keys such as
``responseEnd`` or ``initiatorType``); every model also accepts snake_case
field names. Vitals are represented by :class:`VitalValue`, which makes
"unavailable" an explicit state instead of a zero or NaN leaking into
arithmetic.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

VITAL_NAMES = ("FCP", "LCP", "FID", "INP", "CLS", "TTFB", "TTI", "TBT", "SI")
OBSERVED_VITALS = ("LCP", "FID", "CLS", "INP")


class _ProbeModel(BaseModel):
    """Base for probe models: camelCase aliases, unknown keys preserved."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


def _finite_or_zero(value: Any) -> Any:
    if value is None:
        return 0.0
    if isinstance(value, (int, float)) and not math.isfinite(value):
        raise ValueError("timing values must be finite")
    return value


def _elapsed(value: Any) -> Any:
    """Offsets and durations measured from navigation start are never negative."""
    value = _finite_or_zero(value)
    if isinstance(value, (int, float)) and value < 0:
        raise ValueError("timing values must be non-negative")
    return value


class NavigationEntry(_ProbeModel):
    """A ``PerformanceNavigationTiming`` entry (milliseconds from navigation start)."""

    url: str = Field(default="", alias="name")
    fetch_start: float = 0.0
    domain_lookup_start: float = 0.0
    domain_lookup_end: float = 0.0
    connect_start: float = 0.0
    connect_end: float = 0.0
    secure_connection_start: float = 0.0
    request_start: float = 0.0
    response_start: float = 0.0
    response_end: float = 0.0
    dom_interactive: float = 0.0
    dom_content_loaded_event_end: float = 0.0
    dom_complete: float = 0.0
    load_event_start: float = 0.0
    load_event_end: float = 0.0
    duration: float = 0.0
    redirect_count: int = 0
    transfer_size: int = 0

    @field_validator(
        "fetch_start", "domain_lookup_start", "domain_lookup_end", "connect_start", "connect_end",
        "secure_connection_start", "request_start", "response_start", "response_end", "dom_interactive",
        "dom_content_loaded_event_end", "dom_complete", "load_event_start", "load_event_end", "duration",
        mode="before",
    )
    @classmethod
    def _validate_timing(cls, value: Any) -> Any:
        return _finite_or_zero(value)

    @property
    def dns(self) -> float:
        return max(0.0, self.domain_lookup_end - self.domain_lookup_start)

    @property
    def tcp(self) -> float:
        return max(0.0, self.connect_end - self.connect_start)

    @property
    def ssl(self) -> float:
        if self.secure_connection_start <= 0:
            return 0.0
        return max(0.0, self.connect_end - self.secure_connection_start)

    @property
    def ttfb(self) -> float:
        return max(0.0, self.response_start - self.request_start)

    @property
    def transfer(self) -> float:
        return max(0.0, self.response_end - self.response_start)

    @property
    def dom_processing(self) -> float:
        return max(0.0, self.dom_complete - self.dom_interactive)

    @property
    def on_load(self) -> float:
        return max(0.0, self.load_event_end - self.load_event_start)

    @property
    def total(self) -> float:
        if self.load_event_end > 0:
            return max(0.0, self.load_event_end - self.fetch_start)
        return self.duration

    @property
    def load_time(self) -> float:
        """End of the load event, falling back to the entry duration."""
        return self.load_event_end or self.duration

    def timings(self) -> Dict[str, float]:
        """Derived phase durations used for aggregation and reports."""
        return {
            "dns": self.dns,
            "tcp": self.tcp,
            "ssl": self.ssl,
            "ttfb": self.ttfb,
            "transfer": self.transfer,
            "domProcessing": self.dom_processing,
            "onLoad": self.on_load,
            "total": self.total,
        }


class ResourceEntry(_ProbeModel):
    """A ``PerformanceResourceTiming`` entry."""

    name: str
    initiator_type: str = "other"
    start_time: float = 0.0
    duration: float = 0.0
    transfer_size: int = 0
    encoded_body_size: int = 0
    decoded_body_size: int = 0
    domain_lookup_start: float = 0.0
    domain_lookup_end: float = 0.0
    connect_start: float = 0.0
    connect_end: float = 0.0
    secure_connection_start: float = 0.0
    request_start: float = 0.0
    response_start: float = 0.0
    response_end: float = 0.0
    cached: Optional[bool] = None

    @field_validator("start_time", "duration", "response_end", mode="before")
    @classmethod
    def _validate_timing(cls, value: Any) -> Any:
        return _finite_or_zero(value)

    @property
    def is_cached(self) -> bool:
        """Explicit flag when given, else a zero transfer for a non-empty body."""
        if self.cached is not None:
            return self.cached
        return self.transfer_size == 0 and self.decoded_body_size > 0


class PaintEntry(_ProbeModel):
    name: str
    start_time: float = 0.0

    @field_validator("start_time", mode="before")
    @classmethod
    def _validate_timing(cls, value: Any) -> Any:
        return _elapsed(value)


class LongTaskEntry(_ProbeModel):
    start_time: float
    duration: float = 0.0
    attribution: List[Dict[str, Any]] = Field(default_factory=list)

    @field_validator("start_time", "duration", mode="before")
    @classmethod
    def _validate_timing(cls, value: Any) -> Any:
        return _elapsed(value)

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration


class MemoryEntry(_ProbeModel):
    used_js_heap_size: int = Field(default=0, alias="usedJSHeapSize")
    total_js_heap_size: int = Field(default=0, alias="totalJSHeapSize")
    js_heap_size_limit: int = Field(default=0, alias="jsHeapSizeLimit")
    timestamp: float = Field(default_factory=lambda: time.time() * 1000.0)


class UserTimingEntry(_ProbeModel):
    name: str
    entry_type: str = "mark"
    start_time: float = 0.0
    duration: float = 0.0

    @field_validator("start_time", "duration", mode="before")
    @classmethod
    def _validate_timing(cls, value: Any) -> Any:
        return _elapsed(value)


class VisualEvent(_ProbeModel):
    """A point on the visual timeline: ``area`` pixels became visible at ``time``."""

    time: float
    area: float = 0.0

    @field_validator("time", "area", mode="before")
    @classmethod
    def _validate_point(cls, value: Any) -> Any:
        # negative times are left to the timeline check, which falls back to resources
        return _finite_or_zero(value)


class VisualTimeline(_ProbeModel):
    viewport_width: float = 0.0
    viewport_height: float = 0.0
    events: List[VisualEvent] = Field(default_factory=list)

    @property
    def viewport_area(self) -> float:
        return self.viewport_width * self.viewport_height


class FilmstripFrame(_ProbeModel):
    timestamp: float
    screenshot: str


class VitalObservation(_ProbeModel):
    """A resolved observer result; extra keys (element, entries, sources) are kept."""

    value: float

    @field_validator("value")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if not math.isfinite(value) or value < 0:
            raise ValueError("vital values must be finite and non-negative")
        return value


class ProbePayload(_ProbeModel):
    """Everything a browser probe reports for one scenario."""

    navigation: Optional[NavigationEntry] = None
    resources: List[ResourceEntry] = Field(default_factory=list)
    paints: List[PaintEntry] = Field(default_factory=list)
    long_tasks: List[LongTaskEntry] = Field(default_factory=list)
    memory: Optional[MemoryEntry] = None
    user_timings: List[UserTimingEntry] = Field(default_factory=list)
    visual: Optional[VisualTimeline] = None
    frames: List[FilmstripFrame] = Field(default_factory=list)
    lcp: Optional[VitalObservation] = None
    fid: Optional[VitalObservation] = None
    layout_shift: Optional[VitalObservation] = Field(default=None, alias="cls")
    inp: Optional[VitalObservation] = None

    @field_validator("paints", mode="before")
    @classmethod
    def _paints_from_mapping(cls, value: Any) -> Any:
        # {"first-contentful-paint": 812.3} is accepted as shorthand
        if isinstance(value, Mapping):
            return [{"name": name, "startTime": start} for name, start in value.items()]
        return value

    @field_validator("lcp", "fid", "layout_shift", "inp", mode="before")
    @classmethod
    def _observation_from_number(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return {"value": value}
        return value

    def paint(self, name: str) -> Optional[float]:
        for entry in self.paints:
            if entry.name == name:
                return entry.start_time
        return None


class VitalStatus(str, Enum):
    MEASURED = "measured"
    TIMED_OUT = "timed_out"
    UNSUPPORTED = "unsupported"
    NOT_COLLECTED = "not_collected"


@dataclass(frozen=True)
class VitalValue:
    """A vital that is either a finite non-negative measurement or unavailable."""

    value: Optional[float] = None
    status: VitalStatus = VitalStatus.NOT_COLLECTED

    def __post_init__(self) -> None:
        if self.status is VitalStatus.MEASURED:
            if self.value is None or not math.isfinite(self.value) or self.value < 0:
                raise ValueError(f"measured vital must be finite and non-negative, got {self.value!r}")
        elif self.value is not None:
            raise ValueError("unavailable vitals cannot carry a value")

    @classmethod
    def measured(cls, value: float) -> "VitalValue":
        return cls(float(value), VitalStatus.MEASURED)

    @classmethod
    def unavailable(cls, status: VitalStatus = VitalStatus.NOT_COLLECTED) -> "VitalValue":
        return cls(None, status)

    @classmethod
    def from_optional(cls, value: Optional[float]) -> "VitalValue":
        return cls.unavailable() if value is None else cls.measured(value)

    @property
    def available(self) -> bool:
        return self.status is VitalStatus.MEASURED

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value, "status": self.status.value}


_UNAVAILABLE = VitalValue()


@dataclass(frozen=True)
class CoreWebVitals:
    """Vitals derived for one navigation."""

    fcp: VitalValue = _UNAVAILABLE
    lcp: VitalValue = _UNAVAILABLE
    fid: VitalValue = _UNAVAILABLE
    inp: VitalValue = _UNAVAILABLE
    cls: VitalValue = _UNAVAILABLE
    ttfb: VitalValue = _UNAVAILABLE
    tti: VitalValue = _UNAVAILABLE
    tbt: VitalValue = _UNAVAILABLE
    speed_index: VitalValue = _UNAVAILABLE
    url: str = ""
    timestamp: float = field(default_factory=lambda: time.time() * 1000.0)
    details: Dict[str, Any] = field(default_factory=dict)

    _FIELDS = {
        "FCP": "fcp",
        "LCP": "lcp",
        "FID": "fid",
        "INP": "inp",
        "CLS": "cls",
        "TTFB": "ttfb",
        "TTI": "tti",
        "TBT": "tbt",
        "SI": "speed_index",
    }

    def get(self, name: str) -> VitalValue:
        """Look a vital up by its report name (``"LCP"``, ``"SI"``...)."""
        return getattr(self, self._FIELDS[name])

    def value(self, name: str) -> Optional[float]:
        return self.get(name).value

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {name: self.get(name).to_dict() for name in VITAL_NAMES}
        payload["url"] = self.url
        payload["timestamp"] = self.timestamp
        if self.details:
            payload["details"] = self.details
        return payload


@dataclass(frozen=True)
class PerformanceSummary:
    """Scores, grade and findings for the latest navigation of a scenario."""

    score: Optional[float]
    scores: Dict[str, float]
    grade: str
    violations: Tuple[str, ...]
    budget_violations: Tuple[str, ...]
    metrics: Dict[str, Any]
    recommendations: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "scores": dict(self.scores),
            "grade": self.grade,
            "violations": list(self.violations),
            "budgetViolations": list(self.budget_violations),
            "metrics": self.metrics,
            "recommendations": list(self.recommendations),
        }


@dataclass(frozen=True)
class PerformanceReport:
    """Immutable point-in-time capture of a scenario's performance state."""

    timestamp: float
    scenario_id: str
    reason: str
    navigation: Optional[Dict[str, Any]]
    resources: Tuple[Dict[str, Any], ...]
    web_vitals: Optional[Dict[str, Any]]
    long_tasks: Tuple[Dict[str, Any], ...]
    memory: Optional[Dict[str, Any]]
    user_timings: Tuple[Dict[str, Any], ...]
    summary: PerformanceSummary
    step_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "scenarioId": self.scenario_id,
            "stepId": self.step_id,
            "reason": self.reason,
            "navigation": self.navigation,
            "resources": list(self.resources),
            "webVitals": self.web_vitals,
            "longTasks": list(self.long_tasks),
            "memory": self.memory,
            "userTimings": list(self.user_timings),
            "summary": self.summary.to_dict(),
        }


ObservationResult = Union[VitalObservation, Mapping[str, Any], float, None]

__all__ = [
    "CoreWebVitals",
    "FilmstripFrame",
    "LongTaskEntry",
    "MemoryEntry",
    "NavigationEntry",
    "OBSERVED_VITALS",
    "ObservationResult",
    "PaintEntry",
    "PerformanceReport",
    "PerformanceSummary",
    "ProbePayload",
    "ResourceEntry",
    "UserTimingEntry",
    "VITAL_NAMES",
    "VisualEvent",
    "VisualTimeline",
    "VitalObservation",
    "VitalStatus",
    "VitalValue",
]
