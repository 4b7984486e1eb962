"""
Evidence engine configuration definitions.

Purpose:
    Provide strongly typed, immutable configuration objects for the metrics
    engine, the performance engine and the evidence store so that runtime
    components depend on validated settings instead of loose dictionaries.
External Dependencies:
    None. This module relies exclusively on the Python standard library.
Fallback Semantics:
    Every knob has a conservative default. ``EvidenceSettings.from_env`` reads
    the environment-style knobs (``EVIDENCE_PATH``, ``METRICS_INTERVAL_MS`` and
    friends) and keeps the default for anything unset.
Timeout Strategy:
    Configuration loading is non-blocking; probe deadlines configured here are
    enforced by the performance engine.
"""

from __future__ import annotations

import dataclasses
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

from evidence_engine.core.exceptions import ConfigurationError

EXPORT_FORMATS = ("json", "grafana", "prometheus")
BYTES_PER_MB = 1024 * 1024

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class AlertThresholds:
    """Percentages above which a system sample raises an alert."""

    cpu: float = 80.0
    memory: float = 85.0
    disk: float = 90.0

    def __post_init__(self) -> None:
        for name in ("cpu", "memory", "disk"):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                raise ConfigurationError(f"{name} alert threshold must be within 0-100", setting=name)


@dataclass(frozen=True)
class MetricsOptions:
    """Immutable configuration for the system metrics engine.

    Summary:
        Encapsulates sampling cadence, alerting and leak-detection toggles and
        the export format used when the engine writes its final report.
    Parameters:
        interval_ms (int): Delay between two sampling ticks.
        collect_system_metrics (bool): Start the periodic sampler at
            initialization.
        include_gc_metrics (bool): Record garbage collector pauses.
        detect_memory_leaks (bool): Run the heap growth heuristic per tick.
        enable_alerts (bool): Compare samples against ``thresholds``.
        export_format (str): One of ``json``, ``grafana`` or ``prometheus``.
        thresholds (AlertThresholds): CPU, memory and disk alert limits.
        max_samples_per_context (int): Capacity of each per-context ring buffer.
        cpu_window_ms (int): Measurement window used to derive CPU usage.
        leak_window (int): Number of heap readings retained per context.
        leak_min_samples (int): Readings required before growth is evaluated.
        leak_growth_percent (float): Growth above which a leak alert fires.
        spike_threshold (float): Consecutive CPU delta that counts as a spike.
    Raises:
        ConfigurationError: When numeric values are out of range or the export
        format is unknown.
    """

    interval_ms: int = 5000
    collect_system_metrics: bool = True
    include_gc_metrics: bool = True
    detect_memory_leaks: bool = True
    enable_alerts: bool = True
    aggregate_metrics: bool = True
    export_format: str = "json"
    thresholds: AlertThresholds = field(default_factory=AlertThresholds)
    max_samples_per_context: int = 1000
    cpu_window_ms: int = 100
    leak_window: int = 10
    leak_min_samples: int = 5
    leak_growth_percent: float = 50.0
    spike_threshold: float = 30.0

    def __post_init__(self) -> None:
        if self.interval_ms <= 0:
            raise ConfigurationError("interval_ms must be a positive integer", setting="interval_ms")
        if self.export_format not in EXPORT_FORMATS:
            raise ConfigurationError(
                f"export_format must be one of {', '.join(EXPORT_FORMATS)}",
                setting="export_format",
            )
        if self.max_samples_per_context <= 0:
            raise ConfigurationError(
                "max_samples_per_context must be a positive integer",
                setting="max_samples_per_context",
            )
        if self.cpu_window_ms < 0:
            raise ConfigurationError("cpu_window_ms cannot be negative", setting="cpu_window_ms")
        if self.leak_min_samples < 2 or self.leak_window < self.leak_min_samples:
            raise ConfigurationError(
                "leak_window must be >= leak_min_samples and leak_min_samples >= 2",
                setting="leak_window",
            )

    def merged(self, overrides: Optional[Mapping[str, Any]]) -> "MetricsOptions":
        """Return a copy with ``overrides`` applied; unknown keys are rejected."""
        return _merge(self, overrides)


@dataclass(frozen=True)
class PerformanceBudget:
    """Threshold table used for budget checks and vital scoring.

    Timings are in milliseconds; ``cls`` is unitless.
    """

    fcp: float = 1800.0
    lcp: float = 2500.0
    fid: float = 100.0
    cls: float = 0.1
    ttfb: float = 800.0
    page_load: float = 3000.0
    resource_load: float = 1000.0
    tti: float = 3800.0
    tbt: float = 200.0
    inp: float = 200.0

    _ALIASES = {
        "FCP": "fcp",
        "LCP": "lcp",
        "FID": "fid",
        "CLS": "cls",
        "TTFB": "ttfb",
        "TTI": "tti",
        "TBT": "tbt",
        "INP": "inp",
        "pageLoad": "page_load",
        "resourceLoad": "resource_load",
    }

    def __post_init__(self) -> None:
        for budget_field in dataclasses.fields(self):
            if getattr(self, budget_field.name) < 0:
                raise ConfigurationError(
                    f"budget '{budget_field.name}' cannot be negative",
                    setting=budget_field.name,
                )

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any], base: Optional["PerformanceBudget"] = None) -> "PerformanceBudget":
        """Build a budget from camelCase (``pageLoad``) or snake_case keys."""
        normalized: dict[str, float] = {}
        for key, value in mapping.items():
            name = cls._ALIASES.get(key, key)
            if name not in {f.name for f in dataclasses.fields(cls)}:
                raise ConfigurationError(f"Unknown performance budget key '{key}'", setting=key)
            try:
                normalized[name] = float(value)
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(f"Budget '{key}' must be numeric", setting=key) from exc
        return dataclasses.replace(base or cls(), **normalized)

    def as_dict(self) -> dict[str, float]:
        """Return the budget keyed by the vital names used in reports."""
        reverse = {snake: camel for camel, snake in self._ALIASES.items()}
        return {reverse[f.name]: getattr(self, f.name) for f in dataclasses.fields(self)}


@dataclass(frozen=True)
class PerformanceOptions:
    """Configuration for browser performance collection."""

    collect_web_vitals: bool = True
    vitals_timeout_ms: int = 10_000
    capture_timeout_ms: int = 10_000
    budget: PerformanceBudget = field(default_factory=PerformanceBudget)
    max_entries_per_scenario: int = 500
    spike_threshold_percent: float = 30.0

    def __post_init__(self) -> None:
        if self.vitals_timeout_ms <= 0 or self.capture_timeout_ms <= 0:
            raise ConfigurationError("probe timeouts must be positive", setting="vitals_timeout_ms")
        if self.max_entries_per_scenario <= 0:
            raise ConfigurationError(
                "max_entries_per_scenario must be a positive integer",
                setting="max_entries_per_scenario",
            )

    def merged(self, overrides: Optional[Mapping[str, Any]]) -> "PerformanceOptions":
        """Return a copy with ``overrides`` applied; ``budget`` may be a mapping."""
        if overrides and isinstance(overrides.get("budget"), Mapping):
            overrides = dict(overrides)
            overrides["budget"] = PerformanceBudget.from_mapping(overrides["budget"], base=self.budget)
        return _merge(self, overrides)


@dataclass(frozen=True)
class EvidenceSettings:
    """Top level settings for the evidence store and its collectors.

    Summary:
        Groups storage location, storage budget, compression, archival and
        retention knobs together with the nested metrics and performance
        options.
    Parameters:
        evidence_path (Path): Root directory of the evidence tree.
        max_evidence_size (int): Storage budget per execution, in bytes.
        compress_evidence (bool): Gzip compressible evidence types.
        archive_evidence (bool): Write a compressed archive on completion.
        delete_after_archive (bool): Remove source files once archived.
        retention_days (int): Age after which manifests and archives expire.
        metrics (MetricsOptions): Options forwarded to the metrics engine.
        performance (PerformanceOptions): Options for the performance engine.
    Raises:
        ConfigurationError: When the storage budget or retention is invalid.
    """

    evidence_path: Path = Path("./evidence")
    max_evidence_size: int = 100 * BYTES_PER_MB
    compress_evidence: bool = True
    archive_evidence: bool = False
    delete_after_archive: bool = False
    retention_days: int = 7
    metrics: MetricsOptions = field(default_factory=MetricsOptions)
    performance: PerformanceOptions = field(default_factory=PerformanceOptions)

    def __post_init__(self) -> None:
        if not isinstance(self.evidence_path, Path):
            object.__setattr__(self, "evidence_path", Path(self.evidence_path))
        if self.max_evidence_size <= 0:
            raise ConfigurationError("max_evidence_size must be positive", setting="max_evidence_size")
        if self.retention_days < 0:
            raise ConfigurationError("retention_days cannot be negative", setting="retention_days")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EvidenceSettings":
        """Build settings from environment-style knobs.

        Unset variables keep their defaults; malformed values raise
        :class:`ConfigurationError` naming the variable.
        """
        env = os.environ if environ is None else environ
        defaults = cls()
        metrics_defaults = defaults.metrics
        perf_defaults = defaults.performance

        thresholds = AlertThresholds(
            cpu=_env_float(env, "CPU_ALERT_THRESHOLD", metrics_defaults.thresholds.cpu),
            memory=_env_float(env, "MEMORY_ALERT_THRESHOLD", metrics_defaults.thresholds.memory),
            disk=_env_float(env, "DISK_ALERT_THRESHOLD", metrics_defaults.thresholds.disk),
        )
        metrics = MetricsOptions(
            interval_ms=_env_int(env, "METRICS_INTERVAL_MS", metrics_defaults.interval_ms),
            collect_system_metrics=_env_bool(env, "COLLECT_SYSTEM_METRICS", metrics_defaults.collect_system_metrics),
            include_gc_metrics=_env_bool(env, "INCLUDE_GC_METRICS", metrics_defaults.include_gc_metrics),
            detect_memory_leaks=_env_bool(env, "DETECT_MEMORY_LEAKS", metrics_defaults.detect_memory_leaks),
            enable_alerts=_env_bool(env, "ENABLE_METRIC_ALERTS", metrics_defaults.enable_alerts),
            aggregate_metrics=_env_bool(env, "AGGREGATE_METRICS", metrics_defaults.aggregate_metrics),
            export_format=env.get("METRICS_EXPORT_FORMAT", metrics_defaults.export_format).strip().lower(),
            thresholds=thresholds,
            max_samples_per_context=_env_int(env, "MAX_SAMPLES_PER_CONTEXT", metrics_defaults.max_samples_per_context),
        )

        budget = perf_defaults.budget
        raw_budget = env.get("PERFORMANCE_BUDGET")
        if raw_budget:
            try:
                parsed = json.loads(raw_budget)
            except json.JSONDecodeError as exc:
                raise ConfigurationError("PERFORMANCE_BUDGET must be a JSON object", setting="PERFORMANCE_BUDGET") from exc
            if not isinstance(parsed, dict):
                raise ConfigurationError("PERFORMANCE_BUDGET must be a JSON object", setting="PERFORMANCE_BUDGET")
            budget = PerformanceBudget.from_mapping(parsed, base=budget)

        performance = PerformanceOptions(
            collect_web_vitals=_env_bool(env, "COLLECT_WEB_VITALS", perf_defaults.collect_web_vitals),
            vitals_timeout_ms=_env_int(env, "WEB_VITALS_TIMEOUT_MS", perf_defaults.vitals_timeout_ms),
            capture_timeout_ms=_env_int(env, "PROBE_CAPTURE_TIMEOUT_MS", perf_defaults.capture_timeout_ms),
            budget=budget,
        )

        return cls(
            evidence_path=Path(env.get("EVIDENCE_PATH", str(defaults.evidence_path))),
            max_evidence_size=int(_env_float(env, "MAX_EVIDENCE_SIZE_MB", defaults.max_evidence_size / BYTES_PER_MB) * BYTES_PER_MB),
            compress_evidence=_env_bool(env, "COMPRESS_EVIDENCE", defaults.compress_evidence),
            archive_evidence=_env_bool(env, "ARCHIVE_EVIDENCE", defaults.archive_evidence),
            delete_after_archive=_env_bool(env, "DELETE_AFTER_ARCHIVE", defaults.delete_after_archive),
            retention_days=_env_int(env, "EVIDENCE_RETENTION_DAYS", defaults.retention_days),
            metrics=metrics,
            performance=performance,
        )

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "EvidenceSettings":
        """Build settings from a nested mapping such as a parsed YAML file.

        ``max_evidence_size_mb`` is accepted as an alternative to the byte
        based ``max_evidence_size``.
        """
        data = dict(mapping or {})
        metrics = MetricsOptions().merged(_thresholds_from(data.pop("metrics", None)))
        performance = PerformanceOptions().merged(data.pop("performance", None))
        if "max_evidence_size_mb" in data:
            data["max_evidence_size"] = int(float(data.pop("max_evidence_size_mb")) * BYTES_PER_MB)
        if "evidence_path" in data:
            data["evidence_path"] = Path(data["evidence_path"])
        return _merge(cls(metrics=metrics, performance=performance), data)

    @property
    def max_evidence_size_mb(self) -> float:
        return self.max_evidence_size / BYTES_PER_MB


def get_default_settings() -> EvidenceSettings:
    """Return settings derived from the current process environment."""
    return EvidenceSettings.from_env()


def _thresholds_from(section: Optional[Mapping[str, Any]]) -> Optional[dict[str, Any]]:
    if not section:
        return None
    data = dict(section)
    if isinstance(data.get("thresholds"), Mapping):
        data["thresholds"] = AlertThresholds(**data["thresholds"])
    return data


def _merge(instance: Any, overrides: Optional[Mapping[str, Any]]) -> Any:
    if not overrides:
        return instance
    known = {f.name for f in dataclasses.fields(instance)}
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise ConfigurationError(
            f"Unknown option(s) for {type(instance).__name__}: {', '.join(unknown)}",
            setting=unknown[0],
        )
    return dataclasses.replace(instance, **dict(overrides))


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got '{raw}'", setting=name)


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got '{raw}'", setting=name) from exc


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got '{raw}'", setting=name) from exc


__all__ = [
    "AlertThresholds",
    "BYTES_PER_MB",
    "EXPORT_FORMATS",
    "EvidenceSettings",
    "MetricsOptions",
    "PerformanceBudget",
    "PerformanceOptions",
    "get_default_settings",
]
