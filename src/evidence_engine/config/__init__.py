"""Configuration objects for the evidence store and its collectors."""

from .settings import (
    AlertThresholds,
    EvidenceSettings,
    MetricsOptions,
    PerformanceBudget,
    PerformanceOptions,
    get_default_settings,
)

__all__ = [
    "AlertThresholds",
    "EvidenceSettings",
    "MetricsOptions",
    "PerformanceBudget",
    "PerformanceOptions",
    "get_default_settings",
]
