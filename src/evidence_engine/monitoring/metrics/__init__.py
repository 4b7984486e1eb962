"""System metrics sampling, alerting and export."""

from .engine import EXECUTION_CONTEXT, LEAK_METRIC, MetricsEngine
from .models import Alert, AlertSeverity, MetricTrend, SystemSample, TrendDirection
from .sampler import SystemSampler

__all__ = [
    "Alert",
    "AlertSeverity",
    "EXECUTION_CONTEXT",
    "LEAK_METRIC",
    "MetricTrend",
    "MetricsEngine",
    "SystemSample",
    "SystemSampler",
    "TrendDirection",
]
