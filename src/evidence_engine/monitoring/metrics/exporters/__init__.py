"""Metrics exporters and the factory selecting one by export format."""

from __future__ import annotations

from typing import Optional

from evidence_engine.core.exceptions import ConfigurationError

from .base import MetricPoint, MetricsExporter
from .grafana import GrafanaExporter
from .prometheus import PrometheusExporter, sanitize_metric_name

__all__ = [
    "GrafanaExporter",
    "MetricPoint",
    "MetricsExporter",
    "PrometheusExporter",
    "create_exporter",
    "sanitize_metric_name",
]


def create_exporter(export_format: str) -> Optional[MetricsExporter]:
    """Return the exporter for ``export_format``; ``json`` needs none beyond the report."""
    normalized = str(export_format or "").strip().lower()
    if normalized in ("", "json"):
        return None
    if normalized == "grafana":
        return GrafanaExporter()
    if normalized == "prometheus":
        return PrometheusExporter()
    raise ConfigurationError(f"Unknown metrics export format: {export_format}", setting="export_format")
