"""Prometheus text exposition exporter.

Points are rendered through a throwaway ``prometheus_client`` registry so the
output carries the ``# HELP``/``# TYPE`` headers and millisecond timestamps of
the official exposition format.
"""

from __future__ import annotations

import logging
import re
from collections import OrderedDict
from typing import Dict, Iterator, List

from prometheus_client import CollectorRegistry, generate_latest
from prometheus_client.core import GaugeMetricFamily, Metric

from .base import MetricPoint, MetricsExporter

__all__ = ["PrometheusExporter", "sanitize_metric_name"]

logger = logging.getLogger(__name__)

_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_:]")
_INVALID_LABEL_CHARS = re.compile(r"[^a-zA-Z0-9_]")


def sanitize_metric_name(name: str, prefix: str = "") -> str:
    """Return a Prometheus-safe metric name (``cpu.usage`` -> ``cpu_usage``)."""
    cleaned = _INVALID_NAME_CHARS.sub("_", name)
    if prefix:
        cleaned = f"{prefix}_{cleaned}"
    if not cleaned or cleaned[0].isdigit():
        cleaned = f"_{cleaned}"
    return cleaned


def _sanitize_label(name: str) -> str:
    cleaned = _INVALID_LABEL_CHARS.sub("_", name)
    return f"_{cleaned}" if not cleaned or cleaned[0].isdigit() else cleaned


class _SnapshotCollector:
    """Custom collector yielding one gauge family per metric name."""

    def __init__(self, points: List[MetricPoint], prefix: str) -> None:
        self._families: "OrderedDict[str, List[MetricPoint]]" = OrderedDict()
        self._help: Dict[str, str] = {}
        for point in points:
            name = sanitize_metric_name(point.name, prefix)
            self._families.setdefault(name, []).append(point)
            if point.description and name not in self._help:
                self._help[name] = point.description
        self._prefix = prefix

    def collect(self) -> Iterator[Metric]:
        for name, points in self._families.items():
            label_names = sorted({_sanitize_label(key) for point in points for key in point.tags})
            family = GaugeMetricFamily(name, self._help.get(name, f"{name} gauge"), labels=label_names)
            for point in points:
                labels = {_sanitize_label(key): str(value) for key, value in point.tags.items()}
                family.add_metric(
                    [labels.get(label, "") for label in label_names],
                    float(point.value),
                    timestamp=point.timestamp / 1000.0,
                )
            yield family


class PrometheusExporter(MetricsExporter):
    """Render metric points in the Prometheus text exposition format."""

    format_name = "prometheus"
    file_suffix = "txt"

    def __init__(self, name: str = "prometheus", prefix: str = "evidence") -> None:
        super().__init__(name=name)
        self.prefix = prefix

    def render(self, points: List[MetricPoint]) -> str:
        registry = CollectorRegistry(auto_describe=False)
        registry.register(_SnapshotCollector(points, self.prefix))
        payload = generate_latest(registry).decode("utf-8")
        logger.debug("Rendered %s points in Prometheus format", len(points))
        return payload
