"""Grafana JSON exporter: a flat ``[{name, value, timestamp, tags}]`` array."""

from __future__ import annotations

import json
import logging
from typing import Any, List

from .base import MetricPoint, MetricsExporter

__all__ = ["GrafanaExporter"]

logger = logging.getLogger(__name__)


class GrafanaExporter(MetricsExporter):
    """Write exported metrics as a JSON document Grafana's JSON datasource reads."""

    format_name = "grafana"
    file_suffix = "json"

    def render(self, points: List[MetricPoint]) -> str:
        documents: List[dict[str, Any]] = [
            {
                "name": point.name,
                "value": point.value,
                "timestamp": int(point.timestamp),
                "tags": dict(point.tags),
            }
            for point in points
        ]
        return json.dumps(documents, indent=2)
