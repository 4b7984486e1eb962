"""Tests covering the Grafana and Prometheus metric exporters."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from evidence_engine.core.exceptions import ConfigurationError, ExportError
from evidence_engine.monitoring.metrics.exporters import (
    GrafanaExporter,
    MetricPoint,
    PrometheusExporter,
    create_exporter,
    sanitize_metric_name,
)


@pytest.fixture()
def points() -> list[MetricPoint]:
    return [
        MetricPoint("cpu.usage", 42.5, 1_700_000_000_000.0, {"executionId": "run-1", "context": "execution"}),
        MetricPoint("step.duration.p95", 812.0, 1_700_000_000_500.0, {"executionId": "run-1"}, "95th percentile step duration in ms"),
    ]


def test_grafana_export_is_flat_json_array(tmp_path: Path, points: list[MetricPoint]) -> None:
    target = tmp_path / "out" / "metrics-grafana-run-1.json"

    GrafanaExporter().export(points, str(target))

    documents = json.loads(target.read_text())
    assert documents[0] == {
        "name": "cpu.usage",
        "value": 42.5,
        "timestamp": 1_700_000_000_000,
        "tags": {"executionId": "run-1", "context": "execution"},
    }


def test_prometheus_render_uses_exposition_format(points: list[MetricPoint]) -> None:
    payload = PrometheusExporter().render(points)

    assert "# HELP evidence_step_duration_p95 95th percentile step duration in ms" in payload
    assert "# TYPE evidence_cpu_usage gauge" in payload
    assert 'evidence_cpu_usage{context="execution",executionId="run-1"} 42.5 1700000000000' in payload


def test_sanitize_metric_name() -> None:
    assert sanitize_metric_name("cpu.usage") == "cpu_usage"
    assert sanitize_metric_name("custom.api-latency", "evidence") == "evidence_custom_api_latency"
    assert sanitize_metric_name("5xx.rate") == "_5xx_rate"


def test_export_failure_raises_export_error(tmp_path: Path, points: list[MetricPoint]) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("")

    with pytest.raises(ExportError):
        GrafanaExporter().export(points, str(blocker / "nested" / "file.json"))


@pytest.mark.parametrize(("export_format", "expected"), [
    ("json", type(None)),
    ("", type(None)),
    ("grafana", GrafanaExporter),
    ("PROMETHEUS", PrometheusExporter),
])
def test_create_exporter(export_format: str, expected: type) -> None:
    assert isinstance(create_exporter(export_format), expected)


def test_create_exporter_rejects_unknown_format() -> None:
    with pytest.raises(ConfigurationError):
        create_exporter("influx")
