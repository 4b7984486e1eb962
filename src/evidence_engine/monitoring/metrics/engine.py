"""
System metrics engine.

The engine samples CPU, memory and disk usage on a fixed interval, raises
alerts when a sample crosses a threshold or the heap keeps growing, records
step timings and custom metrics, and at finalization writes a JSON report,
an optional Grafana or Prometheus export and a trend analysis.

It implements the :class:`~evidence_engine.collectors.base.EvidenceCollector`
contract and is constructed explicitly (one instance per execution context)
rather than shared globally.
"""

from __future__ import annotations

import asyncio
import dataclasses
import gc
import itertools
import logging
import time
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Deque, Dict, List, Mapping, Optional, Union

from evidence_engine.collectors.base import EvidenceCollector
from evidence_engine.config.settings import MetricsOptions
from evidence_engine.core.exceptions import ExportError, StorageInitializationError
from evidence_engine.core.utils.files import write_json_async
from evidence_engine.evidence.models import CollectedItem, EvidenceType

from . import statistics
from .exporters import MetricPoint, create_exporter
from .models import (
    AggregatedMetrics,
    Alert,
    AlertSeverity,
    BrowserSample,
    CustomSample,
    StepSample,
    SystemSample,
)
from .sampler import SystemSampler
from .series import BoundedSeries

logger = logging.getLogger(__name__)

EXECUTION_CONTEXT = "execution"
LEAK_METRIC = "memory.heapUsed"
RECENT_ALERTS_IN_SNAPSHOT = 10
GC_EVENT_CAPACITY = 200


def _now_ms() -> float:
    return time.time() * 1000.0


class MetricsEngine(EvidenceCollector):
    """Periodic system sampler with alerting, leak detection and aggregation."""

    def __init__(
        self,
        evidence_root: Union[str, Path] = "./evidence",
        options: Optional[MetricsOptions] = None,
        sampler: Optional[SystemSampler] = None,
        name: str = "metrics",
    ):
        """Create an engine writing below ``<evidence_root>/metrics/<execution_id>``.

        Args:
            evidence_root: Root of the evidence tree.
            options: Sampling, alerting and export options.
            sampler: Source of system samples; a psutil backed
                :class:`SystemSampler` is created at initialization when omitted.
            name: Collector name used by the registry.
        """
        super().__init__(name)
        self.evidence_root = Path(evidence_root)
        self.options = options or MetricsOptions()
        self.output_dir: Optional[Path] = None
        self._sampler = sampler
        self._sampling_task: Optional[asyncio.Task] = None
        self._gc_started: Optional[float] = None
        self._gc_hooked = False
        self._sequence = itertools.count(1)
        self._reset_state()

    # ------------------------------------------------------------------
    # Collector lifecycle
    # ------------------------------------------------------------------

    async def initialize(
        self,
        execution_id: str,
        options: Optional[Union[MetricsOptions, Mapping[str, Any]]] = None,
    ) -> None:
        """Prepare the output directory and start the sampling loop.

        Raises:
            StorageInitializationError: if the output directory cannot be created.
        """
        if isinstance(options, MetricsOptions):
            self.options = options
        elif options:
            self.options = self.options.merged(options)

        output_dir = self.evidence_root / "metrics" / execution_id
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageInitializationError(str(output_dir), exc) from exc

        await self._stop_sampling()
        self._remove_gc_hook()
        self._reset_state()
        self.execution_id = execution_id
        self.output_dir = output_dir
        self._start_time = _now_ms()

        if self._sampler is None:
            self._sampler = SystemSampler(
                disk_path=str(self.evidence_root),
                cpu_window_ms=self.options.cpu_window_ms,
            )
        if self.options.include_gc_metrics:
            self._install_gc_hook()
        if self.options.collect_system_metrics:
            self._sampling_task = asyncio.create_task(self._sampling_loop())

        logger.info(
            "Metrics engine initialized for execution %s (interval=%sms, alerts=%s, leak detection=%s)",
            execution_id,
            self.options.interval_ms,
            self.options.enable_alerts,
            self.options.detect_memory_leaks,
        )

    async def collect_for_scenario(self, scenario_id: str, scenario_name: str) -> List[CollectedItem]:
        """Mark the scenario start and persist a scenario-start snapshot."""
        now = _now_ms()
        self._scenario_starts[scenario_id] = now
        self._step_boundaries[scenario_id] = now
        self._scenario_names[scenario_id] = scenario_name

        if self.options.collect_system_metrics and self._sampler is not None:
            try:
                await self.sample_once(context_id=scenario_id)
            except Exception as exc:  # noqa: BLE001 - snapshot still useful without a fresh sample
                logger.warning("Scenario sample failed for %s: %s", scenario_id, exc)

        item = await self._write_snapshot("scenario-start", scenario_id, extra={"scenarioName": scenario_name})
        return [item] if item else []

    def mark_step_start(self, scenario_id: str, step_id: str) -> None:
        """Record the start time of a step so its duration can be measured exactly."""
        self._step_starts[(scenario_id, step_id)] = _now_ms()

    async def collect_for_step(
        self,
        scenario_id: str,
        step_id: str,
        step_text: str,
        status: str,
    ) -> List[CollectedItem]:
        """Record the step outcome; failed steps also persist a snapshot.

        Duration runs from :meth:`mark_step_start` when it was called for this
        step, otherwise from the previous step boundary of the scenario.
        """
        now = _now_ms()
        started = self._step_starts.pop((scenario_id, step_id), None)
        if started is None:
            started = self._step_boundaries.get(scenario_id, self._scenario_starts.get(scenario_id, now))
        self._step_boundaries[scenario_id] = now

        step = StepSample(
            scenario_id=scenario_id,
            step_id=step_id,
            text=step_text,
            status=status,
            duration_ms=max(0.0, now - started),
            timestamp=now,
        )
        self._steps.append(scenario_id, step)
        logger.debug("Recorded step %s (%s) in %.1fms", step_id, status, step.duration_ms)

        if not step.failed:
            return []

        item = await self._write_snapshot(
            "step-failed",
            scenario_id,
            step_id=step_id,
            extra={"stepText": step_text, "status": status, "durationMs": step.duration_ms},
        )
        return [item] if item else []

    async def finalize(self) -> None:
        """Stop sampling and write the terminal report and exports."""
        await self.collect()

    async def collect(self) -> List[CollectedItem]:
        """Stop the sampler, write the report, export and trend analysis.

        Export failures are logged and never prevent the report from being
        written. Returns the items produced by this call.
        """
        await self._stop_sampling()
        self._remove_gc_hook()

        if self.output_dir is None or self.execution_id is None:
            logger.warning("Metrics engine finalized before initialization; nothing to report")
            return []

        self._end_time = _now_ms()
        produced: List[CollectedItem] = []

        report = self.build_report()
        report_path = self.output_dir / "metrics-report.json"
        await write_json_async(report_path, report)
        produced.append(self._report_item(report_path, "report"))
        logger.info("Wrote metrics report to %s", report_path)

        exporter = create_exporter(self.options.export_format)
        if exporter is not None:
            export_path = self.output_dir / exporter.filename(self.execution_id)
            try:
                await asyncio.to_thread(exporter.export, self.export_points(), str(export_path))
            except ExportError as exc:
                logger.error("Metrics export (%s) failed: %s", exporter.format_name, exc)
            else:
                produced.append(self._report_item(export_path, exporter.format_name))

        trends_path = self.output_dir / "metrics-trends.json"
        try:
            await write_json_async(trends_path, self.analyze_trends())
        except OSError as exc:
            logger.error("Failed to write metrics trends: %s", exc)
        else:
            produced.append(self._report_item(trends_path, "trends"))

        self._evidence.extend(produced)
        return produced

    def get_evidence(self) -> List[CollectedItem]:
        return list(self._evidence)

    def clear(self) -> None:
        """Drop in-memory series, alerts and produced items."""
        if self._sampling_task is not None and not self._sampling_task.done():
            self._sampling_task.cancel()
        self._sampling_task = None
        self._remove_gc_hook()
        self._reset_state()
        logger.debug("Metrics engine state cleared")

    async def shutdown(self) -> None:
        """Cancel and await the sampling task, then drop all state without reporting."""
        await self._stop_sampling()
        self.clear()

    # ------------------------------------------------------------------
    # Sampling, alerting and leak detection
    # ------------------------------------------------------------------

    async def sample_once(self, context_id: str = EXECUTION_CONTEXT) -> SystemSample:
        """Take one sample and run it through aggregation and alerting."""
        if self._sampler is None:
            self._sampler = SystemSampler(disk_path=str(self.evidence_root), cpu_window_ms=self.options.cpu_window_ms)
        sample = await self._sampler.sample()
        self.record_system_sample(sample, context_id)
        return sample

    def record_system_sample(self, sample: SystemSample, context_id: str = EXECUTION_CONTEXT) -> List[Alert]:
        """Append ``sample`` to its context and return any alerts it raised."""
        self._system.append(context_id, sample)
        if self.options.aggregate_metrics:
            aggregate = self._aggregates.get(context_id)
            if aggregate is None:
                aggregate = self._aggregates[context_id] = AggregatedMetrics(context_id)
            aggregate.add(sample)

        raised: List[Alert] = []
        if self.options.enable_alerts:
            raised.extend(self.check_thresholds(sample, context_id))
        if self.options.detect_memory_leaks and sample.memory.heap_used > 0:
            leak = self.detect_memory_leak(context_id, sample.memory.heap_used)
            if leak is not None:
                raised.append(leak)
        return raised

    def check_thresholds(self, sample: SystemSample, context_id: str = EXECUTION_CONTEXT) -> List[Alert]:
        """Emit one alert per metric whose value exceeds its threshold."""
        thresholds = self.options.thresholds
        checks = (
            ("cpu.usage", "CPU usage", sample.cpu.usage, thresholds.cpu, AlertSeverity.ERROR),
            ("memory.usage", "Memory usage", sample.memory.percent, thresholds.memory, AlertSeverity.ERROR),
            ("disk.usage", "Disk usage", sample.disk.percent, thresholds.disk, AlertSeverity.WARNING),
        )

        alerts: List[Alert] = []
        for metric, label, value, threshold, severity in checks:
            if value > threshold:
                alerts.append(
                    self._emit(
                        Alert(
                            severity=severity,
                            metric=metric,
                            value=value,
                            threshold=threshold,
                            condition=f"> {threshold:g}%",
                            message=f"{label} {value:.1f}% exceeds threshold {threshold:g}%",
                            context_id=context_id,
                            timestamp=sample.timestamp,
                        )
                    )
                )
        return alerts

    def detect_memory_leak(self, context_id: str, heap_used: float) -> Optional[Alert]:
        """Add a heap reading and alert when the retained window grows steadily.

        The window must hold at least ``leak_min_samples`` readings and be
        strictly increasing; a flat or falling reading disqualifies the
        current check but stays in the history.
        """
        history = self._heap_history.get(context_id)
        if history is None:
            history = self._heap_history[context_id] = deque(maxlen=self.options.leak_window)
        history.append(float(heap_used))

        if len(history) < self.options.leak_min_samples:
            return None

        readings = list(history)
        if any(current <= previous for previous, current in zip(readings, readings[1:])):
            return None

        first, last = readings[0], readings[-1]
        if first <= 0:
            return None

        growth = (last - first) / first * 100.0
        limit = self.options.leak_growth_percent
        if growth <= limit:
            return None

        return self._emit(
            Alert(
                severity=AlertSeverity.ERROR,
                metric=LEAK_METRIC,
                value=last,
                threshold=first * (1 + limit / 100.0),
                condition=f"growth > {limit:g}%",
                message=(
                    f"Possible memory leak detected: heap grew {growth:.1f}% "
                    f"over the last {len(readings)} samples"
                ),
                context_id=context_id,
                growth_rate=growth,
            )
        )

    def record_custom_metric(
        self,
        name: str,
        value: float,
        unit: str = "",
        tags: Optional[Mapping[str, str]] = None,
        threshold: Optional[float] = None,
    ) -> Optional[Alert]:
        """Record a custom metric; alert when it exceeds ``threshold``."""
        sample = CustomSample(name=name, value=float(value), unit=unit, tags=dict(tags or {}))
        self._custom.append(name, sample)

        if threshold is None or value <= threshold or not self.options.enable_alerts:
            return None
        return self._emit(
            Alert(
                severity=AlertSeverity.WARNING,
                metric=name,
                value=float(value),
                threshold=float(threshold),
                condition=f"> {threshold:g}{unit}",
                message=f"Custom metric {name} = {value:g}{unit} exceeds threshold {threshold:g}{unit}",
                context_id=EXECUTION_CONTEXT,
            )
        )

    def record_browser_metrics(self, scenario_id: str, metrics: Mapping[str, Any]) -> BrowserSample:
        """Store browser resource readings and run leak detection on the JS heap."""
        heap_used = metrics.get("heapUsed", metrics.get("usedJSHeapSize"))
        sample = BrowserSample(
            scenario_id=scenario_id,
            heap_used=heap_used,
            heap_total=metrics.get("heapTotal", metrics.get("totalJSHeapSize")),
            dom_nodes=metrics.get("domNodes"),
            event_listeners=metrics.get("eventListeners"),
        )
        self._browser.append(scenario_id, sample)
        if self.options.detect_memory_leaks and heap_used:
            self.detect_memory_leak(f"browser:{scenario_id}", heap_used)
        return sample

    @property
    def alerts(self) -> List[Alert]:
        return list(self._alerts)

    def get_aggregates(self, context_id: str = EXECUTION_CONTEXT) -> Optional[AggregatedMetrics]:
        return self._aggregates.get(context_id)

    def get_samples(self, context_id: str = EXECUTION_CONTEXT) -> List[SystemSample]:
        return self._system.get(context_id)

    def get_steps(self, scenario_id: str) -> List[StepSample]:
        return self._steps.get(scenario_id)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def build_report(self) -> Dict[str, Any]:
        """Assemble the final metrics report."""
        steps = self._steps.all()
        durations = [step.duration_ms for step in steps]
        failed = sum(1 for step in steps if step.failed)
        system_samples = self._ordered_system_samples()

        scenarios: Dict[str, Any] = {}
        for scenario_id in self._steps.contexts():
            scenario_steps = self._steps.get(scenario_id)
            scenario_failed = sum(1 for step in scenario_steps if step.failed)
            scenarios[scenario_id] = {
                "name": self._scenario_names.get(scenario_id, scenario_id),
                "steps": len(scenario_steps),
                "failed": scenario_failed,
                "errorRate": _rate(scenario_failed, len(scenario_steps)),
                "durations": statistics.aggregate_metric_values(s.duration_ms for s in scenario_steps),
            }

        report: Dict[str, Any] = {
            "executionId": self.execution_id,
            "generatedAt": datetime.now(timezone.utc).isoformat(),
            "startTime": self._start_time,
            "endTime": self._end_time,
            "duration": (self._end_time or _now_ms()) - (self._start_time or _now_ms()),
            "options": dataclasses.asdict(self.options),
            "system": {
                "aggregates": {ctx: agg.to_dict() for ctx, agg in self._aggregates.items()},
                "cpu": statistics.aggregate_metric_values(s.cpu.usage for s in system_samples),
                "memory": statistics.aggregate_metric_values(s.memory.percent for s in system_samples),
                "disk": statistics.aggregate_metric_values(s.disk.percent for s in system_samples),
                "partialSamples": sum(1 for s in system_samples if s.errors),
            },
            "steps": {
                "total": len(steps),
                "passed": len(steps) - failed,
                "failed": failed,
                "errorRate": _rate(failed, len(steps)),
                "durations": statistics.aggregate_metric_values(durations),
            },
            "scenarios": scenarios,
            "throughput": self._throughput_by_minute(steps),
            "custom": {
                name: {
                    **statistics.aggregate_metric_values(s.value for s in self._custom.get(name)),
                    "unit": self._custom.latest(name).unit if self._custom.latest(name) else "",
                }
                for name in self._custom.contexts()
            },
            "browser": {
                scenario_id: [sample.to_dict() for sample in self._browser.get(scenario_id)]
                for scenario_id in self._browser.contexts()
            },
            "alerts": [alert.to_dict() for alert in self._alerts],
            "alertCounts": self._alert_counts(),
            "droppedSamples": {
                ctx: self._system.dropped(ctx) for ctx in self._system.contexts() if self._system.dropped(ctx)
            },
            "recommendations": self.recommendations(),
        }
        if self.options.include_gc_metrics:
            pauses = [event["durationMs"] for event in self._gc_events]
            report["gc"] = {
                "collections": len(self._gc_events),
                "pauses": statistics.aggregate_metric_values(pauses),
                "recent": list(self._gc_events)[-RECENT_ALERTS_IN_SNAPSHOT:],
            }
        return report

    def analyze_trends(self) -> Dict[str, Any]:
        """Trends, one-step predictions, CPU spikes and cpu/memory correlation."""
        samples = self._ordered_system_samples()
        cpu = [s.cpu.usage for s in samples]
        memory = [s.memory.percent for s in samples]
        error_rates = [
            _rate(sum(1 for s in self._steps.get(sid) if s.failed), len(self._steps.get(sid)))
            for sid in self._steps.contexts()
        ]

        trends: Dict[str, Any] = {}
        if len(cpu) > 2:
            trends["cpu"] = statistics.build_trend("cpu.usage", cpu).to_dict()
        if len(memory) > 2:
            trends["memory"] = statistics.build_trend("memory.usage", memory).to_dict()

        return {
            "executionId": self.execution_id,
            "timestamp": _now_ms(),
            "trends": trends,
            "predictions": {
                "cpu": statistics.simple_forecast(cpu),
                "memory": statistics.simple_forecast(memory),
                "errorRate": statistics.simple_forecast(error_rates),
            },
            "anomalies": {
                "cpuSpikes": statistics.detect_spikes(cpu, self.options.spike_threshold),
            },
            "correlations": {
                "cpuMemory": statistics.pearson_correlation(cpu, memory),
            },
        }

    def recommendations(self) -> List[str]:
        samples = self._system.all()
        steps = self._steps.all()
        failed = sum(1 for step in steps if step.failed)
        error_rate = _rate(failed, len(steps))
        avg_duration = statistics.average([step.duration_ms for step in steps])

        advice: List[str] = []
        if samples and statistics.average([s.cpu.usage for s in samples]) > 70:
            advice.append(
                "High CPU usage detected. Consider optimizing compute-intensive operations or scaling resources."
            )
        if samples and statistics.average([s.memory.percent for s in samples]) > 80:
            advice.append("High memory usage detected. Review for memory leaks and optimize memory allocation.")
        if any(alert.metric == LEAK_METRIC for alert in self._alerts):
            advice.append("Potential memory leak detected. Profile application memory usage and fix leaks.")
        if error_rate > 10:
            advice.append(
                f"High error rate ({error_rate:.2f}%). Investigate failing tests and improve stability."
            )
        if avg_duration > 3000:
            advice.append(
                f"Slow steps detected (average {avg_duration:.0f}ms). Review waits and page load performance."
            )
        return advice

    def export_points(self) -> List[MetricPoint]:
        """Flatten aggregates, step statistics and custom metrics into export points."""
        base_tags = {"executionId": self.execution_id or ""}
        now = _now_ms()
        points: List[MetricPoint] = []

        for context_id, aggregate in self._aggregates.items():
            tags = {**base_tags, "context": context_id}
            stamp = aggregate.last_timestamp or now
            points.append(MetricPoint("cpu.usage", aggregate.cpu.avg, stamp, tags, "Average CPU usage percent"))
            points.append(MetricPoint("memory.usage", aggregate.memory.avg, stamp, tags, "Average memory usage percent"))
            points.append(MetricPoint("disk.usage", aggregate.disk.avg, stamp, tags, "Average disk usage percent"))

        for scenario_id in self._steps.contexts():
            scenario_steps = self._steps.get(scenario_id)
            tags = {**base_tags, "context": scenario_id}
            stamp = scenario_steps[-1].timestamp
            durations = statistics.aggregate_metric_values(s.duration_ms for s in scenario_steps)
            failed = sum(1 for s in scenario_steps if s.failed)
            points.append(MetricPoint("step.duration.p95", durations["p95"], stamp, tags, "95th percentile step duration in ms"))
            points.append(MetricPoint("step.error.rate", _rate(failed, len(scenario_steps)), stamp, tags, "Failed steps percent"))

        for name in self._custom.contexts():
            latest = self._custom.latest(name)
            if latest is not None:
                points.append(
                    MetricPoint(f"custom.{name}", latest.value, latest.timestamp, {**base_tags, **latest.tags}, f"Custom metric {name}")
                )
        return points

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _reset_state(self) -> None:
        capacity = self.options.max_samples_per_context
        self._system: BoundedSeries[SystemSample] = BoundedSeries(capacity)
        self._steps: BoundedSeries[StepSample] = BoundedSeries(capacity)
        self._custom: BoundedSeries[CustomSample] = BoundedSeries(capacity)
        self._browser: BoundedSeries[BrowserSample] = BoundedSeries(capacity)
        self._aggregates: Dict[str, AggregatedMetrics] = {}
        self._heap_history: Dict[str, Deque[float]] = {}
        self._alerts: List[Alert] = []
        self._gc_events: Deque[Dict[str, Any]] = deque(maxlen=GC_EVENT_CAPACITY)
        self._scenario_starts: Dict[str, float] = {}
        self._scenario_names: Dict[str, str] = {}
        self._step_starts: Dict[tuple[str, str], float] = {}
        self._step_boundaries: Dict[str, float] = {}
        self._evidence: List[CollectedItem] = []
        self._start_time: Optional[float] = None
        self._end_time: Optional[float] = None

    async def _sampling_loop(self) -> None:
        """Background task sampling the system every ``interval_ms``."""
        interval = self.options.interval_ms / 1000.0
        logger.debug("Starting metrics sampling loop with interval %ss", interval)
        try:
            while True:
                try:
                    await self.sample_once()
                except Exception as exc:  # noqa: BLE001 - a failed tick must not stop sampling
                    logger.error("Metrics sampling tick failed: %s", exc)
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.debug("Metrics sampling loop cancelled")
            raise

    async def _stop_sampling(self) -> None:
        task = self._sampling_task
        self._sampling_task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _emit(self, alert: Alert) -> Alert:
        self._alerts.append(alert)
        log = logger.error if alert.severity in (AlertSeverity.ERROR, AlertSeverity.CRITICAL) else logger.warning
        log("Metric alert [%s] %s (%s)", alert.severity.value, alert.message, alert.context_id)
        return alert

    def _alert_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for alert in self._alerts:
            counts[alert.severity.value] = counts.get(alert.severity.value, 0) + 1
        return counts

    def _ordered_system_samples(self) -> List[SystemSample]:
        return sorted(self._system.all(), key=lambda sample: sample.timestamp)

    @staticmethod
    def _throughput_by_minute(steps: List[StepSample]) -> List[Dict[str, Any]]:
        windows: Dict[int, Dict[str, Any]] = {}
        for step in steps:
            window = int(step.timestamp // 60_000)
            bucket = windows.setdefault(window, {"windowStart": window * 60_000, "steps": 0, "failed": 0})
            bucket["steps"] += 1
            if step.failed:
                bucket["failed"] += 1
        for bucket in windows.values():
            bucket["stepsPerSecond"] = bucket["steps"] / 60.0
        return [windows[key] for key in sorted(windows)]

    async def _write_snapshot(
        self,
        reason: str,
        scenario_id: str,
        step_id: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Optional[CollectedItem]:
        """Persist the current state of a scenario and return it as evidence."""
        if self.output_dir is None:
            logger.warning("Snapshot '%s' requested before initialization", reason)
            return None

        latest = self._system.latest(scenario_id) or self._system.latest(EXECUTION_CONTEXT)
        aggregate = self._aggregates.get(scenario_id) or self._aggregates.get(EXECUTION_CONTEXT)
        scenario_steps = self._steps.get(scenario_id)
        timestamp = _now_ms()
        snapshot: Dict[str, Any] = {
            "timestamp": timestamp,
            "reason": reason,
            "executionId": self.execution_id,
            "scenarioId": scenario_id,
            "stepId": step_id,
            "system": latest.to_dict() if latest else None,
            "aggregates": aggregate.to_dict() if aggregate else None,
            "steps": {
                "total": len(scenario_steps),
                "failed": sum(1 for step in scenario_steps if step.failed),
            },
            "alerts": [alert.to_dict() for alert in self._alerts[-RECENT_ALERTS_IN_SNAPSHOT:]],
            **(extra or {}),
        }
        if self.options.include_gc_metrics:
            snapshot["gcEvents"] = list(self._gc_events)[-RECENT_ALERTS_IN_SNAPSHOT:]

        path = self.output_dir / f"snapshot-{reason}-{int(timestamp)}-{next(self._sequence)}.json"
        try:
            await write_json_async(path, snapshot)
        except OSError as exc:
            logger.error("Failed to persist metrics snapshot %s: %s", path, exc)
            return None

        item = CollectedItem(
            type=EvidenceType.METRICS,
            scenario_id=scenario_id,
            step_id=step_id,
            name=path.name,
            path=str(path),
            metadata={"reason": reason, "alerts": len(self._alerts)},
            tags=["metrics", "snapshot", reason],
            timestamp=timestamp,
        )
        self._evidence.append(item)
        return item

    def _report_item(self, path: Path, kind: str) -> CollectedItem:
        return CollectedItem(
            type=EvidenceType.METRICS,
            scenario_id=EXECUTION_CONTEXT,
            name=path.name,
            path=str(path),
            metadata={"kind": kind, "executionId": self.execution_id},
            tags=["metrics", kind],
        )

    def _install_gc_hook(self) -> None:
        if not self._gc_hooked:
            gc.callbacks.append(self._on_gc)
            self._gc_hooked = True

    def _remove_gc_hook(self) -> None:
        if self._gc_hooked:
            try:
                gc.callbacks.remove(self._on_gc)
            except ValueError:
                logger.debug("GC callback already removed")
            self._gc_hooked = False

    def _on_gc(self, phase: str, info: Dict[str, Any]) -> None:
        if phase == "start":
            self._gc_started = time.perf_counter()
            return
        if self._gc_started is None:
            return
        self._gc_events.append({
            "generation": info.get("generation"),
            "collected": info.get("collected", 0),
            "uncollectable": info.get("uncollectable", 0),
            "durationMs": (time.perf_counter() - self._gc_started) * 1000.0,
            "timestamp": _now_ms(),
        })
        self._gc_started = None


def _rate(part: int, whole: int) -> float:
    return part / whole * 100.0 if whole else 0.0


__all__ = ["EXECUTION_CONTEXT", "LEAK_METRIC", "MetricsEngine"]
