"""
Browser performance engine.

Collects navigation, resource, paint, long-task, memory and user timing
entries from a registered :class:`~evidence_engine.performance.probe.BrowserProbe`
per scenario, derives Core Web Vitals, checks them against the performance
budget and, at finalization, writes the performance report, the detailed
analysis, the resource waterfall and (when frames were captured) the
filmstrip.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Deque, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError

from evidence_engine.collectors.base import EvidenceCollector
from evidence_engine.config.settings import PerformanceOptions
from evidence_engine.core.exceptions import ProbeError, ProbeTimeoutError, StorageInitializationError
from evidence_engine.core.utils.files import write_json_async
from evidence_engine.evidence.models import CollectedItem, EvidenceType
from evidence_engine.monitoring.metrics import statistics

from . import analysis, vitals as vital_math
from .filmstrip import build_filmstrip
from .models import (
    OBSERVED_VITALS,
    VITAL_NAMES,
    CoreWebVitals,
    FilmstripFrame,
    LongTaskEntry,
    MemoryEntry,
    NavigationEntry,
    PerformanceReport,
    PerformanceSummary,
    ProbePayload,
    ResourceEntry,
    UserTimingEntry,
    VitalStatus,
    VitalValue,
)
from .probe import BrowserProbe, capture_with_deadline, observe_with_deadline

logger = logging.getLogger(__name__)

EXECUTION_CONTEXT = "execution"
FAILED_STATUSES = frozenset({"failed", "error"})
CORRELATED_VITALS = (("FCP", "LCP"), ("TTFB", "LCP"), ("TBT", "TTI"))


def _now_ms() -> float:
    return time.time() * 1000.0


@dataclass
class ScenarioPerformance:
    """Bounded per-scenario storage of probe entries and derived vitals."""

    scenario_id: str
    capacity: int
    name: str = ""
    url: str = ""
    navigations: Deque[NavigationEntry] = field(init=False)
    resources: Deque[ResourceEntry] = field(init=False)
    long_tasks: Deque[LongTaskEntry] = field(init=False)
    memory: Deque[MemoryEntry] = field(init=False)
    user_timings: Deque[UserTimingEntry] = field(init=False)
    frames: Deque[FilmstripFrame] = field(init=False)
    vitals: Deque[CoreWebVitals] = field(init=False)
    budget_violations: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.navigations = deque(maxlen=self.capacity)
        self.resources = deque(maxlen=self.capacity)
        self.long_tasks = deque(maxlen=self.capacity)
        self.memory = deque(maxlen=self.capacity)
        self.user_timings = deque(maxlen=self.capacity)
        self.frames = deque(maxlen=self.capacity)
        self.vitals = deque(maxlen=self.capacity)

    @property
    def latest_vitals(self) -> Optional[CoreWebVitals]:
        return self.vitals[-1] if self.vitals else None

    @property
    def latest_navigation(self) -> Optional[NavigationEntry]:
        return self.navigations[-1] if self.navigations else None


class PerformanceEngine(EvidenceCollector):
    """Per-scenario browser performance processor."""

    def __init__(
        self,
        evidence_root: Union[str, Path] = "./evidence",
        options: Optional[PerformanceOptions] = None,
        name: str = "performance",
    ):
        super().__init__(name)
        self.evidence_root = Path(evidence_root)
        self.options = options or PerformanceOptions()
        self.output_dir: Optional[Path] = None
        self._probes: Dict[str, BrowserProbe] = {}
        self._sequence = itertools.count(1)
        self._reset_state()

    # ------------------------------------------------------------------
    # Collector lifecycle
    # ------------------------------------------------------------------

    async def initialize(
        self,
        execution_id: str,
        options: Optional[Union[PerformanceOptions, Mapping[str, Any]]] = None,
    ) -> None:
        """Prepare ``<evidence_root>/performance/<execution_id>``.

        Raises:
            StorageInitializationError: if the directory cannot be created.
        """
        if isinstance(options, PerformanceOptions):
            self.options = options
        elif options:
            self.options = self.options.merged(options)

        output_dir = self.evidence_root / "performance" / execution_id
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageInitializationError(str(output_dir), exc) from exc

        self._reset_state()
        self.execution_id = execution_id
        self.output_dir = output_dir
        logger.info(
            "Performance engine initialized for execution %s (web vitals=%s, timeout=%sms)",
            execution_id,
            self.options.collect_web_vitals,
            self.options.vitals_timeout_ms,
        )

    def register_probe(self, scenario_id: str, probe: BrowserProbe) -> None:
        """Attach the browser probe used for ``scenario_id``."""
        if not isinstance(probe, BrowserProbe):
            raise TypeError(f"{type(probe).__name__} does not implement capture() and observe()")
        self._probes[scenario_id] = probe
        logger.debug("Registered browser probe for scenario %s", scenario_id)

    def unregister_probe(self, scenario_id: str) -> None:
        self._probes.pop(scenario_id, None)

    async def collect_for_scenario(self, scenario_id: str, scenario_name: str) -> List[CollectedItem]:
        """Start tracking a scenario and capture metrics if a probe is attached."""
        record = self._scenario(scenario_id)
        record.name = scenario_name
        if scenario_id in self._probes:
            await self.collect_browser_metrics(scenario_id)
        return []

    async def collect_for_step(
        self,
        scenario_id: str,
        step_id: str,
        step_text: str,
        status: str,
    ) -> List[CollectedItem]:
        """On a failed step, refresh metrics and persist a performance snapshot."""
        if status.lower() not in FAILED_STATUSES:
            return []

        if scenario_id in self._probes:
            await self.collect_browser_metrics(scenario_id)

        report = self.snapshot(scenario_id, reason="step-failed", step_id=step_id)
        item = await self._persist_snapshot(report, step_text)
        return [item] if item else []

    async def finalize(self) -> None:
        """Write the terminal reports for the execution."""
        await self.collect()

    async def collect(self) -> List[CollectedItem]:
        """Write report, analysis, waterfall and filmstrip; return the new items.

        A failing file is logged and does not prevent the others.
        """
        if self.output_dir is None or self.execution_id is None:
            logger.warning("Performance engine finalized before initialization; nothing to report")
            return []

        outputs = [
            ("performance-report.json", "report", self.build_report),
            ("performance-analysis.json", "analysis", self.build_analysis),
            ("resource-waterfall.json", "waterfall", self.build_waterfall),
        ]
        if any(record.frames for record in self._scenarios.values()):
            outputs.append(("performance-filmstrip.json", "filmstrip", self.build_filmstrip))

        produced: List[CollectedItem] = []
        for filename, kind, builder in outputs:
            path = self.output_dir / filename
            try:
                await write_json_async(path, builder())
            except OSError as exc:
                logger.error("Failed to write performance %s: %s", kind, exc)
                continue
            produced.append(self._report_item(path, kind))
        logger.info("Wrote %d performance reports to %s", len(produced), self.output_dir)

        self._evidence.extend(produced)
        return produced

    def get_evidence(self) -> List[CollectedItem]:
        return list(self._evidence)

    def clear(self) -> None:
        self._probes.clear()
        self._reset_state()
        logger.debug("Performance engine state cleared")

    # ------------------------------------------------------------------
    # Capture and ingestion
    # ------------------------------------------------------------------

    async def collect_browser_metrics(self, scenario_id: str) -> Optional[CoreWebVitals]:
        """Capture from the scenario's probe and ingest the result.

        Returns ``None`` when no probe is registered or the capture failed.
        Observer timeouts and unsupported observers are recorded as
        unavailable vitals.
        """
        probe = self._probes.get(scenario_id)
        if probe is None:
            logger.debug("No browser probe registered for scenario %s", scenario_id)
            return None

        try:
            raw = await capture_with_deadline(probe, self.options.capture_timeout_ms / 1000.0)
        except ProbeTimeoutError as exc:
            logger.warning("Performance capture for %s timed out: %s", scenario_id, exc)
            return None
        except Exception as exc:  # noqa: BLE001 - probe failures degrade to no data
            logger.error("Performance capture for %s failed: %s", scenario_id, exc)
            return None

        observed: Dict[str, VitalValue] = {}
        details: Dict[str, Any] = {}
        if self.options.collect_web_vitals:
            timeout = self.options.vitals_timeout_ms / 1000.0
            results = await asyncio.gather(
                *(observe_with_deadline(probe, vital, timeout) for vital in OBSERVED_VITALS),
                return_exceptions=True,
            )
            for vital, result in zip(OBSERVED_VITALS, results):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                if isinstance(result, BaseException):
                    logger.warning("%s observer failed for %s: %s", vital, scenario_id, result)
                    observed[vital] = VitalValue.unavailable(VitalStatus.NOT_COLLECTED)
                    continue
                observed[vital], vital_details = result
                if vital_details:
                    details[vital] = dict(vital_details)

        try:
            return self.ingest(scenario_id, raw, observed=observed, details=details)
        except ProbeError as exc:
            logger.error("Discarding invalid performance payload for %s: %s", scenario_id, exc)
            return None

    def ingest(
        self,
        scenario_id: str,
        payload: Union[ProbePayload, Mapping[str, Any]],
        observed: Optional[Mapping[str, VitalValue]] = None,
        details: Optional[Mapping[str, Any]] = None,
    ) -> CoreWebVitals:
        """Validate and store one probe payload, derive vitals and check the budget.

        Raises:
            ProbeError: if the payload does not match the probe schema or its
                timings cannot produce vitals. Nothing is stored in that case.
        """
        if isinstance(payload, ProbePayload):
            model = payload
        else:
            try:
                model = ProbePayload.model_validate(payload)
            except ValidationError as exc:
                raise ProbeError(f"Invalid probe payload: {exc}", operation="ingest") from exc

        try:
            derived = vital_math.derive_vitals(model, observed, details)
        except ValueError as exc:
            raise ProbeError(f"Cannot derive vitals from probe payload: {exc}", operation="ingest") from exc

        record = self._scenario(scenario_id)
        if model.navigation is not None:
            record.navigations.append(model.navigation)
            record.url = model.navigation.url or record.url
        record.resources.extend(model.resources)
        record.long_tasks.extend(model.long_tasks)
        if model.memory is not None:
            record.memory.append(model.memory)
        record.user_timings.extend(model.user_timings)
        record.frames.extend(model.frames)

        record.vitals.append(derived)
        record.budget_violations = vital_math.check_budget(
            derived, model.navigation, model.resources, self.options.budget
        )
        logger.debug(
            "Ingested performance payload for %s (%d resources, %d long tasks)",
            scenario_id,
            len(model.resources),
            len(model.long_tasks),
        )
        return derived

    # ------------------------------------------------------------------
    # Summaries and snapshots
    # ------------------------------------------------------------------

    def get_vitals(self, scenario_id: str) -> List[CoreWebVitals]:
        record = self._scenarios.get(scenario_id)
        return list(record.vitals) if record else []

    def get_budget_violations(self, scenario_id: str) -> List[str]:
        record = self._scenarios.get(scenario_id)
        return list(record.budget_violations) if record else []

    def summarize(self, scenario_id: str) -> PerformanceSummary:
        """Scores, grade, violations and advice for the latest navigation."""
        record = self._scenarios.get(scenario_id) or ScenarioPerformance(scenario_id, 1)
        latest = record.latest_vitals
        scores = vital_math.score_vitals(latest, self.options.budget) if latest else {}
        score = vital_math.overall_score(scores)
        metrics: Dict[str, Any] = {}
        if latest is not None:
            metrics = {name: latest.value(name) for name in VITAL_NAMES}
            unavailable = vital_math.unavailable_vitals(latest)
            if unavailable:
                metrics["unavailable"] = unavailable
        return PerformanceSummary(
            score=score,
            scores=scores,
            grade=vital_math.performance_grade(score),
            violations=tuple(vital_math.score_violations(scores)),
            budget_violations=tuple(record.budget_violations),
            metrics=metrics,
            recommendations=tuple(
                analysis.scenario_recommendations(
                    latest,
                    list(record.resources),
                    list(record.long_tasks),
                    list(record.memory),
                    self.options.budget,
                    page_url=record.url,
                )
            ),
        )

    def snapshot(self, scenario_id: str, reason: str, step_id: Optional[str] = None) -> PerformanceReport:
        """Immutable copy of the scenario's latest known performance state."""
        record = self._scenarios.get(scenario_id) or ScenarioPerformance(scenario_id, 1)
        navigation = record.latest_navigation
        latest = record.latest_vitals
        memory = record.memory[-1] if record.memory else None
        return PerformanceReport(
            timestamp=_now_ms(),
            scenario_id=scenario_id,
            step_id=step_id,
            reason=reason,
            navigation={**navigation.model_dump(by_alias=True), "timings": navigation.timings()} if navigation else None,
            resources=tuple(r.model_dump(by_alias=True) for r in record.resources),
            web_vitals=latest.to_dict() if latest else None,
            long_tasks=tuple(t.model_dump(by_alias=True) for t in record.long_tasks),
            memory=memory.model_dump(by_alias=True) if memory else None,
            user_timings=tuple(u.model_dump(by_alias=True) for u in record.user_timings),
            summary=self.summarize(scenario_id),
        )

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def _vital_history(self) -> List[CoreWebVitals]:
        history = [v for record in self._scenarios.values() for v in record.vitals]
        return sorted(history, key=lambda vitals: vitals.timestamp)

    def _series(self, name: str) -> List[float]:
        return [v.value(name) for v in self._vital_history() if v.get(name).available]

    def analyze_trends(self) -> Dict[str, Any]:
        """Direction, change and one-step forecast per vital with more than two samples."""
        trends: Dict[str, Any] = {}
        for name in VITAL_NAMES:
            series = self._series(name)
            if len(series) > 2:
                trends[name] = statistics.build_trend(name, series).to_dict()
        return trends

    def detect_anomalies(self) -> Dict[str, Any]:
        """Consecutive relative increases above ``spike_threshold_percent`` per vital."""
        anomalies: Dict[str, Any] = {}
        for name in VITAL_NAMES:
            spikes = statistics.detect_relative_spikes(self._series(name), self.options.spike_threshold_percent)
            if spikes:
                anomalies[name] = spikes
        return anomalies

    def analyze_correlations(self) -> Dict[str, float]:
        correlations: Dict[str, float] = {}
        history = self._vital_history()
        for first, second in CORRELATED_VITALS:
            pairs = [
                (v.value(first), v.value(second))
                for v in history
                if v.get(first).available and v.get(second).available
            ]
            correlations[f"{first}-{second}"] = statistics.pearson_correlation(
                [pair[0] for pair in pairs], [pair[1] for pair in pairs]
            )
        return correlations

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def build_report(self) -> Dict[str, Any]:
        scenarios: List[Dict[str, Any]] = []
        summaries: List[PerformanceSummary] = []
        for scenario_id, record in self._scenarios.items():
            summary = self.summarize(scenario_id)
            summaries.append(summary)
            scenarios.append({
                "scenarioId": scenario_id,
                "name": record.name or scenario_id,
                "url": record.url,
                "executions": len(record.navigations),
                "navigation": analysis.aggregate_navigation(list(record.navigations)),
                "resources": analysis.analyze_resources(list(record.resources)),
                "webVitals": analysis.aggregate_vitals(list(record.vitals)),
                "longTasks": analysis.analyze_long_tasks(list(record.long_tasks)),
                "memory": analysis.analyze_memory(list(record.memory)),
                "userTimings": [u.model_dump(by_alias=True) for u in record.user_timings],
                "summary": summary.to_dict(),
            })

        scored = [s.score for s in summaries if s.score is not None]
        overall = statistics.average(scored) if scored else None
        failing = sum(1 for s in summaries if s.violations or s.budget_violations)
        return {
            "executionId": self.execution_id,
            "timestamp": _now_ms(),
            "budget": self.options.budget.as_dict(),
            "scenarios": scenarios,
            "summary": {
                "totalScenarios": len(scenarios),
                "overallScore": overall,
                "grade": vital_math.performance_grade(overall),
                "passedBudget": len(summaries) - failing,
                "failedBudget": failing,
                "topViolations": analysis.top_violations(
                    list(s.violations) + list(s.budget_violations) for s in summaries
                ),
                "recommendations": analysis.top_recommendations(s.recommendations for s in summaries),
            },
            "benchmarks": analysis.BENCHMARKS,
        }

    def build_analysis(self) -> Dict[str, Any]:
        records = list(self._scenarios.values())
        navigations = [n for record in records for n in record.navigations]
        resources = [r for record in records for r in record.resources]
        long_tasks = [t for record in records for t in record.long_tasks]
        history = self._vital_history()
        resources_by_page: Dict[str, List[ResourceEntry]] = {}
        for record in records:
            resources_by_page.setdefault(record.url, []).extend(record.resources)

        return {
            "executionId": self.execution_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "sections": {
                "networkAnalysis": analysis.network_analysis(navigations),
                "renderingAnalysis": analysis.rendering_analysis(history),
                "interactivityAnalysis": analysis.interactivity_analysis(history, long_tasks),
                "resourceOptimization": analysis.resource_optimization(resources),
                "thirdPartyImpact": analysis.third_party_impact(resources_by_page),
            },
            "trends": self.analyze_trends(),
            "anomalies": self.detect_anomalies(),
            "correlations": self.analyze_correlations(),
        }

    def build_waterfall(self) -> List[Dict[str, Any]]:
        """Waterfall for every scenario with a recorded navigation."""
        return [
            analysis.build_waterfall(scenario_id, record.navigations[0], list(record.resources))
            for scenario_id, record in self._scenarios.items()
            if record.navigations
        ]

    def build_filmstrip(self) -> Dict[str, Any]:
        scenarios = []
        for scenario_id, record in self._scenarios.items():
            if not record.frames:
                continue
            latest = record.latest_vitals
            speed_index = latest.value("SI") if latest else None
            scenarios.append(build_filmstrip(scenario_id, record.url, list(record.frames), speed_index))
        return {"executionId": self.execution_id, "timestamp": _now_ms(), "scenarios": scenarios}

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _reset_state(self) -> None:
        self._scenarios: Dict[str, ScenarioPerformance] = {}
        self._evidence: List[CollectedItem] = []

    def _scenario(self, scenario_id: str) -> ScenarioPerformance:
        record = self._scenarios.get(scenario_id)
        if record is None:
            record = self._scenarios[scenario_id] = ScenarioPerformance(
                scenario_id, self.options.max_entries_per_scenario
            )
        return record

    async def _persist_snapshot(self, report: PerformanceReport, step_text: str) -> Optional[CollectedItem]:
        if self.output_dir is None:
            logger.warning("Performance snapshot for %s requested before initialization", report.scenario_id)
            return None

        path = self.output_dir / f"performance-{report.reason}-{int(report.timestamp)}-{next(self._sequence)}.json"
        try:
            await write_json_async(path, report.to_dict())
        except OSError as exc:
            logger.error("Failed to persist performance snapshot %s: %s", path, exc)
            return None

        logger.info("Captured performance snapshot for failed step %s", report.step_id)
        item = CollectedItem(
            type=EvidenceType.PERFORMANCE,
            scenario_id=report.scenario_id,
            step_id=report.step_id,
            name=path.name,
            path=str(path),
            metadata={
                "reason": report.reason,
                "stepText": step_text,
                "grade": report.summary.grade,
                "score": report.summary.score,
            },
            tags=["performance", "snapshot", report.reason],
            timestamp=report.timestamp,
        )
        self._evidence.append(item)
        return item

    def _report_item(self, path: Path, kind: str) -> CollectedItem:
        return CollectedItem(
            type=EvidenceType.PERFORMANCE,
            scenario_id=EXECUTION_CONTEXT,
            name=path.name,
            path=str(path),
            metadata={"kind": kind, "executionId": self.execution_id},
            tags=["performance", kind],
        )


__all__ = ["PerformanceEngine", "ScenarioPerformance"]
