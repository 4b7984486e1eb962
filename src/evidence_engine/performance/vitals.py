"""Derived vitals, scoring and budget evaluation.

Everything here is a pure function of already-validated probe models so it
can be exercised without a browser. Time values are milliseconds relative to
navigation start.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from evidence_engine.config.settings import PerformanceBudget

from .models import (
    CoreWebVitals,
    LongTaskEntry,
    NavigationEntry,
    ProbePayload,
    ResourceEntry,
    VisualTimeline,
    VitalStatus,
    VitalValue,
)

logger = logging.getLogger(__name__)

TTI_QUIET_WINDOW_MS = 5000.0
BLOCKING_THRESHOLD_MS = 50.0
VISUAL_RESOURCE_TYPES = frozenset({"css", "img", "script"})

SCORE_WEIGHTS: Dict[str, float] = {
    "FCP": 0.10,
    "LCP": 0.25,
    "FID": 0.30,
    "CLS": 0.25,
    "TTFB": 0.10,
}

GRADE_CUTOFFS = (
    (0.9, "A"),
    (0.8, "B"),
    (0.7, "C"),
    (0.6, "D"),
)
UNGRADED = "N/A"

POOR_SCORE = 0.5
_POOR_LABELS = {
    "FCP": "Poor First Contentful Paint",
    "LCP": "Poor Largest Contentful Paint",
    "FID": "Poor First Input Delay",
    "CLS": "Poor Cumulative Layout Shift",
    "TTFB": "Poor Time to First Byte",
}

# vitals compared against the budget, in report order
_BUDGETED_VITALS = ("FCP", "LCP", "FID", "CLS", "TTFB", "TTI", "TBT", "INP")


# ----------------------------------------------------------------------
# Interactivity
# ----------------------------------------------------------------------


def calculate_tti(navigation: NavigationEntry, long_tasks: Iterable[LongTaskEntry]) -> float:
    """Time to interactive.

    Starts from ``max(responseEnd, domContentLoadedEventEnd)``; every long
    task starting after the running value pushes it to that task's end. A
    fixed quiet window is added on top.
    """
    tti = max(navigation.response_end, navigation.dom_content_loaded_event_end)
    for task in sorted(long_tasks, key=lambda entry: entry.start_time):
        if task.start_time > tti:
            tti = task.end_time
    return tti + TTI_QUIET_WINDOW_MS


def calculate_tbt(long_tasks: Iterable[LongTaskEntry], fcp: float, tti: float) -> float:
    """Total blocking time of long tasks starting strictly between FCP and TTI."""
    return sum(
        max(0.0, task.duration - BLOCKING_THRESHOLD_MS)
        for task in long_tasks
        if fcp < task.start_time < tti
    )


# ----------------------------------------------------------------------
# Speed Index
# ----------------------------------------------------------------------


def _integrate_incompleteness(points: Sequence[tuple[float, float]], total: float, end_time: float) -> float:
    """Integrate ``dt * (1 - completeness)`` over ``(time, increment)`` points.

    Cumulative progress is clamped to ``[0, total]`` and never decreases.
    """
    speed_index = 0.0
    last_time = 0.0
    progress = 0.0
    for time, increment in points:
        if time > last_time:
            speed_index += (time - last_time) * (1.0 - progress / total)
            last_time = time
        progress = min(total, progress + max(0.0, increment))
    if end_time > last_time:
        speed_index += (end_time - last_time) * (1.0 - progress / total)
    return speed_index


def speed_index_from_timeline(timeline: VisualTimeline, load_time: float = 0.0) -> float:
    """Speed Index from paint and image-load events.

    Raises:
        ValueError: when the timeline has no events, no viewport area or
            events before navigation start.
    """
    viewport = timeline.viewport_area
    if viewport <= 0:
        raise ValueError("visual timeline has no viewport area")
    if not timeline.events:
        raise ValueError("visual timeline has no events")

    events = sorted(timeline.events, key=lambda event: event.time)
    if events[0].time < 0:
        raise ValueError("visual events cannot precede navigation start")
    return _integrate_incompleteness([(e.time, e.area) for e in events], viewport, load_time)


def speed_index_from_resources(resources: Iterable[ResourceEntry], load_time: float = 0.0) -> float:
    """Speed Index using decoded bytes of css, img and script resources as visual progress."""
    visual = sorted(
        (r for r in resources if r.initiator_type in VISUAL_RESOURCE_TYPES),
        key=lambda resource: resource.response_end,
    )
    total_bytes = float(sum(r.decoded_body_size for r in visual))
    if total_bytes <= 0:
        return 0.0
    return _integrate_incompleteness(
        [(r.response_end, float(r.decoded_body_size)) for r in visual], total_bytes, load_time
    )


def estimate_speed_index(payload: ProbePayload) -> VitalValue:
    """Primary visual-timeline estimate with the resource-bytes fallback."""
    load_time = payload.navigation.load_time if payload.navigation else 0.0
    if payload.visual is not None:
        try:
            return VitalValue.measured(speed_index_from_timeline(payload.visual, load_time))
        except ValueError as exc:
            logger.debug("Visual timeline unusable (%s); falling back to resource timing", exc)
    if not payload.resources:
        return VitalValue.unavailable()
    return VitalValue.measured(speed_index_from_resources(payload.resources, load_time))


# ----------------------------------------------------------------------
# Derivation
# ----------------------------------------------------------------------


def derive_vitals(
    payload: ProbePayload,
    observed: Optional[Mapping[str, VitalValue]] = None,
    details: Optional[Mapping[str, object]] = None,
) -> CoreWebVitals:
    """Build :class:`CoreWebVitals` for one navigation.

    ``observed`` carries observer results resolved by the probe helpers
    (including timed-out and unsupported statuses); they take precedence
    over values embedded in the payload.
    """
    observed = dict(observed or {})
    navigation = payload.navigation

    fcp = VitalValue.from_optional(payload.paint("first-contentful-paint"))
    ttfb = VitalValue.measured(navigation.ttfb) if navigation else VitalValue.unavailable()

    embedded = {
        "LCP": payload.lcp,
        "FID": payload.fid,
        "CLS": payload.layout_shift,
        "INP": payload.inp,
    }
    resolved: Dict[str, VitalValue] = {}
    for name, observation in embedded.items():
        value = observed.get(name)
        if observation is not None and (value is None or not value.available):
            value = VitalValue.measured(observation.value)
        resolved[name] = value or VitalValue.unavailable()

    tti = tbt = VitalValue.unavailable()
    if navigation is not None:
        tti_value = calculate_tti(navigation, payload.long_tasks)
        tti = VitalValue.measured(tti_value)
        if fcp.available:
            tbt = VitalValue.measured(calculate_tbt(payload.long_tasks, fcp.value, tti_value))

    return CoreWebVitals(
        fcp=fcp,
        lcp=resolved["LCP"],
        fid=resolved["FID"],
        inp=resolved["INP"],
        cls=resolved["CLS"],
        ttfb=ttfb,
        tti=tti,
        tbt=tbt,
        speed_index=estimate_speed_index(payload),
        url=navigation.url if navigation else "",
        details=dict(details or {}),
    )


# ----------------------------------------------------------------------
# Scoring
# ----------------------------------------------------------------------


def metric_score(value: float, threshold: float) -> float:
    if value <= threshold * 0.75:
        return 1.0
    if value <= threshold:
        return 0.75
    if value <= threshold * 1.5:
        return 0.5
    return 0.25


def cls_score(value: float) -> float:
    if value <= 0.1:
        return 1.0
    if value <= 0.25:
        return 0.75
    return 0.5


def score_vitals(vitals: CoreWebVitals, budget: PerformanceBudget) -> Dict[str, float]:
    """Sub-scores for every weighted vital that was actually measured."""
    thresholds = budget.as_dict()
    scores: Dict[str, float] = {}
    for name in SCORE_WEIGHTS:
        vital = vitals.get(name)
        if not vital.available:
            continue
        scores[name] = cls_score(vital.value) if name == "CLS" else metric_score(vital.value, thresholds[name])
    return scores


def overall_score(scores: Mapping[str, float]) -> Optional[float]:
    """Weighted average renormalized over the vitals present; ``None`` when none are."""
    weight = sum(SCORE_WEIGHTS[name] for name in scores)
    if weight <= 0:
        return None
    return sum(score * SCORE_WEIGHTS[name] for name, score in scores.items()) / weight


def performance_grade(score: Optional[float]) -> str:
    if score is None:
        return UNGRADED
    for cutoff, grade in GRADE_CUTOFFS:
        if score >= cutoff:
            return grade
    return "F"


def score_violations(scores: Mapping[str, float]) -> List[str]:
    return [_POOR_LABELS[name] for name in SCORE_WEIGHTS if scores.get(name, 1.0) < POOR_SCORE]


def _format_vital(name: str, value: float) -> str:
    return f"{value:g}" if name == "CLS" else f"{value:.0f}ms"


def check_budget(
    vitals: Optional[CoreWebVitals],
    navigation: Optional[NavigationEntry],
    resources: Sequence[ResourceEntry],
    budget: PerformanceBudget,
) -> List[str]:
    """Compare measured values with the budget and return readable violations.

    Unavailable vitals are skipped. Violations are advisory: they are logged
    at WARNING level and returned, never raised.
    """
    thresholds = budget.as_dict()
    violations: List[str] = []

    if vitals is not None:
        for name in _BUDGETED_VITALS:
            vital = vitals.get(name)
            if vital.available and vital.value > thresholds[name]:
                violations.append(
                    f"{name} ({_format_vital(name, vital.value)}) exceeds threshold "
                    f"({_format_vital(name, thresholds[name])})"
                )

    if navigation is not None and navigation.total > budget.page_load:
        violations.append(
            f"Page load time ({navigation.total:.0f}ms) exceeds threshold ({budget.page_load:g}ms)"
        )

    slow = [r for r in resources if r.duration > budget.resource_load]
    if slow:
        violations.append(
            f"{len(slow)} resources exceed load time threshold ({budget.resource_load:g}ms)"
        )

    for violation in violations:
        logger.warning("Performance budget violation: %s", violation)
    return violations


def unavailable_vitals(vitals: CoreWebVitals) -> Dict[str, str]:
    """Names of vitals that were not measured, with the reason."""
    return {
        name: vitals.get(name).status.value
        for name in SCORE_WEIGHTS
        if vitals.get(name).status is not VitalStatus.MEASURED
    }


__all__ = [
    "BLOCKING_THRESHOLD_MS",
    "SCORE_WEIGHTS",
    "TTI_QUIET_WINDOW_MS",
    "UNGRADED",
    "calculate_tbt",
    "calculate_tti",
    "check_budget",
    "cls_score",
    "derive_vitals",
    "estimate_speed_index",
    "metric_score",
    "overall_score",
    "performance_grade",
    "score_violations",
    "score_vitals",
    "speed_index_from_resources",
    "speed_index_from_timeline",
    "unavailable_vitals",
]
