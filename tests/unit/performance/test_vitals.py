"""Unit tests for derived vitals, scoring and budget checks."""

from __future__ import annotations

import logging

import pytest

from evidence_engine.config.settings import PerformanceBudget
from evidence_engine.performance import vitals
from evidence_engine.performance.models import (
    CoreWebVitals,
    LongTaskEntry,
    NavigationEntry,
    ProbePayload,
    ResourceEntry,
    VisualTimeline,
    VitalStatus,
    VitalValue,
)
from tests.factories.probes import probe_payload


def _resource(name: str, kind: str, decoded: int, end: float, duration: float = 100.0) -> ResourceEntry:
    return ResourceEntry(name=name, initiator_type=kind, decoded_body_size=decoded, response_end=end, duration=duration)


class TestInteractivity:
    def test_tti_without_long_tasks(self) -> None:
        navigation = NavigationEntry(response_end=600, dom_content_loaded_event_end=1000)

        assert vitals.calculate_tti(navigation, []) == 6000.0

    def test_tti_moves_past_later_long_tasks(self) -> None:
        navigation = NavigationEntry(response_end=600, dom_content_loaded_event_end=1000)
        tasks = [
            LongTaskEntry(start_time=800, duration=100),
            LongTaskEntry(start_time=1200, duration=300),
        ]

        assert vitals.calculate_tti(navigation, tasks) == 1500.0 + vitals.TTI_QUIET_WINDOW_MS

    def test_tbt_counts_excess_of_tasks_between_fcp_and_tti(self) -> None:
        tasks = [
            LongTaskEntry(start_time=500, duration=200),
            LongTaskEntry(start_time=1100, duration=120),
            LongTaskEntry(start_time=1300, duration=40),
            LongTaskEntry(start_time=9000, duration=500),
        ]

        assert vitals.calculate_tbt(tasks, fcp=900, tti=6500) == 70.0


class TestSpeedIndex:
    def test_timeline_integration(self) -> None:
        """Half the viewport at 100ms, the rest at 200ms, load at 300ms."""

        timeline = VisualTimeline(
            viewport_width=10,
            viewport_height=10,
            events=[{"time": 200, "area": 50}, {"time": 100, "area": 50}],
        )

        assert vitals.speed_index_from_timeline(timeline, load_time=300) == pytest.approx(150.0)

    def test_timeline_progress_is_clamped(self) -> None:
        timeline = VisualTimeline(
            viewport_width=10,
            viewport_height=10,
            events=[{"time": 100, "area": 80}, {"time": 150, "area": 80}, {"time": 200, "area": 10}],
        )

        assert vitals.speed_index_from_timeline(timeline, load_time=400) == pytest.approx(110.0)

    @pytest.mark.parametrize("timeline", [
        VisualTimeline(viewport_width=0, viewport_height=10, events=[{"time": 10, "area": 1}]),
        VisualTimeline(viewport_width=10, viewport_height=10, events=[]),
        VisualTimeline(viewport_width=10, viewport_height=10, events=[{"time": -5, "area": 1}]),
    ])
    def test_invalid_timelines_raise(self, timeline: VisualTimeline) -> None:
        with pytest.raises(ValueError):
            vitals.speed_index_from_timeline(timeline)

    def test_resource_fallback_uses_visual_bytes(self) -> None:
        resources = [
            _resource("a.css", "css", 100, 200),
            _resource("b.png", "img", 100, 400),
            _resource("c.json", "fetch", 10_000, 100),
        ]

        assert vitals.speed_index_from_resources(resources, load_time=500) == pytest.approx(300.0)

    def test_resource_fallback_without_visual_bytes_is_zero(self) -> None:
        assert vitals.speed_index_from_resources([_resource("c.json", "fetch", 100, 100)]) == 0.0

    def test_estimate_prefers_timeline_and_falls_back(self) -> None:
        with_timeline = ProbePayload.model_validate({
            "visual": {"viewportWidth": 10, "viewportHeight": 10, "events": [{"time": 100, "area": 100}]},
        })
        broken_timeline = ProbePayload.model_validate({
            "visual": {"viewportWidth": 0, "viewportHeight": 0},
            "resources": [{"name": "a.css", "initiatorType": "css", "decodedBodySize": 10, "responseEnd": 250}],
        })

        assert vitals.estimate_speed_index(with_timeline) == VitalValue.measured(100.0)
        assert vitals.estimate_speed_index(broken_timeline) == VitalValue.measured(250.0)
        assert not vitals.estimate_speed_index(ProbePayload()).available


class TestDeriveVitals:
    def test_full_payload(self) -> None:
        payload = ProbePayload.model_validate(probe_payload(fcp=900, lcp=1800, cls=0.05))

        derived = vitals.derive_vitals(payload)

        assert derived.value("FCP") == 900.0
        assert derived.value("TTFB") == 300.0
        assert derived.value("LCP") == 1800.0
        assert derived.value("CLS") == 0.05
        assert derived.value("TTI") == 6220.0
        assert derived.value("TBT") == 70.0
        assert derived.get("FID").status is VitalStatus.NOT_COLLECTED
        assert derived.url == "https://shop.example.com/checkout"

    def test_observed_values_take_precedence(self) -> None:
        payload = ProbePayload.model_validate(probe_payload(lcp=1800))
        observed = {"LCP": VitalValue.measured(2100), "FID": VitalValue.unavailable(VitalStatus.TIMED_OUT)}

        derived = vitals.derive_vitals(payload, observed, {"LCP": {"element": "img.hero"}})

        assert derived.value("LCP") == 2100.0
        assert derived.get("FID").status is VitalStatus.TIMED_OUT
        assert derived.details == {"LCP": {"element": "img.hero"}}

    def test_embedded_value_fills_unavailable_observation(self) -> None:
        payload = ProbePayload.model_validate(probe_payload(cls=0.2))

        derived = vitals.derive_vitals(payload, {"CLS": VitalValue.unavailable(VitalStatus.UNSUPPORTED)})

        assert derived.value("CLS") == 0.2

    def test_missing_navigation_and_paint(self) -> None:
        derived = vitals.derive_vitals(ProbePayload())

        for name in ("FCP", "TTFB", "TTI", "TBT", "SI"):
            assert not derived.get(name).available


class TestScoring:
    @pytest.mark.parametrize(("value", "expected"), [
        (1350, 1.0),
        (1800, 0.75),
        (2700, 0.5),
        (2701, 0.25),
    ])
    def test_metric_score_tiers(self, value: float, expected: float) -> None:
        assert vitals.metric_score(value, 1800) == expected

    @pytest.mark.parametrize(("value", "expected"), [(0.1, 1.0), (0.25, 0.75), (0.3, 0.5)])
    def test_cls_score_tiers(self, value: float, expected: float) -> None:
        assert vitals.cls_score(value) == expected

    def test_overall_score_renormalizes_over_available_vitals(self) -> None:
        """Only FCP (1.0) and LCP (0.5) measured: (0.1 + 0.125) / 0.35."""

        measured = CoreWebVitals(fcp=VitalValue.measured(1000), lcp=VitalValue.measured(3500))

        scores = vitals.score_vitals(measured, PerformanceBudget())

        assert scores == {"FCP": 1.0, "LCP": 0.5}
        assert vitals.overall_score(scores) == pytest.approx(0.225 / 0.35)

    def test_unavailable_vitals_are_never_scored_as_zero(self) -> None:
        empty = CoreWebVitals()

        scores = vitals.score_vitals(empty, PerformanceBudget())

        assert scores == {}
        assert vitals.overall_score(scores) is None
        assert vitals.performance_grade(None) == "N/A"
        assert vitals.unavailable_vitals(empty)["FID"] == "not_collected"

    @pytest.mark.parametrize(("score", "grade"), [
        (0.95, "A"), (0.9, "A"), (0.85, "B"), (0.7, "C"), (0.65, "D"), (0.2, "F"),
    ])
    def test_grades(self, score: float, grade: str) -> None:
        assert vitals.performance_grade(score) == grade

    def test_poor_sub_scores_become_violations(self) -> None:
        violations = vitals.score_violations({"FCP": 0.25, "LCP": 0.5, "CLS": 0.5, "TTFB": 0.25})

        assert violations == ["Poor First Contentful Paint", "Poor Time to First Byte"]


class TestBudget:
    def test_vital_violation_message_and_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        measured = CoreWebVitals(fcp=VitalValue.measured(1900), cls=VitalValue.measured(0.05))

        with caplog.at_level(logging.WARNING, logger="evidence_engine.performance.vitals"):
            violations = vitals.check_budget(measured, None, [], PerformanceBudget())

        assert violations == ["FCP (1900ms) exceeds threshold (1800ms)"]
        assert "FCP (1900ms) exceeds threshold (1800ms)" in caplog.text

    def test_page_load_and_slow_resources(self) -> None:
        navigation = NavigationEntry(fetch_start=0, load_event_end=4200)
        resources = [
            _resource("slow.js", "script", 10, 1500, duration=1500),
            _resource("slow.css", "css", 10, 1300, duration=1200),
            _resource("fast.png", "img", 10, 200, duration=200),
        ]

        violations = vitals.check_budget(None, navigation, resources, PerformanceBudget())

        assert violations == [
            "Page load time (4200ms) exceeds threshold (3000ms)",
            "2 resources exceed load time threshold (1000ms)",
        ]

    def test_unavailable_vitals_are_skipped(self) -> None:
        timed_out = CoreWebVitals(lcp=VitalValue.unavailable(VitalStatus.TIMED_OUT))

        assert vitals.check_budget(timed_out, None, [], PerformanceBudget()) == []

    def test_cls_formatting(self) -> None:
        shifted = CoreWebVitals(cls=VitalValue.measured(0.3))

        assert vitals.check_budget(shifted, None, [], PerformanceBudget()) == [
            "CLS (0.3) exceeds threshold (0.1)"
        ]


def test_vital_value_rejects_invalid_states() -> None:
    with pytest.raises(ValueError):
        VitalValue(-1.0, VitalStatus.MEASURED)
    with pytest.raises(ValueError):
        VitalValue(float("nan"), VitalStatus.MEASURED)
    with pytest.raises(ValueError):
        VitalValue(5.0, VitalStatus.TIMED_OUT)
