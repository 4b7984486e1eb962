"""Unit tests for the evidence store orchestrator."""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
from pathlib import Path

import pytest

from evidence_engine.config.settings import EvidenceSettings, MetricsOptions
from evidence_engine.core.exceptions import (
    CollectionExistsError,
    CollectionNotFoundError,
    CollectionStateError,
    EvidenceNotFoundError,
)
from evidence_engine.evidence import manifest as manifest_module
from evidence_engine.evidence.models import CollectionState, EvidenceFilter, EvidenceType
from evidence_engine.evidence.store import EvidenceStore
from evidence_engine.monitoring.metrics.engine import MetricsEngine
from tests.factories.collectors import (
    BurstCollector,
    RecordingCollector,
    StepRecordingCollector,
    TimestampedCollector,
)
from tests.factories.samples import ScriptedSampler


@pytest.fixture()
def recorder() -> StepRecordingCollector:
    return StepRecordingCollector("recorder")


@pytest.fixture()
def store(settings: EvidenceSettings, recorder: StepRecordingCollector) -> EvidenceStore:
    return EvidenceStore(settings, [recorder])


def _live_sampling_loops() -> list:
    return [
        task
        for task in asyncio.all_tasks()
        if not task.done() and task.get_coro().__qualname__.endswith("_sampling_loop")
    ]


async def _completed(store: EvidenceStore, execution_id: str = "run-1") -> None:
    await store.start_collection(execution_id, {"branch": "main"})
    await store.collect_for_scenario(execution_id, "scenario-1", "Checkout")
    await store.collect_for_step(execution_id, "scenario-1", "step-1", "When I pay", "failed")
    await store.complete_collection(execution_id)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_initializes_storage_and_collectors(
        self, store: EvidenceStore, recorder: StepRecordingCollector
    ) -> None:
        collection = await store.start_collection("run-1")

        assert collection.state is CollectionState.COLLECTING
        assert (store.root / "screenshots").is_dir()
        assert recorder.execution_id == "run-1"
        assert store.is_collection_in_progress("run-1")

    @pytest.mark.asyncio
    async def test_duplicate_start_is_rejected(self, store: EvidenceStore) -> None:
        await store.start_collection("run-1")

        with pytest.raises(CollectionExistsError):
            await store.start_collection("run-1")

    @pytest.mark.asyncio
    async def test_failing_collector_initialization_aborts_start(self, settings: EvidenceSettings) -> None:
        store = EvidenceStore(settings, [RecordingCollector("ok"), RecordingCollector("broken", fail_on="initialize")])

        with pytest.raises(RuntimeError):
            await store.start_collection("run-1")

        assert store.get_state("run-1") is CollectionState.UNINITIALIZED

    @pytest.mark.asyncio
    async def test_failed_start_stops_metrics_sampling(self, settings: EvidenceSettings) -> None:
        metrics = MetricsEngine(settings.evidence_path, sampler=ScriptedSampler())
        sampling = dataclasses.replace(settings, metrics=MetricsOptions(interval_ms=10, include_gc_metrics=True))
        store = EvidenceStore(sampling, [metrics, RecordingCollector("broken", fail_on="initialize")])

        with pytest.raises(RuntimeError):
            await store.start_collection("run-1")

        assert metrics._sampling_task is None
        assert metrics._gc_hooked is False
        assert _live_sampling_loops() == []

    @pytest.mark.asyncio
    async def test_second_execution_waits_for_the_first(
        self, store: EvidenceStore, recorder: StepRecordingCollector
    ) -> None:
        await store.start_collection("run-a")

        with pytest.raises(CollectionStateError, match="run-a"):
            await store.start_collection("run-b")

        assert recorder.execution_id == "run-a"
        assert store.get_state("run-b") is CollectionState.UNINITIALIZED
        items = await store.collect_for_scenario("run-a", "scenario-1", "Checkout")
        assert len(items) == 1

        await store.complete_collection("run-a")
        second = await store.start_collection("run-b")

        assert second.state is CollectionState.COLLECTING
        assert recorder.execution_id == "run-b"

    @pytest.mark.asyncio
    async def test_datetime_metadata_reaches_the_manifest(self, settings: EvidenceSettings) -> None:
        store = EvidenceStore(dataclasses.replace(settings, archive_evidence=True), [TimestampedCollector()])
        await store.start_collection("run-1")
        await store.collect_for_scenario("run-1", "scenario-1", "Checkout")

        collection = await store.complete_collection("run-1")

        assert collection.state is CollectionState.COMPLETED
        written = json.loads((store.root / "manifest_run-1.json").read_text(encoding="utf-8"))
        assert {item["metadata"]["capturedAt"] for item in written["items"]} == {"2024-05-01T12:30:00+00:00"}
        assert len(list((store.root / "archives" / "run-1").glob("*.json.gz"))) == 1

    @pytest.mark.asyncio
    async def test_manifest_failure_still_completes(
        self, store: EvidenceStore, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        async def refuse(*args, **kwargs):
            raise TypeError("Object of type Widget is not JSON serializable")

        monkeypatch.setattr(manifest_module, "write_json_async", refuse)
        await store.start_collection("run-1")

        with caplog.at_level(logging.ERROR, logger="evidence_engine.evidence.store"):
            collection = await store.complete_collection("run-1")

        assert collection.state is CollectionState.COMPLETED
        assert not store.is_collection_in_progress("run-1")
        assert not (store.root / "manifest_run-1.json").exists()
        assert "Failed to write manifest for run-1" in caplog.text

    @pytest.mark.asyncio
    async def test_collect_requires_a_started_collection(self, store: EvidenceStore) -> None:
        with pytest.raises(CollectionStateError):
            await store.collect_for_scenario("run-1", "scenario-1", "Checkout")

    @pytest.mark.asyncio
    async def test_collect_after_completion_is_rejected(self, store: EvidenceStore) -> None:
        await _completed(store)

        with pytest.raises(CollectionStateError):
            await store.collect_for_step("run-1", "scenario-1", "step-2", "Then", "passed")
        with pytest.raises(CollectionStateError):
            await store.complete_collection("run-1")

    @pytest.mark.asyncio
    async def test_complete_folds_terminal_items_and_writes_manifest(self, store: EvidenceStore) -> None:
        await store.start_collection("run-1", {"branch": "main"})
        await store.collect_for_scenario("run-1", "scenario-1", "Checkout")

        collection = await store.complete_collection("run-1")

        assert collection.state is CollectionState.COMPLETED
        assert collection.end_time is not None
        assert [item.scenario_id for item in collection.items] == ["scenario-1", "execution"]
        assert (store.root / "manifest_run-1.json").is_file()
        assert not store.is_collection_in_progress("run-1")

    @pytest.mark.asyncio
    async def test_archive_written_when_enabled(self, settings: EvidenceSettings, recorder: StepRecordingCollector) -> None:
        store = EvidenceStore(dataclasses.replace(settings, archive_evidence=True), [recorder])

        await _completed(store)

        archives = list((store.root / "archives" / "run-1").glob("run-1_*.json.gz"))
        assert len(archives) == 1


class TestFanOut:
    @pytest.mark.asyncio
    async def test_failing_collector_does_not_affect_others(self, settings: EvidenceSettings) -> None:
        healthy = RecordingCollector("healthy")
        broken = RecordingCollector("broken", fail_on="collect_for_scenario")
        store = EvidenceStore(settings, [healthy, broken])
        await store.start_collection("run-1")

        items = await store.collect_for_scenario("run-1", "scenario-1", "Checkout")

        assert [item.tags for item in items] == [["healthy"]]
        assert "collect_for_scenario" in broken.calls

    @pytest.mark.asyncio
    async def test_step_collection_only_reaches_step_collectors(self, settings: EvidenceSettings) -> None:
        stepper = StepRecordingCollector("stepper")
        plain = RecordingCollector("plain")
        store = EvidenceStore(settings, [stepper, plain])
        await store.start_collection("run-1")

        items = await store.collect_for_step("run-1", "scenario-1", "step-1", "Given", "failed")

        assert [item.step_id for item in items] == ["step-1"]
        assert "collect_for_step" not in plain.calls

    @pytest.mark.asyncio
    async def test_finalize_failure_still_writes_manifest(self, settings: EvidenceSettings) -> None:
        store = EvidenceStore(settings, [RecordingCollector("a"), RecordingCollector("b", fail_on="finalize")])
        await store.start_collection("run-1")

        collection = await store.complete_collection("run-1")

        assert collection.state is CollectionState.COMPLETED
        assert (store.root / "manifest_run-1.json").is_file()
        assert len([item for item in collection.items if item.scenario_id == "execution"]) == 1

    @pytest.mark.asyncio
    async def test_disabled_collectors_are_skipped(self, settings: EvidenceSettings) -> None:
        disabled = RecordingCollector("disabled")
        disabled.enabled = False
        store = EvidenceStore(settings, [disabled])
        await store.start_collection("run-1")

        assert await store.collect_for_scenario("run-1", "scenario-1", "Checkout") == []
        assert disabled.calls == []


class TestStorageBudget:
    @pytest.mark.asyncio
    async def test_oldest_items_are_evicted(self, settings: EvidenceSettings, caplog: pytest.LogCaptureFixture) -> None:
        """Three 400 byte items against a 1000 byte budget leave the newest two."""

        store = EvidenceStore(dataclasses.replace(settings, max_evidence_size=1000), [BurstCollector()])
        await store.start_collection("run-1")

        with caplog.at_level(logging.WARNING, logger="evidence_engine.evidence.store"):
            items = await store.collect_for_scenario("run-1", "scenario-1", "Checkout")

        collection = await store.get_collection("run-1")
        assert collection.summary.total_size == 800
        assert [item.timestamp for item in collection.items] == [1002.0, 1003.0]
        assert [item.id for item in items] == [item.id for item in collection.items]
        assert len(list((store.root / "screenshots" / "run-1").iterdir())) == 2
        assert "Evicted evidence" in caplog.text

    @pytest.mark.asyncio
    async def test_eviction_across_scenarios(self, settings: EvidenceSettings) -> None:
        """A third 400 byte scenario item evicts the first one recorded earlier."""

        store = EvidenceStore(
            dataclasses.replace(settings, max_evidence_size=1000), [RecordingCollector("sized", payload_size=400)]
        )
        await store.start_collection("run-1")

        for index in (1, 2, 3):
            await store.collect_for_scenario("run-1", f"scenario-{index}", f"Scenario {index}")

        collection = await store.get_collection("run-1")
        assert collection.summary.total_size == 800
        assert [item.scenario_id for item in collection.items] == ["scenario-2", "scenario-3"]
        assert len(list((store.root / "screenshots" / "run-1").iterdir())) == 2


class TestQueries:
    @pytest.mark.asyncio
    async def test_completed_collection_is_loaded_from_manifest(
        self, store: EvidenceStore, settings: EvidenceSettings
    ) -> None:
        await _completed(store)

        reloaded = await EvidenceStore(settings, []).get_collection("run-1")

        assert reloaded is not None
        assert reloaded.state is CollectionState.COMPLETED
        assert reloaded.metadata == {"branch": "main"}
        assert reloaded.summary.total_items == 3

    @pytest.mark.asyncio
    async def test_unknown_collection(self, store: EvidenceStore) -> None:
        assert await store.get_collection("nope") is None
        assert store.get_state("nope") is CollectionState.UNINITIALIZED
        with pytest.raises(CollectionNotFoundError):
            await store.export_summary("nope")

    @pytest.mark.asyncio
    async def test_filtered_collection(self, store: EvidenceStore) -> None:
        await _completed(store)

        filtered = await store.get_collection("run-1", EvidenceFilter(scenario_ids=frozenset({"scenario-1"})))
        none_match = await store.get_collection("run-1", EvidenceFilter(types=frozenset({EvidenceType.VIDEO})))

        assert filtered.summary.total_items == 2
        assert none_match.items == []

    @pytest.mark.asyncio
    async def test_evidence_content(self, store: EvidenceStore) -> None:
        await _completed(store)
        collection = await store.get_collection("run-1")

        content = await store.get_evidence_content("run-1", collection.items[0].id)

        assert content == b"x" * 100
        with pytest.raises(EvidenceNotFoundError):
            await store.get_evidence_content("run-1", "screenshot_missing")
        with pytest.raises(CollectionNotFoundError):
            await store.get_evidence_content("other", collection.items[0].id)

    @pytest.mark.asyncio
    async def test_export_summary(self, store: EvidenceStore) -> None:
        await _completed(store)

        summary = await store.export_summary("run-1")

        assert summary["state"] == "completed"
        assert summary["summary"]["totalItems"] == 3
        assert summary["summary"]["byType"] == {"screenshot": 3}
        assert summary["byScenario"] == {
            "scenario-1": {"items": 2, "size": 200},
            "execution": {"items": 1, "size": 100},
        }
        assert len(summary["largestItems"]) == 3

    @pytest.mark.asyncio
    async def test_storage_stats(self, store: EvidenceStore) -> None:
        await _completed(store)

        stats = await store.get_storage_stats()

        assert stats["directories"]["screenshots"] == {"size": 300, "files": 3}
        assert stats["totalFiles"] == 3
        assert stats["manifests"] == 1
        assert stats["activeCollections"] == []


class TestVerificationAndRemoval:
    @pytest.mark.asyncio
    async def test_verify_detects_tampering(self, store: EvidenceStore) -> None:
        await _completed(store)
        collection = await store.get_collection("run-1")
        tampered = collection.items[0]

        assert all((await store.verify_manifest("run-1")).values())

        (store.root / tampered.path).write_bytes(b"changed")
        results = await store.verify_manifest("run-1")

        assert results[tampered.id] is False
        assert sum(results.values()) == 2

    @pytest.mark.asyncio
    async def test_verify_unknown_execution(self, store: EvidenceStore) -> None:
        with pytest.raises(CollectionNotFoundError):
            await store.verify_manifest("nope")

    @pytest.mark.asyncio
    async def test_clear_in_progress_collection_is_rejected(self, store: EvidenceStore) -> None:
        await store.start_collection("run-1")

        with pytest.raises(CollectionStateError):
            await store.clear_evidence("run-1")

    @pytest.mark.asyncio
    async def test_clear_completed_collection(self, store: EvidenceStore) -> None:
        await _completed(store)

        deleted = await store.clear_evidence("run-1")

        assert deleted == 3
        assert not (store.root / "manifest_run-1.json").exists()
        assert store.get_state("run-1") is CollectionState.UNINITIALIZED

    @pytest.mark.asyncio
    async def test_cleanup_clears_collectors(self, store: EvidenceStore, recorder: StepRecordingCollector) -> None:
        await store.start_collection("run-1")

        store.cleanup()

        assert "clear" in recorder.calls
        assert store.get_state("run-1") is CollectionState.UNINITIALIZED


def test_default_collectors(settings: EvidenceSettings) -> None:
    store = EvidenceStore.with_default_collectors(settings)

    assert store.registry.get_collector_names() == ["metrics", "performance"]
