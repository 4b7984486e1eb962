"""End-to-end evidence collection with the metrics and performance engines."""

from __future__ import annotations

import dataclasses
import json
from pathlib import Path

import pytest

from evidence_engine.config.settings import EvidenceSettings
from evidence_engine.evidence.models import CollectionState, EvidenceType
from evidence_engine.evidence.store import EvidenceStore
from tests.factories.probes import FakeProbe

pytestmark = pytest.mark.integration


@pytest.fixture()
def store(settings: EvidenceSettings) -> EvidenceStore:
    store = EvidenceStore.with_default_collectors(dataclasses.replace(settings, archive_evidence=True))
    store.registry.get_collector("performance").register_probe(
        "scenario-1", FakeProbe(observations={"LCP": 2100, "CLS": 0.02})
    )
    return store


@pytest.mark.asyncio
async def test_full_execution_lifecycle(store: EvidenceStore, tmp_path: Path) -> None:
    await store.start_collection("run-1", {"suite": "checkout"})

    scenario_items = await store.collect_for_scenario("run-1", "scenario-1", "Checkout")
    step_items = await store.collect_for_step("run-1", "scenario-1", "step-1", "When I pay", "failed")
    collection = await store.complete_collection("run-1")

    assert [item.type for item in scenario_items] == [EvidenceType.METRICS]
    assert {item.type for item in step_items} == {EvidenceType.METRICS, EvidenceType.PERFORMANCE}
    assert collection.state is CollectionState.COMPLETED
    names = {Path(item.path).name for item in collection.items if item.path}
    assert {
        "metrics-report.json",
        "metrics-trends.json",
        "performance-report.json",
        "performance-analysis.json",
        "resource-waterfall.json",
    } <= names
    assert all(not Path(item.path).is_absolute() for item in collection.items if item.path)

    report = json.loads((store.root / "performance" / "run-1" / "performance-report.json").read_text())
    scenario = report["scenarios"][0]
    assert scenario["name"] == "Checkout"
    assert scenario["summary"]["scores"]["LCP"] == 0.75
    assert scenario["summary"]["scores"]["CLS"] == 1.0

    verification = await store.verify_manifest("run-1")
    assert verification and all(verification.values())

    archives = list((store.root / "archives" / "run-1").glob("*.json.gz"))
    assert len(archives) == 1
    manifest_file = await store.extract_archive(archives[0], tmp_path / "restored")
    restored = json.loads(manifest_file.read_text())
    assert restored["executionId"] == "run-1"
    assert restored["metadata"] == {"suite": "checkout"}
    assert "performance/run-1/performance-report.json" in {item["path"] for item in restored["items"]}
    assert set(restored["checksums"]) == {item.id for item in collection.items if item.path}


@pytest.mark.asyncio
async def test_completed_run_is_queryable_from_a_new_store(store: EvidenceStore, settings: EvidenceSettings) -> None:
    await store.start_collection("run-1")
    await store.collect_for_scenario("run-1", "scenario-1", "Checkout")
    await store.complete_collection("run-1")

    fresh = EvidenceStore(settings)
    summary = await fresh.export_summary("run-1")
    metrics_only = [i for i in (await fresh.get_collection("run-1")).items if i.type is EvidenceType.METRICS]
    snapshot = await fresh.get_evidence_content("run-1", metrics_only[0].id)

    assert summary["state"] == "completed"
    assert summary["summary"]["byType"]["performance"] == 3
    assert json.loads(snapshot)["scenarioId"] == "scenario-1"
