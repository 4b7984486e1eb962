"""
evidence-engine: telemetry and evidence collection for automated test runs.

The package samples system and browser performance while tests execute,
evaluates the readings against thresholds and budgets, and persists the
results as storage-bounded, checksummed evidence.

Usage:
    from evidence_engine import EvidenceStore, EvidenceSettings

    store = EvidenceStore.with_default_collectors(EvidenceSettings.from_env())
    await store.start_collection("run-42")
"""

from evidence_engine.config.settings import EvidenceSettings
from evidence_engine.evidence.store import EvidenceStore
from evidence_engine.monitoring.metrics.engine import MetricsEngine
from evidence_engine.performance.engine import PerformanceEngine

__version__ = "0.1.0"

__all__ = [
    "EvidenceSettings",
    "EvidenceStore",
    "MetricsEngine",
    "PerformanceEngine",
    "__version__",
]
