"""Global pytest configuration for the evidence engine.

Ensures the ``src`` tree is importable without an editable install and
provides the settings fixtures shared by the unit and integration
suites. Reusable fakes live in ``tests.factories``.
"""

import sys
from pathlib import Path

import pytest

# Make the 'evidence_engine' package importable straight from the checkout
project_root = Path(__file__).parent.parent
src_dir = project_root / "src"

if str(src_dir) not in sys.path:
    sys.path.insert(0, str(src_dir))

from evidence_engine.config.settings import (  # noqa: E402
    EvidenceSettings,
    MetricsOptions,
    PerformanceOptions,
)


@pytest.fixture()
def quiet_metrics_options() -> MetricsOptions:
    """Metrics options without the background loop or GC hook."""

    return MetricsOptions(collect_system_metrics=False, include_gc_metrics=False)


@pytest.fixture()
def settings(tmp_path: Path, quiet_metrics_options: MetricsOptions) -> EvidenceSettings:
    """Settings rooted in a temporary evidence directory."""

    return EvidenceSettings(
        evidence_path=tmp_path / "evidence",
        metrics=quiet_metrics_options,
        performance=PerformanceOptions(vitals_timeout_ms=200, capture_timeout_ms=200),
    )
