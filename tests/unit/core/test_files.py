"""Tests for JSON and file helpers."""

from __future__ import annotations

import json
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path

from evidence_engine.core.utils.files import dumps_json, read_json, write_json
from evidence_engine.evidence.models import EvidenceType


def test_values_json_lacks_are_rendered_as_text() -> None:
    payload = {
        "capturedAt": datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc),
        "day": date(2024, 5, 1),
        "type": EvidenceType.VIDEO,
        "tags": {"smoke"},
        "raw": b"ok",
        "where": Path("videos/run-1"),
        "ratio": Decimal("0.25"),
    }

    decoded = json.loads(dumps_json(payload))

    assert decoded == {
        "capturedAt": "2024-05-01T12:30:00+00:00",
        "day": "2024-05-01",
        "type": "video",
        "tags": ["smoke"],
        "raw": "ok",
        "where": "videos/run-1",
        "ratio": "0.25",
    }


def test_write_json_creates_parent_directories(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "report.json"

    size = write_json(target, {"when": datetime(2024, 1, 2, tzinfo=timezone.utc)})

    assert size == target.stat().st_size
    assert read_json(target) == {"when": "2024-01-02T00:00:00+00:00"}
