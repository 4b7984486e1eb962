"""Tests for the filmstrip visual-completeness analysis."""

from __future__ import annotations

import base64
import logging

import pytest

from evidence_engine.performance.filmstrip import (
    average_hash,
    build_filmstrip,
    decode_frame,
    hash_similarity,
    identify_key_frames,
    visual_progression,
)
from evidence_engine.performance.models import FilmstripFrame
from tests.factories.probes import png_frame, split_frame

BLANK = png_frame(0)
FINAL = split_frame(0, 255)
INVERTED = split_frame(255, 0)


def _frames(*screens: str) -> list[FilmstripFrame]:
    return [FilmstripFrame(timestamp=index * 100.0, screenshot=screen) for index, screen in enumerate(screens)]


def test_average_hash_of_split_frame() -> None:
    """Each of the 8 rows is dark on the left and bright on the right."""

    expected = int("00001111" * 8, 2)

    assert average_hash(decode_frame(FINAL)) == expected
    assert average_hash(decode_frame(BLANK)) == 0


def test_hash_similarity() -> None:
    assert hash_similarity(0, 0) == 1.0
    assert hash_similarity(0, int("1" * 64, 2)) == 0.0
    assert hash_similarity(0b1111, 0) == pytest.approx(1 - 4 / 64)


def test_decode_frame_accepts_data_url() -> None:
    raw = decode_frame(f"data:image/png;base64,{FINAL}")

    assert raw == base64.b64decode(FINAL)


def test_average_hash_rejects_non_images() -> None:
    with pytest.raises(ValueError):
        average_hash(b"definitely not a png")


def test_progression_is_anchored_at_zero_and_hundred() -> None:
    progression = visual_progression(_frames(BLANK, INVERTED, BLANK, FINAL, FINAL))

    assert progression == [0.0, 0.0, 50.0, 100.0, 100.0]


def test_single_frame_is_complete() -> None:
    assert visual_progression(_frames(FINAL)) == [100.0]
    assert visual_progression([]) == []


def test_undecodable_frame_scores_zero_with_warning(caplog: pytest.LogCaptureFixture) -> None:
    garbage = base64.b64encode(b"garbage bytes").decode("ascii")

    with caplog.at_level(logging.WARNING, logger="evidence_engine.performance.filmstrip"):
        progression = visual_progression(_frames(BLANK, garbage, FINAL))

    assert progression == [0.0, 0.0, 100.0]
    assert "Skipping filmstrip frame" in caplog.text


def test_key_frames() -> None:
    frames = _frames(BLANK, INVERTED, BLANK, FINAL, FINAL)
    progression = visual_progression(frames)

    key_frames = {entry["type"]: entry["index"] for entry in identify_key_frames(frames, progression)}

    assert key_frames == {
        "start": 0,
        "first-visual-change": 2,
        "visually-complete-50": 2,
        "visually-complete-85": 3,
        "visually-complete-95": 3,
        "visually-complete-100": 3,
    }


def test_build_filmstrip_orders_frames_by_timestamp() -> None:
    frames = [
        FilmstripFrame(timestamp=300.0, screenshot=FINAL),
        FilmstripFrame(timestamp=0.0, screenshot=BLANK),
        FilmstripFrame(timestamp=150.0, screenshot=BLANK),
    ]

    filmstrip = build_filmstrip("scenario-1", "https://shop.example.com", frames, speed_index=812.0)

    assert [frame["timestamp"] for frame in filmstrip["frames"]] == [0.0, 150.0, 300.0]
    assert [frame["visualCompleteness"] for frame in filmstrip["frames"]] == [0.0, 50.0, 100.0]
    assert filmstrip["speedIndex"] == 812.0
    assert filmstrip["keyFrames"][0]["type"] == "start"
