"""Filmstrip analysis: visual completeness of captured frames.

Each frame is a base64 encoded image. Completeness is the perceptual
similarity of a frame to the final frame, using an 8x8 greyscale average
hash computed with Pillow.
"""

from __future__ import annotations

import base64
import io
import logging
from typing import Any, Dict, List, Optional, Sequence

from PIL import Image, UnidentifiedImageError

from .models import FilmstripFrame

logger = logging.getLogger(__name__)

HASH_SIZE = 8
HASH_BITS = HASH_SIZE * HASH_SIZE
COMPLETENESS_THRESHOLDS = (50, 85, 95, 100)


def decode_frame(screenshot: str) -> bytes:
    """Decode a base64 screenshot, tolerating a ``data:image/...;base64,`` prefix."""
    if screenshot.startswith("data:") and "," in screenshot:
        screenshot = screenshot.split(",", 1)[1]
    return base64.b64decode(screenshot, validate=True)


def average_hash(image_bytes: bytes) -> int:
    """64-bit average hash: bits set where a pixel is brighter than the mean.

    Raises:
        ValueError: if the bytes are not a decodable image.
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            pixels = list(image.convert("L").resize((HASH_SIZE, HASH_SIZE), Image.Resampling.BILINEAR).getdata())
    except (UnidentifiedImageError, OSError) as exc:
        raise ValueError(f"undecodable frame: {exc}") from exc

    mean = sum(pixels) / len(pixels)
    bits = 0
    for pixel in pixels:
        bits = (bits << 1) | (1 if pixel > mean else 0)
    return bits


def hash_similarity(first: int, second: int) -> float:
    """``1 - hamming / 64`` for two average hashes."""
    return 1.0 - bin(first ^ second).count("1") / HASH_BITS


def _frame_hash(frame: FilmstripFrame) -> Optional[int]:
    try:
        return average_hash(decode_frame(frame.screenshot))
    except ValueError as exc:
        logger.warning("Skipping filmstrip frame at %.0fms: %s", frame.timestamp, exc)
        return None


def visual_progression(frames: Sequence[FilmstripFrame]) -> List[float]:
    """Completeness percentage per frame; the first frame is 0 and the last 100.

    Frames that cannot be decoded score 0. When the final frame itself cannot
    be decoded, intermediate frames score 0 as well.
    """
    if not frames:
        return []
    if len(frames) == 1:
        return [100.0]

    final_hash = _frame_hash(frames[-1])
    progression = [0.0]
    for frame in frames[1:-1]:
        current = _frame_hash(frame) if final_hash is not None else None
        progression.append(hash_similarity(current, final_hash) * 100.0 if current is not None else 0.0)
    progression.append(100.0)
    return progression


def identify_key_frames(frames: Sequence[FilmstripFrame], progression: Sequence[float]) -> List[Dict[str, Any]]:
    """Start, first visual change and the visually-complete-N frames."""
    if not frames:
        return []

    key_frames: List[Dict[str, Any]] = [{"index": 0, "type": "start", "timestamp": frames[0].timestamp}]

    for index in range(1, len(progression)):
        if progression[index] > 0:
            key_frames.append({"index": index, "type": "first-visual-change", "timestamp": frames[index].timestamp})
            break

    for threshold in COMPLETENESS_THRESHOLDS:
        for index, completeness in enumerate(progression):
            if completeness >= threshold:
                key_frames.append({
                    "index": index,
                    "type": f"visually-complete-{threshold}",
                    "timestamp": frames[index].timestamp,
                })
                break
    return key_frames


def build_filmstrip(scenario_id: str, url: str, frames: Sequence[FilmstripFrame], speed_index: Optional[float]) -> Dict[str, Any]:
    """Filmstrip section for one scenario."""
    ordered = sorted(frames, key=lambda frame: frame.timestamp)
    progression = visual_progression(ordered)
    return {
        "scenarioId": scenario_id,
        "url": url,
        "frames": [
            {
                "index": index,
                "timestamp": frame.timestamp,
                "screenshot": frame.screenshot,
                "visualCompleteness": progression[index],
            }
            for index, frame in enumerate(ordered)
        ],
        "keyFrames": identify_key_frames(ordered, progression),
        "speedIndex": speed_index,
    }


__all__ = [
    "average_hash",
    "build_filmstrip",
    "decode_frame",
    "hash_similarity",
    "identify_key_frames",
    "visual_progression",
]
