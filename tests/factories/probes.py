"""Browser probe fakes and canned Performance API payloads."""

from __future__ import annotations

import asyncio
import base64
import io
from typing import Any, Dict, Mapping, Optional

from PIL import Image

from evidence_engine.core.exceptions import ProbeUnsupportedError

PAGE_URL = "https://shop.example.com/checkout"


def navigation_entry(**overrides: Any) -> Dict[str, Any]:
    """A navigation timing entry for a page that loads in 2.4s."""

    entry: Dict[str, Any] = {
        "name": PAGE_URL,
        "fetchStart": 0,
        "domainLookupStart": 5,
        "domainLookupEnd": 25,
        "connectStart": 25,
        "connectEnd": 80,
        "secureConnectionStart": 40,
        "requestStart": 100,
        "responseStart": 400,
        "responseEnd": 600,
        "domInteractive": 900,
        "domContentLoadedEventEnd": 1000,
        "domComplete": 2200,
        "loadEventStart": 2300,
        "loadEventEnd": 2400,
        "duration": 2400,
    }
    entry.update(overrides)
    return entry


def probe_payload(fcp: float = 900.0, **overrides: Any) -> Dict[str, Any]:
    """A complete capture with resources, paints, long tasks and memory."""

    payload: Dict[str, Any] = {
        "navigation": navigation_entry(),
        "resources": [
            {
                "name": "https://shop.example.com/app.css",
                "initiatorType": "css",
                "startTime": 610,
                "duration": 120,
                "transferSize": 20_000,
                "encodedBodySize": 19_000,
                "decodedBodySize": 60_000,
                "responseEnd": 730,
            },
            {
                "name": "https://shop.example.com/app.js",
                "initiatorType": "script",
                "startTime": 620,
                "duration": 300,
                "transferSize": 80_000,
                "encodedBodySize": 79_000,
                "decodedBodySize": 240_000,
                "responseEnd": 920,
            },
            {
                "name": "https://cdn.tracker.example.net/pixel.js",
                "initiatorType": "script",
                "startTime": 700,
                "duration": 90,
                "transferSize": 5_000,
                "encodedBodySize": 4_800,
                "decodedBodySize": 12_000,
                "responseEnd": 790,
            },
        ],
        "paints": {"first-paint": fcp - 50, "first-contentful-paint": fcp},
        "longTasks": [{"startTime": 1100, "duration": 120}],
        "memory": {"usedJSHeapSize": 12_000_000, "totalJSHeapSize": 20_000_000, "jsHeapSizeLimit": 2_000_000_000},
        "userTimings": [{"name": "checkout-ready", "entryType": "mark", "startTime": 1500}],
    }
    payload.update(overrides)
    return payload


def png_frame(shade: int, size: int = 16) -> str:
    """Base64 PNG of a solid square; ``shade`` 0 is black, 255 white."""

    image = Image.new("L", (size, size), color=shade)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode("ascii")


def split_frame(left: int, right: int, size: int = 16) -> str:
    """Base64 PNG whose left and right halves have different shades."""

    image = Image.new("L", (size, size), color=left)
    image.paste(right, (size // 2, 0, size, size))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode("ascii")


class FakeProbe:
    """Probe answering from canned data.

    ``observations`` maps a vital to a value, ``None`` (no entry), the string
    ``"hang"`` (never resolves) or ``"unsupported"``.
    """

    def __init__(
        self,
        payload: Optional[Mapping[str, Any]] = None,
        observations: Optional[Mapping[str, Any]] = None,
        capture_error: Optional[BaseException] = None,
        capture_delay: float = 0.0,
    ) -> None:
        self.payload = dict(payload if payload is not None else probe_payload())
        self.observations = dict(observations or {})
        self.capture_error = capture_error
        self.capture_delay = capture_delay
        self.captures = 0

    async def capture(self) -> Mapping[str, Any]:
        self.captures += 1
        if self.capture_delay:
            await asyncio.sleep(self.capture_delay)
        if self.capture_error is not None:
            raise self.capture_error
        return self.payload

    async def observe(self, vital: str) -> Any:
        result = self.observations.get(vital)
        if result == "hang":
            await asyncio.Event().wait()
        if result == "unsupported":
            raise ProbeUnsupportedError(vital)
        return result
