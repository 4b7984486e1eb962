"""Browser probe contract and deadline-bounded calls into it.

A probe is whatever drives the browser (a Playwright page wrapper, a CDP
session, a recorded fixture). The engine never waits on it without a
deadline: captures and vital observers run under ``asyncio.wait_for`` and
the outcome distinguishes a timeout from an unsupported observation.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Protocol, Tuple, runtime_checkable

from evidence_engine.core.exceptions import ProbeTimeoutError, ProbeUnsupportedError

from .models import ObservationResult, VitalObservation, VitalStatus, VitalValue

logger = logging.getLogger(__name__)


@runtime_checkable
class BrowserProbe(Protocol):
    """Source of browser performance entries for one scenario."""

    async def capture(self) -> Mapping[str, Any]:
        """Return navigation, resource, paint, long-task, memory and user timings."""
        ...

    async def observe(self, vital: str) -> ObservationResult:
        """Resolve an observer-based vital (``LCP``, ``FID``, ``CLS``, ``INP``).

        Returns ``None`` when the page produced no entry, and raises
        :class:`ProbeUnsupportedError` when the browser cannot observe it.
        """
        ...


async def capture_with_deadline(probe: BrowserProbe, timeout: float) -> Mapping[str, Any]:
    """Run ``probe.capture()`` bounded by ``timeout`` seconds.

    Raises:
        ProbeTimeoutError: when the capture does not finish in time.
    """
    try:
        return await asyncio.wait_for(probe.capture(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise ProbeTimeoutError("capture", timeout) from exc


async def observe_with_deadline(
    probe: BrowserProbe,
    vital: str,
    timeout: float,
) -> Tuple[VitalValue, Mapping[str, Any]]:
    """Resolve one vital observer under a deadline.

    Returns the typed value plus any observer details (element, entries).
    A timeout yields ``VitalStatus.TIMED_OUT`` and an unsupported observer
    ``VitalStatus.UNSUPPORTED``; neither is ever reported as zero.
    """
    try:
        result = await asyncio.wait_for(probe.observe(vital), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("%s observer did not resolve within %.1fs", vital, timeout)
        return VitalValue.unavailable(VitalStatus.TIMED_OUT), {}
    except ProbeUnsupportedError:
        logger.debug("%s observer not supported by probe", vital)
        return VitalValue.unavailable(VitalStatus.UNSUPPORTED), {}

    if result is None:
        return VitalValue.unavailable(VitalStatus.NOT_COLLECTED), {}

    observation = result if isinstance(result, VitalObservation) else VitalObservation.model_validate(
        {"value": result} if isinstance(result, (int, float)) else result
    )
    details = observation.model_dump(by_alias=True, exclude={"value"})
    return VitalValue.measured(observation.value), details


__all__ = ["BrowserProbe", "capture_with_deadline", "observe_with_deadline"]
