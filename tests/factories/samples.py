"""Deterministic system samples and a scripted sampler for engine tests."""

from __future__ import annotations

from typing import Iterable, List, Optional

from evidence_engine.monitoring.metrics.models import (
    CpuReading,
    DiskReading,
    MemoryReading,
    SystemSample,
)

BASE_TIMESTAMP = 1_700_000_000_000.0


def make_sample(
    cpu: float = 10.0,
    memory: float = 40.0,
    disk: float = 50.0,
    heap: int = 0,
    timestamp: Optional[float] = None,
) -> SystemSample:
    """Build a system sample with the given usage percentages."""

    return SystemSample(
        cpu=CpuReading(usage=cpu, cores=4),
        memory=MemoryReading(heap_used=heap, heap_total=heap * 2, percent=memory),
        disk=DiskReading(total=1000, used=int(disk * 10), free=1000 - int(disk * 10), percent=disk),
        timestamp=BASE_TIMESTAMP if timestamp is None else timestamp,
    )


class ScriptedSampler:
    """Return queued samples in order, then keep repeating the last one."""

    def __init__(self, samples: Optional[Iterable[SystemSample]] = None) -> None:
        self._samples: List[SystemSample] = list(samples or [make_sample()])
        self.calls = 0

    async def sample(self) -> SystemSample:
        self.calls += 1
        if len(self._samples) > 1:
            return self._samples.pop(0)
        return self._samples[0]
