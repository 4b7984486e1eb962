"""Host and process sampler backed by psutil."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import List, Optional

import psutil

from .models import CpuReading, DiskReading, MemoryReading, SystemSample

logger = logging.getLogger(__name__)


def compute_cpu_usage(user_delta: float, system_delta: float, wall_delta: float) -> float:
    """CPU usage as ``(d_user + d_system) / d_wall * 100``; ``0.0`` for an empty window."""
    if wall_delta <= 0:
        return 0.0
    return max(0.0, (user_delta + system_delta) / wall_delta * 100.0)


class SystemSampler:
    """Read CPU, memory and disk usage for the current process and host.

    Every sub-reading is independent: a failure in one degrades it to a
    zeroed reading, is logged and recorded in ``SystemSample.errors``, and the
    remaining readings are still returned.
    """

    def __init__(
        self,
        disk_path: str = ".",
        cpu_window_ms: int = 100,
        process_id: Optional[int] = None,
    ):
        """Initialize a sampler for host level telemetry."""
        self.disk_path = disk_path
        self.cpu_window = max(cpu_window_ms, 0) / 1000.0
        self.process_id = process_id or os.getpid()
        self._process = psutil.Process(self.process_id)

        logger.debug("SystemSampler initialized for process %s", self.process_id)

    async def sample(self) -> SystemSample:
        """Collect one CPU, memory and disk reading."""
        errors: List[str] = []
        cpu = await self._read_cpu(errors)
        memory = self._read_memory(errors)
        disk = self._read_disk(errors)

        if errors:
            logger.warning("Partial system sample: %s", "; ".join(errors))
        return SystemSample(cpu=cpu, memory=memory, disk=disk, errors=tuple(errors))

    async def _read_cpu(self, errors: List[str]) -> CpuReading:
        """Measure process CPU time over a short window."""
        try:
            before = self._process.cpu_times()
            started = time.monotonic()
            await asyncio.sleep(self.cpu_window)
            after = self._process.cpu_times()
            elapsed = time.monotonic() - started

            user_delta = after.user - before.user
            system_delta = after.system - before.system
            load_average: tuple[float, ...] = ()
            if hasattr(psutil, "getloadavg"):
                load_average = tuple(psutil.getloadavg())

            return CpuReading(
                usage=compute_cpu_usage(user_delta, system_delta, elapsed),
                user_ms=user_delta * 1000.0,
                system_ms=system_delta * 1000.0,
                cores=psutil.cpu_count() or 0,
                load_average=load_average,
            )
        except Exception as exc:  # noqa: BLE001 - degrade to a zeroed reading
            errors.append(f"cpu: {exc}")
            return CpuReading()

    def _read_memory(self, errors: List[str]) -> MemoryReading:
        """Collect process heap and operating system memory figures."""
        try:
            process_memory = self._process.memory_info()
            virtual_memory = psutil.virtual_memory()
            return MemoryReading(
                heap_used=process_memory.rss,
                heap_total=process_memory.vms,
                total=virtual_memory.total,
                available=virtual_memory.available,
                used=virtual_memory.used,
                percent=virtual_memory.percent,
            )
        except Exception as exc:  # noqa: BLE001 - degrade to a zeroed reading
            errors.append(f"memory: {exc}")
            return MemoryReading()

    def _read_disk(self, errors: List[str]) -> DiskReading:
        """Collect usage of the volume holding ``disk_path``."""
        try:
            usage = psutil.disk_usage(self.disk_path)
            return DiskReading(total=usage.total, used=usage.used, free=usage.free, percent=usage.percent)
        except Exception as exc:  # noqa: BLE001 - unsupported platforms report zeros
            errors.append(f"disk: {exc}")
            return DiskReading()


__all__ = ["SystemSampler", "compute_cpu_usage"]
