"""Registry and concurrent fan-out for evidence collectors."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from evidence_engine.evidence.models import CollectedItem

from .base import EvidenceCollector, missing_lifecycle_methods, supports_step_collection

logger = logging.getLogger(__name__)

CollectorCall = Callable[[EvidenceCollector], Awaitable[Any]]


class CollectorRegistry:
    """Manage a named set of :class:`EvidenceCollector` instances."""

    def __init__(self, collectors: Optional[Iterable[EvidenceCollector]] = None) -> None:
        """Initialise the registry, registering ``collectors`` in order."""
        self._collectors: Dict[str, EvidenceCollector] = {}
        for collector in collectors or ():
            self.register(collector)
        logger.debug("CollectorRegistry initialized with %s collectors", len(self._collectors))

    def register(self, collector: EvidenceCollector) -> None:
        """Register ``collector`` by its name."""
        missing = missing_lifecycle_methods(collector)
        if missing:
            raise TypeError(
                f"Collector '{getattr(collector, 'name', collector)!r}' is missing lifecycle methods: {', '.join(missing)}"
            )
        if collector.name in self._collectors:
            raise ValueError(f"Collector with name '{collector.name}' already exists")

        self._collectors[collector.name] = collector
        logger.debug("Registered collector '%s'", collector.name)

    def unregister(self, name: str) -> None:
        """Remove the collector identified by ``name``."""
        if name not in self._collectors:
            raise ValueError(f"Collector with name '{name}' does not exist")

        del self._collectors[name]
        logger.debug("Unregistered collector '%s'", name)

    def get_collector(self, name: str) -> EvidenceCollector:
        """Return the collector registered under ``name``."""
        if name not in self._collectors:
            raise ValueError(f"Collector with name '{name}' does not exist")

        return self._collectors[name]

    def get_collector_names(self) -> List[str]:
        return list(self._collectors.keys())

    def active(self) -> List[EvidenceCollector]:
        """Enabled collectors in registration order."""
        return [collector for collector in self._collectors.values() if getattr(collector, "enabled", True)]

    def step_collectors(self) -> List[EvidenceCollector]:
        """Enabled collectors that implement the optional step extension."""
        return [collector for collector in self.active() if supports_step_collection(collector)]

    async def run_all(
        self,
        call: CollectorCall,
        operation: str,
        collectors: Optional[List[EvidenceCollector]] = None,
    ) -> List[Tuple[EvidenceCollector, Any]]:
        """Await ``call`` on every collector concurrently.

        Failures are logged and reported as ``None`` results; they never
        cancel or abort the remaining collectors.
        """
        targets = self.active() if collectors is None else collectors
        if not targets:
            return []

        results = await asyncio.gather(*(call(collector) for collector in targets), return_exceptions=True)

        outcome: List[Tuple[EvidenceCollector, Any]] = []
        for collector, result in zip(targets, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.error(
                    "Collector '%s' failed during %s: %s",
                    collector.name,
                    operation,
                    result,
                    exc_info=(type(result), result, result.__traceback__),
                )
                outcome.append((collector, None))
            else:
                outcome.append((collector, result))
        return outcome

    async def collect_all(
        self,
        call: CollectorCall,
        operation: str,
        collectors: Optional[List[EvidenceCollector]] = None,
    ) -> List[CollectedItem]:
        """Fan ``call`` out and return the union of every successful item list."""
        all_items: List[CollectedItem] = []
        for collector, items in await self.run_all(call, operation, collectors):
            if not items:
                continue
            all_items.extend(items)
            logger.debug("Collected %s items from '%s' during %s", len(items), collector.name, operation)
        return all_items

    def __len__(self) -> int:
        return len(self._collectors)

    def __iter__(self):
        return iter(self._collectors.values())


__all__ = ["CollectorRegistry"]
