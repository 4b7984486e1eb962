"""Lifecycle contract shared by every evidence collector."""

from __future__ import annotations

import abc
import logging
from typing import Any, List, Mapping, Optional, Protocol, runtime_checkable

from evidence_engine.evidence.models import CollectedItem

logger = logging.getLogger(__name__)

REQUIRED_METHODS = ("initialize", "collect_for_scenario", "finalize", "get_evidence", "clear")


class EvidenceCollector(abc.ABC):
    """Abstract interface implemented by metrics, performance and media collectors.

    The core lifecycle is mandatory. Step-level collection is an optional
    extension: collectors that care about individual steps implement
    ``collect_for_step(scenario_id, step_id, step_text, status)`` and are
    discovered through :func:`supports_step_collection`.
    """

    def __init__(self, name: str, enabled: bool = True):
        """Initialize the collector scaffold.

        Args:
            name: Unique name used by the registry and in log messages.
            enabled: Disabled collectors are skipped by the orchestrator.
        """
        self.name = name
        self.enabled = enabled
        self.execution_id: Optional[str] = None

        logger.debug("Initialized collector %s", name)

    @abc.abstractmethod
    async def initialize(self, execution_id: str, options: Optional[Mapping[str, Any]] = None) -> None:
        """Prepare per-execution state; raise when output cannot be created."""

    @abc.abstractmethod
    async def collect_for_scenario(self, scenario_id: str, scenario_name: str) -> List[CollectedItem]:
        """Return evidence captured at the start of a scenario."""

    @abc.abstractmethod
    async def finalize(self) -> None:
        """Stop background work and write any terminal reports."""

    @abc.abstractmethod
    def get_evidence(self) -> List[CollectedItem]:
        """Return every item produced during the current execution."""

    @abc.abstractmethod
    def clear(self) -> None:
        """Drop all in-memory state."""

    async def shutdown(self) -> None:
        """Stop background work without writing reports, then drop state."""
        self.clear()


@runtime_checkable
class StepCollector(Protocol):
    """Optional extension for collectors that react to individual steps."""

    async def collect_for_step(
        self,
        scenario_id: str,
        step_id: str,
        step_text: str,
        status: str,
    ) -> List[CollectedItem]:
        ...


def supports_step_collection(collector: object) -> bool:
    """Return ``True`` when ``collector`` implements the :class:`StepCollector` extension."""
    return isinstance(collector, StepCollector) and callable(getattr(collector, "collect_for_step"))


async def shutdown_collector(collector: object) -> None:
    """Await ``shutdown`` where the collector provides it, else call ``clear``."""
    shutdown = getattr(collector, "shutdown", None)
    if callable(shutdown):
        await shutdown()
    else:
        collector.clear()


def missing_lifecycle_methods(collector: object) -> List[str]:
    """Names of required lifecycle methods ``collector`` does not provide."""
    return [name for name in REQUIRED_METHODS if not callable(getattr(collector, name, None))]


__all__ = [
    "EvidenceCollector",
    "REQUIRED_METHODS",
    "StepCollector",
    "missing_lifecycle_methods",
    "shutdown_collector",
    "supports_step_collection",
]
