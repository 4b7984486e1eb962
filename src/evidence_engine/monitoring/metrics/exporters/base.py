"""Base abstractions shared by all metrics exporters."""

from __future__ import annotations

import abc
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from evidence_engine.core.exceptions import ExportError

__all__ = ["MetricPoint", "MetricsExporter"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MetricPoint:
    """A single exported value.

    ``timestamp`` is in epoch milliseconds; ``tags`` become labels or Grafana
    tags depending on the exporter.
    """

    name: str
    value: float
    timestamp: float
    tags: Dict[str, str] = field(default_factory=dict)
    description: Optional[str] = None


class MetricsExporter(abc.ABC):
    """Render metric points in a target format and write them to a file."""

    format_name: str = ""
    file_suffix: str = ""

    def __init__(self, name: Optional[str] = None) -> None:
        self.name = name or self.format_name
        logger.debug("Initialised %s '%s'", self.__class__.__name__, self.name)

    @abc.abstractmethod
    def render(self, points: List[MetricPoint]) -> str:
        """Return the serialised representation of ``points``."""

    def filename(self, execution_id: str) -> str:
        return f"metrics-{self.format_name}-{execution_id}.{self.file_suffix}"

    def export(self, points: Iterable[MetricPoint], file_path: str) -> str:
        """Render ``points`` and write them to ``file_path``.

        Raises:
            ExportError: if rendering or writing fails.
        """
        batch = list(points)
        try:
            payload = self.render(batch)
            directory = os.path.dirname(file_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(file_path, "w", encoding="utf-8") as handle:
                handle.write(payload)
        except ExportError:
            raise
        except Exception as exc:
            logger.error("Failed to export metrics as %s: %s", self.format_name, exc)
            raise ExportError(f"Failed to export metrics as {self.format_name}: {exc}", self.format_name) from exc

        logger.debug("Exported %s metric points to %s", len(batch), file_path)
        return file_path
