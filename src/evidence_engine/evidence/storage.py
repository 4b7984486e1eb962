"""File persistence of evidence items below the evidence root."""

from __future__ import annotations

import asyncio
import gzip
import hashlib
import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Optional, Union

from evidence_engine.core.exceptions import StorageInitializationError
from evidence_engine.core.utils.files import dumps_json, write_bytes_async

from .models import STORAGE_DIRECTORIES, CollectedItem, EvidenceItem, EvidenceType

logger = logging.getLogger(__name__)

GZIP_SUFFIX = ".gz"
_GZIP_MAGIC = b"\x1f\x8b"


def generate_item_id(item_type: EvidenceType, scenario_id: str, step_id: Optional[str]) -> str:
    """``{type}_{md5(type_scenario_step)[:8]}_{random}``.

    The hash groups items of the same step; the random suffix keeps repeated
    captures of one step distinct.
    """
    seed = f"{item_type.value}_{scenario_id}_{step_id or ''}"
    digest = hashlib.md5(seed.encode("utf-8")).hexdigest()[:8]
    return f"{item_type.value}_{digest}_{uuid.uuid4().hex[:8]}"


def _encode_content(content: Any) -> bytes:
    if isinstance(content, bytes):
        return content
    if isinstance(content, str):
        return content.encode("utf-8")
    return dumps_json(content).encode("utf-8")


class EvidenceStorage:
    """Writes, resolves and deletes evidence files under one root directory."""

    def __init__(self, root: Union[str, Path], compress: bool = True):
        self.root = Path(root)
        self.compress = compress

    def ensure_directories(self) -> None:
        """Create the root and every storage subdirectory.

        Raises:
            StorageInitializationError: if any directory cannot be created.
        """
        for directory in (self.root, *(self.root / name for name in STORAGE_DIRECTORIES)):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise StorageInitializationError(str(directory), exc) from exc

    def relative(self, path: Union[str, Path]) -> str:
        """Path relative to the root when inside it, otherwise unchanged."""
        candidate = Path(path)
        try:
            return candidate.resolve().relative_to(self.root.resolve()).as_posix()
        except ValueError:
            return str(candidate)

    def resolve(self, path: Union[str, Path]) -> Path:
        candidate = Path(path)
        return candidate if candidate.is_absolute() else self.root / candidate

    def execution_dir(self, item_type: EvidenceType, execution_id: str) -> Path:
        return self.root / item_type.directory / execution_id

    async def persist(self, execution_id: str, collected: CollectedItem) -> Optional[EvidenceItem]:
        """Turn a collector result into a persisted :class:`EvidenceItem`.

        ``data``/``content`` payloads are written below
        ``<type-dir>/<execution_id>/``, gzip compressed for compressible types
        when compression is enabled.

        Args:
            execution_id: Execution that owns the item.
            collected: Raw item from a collector.

        Returns:
            The stored item, or ``None`` when writing or stat'ing the file failed.
        """
        item_id = generate_item_id(collected.type, collected.scenario_id, collected.step_id)
        metadata = dict(collected.metadata)
        path: Optional[str] = None
        size = 0

        try:
            if collected.path is not None:
                source = self.resolve(collected.path)
                size = (await asyncio.to_thread(source.stat)).st_size
                path = self.relative(source)
            elif collected.data is not None or collected.content is not None:
                payload = collected.data if collected.data is not None else _encode_content(collected.content)
                compress = self.compress and collected.type.compressible
                filename = collected.name or f"{item_id}.{collected.type.extension}"
                if compress:
                    filename += GZIP_SUFFIX
                    metadata["compressed"] = True
                target = self.execution_dir(collected.type, execution_id) / filename
                size = await write_bytes_async(target, payload, compress)
                path = self.relative(target)
        except OSError as exc:
            logger.error(
                "Failed to persist %s evidence for scenario %s: %s",
                collected.type.value,
                collected.scenario_id,
                exc,
            )
            return None

        return EvidenceItem(
            id=item_id,
            type=collected.type,
            scenario_id=collected.scenario_id,
            step_id=collected.step_id,
            timestamp=collected.timestamp,
            path=path,
            size=size,
            metadata=metadata,
            tags=list(collected.tags),
        )

    async def delete(self, item: EvidenceItem) -> bool:
        """Delete the item's file; failures are logged and reported as ``False``."""
        if not item.path:
            return True
        target = self.resolve(item.path)
        try:
            await asyncio.to_thread(target.unlink)
        except FileNotFoundError:
            logger.debug("Evidence file %s already gone", target)
        except OSError as exc:
            logger.error("Failed to delete evidence file %s: %s", target, exc)
            return False
        return True

    def read(self, item: EvidenceItem) -> bytes:
        """Return the item's bytes, decompressing gzip files transparently."""
        if not item.path:
            raise FileNotFoundError(f"evidence item {item.id} has no file")
        with open(self.resolve(item.path), "rb") as handle:
            data = handle.read()
        if item.metadata.get("compressed") or data[:2] == _GZIP_MAGIC:
            return gzip.decompress(data)
        return data

    def read_json(self, item: EvidenceItem) -> Any:
        return json.loads(self.read(item).decode("utf-8"))

    def exists(self, item: EvidenceItem) -> bool:
        return bool(item.path) and os.path.isfile(self.resolve(item.path))


__all__ = ["EvidenceStorage", "GZIP_SUFFIX", "generate_item_id"]
