"""Filesystem helpers used by the engines and the evidence store.

Blocking work is pushed to a worker thread through ``asyncio.to_thread`` so
the event loop keeps driving collectors while reports and evidence files are
written.
"""

from __future__ import annotations

import asyncio
import gzip
import hashlib
import json
import logging
import os
from datetime import date, datetime, time
from enum import Enum
from pathlib import Path
from typing import Any, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]

_HASH_CHUNK = 1024 * 1024


def _json_default(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    # Path, Decimal, UUID and anything else foreign to JSON
    return str(value)


def dumps_json(payload: Any) -> str:
    return json.dumps(payload, indent=2, default=_json_default)


def write_bytes(path: PathLike, data: bytes, compress: bool = False) -> int:
    """Write ``data`` (optionally gzip-compressed) and return the on-disk size."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    if compress:
        data = gzip.compress(data, compresslevel=9)
    with open(target, "wb") as handle:
        handle.write(data)
    return target.stat().st_size


def write_json(path: PathLike, payload: Any) -> int:
    return write_bytes(path, dumps_json(payload).encode("utf-8"))


async def write_bytes_async(path: PathLike, data: bytes, compress: bool = False) -> int:
    return await asyncio.to_thread(write_bytes, path, data, compress)


async def write_json_async(path: PathLike, payload: Any) -> int:
    data = dumps_json(payload).encode("utf-8")
    return await asyncio.to_thread(write_bytes, path, data, False)


def read_json(path: PathLike) -> Any:
    with open(path, encoding="utf-8") as handle:
        return json.load(handle)


def sha256_file(path: PathLike) -> str:
    """Hex SHA-256 of the file's bytes, read in chunks."""
    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(_HASH_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def directory_size(path: PathLike) -> tuple[int, int]:
    """Return ``(total_bytes, file_count)`` for every file below ``path``."""
    total = 0
    count = 0
    for root, _dirs, files in os.walk(path):
        for filename in files:
            try:
                total += os.path.getsize(os.path.join(root, filename))
                count += 1
            except OSError as exc:
                logger.debug("Skipping unreadable file %s: %s", filename, exc)
    return total, count


__all__ = [
    "directory_size",
    "dumps_json",
    "read_json",
    "sha256_file",
    "write_bytes",
    "write_bytes_async",
    "write_json",
    "write_json_async",
]
