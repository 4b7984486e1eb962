"""Checksummed manifests describing a completed evidence collection."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Tuple, Union

from evidence_engine.core.utils.files import read_json, sha256_file, write_json_async

from .models import EvidenceCollection
from .storage import EvidenceStorage

logger = logging.getLogger(__name__)

MANIFEST_VERSION = "1.0"
MANIFEST_PREFIX = "manifest_"


def manifest_path(root: Union[str, Path], execution_id: str) -> Path:
    return Path(root) / f"{MANIFEST_PREFIX}{execution_id}.json"


def compute_checksums(collection: EvidenceCollection, storage: EvidenceStorage) -> Dict[str, str]:
    """SHA-256 of every item whose file exists; missing files are logged and left out."""
    checksums: Dict[str, str] = {}
    for item in collection.items:
        if not item.path:
            continue
        if not storage.exists(item):
            logger.warning("Evidence file for %s is missing (%s); left out of the manifest", item.id, item.path)
            continue
        try:
            checksums[item.id] = sha256_file(storage.resolve(item.path))
        except OSError as exc:
            logger.warning("Cannot checksum evidence %s (%s): %s", item.id, item.path, exc)
    return checksums


def build_manifest(collection: EvidenceCollection, checksums: Mapping[str, str]) -> Dict[str, Any]:
    return {
        **collection.to_dict(),
        "checksums": dict(checksums),
        "version": MANIFEST_VERSION,
        "generated": datetime.now(timezone.utc).isoformat(),
    }


async def write_manifest(collection: EvidenceCollection, storage: EvidenceStorage) -> Tuple[Path, Dict[str, Any]]:
    """Checksum the collection's files and write ``manifest_<id>.json`` at the root."""
    checksums = await asyncio.to_thread(compute_checksums, collection, storage)
    manifest = build_manifest(collection, checksums)
    path = manifest_path(storage.root, collection.execution_id)
    await write_json_async(path, manifest)
    logger.info(
        "Wrote manifest for %s (%d items, %d checksums)",
        collection.execution_id,
        len(collection.items),
        len(checksums),
    )
    return path, manifest


def load_manifest(path: Union[str, Path]) -> Dict[str, Any]:
    return read_json(path)


def collection_from_manifest(manifest: Mapping[str, Any]) -> EvidenceCollection:
    collection = EvidenceCollection.from_dict(manifest)
    # keep the stored summary duration rather than one measured against "now"
    if collection.end_time is None:
        collection.summary.duration = float(manifest.get("summary", {}).get("duration", 0.0))
    return collection


def verify_checksums(manifest: Mapping[str, Any], storage: EvidenceStorage) -> Dict[str, bool]:
    """Recompute each recorded checksum; missing or modified files verify ``False``."""
    results: Dict[str, bool] = {}
    paths = {item["id"]: item.get("path") for item in manifest.get("items", [])}
    for item_id, expected in manifest.get("checksums", {}).items():
        path = paths.get(item_id)
        if not path:
            results[item_id] = False
            continue
        try:
            results[item_id] = sha256_file(storage.resolve(path)) == expected
        except OSError as exc:
            logger.warning("Evidence %s failed verification: %s", item_id, exc)
            results[item_id] = False
    return results


__all__ = [
    "MANIFEST_PREFIX",
    "MANIFEST_VERSION",
    "build_manifest",
    "collection_from_manifest",
    "compute_checksums",
    "load_manifest",
    "manifest_path",
    "verify_checksums",
    "write_manifest",
]
