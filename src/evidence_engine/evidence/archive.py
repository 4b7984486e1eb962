"""Compressed archives of completed collections.

An archive is a gzip-compressed JSON document holding the manifest and the
evidence-root relative paths of the files it lists. Raw evidence is never
re-read: the manifest checksums are what ties an archive to its files.
"""

from __future__ import annotations

import gzip
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Union

from evidence_engine.core.exceptions import ArchiveError
from evidence_engine.core.utils.files import dumps_json, write_bytes, write_json

from .manifest import MANIFEST_PREFIX
from .storage import EvidenceStorage

logger = logging.getLogger(__name__)

ARCHIVE_DIRECTORY = "archives"
ARCHIVE_SUFFIX = ".json.gz"


def archive_path(root: Union[str, Path], execution_id: str, timestamp: int) -> Path:
    return Path(root) / ARCHIVE_DIRECTORY / execution_id / f"{execution_id}_{timestamp}{ARCHIVE_SUFFIX}"


def archived_files(manifest: Mapping[str, Any]) -> List[str]:
    """Manifest file name followed by every item path the manifest references."""
    files = [f"{MANIFEST_PREFIX}{manifest['executionId']}.json"]
    files.extend(item["path"] for item in manifest.get("items", []) if item.get("path"))
    return files


def create_archive(
    manifest: Mapping[str, Any],
    storage: EvidenceStorage,
    delete_after: bool = False,
) -> Path:
    """Write the archive document for a completed collection.

    Args:
        manifest: Manifest document of the collection.
        storage: Storage used to resolve item paths.
        delete_after: Remove each listed evidence file once the archive is
            written. Deletion failures are logged per file.

    Returns:
        Location of the written archive.

    Raises:
        ArchiveError: when the archive itself cannot be written.
    """
    execution_id = str(manifest["executionId"])
    created = datetime.now(timezone.utc)
    files = archived_files(manifest)

    target = archive_path(storage.root, execution_id, int(created.timestamp() * 1000))
    document = {
        "execution_id": execution_id,
        "created": created.isoformat(),
        "files": files,
        "manifest": dict(manifest),
    }
    try:
        size = write_bytes(target, dumps_json(document).encode("utf-8"), compress=True)
    except OSError as exc:
        raise ArchiveError(str(target), str(exc)) from exc
    logger.info("Archived manifest of %s listing %d files to %s (%d bytes)", execution_id, len(files), target, size)

    if delete_after:
        # the manifest itself stays; retention removes it
        for relative in files[1:]:
            source = storage.resolve(relative)
            try:
                source.unlink()
            except FileNotFoundError:
                logger.debug("Archived file already gone: %s", source)
            except OSError as exc:
                logger.warning("Failed to delete archived file %s: %s", source, exc)
    return target


def read_archive(path: Union[str, Path]) -> Dict[str, Any]:
    """Load an archive document.

    Raises:
        ArchiveError: if the file is missing or not a valid archive.
    """
    try:
        with gzip.open(path, "rt", encoding="utf-8") as handle:
            document = json.load(handle)
    except (OSError, ValueError) as exc:
        raise ArchiveError(str(path), f"unreadable archive: {exc}") from exc
    if not isinstance(document, dict) or not isinstance(document.get("manifest"), dict):
        raise ArchiveError(str(path), "archive has no manifest")
    return document


def extract_archive(path: Union[str, Path], target_dir: Union[str, Path]) -> Path:
    """Write the archived manifest back out below ``target_dir`` and return its path."""
    document = read_archive(path)
    manifest = document["manifest"]
    execution_id = str(document.get("execution_id") or manifest.get("executionId"))

    manifest_file = Path(target_dir) / f"{MANIFEST_PREFIX}{execution_id}.json"
    try:
        write_json(manifest_file, manifest)
    except OSError as exc:
        raise ArchiveError(str(path), f"cannot write manifest to {manifest_file}: {exc}") from exc
    logger.info(
        "Extracted manifest of %s (%d archived files) into %s", execution_id, len(document.get("files", [])), target_dir
    )
    return manifest_file


__all__ = [
    "ARCHIVE_DIRECTORY",
    "ARCHIVE_SUFFIX",
    "archive_path",
    "archived_files",
    "create_archive",
    "extract_archive",
    "read_archive",
]
