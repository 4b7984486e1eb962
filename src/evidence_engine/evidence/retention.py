"""Age-based cleanup of expired manifests, their evidence files and archives."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .archive import ARCHIVE_DIRECTORY, ARCHIVE_SUFFIX
from .manifest import MANIFEST_PREFIX, load_manifest
from .storage import EvidenceStorage

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


@dataclass
class RetentionResult:
    manifests_removed: int = 0
    files_removed: int = 0
    archives_removed: int = 0
    failures: int = 0

    def to_dict(self) -> dict:
        return {
            "manifestsRemoved": self.manifests_removed,
            "filesRemoved": self.files_removed,
            "archivesRemoved": self.archives_removed,
            "failures": self.failures,
        }


def _expired(path: Path, cutoff: float) -> bool:
    try:
        return path.stat().st_mtime < cutoff
    except OSError:
        return False


def _remove(path: Path, result: RetentionResult) -> bool:
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as exc:
        logger.warning("Retention could not delete %s: %s", path, exc)
        result.failures += 1
        return False


def apply_retention(storage: EvidenceStorage, retention_days: int, now: Optional[float] = None) -> RetentionResult:
    """Delete manifests (with the files they list) and archives older than ``retention_days``.

    ``now`` is a POSIX timestamp in seconds. Failures on single files are
    logged and counted; cleanup continues.
    """
    result = RetentionResult()
    if not storage.root.is_dir():
        return result
    cutoff = (time.time() if now is None else now) - retention_days * SECONDS_PER_DAY

    for manifest_file in sorted(storage.root.glob(f"{MANIFEST_PREFIX}*.json")):
        if not _expired(manifest_file, cutoff):
            continue
        try:
            manifest = load_manifest(manifest_file)
        except (OSError, ValueError) as exc:
            logger.warning("Unreadable manifest %s: %s", manifest_file, exc)
            manifest = {}
        for item in manifest.get("items", []):
            if item.get("path") and _remove(storage.resolve(item["path"]), result):
                result.files_removed += 1
        if _remove(manifest_file, result):
            result.manifests_removed += 1
            logger.info("Removed expired manifest %s", manifest_file.name)

    archives = storage.root / ARCHIVE_DIRECTORY
    if archives.is_dir():
        for archive_file in sorted(archives.glob(f"*/*{ARCHIVE_SUFFIX}")):
            if _expired(archive_file, cutoff) and _remove(archive_file, result):
                result.archives_removed += 1
        for directory in archives.iterdir():
            if directory.is_dir() and not any(directory.iterdir()):
                try:
                    directory.rmdir()
                except OSError as exc:
                    logger.debug("Could not remove empty archive directory %s: %s", directory, exc)

    if result.manifests_removed or result.archives_removed:
        logger.info(
            "Retention removed %d manifests, %d files and %d archives older than %d days",
            result.manifests_removed,
            result.files_removed,
            result.archives_removed,
            retention_days,
        )
    return result


__all__ = ["RetentionResult", "apply_retention"]
