"""
Evidence store.

Owns one :class:`EvidenceCollection` per execution, fans lifecycle calls out
to every registered collector, persists what they return, keeps each
collection within the storage budget and writes the checksummed manifest
(and optionally an archive) when the collection completes.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from evidence_engine.collectors.base import EvidenceCollector, shutdown_collector
from evidence_engine.collectors.registry import CollectorRegistry
from evidence_engine.config.settings import EvidenceSettings, get_default_settings
from evidence_engine.core.exceptions import (
    ArchiveError,
    CollectionExistsError,
    CollectionNotFoundError,
    CollectionStateError,
    EvidenceNotFoundError,
)
from evidence_engine.core.utils.files import directory_size
from evidence_engine.monitoring.metrics.engine import MetricsEngine
from evidence_engine.performance.engine import PerformanceEngine

from . import archive, manifest
from .models import (
    STORAGE_DIRECTORIES,
    CollectedItem,
    CollectionState,
    EvidenceCollection,
    EvidenceFilter,
    EvidenceItem,
    now_ms,
)
from .retention import RetentionResult, apply_retention
from .storage import EvidenceStorage

logger = logging.getLogger(__name__)

_IN_PROGRESS = (CollectionState.COLLECTING, CollectionState.FINALIZING)


class EvidenceStore:
    """Per-execution evidence lifecycle: start, collect, complete."""

    def __init__(
        self,
        settings: Optional[EvidenceSettings] = None,
        collectors: Optional[Union[CollectorRegistry, Iterable[EvidenceCollector]]] = None,
    ):
        """Create a store rooted at ``settings.evidence_path``.

        Args:
            settings: Storage, retention and collector options.
            collectors: A registry, or collectors to register in order.
        """
        self.settings = settings or get_default_settings()
        self.storage = EvidenceStorage(self.settings.evidence_path, compress=self.settings.compress_evidence)
        if isinstance(collectors, CollectorRegistry):
            self.registry = collectors
        else:
            self.registry = CollectorRegistry(collectors)
        self._collections: Dict[str, EvidenceCollection] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._initialized = False

    @classmethod
    def with_default_collectors(cls, settings: Optional[EvidenceSettings] = None) -> "EvidenceStore":
        """Store wired with a metrics engine and a performance engine."""
        settings = settings or get_default_settings()
        return cls(
            settings,
            [
                MetricsEngine(settings.evidence_path, settings.metrics),
                PerformanceEngine(settings.evidence_path, settings.performance),
            ],
        )

    @property
    def root(self) -> Path:
        return self.storage.root

    def register_collector(self, collector: EvidenceCollector) -> None:
        self.registry.register(collector)

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Create the storage layout and run retention cleanup once.

        Raises:
            StorageInitializationError: if a storage directory cannot be created.
        """
        if self._initialized:
            return
        await asyncio.to_thread(self.storage.ensure_directories)
        await self.run_retention()
        self._initialized = True
        logger.info("Evidence store initialized at %s", self.root)

    async def run_retention(self) -> RetentionResult:
        return await asyncio.to_thread(apply_retention, self.storage, self.settings.retention_days)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_collection(
        self,
        execution_id: str,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> EvidenceCollection:
        """Open the collection for ``execution_id`` and initialize every collector.

        Collectors hold the state of a single execution, so a new collection
        can only start once every other collection has completed.

        Raises:
            CollectionExistsError: if a collection for this id is already held.
            CollectionStateError: if another collection is still in progress.
            StorageInitializationError: if storage or a collector cannot be set up.
        """
        await self.initialize()
        if execution_id in self._collections:
            raise CollectionExistsError(execution_id)
        running = [eid for eid, c in self._collections.items() if c.state in _IN_PROGRESS]
        if running:
            raise CollectionStateError(
                execution_id,
                f"cannot start '{execution_id}' while collection '{running[0]}' is in progress",
                CollectionState.UNINITIALIZED.value,
            )

        collection = EvidenceCollection(execution_id=execution_id, metadata=dict(metadata or {}))
        self._collections[execution_id] = collection
        self._locks[execution_id] = asyncio.Lock()

        collectors = self.registry.active()
        results = await asyncio.gather(
            *(c.initialize(execution_id, self._collector_options(c)) for c in collectors),
            return_exceptions=True,
        )
        failures = [(c, r) for c, r in zip(collectors, results) if isinstance(r, BaseException)]
        if failures:
            self._collections.pop(execution_id, None)
            self._locks.pop(execution_id, None)
            for collector, error in failures:
                logger.error("Collector '%s' failed to initialize for %s: %s", collector.name, execution_id, error)
            started = [c for c, r in zip(collectors, results) if not isinstance(r, BaseException)]
            await self.registry.run_all(shutdown_collector, "shutdown", started)
            raise failures[0][1]

        collection.state = CollectionState.COLLECTING
        logger.info("Started evidence collection %s with %d collectors", execution_id, len(collectors))
        return collection

    async def collect_for_scenario(
        self,
        execution_id: str,
        scenario_id: str,
        scenario_name: str,
    ) -> List[EvidenceItem]:
        """Fan out to every collector and fold the results into the collection."""
        collection = self._require_collecting(execution_id)
        collected = await self.registry.collect_all(
            lambda collector: collector.collect_for_scenario(scenario_id, scenario_name),
            "collect_for_scenario",
        )
        return await self._fold(collection, collected)

    async def collect_for_step(
        self,
        execution_id: str,
        scenario_id: str,
        step_id: str,
        step_text: str,
        status: str,
    ) -> List[EvidenceItem]:
        """Fan out to collectors that support step collection."""
        collection = self._require_collecting(execution_id)
        collected = await self.registry.collect_all(
            lambda collector: collector.collect_for_step(scenario_id, step_id, step_text, status),
            "collect_for_step",
            collectors=self.registry.step_collectors(),
        )
        return await self._fold(collection, collected)

    async def complete_collection(self, execution_id: str) -> EvidenceCollection:
        """Finalize collectors, fold their reports, write the manifest and archive.

        A collector failing to finalize is logged; the others still finalize
        and the manifest is still written. The collection always ends up
        ``COMPLETED``, even when the manifest could not be written.
        """
        collection = self._require_collecting(execution_id)
        collection.state = CollectionState.FINALIZING
        logger.info("Completing evidence collection %s", execution_id)

        written = False
        try:
            collectors = self.registry.active()
            seen = {collector.name: len(collector.get_evidence()) for collector in collectors}
            await self.registry.run_all(lambda collector: collector.finalize(), "finalize", collectors)

            terminal: List[CollectedItem] = []
            for collector in collectors:
                try:
                    terminal.extend(collector.get_evidence()[seen[collector.name]:])
                except Exception as exc:  # noqa: BLE001 - one collector must not block completion
                    logger.error("Collector '%s' failed to report evidence: %s", collector.name, exc)
            await self._fold(collection, terminal)

            async with self._locks[execution_id]:
                collection.end_time = now_ms()
                collection.recompute_summary()

            written = await self._write_manifest_and_archive(collection)
        finally:
            collection.state = CollectionState.COMPLETED

        logger.info(
            "Evidence collection %s completed: %d items, %d bytes%s",
            execution_id,
            collection.summary.total_items,
            collection.summary.total_size,
            "" if written else " (no manifest)",
        )
        return collection

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_state(self, execution_id: str) -> CollectionState:
        collection = self._collections.get(execution_id)
        if collection is not None:
            return collection.state
        if manifest.manifest_path(self.root, execution_id).is_file():
            return CollectionState.COMPLETED
        return CollectionState.UNINITIALIZED

    def is_collection_in_progress(self, execution_id: str) -> bool:
        return self.get_state(execution_id) in _IN_PROGRESS

    async def get_collection(
        self,
        execution_id: str,
        evidence_filter: Optional[EvidenceFilter] = None,
    ) -> Optional[EvidenceCollection]:
        """Collection from memory, else from its manifest; optionally filtered."""
        collection = self._collections.get(execution_id)
        if collection is None:
            path = manifest.manifest_path(self.root, execution_id)
            if not path.is_file():
                return None
            try:
                document = await asyncio.to_thread(manifest.load_manifest, path)
            except (OSError, ValueError) as exc:
                logger.error("Unreadable manifest %s: %s", path, exc)
                return None
            collection = manifest.collection_from_manifest(document)

        if evidence_filter is None:
            return collection

        filtered = EvidenceCollection(
            execution_id=collection.execution_id,
            start_time=collection.start_time,
            end_time=collection.end_time,
            items=[item for item in collection.items if evidence_filter.matches(item)],
            metadata=dict(collection.metadata),
            state=collection.state,
        )
        filtered.recompute_summary()
        return filtered

    async def get_evidence_content(self, execution_id: str, item_id: str) -> bytes:
        """Raw bytes of an item, gzip decompressed.

        Raises:
            CollectionNotFoundError: if the execution is unknown.
            EvidenceNotFoundError: if the item or its file does not exist.
        """
        collection = await self.get_collection(execution_id)
        if collection is None:
            raise CollectionNotFoundError(execution_id)
        item = collection.find(item_id)
        if item is None:
            raise EvidenceNotFoundError(item_id, execution_id)
        try:
            return await asyncio.to_thread(self.storage.read, item)
        except FileNotFoundError as exc:
            raise EvidenceNotFoundError(item_id, execution_id) from exc

    async def verify_manifest(self, execution_id: str) -> Dict[str, bool]:
        """Recompute checksums for every item recorded in the manifest.

        Raises:
            CollectionNotFoundError: if no manifest exists for the execution.
        """
        path = manifest.manifest_path(self.root, execution_id)
        if not path.is_file():
            raise CollectionNotFoundError(execution_id)
        document = await asyncio.to_thread(manifest.load_manifest, path)
        results = await asyncio.to_thread(manifest.verify_checksums, document, self.storage)
        failed = [item_id for item_id, ok in results.items() if not ok]
        if failed:
            logger.warning("Manifest %s: %d of %d items failed verification", execution_id, len(failed), len(results))
        return results

    async def extract_archive(self, archive_path: Union[str, Path], target_dir: Union[str, Path]) -> Path:
        return await asyncio.to_thread(archive.extract_archive, archive_path, target_dir)

    async def export_summary(self, execution_id: str) -> Dict[str, Any]:
        """Summary of a collection with per-scenario and per-type breakdowns.

        Raises:
            CollectionNotFoundError: if the execution is unknown.
        """
        collection = await self.get_collection(execution_id)
        if collection is None:
            raise CollectionNotFoundError(execution_id)

        by_scenario: Dict[str, Dict[str, int]] = {}
        for item in collection.items:
            bucket = by_scenario.setdefault(item.scenario_id, {"items": 0, "size": 0})
            bucket["items"] += 1
            bucket["size"] += item.size

        largest = sorted(collection.items, key=lambda item: item.size, reverse=True)[:5]
        return {
            "executionId": collection.execution_id,
            "state": collection.state.value,
            "startTime": collection.start_time,
            "endTime": collection.end_time,
            "summary": collection.summary.to_dict(),
            "byScenario": by_scenario,
            "largestItems": [{"id": i.id, "type": i.type.value, "size": i.size, "path": i.path} for i in largest],
            "metadata": dict(collection.metadata),
        }

    async def get_storage_stats(self) -> Dict[str, Any]:
        """Per-directory size and file counts below the evidence root."""
        directories: Dict[str, Dict[str, int]] = {}
        total_size = total_files = 0
        for name in STORAGE_DIRECTORIES:
            size, files = await asyncio.to_thread(directory_size, self.root / name)
            directories[name] = {"size": size, "files": files}
            total_size += size
            total_files += files
        manifests = len(list(self.root.glob(f"{manifest.MANIFEST_PREFIX}*.json"))) if self.root.is_dir() else 0
        return {
            "root": str(self.root),
            "directories": directories,
            "totalSize": total_size,
            "totalFiles": total_files,
            "manifests": manifests,
            "maxEvidenceSize": self.settings.max_evidence_size,
            "activeCollections": [eid for eid, c in self._collections.items() if c.state in _IN_PROGRESS],
        }

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    async def clear_evidence(self, execution_id: str) -> int:
        """Delete an execution's files and manifest and forget it; returns files deleted.

        Raises:
            CollectionStateError: while the collection is still in progress.
        """
        if self.is_collection_in_progress(execution_id):
            raise CollectionStateError(
                execution_id, "cannot clear evidence while collection is in progress", self.get_state(execution_id).value
            )
        collection = await self.get_collection(execution_id)
        deleted = 0
        if collection is not None:
            for item in collection.items:
                if item.path and await self.storage.delete(item):
                    deleted += 1
        path = manifest.manifest_path(self.root, execution_id)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.error("Failed to delete manifest %s: %s", path, exc)

        self._collections.pop(execution_id, None)
        self._locks.pop(execution_id, None)
        logger.info("Cleared evidence for %s (%d files)", execution_id, deleted)
        return deleted

    def cleanup(self) -> None:
        """Clear every collector and drop all in-memory collections."""
        for collector in self.registry:
            try:
                collector.clear()
            except Exception as exc:  # noqa: BLE001 - keep clearing the rest
                logger.error("Collector '%s' failed to clear: %s", collector.name, exc)
        self._collections.clear()
        self._locks.clear()
        logger.debug("Evidence store cleaned up")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_collecting(self, execution_id: str) -> EvidenceCollection:
        collection = self._collections.get(execution_id)
        if collection is None:
            raise CollectionStateError(
                execution_id, "no evidence collection has been started", CollectionState.UNINITIALIZED.value
            )
        if collection.state is not CollectionState.COLLECTING:
            raise CollectionStateError(execution_id, state=collection.state.value)
        return collection

    async def _write_manifest_and_archive(self, collection: EvidenceCollection) -> bool:
        """Write the manifest, then the archive when enabled; failures are logged."""
        execution_id = collection.execution_id
        try:
            _path, written = await manifest.write_manifest(collection, self.storage)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Failed to write manifest for %s: %s", execution_id, exc)
            return False

        if self.settings.archive_evidence:
            try:
                await asyncio.to_thread(
                    archive.create_archive, written, self.storage, self.settings.delete_after_archive
                )
            except (ArchiveError, TypeError, ValueError) as exc:
                logger.error("Failed to archive evidence for %s: %s", execution_id, exc)
        return True

    def _collector_options(self, collector: EvidenceCollector) -> Any:
        if isinstance(collector, MetricsEngine):
            return self.settings.metrics
        if isinstance(collector, PerformanceEngine):
            return self.settings.performance
        return None

    async def _fold(self, collection: EvidenceCollection, collected: List[CollectedItem]) -> List[EvidenceItem]:
        """Persist collected items and add them under the execution lock.

        Returns the items of this batch that survived storage enforcement.
        """
        if not collected:
            return []
        persisted = await asyncio.gather(
            *(self.storage.persist(collection.execution_id, item) for item in collected),
            return_exceptions=True,
        )
        items: List[EvidenceItem] = []
        for raw, result in zip(collected, persisted):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.error("Dropping %s evidence for %s: %s", raw.type.value, raw.scenario_id, result)
            elif result is not None:
                items.append(result)

        async with self._locks[collection.execution_id]:
            collection.add_items(items)
            await self._enforce_storage_limit(collection)
            kept = {item.id for item in collection.items}
        return [item for item in items if item.id in kept]

    async def _enforce_storage_limit(self, collection: EvidenceCollection) -> None:
        """Evict oldest items until the collection fits the storage budget."""
        limit = self.settings.max_evidence_size
        while collection.summary.total_size > limit and collection.items:
            oldest = collection.oldest_item()
            collection.remove_item(oldest.id)
            await self.storage.delete(oldest)
            logger.warning(
                "Evicted evidence %s (%d bytes) from %s to stay within %d bytes",
                oldest.id,
                oldest.size,
                collection.execution_id,
                limit,
            )


__all__ = ["EvidenceStore"]
