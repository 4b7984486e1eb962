"""
Core exceptions for the evidence engine.

This module defines the exception hierarchy shared by the metrics engine, the
performance engine and the evidence store. Every error carries a human readable
message, an optional machine readable ``error_code`` and a ``context`` mapping
with the identifiers needed to diagnose the failure.

The exceptions are organized into categories:
- Configuration and storage initialization (fatal, propagated to callers)
- Collection lifecycle (state machine misuse)
- Metrics collection and export
- Browser probe round trips
- Archive handling
"""

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class EvidenceEngineError(Exception):
    """Base exception class for all evidence engine errors."""

    def __init__(self, message: str, error_code: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        """
        Initialize an evidence engine error.

        Args:
            message: Human-readable error message
            error_code: Optional error code for programmatic handling
            context: Optional context information for debugging
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}

        logger.debug("%s: %s", self.__class__.__name__, message, extra={
            "error_code": error_code,
            "context": self.context,
        })


# Configuration and Storage Exceptions

class ConfigurationError(EvidenceEngineError):
    """Raised when settings fail validation or cannot be loaded."""

    def __init__(self, message: str, setting: Optional[str] = None):
        """
        Initialize a configuration error.

        Args:
            message: Description of the invalid configuration
            setting: Optional name of the offending setting
        """
        self.setting = setting
        super().__init__(
            message,
            error_code="CONFIGURATION_ERROR",
            context={"setting": setting} if setting else None,
        )


class StorageInitializationError(EvidenceEngineError):
    """Raised when an output directory cannot be created or accessed."""

    def __init__(self, path: str, cause: Optional[Exception] = None):
        """
        Initialize a storage initialization error.

        Args:
            path: Directory that could not be prepared
            cause: Optional underlying exception
        """
        self.path = path
        self.cause = cause
        message = f"Cannot initialize evidence storage at '{path}'"
        if cause:
            message += f": {cause}"
        super().__init__(
            message,
            error_code="STORAGE_INIT_FAILED",
            context={"path": path, "cause": str(cause) if cause else None},
        )


# Collection Lifecycle Exceptions

class CollectionStateError(EvidenceEngineError):
    """Raised when an operation is not valid in the collection's current state."""

    def __init__(self, execution_id: str, message: Optional[str] = None, state: Optional[str] = None):
        """
        Initialize a collection state error.

        Args:
            execution_id: Execution whose collection was addressed
            message: Optional custom message
            state: Optional current state of the collection
        """
        self.execution_id = execution_id
        self.state = state
        default_message = f"Invalid operation for collection '{execution_id}' in state '{state}'"
        super().__init__(
            message or default_message,
            error_code="COLLECTION_STATE_INVALID",
            context={"execution_id": execution_id, "state": state},
        )


class CollectionExistsError(CollectionStateError):
    """Raised when ``start_collection`` is called twice for the same execution."""

    def __init__(self, execution_id: str):
        super().__init__(
            execution_id,
            f"Evidence collection already exists for execution '{execution_id}'",
        )
        self.error_code = "COLLECTION_EXISTS"


class CollectionNotFoundError(CollectionStateError):
    """Raised when no collection exists for an execution."""

    def __init__(self, execution_id: str):
        super().__init__(
            execution_id,
            f"No evidence collection found for execution '{execution_id}'",
        )
        self.error_code = "COLLECTION_NOT_FOUND"


class EvidenceNotFoundError(EvidenceEngineError):
    """Raised when an evidence item or its content cannot be located."""

    def __init__(self, item_id: str, execution_id: Optional[str] = None):
        self.item_id = item_id
        self.execution_id = execution_id
        super().__init__(
            f"Evidence item '{item_id}' not found",
            error_code="EVIDENCE_NOT_FOUND",
            context={"item_id": item_id, "execution_id": execution_id},
        )


# Metrics Exceptions

class MetricsCollectionError(EvidenceEngineError):
    """Raised when metrics cannot be sampled or persisted."""

    def __init__(self, message: str, metric: Optional[str] = None):
        self.metric = metric
        super().__init__(
            message,
            error_code="METRICS_COLLECTION_FAILED",
            context={"metric": metric} if metric else None,
        )


class ExportError(EvidenceEngineError):
    """Raised when an exporter cannot write metrics in its target format."""

    def __init__(self, message: str, export_format: Optional[str] = None):
        self.export_format = export_format
        super().__init__(
            message,
            error_code="EXPORT_FAILED",
            context={"format": export_format} if export_format else None,
        )


# Probe Exceptions

class ProbeError(EvidenceEngineError):
    """Base exception for browser probe round trips."""

    def __init__(self, message: str, operation: Optional[str] = None, error_code: str = "PROBE_ERROR"):
        self.operation = operation
        super().__init__(
            message,
            error_code=error_code,
            context={"operation": operation} if operation else None,
        )


class ProbeTimeoutError(ProbeError):
    """Raised when a probe call does not complete before its deadline."""

    def __init__(self, operation: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Probe operation '{operation}' timed out after {timeout:.3f}s",
            operation=operation,
            error_code="PROBE_TIMEOUT",
        )


class ProbeUnsupportedError(ProbeError):
    """Raised by a probe when the requested observation is not supported."""

    def __init__(self, operation: str):
        super().__init__(
            f"Probe operation '{operation}' is not supported",
            operation=operation,
            error_code="PROBE_UNSUPPORTED",
        )


# Archive Exceptions

class ArchiveError(EvidenceEngineError):
    """Raised when an evidence archive cannot be written or read."""

    def __init__(self, path: str, message: Optional[str] = None):
        self.path = path
        super().__init__(
            message or f"Archive operation failed for '{path}'",
            error_code="ARCHIVE_FAILED",
            context={"path": path},
        )
