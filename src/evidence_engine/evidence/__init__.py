"""Evidence domain models.

The store lives in :mod:`evidence_engine.evidence.store`; it is not imported
here because collectors depend on these models.
"""

from .models import (
    COMPRESSIBLE_TYPES,
    STORAGE_DIRECTORIES,
    CollectedItem,
    CollectionState,
    EvidenceCollection,
    EvidenceFilter,
    EvidenceItem,
    EvidenceSummary,
    EvidenceType,
)

__all__ = [
    "COMPRESSIBLE_TYPES",
    "STORAGE_DIRECTORIES",
    "CollectedItem",
    "CollectionState",
    "EvidenceCollection",
    "EvidenceFilter",
    "EvidenceItem",
    "EvidenceSummary",
    "EvidenceType",
]
