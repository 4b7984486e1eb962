"""Collector contract and registry."""

from .base import EvidenceCollector, StepCollector, missing_lifecycle_methods, supports_step_collection
from .registry import CollectorRegistry

__all__ = [
    "CollectorRegistry",
    "EvidenceCollector",
    "StepCollector",
    "missing_lifecycle_methods",
    "supports_step_collection",
]
