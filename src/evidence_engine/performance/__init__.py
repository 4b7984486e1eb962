"""Browser performance: Core Web Vitals, budgets, scoring and analysis."""

from .engine import PerformanceEngine
from .models import CoreWebVitals, PerformanceReport, ProbePayload, VitalStatus, VitalValue
from .probe import BrowserProbe

__all__ = [
    "BrowserProbe",
    "CoreWebVitals",
    "PerformanceEngine",
    "PerformanceReport",
    "ProbePayload",
    "VitalStatus",
    "VitalValue",
]
