"""Report sections built from a scenario's stored performance entries.

These helpers only read the entries they are given; the engine owns the
per-scenario storage and decides what to pass in.
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence
from urllib.parse import urlparse

from evidence_engine.config.settings import PerformanceBudget
from evidence_engine.monitoring.metrics.statistics import average, calculate_stats

from .models import (
    VITAL_NAMES,
    CoreWebVitals,
    LongTaskEntry,
    MemoryEntry,
    NavigationEntry,
    ResourceEntry,
)

LARGE_RESOURCE_BYTES = 500_000
MAX_LONG_TASKS = 5
HEAP_GROWTH_PERCENT = 50.0
THIRD_PARTY_SHARE = 0.3
UNCACHED_OPPORTUNITY_SHARE = 0.3
UNCACHED_SHARE = 0.5
TOP_ENTRIES = 10
_LOCAL_HOSTS = ("localhost", "127.0.0.1")

BENCHMARKS: Dict[str, Any] = {
    "webVitals": {
        "FCP": {"good": 1800, "poor": 3000},
        "LCP": {"good": 2500, "poor": 4000},
        "FID": {"good": 100, "poor": 300},
        "CLS": {"good": 0.1, "poor": 0.25},
        "TTFB": {"good": 800, "poor": 1800},
    },
    "industry": {
        "FCP": {"p50": 1500, "p75": 2500, "p90": 4000},
        "LCP": {"p50": 2000, "p75": 3500, "p90": 5500},
        "FID": {"p50": 50, "p75": 100, "p90": 200},
        "CLS": {"p50": 0.05, "p75": 0.15, "p90": 0.3},
    },
}


def _hostname(url: str) -> str:
    try:
        return urlparse(url).hostname or ""
    except ValueError:
        return ""


def is_third_party(resource_url: str, page_url: str = "") -> bool:
    """True when the resource is served from another host than the page.

    Without a page URL, anything not served from a local host counts.
    """
    host = _hostname(resource_url)
    if not host:
        return False
    page_host = _hostname(page_url)
    if page_host:
        return host != page_host
    return host not in _LOCAL_HOSTS


# ----------------------------------------------------------------------
# Per-scenario sections
# ----------------------------------------------------------------------


def aggregate_navigation(navigations: Sequence[NavigationEntry]) -> Optional[Dict[str, Any]]:
    if not navigations:
        return None
    phases = navigations[0].timings().keys()
    return {phase: calculate_stats(nav.timings()[phase] for nav in navigations) for phase in phases}


def group_resources_by_type(resources: Iterable[ResourceEntry]) -> Dict[str, Dict[str, float]]:
    by_type: Dict[str, Dict[str, float]] = {}
    for resource in resources:
        bucket = by_type.setdefault(resource.initiator_type, {"count": 0, "size": 0, "duration": 0.0, "cached": 0})
        bucket["count"] += 1
        bucket["size"] += resource.transfer_size
        bucket["duration"] += resource.duration
        if resource.is_cached:
            bucket["cached"] += 1
    return by_type


def _resource_row(resource: ResourceEntry) -> Dict[str, Any]:
    return {
        "name": resource.name,
        "duration": resource.duration,
        "size": resource.transfer_size,
        "type": resource.initiator_type,
    }


def analyze_resources(resources: Sequence[ResourceEntry]) -> Dict[str, Any]:
    cached = sum(1 for resource in resources if resource.is_cached)
    return {
        "total": len(resources),
        "byType": group_resources_by_type(resources),
        "slowest": [_resource_row(r) for r in sorted(resources, key=lambda r: r.duration, reverse=True)[:TOP_ENTRIES]],
        "largest": [
            _resource_row(r) for r in sorted(resources, key=lambda r: r.transfer_size, reverse=True)[:TOP_ENTRIES]
        ],
        "cacheHitRate": cached / len(resources) * 100.0 if resources else 0.0,
        "totalTransferSize": sum(r.transfer_size for r in resources),
        "totalDuration": sum(r.duration for r in resources),
    }


def aggregate_vitals(history: Sequence[CoreWebVitals]) -> Optional[Dict[str, Any]]:
    """Distribution of every vital over the measured navigations."""
    if not history:
        return None
    return {
        name: {
            **calculate_stats(v.value(name) for v in history if v.get(name).available),
            "measured": sum(1 for v in history if v.get(name).available),
        }
        for name in VITAL_NAMES
    }


def analyze_long_tasks(tasks: Sequence[LongTaskEntry]) -> Optional[Dict[str, Any]]:
    if not tasks:
        return None
    worst = sorted(tasks, key=lambda task: task.duration, reverse=True)[:5]
    return {
        "count": len(tasks),
        "totalDuration": sum(task.duration for task in tasks),
        "duration": calculate_stats(task.duration for task in tasks),
        "worstTasks": [
            {
                "duration": task.duration,
                "startTime": task.start_time,
                "attribution": (task.attribution[0].get("containerName") if task.attribution else None) or "Unknown",
            }
            for task in worst
        ],
    }


def heap_growth_percent(snapshots: Sequence[MemoryEntry]) -> Optional[float]:
    if len(snapshots) < 2 or snapshots[0].used_js_heap_size <= 0:
        return None
    first, last = snapshots[0].used_js_heap_size, snapshots[-1].used_js_heap_size
    return (last - first) / first * 100.0


def analyze_memory(snapshots: Sequence[MemoryEntry]) -> Optional[Dict[str, Any]]:
    if not snapshots:
        return None
    first, last = snapshots[0], snapshots[-1]
    used = [snapshot.used_js_heap_size for snapshot in snapshots]
    return {
        "initial": {"used": first.used_js_heap_size, "total": first.total_js_heap_size, "limit": first.js_heap_size_limit},
        "final": {"used": last.used_js_heap_size, "total": last.total_js_heap_size, "limit": last.js_heap_size_limit},
        "growth": {
            "absolute": last.used_js_heap_size - first.used_js_heap_size,
            "percentage": heap_growth_percent(snapshots) or 0.0,
        },
        "peak": max(used),
        "average": average(used),
    }


def scenario_recommendations(
    vitals: Optional[CoreWebVitals],
    resources: Sequence[ResourceEntry],
    long_tasks: Sequence[LongTaskEntry],
    memory: Sequence[MemoryEntry],
    budget: PerformanceBudget,
    page_url: str = "",
) -> List[str]:
    advice: List[str] = []

    def over(name: str, threshold: float) -> bool:
        return vitals is not None and vitals.get(name).available and vitals.value(name) > threshold

    if over("FCP", budget.fcp):
        advice.append("Reduce server response time and eliminate render-blocking resources to improve FCP")
    if over("LCP", budget.lcp):
        advice.append("Optimize largest content element loading (images, videos, or large text blocks)")
        element = vitals.details.get("LCP", {}).get("element") if vitals else None
        if element:
            advice.append(f"Consider optimizing the {element} element")
    if over("CLS", budget.cls):
        advice.append("Add size attributes to images and videos to prevent layout shifts")
        advice.append("Avoid inserting content above existing content")
    if over("TTFB", budget.ttfb):
        advice.append("Improve server response time - consider caching, CDN, or server optimization")

    if resources:
        uncached = sum(1 for resource in resources if not resource.is_cached)
        if uncached > len(resources) * UNCACHED_SHARE:
            advice.append("Enable caching for static resources to improve load times")
        large = sum(1 for resource in resources if resource.transfer_size > LARGE_RESOURCE_BYTES)
        if large:
            advice.append(f"Optimize {large} large resources (>500KB)")
        third_party = sum(1 for resource in resources if is_third_party(resource.name, page_url))
        if third_party > len(resources) * THIRD_PARTY_SHARE:
            advice.append("Reduce dependency on third-party resources")

    if len(long_tasks) > MAX_LONG_TASKS:
        advice.append("Break up long JavaScript tasks to improve interactivity")

    growth = heap_growth_percent(memory)
    if growth is not None and growth > HEAP_GROWTH_PERCENT:
        advice.append(f"Memory usage increased by {growth:.1f}% - check for memory leaks")
    return advice


def build_waterfall(scenario_id: str, navigation: NavigationEntry, resources: Sequence[ResourceEntry]) -> Dict[str, Any]:
    """Navigation phases followed by every resource, ordered by start time."""

    def phase(start: float, end: float, required: bool = True) -> Optional[Dict[str, float]]:
        if not required and end - start <= 0:
            return None
        return {"start": start, "end": end}

    entries: List[Dict[str, Any]] = [{
        "name": "Navigation",
        "type": "navigation",
        "startTime": 0.0,
        "duration": navigation.total,
        "phases": {
            "dns": phase(navigation.domain_lookup_start, navigation.domain_lookup_end),
            "tcp": phase(navigation.connect_start, navigation.connect_end),
            "ssl": phase(navigation.secure_connection_start, navigation.connect_end)
            if navigation.secure_connection_start > 0 else None,
            "request": phase(navigation.request_start, navigation.response_start),
            "response": phase(navigation.response_start, navigation.response_end),
            "dom": phase(navigation.dom_interactive, navigation.dom_complete),
            "load": phase(navigation.load_event_start, navigation.load_event_end),
        },
    }]
    for resource in resources:
        entries.append({
            "name": resource.name,
            "type": resource.initiator_type,
            "startTime": resource.start_time,
            "duration": resource.duration,
            "size": resource.transfer_size,
            "cached": resource.is_cached,
            "phases": {
                "dns": phase(resource.domain_lookup_start, resource.domain_lookup_end, required=False),
                "tcp": phase(resource.connect_start, resource.connect_end, required=False),
                "ssl": phase(resource.secure_connection_start, resource.connect_end)
                if resource.secure_connection_start > 0 else None,
                "request": phase(resource.request_start, resource.response_start),
                "response": phase(resource.response_start, resource.response_end),
            },
        })
    entries.sort(key=lambda entry: entry["startTime"])
    return {"scenarioId": scenario_id, "startTime": navigation.fetch_start, "entries": entries}


# ----------------------------------------------------------------------
# Cross-scenario analysis
# ----------------------------------------------------------------------


def network_analysis(navigations: Sequence[NavigationEntry]) -> Dict[str, Any]:
    return {
        "dns": {
            "average": average([n.dns for n in navigations]),
            "recommendations": ["Consider DNS prefetching for critical domains"]
            if any(n.dns > 50 for n in navigations) else [],
        },
        "tcp": {
            "average": average([n.tcp for n in navigations]),
            "sslOverhead": average([n.ssl for n in navigations if n.ssl > 0]),
            "recommendations": ["Consider using HTTP/2 or HTTP/3 for connection reuse"]
            if any(n.tcp > 100 for n in navigations) else [],
        },
        "ttfb": {
            "average": average([n.ttfb for n in navigations]),
            "serverProcessing": average([max(0.0, n.ttfb - n.tcp - n.dns) for n in navigations]),
            "redirects": sum(n.redirect_count for n in navigations),
        },
    }


def _available(history: Iterable[CoreWebVitals], name: str) -> List[float]:
    return [v.value(name) for v in history if v.get(name).available]


def layout_shift_sources(history: Iterable[CoreWebVitals]) -> List[str]:
    sources: List[str] = []
    for vitals in history:
        for entry in vitals.details.get("CLS", {}).get("entries", []) or []:
            for source in entry.get("sources", []) or []:
                node = source.get("node")
                if node and node not in sources:
                    sources.append(node)
    return sources


def rendering_analysis(history: Sequence[CoreWebVitals]) -> Dict[str, Any]:
    return {
        "paintMetrics": {
            "FCP": calculate_stats(_available(history, "FCP")),
            "LCP": calculate_stats(_available(history, "LCP")),
            "SI": calculate_stats(_available(history, "SI")),
        },
        "layoutStability": {
            "CLS": calculate_stats(_available(history, "CLS")),
            "shiftSources": layout_shift_sources(history),
        },
    }


def interactivity_analysis(history: Sequence[CoreWebVitals], tasks: Sequence[LongTaskEntry]) -> Dict[str, Any]:
    return {
        "responsiveness": {
            "FID": calculate_stats(_available(history, "FID")),
            "INP": calculate_stats(_available(history, "INP")),
        },
        "blockingTime": {
            "TBT": calculate_stats(_available(history, "TBT")),
            "TTI": calculate_stats(_available(history, "TTI")),
            "longTasks": {"count": len(tasks), "totalDuration": sum(task.duration for task in tasks)},
        },
    }


def resource_optimization(resources: Sequence[ResourceEntry]) -> Dict[str, Any]:
    opportunities: List[Dict[str, Any]] = []

    uncompressed = [r for r in resources if r.encoded_body_size == r.decoded_body_size and r.decoded_body_size > 1000]
    if uncompressed:
        opportunities.append({
            "type": "compression",
            "impact": "high",
            "resources": len(uncompressed),
            # assumes ~70% savings for text assets
            "potentialSavings": sum(r.decoded_body_size * 0.7 for r in uncompressed),
        })

    uncached = [r for r in resources if not r.is_cached]
    if uncached and len(uncached) > len(resources) * UNCACHED_OPPORTUNITY_SHARE:
        opportunities.append({
            "type": "caching",
            "impact": "high",
            "resources": len(uncached),
            "potentialSavings": sum(r.duration for r in uncached),
        })
    return {"opportunities": opportunities}


def third_party_impact(resources_by_page: Mapping[str, Sequence[ResourceEntry]]) -> Dict[str, Any]:
    """Third-party share across scenarios; keys are page URLs."""
    total = 0
    third_party: List[ResourceEntry] = []
    for page_url, resources in resources_by_page.items():
        total += len(resources)
        third_party.extend(r for r in resources if is_third_party(r.name, page_url))

    by_domain: Dict[str, Dict[str, float]] = {}
    for resource in third_party:
        bucket = by_domain.setdefault(_hostname(resource.name), {"count": 0, "size": 0, "duration": 0.0})
        bucket["count"] += 1
        bucket["size"] += resource.transfer_size
        bucket["duration"] += resource.duration

    return {
        "count": len(third_party),
        "totalSize": sum(r.transfer_size for r in third_party),
        "totalDuration": sum(r.duration for r in third_party),
        "percentage": len(third_party) / total * 100.0 if total else 0.0,
        "byDomain": by_domain,
    }


def top_violations(violation_lists: Iterable[Sequence[str]], limit: int = 5) -> List[str]:
    counts = Counter(v for violations in violation_lists for v in set(violations))
    return [f"{violation} ({count} scenarios)" for violation, count in counts.most_common(limit)]


def top_recommendations(recommendation_lists: Iterable[Sequence[str]], limit: int = TOP_ENTRIES) -> List[str]:
    counts = Counter(r for recommendations in recommendation_lists for r in recommendations)
    return [recommendation for recommendation, _count in counts.most_common(limit)]


__all__ = [
    "BENCHMARKS",
    "aggregate_navigation",
    "aggregate_vitals",
    "analyze_long_tasks",
    "analyze_memory",
    "analyze_resources",
    "build_waterfall",
    "group_resources_by_type",
    "heap_growth_percent",
    "interactivity_analysis",
    "is_third_party",
    "layout_shift_sources",
    "network_analysis",
    "rendering_analysis",
    "resource_optimization",
    "scenario_recommendations",
    "third_party_impact",
    "top_recommendations",
    "top_violations",
]
