"""Pure statistical helpers shared by the metrics and performance engines.

All functions accept plain sequences of numbers and never mutate their input.
Empty input is handled explicitly so callers can feed partially populated
series without guarding every call site.
"""

from __future__ import annotations

import math
from typing import Iterable, Sequence

from .models import MetricTrend, TrendDirection

STABLE_CHANGE_PERCENT = 5.0

PERCENTILES = {"p50": 0.50, "p90": 0.90, "p95": 0.95, "p99": 0.99}


def percentile(sorted_values: Sequence[float], fraction: float) -> float:
    """Return the nearest-rank percentile of an already sorted sequence.

    The index is ``floor(n * fraction)`` clamped to the last element, which
    keeps ``p50 <= p95 <= p99 <= max`` for any non-empty input.
    """
    if not sorted_values:
        return 0.0
    index = min(int(math.floor(len(sorted_values) * fraction)), len(sorted_values) - 1)
    return float(sorted_values[index])


def aggregate_metric_values(values: Iterable[float]) -> dict[str, float]:
    """Summarise ``values`` with min, max, avg, sum, count and p50/p90/p95/p99."""
    ordered = sorted(float(v) for v in values)
    if not ordered:
        return {"min": 0.0, "max": 0.0, "avg": 0.0, "sum": 0.0, "count": 0,
                **{name: 0.0 for name in PERCENTILES}}

    total = math.fsum(ordered)
    # clamp guards against float rounding pushing the mean outside the range
    avg = min(max(total / len(ordered), ordered[0]), ordered[-1])
    summary: dict[str, float] = {
        "min": ordered[0],
        "max": ordered[-1],
        "avg": avg,
        "sum": total,
        "count": len(ordered),
    }
    for name, fraction in PERCENTILES.items():
        summary[name] = percentile(ordered, fraction)
    return summary


def calculate_stats(values: Iterable[float]) -> dict[str, float]:
    """Distribution summary used by performance reports (median and p75 included)."""
    ordered = sorted(float(v) for v in values)
    if not ordered:
        return {"min": 0.0, "max": 0.0, "avg": 0.0, "median": 0.0,
                "p75": 0.0, "p90": 0.0, "p95": 0.0, "p99": 0.0}
    return {
        "min": ordered[0],
        "max": ordered[-1],
        "avg": math.fsum(ordered) / len(ordered),
        "median": percentile(ordered, 0.5),
        "p75": percentile(ordered, 0.75),
        "p90": percentile(ordered, 0.90),
        "p95": percentile(ordered, 0.95),
        "p99": percentile(ordered, 0.99),
    }


def average(values: Sequence[float]) -> float:
    return math.fsum(values) / len(values) if values else 0.0


def calculate_change_percent(values: Sequence[float]) -> float:
    """Percent change of the second-half mean relative to the first-half mean.

    A zero first-half mean yields ``0.0`` when the second half is also zero,
    otherwise ``+/-100.0`` so the result always stays finite.
    """
    if len(values) < 2:
        return 0.0

    middle = len(values) // 2
    first_avg = average(values[:middle])
    second_avg = average(values[middle:])

    if first_avg == 0:
        if second_avg == 0:
            return 0.0
        return math.copysign(100.0, second_avg)
    return (second_avg - first_avg) / abs(first_avg) * 100.0


def calculate_trend_direction(values: Sequence[float]) -> TrendDirection:
    """Classify a series as up, down or stable using split-half means."""
    change = calculate_change_percent(values)
    if abs(change) < STABLE_CHANGE_PERCENT:
        return TrendDirection.STABLE
    return TrendDirection.UP if change > 0 else TrendDirection.DOWN


def simple_forecast(values: Sequence[float]) -> float:
    """Extrapolate one step with ordinary least squares over index vs value."""
    if not values:
        return 0.0
    if len(values) < 2:
        return float(values[0])

    n = len(values)
    sum_x = sum_y = sum_xy = sum_x2 = 0.0
    for index, value in enumerate(values):
        sum_x += index
        sum_y += value
        sum_xy += index * value
        sum_x2 += index * index

    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_x2 - sum_x * sum_x)
    intercept = (sum_y - slope * sum_x) / n
    return slope * n + intercept


def build_trend(metric: str, values: Sequence[float]) -> MetricTrend:
    return MetricTrend(
        metric=metric,
        direction=calculate_trend_direction(values),
        change_percent=calculate_change_percent(values),
        forecast=simple_forecast(values),
    )


def detect_spikes(values: Sequence[float], threshold: float) -> list[dict[str, float]]:
    """Return every consecutive increase larger than ``threshold``.

    Each entry carries the index of the spiking sample, its value, the
    previous value and the delta.
    """
    spikes: list[dict[str, float]] = []
    for index in range(1, len(values)):
        delta = values[index] - values[index - 1]
        if delta > threshold:
            spikes.append({
                "index": index,
                "value": values[index],
                "previous": values[index - 1],
                "delta": delta,
            })
    return spikes


def detect_relative_spikes(values: Sequence[float], threshold_percent: float) -> list[dict[str, float]]:
    """Like :func:`detect_spikes` but relative to the previous value, in percent."""
    spikes: list[dict[str, float]] = []
    for index in range(1, len(values)):
        previous = values[index - 1]
        if previous <= 0:
            continue
        change = (values[index] - previous) / previous * 100.0
        if change > threshold_percent:
            spikes.append({
                "index": index,
                "value": values[index],
                "previous": previous,
                "changePercent": change,
            })
    return spikes


def pearson_correlation(xs: Sequence[float], ys: Sequence[float]) -> float:
    """Pearson r of two equal-length series.

    Returns ``0.0`` for mismatched lengths, fewer than two points or when
    either series has zero variance.
    """
    if len(xs) != len(ys) or len(xs) < 2:
        return 0.0

    mean_x = average(xs)
    mean_y = average(ys)
    cov = var_x = var_y = 0.0
    for x, y in zip(xs, ys):
        dx = x - mean_x
        dy = y - mean_y
        cov += dx * dy
        var_x += dx * dx
        var_y += dy * dy

    if var_x == 0 or var_y == 0:
        return 0.0
    return cov / math.sqrt(var_x * var_y)


__all__ = [
    "PERCENTILES",
    "STABLE_CHANGE_PERCENT",
    "aggregate_metric_values",
    "average",
    "build_trend",
    "calculate_change_percent",
    "calculate_stats",
    "calculate_trend_direction",
    "detect_relative_spikes",
    "detect_spikes",
    "pearson_correlation",
    "percentile",
    "simple_forecast",
]
