"""Aggregation engine: merge, rollup, thresholds, baseline and suppressions."""

from metrics_report.aggregation.engine import MetricsAggregator, build_report
from metrics_report.aggregation.merge import ConflictPolicy, Resolution, first_value_wins, sum_values

__all__ = [
    "ConflictPolicy",
    "MetricsAggregator",
    "Resolution",
    "build_report",
    "first_value_wins",
    "sum_values",
]
