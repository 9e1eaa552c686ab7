"""Static facts about every metric: unit, polarity and rollup rule.

Functions:
    descriptor(key)                  -> MetricDescriptor
    resolve_metric_identifier(name)  -> MetricKey | None
    metric_sort_key(key)             -> tuple
"""

from dataclasses import dataclass
from enum import Enum

from metrics_report.models import CustomMetric, MetricIdentifier, MetricKey, SourceFamily


class RollupRule(str, Enum):
    MEAN = "mean"
    SUM = "sum"
    MAX = "max"


@dataclass(frozen=True)
class MetricDescriptor:
    family: SourceFamily | None
    unit: str
    higher_is_better: bool
    rollup: RollupRule
    description: str
    positive_delta_neutral: bool = False


_PERCENT = "percent"
_COUNT = "count"
_SCORE = "score"

_DESCRIPTORS: dict[MetricIdentifier, MetricDescriptor] = {
    MetricIdentifier.SEQUENCE_COVERAGE: MetricDescriptor(
        SourceFamily.COVERAGE, _PERCENT, True, RollupRule.MEAN,
        "Share of sequence points executed by tests.",
    ),
    MetricIdentifier.BRANCH_COVERAGE: MetricDescriptor(
        SourceFamily.COVERAGE, _PERCENT, True, RollupRule.MEAN,
        "Share of branch points executed by tests.",
    ),
    MetricIdentifier.COVERAGE_CYCLOMATIC_COMPLEXITY: MetricDescriptor(
        SourceFamily.COVERAGE, _COUNT, False, RollupRule.MEAN,
        "Cyclomatic complexity as measured by the coverage tool.",
    ),
    MetricIdentifier.NPATH_COMPLEXITY: MetricDescriptor(
        SourceFamily.COVERAGE, _COUNT, False, RollupRule.MEAN,
        "Number of acyclic execution paths.",
    ),
    MetricIdentifier.MAINTAINABILITY_INDEX: MetricDescriptor(
        SourceFamily.METRICS, _SCORE, True, RollupRule.MEAN,
        "Maintainability index (0-100).",
    ),
    MetricIdentifier.CYCLOMATIC_COMPLEXITY: MetricDescriptor(
        SourceFamily.METRICS, _COUNT, False, RollupRule.MEAN,
        "Cyclomatic complexity as measured by the code-metrics tool.",
    ),
    MetricIdentifier.CLASS_COUPLING: MetricDescriptor(
        SourceFamily.METRICS, _COUNT, False, RollupRule.MEAN,
        "Number of distinct types referenced.",
    ),
    # a container is as deep as its deepest type
    MetricIdentifier.DEPTH_OF_INHERITANCE: MetricDescriptor(
        SourceFamily.METRICS, _COUNT, False, RollupRule.MAX,
        "Depth of the inheritance chain.",
    ),
    MetricIdentifier.SOURCE_LINES: MetricDescriptor(
        SourceFamily.METRICS, _COUNT, False, RollupRule.SUM,
        "Lines of source code.", positive_delta_neutral=True,
    ),
    MetricIdentifier.EXECUTABLE_LINES: MetricDescriptor(
        SourceFamily.METRICS, _COUNT, False, RollupRule.SUM,
        "Lines of executable code.", positive_delta_neutral=True,
    ),
    MetricIdentifier.CA_RULE_VIOLATIONS: MetricDescriptor(
        SourceFamily.DIAGNOSTICS, _COUNT, False, RollupRule.SUM,
        "Code-analysis (CA) rule violations.",
    ),
    MetricIdentifier.IDE_RULE_VIOLATIONS: MetricDescriptor(
        SourceFamily.DIAGNOSTICS, _COUNT, False, RollupRule.SUM,
        "IDE style rule violations.",
    ),
}

_CUSTOM_DESCRIPTOR = MetricDescriptor(None, _COUNT, True, RollupRule.MEAN, "")

_BUILTIN_ORDER = {metric: index for index, metric in enumerate(MetricIdentifier)}


def descriptor(key: MetricKey) -> MetricDescriptor:
    if isinstance(key, MetricIdentifier):
        return _DESCRIPTORS[key]
    return _CUSTOM_DESCRIPTOR


def resolve_metric_identifier(name: str | None) -> MetricKey | None:
    """Map a metric name to its identifier, or None when it is unknown.

    Built-in metrics match their value or their enum name, ignoring case.
    A purely numeric name yields a ``CustomMetric``.
    """
    if name is None:
        return None
    text = str(name).strip()
    if not text:
        return None
    folded = text.casefold()
    for metric in MetricIdentifier:
        if folded in (metric.value.casefold(), metric.name.casefold()):
            return metric
    if text.isascii() and text.isdigit():
        return CustomMetric(int(text))
    return None


def metric_sort_key(key: MetricKey) -> tuple[int, int]:
    """Built-ins first in declaration order, then custom metrics by number."""
    if isinstance(key, MetricIdentifier):
        return (0, _BUILTIN_ORDER[key])
    return (1, key.number)
