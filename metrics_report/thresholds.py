"""Threshold table resolution and status evaluation.

Usage:
    table = parse_thresholds(payload)          # defaults + JSON overrides, frozen
    status = evaluate(table, MetricIdentifier.SEQUENCE_COVERAGE,
                      MetricSymbolLevel.TYPE, Decimal("71"))
    trend = classify_delta(Decimal("5"), table[MetricIdentifier.SOURCE_LINES])

Payload shape::

    {"metrics": [{"name": "AltCoverBranchCoverage",
                  "description": "...",
                  "higherIsBetter": true,
                  "positiveDeltaNeutral": false,
                  "symbolThresholds": {"Type": {"warning": 70, "error": 50}}}]}
"""

import json
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any

from metrics_report.catalog import descriptor, metric_sort_key, resolve_metric_identifier
from metrics_report.errors import ThresholdsError
from metrics_report.models import (
    MetricIdentifier,
    MetricKey,
    MetricSymbolLevel,
    MetricThreshold,
    MetricThresholdDefinition,
    ThresholdStatus,
    ThresholdTable,
)

# (warning, error, higher_is_better, positive_delta_neutral)
_DEFAULTS: dict[MetricIdentifier, tuple[int | None, int | None, bool, bool]] = {
    MetricIdentifier.SEQUENCE_COVERAGE: (75, 60, True, False),
    MetricIdentifier.BRANCH_COVERAGE: (70, 55, True, False),
    MetricIdentifier.COVERAGE_CYCLOMATIC_COMPLEXITY: (15, 30, False, False),
    MetricIdentifier.NPATH_COMPLEXITY: (200, 400, False, False),
    MetricIdentifier.MAINTAINABILITY_INDEX: (65, 40, True, False),
    MetricIdentifier.CYCLOMATIC_COMPLEXITY: (12, 25, False, False),
    MetricIdentifier.CLASS_COUPLING: (50, 80, False, False),
    MetricIdentifier.DEPTH_OF_INHERITANCE: (5, 8, False, False),
    MetricIdentifier.SOURCE_LINES: (None, None, False, True),
    MetricIdentifier.EXECUTABLE_LINES: (None, None, False, True),
    MetricIdentifier.CA_RULE_VIOLATIONS: (5, 10, False, False),
    MetricIdentifier.IDE_RULE_VIOLATIONS: (10, 20, False, False),
}


class DeltaTrend(str, Enum):
    IMPROVING = "improving"
    DEGRADING = "degrading"
    NEUTRAL = "neutral"


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def default_thresholds() -> ThresholdTable:
    """The built-in table: every known metric, every symbol level."""
    table: dict[MetricKey, MetricThresholdDefinition] = {}
    for metric, (warning, error, higher, neutral) in _DEFAULTS.items():
        table[metric] = _uniform(
            descriptor(metric).description or None,
            _decimal(warning), _decimal(error), higher, neutral,
        )
    return MappingProxyType(table)


def parse_thresholds(payload: str | None, defaults: ThresholdTable | None = None) -> ThresholdTable:
    """Resolve a thresholds payload on top of *defaults* (built-ins when None).

    Single quotes are accepted in place of double quotes. Entries whose name
    is not a known metric and not a number are ignored, as are unknown level
    names and per-level entries that are not objects.

    Raises:
        ThresholdsError: if the payload is not valid JSON or is not an object
                         with a ``metrics`` array.
    """
    base = default_thresholds() if defaults is None else defaults
    table: dict[MetricKey, MetricThresholdDefinition] = dict(base)
    if payload is None or not payload.strip():
        return MappingProxyType(table)

    try:
        document = json.loads(payload.replace("'", '"'), parse_float=Decimal)
    except json.JSONDecodeError as exc:
        raise ThresholdsError(f"Failed to parse metrics thresholds JSON: {exc}") from exc

    entries = document.get("metrics") if isinstance(document, dict) else None
    if not isinstance(entries, list):
        raise ThresholdsError(
            "Invalid thresholds JSON format. Expected an object with a 'metrics' array."
        )

    for entry in entries:
        if not isinstance(entry, dict):
            continue
        metric = resolve_metric_identifier(entry.get("name") if isinstance(entry.get("name"), str) else None)
        if metric is None:
            continue
        table[metric] = _apply_entry(metric, entry, table.get(metric))

    ordered = sorted(table.items(), key=lambda item: metric_sort_key(item[0]))
    return MappingProxyType(dict(ordered))


def _apply_entry(
    metric: MetricKey,
    entry: dict[str, Any],
    existing: MetricThresholdDefinition | None,
) -> MetricThresholdDefinition:
    if existing is None:
        fallback = descriptor(metric)
        existing = _uniform(None, None, None, fallback.higher_is_better, fallback.positive_delta_neutral)

    description = existing.description
    raw_description = entry.get("description")
    if isinstance(raw_description, str) and raw_description.strip():
        description = raw_description

    higher = entry.get("higherIsBetter")
    if not isinstance(higher, bool):
        higher = existing.higher_is_better
    neutral = entry.get("positiveDeltaNeutral")
    if not isinstance(neutral, bool):
        neutral = existing.positive_delta_neutral

    levels: dict[MetricSymbolLevel, MetricThreshold] = {}
    for level in MetricSymbolLevel:
        current = existing.levels.get(level)
        warning = current.warning if current else None
        error = current.error if current else None
        levels[level] = MetricThreshold(warning, error, higher, neutral)

    symbol_thresholds = entry.get("symbolThresholds")
    if isinstance(symbol_thresholds, dict):
        for level_name, values in symbol_thresholds.items():
            level = _resolve_level(level_name)
            if level is None or not isinstance(values, dict):
                continue
            levels[level] = MetricThreshold(
                _number(values.get("warning")), _number(values.get("error")), higher, neutral,
            )

    return MetricThresholdDefinition(description, MappingProxyType(levels))


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def threshold_for(
    table: ThresholdTable,
    metric: MetricKey,
    level: MetricSymbolLevel,
) -> MetricThreshold | None:
    """The threshold for *metric* at *level*, falling back to the Type level."""
    definition = table.get(metric)
    if definition is None:
        return None
    return definition.levels.get(level) or definition.levels.get(MetricSymbolLevel.TYPE)


def evaluate_status(value: Decimal | None, threshold: MetricThreshold | None) -> ThresholdStatus:
    """Error beats Warning beats Success; a missing value is NA.

    With ``higher_is_better`` a value below a limit breaches it, otherwise a
    value above it does. A value equal to a limit does not breach it.
    """
    if value is None:
        return ThresholdStatus.NA
    if threshold is None:
        return ThresholdStatus.SUCCESS
    if threshold.higher_is_better:
        if threshold.error is not None and value < threshold.error:
            return ThresholdStatus.ERROR
        if threshold.warning is not None and value < threshold.warning:
            return ThresholdStatus.WARNING
    else:
        if threshold.error is not None and value > threshold.error:
            return ThresholdStatus.ERROR
        if threshold.warning is not None and value > threshold.warning:
            return ThresholdStatus.WARNING
    return ThresholdStatus.SUCCESS


def evaluate(
    table: ThresholdTable,
    metric: MetricKey,
    level: MetricSymbolLevel,
    value: Decimal | None,
) -> ThresholdStatus:
    return evaluate_status(value, threshold_for(table, metric, level))


def classify_delta(
    delta: Decimal | None,
    threshold: MetricThreshold | MetricThresholdDefinition,
) -> DeltaTrend:
    """Whether a baseline delta reads as an improvement or a regression."""
    if delta is None or delta == 0:
        return DeltaTrend.NEUTRAL
    if delta > 0 and threshold.positive_delta_neutral:
        return DeltaTrend.NEUTRAL
    improving = delta > 0 if threshold.higher_is_better else delta < 0
    return DeltaTrend.IMPROVING if improving else DeltaTrend.DEGRADING


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _uniform(
    description: str | None,
    warning: Decimal | None,
    error: Decimal | None,
    higher_is_better: bool,
    positive_delta_neutral: bool,
) -> MetricThresholdDefinition:
    threshold = MetricThreshold(warning, error, higher_is_better, positive_delta_neutral)
    return MetricThresholdDefinition(
        description, MappingProxyType({level: threshold for level in MetricSymbolLevel}),
    )


def _resolve_level(name: Any) -> MetricSymbolLevel | None:
    if not isinstance(name, str):
        return None
    folded = name.strip().casefold()
    for level in MetricSymbolLevel:
        if level.value.casefold() == folded:
            return level
    return None


def _number(value: Any) -> Decimal | None:
    # JSON booleans decode to bool, which is an int subclass
    if isinstance(value, bool) or not isinstance(value, (int, Decimal)):
        return None
    return Decimal(value)


def _decimal(value: int | None) -> Decimal | None:
    return None if value is None else Decimal(value)
