"""Correlation of suppressed (symbol, metric) pairs onto the tree."""

import logging
from dataclasses import replace
from typing import Iterable

from metrics_report.aggregation.arena import NodeArena, NodeDraft
from metrics_report.catalog import resolve_metric_identifier
from metrics_report.models import (
    AggregationWarning,
    MetricKey,
    MetricSymbolLevel,
    Suppression,
    SuppressedSymbolInfo,
)
from metrics_report.normalizer import normalize_member_name, normalize_type_name

logger = logging.getLogger(__name__)

SuppressionKey = tuple[str, MetricKey, MetricSymbolLevel | None]
SuppressionIndex = dict[SuppressionKey, Suppression]


def _normalize_symbol(fqn: str) -> str:
    fqn = fqn.strip()
    if "(" in fqn:
        return normalize_member_name(fqn)
    return normalize_type_name(fqn)


def build_suppression_index(
    entries: Iterable[SuppressedSymbolInfo],
    warnings: list[AggregationWarning],
) -> SuppressionIndex:
    """Map ``(normalized FQN, metric, level)`` to its suppression.

    A later entry for the same key replaces an earlier one, so with input in
    no particular order the surviving justification is unspecified. Entries
    without a name, without a metric, or with an unknown metric are skipped.
    """
    index: SuppressionIndex = {}
    for entry in entries:
        fqn = (entry.fully_qualified_name or "").strip()
        metric = resolve_metric_identifier(entry.metric)
        if not fqn or metric is None:
            message = (
                f"Skipping suppression entry for '{entry.fully_qualified_name}' "
                f"with metric '{entry.metric}'"
            )
            logger.debug(message)
            warnings.append(AggregationWarning("suppression-skipped", message, entry.fully_qualified_name))
            continue
        index[(_normalize_symbol(fqn), metric, entry.level)] = Suppression(entry.rule_id, entry.justification)
    return index


def _targets(
    by_name: dict[str, list[NodeDraft]],
    fqn: str,
    metric: MetricKey,
    level: MetricSymbolLevel | None,
) -> list[NodeDraft]:
    """Nodes an entry applies to: those at *level*, or else at the deepest
    level where *fqn* carries *metric*. Namespaces repeated across
    assemblies all match."""
    candidates = [draft for draft in by_name.get(fqn, ()) if metric in draft.metrics]
    if level is not None:
        return [draft for draft in candidates if draft.kind is level]
    if not candidates:
        return []
    deepest = max(draft.kind.depth for draft in candidates)
    return [draft for draft in candidates if draft.kind.depth == deepest]


def apply_suppressions(
    arena: NodeArena,
    index: SuppressionIndex,
    warnings: list[AggregationWarning],
) -> None:
    """Attach suppressions to matching node metrics; statuses are left alone.

    An entry without a level attaches to one level only, so ``Shop`` names
    the namespace rather than both the namespace and the assembly.
    """
    by_name: dict[str, list[NodeDraft]] = {}
    for draft in arena.nodes():
        if draft.fully_qualified_name:
            by_name.setdefault(draft.fully_qualified_name, []).append(draft)

    unmatched: list[SuppressionKey] = []
    for key, suppression in index.items():
        fqn, metric, level = key
        targets = _targets(by_name, fqn, metric, level)
        if not targets:
            unmatched.append(key)
            continue
        for draft in targets:
            draft.metrics[metric] = replace(draft.metrics[metric], suppression=suppression)

    for fqn, metric, level in sorted(unmatched, key=lambda k: (k[0], k[1].value, k[2].value if k[2] else "")):
        where = f" at {level.value} level" if level else ""
        message = f"Suppression for '{fqn}' / {metric.value}{where} matches no reported metric"
        logger.debug(message)
        warnings.append(AggregationWarning("suppression-unmatched", message, fqn))
