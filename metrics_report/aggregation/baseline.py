"""Comparison of the current tree with a previous report."""

import logging
from dataclasses import replace

from metrics_report.aggregation.arena import NodeArena, NodeKey, node_key
from metrics_report.models import (
    AggregationWarning,
    MetricsNode,
    MetricsReport,
    MetricSymbolLevel,
)

logger = logging.getLogger(__name__)


def index_report(report: MetricsReport) -> dict[NodeKey, MetricsNode]:
    """Key every node of *report* the way the arena keys its drafts."""
    index: dict[NodeKey, MetricsNode] = {}

    def visit(node: MetricsNode, assembly: str | None) -> None:
        if node.kind is MetricSymbolLevel.ASSEMBLY:
            assembly = node.fully_qualified_name or node.name
        fqn = node.fully_qualified_name if node.fully_qualified_name is not None else node.name
        index.setdefault(node_key(node.kind, fqn, assembly), node)
        for child in node.children:
            visit(child, assembly)

    visit(report.solution, None)
    return index


def apply_baseline(
    arena: NodeArena,
    baseline: MetricsReport | None,
    warnings: list[AggregationWarning],
) -> None:
    """Set deltas and new-symbol flags.

    Without a baseline every node but the solution is new and no delta is
    set. With one, a node is new exactly when the baseline has no node of the
    same level and identity; matched nodes get ``current - baseline`` for
    every metric valued on both sides.
    """
    if baseline is None:
        for draft in arena.nodes():
            draft.is_new = draft.kind is not MetricSymbolLevel.SOLUTION
        return

    previous = index_report(baseline)
    matched: set[NodeKey] = set()
    for draft in arena.nodes():
        if draft.kind is MetricSymbolLevel.SOLUTION:
            old = baseline.solution
            matched.add(arena.root_key)
        else:
            old = previous.get(draft.key)
            draft.is_new = old is None
            if old is None:
                continue
            matched.add(draft.key)
        for metric, value in draft.metrics.items():
            before = old.metrics.get(metric)
            if before is None or before.value is None or value.value is None:
                continue
            draft.metrics[metric] = replace(value, delta=value.value - before.value)

    gone = sorted(
        (key for key in previous if key not in matched and key[0] is not MetricSymbolLevel.SOLUTION),
        key=lambda k: (k[0].depth, k[1] or "", k[2] or ""),
    )
    for key in gone:
        logger.debug("Baseline %s '%s' has no current counterpart", key[0].value, key[2])
    if gone:
        message = f"{len(gone)} baseline symbol(s) no longer present in the current run"
        logger.warning(message)
        warnings.append(AggregationWarning("baseline-unmatched", message))
