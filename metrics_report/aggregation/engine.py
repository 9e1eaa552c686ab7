"""Aggregation entry point.

Usage:
    aggregator = MetricsAggregator(filters=FilterSettings.from_strings(...),
                                   thresholds=parse_thresholds(payload))
    result = aggregator.aggregate(documents, baseline=previous_report,
                                  suppressed_symbols=suppressions)
    result.report     # MetricsReport, immutable
    result.warnings   # recoverable inconsistencies noticed on the way

One run goes through these steps, in order: collect (duplicate validation),
normalize and filter, merge by identity, nested-type and state-machine
reconciliation, type source backfill, attribution of located findings,
rollup, threshold evaluation, baseline diff, suppression correlation. A
``ValidationError`` raised by any step aborts the run; no partial report is
produced.
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Iterable

from metrics_report.aggregation.arena import NodeArena
from metrics_report.aggregation.baseline import apply_baseline
from metrics_report.aggregation.merge import (
    ConflictPolicy,
    ElementResolver,
    ResolvedElement,
    canonical_order,
    check_duplicates,
    first_value_wins,
    merge_element,
)
from metrics_report.aggregation.locate import attribute_findings
from metrics_report.aggregation.reconcile import (
    backfill_type_sources,
    reconcile_nested_types,
    reconcile_state_machines,
)
from metrics_report.aggregation.rollup import roll_up
from metrics_report.aggregation.suppressions import apply_suppressions, build_suppression_index
from metrics_report.catalog import descriptor, metric_sort_key
from metrics_report.filters import FilterSettings
from metrics_report.models import (
    AggregationResult,
    AggregationWarning,
    MetricKey,
    MetricsNode,
    MetricsReport,
    MetricSymbolLevel,
    ParsedDocument,
    ReportMetadata,
    ReportPaths,
    RuleDescription,
    SuppressedSymbolInfo,
    ThresholdTable,
)
from metrics_report.normalizer import extract_method_name
from metrics_report.thresholds import default_thresholds, evaluate

logger = logging.getLogger(__name__)

DEFAULT_SOLUTION_NAME = "Solution"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class MetricsAggregator:
    """Builds one ``MetricsReport`` per call from parsed documents.

    The aggregator holds configuration only; every call to ``aggregate``
    works on fresh state.
    """

    def __init__(
        self,
        filters: FilterSettings | None = None,
        thresholds: ThresholdTable | None = None,
        conflict_policy: ConflictPolicy = first_value_wins,
        clock: Callable[[], str] = _utc_now,
    ) -> None:
        self.filters = filters or FilterSettings()
        self.thresholds = thresholds if thresholds is not None else default_thresholds()
        self.conflict_policy = conflict_policy
        self._clock = clock

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def aggregate(
        self,
        documents: Iterable[ParsedDocument],
        *,
        solution_name: str | None = None,
        baseline: MetricsReport | None = None,
        suppressed_symbols: Iterable[SuppressedSymbolInfo] = (),
        paths: ReportPaths | None = None,
        baseline_reference: str | None = None,
    ) -> AggregationResult:
        """Run every step and return the report with its warnings.

        Raises:
            ValidationError: if a document reports one symbol twice with
                             conflicting data.
        """
        warnings: list[AggregationWarning] = []
        suppressed = tuple(suppressed_symbols)

        ordered = self._collect(documents)
        name = solution_name or next(
            (d.solution_name for d in ordered if d.solution_name and d.solution_name.strip()),
            DEFAULT_SOLUTION_NAME,
        )
        arena = NodeArena(name)

        resolved = self._normalize_and_filter(ordered)
        logger.debug("Merging %d element(s) into the tree", len(resolved))
        for item in resolved:
            merge_element(arena, item, self.conflict_policy, warnings)

        folded = reconcile_nested_types(arena)
        if folded:
            logger.debug("Folded %d plus-spelled nested type(s) into their dotted twins", folded)
        removed = reconcile_state_machines(arena)
        if removed:
            logger.debug("Folded %d state-machine type(s) into their methods", removed)
        filled = backfill_type_sources(arena)
        if filled:
            logger.debug("Derived source locations for %d type(s) from their members", filled)
        placed = attribute_findings(arena, ordered, warnings)
        if placed:
            logger.debug("Attributed %d located finding(s) by source line", placed)

        roll_up(arena)
        self._evaluate_thresholds(arena)
        apply_baseline(arena, baseline, warnings)
        apply_suppressions(arena, build_suppression_index(suppressed, warnings), warnings)

        solution = arena.freeze()
        metadata = self._metadata(ordered, solution, suppressed, paths, baseline_reference)
        logger.debug("Report built with %d node(s) and %d warning(s)", len(arena), len(warnings))
        return AggregationResult(MetricsReport(metadata, solution), tuple(warnings))

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _collect(self, documents: Iterable[ParsedDocument]) -> list[ParsedDocument]:
        documents = list(documents)
        for document in documents:
            check_duplicates(document)
        logger.debug("Collected %d document(s)", len(documents))
        return canonical_order(documents)

    def _normalize_and_filter(self, documents: list[ParsedDocument]) -> list[ResolvedElement]:
        resolver = ElementResolver(
            (document.label, element) for document in documents for element in document.elements
        )
        resolved = resolver.resolve()
        with_diagnostics = {
            item.fully_qualified_name for item in resolved
            if item.kind is MetricSymbolLevel.MEMBER and item.element.has_diagnostics
        }
        kept = [item for item in resolved if not self._excluded(item, with_diagnostics)]
        if len(kept) != len(resolved):
            logger.debug("Filters excluded %d element(s)", len(resolved) - len(kept))
        return kept

    def _excluded(self, item: ResolvedElement, with_diagnostics: set[str | None]) -> bool:
        filters = self.filters
        if item.kind is MetricSymbolLevel.SOLUTION:
            return False
        if filters.assemblies.should_exclude_assembly(item.assembly):
            return True
        if item.kind in (MetricSymbolLevel.ASSEMBLY, MetricSymbolLevel.NAMESPACE):
            return False
        if filters.types.should_exclude_type(item.type_fqn):
            return True
        if item.kind is MetricSymbolLevel.TYPE:
            return False
        element = item.element
        if filters.members.should_exclude_method(extract_method_name(element.name)):
            return True
        if filters.members.should_exclude_method_by_fqn(item.fully_qualified_name):
            return True
        return filters.member_kinds.should_exclude(
            element.member_kind, item.fully_qualified_name in with_diagnostics,
        )

    def _evaluate_thresholds(self, arena: NodeArena) -> None:
        for draft in arena.nodes():
            for metric, value in draft.metrics.items():
                status = evaluate(self.thresholds, metric, draft.kind, value.value)
                draft.metrics[metric] = replace(value, status=status)

    def _metadata(
        self,
        documents: list[ParsedDocument],
        solution: MetricsNode,
        suppressed: tuple[SuppressedSymbolInfo, ...],
        paths: ReportPaths | None,
        baseline_reference: str | None,
    ) -> ReportMetadata:
        present: set[MetricKey] = set(self.thresholds)
        used_rules: set[str] = set()
        for node in solution.walk():
            present.update(node.metrics)
            for value in node.metrics.values():
                if value.breakdown:
                    used_rules.update(value.breakdown)

        rule_descriptions: dict[str, RuleDescription] = {}
        for document in documents:
            for rule_id, description in document.rule_descriptions.items():
                if rule_id in used_rules:
                    rule_descriptions.setdefault(rule_id, description)

        ordered = sorted(present, key=metric_sort_key)
        descriptions: dict[MetricKey, str] = {}
        for metric in ordered:
            definition = self.thresholds.get(metric)
            text = definition.description if definition and definition.description else descriptor(metric).description
            if text:
                descriptions[metric] = text

        return ReportMetadata(
            generated_at=self._clock(),
            thresholds=self.thresholds,
            suppressed_symbols=suppressed,
            paths=paths or ReportPaths(),
            baseline_reference=baseline_reference,
            metric_units={metric: descriptor(metric).unit for metric in ordered},
            metric_descriptions=descriptions,
            excluded_member_names=self.filters.members.describe(),
            excluded_assembly_names=self.filters.assemblies.describe(),
            excluded_type_names=self.filters.types.describe(),
            rule_descriptions=dict(sorted(rule_descriptions.items())),
        )


def build_report(documents: Iterable[ParsedDocument], **options) -> AggregationResult:
    """One-shot helper: ``MetricsAggregator`` options and ``aggregate`` options
    may be mixed in *options*."""
    aggregator_options = {
        key: options.pop(key)
        for key in ("filters", "thresholds", "conflict_policy", "clock")
        if key in options
    }
    return MetricsAggregator(**aggregator_options).aggregate(documents, **options)
