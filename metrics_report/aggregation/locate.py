"""Attribution of file-and-line diagnostics findings to tree nodes.

Usage:
    index = LineIndex.build(arena)
    index.find(path, line)            # member, else type, else None
    attribute_findings(arena, documents, warnings)

Members are searched before types. Within each level a node starting on
the finding's line wins, then one starting on the next line (analyzers
report the declaration line, code metrics may index the body), then the
shortest node containing the line. Members indexed on a single line keep
the findings below them up to the next indexed member.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from metrics_report.aggregation.arena import NodeArena, NodeDraft
from metrics_report.aggregation.merge import sum_values
from metrics_report.catalog import descriptor
from metrics_report.models import (
    AggregationWarning,
    LocatedFinding,
    MetricSymbolLevel,
    MetricValue,
    ParsedDocument,
    RuleBreakdownEntry,
    RuleViolationDetail,
)
from metrics_report.normalizer import normalize_source_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Span:
    draft: NodeDraft
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start


class LineIndex:
    """Source ranges of members and types, per normalized file path."""

    def __init__(self) -> None:
        self._members: dict[str, list[_Span]] = {}
        self._types: dict[str, list[_Span]] = {}

    @classmethod
    def build(cls, arena: NodeArena) -> "LineIndex":
        index = cls()
        for draft in arena.nodes():
            if draft.kind is MetricSymbolLevel.MEMBER:
                index._add(index._members, draft)
            elif draft.kind is MetricSymbolLevel.TYPE:
                index._add(index._types, draft)
        for spans in (*index._members.values(), *index._types.values()):
            spans.sort(key=lambda s: (s.start, s.end, s.draft.fully_qualified_name or ""))
        return index

    @staticmethod
    def _add(target: dict[str, list[_Span]], draft: NodeDraft) -> None:
        source = draft.source
        if source is None or not source.path or source.start_line is None:
            return
        end = source.end_line if source.end_line is not None else source.start_line
        target.setdefault(normalize_source_path(source.path), []).append(
            _Span(draft, source.start_line, max(end, source.start_line))
        )

    def find(self, path: str, line: int) -> NodeDraft | None:
        key = normalize_source_path(path)
        return _find_in(self._members.get(key), line) or _find_in(self._types.get(key), line)


def _find_in(spans: list[_Span] | None, line: int) -> NodeDraft | None:
    if not spans:
        return None
    exact = near = containing = None
    for span in spans:
        if line == span.start:
            if exact is None or span.length < exact.length:
                exact = span
        elif line == span.start - 1:
            if near is None or span.length < near.length:
                near = span
        elif span.start <= line <= span.end:
            if containing is None or span.length < containing.length:
                containing = span
    best = exact or near or containing
    if best is not None:
        return best.draft
    return _preceding_single_line(spans, line)


def _preceding_single_line(spans: list[_Span], line: int) -> NodeDraft | None:
    candidate = None
    for span in spans:
        if span.start > line:
            break
        if span.start == span.end:
            candidate = span
    if candidate is None:
        return None
    for span in spans:
        if candidate.start < span.start < line:
            return None
    return candidate.draft


# ---------------------------------------------------------------------------
# Attribution
# ---------------------------------------------------------------------------

def _finding_value(finding: LocatedFinding) -> MetricValue:
    breakdown = None
    if finding.rule_id:
        detail = RuleViolationDetail(finding.message, finding.path, finding.start_line, finding.end_line)
        breakdown = {finding.rule_id: RuleBreakdownEntry(1, (detail,))}
    return MetricValue(value=Decimal(1), unit=descriptor(finding.metric).unit, breakdown=breakdown)


def attribute_findings(
    arena: NodeArena,
    documents: list[ParsedDocument],
    warnings: list[AggregationWarning],
) -> int:
    """Add every located finding to the node holding its line; returns the count placed.

    Findings without a line, or whose line no member or type covers, are
    reported as ``finding-unattributed`` warnings and dropped.
    """
    findings = [finding for document in documents for finding in document.findings]
    if not findings:
        return 0
    index = LineIndex.build(arena)
    placed = 0
    for finding in findings:
        line = finding.line
        target = index.find(finding.path, line) if line is not None else None
        if target is None:
            message = f"No member or type covers {finding.path}:{line} ({finding.rule_id or finding.metric.value})"
            logger.debug(message)
            warnings.append(AggregationWarning("finding-unattributed", message))
            continue
        incoming = _finding_value(finding)
        existing = target.metrics.get(finding.metric)
        target.metrics[finding.metric] = incoming if existing is None else sum_values(existing, incoming).value
        placed += 1
    return placed
