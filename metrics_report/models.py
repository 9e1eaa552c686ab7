"""Data model shared by the normalizer, the filters, the threshold resolver
and the aggregation engine.

Input side:   RawElement, LocatedFinding, ParsedDocument, SuppressedSymbolInfo
Config side:  MetricThreshold, MetricThresholdDefinition
Output side:  MetricValue, MetricsNode, ReportMetadata, MetricsReport

Everything the engine hands back is frozen; mappings are exposed as
read-only views.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Iterator, Mapping


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class MetricIdentifier(str, Enum):
    """Built-in metrics, grouped by the source family that reports them."""

    # coverage instrumentation
    SEQUENCE_COVERAGE = "AltCoverSequenceCoverage"
    BRANCH_COVERAGE = "AltCoverBranchCoverage"
    COVERAGE_CYCLOMATIC_COMPLEXITY = "AltCoverCyclomaticComplexity"
    NPATH_COMPLEXITY = "AltCoverNPathComplexity"
    # code-quality metrics
    MAINTAINABILITY_INDEX = "RoslynMaintainabilityIndex"
    CYCLOMATIC_COMPLEXITY = "RoslynCyclomaticComplexity"
    CLASS_COUPLING = "RoslynClassCoupling"
    DEPTH_OF_INHERITANCE = "RoslynDepthOfInheritance"
    SOURCE_LINES = "RoslynSourceLines"
    EXECUTABLE_LINES = "RoslynExecutableLines"
    # diagnostics
    CA_RULE_VIOLATIONS = "SarifCaRuleViolations"
    IDE_RULE_VIOLATIONS = "SarifIdeRuleViolations"


@dataclass(frozen=True, order=True)
class CustomMetric:
    """A metric introduced by a thresholds file under a numeric name."""

    number: int

    @property
    def value(self) -> str:
        return str(self.number)

    @property
    def name(self) -> str:
        return f"Custom{self.number}"


MetricKey = MetricIdentifier | CustomMetric


class MetricSymbolLevel(str, Enum):
    SOLUTION = "Solution"
    ASSEMBLY = "Assembly"
    NAMESPACE = "Namespace"
    TYPE = "Type"
    MEMBER = "Member"

    @property
    def depth(self) -> int:
        return _LEVEL_DEPTH[self]


_LEVEL_DEPTH = {
    MetricSymbolLevel.SOLUTION: 0,
    MetricSymbolLevel.ASSEMBLY: 1,
    MetricSymbolLevel.NAMESPACE: 2,
    MetricSymbolLevel.TYPE: 3,
    MetricSymbolLevel.MEMBER: 4,
}


class MemberKind(str, Enum):
    METHOD = "Method"
    PROPERTY = "Property"
    FIELD = "Field"
    EVENT = "Event"


class ThresholdStatus(str, Enum):
    NA = "NotApplicable"
    SUCCESS = "Success"
    WARNING = "Warning"
    ERROR = "Error"


class SourceFamily(str, Enum):
    """Which analysis tool produced a parsed document."""

    COVERAGE = "coverage"
    METRICS = "metrics"
    DIAGNOSTICS = "diagnostics"


# ---------------------------------------------------------------------------
# Input side
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SourceLocation:
    path: str
    start_line: int | None = None
    end_line: int | None = None

    @property
    def completeness(self) -> int:
        return sum(1 for part in (self.path, self.start_line, self.end_line) if part)


@dataclass(frozen=True)
class RuleViolationDetail:
    message: str | None = None
    uri: str | None = None
    start_line: int | None = None
    end_line: int | None = None


@dataclass(frozen=True)
class RuleBreakdownEntry:
    """Violations of a single rule id: a count plus the individual findings."""

    count: int
    violations: tuple[RuleViolationDetail, ...] = ()


@dataclass(frozen=True)
class RawMetricValue:
    value: Decimal | None
    unit: str | None = None
    breakdown: Mapping[str, RuleBreakdownEntry] | None = None


@dataclass(frozen=True)
class RawElement:
    """One fact about one symbol, as reported by one source document."""

    kind: MetricSymbolLevel
    name: str
    fully_qualified_name: str | None = None
    parent_fully_qualified_name: str | None = None
    containing_assembly: str | None = None
    member_kind: MemberKind | None = None
    source: SourceLocation | None = None
    metrics: Mapping[MetricKey, RawMetricValue] = field(default_factory=dict)

    @property
    def has_diagnostics(self) -> bool:
        """True when the element carries at least one diagnostics violation."""
        for key in (MetricIdentifier.CA_RULE_VIOLATIONS, MetricIdentifier.IDE_RULE_VIOLATIONS):
            raw = self.metrics.get(key)
            if raw is not None and raw.value:
                return True
        return False


@dataclass(frozen=True)
class LocatedFinding:
    """A single diagnostics violation known only by file and line.

    The engine attributes it to the member or type whose source range holds
    the line.
    """

    metric: MetricKey
    path: str
    start_line: int | None = None
    end_line: int | None = None
    rule_id: str | None = None
    message: str | None = None

    @property
    def line(self) -> int | None:
        return self.start_line if self.start_line is not None else self.end_line


@dataclass(frozen=True)
class RuleDescription:
    short_description: str | None = None
    full_description: str | None = None
    help_uri: str | None = None
    category: str | None = None


@dataclass(frozen=True)
class ParsedDocument:
    """The element list one parser produced for one input file."""

    source: SourceFamily
    elements: tuple[RawElement, ...]
    solution_name: str | None = None
    source_path: str | None = None
    rule_descriptions: Mapping[str, RuleDescription] = field(default_factory=dict)
    findings: tuple[LocatedFinding, ...] = ()

    @property
    def label(self) -> str:
        return self.source_path or f"<{self.source.value}>"


@dataclass(frozen=True)
class SuppressedSymbolInfo:
    """A (symbol, metric) pair an analyzer declared as intentionally suppressed.

    Every field is optional because the producing scanner is best-effort;
    incomplete entries are skipped during correlation. ``level`` pins the
    entry to one symbol level when a name exists at several.
    """

    fully_qualified_name: str | None
    metric: str | None
    rule_id: str | None = None
    justification: str | None = None
    file_path: str | None = None
    level: MetricSymbolLevel | None = None


# ---------------------------------------------------------------------------
# Thresholds
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MetricThreshold:
    warning: Decimal | None
    error: Decimal | None
    higher_is_better: bool
    positive_delta_neutral: bool = False


@dataclass(frozen=True)
class MetricThresholdDefinition:
    description: str | None
    levels: Mapping[MetricSymbolLevel, MetricThreshold]

    @property
    def higher_is_better(self) -> bool:
        return _first_level(self.levels).higher_is_better

    @property
    def positive_delta_neutral(self) -> bool:
        return _first_level(self.levels).positive_delta_neutral


def _first_level(levels: Mapping[MetricSymbolLevel, MetricThreshold]) -> MetricThreshold:
    for level in MetricSymbolLevel:
        if level in levels:
            return levels[level]
    raise KeyError("threshold definition has no levels")


ThresholdTable = Mapping[MetricKey, MetricThresholdDefinition]


# ---------------------------------------------------------------------------
# Output side
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Suppression:
    rule_id: str | None
    justification: str | None


@dataclass(frozen=True)
class MetricValue:
    value: Decimal | None
    status: ThresholdStatus = ThresholdStatus.NA
    delta: Decimal | None = None
    unit: str | None = None
    breakdown: Mapping[str, RuleBreakdownEntry] | None = None
    suppression: Suppression | None = None

    @property
    def suppressed(self) -> bool:
        return self.suppression is not None


@dataclass(frozen=True)
class MetricsNode:
    """A node of the report tree.

    ``kind`` tags the variant. Only ``MEMBER`` nodes use ``member_kind`` and
    ``includes_state_machine_coverage``; member nodes never have children.
    """

    kind: MetricSymbolLevel
    name: str
    fully_qualified_name: str | None
    is_new: bool = False
    source: SourceLocation | None = None
    metrics: Mapping[MetricKey, MetricValue] = field(default_factory=lambda: MappingProxyType({}))
    children: tuple["MetricsNode", ...] = ()
    member_kind: MemberKind | None = None
    includes_state_machine_coverage: bool = False

    def walk(self) -> Iterator["MetricsNode"]:
        """Yield this node and all of its descendants, depth-first."""
        yield self
        for child in self.children:
            yield from child.walk()

    def find(self, kind: MetricSymbolLevel, fully_qualified_name: str) -> "MetricsNode | None":
        for node in self.walk():
            if node.kind is kind and node.fully_qualified_name == fully_qualified_name:
                return node
        return None


@dataclass(frozen=True)
class ReportPaths:
    metrics_directory: str | None = None
    baseline: str | None = None
    report: str | None = None
    thresholds: str | None = None


@dataclass(frozen=True)
class ReportMetadata:
    generated_at: str
    thresholds: ThresholdTable
    suppressed_symbols: tuple[SuppressedSymbolInfo, ...] = ()
    paths: ReportPaths = field(default_factory=ReportPaths)
    baseline_reference: str | None = None
    metric_units: Mapping[MetricKey, str] = field(default_factory=dict)
    metric_descriptions: Mapping[MetricKey, str] = field(default_factory=dict)
    excluded_member_names: str = ""
    excluded_assembly_names: str = ""
    excluded_type_names: str = ""
    rule_descriptions: Mapping[str, RuleDescription] = field(default_factory=dict)


@dataclass(frozen=True)
class MetricsReport:
    metadata: ReportMetadata
    solution: MetricsNode


@dataclass(frozen=True)
class AggregationWarning:
    """A recoverable inconsistency noticed while building a report."""

    code: str
    message: str
    fully_qualified_name: str | None = None


@dataclass(frozen=True)
class AggregationResult:
    report: MetricsReport
    warnings: tuple[AggregationWarning, ...] = ()
