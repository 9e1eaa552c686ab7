"""Identity-keyed merge of raw elements into the node arena.

Steps, in the order the engine calls them:
    check_duplicates(document)        -> raises DuplicateElementError
    canonical_order(documents)        -> documents sorted independently of arrival
    ElementResolver(elements)         -> normalized identities + ancestor chains
    merge_element(arena, resolved, policy, warnings)

Conflict policies decide what happens when two facts target the same node
and metric: ``first_value_wins`` for measured values, ``sum_values`` for
additive diagnostics counts.
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Callable, Iterable

from metrics_report.aggregation.arena import NodeArena, NodeKey, node_key
from metrics_report.catalog import descriptor
from metrics_report.errors import DuplicateElementError
from metrics_report.models import (
    AggregationWarning,
    MemberKind,
    MetricKey,
    MetricSymbolLevel,
    MetricValue,
    ParsedDocument,
    RawElement,
    RuleBreakdownEntry,
    SourceFamily,
)
from metrics_report.normalizer import (
    normalize_member_name,
    normalize_type_name,
    split_member_name,
)

logger = logging.getLogger(__name__)

GLOBAL_NAMESPACE = "<global>"
UNKNOWN_ASSEMBLY = "<unknown-assembly>"

_FAMILY_ORDER = {SourceFamily.COVERAGE: 0, SourceFamily.METRICS: 1, SourceFamily.DIAGNOSTICS: 2}


# ---------------------------------------------------------------------------
# Conflict policies
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Resolution:
    value: MetricValue
    conflict: bool = False


ConflictPolicy = Callable[[MetricValue, MetricValue], Resolution]


def first_value_wins(existing: MetricValue, incoming: MetricValue) -> Resolution:
    """Keep the value seen first; a later value only fills a gap.

    Two different non-null values are a conflict; the first one is kept.
    """
    if existing.value is None:
        return Resolution(incoming)
    if incoming.value is None or incoming.value == existing.value:
        return Resolution(existing)
    return Resolution(existing, conflict=True)


def sum_values(existing: MetricValue, incoming: MetricValue) -> Resolution:
    """Add two counts and merge their per-rule breakdowns."""
    if existing.value is None:
        return Resolution(incoming)
    if incoming.value is None:
        return Resolution(existing)
    return Resolution(MetricValue(
        value=existing.value + incoming.value,
        unit=existing.unit or incoming.unit,
        breakdown=merge_breakdowns([existing.breakdown, incoming.breakdown]),
    ))


def merge_breakdowns(
    breakdowns: Iterable[dict[str, RuleBreakdownEntry] | None],
) -> dict[str, RuleBreakdownEntry] | None:
    """Counts add up and violation lists concatenate, rule by rule."""
    merged: dict[str, RuleBreakdownEntry] = {}
    seen = False
    for breakdown in breakdowns:
        if breakdown is None:
            continue
        seen = True
        for rule_id, entry in breakdown.items():
            current = merged.get(rule_id)
            if current is None:
                merged[rule_id] = entry
            else:
                merged[rule_id] = RuleBreakdownEntry(
                    count=current.count + entry.count,
                    violations=current.violations + entry.violations,
                )
    if not seen:
        return None
    return dict(sorted(merged.items()))


def is_additive(metric: MetricKey) -> bool:
    return descriptor(metric).family is SourceFamily.DIAGNOSTICS


# ---------------------------------------------------------------------------
# Validation and ordering
# ---------------------------------------------------------------------------

def check_duplicates(document: ParsedDocument) -> None:
    """Reject a document that reports one symbol twice with different facts.

    Identity is the raw, un-normalized name so overloads that only collide
    after normalization are not duplicates. Two reports conflict when both
    carry a source location and the locations differ, or both carry a value
    for the same non-additive metric and the values differ. Elements that
    only carry diagnostics counts never conflict.
    """
    seen: dict[tuple, RawElement] = {}
    for element in document.elements:
        identity = (
            element.kind,
            (element.fully_qualified_name or element.name or "").strip(),
            element.parent_fully_qualified_name,
            element.containing_assembly,
        )
        previous = seen.get(identity)
        if previous is None:
            seen[identity] = element
            continue
        reason = _duplicate_conflict(previous, element)
        if reason:
            raise DuplicateElementError(document.label, identity[1], reason)


def _duplicate_conflict(first: RawElement, second: RawElement) -> str | None:
    measured = [m for m in set(first.metrics) | set(second.metrics) if not is_additive(m)]
    if not measured and (first.metrics or second.metrics):
        return None
    if first.source and second.source and first.source != second.source:
        return "different source locations"
    for metric in measured:
        a = first.metrics.get(metric)
        b = second.metrics.get(metric)
        if a and b and a.value is not None and b.value is not None and a.value != b.value:
            return f"different values for {metric.value}"
    return None


def canonical_order(documents: Iterable[ParsedDocument]) -> list[ParsedDocument]:
    """Sort documents so the merge does not depend on their arrival order."""
    return sorted(documents, key=_document_rank)


def _document_rank(document: ParsedDocument) -> tuple:
    content = repr((document.elements, document.findings))
    fingerprint = hashlib.sha256(content.encode("utf-8")).hexdigest()
    return (
        _FAMILY_ORDER[document.source],
        document.source_path or "",
        document.solution_name or "",
        fingerprint,
    )


# ---------------------------------------------------------------------------
# Identity resolution
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ResolvedElement:
    """A raw element with its normalized identity and ancestor chain."""

    element: RawElement
    document: str
    kind: MetricSymbolLevel
    fully_qualified_name: str | None
    assembly: str | None = None
    namespace: str | None = None
    type_fqn: str | None = None

    @property
    def key(self) -> NodeKey:
        if self.kind is MetricSymbolLevel.ASSEMBLY:
            return node_key(self.kind, self.assembly)
        return node_key(self.kind, self.fully_qualified_name, self.assembly)


def normalized_fqn(element: RawElement) -> str | None:
    """Canonical FQN of an element, built from its parent when absent."""
    fqn = (element.fully_qualified_name or "").strip()
    if not fqn:
        name = (element.name or "").strip()
        parent = (element.parent_fully_qualified_name or "").strip()
        if element.kind in (MetricSymbolLevel.TYPE, MetricSymbolLevel.MEMBER) and parent:
            fqn = f"{parent}.{name}" if name else ""
        else:
            fqn = name
    if not fqn:
        return None
    if element.kind is MetricSymbolLevel.MEMBER:
        return normalize_member_name(fqn)
    if element.kind is MetricSymbolLevel.TYPE:
        return normalize_type_name(fqn)
    return fqn


class ElementResolver:
    """Resolves assemblies, namespaces and declaring types of every element.

    The index is built from all elements first so that the result does not
    depend on the order in which elements are visited, and every element of
    one type resolves to the same ancestors.
    """

    def __init__(self, elements: Iterable[tuple[str, RawElement]]) -> None:
        self._items = [(doc, el, normalized_fqn(el)) for doc, el in elements]
        self.assemblies: set[str] = set()
        self.namespaces: set[str] = set()
        self.types: set[str] = set()
        self._type_assemblies: dict[str, set[str]] = {}
        self._namespace_assemblies: dict[str, set[str]] = {}
        self._type_namespaces: dict[str, set[str]] = {}
        self._type_parents: dict[str, set[str]] = {}
        self._build_index()

    def _build_index(self) -> None:
        for _, element, fqn in self._items:
            if element.containing_assembly and element.containing_assembly.strip():
                self.assemblies.add(element.containing_assembly.strip())
            if fqn is None:
                continue
            if element.kind is MetricSymbolLevel.ASSEMBLY:
                self.assemblies.add(fqn)
            elif element.kind is MetricSymbolLevel.NAMESPACE:
                self.namespaces.add(fqn)
            elif element.kind is MetricSymbolLevel.TYPE:
                self.types.add(fqn)
            elif element.kind is MetricSymbolLevel.MEMBER:
                self.types.add(self._declaring_type(element, fqn))

        for _, element, fqn in self._items:
            if fqn is None:
                continue
            parent = (element.parent_fully_qualified_name or "").strip()
            assembly = (element.containing_assembly or "").strip()
            if element.kind is MetricSymbolLevel.NAMESPACE:
                if not assembly and parent in self.assemblies:
                    assembly = parent
                if assembly:
                    self._namespace_assemblies.setdefault(fqn, set()).add(assembly)
            elif element.kind is MetricSymbolLevel.TYPE:
                parent = normalize_type_name(parent) if parent else ""
                if parent and parent != fqn:
                    if parent in self.types:
                        self._type_parents.setdefault(fqn, set()).add(parent)
                    elif parent not in self.assemblies:
                        self._type_namespaces.setdefault(fqn, set()).add(parent)
                if assembly:
                    self._type_assemblies.setdefault(fqn, set()).add(assembly)
            elif element.kind is MetricSymbolLevel.MEMBER and assembly:
                declaring = self._declaring_type(element, fqn)
                self._type_assemblies.setdefault(declaring, set()).add(assembly)

        for namespaces in self._type_namespaces.values():
            self.namespaces.update(namespaces)
        for type_fqn, assemblies in self._type_assemblies.items():
            namespace = self.namespace_of(type_fqn)
            self._namespace_assemblies.setdefault(namespace, set()).update(assemblies)

    # ------------------------------------------------------------------

    def resolve(self) -> list[ResolvedElement]:
        resolved = []
        for document, element, fqn in self._items:
            item = self._resolve_one(document, element, fqn)
            if item is not None:
                resolved.append(item)
        return resolved

    def _resolve_one(self, document: str, element: RawElement, fqn: str | None) -> ResolvedElement | None:
        kind = element.kind
        if kind is MetricSymbolLevel.SOLUTION:
            return ResolvedElement(element, document, kind, fqn)
        if fqn is None:
            logger.debug("Skipping %s element without a name in %s", kind.value, document)
            return None
        if kind is MetricSymbolLevel.ASSEMBLY:
            return ResolvedElement(element, document, kind, fqn, assembly=fqn)
        if kind is MetricSymbolLevel.NAMESPACE:
            return ResolvedElement(
                element, document, kind, fqn,
                assembly=self._namespace_assembly(element, fqn), namespace=fqn,
            )
        type_fqn = fqn if kind is MetricSymbolLevel.TYPE else self._declaring_type(element, fqn)
        namespace = self.namespace_of(type_fqn)
        return ResolvedElement(
            element, document, kind, fqn,
            assembly=self._type_assembly(element, type_fqn, namespace),
            namespace=namespace, type_fqn=type_fqn,
        )

    def namespace_of(self, type_fqn: str, _visited: frozenset[str] = frozenset()) -> str:
        """The namespace a type belongs to.

        A namespace named as the type's parent wins; a parent that is itself
        a type makes this a nested type living in the outer type's namespace.
        Otherwise the longest known namespace prefixing the type name is used,
        then the namespace of a known enclosing type, then the text before the
        last dot, then ``<global>``.
        """
        explicit = self._type_namespaces.get(type_fqn)
        if explicit:
            return min(explicit)
        visited = _visited | {type_fqn}
        outers = sorted(self._type_parents.get(type_fqn, set()) - visited)
        if outers:
            return self.namespace_of(outers[0], visited)

        best = ""
        for namespace in self.namespaces:
            if len(namespace) > len(best) and type_fqn.startswith(namespace + "."):
                best = namespace
        if best:
            return best
        enclosing = ""
        for known in self.types:
            if len(known) > len(enclosing) and known not in visited and type_fqn.startswith(known + "."):
                enclosing = known
        if enclosing:
            return self.namespace_of(enclosing, visited)
        head = type_fqn.split("+", 1)[0].split("/", 1)[0]
        if "." in head:
            return head.rsplit(".", 1)[0]
        return GLOBAL_NAMESPACE

    def _declaring_type(self, element: RawElement, fqn: str) -> str:
        parent = (element.parent_fully_qualified_name or "").strip()
        if parent:
            return normalize_type_name(parent)
        type_part, _ = split_member_name(fqn)
        return type_part or GLOBAL_NAMESPACE

    def _namespace_assembly(self, element: RawElement, fqn: str) -> str:
        explicit = (element.containing_assembly or "").strip()
        if explicit:
            return explicit
        parent = (element.parent_fully_qualified_name or "").strip()
        if parent in self.assemblies:
            return parent
        return self._pick(self._namespace_assemblies.get(fqn))

    def _type_assembly(self, element: RawElement, type_fqn: str, namespace: str) -> str:
        explicit = (element.containing_assembly or "").strip()
        if explicit:
            return explicit
        known = self._type_assemblies.get(type_fqn)
        if known:
            return min(known)
        return self._pick(self._namespace_assemblies.get(namespace))

    def _pick(self, candidates: set[str] | None) -> str:
        if candidates:
            return min(candidates)
        if len(self.assemblies) == 1:
            return next(iter(self.assemblies))
        return UNKNOWN_ASSEMBLY


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------

def _type_display_name(type_fqn: str, namespace: str) -> str:
    prefix = namespace + "."
    return type_fqn[len(prefix):] if type_fqn.startswith(prefix) else type_fqn


def ensure_chain(arena: NodeArena, resolved: ResolvedElement) -> NodeKey:
    """Create the missing ancestors of *resolved* and the node itself."""
    if resolved.kind is MetricSymbolLevel.SOLUTION:
        return arena.root_key

    assembly = resolved.assembly or UNKNOWN_ASSEMBLY
    parent = arena.ensure(
        node_key(MetricSymbolLevel.ASSEMBLY, assembly), assembly, assembly, arena.root_key,
    ).key
    if resolved.kind is MetricSymbolLevel.ASSEMBLY:
        return parent

    namespace = resolved.namespace or GLOBAL_NAMESPACE
    parent = arena.ensure(
        node_key(MetricSymbolLevel.NAMESPACE, namespace, assembly), namespace, namespace, parent,
    ).key
    if resolved.kind is MetricSymbolLevel.NAMESPACE:
        return parent

    type_fqn = resolved.type_fqn or resolved.fully_qualified_name
    parent = arena.ensure(
        node_key(MetricSymbolLevel.TYPE, type_fqn), _type_display_name(type_fqn, namespace), type_fqn, parent,
    ).key
    if resolved.kind is MetricSymbolLevel.TYPE:
        return parent

    _, member_name = split_member_name(resolved.fully_qualified_name)
    return arena.ensure(resolved.key, member_name, resolved.fully_qualified_name, parent).key


def merge_element(
    arena: NodeArena,
    resolved: ResolvedElement,
    policy: ConflictPolicy,
    warnings: list[AggregationWarning],
) -> None:
    """Union the element's metrics and metadata into its node."""
    draft = arena.get(ensure_chain(arena, resolved))
    element = resolved.element

    if element.source and (draft.source is None or draft.source.completeness < element.source.completeness):
        draft.source = element.source
    if element.member_kind is not None and draft.kind is MetricSymbolLevel.MEMBER:
        if draft.member_kind is None or (
            draft.member_kind is MemberKind.METHOD and element.member_kind is not MemberKind.METHOD
        ):
            draft.member_kind = element.member_kind

    for metric, raw in element.metrics.items():
        incoming = MetricValue(
            value=raw.value,
            unit=raw.unit or descriptor(metric).unit,
            breakdown=dict(raw.breakdown) if raw.breakdown is not None else None,
        )
        existing = draft.metrics.get(metric)
        if existing is None:
            draft.metrics[metric] = incoming
            continue
        outcome = (sum_values if is_additive(metric) else policy)(existing, incoming)
        draft.metrics[metric] = outcome.value
        if outcome.conflict:
            message = (
                f"Conflicting {metric.value} for '{draft.fully_qualified_name}': kept "
                f"{existing.value}, ignored {incoming.value} from {resolved.document}"
            )
            logger.warning(message)
            warnings.append(AggregationWarning("metric-conflict", message, draft.fully_qualified_name))
