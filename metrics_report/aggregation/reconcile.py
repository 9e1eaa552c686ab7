"""Post-merge passes that repair how tools describe the same code differently.

Functions:
    reconcile_nested_types(arena)     -> int   (plus-spelled nested types folded)
    reconcile_state_machines(arena)   -> int   (state-machine types folded)
    backfill_type_sources(arena)      -> int   (types given a source location)

The coverage tool spells nested types ``Ns.Outer+Inner`` where the
code-metrics tool writes ``Ns.Outer.Inner``. Iterator and async methods
compile to a nested type such as ``Ns.Reader+<ReadAll>d__7``; the coverage
tool attributes most of the method's code to that type, which would leave
``ReadAll`` looking untested.
"""

import logging
import re

from metrics_report.aggregation.arena import NodeArena, NodeDraft, node_key
from metrics_report.models import MetricIdentifier, MetricSymbolLevel, MetricValue, SourceLocation
from metrics_report.normalizer import extract_method_name, normalize_source_path, split_member_name

logger = logging.getLogger(__name__)

_STATE_MACHINE = re.compile(r"^(?P<outer>.+)[+/]<(?P<method>[^<>]+)>d__\d+$")

_COVERAGE = (MetricIdentifier.SEQUENCE_COVERAGE, MetricIdentifier.BRANCH_COVERAGE)
_COMPLEXITY = (MetricIdentifier.COVERAGE_CYCLOMATIC_COMPLEXITY, MetricIdentifier.NPATH_COMPLEXITY)


# ---------------------------------------------------------------------------
# Nested types
# ---------------------------------------------------------------------------

def reconcile_nested_types(arena: NodeArena) -> int:
    """Fold ``Outer+Inner`` types into ``Outer.Inner``; returns how many were removed.

    Only pairs where both spellings exist are touched. When both types carry
    coverage, or a method with the same name is covered on both sides, the
    pair is left alone. Otherwise the plus type's coverage fills the dotted
    type and its covered methods, creating methods the dotted type lacks,
    and the plus type is dropped.
    """
    removed = 0
    for plus_type in _types_by_name(arena):
        dotted_fqn = _dotted_type_name(plus_type.fully_qualified_name)
        if dotted_fqn is None:
            continue
        dotted = arena.get(node_key(MetricSymbolLevel.TYPE, dotted_fqn))
        if dotted is None:
            continue

        plus_covered = _has_coverage(plus_type)
        if plus_covered and _has_coverage(dotted):
            continue
        if _method_coverage_conflict(arena, plus_type, dotted):
            continue
        if plus_covered:
            for metric in _COVERAGE + _COMPLEXITY:
                _copy(plus_type, dotted, metric)
        _move_method_coverage(arena, plus_type, dotted)

        logger.debug("Folding %s into %s", plus_type.fully_qualified_name, dotted_fqn)
        arena.prune(plus_type.key)
        removed += 1
    return removed


def _dotted_type_name(type_fqn: str) -> str | None:
    namespace, _, type_part = type_fqn.rpartition(".")
    if "+" not in type_part:
        return None
    segments = [segment.strip() for segment in type_part.split("+") if segment.strip()]
    if len(segments) < 2:
        return None
    # compiler-generated names are handled by the state-machine pass
    if any("<" in s or ">" in s or "__" in s for s in segments):
        return None
    dotted = ".".join(segments)
    return f"{namespace}.{dotted}" if namespace else dotted


def _methods_by_name(arena: NodeArena, type_draft: NodeDraft) -> dict[str, NodeDraft]:
    methods: dict[str, NodeDraft] = {}
    for member in arena.children(type_draft.key):
        if member.kind is not MetricSymbolLevel.MEMBER or not member.fully_qualified_name:
            continue
        name = extract_method_name(member.fully_qualified_name)
        if name:
            methods.setdefault(name, member)
    return methods


def _method_coverage_conflict(arena: NodeArena, plus_type: NodeDraft, dotted: NodeDraft) -> bool:
    dotted_methods = _methods_by_name(arena, dotted)
    for name, member in _methods_by_name(arena, plus_type).items():
        counterpart = dotted_methods.get(name)
        if counterpart is not None and _has_coverage(member) and _has_coverage(counterpart):
            return True
    return False


def _move_method_coverage(arena: NodeArena, plus_type: NodeDraft, dotted: NodeDraft) -> None:
    dotted_methods = _methods_by_name(arena, dotted)
    for member in arena.children(plus_type.key):
        if member.kind is not MetricSymbolLevel.MEMBER or not member.fully_qualified_name:
            continue
        name = extract_method_name(member.fully_qualified_name)
        if not name or not _has_coverage(member):
            continue
        target = dotted_methods.get(name)
        if target is not None and _has_coverage(target):
            continue
        if target is None:
            fqn = _dotted_member_name(member.fully_qualified_name, plus_type, dotted, name)
            _, member_name = split_member_name(fqn)
            target = arena.ensure(node_key(MetricSymbolLevel.MEMBER, fqn), member_name, fqn, dotted.key)
            target.member_kind = member.member_kind
            target.source = member.source
            dotted_methods[name] = target
        for metric in _COVERAGE + _COMPLEXITY:
            _copy(member, target, metric)
        target.includes_state_machine_coverage = True


def _dotted_member_name(member_fqn: str, plus_type: NodeDraft, dotted: NodeDraft, method_name: str) -> str:
    prefix = plus_type.fully_qualified_name
    if member_fqn.startswith(prefix) and len(member_fqn) > len(prefix):
        return dotted.fully_qualified_name + member_fqn[len(prefix):]
    return f"{dotted.fully_qualified_name}.{method_name}(...)"


# ---------------------------------------------------------------------------
# State machines
# ---------------------------------------------------------------------------

def reconcile_state_machines(arena: NodeArena) -> int:
    """Absorb or drop state-machine types; returns how many were removed.

    Only state machines whose outer type declares the named method are
    touched. When neither side has coverage the state machine is dropped.
    When only the state machine has coverage it is copied onto the method
    and the state machine is dropped. When both have coverage nothing changes.
    """
    removed = 0
    for state_machine in _types_by_name(arena):
        match = _STATE_MACHINE.match(state_machine.fully_qualified_name)
        if match is None:
            continue
        outer = arena.get(node_key(MetricSymbolLevel.TYPE, match.group("outer")))
        if outer is None:
            continue
        method = _find_method(arena, outer, match.group("method"))
        if method is None:
            continue

        method_covered = _has_coverage(method)
        machine_covered = _has_coverage(state_machine)
        if method_covered and machine_covered:
            continue
        if machine_covered:
            _transfer(state_machine, method)
        logger.debug(
            "Folding %s into %s", state_machine.fully_qualified_name, method.fully_qualified_name,
        )
        arena.prune(state_machine.key)
        removed += 1
    return removed


def _find_method(arena: NodeArena, outer: NodeDraft, method_name: str) -> NodeDraft | None:
    for member in arena.children(outer.key):
        if member.kind is not MetricSymbolLevel.MEMBER or not member.fully_qualified_name:
            continue
        if extract_method_name(member.fully_qualified_name) == method_name:
            return member
    return None


def _transfer(state_machine: NodeDraft, method: NodeDraft) -> None:
    _copy(state_machine, method, MetricIdentifier.SEQUENCE_COVERAGE)
    # branch points of the generated type belong to the state machine
    # plumbing unless the method reports branches of its own
    if MetricIdentifier.BRANCH_COVERAGE in method.metrics:
        _copy(state_machine, method, MetricIdentifier.BRANCH_COVERAGE)
    for metric in _COMPLEXITY:
        _copy(state_machine, method, metric)
    method.includes_state_machine_coverage = True


# ---------------------------------------------------------------------------
# Type sources
# ---------------------------------------------------------------------------

def backfill_type_sources(arena: NodeArena) -> int:
    """Give types without a complete location one derived from their members.

    The file holding most located members wins, ties going to the file whose
    first member starts earliest. A path or line the type already has is
    kept. Returns how many types were updated.
    """
    filled = 0
    for draft in arena.nodes(MetricSymbolLevel.TYPE):
        existing = draft.source
        has_path = existing is not None and bool(existing.path and existing.path.strip())
        if has_path and existing.start_line is not None:
            continue
        located = [
            member.source for member in arena.children(draft.key)
            if member.source is not None and member.source.path and member.source.start_line is not None
        ]
        if not located:
            continue

        by_file: dict[str, list[SourceLocation]] = {}
        for source in located:
            by_file.setdefault(normalize_source_path(source.path), []).append(source)
        _, group = min(
            by_file.items(),
            key=lambda item: (-len(item[1]), min(s.start_line for s in item[1]), item[0]),
        )

        start = existing.start_line if existing and existing.start_line is not None else None
        end = existing.end_line if existing and existing.end_line is not None else None
        draft.source = SourceLocation(
            path=existing.path if has_path else group[0].path,
            start_line=start if start is not None else min(s.start_line for s in group),
            end_line=end if end is not None else max(
                s.end_line if s.end_line is not None else s.start_line for s in group
            ),
        )
        filled += 1
    return filled


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _types_by_name(arena: NodeArena) -> list[NodeDraft]:
    return sorted(
        (d for d in arena.nodes(MetricSymbolLevel.TYPE) if d.fully_qualified_name),
        key=lambda d: d.fully_qualified_name,
    )


def _has_coverage(draft: NodeDraft) -> bool:
    for metric in _COVERAGE:
        value = draft.metrics.get(metric)
        if value is not None and value.value:
            return True
    return False


def _copy(source: NodeDraft, target: NodeDraft, metric: MetricIdentifier) -> None:
    incoming = source.metrics.get(metric)
    if incoming is None or incoming.value is None:
        return
    existing = target.metrics.get(metric)
    if existing is not None and existing.value:
        return
    target.metrics[metric] = MetricValue(value=incoming.value, unit=incoming.unit)
