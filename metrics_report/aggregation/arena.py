"""Mutable node arena used while a report is being built.

Nodes live in one dict keyed by ``(level, scope, fqn)`` and refer to each
other through keys only. ``scope`` is the assembly name for namespaces (the
same namespace may exist in several assemblies) and None everywhere else.
``freeze()`` turns the arena into the immutable ``MetricsNode`` tree.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterator

from metrics_report.catalog import metric_sort_key
from metrics_report.models import (
    MemberKind,
    MetricKey,
    MetricSymbolLevel,
    MetricsNode,
    MetricValue,
    SourceLocation,
)

NodeKey = tuple[MetricSymbolLevel, str | None, str | None]


def node_key(level: MetricSymbolLevel, fqn: str | None, scope: str | None = None) -> NodeKey:
    if level is MetricSymbolLevel.SOLUTION:
        return (level, None, None)
    if level is MetricSymbolLevel.NAMESPACE:
        return (level, scope, fqn)
    return (level, None, fqn)


@dataclass
class NodeDraft:
    key: NodeKey
    kind: MetricSymbolLevel
    name: str
    fully_qualified_name: str | None
    parent: NodeKey | None
    source: SourceLocation | None = None
    metrics: dict[MetricKey, MetricValue] = field(default_factory=dict)
    children: list[NodeKey] = field(default_factory=list)
    member_kind: MemberKind | None = None
    includes_state_machine_coverage: bool = False
    is_new: bool = False


class NodeArena:
    """All nodes of one run, rooted at a single solution node."""

    def __init__(self, solution_name: str) -> None:
        self.root_key = node_key(MetricSymbolLevel.SOLUTION, None)
        self._nodes: dict[NodeKey, NodeDraft] = {
            self.root_key: NodeDraft(
                key=self.root_key,
                kind=MetricSymbolLevel.SOLUTION,
                name=solution_name,
                fully_qualified_name=solution_name,
                parent=None,
            )
        }

    def __contains__(self, key: NodeKey) -> bool:
        return key in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def root(self) -> NodeDraft:
        return self._nodes[self.root_key]

    def get(self, key: NodeKey) -> NodeDraft | None:
        return self._nodes.get(key)

    def ensure(
        self,
        key: NodeKey,
        name: str,
        fully_qualified_name: str | None,
        parent: NodeKey,
    ) -> NodeDraft:
        """Return the node for *key*, creating it under *parent* on first sight."""
        draft = self._nodes.get(key)
        if draft is not None:
            return draft
        draft = NodeDraft(
            key=key,
            kind=key[0],
            name=name,
            fully_qualified_name=fully_qualified_name,
            parent=parent,
        )
        self._nodes[key] = draft
        self._nodes[parent].children.append(key)
        return draft

    def remove(self, key: NodeKey) -> None:
        """Detach *key* from its parent and drop its whole subtree."""
        draft = self._nodes.get(key)
        if draft is None or key == self.root_key:
            return
        if draft.parent is not None:
            self._nodes[draft.parent].children.remove(key)
        pending = [key]
        while pending:
            current = self._nodes.pop(pending.pop())
            pending.extend(current.children)

    def prune(self, key: NodeKey) -> None:
        """Drop *key* and then every ancestor left without children or metrics."""
        parent = self._nodes[key].parent if key in self._nodes else None
        self.remove(key)
        while parent is not None and parent != self.root_key:
            draft = self._nodes[parent]
            if draft.children or draft.metrics:
                return
            parent = draft.parent
            self.remove(draft.key)

    def children(self, key: NodeKey) -> list[NodeDraft]:
        drafts = [self._nodes[child] for child in self._nodes[key].children]
        drafts.sort(key=lambda d: (d.name, d.fully_qualified_name or ""))
        return drafts

    def nodes(self, level: MetricSymbolLevel | None = None) -> Iterator[NodeDraft]:
        for draft in list(self._nodes.values()):
            if level is None or draft.kind is level:
                yield draft

    def post_order(self) -> list[NodeDraft]:
        """Every node, children before their parent, in deterministic order."""
        ordered: list[NodeDraft] = []

        def visit(draft: NodeDraft) -> None:
            for child in self.children(draft.key):
                visit(child)
            ordered.append(draft)

        visit(self.root)
        return ordered

    def freeze(self) -> MetricsNode:
        return self._freeze(self.root)

    def _freeze(self, draft: NodeDraft) -> MetricsNode:
        metrics = {
            metric: draft.metrics[metric]
            for metric in sorted(draft.metrics, key=metric_sort_key)
        }
        return MetricsNode(
            kind=draft.kind,
            name=draft.name,
            fully_qualified_name=draft.fully_qualified_name,
            is_new=draft.is_new,
            source=draft.source,
            metrics=MappingProxyType(metrics),
            children=tuple(self._freeze(child) for child in self.children(draft.key)),
            member_kind=draft.member_kind,
            includes_state_machine_coverage=draft.includes_state_machine_coverage,
        )
