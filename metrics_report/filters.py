"""Exclusion filters applied to raw elements before they reach the tree.

Pattern strings are lists separated by ``,`` or ``;``. A pattern containing
``*`` or ``?`` is an anchored wildcard; any other pattern is an exact or a
substring match depending on the filter.

Usage:
    settings = FilterSettings.from_strings(
        excluded_members="ctor,cctor,MoveNext",
        excluded_types="*.Generated*",
        exclude_fields=True,
    )
    settings.members.should_exclude_method_by_fqn("Ns.Type..ctor(...)")   # True
"""

import re
from dataclasses import dataclass, field
from typing import Callable

from metrics_report.models import MemberKind
from metrics_report.normalizer import extract_method_name, split_member_name

DEFAULT_EXCLUDED_MEMBERS = "ctor,cctor,MoveNext,SetStateMachine"

_DELIMITERS = re.compile(r"[,;]")


def split_patterns(text: str | None) -> list[str]:
    """Split a delimited pattern string, dropping blank entries."""
    if not text or not text.strip():
        return []
    return [part.strip() for part in _DELIMITERS.split(text) if part.strip()]


# ---------------------------------------------------------------------------
# Pattern matcher
# ---------------------------------------------------------------------------

class NamePatternSet:
    """A compiled list of name patterns; a candidate matches if any pattern does."""

    def __init__(self, patterns: list[str], *, exact: bool, ignore_case: bool = False) -> None:
        self.raw_patterns: tuple[str, ...] = tuple(patterns)
        self._ignore_case = ignore_case
        self._predicates = [self._compile(p, exact, ignore_case) for p in patterns]

    @classmethod
    def from_string(cls, text: str | None, *, exact: bool, ignore_case: bool = False) -> "NamePatternSet":
        return cls(split_patterns(text), exact=exact, ignore_case=ignore_case)

    def __bool__(self) -> bool:
        return bool(self.raw_patterns)

    def is_match(self, candidate: str | None) -> bool:
        if not self._predicates or not candidate or not candidate.strip():
            return False
        return any(predicate(candidate) for predicate in self._predicates)

    def describe(self) -> str:
        """Sorted, comma-joined patterns; empty string when there are none."""
        key = str.casefold if self._ignore_case else None
        return ", ".join(sorted(self.raw_patterns, key=key))

    @staticmethod
    def _compile(pattern: str, exact: bool, ignore_case: bool) -> Callable[[str], bool]:
        if "*" in pattern or "?" in pattern:
            body = re.escape(pattern).replace(r"\*", ".*").replace(r"\?", ".")
            regex = re.compile(f"^{body}$", re.IGNORECASE if ignore_case else 0)
            return lambda candidate: regex.match(candidate) is not None
        if ignore_case:
            folded = pattern.casefold()
            if exact:
                return lambda candidate: candidate.casefold() == folded
            return lambda candidate: folded in candidate.casefold()
        if exact:
            return lambda candidate: candidate == pattern
        return lambda candidate: pattern in candidate


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

class MemberFilter:
    """Excludes members by simple name (constructors, state-machine plumbing...)."""

    def __init__(self, patterns: NamePatternSet | None = None) -> None:
        self.patterns = patterns or NamePatternSet([], exact=True)

    @classmethod
    def from_string(cls, text: str | None) -> "MemberFilter":
        # ".ctor" and "ctor" are the same pattern
        parts = [part.lstrip(".") for part in split_patterns(text)]
        return cls(NamePatternSet([part for part in parts if part], exact=True))

    def should_exclude_method(self, method_name: str | None) -> bool:
        if not method_name or not method_name.strip():
            return False
        return self.patterns.is_match(method_name.lstrip("."))

    def should_exclude_method_by_fqn(self, fqn: str | None) -> bool:
        """Name check on a fully qualified member name.

        A member named like its enclosing type is the short spelling of a
        constructor and is excluded whenever constructors are.
        """
        if not fqn or not fqn.strip():
            return False
        method_name = extract_method_name(fqn)
        if self.should_exclude_method(method_name):
            return True
        type_part, _ = split_member_name(fqn)
        if not type_part or not method_name:
            return False
        type_name = re.split(r"[.+/]", type_part)[-1]
        return method_name == type_name and self.should_exclude_method("ctor")

    def describe(self) -> str:
        return self.patterns.describe()


class MemberKindFilter:
    """Excludes members by structural kind, except members with diagnostics."""

    def __init__(self, *, exclude_methods: bool = False, exclude_properties: bool = False,
                 exclude_fields: bool = False, exclude_events: bool = False) -> None:
        self._excluded = {
            MemberKind.METHOD: exclude_methods,
            MemberKind.PROPERTY: exclude_properties,
            MemberKind.FIELD: exclude_fields,
            MemberKind.EVENT: exclude_events,
        }

    @property
    def excluded_kinds(self) -> list[MemberKind]:
        return [kind for kind, excluded in self._excluded.items() if excluded]

    def should_exclude(self, kind: MemberKind | None, has_diagnostics: bool) -> bool:
        if has_diagnostics or kind is None:
            return False
        return self._excluded[kind]


class AssemblyFilter:
    """Case-insensitive substring or wildcard exclusion of assembly names."""

    def __init__(self, patterns: NamePatternSet | None = None) -> None:
        self.patterns = patterns or NamePatternSet([], exact=False, ignore_case=True)

    @classmethod
    def from_string(cls, text: str | None) -> "AssemblyFilter":
        return cls(NamePatternSet.from_string(text, exact=False, ignore_case=True))

    def should_exclude_assembly(self, assembly_name: str | None) -> bool:
        return self.patterns.is_match(assembly_name)

    def describe(self) -> str:
        return self.patterns.describe()


class TypeFilter:
    """Substring or wildcard exclusion of fully qualified type names."""

    def __init__(self, patterns: NamePatternSet | None = None) -> None:
        self.patterns = patterns or NamePatternSet([], exact=False)

    @classmethod
    def from_string(cls, text: str | None) -> "TypeFilter":
        return cls(NamePatternSet.from_string(text, exact=False))

    def should_exclude_type(self, type_fqn: str | None) -> bool:
        return self.patterns.is_match(type_fqn)

    def describe(self) -> str:
        return self.patterns.describe()


@dataclass
class FilterSettings:
    """The four filters the aggregation engine applies."""

    members: MemberFilter = field(default_factory=lambda: MemberFilter.from_string(DEFAULT_EXCLUDED_MEMBERS))
    member_kinds: MemberKindFilter = field(default_factory=MemberKindFilter)
    assemblies: AssemblyFilter = field(default_factory=AssemblyFilter)
    types: TypeFilter = field(default_factory=TypeFilter)

    @classmethod
    def from_strings(
        cls,
        excluded_members: str | None = DEFAULT_EXCLUDED_MEMBERS,
        excluded_assemblies: str | None = None,
        excluded_types: str | None = None,
        *,
        exclude_methods: bool = False,
        exclude_properties: bool = False,
        exclude_fields: bool = False,
        exclude_events: bool = False,
    ) -> "FilterSettings":
        return cls(
            members=MemberFilter.from_string(excluded_members),
            member_kinds=MemberKindFilter(
                exclude_methods=exclude_methods,
                exclude_properties=exclude_properties,
                exclude_fields=exclude_fields,
                exclude_events=exclude_events,
            ),
            assemblies=AssemblyFilter.from_string(excluded_assemblies),
            types=TypeFilter.from_string(excluded_types),
        )
