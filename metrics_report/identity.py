"""Fully qualified names built while walking a declaration tree.

Usage:
    builder = FullyQualifiedNameBuilder()
    builder.push_namespace("Company.Product")
    builder.push_type("Outer")
    builder.push_type("Inner")
    builder.build_type_fqn()                  # "Company.Product.Outer.Inner"
    builder.build_member_fqn("Run(int x)")    # "Company.Product.Outer.Inner.Run(...)"
    builder.build_property_fqn("Name")        # "Company.Product.Outer.Inner.Name"
"""

from metrics_report.normalizer import normalize_fully_qualified_method_name


class FullyQualifiedNameBuilder:
    """Tracks the namespace and type scopes of a structural walk."""

    def __init__(self) -> None:
        self._namespaces: list[str] = []
        self._types: list[str] = []

    # ------------------------------------------------------------------
    # Scope tracking
    # ------------------------------------------------------------------

    def push_namespace(self, name: str) -> None:
        self._namespaces.append(name)

    def pop_namespace(self) -> None:
        if self._namespaces:
            self._namespaces.pop()

    def push_type(self, name: str) -> None:
        self._types.append(name)

    def pop_type(self) -> None:
        if self._types:
            self._types.pop()

    @property
    def has_type(self) -> bool:
        return bool(self._types)

    # ------------------------------------------------------------------
    # Name building
    # ------------------------------------------------------------------

    def build_type_fqn(self) -> str | None:
        """Outer-first join of the type stack, prefixed with the namespaces.

        Returns None outside of any type declaration.
        """
        if not self._types:
            return None
        type_path = ".".join(self._types)
        namespace = ".".join(part for part in self._namespaces if part)
        return f"{namespace}.{type_path}" if namespace else type_path

    def build_member_fqn(self, member_signature: str) -> str | None:
        """FQN of a method in the current type, in canonical ``(...)`` form."""
        type_fqn = self.build_type_fqn()
        if type_fqn is None:
            return None
        signature = member_signature if "(" in member_signature else f"{member_signature}()"
        return normalize_fully_qualified_method_name(f"{type_fqn}.{signature}")

    def build_property_fqn(self, property_name: str) -> str | None:
        type_fqn = self.build_type_fqn()
        if type_fqn is None:
            return None
        return f"{type_fqn}.{property_name}"
