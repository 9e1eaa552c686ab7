"""Canonical symbol names shared by every source.

The analysis tools disagree on how to spell the same symbol: one reports
``Ns.Type.Method(Ns.Other, System.String)``, another ``Method(Other? o, string s)``;
one writes ``List`1``, another ``List<T>``. Everything here maps those spellings
onto one comparable form. All functions are pure and never raise on malformed
text; input they cannot make sense of is returned unchanged.

Functions:
    normalize_method_signature(signature)           -> "Method(...)"
    extract_method_name(signature)                  -> "Method" / ".ctor"
    normalize_type_name(type_name)                  -> "Ns.List"
    normalize_fully_qualified_method_name(fqn)      -> "Ns.Type.Method(...)"
    normalize_member_name(fqn)                      -> method or plain member FQN
    split_member_name(fqn)                          -> ("Ns.Type", "Method(...)")
    is_placeholder_name(name)                       -> bool
    normalize_source_path(path)                     -> "c:/src/orders.cs"
"""

import re
from urllib.parse import unquote

PARAMETER_PLACEHOLDER = "..."
CONSTRUCTOR_NAMES = ("ctor", "cctor")

_ARITY_MARKER = re.compile(r"`+\d+")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def is_placeholder_name(name: str | None) -> bool:
    """True for sentinel names such as ``<global>`` or ``<unknown-assembly>``."""
    if not name or not name.strip():
        return False
    return name.startswith("<") and name.endswith(">")


def normalize_method_signature(signature: str | None) -> str | None:
    """Replace the contents of the first balanced parameter list with ``...``.

    ``Method(Ns.Type, Ns.Type2)`` and ``Method(Type? t, Type2 other)`` both
    become ``Method(...)``.
    """
    if not signature or not signature.strip():
        return signature
    start = signature.find("(")
    if start < 0:
        return signature
    end = _find_closing(signature, start, "(", ")")
    if end < 0:
        return signature
    return signature[:start + 1] + PARAMETER_PLACEHOLDER + signature[end:]


def extract_method_name(signature: str | None) -> str | None:
    """Return the bare method name of a signature or fully qualified name.

    A leading return type (anything before the first space that sits ahead
    of the parameter list and outside angle brackets) is skipped. The name
    stops at the parameter list or a ``where`` clause, generic parameter lists
    are dropped and only the last dotted segment is kept. Constructors spelled
    ``Type..ctor`` come back as ``.ctor``.
    """
    if not signature or not signature.strip():
        return signature

    paren = signature.find("(")
    end = paren if paren >= 0 else len(signature)
    start = _skip_return_type(signature, end)
    where = signature.find(" where ")
    if start <= where < end:
        end = where

    name = signature[start:end]
    generic = name.find("<")
    if generic > 0:
        close = _find_closing(name, generic, "<", ">")
        if close >= 0 and _ends_generic_list(name, close):
            name = name[:generic]
    name = _ARITY_MARKER.sub("", name).strip()

    last_dot = name.rfind(".")
    extracted = name[last_dot + 1:].strip() if last_dot >= 0 else name
    if extracted in CONSTRUCTOR_NAMES and last_dot > 0 and name[last_dot - 1] == ".":
        return "." + extracted
    return extracted


def normalize_type_name(type_name: str | None) -> str | None:
    """Drop generic arity markers and generic argument lists from a type name.

    ``Ns.Dictionary`2`` and ``Ns.Dictionary<K, V>`` both become
    ``Ns.Dictionary``. Angle brackets that do not follow an identifier, as in
    the compiler-generated ``Outer+<Run>d__4``, are kept, and so are sentinel
    names like ``<global>``. An opening bracket that is never closed cuts the
    name short.
    """
    if not type_name or not type_name.strip():
        return type_name
    if is_placeholder_name(type_name):
        return type_name
    return _strip_generic_lists(_ARITY_MARKER.sub("", type_name)).strip()


def normalize_fully_qualified_method_name(fqn: str | None) -> str | None:
    """Canonical ``Ns.Type.Method(...)`` form of a fully qualified method name."""
    if not fqn or not fqn.strip():
        return fqn
    type_part, member_part = split_member_name(fqn)
    if type_part:
        type_part = normalize_type_name(type_part)
    member_part = _strip_method_generics(member_part)
    joined = _join_member(type_part, member_part)
    return normalize_method_signature(joined)


def normalize_member_name(fqn: str | None) -> str | None:
    """Normalize any member FQN: methods get the ``(...)`` form, other members
    keep their name and only have the declaring type normalized."""
    if not fqn or not fqn.strip():
        return fqn
    if "(" in fqn:
        return normalize_fully_qualified_method_name(fqn)
    type_part, member_part = split_member_name(fqn)
    if not type_part:
        return fqn.strip()
    return _join_member(normalize_type_name(type_part), member_part.strip())


def normalize_source_path(path: str | None) -> str:
    """Comparable form of a source file path or ``file:`` URI.

    Separators become ``/``, a ``file:`` scheme is dropped and case is
    folded, so ``C:\\src\\Orders.cs`` and ``file:///c:/src/Orders.cs``
    compare equal.
    """
    if not path:
        return ""
    text = path.strip().replace("\\", "/")
    if text.lower().startswith("file:"):
        text = unquote(text[5:])
    return text.lstrip("/").casefold()


def split_member_name(fqn: str) -> tuple[str, str]:
    """Split a member FQN into its declaring type and its member part.

    The separator is the last dot before the parameter list that is not
    inside a generic argument list. For ``Ns.Type..ctor(...)`` the member part
    keeps its leading dot: ``("Ns.Type", ".ctor(...)")``. Returns an empty
    type part when there is no separator.
    """
    paren = fqn.find("(")
    search_end = paren if paren >= 0 else len(fqn)
    depth = 0
    for index in range(search_end - 1, -1, -1):
        ch = fqn[index]
        if ch == ">":
            depth += 1
        elif ch == "<":
            depth -= 1
        elif ch == "." and depth <= 0:
            if index > 0 and fqn[index - 1] == ".":
                return fqn[:index - 1], fqn[index:]
            return fqn[:index], fqn[index + 1:]
    return "", fqn


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _join_member(type_part: str | None, member_part: str) -> str:
    if not type_part:
        return member_part
    return f"{type_part}.{member_part}"


def _strip_method_generics(member_part: str) -> str:
    paren = member_part.find("(")
    name_end = paren if paren >= 0 else len(member_part)
    name = _ARITY_MARKER.sub("", member_part[:name_end])
    rest = member_part[name_end:]
    generic = name.find("<")
    if generic > 0 and _is_identifier_char(name[generic - 1]):
        close = _find_closing(name, generic, "<", ">")
        if close >= 0 and _ends_generic_list(name, close):
            name = name[:generic] + name[close + 1:]
    return name.rstrip() + rest if rest else name.strip()


def _strip_generic_lists(text: str) -> str:
    out: list[str] = []
    index = 0
    while index < len(text):
        ch = text[index]
        if ch == "<" and index > 0 and _is_identifier_char(text[index - 1]):
            close = _find_closing(text, index, "<", ">")
            if close < 0:
                break
            index = close + 1
            continue
        out.append(ch)
        index += 1
    return "".join(out)


def _skip_return_type(text: str, limit: int) -> int:
    depth = 0
    for index in range(limit):
        ch = text[index]
        if ch == "<":
            depth += 1
        elif ch == ">":
            depth -= 1
        elif ch == " " and depth <= 0:
            return index + 1
    return 0


def _ends_generic_list(text: str, close: int) -> bool:
    after = close + 1
    return after >= len(text) or text[after] in " ()"


def _is_identifier_char(ch: str) -> bool:
    return ch.isalnum() or ch == "_"


def _find_closing(text: str, start: int, opening: str, closing: str) -> int:
    depth = 0
    for index in range(start, len(text)):
        ch = text[index]
        if ch == opening:
            depth += 1
        elif ch == closing:
            depth -= 1
            if depth == 0:
                return index
    return -1
