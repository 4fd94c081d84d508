"""Flat lookup over a PDF's AcroForm field tree.

Field names in templates exported from XFA designers carry array subscripts
(``form1[0].Name[0]``) that callers rarely reproduce. The index therefore
registers every field twice when it can: once under its lower-cased
qualified name and once with the subscripts stripped, the latter only when
no other field already owns that key.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import NamedTuple

from pypdf.generic import DictionaryObject

from pdf_engine import field_children, field_local_name, field_widgets

_INDEX_PATTERN = re.compile(r"\[\d+\]")


@dataclass
class FormField:
    """A node of the field tree together with its fully qualified name."""

    qualified_name: str
    obj: DictionaryObject

    @property
    def widgets(self) -> list[DictionaryObject]:
        return field_widgets(self.obj)


class IndexEntry(NamedTuple):
    original_name: str
    field: FormField


FieldIndex = dict[str, IndexEntry]


def normalize_field_name(name: str | None) -> str:
    return (name or "").strip().lower()


def strip_indices(name: str | None) -> str:
    """Remove numeric array subscripts such as ``[0]`` from a field name."""
    if name is None or not name.strip():
        return ""
    return _INDEX_PATTERN.sub("", name)


def _register(index: FieldIndex, qualified_name: str, node: DictionaryObject) -> None:
    entry = IndexEntry(qualified_name, FormField(qualified_name, node))
    normalized = normalize_field_name(qualified_name)
    index[normalized] = entry

    stripped = normalize_field_name(strip_indices(qualified_name))
    if stripped != normalized:
        index.setdefault(stripped, entry)


def build_field_index(roots: list[DictionaryObject]) -> FieldIndex:
    """Index every field reachable from ``roots``.

    The walk is depth first in document order and uses an explicit stack,
    so the nesting depth of the tree never touches the interpreter's
    recursion limit. Nodes reachable twice (``/Kids`` cycles in damaged
    files) are visited once.
    """
    index: FieldIndex = {}
    visited: set[int] = set()
    stack: list[tuple[DictionaryObject, str | None]] = [(root, None) for root in reversed(roots)]

    while stack:
        node, parent_name = stack.pop()
        if id(node) in visited:
            continue
        visited.add(id(node))

        local_name = field_local_name(node)
        if local_name is None:
            qualified_name = parent_name
        elif parent_name:
            qualified_name = f"{parent_name}.{local_name}"
        else:
            qualified_name = local_name

        if qualified_name and qualified_name.strip():
            _register(index, qualified_name, node)

        for child in reversed(field_children(node)):
            stack.append((child, qualified_name))

    return index


def resolve_field(index: FieldIndex, name: str) -> IndexEntry | None:
    """Find the entry for a caller-supplied field name.

    The exact normalized name wins; the subscript-stripped form of the
    caller's input is only tried when it differs from it.
    """
    normalized = normalize_field_name(name)
    entry = index.get(normalized)
    if entry is not None:
        return entry

    stripped = normalize_field_name(strip_indices(name))
    if stripped != normalized:
        return index.get(stripped)
    return None


def field_name_sample(index: FieldIndex, limit: int) -> list[str]:
    """Distinct qualified names in index order, at most ``limit`` of them."""
    names = dict.fromkeys(entry.original_name for entry in index.values())
    return list(names)[:limit]
