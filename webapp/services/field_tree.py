"""
Field Tree - the bundled field taxonomy and its flattened row model.

The taxonomy groups reportable field codes into named sections; each code may
have child codes. The comparison page renders one section as a flat list of
rows annotated with depth and ancestor path, and hides rows whose ancestors
are collapsed.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Iterable

from webapp.config import TAXONOMY_FILE

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CodeNode:
    code: str
    children: tuple[CodeNode, ...] = ()


@dataclass(frozen=True)
class Section:
    name: str
    children: tuple[CodeNode, ...] = ()


@dataclass(frozen=True)
class FlattenedFieldRow:
    code: str
    depth: int
    has_children: bool
    path: tuple[str, ...] = field(default_factory=tuple)


def _parse_node(raw: dict) -> CodeNode | None:
    code = raw.get("code") if isinstance(raw, dict) else None
    if not code:
        log.warning("Skipping taxonomy node without a code: %r", raw)
        return None
    children = tuple(n for n in (_parse_node(c) for c in raw.get("children") or []) if n is not None)
    return CodeNode(code=str(code), children=children)


def parse_taxonomy(data: list[dict]) -> tuple[Section, ...]:
    sections = []
    for raw in data or []:
        name = raw.get("section") if isinstance(raw, dict) else None
        if not name:
            log.warning("Skipping taxonomy entry without a section name")
            continue
        children = tuple(n for n in (_parse_node(c) for c in raw.get("children") or []) if n is not None)
        sections.append(Section(name=name, children=children))
    return tuple(sections)


@lru_cache(maxsize=4)
def load_taxonomy(path: Path = TAXONOMY_FILE) -> tuple[Section, ...]:
    """Load and parse the taxonomy JSON once per path."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    sections = parse_taxonomy(data)
    log.info("Loaded %d taxonomy sections from %s", len(sections), Path(path).name)
    return sections


def section_names(taxonomy: Iterable[Section]) -> list[str]:
    return [s.name for s in taxonomy]


def find_section(taxonomy: Iterable[Section], name: str | None) -> Section | None:
    for section in taxonomy:
        if section.name == name:
            return section
    return None


def flatten_nodes(nodes: Iterable[CodeNode], depth: int = 0, parent_path: tuple[str, ...] = ()) -> list[FlattenedFieldRow]:
    """Pre-order walk in input order."""
    rows: list[FlattenedFieldRow] = []
    for node in nodes:
        path = parent_path + (node.code,)
        has_children = len(node.children) > 0
        rows.append(FlattenedFieldRow(code=node.code, depth=depth, has_children=has_children, path=path))
        if has_children:
            rows.extend(flatten_nodes(node.children, depth + 1, path))
    return rows


def flatten_section(taxonomy: Iterable[Section], section_name: str | None) -> list[FlattenedFieldRow]:
    """Flatten one section's tree. Unknown sections flatten to nothing."""
    section = find_section(taxonomy, section_name)
    if section is None:
        if section_name:
            log.info("Unknown field section %r", section_name)
        return []
    return flatten_nodes(section.children)


def is_visible(row: FlattenedFieldRow, expanded: set[str] | frozenset[str]) -> bool:
    """Top-level rows always show; deeper rows need every ancestor expanded."""
    if row.depth == 0:
        return True
    return all(code in expanded for code in row.path[:-1])


def visible_rows(rows: Iterable, expanded: set[str] | frozenset[str]) -> list:
    """Filter rows (anything with ``depth`` and ``path``) by expansion state."""
    return [r for r in rows if is_visible(r, expanded)]


def toggle_expanded(expanded: Iterable[str], code: str) -> list[str]:
    """Expansion set after clicking ``code``, order-stable for URLs."""
    current = list(dict.fromkeys(expanded))
    if code in current:
        current.remove(code)
    else:
        current.append(code)
    return current
