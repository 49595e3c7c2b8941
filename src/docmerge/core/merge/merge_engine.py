"""Placeholder substitution over the XML parts of a package.

Each call reads a private copy of the archive entries, parses the target
parts, rewrites text nodes and writes a new archive. The input Package and its
bytes are never touched, so one template can be merged against many rows.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import replace
from typing import Any, Mapping

from lxml import etree
from pptx.oxml.ns import qn

from docmerge.core.ooxml.errors import InvalidPackage
from docmerge.core.ooxml.package import (
    NS_W,
    SLIDE_PART_RE,
    Package,
    PackageKind,
    parse_xml,
    read_entries,
    serialize_xml,
    write_entries,
)
from docmerge.core.placeholders.resolver import TOKEN_RE

logger = logging.getLogger(__name__)

_TEXT_TAGS = (qn("a:t"), f"{{{NS_W}}}t")
_PARAGRAPH_TAGS = (qn("a:p"), f"{{{NS_W}}}p")
_W_TEXT = f"{{{NS_W}}}t"
_XML_SPACE = "{http://www.w3.org/XML/1998/namespace}space"


def display_value(value: Any) -> str:
    """Cell value as shown in a document: None/NaN -> "", 100.0 -> "100"."""
    if value is None:
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value)


def _lookup(token: str, row: Mapping[str, Any], mapping: Mapping[str, str]) -> str:
    column = mapping.get(token) or mapping.get(token.strip())
    if not column:
        return ""
    return display_value(row.get(column))


def _node_at(bounds: list[tuple[int, int]], offset: int) -> int:
    for i, (start, end) in enumerate(bounds):
        if start <= offset < end:
            return i
    return len(bounds) - 1


def coalesce_split_tokens(texts: list[str]) -> list[str]:
    """Move every token that spans several runs into the first run it touches.

    ["Hello {{na", "me}}!"] -> ["Hello {{name}}!", ""]. Runs not involved in
    a split token keep their text (and so their formatting).
    """
    out = list(texts)
    while True:
        bounds: list[tuple[int, int]] = []
        pos = 0
        for t in out:
            bounds.append((pos, pos + len(t)))
            pos += len(t)

        split = None
        for m in TOKEN_RE.finditer("".join(out)):
            first = _node_at(bounds, m.start())
            last = _node_at(bounds, m.end() - 1)
            if first != last:
                split = (first, last)
                break
        if split is None:
            return out

        first, last = split
        out[first] = "".join(out[first:last + 1])
        for k in range(first + 1, last + 1):
            out[k] = ""


def _text_groups(root: etree._Element) -> list[list[etree._Element]]:
    """Text nodes grouped by their nearest enclosing paragraph, in document order."""
    groups: dict[etree._Element, list[etree._Element]] = {}
    for t in root.iter(*_TEXT_TAGS):
        p = next(t.iterancestors(*_PARAGRAPH_TAGS), None)
        groups.setdefault(p if p is not None else t, []).append(t)
    return list(groups.values())


def substitute_tree(root: etree._Element, row: Mapping[str, Any], mapping: Mapping[str, str]) -> int:
    """Replace every `{{token}}` below `root` in place; returns the replacement count."""
    total = 0

    def repl(m: re.Match[str]) -> str:
        return _lookup(m.group(1), row, mapping)

    for nodes in _text_groups(root):
        texts = [t.text or "" for t in nodes]
        if not TOKEN_RE.search("".join(texts)):
            continue

        for node, text in zip(nodes, coalesce_split_tokens(texts)):
            new, n = TOKEN_RE.subn(repl, text)
            total += n
            if new == (node.text or ""):
                continue
            node.text = new
            if node.tag == _W_TEXT and new != new.strip():
                node.set(_XML_SPACE, "preserve")

    return total


def is_merge_target(kind: PackageKind, name: str) -> bool:
    if kind is PackageKind.DOCUMENT:
        return name.startswith("word/") and name.endswith(".xml")
    return SLIDE_PART_RE.match(name) is not None


def merge(package: Package, row: Mapping[str, Any], mapping: Mapping[str, str]) -> Package:
    """Return a new Package with every placeholder of `package` filled from `row`.

    Missing mappings and missing row values become empty strings.

    Raises:
        InvalidPackage: the archive or one of the target parts cannot be parsed.
    """
    entries = read_entries(package.data)
    changed = 0

    for name in [n for n in entries if is_merge_target(package.kind, n)]:
        info, raw = entries[name]
        try:
            root = parse_xml(raw)
        except etree.XMLSyntaxError as exc:
            raise InvalidPackage(f"{name} is not well-formed XML: {exc}") from exc

        count = substitute_tree(root, row, mapping)
        if count:
            entries[name] = (info, serialize_xml(root))
            changed += 1
            logger.debug("%s: %d placeholder(s) replaced", name, count)

    logger.debug("merge rewrote %d part(s)", changed)
    return replace(package, data=write_entries(entries))
