"""Placeholder discovery and column auto-mapping.

Tokens use a fixed `{{name}}` syntax; a name is any run of characters other
than the braces themselves. Auto-mapping is a best-effort heuristic:

1. exact match after normalization (lowercase, no diacritics, alphanumerics only)
2. first column whose normalized name contains, or is contained in, the token
3. otherwise no suggestion

Ties go to the first column in the order given.
"""
from __future__ import annotations

import re
import unicodedata
from typing import Iterable, Mapping, Sequence

from docmerge.core.ooxml.model import TextElement, VisualElement

TOKEN_RE = re.compile(r"\{\{([^{}]+)\}\}")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")


def find_tokens(text: str) -> list[str]:
    """Token names in order of appearance (duplicates kept)."""
    return TOKEN_RE.findall(text or "")


def scan(elements: Iterable[VisualElement]) -> set[str]:
    found: set[str] = set()
    for el in elements:
        if isinstance(el, TextElement):
            found.update(find_tokens(el.content))
    return found


def normalize_name(s: str) -> str:
    decomposed = unicodedata.normalize("NFD", str(s).lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _NON_ALNUM_RE.sub("", stripped)


def suggest(token: str, columns: Sequence[str]) -> str | None:
    target = normalize_name(token)
    if not target:
        return None

    normalized = [(col, normalize_name(col)) for col in columns]
    normalized = [(col, norm) for col, norm in normalized if norm]

    for col, norm in normalized:
        if norm == target:
            return col
    for col, norm in normalized:
        if norm in target or target in norm:
            return col
    return None


def auto_map(
    tokens: Iterable[str],
    columns: Sequence[str],
    mapping: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Fill unset tokens with suggestions; entries the user already set are kept.

    Returns a new mapping; the input mapping is not modified.
    """
    out: dict[str, str] = dict(mapping or {})
    for token in tokens:
        if out.get(token):
            continue
        best = suggest(token, columns)
        if best:
            out[token] = best
    return out
