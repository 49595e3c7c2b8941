"""
consistency.py: Cross-checks the slide structures of a presentation package.

A slide is reachable only when all of these agree:
  p:sldIdLst/p:sldId     unique `id`, `r:id` naming one relationship
  presentation.xml.rels  slide relationship whose Target exists in the archive
  [Content_Types].xml    exactly one Override for that target

Import:
    from docmerge.core.ooxml.consistency import check_slide_consistency
    problems = check_slide_consistency(package)  # [] == consistent
"""
from __future__ import annotations

from collections import Counter

from lxml import etree
from pptx.opc.constants import RELATIONSHIP_TYPE as RT
from pptx.oxml.ns import qn

from .package import (
    CONTENT_TYPES_PART,
    NS_CT,
    NS_REL,
    PRESENTATION_PART,
    PRESENTATION_RELS_PART,
    Package,
    PackageKind,
    parse_xml,
    read_entries,
    resolve_target,
    slide_part_names,
)

# ---------------------------------------------------------------------------
# Internal checkers
# ---------------------------------------------------------------------------


def _check_slide_ids(slide_ids: list[etree._Element]) -> list[str]:
    errs: list[str] = []
    counts = Counter(el.get("id") for el in slide_ids)
    for sid, n in counts.items():
        if sid is None:
            errs.append("p:sldId without id attribute")
        elif n > 1:
            errs.append(f"slide id {sid} used {n} times")
    return errs


def _check_references(
    slide_ids: list[etree._Element],
    rels_by_id: dict[str, list[etree._Element]],
) -> list[str]:
    errs: list[str] = []
    for el in slide_ids:
        rid = el.get(qn("r:id"))
        found = rels_by_id.get(rid or "", [])
        if len(found) != 1:
            errs.append(f"slide id {el.get('id')}: r:id {rid!r} matches {len(found)} relationship(s)")
        elif found[0].get("Type") != RT.SLIDE:
            errs.append(f"slide id {el.get('id')}: r:id {rid!r} is not a slide relationship")
    return errs


def _check_targets(
    slide_rels: list[etree._Element],
    overrides: Counter,
    names: set[str],
) -> list[str]:
    errs: list[str] = []
    for rel in slide_rels:
        part = resolve_target(PRESENTATION_PART, rel.get("Target") or "")
        if part not in names:
            errs.append(f"{rel.get('Id')}: target {part} missing from archive")
        n = overrides.get(f"/{part}", 0)
        if n != 1:
            errs.append(f"{rel.get('Id')}: target {part} has {n} content-type override(s)")
    return errs


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def check_slide_consistency(package: Package) -> list[str]:
    """Return a list of problems; an empty list means the slide structures agree.

    Document packages have no slide list and always pass.
    """
    if package.kind is not PackageKind.SLIDES:
        return []

    entries = read_entries(package.data)
    roots: dict[str, etree._Element] = {}
    errs: list[str] = []
    for name in (PRESENTATION_PART, PRESENTATION_RELS_PART, CONTENT_TYPES_PART):
        if name not in entries:
            errs.append(f"missing {name}")
            continue
        try:
            roots[name] = parse_xml(entries[name][1])
        except etree.XMLSyntaxError as exc:
            errs.append(f"{name}: not well-formed ({exc})")
    if errs:
        return errs

    slide_ids = list(roots[PRESENTATION_PART].iter(qn("p:sldId")))
    relationships = list(roots[PRESENTATION_RELS_PART].iter(f"{{{NS_REL}}}Relationship"))
    rels_by_id: dict[str, list[etree._Element]] = {}
    for rel in relationships:
        rels_by_id.setdefault(rel.get("Id") or "", []).append(rel)
    slide_rels = [rel for rel in relationships if rel.get("Type") == RT.SLIDE]
    overrides = Counter(
        ov.get("PartName") for ov in roots[CONTENT_TYPES_PART].iter(f"{{{NS_CT}}}Override")
    )

    errs.extend(_check_slide_ids(slide_ids))
    errs.extend(_check_references(slide_ids, rels_by_id))
    errs.extend(_check_targets(slide_rels, overrides, set(entries)))

    referenced = {el.get(qn("r:id")) for el in slide_ids}
    for rel in slide_rels:
        if rel.get("Id") not in referenced:
            errs.append(f"{rel.get('Id')}: slide relationship not in the slide list")

    targets = {resolve_target(PRESENTATION_PART, rel.get("Target") or "") for rel in slide_rels}
    for name in slide_part_names(entries):
        if name not in targets:
            errs.append(f"{name}: slide part not referenced by any relationship")
        if overrides.get(f"/{name}", 0) == 0:
            errs.append(f"{name}: slide part has no content-type override")
    return errs
