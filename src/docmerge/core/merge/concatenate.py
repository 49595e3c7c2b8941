"""Multi-slide concatenation: one deck holding N substituted copies of the template slides.

Adding a slide to a PresentationML package touches four structures that must
agree with each other:

- the slide part itself (`ppt/slides/slideN.xml` plus its `_rels`)
- a `p:sldId` entry in `ppt/presentation.xml`
- a slide `Relationship` in `ppt/_rels/presentation.xml.rels`
- an `Override` in `[Content_Types].xml`

The template's own entries are removed from all four before the copies are
appended, otherwise the un-substituted template slides would lead the deck.
"""
from __future__ import annotations

import copy
import logging
import re
import zipfile
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from lxml import etree
from pptx.opc.constants import CONTENT_TYPE as CT
from pptx.opc.constants import RELATIONSHIP_TYPE as RT
from pptx.oxml.ns import qn

from docmerge.core.merge.merge_engine import substitute_tree
from docmerge.core.ooxml.errors import InvalidPackage, UnsupportedFormat
from docmerge.core.ooxml.package import (
    APP_PROPS_PART,
    CONTENT_TYPES_PART,
    NS_CT,
    NS_REL,
    PRESENTATION_PART,
    PRESENTATION_RELS_PART,
    ArchiveEntries,
    Package,
    PackageKind,
    clone_info,
    load,
    parse_xml,
    read_entries,
    rels_part_for,
    serialize_xml,
    slide_part_names,
    write_entries,
)
from docmerge.core.ooxml.units import parse_emu

logger = logging.getLogger(__name__)

NS_P14 = "http://schemas.microsoft.com/office/powerpoint/2010/main"
NS_EP = "http://schemas.openxmlformats.org/officeDocument/2006/extended-properties"

SLIDE_OVERRIDE_RE = re.compile(r"^/ppt/slides/slide\d+\.xml$")
PER_SLIDE_PART_RE = re.compile(
    r"^ppt/(notesSlides/(_rels/)?notesSlide\d+\.xml(\.rels)?|comments/(_rels/)?comment\d+\.xml(\.rels)?)$"
)
PER_SLIDE_OVERRIDE_RE = re.compile(r"^/ppt/(notesSlides/notesSlide|comments/comment)\d+\.xml$")
# Targets owned by exactly one slide; copies cannot share them.
PER_SLIDE_RELATIONSHIPS = (RT.NOTES_SLIDE, RT.COMMENTS)
_RID_RE = re.compile(r"^rId(\d+)$")

# sldId values live in [256, 2^31); relationship ids of a plain template stay far below 1000.
MIN_SLIDE_ID = 256
REL_ID_FLOOR = 1000


@dataclass(frozen=True)
class SlideAllocation:
    part_number: int
    slide_id: int
    rel_id: str

    @property
    def part_name(self) -> str:
        return f"ppt/slides/slide{self.part_number}.xml"

    @property
    def target(self) -> str:
        # relative to ppt/presentation.xml
        return f"slides/slide{self.part_number}.xml"


@dataclass(frozen=True)
class SlideCounter:
    """Identifier state threaded through one concatenation.

    `advance()` returns the allocation for the next slide together with the
    counter to use afterwards; the value itself never changes.
    """

    next_part: int = 1
    next_slide_id: int = MIN_SLIDE_ID
    next_rel_id: int = REL_ID_FLOOR + 1

    @classmethod
    def seed(cls, presentation: etree._Element, relationships: etree._Element) -> "SlideCounter":
        """Start above every slide id and numeric `rIdN` already present in the package."""
        slide_ids = [parse_emu(el.get("id"), 0) for el in presentation.iter(qn("p:sldId"))]
        rel_nums = []
        for rel in relationships.iter(f"{{{NS_REL}}}Relationship"):
            m = _RID_RE.match(rel.get("Id") or "")
            if m:
                rel_nums.append(int(m.group(1)))
        return cls(
            next_part=1,
            next_slide_id=max([MIN_SLIDE_ID - 1, *slide_ids]) + 1,
            next_rel_id=max([REL_ID_FLOOR, *rel_nums]) + 1,
        )

    def advance(self) -> tuple[SlideAllocation, "SlideCounter"]:
        alloc = SlideAllocation(
            part_number=self.next_part,
            slide_id=self.next_slide_id,
            rel_id=f"rId{self.next_rel_id}",
        )
        return alloc, SlideCounter(self.next_part + 1, self.next_slide_id + 1, self.next_rel_id + 1)


@dataclass
class _TemplateSlide:
    name: str
    info: zipfile.ZipInfo
    root: etree._Element
    rels_info: zipfile.ZipInfo | None
    rels: bytes | None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _parse_required(entries: ArchiveEntries, name: str) -> etree._Element:
    if name not in entries:
        raise InvalidPackage(f"template has no {name}")
    try:
        return parse_xml(entries[name][1])
    except etree.XMLSyntaxError as exc:
        raise InvalidPackage(f"{name} is not well-formed XML: {exc}") from exc


def _shared_relationships(rels: bytes, name: str) -> bytes | None:
    """Slide rels minus notes and comments relationships, or None when nothing is left.

    Layouts, media and hyperlinks are shared by every copy of the slide.
    """
    try:
        root = parse_xml(rels)
    except etree.XMLSyntaxError as exc:
        raise InvalidPackage(f"{name} is not well-formed XML: {exc}") from exc
    removed = False
    for rel in list(root):
        if rel.get("Type") in PER_SLIDE_RELATIONSHIPS:
            root.remove(rel)
            removed = True
    if len(root) == 0:
        return None
    return serialize_xml(root) if removed else rels


def _template_slides(entries: ArchiveEntries) -> list[_TemplateSlide]:
    out: list[_TemplateSlide] = []
    for name in slide_part_names(entries):
        info, raw = entries[name]
        try:
            root = parse_xml(raw)
        except etree.XMLSyntaxError as exc:
            raise InvalidPackage(f"{name} is not well-formed XML: {exc}") from exc

        rels_name = rels_part_for(name)
        rels_info, rels = None, None
        if rels_name in entries:
            rels_info, raw_rels = entries[rels_name]
            rels = _shared_relationships(raw_rels, rels_name)
        out.append(_TemplateSlide(name, info, root, rels_info, rels))
    return out


def _clear_slide_list(presentation: etree._Element) -> etree._Element:
    """Empty (or create) p:sldIdLst and return it."""
    lst = presentation.find(qn("p:sldIdLst"))
    if lst is None:
        lst = etree.Element(qn("p:sldIdLst"))
        anchor = None
        for tag in ("p:handoutMasterIdLst", "p:notesMasterIdLst", "p:sldMasterIdLst"):
            anchor = presentation.find(qn(tag))
            if anchor is not None:
                break
        if anchor is not None:
            anchor.addnext(lst)
        else:
            presentation.insert(0, lst)
    for el in list(lst):
        lst.remove(el)
    return lst


def _drop_slide_references(presentation: etree._Element) -> None:
    """Custom shows and sections list slide ids that no longer exist."""
    cust = presentation.find(qn("p:custShowLst"))
    if cust is not None:
        presentation.remove(cust)
    ext_lst = presentation.find(qn("p:extLst"))
    if ext_lst is None:
        return
    for ext in list(ext_lst):
        if ext.find(f"{{{NS_P14}}}sectionLst") is not None:
            ext_lst.remove(ext)


def _clear_slide_relationships(relationships: etree._Element) -> None:
    for rel in list(relationships):
        if rel.get("Type") == RT.SLIDE:
            relationships.remove(rel)


def _clear_overrides(types: etree._Element) -> None:
    for ov in list(types):
        if ov.tag != f"{{{NS_CT}}}Override":
            continue
        part = ov.get("PartName") or ""
        if SLIDE_OVERRIDE_RE.match(part) or PER_SLIDE_OVERRIDE_RE.match(part):
            types.remove(ov)


def _remove_template_parts(entries: ArchiveEntries, slides: Sequence[_TemplateSlide]) -> None:
    for tpl in slides:
        entries.pop(tpl.name, None)
        entries.pop(rels_part_for(tpl.name), None)
    for name in [n for n in entries if PER_SLIDE_PART_RE.match(n)]:
        del entries[name]


def _append_slide(
    slide_list: etree._Element,
    relationships: etree._Element,
    types: etree._Element,
    alloc: SlideAllocation,
) -> None:
    sld = etree.SubElement(slide_list, qn("p:sldId"))
    sld.set("id", str(alloc.slide_id))
    sld.set(qn("r:id"), alloc.rel_id)

    rel = etree.SubElement(relationships, f"{{{NS_REL}}}Relationship")
    rel.set("Id", alloc.rel_id)
    rel.set("Type", RT.SLIDE)
    rel.set("Target", alloc.target)

    ov = etree.SubElement(types, f"{{{NS_CT}}}Override")
    ov.set("PartName", f"/{alloc.part_name}")
    ov.set("ContentType", CT.PML_SLIDE)


def _update_app_slide_count(entries: ArchiveEntries, count: int) -> None:
    if APP_PROPS_PART not in entries:
        return
    info, raw = entries[APP_PROPS_PART]
    try:
        root = parse_xml(raw)
    except etree.XMLSyntaxError:
        # docProps are informational; a damaged one is left as it was
        logger.warning("%s is not well-formed; slide count not updated", APP_PROPS_PART)
        return
    el = root.find(f"{{{NS_EP}}}Slides")
    if el is None:
        return
    el.text = str(count)
    entries[APP_PROPS_PART] = (info, serialize_xml(root))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def concatenate(
    package: Package,
    rows: Sequence[Mapping[str, Any]],
    mapping: Mapping[str, str],
    *,
    counter: SlideCounter | None = None,
) -> Package:
    """One presentation with the template slides repeated and filled for every row.

    Slides are emitted row-major: all template slides for row 0, then row 1...
    Zero rows yield a valid deck without slides.

    Raises:
        UnsupportedFormat: `package` is a document; export one file per row instead.
        InvalidPackage: presentation, relationship or content-type parts are missing
            or not well-formed.
    """
    if package.kind is not PackageKind.SLIDES:
        raise UnsupportedFormat(
            f"cannot concatenate a {package.kind.value} package; export one file per row instead"
        )

    entries = read_entries(package.data)
    presentation = _parse_required(entries, PRESENTATION_PART)
    relationships = _parse_required(entries, PRESENTATION_RELS_PART)
    types = _parse_required(entries, CONTENT_TYPES_PART)
    templates = _template_slides(entries)

    if counter is None:
        counter = SlideCounter.seed(presentation, relationships)

    slide_list = _clear_slide_list(presentation)
    _drop_slide_references(presentation)
    _clear_slide_relationships(relationships)
    _clear_overrides(types)
    _remove_template_parts(entries, templates)

    total = 0
    for row in rows:
        for tpl in templates:
            alloc, counter = counter.advance()
            slide = copy.deepcopy(tpl.root)
            substitute_tree(slide, row, mapping)

            entries[alloc.part_name] = (clone_info(tpl.info, alloc.part_name), serialize_xml(slide))
            if tpl.rels is not None and tpl.rels_info is not None:
                rels_name = rels_part_for(alloc.part_name)
                entries[rels_name] = (clone_info(tpl.rels_info, rels_name), tpl.rels)

            _append_slide(slide_list, relationships, types, alloc)
            total += 1

    entries[PRESENTATION_PART] = (entries[PRESENTATION_PART][0], serialize_xml(presentation))
    entries[PRESENTATION_RELS_PART] = (entries[PRESENTATION_RELS_PART][0], serialize_xml(relationships))
    entries[CONTENT_TYPES_PART] = (entries[CONTENT_TYPES_PART][0], serialize_xml(types))
    _update_app_slide_count(entries, total)

    logger.debug(
        "concatenated %d row(s) x %d template slide(s) = %d slide(s)",
        len(rows), len(templates), total,
    )
    return load(write_entries(entries))
