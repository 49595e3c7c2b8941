"""OOXML package loading and archive plumbing.

A `Package` is an immutable value: the raw archive bytes plus metadata derived
once at load time. Every operation that produces output (merge, concatenate)
reads its own private copy of the entries and writes a brand new archive, so a
template Package can be shared freely between calls.
"""
from __future__ import annotations

import io
import logging
import posixpath
import re
import zipfile
import zlib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable

from lxml import etree
from pptx.oxml.ns import qn

from .errors import InvalidPackage
from .units import A4_HEIGHT_EMU, A4_WIDTH_EMU, canvas_size

logger = logging.getLogger(__name__)

# Package-level namespaces (python-pptx's qn() covers the DrawingML/PresentationML ones).
NS_REL = "http://schemas.openxmlformats.org/package/2006/relationships"
NS_CT = "http://schemas.openxmlformats.org/package/2006/content-types"
NS_W = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"

PRESENTATION_PART = "ppt/presentation.xml"
PRESENTATION_RELS_PART = "ppt/_rels/presentation.xml.rels"
CONTENT_TYPES_PART = "[Content_Types].xml"
DOCUMENT_PART = "word/document.xml"
APP_PROPS_PART = "docProps/app.xml"

SLIDE_PART_RE = re.compile(r"^ppt/slides/slide(\d+)\.xml$")

MIME_PPTX = "application/vnd.openxmlformats-officedocument.presentationml.presentation"
MIME_DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
MIME_ZIP = "application/zip"

# Errors zipfile can raise on a damaged archive: bad headers, unsupported
# versions or compression methods, encrypted members, impossible offsets.
ARCHIVE_READ_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError, RuntimeError, ValueError)

ArchiveEntries = dict[str, tuple[zipfile.ZipInfo, bytes]]


class PackageKind(str, Enum):
    SLIDES = "pptx"
    DOCUMENT = "docx"


@dataclass(frozen=True)
class Package:
    """One opened OOXML archive plus sizing/kind metadata."""

    kind: PackageKind
    canvas_width: int   # EMU
    canvas_height: int  # EMU
    part_count: int
    data: bytes = field(repr=False)

    @property
    def mime_type(self) -> str:
        return MIME_PPTX if self.kind is PackageKind.SLIDES else MIME_DOCX

    @property
    def extension(self) -> str:
        return self.kind.value

    def open_archive(self) -> zipfile.ZipFile:
        return zipfile.ZipFile(io.BytesIO(self.data), "r")

    def names(self) -> list[str]:
        with self.open_archive() as zf:
            return zf.namelist()

    def read_part(self, name: str) -> bytes | None:
        """Return the bytes of `name`, or None when the archive has no such entry."""
        with self.open_archive() as zf:
            try:
                return zf.read(name)
            except KeyError:
                return None

    def slide_part_names(self) -> list[str]:
        if self.kind is not PackageKind.SLIDES:
            return []
        return slide_part_names(self.names())


# ---------------------------------------------------------------------------
# XML helpers
# ---------------------------------------------------------------------------


def parse_xml(data: bytes) -> etree._Element:
    """Parse part bytes with a parser that never resolves entities or touches the network."""
    parser = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=True)
    return etree.fromstring(data, parser)


def serialize_xml(root: etree._Element) -> bytes:
    """Serialize a part the way Office writes it (double-quoted standalone declaration)."""
    raw = etree.tostring(root.getroottree(), xml_declaration=True, encoding="UTF-8", standalone=True)
    return raw.replace(
        b"<?xml version='1.0' encoding='UTF-8' standalone='yes'?>",
        b'<?xml version="1.0" encoding="UTF-8" standalone="yes"?>',
        1,
    )


# ---------------------------------------------------------------------------
# Archive helpers
# ---------------------------------------------------------------------------


def slide_number(name: str) -> int | None:
    m = SLIDE_PART_RE.match(name)
    return int(m.group(1)) if m else None


def slide_part_names(names: Iterable[str]) -> list[str]:
    """Slide parts in numeric order (slide2 before slide10)."""
    found = [(slide_number(n), n) for n in names]
    return [n for num, n in sorted((p for p in found if p[0] is not None), key=lambda p: p[0])]


def rels_part_for(part_name: str) -> str:
    """`ppt/slides/slide1.xml` -> `ppt/slides/_rels/slide1.xml.rels`."""
    folder, _, base = part_name.rpartition("/")
    if folder:
        return f"{folder}/_rels/{base}.rels"
    return f"_rels/{base}.rels"


def resolve_target(source_part: str, target: str) -> str:
    """Archive member a relationship `Target` points at, relative to `source_part`."""
    if target.startswith("/"):
        return target.lstrip("/")
    base = posixpath.dirname(source_part)
    return posixpath.normpath(posixpath.join(base, target))


def read_entries(data: bytes) -> ArchiveEntries:
    """Read every member into an ordered private copy."""
    out: ArchiveEntries = {}
    try:
        with zipfile.ZipFile(io.BytesIO(data), "r") as zf:
            for info in zf.infolist():
                out[info.filename] = (info, zf.read(info))
    except ARCHIVE_READ_ERRORS as exc:
        raise InvalidPackage(f"archive cannot be read: {exc}") from exc
    return out


def clone_info(info: zipfile.ZipInfo, name: str | None = None) -> zipfile.ZipInfo:
    """Fresh ZipInfo keeping timestamp/compression so rewrites stay deterministic."""
    new = zipfile.ZipInfo(name or info.filename, date_time=info.date_time)
    new.compress_type = info.compress_type
    new.external_attr = info.external_attr
    return new


def write_entries(entries: ArchiveEntries) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, (info, payload) in entries.items():
            zf.writestr(clone_info(info, name), payload)
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------


def _slide_canvas(zf: zipfile.ZipFile) -> tuple[int, int]:
    try:
        raw = zf.read(PRESENTATION_PART)
    except KeyError:
        logger.debug("no %s; using default slide size", PRESENTATION_PART)
        return canvas_size(None, None)
    except ARCHIVE_READ_ERRORS as exc:
        logger.warning("cannot read %s (%s); using default slide size", PRESENTATION_PART, exc)
        return canvas_size(None, None)

    try:
        root = parse_xml(raw)
    except etree.XMLSyntaxError as exc:
        logger.warning("cannot parse %s (%s); using default slide size", PRESENTATION_PART, exc)
        return canvas_size(None, None)

    sz = root.find(qn("p:sldSz"))
    if sz is None:
        sz = next(root.iter(qn("p:sldSz")), None)
    if sz is None:
        return canvas_size(None, None)
    return canvas_size(sz.get("cx"), sz.get("cy"))


def load(data: bytes) -> Package:
    """Open `data` as an OOXML package and derive its kind and canvas.

    Raises:
        InvalidPackage: not a ZIP archive, or neither `word/` nor `ppt/` parts.
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise TypeError(f"expected bytes, got {type(data).__name__}")
    blob = bytes(data)

    try:
        with zipfile.ZipFile(io.BytesIO(blob), "r") as zf:
            names = zf.namelist()
            is_document = any(n.startswith("word/") for n in names)
            is_slides = any(n.startswith("ppt/") for n in names)
            if not is_document and not is_slides:
                raise InvalidPackage("archive has neither word/ nor ppt/ parts")

            if is_document:
                kind = PackageKind.DOCUMENT
                width, height = A4_WIDTH_EMU, A4_HEIGHT_EMU
                part_count = 1
            else:
                kind = PackageKind.SLIDES
                width, height = _slide_canvas(zf)
                part_count = len(slide_part_names(names))
    except InvalidPackage:
        raise
    except zipfile.BadZipFile as exc:
        raise InvalidPackage(f"not a ZIP archive: {exc}") from exc
    except ARCHIVE_READ_ERRORS as exc:
        raise InvalidPackage(f"archive cannot be read: {exc}") from exc

    logger.debug("loaded %s package: canvas=%dx%d parts=%d", kind.value, width, height, part_count)
    return Package(kind=kind, canvas_width=width, canvas_height=height, part_count=part_count, data=blob)


def load_file(path: str | Path) -> Package:
    p = Path(path)
    return load(p.read_bytes())
