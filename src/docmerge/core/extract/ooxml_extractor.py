from __future__ import annotations

import base64
import logging
import zipfile
from typing import Any, Dict, Iterable, List, Optional

from lxml import etree
from pptx.oxml.ns import qn

from docmerge.core.ooxml.model import BoundingBox, ImageElement, TextElement, VisualElement
from docmerge.core.ooxml.package import (
    ARCHIVE_READ_ERRORS,
    DOCUMENT_PART,
    NS_REL,
    NS_W,
    Package,
    PackageKind,
    parse_xml,
    rels_part_for,
    resolve_target,
)
from docmerge.core.ooxml.units import font_size_pt, half_points_to_pt, parse_emu, to_pct

logger = logging.getLogger(__name__)

# Synthesized layout for WordprocessingML paragraphs (percent of the A4 canvas).
DOC_LEFT_PCT = 10.0
DOC_TOP_PCT = 5.0
DOC_ROW_STEP_PCT = 3.5
DOC_ROW_HEIGHT_PCT = 3.0
DOC_WIDTH_PCT = 80.0
DOC_DEFAULT_FONT_PT = 11.0
DOC_DEFAULT_COLOR = "#2d3748"

_ALIGN_BY_ALGN: Dict[str, str] = {
    "l": "left",
    "ctr": "center",
    "r": "right",
    "just": "justify",
    "justLow": "justify",
    "dist": "justify",
    "thaiDist": "justify",
}

_ALIGN_BY_JC: Dict[str, str] = {
    "left": "left",
    "start": "left",
    "center": "center",
    "right": "right",
    "end": "right",
    "both": "justify",
    "distribute": "justify",
}

_MIME_BY_EXT: Dict[str, str] = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "bmp": "image/bmp",
    "tif": "image/tiff",
    "tiff": "image/tiff",
    "svg": "image/svg+xml",
    "emf": "image/x-emf",
    "wmf": "image/x-wmf",
}

# schemeClr values that alias a theme colour-scheme slot
_SCHEME_ALIASES: Dict[str, str] = {
    "tx1": "dk1",
    "bg1": "lt1",
    "tx2": "dk2",
    "bg2": "lt2",
}


def _norm_text(s: str) -> str:
    return s.replace("\u00a0", " ").strip()


def _w(tag: str) -> str:
    return f"{{{NS_W}}}{tag}"


def _load_theme_rgb_map(zf: zipfile.ZipFile) -> Dict[str, str]:
    """Load theme color scheme (best-effort) from ppt/theme/theme1.xml.

    Returns mapping like {'accent1': 'RRGGBB', 'dk1': 'RRGGBB', ...}
    """
    out: Dict[str, str] = {}
    names = zf.namelist()
    name = "ppt/theme/theme1.xml"
    if name not in names:
        # fallback: any ppt/theme/theme*.xml
        themes = [n for n in names if n.startswith("ppt/theme/") and n.endswith(".xml")]
        if not themes:
            return out
        name = sorted(themes)[0]

    try:
        root = parse_xml(zf.read(name))
    except (etree.XMLSyntaxError, *ARCHIVE_READ_ERRORS):
        return out

    clr = root.find(f".//{qn('a:themeElements')}/{qn('a:clrScheme')}")
    if clr is None:
        return out

    for child in clr:
        if not isinstance(child.tag, str):
            continue
        # child tag ends with scheme key (dk1, lt1, accent1...)
        key = child.tag.rsplit("}", 1)[-1]

        # Prefer srgbClr@val, else sysClr@lastClr
        srgb = child.find(qn("a:srgbClr"))
        if srgb is not None and srgb.get("val"):
            out[key] = str(srgb.get("val")).upper()
            continue
        sysc = child.find(qn("a:sysClr"))
        if sysc is not None and sysc.get("lastClr"):
            out[key] = str(sysc.get("lastClr")).upper()

    return out


def _color_from_fill(solid: Any, theme_rgb: Dict[str, str]) -> Optional[str]:
    if solid is None:
        return None
    srgb = solid.find(qn("a:srgbClr"))
    if srgb is not None and srgb.get("val"):
        return f"#{srgb.get('val')}"
    scheme = solid.find(qn("a:schemeClr"))
    if scheme is not None and scheme.get("val"):
        key = _SCHEME_ALIASES.get(scheme.get("val"), scheme.get("val"))
        if key in theme_rgb:
            return f"#{theme_rgb[key]}"
    return None


def _is_on(raw: Optional[str]) -> bool:
    return str(raw).strip().lower() in ("1", "true", "on")


# ---------------------------------------------------------------------------
# Slides
# ---------------------------------------------------------------------------


def _paragraph_text(p: Any) -> str:
    parts: List[str] = []
    for child in p:
        if child.tag in (qn("a:r"), qn("a:fld")):
            t = child.find(qn("a:t"))
            if t is not None and t.text:
                parts.append(t.text)
        elif child.tag == qn("a:br"):
            parts.append("\n")
    return "".join(parts)


def _first_run_style(tx_body: Any, theme_rgb: Dict[str, str]) -> Dict[str, Any]:
    """First non-empty value of each formatting attribute across the shape's runs."""
    style: Dict[str, Any] = {}

    for r in tx_body.iter(qn("a:r"), qn("a:fld")):
        rpr = r.find(qn("a:rPr"))
        if rpr is None:
            continue
        if "font_size_pt" not in style:
            size = font_size_pt(rpr.get("sz"))
            if size is not None:
                style["font_size_pt"] = size
        if "font_family" not in style:
            latin = rpr.find(qn("a:latin"))
            face = latin.get("typeface") if latin is not None else None
            # "+mn-lt" / "+mj-lt" point at theme fonts; not a usable family name
            if face and not face.startswith("+"):
                style["font_family"] = face
        if "color" not in style:
            color = _color_from_fill(rpr.find(qn("a:solidFill")), theme_rgb)
            if color:
                style["color"] = color
        if "bold" not in style and rpr.get("b") is not None:
            style["bold"] = _is_on(rpr.get("b"))
        if "italic" not in style and rpr.get("i") is not None:
            style["italic"] = _is_on(rpr.get("i"))

    for ppr in tx_body.iter(qn("a:pPr")):
        algn = ppr.get("algn")
        if algn in _ALIGN_BY_ALGN:
            style["align"] = _ALIGN_BY_ALGN[algn]
            break

    return style


def _xfrm_bbox(xfrm: Any, width: int, height: int) -> Optional[BoundingBox]:
    if xfrm is None:
        return None
    off = xfrm.find(qn("a:off"))
    ext = xfrm.find(qn("a:ext"))
    if off is None or ext is None:
        return None
    return BoundingBox(
        x_pct=to_pct(parse_emu(off.get("x"), 0), width),
        y_pct=to_pct(parse_emu(off.get("y"), 0), height),
        w_pct=to_pct(parse_emu(ext.get("cx"), 1), width),
        h_pct=to_pct(parse_emu(ext.get("cy"), 1), height),
    )


def _shape_xfrm(shape: Any, props_tag: str) -> Any:
    props = shape.find(qn(props_tag))
    if props is None:
        return None
    return props.find(qn("a:xfrm"))


def _relationship_targets(zf: zipfile.ZipFile, part_name: str) -> Dict[str, str]:
    """rId -> archive member name for the internal relationships of `part_name`."""
    try:
        raw = zf.read(rels_part_for(part_name))
    except KeyError:
        return {}
    try:
        root = parse_xml(raw)
    except etree.XMLSyntaxError:
        logger.warning("unparsable relationships for %s", part_name)
        return {}

    out: Dict[str, str] = {}
    for rel in root.iter(f"{{{NS_REL}}}Relationship"):
        rid = rel.get("Id")
        target = rel.get("Target")
        if not rid or not target or rel.get("TargetMode") == "External":
            continue
        out[rid] = resolve_target(part_name, target)
    return out


def _text_elements(root: Any, width: int, height: int, theme_rgb: Dict[str, str]) -> List[VisualElement]:
    out: List[VisualElement] = []
    for idx, sp in enumerate(root.iter(qn("p:sp"))):
        tx_body = sp.find(qn("p:txBody"))
        bbox = _xfrm_bbox(_shape_xfrm(sp, "p:spPr"), width, height)
        if tx_body is None or bbox is None:
            continue

        paragraphs = tx_body.findall(qn("a:p"))
        text = _norm_text("\n".join(_paragraph_text(p) for p in paragraphs))
        if not text:
            continue

        style = _first_run_style(tx_body, theme_rgb)
        out.append(TextElement(element_id=f"text-{idx}", content=text, bbox=bbox, **style))
    return out


def _image_elements(
    zf: zipfile.ZipFile, part_name: str, root: Any, width: int, height: int
) -> List[VisualElement]:
    out: List[VisualElement] = []
    pics = list(root.iter(qn("p:pic")))
    if not pics:
        return out

    targets = _relationship_targets(zf, part_name)
    for i, pic in enumerate(pics):
        blip = next(pic.iter(qn("a:blip")), None)
        if blip is None:
            continue
        rid = blip.get(qn("r:embed")) or blip.get(qn("r:link"))
        media = targets.get(rid or "")
        if not media:
            continue
        bbox = _xfrm_bbox(_shape_xfrm(pic, "p:spPr"), width, height)
        if bbox is None:
            continue
        try:
            blob = zf.read(media)
        except KeyError:
            logger.debug("picture %s on %s points at missing %s", rid, part_name, media)
            continue

        ext = media.rsplit(".", 1)[-1].lower() if "." in media else ""
        out.append(
            ImageElement(
                element_id=f"pic-{i}",
                source_base64=base64.b64encode(blob).decode("ascii"),
                mime_type=_MIME_BY_EXT.get(ext, "application/octet-stream"),
                bbox=bbox,
            )
        )
    return out


def _extract_slide(package: Package, part_index: int) -> List[VisualElement]:
    names = package.slide_part_names()
    if part_index < 0 or part_index >= len(names):
        logger.warning("slide index %d out of range (0..%d)", part_index, len(names) - 1)
        return []
    part_name = names[part_index]

    with package.open_archive() as zf:
        root = parse_xml(zf.read(part_name))
        theme_rgb = _load_theme_rgb_map(zf)
        elements = _text_elements(root, package.canvas_width, package.canvas_height, theme_rgb)
        elements.extend(
            _image_elements(zf, part_name, root, package.canvas_width, package.canvas_height)
        )
    return elements


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


def _own(p: Any, tags: Iterable[str]) -> Iterable[Any]:
    """Descendants of paragraph `p` that do not belong to a nested paragraph (text boxes)."""
    for el in p.iter(*tags):
        if next(el.iterancestors(_w("p")), None) is p:
            yield el


def _docx_paragraph_text(p: Any) -> str:
    parts: List[str] = []
    for el in _own(p, (_w("t"), _w("tab"))):
        if el.tag == _w("tab"):
            parts.append("\t")
        elif el.text:
            parts.append(el.text)
    return "".join(parts)


def _docx_style(p: Any) -> Dict[str, Any]:
    style: Dict[str, Any] = {}
    val = _w("val")
    for rpr in _own(p, (_w("rPr"),)):
        if rpr.getparent() is None or rpr.getparent().tag != _w("r"):
            continue
        sz = rpr.find(_w("sz"))
        if "font_size_pt" not in style and sz is not None:
            size = half_points_to_pt(sz.get(val))
            if size is not None:
                style["font_size_pt"] = size
        fonts = rpr.find(_w("rFonts"))
        if "font_family" not in style and fonts is not None and fonts.get(_w("ascii")):
            style["font_family"] = fonts.get(_w("ascii"))
        color = rpr.find(_w("color"))
        if "color" not in style and color is not None:
            raw = color.get(val)
            if raw and raw.lower() != "auto":
                style["color"] = f"#{raw}"
        for key, tag in (("bold", "b"), ("italic", "i")):
            flag = rpr.find(_w(tag))
            if key not in style and flag is not None:
                style[key] = flag.get(val) is None or _is_on(flag.get(val))

    ppr = p.find(_w("pPr"))
    jc = ppr.find(_w("jc")) if ppr is not None else None
    if jc is not None and jc.get(val) in _ALIGN_BY_JC:
        style["align"] = _ALIGN_BY_JC[jc.get(val)]
    return style


def _extract_document(package: Package, part_index: int) -> List[VisualElement]:
    if part_index != 0:
        logger.warning("documents expose a single part; got index %d", part_index)
        return []
    raw = package.read_part(DOCUMENT_PART)
    if raw is None:
        logger.warning("document has no %s", DOCUMENT_PART)
        return []

    root = parse_xml(raw)
    out: List[VisualElement] = []
    for idx, p in enumerate(root.iter(_w("p"))):
        text = _norm_text(_docx_paragraph_text(p))
        if not text:
            continue
        style = {"font_size_pt": DOC_DEFAULT_FONT_PT, "color": DOC_DEFAULT_COLOR}
        style.update(_docx_style(p))
        bbox = BoundingBox(
            x_pct=DOC_LEFT_PCT,
            y_pct=DOC_TOP_PCT + idx * DOC_ROW_STEP_PCT,
            w_pct=DOC_WIDTH_PCT,
            h_pct=DOC_ROW_HEIGHT_PCT,
        )
        out.append(TextElement(element_id=f"word-{idx}", content=text, bbox=bbox, **style))
    return out


def extract(package: Package, part_index: int) -> List[VisualElement]:
    """Positioned text/image elements of one slide (or of the document body).

    A missing or unparsable part yields an empty list; nothing raises for
    damaged templates so the preview can still show whatever is readable.
    """
    try:
        if package.kind is PackageKind.DOCUMENT:
            return _extract_document(package, part_index)
        return _extract_slide(package, part_index)
    except etree.XMLSyntaxError as exc:
        logger.warning("part %d is not well-formed XML: %s", part_index, exc)
    except KeyError as exc:
        logger.warning("part %d is missing from the archive: %s", part_index, exc)
    except ARCHIVE_READ_ERRORS as exc:
        logger.warning("part %d cannot be read: %s", part_index, exc)
    return []


def extract_all(package: Package) -> List[List[VisualElement]]:
    """`extract` for every part index, in order."""
    return [extract(package, i) for i in range(package.part_count)]
