from __future__ import annotations

import io
import zipfile
from typing import Iterable, Mapping

import pytest
from pptx import Presentation
from pptx.util import Inches

NS_A = "http://schemas.openxmlformats.org/drawingml/2006/main"
NS_R = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
NS_P = "http://schemas.openxmlformats.org/presentationml/2006/main"
NS_W = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
NS_PKG_REL = "http://schemas.openxmlformats.org/package/2006/relationships"
NS_CT = "http://schemas.openxmlformats.org/package/2006/content-types"
NS_EP = "http://schemas.openxmlformats.org/officeDocument/2006/extended-properties"

RT_SLIDE = f"{NS_R}/slide"
RT_THEME = f"{NS_R}/theme"
RT_IMAGE = f"{NS_R}/image"
RT_NOTES = f"{NS_R}/notesSlide"
RT_COMMENTS = f"{NS_R}/comments"
CT_SLIDE = "application/vnd.openxmlformats-officedocument.presentationml.slide+xml"
CT_NOTES = "application/vnd.openxmlformats-officedocument.presentationml.notesSlide+xml"
CT_COMMENTS = "application/vnd.openxmlformats-officedocument.presentationml.comments+xml"

DECL = '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'
PML_NS = f'xmlns:a="{NS_A}" xmlns:r="{NS_R}" xmlns:p="{NS_P}"'

# 1x1 transparent PNG
PNG_1PX = bytes.fromhex(
    "89504e470d0a1a0a0000000d49484452000000010000000108060000001f15c489"
    "0000000d49444154789c6360000002000154a24f5d0000000049454e44ae426082"
)


# ---------------------------------------------------------------------------
# XML snippets
# ---------------------------------------------------------------------------


def run(text: str, *, sz: int | None = None, color: str | None = None, bold: bool | None = None,
        font: str | None = None) -> str:
    attrs = ""
    if sz is not None:
        attrs += f' sz="{sz}"'
    if bold is not None:
        attrs += f' b="{1 if bold else 0}"'
    inner = ""
    if color:
        inner += f'<a:solidFill><a:srgbClr val="{color}"/></a:solidFill>'
    if font:
        inner += f'<a:latin typeface="{font}"/>'
    return f'<a:r><a:rPr lang="pt-BR"{attrs}>{inner}</a:rPr><a:t>{text}</a:t></a:r>'


def paragraph(*runs: str, algn: str | None = None) -> str:
    ppr = f'<a:pPr algn="{algn}"/>' if algn else ""
    return f"<a:p>{ppr}{''.join(runs)}</a:p>"


def text_shape(*paragraphs: str, shape_id: int = 2, x: int = 914400, y: int = 457200,
               cx: int = 4572000, cy: int = 914400) -> str:
    return (
        f'<p:sp><p:nvSpPr><p:cNvPr id="{shape_id}" name="Text {shape_id}"/><p:cNvSpPr txBox="1"/><p:nvPr/></p:nvSpPr>'
        f'<p:spPr><a:xfrm><a:off x="{x}" y="{y}"/><a:ext cx="{cx}" cy="{cy}"/></a:xfrm>'
        f'<a:prstGeom prst="rect"><a:avLst/></a:prstGeom></p:spPr>'
        f'<p:txBody><a:bodyPr/><a:lstStyle/>{"".join(paragraphs)}</p:txBody></p:sp>'
    )


def picture(rid: str, *, shape_id: int = 9, x: int = 0, y: int = 0, cx: int = 914400, cy: int = 914400) -> str:
    return (
        f'<p:pic><p:nvPicPr><p:cNvPr id="{shape_id}" name="Picture {shape_id}"/><p:cNvPicPr/><p:nvPr/></p:nvPicPr>'
        f'<p:blipFill><a:blip r:embed="{rid}"/><a:stretch><a:fillRect/></a:stretch></p:blipFill>'
        f'<p:spPr><a:xfrm><a:off x="{x}" y="{y}"/><a:ext cx="{cx}" cy="{cy}"/></a:xfrm>'
        f'<a:prstGeom prst="rect"><a:avLst/></a:prstGeom></p:spPr></p:pic>'
    )


def slide_xml(*shapes: str) -> str:
    return (
        f"{DECL}<p:sld {PML_NS}><p:cSld><p:spTree>"
        '<p:nvGrpSpPr><p:cNvPr id="1" name=""/><p:cNvGrpSpPr/><p:nvPr/></p:nvGrpSpPr><p:grpSpPr/>'
        f"{''.join(shapes)}</p:spTree></p:cSld></p:sld>"
    )


def rels_xml(rels: Iterable[tuple[str, str, str]]) -> str:
    body = "".join(f'<Relationship Id="{i}" Type="{t}" Target="{target}"/>' for i, t, target in rels)
    return f'{DECL}<Relationships xmlns="{NS_PKG_REL}">{body}</Relationships>'


THEME_XML = (
    f'{DECL}<a:theme xmlns:a="{NS_A}" name="Office"><a:themeElements><a:clrScheme name="Office">'
    '<a:dk1><a:sysClr val="windowText" lastClr="000000"/></a:dk1>'
    '<a:lt1><a:sysClr val="window" lastClr="FFFFFF"/></a:lt1>'
    '<a:accent1><a:srgbClr val="4472C4"/></a:accent1>'
    "</a:clrScheme></a:themeElements></a:theme>"
)


# ---------------------------------------------------------------------------
# Package builders
# ---------------------------------------------------------------------------


def zip_bytes(entries: Mapping[str, bytes | str]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, payload in entries.items():
            zf.writestr(name, payload.encode("utf-8") if isinstance(payload, str) else payload)
    return buf.getvalue()


def build_pptx(
    slides: list[str],
    *,
    sld_sz: tuple[str, str] | None = ("12192000", "6858000"),
    slide_rels: Mapping[int, list[tuple[str, str, str]]] | None = None,
    notes_on: Iterable[int] = (),
    media: Mapping[str, bytes] | None = None,
    app_slides: bool = True,
    overrides: Mapping[str, str] | None = None,
) -> bytes:
    """Minimal presentation archive. Slide numbers in `slide_rels`/`notes_on` are 1-based."""
    slide_rels = dict(slide_rels or {})
    notes_on = list(notes_on)

    sld_ids = "".join(f'<p:sldId id="{256 + i}" r:id="rId{i + 2}"/>' for i in range(len(slides)))
    size = f'<p:sldSz cx="{sld_sz[0]}" cy="{sld_sz[1]}"/>' if sld_sz else ""
    presentation = (
        f"{DECL}<p:presentation {PML_NS}><p:sldIdLst>{sld_ids}</p:sldIdLst>{size}"
        '<p:notesSz cx="6858000" cy="9144000"/></p:presentation>'
    )
    pres_rels = [("rId1", RT_THEME, "theme/theme1.xml")]
    pres_rels += [(f"rId{i + 2}", RT_SLIDE, f"slides/slide{i + 1}.xml") for i in range(len(slides))]

    ct = [
        '<Default Extension="rels" ContentType="application/vnd.openxmlformats-package.relationships+xml"/>',
        '<Default Extension="xml" ContentType="application/xml"/>',
        '<Default Extension="png" ContentType="image/png"/>',
        '<Override PartName="/ppt/presentation.xml" '
        'ContentType="application/vnd.openxmlformats-officedocument.presentationml.presentation.main+xml"/>',
        '<Override PartName="/ppt/theme/theme1.xml" '
        'ContentType="application/vnd.openxmlformats-officedocument.theme+xml"/>',
    ]
    ct += [f'<Override PartName="/ppt/slides/slide{i + 1}.xml" ContentType="{CT_SLIDE}"/>' for i in range(len(slides))]
    ct += [f'<Override PartName="/ppt/notesSlides/notesSlide{n}.xml" ContentType="{CT_NOTES}"/>' for n in notes_on]
    for part, content_type in (overrides or {}).items():
        ct.append(f'<Override PartName="{part}" ContentType="{content_type}"/>')

    entries: dict[str, bytes | str] = {
        "[Content_Types].xml": f'{DECL}<Types xmlns="{NS_CT}">{"".join(ct)}</Types>',
        "_rels/.rels": rels_xml([("rId1", f"{NS_R}/officeDocument", "ppt/presentation.xml")]),
        "ppt/presentation.xml": presentation,
        "ppt/_rels/presentation.xml.rels": rels_xml(pres_rels),
        "ppt/theme/theme1.xml": THEME_XML,
    }
    if app_slides:
        entries["docProps/app.xml"] = (
            f'{DECL}<Properties xmlns="{NS_EP}"><Application>Test</Application>'
            f"<Slides>{len(slides)}</Slides></Properties>"
        )

    for i, xml in enumerate(slides, start=1):
        entries[f"ppt/slides/slide{i}.xml"] = xml
        rels = list(slide_rels.get(i, []))
        if i in notes_on:
            rels.append(("rId99", RT_NOTES, f"../notesSlides/notesSlide{i}.xml"))
            entries[f"ppt/notesSlides/notesSlide{i}.xml"] = f"{DECL}<p:notes {PML_NS}/>"
            entries[f"ppt/notesSlides/_rels/notesSlide{i}.xml.rels"] = rels_xml(
                [("rId1", RT_SLIDE, f"../slides/slide{i}.xml")]
            )
        if rels:
            entries[f"ppt/slides/_rels/slide{i}.xml.rels"] = rels_xml(rels)

    for name, blob in (media or {}).items():
        entries[name] = blob
    return zip_bytes(entries)


def patch_central_entry(data: bytes, member: str, offset: int, value: bytes) -> bytes:
    """Overwrite bytes at `offset` inside `member`'s central directory record."""
    sig = b"PK\x01\x02"
    pos = data.find(sig)
    while pos != -1:
        name_len = int.from_bytes(data[pos + 28:pos + 30], "little")
        if data[pos + 46:pos + 46 + name_len] == member.encode():
            return data[:pos + offset] + value + data[pos + offset + len(value):]
        pos = data.find(sig, pos + 1)
    raise KeyError(member)


def docx_paragraph(*runs: str, jc: str | None = None) -> str:
    ppr = f'<w:pPr><w:jc w:val="{jc}"/></w:pPr>' if jc else ""
    return f"<w:p>{ppr}{''.join(runs)}</w:p>"


def docx_run(text: str, *, half_points: int | None = None, bold: bool = False, color: str | None = None) -> str:
    rpr = ""
    if bold:
        rpr += "<w:b/>"
    if color:
        rpr += f'<w:color w:val="{color}"/>'
    if half_points:
        rpr += f'<w:sz w:val="{half_points}"/>'
    rpr = f"<w:rPr>{rpr}</w:rPr>" if rpr else ""
    return f'<w:r>{rpr}<w:t xml:space="preserve">{text}</w:t></w:r>'


def build_docx(paragraphs: list[str], *, header: str | None = None) -> bytes:
    body = "".join(paragraphs)
    entries: dict[str, bytes | str] = {
        "[Content_Types].xml": (
            f'{DECL}<Types xmlns="{NS_CT}">'
            '<Default Extension="rels" ContentType="application/vnd.openxmlformats-package.relationships+xml"/>'
            '<Default Extension="xml" ContentType="application/xml"/>'
            '<Override PartName="/word/document.xml" '
            'ContentType="application/vnd.openxmlformats-officedocument.wordprocessingml.document.main+xml"/>'
            "</Types>"
        ),
        "_rels/.rels": rels_xml([("rId1", f"{NS_R}/officeDocument", "word/document.xml")]),
        "word/document.xml": f'{DECL}<w:document xmlns:w="{NS_W}"><w:body>{body}</w:body></w:document>',
    }
    if header is not None:
        entries["word/header1.xml"] = f'{DECL}<w:hdr xmlns:w="{NS_W}">{header}</w:hdr>'
    return zip_bytes(entries)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def greeting_slide() -> str:
    return slide_xml(
        text_shape(
            paragraph(run("Hello {{name}}, balance {{amount}}", sz=2400, color="FF0000", bold=True, font="Arial"),
                      algn="ctr"),
        )
    )


@pytest.fixture
def two_slide_pptx(greeting_slide: str) -> bytes:
    second = slide_xml(text_shape(paragraph(run("CPF: {{cpf}}"))))
    return build_pptx([greeting_slide, second], notes_on=[1])


@pytest.fixture
def sample_docx() -> bytes:
    return build_docx(
        [
            docx_paragraph(docx_run("Contrato de {{Nome}}", half_points=28, bold=True), jc="center"),
            docx_paragraph(),
            docx_paragraph(docx_run("CPF {{cpf}}")),
        ],
        header=docx_paragraph(docx_run("Empresa {{empresa}}")),
    )


@pytest.fixture
def python_pptx_deck() -> bytes:
    prs = Presentation()
    layout = prs.slide_layouts[6]  # blank
    for text in ("Hello {{name}}", "Total: {{amount}}"):
        slide = prs.slides.add_slide(layout)
        box = slide.shapes.add_textbox(Inches(1), Inches(1), Inches(6), Inches(1))
        box.text_frame.text = text
    buf = io.BytesIO()
    prs.save(buf)
    return buf.getvalue()
