from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any

import orjson
from pptx.util import Emu

from docmerge.core.attendance.attendance_pdf import render_attendance_pdf
from docmerge.core.datasource.tabular import load_rows
from docmerge.core.extract.ooxml_extractor import extract_all
from docmerge.core.merge.export import export_per_row, export_single
from docmerge.core.ooxml import (
    DocmergeError,
    Package,
    PackageKind,
    UnsupportedFormat,
    check_slide_consistency,
    load_file,
)
from docmerge.core.placeholders.resolver import auto_map, scan
from docmerge.core.validate.schema_validate import (
    SCHEMA_NAMES,
    ensure_valid,
    schema_path,
    validate_json_against_schema,
)


def _load_json(path: Path) -> Any:
    return orjson.loads(path.read_bytes())


def _write_json(path: Path, obj: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(orjson.dumps(obj, option=orjson.OPT_INDENT_2))


def _write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


def _missing(*paths: Path) -> list[Path]:
    return [p for p in paths if not p.exists()]


def _report_missing(paths: list[Path]) -> int:
    print("[NG] missing required files:")
    for p in paths:
        print(f"  - {p}")
    return 2


def _load_mapping(path: Path | None) -> dict[str, str]:
    if path is None:
        return {}
    mapping = _load_json(path)
    ensure_valid("mapping", mapping)
    return mapping


def build_preview(package: Package) -> dict:
    parts = extract_all(package)
    tokens = set()
    for elements in parts:
        tokens |= scan(elements)
    return {
        "kind": package.kind.value,
        "canvas": {"width_emu": package.canvas_width, "height_emu": package.canvas_height},
        "tokens": sorted(tokens),
        "parts": [
            {"index": i, "elements": [el.to_dict() for el in elements]}
            for i, elements in enumerate(parts)
        ],
    }


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_info(args: argparse.Namespace) -> int:
    in_path = Path(args.template).resolve()
    missing = _missing(in_path)
    if missing:
        return _report_missing(missing)

    package = load_file(in_path)
    w, h = Emu(package.canvas_width), Emu(package.canvas_height)
    print(f"[OK] {in_path.name}")
    print(f"  kind:   {package.kind.value} ({package.mime_type})")
    print(f"  canvas: {package.canvas_width} x {package.canvas_height} EMU ({w.inches:.2f} x {h.inches:.2f} in)")
    print(f"  parts:  {package.part_count}")
    return 0


def cmd_extract(args: argparse.Namespace) -> int:
    in_path = Path(args.template).resolve()
    out_path = Path(args.out).resolve()
    missing = _missing(in_path)
    if missing:
        return _report_missing(missing)

    package = load_file(in_path)
    preview = build_preview(package)
    if args.part is not None:
        preview["parts"] = [p for p in preview["parts"] if p["index"] == args.part]
        if not preview["parts"]:
            print(f"[NG] part {args.part} out of range (0..{package.part_count - 1})")
            return 2

    # Validate before writing.
    ensure_valid("preview", preview)
    _write_json(out_path, preview)
    n = sum(len(p["elements"]) for p in preview["parts"])
    print(f"[OK] extracted {n} element(s): {out_path}")
    return 0


def cmd_scan(args: argparse.Namespace) -> int:
    in_path = Path(args.template).resolve()
    data_path = Path(args.data).resolve()
    map_path = Path(args.mapping).resolve() if args.mapping else None
    out_path = Path(args.out).resolve()
    missing = _missing(in_path, data_path, *([map_path] if map_path else []))
    if missing:
        return _report_missing(missing)

    package = load_file(in_path)
    tokens = set()
    for elements in extract_all(package):
        tokens |= scan(elements)
    table = load_rows(data_path)
    mapping = auto_map(sorted(tokens), table.headers, _load_mapping(map_path))

    ensure_valid("mapping", mapping)
    _write_json(out_path, mapping)
    print(f"[OK] {len(tokens)} placeholder(s), {len(mapping)} mapped: {out_path}")
    for token in sorted(tokens):
        if token not in mapping:
            print(f"  - unmapped: {{{{{token}}}}}")
    return 0


def cmd_merge(args: argparse.Namespace) -> int:
    in_path = Path(args.template).resolve()
    data_path = Path(args.data).resolve()
    map_path = Path(args.mapping).resolve()
    out_path = Path(args.out).resolve()
    missing = _missing(in_path, data_path, map_path)
    if missing:
        return _report_missing(missing)

    package = load_file(in_path)
    rows = load_rows(data_path).rows
    mapping = _load_mapping(map_path)

    if args.single:
        try:
            merged = export_single(package, rows, mapping)
        except UnsupportedFormat as e:
            out_path = out_path.with_suffix(".zip")
            print(f"[OK] {e}")
        else:
            _write_bytes(out_path, merged.data)
            print(f"[OK] {len(rows)} row(s) -> {merged.part_count} slide(s): {out_path}")
            return 0

    _write_bytes(out_path, export_per_row(package, rows, mapping))
    print(f"[OK] {len(rows)} file(s) zipped: {out_path}")
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    in_path = Path(args.template).resolve()
    missing = _missing(in_path)
    if missing:
        return _report_missing(missing)

    package = load_file(in_path)
    if package.kind is not PackageKind.SLIDES:
        print(f"[NG] not a presentation: {in_path}")
        return 2
    problems = check_slide_consistency(package)
    if not problems:
        print(f"[OK] {package.part_count} slide(s) consistent")
        return 0
    print(f"[NG] {len(problems)} problem(s) in {in_path.name}")
    for m in problems[:30]:
        print(f"  - {m}")
    if len(problems) > 30:
        print(f"  ... ({len(problems)} problems)")
    return 2


def cmd_attendance(args: argparse.Namespace) -> int:
    data_path = Path(args.data).resolve()
    settings_path = Path(args.settings).resolve()
    out_path = Path(args.out).resolve()
    missing = _missing(data_path, settings_path)
    if missing:
        return _report_missing(missing)

    table = load_rows(data_path)
    unknown = [c for c in (args.name_col, args.cpf_col) if c not in table.headers]
    if unknown:
        print(f"[NG] unknown column(s): {', '.join(unknown)}")
        return 2
    settings = _load_json(settings_path)
    ensure_valid("settings", settings)

    pdf = render_attendance_pdf(table.rows, settings, {"name": args.name_col, "cpf": args.cpf_col})
    _write_bytes(out_path, pdf)
    print(f"[OK] attendance sheet ({len(table.rows)} row(s)): {out_path}")
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    instance_path = Path(args.instance).resolve()
    errors = validate_json_against_schema(schema_path(args.schema), instance_path)
    if not errors:
        print(f"[OK] {instance_path.name} conforms to {args.schema}")
        return 0
    if errors[0].startswith("[ERR]"):
        print(errors[0].replace("[ERR]", "[NG]", 1))
        return 2
    print(f"[NG] {instance_path.name} does NOT conform to {args.schema}")
    for m in errors[:30]:
        print(f"  - {m}")
    if len(errors) > 30:
        print(f"  ... ({len(errors)} errors)")
    return 2


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="docmerge")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_info = sub.add_parser("info", help="show kind, canvas size and part count of a template")
    p_info.add_argument("template", help="path to .pptx or .docx")
    p_info.set_defaults(func=cmd_info)

    p_ext = sub.add_parser("extract", help="write the template preview (positioned elements) as JSON")
    p_ext.add_argument("template", help="path to .pptx or .docx")
    p_ext.add_argument("--out", required=True, help="output preview.json path")
    p_ext.add_argument("--part", type=int, default=None, help="only this 0-based slide/part")
    p_ext.set_defaults(func=cmd_extract)

    p_scan = sub.add_parser("scan", help="find {{placeholders}} and suggest data columns")
    p_scan.add_argument("template", help="path to .pptx or .docx")
    p_scan.add_argument("--data", required=True, help="rows (.xlsx, .csv or .json)")
    p_scan.add_argument("--mapping", required=False, help="existing mapping.json to keep")
    p_scan.add_argument("--out", required=True, help="output mapping.json path")
    p_scan.set_defaults(func=cmd_scan)

    p_merge = sub.add_parser("merge", help="fill the template once per data row")
    p_merge.add_argument("template", help="path to .pptx or .docx")
    p_merge.add_argument("--data", required=True, help="rows (.xlsx, .csv or .json)")
    p_merge.add_argument("--mapping", required=True, help="mapping.json (placeholder -> column)")
    p_merge.add_argument("--out", required=True, help="output path (.zip, or .pptx with --single)")
    p_merge.add_argument("--single", action="store_true", help="one presentation holding every row")
    p_merge.set_defaults(func=cmd_merge)

    p_check = sub.add_parser("check", help="check slide list, relationships and content types agree")
    p_check.add_argument("template", help="path to .pptx")
    p_check.set_defaults(func=cmd_check)

    p_att = sub.add_parser("attendance", help="render an attendance sheet PDF")
    p_att.add_argument("--data", required=True, help="rows (.xlsx, .csv or .json)")
    p_att.add_argument("--name-col", required=True, help="column holding participant names")
    p_att.add_argument("--cpf-col", required=True, help="column holding CPF numbers")
    p_att.add_argument("--settings", required=True, help="settings.json (company_name, logo_path, title)")
    p_att.add_argument("--out", required=True, help="output .pdf path")
    p_att.set_defaults(func=cmd_attendance)

    p_val = sub.add_parser("validate", help="validate a JSON file against a bundled schema")
    p_val.add_argument("--schema", required=True, choices=SCHEMA_NAMES)
    p_val.add_argument("--instance", required=True, help="path to json to validate")
    p_val.set_defaults(func=cmd_validate)

    return parser


def run(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    try:
        return args.func(args)
    except DocmergeError as e:
        print(f"[NG] {e}")
        return 2
    except orjson.JSONDecodeError as e:
        print(f"[NG] invalid JSON: {e}")
        return 2


def main() -> None:
    raise SystemExit(run())


if __name__ == "__main__":
    main()
