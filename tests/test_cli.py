from __future__ import annotations

import io
import json
import zipfile
from pathlib import Path

import pytest

from conftest import patch_central_entry
from docmerge.apps.cli.main import main, run
from docmerge.core.ooxml import check_slide_consistency, load


@pytest.fixture
def workspace(tmp_path: Path, two_slide_pptx: bytes, sample_docx: bytes) -> Path:
    (tmp_path / "deck.pptx").write_bytes(two_slide_pptx)
    (tmp_path / "contract.docx").write_bytes(sample_docx)
    (tmp_path / "rows.csv").write_text("Nome,CPF Cliente,Saldo\nAna,12345678901,10\nBia,98765432100,0\n", encoding="utf-8")
    return tmp_path


def test_info(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert run(["info", str(workspace / "deck.pptx")]) == 0
    out = capsys.readouterr().out
    assert out.startswith("[OK]")
    assert "12192000 x 6858000 EMU (13.33 x 7.50 in)" in out
    assert "parts:  2" in out


def test_extract_writes_valid_preview(workspace: Path) -> None:
    out = workspace / "preview.json"
    assert run(["extract", str(workspace / "deck.pptx"), "--out", str(out)]) == 0
    preview = json.loads(out.read_text(encoding="utf-8"))
    assert preview["kind"] == "pptx"
    assert preview["tokens"] == ["amount", "cpf", "name"]
    assert [p["index"] for p in preview["parts"]] == [0, 1]


def test_extract_single_part_out_of_range(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert run(["extract", str(workspace / "deck.pptx"), "--out", str(workspace / "p.json"), "--part", "7"]) == 2
    assert capsys.readouterr().out.startswith("[NG]")


def test_scan_auto_maps(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    out = workspace / "mapping.json"
    assert run(["scan", str(workspace / "deck.pptx"), "--data", str(workspace / "rows.csv"), "--out", str(out)]) == 0
    assert json.loads(out.read_text(encoding="utf-8")) == {"cpf": "CPF Cliente"}
    assert "unmapped: {{name}}" in capsys.readouterr().out


def test_merge_single_deck(workspace: Path) -> None:
    mapping = workspace / "mapping.json"
    mapping.write_text('{"name": "Nome", "cpf": "CPF Cliente", "amount": "Saldo"}', encoding="utf-8")
    out = workspace / "all.pptx"
    args = ["merge", str(workspace / "deck.pptx"), "--data", str(workspace / "rows.csv"),
            "--mapping", str(mapping), "--out", str(out), "--single"]
    assert run(args) == 0
    package = load(out.read_bytes())
    assert package.part_count == 4
    assert check_slide_consistency(package) == []


def test_merge_per_row_zip(workspace: Path) -> None:
    mapping = workspace / "mapping.json"
    mapping.write_text('{"Nome": "Nome"}', encoding="utf-8")
    out = workspace / "out.zip"
    args = ["merge", str(workspace / "contract.docx"), "--data", str(workspace / "rows.csv"),
            "--mapping", str(mapping), "--out", str(out)]
    assert run(args) == 0
    with zipfile.ZipFile(io.BytesIO(out.read_bytes())) as zf:
        assert zf.namelist() == ["Doc_Ana.docx", "Doc_Bia.docx"]


def test_merge_single_document_falls_back_to_zip(workspace: Path) -> None:
    mapping = workspace / "mapping.json"
    mapping.write_text("{}", encoding="utf-8")
    out = workspace / "all.docx"
    args = ["merge", str(workspace / "contract.docx"), "--data", str(workspace / "rows.csv"),
            "--mapping", str(mapping), "--out", str(out), "--single"]
    assert run(args) == 0
    assert not out.exists()
    assert zipfile.is_zipfile(workspace / "all.zip")


def test_merge_rejects_invalid_mapping(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    mapping = workspace / "mapping.json"
    mapping.write_text('{"name": 1}', encoding="utf-8")
    args = ["merge", str(workspace / "deck.pptx"), "--data", str(workspace / "rows.csv"),
            "--mapping", str(mapping), "--out", str(workspace / "x.zip")]
    assert run(args) == 2
    out = capsys.readouterr().out
    assert out.startswith("[NG] mapping validation failed:")
    assert "Traceback" not in out


def test_check_reports_consistency(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert run(["check", str(workspace / "deck.pptx")]) == 0
    assert "[OK] 2 slide(s) consistent" in capsys.readouterr().out
    assert run(["check", str(workspace / "contract.docx")]) == 2


def test_attendance(workspace: Path) -> None:
    settings = workspace / "settings.json"
    settings.write_text('{"company_name": "Acme"}', encoding="utf-8")
    out = workspace / "lista.pdf"
    args = ["attendance", "--data", str(workspace / "rows.csv"), "--name-col", "Nome",
            "--cpf-col", "CPF Cliente", "--settings", str(settings), "--out", str(out)]
    assert run(args) == 0
    assert out.read_bytes().startswith(b"%PDF")


def test_attendance_unknown_column(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    settings = workspace / "settings.json"
    settings.write_text('{"company_name": "Acme"}', encoding="utf-8")
    args = ["attendance", "--data", str(workspace / "rows.csv"), "--name-col", "Name",
            "--cpf-col", "CPF Cliente", "--settings", str(settings), "--out", str(workspace / "l.pdf")]
    assert run(args) == 2
    assert "unknown column(s): Name" in capsys.readouterr().out


def test_validate(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    good = workspace / "m.json"
    good.write_text('{"a": "b"}', encoding="utf-8")
    bad = workspace / "bad.json"
    bad.write_text("[1]", encoding="utf-8")
    assert run(["validate", "--schema", "mapping", "--instance", str(good)]) == 0
    assert run(["validate", "--schema", "mapping", "--instance", str(bad)]) == 2
    assert run(["validate", "--schema", "mapping", "--instance", str(workspace / "none.json")]) == 2
    assert "[NG]" in capsys.readouterr().out


def test_missing_input_and_bad_template(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert run(["info", str(workspace / "nope.pptx")]) == 2
    (workspace / "broken.pptx").write_bytes(b"garbage")
    assert run(["info", str(workspace / "broken.pptx")]) == 2
    assert "[NG] not a ZIP archive" in capsys.readouterr().out


def test_info_rejects_unreadable_archive(workspace: Path, two_slide_pptx: bytes, capsys: pytest.CaptureFixture[str]) -> None:
    damaged = workspace / "damaged.pptx"
    damaged.write_bytes(patch_central_entry(two_slide_pptx, "ppt/slides/slide2.xml", 6, bytes([200])))
    assert run(["info", str(damaged)]) == 2
    out = capsys.readouterr().out
    assert out.startswith("[NG] archive cannot be read")
    assert "Traceback" not in out


def test_main_exits_with_status(workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("sys.argv", ["docmerge", "check", str(workspace / "deck.pptx")])
    with pytest.raises(SystemExit) as exc:
        main()
    assert exc.value.code == 0
