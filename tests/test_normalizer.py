"""Tests for document normalization."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from openpyxl import Workbook

from siterag.ingestion import LangChainDocumentNormalizer, NormalizerConfig, classify, strip_rtf


def test_short_text_file_is_one_chunk(tmp_path: Path) -> None:
    document = tmp_path / "notes.txt"
    document.write_text("Framing starts Monday\nInspection on Friday", encoding="utf-8")

    chunks = LangChainDocumentNormalizer().normalize(document, "text/plain")

    assert len(chunks) == 1
    assert chunks[0].label == "Text File"
    assert "Framing starts Monday" in chunks[0].text
    assert not chunks[0].diagnostic


def test_long_text_file_is_split_into_numbered_sections(tmp_path: Path) -> None:
    document = tmp_path / "log.txt"
    document.write_text("\n".join(f"entry {index}" for index in range(1, 61)), encoding="utf-8")

    chunks = LangChainDocumentNormalizer().normalize(document, "text/plain")

    assert [chunk.label for chunk in chunks] == ["Text File Section 1", "Text File Section 2"]
    first_lines = chunks[0].text.splitlines()
    second_lines = chunks[1].text.splitlines()
    assert len(first_lines) == 50
    assert len(second_lines) == 10
    assert first_lines[0] == "Line 1: entry 1"
    assert second_lines[0] == "Line 51: entry 51"
    assert second_lines[-1] == "Line 60: entry 60"


def test_section_size_is_configurable(tmp_path: Path) -> None:
    document = tmp_path / "log.txt"
    document.write_text("\n".join(str(index) for index in range(12)), encoding="utf-8")

    normalizer = LangChainDocumentNormalizer(NormalizerConfig(section_size=5))
    chunks = normalizer.normalize(document)

    assert [chunk.label for chunk in chunks] == [
        "Text File Section 1",
        "Text File Section 2",
        "Text File Section 3",
    ]


def test_spreadsheet_cells_render_with_references(tmp_path: Path) -> None:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Budget"
    sheet["A1"] = "Framing"
    sheet["B1"] = 45000
    sheet["B1"].number_format = '"$"#,##0.00'
    sheet["A2"] = "Credit"
    sheet["B2"] = -1234.5
    sheet["B2"].number_format = '"$"#,##0.00'
    sheet["A3"] = "Start"
    sheet["B3"] = datetime(2024, 5, 1)
    sheet["B4"] = "=SUM(B1:B2)"
    second = workbook.create_sheet("Notes")
    second["A1"] = "Owner approved change order"
    path = tmp_path / "budget.xlsx"
    workbook.save(path)

    chunks = LangChainDocumentNormalizer().normalize(path, "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet")

    assert [chunk.label for chunk in chunks] == ["Sheet Budget", "Sheet Notes"]
    rows = chunks[0].text.splitlines()
    assert rows[0] == "A1: Framing | B1: $45,000.00"
    assert rows[1] == "A2: Credit | B2: -$1,234.50"
    assert rows[2] == "A3: Start | B3: 2024-05-01"
    # never calculated, so the formula text is kept
    assert rows[3] == "B4: =SUM(B1:B2)"
    assert chunks[1].text == "A1: Owner approved change order"


def test_rtf_is_stripped_to_text(tmp_path: Path) -> None:
    raw = r"{\rtf1\ansi{\fonttbl{\f0 Arial;}}\f0\fs24 Roof delivery {\b Tuesday}\par Caf\'e9 \{open\}}"
    path = tmp_path / "memo.rtf"
    path.write_text(raw, encoding="latin-1")

    chunks = LangChainDocumentNormalizer().normalize(path, "application/rtf")

    assert len(chunks) == 1
    assert chunks[0].label == "Rich Text"
    assert "Roof delivery Tuesday" in chunks[0].text
    assert "Café {open}" in chunks[0].text
    assert "\\" not in chunks[0].text


def test_strip_rtf_handles_escaped_backslash() -> None:
    assert strip_rtf(r"{\rtf1 C:\\plans}") == "C:\\plans"


def test_unsupported_type_yields_diagnostic_chunk(tmp_path: Path) -> None:
    path = tmp_path / "photo.png"
    path.write_bytes(b"\x89PNG")

    chunks = LangChainDocumentNormalizer().normalize(path, "image/png")

    assert len(chunks) == 1
    assert chunks[0].diagnostic
    assert chunks[0].label == "Error"
    assert "photo.png" in chunks[0].text


def test_missing_file_yields_diagnostic_chunk(tmp_path: Path) -> None:
    chunks = LangChainDocumentNormalizer().normalize(tmp_path / "gone.txt", "text/plain")

    assert len(chunks) == 1
    assert chunks[0].diagnostic
    assert chunks[0].text.startswith("Error processing text file: gone.txt")


def test_corrupt_pdf_yields_diagnostic_chunk(tmp_path: Path) -> None:
    path = tmp_path / "plans.pdf"
    path.write_bytes(b"not a pdf at all")

    chunks = LangChainDocumentNormalizer().normalize(path, "application/pdf")

    assert len(chunks) == 1
    assert chunks[0].diagnostic
    assert "PDF" in chunks[0].text


def test_empty_text_file_yields_diagnostic_chunk(tmp_path: Path) -> None:
    path = tmp_path / "empty.txt"
    path.write_text("   \n", encoding="utf-8")

    chunks = LangChainDocumentNormalizer().normalize(path)

    assert chunks[0].diagnostic


def test_classify_prefers_declared_media_type() -> None:
    assert classify("budget.bin", "application/pdf; charset=binary") == "paginated"
    assert classify("budget.xlsx", "application/octet-stream") == "spreadsheet"
    assert classify("budget.unknown", None) is None


def test_legacy_xls_extension_is_not_routed_to_openpyxl() -> None:
    assert classify("budget.xls", None) is None
    assert classify("budget.xlsm", None) == "spreadsheet"


def test_labels_are_stable_across_runs(tmp_path: Path) -> None:
    document = tmp_path / "log.txt"
    document.write_text("\n".join(f"row {index}" for index in range(30)), encoding="utf-8")
    normalizer = LangChainDocumentNormalizer()

    first = normalizer.normalize(document)
    second = normalizer.normalize(document)

    assert first == second
