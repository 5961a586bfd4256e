from __future__ import annotations

import io
import json
from pathlib import Path

from siterag.cli import parse_args, run_normalize


def test_normalize_prints_chunks_as_json(tmp_path: Path) -> None:
    document = tmp_path / "notes.txt"
    document.write_text("Roof in June", encoding="utf-8")
    out = io.StringIO()

    code = run_normalize(document, as_json=True, out=out)

    assert code == 0
    assert json.loads(out.getvalue()) == [{"label": "Text File", "text": "Roof in June", "diagnostic": False}]


def test_normalize_reports_failure_exit_code(tmp_path: Path) -> None:
    out = io.StringIO()

    code = run_normalize(tmp_path / "missing.pdf", out=out)

    assert code == 1
    assert "(diagnostic)" in out.getvalue()


def test_ask_arguments() -> None:
    args = parse_args(["ask", "c1", "When is the roof?", "--url", "http://api:8000"])

    assert args.command == "ask"
    assert args.conversation_id == "c1"
    assert args.url == "http://api:8000"
