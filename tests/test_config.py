from __future__ import annotations

from siterag.config import get_settings


def test_defaults_for_sectioning_and_streaming():
    settings = get_settings({"environment": "test"})
    assert settings.text_section_size == 50
    assert settings.text_single_chunk_max_lines == 10
    assert settings.stream_large_token_chars == 20
    assert settings.stream_words_per_group == 3
    assert settings.generator_backend == "template"


def test_upload_limits_defaults():
    settings = get_settings({"environment": "test"})
    assert settings.max_files >= 1
    assert settings.max_upload_size_mb >= 1
    assert ".xlsx" in settings.allowed_extensions_tuple
    assert ".xls" not in settings.allowed_extensions_tuple


def test_allowed_extensions_accepts_comma_separated_string():
    settings = get_settings({"allowed_extensions": ".pdf, .rtf"})
    assert settings.allowed_extensions_tuple == (".pdf", ".rtf")


def test_attribution_follows_source_details_flag():
    assert get_settings({"include_source_details": True}).attribution_required
    assert not get_settings({"include_source_details": False}).attribution_required


def test_environment_variables_use_prefix(monkeypatch):
    monkeypatch.setenv("SITERAG_TEXT_SECTION_SIZE", "25")
    monkeypatch.setenv("SITERAG_INCLUDE_DATE_IN_SOURCE", "false")
    settings = get_settings({"environment": "test"})
    assert settings.text_section_size == 25
    assert settings.include_date_in_source is False
