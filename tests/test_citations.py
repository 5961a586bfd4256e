"""Tests for citation extraction."""

from __future__ import annotations

from siterag.models import NO_SOURCE_CITATION
from siterag.services.citations import extract_citation


def test_bracket_marker_is_removed_and_captured() -> None:
    record = extract_citation("Framing costs $45,000. [From budget.xlsx - Sheet Budget]")

    assert record.visible_text == "Framing costs $45,000."
    assert record.citation == "budget.xlsx - Sheet Budget"


def test_source_prefix_variant() -> None:
    record = extract_citation("Drywall arrives Thursday [Source: Slack message from Dana on 2024-05-02].")

    assert record.visible_text == "Drywall arrives Thursday."
    assert record.citation == "Slack message from Dana on 2024-05-02"


def test_slack_prefix_variant() -> None:
    record = extract_citation("Inspection moved to Friday. [Slack message, Dana 2024-05-03]")

    assert record.citation == "Dana 2024-05-03"


def test_repeated_marker_is_removed_everywhere() -> None:
    marker = "[From notes.txt - Text File]"
    record = extract_citation(f"Roof in June {marker}. Siding in July {marker}")

    assert marker not in record.visible_text
    assert record.visible_text == "Roof in June. Siding in July"


def test_only_first_distinct_marker_is_used() -> None:
    record = extract_citation("A [From a.pdf - Page 1] and B [From b.pdf - Page 2]")

    assert record.citation == "a.pdf - Page 1"
    assert "[From b.pdf - Page 2]" in record.visible_text


def test_attribution_phrase_used_when_required() -> None:
    text = "The crane arrives Monday according to Dana on 2024-05-02 14:30."
    record = extract_citation(text, attribution_required=True)

    assert record.citation == "Dana on 2024-05-02 14:30"
    assert record.visible_text == text


def test_attribution_phrase_ignored_when_not_required() -> None:
    record = extract_citation("The crane arrives Monday according to Dana.")

    assert record.citation == NO_SOURCE_CITATION


def test_plain_brackets_are_not_citations() -> None:
    record = extract_citation("Use the [approved] plan set.", attribution_required=True)

    assert record.visible_text == "Use the [approved] plan set."
    assert record.citation == NO_SOURCE_CITATION


def test_no_marker_yields_sentinel() -> None:
    record = extract_citation("I wasn't able to find that information in the project files or messages.")

    assert record.citation == NO_SOURCE_CITATION
    assert record.citation


def test_text_away_from_marker_is_left_untouched() -> None:
    raw = "Steps:\n- Pour footing\n    - rebar first\nTotal:  $45,000 ? [From plan.pdf - Page 2]"
    record = extract_citation(raw)

    assert record.visible_text == "Steps:\n- Pour footing\n    - rebar first\nTotal:  $45,000 ?"
    assert record.citation == "plan.pdf - Page 2"


def test_marker_mid_sentence_leaves_single_space() -> None:
    record = extract_citation("Pour on  Monday [From schedule.pdf - Page 1] after the  inspection.")

    assert record.visible_text == "Pour on  Monday after the  inspection."


def test_marker_on_its_own_line_keeps_indentation_of_next_line() -> None:
    record = extract_citation("Budget:\n[From budget.xlsx - Sheet Costs] \n    B12: $45,000.00")

    assert record.visible_text == "Budget:\n\n    B12: $45,000.00"
