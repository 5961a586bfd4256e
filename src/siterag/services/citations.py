"""Inline citation extraction for generated answers."""

from __future__ import annotations

import re

from siterag.models import NO_SOURCE_CITATION, AnswerRecord

BRACKET_CITATION = re.compile(r"\[(?:From |Source: ?|Slack(?: message)?,? )(?P<citation>[^\]]*?)\]")
ATTRIBUTION_PHRASE = re.compile(r"according to (?P<citation>[^.]+)", re.IGNORECASE)
_TRAILING_PUNCTUATION = ".,;:!?"


def extract_citation(raw_text: str, *, attribution_required: bool = False) -> AnswerRecord:
    """Split the generated text into visible text and a citation.

    A bracketed marker is removed from the visible text; an "according to"
    phrase is only consulted when attribution is mandatory and stays in place.
    """

    match = BRACKET_CITATION.search(raw_text)
    if match:
        visible = remove_marker(raw_text, match.group(0))
        citation = match.group("citation").strip()
        return AnswerRecord(visible_text=visible.strip(), citation=citation or NO_SOURCE_CITATION)
    if attribution_required:
        phrase = ATTRIBUTION_PHRASE.search(raw_text)
        if phrase and phrase.group("citation").strip():
            return AnswerRecord(visible_text=raw_text.strip(), citation=phrase.group("citation").strip())
    return AnswerRecord(visible_text=raw_text.strip(), citation=NO_SOURCE_CITATION)


def remove_marker(text: str, marker: str) -> str:
    """Delete every copy of ``marker``, touching only the spaces around each copy."""

    pattern = re.compile(r"(?P<lead>[ \t]*)" + re.escape(marker) + r"(?P<trail>[ \t]*)")

    def _replace(found: re.Match[str]) -> str:
        following = found.string[found.end() : found.end() + 1]
        if not following or following == "\n" or following in _TRAILING_PUNCTUATION:
            return ""
        preceding = found.string[found.start() - 1] if found.start() else "\n"
        if preceding == "\n":
            return found.group("lead")
        if found.group("lead") and found.group("trail"):
            return " "
        return found.group("lead") or found.group("trail")

    return pattern.sub(_replace, text)
