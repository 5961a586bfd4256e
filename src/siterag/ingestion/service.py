"""Document normalization service for SiteRAG."""

from __future__ import annotations

import re
import time
import unicodedata
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Callable, List, Literal, Mapping, Protocol, Sequence

from langchain_community.document_loaders import Docx2txtLoader, PyPDFLoader, TextLoader
from openpyxl import load_workbook

from siterag.metrics.observability import PipelineMetrics, get_logger
from siterag.models import Chunk

DocumentFamily = Literal["paginated", "spreadsheet", "text", "rich_text", "word"]


class IngestionError(RuntimeError):
    """Raised when a document cannot be turned into chunks."""


class UnsupportedDocumentError(IngestionError):
    """Raised when neither the media type nor the extension is recognised."""


_MEDIA_TYPE_FAMILIES: Mapping[str, DocumentFamily] = {
    "application/pdf": "paginated",
    "application/vnd.ms-excel": "spreadsheet",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "spreadsheet",
    "application/vnd.ms-excel.sheet.macroenabled.12": "spreadsheet",
    "text/plain": "text",
    "text/csv": "text",
    "text/markdown": "text",
    "application/rtf": "rich_text",
    "text/rtf": "rich_text",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "word",
}

_EXTENSION_FAMILIES: Mapping[str, DocumentFamily] = {
    ".pdf": "paginated",
    ".xlsx": "spreadsheet",
    ".xlsm": "spreadsheet",
    ".txt": "text",
    ".csv": "text",
    ".md": "text",
    ".log": "text",
    ".rtf": "rich_text",
    ".docx": "word",
}

_FAMILY_NAMES: Mapping[str, str] = {
    "paginated": "PDF",
    "spreadsheet": "Excel file",
    "text": "text file",
    "rich_text": "rich text file",
    "word": "Word document",
}

_CURRENCY_MARKERS = ("€", "£", "¥", "$")


@dataclass(frozen=True)
class NormalizerConfig:
    """Configuration for document normalization."""

    section_size: int = 50
    single_chunk_max_lines: int = 10
    currency_symbol: str = "$"
    encoding: str = "utf-8"


class DocumentNormalizer(Protocol):
    """Protocol for normalizer implementations."""

    def normalize(self, path: Path | str, media_type: str | None = None) -> Sequence[Chunk]:
        """Turn the file at ``path`` into labelled chunks; never raises."""


def classify(path: Path | str, media_type: str | None = None) -> DocumentFamily | None:
    """Pick a document family from the declared media type, then the extension."""

    if media_type:
        declared = media_type.split(";", 1)[0].strip().lower()
        family = _MEDIA_TYPE_FAMILIES.get(declared)
        if family is not None:
            return family
    return _EXTENSION_FAMILIES.get(Path(path).suffix.lower())


def _normalize_text(raw: str) -> str:
    normalized = unicodedata.normalize("NFKC", raw)
    normalized = normalized.replace("\u00a0", " ")
    normalized = re.sub(r"[ \t]+", " ", normalized)
    normalized = re.sub(r"\n\s*\n+", "\n", normalized)
    return normalized.strip()


def strip_rtf(raw: str) -> str:
    """Remove RTF control sequences, keeping the visible text."""

    text = raw.replace("\\\\", "\x00").replace("\\{", "\x01").replace("\\}", "\x02")
    text = re.sub(
        r"\\'([0-9a-fA-F]{2})",
        lambda match: bytes.fromhex(match.group(1)).decode("cp1252", errors="replace"),
        text,
    )
    text = re.sub(r"\{\\\*[^{}]*\}", "", text)
    text = re.sub(r"\{\\(?:fonttbl|colortbl|stylesheet|info)[^{}]*(?:\{[^{}]*\}[^{}]*)*\}", "", text)
    text = re.sub(r"\\(?:par|line)\b ?", "\n", text)
    text = re.sub(r"\\tab\b ?", "\t", text)
    text = re.sub(r"\\[a-zA-Z]+-?\d* ?", "", text)
    text = re.sub(r"\\[^a-zA-Z0-9]", "", text)
    text = text.replace("{", "").replace("}", "")
    text = text.replace("\x00", "\\").replace("\x01", "{").replace("\x02", "}")
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


class LangChainDocumentNormalizer:
    """Normalize uploads via LangChain loaders and openpyxl into citable chunks."""

    _logger = get_logger("normalizer")

    def __init__(self, config: NormalizerConfig | None = None) -> None:
        self._config = config or NormalizerConfig()
        self._handlers: Mapping[str, Callable[[Path], List[Chunk]]] = {
            "paginated": self._extract_pages,
            "spreadsheet": self._extract_sheets,
            "text": self._extract_text,
            "rich_text": self._extract_rich_text,
            "word": self._extract_word,
        }

    def normalize(self, path: Path | str, media_type: str | None = None) -> Sequence[Chunk]:
        path = Path(path)
        family = classify(path, media_type)
        kind = _FAMILY_NAMES.get(family or "", "document")
        start = time.perf_counter()
        try:
            if family is None:
                raise UnsupportedDocumentError(f"unsupported file type {media_type or path.suffix or '<none>'}")
            if not path.is_file():
                raise IngestionError("file not found")
            chunks = self._handlers[family](path)
            if not chunks:
                raise IngestionError("no extractable content")
        except Exception as exc:  # one bad upload must not abort a conversation's context
            duration = time.perf_counter() - start
            PipelineMetrics.observe_normalization(duration, 1, failed=True)
            self._logger.warning(
                "normalizer.failed",
                path=str(path),
                media_type=media_type,
                family=family,
                error=str(exc),
            )
            return [Chunk(label="Error", text=f"Error processing {kind}: {path.name} ({exc})", diagnostic=True)]

        duration = time.perf_counter() - start
        PipelineMetrics.observe_normalization(duration, len(chunks))
        self._logger.info(
            "normalizer.complete",
            path=str(path),
            family=family,
            chunk_count=len(chunks),
            duration_seconds=duration,
        )
        return chunks

    def _extract_pages(self, path: Path) -> List[Chunk]:
        documents = PyPDFLoader(str(path)).load()
        chunks: List[Chunk] = []
        for index, document in enumerate(documents):
            text = _normalize_text(document.page_content)
            if not text:
                continue
            page = int(document.metadata.get("page", index)) + 1
            chunks.append(Chunk(label=f"Page {page}", text=text))
        return chunks

    def _extract_sheets(self, path: Path) -> List[Chunk]:
        # formulas and formats come from one load, cached results from the other
        formulas = load_workbook(path, data_only=False)
        values = load_workbook(path, data_only=True)
        chunks: List[Chunk] = []
        try:
            for sheet in formulas.worksheets:
                cached_sheet = values[sheet.title]
                rows: List[str] = []
                for row in sheet.iter_rows():
                    cells: List[str] = []
                    for cell in row:
                        rendered = self._render_cell(cell, cached_sheet[cell.coordinate].value)
                        if rendered:
                            cells.append(f"{cell.coordinate}: {rendered}")
                    if cells:
                        rows.append(" | ".join(cells))
                if rows:
                    chunks.append(Chunk(label=f"Sheet {sheet.title}", text="\n".join(rows)))
        finally:
            formulas.close()
            values.close()
        return chunks

    def _render_cell(self, cell, cached: object) -> str | None:
        value = cell.value
        if cell.data_type == "f":
            value = cached if cached is not None else getattr(value, "text", value)
        if value is None:
            return None
        if isinstance(value, datetime):
            return value.strftime("%Y-%m-%d")
        if isinstance(value, date):
            return value.isoformat()
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            symbol = self._currency_symbol(cell.number_format)
            if symbol:
                sign = "-" if value < 0 else ""
                return f"{sign}{symbol}{abs(value):,.2f}"
            return str(value)
        return str(value).strip() or None

    def _currency_symbol(self, number_format: str | None) -> str | None:
        if not number_format:
            return None
        for marker in _CURRENCY_MARKERS:
            if marker in number_format:
                return self._config.currency_symbol if marker == "$" else marker
        return None

    def _extract_text(self, path: Path) -> List[Chunk]:
        documents = TextLoader(str(path), encoding=self._config.encoding, autodetect_encoding=True).load()
        content = "\n".join(document.page_content for document in documents)
        return self._section(content, "Text File")

    def _extract_rich_text(self, path: Path) -> List[Chunk]:
        raw = path.read_text(encoding="latin-1")
        return self._section(strip_rtf(raw), "Rich Text")

    def _extract_word(self, path: Path) -> List[Chunk]:
        documents = Docx2txtLoader(str(path)).load()
        content = "\n".join(document.page_content for document in documents)
        return self._section(content, "Word Document")

    def _section(self, content: str, base_label: str) -> List[Chunk]:
        if not content.strip():
            return []
        lines = content.splitlines()
        if len(lines) <= self._config.single_chunk_max_lines:
            return [Chunk(label=base_label, text=content.strip())]
        size = max(1, self._config.section_size)
        chunks: List[Chunk] = []
        for offset in range(0, len(lines), size):
            section = lines[offset : offset + size]
            numbered = "\n".join(f"Line {offset + index + 1}: {line}" for index, line in enumerate(section))
            chunks.append(Chunk(label=f"{base_label} Section {offset // size + 1}", text=numbered))
        return chunks


def normalize_path(path: Path | str, media_type: str | None = None, *, config: NormalizerConfig | None = None) -> Sequence[Chunk]:
    """Convenience helper for tests and ad-hoc normalization."""

    normalizer = LangChainDocumentNormalizer(config=config)
    return normalizer.normalize(path, media_type)
