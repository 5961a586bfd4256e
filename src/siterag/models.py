"""Shared domain models used across the SiteRAG pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Literal, Sequence, Union

NO_SOURCE_CITATION = "No specific source available"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Chunk:
    """Normalized, citable unit of document content.

    ``diagnostic`` chunks carry a failure reason instead of content; they are
    kept for observability but never reach the prompt.
    """

    label: str
    text: str
    diagnostic: bool = False
    source: str = ""


@dataclass(frozen=True)
class DocumentRecord:
    chunk: Chunk

    def attribution(self) -> str:
        if self.chunk.source:
            return f"{self.chunk.source} - {self.chunk.label}"
        return self.chunk.label


@dataclass(frozen=True)
class ChannelMessage:
    speaker: str
    timestamp: datetime
    raw_text: str

    def attribution(self) -> str:
        return f"{self.speaker} on {self.timestamp:%Y-%m-%d %H:%M}"


@dataclass(frozen=True)
class TaskItem:
    project_label: str
    task_text: str

    def attribution(self) -> str:
        return f"Asana project {self.project_label}"


ContextRecord = Union[DocumentRecord, ChannelMessage, TaskItem]


@dataclass(frozen=True)
class Task:
    """Single task record returned by a task tracker."""

    name: str
    completed: bool = False
    due_date: date | None = None
    assignee: str | None = None


@dataclass(frozen=True)
class TaskFetchResult:
    success: bool
    tasks: Sequence[Task] = ()
    project_name: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class CachedContext:
    """Per-conversation cache entry; replaced wholesale on refresh."""

    chunks: tuple[Chunk, ...]
    refreshed_at: datetime = field(default_factory=_utcnow)

    @property
    def only_diagnostics(self) -> bool:
        return bool(self.chunks) and all(chunk.diagnostic for chunk in self.chunks)


@dataclass(frozen=True)
class AnswerRecord:
    """Answer text with its inline citation marker extracted."""

    visible_text: str
    citation: str = NO_SOURCE_CITATION


@dataclass(frozen=True)
class TaskProjectLink:
    project_id: str
    project_name: str | None = None
    project_type: str = "main"


@dataclass(frozen=True)
class Conversation:
    """Addressable unit against which documents, history and cache are scoped."""

    conversation_id: str
    name: str
    system_prompt: str | None = None
    output_format: str | None = None
    channel_id: str | None = None
    task_links: Sequence[TaskProjectLink] = ()


@dataclass(frozen=True)
class StoredDocument:
    document_id: str
    conversation_id: str
    path: str
    media_type: str
    original_name: str
    uploaded_at: datetime = field(default_factory=_utcnow)


AuthorKind = Literal["user", "assistant"]


@dataclass(frozen=True)
class StoredMessage:
    message_id: str
    conversation_id: str
    author_kind: AuthorKind
    text: str
    citation: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
