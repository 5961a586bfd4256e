"""Tests for chat orchestration."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import AsyncIterator, List, Sequence

from siterag.context import ContextAssembler, ContextCache
from siterag.models import Conversation, StoredDocument, StoredMessage
from siterag.services import APOLOGY_ANSWER, ChatService, GenerationError, TemplateGenerator
from siterag.ingestion import LangChainDocumentNormalizer
from siterag.sources import StaticChannelHistory, StaticTaskTracker
from siterag.storage import InMemoryConversationStore
from siterag.streaming import PacingConfig


class FailingGenerator:
    async def complete(self, *, system: str, prompt: str, model: str | None = None) -> str:
        raise GenerationError("backend unavailable")

    async def stream(self, *, system: str, prompt: str, model: str | None = None) -> AsyncIterator[str]:
        raise GenerationError("backend unavailable")
        yield ""  # pragma: no cover


class FlakyStore(InMemoryConversationStore):
    """Store whose message writes always fail."""

    async def create_message(self, **kwargs) -> StoredMessage:
        raise ConnectionError("database is down")


def _service(tmp_path: Path, *, store: InMemoryConversationStore | None = None, generator=None) -> tuple[ChatService, InMemoryConversationStore]:
    store = store or InMemoryConversationStore()
    document = tmp_path / "budget.txt"
    document.write_text("Framing budget is $45,000", encoding="utf-8")

    async def _seed() -> None:
        await store.save_conversation(Conversation(conversation_id="c1", name="Maple Street"))
        await store.add_document(
            StoredDocument(
                document_id="d1",
                conversation_id="c1",
                path=str(document),
                media_type="text/plain",
                original_name="budget.txt",
            ),
        )

    asyncio.run(_seed())
    cache = ContextCache(LangChainDocumentNormalizer(), store)
    assembler = ContextAssembler(cache, StaticChannelHistory(), StaticTaskTracker())
    service = ChatService(
        store,
        assembler,
        generator or TemplateGenerator(),
        pacing=PacingConfig(interval_seconds=0.0),
    )
    return service, store


def test_blocking_answer_persists_question_and_answer(tmp_path: Path) -> None:
    service, store = _service(tmp_path)

    reply = asyncio.run(service.answer("c1", "What is the framing budget?"))
    messages: Sequence[StoredMessage] = asyncio.run(store.list_messages("c1"))

    assert reply.answer.citation == "budget.txt - Text File"
    assert "[From" not in reply.answer.visible_text
    assert "$45,000" in reply.answer.visible_text
    assert [message.author_kind for message in messages] == ["user", "assistant"]
    assert messages[1].message_id == reply.message_id
    assert messages[1].citation == "budget.txt - Text File"


def test_generation_failure_returns_apology(tmp_path: Path) -> None:
    service, store = _service(tmp_path, generator=FailingGenerator())

    reply = asyncio.run(service.answer("c1", "Anything?"))

    assert reply.answer.visible_text == APOLOGY_ANSWER
    assert reply.answer.citation == "Error"
    assert len(asyncio.run(store.list_messages("c1"))) == 2


def test_persistence_failure_is_not_fatal(tmp_path: Path) -> None:
    service, _ = _service(tmp_path, store=FlakyStore())

    reply = asyncio.run(service.answer("c1", "What is the framing budget?"))

    assert reply.message_id is None
    assert reply.question_id is None
    assert reply.answer.citation == "budget.txt - Text File"


def test_stream_persists_answer_once_after_completion(tmp_path: Path) -> None:
    service, store = _service(tmp_path)

    async def _run() -> List[str]:
        session = await service.open_stream("c1", "What is the framing budget?")
        await session.prime()
        return [frame async for frame in session.frames()]

    frames = asyncio.run(_run())
    payloads = [json.loads(frame[len("data: ") : -2]) for frame in frames]
    messages = asyncio.run(store.list_messages("c1"))

    streamed = "".join(payload.get("content", "") for payload in payloads)
    assert streamed.endswith("[From budget.txt - Text File]")
    assert payloads[-1]["done"] is True
    assert [message.author_kind for message in messages] == ["user", "assistant"]
    assert payloads[-1]["messageId"] == messages[1].message_id
    assert "[From" not in messages[1].text
