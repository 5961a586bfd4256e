"""Chat orchestration combining context assembly, generation and persistence."""

from __future__ import annotations

import time
from dataclasses import dataclass

from siterag.context.assembler import AssembledContext, ContextAssembler
from siterag.metrics.observability import PipelineMetrics, get_logger
from siterag.models import AnswerRecord, AuthorKind, StoredMessage
from siterag.services.citations import extract_citation
from siterag.services.generation import UNAVAILABLE_ANSWER, GenerationBackend, GenerationError
from siterag.storage import ConversationStore
from siterag.streaming.transport import PacingConfig, StreamSession

APOLOGY_ANSWER = "I'm having trouble connecting to my knowledge base. Please try again later."
ERROR_CITATION = "Error"


@dataclass(frozen=True)
class ChatReply:
    """Outcome of one blocking question."""

    answer: AnswerRecord
    message_id: str | None
    question_id: str | None
    latency_ms: float


class ChatService:
    """Answers questions for a conversation, blocking or streamed."""

    def __init__(
        self,
        store: ConversationStore,
        assembler: ContextAssembler,
        generator: GenerationBackend,
        *,
        model: str | None = None,
        attribution_required: bool = True,
        pacing: PacingConfig | None = None,
    ) -> None:
        self._store = store
        self._assembler = assembler
        self._generator = generator
        self._model = model
        self._attribution_required = attribution_required
        self._pacing = pacing
        self._logger = get_logger("chat")

    async def answer(self, conversation_id: str, message: str) -> ChatReply:
        start = time.perf_counter()
        conversation = await self._store.get_conversation(conversation_id)
        question = await self._persist(conversation_id, "user", message)
        context = await self._assembler.assemble(conversation)

        generation_start = time.perf_counter()
        try:
            raw = await self._generator.complete(
                system=context.system_instructions(),
                prompt=message,
                model=self._model,
            )
        except GenerationError as exc:
            self._logger.error("generation.failed", conversation_id=conversation_id, error=str(exc))
            record = AnswerRecord(visible_text=APOLOGY_ANSWER, citation=ERROR_CITATION)
        else:
            generation_duration = time.perf_counter() - generation_start
            PipelineMetrics.observe_generation(generation_duration)
            record = self.finalize(raw)
            self._logger.info(
                "generation.complete",
                conversation_id=conversation_id,
                duration_seconds=generation_duration,
                citation=record.citation,
            )

        stored = await self._persist(conversation_id, "assistant", record.visible_text, record.citation)
        return ChatReply(
            answer=record,
            message_id=stored.message_id if stored else None,
            question_id=question.message_id if question else None,
            latency_ms=(time.perf_counter() - start) * 1000,
        )

    async def open_stream(self, conversation_id: str, message: str) -> StreamSession:
        """Persist the question, assemble context and return an unprimed session."""

        conversation = await self._store.get_conversation(conversation_id)
        await self._persist(conversation_id, "user", message)
        context = await self._assembler.assemble(conversation)
        tokens = self._generator.stream(
            system=context.system_instructions(),
            prompt=message,
            model=self._model,
        )

        async def _on_complete(text: str) -> str | None:
            record = self.finalize(text)
            stored = await self._persist(conversation_id, "assistant", record.visible_text, record.citation)
            return stored.message_id if stored else None

        return StreamSession(tokens, on_complete=_on_complete, pacing=self._pacing)

    async def preview_context(self, conversation_id: str) -> AssembledContext:
        conversation = await self._store.get_conversation(conversation_id)
        return await self._assembler.assemble(conversation)

    def finalize(self, raw_text: str) -> AnswerRecord:
        return extract_citation(raw_text or UNAVAILABLE_ANSWER, attribution_required=self._attribution_required)

    async def _persist(
        self,
        conversation_id: str,
        author_kind: AuthorKind,
        text: str,
        citation: str | None = None,
    ) -> StoredMessage | None:
        try:
            return await self._store.create_message(
                conversation_id=conversation_id,
                author_kind=author_kind,
                text=text,
                citation=citation,
            )
        except Exception as exc:  # the answer is still delivered when the store is down
            self._logger.error(
                "store.write_failed",
                conversation_id=conversation_id,
                author_kind=author_kind,
                error=str(exc),
            )
            return None
