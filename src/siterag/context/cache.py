"""Per-conversation cache of normalized document chunks."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Dict, Sequence

from siterag.ingestion import DocumentNormalizer
from siterag.metrics.observability import get_logger
from siterag.models import CachedContext, Chunk, StoredDocument
from siterag.storage import DocumentSource


class ContextCache:
    """Holds the latest normalized chunks for each conversation.

    One instance is built per process and handed to every request handler.
    Refreshes replace an entry with a single assignment of an immutable tuple,
    so readers see either the old snapshot or the new one. Concurrent refreshes
    for the same conversation are not serialized; the last swap wins. Entries
    never expire and the cache has no size bound.
    """

    def __init__(self, normalizer: DocumentNormalizer, documents: DocumentSource) -> None:
        self._normalizer = normalizer
        self._documents = documents
        self._entries: Dict[str, CachedContext] = {}
        self._logger = get_logger("context.cache")

    async def get(self, conversation_id: str, *, force_refresh: bool = False) -> Sequence[Chunk]:
        entry = self._entries.get(conversation_id)
        if entry is not None and not force_refresh:
            if not entry.only_diagnostics:
                return entry.chunks
            self._logger.info("cache.diagnostics_only", conversation_id=conversation_id)
        return await self.refresh(conversation_id)

    async def refresh(self, conversation_id: str) -> Sequence[Chunk]:
        documents = await self._documents.list_documents(conversation_id)
        normalized = await asyncio.gather(*(self._normalize(document) for document in documents))
        chunks = tuple(chunk for group in normalized for chunk in group)
        self._entries[conversation_id] = CachedContext(chunks=chunks)
        self._logger.info(
            "cache.refreshed",
            conversation_id=conversation_id,
            document_count=len(documents),
            chunk_count=len(chunks),
            diagnostic_count=sum(1 for chunk in chunks if chunk.diagnostic),
        )
        return chunks

    async def _normalize(self, document: StoredDocument) -> list[Chunk]:
        chunks = await asyncio.to_thread(self._normalizer.normalize, document.path, document.media_type)
        return [replace(chunk, source=document.original_name) for chunk in chunks]

    def peek(self, conversation_id: str) -> CachedContext | None:
        return self._entries.get(conversation_id)

    def invalidate(self, conversation_id: str) -> bool:
        removed = self._entries.pop(conversation_id, None) is not None
        self._logger.info("cache.invalidated", conversation_id=conversation_id, removed=removed)
        return removed

    def invalidate_all(self) -> None:
        count = len(self._entries)
        self._entries = {}
        self._logger.info("cache.cleared", entry_count=count)

    def __len__(self) -> int:
        return len(self._entries)
