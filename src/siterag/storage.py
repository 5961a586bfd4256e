"""Conversation store interface and the in-memory implementation."""

from __future__ import annotations

from typing import Dict, List, Protocol, Sequence
from uuid import uuid4

from siterag.models import AuthorKind, Conversation, StoredDocument, StoredMessage


class ConversationNotFoundError(LookupError):
    """Raised when a conversation id is unknown to the store."""


class DocumentSource(Protocol):
    """Anything that can list the documents registered for a conversation."""

    async def list_documents(self, conversation_id: str) -> Sequence[StoredDocument]:
        """Return the documents currently registered for ``conversation_id``."""


class ConversationStore(DocumentSource, Protocol):
    """Persistence boundary for conversations, documents and messages."""

    async def save_conversation(self, conversation: Conversation) -> Conversation:
        """Create or replace a conversation."""

    async def get_conversation(self, conversation_id: str) -> Conversation:
        """Return the conversation or raise ``ConversationNotFoundError``."""

    async def add_document(self, document: StoredDocument) -> StoredDocument:
        """Register an uploaded document."""

    async def remove_document(self, document_id: str) -> StoredDocument | None:
        """Unregister a document; returns the removed record if it existed."""

    async def create_message(
        self,
        *,
        conversation_id: str,
        author_kind: AuthorKind,
        text: str,
        citation: str | None = None,
    ) -> StoredMessage:
        """Persist one message and return it with its id."""

    async def list_messages(self, conversation_id: str) -> Sequence[StoredMessage]:
        """Return the conversation's messages in creation order."""


class InMemoryConversationStore:
    """Dictionary-backed store used for development and tests."""

    def __init__(self) -> None:
        self._conversations: Dict[str, Conversation] = {}
        self._documents: Dict[str, StoredDocument] = {}
        self._messages: Dict[str, List[StoredMessage]] = {}

    async def save_conversation(self, conversation: Conversation) -> Conversation:
        self._conversations[conversation.conversation_id] = conversation
        self._messages.setdefault(conversation.conversation_id, [])
        return conversation

    async def get_conversation(self, conversation_id: str) -> Conversation:
        try:
            return self._conversations[conversation_id]
        except KeyError:
            raise ConversationNotFoundError(f"Conversation not found: {conversation_id}") from None

    async def list_documents(self, conversation_id: str) -> Sequence[StoredDocument]:
        return [doc for doc in self._documents.values() if doc.conversation_id == conversation_id]

    async def add_document(self, document: StoredDocument) -> StoredDocument:
        await self.get_conversation(document.conversation_id)
        self._documents[document.document_id] = document
        return document

    async def remove_document(self, document_id: str) -> StoredDocument | None:
        return self._documents.pop(document_id, None)

    async def create_message(
        self,
        *,
        conversation_id: str,
        author_kind: AuthorKind,
        text: str,
        citation: str | None = None,
    ) -> StoredMessage:
        await self.get_conversation(conversation_id)
        message = StoredMessage(
            message_id=uuid4().hex,
            conversation_id=conversation_id,
            author_kind=author_kind,
            text=text,
            citation=citation,
        )
        self._messages[conversation_id].append(message)
        return message

    async def list_messages(self, conversation_id: str) -> Sequence[StoredMessage]:
        await self.get_conversation(conversation_id)
        return list(self._messages.get(conversation_id, []))
