"""Pydantic models for the SiteRAG API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class TaskProjectLinkModel(BaseModel):
    project_id: str = Field(..., min_length=1)
    project_name: Optional[str] = None
    project_type: str = Field(default="main", description="Shown as [TYPE] when several projects are linked")


class ConversationCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, description="Project name shown in the instruction preamble")
    system_prompt: Optional[str] = Field(default=None, description="Overrides the deployment template")
    output_format: Optional[str] = Field(default=None, description="Appended to the instruction preamble")
    channel_id: Optional[str] = Field(default=None, description="Slack channel whose history is included")
    task_links: List[TaskProjectLinkModel] = Field(default_factory=list)


class ConversationResponse(BaseModel):
    conversation_id: str
    name: str
    system_prompt: Optional[str] = None
    output_format: Optional[str] = None
    channel_id: Optional[str] = None
    task_links: List[TaskProjectLinkModel] = Field(default_factory=list)


class DocumentSummary(BaseModel):
    document_id: str = Field(..., description="Identifier of the stored upload")
    original_name: str
    media_type: str
    size_bytes: int = Field(..., ge=0)


class DocumentUploadResponse(BaseModel):
    conversation_id: str
    documents: List[DocumentSummary]


class ChunkSummary(BaseModel):
    source: str
    label: str
    diagnostic: bool
    chars: int


class ContextResponse(BaseModel):
    conversation_id: str
    refreshed_at: Optional[datetime] = None
    chunks: List[ChunkSummary]


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, description="End-user question to answer")


class ChatResponse(BaseModel):
    message_id: Optional[str] = None
    answer: str
    citation: str
    latency_ms: float


class MessageModel(BaseModel):
    message_id: str
    author_kind: Literal["user", "assistant"]
    text: str
    citation: Optional[str] = None
    created_at: datetime


class MessageListResponse(BaseModel):
    conversation_id: str
    messages: List[MessageModel]
