"""Event variants and the ``data: <JSON>`` frame codec."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping, Union

SSE_HEADERS: Mapping[str, str] = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
SSE_MEDIA_TYPE = "text/event-stream"


@dataclass(frozen=True)
class ContentEvent:
    text: str


@dataclass(frozen=True)
class CompleteEvent:
    message_id: str | None = None


@dataclass(frozen=True)
class ErrorEvent:
    reason: str


StreamEvent = Union[ContentEvent, CompleteEvent, ErrorEvent]


def encode_frame(event: StreamEvent) -> str:
    if isinstance(event, ContentEvent):
        payload: dict[str, Any] = {"content": event.text}
    elif isinstance(event, CompleteEvent):
        payload = {"done": True, "messageId": event.message_id}
    else:
        payload = {"error": event.reason}
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def decode_payload(payload: Any) -> StreamEvent | None:
    """Map a parsed frame payload onto an event; ``None`` for unknown shapes."""

    if not isinstance(payload, Mapping):
        return None
    if "error" in payload:
        return ErrorEvent(reason=str(payload["error"]))
    if payload.get("done"):
        message_id = payload.get("messageId")
        return CompleteEvent(message_id=str(message_id) if message_id is not None else None)
    content = payload.get("content")
    if isinstance(content, str):
        return ContentEvent(text=content)
    return None
