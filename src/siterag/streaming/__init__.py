"""Streaming transport for incremental answers."""

from .client import SSEDecoder, StreamClient, StreamClientError, StreamHandle, send_streaming_message
from .events import (
    SSE_HEADERS,
    SSE_MEDIA_TYPE,
    CompleteEvent,
    ContentEvent,
    ErrorEvent,
    StreamEvent,
    decode_payload,
    encode_frame,
)
from .segmenter import segment_token
from .transport import GENERIC_STREAM_ERROR, PacingConfig, StreamSession, StreamState

__all__ = [
    "CompleteEvent",
    "ContentEvent",
    "ErrorEvent",
    "GENERIC_STREAM_ERROR",
    "PacingConfig",
    "SSEDecoder",
    "SSE_HEADERS",
    "SSE_MEDIA_TYPE",
    "StreamClient",
    "StreamClientError",
    "StreamEvent",
    "StreamHandle",
    "StreamSession",
    "StreamState",
    "decode_payload",
    "encode_frame",
    "segment_token",
    "send_streaming_message",
]
