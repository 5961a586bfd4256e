"""Tests for the client half of the streaming transport."""

from __future__ import annotations

import asyncio
import json
from typing import List

import httpx
import pytest

from siterag.streaming import (
    CompleteEvent,
    ContentEvent,
    ErrorEvent,
    SSEDecoder,
    StreamClient,
    StreamClientError,
    send_streaming_message,
)


def test_decoder_buffers_across_chunk_boundaries() -> None:
    decoder = SSEDecoder()

    assert decoder.feed(b'data: {"cont') == []
    assert decoder.feed(b'ent": "Hel"}\n') == []
    events = decoder.feed(b'\ndata: {"content": "lo"}\n\ndata: {"done": true, "messageId": "m1"}\n\n')

    assert events == [ContentEvent("Hel"), ContentEvent("lo"), CompleteEvent("m1")]


def test_decoder_handles_split_multibyte_characters() -> None:
    frame = 'data: {"content": "Café"}\n\n'.encode("utf-8")
    split = frame.index("é".encode("utf-8")) + 1
    decoder = SSEDecoder()

    assert decoder.feed(frame[:split]) == []
    assert decoder.feed(frame[split:]) == [ContentEvent("Café")]


def test_decoder_skips_malformed_and_unknown_frames() -> None:
    decoder = SSEDecoder()
    events = decoder.feed(b'data: not json\n\n: comment\n\ndata: {"other": 1}\n\ndata: {"error": "boom"}\n\n')

    assert events == [ErrorEvent("boom")]


def test_decoder_flushes_trailing_frame() -> None:
    decoder = SSEDecoder()
    assert decoder.feed(b'data: {"content": "tail"}') == []
    assert decoder.flush() == [ContentEvent("tail")]


def _sse_body(*payloads: dict) -> bytes:
    return "".join(f"data: {json.dumps(payload)}\n\n" for payload in payloads).encode("utf-8")


def _client(handler) -> StreamClient:
    transport = httpx.MockTransport(handler)
    return StreamClient(
        "http://siterag.test",
        api_key="secret",
        client=httpx.AsyncClient(base_url="http://siterag.test", transport=transport),
    )


def test_events_posts_message_and_yields_variants() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        body = _sse_body({"content": "Roof "}, {"content": "in June"}, {"done": True, "messageId": "m1"})
        return httpx.Response(200, content=body, headers={"Content-Type": "text/event-stream"})

    client = _client(handler)

    async def _run() -> list:
        return [event async for event in client.events("c1", "When is the roof?")]

    events = asyncio.run(_run())

    assert events == [ContentEvent("Roof "), ContentEvent("in June"), CompleteEvent("m1")]
    assert seen[0].url.path == "/conversations/c1/stream"
    assert json.loads(seen[0].content) == {"message": "When is the roof?"}
    assert seen[0].headers["X-API-Key"] == "secret"


def test_events_raise_on_error_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, json={"detail": "Error generating response"})

    client = _client(handler)

    async def _run() -> None:
        async for _ in client.events("c1", "hi"):
            pass

    with pytest.raises(StreamClientError, match="Error generating response"):
        asyncio.run(_run())


def test_callback_adapter_dispatches_each_outcome() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = _sse_body({"content": "Hi"}, {"error": "Error generating response"})
        return httpx.Response(200, content=body)

    chunks: List[str] = []
    completed: List[str | None] = []
    errors: List[Exception] = []

    async def _run() -> None:
        handle = send_streaming_message(
            _client(handler),
            "c1",
            "hi",
            on_chunk=chunks.append,
            on_complete=completed.append,
            on_error=errors.append,
        )
        await handle.wait()
        assert handle.done

    asyncio.run(_run())

    assert chunks == ["Hi"]
    assert completed == []
    assert len(errors) == 1
    assert isinstance(errors[0], StreamClientError)


def test_callback_adapter_reports_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    errors: List[Exception] = []

    async def _run() -> None:
        handle = send_streaming_message(
            _client(handler),
            "c1",
            "hi",
            on_chunk=lambda text: None,
            on_complete=lambda message_id: None,
            on_error=errors.append,
        )
        await handle.wait()

    asyncio.run(_run())

    assert len(errors) == 1
    assert isinstance(errors[0], httpx.ConnectError)


def test_cancel_is_idempotent_and_safe_after_completion() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=_sse_body({"done": True, "messageId": "m1"}))

    completed: List[str | None] = []

    async def _run() -> None:
        handle = send_streaming_message(
            _client(handler),
            "c1",
            "hi",
            on_chunk=lambda text: None,
            on_complete=completed.append,
            on_error=lambda exc: None,
        )
        handle.cancel()
        handle.cancel()
        await handle.wait()
        assert handle.cancelled

        finished = send_streaming_message(
            _client(handler),
            "c1",
            "hi",
            on_chunk=lambda text: None,
            on_complete=completed.append,
            on_error=lambda exc: None,
        )
        await finished.wait()
        finished.cancel()
        finished.cancel()

    asyncio.run(_run())

    # the first request was cancelled before it ran
    assert completed == ["m1"]
