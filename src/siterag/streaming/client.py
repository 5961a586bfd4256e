"""Client half of the streaming transport."""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import json
from typing import AsyncIterator, Callable, List, Mapping

import httpx

from siterag.metrics.observability import get_logger
from siterag.streaming.events import CompleteEvent, ContentEvent, ErrorEvent, StreamEvent, decode_payload

LOGGER = get_logger("streaming.client")


class StreamClientError(RuntimeError):
    """Raised for transport failures and server-reported stream errors."""


class SSEDecoder:
    """Incremental decoder turning raw response bytes into stream events.

    Bytes are decoded as UTF-8 across chunk boundaries and buffered until a
    blank line ends a frame. Frames whose data is not JSON, or whose payload
    has no known shape, are logged and skipped.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, data: bytes) -> List[StreamEvent]:
        self._buffer += self._decoder.decode(data)
        return self._drain()

    def flush(self) -> List[StreamEvent]:
        self._buffer += self._decoder.decode(b"", final=True)
        events = self._drain()
        remainder, self._buffer = self._buffer, ""
        if remainder.strip():
            event = self._parse(remainder)
            if event is not None:
                events.append(event)
        return events

    def _drain(self) -> List[StreamEvent]:
        events: List[StreamEvent] = []
        self._buffer = self._buffer.replace("\r\n", "\n")
        while "\n\n" in self._buffer:
            raw, self._buffer = self._buffer.split("\n\n", 1)
            event = self._parse(raw)
            if event is not None:
                events.append(event)
        return events

    @staticmethod
    def _parse(raw: str) -> StreamEvent | None:
        data_lines = []
        for line in raw.split("\n"):
            if not line.startswith("data:"):
                continue
            value = line[5:]
            data_lines.append(value[1:] if value.startswith(" ") else value)
        if not data_lines:
            return None
        data = "\n".join(data_lines)
        try:
            payload = json.loads(data)
        except json.JSONDecodeError as exc:
            LOGGER.warning("stream.frame_malformed", error=str(exc), frame=data[:200])
            return None
        event = decode_payload(payload)
        if event is None:
            LOGGER.warning("stream.frame_unknown", frame=data[:200])
        return event


class StreamClient:
    """Opens streaming chat requests against the SiteRAG API."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        connect_timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._headers = {"Accept": "text/event-stream"}
        if api_key:
            self._headers["X-API-Key"] = api_key
        self._owns_client = client is None
        # no read timeout: generation has no upper bound
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(connect_timeout, read=None),
        )

    async def events(self, conversation_id: str, message: str) -> AsyncIterator[StreamEvent]:
        """Yield events for one question until the server closes the stream."""

        async with self._client.stream(
            "POST",
            f"/conversations/{conversation_id}/stream",
            json={"message": message},
            headers=self._headers,
        ) as response:
            if response.status_code >= 400:
                body = (await response.aread()).decode("utf-8", errors="replace")
                raise StreamClientError(f"Stream request failed ({response.status_code}): {_detail(body)}")
            decoder = SSEDecoder()
            async for data in response.aiter_bytes():
                for event in decoder.feed(data):
                    yield event
            for event in decoder.flush():
                yield event

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "StreamClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


def _detail(body: str) -> str:
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        return body[:200]
    if isinstance(payload, Mapping) and "detail" in payload:
        return str(payload["detail"])
    return body[:200]


class StreamHandle:
    """Cancellation handle returned by ``send_streaming_message``."""

    def __init__(self, task: asyncio.Task) -> None:
        self._task = task
        self._cancelled = False

    @property
    def done(self) -> bool:
        return self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Abort the transfer. Safe to call repeatedly or after completion."""

        if self._cancelled:
            return
        self._cancelled = True
        if not self._task.done():
            self._task.cancel()

    async def wait(self) -> None:
        with contextlib.suppress(asyncio.CancelledError):
            await self._task


def send_streaming_message(
    client: StreamClient,
    conversation_id: str,
    message: str,
    *,
    on_chunk: Callable[[str], None],
    on_complete: Callable[[str | None], None],
    on_error: Callable[[Exception], None],
) -> StreamHandle:
    """Callback adapter over ``StreamClient.events``.

    Must be called from a running event loop; the transfer runs as a task.
    """

    async def _pump() -> None:
        try:
            async for event in client.events(conversation_id, message):
                if isinstance(event, ContentEvent):
                    on_chunk(event.text)
                elif isinstance(event, CompleteEvent):
                    on_complete(event.message_id)
                elif isinstance(event, ErrorEvent):
                    on_error(StreamClientError(event.reason))
        except (httpx.HTTPError, StreamClientError) as exc:
            on_error(exc)

    return StreamHandle(asyncio.create_task(_pump()))
