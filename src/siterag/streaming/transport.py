"""Server half of the streaming transport.

A ``StreamSession`` owns one streamed answer. A producer task pulls tokens
from the generation backend, re-segments large ones and feeds a bounded queue;
``frames()`` drains that queue into ``data: <JSON>`` frames with a small pacing
delay between split groups. The completion frame is written only after the
queue has been closed and fully drained, so no content frame can follow it.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import time
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, List, Optional

from siterag.errors import GenerationError
from siterag.metrics.observability import PipelineMetrics, get_logger
from siterag.streaming.events import CompleteEvent, ContentEvent, ErrorEvent, encode_frame
from siterag.streaming.segmenter import segment_token

GENERIC_STREAM_ERROR = "Error generating response"

CompletionHandler = Callable[[str], Awaitable[Optional[str]]]


class StreamState(str, enum.Enum):
    IDLE = "idle"
    GENERATING = "generating"
    COMPLETING = "completing"
    ABORTED = "aborted"
    FAILED = "failed"


@dataclass(frozen=True)
class PacingConfig:
    """Tuning for large-token re-segmentation."""

    large_token_chars: int = 20
    words_per_group: int = 3
    interval_seconds: float = 0.01
    queue_size: int = 64


@dataclass(frozen=True)
class _Segment:
    text: str
    delay: float


_CLOSED = object()


class StreamSession:
    """One in-flight streamed answer."""

    def __init__(
        self,
        tokens: AsyncIterator[str],
        *,
        on_complete: CompletionHandler | None = None,
        pacing: PacingConfig | None = None,
        error_message: str = GENERIC_STREAM_ERROR,
    ) -> None:
        self._tokens = tokens
        self._on_complete = on_complete
        self._pacing = pacing or PacingConfig()
        self._error_message = error_message
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, self._pacing.queue_size))
        self._accumulated: List[str] = []
        self._first: str | None = None
        self._exhausted = False
        self._primed = False
        self._finished = False
        self._cancelled = False
        self._failure: BaseException | None = None
        self._producer: asyncio.Task | None = None
        self._started = time.perf_counter()
        self._logger = get_logger("streaming.transport")
        self.state = StreamState.IDLE

    @property
    def text(self) -> str:
        """Everything produced so far, unsegmented."""

        return "".join(self._accumulated)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def prime(self) -> None:
        """Wait for the first non-empty token before any byte is written.

        Backend failures at this point propagate as ``GenerationError`` so the
        caller can still answer with a plain error status.
        """

        if self._primed:
            return
        self.state = StreamState.GENERATING
        while True:
            try:
                token = await self._tokens.__anext__()
            except StopAsyncIteration:
                self._exhausted = True
                break
            except GenerationError:
                await self._fail_before_output()
                raise
            except Exception as exc:
                await self._fail_before_output()
                raise GenerationError(f"Generation failed: {exc}") from exc
            if token:
                self._first = token
                break
        self._primed = True

    async def frames(self) -> AsyncIterator[str]:
        """Yield encoded frames until a terminal frame or cancellation."""

        if not self._primed:
            try:
                await self.prime()
            except GenerationError as exc:
                self._logger.error("stream.failed", stage="prime", error=str(exc))
                yield encode_frame(ErrorEvent(self._error_message))
                return
        self._producer = asyncio.create_task(self._produce())
        try:
            while True:
                item = await self._queue.get()
                if item is _CLOSED:
                    break
                if item.delay:
                    await asyncio.sleep(item.delay)
                PipelineMetrics.stream_frames.inc()
                yield encode_frame(ContentEvent(item.text))

            if self._failure is not None:
                self.state = StreamState.FAILED
                self._finished = True
                self._logger.error("stream.failed", stage="generate", error=str(self._failure), chars=len(self.text))
                PipelineMetrics.record_stream_outcome("error")
                yield encode_frame(ErrorEvent(self._error_message))
                return

            self.state = StreamState.COMPLETING
            message_id = await self._complete()
            self._finished = True
            PipelineMetrics.record_stream_outcome("done")
            self._logger.info(
                "stream.complete",
                chars=len(self.text),
                message_id=message_id,
                duration_seconds=time.perf_counter() - self._started,
            )
            yield encode_frame(CompleteEvent(message_id))
        finally:
            if not self._finished:
                await self.cancel()

    async def cancel(self) -> None:
        """Stop the session without a terminal frame; repeated calls are no-ops."""

        if self._cancelled or self._finished:
            return
        self._cancelled = True
        self.state = StreamState.ABORTED
        PipelineMetrics.record_stream_outcome("cancelled")
        self._logger.info("stream.cancelled", chars=len(self.text))
        if self._producer is not None and not self._producer.done():
            self._producer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._producer
        await self._close_tokens()

    async def _produce(self) -> None:
        try:
            if self._first is not None:
                await self._enqueue(self._first)
            while not self._exhausted and not self._cancelled:
                try:
                    token = await self._tokens.__anext__()
                except StopAsyncIteration:
                    self._exhausted = True
                    break
                if token:
                    await self._enqueue(token)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._failure = exc
        if not self._cancelled:
            await self._queue.put(_CLOSED)

    async def _enqueue(self, token: str) -> None:
        self._accumulated.append(token)
        groups = segment_token(
            token,
            threshold=self._pacing.large_token_chars,
            words_per_group=self._pacing.words_per_group,
        )
        for index, group in enumerate(groups):
            delay = self._pacing.interval_seconds if index else 0.0
            await self._queue.put(_Segment(text=group, delay=delay))

    async def _complete(self) -> str | None:
        PipelineMetrics.observe_generation(time.perf_counter() - self._started)
        if self._on_complete is None:
            return None
        return await self._on_complete(self.text)

    async def _fail_before_output(self) -> None:
        self.state = StreamState.FAILED
        self._finished = True
        PipelineMetrics.record_stream_outcome("error")
        await self._close_tokens()

    async def _close_tokens(self) -> None:
        aclose = getattr(self._tokens, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except RuntimeError as exc:
            self._logger.warning("stream.close_failed", error=str(exc))
