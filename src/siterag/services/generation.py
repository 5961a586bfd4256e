"""Generation backends for SiteRAG."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, AsyncIterator, Mapping, Protocol, Union

from openai import AsyncOpenAI, OpenAIError

from siterag.config import Settings
from siterag.errors import GenerationError, UnrecognizedOutputError

LOGGER = logging.getLogger(__name__)

UNAVAILABLE_ANSWER = "I wasn't able to find that information in the project files or messages."


@dataclass(frozen=True)
class GenerationConfig:
    """Configuration for answer generation."""

    model: str = "gpt-4o"
    temperature: float = 0.7
    api_key: str | None = None
    base_url: str | None = None


@dataclass(frozen=True)
class TextOutput:
    text: str


@dataclass(frozen=True)
class EmptyOutput:
    pass


@dataclass(frozen=True)
class UnrecognizedOutput:
    shape: str


GenerationOutput = Union[TextOutput, EmptyOutput, UnrecognizedOutput]


def _as_mapping(payload: Any) -> Mapping[str, Any] | None:
    if isinstance(payload, Mapping):
        return payload
    dump = getattr(payload, "model_dump", None)
    if callable(dump):
        data = dump()
        if isinstance(data, Mapping):
            return data
    return None


def _text_or_empty(value: Any) -> GenerationOutput | None:
    if value is None:
        return EmptyOutput()
    if isinstance(value, str):
        return TextOutput(value) if value else EmptyOutput()
    return None


def extract_output(payload: Any) -> GenerationOutput:
    """Read one backend envelope into a tagged output variant.

    Known shapes: plain strings, chat completion chunks (``choices[0].delta``),
    chat completions (``choices[0].message``), legacy completions
    (``choices[0].text``), responses (``output_text``) and ``{"content": ...}``.
    """

    if isinstance(payload, str):
        return TextOutput(payload) if payload else EmptyOutput()
    data = _as_mapping(payload)
    if data is None:
        return UnrecognizedOutput(shape=type(payload).__name__)
    if "output_text" in data:
        output = _text_or_empty(data["output_text"])
        if output is not None:
            return output
    choices = data.get("choices")
    if isinstance(choices, list):
        if not choices:
            return EmptyOutput()
        first = _as_mapping(choices[0]) or {}
        for key in ("delta", "message"):
            part = first.get(key)
            if isinstance(part, Mapping) and "content" in part:
                output = _text_or_empty(part["content"])
                if output is not None:
                    return output
            elif key in first and part is None:
                return EmptyOutput()
        if "text" in first:
            output = _text_or_empty(first["text"])
            if output is not None:
                return output
        if first.get("finish_reason"):
            return EmptyOutput()
    if "content" in data:
        output = _text_or_empty(data["content"])
        if output is not None:
            return output
    keys = ", ".join(sorted(str(key) for key in data)[:8])
    return UnrecognizedOutput(shape=f"{type(payload).__name__}{{{keys}}}")


def require_text(output: GenerationOutput) -> str:
    if isinstance(output, TextOutput):
        return output.text
    if isinstance(output, EmptyOutput):
        return ""
    raise UnrecognizedOutputError(f"Unrecognized generation output shape: {output.shape}")


class GenerationBackend(Protocol):
    """Protocol describing generation behaviour."""

    async def complete(self, *, system: str, prompt: str, model: str | None = None) -> str:
        """Return the whole answer at once."""

    def stream(self, *, system: str, prompt: str, model: str | None = None) -> AsyncIterator[str]:
        """Yield the answer as in-order text increments."""


_DOCUMENT_LINE = re.compile(r"^DOCUMENT \[(?P<source>[^\]]+)\]: (?P<text>.+)$", re.MULTILINE)
_MESSAGE_LINE = re.compile(r"^SLACK MESSAGE(?: FROM: (?P<speaker>.+?))?(?: DATE: (?P<date>[\d-]+ [\d:]+))?: (?P<text>.+)$", re.MULTILINE)


class TemplateGenerator:
    """Deterministic generator used for tests and offline environments."""

    def __init__(self, *, words_per_token: int = 1) -> None:
        self._words_per_token = max(1, words_per_token)

    async def complete(self, *, system: str, prompt: str, model: str | None = None) -> str:
        return self._answer(system=system, prompt=prompt)

    async def stream(self, *, system: str, prompt: str, model: str | None = None) -> AsyncIterator[str]:
        words = re.findall(r"\S+\s*", self._answer(system=system, prompt=prompt))
        for index in range(0, len(words), self._words_per_token):
            await asyncio.sleep(0)
            yield "".join(words[index : index + self._words_per_token])

    @staticmethod
    def _answer(*, system: str, prompt: str) -> str:
        document = _DOCUMENT_LINE.search(system)
        if document:
            snippet = document.group("text").strip().splitlines()[0][:200]
            return f"Based on the project documents, regarding '{prompt}': {snippet} [From {document.group('source')}]"
        message = _MESSAGE_LINE.search(system)
        if message:
            speaker = message.group("speaker") or "the project channel"
            when = f" on {message.group('date')}" if message.group("date") else ""
            return f"Regarding '{prompt}': {message.group('text').strip()} according to {speaker}{when}."
        return UNAVAILABLE_ANSWER


class OpenAIGenerator:
    """Generator backed by the OpenAI chat completions API."""

    def __init__(self, config: GenerationConfig | None = None, client: AsyncOpenAI | None = None) -> None:
        self._config = config or GenerationConfig()
        self._client = client or AsyncOpenAI(api_key=self._config.api_key, base_url=self._config.base_url)
        LOGGER.info("OpenAIGenerator configured for model %s", self._config.model)

    def _messages(self, system: str, prompt: str) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ]

    async def complete(self, *, system: str, prompt: str, model: str | None = None) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=model or self._config.model,
                messages=self._messages(system, prompt),
                temperature=self._config.temperature,
            )
        except OpenAIError as exc:
            raise GenerationError(f"Chat completion failed: {exc}") from exc
        return require_text(extract_output(response))

    async def stream(self, *, system: str, prompt: str, model: str | None = None) -> AsyncIterator[str]:
        try:
            stream = await self._client.chat.completions.create(
                model=model or self._config.model,
                messages=self._messages(system, prompt),
                temperature=self._config.temperature,
                stream=True,
            )
        except OpenAIError as exc:
            raise GenerationError(f"Chat completion stream failed: {exc}") from exc
        try:
            async for chunk in stream:
                text = require_text(extract_output(chunk))
                if text:
                    yield text
        except OpenAIError as exc:
            raise GenerationError(f"Chat completion stream failed: {exc}") from exc
        finally:
            await stream.close()


def build_generator(settings: Settings) -> GenerationBackend:
    if settings.generator_backend == "openai":
        return OpenAIGenerator(
            GenerationConfig(
                model=settings.generator_model,
                temperature=settings.generator_temperature,
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
            ),
        )
    LOGGER.info("Using template generator (offline mode).")
    return TemplateGenerator()
