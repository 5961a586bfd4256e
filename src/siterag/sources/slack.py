"""Channel-history providers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Mapping, Protocol, Sequence

import httpx

from siterag.metrics.observability import get_logger
from siterag.models import ChannelMessage


class ProviderError(RuntimeError):
    """Raised when an external context source cannot be read."""


# Slack reports these when the bot token cannot see the channel; that is "no messages".
_NO_ACCESS_ERRORS = {"not_in_channel", "channel_not_found", "missing_scope", "is_archived"}


class ChannelHistoryProvider(Protocol):
    """Yields the message history of a chat channel."""

    async def fetch_messages(self, channel_id: str) -> Sequence[ChannelMessage]:
        """Return messages in chronological order; empty when access is missing."""


class SlackHistoryProvider:
    """Reads ``conversations.history`` from the Slack Web API."""

    def __init__(
        self,
        token: str | None,
        *,
        base_url: str = "https://slack.com/api",
        limit: int = 100,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._limit = limit
        self._timeout = timeout
        self._client = client
        self._logger = get_logger("sources.slack")

    async def fetch_messages(self, channel_id: str) -> Sequence[ChannelMessage]:
        if not self._token:
            self._logger.info("slack.token_missing", channel_id=channel_id)
            return []
        payload = await self._get("conversations.history", {"channel": channel_id, "limit": self._limit})
        if not payload.get("ok"):
            error = str(payload.get("error") or "unknown_error")
            if error in _NO_ACCESS_ERRORS:
                self._logger.warning("slack.no_access", channel_id=channel_id, error=error)
                return []
            raise ProviderError(f"Failed to fetch messages: {error}")
        messages = [self._to_message(raw) for raw in payload.get("messages") or []]
        # Slack returns newest first
        messages.reverse()
        return messages

    async def _get(self, method: str, params: Mapping[str, object]) -> dict:
        headers = {"Authorization": f"Bearer {self._token}"}
        url = f"{self._base_url}/{method}"
        try:
            if self._client is not None:
                response = await self._client.get(url, params=params, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.get(url, params=params, headers=headers)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderError(f"Slack request {method} failed: {exc}") from exc

    @staticmethod
    def _to_message(raw: Mapping[str, object]) -> ChannelMessage:
        profile = raw.get("user_profile") or {}
        speaker = (
            (profile.get("real_name") if isinstance(profile, Mapping) else None)
            or raw.get("user")
            or raw.get("username")
            or "unknown"
        )
        try:
            seconds = float(raw.get("ts") or 0)
        except (TypeError, ValueError):
            seconds = 0.0
        return ChannelMessage(
            speaker=str(speaker),
            timestamp=datetime.fromtimestamp(seconds, tz=timezone.utc),
            raw_text=str(raw.get("text") or ""),
        )


class StaticChannelHistory:
    """In-memory provider for tests and offline runs."""

    def __init__(
        self,
        messages: Mapping[str, Sequence[ChannelMessage]] | None = None,
        *,
        error: Exception | None = None,
    ) -> None:
        self._messages = dict(messages or {})
        self._error = error

    async def fetch_messages(self, channel_id: str) -> Sequence[ChannelMessage]:
        if self._error is not None:
            raise self._error
        return list(self._messages.get(channel_id, []))
