"""Tests for channel-history and task-tracker providers."""

from __future__ import annotations

import asyncio
from datetime import date

import httpx
import pytest

from siterag.sources import AsanaTaskProvider, ProviderError, SlackHistoryProvider


def _async_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_slack_messages_are_returned_oldest_first() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer xoxb-test"
        assert request.url.params["channel"] == "C1"
        return httpx.Response(
            200,
            json={
                "ok": True,
                "messages": [
                    {"ts": "1714660200.0001", "user": "U2", "text": "second"},
                    {"ts": "1714656600.0001", "user_profile": {"real_name": "Dana"}, "text": "first"},
                ],
            },
        )

    provider = SlackHistoryProvider("xoxb-test", client=_async_client(handler))
    messages = asyncio.run(provider.fetch_messages("C1"))

    assert [message.raw_text for message in messages] == ["first", "second"]
    assert messages[0].speaker == "Dana"
    assert messages[1].speaker == "U2"
    assert messages[0].timestamp.year == 2024


def test_slack_missing_access_is_empty_history() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ok": False, "error": "not_in_channel"})

    provider = SlackHistoryProvider("xoxb-test", client=_async_client(handler))

    assert asyncio.run(provider.fetch_messages("C1")) == []


def test_slack_without_token_skips_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not be called
        raise AssertionError("no request expected")

    provider = SlackHistoryProvider(None, client=_async_client(handler))

    assert asyncio.run(provider.fetch_messages("C1")) == []


def test_slack_other_errors_raise() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ok": False, "error": "ratelimited"})

    provider = SlackHistoryProvider("xoxb-test", client=_async_client(handler))

    with pytest.raises(ProviderError, match="ratelimited"):
        asyncio.run(provider.fetch_messages("C1"))


def test_asana_tasks_follow_pagination() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if request.url.path.endswith("/projects/p1"):
            return httpx.Response(200, json={"data": {"name": "Build"}})
        if "offset" not in request.url.params:
            return httpx.Response(
                200,
                json={
                    "data": [{"name": "Pour slab", "completed": False, "due_on": "2024-05-01", "assignee": {"name": "Sam"}}],
                    "next_page": {"offset": "abc"},
                },
            )
        return httpx.Response(200, json={"data": [{"name": "Frame walls", "completed": True}], "next_page": None})

    provider = AsanaTaskProvider("token", client=_async_client(handler))
    result = asyncio.run(provider.fetch_tasks("p1", include_completed=False))

    assert result.success
    assert result.project_name == "Build"
    assert [task.name for task in result.tasks] == ["Pour slab", "Frame walls"]
    assert result.tasks[0].due_date == date(2024, 5, 1)
    assert result.tasks[0].assignee == "Sam"
    assert calls[1].url.params["completed_since"] == "now"


def test_asana_http_error_is_reported_not_raised() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"errors": [{"message": "Not Authorized"}]})

    provider = AsanaTaskProvider("token", client=_async_client(handler))
    result = asyncio.run(provider.fetch_tasks("p1"))

    assert not result.success
    assert result.reason and "Failed to fetch Asana project tasks" in result.reason


def test_asana_without_token() -> None:
    result = asyncio.run(AsanaTaskProvider(None).fetch_tasks("p1"))

    assert not result.success
