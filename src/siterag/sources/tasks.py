"""Task-tracker providers."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, List, Mapping, Protocol

import httpx

from siterag.metrics.observability import get_logger
from siterag.models import Task, TaskFetchResult

_TASK_FIELDS = "name,completed,due_on,assignee.name"


class TaskTrackerProvider(Protocol):
    """Yields the tasks of one tracker project."""

    async def fetch_tasks(self, project_id: str, *, include_completed: bool = True) -> TaskFetchResult:
        """Return the project's tasks, or a result with ``success=False`` and a reason."""


class AsanaTaskProvider:
    """Reads project tasks from the Asana REST API."""

    def __init__(
        self,
        access_token: str | None,
        *,
        base_url: str = "https://app.asana.com/api/1.0",
        page_size: int = 100,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._token = access_token
        self._base_url = base_url.rstrip("/")
        self._page_size = page_size
        self._timeout = timeout
        self._client = client
        self._logger = get_logger("sources.asana")

    async def fetch_tasks(self, project_id: str, *, include_completed: bool = True) -> TaskFetchResult:
        if not self._token:
            return TaskFetchResult(success=False, reason="Asana access token is not configured")
        try:
            if self._client is not None:
                return await self._fetch(self._client, project_id, include_completed)
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                return await self._fetch(client, project_id, include_completed)
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            self._logger.warning("asana.fetch_failed", project_id=project_id, error=str(exc))
            return TaskFetchResult(success=False, reason=f"Failed to fetch Asana project tasks: {exc}")

    async def _fetch(self, client: httpx.AsyncClient, project_id: str, include_completed: bool) -> TaskFetchResult:
        headers = {"Authorization": f"Bearer {self._token}", "Accept": "application/json"}
        project = await self._get(client, f"/projects/{project_id}", {"opt_fields": "name"}, headers)
        params: dict[str, Any] = {"opt_fields": _TASK_FIELDS, "limit": self._page_size}
        if not include_completed:
            params["completed_since"] = "now"
        tasks: List[Task] = []
        while True:
            page = await self._get(client, f"/projects/{project_id}/tasks", params, headers)
            tasks.extend(_parse_task(raw) for raw in page.get("data") or [])
            next_page = page.get("next_page") or {}
            offset = next_page.get("offset") if isinstance(next_page, Mapping) else None
            if not offset:
                break
            params = {**params, "offset": offset}
        project_name = (project.get("data") or {}).get("name")
        return TaskFetchResult(success=True, tasks=tuple(tasks), project_name=project_name)

    async def _get(
        self,
        client: httpx.AsyncClient,
        path: str,
        params: Mapping[str, Any],
        headers: Mapping[str, str],
    ) -> dict:
        response = await client.get(f"{self._base_url}{path}", params=params, headers=headers)
        response.raise_for_status()
        return response.json()


def _parse_task(raw: Mapping[str, Any]) -> Task:
    assignee = raw.get("assignee")
    if isinstance(assignee, Mapping):
        assignee = assignee.get("name")
    due_on = raw.get("due_on")
    return Task(
        name=str(raw.get("name") or "Untitled task"),
        completed=bool(raw.get("completed")),
        due_date=date.fromisoformat(due_on) if due_on else None,
        assignee=str(assignee) if assignee else None,
    )


class StaticTaskTracker:
    """In-memory provider for tests and offline runs.

    Values may be a ``TaskFetchResult`` or an exception to raise.
    """

    def __init__(self, projects: Mapping[str, TaskFetchResult | Exception] | None = None) -> None:
        self._projects = dict(projects or {})

    async def fetch_tasks(self, project_id: str, *, include_completed: bool = True) -> TaskFetchResult:
        outcome = self._projects.get(project_id)
        if outcome is None:
            return TaskFetchResult(success=False, reason=f"Unknown project {project_id}")
        if isinstance(outcome, Exception):
            raise outcome
        if include_completed:
            return outcome
        return TaskFetchResult(
            success=outcome.success,
            tasks=tuple(task for task in outcome.tasks if not task.completed),
            project_name=outcome.project_name,
            reason=outcome.reason,
        )


def today_utc() -> date:
    return datetime.now(timezone.utc).date()
