"""Assembly of documents, channel history and tasks into one prompt context."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Callable, List, Sequence

from siterag.context.cache import ContextCache
from siterag.context.templates import (
    DEFAULT_TEMPLATE,
    NO_SOURCES_NOTE,
    TASK_NOTE,
    attribution_instructions,
    render_template,
)
from siterag.metrics.observability import PipelineMetrics, get_logger
from siterag.models import (
    ChannelMessage,
    Conversation,
    ContextRecord,
    DocumentRecord,
    Task,
    TaskItem,
    TaskProjectLink,
)
from siterag.sources import ChannelHistoryProvider, TaskTrackerProvider, today_utc

UPCOMING_WINDOW_DAYS = 7


@dataclass(frozen=True)
class AssemblerConfig:
    """Configuration for prompt context assembly."""

    include_source_details: bool = True
    include_user_in_source: bool = True
    include_date_in_source: bool = True
    include_completed_tasks: bool = True
    response_template: str | None = None
    message_prefix: str = "SLACK MESSAGE"
    task_prefix: str = "ASANA TASK DATA"


@dataclass(frozen=True)
class AssembledContext:
    """Result of one assembly call."""

    prompt_context: str
    sources: Sequence[str]
    system_prompt: str
    records: Sequence[ContextRecord] = field(default_factory=tuple)
    diagnostic_count: int = 0

    @property
    def has_tasks(self) -> bool:
        return any(isinstance(record, TaskItem) for record in self.records)

    def system_instructions(self) -> str:
        if not self.prompt_context:
            return self.system_prompt
        return (
            f"{self.system_prompt}\n\n"
            "Here is relevant context to help answer the question:\n\n"
            f"{self.prompt_context}"
        )


class ContextAssembler:
    """Merges every context source of a conversation into a single prompt."""

    def __init__(
        self,
        cache: ContextCache,
        channel_history: ChannelHistoryProvider,
        task_tracker: TaskTrackerProvider,
        config: AssemblerConfig | None = None,
        *,
        today: Callable[[], date] = today_utc,
    ) -> None:
        self._cache = cache
        self._channel_history = channel_history
        self._task_tracker = task_tracker
        self._config = config or AssemblerConfig()
        self._today = today
        self._logger = get_logger("context.assembler")

    async def assemble(
        self,
        conversation: Conversation,
        *,
        history: Sequence[ChannelMessage] | None = None,
    ) -> AssembledContext:
        start = time.perf_counter()
        cid = conversation.conversation_id
        # answers always want the latest documents
        chunks = await self._cache.get(cid, force_refresh=True)
        diagnostics = [chunk for chunk in chunks if chunk.diagnostic]
        for chunk in diagnostics:
            self._logger.warning("context.document_skipped", conversation_id=cid, source=chunk.source, reason=chunk.text)
        documents: List[ContextRecord] = [DocumentRecord(chunk) for chunk in chunks if not chunk.diagnostic]

        if history is None:
            messages, tasks = await asyncio.gather(
                self._fetch_messages(conversation),
                self._fetch_tasks(conversation),
            )
        else:
            messages, tasks = list(history), await self._fetch_tasks(conversation)

        records: List[ContextRecord] = [*documents, *messages, *tasks]
        prompt_context = "\n\n".join(self.render_record(record) for record in records)
        sources = self._active_sources(documents, messages, tasks)
        system_prompt = self.render_system_prompt(conversation, sources, has_tasks=bool(tasks))

        duration = time.perf_counter() - start
        PipelineMetrics.observe_assembly(duration)
        self._logger.info(
            "context.assembled",
            conversation_id=cid,
            document_chunks=len(documents),
            diagnostic_chunks=len(diagnostics),
            messages=len(messages),
            task_lines=len(tasks),
            context_chars=len(prompt_context),
            duration_seconds=duration,
        )
        return AssembledContext(
            prompt_context=prompt_context,
            sources=sources,
            system_prompt=system_prompt,
            records=tuple(records),
            diagnostic_count=len(diagnostics),
        )

    async def _fetch_messages(self, conversation: Conversation) -> List[ChannelMessage]:
        if not conversation.channel_id:
            return []
        try:
            return list(await self._channel_history.fetch_messages(conversation.channel_id))
        except Exception as exc:  # a missing source degrades the context, never the answer
            PipelineMetrics.record_source_failure("channel_history")
            self._logger.warning(
                "context.source_failed",
                source="channel_history",
                conversation_id=conversation.conversation_id,
                channel_id=conversation.channel_id,
                error=str(exc),
            )
            return []

    async def _fetch_tasks(self, conversation: Conversation) -> List[TaskItem]:
        links = list(conversation.task_links)
        if not links:
            return []
        tagged = len(links) > 1
        results = await asyncio.gather(*(self._fetch_project(conversation, link, tagged) for link in links))
        return [item for items in results for item in items]

    async def _fetch_project(self, conversation: Conversation, link: TaskProjectLink, tagged: bool) -> List[TaskItem]:
        try:
            result = await self._task_tracker.fetch_tasks(
                link.project_id,
                include_completed=self._config.include_completed_tasks,
            )
        except Exception as exc:
            return self._task_failure(conversation, link, str(exc))
        if not result.success:
            return self._task_failure(conversation, link, result.reason or "unknown error")
        if not result.tasks:
            self._logger.info(
                "context.source_empty",
                source="task_tracker",
                conversation_id=conversation.conversation_id,
                project_id=link.project_id,
            )
            return []
        name = link.project_name or result.project_name or "Project"
        label = f"[{link.project_type.upper()}] {name}" if tagged else name
        return self.task_items(result.tasks, label)

    def _task_failure(self, conversation: Conversation, link: TaskProjectLink, reason: str) -> List[TaskItem]:
        PipelineMetrics.record_source_failure("task_tracker")
        self._logger.warning(
            "context.source_failed",
            source="task_tracker",
            conversation_id=conversation.conversation_id,
            project_id=link.project_id,
            error=reason,
        )
        return []

    def task_items(self, tasks: Sequence[Task], project_label: str) -> List[TaskItem]:
        today = self._today()
        horizon = today + timedelta(days=UPCOMING_WINDOW_DAYS)
        overdue = sum(1 for task in tasks if not task.completed and task.due_date and task.due_date < today)
        upcoming = sum(1 for task in tasks if not task.completed and task.due_date and today <= task.due_date <= horizon)
        completed = sum(1 for task in tasks if task.completed)
        items = [
            TaskItem(
                project_label=project_label,
                task_text=(
                    f"Summary: {len(tasks)} tasks, {completed} completed, {overdue} overdue, "
                    f"{upcoming} due in the next {UPCOMING_WINDOW_DAYS} days"
                ),
            ),
        ]
        for task in tasks:
            items.append(TaskItem(project_label=project_label, task_text=self.format_task(task, today)))
        return items

    @staticmethod
    def format_task(task: Task, today: date) -> str:
        marker = "[x]" if task.completed else "[ ]"
        parts = [f"{marker} {task.name}"]
        if task.due_date:
            due = f"Due: {task.due_date.isoformat()}"
            if not task.completed and task.due_date < today:
                due += " (OVERDUE)"
            parts.append(due)
        if task.assignee:
            parts.append(f"Assigned to: {task.assignee}")
        return " | ".join(parts)

    def render_record(self, record: ContextRecord) -> str:
        if isinstance(record, DocumentRecord):
            return f"DOCUMENT [{record.attribution()}]: {record.chunk.text}"
        if isinstance(record, ChannelMessage):
            return self.format_message(record)
        return f"{self._config.task_prefix}: {record.project_label} | {record.task_text}"

    def format_message(self, message: ChannelMessage) -> str:
        prefix = self._config.message_prefix
        if self._config.include_source_details:
            if self._config.include_user_in_source and message.speaker:
                prefix += f" FROM: {message.speaker}"
            if self._config.include_date_in_source:
                prefix += f" DATE: {message.timestamp:%Y-%m-%d %H:%M}"
        return f"{prefix}: {message.raw_text}"

    def render_system_prompt(self, conversation: Conversation, sources: Sequence[str], *, has_tasks: bool) -> str:
        template = conversation.system_prompt or self._config.response_template or DEFAULT_TEMPLATE
        prompt = render_template(
            template,
            {
                "conversationName": conversation.name,
                "contextSources": "\n".join(sources) if sources else NO_SOURCES_NOTE,
                "taskNote": TASK_NOTE if has_tasks else "",
            },
        )
        if conversation.output_format:
            prompt += f"\n\n{conversation.output_format}"
        if self._config.include_source_details:
            prompt += "\n\n" + attribution_instructions(
                include_user=self._config.include_user_in_source,
                include_date=self._config.include_date_in_source,
            )
        return prompt

    @staticmethod
    def _active_sources(
        documents: Sequence[ContextRecord],
        messages: Sequence[ChannelMessage],
        tasks: Sequence[TaskItem],
    ) -> List[str]:
        descriptions: List[str] = []
        if documents:
            descriptions.append("The project's documentation (budget, timeline, notes, plans, spreadsheets).")
        if messages:
            descriptions.append("The Slack message history from the project's dedicated Slack channel.")
        if tasks:
            descriptions.append("The project's Asana tasks and their status.")
        return [f"{index}. {text}" for index, text in enumerate(descriptions, start=1)]
