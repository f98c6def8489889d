"""Action-item extraction from full meeting transcripts.

A second, independent completion over the whole (unchunked) transcript
proposes action items. Output is validated, normalized (strict YYYY-MM-DD
due dates, High/Normal/Low priority), and written as Kanban tasks into a
lazily created "Action Items" column.

This step never fails the pipeline: extract_and_store() catches and logs
every error and reports zero tasks created.
"""

from __future__ import annotations

import asyncio
import re
import uuid
from collections.abc import Awaitable, Callable
from datetime import date

import structlog
from pydantic import BaseModel, Field, ValidationError

from src.team_admin.core.errors import ParseError
from src.team_admin.core.monitoring import track_provider_call
from src.team_admin.meetings.repository import MinutesRepository
from src.team_admin.meetings.schemas import ActionItem, TaskPriority
from src.team_admin.services.llm import LLMService, json_schema_format
from src.team_admin.services.retry import RetryPolicy, call_with_backoff

logger = structlog.get_logger(__name__)

ACTION_ITEMS_COLUMN = "Action Items"
ACTION_ITEM_TASK_STATUS = "In Progress"
ACTION_ITEM_TASK_NOTE = "Extracted from meeting transcript by AI"

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


# ── Response Models ─────────────────────────────────────────────────────────


class ExtractedActionItem(BaseModel):
    """Raw action item as returned by the model (before normalization)."""

    title: str = Field(description="The task")
    owner: str = Field(description="Person responsible")
    dueDate: str | None = Field(default=None, description="YYYY-MM-DD or empty string")
    priority: str | None = Field(default=None, description="High, Normal, or Low")


class ActionItemsResponse(BaseModel):
    items: list[ExtractedActionItem] = Field(default_factory=list)


ACTION_ITEMS_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "items": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "title": {"type": "string"},
                    "owner": {"type": "string"},
                    "dueDate": {"type": "string"},
                    "priority": {"type": "string"},
                },
                "required": ["title", "owner", "dueDate", "priority"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["items"],
    "additionalProperties": False,
}

SYSTEM_PROMPT = (
    "Extract action items from a meeting transcript. An action item is a task assigned "
    "to someone, usually with a deadline. Return JSON with an array of items, each having: "
    "title (the task), owner (person responsible), dueDate (if mentioned, format YYYY-MM-DD "
    "or empty string), and priority (High/Normal/Low based on urgency, default to Normal). "
    "Only include clear action items, not general discussion points."
)


# ── Normalization ───────────────────────────────────────────────────────────


def normalize_due_date(value: str | None) -> date | None:
    """Keep only real calendar dates written as YYYY-MM-DD."""
    if not value:
        return None
    value = value.strip()
    if not _ISO_DATE.match(value):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def normalize_priority(value: str | None) -> TaskPriority:
    """Map to High/Normal/Low (case-insensitive); anything else is Normal."""
    if value:
        for priority in TaskPriority:
            if value.strip().lower() == priority.value.lower():
                return priority
    return TaskPriority.NORMAL


def normalize_items(items: list[ExtractedActionItem]) -> list[ActionItem]:
    """Drop items without a title or owner and normalize the rest."""
    normalized: list[ActionItem] = []
    for item in items:
        title = item.title.strip()
        owner = item.owner.strip()
        if not title or not owner:
            continue
        normalized.append(
            ActionItem(
                title=title,
                owner=owner,
                due_date=normalize_due_date(item.dueDate),
                priority=normalize_priority(item.priority),
            )
        )
    return normalized


def parse_action_items(raw: str) -> list[ActionItem]:
    """Validate a completion body into normalized action items.

    Raises:
        ParseError: If the body is not valid JSON for ActionItemsResponse.
    """
    try:
        parsed = ActionItemsResponse.model_validate_json(raw or "")
    except ValidationError as exc:
        raise ParseError(f"Invalid action items response: {exc.error_count()} errors", raw=raw) from exc
    return normalize_items(parsed.items)


# ── Extractor ───────────────────────────────────────────────────────────────


class ActionItemExtractor:
    """Extracts action items and stores them as tasks.

    Args:
        llm: LLMService used for the completion call.
        repository: MinutesRepository for the task board writes.
        policy: Retry policy for the completion call.
        sleep: Backoff sleep, injectable for tests.
    """

    def __init__(
        self,
        llm: LLMService,
        repository: MinutesRepository,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._llm = llm
        self._repository = repository
        self._policy = policy or RetryPolicy()
        self._sleep = sleep

    async def extract(self, transcript: str, metadata: dict | None = None) -> list[ActionItem]:
        """Run the extraction call. Parse failures yield []; provider errors propagate."""
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": f"Transcript:\n{transcript}"},
        ]

        async def _call() -> dict:
            return await self._llm.completion(
                messages=messages,
                response_format=json_schema_format("ActionItems", ACTION_ITEMS_SCHEMA),
                metadata=metadata,
            )

        async with track_provider_call("llm_action_items"):
            response = await call_with_backoff(
                _call, operation="extract_action_items", policy=self._policy, sleep=self._sleep
            )

        try:
            return parse_action_items(response.get("content", ""))
        except ParseError as exc:
            logger.warning("action_items_parse_failed", error=str(exc), **(metadata or {}))
            return []

    async def extract_and_store(self, meeting_id: uuid.UUID, transcript: str) -> int:
        """Extract action items and insert them as tasks. Never raises.

        Returns:
            Number of tasks created (0 on any failure).
        """
        log = logger.bind(meeting_id=str(meeting_id))
        try:
            items = await self.extract(transcript, metadata={"meeting_id": str(meeting_id)})
            if not items:
                log.info("action_items_none_found")
                return 0

            column_id = await self._repository.get_or_create_task_column(
                meeting_id, ACTION_ITEMS_COLUMN
            )
            tasks = await self._repository.create_tasks(
                meeting_id,
                column_id,
                items,
                status=ACTION_ITEM_TASK_STATUS,
                notes=ACTION_ITEM_TASK_NOTE,
                source="ai_minutes",
            )
            log.info("action_items_extracted", tasks_created=len(tasks))
            return len(tasks)
        except Exception:
            log.warning("action_items_extraction_failed", exc_info=True)
            return 0
