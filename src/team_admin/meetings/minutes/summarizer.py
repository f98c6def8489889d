"""Per-agenda-item summarization of meeting transcripts.

Each transcript chunk is summarized against the full agenda with one
chat-completion call constrained to a strict JSON schema. Responses are
validated into AgendaNotesResponse; malformed output raises ParseError and
that chunk contributes nothing. Chunk results are merged in order with the
substring-aware rule in chunking.merge_note().
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog
from pydantic import BaseModel, Field, ValidationError

from src.team_admin.core.errors import ParseError
from src.team_admin.core.monitoring import track_provider_call
from src.team_admin.meetings.minutes.chunking import (
    DEFAULT_CHUNK_CHARS,
    DEFAULT_MAX_CHUNKS,
    merge_chunk_notes,
    merge_note,
    split_transcript,
)
from src.team_admin.meetings.schemas import AgendaItem
from src.team_admin.services.llm import LLMService, json_schema_format
from src.team_admin.services.retry import RetryPolicy, call_with_backoff

logger = structlog.get_logger(__name__)


# ── Response Models ─────────────────────────────────────────────────────────


class AgendaNoteEntry(BaseModel):
    """Notes for one agenda item within one chunk."""

    agenda_item_id: str = Field(description="Agenda item id exactly as listed")
    notes: str = Field(default="", description="Concise factual notes, empty if not discussed")


class AgendaNotesResponse(BaseModel):
    """Structured summarization output for one transcript chunk."""

    agenda: list[AgendaNoteEntry] = Field(default_factory=list)


AGENDA_NOTES_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "agenda": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "agenda_item_id": {"type": "string"},
                    "notes": {"type": "string"},
                },
                "required": ["agenda_item_id", "notes"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["agenda"],
    "additionalProperties": False,
}

SYSTEM_PROMPT = (
    "Turn a meeting transcript into concise, professional meeting minutes. "
    "Return ONLY JSON of the form {\"agenda\": [{\"agenda_item_id\": ..., \"notes\": ...}]} "
    "with one entry per agenda item. Keep notes factual and action-oriented. "
    "If an agenda item was not discussed, return an empty string for that item."
)


# ── Helpers ─────────────────────────────────────────────────────────────────


def format_agenda_line(item: AgendaItem) -> str:
    """One agenda line for the prompt, omitting absent code and description."""
    line = f"{item.id} | "
    if item.code:
        line += f"{item.code} - "
    line += item.title
    if item.description:
        line += f" \u2014 {item.description}"
    return line


def format_agenda(items: list[AgendaItem]) -> str:
    return "\n".join(format_agenda_line(item) for item in items)


def parse_agenda_notes(raw: str) -> dict[str, str]:
    """Validate a completion body into agenda_item_id -> notes.

    Duplicate ids within one response are merged.

    Raises:
        ParseError: If the body is not valid JSON for AgendaNotesResponse.
    """
    try:
        parsed = AgendaNotesResponse.model_validate_json(raw or "")
    except ValidationError as exc:
        raise ParseError(f"Invalid agenda notes response: {exc.error_count()} errors", raw=raw) from exc

    notes: dict[str, str] = {}
    for entry in parsed.agenda:
        key = entry.agenda_item_id.strip()
        notes[key] = merge_note(notes.get(key, ""), entry.notes)
    return notes


# ── Summarizer ──────────────────────────────────────────────────────────────


class AgendaSummarizer:
    """Summarizes a transcript into one merged note per agenda item.

    Args:
        llm: LLMService used for the completion calls.
        policy: Retry policy for each chunk call.
        max_chars: Character budget per chunk.
        max_chunks: Hard cap on chunk count.
        sleep: Backoff sleep, injectable for tests.
    """

    def __init__(
        self,
        llm: LLMService,
        policy: RetryPolicy | None = None,
        max_chars: int = DEFAULT_CHUNK_CHARS,
        max_chunks: int = DEFAULT_MAX_CHUNKS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._llm = llm
        self._policy = policy or RetryPolicy()
        self._max_chars = max_chars
        self._max_chunks = max_chunks
        self._sleep = sleep

    async def summarize_chunk(
        self,
        agenda: list[AgendaItem],
        chunk: str,
        metadata: dict | None = None,
    ) -> dict[str, str]:
        """Summarize one chunk. A malformed response yields an empty mapping.

        Provider errors (after retries) propagate.
        """
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": f"Agenda items (id | label):\n{format_agenda(agenda)}\n\nTranscript:\n{chunk}",
            },
        ]

        async def _call() -> dict:
            return await self._llm.completion(
                messages=messages,
                response_format=json_schema_format("AgendaNotes", AGENDA_NOTES_SCHEMA),
                metadata=metadata,
            )

        async with track_provider_call("llm_summary"):
            response = await call_with_backoff(
                _call, operation="summarize_chunk", policy=self._policy, sleep=self._sleep
            )

        try:
            return parse_agenda_notes(response.get("content", ""))
        except ParseError as exc:
            logger.warning(
                "summary_chunk_parse_failed",
                error=str(exc),
                raw_preview=(exc.raw or "")[:200],
                **(metadata or {}),
            )
            return {}

    async def summarize(
        self,
        agenda: list[AgendaItem],
        transcript: str,
        metadata: dict | None = None,
    ) -> dict[str, str]:
        """Chunk the transcript, summarize chunks in order, merge per agenda item.

        Returns:
            agenda item id (str) -> merged notes, with an entry ("" if never
            discussed) for every agenda item.
        """
        chunks = split_transcript(transcript, self._max_chars, self._max_chunks)
        logger.info(
            "summary_started",
            chunk_count=len(chunks),
            agenda_items=len(agenda),
            transcript_chars=len(transcript),
            **(metadata or {}),
        )

        # Sequential: chunk order defines merge order
        results: list[dict[str, str]] = []
        for index, chunk in enumerate(chunks):
            chunk_notes = await self.summarize_chunk(
                agenda, chunk, metadata={**(metadata or {}), "chunk": index}
            )
            results.append(chunk_notes)

        return merge_chunk_notes([str(item.id) for item in agenda], results)
