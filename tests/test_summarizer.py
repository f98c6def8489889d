"""Unit tests for agenda summarization (prompting, parsing, chunk merge)."""

from __future__ import annotations

import json
import uuid

import pytest

from factories import completion
from src.team_admin.core.errors import ParseError
from src.team_admin.meetings.minutes.summarizer import (
    AgendaSummarizer,
    format_agenda_line,
    parse_agenda_notes,
)
from src.team_admin.meetings.schemas import AgendaItem

MEETING_ID = uuid.uuid4()


def _make_item(title: str, code: str | None = None, description: str | None = None) -> AgendaItem:
    return AgendaItem(
        id=uuid.uuid4(), meeting_id=MEETING_ID, code=code, title=title, description=description
    )


def _notes_json(**notes: str) -> str:
    return json.dumps(
        {"agenda": [{"agenda_item_id": k, "notes": v} for k, v in notes.items()]}
    )


class TestFormatAgendaLine:
    def test_full_line(self):
        item = _make_item("Budget", code="A1", description="Quarterly numbers")
        assert format_agenda_line(item) == f"{item.id} | A1 - Budget \u2014 Quarterly numbers"

    def test_title_only(self):
        item = _make_item("Open floor")
        assert format_agenda_line(item) == f"{item.id} | Open floor"


class TestParseAgendaNotes:
    def test_valid_response(self):
        raw = _notes_json(a="Budget approved.", b="")
        assert parse_agenda_notes(raw) == {"a": "Budget approved.", "b": ""}

    def test_duplicate_ids_are_merged(self):
        raw = json.dumps(
            {
                "agenda": [
                    {"agenda_item_id": "a", "notes": "First point."},
                    {"agenda_item_id": "a", "notes": "Second point."},
                ]
            }
        )
        assert parse_agenda_notes(raw) == {"a": "First point.\nSecond point."}

    @pytest.mark.parametrize("raw", ["", "not json", '{"agenda": "nope"}', '[{"a": 1}]'])
    def test_malformed_response_raises_parse_error(self, raw):
        with pytest.raises(ParseError) as exc_info:
            parse_agenda_notes(raw)
        assert exc_info.value.raw == raw


class TestAgendaSummarizer:
    @pytest.mark.asyncio
    async def test_three_chunk_merge(self, llm, no_sleep):
        a1 = _make_item("Budget", code="A1")
        a2 = _make_item("Hiring", code="A2")
        k1, k2 = str(a1.id), str(a2.id)
        llm.completion.side_effect = [
            completion(_notes_json(**{k1: "x", k2: ""})),
            completion(_notes_json(**{k1: "", k2: "y"})),
            completion(_notes_json(**{k1: "z", k2: ""})),
        ]
        transcript = "\n\n".join(["a" * 80, "b" * 80, "c" * 80])
        summarizer = AgendaSummarizer(llm, max_chars=100, max_chunks=10, sleep=no_sleep)

        notes = await summarizer.summarize([a1, a2], transcript)

        assert notes == {k1: "x\nz", k2: "y"}
        assert llm.completion.await_count == 3

    @pytest.mark.asyncio
    async def test_chunks_are_sent_in_order(self, llm, no_sleep):
        item = _make_item("Budget")
        llm.completion.return_value = completion(_notes_json())
        transcript = "\n\n".join(["first " * 15, "second " * 12])
        summarizer = AgendaSummarizer(llm, max_chars=100, max_chunks=10, sleep=no_sleep)

        await summarizer.summarize([item], transcript)

        prompts = [c.kwargs["messages"][1]["content"] for c in llm.completion.await_args_list]
        assert "first" in prompts[0] and "second" not in prompts[0]
        assert "second" in prompts[1]
        assert str(item.id) in prompts[0]

    @pytest.mark.asyncio
    async def test_request_uses_strict_json_schema(self, llm, no_sleep):
        item = _make_item("Budget")
        llm.completion.return_value = completion(_notes_json(**{str(item.id): "ok"}))
        summarizer = AgendaSummarizer(llm, sleep=no_sleep)

        await summarizer.summarize([item], "Budget discussion.")

        response_format = llm.completion.await_args.kwargs["response_format"]
        assert response_format["type"] == "json_schema"
        assert response_format["json_schema"]["strict"] is True

    @pytest.mark.asyncio
    async def test_malformed_chunk_contributes_nothing(self, llm, no_sleep):
        item = _make_item("Budget")
        key = str(item.id)
        llm.completion.side_effect = [
            completion("garbage"),
            completion(_notes_json(**{key: "Budget approved."})),
        ]
        transcript = "\n\n".join(["a" * 80, "b" * 80])
        summarizer = AgendaSummarizer(llm, max_chars=100, sleep=no_sleep)

        notes = await summarizer.summarize([item], transcript)

        assert notes == {key: "Budget approved."}

    @pytest.mark.asyncio
    async def test_provider_error_propagates(self, llm, no_sleep):
        class BadRequest(Exception):
            status_code = 400

        llm.completion.side_effect = BadRequest("invalid model")
        summarizer = AgendaSummarizer(llm, sleep=no_sleep)

        with pytest.raises(BadRequest):
            await summarizer.summarize([_make_item("Budget")], "Some transcript text.")
        assert llm.completion.await_count == 1
