"""Tests for the reportlab minutes layout and text wrapping."""

from __future__ import annotations

import uuid
from datetime import date

import pytest
from reportlab.pdfbase.pdfmetrics import stringWidth

from factories import NOW
from src.team_admin.meetings.minutes.pdf import (
    COLUMN_W,
    FONT,
    MinutesPdfLayout,
    MinutesPdfRenderer,
    to_pdf_text,
    wrap_text,
)
from src.team_admin.meetings.schemas import (
    AgendaItem,
    AgendaNoteRow,
    Attendee,
    Meeting,
    MinutesDocument,
    MinutesSession,
    Task,
)


def _make_document(notes: str = "Budget approved.", previous: str = "", tasks: int = 0) -> MinutesDocument:
    meeting = Meeting(id=uuid.uuid4(), title="Weekly Ops", location="Room 4", start_at=NOW)
    session = MinutesSession(id=uuid.uuid4(), meeting_id=meeting.id, started_at=NOW)
    item = AgendaItem(id=uuid.uuid4(), meeting_id=meeting.id, code="A1", title="Budget")
    return MinutesDocument(
        meeting=meeting,
        session=session,
        attendees=[Attendee(email="alice@example.com", full_name="Alice")],
        open_tasks=[
            Task(
                id=uuid.uuid4(),
                meeting_id=meeting.id,
                title=f"Task {i}",
                status="Not started",
                owner_name="Alice",
                due_date=date(2026, 3, 10),
            )
            for i in range(tasks)
        ],
        agenda=[AgendaNoteRow(item=item, notes=notes, previous_notes=previous)],
    )


class TestWrapText:
    def test_lines_fit_width(self):
        text = "The committee reviewed the quarterly budget and approved the revised numbers " * 4
        lines = wrap_text(text, FONT, 10, COLUMN_W)

        assert len(lines) > 1
        for line in lines:
            assert stringWidth(line, FONT, 10) <= COLUMN_W

    def test_words_are_preserved_in_order(self):
        text = "alpha beta gamma delta epsilon zeta eta theta"
        lines = wrap_text(text, FONT, 10, 60)

        assert " ".join(lines).split() == text.split()

    def test_explicit_newlines_start_new_lines(self):
        assert wrap_text("first\nsecond", FONT, 10, 500) == ["first", "second"]

    def test_blank_line_is_kept(self):
        assert wrap_text("first\n\nsecond", FONT, 10, 500) == ["first", "", "second"]

    def test_overlong_word_gets_its_own_line(self):
        word = "x" * 200
        assert wrap_text(f"short {word} tail", FONT, 10, 100) == ["short", word, "tail"]

    def test_empty_text(self):
        assert wrap_text("", FONT, 10, 100) == [""]


class TestToPdfText:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            (None, ""),
            ("Plain text", "Plain text"),
            ("Café", "Café"),
            ("Budget → approved", "Budget ? approved"),
        ],
    )
    def test_encoding(self, text, expected):
        assert to_pdf_text(text) == expected


class TestRenderer:
    def test_render_produces_pdf(self):
        pdf = MinutesPdfRenderer().render(_make_document(tasks=2))

        assert pdf.startswith(b"%PDF")
        assert len(pdf) > 500

    def test_empty_notes_render(self):
        pdf = MinutesPdfRenderer().render(_make_document(notes="", previous=""))

        assert pdf.startswith(b"%PDF")

    def test_long_notes_break_pages(self):
        long_notes = "\n".join(f"Discussion point {i} about the budget." for i in range(200))
        layout = MinutesPdfLayout(_make_document(notes=long_notes))

        pdf = layout.build()

        assert pdf.startswith(b"%PDF")
        assert layout.page_number > 1

    def test_short_document_is_one_page(self):
        layout = MinutesPdfLayout(_make_document())
        layout.build()

        assert layout.page_number == 1

    def test_non_latin_text_does_not_fail(self):
        pdf = MinutesPdfRenderer().render(_make_document(notes="予算 approved ✓"))

        assert pdf.startswith(b"%PDF")
