"""Minutes PDF layout with reportlab.

Renders a MinutesDocument as a flowing US Letter document:

1. header/title block
2. metadata table (ID / Name / Date / Time / Attendees)
3. open tasks (or "(none)")
4. one block per agenda item with two independently wrapped columns,
   "THIS SESSION" and "PREVIOUS SESSION"

Lines are wrapped greedily by measured string width (font metrics), and a
new page starts whenever less than two line heights remain above the bottom
margin. Column headers are repeated when an agenda block breaks across pages.
"""

from __future__ import annotations

import io
from datetime import datetime

from reportlab.lib.colors import Color, black
from reportlab.lib.pagesizes import letter
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen.canvas import Canvas

from src.team_admin.meetings.schemas import MinutesDocument, Task

# ── Page Geometry ───────────────────────────────────────────────────────────

PAGE_W, PAGE_H = letter  # 612 x 792 pt
MARGIN_X = 46
TOP = PAGE_H - 54
BOTTOM = 56
CONTENT_W = PAGE_W - 2 * MARGIN_X
COLUMN_GAP = 18
COLUMN_W = (CONTENT_W - COLUMN_GAP) / 2
LABEL_W = 86

FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"
BODY_SIZE = 10
SMALL_SIZE = 8

GREY = Color(0.42, 0.42, 0.42)
RULE = Color(0.8, 0.8, 0.8)

NO_NOTES = "(No notes)"
NO_PREVIOUS_NOTES = "(No previous notes)"
NO_TASKS = "(none)"


def leading_for(size: float) -> float:
    return round(size * 1.35, 2)


def to_pdf_text(text: str | None) -> str:
    """Coerce text to what the standard Type 1 fonts can encode."""
    return (text or "").encode("cp1252", "replace").decode("cp1252")


def wrap_text(text: str, font: str, size: float, max_width: float) -> list[str]:
    """Greedy word wrap measured with font metrics.

    Explicit newlines start new lines; a single word wider than
    ``max_width`` is placed on its own line rather than split.
    """
    lines: list[str] = []
    for raw_line in to_pdf_text(text).strip().split("\n"):
        words = raw_line.split()
        if not words:
            lines.append("")
            continue
        current = words[0]
        for word in words[1:]:
            candidate = f"{current} {word}"
            if stringWidth(candidate, font, size) <= max_width:
                current = candidate
            else:
                lines.append(current)
                current = word
        lines.append(current)
    return lines


def _format_date(value: datetime | None) -> str:
    return value.strftime("%b %d, %Y") if value else "-"


def _format_time(value: datetime | None) -> str:
    return value.strftime("%I:%M %p").lstrip("0") if value else "-"


def _task_line(task: Task) -> str:
    details = [task.owner_name or "Unassigned", task.status]
    if task.due_date:
        details.append(f"due {task.due_date.isoformat()}")
    if task.priority:
        details.append(task.priority)
    return f"- {task.title}  ({', '.join(details)})"


# ── Layout ──────────────────────────────────────────────────────────────────


class MinutesPdfLayout:
    """Single-use layout pass over one document. Call build() once."""

    def __init__(self, document: MinutesDocument) -> None:
        self.document = document
        self._buffer = io.BytesIO()
        self._canvas = Canvas(self._buffer, pagesize=letter)
        self.y = TOP
        self.page_number = 1

    # ── page mechanics ──────────────────────────────────────────────────

    def _footer(self) -> None:
        c = self._canvas
        c.setFont(FONT, SMALL_SIZE)
        c.setFillColor(GREY)
        c.drawString(MARGIN_X, BOTTOM - 26, to_pdf_text(self.document.meeting.title)[:90])
        c.drawRightString(PAGE_W - MARGIN_X, BOTTOM - 26, f"Page {self.page_number}")
        c.setFillColor(black)

    def new_page(self) -> None:
        self._footer()
        self._canvas.showPage()
        self.page_number += 1
        self.y = TOP

    def ensure_space(self, leading: float) -> bool:
        """Break the page if less than two line heights remain. Returns True on break."""
        if self.y - 2 * leading < BOTTOM:
            self.new_page()
            return True
        return False

    def draw_line(self, text: str, font: str, size: float, x: float = MARGIN_X, color: Color = black) -> None:
        leading = leading_for(size)
        self.ensure_space(leading)
        c = self._canvas
        c.setFont(font, size)
        c.setFillColor(color)
        c.drawString(x, self.y - size, text)
        c.setFillColor(black)
        self.y -= leading

    def draw_paragraph(
        self,
        text: str,
        font: str = FONT,
        size: float = BODY_SIZE,
        x: float = MARGIN_X,
        width: float = CONTENT_W,
        color: Color = black,
    ) -> None:
        for line in wrap_text(text, font, size, width):
            self.draw_line(line, font, size, x=x, color=color)

    def rule(self, gap: float = 6) -> None:
        self.ensure_space(gap)
        c = self._canvas
        c.setStrokeColor(RULE)
        c.setLineWidth(0.6)
        c.line(MARGIN_X, self.y - gap / 2, PAGE_W - MARGIN_X, self.y - gap / 2)
        c.setStrokeColor(black)
        self.y -= gap

    def space(self, points: float) -> None:
        self.y -= points

    def section_heading(self, title: str) -> None:
        self.space(8)
        # Keep a heading together with at least its first line of content
        if self.y - 4 * leading_for(BODY_SIZE) < BOTTOM:
            self.new_page()
        self.draw_line(title, FONT_BOLD, 11)
        self.rule(4)

    # ── sections ────────────────────────────────────────────────────────

    def header(self) -> None:
        doc = self.document
        self.draw_line("Meeting Minutes", FONT_BOLD, 18)
        self.draw_paragraph(doc.meeting.title, FONT_BOLD, 13)
        generated = f"Session started {_format_date(doc.session.started_at)} {_format_time(doc.session.started_at)}"
        if doc.session.ended_at:
            generated += f" - concluded {_format_time(doc.session.ended_at)}"
        self.draw_line(to_pdf_text(generated), FONT, SMALL_SIZE, color=GREY)
        self.rule(10)

    def metadata_table(self) -> None:
        doc = self.document
        when = doc.meeting.start_at or doc.session.started_at
        attendees = ", ".join(
            a.full_name or a.email or "" for a in doc.attendees if (a.full_name or a.email)
        ) or "-"
        rows = [
            ("ID", str(doc.meeting.id)),
            ("Name", doc.meeting.title),
            ("Date", _format_date(when)),
            ("Time", _format_time(when)),
            ("Attendees", attendees),
        ]
        if doc.session.reference_link:
            rows.append(("Reference", doc.session.reference_link))

        leading = leading_for(BODY_SIZE)
        value_x = MARGIN_X + LABEL_W
        value_w = CONTENT_W - LABEL_W
        for label, value in rows:
            value_lines = wrap_text(value, FONT, BODY_SIZE, value_w)
            for index, line in enumerate(value_lines):
                self.ensure_space(leading)
                c = self._canvas
                if index == 0:
                    c.setFont(FONT_BOLD, BODY_SIZE)
                    c.drawString(MARGIN_X, self.y - BODY_SIZE, label)
                c.setFont(FONT, BODY_SIZE)
                c.drawString(value_x, self.y - BODY_SIZE, line)
                self.y -= leading
            self.rule(4)

    def open_tasks(self) -> None:
        self.section_heading("OPEN TASKS")
        if not self.document.open_tasks:
            self.draw_line(NO_TASKS, FONT, BODY_SIZE, color=GREY)
            return
        for task in self.document.open_tasks:
            self.draw_paragraph(_task_line(task), x=MARGIN_X + 6, width=CONTENT_W - 6)

    def _column_headers(self, continued: bool = False) -> None:
        suffix = " (cont.)" if continued else ""
        leading = leading_for(SMALL_SIZE)
        self.ensure_space(leading)
        c = self._canvas
        c.setFont(FONT_BOLD, SMALL_SIZE)
        c.setFillColor(GREY)
        c.drawString(MARGIN_X, self.y - SMALL_SIZE, f"THIS SESSION{suffix}")
        c.drawString(MARGIN_X + COLUMN_W + COLUMN_GAP, self.y - SMALL_SIZE, f"PREVIOUS SESSION{suffix}")
        c.setFillColor(black)
        self.y -= leading + 2

    def agenda(self) -> None:
        self.section_heading("AGENDA")
        if not self.document.agenda:
            self.draw_line("(No agenda items)", FONT, BODY_SIZE, color=GREY)
            return

        leading = leading_for(BODY_SIZE)
        right_x = MARGIN_X + COLUMN_W + COLUMN_GAP
        for row in self.document.agenda:
            self.space(6)
            if self.y - 4 * leading < BOTTOM:
                self.new_page()
            self.draw_paragraph(row.item.label, FONT_BOLD, 11)
            if row.item.description:
                self.draw_paragraph(row.item.description, FONT, SMALL_SIZE, color=GREY)
            self._column_headers()

            left = wrap_text(row.notes.strip() or NO_NOTES, FONT, BODY_SIZE, COLUMN_W)
            right = wrap_text(row.previous_notes.strip() or NO_PREVIOUS_NOTES, FONT, BODY_SIZE, COLUMN_W)
            for index in range(max(len(left), len(right))):
                if self.ensure_space(leading):
                    self._column_headers(continued=True)
                c = self._canvas
                c.setFont(FONT, BODY_SIZE)
                if index < len(left):
                    c.setFillColor(GREY if left[index] == NO_NOTES else black)
                    c.drawString(MARGIN_X, self.y - BODY_SIZE, left[index])
                if index < len(right):
                    c.setFillColor(GREY if right[index] == NO_PREVIOUS_NOTES else black)
                    c.drawString(right_x, self.y - BODY_SIZE, right[index])
                c.setFillColor(black)
                self.y -= leading
            self.rule(8)

    def build(self) -> bytes:
        doc = self.document
        self._canvas.setTitle(to_pdf_text(f"Minutes - {doc.meeting.title}"))
        self._canvas.setSubject(to_pdf_text(f"Session {doc.session.id}"))
        self.header()
        self.metadata_table()
        self.open_tasks()
        self.agenda()
        self._footer()
        self._canvas.save()
        return self._buffer.getvalue()


class MinutesPdfRenderer:
    """Renders MinutesDocument objects to PDF bytes."""

    def render(self, document: MinutesDocument) -> bytes:
        return MinutesPdfLayout(document).build()
