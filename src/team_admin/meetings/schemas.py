"""Pydantic schemas for meetings, minutes sessions, agenda notes, and tasks.

Domain objects returned by MinutesRepository and consumed by the minutes
pipeline, PDF renderer, and notifier. Request/response bodies for the HTTP
layer live in src/team_admin/api/v1/minutes.py.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field


# ── Enums ───────────────────────────────────────────────────────────────────


class AiStatus(str, Enum):
    """Minutes session AI processing state."""

    PENDING = "pending"
    READY = "ready"
    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"
    SKIPPED = "skipped"


class EmailStatus(str, Enum):
    """Manual email bookkeeping on a session."""

    DRAFT = "draft"
    READY = "ready"
    SENT = "sent"
    ERROR = "error"


class ReminderFrequency(str, Enum):
    """How often attendees get a "review tasks + agenda" reminder."""

    NONE = "none"
    DAILY = "daily"
    WEEKDAYS = "weekdays"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"

    @classmethod
    def _missing_(cls, value: object) -> ReminderFrequency:
        if isinstance(value, str):
            for member in cls:
                if member.value == value.strip().lower():
                    return member
        # Unknown stored values disable reminders
        return cls.NONE


class TaskPriority(str, Enum):
    HIGH = "High"
    NORMAL = "Normal"
    LOW = "Low"


# Statuses from which a direct trigger may claim a session for processing.
# The webhook path only claims from QUEUED.
DIRECT_ENTRY_STATUSES: tuple[AiStatus, ...] = (AiStatus.QUEUED, AiStatus.READY, AiStatus.ERROR)

# Statuses a manual re-queue may start from.
REQUEUE_STATUSES: tuple[AiStatus, ...] = (
    AiStatus.READY,
    AiStatus.ERROR,
    AiStatus.DONE,
    AiStatus.SKIPPED,
    AiStatus.QUEUED,
)

COMPLETED_TASK_STATUS = "Completed"


# ── Meeting Setup ───────────────────────────────────────────────────────────


class Meeting(BaseModel):
    id: uuid.UUID
    title: str
    location: str | None = None
    start_at: datetime | None = None
    duration_minutes: int | None = None


class ReminderSetting(BaseModel):
    """Per-meeting reminder cadence and the last time attendees were emailed."""

    meeting_id: uuid.UUID
    reminder_frequency: ReminderFrequency = ReminderFrequency.NONE
    last_sent_at: datetime | None = None


class Attendee(BaseModel):
    email: str | None = None
    full_name: str | None = None


class AgendaItem(BaseModel):
    """Standing agenda topic of a meeting."""

    id: uuid.UUID
    meeting_id: uuid.UUID
    code: str | None = None
    title: str
    description: str | None = None
    position: int = 0

    @property
    def label(self) -> str:
        """Human-readable "code - title" heading."""
        if self.code:
            return f"{self.code} - {self.title}"
        return self.title


# ── Sessions & Recordings ───────────────────────────────────────────────────


class MinutesSession(BaseModel):
    """One recording/minutes cycle for a meeting."""

    id: uuid.UUID
    meeting_id: uuid.UUID
    started_at: datetime
    ended_at: datetime | None = None
    created_by: str | None = None
    transcript: str | None = None
    pdf_path: str | None = None
    reference_link: str | None = None
    ai_status: AiStatus = AiStatus.PENDING
    ai_error: str | None = None
    ai_processed_at: datetime | None = None
    email_status: EmailStatus = EmailStatus.DRAFT
    email_sent_at: datetime | None = None
    email_sent_by: str | None = None
    email_error: str | None = None


class Recording(BaseModel):
    id: uuid.UUID
    session_id: uuid.UUID
    storage_path: str
    duration_seconds: int | None = None
    created_by: str | None = None
    created_at: datetime


# ── Tasks ───────────────────────────────────────────────────────────────────


class ActionItem(BaseModel):
    """Normalized action item proposed by the extractor, ready to insert as a task."""

    title: str
    owner: str
    due_date: date | None = None
    priority: TaskPriority = TaskPriority.NORMAL


class Task(BaseModel):
    id: uuid.UUID
    meeting_id: uuid.UUID
    column_id: uuid.UUID | None = None
    column_name: str | None = None
    title: str
    status: str
    priority: str = TaskPriority.NORMAL.value
    owner_name: str | None = None
    owner_email: str | None = None
    due_date: date | None = None
    notes: str | None = None
    position: int = 0


# ── Minutes Document ────────────────────────────────────────────────────────


class AgendaNoteRow(BaseModel):
    """One agenda item with this session's and the previous session's notes."""

    item: AgendaItem
    notes: str = ""
    previous_notes: str = ""


class MinutesDocument(BaseModel):
    """Everything the PDF renderer and the HTML summary email need."""

    meeting: Meeting
    session: MinutesSession
    attendees: list[Attendee] = Field(default_factory=list)
    open_tasks: list[Task] = Field(default_factory=list)
    agenda: list[AgendaNoteRow] = Field(default_factory=list)
    previous_session: MinutesSession | None = None
