"""Create meeting minutes tables.

Revision ID: 001_meeting_minutes
Revises:
Create Date: 2026-10-19

Creates the tables the minutes pipeline reads and writes:
- meetings, meeting_attendees, meeting_agenda_items: meeting setup
- meeting_minutes_sessions: one row per recording/minutes cycle (ai_status)
- meeting_agenda_notes: per (session, agenda item) notes, unique pair
- meeting_recordings: uploaded audio segments
- meeting_task_columns, meeting_tasks, meeting_task_events: task board
- meeting_email_settings: last-sent bookkeeping

No foreign key constraints (application-level referential integrity via
repository).
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_meeting_minutes"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column("id", sa.Uuid(), primary_key=True)


def _timestamp(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade() -> None:
    # ── meeting setup ────────────────────────────────────────────────────

    op.create_table(
        "meetings",
        _id(),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("location", sa.String(500), nullable=True),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        _timestamp("created_at"),
    )

    op.create_table(
        "meeting_attendees",
        _id(),
        sa.Column("meeting_id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("full_name", sa.String(255), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_meeting_attendees_meeting_id", "meeting_attendees", ["meeting_id"])

    op.create_table(
        "meeting_agenda_items",
        _id(),
        sa.Column("meeting_id", sa.Uuid(), nullable=False),
        sa.Column("code", sa.String(50), nullable=True),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_meeting_agenda_items_meeting_id", "meeting_agenda_items", ["meeting_id"])

    # ── sessions, notes, recordings ──────────────────────────────────────

    op.create_table(
        "meeting_minutes_sessions",
        _id(),
        sa.Column("meeting_id", sa.Uuid(), nullable=False),
        _timestamp("started_at"),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(255), nullable=True),
        sa.Column("transcript", sa.Text(), nullable=True),
        sa.Column("pdf_path", sa.Text(), nullable=True),
        sa.Column("reference_link", sa.Text(), nullable=True),
        sa.Column("ai_status", sa.String(50), nullable=False, server_default="pending"),
        sa.Column("ai_error", sa.Text(), nullable=True),
        sa.Column("ai_processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("email_status", sa.String(50), nullable=False, server_default="draft"),
        sa.Column("email_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("email_sent_by", sa.String(255), nullable=True),
        sa.Column("email_error", sa.Text(), nullable=True),
        _timestamp("updated_at"),
    )
    op.create_index(
        "ix_meeting_minutes_sessions_meeting_id", "meeting_minutes_sessions", ["meeting_id"]
    )

    op.create_table(
        "meeting_agenda_notes",
        _id(),
        sa.Column("session_id", sa.Uuid(), nullable=False),
        sa.Column("agenda_item_id", sa.Uuid(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=False, server_default=""),
        _timestamp("updated_at"),
        sa.UniqueConstraint("session_id", "agenda_item_id", name="uq_agenda_note_session_item"),
    )
    op.create_index("ix_meeting_agenda_notes_session_id", "meeting_agenda_notes", ["session_id"])

    op.create_table(
        "meeting_recordings",
        _id(),
        sa.Column("session_id", sa.Uuid(), nullable=False),
        sa.Column("storage_path", sa.Text(), nullable=False),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column("created_by", sa.String(255), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_meeting_recordings_session_id", "meeting_recordings", ["session_id"])

    # ── task board ───────────────────────────────────────────────────────

    op.create_table(
        "meeting_task_columns",
        _id(),
        sa.Column("meeting_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("meeting_id", "name", name="uq_task_column_meeting_name"),
    )
    op.create_index("ix_meeting_task_columns_meeting_id", "meeting_task_columns", ["meeting_id"])

    op.create_table(
        "meeting_tasks",
        _id(),
        sa.Column("meeting_id", sa.Uuid(), nullable=False),
        sa.Column("column_id", sa.Uuid(), nullable=True),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("status", sa.String(50), nullable=False, server_default="In Progress"),
        sa.Column("priority", sa.String(20), nullable=False, server_default="Normal"),
        sa.Column("owner_name", sa.String(255), nullable=True),
        sa.Column("owner_email", sa.String(320), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_meeting_tasks_meeting_id", "meeting_tasks", ["meeting_id"])

    op.create_table(
        "meeting_task_events",
        _id(),
        sa.Column("task_id", sa.Uuid(), nullable=False),
        sa.Column("meeting_id", sa.Uuid(), nullable=False),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        _timestamp("created_at"),
    )
    op.create_index("ix_meeting_task_events_task_id", "meeting_task_events", ["task_id"])

    op.create_table(
        "meeting_email_settings",
        sa.Column("meeting_id", sa.Uuid(), primary_key=True),
        sa.Column("last_sent_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("updated_at"),
    )


def downgrade() -> None:
    op.drop_table("meeting_email_settings")
    op.drop_index("ix_meeting_task_events_task_id", table_name="meeting_task_events")
    op.drop_table("meeting_task_events")
    op.drop_index("ix_meeting_tasks_meeting_id", table_name="meeting_tasks")
    op.drop_table("meeting_tasks")
    op.drop_index("ix_meeting_task_columns_meeting_id", table_name="meeting_task_columns")
    op.drop_table("meeting_task_columns")
    op.drop_index("ix_meeting_recordings_session_id", table_name="meeting_recordings")
    op.drop_table("meeting_recordings")
    op.drop_index("ix_meeting_agenda_notes_session_id", table_name="meeting_agenda_notes")
    op.drop_table("meeting_agenda_notes")
    op.drop_index(
        "ix_meeting_minutes_sessions_meeting_id", table_name="meeting_minutes_sessions"
    )
    op.drop_table("meeting_minutes_sessions")
    op.drop_index("ix_meeting_agenda_items_meeting_id", table_name="meeting_agenda_items")
    op.drop_table("meeting_agenda_items")
    op.drop_index("ix_meeting_attendees_meeting_id", table_name="meeting_attendees")
    op.drop_table("meeting_attendees")
    op.drop_table("meetings")
