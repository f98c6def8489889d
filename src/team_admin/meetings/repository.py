"""Minutes repository -- async data access for meetings, sessions, notes, and tasks.

Provides MinutesRepository with the session_factory callable pattern: every
method opens its own AsyncSession via ``async for session in
self._session_factory()`` and commits explicitly. Converts between
SQLAlchemy models and the Pydantic schemas in src/team_admin/meetings/schemas.py.

Upserts (agenda notes, email settings) use dialect-specific
INSERT ... ON CONFLICT so they run on PostgreSQL and SQLite alike.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable, Iterable, Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.team_admin.meetings.models import (
    AgendaItemModel,
    AgendaNoteModel,
    MeetingAttendeeModel,
    MeetingEmailSettingsModel,
    MeetingModel,
    MinutesSessionModel,
    RecordingModel,
    TaskColumnModel,
    TaskEventModel,
    TaskModel,
)
from src.team_admin.meetings.schemas import (
    COMPLETED_TASK_STATUS,
    ActionItem,
    AgendaItem,
    AiStatus,
    Attendee,
    Meeting,
    MinutesSession,
    Recording,
    ReminderFrequency,
    ReminderSetting,
    Task,
)

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_meeting(model: MeetingModel) -> Meeting:
    return Meeting(
        id=model.id,
        title=model.title,
        location=model.location,
        start_at=model.start_at,
        duration_minutes=model.duration_minutes,
    )


def _model_to_agenda_item(model: AgendaItemModel) -> AgendaItem:
    return AgendaItem(
        id=model.id,
        meeting_id=model.meeting_id,
        code=model.code,
        title=model.title,
        description=model.description,
        position=model.position,
    )


def _model_to_session(model: MinutesSessionModel) -> MinutesSession:
    return MinutesSession(
        id=model.id,
        meeting_id=model.meeting_id,
        started_at=model.started_at,
        ended_at=model.ended_at,
        created_by=model.created_by,
        transcript=model.transcript,
        pdf_path=model.pdf_path,
        reference_link=model.reference_link,
        ai_status=model.ai_status,
        ai_error=model.ai_error,
        ai_processed_at=model.ai_processed_at,
        email_status=model.email_status,
        email_sent_at=model.email_sent_at,
        email_sent_by=model.email_sent_by,
        email_error=model.email_error,
    )


def _model_to_recording(model: RecordingModel) -> Recording:
    return Recording(
        id=model.id,
        session_id=model.session_id,
        storage_path=model.storage_path,
        duration_seconds=model.duration_seconds,
        created_by=model.created_by,
        created_at=model.created_at,
    )


def _model_to_task(model: TaskModel, column_name: str | None = None) -> Task:
    return Task(
        id=model.id,
        meeting_id=model.meeting_id,
        column_id=model.column_id,
        column_name=column_name,
        title=model.title,
        status=model.status,
        priority=model.priority,
        owner_name=model.owner_name,
        owner_email=model.owner_email,
        due_date=model.due_date,
        notes=model.notes,
        position=model.position,
    )


def _plain(value: Any) -> Any:
    """Unwrap str enums so drivers receive plain strings."""
    return value.value if isinstance(value, Enum) else value


def _insert_for(session: AsyncSession):
    """Return the dialect's insert() that supports on_conflict_do_update."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"Upsert not supported for dialect {dialect!r}")


# ── Repository ──────────────────────────────────────────────────────────────


class MinutesRepository:
    """Async data access for the meeting minutes pipeline.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Meetings ─────────────────────────────────────────────────────────

    async def get_meeting(self, meeting_id: uuid.UUID) -> Meeting | None:
        async for session in self._session_factory():
            model = await session.get(MeetingModel, meeting_id)
            return _model_to_meeting(model) if model else None

    async def list_attendees(self, meeting_id: uuid.UUID) -> list[Attendee]:
        async for session in self._session_factory():
            stmt = (
                select(MeetingAttendeeModel)
                .where(MeetingAttendeeModel.meeting_id == meeting_id)
                .order_by(MeetingAttendeeModel.created_at)
            )
            result = await session.execute(stmt)
            return [
                Attendee(email=m.email, full_name=m.full_name)
                for m in result.scalars().all()
            ]

    async def list_agenda_items(self, meeting_id: uuid.UUID) -> list[AgendaItem]:
        """Agenda items of a meeting in display order."""
        async for session in self._session_factory():
            stmt = (
                select(AgendaItemModel)
                .where(AgendaItemModel.meeting_id == meeting_id)
                .order_by(AgendaItemModel.position, AgendaItemModel.title)
            )
            result = await session.execute(stmt)
            return [_model_to_agenda_item(m) for m in result.scalars().all()]

    # ── Sessions ─────────────────────────────────────────────────────────

    async def get_session(self, session_id: uuid.UUID) -> MinutesSession | None:
        async for session in self._session_factory():
            model = await session.get(MinutesSessionModel, session_id)
            return _model_to_session(model) if model else None

    async def get_open_session(self, meeting_id: uuid.UUID) -> MinutesSession | None:
        """The meeting's current (not yet ended) session, if any."""
        async for session in self._session_factory():
            stmt = (
                select(MinutesSessionModel)
                .where(
                    MinutesSessionModel.meeting_id == meeting_id,
                    MinutesSessionModel.ended_at.is_(None),
                )
                .order_by(MinutesSessionModel.started_at.desc())
                .limit(1)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return _model_to_session(model) if model else None

    async def create_session(
        self,
        meeting_id: uuid.UUID,
        created_by: str | None = None,
        started_at: datetime | None = None,
    ) -> MinutesSession:
        async for session in self._session_factory():
            model = MinutesSessionModel(
                id=uuid.uuid4(),
                meeting_id=meeting_id,
                created_by=created_by,
                started_at=started_at or datetime.now(timezone.utc),
                ai_status=AiStatus.PENDING.value,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_session(model)

    async def update_session(self, session_id: uuid.UUID, **fields: Any) -> None:
        """Overwrite the given columns on a session row."""
        values = {key: _plain(value) for key, value in fields.items()}
        async for session in self._session_factory():
            stmt = (
                update(MinutesSessionModel)
                .where(MinutesSessionModel.id == session_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.execute(stmt)
            await session.commit()

    async def claim_session(
        self,
        session_id: uuid.UUID,
        from_statuses: Iterable[AiStatus],
        to_status: AiStatus = AiStatus.PROCESSING,
    ) -> bool:
        """Compare-and-swap ai_status.

        The update only applies while the row is still in one of
        ``from_statuses``; the affected row count decides the winner when
        two triggers race for the same session.

        Returns:
            True if this caller moved the session to ``to_status``.
        """
        allowed = [_plain(s) for s in from_statuses]
        async for session in self._session_factory():
            stmt = (
                update(MinutesSessionModel)
                .where(
                    MinutesSessionModel.id == session_id,
                    MinutesSessionModel.ai_status.in_(allowed),
                )
                .values(ai_status=_plain(to_status), ai_error=None)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount == 1

    async def get_previous_session(
        self, meeting_id: uuid.UUID, current: MinutesSession
    ) -> MinutesSession | None:
        """Most recently concluded session that started before ``current``.

        Ties on started_at are broken by the latest ended_at.
        """
        async for session in self._session_factory():
            stmt = (
                select(MinutesSessionModel)
                .where(
                    MinutesSessionModel.meeting_id == meeting_id,
                    MinutesSessionModel.id != current.id,
                    MinutesSessionModel.ended_at.is_not(None),
                    MinutesSessionModel.started_at < current.started_at,
                )
                .order_by(
                    MinutesSessionModel.started_at.desc(),
                    MinutesSessionModel.ended_at.desc(),
                )
                .limit(1)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return _model_to_session(model) if model else None

    # ── Recordings ───────────────────────────────────────────────────────

    async def add_recording(
        self,
        session_id: uuid.UUID,
        storage_path: str,
        duration_seconds: int | None = None,
        created_by: str | None = None,
    ) -> Recording:
        async for session in self._session_factory():
            model = RecordingModel(
                id=uuid.uuid4(),
                session_id=session_id,
                storage_path=storage_path,
                duration_seconds=duration_seconds,
                created_by=created_by,
                created_at=datetime.now(timezone.utc),
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_recording(model)

    async def list_recordings(self, session_id: uuid.UUID) -> list[Recording]:
        """All segments of a session in upload order."""
        async for session in self._session_factory():
            stmt = (
                select(RecordingModel)
                .where(RecordingModel.session_id == session_id)
                .order_by(RecordingModel.created_at.asc())
            )
            result = await session.execute(stmt)
            return [_model_to_recording(m) for m in result.scalars().all()]

    async def get_latest_recording(self, session_id: uuid.UUID) -> Recording | None:
        async for session in self._session_factory():
            stmt = (
                select(RecordingModel)
                .where(RecordingModel.session_id == session_id)
                .order_by(RecordingModel.created_at.desc())
                .limit(1)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return _model_to_recording(model) if model else None

    # ── Agenda Notes ─────────────────────────────────────────────────────

    async def upsert_agenda_notes(
        self, session_id: uuid.UUID, notes: Mapping[uuid.UUID, str]
    ) -> int:
        """Write one row per agenda item, overwriting existing notes.

        Args:
            session_id: Minutes session UUID.
            notes: agenda_item_id -> note text (empty strings included).

        Returns:
            Number of rows written.
        """
        if not notes:
            return 0
        now = datetime.now(timezone.utc)
        rows = [
            {
                "id": uuid.uuid4(),
                "session_id": session_id,
                "agenda_item_id": item_id,
                "notes": text or "",
                "updated_at": now,
            }
            for item_id, text in notes.items()
        ]
        async for session in self._session_factory():
            insert = _insert_for(session)
            stmt = insert(AgendaNoteModel).values(rows)
            stmt = stmt.on_conflict_do_update(
                index_elements=["session_id", "agenda_item_id"],
                set_={"notes": stmt.excluded.notes, "updated_at": stmt.excluded.updated_at},
            )
            await session.execute(stmt)
            await session.commit()
        return len(rows)

    async def get_agenda_notes(self, session_id: uuid.UUID) -> dict[uuid.UUID, str]:
        async for session in self._session_factory():
            stmt = select(AgendaNoteModel).where(AgendaNoteModel.session_id == session_id)
            result = await session.execute(stmt)
            return {m.agenda_item_id: m.notes or "" for m in result.scalars().all()}

    # ── Tasks ────────────────────────────────────────────────────────────

    async def list_open_tasks(self, meeting_id: uuid.UUID) -> list[Task]:
        """Tasks of a meeting whose status is not Completed."""
        async for session in self._session_factory():
            stmt = (
                select(TaskModel, TaskColumnModel.name)
                .outerjoin(TaskColumnModel, TaskColumnModel.id == TaskModel.column_id)
                .where(
                    TaskModel.meeting_id == meeting_id,
                    TaskModel.status != COMPLETED_TASK_STATUS,
                )
                .order_by(TaskColumnModel.position, TaskModel.position)
            )
            result = await session.execute(stmt)
            return [_model_to_task(task, column_name) for task, column_name in result.all()]

    async def get_or_create_task_column(self, meeting_id: uuid.UUID, name: str) -> uuid.UUID:
        """Return the column id, creating it after the last column if absent."""
        async for session in self._session_factory():
            existing = await session.execute(
                select(TaskColumnModel.id).where(
                    TaskColumnModel.meeting_id == meeting_id,
                    TaskColumnModel.name == name,
                )
            )
            column_id = existing.scalar_one_or_none()
            if column_id is not None:
                return column_id

            max_position = await session.execute(
                select(func.max(TaskColumnModel.position)).where(
                    TaskColumnModel.meeting_id == meeting_id
                )
            )
            position = (max_position.scalar_one_or_none() or 0) + 1
            model = TaskColumnModel(
                id=uuid.uuid4(), meeting_id=meeting_id, name=name, position=position
            )
            session.add(model)
            try:
                await session.commit()
            except IntegrityError:
                # Created concurrently; use the winner's row
                await session.rollback()
                again = await session.execute(
                    select(TaskColumnModel.id).where(
                        TaskColumnModel.meeting_id == meeting_id,
                        TaskColumnModel.name == name,
                    )
                )
                return again.scalar_one()
            logger.info("task_column_created", meeting_id=str(meeting_id), name=name, position=position)
            return model.id

    async def create_tasks(
        self,
        meeting_id: uuid.UUID,
        column_id: uuid.UUID,
        items: list[ActionItem],
        *,
        status: str,
        notes: str,
        source: str,
    ) -> list[Task]:
        """Insert tasks at the end of a column, each with a "created" audit event."""
        if not items:
            return []
        async for session in self._session_factory():
            max_position = await session.execute(
                select(func.max(TaskModel.position)).where(TaskModel.column_id == column_id)
            )
            start = max_position.scalar_one_or_none() or 0

            created: list[TaskModel] = []
            for offset, item in enumerate(items, start=1):
                task = TaskModel(
                    id=uuid.uuid4(),
                    meeting_id=meeting_id,
                    column_id=column_id,
                    title=item.title,
                    status=status,
                    priority=item.priority.value,
                    owner_name=item.owner,
                    due_date=item.due_date,
                    notes=notes,
                    position=start + offset,
                )
                session.add(task)
                session.add(
                    TaskEventModel(
                        id=uuid.uuid4(),
                        task_id=task.id,
                        meeting_id=meeting_id,
                        event_type="created",
                        payload={
                            "source": source,
                            "title": item.title,
                            "owner": item.owner,
                            "priority": item.priority.value,
                            "due_date": item.due_date.isoformat() if item.due_date else None,
                        },
                    )
                )
                created.append(task)
            await session.commit()
            return [_model_to_task(task) for task in created]

    # ── Email Bookkeeping ────────────────────────────────────────────────

    async def record_email_sent(self, meeting_id: uuid.UUID, sent_at: datetime) -> None:
        """Upsert the meeting's last_sent_at timestamp."""
        async for session in self._session_factory():
            insert = _insert_for(session)
            stmt = insert(MeetingEmailSettingsModel).values(
                meeting_id=meeting_id, last_sent_at=sent_at, updated_at=sent_at
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["meeting_id"],
                set_={"last_sent_at": stmt.excluded.last_sent_at, "updated_at": stmt.excluded.updated_at},
            )
            await session.execute(stmt)
            await session.commit()

    async def set_reminder_frequency(
        self, meeting_id: uuid.UUID, frequency: ReminderFrequency
    ) -> None:
        """Upsert the meeting's reminder cadence, keeping last_sent_at."""
        now = datetime.now(timezone.utc)
        async for session in self._session_factory():
            insert = _insert_for(session)
            stmt = insert(MeetingEmailSettingsModel).values(
                meeting_id=meeting_id, reminder_frequency=frequency.value, updated_at=now
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["meeting_id"],
                set_={
                    "reminder_frequency": stmt.excluded.reminder_frequency,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            await session.execute(stmt)
            await session.commit()

    async def list_reminder_settings(self) -> list[ReminderSetting]:
        """Email settings of every meeting with reminders switched on."""
        async for session in self._session_factory():
            stmt = (
                select(MeetingEmailSettingsModel)
                .where(MeetingEmailSettingsModel.reminder_frequency != ReminderFrequency.NONE.value)
                .order_by(MeetingEmailSettingsModel.meeting_id)
            )
            result = await session.execute(stmt)
            return [
                ReminderSetting(
                    meeting_id=m.meeting_id,
                    reminder_frequency=ReminderFrequency(m.reminder_frequency),
                    last_sent_at=m.last_sent_at,
                )
                for m in result.scalars().all()
            ]
