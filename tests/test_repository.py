"""MinutesRepository against a real SQLite database (aiosqlite).

Covers the SQL-level guarantees the pipeline relies on: the ai_status
compare-and-swap, one agenda note per (session, item), previous-session
selection and task column creation.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import func, select

from src.team_admin.meetings.models import (
    AgendaItemModel,
    AgendaNoteModel,
    MeetingAttendeeModel,
    MeetingEmailSettingsModel,
    MeetingModel,
    TaskEventModel,
    TaskModel,
)
from src.team_admin.meetings.repository import MinutesRepository
from src.team_admin.meetings.schemas import (
    DIRECT_ENTRY_STATUSES,
    ActionItem,
    AiStatus,
    EmailStatus,
    ReminderFrequency,
    TaskPriority,
)

BASE = datetime(2026, 3, 5, 15, 0)


async def _seed_meeting(factory, agenda=("Budget", "Hiring"), emails=("alice@example.com",)):
    meeting_id = uuid.uuid4()
    async with factory.maker() as session:
        session.add(MeetingModel(id=meeting_id, title="Weekly Ops", start_at=BASE))
        for position, title in enumerate(agenda, start=1):
            session.add(
                AgendaItemModel(
                    meeting_id=meeting_id, code=f"A{position}", title=title, position=position
                )
            )
        for email in emails:
            session.add(MeetingAttendeeModel(meeting_id=meeting_id, email=email))
        await session.commit()
    return meeting_id


async def _count(factory, model, *criteria) -> int:
    async with factory.maker() as session:
        result = await session.execute(select(func.count()).select_from(model).where(*criteria))
        return result.scalar_one()


class TestMeetings:
    @pytest.mark.asyncio
    async def test_meeting_agenda_and_attendees(self, sqlite_session_factory):
        repo = MinutesRepository(sqlite_session_factory)
        meeting_id = await _seed_meeting(sqlite_session_factory, agenda=("Budget", "Hiring"))

        meeting = await repo.get_meeting(meeting_id)
        agenda = await repo.list_agenda_items(meeting_id)
        attendees = await repo.list_attendees(meeting_id)

        assert meeting.title == "Weekly Ops"
        assert [item.label for item in agenda] == ["A1 - Budget", "A2 - Hiring"]
        assert [a.email for a in attendees] == ["alice@example.com"]
        assert await repo.get_meeting(uuid.uuid4()) is None


class TestSessions:
    @pytest.mark.asyncio
    async def test_create_and_open_session(self, sqlite_session_factory):
        repo = MinutesRepository(sqlite_session_factory)
        meeting_id = await _seed_meeting(sqlite_session_factory)

        created = await repo.create_session(meeting_id, created_by="user-1")
        open_session = await repo.get_open_session(meeting_id)

        assert created.ai_status == AiStatus.PENDING
        assert created.email_status == EmailStatus.DRAFT
        assert open_session.id == created.id

        await repo.update_session(created.id, ended_at=BASE)
        assert await repo.get_open_session(meeting_id) is None

    @pytest.mark.asyncio
    async def test_update_session_accepts_enums(self, sqlite_session_factory):
        repo = MinutesRepository(sqlite_session_factory)
        meeting_id = await _seed_meeting(sqlite_session_factory)
        created = await repo.create_session(meeting_id)

        await repo.update_session(
            created.id, ai_status=AiStatus.SKIPPED, email_status=EmailStatus.READY, pdf_path="x.pdf"
        )

        stored = await repo.get_session(created.id)
        assert stored.ai_status == AiStatus.SKIPPED
        assert stored.email_status == EmailStatus.READY
        assert stored.pdf_path == "x.pdf"

    @pytest.mark.asyncio
    async def test_claim_is_compare_and_swap(self, sqlite_session_factory):
        repo = MinutesRepository(sqlite_session_factory)
        meeting_id = await _seed_meeting(sqlite_session_factory)
        created = await repo.create_session(meeting_id)

        assert await repo.claim_session(created.id, DIRECT_ENTRY_STATUSES) is False

        await repo.update_session(created.id, ai_status=AiStatus.ERROR, ai_error="Boom: x")
        assert await repo.claim_session(created.id, DIRECT_ENTRY_STATUSES) is True
        assert await repo.claim_session(created.id, DIRECT_ENTRY_STATUSES) is False

        stored = await repo.get_session(created.id)
        assert stored.ai_status == AiStatus.PROCESSING
        assert stored.ai_error is None

    @pytest.mark.asyncio
    async def test_concurrent_claims_have_one_winner(self, sqlite_session_factory):
        repo = MinutesRepository(sqlite_session_factory)
        meeting_id = await _seed_meeting(sqlite_session_factory)
        created = await repo.create_session(meeting_id)
        await repo.update_session(created.id, ai_status=AiStatus.QUEUED)

        results = await asyncio.gather(
            repo.claim_session(created.id, (AiStatus.QUEUED,)),
            repo.claim_session(created.id, (AiStatus.QUEUED,)),
        )

        assert sorted(results) == [False, True]

    @pytest.mark.asyncio
    async def test_claim_to_queued(self, sqlite_session_factory):
        repo = MinutesRepository(sqlite_session_factory)
        meeting_id = await _seed_meeting(sqlite_session_factory)
        created = await repo.create_session(meeting_id)
        await repo.update_session(created.id, ai_status=AiStatus.DONE)

        assert await repo.claim_session(created.id, (AiStatus.DONE,), to_status=AiStatus.QUEUED)
        assert (await repo.get_session(created.id)).ai_status == AiStatus.QUEUED

    @pytest.mark.asyncio
    async def test_previous_session(self, sqlite_session_factory):
        repo = MinutesRepository(sqlite_session_factory)
        meeting_id = await _seed_meeting(sqlite_session_factory)
        oldest = await repo.create_session(meeting_id, started_at=BASE - timedelta(days=14))
        previous = await repo.create_session(meeting_id, started_at=BASE - timedelta(days=7))
        unfinished = await repo.create_session(meeting_id, started_at=BASE - timedelta(days=2))
        current = await repo.create_session(meeting_id, started_at=BASE)
        for session in (oldest, previous):
            await repo.update_session(session.id, ended_at=session.started_at + timedelta(hours=1))

        found = await repo.get_previous_session(meeting_id, current)

        assert found.id == previous.id
        assert unfinished.id != found.id
        assert await repo.get_previous_session(meeting_id, oldest) is None


class TestRecordings:
    @pytest.mark.asyncio
    async def test_latest_and_ordered_recordings(self, sqlite_session_factory):
        repo = MinutesRepository(sqlite_session_factory)
        meeting_id = await _seed_meeting(sqlite_session_factory)
        session = await repo.create_session(meeting_id)

        assert await repo.get_latest_recording(session.id) is None

        await repo.add_recording(session.id, "first.webm", duration_seconds=30)
        await asyncio.sleep(0.01)
        await repo.add_recording(session.id, "second.webm", created_by="user-2")

        latest = await repo.get_latest_recording(session.id)
        assert latest.storage_path == "second.webm"
        assert latest.created_by == "user-2"
        assert [r.storage_path for r in await repo.list_recordings(session.id)] == [
            "first.webm",
            "second.webm",
        ]


class TestAgendaNotes:
    @pytest.mark.asyncio
    async def test_upsert_overwrites_single_row(self, sqlite_session_factory):
        repo = MinutesRepository(sqlite_session_factory)
        meeting_id = await _seed_meeting(sqlite_session_factory)
        session = await repo.create_session(meeting_id)
        budget, hiring = await repo.list_agenda_items(meeting_id)

        await repo.upsert_agenda_notes(session.id, {budget.id: "Draft.", hiring.id: ""})
        written = await repo.upsert_agenda_notes(session.id, {budget.id: "Budget approved."})

        assert written == 1
        assert await repo.get_agenda_notes(session.id) == {
            budget.id: "Budget approved.",
            hiring.id: "",
        }
        assert await _count(
            sqlite_session_factory, AgendaNoteModel, AgendaNoteModel.session_id == session.id
        ) == 2

    @pytest.mark.asyncio
    async def test_empty_upsert_is_noop(self, sqlite_session_factory):
        repo = MinutesRepository(sqlite_session_factory)

        assert await repo.upsert_agenda_notes(uuid.uuid4(), {}) == 0


class TestTasks:
    @pytest.mark.asyncio
    async def test_column_is_created_once(self, sqlite_session_factory):
        repo = MinutesRepository(sqlite_session_factory)
        meeting_id = await _seed_meeting(sqlite_session_factory)

        backlog = await repo.get_or_create_task_column(meeting_id, "Backlog")
        action_items = await repo.get_or_create_task_column(meeting_id, "Action Items")

        assert await repo.get_or_create_task_column(meeting_id, "Action Items") == action_items
        assert backlog != action_items

    @pytest.mark.asyncio
    async def test_create_tasks_appends_with_audit_events(self, sqlite_session_factory):
        repo = MinutesRepository(sqlite_session_factory)
        meeting_id = await _seed_meeting(sqlite_session_factory)
        column_id = await repo.get_or_create_task_column(meeting_id, "Action Items")
        items = [
            ActionItem(title="Send budget", owner="Alice", due_date=date(2026, 3, 12)),
            ActionItem(title="Post job ad", owner="", priority=TaskPriority.HIGH),
        ]

        first = await repo.create_tasks(
            meeting_id, column_id, items[:1], status="In Progress", notes="From minutes", source="ai"
        )
        second = await repo.create_tasks(
            meeting_id, column_id, items[1:], status="In Progress", notes="From minutes", source="ai"
        )

        assert [t.position for t in first + second] == [1, 2]
        assert second[0].priority == "High"
        assert await _count(
            sqlite_session_factory, TaskEventModel, TaskEventModel.meeting_id == meeting_id
        ) == 2

        open_tasks = await repo.list_open_tasks(meeting_id)
        assert [t.title for t in open_tasks] == ["Send budget", "Post job ad"]
        assert open_tasks[0].column_name == "Action Items"
        assert open_tasks[0].due_date == date(2026, 3, 12)

    @pytest.mark.asyncio
    async def test_completed_tasks_are_not_open(self, sqlite_session_factory):
        repo = MinutesRepository(sqlite_session_factory)
        meeting_id = await _seed_meeting(sqlite_session_factory)
        async with sqlite_session_factory.maker() as session:
            session.add(TaskModel(meeting_id=meeting_id, title="Done thing", status="Completed"))
            session.add(TaskModel(meeting_id=meeting_id, title="Open thing", status="Not started"))
            await session.commit()

        assert [t.title for t in await repo.list_open_tasks(meeting_id)] == ["Open thing"]

    @pytest.mark.asyncio
    async def test_create_no_tasks(self, sqlite_session_factory):
        repo = MinutesRepository(sqlite_session_factory)

        assert await repo.create_tasks(
            uuid.uuid4(), uuid.uuid4(), [], status="In Progress", notes="", source="ai"
        ) == []
        assert await _count(sqlite_session_factory, TaskModel) == 0


class TestEmailBookkeeping:
    @pytest.mark.asyncio
    async def test_record_email_sent_upserts(self, sqlite_session_factory):
        repo = MinutesRepository(sqlite_session_factory)
        meeting_id = await _seed_meeting(sqlite_session_factory)

        await repo.record_email_sent(meeting_id, BASE)
        await repo.record_email_sent(meeting_id, BASE + timedelta(days=1))

        async with sqlite_session_factory.maker() as session:
            row = await session.get(MeetingEmailSettingsModel, meeting_id)
        assert row.last_sent_at == BASE + timedelta(days=1)
        assert await _count(sqlite_session_factory, MeetingEmailSettingsModel) == 1

    @pytest.mark.asyncio
    async def test_reminder_settings_round_trip(self, sqlite_session_factory):
        repo = MinutesRepository(sqlite_session_factory)
        weekly = await _seed_meeting(sqlite_session_factory)
        switched_off = await _seed_meeting(sqlite_session_factory)
        never_set = await _seed_meeting(sqlite_session_factory)

        await repo.record_email_sent(weekly, BASE)
        await repo.set_reminder_frequency(weekly, ReminderFrequency.WEEKLY)
        await repo.set_reminder_frequency(switched_off, ReminderFrequency.DAILY)
        await repo.set_reminder_frequency(switched_off, ReminderFrequency.NONE)
        await repo.record_email_sent(never_set, BASE)

        settings = await repo.list_reminder_settings()

        assert [s.meeting_id for s in settings] == [weekly]
        assert settings[0].reminder_frequency == ReminderFrequency.WEEKLY
        assert settings[0].last_sent_at == BASE

    @pytest.mark.asyncio
    async def test_record_email_sent_keeps_frequency(self, sqlite_session_factory):
        repo = MinutesRepository(sqlite_session_factory)
        meeting_id = await _seed_meeting(sqlite_session_factory)

        await repo.set_reminder_frequency(meeting_id, ReminderFrequency.MONTHLY)
        await repo.record_email_sent(meeting_id, BASE)

        async with sqlite_session_factory.maker() as session:
            row = await session.get(MeetingEmailSettingsModel, meeting_id)
        assert row.reminder_frequency == "monthly"
        assert row.last_sent_at == BASE
