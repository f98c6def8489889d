"""Tests for MinutesNotifier: recipients, message content, resend bookkeeping."""

from __future__ import annotations

import uuid
from datetime import date

import pytest

from factories import NOW, seed_meeting, seed_session
from src.team_admin.core.errors import NotFoundError
from src.team_admin.meetings.minutes.notifier import MinutesNotifier, attendee_emails
from src.team_admin.meetings.schemas import AiStatus, Attendee, EmailStatus, Task


def _make_notifier(repo, storage, settings, gmail) -> MinutesNotifier:
    return MinutesNotifier(repository=repo, gmail_service=gmail, storage=storage, settings=settings)


def _store_pdf(storage, meeting, session, repo) -> str:
    path = f"meetings/{meeting.id}/sessions/{session.id}/minutes.pdf"
    storage.pdfs[path] = b"%PDF-1.4 stored"
    repo.sessions[session.id] = session.model_copy(update={"pdf_path": path})
    return path


class TestAttendeeEmails:
    def test_dedupes_case_insensitively_and_drops_blanks(self):
        attendees = [
            Attendee(email="Alice@Example.com"),
            Attendee(email="alice@example.com"),
            Attendee(email=None, full_name="Guest"),
            Attendee(email="   "),
            Attendee(email="bob@example.com"),
        ]

        assert attendee_emails(attendees) == ["Alice@Example.com", "bob@example.com"]

    def test_empty(self):
        assert attendee_emails([]) == []


class TestPdfEmail:
    def test_subject_attachment_and_links(self, repo, storage, settings, gmail):
        meeting = seed_meeting(repo)
        session = seed_session(repo, meeting, reference_link="https://docs.example.com/notes")
        notifier = _make_notifier(repo, storage, settings, gmail)

        email = notifier.build_pdf_email(
            meeting, session, ["alice@example.com"], b"%PDF", "https://signed.example.com/x"
        )

        assert email.subject == "Minutes PDF: Weekly Ops (3/5/2026)"
        assert email.to == ["alice@example.com"]
        assert email.attachments[0].filename == "Minutes - Weekly Ops.pdf"
        assert email.attachments[0].mime_type == "application/pdf"
        assert f"https://admin.example.com/meetings/{meeting.id}" in email.body_text
        assert "https://docs.example.com/notes" in email.body_text
        assert "expires in 30 days" in email.body_text
        assert "https://signed.example.com/x" in email.body_html

    def test_without_signed_url(self, repo, storage, settings, gmail):
        meeting = seed_meeting(repo)
        session = seed_session(repo, meeting)
        notifier = _make_notifier(repo, storage, settings, gmail)

        email = notifier.build_pdf_email(meeting, session, ["alice@example.com"], b"%PDF", None)

        assert "PDF link" not in email.body_text
        assert "Download the PDF" not in email.body_html

    @pytest.mark.asyncio
    async def test_send_to_all_attendees_in_one_message(self, repo, storage, settings, gmail):
        meeting = seed_meeting(repo, attendee_emails=("alice@example.com", "ALICE@example.com", "bob@example.com"))
        session = seed_session(repo, meeting)
        notifier = _make_notifier(repo, storage, settings, gmail)

        result = await notifier.send_minutes_pdf(
            meeting, session, repo.attendees[meeting.id], b"%PDF"
        )

        assert result.sent is True
        assert result.message_id == "msg-1"
        assert result.recipients == ["alice@example.com", "bob@example.com"]
        gmail.send_email.assert_awaited_once()
        assert repo.email_sent[meeting.id] is not None

    @pytest.mark.asyncio
    async def test_no_attendees_is_skipped(self, repo, storage, settings, gmail):
        meeting = seed_meeting(repo, attendee_emails=())
        session = seed_session(repo, meeting)
        notifier = _make_notifier(repo, storage, settings, gmail)

        result = await notifier.send_minutes_pdf(meeting, session, [], b"%PDF")

        assert result.sent is False
        assert result.skipped == "no_attendees"
        gmail.send_email.assert_not_awaited()
        assert repo.email_sent == {}

    @pytest.mark.asyncio
    async def test_last_sent_write_failure_is_ignored(self, repo, storage, settings, gmail):
        meeting = seed_meeting(repo)
        session = seed_session(repo, meeting)
        notifier = _make_notifier(repo, storage, settings, gmail)

        async def _fail(meeting_id, sent_at):
            raise ConnectionError("database gone")

        repo.record_email_sent = _fail

        result = await notifier.send_minutes_pdf(meeting, session, repo.attendees[meeting.id], b"%PDF")

        assert result.sent is True


class TestResend:
    @pytest.mark.asyncio
    async def test_resend_marks_session_sent(self, repo, storage, settings, gmail):
        meeting = seed_meeting(repo)
        session = seed_session(repo, meeting, ai_status=AiStatus.DONE, ended_at=NOW)
        path = _store_pdf(storage, meeting, session, repo)
        notifier = _make_notifier(repo, storage, settings, gmail)

        result = await notifier.resend(meeting.id, session.id, sent_by="user-9")

        assert result.sent is True
        assert result.pdf_path == path
        assert result.pdf_url == f"https://storage.test/minutes/{path}?ttl=30d"
        stored = repo.sessions[session.id]
        assert stored.email_status == EmailStatus.SENT
        assert stored.email_sent_by == "user-9"
        assert stored.email_sent_at is not None
        assert stored.email_error is None
        email = gmail.send_email.call_args.args[0]
        assert email.attachments[0].content == b"%PDF-1.4 stored"

    @pytest.mark.asyncio
    async def test_resend_without_pdf(self, repo, storage, settings, gmail):
        meeting = seed_meeting(repo)
        session = seed_session(repo, meeting)
        notifier = _make_notifier(repo, storage, settings, gmail)

        with pytest.raises(NotFoundError):
            await notifier.resend(meeting.id, session.id)
        gmail.send_email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_resend_without_attendees(self, repo, storage, settings, gmail):
        meeting = seed_meeting(repo, attendee_emails=())
        session = seed_session(repo, meeting)
        _store_pdf(storage, meeting, session, repo)
        notifier = _make_notifier(repo, storage, settings, gmail)

        with pytest.raises(ValueError):
            await notifier.resend(meeting.id, session.id)
        gmail.send_email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_resend_unknown_session(self, repo, storage, settings, gmail):
        meeting = seed_meeting(repo)
        notifier = _make_notifier(repo, storage, settings, gmail)

        with pytest.raises(NotFoundError):
            await notifier.resend(meeting.id, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_resend_failure_records_error(self, repo, storage, settings, gmail):
        meeting = seed_meeting(repo)
        session = seed_session(repo, meeting)
        _store_pdf(storage, meeting, session, repo)
        gmail.send_email.side_effect = RuntimeError("Invalid grant")
        notifier = _make_notifier(repo, storage, settings, gmail)

        with pytest.raises(RuntimeError):
            await notifier.resend(meeting.id, session.id)

        stored = repo.sessions[session.id]
        assert stored.email_status == EmailStatus.ERROR
        assert stored.email_error == "Invalid grant"


class TestSummaryEmail:
    @pytest.mark.asyncio
    async def test_summary_lists_agenda_and_tasks(self, repo, storage, settings, gmail):
        meeting = seed_meeting(repo, title="R&D Sync")
        budget, _ = repo.agenda[meeting.id]
        session = seed_session(repo, meeting, ai_status=AiStatus.DONE)
        await repo.upsert_agenda_notes(session.id, {budget.id: "Budget approved.\nReview in May."})
        repo.tasks.append(
            Task(
                id=uuid.uuid4(),
                meeting_id=meeting.id,
                title="Send <final> numbers",
                status="Not started",
                owner_name="Alice",
                due_date=date(2026, 3, 12),
            )
        )
        notifier = _make_notifier(repo, storage, settings, gmail)

        result = await notifier.send_summary(meeting.id, session.id)

        assert result.sent is True
        email = gmail.send_email.call_args.args[0]
        assert email.subject == "Minutes: R&D Sync (3/5/2026)"
        assert "R&amp;D Sync" in email.body_html
        assert "Budget approved.<br/>Review in May." in email.body_html
        assert "Send &lt;final&gt; numbers" in email.body_html
        assert "2026-03-12" in email.body_html
        assert "(No notes)" in email.body_html
        assert "A1 - Budget" in email.body_text

    @pytest.mark.asyncio
    async def test_summary_without_tasks(self, repo, storage, settings, gmail):
        meeting = seed_meeting(repo)
        session = seed_session(repo, meeting)
        notifier = _make_notifier(repo, storage, settings, gmail)

        await notifier.send_summary(meeting.id, session.id)

        email = gmail.send_email.call_args.args[0]
        assert "(none)" in email.body_html
        assert email.attachments == []

    @pytest.mark.asyncio
    async def test_summary_without_attendees(self, repo, storage, settings, gmail):
        meeting = seed_meeting(repo, attendee_emails=())
        session = seed_session(repo, meeting)
        notifier = _make_notifier(repo, storage, settings, gmail)

        result = await notifier.send_summary(meeting.id, session.id)

        assert result.skipped == "no_attendees"
        gmail.send_email.assert_not_awaited()


class TestInviteEmail:
    @pytest.mark.asyncio
    async def test_invite_attaches_calendar_request(self, repo, storage, settings, gmail):
        meeting = seed_meeting(repo)
        notifier = _make_notifier(repo, storage, settings, gmail)

        result = await notifier.send_invite(meeting.id)

        assert result.sent is True
        assert result.recipients == ["alice@example.com", "bob@example.com"]
        email = gmail.send_email.call_args.args[0]
        assert email.subject == "Invite: Weekly Ops"
        assert "Where: Room 4" in email.body_text
        attachment = email.attachments[0]
        assert attachment.filename == "invite.ics"
        assert attachment.mime_type == "text/calendar"
        assert attachment.content_params == {"method": "REQUEST"}
        ics = attachment.content.decode("utf-8")
        assert f"UID:meeting-{meeting.id}@example.com\r\n" in ics
        assert "DTSTART:20260305T150000Z\r\n" in ics
        assert "DTEND:20260305T160000Z\r\n" in ics
        assert "ORGANIZER:MAILTO:minutes@example.com\r\n" in ics
        assert "ATTENDEE;ROLE=REQ-PARTICIPANT;RSVP=TRUE:MAILTO:bob@example.com\r\n" in ics
        # Invites do not count as a reminder send
        assert meeting.id not in repo.email_sent

    @pytest.mark.asyncio
    async def test_invite_uses_meeting_duration(self, repo, storage, settings, gmail):
        meeting = seed_meeting(repo)
        repo.meetings[meeting.id] = meeting.model_copy(update={"duration_minutes": 30})
        notifier = _make_notifier(repo, storage, settings, gmail)

        await notifier.send_invite(meeting.id)

        ics = gmail.send_email.call_args.args[0].attachments[0].content.decode("utf-8")
        assert "DTEND:20260305T153000Z\r\n" in ics

    @pytest.mark.asyncio
    async def test_invite_without_start_time(self, repo, storage, settings, gmail):
        meeting = seed_meeting(repo)
        repo.meetings[meeting.id] = meeting.model_copy(update={"start_at": None})
        notifier = _make_notifier(repo, storage, settings, gmail)

        with pytest.raises(ValueError, match="no start time"):
            await notifier.send_invite(meeting.id)
        gmail.send_email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invite_without_attendees(self, repo, storage, settings, gmail):
        meeting = seed_meeting(repo, attendee_emails=())
        notifier = _make_notifier(repo, storage, settings, gmail)

        result = await notifier.send_invite(meeting.id)

        assert result.skipped == "no_attendees"
        gmail.send_email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invite_unknown_meeting(self, repo, storage, settings, gmail):
        notifier = _make_notifier(repo, storage, settings, gmail)

        with pytest.raises(NotFoundError):
            await notifier.send_invite(uuid.uuid4())


class TestReminderEmail:
    @pytest.mark.asyncio
    async def test_reminder_records_last_sent(self, repo, storage, settings, gmail):
        meeting = seed_meeting(repo)
        notifier = _make_notifier(repo, storage, settings, gmail)

        result = await notifier.send_reminder(meeting)

        assert result.sent is True
        email = gmail.send_email.call_args.args[0]
        assert email.subject == "Reminder: Weekly Ops"
        assert email.body_text == (
            "Reminder to review tasks + agenda for Weekly Ops.\n"
            f"Open: https://admin.example.com/meetings/{meeting.id}\n"
        )
        assert email.attachments == []
        assert meeting.id in repo.email_sent

    @pytest.mark.asyncio
    async def test_reminder_failure_propagates(self, repo, storage, settings, gmail):
        meeting = seed_meeting(repo)
        gmail.send_email.side_effect = RuntimeError("Invalid grant")
        notifier = _make_notifier(repo, storage, settings, gmail)

        with pytest.raises(RuntimeError):
            await notifier.send_reminder(meeting)
        assert meeting.id not in repo.email_sent
