"""MinutesNotifier -- email delivery of rendered minutes to meeting attendees.

Entry points:
1. send_minutes_pdf: automatic send after finalize (fire-and-forget; the
   caller logs failures). Skips silently when there are no attendees.
2. resend: manual resend of the already-stored PDF. Status-tracked on the
   session (email_status/email_sent_at/email_sent_by/email_error).
3. send_summary: lighter HTML summary of agenda notes and open tasks.
4. send_invite: calendar invite (ICS, METHOD:REQUEST) for the meeting.
5. send_reminder: "review tasks + agenda" nudge from the reminder job.

Every message goes to all attendees at once (single message, all addresses
on the To header). The "last sent" timestamp is recorded best-effort.
"""

from __future__ import annotations

import html
import uuid
from datetime import datetime, timezone

import structlog
from pydantic import BaseModel, Field

from src.team_admin.config import Settings
from src.team_admin.core.errors import NotFoundError
from src.team_admin.meetings.minutes.calendar_invite import build_ics
from src.team_admin.meetings.minutes.document import load_meeting_and_session, load_minutes_document
from src.team_admin.meetings.repository import MinutesRepository
from src.team_admin.meetings.schemas import (
    Attendee,
    EmailStatus,
    Meeting,
    MinutesDocument,
    MinutesSession,
)
from src.team_admin.services.gsuite import EmailAttachment, EmailMessage, GmailService
from src.team_admin.services.storage import ObjectStorage

logger = structlog.get_logger(__name__)


class NotifyResult(BaseModel):
    """Outcome of one notification attempt."""

    sent: bool = False
    recipients: list[str] = Field(default_factory=list)
    skipped: str | None = None
    message_id: str | None = None
    pdf_path: str | None = None
    pdf_url: str | None = None


def attendee_emails(attendees: list[Attendee]) -> list[str]:
    """Unique, non-empty attendee addresses in attendee order."""
    seen: set[str] = set()
    emails: list[str] = []
    for attendee in attendees:
        email = (attendee.email or "").strip()
        if email and email.lower() not in seen:
            seen.add(email.lower())
            emails.append(email)
    return emails


def _short_date(meeting: Meeting, session: MinutesSession) -> str:
    when = meeting.start_at or session.started_at
    return f"{when.month}/{when.day}/{when.year}"


def _multiline(text: str) -> str:
    return html.escape(text).replace("\n", "<br/>")


class MinutesNotifier:
    """Sends minutes email through Gmail.

    Args:
        repository: MinutesRepository for session/meeting lookups and bookkeeping.
        gmail_service: GmailService used for delivery.
        storage: ObjectStorage holding rendered PDFs.
        settings: Application settings (APP_BASE_URL, signed URL TTL).
    """

    def __init__(
        self,
        repository: MinutesRepository,
        gmail_service: GmailService,
        storage: ObjectStorage,
        settings: Settings,
    ) -> None:
        self._repository = repository
        self._gmail = gmail_service
        self._storage = storage
        self._base_url = settings.APP_BASE_URL.rstrip("/")
        self._app_name = settings.APP_NAME
        self._url_ttl_days = settings.PDF_SIGNED_URL_TTL_DAYS
        self._sender_email = settings.GOOGLE_DELEGATED_USER_EMAIL

    def meeting_url(self, meeting_id: uuid.UUID) -> str:
        return f"{self._base_url}/meetings/{meeting_id}"

    # ── PDF email ────────────────────────────────────────────────────────

    def build_pdf_email(
        self,
        meeting: Meeting,
        session: MinutesSession,
        recipients: list[str],
        pdf_bytes: bytes,
        pdf_url: str | None,
    ) -> EmailMessage:
        """Subject "Minutes PDF: <title> (<date>)", text + HTML bodies, PDF attached."""
        meeting_url = self.meeting_url(meeting.id)
        subject = f"Minutes PDF: {meeting.title} ({_short_date(meeting, session)})"

        text_lines = ["Meeting minutes PDF attached.", "", f"View meeting: {meeting_url}"]
        if session.reference_link:
            text_lines.append(f"Reference link: {session.reference_link}")
        if pdf_url:
            text_lines.append(f"PDF link (signed, expires in {self._url_ttl_days} days): {pdf_url}")

        links = [f'<p>View meeting: <a href="{html.escape(meeting_url)}">{html.escape(meeting_url)}</a></p>']
        if session.reference_link:
            ref = html.escape(session.reference_link)
            links.append(f'<p>Reference link: <a href="{ref}">{ref}</a></p>')
        if pdf_url:
            links.append(
                f'<p><a href="{html.escape(pdf_url)}">Download the PDF</a> '
                f'<span style="color:#6b7280">(link expires in {self._url_ttl_days} days)</span></p>'
            )
        body_html = (
            '<div style="font-family:Helvetica,Arial,sans-serif;font-size:14px;">'
            f"<h2 style=\"margin:0 0 8px\">Minutes: {html.escape(meeting.title)}</h2>"
            "<p>The meeting minutes PDF is attached.</p>"
            f"{''.join(links)}"
            f'<p style="color:#6b7280;font-size:12px">Sent by {html.escape(self._app_name)}.</p>'
            "</div>"
        )

        return EmailMessage(
            to=recipients,
            subject=subject,
            body_text="\n".join(text_lines) + "\n",
            body_html=body_html,
            attachments=[
                EmailAttachment(
                    filename=f"Minutes - {meeting.title}.pdf",
                    content=pdf_bytes,
                    mime_type="application/pdf",
                )
            ],
        )

    async def send_minutes_pdf(
        self,
        meeting: Meeting,
        session: MinutesSession,
        attendees: list[Attendee],
        pdf_bytes: bytes,
        pdf_url: str | None = None,
    ) -> NotifyResult:
        """Send the rendered PDF to all attendees in one message.

        Returns a skipped result (no network call) when nobody has an email
        address. Delivery errors propagate to the caller.
        """
        recipients = attendee_emails(attendees)
        log = logger.bind(meeting_id=str(meeting.id), session_id=str(session.id))
        if not recipients:
            log.info("minutes_email_skipped", reason="no_attendees")
            return NotifyResult(skipped="no_attendees")

        email = self.build_pdf_email(meeting, session, recipients, pdf_bytes, pdf_url)
        result = await self._gmail.send_email(email)
        log.info("minutes_email_sent", recipients=len(recipients), message_id=result.message_id)

        await self._record_last_sent(meeting.id)
        return NotifyResult(
            sent=True, recipients=recipients, message_id=result.message_id, pdf_url=pdf_url
        )

    async def resend(
        self,
        meeting_id: uuid.UUID,
        session_id: uuid.UUID,
        sent_by: str | None = None,
    ) -> NotifyResult:
        """Manually resend the stored PDF and record the outcome on the session.

        Raises:
            NotFoundError: If the meeting/session is missing or no PDF was rendered.
            ValueError: If the meeting has no attendee email addresses.
        """
        meeting, session = await load_meeting_and_session(self._repository, meeting_id, session_id)
        if not session.pdf_path:
            raise NotFoundError("No PDF has been generated for this session yet")

        recipients = attendee_emails(await self._repository.list_attendees(meeting_id))
        if not recipients:
            raise ValueError("No attendee emails found for this meeting")

        log = logger.bind(meeting_id=str(meeting_id), session_id=str(session_id))
        try:
            pdf_bytes = await self._storage.download_pdf(session.pdf_path)
            pdf_url = await self._signed_url_or_none(session.pdf_path)
            email = self.build_pdf_email(meeting, session, recipients, pdf_bytes, pdf_url)
            result = await self._gmail.send_email(email)
            await self._repository.update_session(
                session_id,
                email_status=EmailStatus.SENT,
                email_sent_at=datetime.now(timezone.utc),
                email_sent_by=sent_by,
                email_error=None,
            )
        except Exception as exc:
            log.warning("minutes_resend_failed", error=str(exc), exc_info=True)
            try:
                await self._repository.update_session(
                    session_id,
                    email_status=EmailStatus.ERROR,
                    email_error=str(exc) or type(exc).__name__,
                )
            except Exception:
                log.warning("minutes_resend_status_write_failed", exc_info=True)
            raise

        log.info("minutes_resent", recipients=len(recipients), sent_by=sent_by)
        return NotifyResult(
            sent=True,
            recipients=recipients,
            message_id=result.message_id,
            pdf_path=session.pdf_path,
            pdf_url=pdf_url,
        )

    # ── HTML summary ─────────────────────────────────────────────────────

    def build_summary_email(self, document: MinutesDocument, recipients: list[str]) -> EmailMessage:
        meeting = document.meeting
        session = document.session
        meeting_url = self.meeting_url(meeting.id)

        agenda_html = []
        for row in document.agenda:
            code = (
                f'<span style="color:#6b7280;font-size:12px">{html.escape(row.item.code)}&nbsp;&nbsp;</span>'
                if row.item.code
                else ""
            )
            notes = (
                _multiline(row.notes.strip())
                if row.notes.strip()
                else '<span style="color:#9ca3af">(No notes)</span>'
            )
            previous = (
                '<div style="color:#6b7280;font-size:12px;margin-top:8px">'
                f"Previous session: {_multiline(row.previous_notes.strip())}</div>"
                if row.previous_notes.strip()
                else ""
            )
            agenda_html.append(
                '<div style="border:1px solid #e5e7eb;border-radius:12px;padding:12px 14px;margin-bottom:10px">'
                f'<div style="font-weight:700;font-size:14px">{code}{html.escape(row.item.title)}</div>'
                f'<div style="margin-top:8px;font-size:13px;line-height:1.5">{notes}</div>'
                f"{previous}</div>"
            )

        if document.open_tasks:
            task_rows = "".join(
                "<tr>"
                f"<td>{html.escape(t.title)}</td>"
                f"<td>{html.escape(t.owner_name or '-')}</td>"
                f"<td>{html.escape(t.status)}</td>"
                f"<td>{t.due_date.isoformat() if t.due_date else '-'}</td>"
                f"<td>{html.escape(t.priority)}</td>"
                "</tr>"
                for t in document.open_tasks
            )
            tasks_html = (
                '<table cellpadding="6" style="border-collapse:collapse;font-size:13px;width:100%">'
                "<tr><th align=\"left\">Task</th><th align=\"left\">Owner</th>"
                "<th align=\"left\">Status</th><th align=\"left\">Due</th><th align=\"left\">Priority</th></tr>"
                f"{task_rows}</table>"
            )
        else:
            tasks_html = '<p style="color:#9ca3af">(none)</p>'

        reference = ""
        if session.reference_link:
            ref = html.escape(session.reference_link)
            reference = f'<div style="margin-top:6px;font-size:13px">Reference: <a href="{ref}" style="color:white">{ref}</a></div>'

        body_html = (
            '<div style="font-family:Helvetica,Arial,sans-serif;background:#f9fafb;padding:20px">'
            '<div style="max-width:720px;margin:0 auto">'
            '<div style="background:#111827;color:white;padding:16px 18px;border-radius:14px">'
            '<div style="font-size:18px;font-weight:800">Meeting Minutes</div>'
            f'<div style="margin-top:4px;font-size:13px">{html.escape(meeting.title)} &bull; '
            f"{_short_date(meeting, session)}</div>"
            f'<div style="margin-top:6px;font-size:13px">View in app: '
            f'<a href="{html.escape(meeting_url)}" style="color:white">{html.escape(meeting_url)}</a></div>'
            f"{reference}</div>"
            '<h3 style="margin:16px 0 8px">Open tasks</h3>'
            f"{tasks_html}"
            '<h3 style="margin:16px 0 8px">Agenda</h3>'
            f"{''.join(agenda_html)}"
            f'<div style="color:#6b7280;font-size:12px;margin-top:14px">Sent by {html.escape(self._app_name)}.</div>'
            "</div></div>"
        )

        text_lines = [f"Meeting minutes: {meeting.title}", f"View in app: {meeting_url}", ""]
        for row in document.agenda:
            text_lines.append(row.item.label)
            text_lines.append(row.notes.strip() or "(No notes)")
            text_lines.append("")

        return EmailMessage(
            to=recipients,
            subject=f"Minutes: {meeting.title} ({_short_date(meeting, session)})",
            body_html=body_html,
            body_text="\n".join(text_lines),
        )

    async def send_summary(self, meeting_id: uuid.UUID, session_id: uuid.UUID) -> NotifyResult:
        """Send the HTML agenda/task summary to all attendees."""
        document = await load_minutes_document(self._repository, meeting_id, session_id)
        recipients = attendee_emails(document.attendees)
        log = logger.bind(meeting_id=str(meeting_id), session_id=str(session_id))
        if not recipients:
            log.info("minutes_summary_skipped", reason="no_attendees")
            return NotifyResult(skipped="no_attendees")

        result = await self._gmail.send_email(self.build_summary_email(document, recipients))
        log.info("minutes_summary_sent", recipients=len(recipients))
        await self._record_last_sent(meeting_id)
        return NotifyResult(sent=True, recipients=recipients, message_id=result.message_id)

    # ── Calendar invite ──────────────────────────────────────────────────

    def build_invite_email(self, meeting: Meeting, recipients: list[str]) -> EmailMessage:
        """Subject "Invite: <title>", plain body, ICS attached as a REQUEST."""
        if meeting.start_at is None:
            raise ValueError("Meeting has no start time")

        meeting_url = self.meeting_url(meeting.id)
        domain = self._sender_email.partition("@")[2] or "team-admin"
        ics = build_ics(
            uid=f"meeting-{meeting.id}@{domain}",
            start=meeting.start_at,
            duration_minutes=meeting.duration_minutes,
            summary=meeting.title,
            description=f"Open the meeting page for agenda, tasks, and minutes: {meeting_url}",
            location=meeting.location,
            organizer_email=self._sender_email,
            attendees=recipients,
            url=meeting_url,
        )
        when = meeting.start_at.strftime("%Y-%m-%d %H:%M %Z").strip()
        body_text = (
            f"You have been invited to: {meeting.title}\n"
            f"When: {when}\n"
            f"Where: {meeting.location or '(not set)'}\n"
            f"Link: {meeting_url}\n"
        )
        body_html = (
            '<div style="font-family:Helvetica,Arial,sans-serif;font-size:14px;">'
            f"<p>You have been invited to <b>{html.escape(meeting.title)}</b>.</p>"
            f"<p>When: {html.escape(when)}<br/>Where: {html.escape(meeting.location or '(not set)')}</p>"
            f'<p><a href="{html.escape(meeting_url)}">{html.escape(meeting_url)}</a></p>'
            "</div>"
        )
        return EmailMessage(
            to=recipients,
            subject=f"Invite: {meeting.title}",
            body_text=body_text,
            body_html=body_html,
            attachments=[
                EmailAttachment(
                    filename="invite.ics",
                    content=ics.encode("utf-8"),
                    mime_type="text/calendar",
                    content_params={"method": "REQUEST"},
                )
            ],
        )

    async def send_invite(self, meeting_id: uuid.UUID) -> NotifyResult:
        """Email a calendar invite for the meeting to all attendees.

        Raises:
            NotFoundError: If the meeting does not exist.
            ValueError: If the meeting has no start time.
        """
        meeting = await self._repository.get_meeting(meeting_id)
        if meeting is None:
            raise NotFoundError(f"Meeting not found: {meeting_id}")
        recipients = attendee_emails(await self._repository.list_attendees(meeting_id))
        log = logger.bind(meeting_id=str(meeting_id))
        if not recipients:
            log.info("meeting_invite_skipped", reason="no_attendees")
            return NotifyResult(skipped="no_attendees")

        result = await self._gmail.send_email(self.build_invite_email(meeting, recipients))
        log.info("meeting_invite_sent", recipients=len(recipients), message_id=result.message_id)
        return NotifyResult(sent=True, recipients=recipients, message_id=result.message_id)

    # ── Reminder ─────────────────────────────────────────────────────────

    def build_reminder_email(self, meeting: Meeting, recipients: list[str]) -> EmailMessage:
        meeting_url = self.meeting_url(meeting.id)
        title = html.escape(meeting.title)
        return EmailMessage(
            to=recipients,
            subject=f"Reminder: {meeting.title}",
            body_text=f"Reminder to review tasks + agenda for {meeting.title}.\nOpen: {meeting_url}\n",
            body_html=(
                f"<p>Reminder to review tasks + agenda for <b>{title}</b>.</p>"
                f'<p><a href="{html.escape(meeting_url)}">{html.escape(meeting_url)}</a></p>'
            ),
        )

    async def send_reminder(self, meeting: Meeting) -> NotifyResult:
        """Send the periodic reminder and record last_sent_at.

        Skips (no network call) when the meeting has no attendee emails.
        Delivery errors propagate to the reminder job.
        """
        recipients = attendee_emails(await self._repository.list_attendees(meeting.id))
        log = logger.bind(meeting_id=str(meeting.id))
        if not recipients:
            log.info("meeting_reminder_skipped", reason="no_attendees")
            return NotifyResult(skipped="no_attendees")

        result = await self._gmail.send_email(self.build_reminder_email(meeting, recipients))
        log.info("meeting_reminder_sent", recipients=len(recipients))
        await self._record_last_sent(meeting.id)
        return NotifyResult(sent=True, recipients=recipients, message_id=result.message_id)

    # ── helpers ──────────────────────────────────────────────────────────

    async def signed_pdf_url(self, pdf_path: str) -> str:
        return await self._storage.signed_pdf_url(pdf_path, ttl_days=self._url_ttl_days)

    async def _signed_url_or_none(self, pdf_path: str) -> str | None:
        try:
            return await self.signed_pdf_url(pdf_path)
        except Exception:
            logger.warning("minutes_pdf_signed_url_failed", pdf_path=pdf_path, exc_info=True)
            return None

    async def _record_last_sent(self, meeting_id: uuid.UUID) -> None:
        try:
            await self._repository.record_email_sent(meeting_id, datetime.now(timezone.utc))
        except Exception:
            logger.warning("minutes_last_sent_write_failed", meeting_id=str(meeting_id), exc_info=True)
