"""MinutesFinalizer -- render, store, and deliver the minutes PDF.

Runs after AI processing reaches ``done`` (as a spawned background task) or
on demand from the finalize endpoint. Steps:

1. assemble the MinutesDocument (current + previous session notes)
2. render the PDF (reportlab, off the event loop)
3. upload to meetings/{meeting}/sessions/{session}/minutes.pdf (overwrite)
4. persist pdf_path and email_status="ready"
5. sign a download URL and send the PDF to attendees

Delivery failures are logged and reported in the result; they never undo
the stored PDF or the session's ai_status.
"""

from __future__ import annotations

import asyncio
import uuid

import structlog
from pydantic import BaseModel

from src.team_admin.core.monitoring import track_step
from src.team_admin.meetings.minutes.document import load_minutes_document
from src.team_admin.meetings.minutes.notifier import MinutesNotifier, NotifyResult
from src.team_admin.meetings.minutes.pdf import MinutesPdfRenderer
from src.team_admin.meetings.repository import MinutesRepository
from src.team_admin.meetings.schemas import EmailStatus
from src.team_admin.services.storage import ObjectStorage, minutes_pdf_object_key

logger = structlog.get_logger(__name__)


class FinalizeResult(BaseModel):
    pdf_path: str
    pdf_url: str | None = None
    email: NotifyResult | None = None
    email_error: str | None = None


class MinutesFinalizer:
    """Renders and distributes the minutes for one session.

    Args:
        repository: MinutesRepository for reads and the pdf_path write.
        storage: ObjectStorage for the PDF bucket.
        notifier: MinutesNotifier for the automatic send; None when email
            delivery is not configured (the PDF is still rendered and stored).
        renderer: PDF renderer; defaults to MinutesPdfRenderer.
        url_ttl_days: Lifetime of the signed download link.
    """

    def __init__(
        self,
        repository: MinutesRepository,
        storage: ObjectStorage,
        notifier: MinutesNotifier | None = None,
        renderer: MinutesPdfRenderer | None = None,
        url_ttl_days: int = 30,
    ) -> None:
        self._repository = repository
        self._storage = storage
        self._notifier = notifier
        self._renderer = renderer or MinutesPdfRenderer()
        self._url_ttl_days = url_ttl_days

    async def finalize(
        self,
        meeting_id: uuid.UUID,
        session_id: uuid.UUID,
        send_email: bool = True,
    ) -> FinalizeResult:
        """Render + store the PDF, then send it.

        Raises:
            NotFoundError: If the meeting or session does not exist.
            Exception: Rendering/storage errors propagate; email errors do not.
        """
        log = logger.bind(meeting_id=str(meeting_id), session_id=str(session_id))

        async with track_step("render_pdf"):
            document = await load_minutes_document(self._repository, meeting_id, session_id)
            pdf_bytes = await asyncio.to_thread(self._renderer.render, document)

        pdf_path = minutes_pdf_object_key(meeting_id, session_id)
        async with track_step("store_pdf"):
            await self._storage.upload_pdf(pdf_path, pdf_bytes)
            fields: dict = {"pdf_path": pdf_path}
            # A recorded manual send survives a re-render
            if document.session.email_status in (EmailStatus.DRAFT, EmailStatus.ERROR):
                fields["email_status"] = EmailStatus.READY
            await self._repository.update_session(session_id, **fields)
        log.info(
            "minutes_pdf_stored",
            pdf_path=pdf_path,
            pdf_bytes=len(pdf_bytes),
            agenda_items=len(document.agenda),
            has_previous=document.previous_session is not None,
        )

        result = FinalizeResult(pdf_path=pdf_path)
        try:
            result.pdf_url = await self._storage.signed_pdf_url(pdf_path, ttl_days=self._url_ttl_days)
        except Exception:
            log.warning("minutes_pdf_signed_url_failed", exc_info=True)

        if not send_email:
            return result
        if self._notifier is None:
            log.warning("minutes_email_not_configured")
            result.email_error = "Email delivery is not configured"
            return result

        try:
            async with track_step("send_email"):
                result.email = await self._notifier.send_minutes_pdf(
                    document.meeting,
                    document.session,
                    document.attendees,
                    pdf_bytes,
                    pdf_url=result.pdf_url,
                )
        except Exception as exc:
            result.email_error = str(exc) or type(exc).__name__
            log.warning("minutes_email_failed", error=result.email_error, exc_info=True)

        return result
