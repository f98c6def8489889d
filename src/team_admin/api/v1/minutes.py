"""REST endpoints for meeting minutes sessions and AI processing.

Covers the session lifecycle (start, upload recording, conclude), the AI
trigger in its three forms (direct, database webhook, manual re-queue),
finalize (render + store + send the PDF), manual email resend, signed PDF
links, status polling for the admin UI, calendar invites, and attendee
reminders (cadence settings plus an on-demand run of the daily job).

Components are built in the application lifespan and read from app.state.
A component that could not be built (missing credentials) makes its
routes answer 503 with the original "Missing <NAME>" message.
"""

from __future__ import annotations

import hmac
import uuid
from typing import Any

import structlog
from fastapi import APIRouter, File, Form, Header, HTTPException, Request, UploadFile, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from src.team_admin.config import Settings, get_settings
from src.team_admin.core.errors import NotFoundError
from src.team_admin.meetings.schemas import AiStatus, MinutesSession, ReminderFrequency

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/meetings/ai", tags=["meetings-ai"])


# ── Request Schemas ──────────────────────────────────────────────────────────


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class TriggerRequest(_CamelModel):
    meeting_id: uuid.UUID = Field(alias="meetingId")
    session_id: uuid.UUID = Field(alias="sessionId")
    recording_path: str | None = Field(default=None, alias="recordingPath")


class SessionRef(_CamelModel):
    meeting_id: uuid.UUID = Field(alias="meetingId")
    session_id: uuid.UUID = Field(alias="sessionId")


class StartSessionRequest(_CamelModel):
    meeting_id: uuid.UUID = Field(alias="meetingId")
    created_by: str | None = Field(default=None, alias="createdBy")


class ConcludeRequest(SessionRef):
    reference_link: str | None = Field(default=None, alias="referenceLink")


class SendNotesRequest(SessionRef):
    sent_by_id: str | None = Field(default=None, alias="sentById")


class SessionPdfRequest(_CamelModel):
    session_id: uuid.UUID = Field(alias="sessionId")


class MeetingRef(_CamelModel):
    meeting_id: uuid.UUID = Field(alias="meetingId")


class ReminderSettingsRequest(MeetingRef):
    reminder_frequency: str = Field(alias="reminderFrequency")


# ── Helpers ──────────────────────────────────────────────────────────────────


def _get_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def _get_component(request: Request, name: str) -> Any:
    """Retrieve a component from app.state, 503 if it was not built."""
    component = getattr(request.app.state, name, None)
    if component is None:
        init_errors = getattr(request.app.state, "init_errors", None) or {}
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=init_errors.get(name, f"{name} not initialized"),
        )
    return component


def _get_repository(request: Request) -> Any:
    return _get_component(request, "minutes_repository")


def _get_pipeline(request: Request) -> Any:
    return _get_component(request, "minutes_pipeline")


def _get_finalizer(request: Request) -> Any:
    return _get_component(request, "minutes_finalizer")


def _get_notifier(request: Request) -> Any:
    return _get_component(request, "minutes_notifier")


def _get_storage(request: Request) -> Any:
    return _get_component(request, "object_storage")


def _get_reminder_job(request: Request) -> Any:
    return _get_component(request, "reminder_job")


def _secret_matches(expected: str, provided: str | None) -> bool:
    return hmac.compare_digest(expected.encode(), (provided or "").encode())


def _check_job_token(settings: Settings, provided: str | None) -> None:
    """401 unless INTERNAL_JOB_TOKEN is unset or matches x-internal-token."""
    if settings.INTERNAL_JOB_TOKEN and not _secret_matches(settings.INTERNAL_JOB_TOKEN, provided):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def _not_found(exc: NotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


def _bad_request(exc: ValueError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _pipeline_failure(exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": str(exc) or type(exc).__name__, "type": type(exc).__name__},
    )


def _session_to_response(session: MinutesSession) -> dict:
    return {
        "id": str(session.id),
        "meetingId": str(session.meeting_id),
        "startedAt": session.started_at.isoformat(),
        "endedAt": session.ended_at.isoformat() if session.ended_at else None,
        "aiStatus": session.ai_status.value,
        "aiError": session.ai_error,
        "aiProcessedAt": session.ai_processed_at.isoformat() if session.ai_processed_at else None,
        "pdfPath": session.pdf_path,
        "emailStatus": session.email_status.value,
    }


def _run_to_response(result: Any) -> dict:
    body: dict = {
        "ok": result.ok,
        "status": result.status.value,
        "transcriptChars": result.transcript_chars,
        "agendaItemsUpdated": result.agenda_items_updated,
        "tasksCreated": result.tasks_created,
    }
    if result.skipped:
        body["skipped"] = result.skipped
    return body


# ── AI Trigger ───────────────────────────────────────────────────────────────


@router.post("")
async def trigger_processing(body: TriggerRequest, request: Request) -> Any:
    """Run transcription + summarization for one session and wait for the result.

    Skip cases (no agenda, no recording, empty transcript, already
    processing) answer 200 with ``skipped`` set.
    """
    pipeline = _get_pipeline(request)
    try:
        result = await pipeline.run(
            body.meeting_id, body.session_id, recording_path=body.recording_path
        )
    except NotFoundError as exc:
        raise _not_found(exc)
    except Exception as exc:
        return _pipeline_failure(exc)
    return _run_to_response(result)


@router.post("/webhook")
async def receive_webhook(
    request: Request,
    x_rei_hook: str | None = Header(default=None),
) -> Any:
    """Database webhook receiver for minutes sessions moving to ``queued``.

    The payload is ``{"record": {"id", "meeting_id", "ai_status", ...}}``.
    Any other status is acknowledged and ignored.
    """
    settings = _get_settings(request)
    if settings.MEETING_AI_WEBHOOK_SECRET and not _secret_matches(
        settings.MEETING_AI_WEBHOOK_SECRET, x_rei_hook
    ):
        logger.warning("minutes_webhook_unauthorized")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body")

    record = payload.get("record") if isinstance(payload, dict) else None
    if not isinstance(record, dict):
        record = payload if isinstance(payload, dict) else {}

    if str(record.get("ai_status") or "").strip() != AiStatus.QUEUED.value:
        return {"ok": True, "ignored": True}

    try:
        session_id = uuid.UUID(str(record.get("id") or record.get("session_id")))
        meeting_id = uuid.UUID(str(record.get("meeting_id")))
    except ValueError:
        return {"ok": True, "skipped": "missing_ids"}

    pipeline = _get_pipeline(request)
    try:
        result = await pipeline.run(meeting_id, session_id, entry_statuses=(AiStatus.QUEUED,))
    except NotFoundError as exc:
        raise _not_found(exc)
    except Exception as exc:
        return _pipeline_failure(exc)
    return _run_to_response(result)


@router.post("/process-recording")
async def process_recording(body: SessionRef, request: Request) -> dict:
    """Re-queue a session and start a background run."""
    pipeline = _get_pipeline(request)
    repository = _get_repository(request)

    if await repository.get_latest_recording(body.session_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No recording found for this session",
        )
    try:
        queued = await pipeline.queue(body.meeting_id, body.session_id)
    except NotFoundError as exc:
        raise _not_found(exc)
    if not queued:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Session is already processing or has not been concluded",
        )
    return {"ok": True, "queued": True}


# ── Session Lifecycle ────────────────────────────────────────────────────────


@router.post("/sessions")
async def start_session(body: StartSessionRequest, request: Request) -> dict:
    """Start a minutes session, or return the meeting's open one."""
    pipeline = _get_pipeline(request)
    try:
        session = await pipeline.start_session(body.meeting_id, created_by=body.created_by)
    except NotFoundError as exc:
        raise _not_found(exc)
    return {"ok": True, "session": _session_to_response(session)}


@router.get("/sessions/{session_id}")
async def get_session_status(session_id: uuid.UUID, request: Request) -> dict:
    """Session status for UI polling."""
    repository = _get_repository(request)
    session = await repository.get_session(session_id)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Session {session_id} not found",
        )
    return _session_to_response(session)


@router.post("/upload-recording")
async def upload_recording(
    request: Request,
    meeting_id: uuid.UUID = Form(alias="meetingId"),
    session_id: uuid.UUID = Form(alias="sessionId"),
    user_id: str | None = Form(default=None, alias="userId"),
    duration_seconds: int | None = Form(default=None, alias="durationSeconds"),
    file: UploadFile = File(...),
) -> dict:
    """Store one webm segment for the session."""
    pipeline = _get_pipeline(request)
    audio = await file.read()
    try:
        recording = await pipeline.upload_recording(
            meeting_id,
            session_id,
            audio,
            user_id=user_id,
            duration_seconds=duration_seconds,
        )
    except NotFoundError as exc:
        raise _not_found(exc)
    except ValueError as exc:
        raise _bad_request(exc)
    return {
        "ok": True,
        "recordingPath": recording.storage_path,
        "recordingId": str(recording.id),
    }


@router.post("/conclude")
async def conclude_session(body: ConcludeRequest, request: Request) -> dict:
    """End the session; queue AI processing when a recording exists."""
    pipeline = _get_pipeline(request)
    try:
        result = await pipeline.conclude(
            body.meeting_id, body.session_id, reference_link=body.reference_link
        )
    except NotFoundError as exc:
        raise _not_found(exc)
    return {
        "ok": True,
        "hasRecording": result.has_recording,
        "aiStatus": result.ai_status.value,
    }


# ── Finalize & Delivery ──────────────────────────────────────────────────────


@router.post("/finalize")
async def finalize_minutes(
    body: SessionRef,
    request: Request,
    x_internal_token: str | None = Header(default=None),
) -> dict:
    """Render, store and send the minutes PDF now."""
    _check_job_token(_get_settings(request), x_internal_token)
    finalizer = _get_finalizer(request)
    try:
        result = await finalizer.finalize(body.meeting_id, body.session_id)
    except NotFoundError as exc:
        raise _not_found(exc)
    return {
        "ok": True,
        "pdfPath": result.pdf_path,
        "pdfUrl": result.pdf_url,
        "email": result.email.model_dump() if result.email else {"sent": False, "error": result.email_error},
    }


@router.post("/send-notes")
async def send_notes(body: SendNotesRequest, request: Request) -> dict:
    """Resend the stored minutes PDF to all attendees."""
    notifier = _get_notifier(request)
    try:
        result = await notifier.resend(body.meeting_id, body.session_id, sent_by=body.sent_by_id)
    except NotFoundError as exc:
        raise _not_found(exc)
    except ValueError as exc:
        raise _bad_request(exc)
    return {
        "ok": True,
        "to": result.recipients,
        "pdfPath": result.pdf_path,
        "pdfUrl": result.pdf_url,
    }


@router.post("/email-minutes")
async def email_minutes(body: SessionRef, request: Request) -> dict:
    """Send the HTML agenda/task summary to all attendees."""
    notifier = _get_notifier(request)
    try:
        result = await notifier.send_summary(body.meeting_id, body.session_id)
    except NotFoundError as exc:
        raise _not_found(exc)
    response: dict = {"ok": True, "sent": result.sent}
    if result.skipped:
        response["skipped"] = result.skipped
    return response


@router.post("/session-pdf")
async def session_pdf(body: SessionPdfRequest, request: Request) -> dict:
    """Time-limited signed link to a session's stored PDF."""
    repository = _get_repository(request)
    storage = _get_storage(request)
    settings = _get_settings(request)

    session = await repository.get_session(body.session_id)
    if session is None or not session.pdf_path:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No PDF found for this session",
        )
    url = await storage.signed_pdf_url(session.pdf_path, ttl_days=settings.PDF_SIGNED_URL_TTL_DAYS)
    return {"url": url}


# ── Invites & Reminders ──────────────────────────────────────────────────────


@router.post("/invite")
async def send_invite(body: MeetingRef, request: Request) -> dict:
    """Email a calendar invite (ICS) for the meeting to all attendees."""
    notifier = _get_notifier(request)
    try:
        result = await notifier.send_invite(body.meeting_id)
    except NotFoundError as exc:
        raise _not_found(exc)
    except ValueError as exc:
        raise _bad_request(exc)
    if result.skipped:
        return {"ok": True, "skipped": result.skipped}
    return {"ok": True, "invited": len(result.recipients)}


@router.put("/reminder-settings")
async def update_reminder_settings(body: ReminderSettingsRequest, request: Request) -> dict:
    """Set how often the meeting's attendees get reminder email."""
    repository = _get_repository(request)
    allowed = [f.value for f in ReminderFrequency]
    value = body.reminder_frequency.strip().lower()
    if value not in allowed:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"reminderFrequency must be one of: {', '.join(allowed)}",
        )
    if await repository.get_meeting(body.meeting_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Meeting not found")

    await repository.set_reminder_frequency(body.meeting_id, ReminderFrequency(value))
    return {"ok": True, "meetingId": str(body.meeting_id), "reminderFrequency": value}


@router.post("/cron/meeting-reminders")
async def run_meeting_reminders(
    request: Request,
    x_internal_token: str | None = Header(default=None),
) -> dict:
    """Run the daily reminder job now."""
    _check_job_token(_get_settings(request), x_internal_token)
    job = _get_reminder_job(request)
    result = await job.run()
    return {"ok": True, "sent": result.sent, "meetings": result.meetings, "failed": result.failed}
