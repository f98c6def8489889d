"""MinutesPipeline -- session lifecycle and the AI processing run.

Lifecycle: start_session -> upload_recording (any number) -> conclude ->
queue -> run -> finalize (background).

A run claims its session with a compare-and-swap on ai_status, so only one
of several redundant triggers (direct call, webhook, conclude handoff)
reaches the providers. Steps inside a run are sequential:

1. load agenda items            (none       -> skipped)
2. resolve recording segments   (none       -> skipped)
3. transcribe + persist text    (blank      -> skipped)
4. summarize chunks, upsert agenda notes
5. extract action items         (failures logged, never fatal)
6. mark done, hand off finalize to the dispatcher
"""

from __future__ import annotations

import traceback
import uuid
from datetime import datetime, timezone

import structlog
from pydantic import BaseModel

from src.team_admin.core.errors import NotFoundError
from src.team_admin.core.monitoring import minutes_pipeline_runs_total, track_step
from src.team_admin.meetings.minutes.action_items import ActionItemExtractor
from src.team_admin.meetings.minutes.dispatch import TaskDispatcher
from src.team_admin.meetings.minutes.document import load_meeting_and_session
from src.team_admin.meetings.minutes.finalize import MinutesFinalizer
from src.team_admin.meetings.minutes.summarizer import AgendaSummarizer
from src.team_admin.meetings.minutes.transcription import Transcriber
from src.team_admin.meetings.repository import MinutesRepository
from src.team_admin.meetings.schemas import (
    DIRECT_ENTRY_STATUSES,
    REQUEUE_STATUSES,
    AiStatus,
    MinutesSession,
    Recording,
)
from src.team_admin.services.storage import ObjectStorage, recording_object_key

logger = structlog.get_logger(__name__)

ERROR_STACK_LINES = 5


class PipelineResult(BaseModel):
    """Outcome of one run. ``skipped`` names the reason for a no-op run."""

    ok: bool = True
    status: AiStatus
    skipped: str | None = None
    transcript_chars: int = 0
    agenda_items_updated: int = 0
    tasks_created: int = 0


class ConcludeResult(BaseModel):
    has_recording: bool
    ai_status: AiStatus
    queued: bool = False


def format_error(exc: BaseException) -> str:
    """``"<ExceptionType>: <message>"`` as stored in ai_error."""
    return f"{type(exc).__name__}: {exc}"


def truncated_stack(exc: BaseException, lines: int = ERROR_STACK_LINES) -> str:
    formatted = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return "\n".join(formatted.rstrip().splitlines()[-lines:])


class MinutesPipeline:
    """Orchestrates minutes sessions and their AI processing.

    Args:
        repository: MinutesRepository for all session state.
        storage: ObjectStorage for recording uploads.
        transcriber: Speech-to-text adapter.
        summarizer: Agenda summarizer.
        extractor: Action item extractor.
        dispatcher: TaskDispatcher for background runs and finalize handoffs.
        finalizer: MinutesFinalizer; None disables the post-run handoff.
        transcribe_all_segments: Transcribe every recording of the session
            instead of only the latest one when no path is given.
        auto_process: Queue and start a run when a session with a recording
            is concluded.
    """

    def __init__(
        self,
        repository: MinutesRepository,
        storage: ObjectStorage,
        transcriber: Transcriber,
        summarizer: AgendaSummarizer,
        extractor: ActionItemExtractor,
        dispatcher: TaskDispatcher,
        finalizer: MinutesFinalizer | None = None,
        transcribe_all_segments: bool = False,
        auto_process: bool = True,
    ) -> None:
        self._repository = repository
        self._storage = storage
        self._transcriber = transcriber
        self._summarizer = summarizer
        self._extractor = extractor
        self._dispatcher = dispatcher
        self._finalizer = finalizer
        self._transcribe_all_segments = transcribe_all_segments
        self._auto_process = auto_process

    # ── Session lifecycle ────────────────────────────────────────────────

    async def start_session(
        self, meeting_id: uuid.UUID, created_by: str | None = None
    ) -> MinutesSession:
        """Return the meeting's open session, creating one if there is none."""
        meeting = await self._repository.get_meeting(meeting_id)
        if meeting is None:
            raise NotFoundError(f"Meeting {meeting_id} not found")

        existing = await self._repository.get_open_session(meeting_id)
        if existing is not None:
            return existing

        session = await self._repository.create_session(meeting_id, created_by=created_by)
        logger.info(
            "minutes_session_started",
            meeting_id=str(meeting_id),
            session_id=str(session.id),
        )
        return session

    async def upload_recording(
        self,
        meeting_id: uuid.UUID,
        session_id: uuid.UUID,
        audio: bytes,
        user_id: str | None = None,
        duration_seconds: int | None = None,
    ) -> Recording:
        """Store one webm segment and register it on the session."""
        await load_meeting_and_session(self._repository, meeting_id, session_id)
        if not audio:
            raise ValueError("Recording file is empty")

        key = recording_object_key(meeting_id, session_id, user_id)
        await self._storage.upload_recording(key, audio)
        recording = await self._repository.add_recording(
            session_id,
            key,
            duration_seconds=duration_seconds,
            created_by=user_id,
        )
        logger.info(
            "minutes_recording_uploaded",
            meeting_id=str(meeting_id),
            session_id=str(session_id),
            storage_path=key,
            audio_bytes=len(audio),
        )
        return recording

    async def conclude(
        self,
        meeting_id: uuid.UUID,
        session_id: uuid.UUID,
        reference_link: str | None = None,
    ) -> ConcludeResult:
        """End the session and mark it ready (has a recording) or skipped.

        A session that is already queued or processing keeps its status.
        """
        _, session = await load_meeting_and_session(self._repository, meeting_id, session_id)
        has_recording = await self._repository.get_latest_recording(session_id) is not None

        fields: dict = {"ended_at": datetime.now(timezone.utc)}
        if reference_link:
            fields["reference_link"] = reference_link

        status = session.ai_status
        if status not in (AiStatus.QUEUED, AiStatus.PROCESSING):
            status = AiStatus.READY if has_recording else AiStatus.SKIPPED
            fields["ai_status"] = status
        await self._repository.update_session(session_id, **fields)
        logger.info(
            "minutes_session_concluded",
            meeting_id=str(meeting_id),
            session_id=str(session_id),
            has_recording=has_recording,
            ai_status=status.value,
        )

        queued = False
        if has_recording and self._auto_process and status == AiStatus.READY:
            queued = await self.queue(meeting_id, session_id)
            if queued:
                status = AiStatus.QUEUED
        return ConcludeResult(has_recording=has_recording, ai_status=status, queued=queued)

    async def queue(
        self, meeting_id: uuid.UUID, session_id: uuid.UUID, dispatch: bool = True
    ) -> bool:
        """Move the session to queued and (optionally) spawn a run.

        Returns:
            False if the session is currently processing (or was never
            concluded), True otherwise.
        """
        await load_meeting_and_session(self._repository, meeting_id, session_id)
        queued = await self._repository.claim_session(
            session_id, REQUEUE_STATUSES, to_status=AiStatus.QUEUED
        )
        if not queued:
            logger.info(
                "minutes_queue_rejected",
                meeting_id=str(meeting_id),
                session_id=str(session_id),
            )
            return False
        if dispatch:
            self.dispatch_run(meeting_id, session_id, entry_statuses=(AiStatus.QUEUED,))
        return True

    def dispatch_run(
        self,
        meeting_id: uuid.UUID,
        session_id: uuid.UUID,
        recording_path: str | None = None,
        entry_statuses: tuple[AiStatus, ...] = DIRECT_ENTRY_STATUSES,
    ):
        return self._dispatcher.spawn(
            "minutes_pipeline",
            lambda: self.run(
                meeting_id, session_id, recording_path=recording_path, entry_statuses=entry_statuses
            ),
            meeting_id=str(meeting_id),
            session_id=str(session_id),
        )

    def dispatch_finalize(self, meeting_id: uuid.UUID, session_id: uuid.UUID):
        if self._finalizer is None:
            logger.warning("minutes_finalize_not_configured", session_id=str(session_id))
            return None
        return self._dispatcher.spawn(
            "minutes_finalize",
            lambda: self._finalizer.finalize(meeting_id, session_id),
            meeting_id=str(meeting_id),
            session_id=str(session_id),
        )

    # ── Processing run ───────────────────────────────────────────────────

    async def run(
        self,
        meeting_id: uuid.UUID,
        session_id: uuid.UUID,
        recording_path: str | None = None,
        entry_statuses: tuple[AiStatus, ...] = DIRECT_ENTRY_STATUSES,
    ) -> PipelineResult:
        """Transcribe, summarize and extract for one session.

        Args:
            recording_path: Specific segment to transcribe; defaults to the
                latest recording (or all of them, when so configured).
            entry_statuses: Statuses the claim may start from. The webhook
                passes (QUEUED,).

        Raises:
            NotFoundError: If the meeting or session does not exist.
            Exception: Provider and storage failures, after ai_status has
                been set to error.
        """
        await load_meeting_and_session(self._repository, meeting_id, session_id)
        log = logger.bind(meeting_id=str(meeting_id), session_id=str(session_id))

        claimed = await self._repository.claim_session(session_id, entry_statuses)
        if not claimed:
            minutes_pipeline_runs_total.labels(outcome="not_claimed").inc()
            log.info("minutes_run_not_claimed", entry_statuses=[s.value for s in entry_statuses])
            return PipelineResult(status=AiStatus.PROCESSING, skipped="already_processing")

        log.info("minutes_run_started", recording_path=recording_path)
        try:
            result = await self._process(meeting_id, session_id, recording_path, log)
        except Exception as exc:
            await self._record_failure(session_id, exc, log)
            minutes_pipeline_runs_total.labels(outcome="error").inc()
            raise

        minutes_pipeline_runs_total.labels(outcome="skipped" if result.skipped else "done").inc()
        if result.status == AiStatus.DONE:
            self.dispatch_finalize(meeting_id, session_id)
        return result

    async def _process(
        self,
        meeting_id: uuid.UUID,
        session_id: uuid.UUID,
        recording_path: str | None,
        log,
    ) -> PipelineResult:
        agenda = await self._repository.list_agenda_items(meeting_id)
        if not agenda:
            return await self._skip(session_id, "no_agenda_items", log)

        paths = await self._resolve_segments(session_id, recording_path)
        if not paths:
            return await self._skip(session_id, "no_recording", log)

        async with track_step("transcribe"):
            transcript = await self._transcriber.transcribe_segments(paths)
        await self._repository.update_session(session_id, transcript=transcript)
        log.info("minutes_transcript_saved", segments=len(paths), transcript_chars=len(transcript))

        if not transcript.strip():
            return await self._skip(session_id, "empty_transcript", log)

        metadata = {"meeting_id": str(meeting_id), "session_id": str(session_id)}
        async with track_step("summarize"):
            notes = await self._summarizer.summarize(agenda, transcript, metadata=metadata)
        updated = await self._repository.upsert_agenda_notes(
            session_id, {uuid.UUID(item_id): text for item_id, text in notes.items()}
        )

        async with track_step("extract_action_items"):
            tasks_created = await self._extractor.extract_and_store(meeting_id, transcript)

        await self._repository.update_session(
            session_id,
            ai_status=AiStatus.DONE,
            ai_error=None,
            ai_processed_at=datetime.now(timezone.utc),
        )
        log.info(
            "minutes_run_done",
            transcript_chars=len(transcript),
            agenda_items_updated=updated,
            tasks_created=tasks_created,
        )
        return PipelineResult(
            status=AiStatus.DONE,
            transcript_chars=len(transcript),
            agenda_items_updated=updated,
            tasks_created=tasks_created,
        )

    async def _resolve_segments(
        self, session_id: uuid.UUID, recording_path: str | None
    ) -> list[str]:
        if recording_path:
            return [recording_path]
        if self._transcribe_all_segments:
            return [r.storage_path for r in await self._repository.list_recordings(session_id)]
        latest = await self._repository.get_latest_recording(session_id)
        return [latest.storage_path] if latest else []

    async def _skip(self, session_id: uuid.UUID, reason: str, log) -> PipelineResult:
        await self._repository.update_session(
            session_id,
            ai_status=AiStatus.SKIPPED,
            ai_processed_at=datetime.now(timezone.utc),
        )
        log.info("minutes_run_skipped", reason=reason)
        return PipelineResult(status=AiStatus.SKIPPED, skipped=reason)

    async def _record_failure(self, session_id: uuid.UUID, exc: Exception, log) -> None:
        log.error(
            "minutes_run_failed",
            error=format_error(exc),
            stack=truncated_stack(exc),
        )
        try:
            await self._repository.update_session(
                session_id, ai_status=AiStatus.ERROR, ai_error=format_error(exc)
            )
        except Exception:
            log.error("minutes_error_status_write_failed", exc_info=True)
