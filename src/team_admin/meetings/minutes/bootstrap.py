"""Construction of the minutes components from Settings.

Used by the FastAPI lifespan and by scripts/reprocess_session.py. Each
component is built in its own try/except so a missing credential only
disables the routes that need it; the "Missing <NAME>" message is kept in
``init_errors`` keyed by the component's app.state name.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from dataclasses import dataclass, field

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from src.team_admin.config import Settings
from src.team_admin.core.errors import ConfigurationError
from src.team_admin.meetings.minutes.action_items import ActionItemExtractor
from src.team_admin.meetings.minutes.dispatch import TaskDispatcher
from src.team_admin.meetings.minutes.finalize import MinutesFinalizer
from src.team_admin.meetings.minutes.notifier import MinutesNotifier
from src.team_admin.meetings.minutes.pipeline import MinutesPipeline
from src.team_admin.meetings.minutes.reminders import MeetingReminderJob
from src.team_admin.meetings.minutes.summarizer import AgendaSummarizer
from src.team_admin.meetings.minutes.transcription import Transcriber
from src.team_admin.meetings.repository import MinutesRepository
from src.team_admin.services.gsuite import GmailService, GSuiteAuthManager
from src.team_admin.services.llm import LLMService
from src.team_admin.services.retry import RetryPolicy
from src.team_admin.services.storage import ObjectStorage

logger = structlog.get_logger(__name__)


@dataclass
class MinutesComponents:
    minutes_repository: MinutesRepository
    task_dispatcher: TaskDispatcher
    object_storage: ObjectStorage | None = None
    minutes_notifier: MinutesNotifier | None = None
    minutes_finalizer: MinutesFinalizer | None = None
    minutes_pipeline: MinutesPipeline | None = None
    reminder_job: MeetingReminderJob | None = None
    init_errors: dict[str, str] = field(default_factory=dict)

    def as_state(self) -> dict[str, object]:
        return {
            "minutes_repository": self.minutes_repository,
            "task_dispatcher": self.task_dispatcher,
            "object_storage": self.object_storage,
            "minutes_notifier": self.minutes_notifier,
            "minutes_finalizer": self.minutes_finalizer,
            "minutes_pipeline": self.minutes_pipeline,
            "reminder_job": self.reminder_job,
            "init_errors": self.init_errors,
        }


def build_minutes_components(
    settings: Settings,
    session_factory: Callable[..., AsyncGenerator[AsyncSession, None]],
) -> MinutesComponents:
    """Build every minutes component that the configuration allows."""
    repository = MinutesRepository(session_factory=session_factory)
    components = MinutesComponents(
        minutes_repository=repository,
        task_dispatcher=TaskDispatcher(),
    )
    policy = RetryPolicy.from_settings(settings)

    def _disable(names: tuple[str, ...], exc: ConfigurationError) -> None:
        for name in names:
            components.init_errors.setdefault(name, str(exc))
        logger.warning("minutes_component_disabled", components=list(names), error=str(exc))

    # Object storage
    try:
        components.object_storage = ObjectStorage(settings)
    except ConfigurationError as exc:
        _disable(
            (
                "object_storage",
                "minutes_notifier",
                "minutes_finalizer",
                "minutes_pipeline",
                "reminder_job",
            ),
            exc,
        )
        return components
    storage = components.object_storage

    # Gmail (optional: the finalizer still renders and stores without it)
    try:
        auth = GSuiteAuthManager.from_settings(settings)
        gmail = GmailService(auth_manager=auth, default_user_email=auth.delegated_user_email)
        components.minutes_notifier = MinutesNotifier(
            repository=repository,
            gmail_service=gmail,
            storage=storage,
            settings=settings,
        )
        components.reminder_job = MeetingReminderJob(
            repository=repository,
            notifier=components.minutes_notifier,
            timezone_name=settings.REMINDER_TIMEZONE,
        )
    except ConfigurationError as exc:
        _disable(("minutes_notifier", "reminder_job"), exc)

    components.minutes_finalizer = MinutesFinalizer(
        repository=repository,
        storage=storage,
        notifier=components.minutes_notifier,
        url_ttl_days=settings.PDF_SIGNED_URL_TTL_DAYS,
    )

    # Providers
    try:
        llm = LLMService(settings)
        transcriber = Transcriber(settings, storage, policy=policy)
    except ConfigurationError as exc:
        _disable(("minutes_pipeline",), exc)
        return components

    components.minutes_pipeline = MinutesPipeline(
        repository=repository,
        storage=storage,
        transcriber=transcriber,
        summarizer=AgendaSummarizer(
            llm,
            policy=policy,
            max_chars=settings.SUMMARY_CHUNK_CHARS,
            max_chunks=settings.SUMMARY_MAX_CHUNKS,
        ),
        extractor=ActionItemExtractor(llm, repository, policy=policy),
        dispatcher=components.task_dispatcher,
        finalizer=components.minutes_finalizer,
        transcribe_all_segments=settings.TRANSCRIBE_ALL_SEGMENTS,
        auto_process=settings.AUTO_PROCESS_ON_CONCLUDE,
    )
    logger.info(
        "minutes_components_initialized",
        email_enabled=components.minutes_notifier is not None,
    )
    return components
