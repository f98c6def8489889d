"""Periodic attendee reminders driven by meeting email settings.

Each meeting's ``reminder_frequency`` (daily/weekdays/weekly/biweekly/
monthly) and ``last_sent_at`` decide whether its attendees get a "review
tasks + agenda" email on a given run. The job runs once a day at
REMINDER_HOUR in REMINDER_TIMEZONE, scheduled with APScheduler; it can also
be run on demand from the reminder job endpoint.

Task functions are decoupled from the scheduler so tests can run them
directly.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from pydantic import BaseModel

from src.team_admin.config import Settings
from src.team_admin.meetings.minutes.notifier import MinutesNotifier
from src.team_admin.meetings.repository import MinutesRepository
from src.team_admin.meetings.schemas import ReminderFrequency

logger = structlog.get_logger(__name__)

REMINDER_JOB_ID = "meeting_reminders"

# Slack on the minimum interval: a previous send may finish after the next
# daily run starts.
SEND_TOLERANCE = timedelta(hours=1)

_MIN_INTERVAL = {
    ReminderFrequency.DAILY: timedelta(days=1),
    ReminderFrequency.WEEKDAYS: timedelta(days=1),
    ReminderFrequency.WEEKLY: timedelta(days=7),
    ReminderFrequency.BIWEEKLY: timedelta(days=14),
    ReminderFrequency.MONTHLY: timedelta(days=28),
}


def should_send_reminder(
    frequency: ReminderFrequency,
    last_sent_at: datetime | None,
    now: datetime,
    tz: ZoneInfo,
) -> bool:
    """Whether a meeting is due for a reminder at ``now``.

    - none: never
    - never sent before: always (except weekdays on a weekend)
    - daily / weekly / biweekly: at least 1 / 7 / 14 days since the last send
    - weekdays: daily, but not on Saturday or Sunday in ``tz``
    - monthly: a new calendar month in ``tz`` and at least 28 days elapsed

    Naive timestamps are taken as UTC.
    """
    if frequency == ReminderFrequency.NONE:
        return False

    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local_now = now.astimezone(tz)
    if frequency == ReminderFrequency.WEEKDAYS and local_now.weekday() >= 5:
        return False
    if last_sent_at is None:
        return True

    if last_sent_at.tzinfo is None:
        last_sent_at = last_sent_at.replace(tzinfo=timezone.utc)
    elapsed = now - last_sent_at
    if elapsed < _MIN_INTERVAL[frequency] - SEND_TOLERANCE:
        return False
    if frequency == ReminderFrequency.MONTHLY:
        local_last = last_sent_at.astimezone(tz)
        return (local_now.year, local_now.month) != (local_last.year, local_last.month)
    return True


class ReminderRunResult(BaseModel):
    """Outcome of one reminder run."""

    meetings: int = 0
    sent: int = 0
    failed: int = 0


class MeetingReminderJob:
    """Sends due reminders for every meeting with reminders switched on.

    Args:
        repository: MinutesRepository for email settings and meetings.
        notifier: MinutesNotifier that sends each reminder.
        timezone_name: IANA zone for weekday and month boundaries.
    """

    def __init__(
        self,
        repository: MinutesRepository,
        notifier: MinutesNotifier,
        timezone_name: str = "America/Los_Angeles",
    ) -> None:
        self._repository = repository
        self._notifier = notifier
        self._tz = ZoneInfo(timezone_name)

    async def run(self, now: datetime | None = None) -> ReminderRunResult:
        """Send every due reminder once.

        A failure for one meeting is logged and counted; the run moves on.

        Returns:
            Meetings reminded, recipients emailed (``sent``), and failures.
        """
        now = now or datetime.now(timezone.utc)
        result = ReminderRunResult()

        for setting in await self._repository.list_reminder_settings():
            if not should_send_reminder(
                setting.reminder_frequency, setting.last_sent_at, now, self._tz
            ):
                continue
            meeting = await self._repository.get_meeting(setting.meeting_id)
            if meeting is None:
                continue
            try:
                notify = await self._notifier.send_reminder(meeting)
            except Exception:
                result.failed += 1
                logger.warning(
                    "meeting_reminder_failed", meeting_id=str(meeting.id), exc_info=True
                )
                continue
            if notify.sent:
                result.meetings += 1
                result.sent += len(notify.recipients)

        logger.info("meeting_reminders_run", **result.model_dump())
        return result


# ── Scheduling ───────────────────────────────────────────────────────────────


def setup_reminder_tasks(reminder_job: MeetingReminderJob) -> dict:
    """Task functions keyed by job id, safe to run from the scheduler."""

    async def meeting_reminders_task() -> int:
        """Send due reminders -- runs daily at REMINDER_HOUR."""
        try:
            result = await reminder_job.run()
            return result.sent
        except Exception:
            logger.warning("scheduler.meeting_reminders_failed", exc_info=True)
            return 0

    return {REMINDER_JOB_ID: meeting_reminders_task}


def start_reminder_scheduler(tasks: dict, settings: Settings) -> AsyncIOScheduler:
    """Schedule the reminder tasks on a started AsyncIOScheduler.

    Must be called with a running event loop (application lifespan).
    """
    tz = ZoneInfo(settings.REMINDER_TIMEZONE)
    scheduler = AsyncIOScheduler(timezone=tz)
    for job_id, task_fn in tasks.items():
        scheduler.add_job(
            task_fn,
            CronTrigger(hour=settings.REMINDER_HOUR, minute=0, timezone=tz),
            id=job_id,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=3600,
        )
    scheduler.start()
    logger.info(
        "scheduler.reminders_started",
        jobs=list(tasks),
        hour=settings.REMINDER_HOUR,
        timezone=settings.REMINDER_TIMEZONE,
    )
    return scheduler
