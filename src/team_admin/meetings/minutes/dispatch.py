"""Background task handoff for pipeline runs and finalize steps.

TaskDispatcher replaces unawaited follow-up calls with tracked asyncio
tasks: it holds a strong reference until each task finishes, logs and
counts the outcome in a done-callback, and drains outstanding work on
shutdown.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from src.team_admin.core.monitoring import background_tasks_total

logger = structlog.get_logger(__name__)


class TaskDispatcher:
    """Spawns named background coroutines and tracks them to completion."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(
        self,
        name: str,
        factory: Callable[[], Awaitable[Any]],
        **context: Any,
    ) -> asyncio.Task:
        """Start ``factory()`` as a task. Failures are logged, never raised to the caller.

        Args:
            name: Task kind used in logs and metrics (e.g. "minutes_finalize").
            factory: Zero-argument coroutine factory.
            context: Extra key-value pairs attached to the task's log lines.
        """

        async def _runner() -> Any:
            return await factory()

        task = asyncio.create_task(_runner(), name=name)
        self._tasks.add(task)
        logger.info("background_task_spawned", task=name, **context)

        def _done(finished: asyncio.Task) -> None:
            self._tasks.discard(finished)
            if finished.cancelled():
                background_tasks_total.labels(name=name, outcome="cancelled").inc()
                logger.warning("background_task_cancelled", task=name, **context)
                return
            exc = finished.exception()
            if exc is not None:
                background_tasks_total.labels(name=name, outcome="error").inc()
                logger.error(
                    "background_task_failed",
                    task=name,
                    error_type=type(exc).__name__,
                    error=str(exc),
                    exc_info=exc,
                    **context,
                )
                return
            background_tasks_total.labels(name=name, outcome="success").inc()
            logger.info("background_task_completed", task=name, **context)

        task.add_done_callback(_done)
        return task

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for outstanding tasks; cancel whatever is left after ``timeout``."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("background_tasks_drained", completed=len(done), cancelled=len(pending))
