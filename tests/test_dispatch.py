"""Tests for the background task dispatcher."""

from __future__ import annotations

import asyncio

import pytest

from src.team_admin.meetings.minutes.dispatch import TaskDispatcher


class TestTaskDispatcher:
    @pytest.mark.asyncio
    async def test_spawned_task_runs_to_completion(self):
        dispatcher = TaskDispatcher()
        done = []

        async def _work():
            done.append("ran")
            return 42

        task = dispatcher.spawn("minutes_finalize", _work, session_id="s-1")
        assert await task == 42
        await asyncio.sleep(0)

        assert done == ["ran"]
        assert dispatcher.pending == 0

    @pytest.mark.asyncio
    async def test_failures_are_contained(self):
        dispatcher = TaskDispatcher()

        async def _boom():
            raise RuntimeError("render failed")

        dispatcher.spawn("minutes_finalize", _boom)
        await dispatcher.drain(timeout=5)

        assert dispatcher.pending == 0

    @pytest.mark.asyncio
    async def test_drain_cancels_stragglers(self):
        dispatcher = TaskDispatcher()
        started = asyncio.Event()

        async def _forever():
            started.set()
            await asyncio.sleep(3600)

        task = dispatcher.spawn("minutes_pipeline", _forever)
        await started.wait()
        await dispatcher.drain(timeout=0.01)

        assert task.cancelled()
        assert dispatcher.pending == 0

    @pytest.mark.asyncio
    async def test_drain_without_tasks(self):
        await TaskDispatcher().drain(timeout=0.01)
