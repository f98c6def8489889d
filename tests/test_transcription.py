"""Tests for the segment transcriber."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from factories import make_settings
from src.team_admin.core.errors import ConfigurationError, NotFoundError
from src.team_admin.meetings.minutes.transcription import Transcriber
from src.team_admin.services.retry import RetryPolicy


class RateLimited(Exception):
    status_code = 429


def _make_transcriber(storage, texts, no_sleep=None) -> Transcriber:
    client = MagicMock()
    client.audio.transcriptions.create = AsyncMock(
        side_effect=[t if isinstance(t, Exception) else SimpleNamespace(text=t) for t in texts]
    )
    return Transcriber(
        make_settings(),
        storage,
        client=client,
        policy=RetryPolicy(max_attempts=3, initial_delay=1.0),
        sleep=no_sleep or AsyncMock(),
    )


class TestTranscriber:
    @pytest.mark.asyncio
    async def test_segments_joined_in_order(self, storage):
        storage.recordings.update({"s/1_a.webm": b"one", "s/2_b.webm": b"two"})
        transcriber = _make_transcriber(storage, ["  Hello there. ", "General Kenobi."])

        text = await transcriber.transcribe_segments(["s/1_a.webm", "s/2_b.webm"])

        assert text == "Hello there.\n\nGeneral Kenobi."
        calls = transcriber._client.audio.transcriptions.create.call_args_list
        assert [c.kwargs["file"][0] for c in calls] == ["1_a.webm", "2_b.webm"]
        assert calls[0].kwargs["file"][1] == b"one"

    @pytest.mark.asyncio
    async def test_blank_segments_dropped(self, storage):
        storage.recordings.update({"a.webm": b"a", "b.webm": b"b"})
        transcriber = _make_transcriber(storage, ["   ", "Only speech."])

        assert await transcriber.transcribe_segments(["a.webm", "b.webm"]) == "Only speech."

    @pytest.mark.asyncio
    async def test_silent_recording_yields_empty_text(self, storage):
        storage.recordings["a.webm"] = b"a"
        transcriber = _make_transcriber(storage, [""])

        assert await transcriber.transcribe_segments(["a.webm"]) == ""

    @pytest.mark.asyncio
    async def test_missing_object_raises(self, storage):
        transcriber = _make_transcriber(storage, [])

        with pytest.raises(NotFoundError):
            await transcriber.transcribe_segments(["missing.webm"])

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self, storage, no_sleep):
        storage.recordings["a.webm"] = b"a"
        transcriber = _make_transcriber(storage, [RateLimited(), "Recovered."], no_sleep=no_sleep)

        assert await transcriber.transcribe_segments(["a.webm"]) == "Recovered."
        assert [c.args[0] for c in no_sleep.call_args_list] == [1.0]

    def test_requires_api_key(self, storage):
        with pytest.raises(ConfigurationError, match="Missing OPENAI_API_KEY"):
            Transcriber(make_settings(OPENAI_API_KEY=""), storage)
