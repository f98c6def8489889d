"""Speech-to-text adapter for recorded meeting segments.

Each webm segment is read from the recordings bucket and sent to the OpenAI
transcription endpoint, one call per segment, in upload order. The segment
transcripts are joined with a blank line. Each call goes through the shared
backoff wrapper; the OpenAI client's own retries are disabled.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog
from openai import AsyncOpenAI

from src.team_admin.config import Settings
from src.team_admin.core.monitoring import track_provider_call
from src.team_admin.services.retry import RetryPolicy, call_with_backoff
from src.team_admin.services.storage import ObjectStorage

logger = structlog.get_logger(__name__)

SEGMENT_SEPARATOR = "\n\n"


class Transcriber:
    """Turns stored audio segments into a plain-text transcript.

    Args:
        settings: Application settings; OPENAI_API_KEY is required.
        storage: Object storage holding the recordings bucket.
        client: Optional AsyncOpenAI client (tests).
        policy: Retry policy; defaults to the configured attempt budget.
        sleep: Backoff sleep, injectable for tests.
    """

    def __init__(
        self,
        settings: Settings,
        storage: ObjectStorage,
        client: AsyncOpenAI | None = None,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        settings.require("OPENAI_API_KEY")
        self._storage = storage
        self._model = settings.OPENAI_TRANSCRIBE_MODEL
        self._client = client or AsyncOpenAI(
            api_key=settings.OPENAI_API_KEY,
            timeout=settings.LLM_TIMEOUT,
            max_retries=0,
        )
        self._policy = policy or RetryPolicy.from_settings(settings)
        self._sleep = sleep

    async def transcribe_audio(self, audio: bytes, filename: str = "segment.webm") -> str:
        """Transcribe one audio payload. Returns the stripped text."""

        async def _call() -> str:
            result = await self._client.audio.transcriptions.create(
                model=self._model,
                file=(filename, audio, "audio/webm"),
            )
            return getattr(result, "text", "") or ""

        async with track_provider_call("openai_transcription"):
            text = await call_with_backoff(
                _call,
                operation="transcribe_segment",
                policy=self._policy,
                sleep=self._sleep,
            )
        return text.strip()

    async def transcribe_segments(self, storage_paths: list[str]) -> str:
        """Download and transcribe each segment in order, joining with blank lines.

        Blank segment transcripts are dropped before joining, so an
        all-silent recording yields "".
        """
        parts: list[str] = []
        for index, path in enumerate(storage_paths):
            audio = await self._storage.download_recording(path)
            text = await self.transcribe_audio(audio, filename=path.rsplit("/", 1)[-1])
            logger.info(
                "transcription_segment_done",
                segment=index,
                storage_path=path,
                audio_bytes=len(audio),
                transcript_chars=len(text),
            )
            if text:
                parts.append(text)
        return SEGMENT_SEPARATOR.join(parts)
