"""Object storage for recordings and rendered minutes PDFs (MinIO / S3-compatible).

The minio client is synchronous; every call is wrapped in asyncio.to_thread()
so storage I/O never blocks the event loop.

Object keys:
- recordings: meetings/{meeting_id}/sessions/{session_id}/{epoch_ms}_{user}.webm
- minutes PDF: meetings/{meeting_id}/sessions/{session_id}/minutes.pdf
"""

from __future__ import annotations

import asyncio
import io
import uuid
from datetime import datetime, timedelta, timezone
from urllib.parse import urlparse

import structlog
from minio import Minio
from minio.error import S3Error

from src.team_admin.config import Settings
from src.team_admin.core.errors import NotFoundError

logger = structlog.get_logger(__name__)

PDF_CONTENT_TYPE = "application/pdf"
WEBM_CONTENT_TYPE = "audio/webm"


def recording_object_key(
    meeting_id: uuid.UUID,
    session_id: uuid.UUID,
    user_id: str | None = None,
    now: datetime | None = None,
) -> str:
    """Storage key for a newly uploaded recording segment."""
    moment = now or datetime.now(timezone.utc)
    epoch_ms = int(moment.timestamp() * 1000)
    return f"meetings/{meeting_id}/sessions/{session_id}/{epoch_ms}_{user_id or 'anon'}.webm"


def minutes_pdf_object_key(meeting_id: uuid.UUID, session_id: uuid.UUID) -> str:
    """Storage key for a session's rendered minutes (overwritten on re-render)."""
    return f"meetings/{meeting_id}/sessions/{session_id}/minutes.pdf"


class ObjectStorage:
    """Async facade over a MinIO client with one bucket for recordings and one for PDFs.

    Args:
        settings: Application settings; STORAGE_* credentials and both bucket
            names are required.
        client: Optional pre-built Minio client (tests).
    """

    def __init__(self, settings: Settings, client: Minio | None = None) -> None:
        settings.require(
            "STORAGE_ENDPOINT",
            "STORAGE_ACCESS_KEY",
            "STORAGE_SECRET_KEY",
            "RECORDINGS_BUCKET",
            "MINUTES_PDF_BUCKET",
        )
        self.recordings_bucket = settings.RECORDINGS_BUCKET
        self.pdf_bucket = settings.MINUTES_PDF_BUCKET
        self._client = client or Minio(
            urlparse(settings.STORAGE_ENDPOINT).netloc or settings.STORAGE_ENDPOINT,
            access_key=settings.STORAGE_ACCESS_KEY,
            secret_key=settings.STORAGE_SECRET_KEY,
            secure=settings.STORAGE_SECURE,
            region=settings.STORAGE_REGION or None,
        )

    # ── Primitive operations ─────────────────────────────────────────────

    async def upload(self, bucket: str, key: str, data: bytes, content_type: str) -> str:
        def _put() -> None:
            self._client.put_object(
                bucket,
                key,
                io.BytesIO(data),
                length=len(data),
                content_type=content_type,
            )

        await asyncio.to_thread(_put)
        logger.info("storage_object_uploaded", bucket=bucket, key=key, size=len(data))
        return key

    async def download(self, bucket: str, key: str) -> bytes:
        """Read a whole object into memory.

        Raises:
            NotFoundError: If the object does not exist.
        """

        def _get() -> bytes:
            response = self._client.get_object(bucket, key)
            try:
                return response.read()
            finally:
                response.close()
                response.release_conn()

        try:
            return await asyncio.to_thread(_get)
        except S3Error as exc:
            if exc.code in ("NoSuchKey", "NoSuchObject"):
                raise NotFoundError(f"Object not found: {bucket}/{key}") from exc
            raise

    async def signed_url(self, bucket: str, key: str, expires: timedelta) -> str:
        return await asyncio.to_thread(
            self._client.presigned_get_object, bucket, key, expires=expires
        )

    # ── Domain helpers ───────────────────────────────────────────────────

    async def upload_recording(self, key: str, data: bytes) -> str:
        return await self.upload(self.recordings_bucket, key, data, WEBM_CONTENT_TYPE)

    async def download_recording(self, key: str) -> bytes:
        return await self.download(self.recordings_bucket, key)

    async def upload_pdf(self, key: str, data: bytes) -> str:
        return await self.upload(self.pdf_bucket, key, data, PDF_CONTENT_TYPE)

    async def download_pdf(self, key: str) -> bytes:
        return await self.download(self.pdf_bucket, key)

    async def signed_pdf_url(self, key: str, ttl_days: int = 30) -> str:
        return await self.signed_url(self.pdf_bucket, key, timedelta(days=ttl_days))
