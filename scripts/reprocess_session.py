#!/usr/bin/env python3
"""CLI script to re-run AI minutes processing for one session.

Usage:
    python scripts/reprocess_session.py --meeting-id <uuid> --session-id <uuid>
    python scripts/reprocess_session.py --meeting-id <uuid> --session-id <uuid> --recording-path meetings/.../123_anon.webm
    python scripts/reprocess_session.py --meeting-id <uuid> --session-id <uuid> --finalize-only

Uses DATABASE_URL and provider credentials from the environment or .env
file. The session is re-queued first, so sessions in done/error/skipped can
be processed again; a session that is currently processing is left alone.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
import uuid

# Ensure project root is on sys.path so we can import src.team_admin
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def reprocess(
    meeting_id: uuid.UUID,
    session_id: uuid.UUID,
    recording_path: str | None,
    finalize_only: bool,
) -> int:
    """Run the pipeline (or only finalize) in the foreground. Returns an exit code."""
    from src.team_admin.api.middleware.logging import configure_structlog
    from src.team_admin.config import get_settings
    from src.team_admin.core.database import close_db, get_session
    from src.team_admin.meetings.minutes.bootstrap import build_minutes_components

    configure_structlog()
    settings = get_settings()
    components = build_minutes_components(settings, session_factory=get_session)

    try:
        if finalize_only:
            if components.minutes_finalizer is None:
                print(f"Cannot finalize: {components.init_errors['minutes_finalizer']}")
                return 2
            result = await components.minutes_finalizer.finalize(meeting_id, session_id)
            print(f"PDF stored: {result.pdf_path}")
            if result.email is not None:
                print(f"  Email sent: {result.email.sent} ({len(result.email.recipients)} recipients)")
            if result.email_error:
                print(f"  Email error: {result.email_error}")
            return 0

        pipeline = components.minutes_pipeline
        if pipeline is None:
            print(f"Cannot process: {components.init_errors['minutes_pipeline']}")
            return 2

        if not await pipeline.queue(meeting_id, session_id, dispatch=False):
            print("Session is currently processing (or was never concluded); nothing to do")
            return 1

        try:
            result = await pipeline.run(meeting_id, session_id, recording_path=recording_path)
        except Exception as exc:
            print(f"Processing failed: {type(exc).__name__}: {exc}")
            return 1

        print(f"Session {session_id}: {result.status.value}")
        if result.skipped:
            print(f"  Skipped: {result.skipped}")
        else:
            print(f"  Transcript chars:      {result.transcript_chars}")
            print(f"  Agenda items updated:  {result.agenda_items_updated}")
            print(f"  Tasks created:         {result.tasks_created}")

        # Finalize was handed to the dispatcher; wait for it before exiting
        await components.task_dispatcher.drain()
        return 0
    finally:
        await close_db()


def main() -> None:
    parser = argparse.ArgumentParser(description="Re-run AI minutes processing for one session")
    parser.add_argument("--meeting-id", required=True, type=uuid.UUID, help="Meeting UUID")
    parser.add_argument("--session-id", required=True, type=uuid.UUID, help="Minutes session UUID")
    parser.add_argument("--recording-path", default=None, help="Specific recording object key to transcribe")
    parser.add_argument(
        "--finalize-only",
        action="store_true",
        help="Skip AI processing; only re-render, store, and email the PDF",
    )
    args = parser.parse_args()

    if args.finalize_only and args.recording_path:
        parser.error("--recording-path cannot be combined with --finalize-only")

    sys.exit(asyncio.run(reprocess(args.meeting_id, args.session_id, args.recording_path, args.finalize_only)))


if __name__ == "__main__":
    main()
