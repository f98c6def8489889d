"""Assembly of MinutesDocument from stored meeting/session data."""

from __future__ import annotations

import uuid

from src.team_admin.core.errors import NotFoundError
from src.team_admin.meetings.repository import MinutesRepository
from src.team_admin.meetings.schemas import AgendaNoteRow, Meeting, MinutesDocument, MinutesSession


async def load_meeting_and_session(
    repository: MinutesRepository,
    meeting_id: uuid.UUID,
    session_id: uuid.UUID,
) -> tuple[Meeting, MinutesSession]:
    """Fetch both rows, checking the session belongs to the meeting.

    Raises:
        NotFoundError: If either row is missing or they do not match.
    """
    meeting = await repository.get_meeting(meeting_id)
    if meeting is None:
        raise NotFoundError(f"Meeting {meeting_id} not found")
    session = await repository.get_session(session_id)
    if session is None or session.meeting_id != meeting_id:
        raise NotFoundError(f"Session {session_id} not found for meeting {meeting_id}")
    return meeting, session


async def load_minutes_document(
    repository: MinutesRepository,
    meeting_id: uuid.UUID,
    session_id: uuid.UUID,
) -> MinutesDocument:
    """Collect metadata, attendees, open tasks and current/previous notes.

    The previous session is the latest concluded session of the same meeting
    that started before this one.
    """
    meeting, session = await load_meeting_and_session(repository, meeting_id, session_id)

    attendees = await repository.list_attendees(meeting_id)
    agenda_items = await repository.list_agenda_items(meeting_id)
    open_tasks = await repository.list_open_tasks(meeting_id)
    notes = await repository.get_agenda_notes(session_id)

    previous = await repository.get_previous_session(meeting_id, session)
    previous_notes = await repository.get_agenda_notes(previous.id) if previous else {}

    rows = [
        AgendaNoteRow(
            item=item,
            notes=notes.get(item.id, ""),
            previous_notes=previous_notes.get(item.id, ""),
        )
        for item in agenda_items
    ]
    return MinutesDocument(
        meeting=meeting,
        session=session,
        attendees=attendees,
        open_tasks=open_tasks,
        agenda=rows,
        previous_session=previous,
    )
