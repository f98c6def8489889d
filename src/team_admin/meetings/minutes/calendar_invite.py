"""iCalendar (RFC 5545) invites for meetings.

build_ics() renders a single-event METHOD:REQUEST calendar that mail clients
show as an accept/decline invite when attached as text/calendar.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

ICS_LINE_LIMIT = 75
DEFAULT_DURATION_MINUTES = 60
PRODUCT_ID = "-//Team Admin//Meetings//EN"


def escape_ics_text(value: str) -> str:
    """Escape a TEXT property value (backslash, newline, comma, semicolon)."""
    return (
        str(value)
        .replace("\\", "\\\\")
        .replace("\r\n", "\n")
        .replace("\n", "\\n")
        .replace(",", "\\,")
        .replace(";", "\\;")
    )


def format_ics_datetime(value: datetime) -> str:
    """UTC date-time in basic format, e.g. 20260305T150000Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def fold_ics_line(line: str) -> str:
    """Fold a content line at 75 characters with CRLF + space continuations."""
    if len(line) <= ICS_LINE_LIMIT:
        return line
    parts = [line[:ICS_LINE_LIMIT]]
    rest = line[ICS_LINE_LIMIT:]
    while rest:
        parts.append(" " + rest[: ICS_LINE_LIMIT - 1])
        rest = rest[ICS_LINE_LIMIT - 1 :]
    return "\r\n".join(parts)


def build_ics(
    *,
    uid: str,
    start: datetime,
    summary: str,
    organizer_email: str,
    attendees: list[str],
    duration_minutes: int | None = None,
    description: str | None = None,
    location: str | None = None,
    url: str | None = None,
    stamp: datetime | None = None,
) -> str:
    """Render a one-event invite calendar.

    Args:
        uid: Stable event UID; re-sending with the same UID updates the event.
        start: Event start (naive values are taken as UTC).
        summary: Event title.
        organizer_email: Mailbox the invite is sent from.
        attendees: Required participants, each with RSVP requested.
        duration_minutes: Event length; defaults to 60 when missing or zero.
        description: Optional free text.
        location: Optional location.
        url: Optional link back to the meeting page.
        stamp: DTSTAMP value; defaults to now.

    Returns:
        CRLF-delimited iCalendar text.
    """
    end = start + timedelta(minutes=duration_minutes or DEFAULT_DURATION_MINUTES)
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{PRODUCT_ID}",
        "CALSCALE:GREGORIAN",
        "METHOD:REQUEST",
        "BEGIN:VEVENT",
        f"UID:{uid}",
        f"DTSTAMP:{format_ics_datetime(stamp or datetime.now(timezone.utc))}",
        f"DTSTART:{format_ics_datetime(start)}",
        f"DTEND:{format_ics_datetime(end)}",
        f"SUMMARY:{escape_ics_text(summary)}",
    ]
    if location:
        lines.append(f"LOCATION:{escape_ics_text(location)}")
    if url:
        lines.append(f"URL:{url}")
    if description:
        lines.append(f"DESCRIPTION:{escape_ics_text(description)}")
    lines.append(f"ORGANIZER:MAILTO:{organizer_email}")
    lines.extend(f"ATTENDEE;ROLE=REQ-PARTICIPANT;RSVP=TRUE:MAILTO:{a}" for a in attendees)
    lines.extend(["END:VEVENT", "END:VCALENDAR"])
    return "\r\n".join(fold_ics_line(line) for line in lines) + "\r\n"
