"""Pydantic schemas for Gmail delivery."""

from __future__ import annotations

from pydantic import BaseModel, Field


class EmailAttachment(BaseModel):
    """Binary file attached to an outgoing email."""

    filename: str
    content: bytes
    mime_type: str = "application/pdf"
    # Extra Content-Type parameters, e.g. {"method": "REQUEST"} for text/calendar
    content_params: dict[str, str] = Field(default_factory=dict)


class EmailMessage(BaseModel):
    """Email message to send via Gmail API.

    All addresses in ``to`` receive the same single message.
    """

    to: list[str]
    subject: str
    body_html: str
    body_text: str | None = None
    cc: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)
    attachments: list[EmailAttachment] = Field(default_factory=list)


class SentEmailResult(BaseModel):
    """Result from sending an email via Gmail API."""

    message_id: str
    thread_id: str
    label_ids: list[str] = Field(default_factory=list)
