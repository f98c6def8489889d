"""Async Gmail API service for sending minutes email.

Google API calls are blocking, so each send runs in asyncio.to_thread().
Messages are built with the stdlib email package: a text/HTML alternative
body plus any binary attachments (multipart/mixed).
"""

from __future__ import annotations

import asyncio
import base64
from email.message import EmailMessage as StdlibEmailMessage
from typing import Any

import structlog

from src.team_admin.services.gsuite.auth import GSuiteAuthManager
from src.team_admin.services.gsuite.models import EmailMessage, SentEmailResult

logger = structlog.get_logger(__name__)


class GmailService:
    """Async wrapper around the Gmail API send endpoint."""

    def __init__(
        self,
        auth_manager: GSuiteAuthManager,
        default_user_email: str,
    ) -> None:
        self._auth = auth_manager
        self._default_user_email = default_user_email

    def build_mime_message(self, email: EmailMessage, sender: str | None = None) -> StdlibEmailMessage:
        """Build an RFC 2822 message with all recipients on one To header."""
        msg = StdlibEmailMessage()
        if sender:
            msg["From"] = sender
        msg["To"] = ", ".join(email.to)
        msg["Subject"] = email.subject

        if email.cc:
            msg["Cc"] = ", ".join(email.cc)
        if email.bcc:
            msg["Bcc"] = ", ".join(email.bcc)

        if email.body_text:
            msg.set_content(email.body_text)
            msg.add_alternative(email.body_html, subtype="html")
        else:
            msg.set_content(email.body_html, subtype="html")

        for attachment in email.attachments:
            maintype, _, subtype = attachment.mime_type.partition("/")
            msg.add_attachment(
                attachment.content,
                maintype=maintype,
                subtype=subtype or "octet-stream",
                filename=attachment.filename,
                params=attachment.content_params or None,
            )

        return msg

    def _encode(self, msg: StdlibEmailMessage) -> str:
        """Base64url-encoded raw message string for the Gmail API."""
        return base64.urlsafe_b64encode(msg.as_bytes()).decode()

    async def send_email(
        self,
        email: EmailMessage,
        user_email: str | None = None,
    ) -> SentEmailResult:
        """Send an email via Gmail API.

        Args:
            email: The email message to send.
            user_email: Sender mailbox (for delegation). Defaults to
                the configured default_user_email.

        Returns:
            SentEmailResult with message_id, thread_id, and label_ids.
        """
        sender = user_email or self._default_user_email
        service = self._auth.get_gmail_service(sender)
        body: dict[str, Any] = {"raw": self._encode(self.build_mime_message(email, sender))}

        def _send() -> dict:
            return (
                service.users()
                .messages()
                .send(userId="me", body=body)
                .execute()
            )

        logger.info(
            "sending_email",
            recipients=len(email.to),
            subject=email.subject,
            attachments=[a.filename for a in email.attachments],
        )
        result = await asyncio.to_thread(_send)

        return SentEmailResult(
            message_id=result.get("id", ""),
            thread_id=result.get("threadId", ""),
            label_ids=result.get("labelIds", []),
        )
