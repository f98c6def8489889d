"""Google Workspace integration for outbound minutes email.

Provides an async-wrapped Gmail service using service account
authentication with domain-wide delegation.
"""

from src.team_admin.services.gsuite.auth import GSuiteAuthManager
from src.team_admin.services.gsuite.gmail import GmailService
from src.team_admin.services.gsuite.models import (
    EmailAttachment,
    EmailMessage,
    SentEmailResult,
)

__all__ = [
    "EmailAttachment",
    "EmailMessage",
    "GmailService",
    "GSuiteAuthManager",
    "SentEmailResult",
]
