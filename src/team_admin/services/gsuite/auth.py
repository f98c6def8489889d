"""Google service account authentication with domain-wide delegation.

Builds Gmail API clients for the sending mailbox and caches them per user so
credentials are not rebuilt for every message.
"""

from __future__ import annotations

from typing import Any

import structlog
from google.oauth2 import service_account
from googleapiclient.discovery import build

from src.team_admin.config import Settings
from src.team_admin.core.errors import ConfigurationError

logger = structlog.get_logger(__name__)

GMAIL_SCOPES = [
    "https://www.googleapis.com/auth/gmail.send",
]


class GSuiteAuthManager:
    """Manages Google API authentication with service account credentials.

    Caches service instances per user email.
    """

    def __init__(
        self,
        service_account_file: str,
        delegated_user_email: str,
    ) -> None:
        self._service_account_file = service_account_file
        self._delegated_user_email = delegated_user_email
        self._service_cache: dict[str, Any] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> GSuiteAuthManager:
        """Build from settings, failing fast on missing credentials.

        Raises:
            ConfigurationError: If no service account or sender mailbox is configured.
        """
        sa_path = settings.get_service_account_path()
        if not sa_path:
            raise ConfigurationError("Missing GOOGLE_SERVICE_ACCOUNT_FILE")
        settings.require("GOOGLE_DELEGATED_USER_EMAIL")
        return cls(
            service_account_file=sa_path,
            delegated_user_email=settings.GOOGLE_DELEGATED_USER_EMAIL,
        )

    @property
    def delegated_user_email(self) -> str:
        return self._delegated_user_email

    def _build_credentials(
        self,
        user_email: str | None,
        scopes: list[str],
    ) -> service_account.Credentials:
        """Create service account credentials, delegated to ``user_email`` when given."""
        credentials = service_account.Credentials.from_service_account_file(
            self._service_account_file,
            scopes=scopes,
        )
        if user_email:
            credentials = credentials.with_subject(user_email)
        return credentials

    def get_gmail_service(self, user_email: str | None = None) -> Any:
        """Get a cached Gmail API v1 service instance for the delegated user.

        Args:
            user_email: Email to impersonate. Defaults to the configured
                delegated_user_email.

        Returns:
            Gmail API Resource object.
        """
        email = user_email or self._delegated_user_email
        cache_key = f"gmail:{email}"

        if cache_key not in self._service_cache:
            logger.info("building_gmail_service", user_email=email)
            credentials = self._build_credentials(email, GMAIL_SCOPES)
            self._service_cache[cache_key] = build(
                "gmail", "v1", credentials=credentials, cache_discovery=False
            )

        return self._service_cache[cache_key]
