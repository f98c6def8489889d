"""API middleware package."""

from src.team_admin.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
