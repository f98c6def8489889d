"""Meetings module -- data models, schemas, and repository for minutes sessions.

Provides the data layer for the minutes pipeline: SQLAlchemy models for
meetings, agenda items, sessions, recordings, agenda notes and tasks; the
Pydantic domain schemas; and MinutesRepository.
"""
