"""Add reminder cadence to meeting email settings.

Revision ID: 002_meeting_reminders
Revises: 001_meeting_minutes
Create Date: 2026-10-19

meeting_email_settings.reminder_frequency drives the daily reminder job
(none/daily/weekdays/weekly/biweekly/monthly). Existing rows get "none".
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "002_meeting_reminders"
down_revision: Union[str, None] = "001_meeting_minutes"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        "meeting_email_settings",
        sa.Column("reminder_frequency", sa.String(20), nullable=False, server_default="none"),
    )


def downgrade() -> None:
    op.drop_column("meeting_email_settings", "reminder_frequency")
