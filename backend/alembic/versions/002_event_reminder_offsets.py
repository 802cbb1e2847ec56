"""Event reminder offsets.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19 00:00:00.000000

Adds per-event reminder offsets and the offset key that keeps automatic
reminders to one row per (event, offset).
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '002'
down_revision = '001'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        'events',
        sa.Column(
            'scheduled_reminder_offsets',
            sa.JSON(),
            nullable=False,
            server_default=sa.text("'[1440, 60]'"),
        ),
    )
    op.add_column('event_reminders', sa.Column('offset_minutes', sa.Integer(), nullable=True))
    op.create_unique_constraint(
        'uq_event_reminders_event_offset', 'event_reminders', ['event_id', 'offset_minutes']
    )
    op.create_index('ix_events_starts_at', 'events', ['starts_at'])


def downgrade() -> None:
    op.drop_index('ix_events_starts_at', table_name='events')
    op.drop_constraint('uq_event_reminders_event_offset', 'event_reminders', type_='unique')
    op.drop_column('event_reminders', 'offset_minutes')
    op.drop_column('events', 'scheduled_reminder_offsets')
