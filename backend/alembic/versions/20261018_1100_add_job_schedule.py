"""Add recurrence columns to indexing_jobs

Columns added:
- schedule_type: one-time, hourly, daily, weekly or monthly
- next_run_at: Earliest time the dispatcher may pick the job up

Revision ID: job_schedule
Revises: indexing_tables
Create Date: 2026-10-18 11:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'job_schedule'
down_revision = 'indexing_tables'
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Add schedule_type and next_run_at with a dispatch index."""
    op.add_column(
        'indexing_jobs',
        sa.Column('schedule_type', sa.String(20), nullable=False, server_default='one-time'),
    )
    op.add_column('indexing_jobs', sa.Column('next_run_at', sa.DateTime(), nullable=True))
    op.create_index(
        'ix_indexing_jobs_status_next_run', 'indexing_jobs', ['status', 'next_run_at']
    )


def downgrade() -> None:
    """Drop the recurrence columns."""
    op.drop_index('ix_indexing_jobs_status_next_run', table_name='indexing_jobs')
    op.drop_column('indexing_jobs', 'next_run_at')
    op.drop_column('indexing_jobs', 'schedule_type')
