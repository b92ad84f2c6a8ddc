"""Create indexing pipeline tables

Tables added:
- indexing_jobs: Tenant jobs with URL source, status and progress counters
- url_submissions: Append-only per-URL records, grouped by run_number
- service_accounts: Credentialed indexing API identities
- quota_usage: Per-account daily request counters
- tenant_quotas: Per-tenant daily consumption
- job_log_events: Durable job audit trail
- notifications: User-facing alerts

Revision ID: indexing_tables
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'indexing_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create indexing tables and indexes."""

    # ========================================================================
    # Table: indexing_jobs
    # ========================================================================
    op.create_table(
        'indexing_jobs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('owner_id', sa.String(36), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('source_data', sa.JSON(), nullable=False, server_default='{}'),

        # Progress counters (current run)
        sa.Column('total_urls', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('processed_urls', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('successful_urls', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_urls', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('progress_percentage', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),

        # Processing lock
        sa.Column('locked_at', sa.DateTime(), nullable=True),
        sa.Column('locked_by', sa.String(255), nullable=True),

        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_indexing_jobs_owner_id', 'indexing_jobs', ['owner_id'])
    op.create_index('ix_indexing_jobs_status', 'indexing_jobs', ['status'])
    op.create_index('ix_indexing_jobs_owner_status', 'indexing_jobs', ['owner_id', 'status'])
    op.create_index('ix_indexing_jobs_status_created', 'indexing_jobs', ['status', 'created_at'])

    # ========================================================================
    # Table: service_accounts
    # ========================================================================
    op.create_table(
        'service_accounts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('owner_id', sa.String(36), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('credentials', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('daily_quota_limit', sa.Integer(), nullable=False, server_default='200'),
        sa.Column('quota_exhausted_on', sa.Date(), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('access_token_expires_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_service_accounts_owner_id', 'service_accounts', ['owner_id'])
    op.create_index('ix_service_accounts_is_active', 'service_accounts', ['is_active'])
    op.create_index('ix_service_accounts_owner_active', 'service_accounts', ['owner_id', 'is_active'])

    # ========================================================================
    # Table: url_submissions
    # ========================================================================
    op.create_table(
        'url_submissions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('job_id', sa.String(36),
                  sa.ForeignKey('indexing_jobs.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('service_account_id', sa.String(36),
                  sa.ForeignKey('service_accounts.id', ondelete='SET NULL'),
                  nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('run_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('batch_index', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('submitted_at', sa.DateTime(), nullable=True),
        sa.Column('response_data', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_url_submissions_job_id', 'url_submissions', ['job_id'])
    op.create_index('ix_url_submissions_job_status', 'url_submissions', ['job_id', 'status'])
    op.create_index('ix_url_submissions_job_run', 'url_submissions', ['job_id', 'run_number'])

    # ========================================================================
    # Table: quota_usage
    # ========================================================================
    op.create_table(
        'quota_usage',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('service_account_id', sa.String(36),
                  sa.ForeignKey('service_accounts.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('requests_made', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('requests_successful', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('requests_failed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_request_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('service_account_id', 'date', name='uq_quota_usage_account_date'),
    )

    # ========================================================================
    # Table: tenant_quotas
    # ========================================================================
    op.create_table(
        'tenant_quotas',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('owner_id', sa.String(36), nullable=False, unique=True),
        sa.Column('quota_used_today', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quota_reset_date', sa.Date(), nullable=True),
        sa.Column('daily_quota_limit', sa.Integer(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    # ========================================================================
    # Table: job_log_events
    # ========================================================================
    op.create_table(
        'job_log_events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('job_id', sa.String(36),
                  sa.ForeignKey('indexing_jobs.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('level', sa.String(10), nullable=False, server_default='INFO'),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('context', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_job_log_events_job_created', 'job_log_events', ['job_id', 'created_at'])

    # ========================================================================
    # Table: notifications
    # ========================================================================
    op.create_table(
        'notifications',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('owner_id', sa.String(36), nullable=False),
        sa.Column('severity', sa.String(20), nullable=False, server_default='info'),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_notifications_owner_id', 'notifications', ['owner_id'])
    op.create_index('ix_notifications_expires_at', 'notifications', ['expires_at'])


def downgrade() -> None:
    """Drop indexing tables."""
    op.drop_index('ix_notifications_expires_at', table_name='notifications')
    op.drop_index('ix_notifications_owner_id', table_name='notifications')
    op.drop_table('notifications')

    op.drop_index('ix_job_log_events_job_created', table_name='job_log_events')
    op.drop_table('job_log_events')

    op.drop_table('tenant_quotas')
    op.drop_table('quota_usage')

    op.drop_index('ix_url_submissions_job_run', table_name='url_submissions')
    op.drop_index('ix_url_submissions_job_status', table_name='url_submissions')
    op.drop_index('ix_url_submissions_job_id', table_name='url_submissions')
    op.drop_table('url_submissions')

    op.drop_index('ix_service_accounts_owner_active', table_name='service_accounts')
    op.drop_index('ix_service_accounts_is_active', table_name='service_accounts')
    op.drop_index('ix_service_accounts_owner_id', table_name='service_accounts')
    op.drop_table('service_accounts')

    op.drop_index('ix_indexing_jobs_status_created', table_name='indexing_jobs')
    op.drop_index('ix_indexing_jobs_owner_status', table_name='indexing_jobs')
    op.drop_index('ix_indexing_jobs_status', table_name='indexing_jobs')
    op.drop_index('ix_indexing_jobs_owner_id', table_name='indexing_jobs')
    op.drop_table('indexing_jobs')
