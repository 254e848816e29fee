"""create_connector_tables

Revision ID: 3f9c2a7d1b04
Revises:
Create Date: 2026-10-18 09:12:41.207311

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f9c2a7d1b04'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'connections',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('workspace_id', sa.String(255), nullable=False),
        sa.Column('project_id', sa.String(255), nullable=True),
        sa.Column('integration_id', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('status_reason', sa.Text(), nullable=True),
        sa.Column('last_refreshed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_connections_user_id', 'connections', ['user_id'])
    op.create_index('ix_connections_workspace_id', 'connections', ['workspace_id'])
    op.create_index('ix_connections_integration_id', 'connections', ['integration_id'])

    # Ciphertext only, one live row per (connection, type)
    op.create_table(
        'encrypted_credentials',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column(
            'connection_id',
            sa.String(36),
            sa.ForeignKey('connections.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('credential_type', sa.String(20), nullable=False),
        sa.Column('ciphertext', sa.Text(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
    )
    op.create_index(
        'ix_credential_connection_type',
        'encrypted_credentials',
        ['connection_id', 'credential_type'],
        unique=True,
    )

    op.create_table(
        'triggers',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('workspace_id', sa.String(255), nullable=False),
        sa.Column('project_id', sa.String(255), nullable=True),
        sa.Column(
            'connection_id',
            sa.String(36),
            sa.ForeignKey('connections.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('integration_id', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('trigger_type', sa.String(100), nullable=False),
        sa.Column('config', postgresql.JSONB(), nullable=False),
        sa.Column('webhook_url', sa.Text(), nullable=False),
        sa.Column('webhook_method', sa.String(10), nullable=False, server_default='POST'),
        sa.Column('webhook_headers', postgresql.JSONB(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='ACTIVE'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('last_checked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_triggered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('claim_version', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
    )
    op.create_index('ix_triggers_user_id', 'triggers', ['user_id'])
    op.create_index('ix_triggers_connection_id', 'triggers', ['connection_id'])
    op.create_index('ix_triggers_status', 'triggers', ['status'])

    op.create_table(
        'trigger_states',
        sa.Column(
            'trigger_id',
            sa.String(36),
            sa.ForeignKey('triggers.id', ondelete='CASCADE'),
            primary_key=True,
        ),
        sa.Column('cursor', postgresql.JSONB(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        'trigger_events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column(
            'trigger_id',
            sa.String(36),
            sa.ForeignKey('triggers.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('event_data', postgresql.JSONB(), nullable=False),
        sa.Column('webhook_payload', postgresql.JSONB(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('status_message', sa.Text(), nullable=True),
        sa.Column('webhook_status', sa.Integer(), nullable=True),
        sa.Column('webhook_response', sa.Text(), nullable=True),
        sa.Column('attempt_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('next_retry_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('failed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_trigger_events_trigger_id', 'trigger_events', ['trigger_id'])
    op.create_index('ix_trigger_event_retry', 'trigger_events', ['status', 'next_retry_at'])

    op.create_table(
        'api_logs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column(
            'connection_id',
            sa.String(36),
            sa.ForeignKey('connections.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('trigger_id', sa.String(36), nullable=True),
        sa.Column('user_id', sa.String(255), nullable=True),
        sa.Column('integration_id', sa.String(255), nullable=True),
        sa.Column('action_slug', sa.String(255), nullable=True),
        sa.Column('http_method', sa.String(10), nullable=True),
        sa.Column('url', sa.Text(), nullable=True),
        sa.Column('request_payload', postgresql.JSONB(), nullable=True),
        sa.Column('response_payload', postgresql.JSONB(), nullable=True),
        sa.Column('status_code', sa.Integer(), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('error_type', sa.String(100), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('retryable', sa.Boolean(), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('executed_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_api_logs_connection_id', 'api_logs', ['connection_id'])
    op.create_index('ix_api_logs_trigger_id', 'api_logs', ['trigger_id'])
    op.create_index('ix_api_logs_action_slug', 'api_logs', ['action_slug'])
    op.create_index('ix_api_logs_executed_at', 'api_logs', ['executed_at'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('api_logs')
    op.drop_table('trigger_events')
    op.drop_table('trigger_states')
    op.drop_table('triggers')
    op.drop_table('encrypted_credentials')
    op.drop_table('connections')
