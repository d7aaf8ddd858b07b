"""create_api_key_tables

Revision ID: 5b1e9c2d7a40
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '5b1e9c2d7a40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create clients, keys, permissions, whitelist and usage log tables."""
    op.create_table(
        'service_accounts',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('username', sa.String(length=255), nullable=False),
        sa.Column('display_name', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('disabled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username'),
    )

    op.create_table(
        'api_clients',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('contact_email', sa.String(length=320), nullable=False),
        sa.Column('contact_phone', sa.String(length=50), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('deactivated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deactivated_by', sa.String(length=255), nullable=True),
        sa.Column('deactivation_reason', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_by', sa.String(length=255), nullable=True),
        sa.Column('updated_by', sa.String(length=255), nullable=True),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_by', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['service_accounts.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'uq_api_clients_name_lower',
        'api_clients',
        [sa.text('lower(name)')],
        unique=True,
        postgresql_where=sa.text('is_deleted = false'),
    )

    op.create_table(
        'api_keys',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('api_client_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('key_hash', sa.String(length=64), nullable=False,
                  comment='HMAC-SHA256 of the full key - never store plaintext'),
        sa.Column('key_prefix', sa.String(length=16), nullable=False,
                  comment='Leading characters of the random part, display only'),
        sa.Column('name', sa.String(length=255), nullable=False,
                  comment='Human-readable name for identification'),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('rate_limit_per_minute', sa.Integer(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_used_ip', sa.String(length=45), nullable=True),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(length=500), nullable=True),
        sa.Column('revoked_by', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_by', sa.String(length=255), nullable=True),
        sa.Column('updated_by', sa.String(length=255), nullable=True),
        sa.CheckConstraint('rate_limit_per_minute > 0', name='ck_api_keys_rate_limit_positive'),
        sa.ForeignKeyConstraint(['api_client_id'], ['api_clients.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_api_keys_api_client_id', 'api_keys', ['api_client_id'])
    op.create_index('uq_api_keys_key_hash', 'api_keys', ['key_hash'], unique=True)
    op.create_index('ix_api_keys_key_prefix', 'api_keys', ['key_prefix'])

    op.create_table(
        'api_key_permissions',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('api_key_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('scope', sa.String(length=100), nullable=False),
        sa.ForeignKeyConstraint(['api_key_id'], ['api_keys.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('api_key_id', 'scope', name='uq_api_key_permissions_key_scope'),
    )
    op.create_index('ix_api_key_permissions_api_key_id', 'api_key_permissions', ['api_key_id'])

    op.create_table(
        'api_key_ip_whitelist',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('api_key_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('ip_address', sa.String(length=64), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['api_key_id'], ['api_keys.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('api_key_id', 'ip_address', name='uq_api_key_ip_whitelist_key_ip'),
    )
    op.create_index('ix_api_key_ip_whitelist_api_key_id', 'api_key_ip_whitelist', ['api_key_id'])

    op.create_table(
        'api_key_usage_logs',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('api_key_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('request_timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('outcome', sa.String(length=32), nullable=False),
        sa.Column('endpoint', sa.String(length=500), nullable=False),
        sa.Column('http_method', sa.String(length=10), nullable=False),
        sa.Column('status_code', sa.Integer(), nullable=False),
        sa.Column('response_time_ms', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['api_key_id'], ['api_keys.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_usage_logs_key_timestamp',
        'api_key_usage_logs',
        ['api_key_id', 'request_timestamp'],
    )
    op.create_index('ix_usage_logs_timestamp', 'api_key_usage_logs', ['request_timestamp'])


def downgrade() -> None:
    """Drop all API key tables."""
    op.drop_index('ix_usage_logs_timestamp', table_name='api_key_usage_logs')
    op.drop_index('ix_usage_logs_key_timestamp', table_name='api_key_usage_logs')
    op.drop_table('api_key_usage_logs')

    op.drop_index('ix_api_key_ip_whitelist_api_key_id', table_name='api_key_ip_whitelist')
    op.drop_table('api_key_ip_whitelist')

    op.drop_index('ix_api_key_permissions_api_key_id', table_name='api_key_permissions')
    op.drop_table('api_key_permissions')

    op.drop_index('ix_api_keys_key_prefix', table_name='api_keys')
    op.drop_index('uq_api_keys_key_hash', table_name='api_keys')
    op.drop_index('ix_api_keys_api_client_id', table_name='api_keys')
    op.drop_table('api_keys')

    op.drop_index('uq_api_clients_name_lower', table_name='api_clients')
    op.drop_table('api_clients')

    op.drop_table('service_accounts')
