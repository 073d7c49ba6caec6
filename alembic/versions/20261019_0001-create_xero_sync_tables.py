"""create_xero_sync_tables

Revision ID: 3f9a1c2b7d10
Revises:
Create Date: 2026-10-19 00:01:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f9a1c2b7d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Encrypted OAuth tokens, one row per Xero tenant
    op.create_table(
        'xero_tokens',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('tenant_name', sa.String(), nullable=True),
        sa.Column('access_token_encrypted', sa.Text(), nullable=False),
        sa.Column('refresh_token_encrypted', sa.Text(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_xero_tokens_tenant_id', 'xero_tokens', ['tenant_id'], unique=True)
    op.create_index('ix_xero_tokens_updated_at', 'xero_tokens', ['updated_at'])

    # Sync ledger
    op.create_table(
        'xero_sync_log',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('entity_type', sa.String(), nullable=False),
        sa.Column('ninja_id', sa.String(), nullable=False),
        sa.Column('xero_id', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('entity_type', 'ninja_id', name='uq_xero_sync_log_entity')
    )
    op.create_index('ix_xero_sync_log_status', 'xero_sync_log', ['entity_type', 'status'])

    # Key/value sync settings
    op.create_table(
        'xero_sync_config',
        sa.Column('key', sa.String(), nullable=False),
        sa.Column('value', postgresql.JSONB(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('key')
    )

    # Inbound webhook log
    op.create_table(
        'invoice_ninja_webhook_log',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('entity_id', sa.String(), nullable=True),
        sa.Column('payload', postgresql.JSONB(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='received'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_invoice_ninja_webhook_log_event_type', 'invoice_ninja_webhook_log', ['event_type'])
    op.create_index('ix_invoice_ninja_webhook_log_status', 'invoice_ninja_webhook_log', ['status', 'created_at'])


def downgrade() -> None:
    op.drop_index('ix_invoice_ninja_webhook_log_status', table_name='invoice_ninja_webhook_log')
    op.drop_index('ix_invoice_ninja_webhook_log_event_type', table_name='invoice_ninja_webhook_log')
    op.drop_table('invoice_ninja_webhook_log')
    op.drop_table('xero_sync_config')
    op.drop_index('ix_xero_sync_log_status', table_name='xero_sync_log')
    op.drop_table('xero_sync_log')
    op.drop_index('ix_xero_tokens_updated_at', table_name='xero_tokens')
    op.drop_index('ix_xero_tokens_tenant_id', table_name='xero_tokens')
    op.drop_table('xero_tokens')
