"""add_klaviyo_hub_tables

Revision ID: a1c4e7f2b9d0
Revises:
Create Date: 2026-09-28

Connected accounts, the cross-account profile cache and backfill status.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1c4e7f2b9d0'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create klaviyo_connections, klaviyo_cached_profiles and klaviyo_sync_status."""
    op.create_table(
        'klaviyo_connections',
        sa.Column('account_id', sa.String(), nullable=False),
        sa.Column('account_name', sa.String(), nullable=True),

        # OAuth tokens
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),

        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('account_id'),
    )

    op.create_table(
        'klaviyo_cached_profiles',
        sa.Column('account_id', sa.String(), nullable=False),
        sa.Column('klaviyo_id', sa.String(), nullable=False),
        sa.Column('account_name', sa.String(), nullable=True),

        # Identifiers used for cross-account overlap
        sa.Column('external_id', sa.String(), nullable=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),

        sa.Column('subscriptions', sa.JSON(), nullable=True),
        sa.Column('synced_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('account_id', 'klaviyo_id'),
    )
    op.create_index('ix_klaviyo_cached_profiles_external_id', 'klaviyo_cached_profiles', ['external_id'])
    op.create_index('ix_klaviyo_cached_profiles_email', 'klaviyo_cached_profiles', ['email'])
    op.create_index('ix_klaviyo_cached_profiles_phone', 'klaviyo_cached_profiles', ['phone'])

    op.create_table(
        'klaviyo_sync_status',
        sa.Column('account_id', sa.String(), nullable=False),
        sa.Column('state', sa.String(), nullable=False, server_default='idle'),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        sa.Column('processed', sa.Integer(), nullable=True),
        sa.Column('total', sa.Integer(), nullable=True),
        sa.Column('last_page_size', sa.Integer(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('account_id'),
    )


def downgrade() -> None:
    """Drop the Klaviyo hub tables."""
    op.drop_table('klaviyo_sync_status')
    op.drop_index('ix_klaviyo_cached_profiles_phone', table_name='klaviyo_cached_profiles')
    op.drop_index('ix_klaviyo_cached_profiles_email', table_name='klaviyo_cached_profiles')
    op.drop_index('ix_klaviyo_cached_profiles_external_id', table_name='klaviyo_cached_profiles')
    op.drop_table('klaviyo_cached_profiles')
    op.drop_table('klaviyo_connections')
