"""Create refresh_tokens table with family and rotation columns

Revision ID: 002_create_refresh_tokens
Revises: 001_create_users
Create Date: 2026-10-01 09:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from session_guard.migrations.util import get_timestamp_default, get_uuid_type


# revision identifiers, used by Alembic.
revision: str = '002_create_refresh_tokens'
down_revision: Union[str, None] = '001_create_users'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    uuid = get_uuid_type()
    op.create_table(
        'refresh_tokens',
        sa.Column('token_id', uuid, nullable=False),
        sa.Column('user_id', uuid, nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('token_family', uuid, nullable=False),
        # Enum names as stored by the non-native SQLAlchemy Enum on the model
        sa.Column('status', sa.String(length=16), nullable=False, server_default='ACTIVE'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=get_timestamp_default()),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('replaced_by_token_id', uuid, nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['replaced_by_token_id'], ['refresh_tokens.token_id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('token_id'),
    )
    op.create_index('ix_refresh_tokens_user_id', 'refresh_tokens', ['user_id'])
    op.create_index('ix_refresh_tokens_token_hash', 'refresh_tokens', ['token_hash'], unique=True)
    op.create_index('ix_refresh_tokens_token_family', 'refresh_tokens', ['token_family'])
    # Sweeper scans by expiry
    op.create_index('ix_refresh_tokens_expires_at', 'refresh_tokens', ['expires_at'])


def downgrade() -> None:
    op.drop_index('ix_refresh_tokens_expires_at', table_name='refresh_tokens')
    op.drop_index('ix_refresh_tokens_token_family', table_name='refresh_tokens')
    op.drop_index('ix_refresh_tokens_token_hash', table_name='refresh_tokens')
    op.drop_index('ix_refresh_tokens_user_id', table_name='refresh_tokens')
    op.drop_table('refresh_tokens')
