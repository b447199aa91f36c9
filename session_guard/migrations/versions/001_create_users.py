"""Create users table

Revision ID: 001_create_users
Revises:
Create Date: 2026-10-01 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from session_guard.migrations.util import get_timestamp_default, get_uuid_type


# revision identifiers, used by Alembic.
revision: str = '001_create_users'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    uuid = get_uuid_type()
    op.create_table(
        'users',
        sa.Column('user_id', uuid, nullable=False),
        sa.Column('username', sa.String(length=80), nullable=False),
        sa.Column('username_canonical', sa.String(length=80), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False, server_default='user'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=get_timestamp_default()),
        sa.Column('last_login_date', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('user_id'),
        sa.UniqueConstraint('username'),
        sa.UniqueConstraint('username_canonical'),
    )


def downgrade() -> None:
    op.drop_table('users')
