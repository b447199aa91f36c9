"""Persistence for refresh token records.

All writes are conditional on ``status = ACTIVE`` so a record's terminal
fields are set exactly once. Nothing here commits; callers own the unit of work.
"""
from __future__ import annotations

import hmac
from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from session_guard.models.base import TokenStatus
from session_guard.models.refresh_token import RefreshToken
from session_guard.models.user import User


class RefreshTokenStore:
    """Lookup paths by token hash, family and user, plus the atomic consume primitive."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------
    def add(self, record: RefreshToken) -> None:
        self.db.add(record)

    async def flush(self) -> None:
        await self.db.flush()

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def get_by_hash(self, token_hash: str) -> RefreshToken | None:
        result = await self.db.execute(
            select(RefreshToken)
            .where(RefreshToken.token_hash == token_hash)
            .execution_options(populate_existing=True)
        )
        record = result.scalar_one_or_none()
        # The indexed lookup narrows to one row; confirm in constant time.
        if record is None or not hmac.compare_digest(record.token_hash, token_hash):
            return None
        return record

    async def get_by_id(self, token_id: UUID) -> RefreshToken | None:
        result = await self.db.execute(
            select(RefreshToken)
            .where(RefreshToken.token_id == token_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_family(self, token_family: UUID) -> list[RefreshToken]:
        result = await self.db.execute(
            select(RefreshToken)
            .where(RefreshToken.token_family == token_family)
            .order_by(RefreshToken.created_at)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_for_user(self, user_id: UUID) -> list[RefreshToken]:
        result = await self.db.execute(
            select(RefreshToken)
            .where(RefreshToken.user_id == user_id)
            .order_by(RefreshToken.created_at)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_active_for_user(self, user_id: UUID, now: datetime) -> list[RefreshToken]:
        result = await self.db.execute(
            select(RefreshToken)
            .where(RefreshToken.user_id == user_id)
            .where(RefreshToken.status == TokenStatus.ACTIVE)
            .where(RefreshToken.expires_at > now)
            .order_by(RefreshToken.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Conditional writes
    # ------------------------------------------------------------------
    async def consume(self, token_id: UUID, successor_id: UUID, now: datetime) -> bool:
        """Mark ``token_id`` replaced by ``successor_id`` iff it is still unconsumed.

        One conditional UPDATE; returns True only for the single caller that won.
        """
        result = await self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.token_id == token_id)
            .where(RefreshToken.status == TokenStatus.ACTIVE)
            .where(RefreshToken.replaced_by_token_id.is_(None))
            .values(
                status=TokenStatus.REVOKED,
                revoked_at=now,
                replaced_by_token_id=successor_id,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def revoke(self, token_id: UUID, now: datetime) -> bool:
        result = await self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.token_id == token_id)
            .where(RefreshToken.status == TokenStatus.ACTIVE)
            .values(status=TokenStatus.REVOKED, revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def revoke_family(self, token_family: UUID, now: datetime) -> int:
        result = await self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.token_family == token_family)
            .where(RefreshToken.status == TokenStatus.ACTIVE)
            .values(status=TokenStatus.REVOKED, revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def revoke_all_for_user(self, user_id: UUID, now: datetime) -> int:
        result = await self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id)
            .where(RefreshToken.status == TokenStatus.ACTIVE)
            .values(status=TokenStatus.REVOKED, revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    # ------------------------------------------------------------------
    # Garbage collection
    # ------------------------------------------------------------------
    async def count_expired(self, now: datetime) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(RefreshToken).where(RefreshToken.expires_at < now)
        )
        return result.scalar_one()

    async def delete_expired(self, now: datetime) -> int:
        result = await self.db.execute(
            delete(RefreshToken)
            .where(RefreshToken.expires_at < now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def count_orphaned(self) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(RefreshToken)
            .where(RefreshToken.user_id.not_in(select(User.user_id)))
        )
        return result.scalar_one()

    async def delete_orphaned(self) -> int:
        result = await self.db.execute(
            delete(RefreshToken)
            .where(RefreshToken.user_id.not_in(select(User.user_id)))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
