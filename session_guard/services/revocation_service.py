"""Refresh token revocation: single token, whole family, or every session of a user."""
from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from session_guard.services.token_issuer import TokenIssuer, hash_secret
from session_guard.services.token_store import RefreshTokenStore
from session_guard.utils.clock import Clock
from session_guard.utils.exceptions import InvalidToken
from session_guard.utils.security_events import mask_identifier

logger = logging.getLogger(__name__)


class RevocationService:
    """Idempotent revocation operations.

    Every method commits its own unit of work and treats "already revoked" as
    a successful no-op. Records that were already rotated keep their
    ``replaced_by_token_id``.
    """

    def __init__(self, db: AsyncSession, issuer: TokenIssuer, *, clock: Clock | None = None):
        self.db = db
        self.issuer = issuer
        self.clock = clock or issuer.clock
        self.store = RefreshTokenStore(db)

    async def revoke_one(self, raw_token: str | None) -> bool:
        """Revoke the record behind ``raw_token`` (logout).

        Returns True when a record transitioned, False for a no-op.
        """
        if not raw_token:
            return False
        try:
            claims = self.issuer.verify_refresh(raw_token)
        except InvalidToken as exc:
            logger.debug(f"Ignoring logout with unusable token {mask_identifier(raw_token)}: {exc.code}")
            return False

        record = await self.store.get_by_hash(hash_secret(claims.secret))
        if (
            record is None
            or record.token_id != claims.token_id
            or record.token_family != claims.token_family
            or record.user_id != claims.user_id
        ):
            return False

        revoked = await self.store.revoke(record.token_id, self.clock.now())
        await self.store.commit()
        if revoked:
            logger.info(f"Revoked refresh token {record.token_id} for user {record.user_id}")
        return revoked

    async def revoke_family(self, token_family: UUID) -> int:
        """Revoke every still-active record descended from one login."""
        count = await self.store.revoke_family(token_family, self.clock.now())
        await self.store.commit()
        if count:
            logger.info(f"Revoked {count} refresh token(s) in family {token_family}")
        return count

    async def revoke_all_for_user(self, user_id: UUID) -> int:
        """Revoke every active record across all of the user's families."""
        count = await self.store.revoke_all_for_user(user_id, self.clock.now())
        await self.store.commit()
        logger.info(f"Revoked {count} refresh token(s) for user {user_id}")
        return count
