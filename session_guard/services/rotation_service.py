"""Refresh token rotation with reuse detection.

A login starts a token *family*. Every refresh consumes the presented record
and appends a successor to the same family. Presenting a record that already
has a successor means the token was copied: the whole family is revoked.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import NoReturn
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from session_guard.models.base import TokenStatus
from session_guard.models.refresh_token import RefreshToken
from session_guard.services.revocation_service import RevocationService
from session_guard.services.token_issuer import TokenIssuer, hash_secret, new_refresh_secret
from session_guard.services.token_store import RefreshTokenStore
from session_guard.services.user_service import UserService
from session_guard.utils.clock import Clock
from session_guard.utils.exceptions import (
    ReuseDetected,
    TokenExpired,
    TokenNotFound,
    TokenRevoked,
)
from session_guard.utils.security_events import report_reuse_detected

logger = logging.getLogger(__name__)

IP_ADDRESS_MAX_LENGTH = 64
USER_AGENT_MAX_LENGTH = 512


class FamilyState(str, Enum):
    """Lifecycle of a token family, derived from its records."""
    NEW = "new"
    ROTATED = "rotated"
    REVOKED = "revoked"
    EXPIRED = "expired"


@dataclass(frozen=True)
class ClientMeta:
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    refresh_expires_at: datetime
    user_id: UUID
    token_family: UUID
    token_id: UUID


class RotationService:
    """Issues token families and rotates their refresh tokens."""

    def __init__(
        self,
        db: AsyncSession,
        issuer: TokenIssuer,
        *,
        clock: Clock | None = None,
        revocation_service: RevocationService | None = None,
    ):
        self.db = db
        self.issuer = issuer
        self.clock = clock or issuer.clock
        self.store = RefreshTokenStore(db)
        self.user_service = UserService(db)
        self.revocation_service = revocation_service or RevocationService(db, issuer, clock=self.clock)

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------
    async def issue_initial(
        self,
        user_id: UUID,
        username: str,
        role: str,
        client: ClientMeta | None = None,
    ) -> TokenPair:
        """Start a new family for a freshly authenticated user."""
        token_family = uuid.uuid4()
        record, refresh_token = self._create_record(
            user_id=user_id,
            username=username,
            role=role,
            token_family=token_family,
            client=client,
            now=self.clock.now(),
        )
        pair = self._build_pair(record, refresh_token, username, role)
        await self.store.commit()
        logger.info(f"Issued token family {token_family} for user {user_id}")
        return pair

    # ------------------------------------------------------------------
    # Rotation
    # ------------------------------------------------------------------
    async def rotate(self, raw_token: str, client: ClientMeta | None = None) -> TokenPair:
        """Exchange a valid, unconsumed refresh token for a new pair.

        Raises:
            InvalidToken: signature or claims are unusable
            TokenNotFound: no record matches the presented secret
            TokenExpired: the record's window has passed
            ReuseDetected: the record was already rotated; family revoked
            TokenRevoked: the record was revoked without a successor
                or its owner was removed or deactivated; sessions revoked
        """
        claims = self.issuer.verify_refresh(raw_token)

        record = await self.store.get_by_hash(hash_secret(claims.secret))
        if (
            record is None
            or record.token_id != claims.token_id
            or record.token_family != claims.token_family
            or record.user_id != claims.user_id
        ):
            raise TokenNotFound()

        now = self.clock.now()
        if record.is_expired(now):
            raise TokenExpired("refresh token expired")

        # Consumed records are also revoked, so check for a successor first.
        if record.is_consumed:
            await self._handle_reuse(record, client)
        if record.is_revoked:
            raise TokenRevoked()

        # Sign with the stored identity so role and username changes apply on the next refresh
        owner = await self.user_service.get_user_by_id(record.user_id)
        if owner is None or not owner.is_active:
            await self.revocation_service.revoke_all_for_user(record.user_id)
            logger.warning(f"Refresh for inactive or missing user {record.user_id}; sessions revoked")
            raise TokenRevoked()
        username, role = owner.username, owner.role

        presented_id = record.token_id
        try:
            successor, refresh_token = self._create_record(
                user_id=record.user_id,
                username=username,
                role=role,
                token_family=record.token_family,
                client=client,
                now=now,
            )
            await self.store.flush()
            won = await self.store.consume(presented_id, successor.token_id, now)
            if won:
                pair = self._build_pair(successor, refresh_token, username, role)
                await self.store.commit()
            else:
                # Drop the speculative successor; the record changed under us.
                await self.store.rollback()
        except Exception:
            await self.store.rollback()
            logger.error("Unexpected error rotating refresh token", exc_info=True)
            raise

        if not won:
            current = await self.store.get_by_id(presented_id)
            if current is not None and current.is_consumed:
                await self._handle_reuse(current, client)
            raise TokenRevoked()

        logger.info(
            f"Rotated refresh token {presented_id} -> {pair.token_id} "
            f"(family {pair.token_family})"
        )
        return pair

    async def family_state(self, token_family: UUID) -> FamilyState | None:
        """Derive the family's state from its records; None if the family is unknown."""
        records = await self.store.list_family(token_family)
        if not records:
            return None

        tails = [r for r in records if not r.is_revoked and not r.is_consumed]
        if not tails:
            return FamilyState.REVOKED
        if len(tails) > 1:
            logger.warning(f"Token family {token_family} has {len(tails)} active records")

        tail = max(tails, key=lambda r: r.created_at)
        if tail.is_expired(self.clock.now()):
            return FamilyState.EXPIRED
        return FamilyState.NEW if len(records) == 1 else FamilyState.ROTATED

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _handle_reuse(self, record: RefreshToken, client: ClientMeta | None) -> NoReturn:
        user_id, token_family, token_id = record.user_id, record.token_family, record.token_id
        revoked_count = await self.revocation_service.revoke_family(token_family)
        report_reuse_detected(
            user_id=user_id,
            token_family=token_family,
            token_id=token_id,
            revoked_count=revoked_count,
            ip_address=client.ip_address if client else None,
            user_agent=client.user_agent if client else None,
        )
        raise ReuseDetected()

    def _create_record(
        self,
        *,
        user_id: UUID,
        username: str,
        role: str,
        token_family: UUID,
        client: ClientMeta | None,
        now: datetime,
    ) -> tuple[RefreshToken, str]:
        secret = new_refresh_secret()
        expires_at = now + timedelta(seconds=self.issuer.config.refresh_token_ttl_seconds)
        record = RefreshToken(
            token_id=uuid.uuid4(),
            user_id=user_id,
            token_hash=hash_secret(secret),
            token_family=token_family,
            status=TokenStatus.ACTIVE,
            created_at=now,
            expires_at=expires_at,
            ip_address=_truncate(client.ip_address if client else None, IP_ADDRESS_MAX_LENGTH),
            user_agent=_truncate(client.user_agent if client else None, USER_AGENT_MAX_LENGTH),
        )
        self.store.add(record)
        refresh_token = self.issuer.sign_refresh(
            user_id=user_id,
            username=username,
            role=role,
            token_family=token_family,
            token_id=record.token_id,
            secret=secret,
            expires_at=expires_at,
        )
        return record, refresh_token

    def _build_pair(self, record: RefreshToken, refresh_token: str, username: str, role: str) -> TokenPair:
        access_token, expires_in = self.issuer.sign_access(record.user_id, username, role)
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=expires_in,
            refresh_expires_at=record.expires_at,
            user_id=record.user_id,
            token_family=record.token_family,
            token_id=record.token_id,
        )


def _truncate(value: str | None, limit: int) -> str | None:
    if not value:
        return None
    return value[:limit]
