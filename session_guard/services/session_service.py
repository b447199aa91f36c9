"""Read-only projection of a user's active sessions."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from session_guard.services.token_store import RefreshTokenStore
from session_guard.utils.clock import Clock, system_clock
from session_guard.utils.datetime_helpers import ensure_utc


@dataclass(frozen=True)
class SessionInfo:
    record_id: UUID
    token_family: UUID
    created_at: datetime
    expires_at: datetime
    ip_address: str | None
    user_agent: str | None


class SessionService:
    """Lists refresh tokens that are neither revoked nor expired ("active devices")."""

    def __init__(self, db: AsyncSession, *, clock: Clock | None = None):
        self.store = RefreshTokenStore(db)
        self.clock = clock or system_clock

    async def list_active_sessions(self, user_id: UUID) -> list[SessionInfo]:
        records = await self.store.list_active_for_user(user_id, self.clock.now())
        return [
            SessionInfo(
                record_id=record.token_id,
                token_family=record.token_family,
                created_at=ensure_utc(record.created_at),
                expires_at=ensure_utc(record.expires_at),
                ip_address=record.ip_address,
                user_agent=record.user_agent,
            )
            for record in records
        ]
