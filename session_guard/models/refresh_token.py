"""Refresh token persistence model."""
from datetime import datetime, UTC
import uuid

from sqlalchemy import Column, DateTime, Enum as SAEnum, ForeignKey, String
from sqlalchemy.orm import relationship

from session_guard.database import Base
from session_guard.models.base import TokenStatus, get_uuid_column
from session_guard.utils.datetime_helpers import ensure_utc


class RefreshToken(Base):
    """Server-side record backing one refresh token.

    Records descended from one login by rotation share ``token_family``. A
    record is written once at creation and transitions at most once, from
    ACTIVE to REVOKED; ``replaced_by_token_id`` is set when that transition was
    a rotation.
    """

    __tablename__ = "refresh_tokens"

    token_id = get_uuid_column(primary_key=True, default=uuid.uuid4)
    user_id = get_uuid_column(ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = Column(String(64), nullable=False, unique=True, index=True)
    token_family = get_uuid_column(nullable=False, index=True)
    status = Column(
        SAEnum(TokenStatus, name="token_status", native_enum=False, length=16),
        default=TokenStatus.ACTIVE,
        nullable=False,
    )
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    replaced_by_token_id = get_uuid_column(
        ForeignKey("refresh_tokens.token_id", ondelete="SET NULL"), nullable=True
    )
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)

    user = relationship("User", back_populates="refresh_tokens", lazy="select")

    @property
    def is_revoked(self) -> bool:
        return self.status == TokenStatus.REVOKED

    @property
    def is_consumed(self) -> bool:
        """True once this token has been exchanged for a successor."""
        return self.replaced_by_token_id is not None

    def is_expired(self, now: datetime | None = None) -> bool:
        current_time = now or datetime.now(UTC)
        if self.expires_at is None:
            return True
        return current_time > ensure_utc(self.expires_at)

    def is_active(self, now: datetime | None = None) -> bool:
        """Return True if token has not expired, been revoked or been rotated."""
        return (
            self.status == TokenStatus.ACTIVE
            and not self.is_consumed
            and not self.is_expired(now)
        )

    def __repr__(self):
        return (f"<{self.__class__.__name__}(token_id={self.token_id}, user_id={self.user_id}, "
                f"family={self.token_family}, status={self.status}, expires_at={self.expires_at})>")
