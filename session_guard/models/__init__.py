"""Database models."""
from session_guard.models.user import User
from session_guard.models.refresh_token import RefreshToken
from session_guard.models.base import TokenStatus, UserRole

__all__ = [
    "User",
    "RefreshToken",
    "TokenStatus",
    "UserRole",
]
