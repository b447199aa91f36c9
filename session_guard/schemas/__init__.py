"""Pydantic request and response models."""
from session_guard.schemas.auth import (
    AuthTokenResponse,
    LoginRequest,
    LogoutAllResponse,
    LogoutRequest,
    MeResponse,
    RefreshRequest,
    SessionListResponse,
    SessionResponse,
)

__all__ = [
    "AuthTokenResponse",
    "LoginRequest",
    "LogoutAllResponse",
    "LogoutRequest",
    "MeResponse",
    "RefreshRequest",
    "SessionListResponse",
    "SessionResponse",
]
