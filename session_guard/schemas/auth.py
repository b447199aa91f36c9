"""Authentication schema definitions."""
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, constr


UsernameStr = constr(min_length=3, max_length=80)
PasswordStr = constr(min_length=1, max_length=128)


class LoginRequest(BaseModel):
    """Login payload."""

    username: UsernameStr
    password: PasswordStr


class RefreshRequest(BaseModel):
    """Refresh payload (optional when using cookies)."""

    refresh_token: Optional[str] = None


class LogoutRequest(BaseModel):
    """Logout payload; the cookie is used when the body omits the token."""

    refresh_token: Optional[str] = None


class AuthTokenResponse(BaseModel):
    """Standard response containing JWT credentials."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_expires_at: datetime
    user_id: UUID
    username: str
    role: str


class LogoutAllResponse(BaseModel):
    revoked_sessions: int


class SessionResponse(BaseModel):
    """One active login, identified by its token family."""

    session_id: UUID
    token_family: UUID
    created_at: datetime
    expires_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class SessionListResponse(BaseModel):
    sessions: list[SessionResponse]


class MeResponse(BaseModel):
    user_id: UUID
    username: str
    role: str
    is_active: bool
    created_at: datetime
    last_login_date: Optional[datetime] = None
