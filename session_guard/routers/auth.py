"""Authentication endpoints."""
import logging

from fastapi import APIRouter, Cookie, Depends, Response
from fastapi.responses import JSONResponse

from session_guard.config import get_settings
from session_guard.dependencies import (
    UNAUTHORIZED_DETAIL,
    enforce_login_rate_limit,
    enforce_refresh_rate_limit,
    get_auth_service,
    get_client_meta,
    get_current_user,
    unauthorized,
)
from session_guard.models.user import User
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
from session_guard.services.auth_service import AuthService
from session_guard.services.rotation_service import ClientMeta, TokenPair
from session_guard.utils.cookies import (
    clear_auth_cookies,
    set_access_token_cookie,
    set_refresh_cookie,
)
from session_guard.utils.datetime_helpers import ensure_utc
from session_guard.utils.exceptions import AuthError, ReuseDetected
from session_guard.utils.security_events import mask_identifier

logger = logging.getLogger(__name__)

router = APIRouter()
settings = get_settings()


def _token_response(user: User, pair: TokenPair, response: Response) -> AuthTokenResponse:
    set_access_token_cookie(response, pair.access_token, max_age=pair.expires_in)
    set_refresh_cookie(response, pair.refresh_token)

    return AuthTokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type="bearer",
        expires_in=pair.expires_in,
        refresh_expires_at=ensure_utc(pair.refresh_expires_at),
        user_id=user.user_id,
        username=user.username,
        role=user.role,
    )


def _log_rejection(exc: AuthError, token: str | None = None) -> None:
    masked = mask_identifier(token) if token else "-"
    if isinstance(exc, ReuseDetected):
        logger.warning(f"Refresh rejected ({exc.code}) token={masked}")
    else:
        logger.info(f"Auth rejected ({exc.code}) token={masked}")


@router.post("/login", response_model=AuthTokenResponse)
async def login(
    request: LoginRequest,
    response: Response,
    client: ClientMeta = Depends(get_client_meta),
    _rate_limit: None = Depends(enforce_login_rate_limit),
    auth_service: AuthService = Depends(get_auth_service),
) -> AuthTokenResponse:
    """Authenticate via username/password and start a new session."""
    try:
        user, pair = await auth_service.login(request.username, request.password, client)
    except AuthError as exc:
        _log_rejection(exc)
        raise unauthorized() from exc

    return _token_response(user, pair, response)


@router.post("/refresh", response_model=AuthTokenResponse)
async def refresh_tokens(
    response: Response,
    request: RefreshRequest | None = None,
    refresh_cookie: str | None = Cookie(
        default=None, alias=settings.refresh_token_cookie_name
    ),
    client: ClientMeta = Depends(get_client_meta),
    _rate_limit: None = Depends(enforce_refresh_rate_limit),
    auth_service: AuthService = Depends(get_auth_service),
) -> AuthTokenResponse | JSONResponse:
    """Exchange a refresh token for a new pair.

    Any failure clears the auth cookies; the client must log in again.
    """
    token = (request.refresh_token if request else None) or refresh_cookie
    if not token:
        raise unauthorized()

    try:
        user, pair = await auth_service.refresh(token, client)
    except AuthError as exc:
        _log_rejection(exc, token)
        error = JSONResponse(status_code=401, content={"detail": UNAUTHORIZED_DETAIL})
        clear_auth_cookies(error)
        return error

    return _token_response(user, pair, response)


@router.post("/logout", status_code=204)
async def logout(
    response: Response,
    request: LogoutRequest | None = None,
    refresh_cookie: str | None = Cookie(
        default=None, alias=settings.refresh_token_cookie_name
    ),
    auth_service: AuthService = Depends(get_auth_service),
) -> None:
    """Revoke the presented refresh token and clear cookies. Always succeeds."""
    token = (request.refresh_token if request else None) or refresh_cookie
    if token:
        await auth_service.logout(token)

    clear_auth_cookies(response)
    response.status_code = 204
    return None


@router.post("/logout-all", response_model=LogoutAllResponse)
async def logout_all(
    response: Response,
    user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
) -> LogoutAllResponse:
    """Revoke every session of the current user, including this one."""
    revoked = await auth_service.logout_all(user.user_id)
    clear_auth_cookies(response)
    return LogoutAllResponse(revoked_sessions=revoked)


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
) -> SessionListResponse:
    """List the current user's active sessions (one entry per live refresh token)."""
    sessions = await auth_service.list_sessions(user.user_id)
    return SessionListResponse(
        sessions=[
            SessionResponse(
                session_id=session.record_id,
                token_family=session.token_family,
                created_at=session.created_at,
                expires_at=session.expires_at,
                ip_address=session.ip_address,
                user_agent=session.user_agent,
            )
            for session in sessions
        ]
    )


@router.get("/me", response_model=MeResponse)
async def me(user: User = Depends(get_current_user)) -> MeResponse:
    return MeResponse(
        user_id=user.user_id,
        username=user.username,
        role=user.role,
        is_active=user.is_active,
        created_at=ensure_utc(user.created_at),
        last_login_date=ensure_utc(user.last_login_date) if user.last_login_date else None,
    )
