"""FastAPI dependencies."""
import logging

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from session_guard.config import get_settings, get_token_config
from session_guard.database import get_db
from session_guard.models.user import User
from session_guard.services.auth_service import AuthService
from session_guard.services.rotation_service import ClientMeta
from session_guard.services.token_issuer import TokenIssuer
from session_guard.services.user_service import UserService
from session_guard.utils.exceptions import AuthError
from session_guard.utils.rate_limiter import RateLimiter
from session_guard.utils.security_events import mask_identifier

logger = logging.getLogger(__name__)

UNAUTHORIZED_DETAIL = "unauthorized"

rate_limiter = RateLimiter()

RATE_LIMIT_WINDOW_SECONDS = 60
RATE_LIMIT_ERROR_MESSAGE = "Rate limit exceeded. Try again later."


def unauthorized() -> HTTPException:
    """Uniform 401; the specific failure reason is only logged."""
    return HTTPException(status_code=401, detail=UNAUTHORIZED_DETAIL)


def get_token_issuer() -> TokenIssuer:
    return TokenIssuer(get_token_config())


def get_auth_service(
    db: AsyncSession = Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> AuthService:
    return AuthService(db, issuer=issuer)


def get_client_meta(
    request: Request,
    x_forwarded_for: str | None = Header(default=None, alias="X-Forwarded-For"),
    x_real_ip: str | None = Header(default=None, alias="X-Real-IP"),
    user_agent: str | None = Header(default=None, alias="User-Agent"),
) -> ClientMeta:
    """Collect the caller's address and user agent for session metadata.

    Proxy headers take precedence over the socket peer. X-Forwarded-For can be
    a comma-separated list; the first entry is the client.
    """
    client_ip = None
    if x_forwarded_for:
        client_ip = x_forwarded_for.split(",")[0].strip() or None
    if not client_ip and x_real_ip:
        client_ip = x_real_ip.strip() or None
    if not client_ip and request.client:
        client_ip = request.client.host

    return ClientMeta(ip_address=client_ip, user_agent=user_agent)


async def get_current_user(
    request: Request,
    authorization: str | None = Header(default=None, alias="Authorization"),
    db: AsyncSession = Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> User:
    """Resolve the current user via JWT access token.

    Checks for access token in the following order:
    1. HTTP-only cookie
    2. Authorization header (API clients)
    """
    settings = get_settings()
    token = request.cookies.get(settings.access_token_cookie_name)
    token_source = "cookie"

    if not token and authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token:
            logger.info("Rejected request with malformed Authorization header")
            raise unauthorized()
        token_source = "header"

    if not token:
        raise unauthorized()

    try:
        claims = issuer.verify_access(token)
    except AuthError as exc:
        logger.info(f"Access token rejected ({exc.code}) from {token_source}: {mask_identifier(token)}")
        raise unauthorized() from exc

    user = await UserService(db).get_user_by_id(claims.user_id)
    if not user or not user.is_active:
        logger.info(f"Access token for unknown or inactive user {claims.user_id}")
        raise unauthorized()

    logger.debug(f"Authenticated user via JWT {token_source}: {user.user_id}")
    return user


async def _enforce_rate_limit(scope: str, identifier: str | None, limit: int) -> None:
    """Apply a rate limit for the provided scope and identifier."""
    if not get_settings().rate_limit_enabled:
        return

    if not identifier:
        return

    allowed, retry_after = await rate_limiter.check(
        f"{scope}:{identifier}", limit, RATE_LIMIT_WINDOW_SECONDS
    )
    if allowed:
        return

    headers = {}
    if retry_after is not None:
        headers["Retry-After"] = str(retry_after)

    logger.warning(f"Rate limit exceeded for {scope=} identifier={mask_identifier(identifier)}")
    raise HTTPException(status_code=429, detail=RATE_LIMIT_ERROR_MESSAGE, headers=headers or None)


async def enforce_login_rate_limit(client: ClientMeta = Depends(get_client_meta)) -> None:
    """Throttle password attempts per client IP."""
    await _enforce_rate_limit("login", client.ip_address, get_settings().login_rate_limit_per_minute)


async def enforce_refresh_rate_limit(client: ClientMeta = Depends(get_client_meta)) -> None:
    await _enforce_rate_limit("refresh", client.ip_address, get_settings().refresh_rate_limit_per_minute)
