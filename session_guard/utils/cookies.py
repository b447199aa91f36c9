"""HTTP cookie helpers."""
from fastapi import Response

from session_guard.config import get_settings


def _secure_flag() -> bool:
    # Only local development runs over plain http
    return get_settings().environment != "development"


def set_refresh_cookie(response: Response, token: str, *, max_age: int | None = None) -> None:
    """Set the refresh token cookie.

    The cookie is HttpOnly and SameSite=Lax so scripts cannot read it and
    cross-site POSTs do not carry it.

    Args:
        response: FastAPI Response object
        token: The refresh token
        max_age: Optional lifetime in seconds (defaults to the configured refresh window)
    """
    settings = get_settings()
    if max_age is None:
        max_age = settings.refresh_token_exp_days * 24 * 60 * 60

    response.set_cookie(
        key=settings.refresh_token_cookie_name,
        value=token,
        httponly=True,
        secure=_secure_flag(),
        samesite="lax",
        max_age=max_age,
        expires=max_age,
        path="/",
    )


def set_access_token_cookie(response: Response, token: str, *, max_age: int | None = None) -> None:
    """Set the access token cookie with the same flags as the refresh cookie."""
    settings = get_settings()
    if max_age is None:
        max_age = settings.access_token_exp_minutes * 60

    response.set_cookie(
        key=settings.access_token_cookie_name,
        value=token,
        httponly=True,
        secure=_secure_flag(),
        samesite="lax",
        max_age=max_age,
        expires=max_age,
        path="/",
    )


def clear_auth_cookies(response: Response) -> None:
    """Remove both access and refresh token cookies from the client."""
    settings = get_settings()
    response.delete_cookie(key=settings.access_token_cookie_name, path="/")
    response.delete_cookie(key=settings.refresh_token_cookie_name, path="/")
