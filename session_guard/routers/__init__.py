"""API routers."""
from session_guard.routers import auth, health

__all__ = [
    "auth",
    "health",
]
