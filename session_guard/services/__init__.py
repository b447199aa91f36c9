from session_guard.services.auth_service import AuthService
from session_guard.services.cleanup_service import CleanupService
from session_guard.services.revocation_service import RevocationService
from session_guard.services.rotation_service import ClientMeta, FamilyState, RotationService, TokenPair
from session_guard.services.session_service import SessionInfo, SessionService
from session_guard.services.token_issuer import TokenIssuer
from session_guard.services.token_store import RefreshTokenStore
from session_guard.services.user_service import UserService, UserServiceError

__all__ = [
    "AuthService",
    "CleanupService",
    "ClientMeta",
    "FamilyState",
    "RefreshTokenStore",
    "RevocationService",
    "RotationService",
    "SessionInfo",
    "SessionService",
    "TokenIssuer",
    "TokenPair",
    "UserService",
    "UserServiceError",
]
