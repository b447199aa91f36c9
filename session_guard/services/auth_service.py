"""Authentication and session management entry points."""
from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from session_guard.config import get_settings, get_token_config
from session_guard.models.user import User
from session_guard.services.revocation_service import RevocationService
from session_guard.services.rotation_service import ClientMeta, RotationService, TokenPair
from session_guard.services.session_service import SessionInfo, SessionService
from session_guard.services.token_issuer import AccessTokenClaims, TokenIssuer
from session_guard.services.user_service import UserService, UserServiceError
from session_guard.utils.clock import Clock, system_clock
from session_guard.utils.exceptions import InvalidCredential, TokenRevoked
from session_guard.utils.passwords import CredentialVerifier

logger = logging.getLogger(__name__)


class AuthService:
    """Service responsible for credential checks and the token lifecycle.

    Wires the token issuer, rotation engine, revocation service and session
    listing onto one request-scoped database session.
    """

    def __init__(
        self,
        db: AsyncSession,
        *,
        issuer: TokenIssuer | None = None,
        clock: Clock | None = None,
        verifier: CredentialVerifier | None = None,
    ):
        self.db = db
        self.settings = get_settings()
        self.clock = clock or (issuer.clock if issuer else system_clock)
        self.issuer = issuer or TokenIssuer(get_token_config(), clock=self.clock)
        self.verifier = verifier or CredentialVerifier(rounds=self.settings.bcrypt_rounds)

        self.user_service = UserService(db)
        self.revocation_service = RevocationService(db, self.issuer, clock=self.clock)
        self.rotation_service = RotationService(
            db, self.issuer, clock=self.clock, revocation_service=self.revocation_service
        )
        self.session_service = SessionService(db, clock=self.clock)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    async def authenticate(self, username: str, password: str) -> User:
        """Verify credentials, upgrading the stored hash when its cost is outdated."""
        user = await self.user_service.get_user_by_username(username)
        if not user or not user.is_active:
            raise InvalidCredential()

        if not self.verifier.verify_password(password, user.password_hash):
            raise InvalidCredential()

        if self.verifier.needs_upgrade(user.password_hash):
            user.password_hash = self.verifier.rehash(password)
            logger.info(f"Upgraded password hash for user {user.user_id}")

        return user

    async def login(
        self, username: str, password: str, client: ClientMeta | None = None
    ) -> tuple[User, TokenPair]:
        user = await self.authenticate(username, password)
        user.last_login_date = self.clock.now()
        # issue_initial commits, which also persists the login timestamp and any rehash
        pair = await self.rotation_service.issue_initial(
            user.user_id, user.username, user.role, client
        )
        return user, pair

    # ------------------------------------------------------------------
    # Token lifecycle
    # ------------------------------------------------------------------
    async def refresh(
        self, raw_token: str, client: ClientMeta | None = None
    ) -> tuple[User, TokenPair]:
        """Rotate the presented refresh token and return the owner with the new pair.

        The new tokens carry the account's current username and role. A user
        that was removed or deactivated since login loses every session.
        """
        pair = await self.rotation_service.rotate(raw_token, client)

        user = await self.user_service.get_user_by_id(pair.user_id)
        if user is None:
            raise TokenRevoked()

        return user, pair

    async def reset_password(self, username: str, new_password: str) -> int:
        """Set a new password and end every session of the account.

        Returns the number of sessions revoked.
        """
        user = await self.user_service.get_user_by_username(username)
        if user is None:
            raise UserServiceError("user_not_found")

        self.user_service.set_password(user, new_password)
        # Commits the new hash together with the revocations
        revoked = await self.revocation_service.revoke_all_for_user(user.user_id)
        logger.info(f"Password reset for user {user.user_id}; {revoked} session(s) revoked")
        return revoked

    async def logout(self, raw_token: str | None) -> None:
        await self.revocation_service.revoke_one(raw_token)

    async def logout_all(self, user_id: UUID) -> int:
        return await self.revocation_service.revoke_all_for_user(user_id)

    async def list_sessions(self, user_id: UUID) -> list[SessionInfo]:
        return await self.session_service.list_active_sessions(user_id)

    def decode_access_token(self, token: str) -> AccessTokenClaims:
        return self.issuer.verify_access(token)
