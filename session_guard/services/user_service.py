"""User account lookup and creation."""
from __future__ import annotations

import logging
import re
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from session_guard.config import get_settings
from session_guard.models.base import UserRole
from session_guard.models.user import User
from session_guard.utils.passwords import (
    PasswordValidationError,
    hash_password,
    validate_password_strength,
)

logger = logging.getLogger(__name__)

_USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]{3,80}$")


class UserServiceError(RuntimeError):
    """Raised when a user account operation fails."""


def canonicalize_username(username: str) -> str:
    return username.strip().lower()


class UserService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_by_id(self, user_id: UUID) -> User | None:
        result = await self.db.execute(select(User).where(User.user_id == user_id))
        return result.scalar_one_or_none()

    async def get_user_by_username(self, username: str) -> User | None:
        result = await self.db.execute(
            select(User).where(User.username_canonical == canonicalize_username(username))
        )
        return result.scalar_one_or_none()

    async def create_user(self, username: str, password: str, role: UserRole = UserRole.USER) -> User:
        """Create an account after validating the username and password policy."""
        username = username.strip()
        if not _USERNAME_PATTERN.match(username):
            raise UserServiceError("invalid_username")

        try:
            validate_password_strength(password)
        except PasswordValidationError as exc:
            raise UserServiceError(str(exc)) from exc

        if await self.get_user_by_username(username):
            raise UserServiceError("username_taken")

        user = User(
            username=username,
            username_canonical=canonicalize_username(username),
            password_hash=hash_password(password, rounds=get_settings().bcrypt_rounds),
            role=UserRole(role).value,
        )
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            raise UserServiceError("username_taken") from exc

        await self.db.refresh(user)
        logger.info(f"Created user {user.user_id} ({user.username}, role={user.role})")
        return user

    def set_password(self, user: User, password: str) -> None:
        """Replace the user's password hash. The caller commits."""
        try:
            validate_password_strength(password)
        except PasswordValidationError as exc:
            raise UserServiceError(str(exc)) from exc

        user.password_hash = hash_password(password, rounds=get_settings().bcrypt_rounds)
