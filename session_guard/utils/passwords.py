"""Password hashing utilities using bcrypt."""
from __future__ import annotations

import bcrypt


class PasswordValidationError(ValueError):
    """Raised when a password fails strength validation."""


def validate_password_strength(password: str) -> None:
    """Validate password complexity requirements.

    The policy requires:
    - Minimum length of 8 characters
    - At least one lowercase letter
    - At least one uppercase letter
    - At least one digit

    Raises:
        PasswordValidationError: If any requirement is not met.
    """

    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long.")

    if password.lower() == password or password.upper() == password:
        raise PasswordValidationError(
            "Password must include both uppercase and lowercase letters."
        )

    if not any(char.isdigit() for char in password):
        raise PasswordValidationError("Password must include at least one number.")


def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password using bcrypt."""
    password_bytes = password.encode('utf-8')
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password_bytes, salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against a stored hash."""
    try:
        password_bytes = password.encode('utf-8')
        hash_bytes = password_hash.encode('utf-8')
        return bcrypt.checkpw(password_bytes, hash_bytes)
    except (ValueError, TypeError, AttributeError):
        return False


def get_hash_rounds(password_hash: str) -> int | None:
    """Return the bcrypt cost factor encoded in ``$2b$<rounds>$...``, if parseable."""
    parts = password_hash.split("$") if password_hash else []
    if len(parts) < 4 or not parts[2].isdigit():
        return None
    return int(parts[2])


class CredentialVerifier:
    """Checks passwords and tells the caller when a stored hash should be upgraded."""

    def __init__(self, rounds: int = 12):
        self.rounds = rounds

    def verify_password(self, password: str, password_hash: str) -> bool:
        return verify_password(password, password_hash)

    def needs_upgrade(self, password_hash: str) -> bool:
        """True when the hash is unreadable or uses a lower cost than configured."""
        current = get_hash_rounds(password_hash)
        return current is None or current < self.rounds

    def rehash(self, password: str) -> str:
        return hash_password(password, rounds=self.rounds)
