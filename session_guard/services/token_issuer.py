"""Signing and verification of access tokens and refresh-token envelopes."""
from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

import jwt

from session_guard.config import TokenConfig
from session_guard.utils.clock import Clock, system_clock
from session_guard.utils.datetime_helpers import from_timestamp, to_timestamp
from session_guard.utils.exceptions import (
    InvalidSignature,
    InvalidToken,
    TokenExpired,
    WrongAudience,
    WrongTokenType,
)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


@dataclass(frozen=True)
class AccessTokenClaims:
    user_id: UUID
    username: str
    role: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class RefreshTokenClaims:
    user_id: UUID
    username: str
    role: str
    token_family: UUID
    token_id: UUID
    secret: str
    expires_at: datetime


def hash_secret(secret: str) -> str:
    """One-way digest stored in place of a refresh token's secret."""
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def new_refresh_secret() -> str:
    return secrets.token_urlsafe(48)


class TokenIssuer:
    """Stateless JWT signer/verifier. Holds no storage handle.

    Expiry is compared against the injected clock rather than PyJWT's own
    ``time.time()`` check so that every component agrees on "now".
    """

    def __init__(self, config: TokenConfig, clock: Clock | None = None):
        self.config = config
        self.clock = clock or system_clock

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------
    def sign_access(self, user_id: UUID, username: str, role: str) -> tuple[str, int]:
        now = self.clock.now()
        expires_in = self.config.access_token_ttl_seconds
        payload = {
            "sub": str(user_id),
            "username": username,
            "role": role,
            "type": ACCESS_TOKEN_TYPE,
            "aud": self.config.audience,
            "iss": self.config.issuer,
            "iat": to_timestamp(now),
            "exp": to_timestamp(now + timedelta(seconds=expires_in)),
        }
        token = jwt.encode(payload, self.config.secret_key, algorithm=self.config.algorithm)
        return token, expires_in

    def verify_access(self, token: str) -> AccessTokenClaims:
        payload = self._decode(token, self.config.secret_key, ACCESS_TOKEN_TYPE)
        if self.clock.now().timestamp() >= payload["exp"]:
            raise TokenExpired("access token expired")
        return AccessTokenClaims(
            user_id=self._parse_uuid(payload, "sub"),
            username=str(payload.get("username") or ""),
            role=str(payload.get("role") or ""),
            issued_at=from_timestamp(payload["iat"]),
            expires_at=from_timestamp(payload["exp"]),
        )

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------
    def sign_refresh(
        self,
        *,
        user_id: UUID,
        username: str,
        role: str,
        token_family: UUID,
        token_id: UUID,
        secret: str,
        expires_at: datetime,
    ) -> str:
        payload = {
            "sub": str(user_id),
            "username": username,
            "role": role,
            "type": REFRESH_TOKEN_TYPE,
            "aud": self.config.audience,
            "iss": self.config.issuer,
            "fam": str(token_family),
            "tid": str(token_id),
            "jti": secret,
            "iat": to_timestamp(self.clock.now()),
            "exp": to_timestamp(expires_at),
        }
        return jwt.encode(payload, self.config.refresh_secret_key, algorithm=self.config.algorithm)

    def verify_refresh(self, token: str) -> RefreshTokenClaims:
        """Check signature and claims; expiry is enforced against the stored record."""
        payload = self._decode(token, self.config.refresh_secret_key, REFRESH_TOKEN_TYPE)
        secret = payload.get("jti")
        if not secret or not isinstance(secret, str):
            raise InvalidToken("refresh token missing secret")
        return RefreshTokenClaims(
            user_id=self._parse_uuid(payload, "sub"),
            username=str(payload.get("username") or ""),
            role=str(payload.get("role") or ""),
            token_family=self._parse_uuid(payload, "fam"),
            token_id=self._parse_uuid(payload, "tid"),
            secret=secret,
            expires_at=from_timestamp(payload["exp"]),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _decode(self, token: str, key: str, expected_type: str) -> dict:
        try:
            payload = jwt.decode(
                token,
                key,
                algorithms=[self.config.algorithm],
                audience=self.config.audience,
                issuer=self.config.issuer,
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": ["sub", "type", "iat", "exp"],
                },
            )
        except jwt.InvalidAudienceError as exc:
            raise WrongAudience() from exc
        except jwt.InvalidSignatureError as exc:
            raise InvalidSignature() from exc
        except jwt.InvalidTokenError as exc:
            raise InvalidToken() from exc

        if payload.get("type") != expected_type:
            raise WrongTokenType(f"expected {expected_type} token")
        if not isinstance(payload.get("exp"), (int, float)) or not isinstance(payload.get("iat"), (int, float)):
            raise InvalidToken("malformed lifetime claims")
        return payload

    @staticmethod
    def _parse_uuid(payload: dict, claim: str) -> UUID:
        try:
            return UUID(str(payload[claim]))
        except (KeyError, ValueError) as exc:
            raise InvalidToken(f"invalid {claim} claim") from exc
