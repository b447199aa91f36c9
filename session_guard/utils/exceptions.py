"""Exception taxonomy for authentication and session handling."""


class ConfigurationError(RuntimeError):
    """Raised when required configuration is missing. Fatal at startup."""


class AuthError(RuntimeError):
    """Base class for per-request authentication failures.

    Callers at the HTTP boundary collapse every subclass into one generic
    "unauthorized" response; ``code`` is only for logs and tests.
    """

    code = "auth_error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)


class InvalidCredential(AuthError):
    """Username/password combination was rejected."""

    code = "invalid_credential"


class InvalidToken(AuthError):
    """Token is malformed or failed claim validation."""

    code = "invalid_token"


class InvalidSignature(InvalidToken):
    code = "invalid_signature"


class WrongAudience(InvalidToken):
    code = "wrong_audience"


class WrongTokenType(InvalidToken):
    code = "wrong_token_type"


class TokenNotFound(AuthError):
    """No stored refresh token matches the presented secret."""

    code = "token_not_found"


class TokenExpired(AuthError):
    code = "token_expired"


class TokenRevoked(AuthError):
    code = "token_revoked"


class ReuseDetected(AuthError):
    """An already-rotated refresh token was presented again; its family has been revoked."""

    code = "reuse_detected"
