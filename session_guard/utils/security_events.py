"""Security monitoring hooks.

Reuse alarms go to the ``session_guard.security`` logger, which ``main`` routes
to its own rotating log file in addition to the general log.
"""
from __future__ import annotations

import logging
from uuid import UUID

security_logger = logging.getLogger("session_guard.security")


def mask_identifier(identifier: str | None) -> str:
    """Mask a sensitive identifier for logging (e.g., a token)."""
    if not identifier:
        return "<missing>"
    if len(identifier) <= 8:
        return f"{identifier[:2]}...{identifier[-2:]}"
    return f"{identifier[:4]}...{identifier[-4:]}"


def report_reuse_detected(
    *,
    user_id: UUID,
    token_family: UUID,
    token_id: UUID,
    revoked_count: int,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> None:
    security_logger.warning(
        "SECURITY ALERT: refresh token reuse detected "
        f"user_id={user_id} token_family={token_family} token_id={token_id} "
        f"revoked={revoked_count} ip={ip_address or '-'} ua={(user_agent or '-')[:80]}"
    )
