"""Audit logging for critical operations."""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from fastapi import Request


logger = logging.getLogger("santa.audit")

SENSITIVE_KEYS = ("password", "token", "admin_token", "view_token", "secret", "code", "authorization")


class AuditAction(str, Enum):
    """Audit action types."""
    # Games
    GAME_CREATE = "game_create"
    GAME_DELETE = "game_delete"
    DRAW = "draw"
    DRAW_REJECTED = "draw_rejected"

    # Participants
    PARTICIPANT_ADD = "participant_add"
    PARTICIPANT_UPDATE = "participant_update"

    # Notifications
    RESEND_ALL = "resend_all"
    RESEND_PARTICIPANT = "resend_participant"

    # Email verification
    VERIFICATION_REQUEST = "verification_request"
    VERIFICATION_SUCCESS = "verification_success"
    VERIFICATION_FAILED = "verification_failed"

    # Site admin
    SITE_ADMIN_LOGIN = "site_admin_login"
    SITE_ADMIN_LOGIN_FAILED = "site_admin_login_failed"
    SITE_ADMIN_PASSWORD_CHANGE = "site_admin_password_change"
    SITE_ADMIN_GAME_DELETE = "site_admin_game_delete"

    # Rate limit
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"


def audit_log(
    action: AuditAction,
    request: Request | None = None,
    game_id: str | None = None,
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> dict[str, Any]:
    """
    Log an audit event.

    Args:
        action: The action being performed
        request: FastAPI request object (for IP, user agent)
        game_id: Game the action applies to
        details: Additional details about the action
        success: Whether the action was successful
    """
    event: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "action": action.value,
        "success": success,
    }

    if game_id is not None:
        event["game_id"] = str(game_id)

    if request:
        client_host = None
        if request.client:
            client_host = request.client.host

        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            client_host = forwarded.split(",")[0].strip()

        event["ip"] = client_host
        event["user_agent"] = request.headers.get("User-Agent", "")[:200]
        event["request_id"] = request.headers.get("X-Request-Id", "")

    if details:
        event["details"] = {
            key: "***REDACTED***" if key in SENSITIVE_KEYS else value
            for key, value in details.items()
        }

    if success:
        logger.info("AUDIT: %s", event)
    else:
        logger.warning("AUDIT: %s", event)
    return event


def audit_game_action(
    action: AuditAction,
    request: Request,
    game_id: str,
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> None:
    """Log an organizer operation on a game."""
    audit_log(action, request=request, game_id=game_id, details=details, success=success)


def audit_site_admin_login(request: Request, success: bool) -> None:
    audit_log(
        AuditAction.SITE_ADMIN_LOGIN if success else AuditAction.SITE_ADMIN_LOGIN_FAILED,
        request=request,
        success=success,
    )


def audit_rate_limit_exceeded(request: Request, endpoint: str, retry_after: int) -> None:
    """Log rate limit exceeded."""
    audit_log(
        AuditAction.RATE_LIMIT_EXCEEDED,
        request=request,
        details={"endpoint": endpoint, "retry_after": retry_after},
        success=False,
    )
