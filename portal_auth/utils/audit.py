"""
Structured Audit Logging Utility.

Identity state changes (profile provisioned, login, logout) are written
to the log as validated JSON objects prefixed with ``AUDIT:``.  Nothing
is persisted locally; the log collector is the system of record.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import StrEnum
from typing import Optional, Union

from pydantic import BaseModel, Field

from portal_auth.logger import StructuredLogger

__all__ = ["AuditAction", "AuditEvent", "log_audit_event"]

DetailValue = Union[str, int, float, bool, None]


class AuditAction(StrEnum):
    PROFILE_CREATE = "PROFILE_CREATE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"


class AuditEvent(BaseModel):
    """One audit trail entry; ``details`` holds flat scalars only."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    action: str
    entity_type: str
    entity_id: str
    user_id: str
    details: dict[str, DetailValue] = Field(default_factory=dict)


def log_audit_event(
    logger: StructuredLogger,
    action: Union[AuditAction, str],
    entity_type: str,
    entity_id: str,
    user_id: str,
    details: Optional[dict[str, DetailValue]] = None,
) -> AuditEvent:
    """Validate, log and return an audit event.

    Args:
        logger: Destination logger.
        action: What happened, usually an ``AuditAction``.
        entity_type: Kind of record affected (``"Profile"``).
        entity_id: Identifier of the affected record.
        user_id: Subject id of the acting user.
        details: Extra flat context such as email or role.
    """
    event = AuditEvent(
        action=str(action),
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        details=details or {},
    )
    logger.info(
        "AUDIT: %s", json.dumps(event.model_dump(mode="json")),
        extra={"event": "AUDIT", "action": event.action},
    )
    return event
