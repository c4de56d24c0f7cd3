"""Shared utility functions and models for the portal auth package.

Convenience re-exports so consumers can import directly from
``portal_auth.utils`` while full absolute imports remain supported.
"""

from portal_auth.utils.audit import AuditAction, AuditEvent, log_audit_event
from portal_auth.utils.retry import backoff_schedule, retry_async

__all__ = [
    "AuditAction",
    "AuditEvent",
    "backoff_schedule",
    "log_audit_event",
    "retry_async",
]
