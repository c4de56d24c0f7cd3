"""
Shared Enumerations for Portal Auth Models.

All string enumerations for type-safe field constraints.
StrEnum values compare equal to their string equivalents,
so code like ``if user.role == 'admin'`` keeps working.
"""

from __future__ import annotations
from enum import StrEnum


class UserRole(StrEnum):
    """Closed set of membership roles.

    Values are lowercase.  Inputs arriving from the identity provider
    (e.g. ``"FP"`` or ``"MEMBER"``) are case-folded before they reach
    this enumeration.
    """

    MEMBER = "member"
    FP = "fp"
    MANAGER = "manager"
    ADMIN = "admin"


class SessionEvent(StrEnum):
    """Auth-state notifications emitted by the identity provider."""

    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"
    PASSWORD_RECOVERY = "PASSWORD_RECOVERY"


class ReconcilerState(StrEnum):
    """Lifecycle states of the ``SessionReconciler``."""

    UNAUTHENTICATED = "unauthenticated"
    RESOLVING = "resolving"
    AUTHENTICATED = "authenticated"
    ERROR = "error"
