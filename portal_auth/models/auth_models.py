"""
Authentication Pipeline Models.

Pydantic models and enumerations for the contracts between the
identity-provider adapter, the provisioning service and the session
reconciler.

These models keep the boundary typed: every auth operation exchanges a
structured, inspectable value rather than raw provider objects or
exception strings.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

class AuthErrorCode(StrEnum):
    """Exhaustive enumeration of authentication error categories.

    Used by the identity adapter and the Profile Store client to
    classify failures, and by callers to decide which feedback to show.
    """

    NOT_CONFIGURED = "not_configured"
    INVALID_CREDENTIALS = "invalid_credentials"
    EMAIL_ALREADY_EXISTS = "email_already_exists"
    REGISTRATION_FAILED = "registration_failed"
    PROVIDER_ERROR = "provider_error"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNAVAILABLE = "unavailable"
    PROFILE_RESOLUTION_FAILED = "profile_resolution_failed"
    SIGNED_OUT = "signed_out"
    UNKNOWN_ERROR = "unknown_error"


# ---------------------------------------------------------------------------
# Supabase error-code mapping
# ---------------------------------------------------------------------------

SUPABASE_ERROR_MAP: dict[str, tuple[AuthErrorCode, str]] = {
    "invalid_credentials": (
        AuthErrorCode.INVALID_CREDENTIALS,
        "Incorrect email or password.",
    ),
    "invalid_grant": (
        AuthErrorCode.INVALID_CREDENTIALS,
        "Incorrect email or password.",
    ),
    "user_not_found": (
        AuthErrorCode.INVALID_CREDENTIALS,
        "Incorrect email or password.",
    ),
    "email_not_confirmed": (
        AuthErrorCode.INVALID_CREDENTIALS,
        "Please confirm your email address before signing in.",
    ),
    "user_already_exists": (
        AuthErrorCode.EMAIL_ALREADY_EXISTS,
        "An account with this email already exists. Try signing in.",
    ),
    "email_exists": (
        AuthErrorCode.EMAIL_ALREADY_EXISTS,
        "An account with this email already exists. Try signing in.",
    ),
}


# ---------------------------------------------------------------------------
# Provider session
# ---------------------------------------------------------------------------

def _read(source: Any, name: str) -> Any:
    """Read *name* from a provider object or a plain mapping."""
    if source is None:
        return None
    if isinstance(source, Mapping):
        return source.get(name)
    return getattr(source, name, None)


class ProviderSession(BaseModel):
    """Identity-provider session reduced to the fields this package uses.

    Attributes
    ----------
    subject_id:
        Stable subject identifier issued by the provider.
    email:
        Account email, when the provider exposes one.
    metadata:
        Free-form ``user_metadata``.  Only ``name`` and ``role`` are
        consumed, to seed profile defaults.
    created_at:
        Account creation timestamp.
    updated_at:
        Last account update timestamp, if known.
    access_token:
        Bearer token forwarded to the Profile Store when present.
    """

    subject_id: str
    email: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None
    access_token: Optional[str] = None

    model_config = {"from_attributes": True, "frozen": True}

    @classmethod
    def from_user(cls, user: Any, access_token: Optional[str] = None) -> "ProviderSession":
        """Build a session view from a provider ``user`` object or mapping."""
        fields: dict[str, Any] = {
            "subject_id": str(_read(user, "id")),
            "email": _read(user, "email") or None,
            "metadata": dict(_read(user, "user_metadata") or {}),
            "updated_at": _read(user, "updated_at"),
            "access_token": access_token,
        }
        created_at = _read(user, "created_at")
        if created_at is not None:
            fields["created_at"] = created_at
        return cls(**fields)

    @classmethod
    def from_supabase(cls, session: Any) -> Optional["ProviderSession"]:
        """Convert a provider session (``{user: {...}}``) into a ``ProviderSession``.

        Returns ``None`` when *session* is empty or carries no user.
        """
        user = _read(session, "user")
        if user is None or _read(user, "id") is None:
            return None
        return cls.from_user(user, access_token=_read(session, "access_token"))
