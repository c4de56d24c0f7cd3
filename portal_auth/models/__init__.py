from __future__ import annotations

"""
Data Models Package.

Re-exports all Pydantic models for convenient imports:
    from portal_auth.models import AuthUser, ProviderSession, UserRole
"""

from portal_auth.models.auth_models import AuthErrorCode, ProviderSession
from portal_auth.models.enums import ReconcilerState, SessionEvent, UserRole
from portal_auth.models.user import AuthUser

__all__ = [
    "AuthErrorCode",
    "AuthUser",
    "ProviderSession",
    "ReconcilerState",
    "SessionEvent",
    "UserRole",
]
