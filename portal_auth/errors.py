"""
Typed Error Taxonomy.

Every failure raised by this package is a ``PortalAuthError`` carrying a
structured ``AuthErrorCode``, a ``transient`` flag and the underlying
cause.  Callers branch on the class or the code, never on message text.

Transient errors (``ServiceUnavailableError``) are the only ones a retry
loop may re-attempt; ``ProfileResolutionError`` mirrors the transience of
the error it wraps so the classification survives end-to-end.
"""

from __future__ import annotations

from typing import Optional

from portal_auth.models.auth_models import AuthErrorCode

__all__ = [
    "PortalAuthError",
    "NotConfiguredError",
    "InvalidCredentialsError",
    "RegistrationError",
    "ProviderError",
    "ProfileNotFoundError",
    "ProfileConflictError",
    "ServiceUnavailableError",
    "UnknownAuthError",
    "ProfileResolutionError",
    "SignedOutError",
    "is_transient",
]


class PortalAuthError(Exception):
    """Base exception for the auth session and provisioning flow."""

    code: AuthErrorCode = AuthErrorCode.UNKNOWN_ERROR
    transient: bool = False
    default_user_message: str = "An unexpected error occurred. Please try again later."

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        user_message: Optional[str] = None,
    ) -> None:
        self.message: str = message
        self.cause: Optional[BaseException] = cause
        self.user_message: str = user_message or self.default_user_message
        super().__init__(self.message)
        if cause is not None:
            self.__cause__ = cause

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!s}, message={self.message!r})"


class NotConfiguredError(PortalAuthError):
    """The identity provider has no URL/key; no I/O was attempted."""

    code = AuthErrorCode.NOT_CONFIGURED
    default_user_message = "Authentication is not configured. Set the environment variables."


class InvalidCredentialsError(PortalAuthError):
    """Wrong email or password."""

    code = AuthErrorCode.INVALID_CREDENTIALS
    default_user_message = "Incorrect email or password."


class RegistrationError(PortalAuthError):
    """Sign-up was rejected by the identity provider."""

    code = AuthErrorCode.REGISTRATION_FAILED
    default_user_message = "Registration could not be completed. Please try again later."

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        user_message: Optional[str] = None,
        code: Optional[AuthErrorCode] = None,
    ) -> None:
        super().__init__(message, cause=cause, user_message=user_message)
        if code is not None:
            self.code = code


class ProviderError(PortalAuthError):
    """Any other identity-provider failure."""

    code = AuthErrorCode.PROVIDER_ERROR


class ProfileNotFoundError(PortalAuthError):
    """The Profile Store has no row for the subject id."""

    code = AuthErrorCode.NOT_FOUND
    default_user_message = "User profile not found."


class ProfileConflictError(PortalAuthError):
    """A profile row for the subject id already exists."""

    code = AuthErrorCode.CONFLICT
    default_user_message = "This user is already registered."


class ServiceUnavailableError(PortalAuthError):
    """Transient backend or connectivity failure, including timeouts."""

    code = AuthErrorCode.UNAVAILABLE
    transient = True
    default_user_message = "The service is temporarily unavailable. Please try again later."


class UnknownAuthError(PortalAuthError):
    """Unclassified failure; ``cause`` holds the original error."""

    code = AuthErrorCode.UNKNOWN_ERROR


class ProfileResolutionError(PortalAuthError):
    """Credentials were valid but the profile could not be resolved."""

    code = AuthErrorCode.PROFILE_RESOLUTION_FAILED
    default_user_message = (
        "Sign-in succeeded but your profile could not be loaded. Please try again later."
    )

    def __init__(self, message: str, cause: PortalAuthError) -> None:
        super().__init__(message, cause=cause)
        self.transient = cause.transient


class SignedOutError(PortalAuthError):
    """A sign-out landed while credentials were still being resolved."""

    code = AuthErrorCode.SIGNED_OUT
    default_user_message = "You were signed out before sign-in completed."


def is_transient(exc: BaseException) -> bool:
    """Return ``True`` when *exc* is worth retrying."""
    return isinstance(exc, PortalAuthError) and exc.transient
