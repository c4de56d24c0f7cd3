"""
Identity Provider Adapter.

Wraps the Supabase async auth API behind a narrow, typed surface:
sign-in, sign-up, sign-out, session query, password reset, password
update and auth-state notifications.  Provider objects never leave this
module; callers receive ``ProviderSession`` models and typed errors.

When ``supabase_url`` or ``supabase_key`` is missing (or the URL is not
an http(s) URL) the client is **not** created and every operation raises
``NotConfiguredError`` before attempting any network I/O.

Usage (dependency injection at app startup)::

    from portal_auth.identity import IdentityProviderClient
    from portal_auth.logger import StructuredLogger

    identity = IdentityProviderClient(
        supabase_url=config.SUPABASE_URL,
        supabase_key=config.SUPABASE_ANON_KEY.get_secret_value(),
        logger=StructuredLogger(name="portal_auth.identity"),
    )
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

import httpx
from supabase import AsyncClient, AuthError, acreate_client

from portal_auth.config import is_valid_http_url
from portal_auth.errors import (
    InvalidCredentialsError,
    NotConfiguredError,
    PortalAuthError,
    ProviderError,
    RegistrationError,
    ServiceUnavailableError,
)
from portal_auth.logger import StructuredLogger
from portal_auth.models.auth_models import (
    SUPABASE_ERROR_MAP,
    AuthErrorCode,
    ProviderSession,
)
from portal_auth.models.enums import SessionEvent

SessionListener = Callable[[SessionEvent, Optional[ProviderSession]], None]
ClientFactory = Callable[[str, str], Awaitable[AsyncClient]]
Unsubscribe = Callable[[], None]

# Provider statuses that indicate a gateway / connectivity problem.
# ``0`` is what the auth client reports when the request never completed.
_TRANSIENT_STATUSES: frozenset[int] = frozenset({0, 502, 503, 504})

_SESSION_EVENTS_WITH_USER: frozenset[SessionEvent] = frozenset({
    SessionEvent.INITIAL_SESSION,
    SessionEvent.SIGNED_IN,
    SessionEvent.TOKEN_REFRESHED,
    SessionEvent.USER_UPDATED,
})


class IdentityProviderClient:
    """Thin adapter over the identity provider's session/credential API.

    Parameters
    ----------
    supabase_url:
        The Supabase project URL.  May be empty (not configured).
    supabase_key:
        The Supabase anonymous key.  May be empty (not configured).
    logger:
        Structured JSON logger.
    client:
        Pre-built async Supabase client.  When given, URL and key are
        not used to build one.
    client_factory:
        Coroutine used to build the client lazily on first use.
    """

    def __init__(
        self,
        supabase_url: str,
        supabase_key: str,
        logger: StructuredLogger,
        client: Optional[AsyncClient] = None,
        client_factory: ClientFactory = acreate_client,
    ) -> None:
        self._logger: StructuredLogger = logger
        self._url: str = supabase_url.strip()
        self._key: str = supabase_key.strip()
        self._client: Optional[AsyncClient] = client
        self._client_factory: ClientFactory = client_factory
        self._client_lock: asyncio.Lock = asyncio.Lock()
        self._locally_signed_out: bool = False
        self._last_token: Optional[str] = None
        self._revoked_token: Optional[str] = None

        self._configured: bool = client is not None or (
            is_valid_http_url(self._url) and bool(self._key)
        )
        if not self._configured:
            self._logger.warning(
                "Identity provider credentials not configured; auth calls will fail fast."
            )

    # ------------------------------------------------------------------
    # Public properties
    # ------------------------------------------------------------------

    @property
    def is_configured(self) -> bool:
        """``True`` when a provider client exists or can be built."""
        return self._configured

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def sign_in_with_password(self, email: str, password: str) -> ProviderSession:
        """Authenticate with email and password.

        Raises
        ------
        InvalidCredentialsError
            Wrong email/password (or unconfirmed email).
        ServiceUnavailableError
            The provider could not be reached.
        ProviderError
            Any other provider failure.
        """
        auth = await self._auth()
        try:
            response = await auth.sign_in_with_password({
                "email": email,
                "password": password,
            })
        except Exception as exc:
            raise self._classify_error(exc, "sign_in", ProviderError) from exc

        session = ProviderSession.from_supabase(getattr(response, "session", None))
        if session is None:
            raise ProviderError("Sign-in returned no session.")

        self._locally_signed_out = False
        self._last_token = session.access_token
        self._logger.debug("Provider sign-in succeeded for %s.", session.subject_id)
        return session

    async def sign_up(
        self,
        email: str,
        password: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ProviderSession:
        """Create a provider account carrying *metadata* as ``user_metadata``.

        When the provider requires email confirmation it returns a user
        without a session; the returned ``ProviderSession`` then has no
        access token.
        """
        auth = await self._auth()
        try:
            response = await auth.sign_up({
                "email": email,
                "password": password,
                "options": {"data": dict(metadata or {})},
            })
        except Exception as exc:
            raise self._classify_error(exc, "sign_up", RegistrationError) from exc

        session = ProviderSession.from_supabase(getattr(response, "session", None))
        if session is None:
            user = getattr(response, "user", None)
            if user is None:
                raise RegistrationError("Sign-up returned no user.")
            session = ProviderSession.from_user(user)

        self._locally_signed_out = False
        self._last_token = session.access_token
        return session

    async def sign_out(self) -> None:
        """Revoke the provider session, best effort.

        A remote failure is logged and swallowed; the local session is
        treated as cleared either way, so ``get_session()`` stops
        returning the revoked session.
        """
        auth = await self._auth()
        try:
            await auth.sign_out()
        except Exception as exc:
            self._logger.warning(
                "Server-side sign_out failed: %s", exc,
                extra={"event": "SIGN_OUT_FAILED"},
            )
        finally:
            self._locally_signed_out = True
            self._revoked_token = self._last_token

    async def get_session(self) -> Optional[ProviderSession]:
        """Return the current provider session, or ``None`` when signed out.

        After ``sign_out()`` the provider may still hold the revoked
        session (e.g. the remote call failed); that session is hidden.
        A session with a different access token, such as one restored by
        another tab, is returned and ends the local sign-out, so callers
        that never registered a listener still see it.
        """
        auth = await self._auth()
        try:
            raw_session = await auth.get_session()
        except Exception as exc:
            raise self._classify_error(exc, "get_session", ProviderError) from exc

        session = ProviderSession.from_supabase(raw_session)
        if self._locally_signed_out:
            if (
                session is None
                or session.access_token is None
                or session.access_token == self._revoked_token
            ):
                return None
            self._logger.debug(
                "New provider session for %s found after local sign-out.",
                session.subject_id,
            )
            self._locally_signed_out = False
        if session is not None:
            self._last_token = session.access_token
        return session

    async def reset_password_for_email(self, email: str, redirect_url: str) -> None:
        """Send a password-reset email whose link lands on *redirect_url*."""
        auth = await self._auth()
        try:
            await auth.reset_password_for_email(email, {"redirect_to": redirect_url})
        except Exception as exc:
            raise self._classify_error(exc, "reset_password", ProviderError) from exc

    async def update_password(self, new_password: str) -> None:
        """Change the password of the signed-in account."""
        auth = await self._auth()
        try:
            await auth.update_user({"password": new_password})
        except Exception as exc:
            raise self._classify_error(exc, "update_password", ProviderError) from exc

    # ------------------------------------------------------------------
    # Auth-state notifications
    # ------------------------------------------------------------------

    async def on_session_change(self, callback: SessionListener) -> Unsubscribe:
        """Register *callback* for provider auth-state events.

        The callback receives ``(SessionEvent, ProviderSession | None)``.
        Events the package does not model are dropped.  Exceptions raised
        by *callback* are logged and never reach the provider's dispatch
        loop.

        Returns
        -------
        Callable[[], None]
            Unsubscribe handle.
        """
        auth = await self._auth()

        def _dispatch(event: Any, raw_session: Any) -> None:
            try:
                session_event = SessionEvent(str(event))
            except ValueError:
                self._logger.debug("Ignoring unsupported auth event %s.", event)
                return

            try:
                session = ProviderSession.from_supabase(raw_session)
                if session_event in _SESSION_EVENTS_WITH_USER and session is not None:
                    self._locally_signed_out = False
                    self._last_token = session.access_token
                elif session_event == SessionEvent.SIGNED_OUT:
                    self._locally_signed_out = True
                    self._revoked_token = self._last_token
                callback(session_event, session)
            except Exception as exc:
                self._logger.error(
                    "Auth-state listener failed on %s: %s", session_event, exc,
                    exc_info=True,
                )

        subscription = auth.on_auth_state_change(_dispatch)

        def _unsubscribe() -> None:
            try:
                subscription.unsubscribe()
            except Exception as exc:
                self._logger.warning("Failed to unsubscribe auth listener: %s", exc)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _auth(self) -> Any:
        """Return the provider's auth API, building the client on first use.

        Raises
        ------
        NotConfiguredError
            If credentials are missing or the client cannot be built.
        """
        if not self._configured:
            raise NotConfiguredError(
                "Identity provider is not configured. "
                "Set SUPABASE_URL and SUPABASE_ANON_KEY."
            )
        if self._client is None:
            async with self._client_lock:
                if self._client is None:
                    try:
                        self._client = await self._client_factory(self._url, self._key)
                        self._logger.info("Supabase client initialized.")
                    except Exception as exc:
                        self._logger.error(
                            "Supabase client initialization failed: %s", exc,
                            exc_info=True,
                        )
                        raise NotConfiguredError(
                            f"Identity provider client could not be created: {exc}",
                            cause=exc,
                        ) from exc
        return self._client.auth

    def _classify_error(
        self,
        exc: Exception,
        operation: str,
        fallback: type[PortalAuthError],
    ) -> PortalAuthError:
        """Map a provider or network exception to a typed error."""
        if isinstance(exc, (httpx.TransportError, TimeoutError, ConnectionError)):
            self._logger.warning(
                "Network error during %s: %s", operation, exc,
                extra={"event": "PROVIDER_UNAVAILABLE", "operation": operation},
            )
            return ServiceUnavailableError(
                f"Identity provider unreachable during {operation}.", cause=exc,
            )

        if isinstance(exc, AuthError):
            error_code: Optional[str] = getattr(exc, "code", None)
            status: Optional[int] = getattr(exc, "status", None)

            if error_code in SUPABASE_ERROR_MAP:
                mapped_code, human_message = SUPABASE_ERROR_MAP[error_code]
                self._logger.warning(
                    "Auth error (%s) during %s: %s", error_code, operation, exc,
                    extra={"event": "PROVIDER_ERROR", "error_code": error_code},
                )
                if mapped_code == AuthErrorCode.INVALID_CREDENTIALS:
                    return InvalidCredentialsError(
                        str(exc), cause=exc, user_message=human_message,
                    )
                return RegistrationError(
                    str(exc), cause=exc, user_message=human_message, code=mapped_code,
                )

            if status in _TRANSIENT_STATUSES:
                return ServiceUnavailableError(
                    f"Identity provider unavailable during {operation}.", cause=exc,
                )

            # Older auth servers report bad credentials as a bare 400.
            if operation == "sign_in" and status == 400:
                return InvalidCredentialsError(str(exc), cause=exc)

        self._logger.warning(
            "Unclassified provider error during %s: %s", operation, exc,
            extra={"event": "PROVIDER_ERROR", "error_code": "unknown"},
        )
        return fallback(f"{operation} failed: {exc}", cause=exc)
