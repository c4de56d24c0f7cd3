"""
Session Reconciler.

Single orchestrator for the authenticated-user view: login, cold-start
session check, logout, registration, password reset and the
asynchronous auth-state listener.

Sits between callers (UI, request handlers) and the identity provider /
provisioning layer, and owns the ``CurrentUserCache`` that every read
consults before doing network work.

State machine::

    UNAUTHENTICATED --login/session--> RESOLVING --ok--> AUTHENTICATED
                                           |
                                           +--profile failure--> ERROR

``logout()`` and ``SIGNED_OUT`` return to UNAUTHENTICATED from any state
and invalidate every resolution still in flight, whichever path started it.

Failure policy:
    - ``login()`` and ``get_current_user()`` propagate typed errors so the
      caller can tell "check your password" from "try again later".
    - The auth-state listener never raises; a failed resolution clears
      the cache and notifies subscribers with ``None``.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Iterable, Optional

from portal_auth.auth import CurrentUserCache
from portal_auth.errors import PortalAuthError, ProfileResolutionError, SignedOutError
from portal_auth.identity import IdentityProviderClient, Unsubscribe
from portal_auth.logger import StructuredLogger
from portal_auth.models.auth_models import ProviderSession
from portal_auth.models.enums import ReconcilerState, SessionEvent, UserRole
from portal_auth.models.user import AuthUser
from portal_auth.services.base_service import BaseService
from portal_auth.services.provisioning import ProfileProvisioner
from portal_auth.utils.audit import AuditAction, log_audit_event

Subscriber = Callable[[Optional[AuthUser]], None]
PostResolutionHook = Callable[[AuthUser], Awaitable[None]]

_RESOLVING_EVENTS: frozenset[SessionEvent] = frozenset({
    SessionEvent.INITIAL_SESSION,
    SessionEvent.SIGNED_IN,
    SessionEvent.TOKEN_REFRESHED,
    SessionEvent.USER_UPDATED,
})

_FP_ROLES: tuple[UserRole, ...] = (UserRole.FP, UserRole.MANAGER, UserRole.ADMIN)
_MANAGER_ROLES: tuple[UserRole, ...] = (UserRole.MANAGER, UserRole.ADMIN)


class SessionReconciler(BaseService):
    """Produces the single authoritative ``AuthUser`` for this process.

    Construct one instance at application start and inject it wherever
    the current user is needed.

    Parameters
    ----------
    identity:
        Identity-provider adapter.
    provisioner:
        Fetch-or-create profile service.
    logger:
        Structured JSON logger.
    cache:
        Current-user slot; a fresh one is created when omitted.
    password_reset_url:
        Redirect target embedded in password-reset emails.
    post_resolution_hooks:
        Best-effort coroutines run after a login/registration resolves.
    record_login_audit:
        Register the built-in hook that writes a ``LOGIN`` audit event.
    """

    def __init__(
        self,
        identity: IdentityProviderClient,
        provisioner: ProfileProvisioner,
        logger: StructuredLogger,
        cache: Optional[CurrentUserCache] = None,
        password_reset_url: str = "http://localhost:3000/reset-password",
        post_resolution_hooks: Optional[Iterable[PostResolutionHook]] = None,
        record_login_audit: bool = True,
    ) -> None:
        super().__init__(logger)
        self._identity: IdentityProviderClient = identity
        self._provisioner: ProfileProvisioner = provisioner
        self._cache: CurrentUserCache = cache if cache is not None else CurrentUserCache()
        self._password_reset_url: str = password_reset_url

        self._state: ReconcilerState = ReconcilerState.UNAUTHENTICATED
        self._subscribers: list[Subscriber] = []
        self._hooks: list[PostResolutionHook] = []
        self._provider_unsubscribe: Optional[Unsubscribe] = None
        self._pending: set[asyncio.Task[None]] = set()
        # Bumped on every sign-out; any resolution started under an older
        # epoch must not write to the cache.
        self._epoch: int = 0

        if record_login_audit:
            self._hooks.append(self._record_login)
        self._hooks.extend(post_resolution_hooks or ())

    # ==================================================================
    # Read-only views
    # ==================================================================

    @property
    def state(self) -> ReconcilerState:
        return self._state

    @property
    def cache(self) -> CurrentUserCache:
        return self._cache

    @property
    def current_user(self) -> Optional[AuthUser]:
        """Cached user without any I/O (``None`` on a miss)."""
        return self._cache.get()

    @property
    def is_authenticated(self) -> bool:
        return self._cache.is_populated

    @staticmethod
    def normalize_email(email: str) -> str:
        """Normalise an email address: strip whitespace and lowercase."""
        return email.strip().lower()

    # ==================================================================
    # Login / session check / logout
    # ==================================================================

    async def login(self, email: str, password: str) -> AuthUser:
        """Authenticate, then resolve (or provision) the profile.

        Raises
        ------
        NotConfiguredError
            The identity provider is not configured.
        InvalidCredentialsError
            Wrong email or password.
        ProfileResolutionError
            Credentials were valid but the profile could not be resolved;
            ``cause`` holds the ``ServiceUnavailableError`` or
            ``UnknownAuthError`` and ``transient`` mirrors it.
        SignedOutError
            ``logout()`` or ``SIGNED_OUT`` arrived before the profile resolved.
        """
        email = self.normalize_email(email)
        epoch = self._epoch
        self._state = ReconcilerState.RESOLVING

        try:
            session = await self._identity.sign_in_with_password(email, password)
        except PortalAuthError as exc:
            self._restore_state()
            self._logger.warning(
                "Login failed for %s: %s", email, exc.code,
                extra={"event": "LOGIN_FAILED", "error_code": str(exc.code)},
            )
            raise

        user = await self._resolve_after_credentials(
            session, email, epoch, operation="login",
        )

        self._logger.info(
            "User authenticated: %s (role: %s)",
            user.name,
            user.role,
            extra={"event": "LOGIN", "email": user.email, "user_id": user.id},
        )
        return user

    async def get_current_user(self) -> Optional[AuthUser]:
        """Return the current user, resolving it on a cache miss.

        A populated cache is returned without any network call.  Without
        a provider session the result is ``None`` (not an error).  A
        sign-out that lands while the profile is being resolved wins: the
        resolved user is dropped and whatever the cache holds afterwards
        is returned.

        Raises
        ------
        PortalAuthError
            Provider or profile failures; the cache is invalidated first.
        """
        cached = self._cache.get()
        if cached is not None:
            return cached

        epoch = self._epoch
        session = await self._identity.get_session()
        if epoch != self._epoch:
            self._restore_state()
            return self._cache.get()
        if session is None:
            self._state = ReconcilerState.UNAUTHENTICATED
            return None

        self._state = ReconcilerState.RESOLVING
        try:
            user = await self._provisioner.ensure_profile(session)
        except PortalAuthError as exc:
            if epoch != self._epoch:
                self._restore_state()
                return self._cache.get()
            self._cache.clear()
            self._state = ReconcilerState.ERROR
            self._logger.warning(
                "Session check could not resolve profile for %s: %s",
                session.subject_id,
                exc,
                extra={"event": "SESSION_RESOLUTION_FAILED", "error_code": str(exc.code)},
            )
            raise

        if epoch != self._epoch:
            self._discard_stale(session, "session check")
            return self._cache.get()

        self._adopt(user)
        return user

    async def logout(self) -> None:
        """Sign out and clear local state, even if the remote call fails."""
        user = self._cache.get()
        try:
            await self._identity.sign_out()
        except PortalAuthError as exc:
            self._logger.warning("Provider sign-out skipped: %s", exc)
        finally:
            self._epoch += 1
            self._cache.clear()
            self._state = ReconcilerState.UNAUTHENTICATED

        if user is None:
            self._logger.info("Logout with no cached user.", extra={"event": "LOGOUT"})
            return
        log_audit_event(
            logger=self._logger,
            action=AuditAction.LOGOUT,
            entity_type="Profile",
            entity_id=user.id,
            user_id=user.id,
            details={"email": user.email},
        )

    # ==================================================================
    # Registration / password management
    # ==================================================================

    async def register(self, email: str, password: str, name: str) -> AuthUser:
        """Create a provider account and its member profile.

        The provider metadata carries ``name`` and role ``MEMBER``, which
        the provisioner case-folds to ``member``.

        Raises
        ------
        RegistrationError
            The provider rejected the sign-up (e.g. email already used).
        ProfileResolutionError
            The account exists but its profile could not be created.
        """
        email = self.normalize_email(email)
        epoch = self._epoch
        self._state = ReconcilerState.RESOLVING
        try:
            session = await self._identity.sign_up(
                email, password, {"name": name.strip(), "role": "MEMBER"},
            )
        except PortalAuthError:
            self._restore_state()
            raise

        user = await self._resolve_after_credentials(
            session, email, epoch, operation="register",
        )
        self._logger.info(
            "User registered: %s (%s).", user.name, user.email,
            extra={"event": "REGISTER", "user_id": user.id},
        )
        return user

    async def request_password_reset(self, email: str) -> None:
        """Send a reset link pointing at the configured reset page."""
        email = self.normalize_email(email)
        await self._identity.reset_password_for_email(email, self._password_reset_url)
        self._logger.info(
            "Password reset requested for %s.", email,
            extra={"event": "PASSWORD_RESET_REQUESTED"},
        )

    async def update_password(self, new_password: str) -> None:
        """Change the signed-in account's password."""
        await self._identity.update_password(new_password)
        self._logger.info("Password updated.", extra={"event": "PASSWORD_UPDATED"})

    # ==================================================================
    # Auth-state listener & subscribers
    # ==================================================================

    async def start(self) -> None:
        """Begin listening to provider auth-state events (idempotent)."""
        if self._provider_unsubscribe is not None:
            return
        self._provider_unsubscribe = await self._identity.on_session_change(
            self._on_session_change,
        )
        self._logger.debug("Auth-state listener registered.")

    async def stop(self) -> None:
        """Stop listening and cancel in-flight event resolutions."""
        if self._provider_unsubscribe is not None:
            self._provider_unsubscribe()
            self._provider_unsubscribe = None

        pending = list(self._pending)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def wait_idle(self) -> None:
        """Wait until every scheduled event resolution has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register *callback* for user changes; returns an unsubscribe handle."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def add_post_resolution_hook(self, hook: PostResolutionHook) -> None:
        """Run *hook* after each login/registration; failures are only logged."""
        self._hooks.append(hook)

    def reset(self) -> None:
        """Forget the cached user, subscribers and state."""
        self._epoch += 1
        self._cache.clear()
        self._subscribers.clear()
        self._state = ReconcilerState.UNAUTHENTICATED

    # ==================================================================
    # Coarse role checks
    # ==================================================================

    def has_role(self, role: str) -> bool:
        user = self._cache.get()
        return user is not None and user.role == role.strip().lower()

    def has_any_role(self, roles: Iterable[str]) -> bool:
        user = self._cache.get()
        if user is None:
            return False
        return user.role in {role.strip().lower() for role in roles}

    def can_access_fp_content(self) -> bool:
        return self.has_any_role(_FP_ROLES)

    def can_access_manager_content(self) -> bool:
        return self.has_any_role(_MANAGER_ROLES)

    def can_access_admin_content(self) -> bool:
        return self.has_role(UserRole.ADMIN)

    # ==================================================================
    # Private helpers
    # ==================================================================

    def _adopt(self, user: AuthUser) -> None:
        self._cache.set(user)
        self._state = ReconcilerState.AUTHENTICATED

    def _restore_state(self) -> None:
        """Leave RESOLVING according to whether a user is cached."""
        self._state = (
            ReconcilerState.AUTHENTICATED
            if self._cache.is_populated
            else ReconcilerState.UNAUTHENTICATED
        )

    async def _resolve_after_credentials(
        self,
        session: ProviderSession,
        email: str,
        epoch: int,
        *,
        operation: str,
    ) -> AuthUser:
        """Provision the profile for freshly issued credentials.

        *epoch* is the sign-out counter captured before the credentials
        call; if it moved, the result is dropped and ``SignedOutError``
        raised without touching the cache or running hooks.
        """
        try:
            user = await self._provisioner.ensure_profile(session, fallback_email=email)
        except PortalAuthError as exc:
            if epoch != self._epoch:
                self._restore_state()
                raise SignedOutError(
                    f"Signed out while {operation} was resolving the profile.",
                    cause=exc,
                ) from exc
            self._cache.clear()
            self._state = ReconcilerState.ERROR
            self._logger.error(
                "%s succeeded but profile resolution failed for %s: %s",
                operation,
                session.subject_id,
                exc,
                extra={"event": "PROFILE_RESOLUTION_FAILED", "error_code": str(exc.code)},
            )
            raise ProfileResolutionError(
                f"{operation} succeeded but the user profile could not be resolved: "
                f"{exc.message}",
                cause=exc,
            ) from exc

        if epoch != self._epoch:
            self._discard_stale(session, operation)
            raise SignedOutError(f"Signed out while {operation} was resolving the profile.")

        self._adopt(user)
        await self._run_post_resolution_hooks(user)
        return user

    def _discard_stale(self, session: ProviderSession, operation: str) -> None:
        self._logger.info(
            "Discarding %s result for %s: signed out meanwhile.",
            operation,
            session.subject_id,
            extra={"event": "STALE_RESOLUTION_DISCARDED", "operation": operation},
        )
        self._restore_state()

    async def _run_post_resolution_hooks(self, user: AuthUser) -> None:
        for hook in list(self._hooks):
            try:
                await hook(user)
            except Exception as exc:
                self._logger.warning(
                    "Post-resolution hook %s failed for %s: %s",
                    getattr(hook, "__name__", repr(hook)),
                    user.id,
                    exc,
                    exc_info=True,
                )

    async def _record_login(self, user: AuthUser) -> None:
        log_audit_event(
            logger=self._logger,
            action=AuditAction.LOGIN,
            entity_type="Profile",
            entity_id=user.id,
            user_id=user.id,
            details={"email": user.email, "role": str(user.role)},
        )

    def _on_session_change(
        self,
        event: SessionEvent,
        session: Optional[ProviderSession],
    ) -> None:
        """Provider callback; synchronous and must never raise."""
        try:
            if event == SessionEvent.SIGNED_OUT:
                self._epoch += 1
                self._cache.clear()
                self._state = ReconcilerState.UNAUTHENTICATED
                self._notify(None)
                return

            if event not in _RESOLVING_EVENTS or session is None:
                return

            loop = asyncio.get_running_loop()
            task = loop.create_task(self._resolve_from_event(event, session, self._epoch))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        except Exception as exc:
            self._logger.error(
                "Error handling auth-state event %s: %s", event, exc,
                exc_info=True,
            )

    async def _resolve_from_event(
        self,
        event: SessionEvent,
        session: ProviderSession,
        epoch: int,
    ) -> None:
        if epoch != self._epoch:
            return
        self._state = ReconcilerState.RESOLVING
        try:
            user = await self._provisioner.ensure_profile(session)
        except Exception as exc:
            if epoch != self._epoch:
                self._restore_state()
                return
            self._logger.warning(
                "Profile resolution failed on %s for %s: %s",
                event,
                session.subject_id,
                exc,
                extra={"event": "LISTENER_RESOLUTION_FAILED"},
            )
            self._cache.clear()
            self._state = ReconcilerState.ERROR
            self._notify(None)
            return

        if epoch != self._epoch:
            self._discard_stale(session, str(event))
            return

        self._adopt(user)
        self._notify(user)

    def _notify(self, user: Optional[AuthUser]) -> None:
        for callback in list(self._subscribers):
            try:
                callback(user)
            except Exception as exc:
                self._logger.error(
                    "Auth subscriber %r raised: %s", callback, exc,
                    exc_info=True,
                )
