"""
Just-in-Time Profile Provisioning Service.

Guarantees that an authenticated identity has exactly one Profile Store
row, creating it lazily on first sight.

Provisioning strategy:
    - Fetch the profile by the provider subject id.
    - On 404, seed ``name``/``role`` from provider metadata and create it.
    - On 409 (another caller won the creation race), re-fetch once and
      converge on the winner's row.
    - On 503/timeout, surface ``ServiceUnavailableError`` without
      creating anything: presence of the row cannot be determined.

Architectural notes:
    - All HTTP access goes through ``ProfileStoreClient``.
    - The conflict path never loops: a failed re-fetch escalates.
"""

from __future__ import annotations

from typing import Any, Optional

from portal_auth.errors import (
    PortalAuthError,
    ProfileConflictError,
    ProfileNotFoundError,
    ServiceUnavailableError,
    UnknownAuthError,
)
from portal_auth.logger import StructuredLogger
from portal_auth.models.auth_models import ProviderSession
from portal_auth.models.enums import UserRole
from portal_auth.models.user import AuthUser
from portal_auth.repositories.profile_store import ProfileStoreClient
from portal_auth.services.base_service import BaseService
from portal_auth.utils.audit import AuditAction, log_audit_event

DEFAULT_PROFILE_NAME: str = "User"


def derive_profile_name(metadata: dict[str, Any], email: Optional[str]) -> str:
    """Display name: metadata ``name``, else email local part, else ``"User"``."""
    name = metadata.get("name")
    if isinstance(name, str) and name.strip():
        return name.strip()
    if email:
        local_part = email.split("@", 1)[0].strip()
        if local_part:
            return local_part
    return DEFAULT_PROFILE_NAME


def derive_profile_role(metadata: dict[str, Any]) -> str:
    """Role: metadata ``role`` case-folded, else ``member``.

    Unknown values are passed through; the Profile Store rejects them.
    """
    role = metadata.get("role")
    if isinstance(role, str) and role.strip():
        return role.strip().lower()
    return str(UserRole.MEMBER)


class ProfileProvisioner(BaseService):
    """Materialises the Profile Store row for an authenticated session.

    Safe to call concurrently for the same subject id, from this process
    or others: at most one ``create_profile`` succeeds and every caller
    resolves to that row.
    """

    def __init__(
        self,
        store: ProfileStoreClient,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._store = store

    async def ensure_profile(
        self,
        session: ProviderSession,
        fallback_email: Optional[str] = None,
    ) -> AuthUser:
        """Return the profile for *session*, creating it when absent.

        Args:
            session: Provider session of the authenticated identity.
            fallback_email: Email to use when the session carries none
                (e.g. the address typed at login).

        Returns:
            The stored ``AuthUser``.

        Raises:
            ServiceUnavailableError: The Profile Store stayed unreachable.
            UnknownAuthError: Any other failure, with ``cause`` attached.
        """
        try:
            return await self._resolve(session, fallback_email)
        except PortalAuthError:
            raise
        except Exception as exc:
            self._logger.error(
                "Provisioning: Unexpected error for %s: %s",
                session.subject_id,
                exc,
                exc_info=True,
            )
            raise UnknownAuthError(
                f"Unexpected error during profile provisioning: {exc}",
                cause=exc,
            ) from exc

    # ------------------------------------------------------------------
    # Private implementation
    # ------------------------------------------------------------------

    async def _resolve(
        self,
        session: ProviderSession,
        fallback_email: Optional[str],
    ) -> AuthUser:
        try:
            return await self._store.fetch_profile(
                session.subject_id, access_token=session.access_token,
            )
        except ProfileNotFoundError:
            self._logger.info(
                "Provisioning: No profile for %s, creating one.", session.subject_id,
            )

        return await self._provision_new_profile(session, fallback_email)

    async def _provision_new_profile(
        self,
        session: ProviderSession,
        fallback_email: Optional[str],
    ) -> AuthUser:
        """Create the row, converging on the existing one after a 409."""
        email: str = session.email or fallback_email or ""
        name = derive_profile_name(session.metadata, email)
        role = derive_profile_role(session.metadata)

        try:
            created = await self._store.create_profile(
                session.subject_id,
                email,
                name,
                role,
                access_token=session.access_token,
            )
        except ProfileConflictError as exc:
            self._logger.warning(
                "Provisioning: Creation race detected for %s. Retrying lookup.",
                session.subject_id,
            )
            return await self._refetch_after_conflict(session, exc)

        log_audit_event(
            logger=self._logger,
            action=AuditAction.PROFILE_CREATE,
            entity_type="Profile",
            entity_id=created.id,
            user_id=created.id,
            details={"email": created.email, "name": created.name, "role": str(created.role)},
        )
        return created

    async def _refetch_after_conflict(
        self,
        session: ProviderSession,
        conflict: ProfileConflictError,
    ) -> AuthUser:
        """Single re-read after losing the creation race."""
        try:
            existing = await self._store.fetch_profile(
                session.subject_id, access_token=session.access_token,
            )
        except ServiceUnavailableError:
            raise
        except PortalAuthError as exc:
            raise UnknownAuthError(
                f"Profile for {session.subject_id} could not be resolved "
                f"after a creation conflict ({conflict.message}).",
                cause=exc,
            ) from exc

        self._logger.info(
            "Provisioning: Profile %s found on retry after creation race.",
            session.subject_id,
        )
        return existing
