"""
Profile Store Repository.

Handles all profile data access against the Profile Store HTTP API:

- ``GET  /profile/{subjectId}``  →  ``200 {user}`` | ``404`` | ``503``
- ``POST /create-profile``       →  ``200 {user}`` | ``409`` | ``503``

Responses are classified by status code into typed errors.  Every call
runs under a 10-second timeout and the repository retry policy; only
``503``/gateway failures and timeouts are retried.
"""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from portal_auth.errors import (
    PortalAuthError,
    ProfileConflictError,
    ProfileNotFoundError,
    ServiceUnavailableError,
    UnknownAuthError,
)
from portal_auth.models.user import AuthUser
from portal_auth.repositories.base_repository import BaseRepository

_TRANSIENT_STATUSES: frozenset[int] = frozenset({502, 503, 504})


class ProfileStoreClient(BaseRepository):
    """Data access layer for member profiles.

    No update or delete methods.  A profile is created at most once per
    subject id and is read-only from this package's point of view.
    """

    SERVICE_NAME = "Profile Store"

    async def fetch_profile(
        self,
        subject_id: str,
        access_token: Optional[str] = None,
    ) -> AuthUser:
        """Fetch the profile keyed by *subject_id*.

        Raises
        ------
        ProfileNotFoundError
            No profile exists (not retried).
        ServiceUnavailableError
            503/timeout on every attempt.
        UnknownAuthError
            Any other failure.
        """
        operation_name = f"fetch_profile({subject_id})"

        async def _fetch() -> AuthUser:
            response = await self._send(
                "GET",
                f"/profile/{quote(subject_id, safe='')}",
                operation_name=operation_name,
                access_token=access_token,
            )
            return self._parse_user(response, operation_name)

        return await self._execute_with_retry(_fetch, operation_name=operation_name)

    async def create_profile(
        self,
        subject_id: str,
        email: str,
        name: str,
        role: str,
        access_token: Optional[str] = None,
    ) -> AuthUser:
        """Create the profile row for *subject_id*.

        *role* is sent as given; validation of the value is the Profile
        Store's concern.

        Raises
        ------
        ProfileConflictError
            A row already exists (not retried).
        ServiceUnavailableError
            503/timeout on every attempt.
        UnknownAuthError
            Any other failure, including validation errors.
        """
        operation_name = f"create_profile({subject_id})"
        payload: dict[str, Any] = {
            "userId": subject_id,
            "email": email,
            "name": name,
            "role": role,
        }

        async def _create() -> AuthUser:
            response = await self._send(
                "POST",
                "/create-profile",
                operation_name=operation_name,
                json=payload,
                access_token=access_token,
            )
            return self._parse_user(response, operation_name)

        user = await self._execute_with_retry(_create, operation_name=operation_name)
        self._logger.info(
            "Profile created: %s (role: %s)", user.id, user.role,
            extra={"event": "PROFILE_CREATED", "user_id": user.id},
        )
        return user

    # ------------------------------------------------------------------
    # Response classification
    # ------------------------------------------------------------------

    def _parse_user(self, response: httpx.Response, operation_name: str) -> AuthUser:
        """Turn a Profile Store response into an ``AuthUser`` or a typed error."""
        status = response.status_code

        if response.is_success:
            try:
                payload = response.json()
            except ValueError as exc:
                raise UnknownAuthError(
                    f"{operation_name}: response body is not JSON.", cause=exc,
                ) from exc

            user_data = payload.get("user") if isinstance(payload, dict) else None
            if not user_data:
                raise UnknownAuthError(f"{operation_name}: response has no user.")

            try:
                return AuthUser.model_validate(user_data)
            except ValidationError as exc:
                raise UnknownAuthError(
                    f"{operation_name}: malformed user payload.", cause=exc,
                ) from exc

        error = self._error_for_status(status, operation_name, self._error_detail(response))
        self._logger.debug(
            "%s returned HTTP %d", operation_name, status,
            extra={"event": "PROFILE_STORE_ERROR", "status": status},
        )
        raise error

    @staticmethod
    def _error_for_status(status: int, operation_name: str, detail: str) -> PortalAuthError:
        message = f"{operation_name}: HTTP {status}{f' - {detail}' if detail else ''}"
        if status == 404:
            return ProfileNotFoundError(message)
        if status == 409:
            return ProfileConflictError(message)
        if status in _TRANSIENT_STATUSES:
            return ServiceUnavailableError(message)
        return UnknownAuthError(message)

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        """Best-effort ``error``/``details`` text from an error body."""
        try:
            body = response.json()
        except ValueError:
            return response.text[:500].strip()
        if not isinstance(body, dict):
            return ""
        parts = [str(body[key]) for key in ("error", "details") if body.get(key)]
        return ": ".join(parts)
