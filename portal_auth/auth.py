"""
Current User Cache.

Provides an injectable ``CurrentUserCache`` that holds the last resolved
``AuthUser`` for the lifetime of the authenticated session.

Usage::

    from portal_auth.auth import CurrentUserCache
    from portal_auth.models.user import AuthUser

    cache = CurrentUserCache()
    cache.set(AuthUser(id="abc-123", email="user@example.com", name="Taro", role="member"))
    user = cache.get()
"""

from __future__ import annotations

from typing import Optional

from portal_auth.models.user import AuthUser


class CurrentUserCache:
    """Single-slot holder for the authenticated user.

    Each instance maintains its own slot, eliminating the need for
    module-level globals.  The ``SessionReconciler`` owns one instance and
    every read path consults it before doing network work.

    The slot is replaced by reference assignment only (``AuthUser`` is
    frozen), so a concurrent reader on the event loop observes either the
    previous user or the new one, never a partial update.
    """

    def __init__(self) -> None:
        self._current_user: Optional[AuthUser] = None

    def get(self) -> Optional[AuthUser]:
        """Return the cached user, or ``None`` on a miss."""
        return self._current_user

    def set(self, user: AuthUser) -> None:
        """Record *user* as the authenticated session user."""
        self._current_user = user

    def clear(self) -> None:
        """Drop the cached user, ending the session view."""
        self._current_user = None

    @property
    def is_populated(self) -> bool:
        """``True`` when a user is currently cached."""
        return self._current_user is not None
