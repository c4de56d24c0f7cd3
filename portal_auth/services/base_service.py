"""
Base Service Class.

Shared constructor for the services that sit above the identity adapter
and the Profile Store client (``ProfileProvisioner`` and
``SessionReconciler``).  Both log through the ``portal_auth.services``
``StructuredLogger`` that ``create_auth_services`` injects.
"""

from __future__ import annotations

from portal_auth.logger import StructuredLogger


class BaseService:
    """Holds the injected logger for an auth service."""

    def __init__(self, logger: StructuredLogger) -> None:
        self._logger: StructuredLogger = logger
