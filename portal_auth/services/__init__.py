"""
Business Logic Services Package.

Contains the provisioning and session-reconciliation services.  Services
depend on the Repository layer for Profile Store access and on the
identity adapter for provider sessions.

The ``create_auth_services()`` factory wires every collaborator together,
returning a typed dict that the application layer (request handlers /
views) can consume without knowing the internal dependency graph.
"""

from __future__ import annotations

from typing import Optional, TypedDict

from portal_auth.auth import CurrentUserCache
from portal_auth.config import AppConfig, get_config
from portal_auth.identity import IdentityProviderClient
from portal_auth.logger import get_logger
from portal_auth.repositories.profile_store import ProfileStoreClient
from portal_auth.services.provisioning import ProfileProvisioner
from portal_auth.services.session_reconciler import SessionReconciler

__all__ = [
    "AuthServiceContainer",
    "ProfileProvisioner",
    "SessionReconciler",
    "create_auth_services",
]


class AuthServiceContainer(TypedDict):
    """Typed container for the auth services and their collaborators."""

    identity: IdentityProviderClient
    profile_store: ProfileStoreClient
    cache: CurrentUserCache
    provisioner: ProfileProvisioner
    reconciler: SessionReconciler


def create_auth_services(config: Optional[AppConfig] = None) -> AuthServiceContainer:
    """
    Wire the identity adapter, Profile Store client and services together.

    This is the single composition root for the auth layer.  The
    application entry-point calls this once at startup, awaits
    ``reconciler.start()`` inside its event loop, and passes the returned
    dict to views / handlers as needed.

    Args:
        config: Application configuration; the cached singleton is used
            when omitted.

    Returns:
        AuthServiceContainer mapping names to fully-wired instances.
    """
    config = config or get_config()

    # ------------------------------------------------------------------
    # 1. Adapters (identity provider + data access)
    # ------------------------------------------------------------------
    identity = IdentityProviderClient(
        supabase_url=config.SUPABASE_URL,
        supabase_key=config.SUPABASE_ANON_KEY.get_secret_value(),
        logger=get_logger("portal_auth.identity"),
    )
    profile_store = ProfileStoreClient(
        base_url=config.PROFILE_STORE_URL,
        logger=get_logger("portal_auth.profile_store"),
        timeout_s=config.PROFILE_STORE_TIMEOUT_S,
        max_attempts=config.PROFILE_STORE_MAX_ATTEMPTS,
        backoff_base_s=config.PROFILE_STORE_BACKOFF_BASE_S,
    )

    # ------------------------------------------------------------------
    # 2. Services
    # ------------------------------------------------------------------
    logger = get_logger("portal_auth.services")
    cache = CurrentUserCache()
    provisioner = ProfileProvisioner(store=profile_store, logger=logger)
    reconciler = SessionReconciler(
        identity=identity,
        provisioner=provisioner,
        logger=logger,
        cache=cache,
        password_reset_url=config.password_reset_url,
    )

    return AuthServiceContainer(
        identity=identity,
        profile_store=profile_store,
        cache=cache,
        provisioner=provisioner,
        reconciler=reconciler,
    )
