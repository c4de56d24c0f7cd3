"""
Repository Layer Package.

Provides data-access abstractions over the Profile Store HTTP service.
All profile reads and writes flow through repositories; services never
issue HTTP requests directly.

Usage:
    from portal_auth.repositories.profile_store import ProfileStoreClient
"""

from portal_auth.repositories.base_repository import BaseRepository
from portal_auth.repositories.profile_store import ProfileStoreClient

__all__ = [
    "BaseRepository",
    "ProfileStoreClient",
]
