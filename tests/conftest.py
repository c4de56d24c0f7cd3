"""Shared fixtures wiring the fakes into real services."""

from __future__ import annotations

from types import SimpleNamespace

import httpx
import pytest

from _helpers import PROFILE_STORE_URL, RESET_URL, FakeAuth, FakeProfileStore, SleepRecorder
from portal_auth.identity import IdentityProviderClient
from portal_auth.logger import StructuredLogger
from portal_auth.repositories.profile_store import ProfileStoreClient
from portal_auth.services.provisioning import ProfileProvisioner
from portal_auth.services.session_reconciler import SessionReconciler

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def logger() -> StructuredLogger:
    return StructuredLogger(name="tests.portal_auth")


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def profile_store() -> FakeProfileStore:
    return FakeProfileStore()


@pytest.fixture
async def http_client(profile_store: FakeProfileStore):
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(profile_store.handler),
        base_url=PROFILE_STORE_URL,
    )
    yield client
    await client.aclose()


@pytest.fixture
def store_client(logger, http_client, sleeper) -> ProfileStoreClient:
    return ProfileStoreClient(
        PROFILE_STORE_URL,
        logger,
        http_client=http_client,
        sleep=sleeper,
    )


@pytest.fixture
def provisioner(store_client, logger) -> ProfileProvisioner:
    return ProfileProvisioner(store=store_client, logger=logger)


@pytest.fixture
def fake_auth() -> FakeAuth:
    return FakeAuth()


@pytest.fixture
def identity(fake_auth: FakeAuth, logger) -> IdentityProviderClient:
    return IdentityProviderClient(
        supabase_url="",
        supabase_key="",
        logger=logger,
        client=SimpleNamespace(auth=fake_auth),
    )


@pytest.fixture
async def reconciler(identity, provisioner, logger):
    service = SessionReconciler(
        identity=identity,
        provisioner=provisioner,
        logger=logger,
        password_reset_url=RESET_URL,
    )
    yield service
    await service.stop()
