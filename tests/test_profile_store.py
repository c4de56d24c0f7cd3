"""Profile Store client: response classification, timeout and retry policy."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from _helpers import PROFILE_STORE_URL, FakeProfileStore, SleepRecorder
from portal_auth.errors import (
    NotConfiguredError,
    ProfileConflictError,
    ProfileNotFoundError,
    ServiceUnavailableError,
    UnknownAuthError,
)
from portal_auth.models.enums import UserRole
from portal_auth.repositories.profile_store import ProfileStoreClient


class TestFetchProfile:
    async def test_returns_parsed_user(self, store_client, profile_store):
        profile_store.add_profile("u1", "a@x.com", "Ana", role="fp")

        user = await store_client.fetch_profile("u1", access_token="tok-1")

        assert user.id == "u1"
        assert user.role == UserRole.FP
        assert user.referral_code == "REF-u1"
        assert user.created_at is not None
        request = profile_store.requests[0]
        assert request.url.path == "/profile/u1"
        assert request.headers["Authorization"] == "Bearer tok-1"

    async def test_no_authorization_header_without_token(self, store_client, profile_store):
        profile_store.add_profile("u1", "a@x.com", "Ana")

        await store_client.fetch_profile("u1")

        assert "Authorization" not in profile_store.requests[0].headers

    async def test_subject_id_is_path_encoded(self, store_client, profile_store):
        profile_store.add_profile("a/b", "a@x.com", "Ana")

        user = await store_client.fetch_profile("a/b")

        assert user.id == "a/b"
        assert profile_store.requests[0].url.raw_path == b"/profile/a%2Fb"

    async def test_not_found_is_not_retried(self, store_client, profile_store, sleeper):
        with pytest.raises(ProfileNotFoundError):
            await store_client.fetch_profile("missing")

        assert len(profile_store.requests) == 1
        assert sleeper.delays == []

    async def test_unavailable_retried_then_succeeds(self, store_client, profile_store, sleeper):
        profile_store.add_profile("u1", "a@x.com", "Ana")
        profile_store.scripted = [httpx.Response(503), httpx.Response(503)]

        user = await store_client.fetch_profile("u1")

        assert user.id == "u1"
        assert len(profile_store.requests) == 3
        assert sleeper.delays == [1.0, 2.0]

    async def test_unavailable_exhausts_three_attempts(self, store_client, profile_store, sleeper):
        profile_store.scripted = [httpx.Response(503) for _ in range(5)]

        with pytest.raises(ServiceUnavailableError) as exc_info:
            await store_client.fetch_profile("u1")

        assert exc_info.value.transient is True
        assert len(profile_store.requests) == 3
        assert sleeper.delays == [1.0, 2.0]

    async def test_gateway_errors_are_transient(self, store_client, profile_store):
        profile_store.add_profile("u1", "a@x.com", "Ana")
        profile_store.scripted = [httpx.Response(502), httpx.Response(504)]

        user = await store_client.fetch_profile("u1")

        assert user.id == "u1"
        assert len(profile_store.requests) == 3

    async def test_transport_timeout_maps_to_unavailable(self, store_client, profile_store, sleeper):
        profile_store.scripted = [httpx.ReadTimeout("read timed out") for _ in range(3)]

        with pytest.raises(ServiceUnavailableError):
            await store_client.fetch_profile("u1")

        assert len(profile_store.requests) == 3
        assert sleeper.delays == [1.0, 2.0]

    async def test_connection_error_maps_to_unavailable(self, store_client, profile_store):
        profile_store.add_profile("u1", "a@x.com", "Ana")
        profile_store.scripted = [httpx.ConnectError("connection refused")]

        user = await store_client.fetch_profile("u1")

        assert user.id == "u1"
        assert len(profile_store.requests) == 2

    async def test_server_error_is_unknown_and_not_retried(self, store_client, profile_store):
        profile_store.scripted = [
            httpx.Response(500, json={"error": "Database error", "details": "boom"}),
        ]

        with pytest.raises(UnknownAuthError) as exc_info:
            await store_client.fetch_profile("u1")

        assert "Database error: boom" in str(exc_info.value)
        assert len(profile_store.requests) == 1

    async def test_malformed_user_payload_is_unknown(self, store_client, profile_store):
        profile_store.scripted = [httpx.Response(200, json={"user": {"id": "u1"}})]

        with pytest.raises(UnknownAuthError):
            await store_client.fetch_profile("u1")

    async def test_missing_user_key_is_unknown(self, store_client, profile_store):
        profile_store.scripted = [httpx.Response(200, json={"ok": True})]

        with pytest.raises(UnknownAuthError):
            await store_client.fetch_profile("u1")

    async def test_non_json_body_is_unknown(self, store_client, profile_store):
        profile_store.scripted = [httpx.Response(200, text="<html>oops</html>")]

        with pytest.raises(UnknownAuthError):
            await store_client.fetch_profile("u1")


class TestCreateProfile:
    async def test_sends_wire_payload(self, store_client, profile_store):
        user = await store_client.create_profile("u1", "a@x.com", "Ana", "fp", access_token="tok")

        assert user.role == UserRole.FP
        request = profile_store.create_requests[0]
        assert request.url.path == "/create-profile"
        assert json.loads(request.content) == {
            "userId": "u1",
            "email": "a@x.com",
            "name": "Ana",
            "role": "fp",
        }
        assert request.headers["Authorization"] == "Bearer tok"

    async def test_conflict_is_not_retried(self, store_client, profile_store, sleeper):
        profile_store.add_profile("u1", "a@x.com", "Ana")

        with pytest.raises(ProfileConflictError):
            await store_client.create_profile("u1", "a@x.com", "Ana", "member")

        assert len(profile_store.requests) == 1
        assert sleeper.delays == []

    async def test_unavailable_create_retried(self, store_client, profile_store, sleeper):
        profile_store.scripted = [httpx.Response(503)]

        user = await store_client.create_profile("u1", "a@x.com", "Ana", "member")

        assert user.id == "u1"
        assert len(profile_store.create_requests) == 2
        assert sleeper.delays == [1.0]


class TestClientConfiguration:
    async def test_request_timeout_ceiling(self, logger):
        async def slow_handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1)
            return httpx.Response(200, json={})

        sleeper = SleepRecorder()
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(slow_handler), base_url=PROFILE_STORE_URL,
        ) as http_client:
            client = ProfileStoreClient(
                PROFILE_STORE_URL,
                logger,
                timeout_s=0.01,
                max_attempts=2,
                http_client=http_client,
                sleep=sleeper,
            )
            with pytest.raises(ServiceUnavailableError, match="timed out"):
                await client.fetch_profile("u1")

        assert sleeper.delays == [1.0]

    async def test_missing_url_is_not_configured(self, logger):
        client = ProfileStoreClient("", logger)

        with pytest.raises(NotConfiguredError):
            await client.fetch_profile("u1")

    async def test_custom_retry_budget(self, logger):
        store = FakeProfileStore()
        store.scripted = [httpx.Response(503) for _ in range(5)]
        sleeper = SleepRecorder()
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(store.handler), base_url=PROFILE_STORE_URL,
        ) as http_client:
            client = ProfileStoreClient(
                PROFILE_STORE_URL,
                logger,
                max_attempts=4,
                backoff_base_s=0.5,
                http_client=http_client,
                sleep=sleeper,
            )
            with pytest.raises(ServiceUnavailableError):
                await client.fetch_profile("u1")

        assert len(store.requests) == 4
        assert sleeper.delays == [0.5, 1.0, 2.0]

    async def test_aclose_leaves_injected_client_open(self, store_client, http_client):
        await store_client.aclose()

        assert not http_client.is_closed
