"""
Base Repository.

Provides shared infrastructure for HTTP-backed repositories:
- Lazily created ``httpx.AsyncClient`` bound to the service base URL
- Logger reference
- Per-request timeout and bearer-token headers
- Bounded retry of transient failures
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from portal_auth.config import is_valid_http_url
from portal_auth.errors import NotConfiguredError, ServiceUnavailableError, is_transient
from portal_auth.logger import StructuredLogger
from portal_auth.utils.retry import SleepFunc, retry_async

T = TypeVar("T")


class BaseRepository:
    """Base class for HTTP repositories. Receives dependencies via __init__.

    Parameters
    ----------
    base_url:
        Root URL of the backing service.
    logger:
        Structured JSON logger.
    timeout_s:
        Hard ceiling for a single request, connection included.
    max_attempts:
        Total attempts per operation for transient failures.
    backoff_base_s:
        Delay before the first retry; doubled for each further retry.
    http_client:
        Pre-built client (tests pass one with ``httpx.MockTransport``).
        When omitted, one is created on first use and closed by
        :meth:`aclose`.
    sleep:
        Awaitable sleep used between retries.
    """

    SERVICE_NAME: str = "service"

    def __init__(
        self,
        base_url: str,
        logger: StructuredLogger,
        *,
        timeout_s: float = 10.0,
        max_attempts: int = 3,
        backoff_base_s: float = 1.0,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self._base_url: str = base_url.strip().rstrip("/")
        self._logger: StructuredLogger = logger
        self._timeout_s: float = timeout_s
        self._max_attempts: int = max_attempts
        self._backoff_base_s: float = backoff_base_s
        self._sleep: SleepFunc = sleep
        self._http: Optional[httpx.AsyncClient] = http_client
        self._owns_client: bool = http_client is None

    @property
    def http(self) -> httpx.AsyncClient:
        """Return the HTTP client, creating it on first access.

        Raises
        ------
        NotConfiguredError
            If no client was injected and the base URL is unusable.
        """
        if self._http is None:
            if not is_valid_http_url(self._base_url):
                raise NotConfiguredError(
                    f"{self.SERVICE_NAME} URL is not configured."
                )
            self._http = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout_s,
            )
        return self._http

    async def aclose(self) -> None:
        """Close the HTTP client if this repository created it."""
        if self._http is not None and self._owns_client:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> "BaseRepository":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _send(
        self,
        method: str,
        path: str,
        *,
        operation_name: str,
        json: Optional[dict[str, Any]] = None,
        access_token: Optional[str] = None,
    ) -> httpx.Response:
        """Issue one request under the timeout ceiling.

        Timeouts and transport failures are raised as
        ``ServiceUnavailableError`` so the retry layer treats them like a
        503.  HTTP status codes are left to the caller to classify.
        """
        headers: dict[str, str] = {}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        try:
            return await asyncio.wait_for(
                self.http.request(method, path, json=json, headers=headers),
                timeout=self._timeout_s,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise ServiceUnavailableError(
                f"{operation_name} timed out after {self._timeout_s:.0f}s.",
                cause=exc,
            ) from exc
        except httpx.TransportError as exc:
            raise ServiceUnavailableError(
                f"{operation_name} could not reach the {self.SERVICE_NAME}: {exc}",
                cause=exc,
            ) from exc

    async def _execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str,
    ) -> T:
        """Run *operation* under the repository's retry policy.

        Only transient errors (``ServiceUnavailableError``) are retried;
        anything else propagates after the first attempt.
        """
        return await retry_async(
            operation,
            is_transient=is_transient,
            operation_name=operation_name,
            logger=self._logger,
            max_attempts=self._max_attempts,
            base_delay_s=self._backoff_base_s,
            sleep=self._sleep,
        )
