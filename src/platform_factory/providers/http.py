"""Shared async HTTP plumbing for provider adapters.

One pooled ``httpx.AsyncClient`` is shared across adapters. Every call
retries timeouts and 429/5xx responses with jittered exponential backoff,
honouring ``Retry-After`` when the provider sends it. Auth headers are
supplied per adapter and never logged.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Mapping

import httpx

from .errors import (
    ProviderAuthError,
    ProviderConflictError,
    ProviderError,
    ProviderNotFoundError,
    ProviderTimeoutError,
)

logger = logging.getLogger(__name__)

# Status codes eligible for automatic retry.
_RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

_DEFAULT_MAX_RETRIES = 3
_DEFAULT_BASE_DELAY = 1.0  # seconds
_DEFAULT_MAX_DELAY = 30.0  # seconds


# ── Module-level shared client ───────────────────────────────────

_shared_async_client: httpx.AsyncClient | None = None


def get_shared_async_client() -> httpx.AsyncClient:
    global _shared_async_client
    if _shared_async_client is None:
        _shared_async_client = httpx.AsyncClient(follow_redirects=True)
    return _shared_async_client


async def close_shared_async_client() -> None:
    global _shared_async_client
    if _shared_async_client is not None:
        await _shared_async_client.aclose()
        _shared_async_client = None


def _reset_shared_async_client_for_tests() -> None:
    global _shared_async_client
    _shared_async_client = None


# ── Client ───────────────────────────────────────────────────────


class ProviderHTTPClient:
    """Authenticated JSON client for one provider's REST API."""

    def __init__(
        self,
        *,
        provider: str,
        base_url: str,
        headers: Mapping[str, str],
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
        max_retries: int = _DEFAULT_MAX_RETRIES,
        base_delay: float = _DEFAULT_BASE_DELAY,
        max_delay: float = _DEFAULT_MAX_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if not headers:
            raise ValueError("auth headers are required")

        self.provider = provider
        self._base_url = base_url.rstrip("/")
        self._headers = dict(headers)
        self._client = http_client or get_shared_async_client()
        self._timeout = float(timeout_seconds)
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._sleep = sleep

    @property
    def http_client(self) -> httpx.AsyncClient:
        return self._client

    def raise_for_status(self, resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return

        body = resp.text
        message = body[:200] if body else f"HTTP {resp.status_code}"

        try:
            payload = resp.json()
            if isinstance(payload, dict):
                detail = payload.get("error", payload.get("message", message))
                if isinstance(detail, dict):
                    detail = detail.get("message", message)
                message = str(detail)
        except ValueError:
            pass

        if resp.status_code == 404:
            raise ProviderNotFoundError(self.provider, message, response_body=body)
        if resp.status_code in (401, 403):
            raise ProviderAuthError(
                self.provider, resp.status_code, message, response_body=body,
            )
        if resp.status_code == 409:
            raise ProviderConflictError(
                self.provider, resp.status_code, message, response_body=body,
            )
        raise ProviderError(
            self.provider, resp.status_code, message, response_body=body,
        )

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> httpx.Response:
        """Execute a request with retry; returns the final response unchecked."""
        url = f"{self._base_url}{path}"

        last_exc: Exception | None = None
        for attempt in range(self._max_retries + 1):
            try:
                resp = await self._client.request(
                    method,
                    url,
                    headers=self._headers,
                    json=json,
                    params=params,
                    timeout=self._timeout,
                )
            except httpx.TimeoutException as e:
                last_exc = ProviderTimeoutError(self.provider, str(e) or "Request timed out")
                if attempt < self._max_retries:
                    delay = self._backoff_delay(attempt)
                    logger.warning(
                        "%s request timeout (attempt %d/%d), retrying in %.1fs",
                        self.provider,
                        attempt + 1,
                        self._max_retries + 1,
                        delay,
                    )
                    await self._sleep(delay)
                    continue
                raise last_exc from e

            if resp.status_code not in _RETRYABLE_STATUS_CODES:
                return resp

            if attempt < self._max_retries:
                delay = self._retry_after_delay(resp, attempt)
                logger.warning(
                    "%s %s %s returned %d (attempt %d/%d), retrying in %.1fs",
                    self.provider,
                    method,
                    path,
                    resp.status_code,
                    attempt + 1,
                    self._max_retries + 1,
                    delay,
                )
                await self._sleep(delay)
            else:
                return resp

        if last_exc:
            raise last_exc
        raise ProviderError(self.provider, 0, "exhausted retries with no response")

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        json: Any | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        """Request, raise on error status, and decode the JSON body (None if empty)."""
        resp = await self.request(method, path, json=json, params=params)
        self.raise_for_status(resp)
        if not resp.content:
            return None
        return resp.json()

    async def delete(self, path: str) -> str:
        """DELETE ``path``; ``'not_found'`` when the resource is already gone."""
        resp = await self.request("DELETE", path)
        if resp.status_code == 404:
            return "not_found"
        self.raise_for_status(resp)
        return "deleted"

    async def get_status(self, url: str) -> int:
        """Unauthenticated GET of an absolute URL; returns the status code.

        Used to confirm a public endpoint answers. Transport failures raise
        ``ProviderTimeoutError``/``ProviderError``.
        """
        try:
            resp = await self._client.request("GET", url, timeout=self._timeout)
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(self.provider, f"GET {url} timed out") from e
        except httpx.HTTPError as e:
            raise ProviderError(self.provider, 0, f"GET {url} failed: {e}") from e
        return resp.status_code

    def _backoff_delay(self, attempt: int) -> float:
        """Exponential backoff with full jitter."""
        delay = min(self._base_delay * (2 ** attempt), self._max_delay)
        return random.uniform(0, delay)

    def _retry_after_delay(self, resp: httpx.Response, attempt: int) -> float:
        """Use Retry-After header if present, otherwise exponential backoff."""
        retry_after = resp.headers.get("retry-after")
        if retry_after:
            try:
                return max(float(retry_after), 0.1)
            except ValueError:
                pass
        return self._backoff_delay(attempt)
