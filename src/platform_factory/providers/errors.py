"""Exception hierarchy shared by every provider adapter."""

from __future__ import annotations

from typing import Any


class ProviderError(Exception):
    """Base exception for provider API errors."""

    def __init__(
        self,
        provider: str,
        status_code: int,
        message: str = "",
        *,
        response_body: str = "",
    ) -> None:
        self.provider = provider
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"{provider} API error {status_code}: {message}")


class ProviderNotFoundError(ProviderError):
    """Resource not found (404)."""

    def __init__(
        self, provider: str, message: str = "Resource not found", **kwargs: Any,
    ) -> None:
        super().__init__(provider, 404, message, **kwargs)


class ProviderAuthError(ProviderError):
    """Credentials rejected (401/403)."""


class ProviderConflictError(ProviderError):
    """Resource already exists or conflicts with existing state (409)."""


class ProviderTimeoutError(ProviderError):
    """Request to the provider timed out."""

    def __init__(self, provider: str, message: str = "Request timed out") -> None:
        super().__init__(provider, 0, message)
