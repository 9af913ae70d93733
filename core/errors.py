"""Error types raised and reported by the provider subsystem."""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Optional

import httpx


class ErrorCode(str, Enum):
    """Stable codes for provider errors."""

    CONFIGURATION = "configuration"
    CONNECTION = "connection"
    TIMEOUT = "timeout"
    LOAD = "load"
    ALREADY_LOADING = "already_loading"
    SUPERSEDED = "superseded"


class ProviderError(Exception):
    """Base class for provider configuration and lifecycle errors."""

    code: ErrorCode = ErrorCode.CONNECTION

    def __init__(self, message: str = "", provider_id: Optional[str] = None):
        self.message = message
        self.provider_id = provider_id
        super().__init__(message)

    def to_dict(self) -> dict[str, str]:
        return {
            "code": self.code.value,
            "message": self.message,
            "providerId": self.provider_id or "",
        }


class ConfigurationError(ProviderError):
    """A required API key or URL is missing."""

    code = ErrorCode.CONFIGURATION


class ProviderConnectionError(ProviderError):
    """A connection test or model fetch failed."""

    code = ErrorCode.CONNECTION


class ProviderTimeoutError(ProviderError):
    """A connection test or model fetch exceeded its time budget."""

    code = ErrorCode.TIMEOUT


class LoadError(ProviderError):
    """A local model failed to download or initialize."""

    code = ErrorCode.LOAD


class ConcurrencyError(ProviderError):
    """An operation conflicts with one already in flight."""

    code = ErrorCode.ALREADY_LOADING


class AlreadyLoadingError(ConcurrencyError):
    """A local model load was requested while another is running."""

    def __init__(self, requested_model_id: str, loading_model_id: str):
        self.requested_model_id = requested_model_id
        self.loading_model_id = loading_model_id
        super().__init__(
            f"Cannot load {requested_model_id}: {loading_model_id} is already loading"
        )


class SupersededError(ProviderError):
    """A result arrived after its request was cancelled or replaced."""

    code = ErrorCode.SUPERSEDED


def classify_exception(
    exc: BaseException,
    provider_id: Optional[str] = None,
    operation: str = "request",
) -> ProviderError:
    """Map a driver exception to a provider error kind.

    Timeouts are kept apart from refused or failed connections so callers
    can tell a slow backend from an unreachable one.
    """
    if isinstance(exc, ProviderError):
        if exc.provider_id is None:
            exc.provider_id = provider_id
        return exc
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return ProviderTimeoutError(f"{operation} timed out", provider_id)
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return ProviderConnectionError(
            f"{operation} failed with HTTP {status}", provider_id
        )
    if isinstance(exc, (httpx.HTTPError, ConnectionError, OSError)):
        return ProviderConnectionError(f"{operation} failed: {exc}", provider_id)
    detail = str(exc) or type(exc).__name__
    return ProviderConnectionError(f"{operation} failed: {detail}", provider_id)
