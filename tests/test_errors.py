"""Tests for provider error classification."""

from __future__ import annotations

import asyncio

import httpx

from core.errors import (
    AlreadyLoadingError,
    ConcurrencyError,
    ConfigurationError,
    ErrorCode,
    ProviderConnectionError,
    ProviderTimeoutError,
    classify_exception,
)


def test_timeouts_are_not_connection_errors() -> None:
    for exc in (
        httpx.ReadTimeout("slow"),
        asyncio.TimeoutError(),
        TimeoutError("slow"),
    ):
        error = classify_exception(exc, "ollama", "Model fetch")
        assert isinstance(error, ProviderTimeoutError)
        assert error.code == ErrorCode.TIMEOUT
        assert error.provider_id == "ollama"


def test_refused_connections() -> None:
    for exc in (
        httpx.ConnectError("Connection refused"),
        ConnectionRefusedError("refused"),
        OSError("network unreachable"),
    ):
        error = classify_exception(exc, "ollama")
        assert isinstance(error, ProviderConnectionError)
        assert not isinstance(error, ProviderTimeoutError)


def test_http_status_error_reports_status() -> None:
    request = httpx.Request("GET", "https://example.com/models")
    response = httpx.Response(403, request=request)
    exc = httpx.HTTPStatusError("forbidden", request=request, response=response)

    error = classify_exception(exc, "gemini", "Model fetch")

    assert isinstance(error, ProviderConnectionError)
    assert "403" in error.message


def test_provider_errors_pass_through() -> None:
    original = ConfigurationError("missing key")
    error = classify_exception(original, "gemini")

    assert error is original
    assert error.provider_id == "gemini"


def test_unknown_exception_becomes_connection_error() -> None:
    error = classify_exception(ValueError(), "gemini", "Connection test")
    assert isinstance(error, ProviderConnectionError)
    assert error.message == "Connection test failed: ValueError"


def test_already_loading_error() -> None:
    error = AlreadyLoadingError("m2", "m1")

    assert isinstance(error, ConcurrencyError)
    assert error.requested_model_id == "m2"
    assert error.loading_model_id == "m1"
    assert error.to_dict()["code"] == "already_loading"
