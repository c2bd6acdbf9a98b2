"""Tests for the source error taxonomy."""

from __future__ import annotations

import asyncio

import aiohttp
import pytest

from daoscope.connectors.errors import (
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    QueryTimeoutError,
    QuotaExceededError,
    RateLimitedError,
    ResponseFormatError,
    SourceError,
    SourceResult,
    TransportError,
    classify_response,
    error_kind,
    parse_guard,
    wrap_transport_error,
)


class TestClassifyResponse:
    """Tests for HTTP status classification."""

    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            (429, RateLimitedError),
            (401, AuthenticationError),
            (402, QuotaExceededError),
            (403, AuthorizationError),
            (404, NotFoundError),
            (500, TransportError),
            (503, TransportError),
            (400, ResponseFormatError),
        ],
    )
    def test_status_mapping(self, status: int, expected: type[SourceError]) -> None:
        error = classify_response("dune", status, "body")
        assert type(error) is expected
        assert error.source == "dune"

    def test_quota_marker_in_body(self) -> None:
        """Credit exhaustion reported as 400/403 is a quota error."""
        error = classify_response("dune", 403, '{"error":"not enough credits"}')
        assert isinstance(error, QuotaExceededError)

    def test_server_error_with_quota_word_stays_transport(self) -> None:
        error = classify_response("dune", 503, "quota service unavailable")
        assert isinstance(error, TransportError)

    def test_rate_limit_carries_retry_after(self) -> None:
        error = classify_response("coingecko", 429, "", retry_after_ms=3000)
        assert isinstance(error, RateLimitedError)
        assert error.retry_after_ms == 3000
        assert error.status == 429

    def test_body_truncated(self) -> None:
        error = classify_response("safe", 400, "x" * 1000)
        assert len(str(error)) < 300


class TestErrorProperties:
    """Tests for retryability and kinds."""

    def test_retryable_flags(self) -> None:
        assert TransportError("x").retryable
        assert RateLimitedError("x").retryable
        assert not AuthenticationError("x").retryable
        assert not QueryTimeoutError("x").retryable

    def test_timeout_is_timeout_error(self) -> None:
        assert isinstance(QueryTimeoutError("late"), TimeoutError)

    def test_to_failure(self) -> None:
        failure = NotFoundError("missing", source="snapshot", status=404).to_failure(item="0xabc")
        assert failure.source == "snapshot"
        assert failure.error_kind == "not_found"
        assert failure.message == "missing"
        assert failure.item == "0xabc"

    def test_error_kind_of_foreign_exception(self) -> None:
        assert error_kind(ValueError("x")) == "ValueError"
        assert error_kind(TransportError("x")) == "transport"


class TestWrapTransportError:
    """Tests for aiohttp exception wrapping."""

    def test_timeout(self) -> None:
        error = wrap_transport_error("safe", asyncio.TimeoutError())
        assert isinstance(error, TransportError)
        assert "timed out" in str(error)

    def test_client_error(self) -> None:
        error = wrap_transport_error("safe", aiohttp.ClientConnectionError("refused"))
        assert error.source == "safe"
        assert "refused" in str(error)


class TestParseGuard:
    """Tests for mapping record parsing failures."""

    @pytest.mark.parametrize("exc", [ValueError("bad state"), KeyError("voter"), TypeError("x")])
    def test_parse_failures_become_format_errors(self, exc: Exception) -> None:
        with (
            pytest.raises(ResponseFormatError, match="Malformed votes from snapshot") as info,
            parse_guard("snapshot", "votes"),
        ):
            raise exc

        assert info.value.source == "snapshot"
        assert info.value.__cause__ is exc
        assert not info.value.retryable

    def test_source_errors_pass_through(self) -> None:
        with pytest.raises(NotFoundError), parse_guard("snapshot", "votes"):
            raise NotFoundError("gone", source="snapshot")


class TestSourceResult:
    """Tests for SourceResult capture."""

    @pytest.mark.asyncio
    async def test_capture_value(self) -> None:
        async def ok() -> int:
            return 5

        result = await SourceResult.capture("dune", ok())

        assert result.ok
        assert result.unwrap() == 5
        assert result.to_failure() is None

    @pytest.mark.asyncio
    async def test_capture_error(self) -> None:
        """A failed source is distinguishable from an empty value."""

        async def fail() -> int:
            raise AuthenticationError("no key")

        result = await SourceResult.capture("dune", fail())

        assert not result.ok
        assert result.value is None
        assert result.error_kind == "authentication"
        assert result.error is not None
        assert result.error.source == "dune"
        with pytest.raises(AuthenticationError):
            result.unwrap()

    @pytest.mark.asyncio
    async def test_capture_does_not_swallow_other_exceptions(self) -> None:
        async def bug() -> int:
            raise KeyError("oops")

        with pytest.raises(KeyError):
            await SourceResult.capture("dune", bug())
