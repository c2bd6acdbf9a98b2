"""
Error taxonomy for upstream source failures.

Every accessor in the fetch gateway raises one of these. The retry executor
reads the class-level `retryable` flag to decide whether another attempt
is worthwhile:

- TransportError, RateLimitedError: retryable
- AuthenticationError (401), AuthorizationError (403), NotFoundError (404),
  QuotaExceededError (402 / credit limits), QueryFailedError,
  ResponseFormatError: surfaced immediately
- QueryTimeoutError: raised by bounded poll loops, never retried inside them
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import aiohttp

from daoscope.contracts.models import PartialSourceFailure

if TYPE_CHECKING:
    from collections.abc import Awaitable, Iterator

T = TypeVar("T")

# Substrings that identify a quota/credit exhaustion in an error body
QUOTA_MARKERS = ("datapoint", "credit", "quota")

# Raised by record parsers on unexpected upstream shapes (pydantic's
# ValidationError is a ValueError)
PARSE_ERRORS = (ValueError, KeyError, TypeError, AttributeError)


class SourceError(Exception):
    """Base class for failures talking to an upstream source."""

    retryable: bool = False
    kind: str = "source_error"

    def __init__(
        self,
        message: str,
        source: str = "",
        status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.source = source
        self.status = status

    def to_failure(self, item: str | None = None) -> PartialSourceFailure:
        """Convert into a non-fatal failure record."""
        return PartialSourceFailure(
            source=self.source,
            error_kind=self.kind,
            message=str(self),
            item=item,
        )


class TransportError(SourceError):
    """Network-level failure (timeout, refused connection, 5xx)."""

    retryable = True
    kind = "transport"


class RateLimitedError(SourceError):
    """Upstream rejected the request for exceeding its rate limit (429)."""

    retryable = True
    kind = "rate_limited"

    def __init__(
        self,
        message: str,
        source: str = "",
        status: int | None = 429,
        retry_after_ms: int | None = None,
    ) -> None:
        super().__init__(message, source=source, status=status)
        self.retry_after_ms = retry_after_ms


class AuthenticationError(SourceError):
    """Missing or invalid credentials (401)."""

    kind = "authentication"


class AuthorizationError(SourceError):
    """Credentials valid but resource not accessible (403)."""

    kind = "authorization"


class NotFoundError(SourceError):
    """Resource does not exist (404)."""

    kind = "not_found"


class QuotaExceededError(SourceError):
    """Account quota or datapoint limit exhausted (402)."""

    kind = "quota_exceeded"


class QueryTimeoutError(SourceError, TimeoutError):
    """Bounded poll loop exceeded its maximum wait."""

    kind = "timeout"


class QueryFailedError(SourceError):
    """Asynchronous query reached a terminal failed state."""

    kind = "query_failed"


class ResponseFormatError(SourceError):
    """Response could not be parsed or carried an application-level error."""

    kind = "response_format"


def classify_response(
    source: str,
    status: int,
    body: str = "",
    retry_after_ms: int | None = None,
) -> SourceError:
    """
    Map a non-2xx HTTP response to a taxonomy error.

    Args:
        source: Source name for the error context.
        status: HTTP status code.
        body: Response body text (truncated into the message).
        retry_after_ms: Server-provided retry delay (Retry-After header).

    Returns:
        The error instance to raise.
    """
    snippet = body[:200]
    lowered = body.lower()

    if status == 429:
        return RateLimitedError(
            f"Rate limit exceeded (429): {snippet}",
            source=source,
            retry_after_ms=retry_after_ms,
        )
    if status == 401:
        return AuthenticationError(f"Authentication failed (401): {snippet}", source, status)
    if status == 402 or (status < 500 and any(m in lowered for m in QUOTA_MARKERS)):
        return QuotaExceededError(f"Quota exceeded ({status}): {snippet}", source, status)
    if status == 403:
        return AuthorizationError(f"Access forbidden (403): {snippet}", source, status)
    if status == 404:
        return NotFoundError(f"Not found (404): {snippet}", source, status)
    if status >= 500:
        return TransportError(f"Server error ({status}): {snippet}", source, status)
    return ResponseFormatError(f"Unexpected response ({status}): {snippet}", source, status)


def wrap_transport_error(source: str, exc: BaseException) -> TransportError:
    """Wrap an aiohttp or timeout exception as a TransportError."""
    if isinstance(exc, asyncio.TimeoutError):
        return TransportError("Request timed out", source=source)
    if isinstance(exc, aiohttp.ClientResponseError):
        return TransportError(str(exc), source=source, status=exc.status)
    return TransportError(f"{type(exc).__name__}: {exc}", source=source)


@contextlib.contextmanager
def parse_guard(source: str, what: str) -> Iterator[None]:
    """
    Re-raise record parsing failures as ResponseFormatError.

    Usage:
        with parse_guard("snapshot", "proposals"):
            proposals = [Proposal.from_raw(p) for p in raw]
    """
    try:
        yield
    except PARSE_ERRORS as e:
        raise ResponseFormatError(f"Malformed {what} from {source}: {e}", source=source) from e


def error_kind(exc: BaseException) -> str:
    """Short kind label for logs and failure records."""
    if isinstance(exc, SourceError):
        return exc.kind
    return type(exc).__name__


@dataclass(frozen=True)
class SourceResult(Generic[T]):
    """
    Outcome of one source call: either a value or the error that replaced it.

    Lets callers tell "the source returned nothing" apart from "the source
    failed" without catching exceptions at every call site.
    """

    source: str
    value: T | None = None
    error: SourceError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def error_kind(self) -> str | None:
        return self.error.kind if self.error is not None else None

    def unwrap(self) -> T:
        """Return the value or raise the captured error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    def to_failure(self, item: str | None = None) -> PartialSourceFailure | None:
        if self.error is None:
            return None
        return self.error.to_failure(item)

    @classmethod
    async def capture(cls, source: str, awaitable: Awaitable[Any]) -> SourceResult[Any]:
        """Await `awaitable`, capturing any SourceError instead of raising."""
        try:
            value = await awaitable
        except SourceError as e:
            if not e.source:
                e.source = source
            return cls(source=source, error=e)
        return cls(source=source, value=value)
