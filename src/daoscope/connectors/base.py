"""
Shared HTTP plumbing for source clients.

Every request goes through the same pipeline:
1. Acquire a rate-limiter slot for the client's source
2. Send via aiohttp, mapping failures into the error taxonomy
3. Retry the whole attempt (including the slot) through the RetryExecutor
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any

import aiohttp
import orjson

from daoscope.connectors.errors import (
    ResponseFormatError,
    SourceError,
    classify_response,
    parse_guard,
    wrap_transport_error,
)
from daoscope.connectors.retry import RetryExecutor

if TYPE_CHECKING:
    from contextlib import AbstractContextManager

    from daoscope.connectors.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30000


def parse_retry_after_ms(headers: Any) -> int | None:
    """Parse a Retry-After header given in seconds."""
    if headers is None or "Retry-After" not in headers:
        return None
    with contextlib.suppress(TypeError, ValueError):
        return int(float(headers["Retry-After"]) * 1000)
    return None


class SourceClient:
    """
    Base async client for one upstream source.

    Subclasses set `source` and build URLs; this class owns the session,
    rate limiting, retries and error mapping.
    """

    source: str = ""

    def __init__(
        self,
        base_url: str,
        rate_limiter: RateLimiter,
        retry_executor: RetryExecutor | None = None,
        *,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        headers: dict[str, str] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        """
        Args:
            base_url: Root URL of the source API (no trailing slash).
            rate_limiter: Shared limiter; must know this client's source key.
            retry_executor: Shared retry executor.
            timeout_ms: Total timeout of one HTTP attempt.
            headers: Headers sent with every request (e.g. API keys).
            cancel_event: Once set, failed calls are not retried.
        """
        self._base_url = base_url.rstrip("/")
        self._rate_limiter = rate_limiter
        self._retry = retry_executor or RetryExecutor()
        self._timeout_ms = timeout_ms
        self._headers = dict(headers or {})
        self._cancel_event = cancel_event
        self._session: aiohttp.ClientSession | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._timeout_ms / 1000)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> SourceClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    def url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    def _parsing(self, what: str) -> AbstractContextManager[None]:
        """Map record parsing failures for `what` to ResponseFormatError."""
        return parse_guard(self.source, what)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """
        Make a rate-limited, retried HTTP request.

        Args:
            method: HTTP method.
            path: Path appended to the base URL, or an absolute URL.
            params: Query parameters.
            json: JSON body.
            headers: Extra headers for this request.

        Returns:
            Decoded JSON response.

        Raises:
            SourceError: Classified failure after retries.
        """
        url = path if path.startswith("http") else self.url(path)

        async def attempt() -> Any:
            await self._rate_limiter.acquire(self.source)
            return await self._send(method, url, params=params, json=json, headers=headers)

        return await self._retry.execute(
            attempt,
            source=self.source,
            cancel_event=self._cancel_event,
        )

    async def _send(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Single HTTP attempt with error classification."""
        session = await self._get_session()
        merged_headers = {**self._headers, **(headers or {})}
        try:
            async with session.request(
                method,
                url,
                params=params,
                json=json,
                headers=merged_headers or None,
            ) as response:
                text = await response.text()
                if response.status >= 400:
                    error = classify_response(
                        self.source,
                        response.status,
                        text,
                        retry_after_ms=parse_retry_after_ms(response.headers),
                    )
                    logger.warning(
                        "HTTP error",
                        extra={
                            "source": self.source,
                            "status": response.status,
                            "error_kind": error.kind,
                        },
                    )
                    raise error
        except SourceError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise wrap_transport_error(self.source, e) from e

        if not text:
            return None
        try:
            return orjson.loads(text)
        except orjson.JSONDecodeError as e:
            raise ResponseFormatError(
                f"Invalid JSON from {self.source}: {text[:100]}",
                source=self.source,
                status=response.status,
            ) from e
