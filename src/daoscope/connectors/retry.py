"""
Retry executor with exponential backoff and jitter.

Attempts run 0..max_retries. Errors whose class is marked non-retryable
(authentication, authorization, not-found, quota, failed query, malformed
response) are re-raised after the first attempt. Everything else is retried
after `min(base * 2**attempt, max)` plus up to `jitter_factor` of that delay.
When attempts are exhausted the last error is raised; failure is never
swallowed.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from daoscope.connectors.errors import RateLimitedError, SourceError, error_kind

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy."""

    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 10000
    jitter_factor: float = 0.1  # up to +10% of the capped delay

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay_ms < 0:
            raise ValueError(f"base_delay_ms must be >= 0, got {self.base_delay_ms}")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError(
                f"max_delay_ms ({self.max_delay_ms}) must be >= base_delay_ms "
                f"({self.base_delay_ms})"
            )
        if not 0 <= self.jitter_factor <= 1:
            raise ValueError(f"jitter_factor must be in [0, 1], got {self.jitter_factor}")


def compute_backoff_delay(
    config: RetryConfig,
    attempt: int,
    *,
    rng: random.Random | None = None,
) -> int:
    """
    Compute the sleep before the retry following `attempt`.

    Args:
        config: Retry configuration.
        attempt: Zero-based index of the attempt that just failed.
        rng: Optional seeded Random instance for deterministic jitter.

    Returns:
        Delay in milliseconds.
    """
    capped = min(config.base_delay_ms * (2**attempt), config.max_delay_ms)
    if rng is not None:
        jitter = rng.uniform(0, config.jitter_factor)
    else:
        jitter = random.uniform(0, config.jitter_factor)
    return int(capped + capped * jitter)


def is_retryable(exc: BaseException) -> bool:
    """Classify an exception for the retry loop."""
    if isinstance(exc, SourceError):
        return exc.retryable
    return isinstance(exc, Exception)


@dataclass
class RetryMetrics:
    """Per-source retry counters."""

    operations: int = 0
    retries: int = 0
    failures: int = 0  # operations that ended in an error
    short_circuits: int = 0  # non-retryable errors raised on first sight


class RetryExecutor:
    """
    Runs fallible async operations under a retry policy.

    Usage:
        executor = RetryExecutor(RetryConfig(max_retries=3))
        rows = await executor.execute(lambda: client.get_rows(), source="dune")
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._config = config or RetryConfig()
        self._sleep = sleep or asyncio.sleep
        self._rng = rng
        self._metrics: dict[str, RetryMetrics] = {}

    @property
    def config(self) -> RetryConfig:
        return self._config

    def _metrics_for(self, source: str) -> RetryMetrics:
        metrics = self._metrics.get(source)
        if metrics is None:
            metrics = RetryMetrics()
            self._metrics[source] = metrics
        return metrics

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        max_retries: int | None = None,
        base_delay_ms: int | None = None,
        max_delay_ms: int | None = None,
        cancel_event: asyncio.Event | None = None,
        source: str = "",
    ) -> T:
        """
        Run `operation` until it succeeds or the policy gives up.

        Args:
            operation: Zero-argument factory returning a fresh awaitable per attempt.
            max_retries: Override of the configured retry count.
            base_delay_ms: Override of the configured base delay.
            max_delay_ms: Override of the configured delay cap.
            cancel_event: Once set, no further retry is scheduled.
            source: Source name used for logs and metrics.

        Returns:
            The operation's result.

        Raises:
            The last error from `operation`.
        """
        config = self._config
        if max_retries is not None or base_delay_ms is not None or max_delay_ms is not None:
            config = RetryConfig(
                max_retries=config.max_retries if max_retries is None else max_retries,
                base_delay_ms=config.base_delay_ms if base_delay_ms is None else base_delay_ms,
                max_delay_ms=config.max_delay_ms if max_delay_ms is None else max_delay_ms,
                jitter_factor=config.jitter_factor,
            )

        metrics = self._metrics_for(source)
        metrics.operations += 1

        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as e:
                if not is_retryable(e):
                    metrics.short_circuits += 1
                    metrics.failures += 1
                    raise
                if attempt >= config.max_retries:
                    metrics.failures += 1
                    logger.warning(
                        "Retries exhausted",
                        extra={
                            "source": source,
                            "attempt": attempt,
                            "error_kind": error_kind(e),
                        },
                    )
                    raise
                if cancel_event is not None and cancel_event.is_set():
                    metrics.failures += 1
                    logger.info(
                        "Caller cancelled, not retrying",
                        extra={"source": source, "attempt": attempt},
                    )
                    raise

                delay_ms = compute_backoff_delay(config, attempt, rng=self._rng)
                # Respect Retry-After when the server knows better
                if isinstance(e, RateLimitedError) and e.retry_after_ms:
                    delay_ms = max(delay_ms, min(e.retry_after_ms, config.max_delay_ms))
                metrics.retries += 1
                logger.warning(
                    "Operation failed, retrying",
                    extra={
                        "source": source,
                        "attempt": attempt,
                        "delay_ms": delay_ms,
                        "error_kind": error_kind(e),
                        "error": str(e),
                    },
                )
                await self._sleep(delay_ms / 1000)
                attempt += 1

    def get_metrics(self, source: str) -> RetryMetrics:
        return self._metrics_for(source)

    def get_status(self) -> dict[str, dict[str, int]]:
        """Get per-source retry counters for observability."""
        return {
            source: {
                "operations": m.operations,
                "retries": m.retries,
                "failures": m.failures,
                "short_circuits": m.short_circuits,
            }
            for source, m in sorted(self._metrics.items())
        }
