"""
Per-source sliding-window rate limiter.

Each source gets its own window of recent reservation instants. A
reservation is recorded only when admission succeeds, so rejected checks
never consume budget. Waiters on the same source are serialized through a
per-source asyncio.Lock (FIFO); different sources never block each other.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

logger = logging.getLogger(__name__)

# Upper bound on a single wait-loop sleep
MAX_SLEEP_MS = 1000


@dataclass(frozen=True)
class RateLimitConfig:
    """Admission budget for one source: `max_requests` per `window_ms`."""

    max_requests: int
    window_ms: int

    def __post_init__(self) -> None:
        if self.max_requests <= 0:
            raise ValueError(f"max_requests must be positive, got {self.max_requests}")
        if self.window_ms <= 0:
            raise ValueError(f"window_ms must be positive, got {self.window_ms}")


@dataclass
class RateLimiterMetrics:
    """Counters for one source's admissions."""

    admitted: int = 0
    rejected: int = 0
    waited: int = 0  # acquire() calls that had to sleep at least once
    total_wait_ms: int = 0


@dataclass
class _SourceWindow:
    config: RateLimitConfig
    timestamps: deque[int] = field(default_factory=deque)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    metrics: RateLimiterMetrics = field(default_factory=RateLimiterMetrics)


class RateLimiter:
    """
    Sliding-window admission control keyed by source.

    Usage:
        limiter = RateLimiter({"dune": RateLimitConfig(10, 60_000)})
        await limiter.acquire("dune")  # blocks until a slot is reserved
        # ... make the request ...
    """

    def __init__(
        self,
        configs: Mapping[str, RateLimitConfig],
        *,
        default: RateLimitConfig | None = None,
        time_fn: Callable[[], int] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        max_sleep_ms: int = MAX_SLEEP_MS,
    ) -> None:
        """
        Args:
            configs: Budget per source key.
            default: Budget for keys not in `configs` (None = unknown keys raise).
            time_fn: Millisecond clock for deterministic tests.
            sleep: Sleep coroutine taking seconds (defaults to asyncio.sleep).
            max_sleep_ms: Cap on one wait-loop sleep.
        """
        if max_sleep_ms <= 0:
            raise ValueError(f"max_sleep_ms must be positive, got {max_sleep_ms}")
        self._windows: dict[str, _SourceWindow] = {
            key: _SourceWindow(config=cfg) for key, cfg in configs.items()
        }
        self._default = default
        self._time_fn = time_fn
        self._sleep = sleep or asyncio.sleep
        self._max_sleep_ms = max_sleep_ms

    def _now_ms(self) -> int:
        """Get current time in milliseconds (monotonic)."""
        if self._time_fn is not None:
            return self._time_fn()
        return int(time.monotonic() * 1000)

    def _window(self, source: str) -> _SourceWindow:
        window = self._windows.get(source)
        if window is None:
            if self._default is None:
                raise KeyError(f"No rate limit configured for source {source!r}")
            window = _SourceWindow(config=self._default)
            self._windows[source] = window
        return window

    @staticmethod
    def _prune_old_timestamps(window: _SourceWindow, now_ms: int) -> None:
        """Remove timestamps outside the trailing window."""
        cutoff = now_ms - window.config.window_ms
        while window.timestamps and window.timestamps[0] <= cutoff:
            window.timestamps.popleft()

    def can_admit(self, source: str) -> bool:
        """Check whether a request would be admitted now, without reserving."""
        window = self._window(source)
        self._prune_old_timestamps(window, self._now_ms())
        return len(window.timestamps) < window.config.max_requests

    def admit(self, source: str) -> bool:
        """
        Try to reserve a slot without waiting.

        Returns:
            True if a slot was reserved, False if the window is full
            (nothing is recorded in that case).
        """
        window = self._window(source)
        if self._try_reserve(window):
            return True
        window.metrics.rejected += 1
        return False

    def _try_reserve(self, window: _SourceWindow) -> bool:
        now_ms = self._now_ms()
        self._prune_old_timestamps(window, now_ms)
        if len(window.timestamps) >= window.config.max_requests:
            return False
        window.timestamps.append(now_ms)
        window.metrics.admitted += 1
        return True

    def get_wait_time_ms(self, source: str) -> int:
        """
        Get time until the next slot frees up.

        Returns:
            Milliseconds to wait (0 if a slot is free now).
        """
        window = self._window(source)
        now_ms = self._now_ms()
        self._prune_old_timestamps(window, now_ms)
        if len(window.timestamps) < window.config.max_requests:
            return 0
        oldest = window.timestamps[0]
        return max(0, (oldest + window.config.window_ms) - now_ms)

    async def acquire(self, source: str) -> None:
        """
        Wait until a slot is available for `source`, then reserve it.

        Waiters on one source are admitted in arrival order. Each sleep is
        capped at `max_sleep_ms`.
        """
        window = self._window(source)
        async with window.lock:
            waited_ms = 0
            while not self._try_reserve(window):
                delay_ms = min(max(self.get_wait_time_ms(source), 1), self._max_sleep_ms)
                if waited_ms == 0:
                    logger.debug(
                        "Rate limit reached, waiting",
                        extra={"source": source, "wait_ms": delay_ms},
                    )
                waited_ms += delay_ms
                await self._sleep(delay_ms / 1000)
            if waited_ms:
                window.metrics.waited += 1
                window.metrics.total_wait_ms += waited_ms

    def get_metrics(self, source: str) -> RateLimiterMetrics:
        return self._window(source).metrics

    def sources(self) -> list[str]:
        return sorted(self._windows)

    def reset(self, source: str | None = None) -> None:
        """Clear recorded reservations for one source, or all."""
        targets = [self._window(source)] if source is not None else self._windows.values()
        for window in targets:
            window.timestamps.clear()
            window.metrics = RateLimiterMetrics()

    def get_status(self) -> dict[str, dict[str, int]]:
        """Get per-source limiter status for observability."""
        now_ms = self._now_ms()
        status: dict[str, dict[str, int]] = {}
        for key, window in self._windows.items():
            self._prune_old_timestamps(window, now_ms)
            status[key] = {
                "in_window": len(window.timestamps),
                "max_requests": window.config.max_requests,
                "window_ms": window.config.window_ms,
                "admitted": window.metrics.admitted,
                "waited": window.metrics.waited,
                "total_wait_ms": window.metrics.total_wait_ms,
            }
        return status
