"""
Process-local TTL cache.

Entries expire at `stored_at + duration_ms`. Expired entries are evicted
lazily on the next read; there is no background sweep. A read at or after
the expiration instant never returns the stored value.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()

# Fixed keys of the shared datasets
PROPOSALS = "proposals"
TREASURY = "treasury"
TOKEN_PRICE = "token_price"
SOLVER_METRICS = "solver_metrics"
SAFE_BALANCES = "safe_balances"
RECOGNIZED_DELEGATES = "recognized_delegates"
CHAIN_DISTRIBUTION = "chain_distribution"
TOKEN_CONCENTRATION = "token_concentration"

STANDARD_KEYS = (PROPOSALS, TREASURY, TOKEN_PRICE, SOLVER_METRICS, SAFE_BALANCES)


def delegation_key(address: str) -> str:
    return f"delegation_{address.lower()}"


def delegation_history_key(address: str) -> str:
    return f"delegation_history_{address.lower()}"


def delegations_received_key(address: str) -> str:
    return f"delegations_received_{address.lower()}"


def delegate_votes_key(address: str) -> str:
    return f"delegate_votes_{address.lower()}"


def chain_data_key(proposal_id: str) -> str:
    return f"chain_data_{proposal_id}"


def roster_key(space: str, limit: int) -> str:
    return f"{RECOGNIZED_DELEGATES}_{space}_{limit}"


@dataclass
class CacheEntry:
    """A stored value and its validity window (ms clock)."""

    key: str
    value: Any
    stored_at_ms: int
    expires_at_ms: int

    def is_expired(self, now_ms: int) -> bool:
        return now_ms >= self.expires_at_ms


@dataclass
class CacheMetrics:
    hits: int = 0
    misses: int = 0
    evictions: int = 0


class TTLCache:
    """
    Key/value cache with per-entry expiration.

    Concurrent writers to the same key are allowed; the last write wins.
    """

    def __init__(self, *, time_fn: Callable[[], int] | None = None) -> None:
        """
        Args:
            time_fn: Millisecond clock for deterministic tests.
        """
        self._entries: dict[str, CacheEntry] = {}
        self._time_fn = time_fn
        self.metrics = CacheMetrics()

    def _now_ms(self) -> int:
        """Get current time in milliseconds (monotonic)."""
        if self._time_fn is not None:
            return self._time_fn()
        return int(time.monotonic() * 1000)

    def _lookup(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return _MISSING
        if entry.is_expired(self._now_ms()):
            del self._entries[key]
            self.metrics.evictions += 1
            return _MISSING
        return entry.value

    def set(self, key: str, value: Any, duration_ms: int) -> None:
        """Store `value` until `now + duration_ms`."""
        if duration_ms <= 0:
            raise ValueError(f"duration_ms must be positive, got {duration_ms}")
        now_ms = self._now_ms()
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            stored_at_ms=now_ms,
            expires_at_ms=now_ms + duration_ms,
        )

    def get(self, key: str, default: Any = None) -> Any:
        """Return the live value for `key`, or `default` if absent or expired."""
        value = self._lookup(key)
        return default if value is _MISSING else value

    def has(self, key: str) -> bool:
        return self._lookup(key) is not _MISSING

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    async def get_or_compute(
        self,
        key: str,
        compute_fn: Callable[[], Awaitable[T]],
        duration_ms: int,
        *,
        should_store: Callable[[T], bool] | None = None,
    ) -> T:
        """
        Return the cached value, or compute, store and return a fresh one.

        `compute_fn` runs at most once per call and only on a miss. Errors
        from it propagate and nothing is stored. A computed value for which
        `should_store` returns False is returned without being stored.
        """
        value = self._lookup(key)
        if value is not _MISSING:
            self.metrics.hits += 1
            return value  # type: ignore[no-any-return]

        self.metrics.misses += 1
        logger.debug("Cache miss", extra={"key": key})
        result = await compute_fn()
        if should_store is None or should_store(result):
            self.set(key, result, duration_ms)
        return result

    def get_status(self, keys: Iterable[str] = STANDARD_KEYS) -> dict[str, dict[str, Any]]:
        """Per-key freshness (cached, age_ms, expires_in_ms) for the given keys."""
        now_ms = self._now_ms()
        status: dict[str, dict[str, Any]] = {}
        for key in keys:
            entry = self._entries.get(key)
            if entry is not None and not entry.is_expired(now_ms):
                status[key] = {
                    "cached": True,
                    "age_ms": now_ms - entry.stored_at_ms,
                    "expires_in_ms": entry.expires_at_ms - now_ms,
                }
            else:
                status[key] = {"cached": False, "age_ms": 0, "expires_in_ms": 0}
        return status

    def get_stats(self) -> dict[str, Any]:
        """Counts and key lists of valid and expired entries (no eviction)."""
        now_ms = self._now_ms()
        valid = [k for k, e in self._entries.items() if not e.is_expired(now_ms)]
        expired = [k for k, e in self._entries.items() if e.is_expired(now_ms)]
        return {
            "total": len(self._entries),
            "valid": len(valid),
            "expired": len(expired),
            "valid_keys": valid,
            "expired_keys": expired,
            "hits": self.metrics.hits,
            "misses": self.metrics.misses,
        }
