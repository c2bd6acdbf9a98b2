"""
Runtime configuration.

Credentials come from environment variables and are never logged.
Everything else has defaults matching the public endpoints the tool was
built against.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from daoscope.connectors.dune import DuneQueryIds
from daoscope.connectors.rate_limiter import RateLimitConfig
from daoscope.connectors.retry import RetryConfig
from daoscope.contracts.models import Source

# Redacted env vars for logging
REDACTED_ENV_VARS = frozenset({
    "DUNE_API_KEY",
    "ETHERSCAN_API_KEY",
    "COINGECKO_API_KEY",
})

MINUTE_MS = 60_000


def default_rate_limits() -> dict[str, RateLimitConfig]:
    """Per-source request budgets."""
    return {
        Source.SNAPSHOT.value: RateLimitConfig(max_requests=60, window_ms=MINUTE_MS),
        Source.DUNE.value: RateLimitConfig(max_requests=10, window_ms=MINUTE_MS),
        Source.COINGECKO.value: RateLimitConfig(max_requests=50, window_ms=MINUTE_MS),
        Source.SAFE.value: RateLimitConfig(max_requests=60, window_ms=MINUTE_MS),
        Source.ETHERSCAN.value: RateLimitConfig(max_requests=5, window_ms=1000),
    }


@dataclass(frozen=True)
class CacheDurations:
    """TTL per cached dataset, in milliseconds."""

    proposals: int = 5 * MINUTE_MS
    treasury: int = 60 * MINUTE_MS
    token_price: int = 2 * MINUTE_MS
    solver_metrics: int = 15 * MINUTE_MS
    safe_balances: int = 10 * MINUTE_MS
    chain_data: int = 30 * MINUTE_MS
    delegates: int = 30 * MINUTE_MS
    token_holders: int = 60 * MINUTE_MS

    def __post_init__(self) -> None:
        for name, value in self.as_dict().items():
            if value <= 0:
                raise ValueError(f"{name} must be > 0, got {value}")

    def as_dict(self) -> dict[str, int]:
        return {
            "proposals": self.proposals,
            "treasury": self.treasury,
            "token_price": self.token_price,
            "solver_metrics": self.solver_metrics,
            "safe_balances": self.safe_balances,
            "chain_data": self.chain_data,
            "delegates": self.delegates,
            "token_holders": self.token_holders,
        }


@dataclass
class SourceEndpoints:
    """Base URLs and fixed identifiers of the upstream sources."""

    snapshot_api: str = "https://hub.snapshot.org/graphql"
    snapshot_space: str = "cow.eth"
    dune_api: str = "https://api.dune.com/api/v1"
    dune_queries: DuneQueryIds = field(default_factory=DuneQueryIds)
    coingecko_api: str = "https://api.coingecko.com/api/v3"
    coingecko_token_id: str = "cow-protocol"
    etherscan_api: str = "https://api.etherscan.io/api"
    token_address: str = "0xDEf1CA1fb7FBcDC777520aa7f396b4E015F497aB"
    safe_api: str = "https://safe-transaction-mainnet.safe.global"
    safes: dict[str, str] = field(
        default_factory=lambda: {
            "solver_payouts": "0xA03be496e67Ec29bC62F01a428683D7F9c204930",
        }
    )

    def __post_init__(self) -> None:
        for name in ("snapshot_api", "dune_api", "coingecko_api", "etherscan_api", "safe_api"):
            value = getattr(self, name)
            if not value.startswith(("http://", "https://")):
                raise ValueError(f"{name} must be an http(s) URL, got {value!r}")
        if not self.snapshot_space:
            raise ValueError("snapshot_space must not be empty")


@dataclass
class AnalyticsConfig:
    """Bounds for the derived views and the reconciliation run."""

    max_proposals: int = 20  # closed proposals sampled for chain distribution
    votes_per_proposal: int = 10000
    enrich_top_n: int = 30  # delegates enriched with their vote history
    recent_votes: int = 100  # votes scanned per enriched delegate
    variance_threshold_pct: float = 5.0
    poll_interval_ms: int = 2000
    query_max_wait_ms: int = 60000
    reconciliation_interval_s: float = 3600.0
    proposal_count_limit: int = 1000
    default_quorum: float = 35_000_000.0  # used when the space reports none

    def __post_init__(self) -> None:
        if self.max_proposals < 1:
            raise ValueError(f"max_proposals must be >= 1, got {self.max_proposals}")
        if self.votes_per_proposal < 1:
            raise ValueError(f"votes_per_proposal must be >= 1, got {self.votes_per_proposal}")
        if self.enrich_top_n < 0:
            raise ValueError(f"enrich_top_n must be >= 0, got {self.enrich_top_n}")
        if self.recent_votes < 1:
            raise ValueError(f"recent_votes must be >= 1, got {self.recent_votes}")
        if self.variance_threshold_pct < 0:
            raise ValueError(
                f"variance_threshold_pct must be >= 0, got {self.variance_threshold_pct}"
            )
        if self.poll_interval_ms <= 0:
            raise ValueError(f"poll_interval_ms must be > 0, got {self.poll_interval_ms}")
        if self.query_max_wait_ms <= 0:
            raise ValueError(f"query_max_wait_ms must be > 0, got {self.query_max_wait_ms}")
        if self.reconciliation_interval_s <= 0:
            raise ValueError(
                f"reconciliation_interval_s must be > 0, got {self.reconciliation_interval_s}"
            )


@dataclass
class AppConfig:
    """Top-level configuration for the data hub."""

    endpoints: SourceEndpoints = field(default_factory=SourceEndpoints)
    rate_limits: dict[str, RateLimitConfig] = field(default_factory=default_rate_limits)
    retry: RetryConfig = field(default_factory=RetryConfig)
    cache: CacheDurations = field(default_factory=CacheDurations)
    analytics: AnalyticsConfig = field(default_factory=AnalyticsConfig)
    request_timeout_ms: int = 30000

    # From environment; never logged
    dune_api_key: str = field(default="", repr=False)
    etherscan_api_key: str = field(default="", repr=False)
    coingecko_api_key: str = field(default="", repr=False)

    def __post_init__(self) -> None:
        missing = [s.value for s in Source if s.value not in self.rate_limits]
        if missing:
            raise ValueError(f"rate_limits missing sources: {', '.join(missing)}")
        if self.request_timeout_ms <= 0:
            raise ValueError(f"request_timeout_ms must be > 0, got {self.request_timeout_ms}")

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> AppConfig:
        """Build a config from environment variables (or the given mapping)."""
        environ = os.environ if env is None else env
        endpoints = SourceEndpoints()
        if environ.get("SNAPSHOT_API"):
            endpoints.snapshot_api = environ["SNAPSHOT_API"]
        if environ.get("SAFE_API_BASE"):
            endpoints.safe_api = environ["SAFE_API_BASE"]
        endpoints.__post_init__()
        return cls(
            endpoints=endpoints,
            dune_api_key=environ.get("DUNE_API_KEY", ""),
            etherscan_api_key=environ.get("ETHERSCAN_API_KEY", ""),
            coingecko_api_key=environ.get("COINGECKO_API_KEY", ""),
        )

    def redacted(self) -> dict[str, str]:
        """Credential presence per source (e.g. {"dune_auth": "set"}), safe to log."""
        values = {
            "DUNE_API_KEY": self.dune_api_key,
            "ETHERSCAN_API_KEY": self.etherscan_api_key,
            "COINGECKO_API_KEY": self.coingecko_api_key,
        }
        return {
            f"{name.split('_')[0].lower()}_auth": "set" if values[name] else "unset"
            for name in sorted(REDACTED_ENV_VARS)
        }
