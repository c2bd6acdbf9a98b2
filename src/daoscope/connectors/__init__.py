"""Fetch gateway: rate limiting, retries, error taxonomy and source clients."""

from daoscope.connectors.base import SourceClient
from daoscope.connectors.coingecko import CoinGeckoClient
from daoscope.connectors.dune import DuneClient, DuneOverview, DuneQueryIds
from daoscope.connectors.errors import (
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    QueryFailedError,
    QueryTimeoutError,
    QuotaExceededError,
    RateLimitedError,
    ResponseFormatError,
    SourceError,
    SourceResult,
    TransportError,
    classify_response,
)
from daoscope.connectors.etherscan import EtherscanClient
from daoscope.connectors.query_state import QueryExecution, QueryState
from daoscope.connectors.rate_limiter import RateLimitConfig, RateLimiter
from daoscope.connectors.retry import RetryConfig, RetryExecutor, compute_backoff_delay
from daoscope.connectors.safe import SafeClient
from daoscope.connectors.snapshot import SnapshotClient

__all__ = [
    "AuthenticationError",
    "AuthorizationError",
    "CoinGeckoClient",
    "DuneClient",
    "DuneOverview",
    "DuneQueryIds",
    "EtherscanClient",
    "NotFoundError",
    "QueryExecution",
    "QueryFailedError",
    "QueryState",
    "QueryTimeoutError",
    "QuotaExceededError",
    "RateLimitConfig",
    "RateLimitedError",
    "RateLimiter",
    "ResponseFormatError",
    "RetryConfig",
    "RetryExecutor",
    "SafeClient",
    "SnapshotClient",
    "SourceClient",
    "SourceError",
    "SourceResult",
    "TransportError",
    "classify_response",
    "compute_backoff_delay",
]
