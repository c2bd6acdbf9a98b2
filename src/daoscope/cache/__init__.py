"""In-memory TTL cache and its key conventions."""

from daoscope.cache.ttl_cache import (
    CHAIN_DISTRIBUTION,
    PROPOSALS,
    RECOGNIZED_DELEGATES,
    SAFE_BALANCES,
    SOLVER_METRICS,
    STANDARD_KEYS,
    TOKEN_CONCENTRATION,
    TOKEN_PRICE,
    TREASURY,
    CacheEntry,
    TTLCache,
    chain_data_key,
    delegate_votes_key,
    delegation_history_key,
    delegations_received_key,
    delegation_key,
    roster_key,
)

__all__ = [
    "CHAIN_DISTRIBUTION",
    "PROPOSALS",
    "RECOGNIZED_DELEGATES",
    "SAFE_BALANCES",
    "SOLVER_METRICS",
    "STANDARD_KEYS",
    "TOKEN_CONCENTRATION",
    "TOKEN_PRICE",
    "TREASURY",
    "CacheEntry",
    "TTLCache",
    "chain_data_key",
    "delegate_votes_key",
    "delegation_history_key",
    "delegations_received_key",
    "delegation_key",
    "roster_key",
]
