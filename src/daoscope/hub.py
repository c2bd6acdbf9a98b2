"""
Composition root.

GovernanceDataHub builds one rate limiter (one window per source), one
retry executor, one cache and one client per source, and wires them into
the analytics and reconciliation components. Nothing is a module-level
singleton; tests build their own hub or components.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from daoscope import cache as cache_keys
from daoscope.analytics.chain_attribution import ChainAttributionAggregator
from daoscope.analytics.delegates import DelegateRosterBuilder
from daoscope.analytics.governance import calculate_governance_metrics
from daoscope.cache import TTLCache
from daoscope.config import AppConfig
from daoscope.connectors.coingecko import CoinGeckoClient
from daoscope.connectors.dune import DuneClient
from daoscope.connectors.etherscan import EtherscanClient
from daoscope.connectors.rate_limiter import RateLimiter
from daoscope.connectors.retry import RetryExecutor
from daoscope.connectors.safe import SafeClient
from daoscope.connectors.snapshot import SnapshotClient
from daoscope.reconciliation.comparator import compare_metric
from daoscope.reconciliation.service import ReconciliationService

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from daoscope.connectors.base import SourceClient
    from daoscope.connectors.dune import DuneOverview
    from daoscope.contracts.models import (
        ChainDistributionReport,
        ConcentrationMetrics,
        DelegateRoster,
        DelegateStats,
        Delegation,
        GovernanceMetrics,
        Proposal,
        ProposalChainBreakdown,
        ReconciliationComparison,
        ReconciliationReport,
        SafeBalance,
        SourceValue,
        TokenPrice,
        TreasurySnapshot,
    )

logger = logging.getLogger(__name__)


class GovernanceDataHub:
    """
    Entry point for collaborators (CLI, dashboards, exporters).

    Usage:
        async with GovernanceDataHub(AppConfig.from_env()) as hub:
            report = await hub.run_reconciliation()
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        time_fn: Callable[[], int] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """
        Args:
            config: Application configuration (defaults to AppConfig()).
            time_fn: Millisecond clock shared by limiter, cache and query polling.
            sleep: Sleep coroutine shared by limiter, retries and query polling.
        """
        self.config = config or AppConfig()
        cfg = self.config
        endpoints = cfg.endpoints

        self.rate_limiter = RateLimiter(cfg.rate_limits, time_fn=time_fn, sleep=sleep)
        self.retry_executor = RetryExecutor(cfg.retry, sleep=sleep)
        self.cache = TTLCache(time_fn=time_fn)
        self.cancel_event = asyncio.Event()

        common: dict[str, Any] = {
            "rate_limiter": self.rate_limiter,
            "retry_executor": self.retry_executor,
            "timeout_ms": cfg.request_timeout_ms,
            "cancel_event": self.cancel_event,
        }
        self.snapshot = SnapshotClient(
            endpoints.snapshot_api, space=endpoints.snapshot_space, **common
        )
        self.dune = DuneClient(
            endpoints.dune_api,
            api_key=cfg.dune_api_key or None,
            query_ids=endpoints.dune_queries,
            poll_interval_ms=cfg.analytics.poll_interval_ms,
            max_wait_ms=cfg.analytics.query_max_wait_ms,
            time_fn=time_fn,
            sleep=sleep,
            **common,
        )
        self.coingecko = CoinGeckoClient(
            endpoints.coingecko_api,
            api_key=cfg.coingecko_api_key or None,
            token_id=endpoints.coingecko_token_id,
            **common,
        )
        self.etherscan = EtherscanClient(
            endpoints.etherscan_api,
            api_key=cfg.etherscan_api_key or None,
            token_address=endpoints.token_address,
            **common,
        )
        self.safe = SafeClient(endpoints.safe_api, safes=endpoints.safes, **common)

        self.chain_aggregator = ChainAttributionAggregator(
            self.snapshot, cache=self.cache, config=cfg.analytics, durations=cfg.cache
        )
        self.roster_builder = DelegateRosterBuilder(
            self.snapshot, cache=self.cache, config=cfg.analytics, durations=cfg.cache
        )
        self.reconciliation = ReconciliationService(
            self.snapshot, self.dune, self.safe, config=cfg.analytics
        )
        # Largest `limit` the cached proposals list was fetched with
        self._proposals_limit = 0

    @property
    def clients(self) -> list[SourceClient]:
        return [self.snapshot, self.dune, self.coingecko, self.etherscan, self.safe]

    async def close(self) -> None:
        """Stop background work and close every client session."""
        self.cancel_event.set()
        await self.reconciliation.stop_schedule()
        await asyncio.gather(*(client.close() for client in self.clients))

    async def __aenter__(self) -> GovernanceDataHub:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # -- cached datasets --

    async def get_or_compute(
        self,
        key: str,
        compute_fn: Callable[[], Awaitable[Any]],
        duration_ms: int,
    ) -> Any:
        return await self.cache.get_or_compute(key, compute_fn, duration_ms)

    async def get_proposals(self, limit: int = 100) -> list[Proposal]:
        """Newest proposals; refetched when more are asked for than are cached."""
        if limit > self._proposals_limit:
            self.cache.delete(cache_keys.PROPOSALS)

        async def fetch() -> list[Proposal]:
            proposals = await self.snapshot.fetch_proposals(limit)
            self._proposals_limit = limit
            return proposals

        proposals = await self.cache.get_or_compute(
            cache_keys.PROPOSALS, fetch, self.config.cache.proposals
        )
        return proposals[:limit]

    async def get_treasury(self) -> TreasurySnapshot:
        return await self.cache.get_or_compute(
            cache_keys.TREASURY, self.dune.fetch_treasury_value, self.config.cache.treasury
        )

    async def get_token_price(self) -> TokenPrice:
        return await self.cache.get_or_compute(
            cache_keys.TOKEN_PRICE,
            self.coingecko.fetch_simple_price,
            self.config.cache.token_price,
        )

    async def get_solver_metrics(self) -> DuneOverview:
        return await self.cache.get_or_compute(
            cache_keys.SOLVER_METRICS, self.dune.fetch_overview, self.config.cache.solver_metrics
        )

    async def get_safe_balances(self) -> TreasurySnapshot:
        return await self.cache.get_or_compute(
            cache_keys.SAFE_BALANCES,
            self.safe.fetch_treasury_value,
            self.config.cache.safe_balances,
        )

    async def get_token_concentration(self) -> ConcentrationMetrics:
        return await self.cache.get_or_compute(
            cache_keys.TOKEN_CONCENTRATION,
            self.etherscan.fetch_concentration_metrics,
            self.config.cache.token_holders,
        )

    async def fetch_balances(self, address: str) -> list[SafeBalance]:
        return await self.safe.fetch_balances(address)

    def cache_status(self) -> dict[str, dict[str, Any]]:
        return self.cache.get_status()

    # -- derived views --

    async def get_governance_metrics(self) -> GovernanceMetrics:
        return calculate_governance_metrics(await self.get_proposals())

    async def analyze_chain_distribution(
        self,
        proposals: Sequence[Proposal] | None = None,
    ) -> ChainDistributionReport:
        """Chain distribution over recent closed proposals (fetched if not given)."""
        if proposals is not None:
            return await self.chain_aggregator.analyze_chain_distribution(proposals)

        async def compute() -> ChainDistributionReport:
            return await self.chain_aggregator.analyze_chain_distribution(
                await self.get_proposals()
            )

        # Reports with failures are not cached so the next call retries them
        return await self.cache.get_or_compute(
            cache_keys.CHAIN_DISTRIBUTION,
            compute,
            self.config.cache.chain_data,
            should_store=lambda report: not report.failures,
        )

    async def aggregate_voting_power_by_chain(self, proposal_id: str) -> ProposalChainBreakdown:
        return await self.chain_aggregator.aggregate_voting_power_by_chain(proposal_id)

    async def build_delegate_roster(
        self,
        space: str | None = None,
        limit: int = 100,
    ) -> DelegateRoster:
        return await self.roster_builder.build_delegate_roster(space, limit)

    async def lookup_delegation(self, address: str) -> Delegation | None:
        return await self.roster_builder.lookup_delegation(address)

    async def get_delegation_history(self, address: str) -> list[Delegation]:
        return await self.roster_builder.delegation_history(address)

    async def get_delegate_stats(self, address: str) -> DelegateStats:
        """Participation over the cached proposal list plus the delegator count."""
        proposals = await self.get_proposals()
        return await self.roster_builder.delegate_stats(address, len(proposals))

    # -- reconciliation --

    def compare_metric(
        self,
        metric: str,
        source_values: dict[str, SourceValue | None],
    ) -> ReconciliationComparison:
        return compare_metric(
            metric,
            source_values,
            threshold_pct=self.config.analytics.variance_threshold_pct,
        )

    async def run_reconciliation(self) -> ReconciliationReport:
        return await self.reconciliation.run_reconciliation()
