"""
Voting power attribution by chain.

Each strategy slot of a proposal is classified to a chain; every vote's
per-strategy voting power is then added to the chain of the matching slot.
The distribution total is derived from the chain values, so it always equals
the sum of all attributed contributions.

Classification order:
1. params.network, then params.chainId, then the strategy's own network
   (numeric chain id or network name)
2. Strategy name keywords (chain-specific names before generic mainnet ones)
3. Generic balance/delegation names default to mainnet, anything else is unknown
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from daoscope.cache import chain_data_key
from daoscope.config import AnalyticsConfig, CacheDurations
from daoscope.connectors.errors import SourceError, error_kind
from daoscope.contracts.models import (
    Chain,
    ChainDistribution,
    ChainDistributionReport,
    PartialSourceFailure,
    Proposal,
    ProposalChainBreakdown,
    ProposalState,
    Strategy,
    StrategyChain,
    Vote,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from daoscope.cache import TTLCache
    from daoscope.connectors.snapshot import SnapshotClient

logger = logging.getLogger(__name__)

CHAIN_IDS: dict[str, Chain] = {
    "1": Chain.MAINNET,
    "100": Chain.GNOSIS,
    "42161": Chain.ARBITRUM,
    "8453": Chain.BASE,
    "137": Chain.POLYGON,
}

NETWORK_NAMES: dict[str, Chain] = {
    **CHAIN_IDS,
    "mainnet": Chain.MAINNET,
    "ethereum": Chain.MAINNET,
    "gnosis": Chain.GNOSIS,
    "xdai": Chain.GNOSIS,
    "arbitrum": Chain.ARBITRUM,
    "arbitrum-one": Chain.ARBITRUM,
    "base": Chain.BASE,
    "polygon": Chain.POLYGON,
    "matic": Chain.POLYGON,
}

# Checked in order; mainnet's generic patterns are substrings of the
# chain-specific ones and must come last.
CHAIN_KEYWORDS: tuple[tuple[Chain, tuple[str, ...]], ...] = (
    (
        Chain.GNOSIS,
        (
            "erc20-balance-of-gnosis-chain",
            "erc20-balance-of-gnosis",
            "balance-of-gnosis",
            "gnosis",
            "xdai",
        ),
    ),
    (Chain.ARBITRUM, ("erc20-balance-of-arbitrum", "balance-of-arbitrum", "arbitrum")),
    (Chain.BASE, ("erc20-balance-of-base", "balance-of-base", "base")),
    (Chain.POLYGON, ("erc20-balance-of-polygon", "balance-of-polygon", "polygon", "matic")),
    (
        Chain.MAINNET,
        (
            "erc20-balance-of",
            "erc20-votes",
            "delegation",
            "contract-call",
            "eth-balance",
            "balance-of",
            "multichain",
        ),
    ),
)

GENERIC_MAINNET_HINTS = ("erc20", "balance", "delegation")


def _lookup_network(value: Any) -> Chain | None:
    if value is None or isinstance(value, bool):
        return None
    key = str(value).strip().lower()
    return NETWORK_NAMES.get(key)


def classify_strategy(strategy: Strategy) -> Chain:
    """Classify one strategy to the chain its voting power comes from."""
    params = strategy.params or {}
    for candidate in (params.get("network"), params.get("chainId"), strategy.network):
        chain = _lookup_network(candidate)
        if chain is not None:
            return chain

    name = strategy.name.lower()
    if not name:
        return Chain.UNKNOWN
    for chain, patterns in CHAIN_KEYWORDS:
        if any(pattern in name for pattern in patterns):
            return chain
    if any(hint in name for hint in GENERIC_MAINNET_HINTS):
        return Chain.MAINNET
    return Chain.UNKNOWN


def classify_strategies(strategies: Sequence[Strategy]) -> list[StrategyChain]:
    return [
        StrategyChain(index=i, chain=classify_strategy(s), strategy_name=s.name)
        for i, s in enumerate(strategies)
    ]


def attribute_votes(
    strategy_chains: Sequence[StrategyChain],
    votes: Sequence[Vote],
) -> ChainDistribution:
    """
    Sum per-strategy voting power into chain totals.

    A vote without a per-strategy breakdown contributes its whole voting
    power to the first strategy's chain. Breakdown entries with no matching
    strategy slot, and votes on a proposal with no strategies, go to unknown.
    """
    totals = dict.fromkeys(Chain, 0.0)
    chains = [sc.chain for sc in strategy_chains]
    fallback = chains[0] if chains else Chain.UNKNOWN

    for vote in votes:
        if vote.vp_by_strategy is None:
            if vote.vp:
                totals[fallback] += vote.vp
            continue
        for index, power in enumerate(vote.vp_by_strategy):
            chain = chains[index] if index < len(chains) else Chain.UNKNOWN
            totals[chain] += power

    return ChainDistribution.from_totals(totals)


def aggregate_proposal(proposal: Proposal, votes: Sequence[Vote]) -> ProposalChainBreakdown:
    """Chain breakdown of one proposal from already-fetched votes."""
    strategy_chains = classify_strategies(proposal.strategies)
    return ProposalChainBreakdown(
        proposal_id=proposal.id,
        distribution=attribute_votes(strategy_chains, votes),
        strategies=strategy_chains,
        total_votes=len(votes),
    )


def select_recent_closed(proposals: Sequence[Proposal], limit: int) -> list[Proposal]:
    """Closed proposals with recorded participation, capped at `limit`, in input order."""
    eligible = [
        p for p in proposals if p.state == ProposalState.CLOSED and p.scores_total > 0
    ]
    return eligible[:limit]


class ChainAttributionAggregator:
    """
    Fetches votes and computes chain distributions for one or many proposals.

    Per-proposal breakdowns are cached under `chain_data_<proposal_id>`.
    """

    def __init__(
        self,
        snapshot: SnapshotClient,
        *,
        cache: TTLCache | None = None,
        config: AnalyticsConfig | None = None,
        durations: CacheDurations | None = None,
    ) -> None:
        self._snapshot = snapshot
        self._cache = cache
        self._config = config or AnalyticsConfig()
        self._durations = durations or CacheDurations()

    async def _compute(self, proposal_id: str, proposal: Proposal | None) -> ProposalChainBreakdown:
        if proposal is None or not proposal.strategies:
            proposal = await self._snapshot.fetch_proposal(proposal_id)
        votes = await self._snapshot.fetch_votes(proposal_id, self._config.votes_per_proposal)
        breakdown = aggregate_proposal(proposal, votes)
        logger.debug(
            "Proposal chain breakdown",
            extra={
                "proposal_id": proposal_id,
                "votes": breakdown.total_votes,
                "total": breakdown.distribution.total,
            },
        )
        return breakdown

    async def aggregate_voting_power_by_chain(
        self,
        proposal_id: str,
        proposal: Proposal | None = None,
    ) -> ProposalChainBreakdown:
        """
        Chain breakdown of a single proposal.

        Args:
            proposal_id: Proposal to analyze.
            proposal: Already-fetched proposal; its strategies are reused if present.

        Raises:
            SourceError: If the proposal or its votes cannot be fetched.
        """
        if self._cache is None:
            return await self._compute(proposal_id, proposal)
        return await self._cache.get_or_compute(
            chain_data_key(proposal_id),
            lambda: self._compute(proposal_id, proposal),
            self._durations.chain_data,
        )

    async def analyze_chain_distribution(
        self,
        proposals: Sequence[Proposal],
    ) -> ChainDistributionReport:
        """
        Chain distribution summed over recent closed proposals.

        A proposal whose data cannot be fetched contributes nothing and is
        listed in `failures`; the others are still summed.
        """
        selected = select_recent_closed(proposals, self._config.max_proposals)
        if not selected:
            return ChainDistributionReport()

        results = await asyncio.gather(
            *(self.aggregate_voting_power_by_chain(p.id, p) for p in selected),
            return_exceptions=True,
        )

        distribution = ChainDistribution()
        analyzed: list[str] = []
        failures: list[PartialSourceFailure] = []
        for proposal, result in zip(selected, results, strict=True):
            if isinstance(result, SourceError):
                failures.append(result.to_failure(item=proposal.id))
            elif isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failures.append(
                    PartialSourceFailure(
                        source="snapshot",
                        error_kind=error_kind(result),
                        message=str(result),
                        item=proposal.id,
                    )
                )
            else:
                distribution = distribution + result.distribution
                analyzed.append(proposal.id)
                continue
            logger.warning(
                "Proposal skipped in chain distribution",
                extra={"proposal_id": proposal.id, "error_kind": error_kind(result)},
            )

        return ChainDistributionReport(
            distribution=distribution,
            proposals_analyzed=len(analyzed),
            proposal_ids=analyzed,
            failures=failures,
        )
