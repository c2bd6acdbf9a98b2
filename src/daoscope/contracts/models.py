"""
Data contracts for daoscope.

Normalized, immutable records produced by the source clients and consumed by
the analytics and reconciliation layers. Upstream payloads are mapped into
these shapes by the `from_raw` constructors; a fresh fetch always produces a
new value.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

import orjson
from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class Source(str, Enum):
    """Upstream data providers."""

    SNAPSHOT = "snapshot"  # voting records
    DUNE = "dune"  # analytics queries
    COINGECKO = "coingecko"  # price oracle
    ETHERSCAN = "etherscan"  # block explorer
    SAFE = "safe"  # multisig balances


class ProposalState(str, Enum):
    """Proposal lifecycle state."""

    PENDING = "pending"
    ACTIVE = "active"
    CLOSED = "closed"


class Chain(str, Enum):
    """Networks whose voting power is tracked separately."""

    MAINNET = "mainnet"
    GNOSIS = "gnosis"
    ARBITRUM = "arbitrum"
    BASE = "base"
    POLYGON = "polygon"
    UNKNOWN = "unknown"


def _to_float(value: Any) -> float:
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


class Strategy(BaseModel):
    """
    A voting-power rule attached to a proposal.

    Attributes:
        name: Strategy name (e.g., "erc20-balance-of").
        network: Network declared on the strategy itself, if any.
        params: Free-form strategy parameters (may carry network or chainId).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(default="", description="Strategy name")
    network: str | None = Field(default=None, description="Strategy-level network id")
    params: dict[str, Any] = Field(default_factory=dict, description="Strategy parameters")

    @classmethod
    def from_raw(cls, data: dict[str, Any]) -> Strategy:
        network = data.get("network")
        return cls(
            name=str(data.get("name") or ""),
            network=str(network) if network not in (None, "") else None,
            params=data.get("params") or {},
        )


class Proposal(BaseModel):
    """
    Governance proposal from the voting-records source.

    Attributes:
        id: Proposal identifier.
        title: Proposal title.
        choices: Per-choice labels.
        scores: Per-choice score array, aligned with choices.
        scores_total: Total recorded participation.
        quorum: Quorum threshold (0 when the space sets none).
        state: Lifecycle state.
        strategies: Ordered strategy descriptors.
        created: Creation time (seconds since epoch).
        author: Author address.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1)
    title: str = ""
    choices: list[str] = Field(default_factory=list)
    scores: list[float] = Field(default_factory=list)
    scores_total: float = Field(default=0.0, ge=0)
    quorum: float = Field(default=0.0, ge=0)
    state: ProposalState = ProposalState.PENDING
    strategies: list[Strategy] = Field(default_factory=list)
    created: int = Field(default=0, ge=0)
    author: str = ""

    @classmethod
    def from_raw(cls, data: dict[str, Any]) -> Proposal:
        """Parse from a raw GraphQL proposal object."""
        return cls(
            id=data["id"],
            title=data.get("title") or "",
            choices=[str(c) for c in data.get("choices") or []],
            scores=[_to_float(s) for s in data.get("scores") or []],
            scores_total=_to_float(data.get("scores_total")),
            quorum=_to_float(data.get("quorum")),
            state=ProposalState(data.get("state") or "pending"),
            strategies=[Strategy.from_raw(s) for s in data.get("strategies") or []],
            created=int(data.get("created") or 0),
            author=data.get("author") or "",
        )


class Vote(BaseModel):
    """
    A single vote on a proposal.

    `vp_by_strategy`, when present, is aligned index-for-index with the
    proposal's strategy list.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    voter: str = Field(..., min_length=1)
    proposal_id: str = ""
    choice: int | list[int] | dict[str, float] | None = None
    vp: float = 0.0
    vp_by_strategy: list[float] | None = None
    created: int = Field(default=0, ge=0)

    @field_validator("voter")
    @classmethod
    def validate_voter(cls, v: str) -> str:
        """Addresses are compared case-insensitively."""
        return v.lower()

    @classmethod
    def from_raw(cls, data: dict[str, Any], proposal_id: str | None = None) -> Vote:
        """Parse from a raw GraphQL vote object."""
        if proposal_id is None:
            proposal = data.get("proposal")
            proposal_id = proposal.get("id", "") if isinstance(proposal, dict) else ""
        raw_breakdown = data.get("vp_by_strategy")
        breakdown = (
            [_to_float(v) for v in raw_breakdown] if isinstance(raw_breakdown, list) else None
        )
        return cls(
            voter=data["voter"],
            proposal_id=proposal_id or "",
            choice=data.get("choice"),
            vp=_to_float(data.get("vp")),
            vp_by_strategy=breakdown,
            created=int(data.get("created") or 0),
        )


class SpaceInfo(BaseModel):
    """Voting settings of a governance space."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    name: str = ""
    network: str = ""
    symbol: str = ""
    quorum: float = Field(default=0.0, ge=0)
    strategies: list[Strategy] = Field(default_factory=list)

    @classmethod
    def from_raw(cls, data: dict[str, Any]) -> SpaceInfo:
        voting = data.get("voting") or {}
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            network=str(data.get("network") or ""),
            symbol=data.get("symbol") or "",
            quorum=_to_float(voting.get("quorum")),
            strategies=[Strategy.from_raw(s) for s in data.get("strategies") or []],
        )


class ActivityRecord(BaseModel):
    """Per-voter activity in a space (leaderboard entry)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    address: str = Field(..., min_length=1)
    activity_count: int = Field(default=0, ge=0)
    last_activity: int | None = None
    space: str = ""

    @classmethod
    def from_raw(cls, data: dict[str, Any]) -> ActivityRecord:
        last_vote = data.get("lastVote")
        return cls(
            address=str(data["user"]).lower(),
            activity_count=int(data.get("votesCount") or 0),
            last_activity=int(last_vote) if last_vote else None,
            space=data.get("space") or "",
        )


class ChainDistribution(BaseModel):
    """
    Aggregated voting power per chain.

    `total` is derived from the chain values and cannot be set independently.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    mainnet: float = 0.0
    gnosis: float = 0.0
    arbitrum: float = 0.0
    base: float = 0.0
    polygon: float = 0.0
    unknown: float = 0.0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> float:
        return sum(self.by_chain().values())

    def by_chain(self) -> dict[Chain, float]:
        return {chain: getattr(self, chain.value) for chain in Chain}

    @classmethod
    def from_totals(cls, totals: dict[Chain, float]) -> ChainDistribution:
        return cls(**{chain.value: totals.get(chain, 0.0) for chain in Chain})

    def __add__(self, other: ChainDistribution) -> ChainDistribution:
        mine = self.by_chain()
        theirs = other.by_chain()
        return ChainDistribution.from_totals({c: mine[c] + theirs[c] for c in Chain})


class StrategyChain(BaseModel):
    """Chain classification of one strategy slot."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    index: int = Field(..., ge=0)
    chain: Chain
    strategy_name: str = ""


class PartialSourceFailure(BaseModel):
    """
    A failure of one source (or one item of a batch) that did not abort the
    surrounding computation.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    source: str
    error_kind: str
    message: str = ""
    item: str | None = None


class ProposalChainBreakdown(BaseModel):
    """Voting power by chain for a single proposal."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    proposal_id: str
    distribution: ChainDistribution = Field(default_factory=ChainDistribution)
    strategies: list[StrategyChain] = Field(default_factory=list)
    total_votes: int = Field(default=0, ge=0)


class ChainDistributionReport(BaseModel):
    """Voting power by chain summed over recent closed proposals."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    distribution: ChainDistribution = Field(default_factory=ChainDistribution)
    proposals_analyzed: int = Field(default=0, ge=0)
    proposal_ids: list[str] = Field(default_factory=list)
    failures: list[PartialSourceFailure] = Field(default_factory=list)

    @property
    def failed_proposal_ids(self) -> list[str]:
        return [f.item for f in self.failures if f.item is not None]


class Delegation(BaseModel):
    """One delegator -> delegate assignment in a space."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = ""
    delegator: str = Field(..., min_length=1)
    delegate: str = Field(..., min_length=1)
    timestamp: int = Field(default=0, ge=0)
    space: str = ""

    @field_validator("delegator", "delegate")
    @classmethod
    def validate_address(cls, v: str) -> str:
        return v.lower()

    @classmethod
    def from_raw(cls, data: dict[str, Any]) -> Delegation:
        return cls(
            id=str(data.get("id") or ""),
            delegator=data["delegator"],
            delegate=data["delegate"],
            timestamp=int(data.get("timestamp") or 0),
            space=data.get("space") or "",
        )


class DelegateRecord(BaseModel):
    """
    A delegate in the roster.

    Attributes:
        address: Delegate address (lower-case).
        activity_count: Vote count, used as a proxy for delegator count.
        last_activity: Last vote time (seconds since epoch).
        strongest_voting_power: Max per-vote voting power in recent votes.
            None when the delegate was not enriched; 0.0 when enrichment
            failed or found no non-zero vote.
        recent_votes: Sample of the most recent votes.
        participation_rate: Percent of proposals voted on, when known.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    address: str = Field(..., min_length=1)
    activity_count: int = Field(default=0, ge=0)
    last_activity: int | None = None
    strongest_voting_power: float | None = None
    recent_votes: list[Vote] = Field(default_factory=list)
    participation_rate: float | None = None


class RosterMetrics(BaseModel):
    """Concentration metrics over a delegate roster."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    total_delegates: int = 0
    total_activity: int = 0
    average_activity: float = 0.0
    top_delegate_share: float = 0.0
    top10_concentration: float = 0.0


class DelegateRoster(BaseModel):
    """Ranked delegates plus the metrics derived from them."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    space: str
    delegates: list[DelegateRecord] = Field(default_factory=list)
    metrics: RosterMetrics = Field(default_factory=RosterMetrics)
    failures: list[PartialSourceFailure] = Field(default_factory=list)


class DelegateStats(BaseModel):
    """Voting statistics for one address."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    participation_rate: float = 0.0
    total_votes: int = 0
    delegator_count: int = Field(default=0, ge=0)
    last_vote_at: datetime | None = None


class GovernanceMetrics(BaseModel):
    """Summary statistics over a set of proposals."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    total_proposals: int = 0
    active_proposals: int = 0
    average_participation: float = 0.0
    max_votes: float = 0.0
    success_rate: float = 0.0


class TokenPrice(BaseModel):
    """Spot price snapshot from the price source."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    token_id: str
    price_usd: float = Field(default=0.0, ge=0)
    market_cap_usd: float = 0.0
    volume_24h_usd: float = 0.0
    change_24h_pct: float = 0.0
    last_updated: datetime | None = None


class TokenHolder(BaseModel):
    """A token holder from the explorer, balance in whole tokens."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    address: str = Field(..., min_length=1)
    balance: float = Field(default=0.0, ge=0)


class ConcentrationMetrics(BaseModel):
    """Share of total supply held by the largest holders (percentages)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    top10_pct: float = 0.0
    top50_pct: float = 0.0
    total_supply: float = 0.0
    top_holders: list[TokenHolder] = Field(default_factory=list)


class SafeBalance(BaseModel):
    """One token balance held by a multisig."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    token_address: str | None = None
    symbol: str = ""
    balance: str = "0"
    fiat_balance: float = 0.0

    @classmethod
    def from_raw(cls, data: dict[str, Any]) -> SafeBalance:
        token = data.get("token") or {}
        # Native ETH balances have no token object
        symbol = token.get("symbol") or ("ETH" if data.get("tokenAddress") is None else "")
        return cls(
            token_address=data.get("tokenAddress"),
            symbol=symbol,
            balance=str(data.get("balance") or "0"),
            fiat_balance=_to_float(data.get("fiatBalance")),
        )


class TreasurySnapshot(BaseModel):
    """Treasury value as reported by one source."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    total_usd: float = 0.0
    composition: dict[str, float] = Field(default_factory=dict)
    source_url: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    failures: list[PartialSourceFailure] = Field(default_factory=list)


class ReconciliationStatus(str, Enum):
    """Outcome of comparing one metric across sources."""

    OK = "ok"
    WARNING = "warning"
    ERROR = "error"
    PARTIAL = "partial"


class SourceValue(BaseModel):
    """One source's reading of a metric."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    value: float
    source_url: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ReconciliationComparison(BaseModel):
    """Agreement or disagreement of one metric across sources."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    metric: str
    sources: dict[str, SourceValue] = Field(default_factory=dict)
    variance: float = Field(default=0.0, ge=0)
    status: ReconciliationStatus
    message: str = ""
    failures: list[PartialSourceFailure] = Field(default_factory=list)
    details: dict[str, float] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)


class ReconciliationSummary(BaseModel):
    """Status tally of a reconciliation run. Partial results count as warnings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    total: int = 0
    ok: int = 0
    warnings: int = 0
    errors: int = 0


class ReconciliationReport(BaseModel):
    """Result of one full reconciliation run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    timestamp: datetime
    duration_ms: int = Field(default=0, ge=0)
    comparisons: dict[str, ReconciliationComparison] = Field(default_factory=dict)
    summary: ReconciliationSummary = Field(default_factory=ReconciliationSummary)

    def to_json(self) -> bytes:
        """Serialize to JSON bytes using orjson."""
        return orjson.dumps(self.model_dump(mode="json"), option=orjson.OPT_INDENT_2)

    @classmethod
    def from_json(cls, data: bytes | str) -> ReconciliationReport:
        """Deserialize from JSON."""
        if isinstance(data, str):
            data = data.encode()
        return cls.model_validate(orjson.loads(data))
