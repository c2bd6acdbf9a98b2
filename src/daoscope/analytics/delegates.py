"""
Delegate roster built from per-voter activity records.

Records are merged by address, ranked by activity (address breaks ties),
optionally enriched with each top delegate's strongest recent voting power,
and summarized. Metrics are always recomputed from the final roster.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import UTC, datetime
from typing import TYPE_CHECKING, TypeVar

from daoscope.cache import (
    delegate_votes_key,
    delegation_history_key,
    delegation_key,
    delegations_received_key,
    roster_key,
)
from daoscope.config import AnalyticsConfig, CacheDurations
from daoscope.connectors.errors import SourceError, error_kind
from daoscope.contracts.models import (
    ActivityRecord,
    DelegateRecord,
    DelegateRoster,
    DelegateStats,
    Delegation,
    PartialSourceFailure,
    RosterMetrics,
    Source,
    Vote,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from daoscope.cache import TTLCache
    from daoscope.connectors.snapshot import SnapshotClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

RECENT_VOTE_SAMPLE = 10


def merge_activity(records: Sequence[ActivityRecord]) -> list[DelegateRecord]:
    """One DelegateRecord per address: counts summed, latest activity kept."""
    merged: dict[str, DelegateRecord] = {}
    for record in records:
        address = record.address.lower()
        existing = merged.get(address)
        if existing is None:
            merged[address] = DelegateRecord(
                address=address,
                activity_count=record.activity_count,
                last_activity=record.last_activity,
            )
            continue
        last = [t for t in (existing.last_activity, record.last_activity) if t is not None]
        merged[address] = existing.model_copy(
            update={
                "activity_count": existing.activity_count + record.activity_count,
                "last_activity": max(last) if last else None,
            }
        )
    return list(merged.values())


def rank_delegates(delegates: Sequence[DelegateRecord]) -> list[DelegateRecord]:
    """Sort by activity descending, then address ascending."""
    return sorted(delegates, key=lambda d: (-d.activity_count, d.address))


def strongest_voting_power(votes: Sequence[Vote]) -> float:
    """Maximum positive per-vote voting power, 0.0 if none."""
    positive = [v.vp for v in votes if v.vp > 0]
    return max(positive) if positive else 0.0


def compute_roster_metrics(delegates: Sequence[DelegateRecord]) -> RosterMetrics:
    """Concentration of activity across the roster (percentages)."""
    if not delegates:
        return RosterMetrics()
    ranked = rank_delegates(delegates)
    total = sum(d.activity_count for d in ranked)
    top_count = math.ceil(len(ranked) * 0.1)
    top_total = sum(d.activity_count for d in ranked[:top_count])
    return RosterMetrics(
        total_delegates=len(ranked),
        total_activity=total,
        average_activity=total / len(ranked),
        top_delegate_share=ranked[0].activity_count / total * 100 if total else 0.0,
        top10_concentration=top_total / total * 100 if total else 0.0,
    )


def compute_delegate_stats(
    votes: Sequence[Vote],
    total_proposals: int,
    delegations_received: Sequence[Delegation] = (),
) -> DelegateStats:
    """
    Participation of one voter.

    Args:
        votes: The voter's votes, newest first.
        total_proposals: Proposals the voter could have voted on.
        delegations_received: Delegations made to the voter; each distinct
            delegator is counted once.
    """
    delegator_count = len({d.delegator for d in delegations_received})
    if not votes or total_proposals <= 0:
        return DelegateStats(delegator_count=delegator_count)
    rate = len(votes) / total_proposals * 100
    return DelegateStats(
        participation_rate=min(rate, 100.0),
        total_votes=len(votes),
        last_vote_at=datetime.fromtimestamp(votes[0].created, tz=UTC),
        delegator_count=delegator_count,
    )


class DelegateRosterBuilder:
    """Builds ranked delegate rosters from the voting-records source."""

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

    async def _cached(self, key: str, compute: Callable[[], Awaitable[T]]) -> T:
        if self._cache is None:
            return await compute()
        return await self._cache.get_or_compute(key, compute, self._durations.delegates)

    async def _recent_votes(self, address: str) -> list[Vote]:
        return await self._cached(
            delegate_votes_key(address),
            lambda: self._snapshot.fetch_votes_by_voter(address, self._config.recent_votes),
        )

    async def lookup_delegation(self, address: str) -> Delegation | None:
        """Current delegation made by `address`, None if it has not delegated."""
        return await self._cached(
            delegation_key(address), lambda: self._snapshot.fetch_delegation(address)
        )

    async def delegation_history(self, address: str) -> list[Delegation]:
        """Delegations made by `address`, newest first."""
        return await self._cached(
            delegation_history_key(address),
            lambda: self._snapshot.fetch_delegation_history(address),
        )

    async def delegate_stats(self, address: str, total_proposals: int) -> DelegateStats:
        """
        Participation and delegator count of one delegate.

        Raises:
            SourceError: If the votes or received delegations cannot be fetched.
        """
        votes, received = await asyncio.gather(
            self._recent_votes(address),
            self._cached(
                delegations_received_key(address),
                lambda: self._snapshot.fetch_delegations_received(address),
            ),
        )
        return compute_delegate_stats(votes, total_proposals, received)

    async def _enrich(
        self,
        delegate: DelegateRecord,
        total_proposals: int | None,
    ) -> tuple[DelegateRecord, PartialSourceFailure | None]:
        try:
            votes = await self._recent_votes(delegate.address)
        except Exception as e:
            logger.warning(
                "Delegate enrichment failed",
                extra={"address": delegate.address, "error_kind": error_kind(e)},
            )
            if isinstance(e, SourceError):
                failure = e.to_failure(item=delegate.address)
            else:
                failure = PartialSourceFailure(
                    source=Source.SNAPSHOT.value,
                    error_kind=error_kind(e),
                    message=str(e),
                    item=delegate.address,
                )
            return delegate.model_copy(update={"strongest_voting_power": 0.0}), failure

        update: dict[str, object] = {
            "strongest_voting_power": strongest_voting_power(votes),
            "recent_votes": list(votes[:RECENT_VOTE_SAMPLE]),
        }
        if total_proposals:
            update["participation_rate"] = compute_delegate_stats(
                votes, total_proposals
            ).participation_rate
        return delegate.model_copy(update=update), None

    async def build_from_records(
        self,
        space: str,
        records: Sequence[ActivityRecord],
        limit: int,
        *,
        enrich: bool = True,
        total_proposals: int | None = None,
    ) -> DelegateRoster:
        """Roster from already-fetched activity records."""
        ranked = rank_delegates(merge_activity(records))[:limit]

        failures: list[PartialSourceFailure] = []
        top_n = self._config.enrich_top_n if enrich else 0
        if top_n and ranked:
            head = ranked[:top_n]
            enriched = await asyncio.gather(*(self._enrich(d, total_proposals) for d in head))
            ranked = [d for d, _ in enriched] + ranked[top_n:]
            failures = [f for _, f in enriched if f is not None]

        return DelegateRoster(
            space=space,
            delegates=ranked,
            metrics=compute_roster_metrics(ranked),
            failures=failures,
        )

    async def build_delegate_roster(
        self,
        space: str | None = None,
        limit: int = 100,
        *,
        enrich: bool = True,
        total_proposals: int | None = None,
    ) -> DelegateRoster:
        """
        Fetch activity records for `space` and build the ranked roster.

        Args:
            space: Space to rank (defaults to the client's space).
            limit: Maximum delegates returned.
            enrich: Fetch vote history for the top delegates.
            total_proposals: If given, participation rate is filled for
                enriched delegates.

        Raises:
            SourceError: If the activity records cannot be fetched.
        """
        target = space or self._snapshot.space

        async def build() -> DelegateRoster:
            records = await self._snapshot.fetch_leaderboard(target)
            return await self.build_from_records(
                target, records, limit, enrich=enrich, total_proposals=total_proposals
            )

        if self._cache is None:
            return await build()
        return await self._cache.get_or_compute(
            roster_key(target, limit), build, self._durations.delegates
        )
