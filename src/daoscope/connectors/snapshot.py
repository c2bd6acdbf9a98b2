"""
Client for the Snapshot GraphQL hub (voting records).

All queries are POSTed with variables; a response carrying an `errors` key
is treated as a malformed response rather than empty data.
"""

from __future__ import annotations

import logging
from typing import Any

from daoscope.connectors.base import SourceClient
from daoscope.connectors.errors import NotFoundError, ResponseFormatError
from daoscope.contracts.models import (
    ActivityRecord,
    Delegation,
    Proposal,
    Source,
    SpaceInfo,
    Vote,
)

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://hub.snapshot.org/graphql"
DEFAULT_SPACE = "cow.eth"

# Hub caps `first` per page
MAX_PAGE_SIZE = 1000

_PROPOSAL_FIELDS = """
        id
        title
        choices
        state
        scores
        scores_total
        quorum
        author
        created
        strategies {
          name
          network
          params
        }
"""

PROPOSALS_QUERY = f"""
query Proposals($space: String!, $first: Int!) {{
  proposals(
    first: $first,
    where: {{ space_in: [$space] }},
    orderBy: "created",
    orderDirection: desc
  ) {{{_PROPOSAL_FIELDS}  }}
}}
"""

PROPOSAL_QUERY = f"""
query Proposal($id: String!) {{
  proposal(id: $id) {{{_PROPOSAL_FIELDS}  }}
}}
"""

VOTES_QUERY = """
query Votes($proposal: String!, $first: Int!, $skip: Int!) {
  votes(
    first: $first,
    skip: $skip,
    where: { proposal: $proposal },
    orderBy: "vp",
    orderDirection: desc
  ) {
    voter
    vp
    vp_by_strategy
    created
    choice
  }
}
"""

VOTES_BY_VOTER_QUERY = """
query VotesByVoter($voter: String!, $space: String!, $first: Int!) {
  votes(
    first: $first,
    where: { voter: $voter, space: $space },
    orderBy: "created",
    orderDirection: desc
  ) {
    voter
    vp
    created
    choice
    proposal {
      id
    }
  }
}
"""

SPACE_QUERY = """
query Space($id: String!) {
  space(id: $id) {
    id
    name
    network
    symbol
    voting {
      quorum
    }
    strategies {
      name
      network
      params
    }
  }
}
"""

LEADERBOARD_QUERY = """
query Leaderboards($space: String!, $first: Int!) {
  leaderboards(first: $first, where: { space: $space }) {
    space
    user
    votesCount
    lastVote
  }
}
"""

# Filter field (%s) is "delegator" for delegations given, "delegate" for received
_DELEGATIONS_TEMPLATE = """
query Delegations($address: String!, $spaces: [String!]!, $first: Int!) {
  delegations(
    where: { %s: $address, space_in: $spaces },
    orderBy: "timestamp",
    orderDirection: desc,
    first: $first
  ) {
    id
    delegator
    delegate
    timestamp
    space
  }
}
"""

DELEGATIONS_GIVEN_QUERY = _DELEGATIONS_TEMPLATE % "delegator"
DELEGATIONS_RECEIVED_QUERY = _DELEGATIONS_TEMPLATE % "delegate"


class SnapshotClient(SourceClient):
    """Voting-records source: proposals, votes, space settings, voter activity."""

    source = Source.SNAPSHOT.value

    def __init__(self, *args: Any, space: str = DEFAULT_SPACE, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.space = space

    async def _query(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        payload = await self._request("POST", "", json={"query": query, "variables": variables})
        if not isinstance(payload, dict):
            raise ResponseFormatError("GraphQL response is not an object", source=self.source)
        if payload.get("errors"):
            first = payload["errors"][0]
            message = first.get("message", "") if isinstance(first, dict) else str(first)
            raise ResponseFormatError(f"GraphQL error: {message}", source=self.source)
        data = payload.get("data")
        if not isinstance(data, dict):
            raise ResponseFormatError("GraphQL response has no data", source=self.source)
        return data

    async def fetch_proposals(self, limit: int = 100) -> list[Proposal]:
        """Fetch the newest proposals of the space."""
        data = await self._query(PROPOSALS_QUERY, {"space": self.space, "first": limit})
        with self._parsing("proposals"):
            proposals = [Proposal.from_raw(p) for p in data.get("proposals") or []]
        logger.debug(
            "Fetched proposals",
            extra={"source": self.source, "space": self.space, "count": len(proposals)},
        )
        return proposals

    async def fetch_proposal(self, proposal_id: str) -> Proposal:
        """
        Fetch one proposal with its strategies.

        Raises:
            NotFoundError: If the hub has no such proposal.
        """
        data = await self._query(PROPOSAL_QUERY, {"id": proposal_id})
        raw = data.get("proposal")
        if not raw:
            raise NotFoundError(f"Proposal {proposal_id} not found", source=self.source)
        with self._parsing("proposal"):
            return Proposal.from_raw(raw)

    async def fetch_votes(self, proposal_id: str, limit: int = 1000) -> list[Vote]:
        """
        Fetch up to `limit` votes on a proposal, ordered by voting power.

        Pages through the hub in chunks of MAX_PAGE_SIZE; each page is its
        own rate-limited request.
        """
        votes: list[Vote] = []
        skip = 0
        while len(votes) < limit:
            page_size = min(MAX_PAGE_SIZE, limit - len(votes))
            data = await self._query(
                VOTES_QUERY,
                {"proposal": proposal_id, "first": page_size, "skip": skip},
            )
            page = data.get("votes") or []
            with self._parsing("votes"):
                votes.extend(Vote.from_raw(v, proposal_id=proposal_id) for v in page)
            if len(page) < page_size:
                break
            skip += len(page)
        return votes

    async def fetch_votes_by_voter(self, address: str, limit: int = 100) -> list[Vote]:
        """Fetch the most recent votes cast by `address` in this space (newest first)."""
        data = await self._query(
            VOTES_BY_VOTER_QUERY,
            {"voter": address.lower(), "space": self.space, "first": min(limit, MAX_PAGE_SIZE)},
        )
        with self._parsing("votes"):
            return [Vote.from_raw(v) for v in data.get("votes") or []]

    async def fetch_space_info(self) -> SpaceInfo:
        """Fetch the space's voting settings (quorum, default strategies)."""
        data = await self._query(SPACE_QUERY, {"id": self.space})
        raw = data.get("space")
        if not raw:
            raise NotFoundError(f"Space {self.space} not found", source=self.source)
        with self._parsing("space"):
            return SpaceInfo.from_raw(raw)

    async def fetch_leaderboard(
        self,
        space: str | None = None,
        limit: int = MAX_PAGE_SIZE,
    ) -> list[ActivityRecord]:
        """Fetch per-voter activity records for a space."""
        data = await self._query(
            LEADERBOARD_QUERY,
            {"space": space or self.space, "first": min(limit, MAX_PAGE_SIZE)},
        )
        with self._parsing("leaderboard"):
            return [ActivityRecord.from_raw(item) for item in data.get("leaderboards") or []]

    async def _delegations(self, query: str, address: str, first: int) -> list[Delegation]:
        data = await self._query(
            query,
            {"address": address.lower(), "spaces": [self.space], "first": first},
        )
        with self._parsing("delegations"):
            return [Delegation.from_raw(d) for d in data.get("delegations") or []]

    async def fetch_delegation(self, address: str) -> Delegation | None:
        """Current delegation of `address` in this space, or None if it has not delegated."""
        delegations = await self._delegations(DELEGATIONS_GIVEN_QUERY, address, 1)
        return delegations[0] if delegations else None

    async def fetch_delegation_history(self, address: str, limit: int = 100) -> list[Delegation]:
        """Delegations made by `address`, newest first."""
        return await self._delegations(
            DELEGATIONS_GIVEN_QUERY, address, min(limit, MAX_PAGE_SIZE)
        )

    async def fetch_delegations_received(
        self,
        delegate: str,
        limit: int = MAX_PAGE_SIZE,
    ) -> list[Delegation]:
        """Delegations made to `delegate`, newest first."""
        return await self._delegations(
            DELEGATIONS_RECEIVED_QUERY, delegate, min(limit, MAX_PAGE_SIZE)
        )
