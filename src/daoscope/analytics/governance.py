"""Summary statistics over proposals."""

from __future__ import annotations

from typing import TYPE_CHECKING

from daoscope.contracts.models import GovernanceMetrics, Proposal, ProposalState

if TYPE_CHECKING:
    from collections.abc import Sequence


def proposal_passed(proposal: Proposal) -> bool:
    """Closed, reached quorum, and the top choice outscored all others combined."""
    if proposal.state != ProposalState.CLOSED or not proposal.scores or not proposal.quorum:
        return False
    top = max(proposal.scores)
    return proposal.scores_total >= proposal.quorum and top > proposal.scores_total - top


def calculate_governance_metrics(proposals: Sequence[Proposal]) -> GovernanceMetrics:
    """
    Compute proposal counts, participation and success rate.

    Average participation and success rate are taken over closed proposals
    with non-zero recorded participation.
    """
    if not proposals:
        return GovernanceMetrics()

    closed = [p for p in proposals if p.state == ProposalState.CLOSED and p.scores_total]
    active = sum(1 for p in proposals if p.state == ProposalState.ACTIVE)
    passed = sum(1 for p in proposals if proposal_passed(p))

    return GovernanceMetrics(
        total_proposals=len(proposals),
        active_proposals=active,
        average_participation=(
            sum(p.scores_total for p in closed) / len(closed) if closed else 0.0
        ),
        max_votes=max(p.scores_total for p in proposals),
        success_rate=passed / len(closed) * 100 if closed else 0.0,
    )
