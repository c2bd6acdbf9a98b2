"""Derived views: chain attribution, delegate roster, governance metrics."""

from daoscope.analytics.chain_attribution import (
    ChainAttributionAggregator,
    aggregate_proposal,
    attribute_votes,
    classify_strategy,
    select_recent_closed,
)
from daoscope.analytics.delegates import (
    DelegateRosterBuilder,
    compute_delegate_stats,
    compute_roster_metrics,
    merge_activity,
    rank_delegates,
)
from daoscope.analytics.governance import calculate_governance_metrics, proposal_passed

__all__ = [
    "ChainAttributionAggregator",
    "DelegateRosterBuilder",
    "aggregate_proposal",
    "attribute_votes",
    "calculate_governance_metrics",
    "classify_strategy",
    "compute_delegate_stats",
    "compute_roster_metrics",
    "merge_activity",
    "proposal_passed",
    "rank_delegates",
    "select_recent_closed",
]
