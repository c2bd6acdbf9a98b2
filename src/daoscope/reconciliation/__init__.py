"""Cross-source reconciliation."""

from daoscope.reconciliation.comparator import (
    calculate_variance,
    compare_metric,
    max_pairwise_variance,
    summarize,
)
from daoscope.reconciliation.service import (
    PROPOSAL_COUNT,
    TREASURY_VALUE,
    VOTING_POWER,
    ReconciliationService,
)

__all__ = [
    "PROPOSAL_COUNT",
    "TREASURY_VALUE",
    "VOTING_POWER",
    "ReconciliationService",
    "calculate_variance",
    "compare_metric",
    "max_pairwise_variance",
    "summarize",
]
