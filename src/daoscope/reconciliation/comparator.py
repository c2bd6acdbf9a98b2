"""
Cross-source metric comparison.

`compare_metric` never raises: every outcome, including total failure, is a
ReconciliationComparison whose status tells the caller what happened. A
computed disagreement is always reported as a warning.
"""

from __future__ import annotations

import itertools
import logging
from typing import TYPE_CHECKING

from daoscope.contracts.models import (
    ReconciliationComparison,
    ReconciliationStatus,
    ReconciliationSummary,
    SourceValue,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from daoscope.contracts.models import PartialSourceFailure

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD_PCT = 5.0


def calculate_variance(a: float, b: float) -> float:
    """
    Percentage disagreement between two non-negative values.

    0 when both are zero, 100 when exactly one is zero, otherwise the
    absolute difference relative to the mean, rounded to 2 decimals.
    """
    if a == 0 and b == 0:
        return 0.0
    if a == 0 or b == 0:
        return 100.0
    mean = (a + b) / 2
    return round(abs(a - b) / mean * 100, 2)


def max_pairwise_variance(values: Iterable[float]) -> float:
    return max(
        (calculate_variance(a, b) for a, b in itertools.combinations(values, 2)),
        default=0.0,
    )


def compare_metric(
    metric: str,
    source_values: Mapping[str, SourceValue | None],
    *,
    threshold_pct: float = DEFAULT_THRESHOLD_PCT,
    single_source_of_truth: bool = False,
    failures: Iterable[PartialSourceFailure] = (),
) -> ReconciliationComparison:
    """
    Compare one metric as reported by several sources.

    Args:
        metric: Metric name.
        source_values: source name -> reading, or None if that source failed.
        threshold_pct: Variance above which the status is a warning.
        single_source_of_truth: The metric has only one authoritative
            source, so a lone reading is ok rather than partial.
        failures: Failure records to carry into the result.

    Returns:
        The comparison.
    """
    succeeded = {name: v for name, v in source_values.items() if v is not None}
    failed = sorted(name for name, v in source_values.items() if v is None)
    failure_list = list(failures)

    if not succeeded:
        return ReconciliationComparison(
            metric=metric,
            status=ReconciliationStatus.ERROR,
            message=(
                f"All sources failed ({', '.join(failed)})" if failed else "No sources available"
            ),
            failures=failure_list,
        )

    if len(succeeded) == 1:
        (only,) = succeeded
        if single_source_of_truth:
            status = ReconciliationStatus.OK
            message = f"Single source ({only}), no comparison possible"
        else:
            status = ReconciliationStatus.PARTIAL
            message = f"Only {only} available, cannot compare"
            if failed:
                message += f" ({', '.join(failed)} failed)"
        return ReconciliationComparison(
            metric=metric,
            sources=succeeded,
            variance=0.0,
            status=status,
            message=message,
            failures=failure_list,
        )

    variance = max_pairwise_variance(v.value for v in succeeded.values())
    names = " vs ".join(succeeded)
    if variance > threshold_pct:
        status = ReconciliationStatus.WARNING
        message = f"Significant variance detected: {variance}% difference between {names}"
        logger.warning(
            "Reconciliation disagreement",
            extra={
                "metric": metric,
                "variance": variance,
                "threshold_pct": threshold_pct,
                "values": {name: v.value for name, v in succeeded.items()},
            },
        )
    else:
        status = ReconciliationStatus.OK
        message = f"Values aligned within acceptable range ({variance}% variance)"

    return ReconciliationComparison(
        metric=metric,
        sources=succeeded,
        variance=variance,
        status=status,
        message=message,
        failures=failure_list,
    )


def summarize(comparisons: Iterable[ReconciliationComparison]) -> ReconciliationSummary:
    """Tally statuses; partial results count as warnings."""
    ok = warnings = errors = total = 0
    for comparison in comparisons:
        total += 1
        if comparison.status == ReconciliationStatus.OK:
            ok += 1
        elif comparison.status in (ReconciliationStatus.WARNING, ReconciliationStatus.PARTIAL):
            warnings += 1
        else:
            errors += 1
    return ReconciliationSummary(total=total, ok=ok, warnings=warnings, errors=errors)
