"""
Reconciliation service.

Runs the standard comparisons concurrently:
- proposal_count: voting-records source alone (single source of truth)
- treasury_value: analytics query vs multisig balances
- voting_power: internal consistency of quorum and participation

Keeps the last report in memory and can re-run on a fixed interval.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from daoscope.config import AnalyticsConfig
from daoscope.connectors.errors import SourceError, SourceResult, error_kind
from daoscope.contracts.models import (
    PartialSourceFailure,
    ProposalState,
    ReconciliationComparison,
    ReconciliationReport,
    ReconciliationStatus,
    Source,
    SourceValue,
)
from daoscope.reconciliation.comparator import compare_metric, summarize

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from daoscope.connectors.dune import DuneClient
    from daoscope.connectors.safe import SafeClient
    from daoscope.connectors.snapshot import SnapshotClient

logger = logging.getLogger(__name__)

PROPOSAL_COUNT = "proposal_count"
TREASURY_VALUE = "treasury_value"
VOTING_POWER = "voting_power"


class ReconciliationService:
    """Cross-checks overlapping metrics between independent sources."""

    def __init__(
        self,
        snapshot: SnapshotClient,
        dune: DuneClient,
        safe: SafeClient,
        *,
        config: AnalyticsConfig | None = None,
    ) -> None:
        self._snapshot = snapshot
        self._dune = dune
        self._safe = safe
        self._config = config or AnalyticsConfig()
        self._last_report: ReconciliationReport | None = None
        self._schedule_task: asyncio.Task[None] | None = None

    @property
    def last_report(self) -> ReconciliationReport | None:
        return self._last_report

    def _snapshot_url(self) -> str:
        return f"{self._snapshot.base_url} (space: {self._snapshot.space})"

    async def _compare_proposal_count(self) -> ReconciliationComparison:
        result = await SourceResult.capture(
            Source.SNAPSHOT.value,
            self._snapshot.fetch_proposals(self._config.proposal_count_limit),
        )
        value = None
        if result.ok:
            value = SourceValue(value=len(result.value or []), source_url=self._snapshot_url())
        failure = result.to_failure()
        return compare_metric(
            PROPOSAL_COUNT,
            {Source.SNAPSHOT.value: value},
            threshold_pct=self._config.variance_threshold_pct,
            single_source_of_truth=True,
            failures=[failure] if failure else [],
        )

    async def _compare_treasury_value(self) -> ReconciliationComparison:
        dune_result, safe_result = await asyncio.gather(
            SourceResult.capture(Source.DUNE.value, self._dune.fetch_treasury_value()),
            SourceResult.capture(Source.SAFE.value, self._safe.fetch_treasury_value()),
        )

        values: dict[str, SourceValue | None] = {}
        failures = []
        for result in (dune_result, safe_result):
            if result.ok and result.value is not None:
                snapshot = result.value
                values[result.source] = SourceValue(
                    value=snapshot.total_usd,
                    source_url=snapshot.source_url,
                    timestamp=snapshot.timestamp,
                )
                failures.extend(snapshot.failures)
            else:
                values[result.source] = None
                failure = result.to_failure()
                if failure is not None:
                    failures.append(failure)
                logger.warning(
                    "Treasury source failed",
                    extra={"source": result.source, "error_kind": result.error_kind},
                )

        return compare_metric(
            TREASURY_VALUE,
            values,
            threshold_pct=self._config.variance_threshold_pct,
            failures=failures,
        )

    async def _compare_voting_power(self) -> ReconciliationComparison:
        proposals, space = await asyncio.gather(
            self._snapshot.fetch_proposals(100),
            self._snapshot.fetch_space_info(),
        )

        closed = [p for p in proposals if p.state == ProposalState.CLOSED and p.scores_total]
        avg = sum(p.scores_total for p in closed) / len(closed) if closed else 0.0
        max_votes = max((p.scores_total for p in proposals), default=0.0)
        quorum = space.quorum or self._config.default_quorum

        warnings: list[str] = []
        if avg > quorum * 2:
            warnings.append(
                "Average participation significantly exceeds quorum "
                "(may indicate increased engagement or token distribution)"
            )
        if max_votes < quorum:
            warnings.append(
                "Maximum votes recorded is below quorum threshold "
                "(may indicate low historical participation)"
            )
        if warnings:
            logger.warning(
                "Voting power inconsistency",
                extra={"quorum": quorum, "avg_participation": avg, "max_votes": max_votes},
            )

        return ReconciliationComparison(
            metric=VOTING_POWER,
            sources={
                Source.SNAPSHOT.value: SourceValue(value=avg, source_url=self._snapshot_url())
            },
            variance=0.0,
            status=ReconciliationStatus.WARNING if warnings else ReconciliationStatus.OK,
            message="; ".join(warnings) if warnings else "Voting power metrics are consistent",
            details={"quorum": quorum, "avg_participation": avg, "max_votes": max_votes},
            warnings=warnings,
        )

    async def _guarded(
        self,
        metric: str,
        source: str,
        comparison: Awaitable[ReconciliationComparison],
    ) -> ReconciliationComparison:
        """Await `comparison`, turning any failure into an ERROR comparison."""
        try:
            return await comparison
        except Exception as e:
            logger.warning(
                "Reconciliation check failed",
                extra={"metric": metric, "error_kind": error_kind(e)},
            )
            if isinstance(e, SourceError):
                failure = e.to_failure()
            else:
                failure = PartialSourceFailure(
                    source=source, error_kind=error_kind(e), message=str(e)
                )
            return ReconciliationComparison(
                metric=metric,
                status=ReconciliationStatus.ERROR,
                message=f"{metric} check failed: {e}",
                failures=[failure],
            )

    async def compare_proposal_count(self) -> ReconciliationComparison:
        """Proposal count from the voting-records source."""
        return await self._guarded(
            PROPOSAL_COUNT, Source.SNAPSHOT.value, self._compare_proposal_count()
        )

    async def compare_treasury_value(self) -> ReconciliationComparison:
        """Treasury USD value: analytics query vs multisig balances."""
        return await self._guarded(
            TREASURY_VALUE,
            f"{Source.DUNE.value},{Source.SAFE.value}",
            self._compare_treasury_value(),
        )

    async def compare_voting_power(self) -> ReconciliationComparison:
        """
        Internal consistency of voting power.

        Warns when average participation exceeds twice the quorum, or when
        the highest participation ever recorded is below the quorum.
        """
        return await self._guarded(
            VOTING_POWER, Source.SNAPSHOT.value, self._compare_voting_power()
        )

    async def run_reconciliation(self) -> ReconciliationReport:
        """Run all comparisons concurrently and store the report."""
        started = time.monotonic()
        timestamp = datetime.now(UTC)
        proposal_count, treasury, voting_power = await asyncio.gather(
            self.compare_proposal_count(),
            self.compare_treasury_value(),
            self.compare_voting_power(),
        )
        comparisons = {
            PROPOSAL_COUNT: proposal_count,
            TREASURY_VALUE: treasury,
            VOTING_POWER: voting_power,
        }
        report = ReconciliationReport(
            timestamp=timestamp,
            duration_ms=int((time.monotonic() - started) * 1000),
            comparisons=comparisons,
            summary=summarize(comparisons.values()),
        )
        self._last_report = report
        logger.info(
            "Reconciliation complete",
            extra={
                "duration_ms": report.duration_ms,
                "ok": report.summary.ok,
                "warnings": report.summary.warnings,
                "errors": report.summary.errors,
            },
        )
        return report

    def get_variance_details(self, metric: str) -> ReconciliationComparison | None:
        """Comparison for `metric` from the last report."""
        if self._last_report is None:
            return None
        return self._last_report.comparisons.get(metric)

    def has_variance_warning(self, metric: str, threshold_pct: float | None = None) -> bool:
        """
        Whether the last report flags `metric`.

        Variance comparisons are judged against the threshold; consistency
        checks (voting_power) flag through their warnings.
        """
        comparison = self.get_variance_details(metric)
        if comparison is None:
            return False
        threshold = (
            self._config.variance_threshold_pct if threshold_pct is None else threshold_pct
        )
        return comparison.variance > threshold or bool(comparison.warnings)

    # -- schedule --

    @property
    def schedule_running(self) -> bool:
        return self._schedule_task is not None and not self._schedule_task.done()

    async def _schedule_loop(self, interval_s: float) -> None:
        while True:
            try:
                await self.run_reconciliation()
            except Exception:
                logger.exception("Scheduled reconciliation failed")
            await asyncio.sleep(interval_s)

    def start_schedule(self, interval_s: float | None = None) -> bool:
        """
        Run reconciliation now and then every `interval_s` seconds.

        Returns:
            False if a schedule is already running.
        """
        if self.schedule_running:
            logger.warning("Reconciliation schedule already running")
            return False
        interval = interval_s if interval_s is not None else self._config.reconciliation_interval_s
        if interval <= 0:
            raise ValueError(f"interval_s must be > 0, got {interval}")
        self._schedule_task = asyncio.create_task(self._schedule_loop(interval))
        logger.info("Reconciliation schedule started", extra={"interval_s": interval})
        return True

    async def stop_schedule(self) -> None:
        """Cancel the background schedule, if any."""
        task = self._schedule_task
        self._schedule_task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Reconciliation schedule stopped")
