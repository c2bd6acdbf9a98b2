"""Tests for the reconciliation service against mocked source clients."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from daoscope.config import AnalyticsConfig
from daoscope.connectors.errors import AuthenticationError, TransportError
from daoscope.contracts.models import (
    PartialSourceFailure,
    Proposal,
    ProposalState,
    ReconciliationReport,
    ReconciliationStatus,
    SpaceInfo,
    TreasurySnapshot,
)
from daoscope.reconciliation.service import (
    PROPOSAL_COUNT,
    TREASURY_VALUE,
    VOTING_POWER,
    ReconciliationService,
)


def closed(pid: str, total: float, state: ProposalState = ProposalState.CLOSED) -> Proposal:
    return Proposal(id=pid, state=state, scores_total=total)


@pytest.fixture
def snapshot() -> MagicMock:
    client = MagicMock()
    client.base_url = "https://hub.snapshot.org/graphql"
    client.space = "cow.eth"
    client.fetch_proposals = AsyncMock(
        return_value=[closed("a", 40e6), closed("b", 50e6), closed("c", 0)]
    )
    client.fetch_space_info = AsyncMock(return_value=SpaceInfo(id="cow.eth", quorum=35e6))
    return client


@pytest.fixture
def dune() -> MagicMock:
    client = MagicMock()
    client.fetch_treasury_value = AsyncMock(
        return_value=TreasurySnapshot(total_usd=1000.0, source_url="https://dune/q")
    )
    return client


@pytest.fixture
def safe() -> MagicMock:
    client = MagicMock()
    client.fetch_treasury_value = AsyncMock(
        return_value=TreasurySnapshot(total_usd=1020.0, source_url="https://safe/b")
    )
    return client


@pytest.fixture
def service(snapshot: MagicMock, dune: MagicMock, safe: MagicMock) -> ReconciliationService:
    return ReconciliationService(snapshot, dune, safe, config=AnalyticsConfig())


class TestProposalCount:
    @pytest.mark.asyncio
    async def test_single_source_ok(self, service: ReconciliationService) -> None:
        result = await service.compare_proposal_count()

        assert result.metric == PROPOSAL_COUNT
        assert result.status == ReconciliationStatus.OK
        assert result.sources["snapshot"].value == 3
        assert "cow.eth" in result.sources["snapshot"].source_url

    @pytest.mark.asyncio
    async def test_source_failure_is_error(
        self,
        service: ReconciliationService,
        snapshot: MagicMock,
    ) -> None:
        snapshot.fetch_proposals.side_effect = TransportError("down", source="snapshot")

        result = await service.compare_proposal_count()

        assert result.status == ReconciliationStatus.ERROR
        assert result.failures[0].error_kind == "transport"


class TestTreasuryValue:
    @pytest.mark.asyncio
    async def test_aligned(self, service: ReconciliationService) -> None:
        result = await service.compare_treasury_value()

        assert result.metric == TREASURY_VALUE
        assert result.status == ReconciliationStatus.OK
        assert result.variance == 1.98
        assert result.sources["dune"].source_url == "https://dune/q"

    @pytest.mark.asyncio
    async def test_disagreement(self, service: ReconciliationService, safe: MagicMock) -> None:
        safe.fetch_treasury_value.return_value = TreasurySnapshot(total_usd=1150.0)

        result = await service.compare_treasury_value()

        assert result.status == ReconciliationStatus.WARNING
        assert result.variance == 13.95

    @pytest.mark.asyncio
    async def test_zero_from_analytics_is_compared(
        self,
        service: ReconciliationService,
        dune: MagicMock,
    ) -> None:
        """An empty result (0.0) is a reading, not a failure."""
        dune.fetch_treasury_value.return_value = TreasurySnapshot(total_usd=0.0)

        result = await service.compare_treasury_value()

        assert result.status == ReconciliationStatus.WARNING
        assert result.variance == 100.0

    @pytest.mark.asyncio
    async def test_one_source_failed_is_partial(
        self,
        service: ReconciliationService,
        dune: MagicMock,
    ) -> None:
        dune.fetch_treasury_value.side_effect = AuthenticationError("no key", source="dune")

        result = await service.compare_treasury_value()

        assert result.status == ReconciliationStatus.PARTIAL
        assert list(result.sources) == ["safe"]
        assert result.failures[0].source == "dune"
        assert result.failures[0].error_kind == "authentication"

    @pytest.mark.asyncio
    async def test_both_failed_is_error(
        self,
        service: ReconciliationService,
        dune: MagicMock,
        safe: MagicMock,
    ) -> None:
        dune.fetch_treasury_value.side_effect = TransportError("down")
        safe.fetch_treasury_value.side_effect = TransportError("down")

        result = await service.compare_treasury_value()

        assert result.status == ReconciliationStatus.ERROR
        assert len(result.failures) == 2

    @pytest.mark.asyncio
    async def test_partial_safe_failures_carried(
        self,
        service: ReconciliationService,
        safe: MagicMock,
    ) -> None:
        failure = PartialSourceFailure(source="safe", error_kind="transport", item="reserve")
        safe.fetch_treasury_value.return_value = TreasurySnapshot(
            total_usd=1010.0, failures=[failure]
        )

        result = await service.compare_treasury_value()

        assert result.status == ReconciliationStatus.OK
        assert result.failures == [failure]


class TestVotingPower:
    @pytest.mark.asyncio
    async def test_consistent(self, service: ReconciliationService) -> None:
        result = await service.compare_voting_power()

        assert result.metric == VOTING_POWER
        assert result.status == ReconciliationStatus.OK
        assert result.details["quorum"] == 35e6
        assert result.details["avg_participation"] == 45e6
        assert result.details["max_votes"] == 50e6
        assert result.warnings == []

    @pytest.mark.asyncio
    async def test_average_far_above_quorum(
        self,
        service: ReconciliationService,
        snapshot: MagicMock,
    ) -> None:
        snapshot.fetch_space_info.return_value = SpaceInfo(id="cow.eth", quorum=10e6)

        result = await service.compare_voting_power()

        assert result.status == ReconciliationStatus.WARNING
        assert len(result.warnings) == 1
        assert "exceeds quorum" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_max_below_quorum(
        self,
        service: ReconciliationService,
        snapshot: MagicMock,
    ) -> None:
        snapshot.fetch_space_info.return_value = SpaceInfo(id="cow.eth", quorum=60e6)

        result = await service.compare_voting_power()

        assert result.status == ReconciliationStatus.WARNING
        assert "below quorum" in result.message

    @pytest.mark.asyncio
    async def test_missing_quorum_uses_default(
        self,
        service: ReconciliationService,
        snapshot: MagicMock,
    ) -> None:
        snapshot.fetch_space_info.return_value = SpaceInfo(id="cow.eth", quorum=0)

        result = await service.compare_voting_power()

        assert result.details["quorum"] == AnalyticsConfig().default_quorum

    @pytest.mark.asyncio
    async def test_source_failure(
        self,
        service: ReconciliationService,
        snapshot: MagicMock,
    ) -> None:
        snapshot.fetch_space_info.side_effect = TransportError("down", source="snapshot")

        result = await service.compare_voting_power()

        assert result.status == ReconciliationStatus.ERROR
        assert "down" in result.message

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_error_status(
        self,
        service: ReconciliationService,
        snapshot: MagicMock,
    ) -> None:
        snapshot.fetch_space_info.side_effect = KeyError("voting")

        result = await service.compare_voting_power()

        assert result.status == ReconciliationStatus.ERROR
        assert result.failures[0].source == "snapshot"
        assert result.failures[0].error_kind == "KeyError"

    @pytest.mark.asyncio
    async def test_warning_flags_metric(
        self,
        service: ReconciliationService,
        snapshot: MagicMock,
    ) -> None:
        """A consistency warning is reported even though variance stays 0."""
        snapshot.fetch_proposals.return_value = [closed("a", 1e6), closed("b", 1e6)]

        report = await service.run_reconciliation()

        comparison = report.comparisons[VOTING_POWER]
        assert comparison.status == ReconciliationStatus.WARNING
        assert comparison.variance == 0
        assert service.has_variance_warning(VOTING_POWER)


class TestRunReconciliation:
    @pytest.mark.asyncio
    async def test_full_run(self, service: ReconciliationService) -> None:
        report = await service.run_reconciliation()

        assert set(report.comparisons) == {PROPOSAL_COUNT, TREASURY_VALUE, VOTING_POWER}
        assert report.summary.total == 3
        assert report.summary.ok == 3
        assert service.last_report is report

    @pytest.mark.asyncio
    async def test_one_failure_does_not_abort_run(
        self,
        service: ReconciliationService,
        dune: MagicMock,
        safe: MagicMock,
    ) -> None:
        dune.fetch_treasury_value.side_effect = TransportError("down")
        safe.fetch_treasury_value.side_effect = TransportError("down")

        report = await service.run_reconciliation()

        assert report.comparisons[TREASURY_VALUE].status == ReconciliationStatus.ERROR
        assert report.comparisons[PROPOSAL_COUNT].status == ReconciliationStatus.OK
        assert report.summary.errors == 1

    @pytest.mark.asyncio
    async def test_malformed_proposals_do_not_abort_run(
        self,
        service: ReconciliationService,
        snapshot: MagicMock,
    ) -> None:
        """A parse failure in one source degrades the checks that use it."""
        snapshot.fetch_proposals.side_effect = ValueError(
            "'deleted' is not a valid ProposalState"
        )

        report = await service.run_reconciliation()

        assert report.comparisons[PROPOSAL_COUNT].status == ReconciliationStatus.ERROR
        assert report.comparisons[VOTING_POWER].status == ReconciliationStatus.ERROR
        assert report.comparisons[TREASURY_VALUE].status == ReconciliationStatus.OK
        assert report.summary.errors == 2
        failure = report.comparisons[PROPOSAL_COUNT].failures[0]
        assert failure.error_kind == "ValueError"
        assert "deleted" in failure.message
        assert service.last_report is report

    @pytest.mark.asyncio
    async def test_variance_details(
        self,
        service: ReconciliationService,
        safe: MagicMock,
    ) -> None:
        assert service.get_variance_details(TREASURY_VALUE) is None
        assert not service.has_variance_warning(TREASURY_VALUE)

        safe.fetch_treasury_value.return_value = TreasurySnapshot(total_usd=1150.0)
        await service.run_reconciliation()

        details = service.get_variance_details(TREASURY_VALUE)
        assert details is not None
        assert details.variance == 13.95
        assert service.has_variance_warning(TREASURY_VALUE)
        assert not service.has_variance_warning(TREASURY_VALUE, threshold_pct=20.0)
        assert service.get_variance_details("unknown") is None

    @pytest.mark.asyncio
    async def test_report_json_round_trip(self, service: ReconciliationService) -> None:
        report = await service.run_reconciliation()

        restored = ReconciliationReport.from_json(report.to_json())

        assert restored == report


class TestSchedule:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, service: ReconciliationService) -> None:
        assert service.start_schedule(interval_s=3600)
        assert service.schedule_running
        assert not service.start_schedule(interval_s=3600)

        for _ in range(100):
            if service.last_report is not None:
                break
            await asyncio.sleep(0)
        assert service.last_report is not None

        await service.stop_schedule()
        assert not service.schedule_running

    @pytest.mark.asyncio
    async def test_rejects_bad_interval(self, service: ReconciliationService) -> None:
        with pytest.raises(ValueError, match="interval_s"):
            service.start_schedule(interval_s=0)

    @pytest.mark.asyncio
    async def test_stop_without_start(self, service: ReconciliationService) -> None:
        await service.stop_schedule()
        assert not service.schedule_running
