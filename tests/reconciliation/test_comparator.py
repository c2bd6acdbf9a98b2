"""Tests for cross-source metric comparison."""

from __future__ import annotations

import pytest

from daoscope.contracts.models import (
    PartialSourceFailure,
    ReconciliationComparison,
    ReconciliationStatus,
    SourceValue,
)
from daoscope.reconciliation.comparator import (
    calculate_variance,
    compare_metric,
    max_pairwise_variance,
    summarize,
)


def sv(value: float) -> SourceValue:
    return SourceValue(value=value, source_url="https://example.org")


class TestCalculateVariance:
    """Tests for percentage variance."""

    def test_both_zero(self) -> None:
        assert calculate_variance(0, 0) == 0.0

    def test_one_zero(self) -> None:
        assert calculate_variance(0, 50) == 100.0
        assert calculate_variance(50, 0) == 100.0

    def test_equal(self) -> None:
        assert calculate_variance(123.45, 123.45) == 0.0

    def test_relative_to_mean(self) -> None:
        assert calculate_variance(1000, 1150) == 13.95

    def test_symmetric(self) -> None:
        for a, b in [(1, 2), (10.5, 3.25), (1e9, 1.1e9)]:
            assert calculate_variance(a, b) == calculate_variance(b, a)

    def test_rounded_to_two_decimals(self) -> None:
        variance = calculate_variance(3, 7)
        assert variance == round(variance, 2)

    def test_max_pairwise(self) -> None:
        assert max_pairwise_variance([100, 100, 150]) == calculate_variance(100, 150)
        assert max_pairwise_variance([42]) == 0.0


class TestCompareMetric:
    """Tests for compare_metric status rules."""

    def test_aligned_sources_ok(self) -> None:
        result = compare_metric("treasury_value", {"dune": sv(100), "safe": sv(102)})

        assert result.status == ReconciliationStatus.OK
        assert result.variance == 1.98
        assert "aligned" in result.message

    def test_disagreement_is_warning(self) -> None:
        result = compare_metric("treasury_value", {"dune": sv(1000), "safe": sv(1150)})

        assert result.status == ReconciliationStatus.WARNING
        assert result.variance == 13.95
        assert "13.95%" in result.message
        assert set(result.sources) == {"dune", "safe"}

    def test_threshold_is_exclusive(self) -> None:
        """A variance equal to the threshold is still ok."""
        result = compare_metric("m", {"a": sv(97.5), "b": sv(102.5)}, threshold_pct=5.0)

        assert result.variance == 5.0
        assert result.status == ReconciliationStatus.OK

    def test_custom_threshold(self) -> None:
        result = compare_metric("m", {"a": sv(100), "b": sv(102)}, threshold_pct=1.0)
        assert result.status == ReconciliationStatus.WARNING

    def test_zero_value_is_a_reading(self) -> None:
        """Zero is a valid value, not a missing source."""
        result = compare_metric("m", {"a": sv(0), "b": sv(500)})

        assert result.status == ReconciliationStatus.WARNING
        assert result.variance == 100.0

    def test_one_source_failed_is_partial(self) -> None:
        failure = PartialSourceFailure(source="safe", error_kind="transport", message="down")

        result = compare_metric("m", {"dune": sv(100), "safe": None}, failures=[failure])

        assert result.status == ReconciliationStatus.PARTIAL
        assert "safe" in result.message
        assert list(result.sources) == ["dune"]
        assert result.failures == [failure]

    def test_single_source_of_truth_ok(self) -> None:
        result = compare_metric(
            "proposal_count", {"snapshot": sv(87)}, single_source_of_truth=True
        )

        assert result.status == ReconciliationStatus.OK
        assert result.variance == 0.0
        assert "Single source (snapshot)" in result.message

    def test_all_failed_is_error(self) -> None:
        result = compare_metric("m", {"dune": None, "safe": None})

        assert result.status == ReconciliationStatus.ERROR
        assert result.sources == {}
        assert "dune" in result.message and "safe" in result.message

    def test_no_sources(self) -> None:
        assert compare_metric("m", {}).status == ReconciliationStatus.ERROR

    def test_three_sources_uses_largest_disagreement(self) -> None:
        result = compare_metric("m", {"a": sv(100), "b": sv(101), "c": sv(130)})

        assert result.variance == calculate_variance(100, 130)
        assert result.status == ReconciliationStatus.WARNING


class TestSummarize:
    def test_partial_counts_as_warning(self) -> None:
        comparisons = [
            ReconciliationComparison(metric="a", status=ReconciliationStatus.OK),
            ReconciliationComparison(metric="b", status=ReconciliationStatus.PARTIAL),
            ReconciliationComparison(metric="c", status=ReconciliationStatus.WARNING),
            ReconciliationComparison(metric="d", status=ReconciliationStatus.ERROR),
        ]

        summary = summarize(comparisons)

        assert (summary.total, summary.ok, summary.warnings, summary.errors) == (4, 1, 2, 1)

    @pytest.mark.parametrize("count", [0, 3])
    def test_all_ok(self, count: int) -> None:
        comparisons = [
            ReconciliationComparison(metric=str(i), status=ReconciliationStatus.OK)
            for i in range(count)
        ]
        assert summarize(comparisons).ok == count
