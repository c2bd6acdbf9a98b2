"""
Config validation tests for AppConfig and its sections.

Covers __post_init__ bounds, per-source rate limits, environment loading
and credential redaction.
"""

from __future__ import annotations

import pytest

from daoscope.config import (
    AnalyticsConfig,
    AppConfig,
    CacheDurations,
    SourceEndpoints,
    default_rate_limits,
)
from daoscope.contracts.models import Source


class TestDefaults:
    """Default configuration values."""

    def test_default_config_valid(self) -> None:
        config = AppConfig()
        assert config.request_timeout_ms == 30000
        assert config.endpoints.snapshot_space == "cow.eth"
        assert config.retry.max_retries == 3

    def test_every_source_has_a_rate_limit(self) -> None:
        limits = default_rate_limits()
        assert set(limits) == {s.value for s in Source}
        assert limits["dune"].max_requests == 10
        assert limits["dune"].window_ms == 60_000
        assert limits["etherscan"].max_requests == 5
        assert limits["etherscan"].window_ms == 1000

    def test_cache_durations(self) -> None:
        durations = CacheDurations()
        assert durations.proposals == 5 * 60_000
        assert durations.treasury == 60 * 60_000
        assert durations.token_price == 2 * 60_000
        assert durations.solver_metrics == 15 * 60_000
        assert durations.safe_balances == 10 * 60_000
        assert durations.token_holders == 60 * 60_000


class TestConfigValidation:
    """__post_init__ validation."""

    def test_missing_rate_limit(self) -> None:
        limits = default_rate_limits()
        del limits["safe"]
        with pytest.raises(ValueError, match="safe"):
            AppConfig(rate_limits=limits)

    def test_invalid_timeout(self) -> None:
        with pytest.raises(ValueError, match="request_timeout_ms"):
            AppConfig(request_timeout_ms=0)

    def test_invalid_cache_duration(self) -> None:
        with pytest.raises(ValueError, match="treasury"):
            CacheDurations(treasury=0)

    def test_invalid_endpoint(self) -> None:
        with pytest.raises(ValueError, match="dune_api"):
            SourceEndpoints(dune_api="ftp://dune")

    def test_empty_space(self) -> None:
        with pytest.raises(ValueError, match="snapshot_space"):
            SourceEndpoints(snapshot_space="")

    @pytest.mark.parametrize(
        ("field", "value"),
        [
            ("max_proposals", 0),
            ("votes_per_proposal", 0),
            ("enrich_top_n", -1),
            ("recent_votes", 0),
            ("variance_threshold_pct", -0.1),
            ("poll_interval_ms", 0),
            ("query_max_wait_ms", 0),
            ("reconciliation_interval_s", 0),
        ],
    )
    def test_invalid_analytics(self, field: str, value: float) -> None:
        with pytest.raises(ValueError, match=field):
            AnalyticsConfig(**{field: value})

    def test_enrichment_can_be_disabled(self) -> None:
        assert AnalyticsConfig(enrich_top_n=0).enrich_top_n == 0


class TestFromEnv:
    """Environment loading."""

    def test_reads_credentials_and_overrides(self) -> None:
        config = AppConfig.from_env(
            {
                "DUNE_API_KEY": "dune-secret",
                "COINGECKO_API_KEY": "cg-secret",
                "SNAPSHOT_API": "https://snapshot.example/graphql",
                "SAFE_API_BASE": "https://safe.example",
            }
        )

        assert config.dune_api_key == "dune-secret"
        assert config.coingecko_api_key == "cg-secret"
        assert config.etherscan_api_key == ""
        assert config.endpoints.snapshot_api == "https://snapshot.example/graphql"
        assert config.endpoints.safe_api == "https://safe.example"

    def test_invalid_override_rejected(self) -> None:
        with pytest.raises(ValueError, match="safe_api"):
            AppConfig.from_env({"SAFE_API_BASE": "not-a-url"})

    def test_credentials_not_in_repr(self) -> None:
        config = AppConfig.from_env({"DUNE_API_KEY": "dune-secret"})
        assert "dune-secret" not in repr(config)

    def test_redacted(self) -> None:
        config = AppConfig.from_env({"ETHERSCAN_API_KEY": "es-secret"})

        redacted = config.redacted()

        assert redacted == {
            "coingecko_auth": "unset",
            "dune_auth": "unset",
            "etherscan_auth": "set",
        }
        assert "es-secret" not in str(redacted)
