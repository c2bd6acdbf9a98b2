#!/usr/bin/env python3
"""
One-shot governance data queries against the live sources.

Usage:
    python -m scripts.run_reconciliation reconcile
    python -m scripts.run_reconciliation chains --max-proposals 10
    python -m scripts.run_reconciliation roster --limit 50
    python -m scripts.run_reconciliation reconcile --metrics  # also print Prometheus text

Credentials are read from DUNE_API_KEY, ETHERSCAN_API_KEY and
COINGECKO_API_KEY. Results are printed as JSON on stdout.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import sys
from typing import TYPE_CHECKING, Any

import orjson
from prometheus_client import generate_latest

from daoscope.config import AppConfig
from daoscope.connectors.errors import SourceError
from daoscope.exporter import MetricsExporter
from daoscope.hub import GovernanceDataHub
from daoscope.logging_config import setup_logging

if TYPE_CHECKING:
    from collections.abc import Sequence

    from pydantic import BaseModel

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Query and reconcile governance data sources.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--plain-logs",
        action="store_true",
        help="Human-readable logs instead of JSON lines",
    )
    parser.add_argument(
        "--metrics",
        action="store_true",
        help="Print Prometheus metrics to stderr after the command",
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("reconcile", help="Run all cross-source comparisons")

    chains = sub.add_parser("chains", help="Voting power by chain over recent proposals")
    chains.add_argument(
        "--max-proposals",
        type=int,
        default=20,
        help="Closed proposals to analyze (default: 20)",
    )
    chains.add_argument(
        "--proposal",
        type=str,
        default=None,
        help="Analyze a single proposal id instead",
    )

    roster = sub.add_parser("roster", help="Ranked delegate roster")
    roster.add_argument("--space", type=str, default=None, help="Space id (default: configured)")
    roster.add_argument(
        "--limit",
        type=int,
        default=100,
        help="Maximum delegates (default: 100)",
    )
    return parser


async def run_command(args: argparse.Namespace, config: AppConfig) -> BaseModel:
    async with GovernanceDataHub(config) as hub:
        result: BaseModel
        if args.command == "reconcile":
            result = await hub.run_reconciliation()
        elif args.command == "chains":
            if args.proposal:
                result = await hub.aggregate_voting_power_by_chain(args.proposal)
            else:
                result = await hub.analyze_chain_distribution()
        else:
            result = await hub.build_delegate_roster(args.space, args.limit)

        if args.metrics:
            exporter = MetricsExporter()
            exporter.update(
                rate_limiter=hub.rate_limiter,
                retry_executor=hub.retry_executor,
                cache=hub.cache,
                report=hub.reconciliation.last_report,
            )
            sys.stderr.write(generate_latest(exporter.registry).decode())
        return result


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(
        level=logging.DEBUG if args.verbose else logging.INFO,
        json_format=not args.plain_logs,
    )

    config = AppConfig.from_env()
    if args.command == "chains":
        config.analytics = dataclasses.replace(
            config.analytics, max_proposals=args.max_proposals
        )
    logger.info("Starting", extra={"command": args.command, **config.redacted()})

    try:
        result = asyncio.run(run_command(args, config))
    except SourceError as e:
        logger.error(
            "Command failed",
            extra={"command": args.command, "source": e.source, "error_kind": e.kind},
        )
        return 1

    payload: Any = result.model_dump(mode="json")
    sys.stdout.write(orjson.dumps(payload, option=orjson.OPT_INDENT_2).decode() + "\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
