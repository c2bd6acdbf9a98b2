"""
Client for the Safe transaction service (multisig balances).

Treasury value is the sum of fiat balances over every configured Safe. A
Safe whose balances cannot be fetched is reported as a partial failure;
the total then covers the remaining Safes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from daoscope.connectors.base import SourceClient
from daoscope.connectors.errors import ResponseFormatError, SourceResult
from daoscope.contracts.models import SafeBalance, Source, TreasurySnapshot

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://safe-transaction-mainnet.safe.global"

DEFAULT_SAFES: dict[str, str] = {
    "solver_payouts": "0xA03be496e67Ec29bC62F01a428683D7F9c204930",
}

COMPOSITION_KEYS = ("stables", "eth", "cow", "other")


def categorize_symbol(symbol: str) -> str:
    """Bucket a token symbol into a treasury composition category."""
    upper = symbol.upper()
    if "USD" in upper or "DAI" in upper:
        return "stables"
    if upper in ("ETH", "WETH"):
        return "eth"
    if upper in ("COW", "VCOW"):
        return "cow"
    return "other"


def summarize_balances(balances: list[SafeBalance]) -> tuple[float, dict[str, float]]:
    """Total fiat value and per-category composition."""
    composition = dict.fromkeys(COMPOSITION_KEYS, 0.0)
    total = 0.0
    for balance in balances:
        total += balance.fiat_balance
        composition[categorize_symbol(balance.symbol)] += balance.fiat_balance
    return total, composition


class SafeClient(SourceClient):
    """Multisig-balance source."""

    source = Source.SAFE.value

    def __init__(
        self,
        *args: Any,
        safes: Mapping[str, str] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.safes = dict(safes if safes is not None else DEFAULT_SAFES)

    def balances_url(self, address: str) -> str:
        return self.url(f"/api/v1/safes/{address}/balances/")

    async def fetch_balances(self, address: str) -> list[SafeBalance]:
        """All token balances held by one Safe (empty list is valid)."""
        payload = await self._request("GET", self.balances_url(address))
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise ResponseFormatError("Balances response is not a list", source=self.source)
        with self._parsing("balances"):
            return [SafeBalance.from_raw(item) for item in payload]

    async def fetch_treasury_value(
        self,
        addresses: Mapping[str, str] | None = None,
    ) -> TreasurySnapshot:
        """
        Total fiat value across Safes, with composition.

        Args:
            addresses: name -> address; defaults to the configured Safes.

        Raises:
            SourceError: If every Safe failed (the first failure is raised).
        """
        targets = dict(addresses if addresses is not None else self.safes)
        names = list(targets)
        results = await asyncio.gather(
            *(SourceResult.capture(self.source, self.fetch_balances(targets[n])) for n in names)
        )

        balances: list[SafeBalance] = []
        failures = []
        for name, result in zip(names, results, strict=True):
            if result.ok:
                balances.extend(result.value or [])
                continue
            failure = result.to_failure(item=name)
            if failure is not None:
                failures.append(failure)
            logger.warning(
                "Safe balances unavailable",
                extra={"source": self.source, "safe": name, "error_kind": result.error_kind},
            )

        if names and len(failures) == len(names):
            results[0].unwrap()

        total, composition = summarize_balances(balances)
        source_url = self.balances_url(targets[names[0]]) if len(names) == 1 else self.base_url
        return TreasurySnapshot(
            total_usd=total,
            composition=composition,
            source_url=source_url,
            failures=failures,
        )
