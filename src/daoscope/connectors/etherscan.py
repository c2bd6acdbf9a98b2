"""
Client for the Etherscan explorer API.

Etherscan answers HTTP 200 even for failures and signals them with
`status: "0"` plus a message; those messages are mapped into the error
taxonomy here.
"""

from __future__ import annotations

import logging
from typing import Any

from daoscope.connectors.base import SourceClient
from daoscope.connectors.errors import (
    AuthenticationError,
    AuthorizationError,
    RateLimitedError,
    ResponseFormatError,
    SourceError,
)
from daoscope.contracts.models import ConcentrationMetrics, Source, TokenHolder

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.etherscan.io/api"
COW_TOKEN_ADDRESS = "0xDEf1CA1fb7FBcDC777520aa7f396b4E015F497aB"
TOKEN_DECIMALS = 18

# Holders sampled for concentration metrics
CONCENTRATION_SAMPLE = 50


def classify_explorer_message(source: str, message: str, result: Any) -> SourceError:
    """Map a `status: "0"` explorer reply to an error."""
    text = f"{message} {result if isinstance(result, str) else ''}".strip()
    lowered = text.lower()
    if "rate limit" in lowered:
        return RateLimitedError(text, source=source, status=None)
    if "invalid api key" in lowered or "missing/invalid api key" in lowered:
        return AuthenticationError(text, source=source)
    if "api pro" in lowered:
        return AuthorizationError(text, source=source)
    return ResponseFormatError(text or "Explorer request failed", source=source)


def concentration_metrics(
    holders: list[TokenHolder],
    total_supply: float,
) -> ConcentrationMetrics:
    """Share of `total_supply` held by the top 10 and top 50 of `holders` (largest first)."""
    if total_supply <= 0:
        return ConcentrationMetrics(top_holders=holders[:10])
    top10 = sum(h.balance for h in holders[:10])
    top50 = sum(h.balance for h in holders[:50])
    return ConcentrationMetrics(
        top10_pct=top10 / total_supply * 100,
        top50_pct=top50 / total_supply * 100,
        total_supply=total_supply,
        top_holders=holders[:10],
    )


class EtherscanClient(SourceClient):
    """Explorer source: token holders, supply and balances."""

    source = Source.ETHERSCAN.value

    def __init__(
        self,
        *args: Any,
        api_key: str | None = None,
        token_address: str = COW_TOKEN_ADDRESS,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self._api_key = api_key or ""
        self.token_address = token_address

    async def _call(self, module: str, action: str, **params: Any) -> Any:
        query = {
            "module": module,
            "action": action,
            "contractaddress": self.token_address,
            "apikey": self._api_key,
            **params,
        }
        payload = await self._request("GET", "", params=query)
        if not isinstance(payload, dict):
            raise ResponseFormatError("Explorer response is not an object", source=self.source)
        if str(payload.get("status")) != "1":
            raise classify_explorer_message(
                self.source, str(payload.get("message") or ""), payload.get("result")
            )
        return payload.get("result")

    async def fetch_token_holder_count(self) -> int:
        """Number of addresses holding the token."""
        result = await self._call("token", "tokenholdercount")
        try:
            return int(result)
        except (TypeError, ValueError) as e:
            raise ResponseFormatError(
                f"Holder count is not an integer: {result!r}", source=self.source
            ) from e

    async def fetch_token_supply(self) -> float:
        """Total token supply in whole tokens."""
        result = await self._call("stats", "tokensupply")
        try:
            return float(result) / 10**TOKEN_DECIMALS
        except (TypeError, ValueError) as e:
            raise ResponseFormatError(
                f"Token supply is not numeric: {result!r}", source=self.source
            ) from e

    async def fetch_token_balance(self, address: str) -> float:
        """Token balance of one address in whole tokens."""
        result = await self._call("account", "tokenbalance", address=address, tag="latest")
        try:
            return float(result) / 10**TOKEN_DECIMALS
        except (TypeError, ValueError) as e:
            raise ResponseFormatError(
                f"Token balance is not numeric: {result!r}", source=self.source
            ) from e

    async def fetch_top_token_holders(self, page: int = 1, offset: int = 100) -> list[TokenHolder]:
        """Largest token holders, balances in whole tokens."""
        result = await self._call("token", "tokenholderlist", page=page, offset=offset)
        if not isinstance(result, list):
            raise ResponseFormatError(
                f"Holder list is not a list: {result!r}", source=self.source
            )
        with self._parsing("holder list"):
            holders = [
                TokenHolder(
                    address=item["TokenHolderAddress"],
                    balance=float(item["TokenHolderQuantity"]) / 10**TOKEN_DECIMALS,
                )
                for item in result
            ]
        return sorted(holders, key=lambda h: h.balance, reverse=True)

    async def fetch_concentration_metrics(self) -> ConcentrationMetrics:
        """Top-holder concentration of the token supply."""
        holders = await self.fetch_top_token_holders(offset=CONCENTRATION_SAMPLE)
        supply = await self.fetch_token_supply()
        metrics = concentration_metrics(holders, supply)
        logger.debug(
            "Computed holder concentration",
            extra={"source": self.source, "top10_pct": metrics.top10_pct},
        )
        return metrics
