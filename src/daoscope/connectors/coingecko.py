"""Client for the CoinGecko price API."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from daoscope.connectors.base import SourceClient
from daoscope.connectors.errors import NotFoundError
from daoscope.contracts.models import Source, TokenPrice

DEFAULT_ENDPOINT = "https://api.coingecko.com/api/v3"
DEFAULT_TOKEN_ID = "cow-protocol"
API_KEY_HEADER = "x-cg-demo-api-key"


class CoinGeckoClient(SourceClient):
    """Price source."""

    source = Source.COINGECKO.value

    def __init__(
        self,
        *args: Any,
        api_key: str | None = None,
        token_id: str = DEFAULT_TOKEN_ID,
        **kwargs: Any,
    ) -> None:
        headers = dict(kwargs.pop("headers", None) or {})
        if api_key:
            headers[API_KEY_HEADER] = api_key
        super().__init__(*args, headers=headers, **kwargs)
        self.token_id = token_id

    async def fetch_simple_price(self) -> TokenPrice:
        """Spot price, market cap, 24h volume and change."""
        payload = await self._request(
            "GET",
            "/simple/price",
            params={
                "ids": self.token_id,
                "vs_currencies": "usd",
                "include_market_cap": "true",
                "include_24hr_vol": "true",
                "include_24hr_change": "true",
                "include_last_updated_at": "true",
            },
        )
        data = payload.get(self.token_id) if isinstance(payload, dict) else None
        if not data:
            raise NotFoundError(f"No price for token {self.token_id}", source=self.source)
        with self._parsing("price"):
            updated = data.get("last_updated_at")
            return TokenPrice(
                token_id=self.token_id,
                price_usd=float(data.get("usd") or 0),
                market_cap_usd=float(data.get("usd_market_cap") or 0),
                volume_24h_usd=float(data.get("usd_24h_vol") or 0),
                change_24h_pct=float(data.get("usd_24h_change") or 0),
                last_updated=datetime.fromtimestamp(updated, tz=UTC) if updated else None,
            )
