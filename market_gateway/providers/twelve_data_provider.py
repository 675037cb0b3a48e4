"""
Twelve Data provider implementation.
Serves stock and ETF quotes plus the stock and ETF reference listings.
"""

from typing import Any, Dict, List, Optional

from .base import BaseDataProvider
from ..core.exceptions import AuthenticationError, DataNotFoundError, ProviderError, RateLimitError
from ..core.logging_config import create_logger
from ..models import AssetCategory, DataProvider, LiveDataEntry, MetadataEntry

logger = create_logger(__name__)

LISTING_PATHS = {
    AssetCategory.STOCK: "/stocks",
    AssetCategory.ETF: "/etf",
}

MAX_LISTING_SIZE = 1000


class TwelveDataProvider(BaseDataProvider):
    """Twelve Data provider for stocks and ETFs."""

    api_key_setting = "twelve_data_api_key"

    def __init__(self, api_key: Optional[str] = None, base_url: str = "https://api.twelvedata.com", **kwargs):
        super().__init__(
            name=DataProvider.TWELVE_DATA.value,
            api_key=api_key,
            base_url=base_url,
            **kwargs
        )

    def supports_category(self, category: AssetCategory) -> bool:
        return category in (AssetCategory.STOCK, AssetCategory.ETF)

    def _raise_for_body_error(self, payload: Any, symbol: Optional[str] = None) -> None:
        """Twelve Data reports most errors in the body with an HTTP 200."""
        if not isinstance(payload, dict) or payload.get("status") != "error":
            return

        code = payload.get("code")
        message = payload.get("message") or f"{self.name} returned an error"
        if code == 429:
            raise RateLimitError(message, self.name, symbol)
        if code == 401:
            raise AuthenticationError(message, self.name, symbol)
        if code in (400, 404):
            raise DataNotFoundError(message, self.name, symbol)
        raise ProviderError(message, self.name, symbol)

    async def fetch_quote(self, symbol: str, category: AssetCategory) -> Dict[str, Any]:
        return await self._make_request(
            method="GET",
            url=f"{self.base_url}/quote",
            params={"symbol": symbol, "apikey": self.api_key},
            symbol=symbol
        )

    def normalize_quote(self, symbol: str, category: AssetCategory, raw: Any) -> LiveDataEntry:
        self._raise_for_body_error(raw, symbol)
        if not isinstance(raw, dict):
            raise DataNotFoundError(f"No quote data for {symbol}", self.name, symbol)

        price = raw.get("price", raw.get("close"))
        return self._create_live(
            symbol=symbol,
            category=category,
            price=self._to_float(price),
            change_24h=self._to_float(raw.get("percent_change")),
            volume_24h=self._to_float(raw.get("volume")),
            market_cap=self._to_float(raw.get("market_cap")),
            high_24h=self._to_float(raw.get("high"), default=None),
            low_24h=self._to_float(raw.get("low"), default=None),
            open_price=self._to_float(raw.get("open"), default=None)
        )

    async def list_assets(self, category: AssetCategory) -> List[MetadataEntry]:
        if category not in LISTING_PATHS:
            return await super().list_assets(category)

        payload = await self._make_request(
            method="GET",
            url=f"{self.base_url}{LISTING_PATHS[category]}",
            params={"country": "United States", "apikey": self.api_key}
        )
        self._raise_for_body_error(payload)

        rows = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(rows, list):
            raise ProviderError("Unexpected listing payload", self.name)

        assets = []
        for row in rows[:MAX_LISTING_SIZE]:
            symbol = (row.get("symbol") or "").strip()
            if not symbol:
                continue
            assets.append(self._create_metadata(
                symbol=symbol,
                name=row.get("name"),
                category=category,
                exchange=row.get("exchange"),
                country="US" if row.get("country") in (None, "United States") else row.get("country"),
                sector="ETF" if category == AssetCategory.ETF else None
            ))

        logger.info("Retrieved asset list from Twelve Data", extra={
            "provider": self.name,
            "category": category.value,
            "count": len(assets)
        })
        return assets
