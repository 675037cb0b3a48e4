"""
Alpha Vantage data provider implementation.
Serves stock and ETF quotes through the GLOBAL_QUOTE function.
"""

from typing import Any, Dict, Optional

from .base import BaseDataProvider
from ..core.exceptions import DataNotFoundError, RateLimitError
from ..core.logging_config import create_logger
from ..models import AssetCategory, DataProvider, LiveDataEntry

logger = create_logger(__name__)

# Alpha Vantage answers throttled calls with HTTP 200 and one of these keys
THROTTLE_KEYS = ("Note", "Information")


class AlphaVantageProvider(BaseDataProvider):
    """Alpha Vantage data provider."""

    api_key_setting = "alpha_vantage_api_key"

    def __init__(self, api_key: Optional[str] = None, base_url: str = "https://www.alphavantage.co/query", **kwargs):
        super().__init__(
            name=DataProvider.ALPHA_VANTAGE.value,
            api_key=api_key,
            base_url=base_url,
            **kwargs
        )

    def supports_category(self, category: AssetCategory) -> bool:
        return category in (AssetCategory.STOCK, AssetCategory.ETF)

    async def fetch_quote(self, symbol: str, category: AssetCategory) -> Dict[str, Any]:
        return await self._make_request(
            method="GET",
            url=self.base_url,
            params={
                "function": "GLOBAL_QUOTE",
                "symbol": symbol,
                "apikey": self.api_key
            },
            symbol=symbol
        )

    def normalize_quote(self, symbol: str, category: AssetCategory, raw: Any) -> LiveDataEntry:
        if not isinstance(raw, dict):
            raise DataNotFoundError(f"No quote data for {symbol}", self.name, symbol)

        for key in THROTTLE_KEYS:
            if key in raw:
                logger.warning("Alpha Vantage throttle notice", extra={
                    "provider": self.name,
                    "symbol": symbol,
                    "notice": str(raw[key])[:200]
                })
                raise RateLimitError(f"Rate limited by {self.name}", self.name, symbol)

        if "Error Message" in raw:
            raise DataNotFoundError(raw["Error Message"], self.name, symbol)

        quote = raw.get("Global Quote") or {}
        if not quote:
            raise DataNotFoundError(f"No quote data for {symbol}", self.name, symbol)

        return self._create_live(
            symbol=symbol,
            category=category,
            price=self._to_float(quote.get("05. price")),
            change_24h=self._to_float(quote.get("10. change percent")),
            volume_24h=self._to_float(quote.get("06. volume")),
            high_24h=self._to_float(quote.get("03. high"), default=None),
            low_24h=self._to_float(quote.get("04. low"), default=None),
            open_price=self._to_float(quote.get("02. open"), default=None)
        )
