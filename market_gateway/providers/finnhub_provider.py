"""
Finnhub data provider implementation.
Serves US stock and ETF quotes and the US symbol listing.
"""

from typing import Any, Dict, List, Optional

from .base import BaseDataProvider
from ..core.exceptions import DataNotFoundError, ProviderError
from ..core.logging_config import create_logger
from ..models import AssetCategory, DataProvider, LiveDataEntry, MetadataEntry

logger = create_logger(__name__)

# Finnhub security types mapped to our categories
LISTING_TYPES = {
    AssetCategory.STOCK: {"Common Stock", "ADR"},
    AssetCategory.ETF: {"ETP"},
}

MAX_LISTING_SIZE = 1000


class FinnhubProvider(BaseDataProvider):
    """Finnhub data provider for stock market data."""

    api_key_setting = "finnhub_api_key"

    def __init__(self, api_key: Optional[str] = None, base_url: str = "https://finnhub.io/api/v1", **kwargs):
        super().__init__(
            name=DataProvider.FINNHUB.value,
            api_key=api_key,
            base_url=base_url,
            **kwargs
        )

    def supports_category(self, category: AssetCategory) -> bool:
        """Finnhub quotes cover stocks and ETFs."""
        return category in (AssetCategory.STOCK, AssetCategory.ETF)

    async def fetch_quote(self, symbol: str, category: AssetCategory) -> Dict[str, Any]:
        return await self._make_request(
            method="GET",
            url=f"{self.base_url}/quote",
            params={"symbol": symbol, "token": self.api_key},
            symbol=symbol
        )

    def normalize_quote(self, symbol: str, category: AssetCategory, raw: Any) -> LiveDataEntry:
        # Unknown symbols come back as all zeros with null changes
        if not isinstance(raw, dict) or 'c' not in raw:
            raise DataNotFoundError(f"No quote data for {symbol}", self.name, symbol)

        current_price = self._to_float(raw.get('c'))
        percent_change = raw.get('dp')
        if percent_change is None:
            previous_close = self._to_float(raw.get('pc'))
            percent_change = (current_price - previous_close) / previous_close * 100 if previous_close > 0 else 0.0

        return self._create_live(
            symbol=symbol,
            category=category,
            price=current_price,
            change_24h=self._to_float(percent_change),
            high_24h=raw.get('h'),
            low_24h=raw.get('l'),
            open_price=raw.get('o')
        )

    async def list_assets(self, category: AssetCategory) -> List[MetadataEntry]:
        """List US stocks or ETFs from the exchange symbol directory."""
        if category not in LISTING_TYPES:
            return await super().list_assets(category)

        symbols_data = await self._make_request(
            method="GET",
            url=f"{self.base_url}/stock/symbol",
            params={"exchange": "US", "token": self.api_key}
        )
        if not isinstance(symbols_data, list):
            raise ProviderError("Unexpected symbol listing payload", self.name)

        wanted_types = LISTING_TYPES[category]
        assets = []
        for symbol_info in symbols_data:
            symbol = (symbol_info.get('symbol') or '').strip()
            description = (symbol_info.get('description') or '').strip()

            if not symbol or symbol_info.get('type') not in wanted_types:
                continue
            # Share classes and warrants are out of scope
            if any(x in symbol for x in ['.', '-', '/', '^']):
                continue

            assets.append(self._create_metadata(
                symbol=symbol,
                name=description.title() if description else symbol,
                category=category,
                exchange=symbol_info.get('mic') or "US",
                country="US"
            ))
            if len(assets) >= MAX_LISTING_SIZE:
                break

        logger.info("Retrieved asset list from Finnhub", extra={
            "provider": self.name,
            "category": category.value,
            "count": len(assets)
        })
        return assets
