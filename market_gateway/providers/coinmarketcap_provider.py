"""
CoinMarketCap data provider implementation.
Secondary crypto quote and listing source; requires an API key.
"""

from typing import Any, Dict, List, Optional

from .base import BaseDataProvider
from ..core.exceptions import AuthenticationError, DataNotFoundError, ProviderError, RateLimitError
from ..core.logging_config import create_logger
from ..models import AssetCategory, DataProvider, LiveDataEntry, MetadataEntry

logger = create_logger(__name__)

# status.error_code values CoinMarketCap uses for throttling and key problems
RATE_LIMIT_CODES = {1008, 1009, 1010, 1011}
AUTH_CODES = {1001, 1002}

LISTING_LIMIT = 200


class CoinMarketCapProvider(BaseDataProvider):
    """CoinMarketCap data provider for cryptocurrency data."""

    api_key_setting = "coinmarketcap_api_key"

    def __init__(self, api_key: Optional[str] = None, base_url: str = "https://pro-api.coinmarketcap.com/v1", **kwargs):
        super().__init__(
            name=DataProvider.COINMARKETCAP.value,
            api_key=api_key,
            base_url=base_url,
            **kwargs
        )

    def _get_auth_headers(self) -> Optional[Dict[str, str]]:
        """CoinMarketCap authenticates with a header."""
        if not self.api_key:
            return None
        return {'X-CMC_PRO_API_KEY': self.api_key}

    def supports_category(self, category: AssetCategory) -> bool:
        return category == AssetCategory.CRYPTO

    def _raise_for_status_block(self, payload: Any, symbol: Optional[str] = None) -> None:
        status = payload.get('status') if isinstance(payload, dict) else None
        if not isinstance(status, dict):
            return
        code = status.get('error_code') or 0
        if not code:
            return

        message = status.get('error_message') or f"{self.name} error {code}"
        if code in RATE_LIMIT_CODES:
            raise RateLimitError(message, self.name, symbol)
        if code in AUTH_CODES:
            raise AuthenticationError(message, self.name, symbol)
        raise ProviderError(message, self.name, symbol)

    async def fetch_quote(self, symbol: str, category: AssetCategory) -> Dict[str, Any]:
        return await self._make_request(
            method="GET",
            url=f"{self.base_url}/cryptocurrency/quotes/latest",
            params={'symbol': symbol, 'convert': 'USD'},
            symbol=symbol
        )

    def normalize_quote(self, symbol: str, category: AssetCategory, raw: Any) -> LiveDataEntry:
        self._raise_for_status_block(raw, symbol)

        data = (raw.get('data') or {}).get(symbol) if isinstance(raw, dict) else None
        # v2 style responses hold a list of matches per symbol
        if isinstance(data, list):
            data = data[0] if data else None
        usd = ((data or {}).get('quote') or {}).get('USD')
        if not usd:
            raise DataNotFoundError(f"No quote data for {symbol}", self.name, symbol)

        return self._create_live(
            symbol=symbol,
            category=category,
            price=self._to_float(usd.get('price')),
            change_24h=self._to_float(usd.get('percent_change_24h')),
            volume_24h=self._to_float(usd.get('volume_24h')),
            market_cap=self._to_float(usd.get('market_cap'))
        )

    async def list_assets(self, category: AssetCategory) -> List[MetadataEntry]:
        if category != AssetCategory.CRYPTO:
            return await super().list_assets(category)

        listings = await self._make_request(
            method="GET",
            url=f"{self.base_url}/cryptocurrency/listings/latest",
            params={'start': 1, 'limit': LISTING_LIMIT, 'convert': 'USD'}
        )
        self._raise_for_status_block(listings)
        rows = listings.get('data') if isinstance(listings, dict) else None
        if not isinstance(rows, list):
            raise ProviderError("Unexpected listings payload", self.name)

        assets = []
        for coin in rows:
            symbol = (coin.get('symbol') or '').strip().upper()
            if not symbol:
                continue
            usd = (coin.get('quote') or {}).get('USD') or {}
            assets.append(self._create_metadata(
                symbol=symbol,
                name=coin.get('name'),
                category=category,
                sector="Cryptocurrency",
                industry="Digital Assets",
                exchange="Crypto",
                country="Global",
                market_cap=usd.get('market_cap')
            ))

        logger.info("Retrieved asset list from CoinMarketCap", extra={
            "provider": self.name,
            "count": len(assets)
        })
        return assets
