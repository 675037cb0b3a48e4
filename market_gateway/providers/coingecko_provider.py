"""
CoinGecko data provider implementation.
Primary crypto quote and listing source; the free tier needs no key.
"""

from typing import Any, Dict, List, Optional

from .base import BaseDataProvider
from ..core.exceptions import DataNotFoundError, ProviderError
from ..core.logging_config import create_logger
from ..models import AssetCategory, DataProvider, LiveDataEntry, MetadataEntry

logger = create_logger(__name__)

# Seed mapping, extended with whatever the markets listing returns
KNOWN_IDS = {
    'BTC': 'bitcoin',
    'ETH': 'ethereum',
    'USDT': 'tether',
    'BNB': 'binancecoin',
    'SOL': 'solana',
    'USDC': 'usd-coin',
    'XRP': 'ripple',
    'DOGE': 'dogecoin',
    'ADA': 'cardano',
    'TRX': 'tron',
    'AVAX': 'avalanche-2',
    'SHIB': 'shiba-inu',
    'DOT': 'polkadot',
    'LINK': 'chainlink',
    'BCH': 'bitcoin-cash',
    'LTC': 'litecoin',
    'MATIC': 'matic-network',
    'XLM': 'stellar',
    'UNI': 'uniswap',
    'ATOM': 'cosmos',
    'ETC': 'ethereum-classic',
    'XMR': 'monero',
    'FIL': 'filecoin',
    'APT': 'aptos',
    'ARB': 'arbitrum',
    'OP': 'optimism',
    'NEAR': 'near',
    'AAVE': 'aave',
    'ALGO': 'algorand',
    'COMP': 'compound-governance-token',
}

MARKETS_PAGE_SIZE = 250


class CoinGeckoProvider(BaseDataProvider):
    """CoinGecko data provider for cryptocurrency data."""

    def __init__(self, base_url: str = "https://api.coingecko.com/api/v3", **kwargs):
        super().__init__(name=DataProvider.COINGECKO.value, base_url=base_url, **kwargs)
        self._symbol_ids: Dict[str, str] = dict(KNOWN_IDS)

    def supports_category(self, category: AssetCategory) -> bool:
        return category == AssetCategory.CRYPTO

    def symbol_to_id(self, symbol: str) -> str:
        """CoinGecko addresses coins by id; unknown symbols fall back to the lowercased symbol."""
        return self._symbol_ids.get(symbol.upper(), symbol.lower())

    async def fetch_quote(self, symbol: str, category: AssetCategory) -> Dict[str, Any]:
        return await self._make_request(
            method="GET",
            url=f"{self.base_url}/simple/price",
            params={
                'ids': self.symbol_to_id(symbol),
                'vs_currencies': 'usd',
                'include_24hr_change': 'true',
                'include_24hr_vol': 'true',
                'include_market_cap': 'true'
            },
            symbol=symbol
        )

    def normalize_quote(self, symbol: str, category: AssetCategory, raw: Any) -> LiveDataEntry:
        data = raw.get(self.symbol_to_id(symbol)) if isinstance(raw, dict) else None
        if not data or 'usd' not in data:
            raise DataNotFoundError(f"No quote data for {symbol}", self.name, symbol)

        return self._create_live(
            symbol=symbol,
            category=category,
            price=self._to_float(data.get('usd')),
            change_24h=self._to_float(data.get('usd_24h_change')),
            volume_24h=self._to_float(data.get('usd_24h_vol')),
            market_cap=self._to_float(data.get('usd_market_cap'))
        )

    async def list_assets(self, category: AssetCategory) -> List[MetadataEntry]:
        """Top coins by market cap; also teaches the adapter their ids."""
        if category != AssetCategory.CRYPTO:
            return await super().list_assets(category)

        markets = await self._make_request(
            method="GET",
            url=f"{self.base_url}/coins/markets",
            params={
                'vs_currency': 'usd',
                'order': 'market_cap_desc',
                'per_page': MARKETS_PAGE_SIZE,
                'page': 1,
                'sparkline': 'false'
            }
        )
        if not isinstance(markets, list):
            raise ProviderError("Unexpected markets payload", self.name)

        assets = []
        for coin in markets:
            symbol = (coin.get('symbol') or '').strip().upper()
            coin_id = coin.get('id')
            if not symbol or not coin_id:
                continue
            # Ordered by market cap, so the first id seen for a symbol wins
            self._symbol_ids.setdefault(symbol, coin_id)
            assets.append(self._create_metadata(
                symbol=symbol,
                name=coin.get('name'),
                category=category,
                sector="Cryptocurrency",
                industry="Digital Assets",
                exchange="Crypto",
                country="Global",
                market_cap=coin.get('market_cap')
            ))

        logger.info("Retrieved asset list from CoinGecko", extra={
            "provider": self.name,
            "count": len(assets)
        })
        return assets
