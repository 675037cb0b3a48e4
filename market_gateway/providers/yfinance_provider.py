"""
Yahoo Finance data provider implementation.
Last-resort equity quote source using the yfinance library; no key required.
"""

from typing import Any, Dict, Optional
import yfinance as yf
import asyncio
from concurrent.futures import ThreadPoolExecutor

from .base import BaseDataProvider
from ..core.exceptions import DataNotFoundError, ProviderError
from ..core.logging_config import create_logger
from ..models import AssetCategory, DataProvider, LiveDataEntry

logger = create_logger(__name__)


class YFinanceProvider(BaseDataProvider):
    """Yahoo Finance data provider."""

    def __init__(self, max_workers: int = 4, **kwargs):
        super().__init__(name=DataProvider.YFINANCE.value, **kwargs)
        self._max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None

    def supports_category(self, category: AssetCategory) -> bool:
        """Yahoo Finance serves stocks and ETFs here."""
        return category in (AssetCategory.STOCK, AssetCategory.ETF)

    async def connect(self) -> None:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self._max_workers)

    async def disconnect(self) -> None:
        """Close connections and clean up resources."""
        if self._executor:
            self._executor.shutdown(wait=False)
            self._executor = None

    async def fetch_quote(self, symbol: str, category: AssetCategory) -> Dict[str, Any]:
        await self.connect()
        try:
            # yfinance is synchronous, keep it off the event loop
            return await asyncio.get_running_loop().run_in_executor(
                self._executor,
                self._fetch_info_sync,
                symbol
            )
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"Yahoo Finance lookup failed: {str(e)}", self.name, symbol)

    @staticmethod
    def _fetch_info_sync(symbol: str) -> Dict[str, Any]:
        return dict(yf.Ticker(symbol).info or {})

    def normalize_quote(self, symbol: str, category: AssetCategory, raw: Any) -> LiveDataEntry:
        if not isinstance(raw, dict) or not raw:
            raise DataNotFoundError(f"No quote data for {symbol}", self.name, symbol)

        current_price = self._to_float(
            raw.get('currentPrice') or
            raw.get('regularMarketPrice') or
            raw.get('navPrice') or
            raw.get('bid')
        )

        percent_change = raw.get('regularMarketChangePercent')
        if percent_change is None:
            previous_close = self._to_float(raw.get('previousClose') or raw.get('regularMarketPreviousClose'))
            percent_change = (current_price - previous_close) / previous_close * 100 if previous_close > 0 else 0.0

        return self._create_live(
            symbol=symbol,
            category=category,
            price=current_price,
            change_24h=self._to_float(percent_change),
            volume_24h=self._to_float(raw.get('volume') or raw.get('regularMarketVolume')),
            market_cap=self._to_float(raw.get('marketCap') or raw.get('totalAssets')),
            high_24h=raw.get('dayHigh') or raw.get('regularMarketDayHigh'),
            low_24h=raw.get('dayLow') or raw.get('regularMarketDayLow'),
            open_price=raw.get('open') or raw.get('regularMarketOpen')
        )
