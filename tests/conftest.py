"""Shared pytest fixtures and configuration."""
import asyncio
from typing import Any, Dict, Iterable, List, Optional

import pytest

from market_gateway.core.config import Settings
from market_gateway.core.exceptions import DataNotFoundError
from market_gateway.gateway import Gateway
from market_gateway.models import (
    AssetCategory, Capability, LiveDataEntry, MetadataEntry, PriorityClass, ProviderConfig
)
from market_gateway.providers.base import BaseDataProvider


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def set(self, value: float) -> None:
        self.now = value

    def advance(self, ms: float) -> None:
        self.now += ms


class StubProvider(BaseDataProvider):
    """In-memory provider with scripted prices, errors and listings."""

    def __init__(
        self,
        name: str,
        categories: Iterable[AssetCategory] = (AssetCategory.STOCK, AssetCategory.ETF),
        prices: Optional[Dict[str, float]] = None,
        default_price: Optional[float] = None,
        error: Optional[Exception] = None,
        listings: Optional[Dict[AssetCategory, List[MetadataEntry]]] = None,
        listing_error: Optional[Exception] = None
    ):
        super().__init__(name=name)
        self.categories = set(categories)
        self.prices = dict(prices or {})
        self.default_price = default_price
        self.error = error
        self.listings = listings or {}
        self.listing_error = listing_error
        self.calls: List[str] = []

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    def supports_category(self, category: AssetCategory) -> bool:
        return category in self.categories

    async def fetch_quote(self, symbol: str, category: AssetCategory) -> Dict[str, Any]:
        self.calls.append(symbol)
        if self.error is not None:
            raise self.error
        price = self.prices.get(symbol, self.default_price)
        if price is None:
            raise DataNotFoundError(f"No data for {symbol}", self.name, symbol)
        return {"price": price}

    def normalize_quote(self, symbol: str, category: AssetCategory, raw: Any) -> LiveDataEntry:
        return self._create_live(symbol=symbol, category=category, price=raw["price"], volume_24h=1000.0)

    async def list_assets(self, category: AssetCategory) -> List[MetadataEntry]:
        if self.listing_error is not None:
            raise self.listing_error
        if category not in self.listings:
            return await super().list_assets(category)
        return self.listings[category]


def make_config(name: str, **overrides) -> ProviderConfig:
    """Generous limits so tests only hit the limit they are about."""
    values = dict(
        name=name,
        requests_per_minute=1000,
        requests_per_hour=10000,
        requests_per_day=100000,
        burst_limit=5,
        cooldown_ms=0,
        retry_attempts=0,
        retry_delay_ms=100,
        priority_class=PriorityClass.MEDIUM,
    )
    values.update(overrides)
    return ProviderConfig(**values)


async def no_sleep(_seconds: float) -> None:
    await asyncio.sleep(0)


def make_gateway(
    settings: Settings,
    providers: Dict[str, BaseDataProvider],
    chains: Dict[Capability, List[str]],
    clock=None,
    sleep=no_sleep,
    **config_overrides
) -> Gateway:
    """Gateway over stub providers, one generous config per provider."""
    configs = {name: make_config(name, **config_overrides) for name in providers}
    kwargs = {"clock": clock} if clock is not None else {}
    return Gateway(
        settings=settings,
        providers=providers,
        provider_configs=configs,
        chains=chains,
        sleep=sleep,
        **kwargs
    )


@pytest.fixture
def clock():
    return FakeClock(start=1_000_000.0)


@pytest.fixture
def test_settings():
    return Settings(
        prefetch_enabled=False,
        prefetch_initial_delay=0,
        prefetch_top_stocks=6,
        prefetch_top_etfs=4,
        prefetch_top_crypto=5,
        prefetch_batch_size_stocks=2,
        prefetch_batch_size_etfs=2,
        prefetch_batch_size_crypto=3,
        provider_request_timeout=1.0,
        scheduler_drain_interval=0.05,
        default_page_size=5,
        max_page_size=10,
        search_result_limit=10,
        log_format="text",
    )


@pytest.fixture
def equity_chain():
    return {
        Capability.EQUITY_QUOTE: ["alpha", "beta", "gamma"],
        Capability.CRYPTO_QUOTE: ["coins"],
        Capability.EQUITY_LISTING: ["alpha"],
        Capability.ETF_LISTING: ["alpha"],
        Capability.CRYPTO_LISTING: ["coins"],
    }
