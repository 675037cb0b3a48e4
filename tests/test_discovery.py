"""Unit tests for asset discovery and the static fallback universe."""
import pytest

from market_gateway.core.exceptions import ProviderError
from market_gateway.models import AssetCategory, MetadataEntry
from market_gateway.services.discovery import dedupe, fallback_metadata, static_universe

from conftest import StubProvider, make_gateway


def listing(symbol, market_cap=None, category=AssetCategory.STOCK):
    return MetadataEntry(symbol=symbol, name=f"{symbol} Corp", category=category, market_cap=market_cap)


class TestStaticUniverse:
    """Curated lists used when discovery has nothing."""

    @pytest.mark.parametrize("category", list(AssetCategory))
    def test_symbols_are_unique(self, category):
        symbols = [entry.symbol for entry in static_universe(category)]

        assert symbols
        assert len(symbols) == len(set(symbols))

    def test_crypto_entries_are_global(self):
        btc = static_universe(AssetCategory.CRYPTO)[0]

        assert btc.symbol == "BTC"
        assert btc.exchange == "Crypto"
        assert btc.country == "Global"

    def test_fallback_metadata(self):
        assert fallback_metadata("aapl", AssetCategory.STOCK).name == "Apple Inc."

        unknown = fallback_metadata(" zzz ", AssetCategory.STOCK)
        assert unknown.symbol == "ZZZ"
        assert unknown.name == "ZZZ"
        assert unknown.sector == "Unknown"

    def test_dedupe_keeps_first_per_symbol_and_category(self):
        entries = [
            listing("AAA", 1.0),
            listing("AAA", 2.0),
            listing("AAA", 3.0, category=AssetCategory.ETF),
        ]

        unique = dedupe(entries)

        assert [(e.symbol, e.market_cap) for e in unique] == [("AAA", 1.0), ("AAA", 3.0)]


class TestDiscoveryCatalog:
    """Listing resolution, TTL and failure handling."""

    @pytest.fixture
    def alpha(self):
        return StubProvider("alpha", listings={
            AssetCategory.STOCK: [listing("SMALL", 10.0), listing("BIG", 1000.0), listing("BIG", 5.0), listing("MID", 100.0)]
        })

    @pytest.fixture
    def gateway(self, test_settings, equity_chain, clock, alpha):
        return make_gateway(test_settings, {"alpha": alpha, "coins": StubProvider("coins")}, equity_chain, clock=clock)

    @pytest.mark.asyncio
    async def test_discover_dedupes_and_ranks(self, gateway):
        catalog = gateway.catalog

        entries = await catalog.discover(AssetCategory.STOCK)

        assert [entry.symbol for entry in entries] == ["SMALL", "BIG", "MID"]
        assert catalog.top_symbols(AssetCategory.STOCK, 2) == ["BIG", "MID"]
        assert catalog.stats()["stock"]["source"] == "alpha"
        assert catalog.is_fresh(AssetCategory.STOCK)

    @pytest.mark.asyncio
    async def test_fresh_catalog_is_not_refetched(self, gateway, alpha, clock):
        catalog = gateway.catalog
        await catalog.discover(AssetCategory.STOCK)
        alpha.listings[AssetCategory.STOCK] = [listing("NEW")]

        assert [e.symbol for e in await catalog.discover(AssetCategory.STOCK)] == ["SMALL", "BIG", "MID"]

        clock.advance(catalog.ttl_ms)
        assert [e.symbol for e in await catalog.discover(AssetCategory.STOCK)] == ["NEW"]

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_previous_catalog(self, gateway, alpha):
        catalog = gateway.catalog
        await catalog.discover(AssetCategory.STOCK)
        alpha.listing_error = ProviderError("listing down", "alpha")

        entries = await catalog.discover(AssetCategory.STOCK, force=True)

        assert [entry.symbol for entry in entries] == ["SMALL", "BIG", "MID"]
        assert catalog.stats()["stock"]["failures"] == 1

    @pytest.mark.asyncio
    async def test_unlisted_category_falls_back_to_static(self, gateway):
        catalog = gateway.catalog

        assert await catalog.discover(AssetCategory.ETF) == []
        assert catalog.top_symbols(AssetCategory.ETF, 3) == ["SPY", "IVV", "VOO"]
        assert catalog.stats()["etf"]["failures"] == 1

    @pytest.mark.asyncio
    async def test_find_and_search(self, gateway):
        catalog = gateway.catalog
        await catalog.discover(AssetCategory.STOCK)

        assert catalog.find("big").market_cap == 1000.0
        assert catalog.find("SPY").category == AssetCategory.ETF
        assert catalog.find("NOPE") is None

        assert [e.symbol for e in catalog.search_catalog("bitcoin")] == ["BTC", "BCH"]
        assert catalog.search_catalog("   ") == []
