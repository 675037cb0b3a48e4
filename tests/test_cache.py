"""Unit tests for the tiered cache."""
import pytest

from market_gateway.models import AssetCategory, CacheStatus, LiveDataEntry, MetadataEntry
from market_gateway.services.cache import BoundedStore, TieredCache


def metadata(symbol="AAPL", category=AssetCategory.STOCK, **kwargs):
    return MetadataEntry(symbol=symbol, name=f"{symbol} Inc.", category=category, **kwargs)


def live(symbol="AAPL", category=AssetCategory.STOCK, price=100.0):
    return LiveDataEntry(
        symbol=symbol, category=category, price=price, change_24h=1.5,
        volume_24h=1000.0, source="alpha"
    )


@pytest.fixture
def cache(clock):
    return TieredCache(
        metadata_max_size=3,
        live_max_size=3,
        metadata_ttl_ms=24 * 3600 * 1000,
        live_ttl_ms={
            AssetCategory.STOCK: 30_000,
            AssetCategory.ETF: 30_000,
            AssetCategory.CRYPTO: 15_000,
        },
        live_retention_ms=900_000,
        clock=clock
    )


class TestBoundedStore:
    """Size cap and least-recently-touched eviction."""

    def test_put_evicts_oldest_touched(self):
        store = BoundedStore(max_size=2)
        store.put("A", 1, now=1)
        store.put("B", 2, now=2)
        store.get("A", now=3)

        assert store.put("C", 3, now=4) == "B"
        assert "A" in store and "C" in store and "B" not in store

    def test_overwrite_does_not_evict(self):
        store = BoundedStore(max_size=1)
        store.put("A", 1, now=1)

        assert store.put("A", 2, now=2) is None
        assert store.get("A") == 2


class TestFreshness:
    """Status derivation from the two tiers."""

    def test_stock_live_ttl_boundary(self, cache, clock):
        cache.set_metadata(metadata())
        cache.set_live_data(live(price=100.0))
        start = clock()

        clock.set(start + 29_999)
        lookup = cache.get("AAPL")
        assert lookup.status == CacheStatus.FRESH
        assert lookup.live_data.price == 100.0

        clock.set(start + 30_001)
        lookup = cache.get("AAPL")
        assert lookup.status == CacheStatus.STALE
        assert lookup.live_data.price == 100.0

    def test_crypto_ttl_is_shorter(self, cache, clock):
        cache.set_metadata(metadata("BTC", AssetCategory.CRYPTO))
        cache.set_live_data(live("BTC", AssetCategory.CRYPTO))

        clock.advance(15_000)

        assert cache.get("btc").status == CacheStatus.STALE

    def test_missing_metadata_is_fallback(self, cache):
        cache.set_live_data(live())

        assert cache.get("AAPL").status == CacheStatus.FALLBACK
        assert cache.get("MSFT").status == CacheStatus.FALLBACK

    def test_metadata_without_live_is_stale(self, cache):
        cache.set_metadata(metadata())

        assert cache.get("AAPL").status == CacheStatus.STALE

    def test_status_only_degrades_without_writes(self, cache, clock):
        cache.set_metadata(metadata())
        cache.set_live_data(live())
        rank = {CacheStatus.FRESH: 0, CacheStatus.STALE: 1, CacheStatus.FALLBACK: 2}

        seen = []
        for _ in range(30):
            seen.append(rank[cache.peek("AAPL").status])
            clock.advance(3_600_000)

        assert seen == sorted(seen)
        assert seen[0] == 0 and seen[-1] == 2

    def test_set_stamps_with_clock(self, cache, clock):
        stored = cache.set_live_data(live().copy(update={"last_updated": 0.0}))

        assert stored.last_updated == clock()
        assert cache.is_live_fresh("AAPL")

    def test_ttl_remaining(self, cache, clock):
        cache.set_metadata(metadata())
        cache.set_live_data(live())
        clock.advance(10_000)

        remaining = cache.ttl_remaining("AAPL")

        assert remaining["live_ms"] == 20_000
        assert remaining["metadata_ms"] == 24 * 3600 * 1000 - 10_000
        assert cache.ttl_remaining("NONE") == {"metadata_ms": 0.0, "live_ms": 0.0}


class TestCapacity:
    """Bounded tiers and statistics."""

    def test_tiers_never_exceed_capacity(self, cache, clock):
        for index in range(10):
            clock.advance(1)
            cache.set_metadata(metadata(f"SYM{index}"))
            cache.set_live_data(live(f"SYM{index}"))

            stats = cache.stats()
            assert stats["metadata_entries"] <= 3
            assert stats["live_entries"] <= 3

        assert cache.stats()["evictions"] == 14

    def test_recently_read_entry_survives(self, cache, clock):
        for symbol in ("A", "B", "C"):
            clock.advance(1)
            cache.set_metadata(metadata(symbol))

        clock.advance(1)
        cache.get("A")
        clock.advance(1)
        cache.set_metadata(metadata("D"))

        symbols = {entry.symbol for entry in cache.all_metadata()}
        assert symbols == {"A", "C", "D"}

    def test_hits_and_misses(self, cache):
        cache.set_metadata(metadata())
        cache.set_live_data(live())

        cache.get("AAPL")
        cache.get("AAPL")
        cache.get("MSFT")
        cache.peek("MSFT")

        stats = cache.stats()
        assert stats["hits"] == 2
        assert stats["misses"] == 1
        assert stats["hit_rate"] == round(2 / 3, 4)

    def test_metadata_for_category(self, cache):
        cache.set_metadata(metadata("AAPL"))
        cache.set_metadata(metadata("SPY", AssetCategory.ETF))

        assert [entry.symbol for entry in cache.metadata_for(AssetCategory.ETF)] == ["SPY"]

    def test_evict_and_clear(self, cache):
        cache.set_metadata(metadata())
        cache.set_live_data(live())

        assert cache.is_prefetched("AAPL")
        assert cache.evict("AAPL") is True
        assert cache.evict("AAPL") is False

        cache.set_metadata(metadata())
        cache.clear()
        assert cache.stats()["metadata_entries"] == 0


class TestSweep:
    """Retention of stale live data."""

    def test_stale_live_data_kept_until_retention(self, cache, clock):
        cache.set_metadata(metadata())
        cache.set_live_data(live())

        clock.advance(60_000)
        assert cache.sweep() == {"metadata_removed": 0, "live_removed": 0}
        assert cache.get("AAPL").live_data is not None

        clock.advance(900_000)
        assert cache.sweep() == {"metadata_removed": 0, "live_removed": 1}
        assert cache.get("AAPL").live_data is None

    def test_expired_metadata_removed(self, cache, clock):
        cache.set_metadata(metadata())
        clock.advance(24 * 3600 * 1000)

        assert cache.sweep()["metadata_removed"] == 1
        assert cache.all_metadata() == []

    @pytest.mark.asyncio
    async def test_sweep_loop_lifecycle(self, cache):
        cache.start(sweep_interval=0.01)
        assert cache.are_background_tasks_running()

        await cache.stop()
        assert not cache.are_background_tasks_running()
