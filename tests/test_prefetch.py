"""Unit tests for the background prefetch service."""
import asyncio
from unittest.mock import patch

import pytest

from market_gateway.models import AssetCategory, CacheStatus, MetadataEntry
from market_gateway.services.prefetch import PrefetchState

from conftest import StubProvider, make_gateway


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def providers():
    return {
        "alpha": StubProvider("alpha", default_price=10.0),
        "coins": StubProvider("coins", categories=(AssetCategory.CRYPTO,), default_price=2.0),
    }


@pytest.fixture
def gateway(test_settings, equity_chain, clock, providers, sleeper):
    return make_gateway(test_settings, providers, equity_chain, clock=clock, sleep=sleeper)


class TestRefresh:
    """One prefetch pass over a category."""

    @pytest.mark.asyncio
    async def test_populates_both_tiers_for_top_symbols(self, gateway, sleeper):
        report = await gateway.prefetch.refresh(AssetCategory.STOCK)

        assert report.symbols == 6
        assert report.metadata_written == 6
        assert report.live_written == 6
        assert report.failures == []
        assert gateway.cache.get("AAPL").status == CacheStatus.FRESH
        assert gateway.cache.get("AAPL").metadata.name == "Apple Inc."
        # three batches of two, delay only between batches
        assert sleeper.calls == [1.0, 1.0]
        assert gateway.prefetch.state(AssetCategory.STOCK) == PrefetchState.IDLE

    @pytest.mark.asyncio
    async def test_failing_symbols_are_skipped(self, gateway, providers):
        providers["alpha"].default_price = None
        providers["alpha"].prices = {"AAPL": 190.0, "NVDA": 900.0}

        report = await gateway.prefetch.refresh(AssetCategory.STOCK)

        assert report.live_written == 2
        assert set(report.failures) == {"MSFT", "GOOGL", "AMZN", "META"}
        assert gateway.cache.get("NVDA").live_data.price == 900.0
        assert gateway.cache.get("MSFT").status == CacheStatus.STALE

    @pytest.mark.asyncio
    async def test_fresh_metadata_is_not_overwritten(self, gateway):
        gateway.cache.set_metadata(MetadataEntry(symbol="AAPL", name="Custom Apple", category=AssetCategory.STOCK))

        report = await gateway.prefetch.refresh(AssetCategory.STOCK)

        assert report.metadata_written == 5
        assert gateway.cache.get("AAPL").metadata.name == "Custom Apple"

    @pytest.mark.asyncio
    async def test_crypto_uses_its_own_chain_and_batches(self, gateway, providers, sleeper):
        report = await gateway.prefetch.refresh(AssetCategory.CRYPTO)

        assert report.live_written == 5
        assert providers["coins"].calls[:2] == ["BTC", "ETH"]
        assert providers["alpha"].calls == []
        assert sleeper.calls == [2.0]

    @pytest.mark.asyncio
    async def test_fetch_live_without_delay(self, gateway, sleeper):
        written, failures = await gateway.prefetch.fetch_live(AssetCategory.STOCK, ["AAPL", "MSFT", "TSLA"])

        assert (written, failures) == (3, [])
        assert sleeper.calls == []


class TestCycle:
    """Full cycles across categories."""

    @pytest.mark.asyncio
    async def test_run_cycle_covers_every_category(self, gateway):
        reports = await gateway.prefetch.run_cycle()

        assert [report.category for report in reports] == list(AssetCategory)
        status = gateway.prefetch.status()
        assert status["cycles"] == 1
        assert status["categories"]["etf"]["last_report"]["live_written"] == 4

    @pytest.mark.asyncio
    async def test_one_failing_category_does_not_stop_others(self, gateway):
        prefetch = gateway.prefetch
        original = prefetch._target_symbols

        async def target_symbols(category):
            if category == AssetCategory.ETF:
                raise RuntimeError("catalog exploded")
            return await original(category)

        with patch.object(prefetch, "_target_symbols", side_effect=target_symbols):
            reports = await prefetch.run_cycle()

        assert [report.category for report in reports] == [AssetCategory.STOCK, AssetCategory.CRYPTO]
        assert prefetch.state(AssetCategory.ETF) == PrefetchState.IDLE

    @pytest.mark.asyncio
    async def test_background_loop_runs_and_stops(self, test_settings, equity_chain, providers):
        settings = test_settings.copy(update={"prefetch_enabled": True, "prefetch_interval": 3600.0})
        gateway = make_gateway(settings, providers, equity_chain)

        await gateway.start()
        try:
            for _ in range(200):
                if gateway.prefetch.status()["cycles"] >= 1:
                    break
                await asyncio.sleep(0.01)
            assert gateway.prefetch.status()["cycles"] == 1
            assert gateway.prefetch.are_background_tasks_running()
        finally:
            await gateway.stop()

        assert not gateway.prefetch.are_background_tasks_running()
