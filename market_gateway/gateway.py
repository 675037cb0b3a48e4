"""
Gateway composition root.
Builds every component from settings, wires them together and owns the
lifecycle of their background tasks.
"""

import asyncio
from typing import Dict, List, Mapping, Optional

from .core.clock import Clock, now_ms
from .core.config import Settings, provider_defaults, settings as default_settings
from .core.exceptions import ConfigurationMissing
from .core.logging_config import create_logger
from .models import AssetCategory, Capability, ProviderConfig
from .providers.alpha_vantage_provider import AlphaVantageProvider
from .providers.base import BaseDataProvider
from .providers.coingecko_provider import CoinGeckoProvider
from .providers.coinmarketcap_provider import CoinMarketCapProvider
from .providers.finnhub_provider import FinnhubProvider
from .providers.twelve_data_provider import TwelveDataProvider
from .providers.yfinance_provider import YFinanceProvider
from .services.aggregator import AggregationFacade
from .services.cache import TieredCache
from .services.discovery import DiscoveryCatalog
from .services.prefetch import PrefetchService, Sleep
from .services.rate_tracker import RateTracker
from .services.router import FallbackRouter
from .services.scheduler import RequestScheduler

logger = create_logger(__name__)


def build_providers(config: Settings) -> Dict[str, BaseDataProvider]:
    """One adapter per upstream provider, configured from settings."""
    timeout = config.provider_request_timeout
    adapters: List[BaseDataProvider] = [
        FinnhubProvider(api_key=config.finnhub_api_key, base_url=config.finnhub_api_url, timeout=timeout),
        AlphaVantageProvider(api_key=config.alpha_vantage_api_key, base_url=config.alpha_vantage_api_url, timeout=timeout),
        TwelveDataProvider(api_key=config.twelve_data_api_key, base_url=config.twelve_data_api_url, timeout=timeout),
        YFinanceProvider(timeout=timeout),
        CoinGeckoProvider(base_url=config.coingecko_api_url, timeout=timeout),
        CoinMarketCapProvider(api_key=config.coinmarketcap_api_key, base_url=config.coinmarketcap_api_url, timeout=timeout),
    ]
    return {adapter.name: adapter for adapter in adapters}


class Gateway:
    """Owns the rate tracker, scheduler, router, cache, catalog, prefetch loop and facade."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        providers: Optional[Mapping[str, BaseDataProvider]] = None,
        provider_configs: Optional[Mapping[str, ProviderConfig]] = None,
        chains: Optional[Mapping[Capability, List[str]]] = None,
        clock: Clock = now_ms,
        sleep: Sleep = asyncio.sleep
    ):
        self.settings = settings or default_settings
        self.clock = clock
        self.providers: Dict[str, BaseDataProvider] = dict(
            providers if providers is not None else build_providers(self.settings)
        )
        configs = provider_configs or provider_defaults.PROVIDER_CONFIGS

        self.tracker = RateTracker(
            [config for name, config in configs.items() if name in self.providers],
            clock=clock
        )
        self.scheduler = RequestScheduler(
            self.tracker,
            request_timeout=self.settings.provider_request_timeout,
            drain_interval=self.settings.scheduler_drain_interval,
            max_queue_wait_ms=self.settings.scheduler_max_queue_wait_ms,
            max_queue_size=self.settings.scheduler_max_queue_size
        )
        self.router = FallbackRouter(
            self.scheduler,
            self.providers,
            chains or provider_defaults.CAPABILITY_CHAINS
        )
        self.cache = TieredCache(
            metadata_max_size=self.settings.metadata_cache_max_size,
            live_max_size=self.settings.live_cache_max_size,
            metadata_ttl_ms=self.settings.metadata_ttl_ms(),
            live_ttl_ms={category: self.settings.live_ttl_ms(category) for category in AssetCategory},
            live_retention_ms=self.settings.live_retention_seconds * 1000,
            clock=clock
        )
        self.catalog = DiscoveryCatalog(
            self.router,
            ttl_ms=self.settings.discovery_ttl_hours * 3600 * 1000,
            clock=clock
        )
        self.prefetch = PrefetchService(
            self.cache, self.router, self.catalog, self.settings, clock=clock, sleep=sleep
        )
        self.facade = AggregationFacade(
            cache=self.cache,
            router=self.router,
            catalog=self.catalog,
            prefetch=self.prefetch,
            scheduler=self.scheduler,
            providers=self.providers,
            settings=self.settings,
            clock=clock
        )
        self.started = False

    def _check_credentials(self) -> None:
        for adapter in self.providers.values():
            try:
                adapter.validate_credentials()
            except ConfigurationMissing as e:
                logger.warning("Provider credential missing, running in demo mode", extra={
                    "provider": e.provider,
                    "setting": e.setting
                })
                adapter.enable_demo_mode(self.settings.demo_api_key)

    async def start(self, background: bool = True) -> None:
        """Connect adapters and start background loops."""
        if self.started:
            return
        self._check_credentials()
        for adapter in self.providers.values():
            await adapter.connect()

        if background:
            self.scheduler.start()
            self.cache.start(self.settings.cache_sweep_interval)
            if self.settings.prefetch_enabled:
                self.prefetch.start()

        self.started = True
        logger.info("Gateway started", extra={
            "providers": list(self.providers),
            "background": background,
            "prefetch_enabled": self.settings.prefetch_enabled
        })

    async def stop(self) -> None:
        """Stop background loops and close adapters."""
        if not self.started:
            return
        await self.prefetch.stop()
        await self.cache.stop()
        await self.scheduler.stop()
        for adapter in self.providers.values():
            try:
                await adapter.disconnect()
            except Exception as e:
                logger.error("Failed to disconnect provider", extra={"provider": adapter.name, "error": str(e)})
        self.started = False
        logger.info("Gateway stopped")

    def are_background_tasks_running(self) -> bool:
        return self.scheduler.are_background_tasks_running() and self.cache.are_background_tasks_running()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
