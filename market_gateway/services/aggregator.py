"""
Aggregation facade.
Composes the tiered cache, fallback router, discovery catalog and prefetch
service to answer single-asset, paging, search and diagnostics requests.
None of the public operations raise.
"""

import math
from typing import Any, Dict, List, Optional, Tuple

from ..api.schemas import AssetPage, AssetView, PageMetadata, PaginationInfo, RefreshResponse, SearchResult
from ..core.clock import Clock, now_ms
from ..core.config import Settings
from ..core.logging_config import create_logger
from ..models import (
    AssetCategory, CacheLookup, CacheStatus, Capability, LiveDataEntry, MetadataEntry, PriorityClass
)
from ..providers.base import BaseDataProvider
from .cache import TieredCache
from .discovery import DiscoveryCatalog, dedupe, fallback_metadata, static_universe
from .prefetch import PrefetchService
from .rate_tracker import RateTracker
from .router import FallbackRouter, RouteResult
from .scheduler import RequestScheduler

logger = create_logger(__name__)

UNAVAILABLE_SOURCE = "unavailable"
SORT_FIELDS = {"symbol", "name", "sector", "price", "change_24h", "volume_24h", "market_cap"}


def build_view(
    symbol: str,
    category: AssetCategory,
    metadata: Optional[MetadataEntry],
    live: Optional[LiveDataEntry],
    status: CacheStatus,
    source: Optional[str] = None
) -> AssetView:
    """Merge both tiers into an AssetView; missing tiers become neutral defaults."""
    metadata = metadata or fallback_metadata(symbol, category)
    view = AssetView(
        symbol=metadata.symbol,
        name=metadata.name,
        category=metadata.category,
        sector=metadata.sector,
        industry=metadata.industry,
        exchange=metadata.exchange,
        country=metadata.country,
        market_cap=metadata.market_cap or 0.0,
        source=source or (live.source if live else UNAVAILABLE_SOURCE),
        status=status
    )
    if live is not None:
        view = view.copy(update={
            "price": live.price,
            "change_24h": live.change_24h,
            "volume_24h": live.volume_24h,
            "market_cap": live.market_cap or view.market_cap,
            "high_24h": live.high_24h,
            "low_24h": live.low_24h,
            "open_price": live.open_price,
            "last_updated": live.last_updated,
        })
    return view


class AggregationFacade:
    """Read-side entry point of the gateway."""

    def __init__(
        self,
        cache: TieredCache,
        router: FallbackRouter,
        catalog: DiscoveryCatalog,
        prefetch: PrefetchService,
        scheduler: RequestScheduler,
        providers: Dict[str, BaseDataProvider],
        settings: Settings,
        clock: Clock = now_ms
    ):
        self.cache = cache
        self.router = router
        self.catalog = catalog
        self.prefetch = prefetch
        self.scheduler = scheduler
        self.tracker: RateTracker = scheduler.tracker
        self.providers = providers
        self.settings = settings
        self.clock = clock

    def infer_category(self, symbol: str) -> AssetCategory:
        cached = self.cache.peek(symbol).metadata
        if cached is not None:
            return cached.category
        entry = self.catalog.find(symbol)
        if entry is not None:
            return entry.category
        return AssetCategory.STOCK

    async def get_single(self, symbol: str, category: Optional[AssetCategory] = None) -> AssetView:
        """
        One asset, fresh when possible.

        Fresh cache entries are served as-is. Otherwise the quote chain is
        tried; if every provider fails the last cached value is served with a
        ``cache:<provider>`` source, or a zero-value record when nothing is cached.
        """
        symbol = symbol.strip().upper()
        fallback_category = category or AssetCategory.STOCK
        try:
            category = category or self.infer_category(symbol)
            lookup = self.cache.get(symbol)
            if lookup.status == CacheStatus.FRESH:
                return build_view(symbol, category, lookup.metadata, lookup.live_data, lookup.status)

            result = await self.router.resolve(
                Capability.quote_for(category),
                lambda provider: provider.get_quote(symbol, category),
                priority=PriorityClass.HIGH
            )
            if isinstance(result, RouteResult):
                live = self.cache.set_live_data(result.value)
                metadata = self._ensure_metadata(symbol, category, lookup)
                return build_view(symbol, category, metadata, live, CacheStatus.FRESH, source=result.source)

            return self._degraded_view(symbol, category, lookup)

        except Exception as e:
            logger.error("Failed to build asset view", extra={"symbol": symbol, "error": str(e)})
            return build_view(symbol, fallback_category, None, None, CacheStatus.FALLBACK, source=UNAVAILABLE_SOURCE)

    def _ensure_metadata(self, symbol: str, category: AssetCategory, lookup: CacheLookup) -> MetadataEntry:
        if lookup.status != CacheStatus.FALLBACK and lookup.metadata is not None:
            return lookup.metadata
        entry = lookup.metadata or self.catalog.find(symbol, category) or fallback_metadata(symbol, category)
        return self.cache.set_metadata(entry)

    def _degraded_view(self, symbol: str, category: AssetCategory, lookup: CacheLookup) -> AssetView:
        if lookup.live_data is not None:
            logger.info("Serving stale cached value", extra={
                "symbol": symbol,
                "cached_source": lookup.live_data.source
            })
            return build_view(
                symbol, category, lookup.metadata, lookup.live_data, CacheStatus.STALE,
                source=f"cache:{lookup.live_data.source}"
            )
        return build_view(symbol, category, lookup.metadata, None, CacheStatus.FALLBACK, source=UNAVAILABLE_SOURCE)

    def _pool(self, category: AssetCategory) -> Tuple[List[MetadataEntry], str]:
        discovered = self.catalog.entries(category)
        if discovered:
            return discovered, "discovery"
        cached = self.cache.metadata_for(category)
        if cached:
            return cached, "cache"
        return static_universe(category), "static"

    @staticmethod
    def _matches(entry: MetadataEntry, search: Optional[str], sector: Optional[str]) -> bool:
        if search:
            needle = search.strip().lower()
            if needle not in entry.symbol.lower() and needle not in entry.name.lower():
                return False
        if sector and entry.sector.lower() != sector.strip().lower():
            return False
        return True

    def _sort_value(self, entry: MetadataEntry, field: str):
        if field in ("symbol", "name", "sector"):
            return getattr(entry, field).lower()
        live = self.cache.peek(entry.symbol).live_data
        if field == "market_cap":
            return (live.market_cap if live and live.market_cap else entry.market_cap) or 0.0
        return getattr(live, field) if live else 0.0

    async def get_page(
        self,
        category: AssetCategory,
        page: int = 1,
        limit: Optional[int] = None,
        search: Optional[str] = None,
        sector: Optional[str] = None,
        sort_by: str = "symbol",
        sort_order: str = "asc"
    ) -> AssetPage:
        """A filtered, sorted page of a category; stale items on the page are refreshed first."""
        started = self.clock()
        page = max(1, page)
        limit = min(max(1, limit or self.settings.default_page_size), self.settings.max_page_size)
        try:
            pool, pool_source = self._pool(category)
            entries = [entry for entry in dedupe(pool) if self._matches(entry, search, sector)]

            sort_field = sort_by if sort_by in SORT_FIELDS else "symbol"
            entries.sort(key=lambda entry: self._sort_value(entry, sort_field), reverse=sort_order == "desc")

            total = len(entries)
            total_pages = math.ceil(total / limit) if total else 0
            page_entries = entries[(page - 1) * limit: page * limit]

            for entry in page_entries:
                if self.cache.peek(entry.symbol).status == CacheStatus.FALLBACK:
                    self.cache.set_metadata(entry)

            stale = [entry.symbol for entry in page_entries if not self.cache.is_live_fresh(entry.symbol)]
            refreshed = 0
            if stale:
                refreshed, _ = await self.prefetch.fetch_live(category, stale, priority=PriorityClass.MEDIUM)

            items = []
            for entry in page_entries:
                lookup = self.cache.get(entry.symbol)
                if lookup.live_data is not None and lookup.status != CacheStatus.FRESH:
                    items.append(self._degraded_view(entry.symbol, category, lookup))
                else:
                    items.append(build_view(entry.symbol, category, lookup.metadata or entry,
                                            lookup.live_data, lookup.status))

            sources = sorted({item.source for item in items} | {pool_source})
            return AssetPage(
                category=category,
                items=items,
                pagination=PaginationInfo(
                    page=page,
                    limit=limit,
                    total=total,
                    total_pages=total_pages,
                    has_next=page < total_pages,
                    has_prev=page > 1
                ),
                metadata=PageMetadata(
                    data_sources=sources,
                    processing_time_ms=self.clock() - started,
                    refreshed=refreshed
                )
            )

        except Exception as e:
            logger.error("Failed to build asset page", extra={
                "category": category.value,
                "page": page,
                "error": str(e)
            })
            return AssetPage(
                category=category,
                pagination=PaginationInfo(page=page, limit=limit, total=0, total_pages=0,
                                          has_next=False, has_prev=page > 1),
                metadata=PageMetadata(data_sources=[UNAVAILABLE_SOURCE], processing_time_ms=self.clock() - started)
            )

    @staticmethod
    def relevance(query: str, entry: MetadataEntry, market_cap: float) -> float:
        """Exact symbol 100, prefix 50, substring 25, name match +20, plus a small market-cap boost."""
        q = query.strip().upper()
        symbol = entry.symbol.upper()
        score = 0.0
        if symbol == q:
            score += 100
        elif symbol.startswith(q):
            score += 50
        elif q in symbol:
            score += 25
        if q.lower() in entry.name.lower():
            score += 20
        if score > 0 and market_cap > 0:
            score += math.log10(market_cap + 1) * 0.1
        return score

    async def search(self, query: str, category: Optional[AssetCategory] = None) -> SearchResult:
        """Ranked matches across the catalog and cached metadata; served from cache only."""
        try:
            if not query or not query.strip():
                return SearchResult(query=query or "", category=category)

            categories = [category] if category else list(AssetCategory)
            pool: List[MetadataEntry] = []
            for cat in categories:
                pool.extend(self.cache.metadata_for(cat))
                pool.extend(self.catalog.entries(cat) or static_universe(cat))

            scored = []
            for entry in dedupe(pool):
                lookup = self.cache.peek(entry.symbol)
                live = lookup.live_data if lookup.live_data and lookup.live_data.category == entry.category else None
                market_cap = (live.market_cap if live else 0.0) or entry.market_cap or 0.0
                score = self.relevance(query, entry, market_cap)
                if score <= 0:
                    continue
                view = build_view(entry.symbol, entry.category, entry, live, lookup.status)
                scored.append(view.copy(update={"score": round(score, 4)}))

            scored.sort(key=lambda view: (-view.score, view.symbol))
            results = scored[:self.settings.search_result_limit]
            return SearchResult(query=query, category=category, results=results, total=len(results))

        except Exception as e:
            logger.error("Search failed", extra={"query": query, "error": str(e)})
            return SearchResult(query=query or "", category=category)

    def get_diagnostics(self) -> Dict[str, Any]:
        """Provider, router, cache, catalog and prefetch state in one report."""
        try:
            providers = {}
            for name, utilization in self.tracker.snapshot().items():
                adapter = self.providers.get(name)
                providers[name] = {
                    **utilization,
                    "queue_length": self.scheduler.queue_length(name),
                    "demo_mode": bool(adapter and adapter.demo_mode),
                    "degraded": bool(adapter and adapter.demo_mode) or utilization.get("health") != "healthy",
                }
            return {
                "timestamp": self.clock(),
                "providers": providers,
                "capabilities": self.router.stats(),
                "cache": self.cache.stats(),
                "discovery": self.catalog.stats(),
                "prefetch": self.prefetch.status(),
            }
        except Exception as e:
            logger.error("Failed to collect diagnostics", extra={"error": str(e)})
            return {"timestamp": self.clock(), "error": str(e)}

    async def refresh(self, category: Optional[AssetCategory] = None) -> RefreshResponse:
        """Run a prefetch now, for one category or all of them."""
        try:
            if category is not None:
                reports = [await self.prefetch.refresh(category)]
            else:
                reports = await self.prefetch.run_cycle()
            return RefreshResponse(status="completed", reports=[report.to_dict() for report in reports])
        except Exception as e:
            logger.error("Manual refresh failed", extra={"error": str(e)})
            return RefreshResponse(status="failed", error=str(e))
