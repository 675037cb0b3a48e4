"""
In-memory tiered cache for the Market Data Gateway.
Keeps slow-changing metadata and fast-changing live data in separate bounded
stores with their own TTLs; freshness is always derived at read time.
"""

import asyncio
from typing import Any, Dict, Generic, List, Mapping, Optional, TypeVar

from ..core.clock import Clock, now_ms
from ..core.logging_config import create_logger
from ..models import AssetCategory, CacheLookup, CacheStatus, LiveDataEntry, MetadataEntry

logger = create_logger(__name__)

T = TypeVar("T")


class BoundedStore(Generic[T]):
    """Dict with a size cap; overflow evicts the least recently touched key."""

    def __init__(self, max_size: int):
        self.max_size = max_size
        self._entries: Dict[str, T] = {}
        self._touched: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str, now: Optional[float] = None) -> Optional[T]:
        entry = self._entries.get(key)
        if entry is not None and now is not None:
            self._touched[key] = now
        return entry

    def put(self, key: str, entry: T, now: float) -> Optional[str]:
        """Store an entry; returns the key evicted to make room, if any."""
        evicted = None
        if key not in self._entries and len(self._entries) >= self.max_size:
            evicted = min(self._touched, key=self._touched.get)
            self.pop(evicted)
        self._entries[key] = entry
        self._touched[key] = now
        return evicted

    def pop(self, key: str) -> Optional[T]:
        self._touched.pop(key, None)
        return self._entries.pop(key, None)

    def items(self):
        return list(self._entries.items())

    def clear(self) -> None:
        self._entries.clear()
        self._touched.clear()


class TieredCache:
    """Metadata and live-data stores with category-specific TTLs."""

    def __init__(
        self,
        metadata_max_size: int = 1000,
        live_max_size: int = 2000,
        metadata_ttl_ms: float = 24 * 3600 * 1000,
        live_ttl_ms: Optional[Mapping[AssetCategory, float]] = None,
        live_retention_ms: float = 15 * 60 * 1000,
        clock: Clock = now_ms
    ):
        self.clock = clock
        self.metadata_ttl_ms = metadata_ttl_ms
        self.live_ttl_ms: Dict[AssetCategory, float] = dict(live_ttl_ms or {
            AssetCategory.STOCK: 30_000,
            AssetCategory.ETF: 30_000,
            AssetCategory.CRYPTO: 15_000,
        })
        self.live_retention_ms = live_retention_ms
        self._metadata: BoundedStore[MetadataEntry] = BoundedStore(metadata_max_size)
        self._live: BoundedStore[LiveDataEntry] = BoundedStore(live_max_size)
        self._hits = 0
        self._misses = 0
        self._evictions = 0

        self._running_tasks: List[asyncio.Task] = []
        self._shutdown_event = asyncio.Event()

    @staticmethod
    def _key(symbol: str) -> str:
        return symbol.strip().upper()

    def _metadata_fresh(self, entry: Optional[MetadataEntry], now: float) -> bool:
        return entry is not None and now - entry.last_updated < self.metadata_ttl_ms

    def _live_fresh(self, entry: Optional[LiveDataEntry], now: float) -> bool:
        return entry is not None and now - entry.last_updated < self.live_ttl_ms[entry.category]

    def _status(self, metadata: Optional[MetadataEntry], live: Optional[LiveDataEntry], now: float) -> CacheStatus:
        if self._metadata_fresh(metadata, now):
            return CacheStatus.FRESH if self._live_fresh(live, now) else CacheStatus.STALE
        return CacheStatus.FALLBACK

    def get(self, symbol: str) -> CacheLookup:
        """Both tiers for a symbol plus its status as of now."""
        key = self._key(symbol)
        now = self.clock()
        metadata = self._metadata.get(key, now)
        live = self._live.get(key, now)
        status = self._status(metadata, live, now)

        if status == CacheStatus.FRESH:
            self._hits += 1
        else:
            self._misses += 1

        return CacheLookup(symbol=key, metadata=metadata, live_data=live, status=status)

    def peek(self, symbol: str) -> CacheLookup:
        """Like get, without touching entries or hit counters."""
        key = self._key(symbol)
        now = self.clock()
        metadata = self._metadata.get(key)
        live = self._live.get(key)
        return CacheLookup(symbol=key, metadata=metadata, live_data=live, status=self._status(metadata, live, now))

    def is_live_fresh(self, symbol: str) -> bool:
        return self._live_fresh(self._live.get(self._key(symbol)), self.clock())

    def set_metadata(self, entry: MetadataEntry) -> MetadataEntry:
        now = self.clock()
        stamped = entry.copy(update={"last_updated": now})
        evicted = self._metadata.put(self._key(entry.symbol), stamped, now)
        if evicted:
            self._evictions += 1
            logger.debug("Evicted metadata entry", extra={"symbol": evicted})
        return stamped

    def set_live_data(self, entry: LiveDataEntry) -> LiveDataEntry:
        now = self.clock()
        stamped = entry.copy(update={"last_updated": now})
        evicted = self._live.put(self._key(entry.symbol), stamped, now)
        if evicted:
            self._evictions += 1
            logger.debug("Evicted live entry", extra={"symbol": evicted})
        return stamped

    def evict(self, symbol: str) -> bool:
        key = self._key(symbol)
        removed_metadata = self._metadata.pop(key) is not None
        removed_live = self._live.pop(key) is not None
        return removed_metadata or removed_live

    def metadata_for(self, category: AssetCategory) -> List[MetadataEntry]:
        return [entry for _, entry in self._metadata.items() if entry.category == category]

    def all_metadata(self) -> List[MetadataEntry]:
        return [entry for _, entry in self._metadata.items()]

    def is_prefetched(self, symbol: str) -> bool:
        key = self._key(symbol)
        return key in self._metadata and key in self._live

    def ttl_remaining(self, symbol: str) -> Dict[str, float]:
        """Milliseconds until each tier of an entry expires (0 if missing or expired)."""
        key = self._key(symbol)
        now = self.clock()
        metadata = self._metadata.get(key)
        live = self._live.get(key)
        return {
            "metadata_ms": max(0.0, metadata.last_updated + self.metadata_ttl_ms - now) if metadata else 0.0,
            "live_ms": max(0.0, live.last_updated + self.live_ttl_ms[live.category] - now) if live else 0.0,
        }

    def sweep(self) -> Dict[str, int]:
        """
        Drop expired metadata and live entries past the retention window.

        Live entries outlive their TTL so a stale price can still be served
        while providers are unavailable.
        """
        now = self.clock()
        expired_metadata = [
            key for key, entry in self._metadata.items()
            if now - entry.last_updated >= self.metadata_ttl_ms
        ]
        expired_live = [
            key for key, entry in self._live.items()
            if now - entry.last_updated >= max(self.live_ttl_ms[entry.category], self.live_retention_ms)
        ]
        for key in expired_metadata:
            self._metadata.pop(key)
        for key in expired_live:
            self._live.pop(key)

        if expired_metadata or expired_live:
            logger.info("Cache sweep removed entries", extra={
                "metadata_removed": len(expired_metadata),
                "live_removed": len(expired_live)
            })
        return {"metadata_removed": len(expired_metadata), "live_removed": len(expired_live)}

    def clear(self) -> None:
        self._metadata.clear()
        self._live.clear()
        self._hits = self._misses = self._evictions = 0

    def stats(self) -> Dict[str, Any]:
        now = self.clock()
        live_fresh = sum(1 for _, entry in self._live.items() if self._live_fresh(entry, now))
        lookups = self._hits + self._misses
        return {
            "metadata_entries": len(self._metadata),
            "metadata_max_size": self._metadata.max_size,
            "live_entries": len(self._live),
            "live_max_size": self._live.max_size,
            "live_fresh_entries": live_fresh,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
            "evictions": self._evictions,
        }

    async def _sweep_loop(self, interval: float) -> None:
        while not self._shutdown_event.is_set():
            try:
                self.sweep()
            except Exception as e:
                logger.error("Cache sweep failed", extra={"error": str(e)})

            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                continue

    def start(self, sweep_interval: float = 60.0) -> None:
        self._shutdown_event.clear()
        self._running_tasks.append(asyncio.create_task(self._sweep_loop(sweep_interval)))

    def are_background_tasks_running(self) -> bool:
        return any(not task.done() for task in self._running_tasks)

    async def stop(self) -> None:
        self._shutdown_event.set()
        for task in self._running_tasks:
            if not task.done():
                task.cancel()
        if self._running_tasks:
            await asyncio.gather(*self._running_tasks, return_exceptions=True)
        self._running_tasks.clear()
