"""
Background prefetch.
Periodically walks the target universe of every category and fills the tiered
cache through the fallback router in bounded batches.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Tuple

from ..core.clock import Clock, now_ms
from ..core.config import Settings
from ..core.logging_config import create_logger
from ..models import AssetCategory, CacheStatus, Capability, PriorityClass
from .cache import TieredCache
from .discovery import DiscoveryCatalog, fallback_metadata
from .router import FallbackRouter, RouteResult

logger = create_logger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class PrefetchState(str, Enum):
    IDLE = "idle"
    RUNNING_METADATA = "running_metadata"
    RUNNING_LIVE = "running_live"


@dataclass
class PrefetchReport:
    """Outcome of one prefetch pass over a category."""
    category: AssetCategory
    symbols: int = 0
    metadata_written: int = 0
    live_written: int = 0
    failures: List[str] = field(default_factory=list)
    started_at: float = 0.0
    finished_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "symbols": self.symbols,
            "metadata_written": self.metadata_written,
            "live_written": self.live_written,
            "failures": list(self.failures),
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration_ms": self.finished_at - self.started_at,
        }


class PrefetchService:
    """Scheduled and on-demand cache population."""

    def __init__(
        self,
        cache: TieredCache,
        router: FallbackRouter,
        catalog: DiscoveryCatalog,
        settings: Settings,
        clock: Clock = now_ms,
        sleep: Sleep = asyncio.sleep
    ):
        self.cache = cache
        self.router = router
        self.catalog = catalog
        self.settings = settings
        self.clock = clock
        self.sleep = sleep

        self._locks: Dict[AssetCategory, asyncio.Lock] = {category: asyncio.Lock() for category in AssetCategory}
        self._states: Dict[AssetCategory, PrefetchState] = {category: PrefetchState.IDLE for category in AssetCategory}
        self._last_reports: Dict[AssetCategory, PrefetchReport] = {}
        self._cycles = 0

        self._running_tasks: List[asyncio.Task] = []
        self._shutdown_event = asyncio.Event()

    def state(self, category: AssetCategory) -> PrefetchState:
        return self._states[category]

    async def refresh(self, category: AssetCategory) -> PrefetchReport:
        """Prefetch one category; waits for any run already in progress for it."""
        async with self._locks[category]:
            report = PrefetchReport(category=category, started_at=self.clock())
            try:
                self._states[category] = PrefetchState.RUNNING_METADATA
                symbols = await self._target_symbols(category)
                report.symbols = len(symbols)
                report.metadata_written = self._populate_metadata(category, symbols)

                self._states[category] = PrefetchState.RUNNING_LIVE
                written, failures = await self.fetch_live(category, symbols, use_delay=True)
                report.live_written = written
                report.failures = failures
            finally:
                self._states[category] = PrefetchState.IDLE
                report.finished_at = self.clock()
                self._last_reports[category] = report

            logger.info("Prefetch completed", extra=report.to_dict())
            return report

    async def run_cycle(self) -> List[PrefetchReport]:
        """Prefetch every category in turn; one category failing does not stop the rest."""
        reports = []
        for category in AssetCategory:
            try:
                reports.append(await self.refresh(category))
            except Exception as e:
                logger.error("Prefetch failed for category", extra={
                    "category": category.value,
                    "error": str(e)
                })
        self._cycles += 1
        return reports

    async def _target_symbols(self, category: AssetCategory) -> List[str]:
        await self.catalog.discover(category)
        return self.catalog.top_symbols(category, self.settings.prefetch_top_n(category))

    def _populate_metadata(self, category: AssetCategory, symbols: List[str]) -> int:
        written = 0
        for symbol in symbols:
            if self.cache.peek(symbol).status != CacheStatus.FALLBACK:
                continue
            entry = self.catalog.find(symbol, category) or fallback_metadata(symbol, category)
            self.cache.set_metadata(entry)
            written += 1
        return written

    async def fetch_live(
        self,
        category: AssetCategory,
        symbols: List[str],
        use_delay: bool = False,
        priority: int = PriorityClass.LOW
    ) -> Tuple[int, List[str]]:
        """
        Fetch live data for symbols in concurrent batches.

        Returns the number written and the symbols that failed. A failing
        symbol is logged and skipped.
        """
        batch_size = self.settings.prefetch_batch_size(category)
        delay = self.settings.prefetch_batch_delay(category)
        written = 0
        failures: List[str] = []

        for start in range(0, len(symbols), batch_size):
            batch = symbols[start:start + batch_size]
            results = await asyncio.gather(
                *(self._fetch_one(symbol, category, priority) for symbol in batch),
                return_exceptions=True
            )
            for symbol, ok in zip(batch, results):
                if ok is True:
                    written += 1
                else:
                    failures.append(symbol)
                    if isinstance(ok, BaseException):
                        logger.warning("Live fetch raised", extra={"symbol": symbol, "error": str(ok)})

            if use_delay and start + batch_size < len(symbols):
                await self.sleep(delay)

        return written, failures

    async def _fetch_one(self, symbol: str, category: AssetCategory, priority: int) -> bool:
        result = await self.router.resolve(
            Capability.quote_for(category),
            lambda provider: provider.get_quote(symbol, category),
            priority=priority
        )
        if isinstance(result, RouteResult):
            self.cache.set_live_data(result.value)
            return True

        logger.warning("Live fetch failed", extra={
            "symbol": symbol,
            "category": category.value,
            "error": result.message
        })
        return False

    def status(self) -> Dict[str, Any]:
        return {
            "cycles": self._cycles,
            "running": self.are_background_tasks_running(),
            "categories": {
                category.value: {
                    "state": self._states[category].value,
                    "last_report": self._last_reports[category].to_dict() if category in self._last_reports else None,
                }
                for category in AssetCategory
            },
        }

    async def _wait_or_shutdown(self, timeout: float) -> bool:
        """Wait for the timeout; True if shutdown was requested meanwhile."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def _prefetch_loop(self) -> None:
        if await self._wait_or_shutdown(self.settings.prefetch_initial_delay):
            return

        while not self._shutdown_event.is_set():
            try:
                logger.info("Starting prefetch cycle", extra={"cycle": self._cycles + 1})
                await self.run_cycle()
            except Exception as e:
                logger.error("Error in prefetch loop", extra={"error": str(e)})

            if await self._wait_or_shutdown(self.settings.prefetch_interval):
                break

    def start(self) -> None:
        self._shutdown_event.clear()
        self._running_tasks.append(asyncio.create_task(self._prefetch_loop()))
        logger.info("Prefetch loop started", extra={
            "interval": self.settings.prefetch_interval,
            "initial_delay": self.settings.prefetch_initial_delay
        })

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
