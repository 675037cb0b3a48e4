"""
Request scheduler.
Runs provider calls inline when the rate tracker admits them, otherwise parks them
in a per-provider priority queue drained on a fixed interval, with exponential
backoff retries.
"""

import asyncio
import bisect
import itertools
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..core.clock import Clock
from ..core.exceptions import (
    AuthenticationError, DataNotFoundError, ProviderDenied, ProviderError, ProviderExhausted, RateLimitError
)
from ..core.logging_config import create_logger
from ..models import AttemptOutcome, Capability, PriorityClass
from .rate_tracker import RateTracker

logger = create_logger(__name__)

Work = Callable[[], Awaitable[Any]]

# Errors that a retry against the same provider cannot fix
NON_RETRYABLE = (AuthenticationError, DataNotFoundError)


@dataclass
class QueueItem:
    """A deferred provider call waiting for admission."""
    provider: str
    work: Work
    priority_score: int
    enqueued_at: float
    sequence: int
    future: asyncio.Future
    capability: Optional[Capability] = None
    retry_count: int = 0
    not_before: float = 0.0
    deadline: float = float("inf")
    last_error: Optional[BaseException] = None

    def sort_key(self):
        return (-self.priority_score, self.enqueued_at, self.sequence)


class RequestQueue:
    """Priority queue ordered by score (highest first), then enqueue time."""

    def __init__(self, max_size: int = 500):
        self.max_size = max_size
        self._items: List[QueueItem] = []

    def __len__(self) -> int:
        return len(self._items)

    def push(self, item: QueueItem) -> None:
        if len(self._items) >= self.max_size:
            raise ProviderDenied(f"Queue for {item.provider} is full", item.provider)
        bisect.insort(self._items, item, key=QueueItem.sort_key)

    def peek_ready(self, now: float) -> Optional[QueueItem]:
        """Highest-priority item whose backoff has elapsed."""
        for item in self._items:
            if item.not_before <= now:
                return item
        return None

    def remove(self, item: QueueItem) -> None:
        self._items.remove(item)

    def expire(self, now: float) -> List[QueueItem]:
        """Drop items past their deadline or whose caller has gone away."""
        keep, dropped = [], []
        for item in self._items:
            (dropped if item.deadline < now or item.future.done() else keep).append(item)
        self._items = keep
        return dropped

    def drain_all(self) -> List[QueueItem]:
        items, self._items = self._items, []
        return items


class RequestScheduler:
    """Admission-gated execution of provider calls with one queue per provider."""

    def __init__(
        self,
        tracker: RateTracker,
        clock: Optional[Clock] = None,
        request_timeout: float = 10.0,
        drain_interval: float = 1.0,
        max_queue_wait_ms: float = 30000,
        max_queue_size: int = 500
    ):
        self.tracker = tracker
        self.clock = clock or tracker.clock
        self.request_timeout = request_timeout
        self.drain_interval = drain_interval
        self.max_queue_wait_ms = max_queue_wait_ms
        self.max_queue_size = max_queue_size

        self._queues: Dict[str, RequestQueue] = {}
        self._sequence = itertools.count()
        self._running_tasks: List[asyncio.Task] = []
        self._shutdown_event = asyncio.Event()
        self._stopped = False

    def _queue(self, provider: str) -> RequestQueue:
        if provider not in self._queues:
            self._queues[provider] = RequestQueue(max_size=self.max_queue_size)
        return self._queues[provider]

    def queue_length(self, provider: str) -> int:
        queue = self._queues.get(provider)
        return len(queue) if queue else 0

    def priority_score(self, provider: str, priority_hint: int) -> int:
        config = self.tracker.config(provider)
        base = int(config.priority_class) if config else int(PriorityClass.LOW)
        caller = min(max(int(priority_hint), int(PriorityClass.LOW)), int(PriorityClass.HIGH))
        return base * 10 + caller

    async def schedule(
        self,
        provider: str,
        priority_hint: int,
        work: Work,
        capability: Optional[Capability] = None
    ) -> Any:
        """
        Run ``work`` against ``provider`` under its rate limits.

        Returns the work's result. Raises ProviderDenied if the call cannot be
        queued or waits too long, ProviderExhausted once retries are spent, and
        the original error for failures a retry cannot fix.
        """
        if self.tracker.config(provider) is None:
            raise ProviderDenied(f"Unknown provider {provider}", provider)
        if self._stopped:
            raise ProviderDenied("Scheduler is stopped", provider)

        now = self.clock()
        item = QueueItem(
            provider=provider,
            work=work,
            priority_score=self.priority_score(provider, priority_hint),
            enqueued_at=now,
            sequence=next(self._sequence),
            future=asyncio.get_running_loop().create_future(),
            capability=capability,
            deadline=now + self.max_queue_wait_ms
        )

        if self.tracker.admit(provider):
            await self._execute(item)
        else:
            logger.debug("Request queued", extra={
                "provider": provider,
                "priority_score": item.priority_score,
                "queue_length": self.queue_length(provider)
            })
            self._queue(provider).push(item)

        return await item.future

    async def _run(self, provider: str, work: Work) -> Any:
        """Execute one admitted call and report its outcome to the tracker."""
        try:
            result = await asyncio.wait_for(work(), timeout=self.request_timeout)
        except asyncio.TimeoutError:
            self.tracker.record_attempt(provider, AttemptOutcome.TIMEOUT)
            raise ProviderError(f"Request timeout for {provider}", provider)
        except RateLimitError:
            self.tracker.record_attempt(provider, AttemptOutcome.RATE_LIMITED)
            raise
        except ProviderError:
            self.tracker.record_attempt(provider, AttemptOutcome.FAILURE)
            raise
        except Exception as e:
            self.tracker.record_attempt(provider, AttemptOutcome.FAILURE)
            raise ProviderError(f"{type(e).__name__}: {str(e)}", provider) from e

        self.tracker.record_attempt(provider, AttemptOutcome.SUCCESS)
        return result

    async def _execute(self, item: QueueItem) -> None:
        if item.future.done():
            return
        try:
            result = await self._run(item.provider, item.work)
        except asyncio.CancelledError:
            # the item is already off the queue, so stop() cannot reject it
            self._settle_error(item, ProviderDenied("Scheduler stopped", item.provider))
            raise
        except ProviderError as e:
            self._retry_or_fail(item, e)
        else:
            if not item.future.done():
                item.future.set_result(result)

    def _retry_or_fail(self, item: QueueItem, error: ProviderError) -> None:
        config = self.tracker.config(item.provider)
        item.last_error = error

        if isinstance(error, NON_RETRYABLE):
            self._settle_error(item, error)
            return

        if config is None or item.retry_count >= config.retry_attempts:
            logger.warning("Provider retries exhausted", extra={
                "provider": item.provider,
                "attempts": item.retry_count + 1,
                "error": str(error)
            })
            self._settle_error(item, ProviderExhausted(
                f"{item.provider} failed after {item.retry_count + 1} attempts: {error}",
                item.provider,
                attempts=item.retry_count + 1,
                last_error=error
            ))
            return

        now = self.clock()
        delay = config.retry_delay_ms * (2 ** item.retry_count)
        item.retry_count += 1
        item.not_before = now + delay
        item.deadline = item.not_before + self.max_queue_wait_ms

        logger.info("Retrying provider request", extra={
            "provider": item.provider,
            "retry_count": item.retry_count,
            "delay_ms": delay,
            "error": str(error)
        })
        try:
            self._queue(item.provider).push(item)
        except ProviderDenied as denied:
            self._settle_error(item, denied)

    @staticmethod
    def _settle_error(item: QueueItem, error: BaseException) -> None:
        if not item.future.done():
            item.future.set_exception(error)

    async def drain_once(self, provider: str) -> int:
        """
        Process one tick for a provider's queue.

        Expired items are rejected, then up to ``burst_limit`` ready items are
        admitted and executed concurrently. Returns the number executed.
        """
        queue = self._queues.get(provider)
        config = self.tracker.config(provider)
        if queue is None or config is None:
            return 0

        now = self.clock()
        for item in queue.expire(now):
            self._settle_error(item, ProviderDenied(
                f"Request to {provider} waited longer than {self.max_queue_wait_ms}ms",
                provider
            ))

        batch: List[QueueItem] = []
        while len(batch) < config.burst_limit:
            item = queue.peek_ready(self.clock())
            if item is None or not self.tracker.admit(provider):
                break
            queue.remove(item)
            batch.append(item)

        if batch:
            await asyncio.gather(*(self._execute(item) for item in batch))
        return len(batch)

    async def _drain_loop(self, provider: str) -> None:
        while not self._shutdown_event.is_set():
            try:
                await self.drain_once(provider)
            except Exception as e:
                logger.error("Queue drain failed", extra={"provider": provider, "error": str(e)})

            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.drain_interval)
                break
            except asyncio.TimeoutError:
                continue

    def start(self) -> None:
        """Start one drain task per provider."""
        self._stopped = False
        self._shutdown_event.clear()
        for provider in self.tracker.providers():
            self._running_tasks.append(asyncio.create_task(self._drain_loop(provider)))
        logger.info("Request scheduler started", extra={"providers": self.tracker.providers()})

    def are_background_tasks_running(self) -> bool:
        return any(not task.done() for task in self._running_tasks)

    async def stop(self) -> None:
        """Stop drain tasks and reject anything still queued."""
        self._stopped = True
        self._shutdown_event.set()
        for task in self._running_tasks:
            if not task.done():
                task.cancel()
        if self._running_tasks:
            await asyncio.gather(*self._running_tasks, return_exceptions=True)
        self._running_tasks.clear()

        rejected = 0
        for provider, queue in self._queues.items():
            for item in queue.drain_all():
                self._settle_error(item, ProviderDenied("Scheduler stopped", provider))
                rejected += 1

        logger.info("Request scheduler stopped", extra={"rejected": rejected})
