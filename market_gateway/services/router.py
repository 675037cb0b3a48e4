"""
Fallback router.
Resolves a capability by walking its ordered provider chain through the
request scheduler until one provider succeeds.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from ..core.exceptions import GatewayError
from ..core.logging_config import create_logger
from ..models import Capability, PriorityClass
from ..providers.base import BaseDataProvider
from .scheduler import RequestScheduler

logger = create_logger(__name__)

ProviderWork = Callable[[BaseDataProvider], Awaitable[Any]]


class RouteMode(str, Enum):
    """How the router orders a capability's chain."""
    ORDERED = "ordered"
    BEST_AVAILABLE = "best_available"


@dataclass
class ProviderAttempt:
    provider: str
    error: str
    error_type: str


@dataclass
class RouteResult:
    """A successful resolution and the provider that produced it."""
    value: Any
    source: str
    capability: Capability
    attempts: List[ProviderAttempt] = field(default_factory=list)


@dataclass
class CapabilityExhausted:
    """Every provider in the chain failed; returned as a value, never raised."""
    capability: Capability
    attempts: List[ProviderAttempt] = field(default_factory=list)

    @property
    def message(self) -> str:
        if not self.attempts:
            return f"No providers available for {self.capability.value}"
        tried = ", ".join(f"{a.provider} ({a.error_type})" for a in self.attempts)
        return f"All providers failed for {self.capability.value}: {tried}"


@dataclass
class CapabilityStats:
    successes: int = 0
    exhaustions: int = 0
    fallbacks: int = 0
    last_source: Optional[str] = None


class FallbackRouter:
    """Ordered provider fallback per capability."""

    def __init__(
        self,
        scheduler: RequestScheduler,
        providers: Mapping[str, BaseDataProvider],
        chains: Mapping[Capability, List[str]]
    ):
        self.scheduler = scheduler
        self.tracker = scheduler.tracker
        self.providers = dict(providers)
        self.chains = {capability: list(chain) for capability, chain in chains.items()}
        self._stats: Dict[Capability, CapabilityStats] = {
            capability: CapabilityStats() for capability in self.chains
        }

    def chain(self, capability: Capability) -> List[str]:
        """The capability's chain restricted to registered providers."""
        return [name for name in self.chains.get(capability, []) if name in self.providers]

    def rotation_score(self, provider: str) -> float:
        """
        Preference score used by best-available routing.

        Base priority dominates; idle providers and providers with low window
        usage earn bonuses, providers near their limits are penalized.
        """
        config = self.tracker.config(provider)
        if config is None:
            return float("-inf")

        score = float(int(config.priority_class) * 10)
        last_used = self.tracker.last_used(provider)
        idle_ms = float("inf") if last_used is None else self.tracker.clock() - last_used
        if idle_ms > 300_000:
            score += 20
        elif idle_ms > 60_000:
            score += 10

        usage = self.tracker.usage_percent(provider)
        if usage < 25:
            score += 25
        elif usage < 50:
            score += 15
        elif 80 <= usage <= 100:
            score -= 30
        return score

    def select_best(self, capability: Capability) -> Optional[str]:
        """Best admissible provider for the capability; ties go to the least recently used."""
        candidates = [name for name in self.chain(capability) if self.tracker.can_admit(name)]
        if not candidates:
            return None

        def rank(name: str):
            last_used = self.tracker.last_used(name)
            return (self.rotation_score(name), -(last_used if last_used is not None else float("-inf")))

        return max(candidates, key=rank)

    def _ordered_chain(self, capability: Capability, mode: RouteMode) -> List[str]:
        chain = self.chain(capability)
        if mode == RouteMode.BEST_AVAILABLE:
            best = self.select_best(capability)
            if best is not None:
                chain = [best] + [name for name in chain if name != best]
        return chain

    async def resolve(
        self,
        capability: Capability,
        work: ProviderWork,
        priority: int = PriorityClass.MEDIUM,
        mode: RouteMode = RouteMode.ORDERED
    ) -> Union[RouteResult, CapabilityExhausted]:
        """Try each provider in order; return the first success or a CapabilityExhausted value."""
        stats = self._stats.setdefault(capability, CapabilityStats())
        attempts: List[ProviderAttempt] = []

        for name in self._ordered_chain(capability, mode):
            adapter = self.providers[name]
            try:
                value = await self.scheduler.schedule(
                    name,
                    priority,
                    lambda adapter=adapter: work(adapter),
                    capability=capability
                )
            except GatewayError as e:
                attempts.append(ProviderAttempt(provider=name, error=str(e), error_type=type(e).__name__))
                logger.info("Provider failed, trying next in chain", extra={
                    "capability": capability.value,
                    "provider": name,
                    "error": str(e)
                })
                continue

            stats.successes += 1
            stats.last_source = name
            if attempts:
                stats.fallbacks += 1
            return RouteResult(value=value, source=name, capability=capability, attempts=attempts)

        stats.exhaustions += 1
        exhausted = CapabilityExhausted(capability=capability, attempts=attempts)
        logger.warning("Capability exhausted", extra={
            "capability": capability.value,
            "attempts": len(attempts),
            "error": exhausted.message
        })
        return exhausted

    def stats(self) -> Dict[str, Dict[str, Any]]:
        return {
            capability.value: {
                "chain": self.chain(capability),
                "successes": stats.successes,
                "exhaustions": stats.exhaustions,
                "fallbacks": stats.fallbacks,
                "last_source": stats.last_source,
            }
            for capability, stats in self._stats.items()
        }
