"""
Per-provider request accounting.
Tracks sliding-window request counts, cooldown spacing and adaptive throttling,
and answers admission questions for the request scheduler.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterable, List, Optional

from ..core.clock import Clock, now_ms
from ..core.logging_config import create_logger
from ..models import AttemptOutcome, ProviderConfig

logger = create_logger(__name__)

MINUTE_MS = 60_000
HOUR_MS = 3_600_000
DAY_MS = 86_400_000

# Throttle base for providers configured without a cooldown
DEFAULT_THROTTLE_BASE_MS = 1000
APPROACHING_LIMIT_PERCENT = 80.0


@dataclass
class RateState:
    """Mutable accounting for one provider."""
    config: ProviderConfig
    timestamps: Deque[float] = field(default_factory=deque)
    last_request_at: Optional[float] = None
    throttle_until: float = 0.0
    throttle_ms: float = 0.0
    successes: int = 0
    failures: int = 0
    rate_limited: int = 0
    timeouts: int = 0
    last_outcome: Optional[AttemptOutcome] = None

    def __post_init__(self):
        # Admission never lets more than a day's worth in, so older entries are never needed
        self.timestamps = deque(self.timestamps, maxlen=self.config.requests_per_day)

    @property
    def attempts(self) -> int:
        return self.successes + self.failures + self.rate_limited + self.timeouts


class RateTracker:
    """Sliding-window admission control for every configured provider."""

    def __init__(self, configs: Iterable[ProviderConfig] = (), clock: Clock = now_ms):
        self.clock = clock
        self._states: Dict[str, RateState] = {}
        for config in configs:
            self.register(config)

    def register(self, config: ProviderConfig) -> None:
        self._states[config.name] = RateState(config=config)

    def providers(self) -> List[str]:
        return list(self._states)

    def config(self, provider: str) -> Optional[ProviderConfig]:
        state = self._states.get(provider)
        return state.config if state else None

    def last_used(self, provider: str) -> Optional[float]:
        state = self._states.get(provider)
        return state.last_request_at if state else None

    @staticmethod
    def _count_since(timestamps: Deque[float], since: float) -> int:
        count = 0
        for ts in reversed(timestamps):
            if ts <= since:
                break
            count += 1
        return count

    def _prune(self, state: RateState, now: float) -> None:
        while state.timestamps and state.timestamps[0] <= now - DAY_MS:
            state.timestamps.popleft()

    def _window_counts(self, state: RateState, now: float) -> Dict[str, int]:
        self._prune(state, now)
        return {
            "minute": self._count_since(state.timestamps, now - MINUTE_MS),
            "hour": self._count_since(state.timestamps, now - HOUR_MS),
            "day": len(state.timestamps),
        }

    def _blocked_reason(self, state: RateState, now: float) -> Optional[str]:
        config = state.config
        if state.throttle_until > now:
            return "throttled"
        if state.last_request_at is not None and now - state.last_request_at < config.cooldown_ms:
            return "cooldown"

        counts = self._window_counts(state, now)
        if counts["minute"] >= config.requests_per_minute:
            return "minute_limit"
        if counts["hour"] >= config.requests_per_hour:
            return "hour_limit"
        if counts["day"] >= config.requests_per_day:
            return "day_limit"
        return None

    def can_admit(self, provider: str) -> bool:
        """True if a request to the provider may be issued right now."""
        state = self._states.get(provider)
        if state is None:
            return False
        return self._blocked_reason(state, self.clock()) is None

    def admit(self, provider: str) -> bool:
        """Check admission and record the issuance in one step."""
        state = self._states.get(provider)
        if state is None:
            return False

        now = self.clock()
        reason = self._blocked_reason(state, now)
        if reason is not None:
            logger.debug("Admission denied", extra={"provider": provider, "reason": reason})
            return False

        state.timestamps.append(now)
        state.last_request_at = now
        return True

    def record_attempt(self, provider: str, outcome: AttemptOutcome) -> None:
        """Record the result of an issued request."""
        state = self._states.get(provider)
        if state is None:
            logger.debug("Outcome for unknown provider ignored", extra={"provider": provider})
            return

        state.last_outcome = outcome
        if outcome == AttemptOutcome.SUCCESS:
            state.successes += 1
        elif outcome == AttemptOutcome.RATE_LIMITED:
            state.rate_limited += 1
            self.apply_adaptive_throttle(provider)
        elif outcome == AttemptOutcome.TIMEOUT:
            state.timeouts += 1
        else:
            state.failures += 1

    def apply_adaptive_throttle(self, provider: str) -> None:
        """Grow the throttle window by two cooldowns, capped at ten cooldowns."""
        state = self._states.get(provider)
        if state is None:
            return

        now = self.clock()
        base = state.config.cooldown_ms or DEFAULT_THROTTLE_BASE_MS
        current = state.throttle_ms if state.throttle_until > now else 0.0
        state.throttle_ms = min(current + 2 * base, 10 * base)
        state.throttle_until = now + state.throttle_ms

        logger.warning("Adaptive throttle applied", extra={
            "provider": provider,
            "throttle_ms": state.throttle_ms
        })

    def throttle_remaining_ms(self, provider: str) -> float:
        state = self._states.get(provider)
        if state is None:
            return 0.0
        return max(0.0, state.throttle_until - self.clock())

    def usage_percent(self, provider: str) -> float:
        """Highest window usage across minute, hour and day, as a percentage."""
        state = self._states.get(provider)
        if state is None:
            return 0.0
        config = state.config
        counts = self._window_counts(state, self.clock())
        return max(
            counts["minute"] / config.requests_per_minute,
            counts["hour"] / config.requests_per_hour,
            counts["day"] / config.requests_per_day,
        ) * 100

    def utilization(self, provider: str) -> Dict[str, Any]:
        """Point-in-time usage report for one provider."""
        state = self._states.get(provider)
        if state is None:
            return {"provider": provider, "known": False}

        config = state.config
        now = self.clock()
        counts = self._window_counts(state, now)
        usage = self.usage_percent(provider)
        throttle_remaining = max(0.0, state.throttle_until - now)
        success_rate = state.successes / state.attempts if state.attempts else 1.0

        if throttle_remaining > 0 or usage >= 100 or success_rate < 0.5:
            health = "critical"
        elif usage >= APPROACHING_LIMIT_PERCENT or success_rate < 0.9:
            health = "degraded"
        else:
            health = "healthy"

        return {
            "provider": provider,
            "known": True,
            "requests": counts,
            "limits": {
                "minute": config.requests_per_minute,
                "hour": config.requests_per_hour,
                "day": config.requests_per_day,
            },
            "usage_percent": round(usage, 2),
            "approaching_limit": APPROACHING_LIMIT_PERCENT <= usage < 100,
            "at_limit": usage >= 100,
            "throttle_remaining_ms": throttle_remaining,
            "last_request_at": state.last_request_at,
            "last_outcome": state.last_outcome.value if state.last_outcome else None,
            "success_rate": round(success_rate, 4),
            "attempts": state.attempts,
            "health": health,
        }

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {provider: self.utilization(provider) for provider in self._states}
