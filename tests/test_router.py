"""Unit tests for the fallback router."""
import pytest

from market_gateway.core.exceptions import ProviderError
from market_gateway.models import AssetCategory, Capability, PriorityClass
from market_gateway.services.rate_tracker import MINUTE_MS, RateTracker
from market_gateway.services.router import CapabilityExhausted, FallbackRouter, RouteMode, RouteResult
from market_gateway.services.scheduler import RequestScheduler

from conftest import StubProvider, make_config


def quote(symbol="AAPL"):
    async def work(adapter):
        return await adapter.get_quote(symbol, AssetCategory.STOCK)
    return work


def build_router(clock, providers, chains, configs=None):
    configs = configs or [make_config(name) for name in providers]
    tracker = RateTracker(configs, clock=clock)
    scheduler = RequestScheduler(tracker, request_timeout=1.0)
    return FallbackRouter(scheduler, providers, chains)


class TestResolve:
    """Ordered fallback through a capability chain."""

    @pytest.mark.asyncio
    async def test_first_success_wins_after_failures(self, clock):
        providers = {
            "alpha": StubProvider("alpha", error=ProviderError("down", "alpha")),
            "beta": StubProvider("beta", error=ProviderError("down", "beta")),
            "gamma": StubProvider("gamma", default_price=101.5),
        }
        router = build_router(clock, providers, {Capability.EQUITY_QUOTE: ["alpha", "beta", "gamma"]})

        result = await router.resolve(Capability.EQUITY_QUOTE, quote())

        assert isinstance(result, RouteResult)
        assert result.source == "gamma"
        assert result.value.price == 101.5
        assert [attempt.provider for attempt in result.attempts] == ["alpha", "beta"]
        assert router.stats()["equity_quote"]["fallbacks"] == 1

    @pytest.mark.asyncio
    async def test_exhaustion_is_returned_not_raised(self, clock):
        providers = {
            "alpha": StubProvider("alpha"),
            "beta": StubProvider("beta", error=ProviderError("down", "beta")),
        }
        router = build_router(clock, providers, {Capability.EQUITY_QUOTE: ["alpha", "beta"]})

        result = await router.resolve(Capability.EQUITY_QUOTE, quote("ZZZ"))

        assert isinstance(result, CapabilityExhausted)
        assert [attempt.error_type for attempt in result.attempts] == ["DataNotFoundError", "ProviderExhausted"]
        assert "alpha" in result.message and "beta" in result.message
        assert router.stats()["equity_quote"]["exhaustions"] == 1

    @pytest.mark.asyncio
    async def test_unknown_capability_has_empty_chain(self, clock):
        router = build_router(clock, {"alpha": StubProvider("alpha", default_price=1.0)}, {})

        result = await router.resolve(Capability.CRYPTO_QUOTE, quote())

        assert isinstance(result, CapabilityExhausted)
        assert result.attempts == []
        assert "No providers" in result.message

    @pytest.mark.asyncio
    async def test_unregistered_chain_entries_are_skipped(self, clock):
        providers = {"beta": StubProvider("beta", default_price=5.0)}
        router = build_router(clock, providers, {Capability.EQUITY_QUOTE: ["ghost", "beta"]})

        assert router.chain(Capability.EQUITY_QUOTE) == ["beta"]
        result = await router.resolve(Capability.EQUITY_QUOTE, quote())
        assert result.source == "beta"

    @pytest.mark.asyncio
    async def test_denied_provider_advances_chain(self, clock):
        providers = {
            "alpha": StubProvider("alpha", default_price=1.0),
            "beta": StubProvider("beta", default_price=2.0),
        }
        configs = [make_config("alpha", requests_per_minute=1), make_config("beta")]
        router = build_router(clock, providers, {Capability.EQUITY_QUOTE: ["alpha", "beta"]}, configs)
        router.scheduler.max_queue_size = 0

        first = await router.resolve(Capability.EQUITY_QUOTE, quote())
        second = await router.resolve(Capability.EQUITY_QUOTE, quote())

        assert first.source == "alpha"
        assert second.source == "beta"
        assert second.attempts[0].error_type == "ProviderDenied"


class TestBestAvailable:
    """Rotation scoring and best-available ordering."""

    def test_rotation_score_prefers_idle_unused_high_priority(self, clock):
        providers = {"alpha": StubProvider("alpha"), "beta": StubProvider("beta")}
        configs = [
            make_config("alpha", priority_class=PriorityClass.HIGH),
            make_config("beta", priority_class=PriorityClass.LOW),
        ]
        router = build_router(clock, providers, {Capability.EQUITY_QUOTE: ["beta", "alpha"]}, configs)

        # never used: priority + idle bonus + low usage bonus
        assert router.rotation_score("alpha") == 30 + 20 + 25
        assert router.rotation_score("beta") == 10 + 20 + 25
        assert router.select_best(Capability.EQUITY_QUOTE) == "alpha"

    def test_busy_provider_is_penalized(self, clock):
        providers = {"alpha": StubProvider("alpha")}
        router = build_router(
            clock, providers, {Capability.EQUITY_QUOTE: ["alpha"]},
            [make_config("alpha", requests_per_minute=10)]
        )
        for _ in range(9):
            router.tracker.admit("alpha")

        # recently used (no idle bonus), 90% usage
        assert router.rotation_score("alpha") == 20 - 30

    def test_idle_bonus_steps(self, clock):
        router = build_router(clock, {"alpha": StubProvider("alpha")}, {Capability.EQUITY_QUOTE: ["alpha"]})
        router.tracker.admit("alpha")

        clock.advance(MINUTE_MS + 1)
        assert router.rotation_score("alpha") == 20 + 10 + 25

        clock.advance(5 * MINUTE_MS)
        assert router.rotation_score("alpha") == 20 + 20 + 25

    def test_select_best_skips_inadmissible(self, clock):
        providers = {"alpha": StubProvider("alpha"), "beta": StubProvider("beta")}
        configs = [
            make_config("alpha", priority_class=PriorityClass.HIGH, cooldown_ms=5000),
            make_config("beta"),
        ]
        router = build_router(clock, providers, {Capability.EQUITY_QUOTE: ["alpha", "beta"]}, configs)
        router.tracker.admit("alpha")

        assert router.select_best(Capability.EQUITY_QUOTE) == "beta"

    @pytest.mark.asyncio
    async def test_best_available_mode_moves_best_to_front(self, clock):
        providers = {
            "alpha": StubProvider("alpha", default_price=1.0),
            "beta": StubProvider("beta", default_price=2.0),
        }
        configs = [make_config("alpha"), make_config("beta", priority_class=PriorityClass.HIGH)]
        router = build_router(clock, providers, {Capability.EQUITY_QUOTE: ["alpha", "beta"]}, configs)

        ordered = await router.resolve(Capability.EQUITY_QUOTE, quote())
        best = await router.resolve(Capability.EQUITY_QUOTE, quote(), mode=RouteMode.BEST_AVAILABLE)

        assert ordered.source == "alpha"
        assert best.source == "beta"
