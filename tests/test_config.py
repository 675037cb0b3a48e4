"""Tests for settings, provider defaults and logging setup."""
import logging
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from market_gateway.core.config import Settings, provider_defaults
from market_gateway.core.logging_config import (
    create_logger, get_json_logging_config, get_text_logging_config, setup_logging
)
from market_gateway.models import AssetCategory, Capability, PriorityClass, ProviderConfig


class TestSettings:
    """Environment-driven settings and their validators."""

    def test_defaults(self):
        config = Settings()

        assert config.live_ttl_ms(AssetCategory.STOCK) == 30_000
        assert config.live_ttl_ms(AssetCategory.CRYPTO) == 15_000
        assert config.metadata_ttl_ms() == 24 * 3600 * 1000
        assert config.prefetch_top_n(AssetCategory.CRYPTO) == 100
        assert config.prefetch_batch_size(AssetCategory.ETF) == 5
        assert config.prefetch_batch_delay(AssetCategory.CRYPTO) == 2.0

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("CRYPTO_LIVE_TTL_SECONDS", "5")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("FINNHUB_API_KEY", "secret")

        config = Settings()

        assert config.live_ttl_ms(AssetCategory.CRYPTO) == 5000
        assert config.log_level == "DEBUG"
        assert config.finnhub_api_key == "secret"

    @pytest.mark.parametrize("field, value", [
        ("log_level", "LOUD"),
        ("log_format", "xml"),
        ("stock_live_ttl_seconds", 0),
        ("max_page_size", 0),
        ("live_cache_max_size", 0),
        ("metadata_cache_max_size", -1),
        ("prefetch_batch_size_crypto", 0),
    ])
    def test_invalid_values_rejected(self, field, value):
        with pytest.raises(ValidationError):
            Settings(**{field: value})


class TestProviderDefaults:
    """Published limits and capability chains."""

    def test_every_chain_entry_has_limits(self):
        for capability, chain in provider_defaults.CAPABILITY_CHAINS.items():
            assert chain, capability
            for name in chain:
                assert name in provider_defaults.PROVIDER_CONFIGS

    def test_equity_quote_order(self):
        assert provider_defaults.CAPABILITY_CHAINS[Capability.EQUITY_QUOTE] == [
            "finnhub", "alpha_vantage", "twelve_data", "yfinance"
        ]

    def test_alpha_vantage_is_strictly_spaced(self):
        config = provider_defaults.PROVIDER_CONFIGS["alpha_vantage"]

        assert config.requests_per_minute == 5
        assert config.cooldown_ms == 13000
        assert config.priority_class == PriorityClass.LOW

    def test_provider_config_validation(self):
        with pytest.raises(ValidationError):
            ProviderConfig(name="bad", requests_per_minute=0, requests_per_hour=1, requests_per_day=1)
        with pytest.raises(ValidationError):
            ProviderConfig(name="bad", requests_per_minute=1, requests_per_hour=1, requests_per_day=1,
                           cooldown_ms=-1)


class TestLogging:
    """dictConfig builders and logger naming."""

    def test_json_config_uses_json_formatter(self):
        config = get_json_logging_config("INFO")

        assert "json" in config["formatters"]
        assert config["handlers"]["console"]["formatter"] == "json"

    def test_text_config_switches_formatter_for_debug(self):
        assert get_text_logging_config("INFO")["handlers"]["console"]["formatter"] == "standard"
        assert get_text_logging_config("DEBUG")["handlers"]["console"]["formatter"] == "detailed"

    def test_setup_quiets_noisy_libraries(self):
        root = logging.getLogger()
        previous_level = root.level
        try:
            with patch("logging.config.dictConfig") as dict_config:
                setup_logging(Settings(log_format="text", log_level="DEBUG"))

            applied = dict_config.call_args[0][0]
            assert applied["handlers"]["console"]["formatter"] == "detailed"
            assert root.level == logging.DEBUG
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.setLevel(previous_level)

    def test_create_logger_namespace(self):
        assert create_logger("market_gateway.services.cache").name.startswith("gateway.")
