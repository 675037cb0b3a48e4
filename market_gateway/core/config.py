"""
Configuration management for the Market Data Gateway.
Uses pydantic-settings for environment variable management.
"""

from typing import Dict, List, Optional
from pydantic import Field, validator
from pydantic_settings import BaseSettings

from ..models import AssetCategory, Capability, DataProvider, PriorityClass, ProviderConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application metadata
    app_name: str = Field(default="Market Data Gateway", env="APP_NAME")
    app_version: str = Field(default="1.0.0", env="APP_VERSION")
    debug: bool = Field(default=False, env="DEBUG")
    server_host: str = Field(default="0.0.0.0", env="SERVER_HOST")
    server_port: int = Field(default=8000, env="SERVER_PORT")

    # API keys for data providers (all optional, missing keys run in demo mode)
    finnhub_api_key: Optional[str] = Field(default=None, env="FINNHUB_API_KEY")
    alpha_vantage_api_key: Optional[str] = Field(default=None, env="ALPHA_VANTAGE_API_KEY")
    twelve_data_api_key: Optional[str] = Field(default=None, env="TWELVE_DATA_API_KEY")
    coinmarketcap_api_key: Optional[str] = Field(default=None, env="COINMARKETCAP_API_KEY")
    demo_api_key: str = Field(default="demo", env="DEMO_API_KEY")

    # Provider base URLs
    finnhub_api_url: str = Field(default="https://finnhub.io/api/v1", env="FINNHUB_API_URL")
    alpha_vantage_api_url: str = Field(default="https://www.alphavantage.co/query", env="ALPHA_VANTAGE_API_URL")
    twelve_data_api_url: str = Field(default="https://api.twelvedata.com", env="TWELVE_DATA_API_URL")
    coingecko_api_url: str = Field(default="https://api.coingecko.com/api/v3", env="COINGECKO_API_URL")
    coinmarketcap_api_url: str = Field(default="https://pro-api.coinmarketcap.com/v1", env="COINMARKETCAP_API_URL")

    # Scheduler
    provider_request_timeout: float = Field(default=10.0, env="PROVIDER_REQUEST_TIMEOUT")  # seconds
    scheduler_drain_interval: float = Field(default=1.0, env="SCHEDULER_DRAIN_INTERVAL")  # seconds
    scheduler_max_queue_wait_ms: int = Field(default=30000, env="SCHEDULER_MAX_QUEUE_WAIT_MS")
    scheduler_max_queue_size: int = Field(default=500, env="SCHEDULER_MAX_QUEUE_SIZE")

    # Tiered cache
    metadata_cache_max_size: int = Field(default=1000, env="METADATA_CACHE_MAX_SIZE")
    live_cache_max_size: int = Field(default=2000, env="LIVE_CACHE_MAX_SIZE")
    metadata_ttl_hours: float = Field(default=24.0, env="METADATA_TTL_HOURS")
    stock_live_ttl_seconds: float = Field(default=30.0, env="STOCK_LIVE_TTL_SECONDS")
    etf_live_ttl_seconds: float = Field(default=30.0, env="ETF_LIVE_TTL_SECONDS")
    crypto_live_ttl_seconds: float = Field(default=15.0, env="CRYPTO_LIVE_TTL_SECONDS")
    live_retention_seconds: float = Field(default=900.0, env="LIVE_RETENTION_SECONDS")  # 15 minutes
    cache_sweep_interval: float = Field(default=60.0, env="CACHE_SWEEP_INTERVAL")

    # Prefetch / discovery
    prefetch_enabled: bool = Field(default=True, env="PREFETCH_ENABLED")
    prefetch_interval: float = Field(default=900.0, env="PREFETCH_INTERVAL")  # 15 minutes
    prefetch_initial_delay: float = Field(default=30.0, env="PREFETCH_INITIAL_DELAY")
    prefetch_top_stocks: int = Field(default=50, env="PREFETCH_TOP_STOCKS")
    prefetch_top_etfs: int = Field(default=50, env="PREFETCH_TOP_ETFS")
    prefetch_top_crypto: int = Field(default=100, env="PREFETCH_TOP_CRYPTO")
    prefetch_batch_size_stocks: int = Field(default=5, env="PREFETCH_BATCH_SIZE_STOCKS")
    prefetch_batch_size_etfs: int = Field(default=5, env="PREFETCH_BATCH_SIZE_ETFS")
    prefetch_batch_size_crypto: int = Field(default=10, env="PREFETCH_BATCH_SIZE_CRYPTO")
    prefetch_batch_delay_stocks: float = Field(default=1.0, env="PREFETCH_BATCH_DELAY_STOCKS")
    prefetch_batch_delay_etfs: float = Field(default=1.0, env="PREFETCH_BATCH_DELAY_ETFS")
    prefetch_batch_delay_crypto: float = Field(default=2.0, env="PREFETCH_BATCH_DELAY_CRYPTO")
    discovery_ttl_hours: float = Field(default=24.0, env="DISCOVERY_TTL_HOURS")

    # Paging
    default_page_size: int = Field(default=25, env="DEFAULT_PAGE_SIZE")
    max_page_size: int = Field(default=100, env="MAX_PAGE_SIZE")
    search_result_limit: int = Field(default=50, env="SEARCH_RESULT_LIMIT")

    # Logging configuration
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_format: str = Field(default="json", env="LOG_FORMAT")

    @validator('log_level')
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'}
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {', '.join(valid_levels)}")
        return v.upper()

    @validator('log_format')
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = {'json', 'text'}
        if v.lower() not in valid_formats:
            raise ValueError(f"log_format must be one of: {', '.join(valid_formats)}")
        return v.lower()

    @validator(
        'provider_request_timeout', 'scheduler_drain_interval', 'cache_sweep_interval',
        'prefetch_interval', 'metadata_ttl_hours', 'discovery_ttl_hours',
        'stock_live_ttl_seconds', 'etf_live_ttl_seconds', 'crypto_live_ttl_seconds',
    )
    def validate_positive_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Intervals and TTLs must be positive")
        return v

    @validator(
        'default_page_size', 'max_page_size', 'search_result_limit', 'scheduler_max_queue_size',
        'metadata_cache_max_size', 'live_cache_max_size',
        'prefetch_batch_size_stocks', 'prefetch_batch_size_etfs', 'prefetch_batch_size_crypto',
    )
    def validate_positive_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Sizes must be positive")
        return v

    def live_ttl_ms(self, category: AssetCategory) -> float:
        """Live-data TTL for a category, in milliseconds."""
        seconds = {
            AssetCategory.STOCK: self.stock_live_ttl_seconds,
            AssetCategory.ETF: self.etf_live_ttl_seconds,
            AssetCategory.CRYPTO: self.crypto_live_ttl_seconds,
        }[category]
        return seconds * 1000

    def metadata_ttl_ms(self) -> float:
        return self.metadata_ttl_hours * 3600 * 1000

    def prefetch_top_n(self, category: AssetCategory) -> int:
        return {
            AssetCategory.STOCK: self.prefetch_top_stocks,
            AssetCategory.ETF: self.prefetch_top_etfs,
            AssetCategory.CRYPTO: self.prefetch_top_crypto,
        }[category]

    def prefetch_batch_size(self, category: AssetCategory) -> int:
        return {
            AssetCategory.STOCK: self.prefetch_batch_size_stocks,
            AssetCategory.ETF: self.prefetch_batch_size_etfs,
            AssetCategory.CRYPTO: self.prefetch_batch_size_crypto,
        }[category]

    def prefetch_batch_delay(self, category: AssetCategory) -> float:
        return {
            AssetCategory.STOCK: self.prefetch_batch_delay_stocks,
            AssetCategory.ETF: self.prefetch_batch_delay_etfs,
            AssetCategory.CRYPTO: self.prefetch_batch_delay_crypto,
        }[category]

    class Config:
        """Pydantic configuration."""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


# Global settings instance
settings = Settings()


class ProviderDefaults:
    """Published limits for each provider and the fallback chain for each capability."""

    PROVIDER_CONFIGS: Dict[str, ProviderConfig] = {
        DataProvider.FINNHUB.value: ProviderConfig(
            name=DataProvider.FINNHUB.value,
            requests_per_minute=60, requests_per_hour=3000, requests_per_day=72000,
            burst_limit=5, cooldown_ms=1000,
            retry_attempts=3, retry_delay_ms=2000,
            priority_class=PriorityClass.HIGH,
        ),
        DataProvider.ALPHA_VANTAGE.value: ProviderConfig(
            name=DataProvider.ALPHA_VANTAGE.value,
            requests_per_minute=5, requests_per_hour=300, requests_per_day=7200,
            burst_limit=1, cooldown_ms=13000,
            retry_attempts=2, retry_delay_ms=15000,
            priority_class=PriorityClass.LOW,
        ),
        DataProvider.TWELVE_DATA.value: ProviderConfig(
            name=DataProvider.TWELVE_DATA.value,
            requests_per_minute=33, requests_per_hour=800, requests_per_day=800,
            burst_limit=3, cooldown_ms=2000,
            retry_attempts=3, retry_delay_ms=5000,
            priority_class=PriorityClass.MEDIUM,
        ),
        DataProvider.YFINANCE.value: ProviderConfig(
            name=DataProvider.YFINANCE.value,
            requests_per_minute=30, requests_per_hour=1000, requests_per_day=10000,
            burst_limit=2, cooldown_ms=2000,
            retry_attempts=1, retry_delay_ms=5000,
            priority_class=PriorityClass.LOW,
        ),
        DataProvider.COINGECKO.value: ProviderConfig(
            name=DataProvider.COINGECKO.value,
            requests_per_minute=50, requests_per_hour=3000, requests_per_day=72000,
            burst_limit=10, cooldown_ms=1200,
            retry_attempts=3, retry_delay_ms=2000,
            priority_class=PriorityClass.HIGH,
        ),
        DataProvider.COINMARKETCAP.value: ProviderConfig(
            name=DataProvider.COINMARKETCAP.value,
            requests_per_minute=30, requests_per_hour=333, requests_per_day=333,
            burst_limit=5, cooldown_ms=500,
            retry_attempts=5, retry_delay_ms=1000,
            priority_class=PriorityClass.HIGH,
        ),
    }

    CAPABILITY_CHAINS: Dict[Capability, List[str]] = {
        Capability.EQUITY_QUOTE: [
            DataProvider.FINNHUB.value,
            DataProvider.ALPHA_VANTAGE.value,
            DataProvider.TWELVE_DATA.value,
            DataProvider.YFINANCE.value,
        ],
        Capability.CRYPTO_QUOTE: [
            DataProvider.COINGECKO.value,
            DataProvider.COINMARKETCAP.value,
        ],
        Capability.EQUITY_LISTING: [
            DataProvider.FINNHUB.value,
            DataProvider.TWELVE_DATA.value,
        ],
        Capability.ETF_LISTING: [
            DataProvider.TWELVE_DATA.value,
            DataProvider.FINNHUB.value,
        ],
        Capability.CRYPTO_LISTING: [
            DataProvider.COINGECKO.value,
            DataProvider.COINMARKETCAP.value,
        ],
    }


provider_defaults = ProviderDefaults()
