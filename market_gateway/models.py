"""
Shared market data models for the gateway.
Defines the normalized shapes every provider adapter produces and the cache stores.
"""

from enum import Enum, IntEnum
from typing import Optional
from pydantic import BaseModel, Field, validator


class AssetCategory(str, Enum):
    """Supported asset categories."""
    STOCK = "stock"
    ETF = "etf"
    CRYPTO = "crypto"


class DataProvider(str, Enum):
    """Known upstream data providers."""
    FINNHUB = "finnhub"
    ALPHA_VANTAGE = "alpha_vantage"
    TWELVE_DATA = "twelve_data"
    YFINANCE = "yfinance"
    COINGECKO = "coingecko"
    COINMARKETCAP = "coinmarketcap"


class PriorityClass(IntEnum):
    """Priority weight used for both provider base priority and caller priority."""
    LOW = 1
    MEDIUM = 2
    HIGH = 3


class Capability(str, Enum):
    """A kind of data that can be requested from an ordered provider chain."""
    EQUITY_QUOTE = "equity_quote"
    CRYPTO_QUOTE = "crypto_quote"
    EQUITY_LISTING = "equity_listing"
    ETF_LISTING = "etf_listing"
    CRYPTO_LISTING = "crypto_listing"

    @classmethod
    def quote_for(cls, category: "AssetCategory") -> "Capability":
        return cls.CRYPTO_QUOTE if category == AssetCategory.CRYPTO else cls.EQUITY_QUOTE

    @classmethod
    def listing_for(cls, category: "AssetCategory") -> "Capability":
        return {
            AssetCategory.STOCK: cls.EQUITY_LISTING,
            AssetCategory.ETF: cls.ETF_LISTING,
            AssetCategory.CRYPTO: cls.CRYPTO_LISTING,
        }[category]


class CacheStatus(str, Enum):
    """Freshness of a cached asset, derived at read time."""
    FRESH = "fresh"
    STALE = "stale"
    FALLBACK = "fallback"


class AttemptOutcome(str, Enum):
    """Outcome of a single provider call as seen by the rate tracker."""
    SUCCESS = "success"
    FAILURE = "failure"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"


class ProviderConfig(BaseModel):
    """Static per-provider limits, loaded once at startup."""
    name: str = Field(..., description="Provider identifier")
    requests_per_minute: int = Field(..., description="Maximum requests in any trailing 60s window")
    requests_per_hour: int = Field(..., description="Maximum requests in any trailing hour")
    requests_per_day: int = Field(..., description="Maximum requests in any trailing day")
    burst_limit: int = Field(1, description="Maximum items executed per drain tick")
    cooldown_ms: int = Field(0, description="Minimum spacing between two requests")
    retry_attempts: int = Field(0, description="Re-queue attempts before giving up")
    retry_delay_ms: int = Field(1000, description="Base delay for exponential backoff")
    priority_class: PriorityClass = Field(PriorityClass.MEDIUM, description="Base priority of the provider")

    @validator('requests_per_minute', 'requests_per_hour', 'requests_per_day', 'burst_limit')
    def validate_positive(cls, v: int) -> int:
        """Limits must allow at least one request."""
        if v <= 0:
            raise ValueError("Limits must be positive")
        return v

    @validator('cooldown_ms', 'retry_attempts', 'retry_delay_ms')
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Value cannot be negative")
        return v

    class Config:
        """Pydantic configuration."""
        frozen = True


class MetadataEntry(BaseModel):
    """Slow-changing descriptive data for an asset."""
    symbol: str = Field(..., description="Asset symbol/ticker")
    name: str = Field(..., description="Display name")
    category: AssetCategory = Field(..., description="Asset category")
    sector: str = Field("Unknown", description="Sector")
    industry: str = Field("Unknown", description="Industry")
    exchange: str = Field("Unknown", description="Listing exchange")
    country: str = Field("US", description="Country of listing")
    market_cap: Optional[float] = Field(None, description="Market cap reported by a listing")
    last_updated: float = Field(0.0, description="Epoch milliseconds of the last write")

    @validator('symbol')
    def validate_symbol(cls, v: str) -> str:
        """Validate and normalize symbol."""
        if not v or not v.strip():
            raise ValueError("Symbol cannot be empty")
        return v.strip().upper()

    @validator('name')
    def validate_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Asset name cannot be empty")
        return v.strip()


class LiveDataEntry(BaseModel):
    """Fast-changing price data for an asset."""
    symbol: str = Field(..., description="Asset symbol/ticker")
    category: AssetCategory = Field(..., description="Asset category")
    price: float = Field(..., description="Last price")
    change_24h: float = Field(0.0, description="Percentage change over the trading day or 24h")
    volume_24h: float = Field(0.0, description="Traded volume")
    market_cap: float = Field(0.0, description="Market capitalization")
    high_24h: Optional[float] = Field(None, description="Session/24h high")
    low_24h: Optional[float] = Field(None, description="Session/24h low")
    open_price: Optional[float] = Field(None, description="Opening price")
    source: str = Field(..., description="Provider that produced the value")
    last_updated: float = Field(0.0, description="Epoch milliseconds of the last write")

    @validator('symbol')
    def validate_symbol(cls, v: str) -> str:
        """Validate and normalize symbol."""
        if not v or not v.strip():
            raise ValueError("Symbol cannot be empty")
        return v.strip().upper()

    @validator('price')
    def validate_price(cls, v: float) -> float:
        """Price cannot be negative; zero marks an unavailable value."""
        if v < 0:
            raise ValueError("Price cannot be negative")
        return round(v, 8)

    @validator('change_24h')
    def validate_change(cls, v: float) -> float:
        return round(v, 4)


class CacheLookup(BaseModel):
    """Result of a cache read: both tiers plus the derived status."""
    symbol: str
    metadata: Optional[MetadataEntry] = None
    live_data: Optional[LiveDataEntry] = None
    status: CacheStatus = CacheStatus.FALLBACK
