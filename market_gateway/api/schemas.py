"""
Pydantic schemas for the Market Data Gateway API.
The aggregation facade returns these models directly.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field, validator

from ..models import AssetCategory, CacheStatus


class AssetView(BaseModel):
    """Merged metadata and live data for one asset."""
    symbol: str = Field(..., description="Asset symbol/ticker")
    name: str = Field(..., description="Display name")
    category: AssetCategory = Field(..., description="Asset category")
    sector: str = Field("Unknown", description="Sector")
    industry: str = Field("Unknown", description="Industry")
    exchange: str = Field("Unknown", description="Listing exchange")
    country: str = Field("US", description="Country")
    price: float = Field(0.0, description="Last price, 0 when unavailable")
    change_24h: float = Field(0.0, description="Percentage change")
    volume_24h: float = Field(0.0, description="Traded volume")
    market_cap: float = Field(0.0, description="Market capitalization")
    high_24h: Optional[float] = Field(None, description="Session/24h high")
    low_24h: Optional[float] = Field(None, description="Session/24h low")
    open_price: Optional[float] = Field(None, description="Opening price")
    source: str = Field(..., description="Provider, cache:<provider> for stale values, or unavailable")
    status: CacheStatus = Field(..., description="Freshness of the served value")
    last_updated: Optional[float] = Field(None, description="Epoch milliseconds of the live value")
    score: Optional[float] = Field(None, description="Search relevance, only set by search")


class PaginationInfo(BaseModel):
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1)
    total: int = Field(..., ge=0)
    total_pages: int = Field(..., ge=0)
    has_next: bool
    has_prev: bool


class PageMetadata(BaseModel):
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    data_sources: List[str] = Field(default_factory=list, description="Sources of the items on the page")
    processing_time_ms: float = Field(0.0, description="Time spent building the page")
    refreshed: int = Field(0, description="Items refreshed from providers while building the page")


class AssetPage(BaseModel):
    """A page of assets for one category."""
    category: AssetCategory
    items: List[AssetView] = Field(default_factory=list)
    pagination: PaginationInfo
    metadata: PageMetadata = Field(default_factory=PageMetadata)


class SearchResult(BaseModel):
    query: str
    category: Optional[AssetCategory] = None
    results: List[AssetView] = Field(default_factory=list)
    total: int = 0

    @validator('total')
    def validate_total(cls, v: int) -> int:
        if v < 0:
            raise ValueError("total cannot be negative")
        return v


class RefreshResponse(BaseModel):
    """Result of a manual prefetch."""
    status: Literal["completed", "failed"]
    reports: List[Dict[str, Any]] = Field(default_factory=list)
    error: Optional[str] = None


class HealthResponse(BaseModel):
    """Model for health check response."""
    status: Literal["healthy", "degraded", "unhealthy"] = Field(..., description="Service status")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Health check timestamp")
    version: str = Field(..., description="Service version")
    uptime_seconds: float = Field(..., description="Service uptime in seconds")
    background_tasks_running: bool = Field(..., description="Whether background loops are alive")
    providers: Dict[str, str] = Field(default_factory=dict, description="Health per provider")
    demo_mode_providers: List[str] = Field(default_factory=list, description="Providers running without a key")


class ErrorResponse(BaseModel):
    """Model for error responses."""
    error: str = Field(..., description="Error message")
    error_code: str = Field(..., description="Error code")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Error timestamp")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
