"""
Abstract base class for data providers in the Market Data Gateway.
Each adapter owns one upstream API and turns its payloads into normalized entries.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import httpx

from ..core.exceptions import (
    AuthenticationError, ConfigurationMissing, DataNotFoundError, ProviderError, RateLimitError
)
from ..core.logging_config import create_logger
from ..models import AssetCategory, LiveDataEntry, MetadataEntry

logger = create_logger(__name__)


class BaseDataProvider(ABC):
    """Abstract base class for market data providers."""

    # Name of the settings field holding this provider's key, None when no key is needed
    api_key_setting: Optional[str] = None

    def __init__(
        self,
        name: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.name = name
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.demo_mode = False
        self.client: Optional[httpx.AsyncClient] = None
        self._transport = transport

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.disconnect()

    async def connect(self) -> None:
        """Initialize HTTP client connection."""
        if self.client is None:
            timeout = httpx.Timeout(self.timeout, connect=min(self.timeout, 5.0))
            limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)

            self.client = httpx.AsyncClient(
                timeout=timeout,
                limits=limits,
                headers=self._get_default_headers(),
                follow_redirects=True,
                transport=self._transport
            )

            logger.debug("Connected to provider", extra={"provider": self.name})

    async def disconnect(self) -> None:
        """Close HTTP client connection."""
        if self.client:
            await self.client.aclose()
            self.client = None
            logger.debug("Disconnected from provider", extra={"provider": self.name})

    def _get_default_headers(self) -> Dict[str, str]:
        """Get default HTTP headers for requests."""
        return {
            'User-Agent': 'Market-Data-Gateway/1.0.0',
            'Accept': 'application/json',
            'Accept-Encoding': 'gzip, deflate'
        }

    def _get_auth_headers(self) -> Optional[Dict[str, str]]:
        """Authentication headers for this provider, if it authenticates by header."""
        return None

    def validate_credentials(self) -> None:
        """Raise ConfigurationMissing when the provider needs a key and has none."""
        if self.api_key_setting and not self.api_key:
            raise ConfigurationMissing(self.name, self.api_key_setting)

    def enable_demo_mode(self, demo_key: str) -> None:
        """Fall back to the provider's public demo credential."""
        self.api_key = demo_key
        self.demo_mode = True

    async def _make_request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        symbol: Optional[str] = None
    ) -> Any:
        """
        Make a single HTTP request and map failures onto the provider error taxonomy.

        Retries and spacing are handled by the request scheduler, so this never
        sleeps or loops.
        """
        if not self.client:
            await self.connect()

        request_headers = dict(headers or {})
        auth_headers = self._get_auth_headers()
        if auth_headers:
            request_headers.update(auth_headers)

        logger.debug("Making request to provider", extra={
            "provider": self.name,
            "method": method,
            "url": url
        })

        try:
            response = await self.client.request(
                method=method,
                url=url,
                params=params,
                headers=request_headers
            )
        except httpx.TimeoutException:
            raise ProviderError(f"Request timeout for {self.name}", self.name, symbol)
        except httpx.HTTPError as e:
            raise ProviderError(f"HTTP error for {self.name}: {str(e)}", self.name, symbol)

        if response.status_code in (429, 403):
            logger.warning("Rate limited by provider", extra={
                "provider": self.name,
                "status_code": response.status_code,
                "retry_after": response.headers.get('Retry-After')
            })
            raise RateLimitError(f"Rate limited by {self.name}", self.name, symbol)

        if response.status_code == 401:
            raise AuthenticationError(f"Authentication failed for {self.name}", self.name, symbol)

        if response.status_code == 404:
            raise DataNotFoundError(f"{self.name} has no data for {symbol or url}", self.name, symbol)

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderError(f"HTTP error for {self.name}: {str(e)}", self.name, symbol)

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"Invalid JSON response from {self.name}: {str(e)}", self.name, symbol)

    @abstractmethod
    def supports_category(self, category: AssetCategory) -> bool:
        """Check if this provider serves quotes for the given category."""

    @abstractmethod
    async def fetch_quote(self, symbol: str, category: AssetCategory) -> Any:
        """Fetch the raw quote payload for one symbol."""

    @abstractmethod
    def normalize_quote(self, symbol: str, category: AssetCategory, raw: Any) -> LiveDataEntry:
        """
        Turn a raw quote payload into a LiveDataEntry.

        Raises:
            DataNotFoundError: payload has no usable price
            RateLimitError: payload is an in-body throttle notice
        """

    async def get_quote(self, symbol: str, category: AssetCategory) -> LiveDataEntry:
        """Fetch and normalize a quote."""
        symbol = symbol.upper().strip()
        if not self.supports_category(category):
            raise DataNotFoundError(f"{self.name} does not serve {category.value} quotes", self.name, symbol)
        raw = await self.fetch_quote(symbol, category)
        return self.normalize_quote(symbol, category, raw)

    async def list_assets(self, category: AssetCategory) -> List[MetadataEntry]:
        """List the assets this provider knows for a category."""
        raise DataNotFoundError(f"{self.name} does not list {category.value} assets", self.name)

    @staticmethod
    def _to_float(value: Any, default: float = 0.0) -> float:
        """Parse provider numbers, which arrive as numbers, strings or percent strings."""
        if value is None:
            return default
        if isinstance(value, str):
            value = value.strip().rstrip('%')
            if not value:
                return default
        try:
            return float(value)
        except (TypeError, ValueError):
            return default

    def _create_live(
        self,
        symbol: str,
        category: AssetCategory,
        price: float,
        **kwargs
    ) -> LiveDataEntry:
        """Create a standardized LiveDataEntry stamped with this provider as source."""
        if price <= 0:
            raise DataNotFoundError(f"{self.name} returned no price for {symbol}", self.name, symbol)

        return LiveDataEntry(
            symbol=symbol,
            category=category,
            price=price,
            change_24h=kwargs.get('change_24h') or 0.0,
            volume_24h=kwargs.get('volume_24h') or 0.0,
            market_cap=kwargs.get('market_cap') or 0.0,
            high_24h=kwargs.get('high_24h'),
            low_24h=kwargs.get('low_24h'),
            open_price=kwargs.get('open_price'),
            source=self.name
        )

    def _create_metadata(
        self,
        symbol: str,
        name: Optional[str],
        category: AssetCategory,
        **kwargs
    ) -> MetadataEntry:
        """Create a standardized MetadataEntry, filling blanks with neutral defaults."""
        return MetadataEntry(
            symbol=symbol,
            name=name or symbol,
            category=category,
            sector=kwargs.get('sector') or "Unknown",
            industry=kwargs.get('industry') or "Unknown",
            exchange=kwargs.get('exchange') or "Unknown",
            country=kwargs.get('country') or "US",
            market_cap=kwargs.get('market_cap')
        )
