"""
Asset discovery.
Builds the per-category asset universe from provider listings, cached for hours,
with a curated static universe when no listing is available.
"""

from typing import Any, Dict, List, Optional, Tuple

from ..core.clock import Clock, now_ms
from ..core.logging_config import create_logger
from ..models import AssetCategory, Capability, MetadataEntry, PriorityClass
from .router import FallbackRouter, RouteResult

logger = create_logger(__name__)

MAX_CATALOG_ENTRIES = 5000

# (symbol, name, sector, industry)
STATIC_STOCKS: List[Tuple[str, str, str, str]] = [
    ("AAPL", "Apple Inc.", "Technology", "Consumer Electronics"),
    ("MSFT", "Microsoft Corporation", "Technology", "Software"),
    ("NVDA", "NVIDIA Corporation", "Technology", "Semiconductors"),
    ("GOOGL", "Alphabet Inc.", "Communication Services", "Internet Content"),
    ("AMZN", "Amazon.com Inc.", "Consumer Cyclical", "Internet Retail"),
    ("META", "Meta Platforms Inc.", "Communication Services", "Internet Content"),
    ("TSLA", "Tesla Inc.", "Consumer Cyclical", "Auto Manufacturers"),
    ("BRK.B", "Berkshire Hathaway Inc.", "Financial Services", "Insurance"),
    ("AVGO", "Broadcom Inc.", "Technology", "Semiconductors"),
    ("JPM", "JPMorgan Chase & Co.", "Financial Services", "Banks"),
    ("LLY", "Eli Lilly and Company", "Healthcare", "Drug Manufacturers"),
    ("V", "Visa Inc.", "Financial Services", "Credit Services"),
    ("UNH", "UnitedHealth Group Inc.", "Healthcare", "Healthcare Plans"),
    ("XOM", "Exxon Mobil Corporation", "Energy", "Oil & Gas"),
    ("MA", "Mastercard Inc.", "Financial Services", "Credit Services"),
    ("JNJ", "Johnson & Johnson", "Healthcare", "Drug Manufacturers"),
    ("PG", "Procter & Gamble Co.", "Consumer Defensive", "Household Products"),
    ("HD", "Home Depot Inc.", "Consumer Cyclical", "Home Improvement Retail"),
    ("COST", "Costco Wholesale Corporation", "Consumer Defensive", "Discount Stores"),
    ("ABBV", "AbbVie Inc.", "Healthcare", "Drug Manufacturers"),
    ("MRK", "Merck & Co. Inc.", "Healthcare", "Drug Manufacturers"),
    ("ORCL", "Oracle Corporation", "Technology", "Software"),
    ("CVX", "Chevron Corporation", "Energy", "Oil & Gas"),
    ("KO", "Coca-Cola Company", "Consumer Defensive", "Beverages"),
    ("PEP", "PepsiCo Inc.", "Consumer Defensive", "Beverages"),
    ("BAC", "Bank of America Corporation", "Financial Services", "Banks"),
    ("ADBE", "Adobe Inc.", "Technology", "Software"),
    ("CRM", "Salesforce Inc.", "Technology", "Software"),
    ("NFLX", "Netflix Inc.", "Communication Services", "Entertainment"),
    ("AMD", "Advanced Micro Devices Inc.", "Technology", "Semiconductors"),
    ("WMT", "Walmart Inc.", "Consumer Defensive", "Discount Stores"),
    ("TMO", "Thermo Fisher Scientific Inc.", "Healthcare", "Diagnostics & Research"),
    ("MCD", "McDonald's Corporation", "Consumer Cyclical", "Restaurants"),
    ("CSCO", "Cisco Systems Inc.", "Technology", "Communication Equipment"),
    ("ACN", "Accenture plc", "Technology", "IT Services"),
    ("ABT", "Abbott Laboratories", "Healthcare", "Medical Devices"),
    ("INTC", "Intel Corporation", "Technology", "Semiconductors"),
    ("DIS", "Walt Disney Company", "Communication Services", "Entertainment"),
    ("QCOM", "Qualcomm Inc.", "Technology", "Semiconductors"),
    ("TXN", "Texas Instruments Inc.", "Technology", "Semiconductors"),
    ("IBM", "International Business Machines", "Technology", "IT Services"),
    ("GE", "General Electric Company", "Industrials", "Aerospace & Defense"),
    ("CAT", "Caterpillar Inc.", "Industrials", "Farm & Heavy Machinery"),
    ("BA", "Boeing Company", "Industrials", "Aerospace & Defense"),
    ("NKE", "Nike Inc.", "Consumer Cyclical", "Footwear & Accessories"),
    ("PFE", "Pfizer Inc.", "Healthcare", "Drug Manufacturers"),
    ("GS", "Goldman Sachs Group Inc.", "Financial Services", "Capital Markets"),
    ("UBER", "Uber Technologies Inc.", "Technology", "Software"),
    ("PYPL", "PayPal Holdings Inc.", "Financial Services", "Credit Services"),
    ("AAPL", "Apple Inc.", "Technology", "Consumer Electronics"),
]

STATIC_ETFS: List[Tuple[str, str, str, str]] = [
    ("SPY", "SPDR S&P 500 ETF Trust", "ETF", "Large Blend"),
    ("IVV", "iShares Core S&P 500 ETF", "ETF", "Large Blend"),
    ("VOO", "Vanguard S&P 500 ETF", "ETF", "Large Blend"),
    ("VTI", "Vanguard Total Stock Market ETF", "ETF", "Large Blend"),
    ("QQQ", "Invesco QQQ Trust", "ETF", "Large Growth"),
    ("VEA", "Vanguard FTSE Developed Markets ETF", "ETF", "Foreign Large Blend"),
    ("IEFA", "iShares Core MSCI EAFE ETF", "ETF", "Foreign Large Blend"),
    ("VUG", "Vanguard Growth ETF", "ETF", "Large Growth"),
    ("AGG", "iShares Core US Aggregate Bond ETF", "ETF", "Intermediate Core Bond"),
    ("BND", "Vanguard Total Bond Market ETF", "ETF", "Intermediate Core Bond"),
    ("VWO", "Vanguard FTSE Emerging Markets ETF", "ETF", "Diversified Emerging Markets"),
    ("IWF", "iShares Russell 1000 Growth ETF", "ETF", "Large Growth"),
    ("IJH", "iShares Core S&P Mid-Cap ETF", "ETF", "Mid-Cap Blend"),
    ("IWM", "iShares Russell 2000 ETF", "ETF", "Small Blend"),
    ("VTV", "Vanguard Value ETF", "ETF", "Large Value"),
    ("GLD", "SPDR Gold Shares", "ETF", "Commodities Focused"),
    ("XLK", "Technology Select Sector SPDR Fund", "ETF", "Technology"),
    ("XLF", "Financial Select Sector SPDR Fund", "ETF", "Financial"),
    ("XLE", "Energy Select Sector SPDR Fund", "ETF", "Equity Energy"),
    ("XLV", "Health Care Select Sector SPDR Fund", "ETF", "Health"),
    ("VNQ", "Vanguard Real Estate ETF", "ETF", "Real Estate"),
    ("TLT", "iShares 20+ Year Treasury Bond ETF", "ETF", "Long Government"),
    ("SCHD", "Schwab US Dividend Equity ETF", "ETF", "Large Value"),
    ("VIG", "Vanguard Dividend Appreciation ETF", "ETF", "Large Blend"),
    ("DIA", "SPDR Dow Jones Industrial Average ETF", "ETF", "Large Value"),
    ("ARKK", "ARK Innovation ETF", "ETF", "Mid-Cap Growth"),
    ("EEM", "iShares MSCI Emerging Markets ETF", "ETF", "Diversified Emerging Markets"),
    ("HYG", "iShares iBoxx High Yield Corporate Bond ETF", "ETF", "High Yield Bond"),
    ("LQD", "iShares iBoxx Investment Grade Corporate Bond ETF", "ETF", "Corporate Bond"),
    ("SMH", "VanEck Semiconductor ETF", "ETF", "Technology"),
    ("SPY", "SPDR S&P 500 ETF Trust", "ETF", "Large Blend"),
]

STATIC_CRYPTO: List[Tuple[str, str, str, str]] = [
    ("BTC", "Bitcoin", "Cryptocurrency", "Digital Assets"),
    ("ETH", "Ethereum", "Cryptocurrency", "Digital Assets"),
    ("USDT", "Tether", "Cryptocurrency", "Stablecoins"),
    ("BNB", "BNB", "Cryptocurrency", "Digital Assets"),
    ("SOL", "Solana", "Cryptocurrency", "Digital Assets"),
    ("USDC", "USD Coin", "Cryptocurrency", "Stablecoins"),
    ("XRP", "XRP", "Cryptocurrency", "Digital Assets"),
    ("DOGE", "Dogecoin", "Cryptocurrency", "Digital Assets"),
    ("ADA", "Cardano", "Cryptocurrency", "Digital Assets"),
    ("TRX", "TRON", "Cryptocurrency", "Digital Assets"),
    ("AVAX", "Avalanche", "Cryptocurrency", "Digital Assets"),
    ("SHIB", "Shiba Inu", "Cryptocurrency", "Digital Assets"),
    ("DOT", "Polkadot", "Cryptocurrency", "Digital Assets"),
    ("LINK", "Chainlink", "Cryptocurrency", "Digital Assets"),
    ("BCH", "Bitcoin Cash", "Cryptocurrency", "Digital Assets"),
    ("LTC", "Litecoin", "Cryptocurrency", "Digital Assets"),
    ("MATIC", "Polygon", "Cryptocurrency", "Digital Assets"),
    ("XLM", "Stellar", "Cryptocurrency", "Digital Assets"),
    ("UNI", "Uniswap", "Cryptocurrency", "Decentralized Finance"),
    ("ATOM", "Cosmos", "Cryptocurrency", "Digital Assets"),
    ("ETC", "Ethereum Classic", "Cryptocurrency", "Digital Assets"),
    ("XMR", "Monero", "Cryptocurrency", "Digital Assets"),
    ("FIL", "Filecoin", "Cryptocurrency", "Digital Assets"),
    ("APT", "Aptos", "Cryptocurrency", "Digital Assets"),
    ("ARB", "Arbitrum", "Cryptocurrency", "Digital Assets"),
    ("OP", "Optimism", "Cryptocurrency", "Digital Assets"),
    ("NEAR", "NEAR Protocol", "Cryptocurrency", "Digital Assets"),
    ("AAVE", "Aave", "Cryptocurrency", "Decentralized Finance"),
    ("ALGO", "Algorand", "Cryptocurrency", "Digital Assets"),
    ("COMP", "Compound", "Cryptocurrency", "Decentralized Finance"),
    ("BTC", "Bitcoin", "Cryptocurrency", "Digital Assets"),
    ("ETH", "Ethereum", "Cryptocurrency", "Digital Assets"),
]

STATIC_UNIVERSE = {
    AssetCategory.STOCK: STATIC_STOCKS,
    AssetCategory.ETF: STATIC_ETFS,
    AssetCategory.CRYPTO: STATIC_CRYPTO,
}


def static_universe(category: AssetCategory) -> List[MetadataEntry]:
    """Curated fallback universe for a category, de-duplicated in listing order."""
    seen = set()
    entries = []
    for symbol, name, sector, industry in STATIC_UNIVERSE[category]:
        if symbol in seen:
            continue
        seen.add(symbol)
        entries.append(MetadataEntry(
            symbol=symbol,
            name=name,
            category=category,
            sector=sector,
            industry=industry,
            exchange="Crypto" if category == AssetCategory.CRYPTO else "US",
            country="Global" if category == AssetCategory.CRYPTO else "US"
        ))
    return entries


def fallback_metadata(symbol: str, category: AssetCategory) -> MetadataEntry:
    """Placeholder metadata for a symbol nobody has described yet."""
    symbol = symbol.strip().upper()
    for entry in static_universe(category):
        if entry.symbol == symbol:
            return entry
    return MetadataEntry(symbol=symbol, name=symbol, category=category)


def dedupe(entries: List[MetadataEntry]) -> List[MetadataEntry]:
    seen = set()
    unique = []
    for entry in entries:
        key = (entry.symbol, entry.category)
        if key in seen:
            continue
        seen.add(key)
        unique.append(entry)
    return unique


class DiscoveryCatalog:
    """Asset universe per category, discovered through listing capabilities."""

    def __init__(self, router: FallbackRouter, ttl_ms: float = 24 * 3600 * 1000, clock: Clock = now_ms):
        self.router = router
        self.ttl_ms = ttl_ms
        self.clock = clock
        self._entries: Dict[AssetCategory, List[MetadataEntry]] = {}
        self._fetched_at: Dict[AssetCategory, float] = {}
        self._sources: Dict[AssetCategory, str] = {}
        self._failures: Dict[AssetCategory, int] = {}

    def is_fresh(self, category: AssetCategory) -> bool:
        fetched_at = self._fetched_at.get(category)
        return fetched_at is not None and self.clock() - fetched_at < self.ttl_ms

    async def discover(self, category: AssetCategory, force: bool = False) -> List[MetadataEntry]:
        """
        Return the category's universe, refreshing it from providers when expired.

        A failed refresh keeps whatever was discovered before.
        """
        if not force and self.is_fresh(category):
            return self._entries[category]

        result = await self.router.resolve(
            Capability.listing_for(category),
            lambda provider: provider.list_assets(category),
            priority=PriorityClass.LOW
        )

        if not isinstance(result, RouteResult):
            self._failures[category] = self._failures.get(category, 0) + 1
            logger.warning("Asset discovery failed, keeping previous catalog", extra={
                "category": category.value,
                "error": result.message,
                "cached_entries": len(self._entries.get(category, []))
            })
            return self._entries.get(category, [])

        entries = dedupe(result.value)[:MAX_CATALOG_ENTRIES]
        self._entries[category] = entries
        self._fetched_at[category] = self.clock()
        self._sources[category] = result.source

        logger.info("Asset discovery completed", extra={
            "category": category.value,
            "source": result.source,
            "count": len(entries)
        })
        return entries

    def entries(self, category: AssetCategory) -> List[MetadataEntry]:
        """Discovered entries without triggering a fetch."""
        return list(self._entries.get(category, []))

    def find(self, symbol: str, category: Optional[AssetCategory] = None) -> Optional[MetadataEntry]:
        symbol = symbol.strip().upper()
        categories = [category] if category else list(AssetCategory)
        for cat in categories:
            for entry in self._entries.get(cat, []):
                if entry.symbol == symbol:
                    return entry
            for entry in static_universe(cat):
                if entry.symbol == symbol:
                    return entry
        return None

    def top_symbols(self, category: AssetCategory, limit: int) -> List[str]:
        """
        Prefetch targets for a category.

        Listings that carry market caps are ranked by them; otherwise the
        curated static universe is used, since raw exchange directories are
        not ordered by size.
        """
        ranked = [entry for entry in self._entries.get(category, []) if entry.market_cap]
        if ranked:
            ranked.sort(key=lambda entry: entry.market_cap, reverse=True)
            return [entry.symbol for entry in ranked[:limit]]
        return [entry.symbol for entry in static_universe(category)[:limit]]

    def search_catalog(self, query: str, category: Optional[AssetCategory] = None) -> List[MetadataEntry]:
        """Entries whose symbol, name, sector or industry contain the query."""
        needle = query.strip().lower()
        if not needle:
            return []
        categories = [category] if category else list(AssetCategory)
        matches = []
        for cat in categories:
            pool = self._entries.get(cat) or static_universe(cat)
            for entry in pool:
                haystack = (entry.symbol, entry.name, entry.sector, entry.industry)
                if any(needle in value.lower() for value in haystack):
                    matches.append(entry)
        return dedupe(matches)

    def stats(self) -> Dict[str, Any]:
        now = self.clock()
        return {
            category.value: {
                "entries": len(self._entries.get(category, [])),
                "source": self._sources.get(category),
                "age_ms": now - self._fetched_at[category] if category in self._fetched_at else None,
                "fresh": self.is_fresh(category),
                "failures": self._failures.get(category, 0),
            }
            for category in AssetCategory
        }
