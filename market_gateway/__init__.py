"""
Market Data Gateway.
Aggregates equity, ETF and crypto market data from several rate-limited providers.
"""

__version__ = "1.0.0"
__author__ = "Market Gateway Team"
__description__ = "Market data aggregation gateway with adaptive rate limiting and tiered caching"
