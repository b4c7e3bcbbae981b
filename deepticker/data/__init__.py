"""Data layer for market quotes.

This module provides:
- AlphaVantageClient: Async client for the Alpha Vantage API (primary)
- YahooQuoteSource: yfinance-backed secondary source
- QuoteFetcher: Fallback chain orchestration
- Data models: Quote, QuoteResult
"""

from deepticker.data.alpha_vantage import AlphaVantageClient
from deepticker.data.models import DataSource, Quote, QuoteResult
from deepticker.data.router import QuoteFetcher, RateLimitedQueue
from deepticker.data.yahoo import YahooQuoteSource

__all__ = [
    "AlphaVantageClient",
    "DataSource",
    "Quote",
    "QuoteFetcher",
    "QuoteResult",
    "RateLimitedQueue",
    "YahooQuoteSource",
]
