"""Yahoo Finance quote source.

Secondary source used when Alpha Vantage fails. ``yfinance`` is blocking, so
every call runs in a worker thread to keep the event loop free.
"""

import asyncio
from typing import Any

import structlog

from deepticker.data.models import DataSource, Quote

logger = structlog.get_logger(__name__)


class YahooQuoteError(Exception):
    """Raised when Yahoo Finance cannot produce a usable quote."""

    def __init__(self, symbol: str, message: str) -> None:
        self.symbol = symbol
        super().__init__(f"Yahoo Finance error for {symbol}: {message}")


class YahooQuoteSource:
    """Fetches quotes through ``yfinance``.

    Example:
        source = YahooQuoteSource()
        quote = await source.get_quote("MSFT")
    """

    def __init__(self, timeout: float = 12.0) -> None:
        self._timeout = timeout
        self._logger = logger.bind(component="yahoo_quote_source")

    async def get_quote(self, symbol: str) -> Quote:
        """Fetch and normalize a quote.

        Args:
            symbol: Stock ticker symbol.

        Returns:
            Quote built from the ticker's info payload.

        Raises:
            YahooQuoteError: If the request fails, times out, or has no price.
        """
        symbol = symbol.upper()
        try:
            info = await asyncio.wait_for(
                asyncio.to_thread(self._load_info, symbol),
                timeout=self._timeout,
            )
        except TimeoutError as e:
            raise YahooQuoteError(symbol, f"timed out after {self._timeout:.1f}s") from e
        except YahooQuoteError:
            raise
        except Exception as e:
            self._logger.warning("yahoo_fetch_error", symbol=symbol, error=str(e))
            raise YahooQuoteError(symbol, str(e)) from e

        return self._normalize(symbol, info)

    @staticmethod
    def _load_info(symbol: str) -> dict[str, Any]:
        import yfinance as yf

        info = yf.Ticker(symbol).info
        if not isinstance(info, dict):
            raise YahooQuoteError(symbol, "unexpected info payload")
        return info

    @staticmethod
    def _normalize(symbol: str, info: dict[str, Any]) -> Quote:
        price = info.get("regularMarketPrice")
        if price is None:
            price = info.get("currentPrice")
        if price is None:
            raise YahooQuoteError(symbol, "no market price in response")

        previous_close = info.get("regularMarketPreviousClose") or info.get("previousClose")
        volume = info.get("regularMarketVolume") or info.get("volume") or 0

        try:
            return Quote(
                symbol=symbol,
                price=float(price),
                change=info.get("regularMarketChange"),
                change_percent=info.get("regularMarketChangePercent"),
                previous_close=float(previous_close) if previous_close else None,
                open=info.get("regularMarketOpen") or info.get("open"),
                high=info.get("regularMarketDayHigh") or info.get("dayHigh"),
                low=info.get("regularMarketDayLow") or info.get("dayLow"),
                volume=int(volume),
                source=DataSource.YAHOO,
            )
        except (TypeError, ValueError) as e:
            raise YahooQuoteError(symbol, f"malformed quote: {e}") from e
