"""Quote source routing with fallback chain and rate limiting.

This module provides:
- RateLimitedQueue: Request queue that respects a requests-per-window ceiling
- QuoteFetcher: Orchestrates the fallback chain
  (fresh cache → Alpha Vantage → Yahoo → stale cache)
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import TypeVar

import structlog

from deepticker.cache.manager import (
    DEFAULT_CACHE_CONFIG,
    CacheConfig,
    CacheKeyBuilder,
    CacheType,
    TTLCache,
)
from deepticker.credentials import CredentialStore
from deepticker.data.alpha_vantage import (
    AlphaVantageAuthError,
    AlphaVantageClient,
    AlphaVantageError,
    AlphaVantageRateLimitError,
)
from deepticker.data.models import DailyBar, DataSource, Quote, QuoteResult
from deepticker.data.yahoo import YahooQuoteError, YahooQuoteSource
from deepticker.errors import QuoteUnavailable

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RateLimitedQueue:
    """Queue that delays requests to respect rate limits.

    Holds one slot per allowed request; a slot is handed back one full window
    after the request that took it started. At most ``rate_limit`` requests
    therefore start in any window, and callers beyond that wait their turn
    instead of bursting.

    Example:
        queue = RateLimitedQueue(rate_limit=5)  # 5 req/min

        # This will wait if rate limit is reached
        result = await queue.submit(lambda: fetch_data())
    """

    def __init__(self, rate_limit: int = 5, window_seconds: float = 60.0) -> None:
        """Initialize the rate-limited queue.

        Args:
            rate_limit: Maximum requests per window.
            window_seconds: Time window in seconds.
        """
        if rate_limit < 1:
            raise ValueError("rate_limit must be at least 1")
        self._rate_limit = rate_limit
        self._window_seconds = window_seconds
        self._semaphore = asyncio.Semaphore(rate_limit)
        self._logger = logger.bind(component="rate_limited_queue")
        self._pending_count = 0

    @property
    def rate_limit(self) -> int:
        """Maximum requests per window."""
        return self._rate_limit

    @property
    def window_seconds(self) -> float:
        """Length of the rate window in seconds."""
        return self._window_seconds

    @property
    def pending_requests(self) -> int:
        """Number of requests waiting in queue."""
        return self._pending_count

    async def submit(self, request: Callable[[], Awaitable[T]]) -> T:
        """Submit a request to the rate-limited queue.

        Waits for an available slot before starting the request. The slot is
        released one window after the request started.

        Args:
            request: Zero-argument callable returning the awaitable to run.

        Returns:
            Result of the request.
        """
        self._pending_count += 1
        self._logger.debug(
            "queue_submit",
            pending=self._pending_count,
            window_seconds=self._window_seconds,
        )

        semaphore = self._semaphore
        try:
            await semaphore.acquire()
        finally:
            self._pending_count -= 1

        started = time.monotonic()
        try:
            return await request()
        finally:
            elapsed = time.monotonic() - started
            delay = max(0.0, self._window_seconds - elapsed)
            asyncio.get_running_loop().call_later(delay, semaphore.release)

    def reset(self) -> None:
        """Reset the queue (for testing)."""
        self._semaphore = asyncio.Semaphore(self._rate_limit)
        self._pending_count = 0


class QuoteFetcher:
    """Resolves quotes through the fallback chain.

    Fallback order: fresh cache → Alpha Vantage → Yahoo → stale cache

    Handles:
    - Rate limiting for the Alpha Vantage API
    - Automatic fallback on errors
    - Caching of successful responses with a TTL per source
    - At most one in-flight fetch per symbol
    - Metrics and logging

    Example:
        fetcher = QuoteFetcher(credentials=store)
        result = await fetcher.get_quote("AAPL")
        print(f"Price: {result.quote.price} (source: {result.source})")
    """

    def __init__(
        self,
        primary: AlphaVantageClient | None = None,
        secondary: YahooQuoteSource | None = None,
        cache: TTLCache[Quote] | None = None,
        *,
        config: CacheConfig | None = None,
        credentials: CredentialStore | None = None,
        history_cache: TTLCache[list[DailyBar]] | None = None,
        rate_limit: int = 5,
        window_seconds: float = 60.0,
    ) -> None:
        """Initialize the quote fetcher.

        Args:
            primary: Alpha Vantage client instance.
            secondary: Yahoo Finance source instance.
            cache: Quote cache; must retain stale entries for the last tier.
            config: Cache TTL configuration.
            credentials: Credential store used to build the default primary client.
            history_cache: Cache for daily price history.
            rate_limit: Alpha Vantage requests per window.
            window_seconds: Length of the rate window in seconds.
        """
        self._primary = primary or AlphaVantageClient(credentials)
        self._secondary = secondary or YahooQuoteSource()
        # Empty caches are falsy, so test for None explicitly.
        if cache is None:
            cache = TTLCache(retain_stale=True, name="quote_cache")
        if history_cache is None:
            history_cache = TTLCache(name="history_cache")
        self._cache: TTLCache[Quote] = cache
        self._history_cache: TTLCache[list[DailyBar]] = history_cache
        self._config = config or DEFAULT_CACHE_CONFIG
        self._queue = RateLimitedQueue(rate_limit=rate_limit, window_seconds=window_seconds)
        self._in_flight: dict[str, asyncio.Task[QuoteResult]] = {}
        self._logger = logger.bind(component="quote_fetcher")

        # Track fallback stats
        self._stats = {
            "cache_hit": 0,
            "primary_success": 0,
            "primary_rate_limited": 0,
            "secondary_fallback": 0,
            "stale_fallback": 0,
            "unavailable": 0,
        }

    @property
    def stats(self) -> dict[str, int]:
        """Get fallback statistics."""
        return self._stats.copy()

    @property
    def cache(self) -> TTLCache[Quote]:
        """The shared quote cache."""
        return self._cache

    @property
    def queue(self) -> RateLimitedQueue:
        """The primary source's rate-limited queue."""
        return self._queue

    def reset_stats(self) -> None:
        """Reset fallback statistics."""
        for key in self._stats:
            self._stats[key] = 0

    def in_flight(self) -> list[str]:
        """Symbols with a fetch currently running."""
        return list(self._in_flight)

    async def get_quote(self, symbol: str) -> QuoteResult:
        """Get quote with full fallback chain.

        Concurrent calls for the same symbol share one fetch.

        Args:
            symbol: Stock ticker symbol.

        Returns:
            QuoteResult with the quote and where it came from.

        Raises:
            QuoteUnavailable: If every source failed and nothing is cached.
        """
        symbol = symbol.strip().upper()
        if not symbol:
            raise QuoteUnavailable(symbol, ["empty symbol"])

        task = self._in_flight.get(symbol)
        if task is None:
            task = asyncio.create_task(self._resolve(symbol))
            self._in_flight[symbol] = task
            task.add_done_callback(lambda done, key=symbol: self._forget(key, done))
        else:
            self._logger.debug("quote_fetch_joined", symbol=symbol)

        # Shield so one cancelled caller does not cancel the shared fetch.
        return await asyncio.shield(task)

    async def refresh(self, symbols: Iterable[str]) -> dict[str, QuoteResult | QuoteUnavailable]:
        """Fetch many symbols concurrently and wait for every one to settle.

        One symbol failing never aborts the others.

        Args:
            symbols: Ticker symbols; duplicates are fetched once.

        Returns:
            Mapping of symbol to its result or its ``QuoteUnavailable`` error,
            in first-seen order.
        """
        ordered = list(dict.fromkeys(s.strip().upper() for s in symbols if s and s.strip()))
        outcomes = await asyncio.gather(
            *(self.get_quote(symbol) for symbol in ordered),
            return_exceptions=True,
        )

        results: dict[str, QuoteResult | QuoteUnavailable] = {}
        for symbol, outcome in zip(ordered, outcomes, strict=True):
            if isinstance(outcome, QuoteResult | QuoteUnavailable):
                results[symbol] = outcome
            elif isinstance(outcome, Exception):
                self._logger.error("quote_refresh_unexpected_error", symbol=symbol, error=str(outcome))
                results[symbol] = QuoteUnavailable(symbol, [f"Unexpected error: {outcome}"])
            else:
                raise outcome

        self._logger.info(
            "quote_refresh_settled",
            requested=len(ordered),
            failed=sum(1 for r in results.values() if isinstance(r, QuoteUnavailable)),
        )
        return results

    async def get_history(self, symbol: str, limit: int = 10) -> list[DailyBar]:
        """Get recent daily bars from the primary source.

        History comes only from Alpha Vantage, through the same rate-limited
        queue as quotes, and is cached for the history TTL.

        Args:
            symbol: Stock ticker symbol.
            limit: Number of most recent trading days to return.

        Returns:
            DailyBar list, oldest first.

        Raises:
            AlphaVantageError: If the primary source is unconfigured or fails.
        """
        symbol = symbol.strip().upper()
        cache_key = CacheKeyBuilder.history(symbol)

        bars = await self._history_cache.get(cache_key)
        if bars is None:
            if not self._primary.is_configured:
                raise AlphaVantageAuthError("ALPHA_VANTAGE_API_KEY not configured")
            bars = await self._queue.submit(
                lambda: self._primary.get_daily_history(symbol, limit=None)
            )
            await self._history_cache.set(
                cache_key,
                bars,
                ttl=self._config.get_ttl(CacheType.HISTORY),
            )
            self._logger.info("history_fetched", symbol=symbol, bars=len(bars))

        return bars[-limit:] if limit > 0 else []

    def _forget(self, symbol: str, task: "asyncio.Task[QuoteResult]") -> None:
        if self._in_flight.get(symbol) is task:
            del self._in_flight[symbol]

    async def _resolve(self, symbol: str) -> QuoteResult:
        cache_key = CacheKeyBuilder.quote(symbol)
        errors: list[str] = []

        # Fresh cache
        cached = await self._cache.get(cache_key)
        if cached is not None:
            self._stats["cache_hit"] += 1
            self._logger.info("quote_fetched", symbol=symbol, source="cache")
            return QuoteResult(symbol=symbol, quote=cached, source=DataSource.CACHE, cached=True)

        # Alpha Vantage (through rate-limited queue)
        if self._primary.is_configured:
            try:
                quote = await self._queue.submit(lambda: self._primary.get_quote(symbol))
                await self._cache.set(
                    cache_key,
                    quote,
                    ttl=self._config.get_ttl(CacheType.QUOTE_PRIMARY),
                )
                self._stats["primary_success"] += 1
                self._logger.info("quote_fetched", symbol=symbol, source="alpha_vantage")
                return QuoteResult(symbol=symbol, quote=quote, source=DataSource.ALPHA_VANTAGE)

            except AlphaVantageRateLimitError as e:
                self._stats["primary_rate_limited"] += 1
                self._logger.warning("alpha_vantage_rate_limited", symbol=symbol)
                errors.append(f"Alpha Vantage rate limited: {e}")

            except AlphaVantageError as e:
                self._logger.warning("alpha_vantage_error", symbol=symbol, error=str(e))
                errors.append(f"Alpha Vantage error: {e}")

            except Exception as e:
                self._logger.error("alpha_vantage_unexpected_error", symbol=symbol, error=str(e))
                errors.append(f"Unexpected error: {e}")
        else:
            errors.append("Alpha Vantage not configured")

        # Yahoo fallback
        try:
            quote = await self._secondary.get_quote(symbol)
            await self._cache.set(
                cache_key,
                quote,
                ttl=self._config.get_ttl(CacheType.QUOTE_SECONDARY),
            )
            self._stats["secondary_fallback"] += 1
            self._logger.info("quote_fetched", symbol=symbol, source="yahoo")
            return QuoteResult(
                symbol=symbol,
                quote=quote,
                source=DataSource.YAHOO,
                fallback_used=True,
                errors=errors,
            )

        except YahooQuoteError as e:
            self._logger.warning("yahoo_error", symbol=symbol, error=str(e))
            errors.append(str(e))

        except Exception as e:
            self._logger.error("yahoo_unexpected_error", symbol=symbol, error=str(e))
            errors.append(f"Yahoo error: {e}")

        # Stale cache fallback
        entry = await self._cache.get_entry(cache_key, allow_stale=True)
        if entry is not None:
            stale = not entry.is_fresh(self._cache.now())
            self._stats["stale_fallback"] += 1
            self._logger.info(
                "quote_fetched",
                symbol=symbol,
                source="cache",
                stale=stale,
                age=round(entry.age(self._cache.now()), 1),
            )
            return QuoteResult(
                symbol=symbol,
                quote=entry.value,
                source=DataSource.CACHE,
                cached=True,
                stale=stale,
                fallback_used=True,
                errors=errors,
            )

        self._stats["unavailable"] += 1
        self._logger.warning("quote_unavailable", symbol=symbol, errors=errors)
        raise QuoteUnavailable(symbol, errors)

    async def close(self) -> None:
        """Close underlying clients."""
        await self._primary.close()
