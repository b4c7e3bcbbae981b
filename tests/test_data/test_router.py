"""Tests for the QuoteFetcher and RateLimitedQueue."""

import asyncio
from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from deepticker.cache.manager import CacheConfig, CacheKeyBuilder, TTLCache
from deepticker.data.alpha_vantage import (
    AlphaVantageAPIError,
    AlphaVantageAuthError,
    AlphaVantageRateLimitError,
)
from deepticker.data.models import DailyBar, DataSource, Quote, QuoteResult
from deepticker.data.router import QuoteFetcher, RateLimitedQueue
from deepticker.data.yahoo import YahooQuoteError
from deepticker.errors import QuoteUnavailable


class FakeClock:
    """Manually advanced clock for cache TTL tests."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_quote(symbol: str = "AAPL", price: float = 185.5, source: DataSource = DataSource.ALPHA_VANTAGE) -> Quote:
    return Quote(symbol=symbol, price=price, previous_close=price - 1.0, volume=1_000, source=source)


def make_primary(quote: Quote | None = None, error: Exception | None = None) -> MagicMock:
    primary = MagicMock()
    primary.is_configured = True
    primary.get_quote = AsyncMock(return_value=quote, side_effect=error)
    primary.close = AsyncMock()
    return primary


def make_secondary(quote: Quote | None = None, error: Exception | None = None) -> MagicMock:
    secondary = MagicMock()
    secondary.get_quote = AsyncMock(return_value=quote, side_effect=error)
    return secondary


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> TTLCache[Quote]:
    return TTLCache(retain_stale=True, clock=clock, name="test_quote_cache")


class TestRateLimitedQueue:
    """Tests for RateLimitedQueue."""

    def test_init_defaults(self) -> None:
        """Test initialization with defaults."""
        queue = RateLimitedQueue()
        assert queue.rate_limit == 5
        assert queue.window_seconds == 60.0
        assert queue.pending_requests == 0

    def test_rejects_zero_rate(self) -> None:
        """Test that a zero rate limit is refused."""
        with pytest.raises(ValueError):
            RateLimitedQueue(rate_limit=0)

    @pytest.mark.asyncio
    async def test_submit_single_request(self) -> None:
        """Test submitting a single request."""
        queue = RateLimitedQueue(rate_limit=5)

        async def request() -> str:
            return "result"

        result = await queue.submit(request)
        assert result == "result"

    @pytest.mark.asyncio
    async def test_requests_within_limit_run_together(self) -> None:
        """Test that requests under the ceiling are not delayed."""
        queue = RateLimitedQueue(rate_limit=2, window_seconds=5.0)

        async def request() -> str:
            await asyncio.sleep(0.01)
            return "done"

        results = await asyncio.wait_for(
            asyncio.gather(queue.submit(request), queue.submit(request)),
            timeout=1.0,
        )
        assert results == ["done", "done"]

    @pytest.mark.asyncio
    async def test_requests_over_limit_wait_for_window(self) -> None:
        """Test that excess requests are queued instead of bursting."""
        queue = RateLimitedQueue(rate_limit=2, window_seconds=0.3)
        loop = asyncio.get_running_loop()
        starts: list[float] = []

        async def request() -> None:
            starts.append(loop.time())

        begin = loop.time()
        await asyncio.gather(*(queue.submit(request) for _ in range(3)))

        assert len(starts) == 3
        assert starts[1] - begin < 0.1
        assert starts[2] - begin >= 0.25

    @pytest.mark.asyncio
    async def test_pending_requests_counted(self) -> None:
        """Test that waiting requests show up as pending."""
        queue = RateLimitedQueue(rate_limit=1, window_seconds=0.2)
        release = asyncio.Event()

        async def blocking() -> None:
            await release.wait()

        first = asyncio.create_task(queue.submit(blocking))
        await asyncio.sleep(0)
        second = asyncio.create_task(queue.submit(blocking))
        await asyncio.sleep(0.01)
        assert queue.pending_requests == 1

        release.set()
        await asyncio.gather(first, second)
        assert queue.pending_requests == 0

    def test_reset(self) -> None:
        """Test queue reset."""
        queue = RateLimitedQueue(rate_limit=5)
        queue._pending_count = 3
        queue.reset()
        assert queue.pending_requests == 0


class TestQuoteFetcher:
    """Tests for the quote fallback chain."""

    def test_stats_reset(self, cache: TTLCache[Quote]) -> None:
        """Test stats reset."""
        fetcher = QuoteFetcher(make_primary(), make_secondary(), cache)
        fetcher._stats["primary_success"] = 5
        fetcher.reset_stats()
        assert fetcher.stats["primary_success"] == 0

    @pytest.mark.asyncio
    async def test_primary_success_cached_with_primary_ttl(self, cache: TTLCache[Quote]) -> None:
        """Test a primary quote is returned and cached with the primary TTL."""
        quote = make_quote()
        primary = make_primary(quote)
        secondary = make_secondary()
        fetcher = QuoteFetcher(primary, secondary, cache, config=CacheConfig(quote_primary_ttl=300))

        result = await fetcher.get_quote("aapl")

        assert result.quote == quote
        assert result.source == DataSource.ALPHA_VANTAGE
        assert not result.fallback_used
        assert not result.stale
        secondary.get_quote.assert_not_awaited()
        entry = await cache.get_entry(CacheKeyBuilder.quote("AAPL"))
        assert entry is not None
        assert entry.ttl == 300
        assert fetcher.stats["primary_success"] == 1

    @pytest.mark.asyncio
    async def test_fresh_cache_hit_makes_no_network_call(self, cache: TTLCache[Quote]) -> None:
        """Test a fresh cache entry is served without touching any source."""
        cached = make_quote(price=190.0)
        await cache.set(CacheKeyBuilder.quote("AAPL"), cached, ttl=300)
        primary = make_primary(make_quote())
        secondary = make_secondary(make_quote(source=DataSource.YAHOO))
        fetcher = QuoteFetcher(primary, secondary, cache)

        result = await fetcher.get_quote("AAPL")

        assert result.quote is cached
        assert result.source == DataSource.CACHE
        assert result.cached
        assert not result.stale
        primary.get_quote.assert_not_awaited()
        secondary.get_quote.assert_not_awaited()
        assert fetcher.stats["cache_hit"] == 1

    @pytest.mark.asyncio
    async def test_secondary_fallback_cached_with_secondary_ttl(self, cache: TTLCache[Quote]) -> None:
        """Test primary failure falls back to Yahoo and caches with the secondary TTL."""
        yahoo_quote = make_quote(price=186.0, source=DataSource.YAHOO)
        primary = make_primary(error=AlphaVantageAPIError(500, "Server error"))
        secondary = make_secondary(yahoo_quote)
        fetcher = QuoteFetcher(
            primary,
            secondary,
            cache,
            config=CacheConfig(quote_primary_ttl=300, quote_secondary_ttl=600),
        )

        result = await fetcher.get_quote("AAPL")

        assert result.quote == yahoo_quote
        assert result.source == DataSource.YAHOO
        assert result.fallback_used
        assert any("Alpha Vantage" in e for e in result.errors)
        entry = await cache.get_entry(CacheKeyBuilder.quote("AAPL"))
        assert entry is not None
        assert entry.value == yahoo_quote
        assert entry.ttl == 600
        assert fetcher.stats["secondary_fallback"] == 1

    @pytest.mark.asyncio
    async def test_rate_limited_primary_falls_back(self, cache: TTLCache[Quote]) -> None:
        """Test a primary rate-limit notice is counted and falls back."""
        primary = make_primary(error=AlphaVantageRateLimitError("Thank you for using Alpha Vantage"))
        secondary = make_secondary(make_quote(source=DataSource.YAHOO))
        fetcher = QuoteFetcher(primary, secondary, cache)

        result = await fetcher.get_quote("AAPL")

        assert result.source == DataSource.YAHOO
        assert fetcher.stats["primary_rate_limited"] == 1

    @pytest.mark.asyncio
    async def test_unconfigured_primary_skipped(self, cache: TTLCache[Quote]) -> None:
        """Test a primary without credentials is never called."""
        primary = make_primary(make_quote())
        primary.is_configured = False
        secondary = make_secondary(make_quote(source=DataSource.YAHOO))
        fetcher = QuoteFetcher(primary, secondary, cache)

        result = await fetcher.get_quote("AAPL")

        primary.get_quote.assert_not_awaited()
        assert result.source == DataSource.YAHOO
        assert "Alpha Vantage not configured" in result.errors

    @pytest.mark.asyncio
    async def test_stale_cache_when_both_sources_fail(self, cache: TTLCache[Quote], clock: FakeClock) -> None:
        """Test an expired entry is served marked stale when every source fails."""
        old = make_quote(price=170.0)
        await cache.set(CacheKeyBuilder.quote("AAPL"), old, ttl=300)
        clock.advance(3600)

        primary = make_primary(error=AlphaVantageAPIError(0, "connection reset"))
        secondary = make_secondary(error=YahooQuoteError("AAPL", "timed out"))
        fetcher = QuoteFetcher(primary, secondary, cache)

        result = await fetcher.get_quote("AAPL")

        assert result.quote is old
        assert result.stale
        assert result.cached
        assert result.source == DataSource.CACHE
        assert len(result.errors) == 2
        assert fetcher.stats["stale_fallback"] == 1

    @pytest.mark.asyncio
    async def test_unavailable_without_cache(self, cache: TTLCache[Quote]) -> None:
        """Test QuoteUnavailable when every tier is exhausted."""
        primary = make_primary(error=AlphaVantageAPIError(500, "boom"))
        secondary = make_secondary(error=YahooQuoteError("ZZZZ", "no market price in response"))
        fetcher = QuoteFetcher(primary, secondary, cache)

        with pytest.raises(QuoteUnavailable) as exc_info:
            await fetcher.get_quote("ZZZZ")

        assert exc_info.value.symbol == "ZZZZ"
        assert len(exc_info.value.errors) == 2
        assert len(cache) == 0
        assert fetcher.stats["unavailable"] == 1

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_fetch(self, cache: TTLCache[Quote]) -> None:
        """Test at most one fetch is in flight per symbol."""
        gate = asyncio.Event()
        quote = make_quote()

        async def slow_quote(symbol: str) -> Quote:
            await gate.wait()
            return quote

        primary = make_primary()
        primary.get_quote = AsyncMock(side_effect=slow_quote)
        fetcher = QuoteFetcher(primary, make_secondary(), cache)

        first = asyncio.create_task(fetcher.get_quote("AAPL"))
        second = asyncio.create_task(fetcher.get_quote("aapl"))
        await asyncio.sleep(0.01)
        assert fetcher.in_flight() == ["AAPL"]

        gate.set()
        results = await asyncio.gather(first, second)

        assert primary.get_quote.await_count == 1
        assert results[0] is results[1]
        assert fetcher.in_flight() == []

    @pytest.mark.asyncio
    async def test_refresh_reports_each_symbol(self, cache: TTLCache[Quote]) -> None:
        """Test one failing symbol does not abort the others."""

        async def primary_quote(symbol: str) -> Quote:
            if symbol == "BAD":
                raise AlphaVantageAPIError(500, "boom")
            return make_quote(symbol)

        primary = make_primary()
        primary.get_quote = AsyncMock(side_effect=primary_quote)
        secondary = make_secondary(error=YahooQuoteError("BAD", "no data"))
        fetcher = QuoteFetcher(primary, secondary, cache)

        results = await fetcher.refresh(["AAPL", "bad", "MSFT", "AAPL"])

        assert list(results) == ["AAPL", "BAD", "MSFT"]
        assert isinstance(results["AAPL"], QuoteResult)
        assert isinstance(results["MSFT"], QuoteResult)
        assert isinstance(results["BAD"], QuoteUnavailable)

    @pytest.mark.asyncio
    async def test_close_closes_primary(self, cache: TTLCache[Quote]) -> None:
        """Test closing the fetcher closes the primary client."""
        primary = make_primary()
        fetcher = QuoteFetcher(primary, make_secondary(), cache)
        await fetcher.close()
        primary.close.assert_awaited_once()

    def test_injected_empty_cache_is_kept(self, cache: TTLCache[Quote]) -> None:
        """Test an empty cache passed in is used rather than replaced."""
        fetcher = QuoteFetcher(make_primary(), make_secondary(), cache)
        assert len(cache) == 0
        assert fetcher.cache is cache


def make_bars(days: int) -> list[DailyBar]:
    return [
        DailyBar(symbol="AAPL", date=date(2024, 5, day), open=100, high=102, low=99, close=101, volume=day)
        for day in range(1, days + 1)
    ]


class TestHistory:
    """Tests for QuoteFetcher.get_history."""

    @pytest.mark.asyncio
    async def test_fetched_through_queue_then_cached(self, cache: TTLCache[Quote], clock: FakeClock) -> None:
        """Test history goes through the queue once and is then served from cache."""
        primary = make_primary()
        primary.get_daily_history = AsyncMock(return_value=make_bars(15))
        history_cache: TTLCache[list[DailyBar]] = TTLCache(clock=clock, name="test_history_cache")
        fetcher = QuoteFetcher(
            primary,
            make_secondary(),
            cache,
            config=CacheConfig(history_ttl=3600),
            history_cache=history_cache,
        )
        submit = AsyncMock(wraps=fetcher.queue.submit)
        fetcher.queue.submit = submit  # type: ignore[method-assign]

        first = await fetcher.get_history("aapl")
        second = await fetcher.get_history("AAPL", limit=5)

        assert [bar.date.day for bar in first] == list(range(6, 16))
        assert [bar.date.day for bar in second] == list(range(11, 16))
        submit.assert_awaited_once()
        primary.get_daily_history.assert_awaited_once_with("AAPL", limit=None)

        clock.advance(3601)
        await fetcher.get_history("AAPL")
        assert primary.get_daily_history.await_count == 2

    @pytest.mark.asyncio
    async def test_unconfigured_primary(self, cache: TTLCache[Quote]) -> None:
        """Test history without an Alpha Vantage key raises an auth error."""
        primary = make_primary()
        primary.is_configured = False
        primary.get_daily_history = AsyncMock()
        fetcher = QuoteFetcher(primary, make_secondary(), cache)

        with pytest.raises(AlphaVantageAuthError):
            await fetcher.get_history("AAPL")
        primary.get_daily_history.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_source_errors_propagate(self, cache: TTLCache[Quote]) -> None:
        """Test history failures are raised and not cached."""
        primary = make_primary()
        primary.get_daily_history = AsyncMock(side_effect=AlphaVantageRateLimitError("quota"))
        fetcher = QuoteFetcher(primary, make_secondary(), cache)

        with pytest.raises(AlphaVantageRateLimitError):
            await fetcher.get_history("AAPL")
        with pytest.raises(AlphaVantageRateLimitError):
            await fetcher.get_history("AAPL")
        assert primary.get_daily_history.await_count == 2
