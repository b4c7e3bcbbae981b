"""Tests for the Alpha Vantage client."""

from typing import Any

import httpx
import pytest

from deepticker.credentials import InMemoryCredentialStore
from deepticker.data.alpha_vantage import (
    AlphaVantageAPIError,
    AlphaVantageAuthError,
    AlphaVantageClient,
    AlphaVantageRateLimitError,
    AlphaVantageSymbolError,
)
from deepticker.data.models import DataSource

GLOBAL_QUOTE = {
    "Global Quote": {
        "01. symbol": "AAPL",
        "02. open": "184.0000",
        "03. high": "186.0000",
        "04. low": "183.5000",
        "05. price": "185.5000",
        "06. volume": "50000000",
        "07. latest trading day": "2024-01-02",
        "08. previous close": "183.2500",
        "09. change": "2.2500",
        "10. change percent": "1.2278%",
    }
}


def make_client(payload: Any = None, status: int = 200, api_key: str | None = "test_key") -> AlphaVantageClient:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["apikey"] == api_key
        return httpx.Response(status, json=payload)

    return AlphaVantageClient(api_key=api_key, max_retries=0, transport=httpx.MockTransport(handler))


class TestAlphaVantageClient:
    """Tests for AlphaVantageClient."""

    def test_init_with_api_key(self) -> None:
        """Test initialization with explicit API key."""
        client = AlphaVantageClient(api_key="test_key")
        assert client.api_key == "test_key"
        assert client.is_configured is True

    def test_key_read_from_store(self) -> None:
        """Test the key is read from the credential store on each access."""
        store = InMemoryCredentialStore()
        client = AlphaVantageClient(store)
        assert client.is_configured is False

        store.set_secret("alpha_vantage", "store_key")
        assert client.api_key == "store_key"
        assert client.is_configured is True

    def test_placeholder_key_not_configured(self) -> None:
        """Test placeholder keys count as missing."""
        client = AlphaVantageClient(InMemoryCredentialStore({"alpha_vantage": "REPLACE_ME"}))
        assert client.is_configured is False

    @pytest.mark.asyncio
    async def test_get_quote_success(self) -> None:
        """Test successful quote fetch."""
        async with make_client(GLOBAL_QUOTE) as client:
            quote = await client.get_quote("aapl")

        assert quote.symbol == "AAPL"
        assert quote.price == 185.5
        assert quote.previous_close == 183.25
        assert quote.change == 2.25
        assert quote.change_percent == pytest.approx(1.2278)
        assert quote.volume == 50_000_000
        assert quote.source == DataSource.ALPHA_VANTAGE

    @pytest.mark.asyncio
    async def test_missing_key_raises_auth_error(self) -> None:
        """Test requests without a key fail before touching the network."""
        client = AlphaVantageClient(InMemoryCredentialStore())
        with pytest.raises(AlphaVantageAuthError):
            await client.get_quote("AAPL")

    @pytest.mark.asyncio
    async def test_note_payload_is_rate_limit(self) -> None:
        """Test the throttling notice is reported as a rate limit."""
        client = make_client({"Note": "Thank you for using Alpha Vantage! Our standard API rate limit is 5 requests per minute."})
        with pytest.raises(AlphaVantageRateLimitError):
            await client.get_quote("AAPL")

    @pytest.mark.asyncio
    async def test_information_payload_is_rate_limit(self) -> None:
        """Test the daily quota notice is reported as a rate limit."""
        client = make_client({"Information": "Daily limit reached"})
        with pytest.raises(AlphaVantageRateLimitError):
            await client.get_quote("AAPL")

    @pytest.mark.asyncio
    async def test_empty_global_quote_is_unknown_symbol(self) -> None:
        """Test an empty quote object means the symbol is unknown."""
        client = make_client({"Global Quote": {}})
        with pytest.raises(AlphaVantageSymbolError):
            await client.get_quote("ZZZZ")

    @pytest.mark.asyncio
    async def test_error_message_is_unknown_symbol(self) -> None:
        """Test an error message payload means the symbol is unknown."""
        client = make_client({"Error Message": "Invalid API call."})
        with pytest.raises(AlphaVantageSymbolError):
            await client.get_quote("ZZZZ")

    @pytest.mark.asyncio
    async def test_server_error(self) -> None:
        """Test non-200 responses raise API errors."""
        client = make_client({"detail": "oops"}, status=503)
        with pytest.raises(AlphaVantageAPIError) as exc_info:
            await client.get_quote("AAPL")
        assert exc_info.value.status == 503

    @pytest.mark.asyncio
    async def test_invalid_key_status(self) -> None:
        """Test 401 responses raise auth errors."""
        client = make_client({}, status=401)
        with pytest.raises(AlphaVantageAuthError):
            await client.get_quote("AAPL")

    @pytest.mark.asyncio
    async def test_transport_errors_retried(self) -> None:
        """Test transport failures are retried before giving up."""
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json=GLOBAL_QUOTE)

        client = AlphaVantageClient(api_key="test_key", max_retries=1, transport=httpx.MockTransport(handler))
        quote = await client.get_quote("AAPL")

        assert calls == 2
        assert quote.price == 185.5

    @pytest.mark.asyncio
    async def test_transport_errors_exhausted(self) -> None:
        """Test exhausted retries surface as an API error."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = AlphaVantageClient(api_key="test_key", max_retries=0, transport=httpx.MockTransport(handler))
        with pytest.raises(AlphaVantageAPIError):
            await client.get_quote("AAPL")

    @pytest.mark.asyncio
    async def test_information_about_apikey_is_auth_error(self) -> None:
        """Test an Information notice about the key is reported as an auth failure."""
        client = make_client(
            {"Information": "The **demo** API key is for demo purposes only. Please claim your free apikey."}
        )
        with pytest.raises(AlphaVantageAuthError):
            await client.get_quote("AAPL")

    @pytest.mark.asyncio
    async def test_error_message_about_apikey_is_auth_error(self) -> None:
        """Test an error message about the key is not mistaken for an unknown symbol."""
        client = make_client({"Error Message": "the parameter apikey is invalid or missing."})
        with pytest.raises(AlphaVantageAuthError):
            await client.get_quote("AAPL")


def daily_series(days: int) -> dict[str, Any]:
    series = {
        f"2024-05-{day:02d}": {
            "1. open": f"{100 + day}.0000",
            "2. high": f"{101 + day}.0000",
            "3. low": f"{99 + day}.0000",
            "4. close": f"{100 + day}.5000",
            "5. volume": str(1000 * day),
        }
        for day in range(days, 0, -1)
    }
    return {"Meta Data": {"2. Symbol": "AAPL"}, "Time Series (Daily)": series}


class TestDailyHistory:
    """Tests for AlphaVantageClient.get_daily_history."""

    @pytest.mark.asyncio
    async def test_last_ten_days_oldest_first(self) -> None:
        """Test the most recent ten bars are returned in date order."""
        seen: list[httpx.Request] = []
        payload = daily_series(15)
        payload["Time Series (Daily)"]["2024-05-16"] = {"1. open": "n/a"}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=payload)

        client = AlphaVantageClient(api_key="test_key", max_retries=0, transport=httpx.MockTransport(handler))
        bars = await client.get_daily_history("aapl")
        await client.close()

        assert seen[0].url.params["function"] == "TIME_SERIES_DAILY"
        assert seen[0].url.params["symbol"] == "AAPL"
        assert len(bars) == 10
        assert [bar.date.day for bar in bars] == list(range(6, 16))
        assert bars[-1].close == 115.5
        assert bars[-1].volume == 15000
        assert all(bar.symbol == "AAPL" for bar in bars)

    @pytest.mark.asyncio
    async def test_unlimited(self) -> None:
        """Test a limit of None returns every parsed bar."""
        async with make_client(daily_series(12)) as client:
            bars = await client.get_daily_history("AAPL", limit=None)
        assert len(bars) == 12

    @pytest.mark.asyncio
    async def test_error_message_is_unknown_symbol(self) -> None:
        """Test an error payload means the symbol is unknown."""
        client = make_client({"Error Message": "Invalid API call."})
        with pytest.raises(AlphaVantageSymbolError):
            await client.get_daily_history("ZZZZ")

    @pytest.mark.asyncio
    async def test_missing_series_is_unknown_symbol(self) -> None:
        """Test a payload without a daily series means the symbol is unknown."""
        client = make_client({"Meta Data": {}})
        with pytest.raises(AlphaVantageSymbolError):
            await client.get_daily_history("ZZZZ")

    @pytest.mark.asyncio
    async def test_quota_note_is_rate_limit(self) -> None:
        """Test the throttling notice still reads as a rate limit."""
        client = make_client({"Note": "Our standard API rate limit is 25 requests per day."})
        with pytest.raises(AlphaVantageRateLimitError):
            await client.get_daily_history("AAPL")
