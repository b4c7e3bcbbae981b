"""Alpha Vantage API client for market quotes.

This module provides an async client for the Alpha Vantage ``GLOBAL_QUOTE``
endpoint, the primary quote source, and for ``TIME_SERIES_DAILY``, the price
history fed to predictions. The free tier allows only a handful of
requests per minute; pacing is the caller's job (see ``RateLimitedQueue``).
"""

from datetime import date
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from deepticker.credentials import CredentialStore, is_usable_secret
from deepticker.data.models import DailyBar, DataSource, Quote

logger = structlog.get_logger(__name__)

CREDENTIAL_ID = "alpha_vantage"


class AlphaVantageError(Exception):
    """Base exception for Alpha Vantage API errors."""

    pass


class AlphaVantageAuthError(AlphaVantageError):
    """Raised when API key is invalid or missing."""

    pass


class AlphaVantageRateLimitError(AlphaVantageError):
    """Raised when the service reports that the request quota is spent.

    Alpha Vantage answers HTTP 200 with a ``Note`` or ``Information`` field
    instead of a 429 status.
    """

    def __init__(self, message: str = "Request quota exceeded") -> None:
        super().__init__(f"Rate limit exceeded: {message}")


class AlphaVantageSymbolError(AlphaVantageError):
    """Raised when the symbol is unknown to the service."""

    def __init__(self, symbol: str) -> None:
        self.symbol = symbol
        super().__init__(f"No quote data for symbol: {symbol}")


class AlphaVantageAPIError(AlphaVantageError):
    """Raised for transport failures, bad statuses and malformed payloads."""

    def __init__(self, status: int, message: str):
        self.status = status
        self.message = message
        super().__init__(f"Alpha Vantage API error {status}: {message}")


def _to_float(value: Any) -> float | None:
    if value is None:
        return None
    text = str(value).strip().rstrip("%")
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def _is_key_notice(text: str) -> bool:
    """Whether a notice is about the API key rather than the request quota.

    Alpha Vantage reports both in the same fields. Key problems name the
    ``apikey`` parameter, call the key invalid, or point at a premium-only
    endpoint; quota notices may mention "your API key" without either.
    """
    lowered = text.lower()
    if "apikey" in lowered or "premium endpoint" in lowered:
        return True
    return "api key" in lowered and "invalid" in lowered


class AlphaVantageClient:
    """Async client for the Alpha Vantage REST API.

    The API key is read from the credential store on every request so that a
    key saved by the user takes effect without rebuilding the client.

    Example:
        client = AlphaVantageClient(credentials=store)
        quote = await client.get_quote("AAPL")
        print(f"AAPL: ${quote.price}")
    """

    BASE_URL = "https://www.alphavantage.co/query"

    def __init__(
        self,
        credentials: CredentialStore | None = None,
        *,
        api_key: str | None = None,
        timeout: float = 12.0,
        max_retries: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the Alpha Vantage client.

        Args:
            credentials: Store holding the ``alpha_vantage`` secret.
            api_key: Explicit key; takes precedence over the store.
            timeout: Request timeout in seconds.
            max_retries: Extra attempts on transport errors.
            transport: Optional httpx transport (used by tests).
        """
        self._credentials = credentials
        self._api_key = api_key
        self._timeout = timeout
        self._max_retries = max(0, max_retries)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._logger = logger.bind(component="alpha_vantage_client")

    @property
    def api_key(self) -> str | None:
        """Currently effective API key, if any."""
        if self._api_key:
            return self._api_key
        if self._credentials is None:
            return None
        return self._credentials.get_secret(CREDENTIAL_ID)

    @property
    def is_configured(self) -> bool:
        """Check if a usable API key is available."""
        return is_usable_secret(self.api_key)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(self, params: dict[str, str]) -> dict[str, Any]:
        """Make an authenticated request, retrying transport failures.

        Args:
            params: Query parameters besides the API key.

        Returns:
            JSON response data.

        Raises:
            AlphaVantageAuthError: If API key is missing or invalid.
            AlphaVantageRateLimitError: If the request quota is spent.
            AlphaVantageAPIError: For other API errors.
        """
        api_key = self.api_key
        if not is_usable_secret(api_key):
            raise AlphaVantageAuthError("ALPHA_VANTAGE_API_KEY not configured")

        client = await self._get_client()
        query = {**params, "apikey": api_key or ""}

        self._logger.debug("alpha_vantage_request", function=params.get("function"))

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(httpx.TransportError),
                stop=stop_after_attempt(self._max_retries + 1),
                wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
                reraise=True,
            ):
                with attempt:
                    response = await client.get(self.BASE_URL, params=query)
        except httpx.TransportError as e:
            self._logger.error("alpha_vantage_client_error", error=str(e))
            raise AlphaVantageAPIError(0, str(e)) from e

        if response.status_code in (401, 403):
            raise AlphaVantageAuthError("Invalid API key")
        if response.status_code == 429:
            raise AlphaVantageRateLimitError("HTTP 429")
        if response.status_code != 200:
            raise AlphaVantageAPIError(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise AlphaVantageAPIError(response.status_code, "Response is not JSON") from e
        if not isinstance(data, dict):
            raise AlphaVantageAPIError(response.status_code, "Unexpected response shape")

        for notice_key in ("Note", "Information"):
            if notice_key in data:
                notice = str(data[notice_key])
                if _is_key_notice(notice):
                    raise AlphaVantageAuthError(notice)
                raise AlphaVantageRateLimitError(notice)

        error_message = data.get("Error Message")
        if error_message and _is_key_notice(str(error_message)):
            raise AlphaVantageAuthError(str(error_message))

        self._logger.debug("alpha_vantage_response", status=response.status_code)
        return data

    async def get_quote(self, symbol: str) -> Quote:
        """Get the latest quote for a symbol.

        Uses the ``GLOBAL_QUOTE`` function.

        Args:
            symbol: Stock ticker symbol (e.g., "AAPL").

        Returns:
            Quote with price, change and session range data.

        Raises:
            AlphaVantageSymbolError: If the symbol is unknown.
            AlphaVantageError: If the request fails or the payload is malformed.
        """
        symbol = symbol.upper()
        data = await self._request({"function": "GLOBAL_QUOTE", "symbol": symbol})

        if "Error Message" in data:
            raise AlphaVantageSymbolError(symbol)

        payload = data.get("Global Quote")
        if not isinstance(payload, dict) or not payload:
            raise AlphaVantageSymbolError(symbol)

        price = _to_float(payload.get("05. price"))
        if price is None:
            raise AlphaVantageAPIError(200, f"Missing price in quote for {symbol}")

        volume = _to_float(payload.get("06. volume"))
        try:
            return Quote(
                symbol=payload.get("01. symbol") or symbol,
                price=price,
                change=_to_float(payload.get("09. change")),
                change_percent=_to_float(payload.get("10. change percent")),
                previous_close=_to_float(payload.get("08. previous close")),
                open=_to_float(payload.get("02. open")),
                high=_to_float(payload.get("03. high")),
                low=_to_float(payload.get("04. low")),
                volume=int(volume) if volume is not None else 0,
                source=DataSource.ALPHA_VANTAGE,
            )
        except ValueError as e:
            raise AlphaVantageAPIError(200, f"Invalid quote for {symbol}: {e}") from e

    async def get_daily_history(self, symbol: str, limit: int | None = 10) -> list[DailyBar]:
        """Get the most recent daily bars for a symbol.

        Uses the ``TIME_SERIES_DAILY`` function (compact output, about 100
        days). Rows with unparseable values are skipped.

        Args:
            symbol: Stock ticker symbol.
            limit: Number of most recent trading days to keep; None keeps all.

        Returns:
            DailyBar list, oldest first.

        Raises:
            AlphaVantageSymbolError: If the symbol is unknown.
            AlphaVantageError: If the request fails or the payload is malformed.
        """
        symbol = symbol.upper()
        data = await self._request(
            {"function": "TIME_SERIES_DAILY", "symbol": symbol, "outputsize": "compact"}
        )

        if "Error Message" in data:
            raise AlphaVantageSymbolError(symbol)

        series = data.get("Time Series (Daily)")
        if not isinstance(series, dict) or not series:
            raise AlphaVantageSymbolError(symbol)

        bars = []
        for day, values in series.items():
            if not isinstance(values, dict):
                continue
            try:
                trading_date = date.fromisoformat(day)
            except ValueError:
                continue
            fields = [_to_float(values.get(key)) for key in ("1. open", "2. high", "3. low", "4. close")]
            volume = _to_float(values.get("5. volume"))
            if any(value is None for value in fields) or volume is None:
                continue
            open_, high, low, close = fields
            bars.append(
                DailyBar(
                    symbol=symbol,
                    date=trading_date,
                    open=open_,
                    high=high,
                    low=low,
                    close=close,
                    volume=int(volume),
                )
            )

        bars.sort(key=lambda bar: bar.date)
        self._logger.debug("alpha_vantage_history", symbol=symbol, bars=len(bars))
        if limit is None:
            return bars
        return bars[-limit:] if limit > 0 else []

    async def __aenter__(self) -> "AlphaVantageClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
