"""Data models for market data integration.

This module defines the Pydantic models shared by the quote sources
(Alpha Vantage, Yahoo Finance) and the caching layer.
"""

from datetime import UTC, datetime
from datetime import date as date_type
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class DataSource(str, Enum):
    """Source of market data."""

    ALPHA_VANTAGE = "alpha_vantage"
    YAHOO = "yahoo"
    CACHE = "cache"


class Quote(BaseModel):
    """Normalized market snapshot for one ticker symbol.

    Quotes are immutable; a newer fetch supersedes an older quote instead of
    mutating it. When a source omits ``change`` or ``change_percent`` they are
    derived from ``price`` and ``previous_close``.

    Attributes:
        symbol: Uppercase stock ticker symbol.
        price: Current/last price.
        change: Absolute change from previous close.
        change_percent: Percentage change from previous close.
        previous_close: Previous day's close.
        open: Opening price.
        high: Day high.
        low: Day low.
        volume: Trading volume.
        fetched_at: When the quote was fetched.
        source: Data source that produced the quote.
    """

    model_config = ConfigDict(frozen=True)

    symbol: str
    price: float = Field(ge=0.0)
    change: float = 0.0
    change_percent: float = 0.0
    previous_close: float | None = None
    open: float | None = None
    high: float | None = None
    low: float | None = None
    volume: int = 0
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    source: DataSource = DataSource.ALPHA_VANTAGE

    @field_validator("symbol")
    @classmethod
    def _normalize_symbol(cls, value: str) -> str:
        symbol = value.strip().upper()
        if not symbol:
            raise ValueError("symbol must not be empty")
        return symbol

    @model_validator(mode="before")
    @classmethod
    def _derive_change(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        derived = dict(data)
        price = derived.get("price")
        previous_close = derived.get("previous_close")
        if price is not None and previous_close:
            if derived.get("change") is None:
                derived["change"] = float(price) - float(previous_close)
            if derived.get("change_percent") is None:
                derived["change_percent"] = (
                    (float(price) - float(previous_close)) / float(previous_close) * 100
                )
        # Unknown movement without a previous close falls back to the defaults.
        for key in ("change", "change_percent", "volume"):
            if key in derived and derived[key] is None:
                del derived[key]
        return derived


class QuoteResult(BaseModel):
    """Outcome of a quote lookup.

    Attributes:
        symbol: Stock ticker symbol.
        quote: The quote served to the caller.
        source: Which tier served it (a live source or the cache).
        cached: Whether the quote came out of the cache.
        stale: Whether the cached quote was past its freshness window.
        fallback_used: Whether the primary source was bypassed.
        errors: Errors raised by the sources that were tried.
    """

    symbol: str
    quote: Quote
    source: DataSource
    cached: bool = False
    stale: bool = False
    fallback_used: bool = False
    errors: list[str] = Field(default_factory=list)


class DailyBar(BaseModel):
    """One trading day of price history.

    Attributes:
        symbol: Stock ticker symbol.
        date: Trading date.
        open: Opening price.
        high: Day high.
        low: Day low.
        close: Closing price.
        volume: Trading volume.
    """

    model_config = ConfigDict(frozen=True)

    symbol: str
    date: date_type
    open: float
    high: float
    low: float
    close: float = Field(ge=0.0)
    volume: int = 0
