"""Portfolio schema: holdings, priced positions, snapshots and stats.

Snapshots and stats are derived values. They are rebuilt on every refresh and
never persisted; the holdings list is an input owned by the caller.
"""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from deepticker.data.models import Quote


# ============================================================================
# Enums
# ============================================================================


class HealthStatus(str, Enum):
    """Health bucket for a holding or for the whole portfolio."""

    HEALTHY = "healthy"
    WARNING = "warning"
    DANGER = "danger"


# ============================================================================
# Holdings
# ============================================================================


class Holding(BaseModel):
    """A position the user owns, keyed by symbol."""

    symbol: str = Field(..., description="Stock ticker symbol")
    shares: float = Field(..., ge=0.0, description="Number of shares held")
    cost_basis: float | None = Field(default=None, ge=0.0, description="Average cost per share")
    added_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, v: str) -> str:
        """Uppercase the symbol and reject blanks."""
        symbol = v.strip().upper()
        if not symbol:
            raise ValueError("symbol must not be empty")
        return symbol


class Position(BaseModel):
    """A holding paired with its quote, if one could be produced."""

    model_config = ConfigDict(frozen=True)

    holding: Holding
    quote: Quote | None = None
    stale: bool = False
    health: HealthStatus | None = None

    @property
    def symbol(self) -> str:
        return self.holding.symbol

    @property
    def is_priced(self) -> bool:
        return self.quote is not None

    @property
    def market_value(self) -> float:
        """shares × price, or 0 when unpriced."""
        if self.quote is None:
            return 0.0
        return self.holding.shares * self.quote.price

    @property
    def daily_change(self) -> float:
        """shares × change, or 0 when unpriced."""
        if self.quote is None:
            return 0.0
        return self.holding.shares * self.quote.change

    @property
    def cost(self) -> float | None:
        if self.holding.cost_basis is None:
            return None
        return self.holding.shares * self.holding.cost_basis


# ============================================================================
# Derived views
# ============================================================================


class PortfolioSnapshot(BaseModel):
    """Priced view of the holdings at one point in time.

    Positions keep the order of the holdings they were built from.
    """

    model_config = ConfigDict(frozen=True)

    positions: list[Position] = Field(default_factory=list)
    total_value: float = 0.0
    daily_change: float = 0.0
    daily_change_percent: float = 0.0
    total_cost: float | None = None
    total_return: float | None = None
    healthy_count: int = 0
    warning_count: int = 0
    danger_count: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def symbols(self) -> list[str]:
        return [p.symbol for p in self.positions]

    @property
    def priced_positions(self) -> list[Position]:
        return [p for p in self.positions if p.quote is not None]

    @property
    def unpriced_symbols(self) -> list[str]:
        return [p.symbol for p in self.positions if p.quote is None]

    def position(self, symbol: str) -> Position | None:
        """Look up a position by symbol."""
        wanted = symbol.strip().upper()
        for position in self.positions:
            if position.symbol == wanted:
                return position
        return None


class PortfolioStats(BaseModel):
    """Health summary of a snapshot.

    Attributes:
        total: Holdings that were classified (priced holdings).
        healthy_count: Holdings with a small daily move.
        warning_count: Holdings with a notable move that is not a danger decline.
        danger_count: Holdings down by the danger decline or more.
        unpriced: Holdings without a quote; not part of ``total``.
        overall_health: Portfolio-level bucket.
    """

    model_config = ConfigDict(frozen=True)

    total: int = 0
    healthy_count: int = 0
    warning_count: int = 0
    danger_count: int = 0
    unpriced: int = 0
    overall_health: HealthStatus = HealthStatus.HEALTHY
    total_value: float = 0.0
    daily_change: float = 0.0
    daily_change_percent: float = 0.0
    total_cost: float | None = None
    total_return: float | None = None
    total_return_percent: float | None = None
