"""Portfolio totals and health classification.

The thresholds are policy values. ``HealthPolicy.from_settings`` reads them
from configuration; the defaults mirror the shipped settings.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

import structlog

from deepticker.config import Settings, settings
from deepticker.data.models import Quote, QuoteResult
from deepticker.portfolio.models import (
    HealthStatus,
    Holding,
    PortfolioSnapshot,
    PortfolioStats,
    Position,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class HealthPolicy:
    """Thresholds for holding and portfolio health.

    Attributes:
        warning_change: Absolute daily change (%) at which a holding is a warning.
        danger_decline: Daily decline (%) at which a holding is in danger.
        danger_ratio: Portfolio is in danger when danger/total exceeds this.
        warning_ratio: Portfolio is a warning when warning/total exceeds this.
    """

    warning_change: float = 2.0
    danger_decline: float = 10.0
    danger_ratio: float = 0.3
    warning_ratio: float = 0.5

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "HealthPolicy":
        """Build the policy from application settings."""
        config = config or settings
        return cls(
            warning_change=config.HEALTH_WARNING_CHANGE,
            danger_decline=config.HEALTH_DANGER_DECLINE,
            danger_ratio=config.HEALTH_DANGER_RATIO,
            warning_ratio=config.HEALTH_WARNING_RATIO,
        )

    def classify_holding(self, change_percent: float) -> HealthStatus:
        """Bucket one holding by its daily change percentage."""
        if change_percent <= -self.danger_decline:
            return HealthStatus.DANGER
        if abs(change_percent) >= self.warning_change:
            return HealthStatus.WARNING
        return HealthStatus.HEALTHY

    def classify_portfolio(self, healthy: int, warning: int, danger: int) -> HealthStatus:
        """Bucket the portfolio from per-holding counts. Empty is healthy."""
        total = healthy + warning + danger
        if total == 0:
            return HealthStatus.HEALTHY
        if danger / total > self.danger_ratio:
            return HealthStatus.DANGER
        if warning / total > self.warning_ratio:
            return HealthStatus.WARNING
        return HealthStatus.HEALTHY


DEFAULT_HEALTH_POLICY = HealthPolicy()


def _change_percent(daily_change: float, total_value: float) -> float:
    base = total_value - daily_change
    if base == 0:
        return 0.0
    return daily_change / base * 100


def build_snapshot(
    holdings: Iterable[Holding],
    quotes: Mapping[str, Quote | QuoteResult | None],
    policy: HealthPolicy | None = None,
) -> PortfolioSnapshot:
    """Pair holdings with quotes and total them.

    Args:
        holdings: Holdings in display order.
        quotes: Quote or fetch result per symbol; missing symbols are unpriced.
        policy: Health thresholds.

    Returns:
        PortfolioSnapshot with positions in holding order.
    """
    policy = policy or DEFAULT_HEALTH_POLICY
    positions: list[Position] = []
    counts = {status: 0 for status in HealthStatus}

    for holding in holdings:
        found = quotes.get(holding.symbol)
        stale = False
        if isinstance(found, QuoteResult):
            stale = found.stale
            quote: Quote | None = found.quote
        else:
            quote = found

        health = None
        if quote is not None:
            health = policy.classify_holding(quote.change_percent)
            counts[health] += 1
        positions.append(Position(holding=holding, quote=quote, stale=stale, health=health))

    total_value = sum(p.market_value for p in positions)
    daily_change = sum(p.daily_change for p in positions)

    costed = [p for p in positions if p.quote is not None and p.cost is not None]
    total_cost = None
    total_return = None
    if costed:
        total_cost = sum(p.cost or 0.0 for p in costed)
        total_return = sum(p.market_value for p in costed) - total_cost

    return PortfolioSnapshot(
        positions=positions,
        total_value=total_value,
        daily_change=daily_change,
        daily_change_percent=_change_percent(daily_change, total_value),
        total_cost=total_cost,
        total_return=total_return,
        healthy_count=counts[HealthStatus.HEALTHY],
        warning_count=counts[HealthStatus.WARNING],
        danger_count=counts[HealthStatus.DANGER],
    )


def compute_stats(
    snapshot: PortfolioSnapshot,
    policy: HealthPolicy | None = None,
) -> PortfolioStats:
    """Classify every priced holding and derive overall health.

    Holdings without a quote are counted in ``unpriced`` and excluded from the
    ratios.
    """
    policy = policy or DEFAULT_HEALTH_POLICY
    healthy = warning = danger = unpriced = 0

    for position in snapshot.positions:
        if position.quote is None:
            unpriced += 1
            continue
        status = policy.classify_holding(position.quote.change_percent)
        if status is HealthStatus.DANGER:
            danger += 1
        elif status is HealthStatus.WARNING:
            warning += 1
        else:
            healthy += 1

    overall = policy.classify_portfolio(healthy, warning, danger)

    total_return_percent = None
    if snapshot.total_cost and snapshot.total_return is not None:
        total_return_percent = snapshot.total_return / snapshot.total_cost * 100

    logger.debug(
        "portfolio_stats_computed",
        total=healthy + warning + danger,
        danger=danger,
        warning=warning,
        unpriced=unpriced,
        overall=overall.value,
    )

    return PortfolioStats(
        total=healthy + warning + danger,
        healthy_count=healthy,
        warning_count=warning,
        danger_count=danger,
        unpriced=unpriced,
        overall_health=overall,
        total_value=snapshot.total_value,
        daily_change=snapshot.daily_change,
        daily_change_percent=snapshot.daily_change_percent,
        total_cost=snapshot.total_cost,
        total_return=snapshot.total_return,
        total_return_percent=total_return_percent,
    )
