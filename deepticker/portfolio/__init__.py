"""Portfolio aggregation: snapshots, totals and health buckets."""

from deepticker.portfolio.aggregator import (
    DEFAULT_HEALTH_POLICY,
    HealthPolicy,
    build_snapshot,
    compute_stats,
)
from deepticker.portfolio.models import (
    HealthStatus,
    Holding,
    PortfolioSnapshot,
    PortfolioStats,
    Position,
)

__all__ = [
    "DEFAULT_HEALTH_POLICY",
    "HealthPolicy",
    "HealthStatus",
    "Holding",
    "PortfolioSnapshot",
    "PortfolioStats",
    "Position",
    "build_snapshot",
    "compute_stats",
]
