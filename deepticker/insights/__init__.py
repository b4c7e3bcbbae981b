"""AI insight models, prompts and response parsing.

The dispatcher lives in ``deepticker.insights.dispatcher`` and the provider
adapters in ``deepticker.insights.providers``.
"""

from deepticker.insights.models import (
    Direction,
    Insight,
    InsightKind,
    MarketingBriefing,
    PortfolioSummary,
    RiskLevel,
    Sentiment,
    StockPrediction,
)

__all__ = [
    "Direction",
    "Insight",
    "InsightKind",
    "MarketingBriefing",
    "PortfolioSummary",
    "RiskLevel",
    "Sentiment",
    "StockPrediction",
]
