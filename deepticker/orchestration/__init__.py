"""Refresh and insight orchestration."""

from deepticker.orchestration.workflow import (
    PortfolioWorkflow,
    RefreshOutcome,
    RefreshStatus,
)

__all__ = [
    "PortfolioWorkflow",
    "RefreshOutcome",
    "RefreshStatus",
]
