"""Portfolio refresh and insight workflow.

A refresh fetches every holding's quote concurrently, waits until each fetch
has settled (fresh, fallback, stale or failed), then builds the snapshot and
computes stats once for the full batch. A symbol that cannot be priced is
reported in the outcome and never aborts the others.
"""

import uuid
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from enum import Enum

import structlog
from pydantic import BaseModel, ConfigDict, Field

from deepticker.cache.manager import CacheConfig
from deepticker.config import Settings, settings
from deepticker.credentials import CredentialStore
from deepticker.data.alpha_vantage import AlphaVantageClient, AlphaVantageError
from deepticker.data.models import DailyBar, QuoteResult
from deepticker.data.router import QuoteFetcher
from deepticker.data.yahoo import YahooQuoteSource
from deepticker.insights.dispatcher import AnalysisDispatcher
from deepticker.insights.models import Insight, InsightKind
from deepticker.portfolio.aggregator import HealthPolicy, build_snapshot, compute_stats
from deepticker.portfolio.models import Holding, PortfolioSnapshot, PortfolioStats

logger = structlog.get_logger(__name__)


# ============================================================================
# Outcome schema
# ============================================================================


class RefreshStatus(str, Enum):
    """How a refresh went overall."""

    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class RefreshOutcome(BaseModel):
    """Result of one refresh.

    Attributes:
        refresh_id: Unique id for log correlation.
        status: Completed when every holding was priced, partial when some
            were not, failed when none were.
        snapshot: Priced portfolio.
        stats: Health summary computed after all fetches settled.
        errors: Per-symbol failure messages.
        stale_symbols: Symbols served from an expired cache entry.
        refreshed_at: When the batch settled.
    """

    model_config = ConfigDict(frozen=True)

    refresh_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    status: RefreshStatus
    snapshot: PortfolioSnapshot
    stats: PortfolioStats
    errors: dict[str, list[str]] = Field(default_factory=dict)
    stale_symbols: list[str] = Field(default_factory=list)
    refreshed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


# ============================================================================
# Workflow
# ============================================================================


class PortfolioWorkflow:
    """Runs refreshes and insight requests over shared components.

    Example:
        workflow = PortfolioWorkflow.from_settings(credentials=store)
        outcome = await workflow.refresh([Holding(symbol="AAPL", shares=10)])
        print(outcome.stats.overall_health)
    """

    def __init__(
        self,
        fetcher: QuoteFetcher,
        dispatcher: AnalysisDispatcher,
        policy: HealthPolicy | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._dispatcher = dispatcher
        self._policy = policy or HealthPolicy.from_settings()
        self._last_outcome: RefreshOutcome | None = None
        self._logger = logger.bind(component="portfolio_workflow")

    @classmethod
    def from_settings(
        cls,
        credentials: CredentialStore,
        config: Settings | None = None,
    ) -> "PortfolioWorkflow":
        """Wire the default components from settings."""
        config = config or settings
        fetcher = QuoteFetcher(
            AlphaVantageClient(
                credentials,
                timeout=config.QUOTE_REQUEST_TIMEOUT,
                max_retries=config.QUOTE_MAX_RETRIES,
            ),
            YahooQuoteSource(timeout=config.QUOTE_REQUEST_TIMEOUT),
            config=CacheConfig.from_settings(config),
            rate_limit=config.PRIMARY_RATE_LIMIT,
        )
        dispatcher = AnalysisDispatcher(credentials, config=config)
        return cls(fetcher, dispatcher, HealthPolicy.from_settings(config))

    @property
    def fetcher(self) -> QuoteFetcher:
        return self._fetcher

    @property
    def dispatcher(self) -> AnalysisDispatcher:
        return self._dispatcher

    @property
    def policy(self) -> HealthPolicy:
        return self._policy

    @property
    def last_outcome(self) -> RefreshOutcome | None:
        """Most recent refresh outcome; a newer refresh supersedes it."""
        return self._last_outcome

    async def refresh(self, holdings: Iterable[Holding]) -> RefreshOutcome:
        """Price every holding and compute stats once all fetches settle.

        Args:
            holdings: Holdings in display order.

        Returns:
            RefreshOutcome for the whole batch.
        """
        holdings = list(holdings)
        symbols = [h.symbol for h in holdings]
        self._logger.info("refresh_started", symbols=len(set(symbols)))

        results = await self._fetcher.refresh(symbols)

        quotes: dict[str, QuoteResult] = {}
        errors: dict[str, list[str]] = {}
        for symbol, result in results.items():
            if isinstance(result, QuoteResult):
                quotes[symbol] = result
            else:
                errors[symbol] = result.errors or [result.message]

        snapshot = build_snapshot(holdings, quotes, self._policy)
        stats = compute_stats(snapshot, self._policy)

        if not errors:
            status = RefreshStatus.COMPLETED
        elif quotes:
            status = RefreshStatus.PARTIAL
        else:
            status = RefreshStatus.FAILED

        outcome = RefreshOutcome(
            status=status,
            snapshot=snapshot,
            stats=stats,
            errors=errors,
            stale_symbols=[s for s, r in quotes.items() if r.stale],
        )
        self._last_outcome = outcome

        self._logger.info(
            "refresh_completed",
            refresh_id=outcome.refresh_id,
            status=status.value,
            priced=len(quotes),
            failed=len(errors),
            overall_health=stats.overall_health.value,
        )
        return outcome

    async def insight(
        self,
        kind: InsightKind,
        snapshot: PortfolioSnapshot | None = None,
        provider: str | None = None,
        prompt_override: str | None = None,
        symbol: str | None = None,
        history: Sequence[DailyBar] | None = None,
    ) -> Insight:
        """Request an insight for a snapshot, defaulting to the last refresh.

        Predictions for a target symbol include its recent daily history.
        When history is not passed it is fetched from the primary source; if
        that fails the prediction goes ahead on the quote alone.

        Raises:
            ValueError: If no snapshot is given and nothing was refreshed yet.
        """
        if snapshot is None:
            if self._last_outcome is None:
                raise ValueError("No snapshot available; refresh the portfolio first")
            snapshot = self._last_outcome.snapshot
        if kind is InsightKind.PREDICTION and symbol and history is None:
            try:
                history = await self._fetcher.get_history(symbol)
            except AlphaVantageError as e:
                self._logger.warning("history_unavailable", symbol=symbol, error=str(e))
        return await self._dispatcher.generate_insight(
            kind,
            snapshot,
            provider=provider,
            prompt_override=prompt_override,
            symbol=symbol,
            history=history,
        )

    async def close(self) -> None:
        await self._fetcher.close()
        await self._dispatcher.close()
