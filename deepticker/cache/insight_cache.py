"""Content-keyed cache for AI insights.

Insights are keyed by provider and a fingerprint of everything that shaped the
request: the insight kind, the target symbol, the holdings and share counts,
and the prompt template. Any change to those produces a new fingerprint, so a
stale insight is never served for a changed portfolio even inside the TTL.
"""

import hashlib
import json
import time
from collections.abc import Iterable

import structlog

from deepticker.cache.manager import (
    DEFAULT_CACHE_CONFIG,
    CacheConfig,
    CacheKeyBuilder,
    CacheType,
    Clock,
    TTLCache,
)
from deepticker.insights.models import Insight, InsightKind

logger = structlog.get_logger(__name__)


def insight_fingerprint(
    provider: str,
    kind: InsightKind | str,
    positions: Iterable[tuple[str, float]],
    prompt_template: str,
    symbol: str | None = None,
) -> str:
    """Stable SHA-256 fingerprint of an insight request.

    Args:
        provider: Provider identifier.
        kind: Insight kind.
        positions: ``(symbol, shares)`` pairs; order does not matter.
        prompt_template: Prompt text before the portfolio context is appended.
        symbol: Target symbol for per-stock insights.

    Returns:
        Hex digest.
    """
    pairs = sorted((s.strip().upper(), float(shares)) for s, shares in positions)
    payload = {
        "provider": provider,
        "kind": kind.value if isinstance(kind, InsightKind) else str(kind),
        "symbol": symbol.strip().upper() if symbol else None,
        "positions": pairs,
        "prompt": hashlib.sha256(prompt_template.encode("utf-8")).hexdigest(),
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


class InsightCache:
    """Insight store with a fixed TTL per provider/fingerprint pair.

    Expired insights are dropped on lookup.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._config = config or DEFAULT_CACHE_CONFIG
        self._ttl = self._config.get_ttl(CacheType.INSIGHT)
        self._cache: TTLCache[Insight] = TTLCache(
            default_ttl=self._ttl,
            clock=clock or time.monotonic,
            name="insight_cache",
        )

    @property
    def ttl(self) -> float:
        return self._ttl

    async def get(self, provider: str, fingerprint: str) -> Insight | None:
        """Return a fresh insight, or None."""
        value = await self._cache.get(CacheKeyBuilder.insight(provider, fingerprint))
        if value is not None:
            logger.debug("insight_cache_hit", provider=provider, fingerprint=fingerprint[:12])
        return value

    async def put(self, provider: str, fingerprint: str, insight: Insight) -> None:
        """Store an insight for the configured TTL."""
        await self._cache.set(CacheKeyBuilder.insight(provider, fingerprint), insight, ttl=self._ttl)
        logger.debug("insight_cached", provider=provider, fingerprint=fingerprint[:12])

    async def clear(self) -> None:
        await self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)

    def get_metrics(self) -> dict[str, object]:
        return self._cache.get_metrics()
