"""Provider-agnostic dispatch of AI insight requests.

The dispatcher checks credentials, builds the prompt, consults the insight
cache, and hands the request to whichever provider adapter is registered for
the selected id. It never branches on provider identity.

Provider calls are not retried. A failed request surfaces as
``ProviderRequestFailed`` and is retried only when the caller asks again.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field

import structlog

from deepticker.cache.insight_cache import InsightCache, insight_fingerprint
from deepticker.cache.manager import CacheConfig
from deepticker.config import Settings, settings
from deepticker.credentials import CredentialStore, is_usable_secret
from deepticker.data.models import DailyBar
from deepticker.errors import ProviderUnconfigured
from deepticker.insights.models import Insight, InsightKind
from deepticker.insights.parsing import parse_insight
from deepticker.insights.prompts import build_prompt, get_prompt_spec, prompt_template
from deepticker.insights.providers.registry import ProviderRegistry, default_registry
from deepticker.portfolio.models import PortfolioSnapshot

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ProviderConfig:
    """Configuration view of one registered provider.

    Attributes:
        provider: Provider id.
        display_name: Human-readable name.
        has_credential: Whether a usable key is stored for it.
        prompt_templates: Custom prompts per insight kind, replacing the defaults.
        is_default: Whether this is the built-in default provider.
    """

    provider: str
    display_name: str
    has_credential: bool
    prompt_templates: dict[InsightKind, str] = field(default_factory=dict)
    is_default: bool = False


class AnalysisDispatcher:
    """Generates insights through registered provider adapters.

    Example:
        dispatcher = AnalysisDispatcher(credentials=store)
        insight = await dispatcher.generate_insight(InsightKind.SUMMARY, snapshot)
    """

    def __init__(
        self,
        credentials: CredentialStore,
        registry: ProviderRegistry | None = None,
        cache: InsightCache | None = None,
        *,
        config: Settings | None = None,
        default_provider: str | None = None,
        reject_alarmist: bool | None = None,
    ) -> None:
        config = config or settings
        self._credentials = credentials
        self._registry = (
            registry if registry is not None else default_registry(timeout=config.AI_REQUEST_TIMEOUT)
        )
        self._cache = cache if cache is not None else InsightCache(CacheConfig.from_settings(config))
        self._default_provider = default_provider or config.DEFAULT_AI_PROVIDER
        self._reject_alarmist = (
            config.REJECT_ALARMIST_BRIEFINGS if reject_alarmist is None else reject_alarmist
        )
        self._prompt_templates: dict[tuple[str, InsightKind], str] = {}
        self._selected: str | None = None
        self._logger = logger.bind(component="analysis_dispatcher")

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def cache(self) -> InsightCache:
        return self._cache

    @property
    def default_provider(self) -> str:
        return self._default_provider

    @property
    def selected_provider(self) -> str | None:
        """The provider the user picked, if any."""
        return self._selected

    # ------------------------------------------------------------------
    # Provider selection
    # ------------------------------------------------------------------

    def has_credential(self, provider_id: str) -> bool:
        """Check the credential store for a usable key. Never logs the key."""
        provider = self._registry.resolve(provider_id)
        return is_usable_secret(self._credentials.get_secret(provider.credential_id))

    def provider_configs(self) -> list[ProviderConfig]:
        """Every registered provider with its credential status."""
        return [
            ProviderConfig(
                provider=provider.provider_id,
                display_name=provider.display_name,
                has_credential=self.has_credential(provider.provider_id),
                prompt_templates={
                    kind: template
                    for (provider_id, kind), template in self._prompt_templates.items()
                    if provider_id == provider.provider_id
                },
                is_default=provider.provider_id == self._default_provider,
            )
            for provider in self._registry
        ]

    def available_providers(self) -> list[str]:
        """Ids of providers that have a usable credential."""
        return [config.provider for config in self.provider_configs() if config.has_credential]

    def resolve_provider(self, selected: str | None = None) -> str | None:
        """Pick the provider for a request.

        An explicit selection (argument, else the stored selection) is used
        only when it has a credential. Without one, the default provider is
        auto-selected when it has a credential. Otherwise nothing is selected.

        Raises:
            UnknownProviderError: If ``selected`` is not registered.
        """
        choice = selected or self._selected
        if choice:
            return choice if self.has_credential(choice) else None
        if self._registry.has(self._default_provider) and self.has_credential(self._default_provider):
            return self._default_provider
        return None

    def select_provider(self, provider_id: str | None) -> None:
        """Make a provider the active one; None clears the selection.

        Raises:
            UnknownProviderError: If the id is not registered.
            ProviderUnconfigured: If the provider has no credential.
        """
        if provider_id is None:
            self._selected = None
            return
        if not self.has_credential(provider_id):
            raise ProviderUnconfigured(provider_id)
        self._selected = provider_id
        self._logger.info("provider_selected", provider=provider_id)

    def set_prompt_template(
        self,
        provider_id: str,
        kind: InsightKind,
        template: str | None,
    ) -> None:
        """Store or clear a provider's custom prompt for one insight kind.

        The reply schema lives in the system prompt, so a custom prompt only
        changes what is asked, never the shape of the answer.
        """
        self._registry.resolve(provider_id)
        if template is None or not template.strip():
            self._prompt_templates.pop((provider_id, kind), None)
        else:
            self._prompt_templates[(provider_id, kind)] = template

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def generate_insight(
        self,
        kind: InsightKind,
        snapshot: PortfolioSnapshot,
        provider: str | None = None,
        prompt_override: str | None = None,
        symbol: str | None = None,
        history: Sequence[DailyBar] | None = None,
    ) -> Insight:
        """Produce an insight, from cache when the request is unchanged.

        Args:
            kind: Insight kind to produce.
            snapshot: Portfolio the insight is about.
            provider: Provider id; falls back to the selection policy.
            prompt_override: Prompt text used verbatim instead of the default.
            symbol: Target symbol for predictions.
            history: Recent daily bars for the target symbol, oldest first.

        Returns:
            The insight.

        Raises:
            ProviderUnconfigured: If no credentialed provider can be used.
            ProviderRequestFailed: On transport, HTTP or timeout failure.
            ResponseParseFailed: If the reply cannot become the requested insight.
            UnknownProviderError: If ``provider`` is not registered.
        """
        provider_id = self.resolve_provider(provider)
        if provider_id is None:
            raise ProviderUnconfigured(provider or self._selected)

        adapter = self._registry.resolve(provider_id)
        api_key = self._credentials.get_secret(adapter.credential_id)
        if not is_usable_secret(api_key):
            raise ProviderUnconfigured(provider_id)

        template = prompt_template(
            kind, prompt_override or self._prompt_templates.get((provider_id, kind))
        )
        target = symbol.strip().upper() if symbol else None
        fingerprint = insight_fingerprint(
            provider_id,
            kind,
            [(p.holding.symbol, p.holding.shares) for p in snapshot.positions],
            template,
            target,
        )

        cached = await self._cache.get(provider_id, fingerprint)
        if cached is not None:
            self._logger.info("insight_served", provider=provider_id, kind=kind.value, cached=True)
            return cached

        spec = get_prompt_spec(kind)
        body = adapter.build_request(
            build_prompt(kind, snapshot, template, target, history),
            system=spec.system,
            temperature=spec.temperature,
            max_tokens=spec.max_tokens,
        )

        self._logger.info("insight_requested", provider=provider_id, kind=kind.value, symbol=target)
        payload = await adapter.send(body, api_key or "")
        text = adapter.parse_response(payload)
        insight = parse_insight(
            kind,
            text,
            provider=provider_id,
            symbol=target,
            reject_alarmist=self._reject_alarmist,
        )

        await self._cache.put(provider_id, fingerprint, insight)
        self._logger.info("insight_served", provider=provider_id, kind=kind.value, cached=False)
        return insight

    async def close(self) -> None:
        await self._registry.close()
