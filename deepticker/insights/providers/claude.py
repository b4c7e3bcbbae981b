"""Anthropic Claude adapter.

Uses the ``anthropic`` SDK, which sends the key as ``x-api-key`` and returns
the reply as a list of content blocks.
"""

import json
from collections.abc import Callable
from typing import Any

import anthropic
import structlog
from anthropic import AsyncAnthropic

from deepticker.errors import ProviderRequestFailed, ResponseParseFailed
from deepticker.insights.providers.base import InsightProvider

logger = structlog.get_logger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"

ClientFactory = Callable[[str], AsyncAnthropic]


class ClaudeProvider(InsightProvider):
    """Claude Messages API adapter."""

    provider_id = "anthropic"
    display_name = "Anthropic Claude"

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        *,
        timeout: float = 60.0,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.model = model
        self._timeout = timeout
        self._client_factory = client_factory
        self._client: AsyncAnthropic | None = None
        self._client_key: str | None = None
        self._logger = logger.bind(provider=self.provider_id)

    async def _client_for(self, api_key: str) -> AsyncAnthropic:
        if self._client is not None and self._client_key == api_key:
            return self._client
        if self._client is not None:
            # A replaced key gets a fresh client; the old pool is released first.
            await self._client.close()
        if self._client_factory is not None:
            client = self._client_factory(api_key)
        else:
            # Retries stay off: a failed insight is retried by the user only.
            client = AsyncAnthropic(api_key=api_key, timeout=self._timeout, max_retries=0)
        self._client, self._client_key = client, api_key
        return client

    def build_request(
        self,
        prompt: str,
        *,
        system: str = "",
        temperature: float = 0.3,
        max_tokens: int = 800,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            body["system"] = system
        return body

    def parse_response(self, payload: dict[str, Any]) -> str:
        blocks = payload.get("content")
        if not isinstance(blocks, list):
            raise ResponseParseFailed(
                "Response envelope has no content blocks",
                provider=self.provider_id,
                raw_text=json.dumps(payload, default=str),
            )
        text = "".join(
            block.get("text", "")
            for block in blocks
            if isinstance(block, dict) and block.get("type") == "text"
        )
        if not text.strip():
            raise ResponseParseFailed(
                "Response has no text content",
                provider=self.provider_id,
                raw_text=json.dumps(payload, default=str),
            )
        return text

    async def send(self, body: dict[str, Any], api_key: str) -> dict[str, Any]:
        client = await self._client_for(api_key)
        self._logger.debug("provider_request", model=body.get("model"))
        try:
            response = await client.messages.create(**body)
        except anthropic.APITimeoutError as e:
            raise ProviderRequestFailed(
                f"{self.display_name} request timed out after {self._timeout:.0f}s",
                provider=self.provider_id,
            ) from e
        except anthropic.APIStatusError as e:
            self._logger.warning("provider_http_error", status=e.status_code)
            raise ProviderRequestFailed(
                f"{self.display_name} returned HTTP {e.status_code}: {e.message}",
                provider=self.provider_id,
                status_code=e.status_code,
            ) from e
        except anthropic.APIError as e:
            raise ProviderRequestFailed(
                f"{self.display_name} request failed: {e}",
                provider=self.provider_id,
            ) from e

        self._logger.debug(
            "provider_response",
            stop_reason=response.stop_reason,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        return response.model_dump()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
        self._client = None
        self._client_key = None
