"""Adapters for services that speak the OpenAI chat-completions protocol.

DeepSeek, OpenAI, OpenRouter and Qwen (DashScope compatible mode) share the
same envelope: ``messages`` in, ``choices[0].message.content`` out, with a
``Authorization: Bearer`` header. They differ only in endpoint and model.
"""

import json
from typing import Any

import httpx
import structlog

from deepticker.errors import ProviderRequestFailed, ResponseParseFailed
from deepticker.insights.providers.base import InsightProvider

logger = structlog.get_logger(__name__)


class OpenAICompatibleProvider(InsightProvider):
    """Chat-completions adapter over httpx.

    Example:
        provider = OpenAICompatibleProvider(
            "deepseek", "DeepSeek", "https://api.deepseek.com/v1/chat/completions", "deepseek-chat"
        )
        body = provider.build_request("Summarize my portfolio", system="Reply in JSON")
        payload = await provider.send(body, api_key)
        text = provider.parse_response(payload)
    """

    def __init__(
        self,
        provider_id: str,
        display_name: str,
        endpoint: str,
        model: str,
        *,
        timeout: float = 60.0,
        extra_headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.provider_id = provider_id
        self.display_name = display_name
        self.endpoint = endpoint
        self.model = model
        self._timeout = timeout
        self._extra_headers = dict(extra_headers or {})
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._logger = logger.bind(provider=provider_id)

    def build_request(
        self,
        prompt: str,
        *,
        system: str = "",
        temperature: float = 0.3,
        max_tokens: int = 800,
    ) -> dict[str, Any]:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        return {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

    def parse_response(self, payload: dict[str, Any]) -> str:
        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ResponseParseFailed(
                "Response envelope has no message content",
                provider=self.provider_id,
                raw_text=json.dumps(payload),
            ) from e
        if not isinstance(content, str) or not content.strip():
            raise ResponseParseFailed(
                "Response message content is empty",
                provider=self.provider_id,
                raw_text=json.dumps(payload),
            )
        return content

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def send(self, body: dict[str, Any], api_key: str) -> dict[str, Any]:
        client = await self._get_client()
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            **self._extra_headers,
        }

        self._logger.debug("provider_request", endpoint=self.endpoint, model=self.model)
        try:
            response = await client.post(self.endpoint, json=body, headers=headers)
        except httpx.TimeoutException as e:
            raise ProviderRequestFailed(
                f"{self.display_name} request timed out after {self._timeout:.0f}s",
                provider=self.provider_id,
            ) from e
        except httpx.HTTPError as e:
            raise ProviderRequestFailed(
                f"{self.display_name} request failed: {e}",
                provider=self.provider_id,
            ) from e

        if response.status_code >= 400:
            self._logger.warning("provider_http_error", status=response.status_code)
            raise ProviderRequestFailed(
                f"{self.display_name} returned HTTP {response.status_code}: {response.text[:200]}",
                provider=self.provider_id,
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ResponseParseFailed(
                f"{self.display_name} response is not JSON",
                provider=self.provider_id,
                raw_text=response.text,
            ) from e
        if not isinstance(payload, dict):
            raise ResponseParseFailed(
                f"{self.display_name} response is not a JSON object",
                provider=self.provider_id,
                raw_text=response.text,
            )
        return payload

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


def deepseek_provider(**kwargs: Any) -> OpenAICompatibleProvider:
    return OpenAICompatibleProvider(
        "deepseek",
        "DeepSeek",
        "https://api.deepseek.com/v1/chat/completions",
        "deepseek-chat",
        **kwargs,
    )


def openai_provider(**kwargs: Any) -> OpenAICompatibleProvider:
    return OpenAICompatibleProvider(
        "openai",
        "OpenAI",
        "https://api.openai.com/v1/chat/completions",
        "gpt-4o-mini",
        **kwargs,
    )


def openrouter_provider(**kwargs: Any) -> OpenAICompatibleProvider:
    kwargs.setdefault("extra_headers", {"X-Title": "DeepTicker"})
    return OpenAICompatibleProvider(
        "openrouter",
        "OpenRouter",
        "https://openrouter.ai/api/v1/chat/completions",
        "deepseek/deepseek-chat",
        **kwargs,
    )


def qwen_provider(**kwargs: Any) -> OpenAICompatibleProvider:
    return OpenAICompatibleProvider(
        "qwen",
        "Qwen",
        "https://dashscope-intl.aliyuncs.com/compatible-mode/v1/chat/completions",
        "qwen-plus",
        **kwargs,
    )
