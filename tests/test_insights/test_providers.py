"""Tests for the provider adapters and registry."""

import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import pytest

from deepticker.errors import ProviderRequestFailed, ResponseParseFailed, UnknownProviderError
from deepticker.insights.providers.claude import ClaudeProvider
from deepticker.insights.providers.openai_compatible import (
    OpenAICompatibleProvider,
    deepseek_provider,
    openrouter_provider,
)
from deepticker.insights.providers.registry import ProviderRegistry, default_registry


def chat_payload(content: str) -> dict[str, Any]:
    return {"choices": [{"index": 0, "message": {"role": "assistant", "content": content}}]}


class TestOpenAICompatibleProvider:
    """Tests for the chat-completions adapter."""

    def test_build_request(self) -> None:
        """Test the request envelope."""
        provider = deepseek_provider()
        body = provider.build_request("hello", system="be json", temperature=0.4, max_tokens=800)

        assert body["model"] == "deepseek-chat"
        assert body["messages"] == [
            {"role": "system", "content": "be json"},
            {"role": "user", "content": "hello"},
        ]
        assert body["temperature"] == 0.4
        assert body["max_tokens"] == 800

    def test_parse_response(self) -> None:
        """Test reply text is read from the first choice."""
        provider = deepseek_provider()
        assert provider.parse_response(chat_payload('{"a": 1}')) == '{"a": 1}'

    def test_parse_response_missing_content(self) -> None:
        """Test envelopes without content raise with the payload preserved."""
        provider = deepseek_provider()
        with pytest.raises(ResponseParseFailed) as exc_info:
            provider.parse_response({"choices": []})
        assert json.loads(exc_info.value.raw_text) == {"choices": []}

    @pytest.mark.asyncio
    async def test_send_uses_bearer_auth(self) -> None:
        """Test the key is sent as a bearer token to the endpoint."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=chat_payload("ok"))

        provider = openrouter_provider(transport=httpx.MockTransport(handler))
        payload = await provider.send(provider.build_request("hi"), "sk-test")
        await provider.close()

        assert payload == chat_payload("ok")
        assert str(seen[0].url) == "https://openrouter.ai/api/v1/chat/completions"
        assert seen[0].headers["Authorization"] == "Bearer sk-test"
        assert seen[0].headers["X-Title"] == "DeepTicker"

    @pytest.mark.asyncio
    async def test_http_error(self) -> None:
        """Test HTTP errors become ProviderRequestFailed with the status."""
        transport = httpx.MockTransport(lambda r: httpx.Response(401, json={"error": "bad key"}))
        provider = deepseek_provider(transport=transport)

        with pytest.raises(ProviderRequestFailed) as exc_info:
            await provider.send(provider.build_request("hi"), "sk-test")
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        """Test timeouts become ProviderRequestFailed."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        provider = deepseek_provider(transport=httpx.MockTransport(handler))
        with pytest.raises(ProviderRequestFailed, match="timed out"):
            await provider.send(provider.build_request("hi"), "sk-test")

    @pytest.mark.asyncio
    async def test_non_json_body(self) -> None:
        """Test non-JSON bodies raise ResponseParseFailed with the text kept."""
        transport = httpx.MockTransport(lambda r: httpx.Response(200, text="<html>oops</html>"))
        provider = OpenAICompatibleProvider("x", "X", "https://example.test/v1", "m", transport=transport)

        with pytest.raises(ResponseParseFailed) as exc_info:
            await provider.send(provider.build_request("hi"), "sk-test")
        assert exc_info.value.raw_text == "<html>oops</html>"


class TestClaudeProvider:
    """Tests for the Claude adapter."""

    def test_build_request(self) -> None:
        """Test the Messages API envelope."""
        provider = ClaudeProvider()
        body = provider.build_request("hello", system="be json", max_tokens=500)

        assert body["system"] == "be json"
        assert body["messages"] == [{"role": "user", "content": "hello"}]
        assert body["max_tokens"] == 500

    def test_parse_response_joins_text_blocks(self) -> None:
        """Test text blocks are concatenated."""
        provider = ClaudeProvider()
        payload = {"content": [{"type": "text", "text": '{"a":'}, {"type": "text", "text": " 1}"}]}
        assert provider.parse_response(payload) == '{"a": 1}'

    def test_parse_response_without_text(self) -> None:
        """Test envelopes without text raise."""
        with pytest.raises(ResponseParseFailed):
            ClaudeProvider().parse_response({"content": []})

    @pytest.mark.asyncio
    async def test_send(self) -> None:
        """Test send calls the SDK with the request body and the stored key."""
        response = MagicMock()
        response.stop_reason = "end_turn"
        response.usage.input_tokens = 10
        response.usage.output_tokens = 5
        response.model_dump.return_value = {"content": [{"type": "text", "text": "ok"}]}
        client = MagicMock()
        client.messages.create = AsyncMock(return_value=response)
        factory = MagicMock(return_value=client)

        provider = ClaudeProvider(client_factory=factory)
        body = provider.build_request("hi")
        payload = await provider.send(body, "sk-ant")

        factory.assert_called_once_with("sk-ant")
        client.messages.create.assert_awaited_once_with(**body)
        assert provider.parse_response(payload) == "ok"

    @pytest.mark.asyncio
    async def test_key_change_closes_previous_client(self) -> None:
        """Test a new key replaces the client and closes the old one."""
        response = MagicMock()
        response.model_dump.return_value = {"content": [{"type": "text", "text": "ok"}]}
        clients: list[MagicMock] = []

        def factory(api_key: str) -> MagicMock:
            client = MagicMock()
            client.messages.create = AsyncMock(return_value=response)
            client.close = AsyncMock()
            clients.append(client)
            return client

        provider = ClaudeProvider(client_factory=factory)
        body = provider.build_request("hi")
        await provider.send(body, "sk-ant-1")
        await provider.send(body, "sk-ant-1")
        assert len(clients) == 1

        await provider.send(body, "sk-ant-2")
        assert len(clients) == 2
        clients[0].close.assert_awaited_once()
        clients[1].close.assert_not_awaited()

        await provider.close()
        clients[1].close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_send_status_error(self) -> None:
        """Test SDK status errors become ProviderRequestFailed."""
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        error = anthropic.APIStatusError(
            "overloaded",
            response=httpx.Response(529, request=request),
            body=None,
        )
        client = MagicMock()
        client.messages.create = AsyncMock(side_effect=error)

        provider = ClaudeProvider(client_factory=lambda key: client)
        with pytest.raises(ProviderRequestFailed) as exc_info:
            await provider.send(provider.build_request("hi"), "sk-ant")
        assert exc_info.value.status_code == 529


class TestProviderRegistry:
    """Tests for ProviderRegistry."""

    def test_default_registry(self) -> None:
        """Test every built-in provider is registered, default first."""
        registry = default_registry()
        assert registry.list_ids() == ["deepseek", "openai", "openrouter", "qwen", "anthropic"]
        assert len(registry) == 5

    def test_resolve_unknown(self) -> None:
        """Test unknown ids raise."""
        with pytest.raises(UnknownProviderError):
            ProviderRegistry().resolve("nope")

    def test_register_replaces(self) -> None:
        """Test registering the same id replaces the adapter."""
        registry = ProviderRegistry()
        first = deepseek_provider()
        second = deepseek_provider(timeout=5)
        registry.register(first)
        registry.register(second)
        assert registry.resolve("deepseek") is second
        assert len(registry) == 1
