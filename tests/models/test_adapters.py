"""
Tests for the provider adapters: request formatting from OpenAI-shaped messages,
response harmonization, error classification and retries.

No network access: the aiohttp session is replaced with a scripted stand-in.
"""

import json

import pytest

from webpilot.agents.exceptions import ModelAPIError, ModelResponseError
from webpilot.models.adapters.anthropic import AnthropicAdapter, AsyncAnthropicAdapter
from webpilot.models.adapters.factory import ProviderAdapterFactory
from webpilot.models.adapters.openai import (
    AsyncOpenAIAdapter,
    AsyncOpenRouterAdapter,
    OpenAIAdapter,
    OpenRouterAdapter,
)
from webpilot.models.models import BaseAPIModel, ModelConfig

IMAGE_URL = "data:image/png;base64,iVBORw0KGgo="

TOOLS = [{
    "type": "function",
    "function": {
        "name": "click_element",
        "description": "Click an element",
        "parameters": {"type": "object", "properties": {"selector": {"type": "string"}}},
    },
}]


def conversation():
    return [
        {"role": "system", "content": "You drive a browser."},
        {"role": "user", "content": "Accept the cookies"},
        {
            "role": "assistant",
            "content": "Closing the banner.",
            "tool_calls": [
                {"id": "c1", "type": "function",
                 "function": {"name": "click_element", "arguments": '{"selector": "#accept"}'}},
                {"id": "c2", "type": "function", "function": {"name": "screenshot", "arguments": ""}},
            ],
        },
        {"role": "tool", "tool_call_id": "c1", "name": "click_element", "content": '{"success":true}'},
        {"role": "tool", "tool_call_id": "c2", "name": "screenshot", "content": '{"success":true}'},
        {"role": "user", "content": [
            {"type": "text", "text": "Screenshot for tool call c2:"},
            {"type": "image_url", "image_url": {"url": IMAGE_URL}},
        ]},
    ]


# =============================================================================
# Anthropic
# =============================================================================

class TestAnthropicAdapter:

    @pytest.fixture
    def adapter(self):
        return AnthropicAdapter("claude-sonnet-4-5", api_key="key", base_url="https://api.anthropic.com/v1")

    def test_system_prompt_and_tools(self, adapter):
        payload = adapter.format_request_payload(conversation(), tools=TOOLS, max_tokens=512)

        assert payload["system"] == "You drive a browser."
        assert payload["max_tokens"] == 512
        assert payload["temperature"] == 0.2
        assert payload["tools"] == [{
            "name": "click_element",
            "description": "Click an element",
            "input_schema": TOOLS[0]["function"]["parameters"],
        }]

    def test_tool_calls_become_tool_use_blocks(self, adapter):
        payload = adapter.format_request_payload(conversation())
        assistant = payload["messages"][1]

        assert assistant["role"] == "assistant"
        assert assistant["content"][0] == {"type": "text", "text": "Closing the banner."}
        assert assistant["content"][1]["input"] == {"selector": "#accept"}
        assert assistant["content"][2]["input"] == {}

    def test_tool_results_and_screenshot_share_one_user_turn(self, adapter):
        payload = adapter.format_request_payload(conversation())

        assert [m["role"] for m in payload["messages"]] == ["user", "assistant", "user"]
        blocks = payload["messages"][2]["content"]
        assert [b["type"] for b in blocks] == ["tool_result", "tool_result", "text", "image"]
        assert blocks[0]["tool_use_id"] == "c1"
        assert blocks[3]["source"] == {"type": "base64", "media_type": "image/png", "data": "iVBORw0KGgo="}

    def test_remote_images_dropped(self, adapter):
        content = [{"type": "image_url", "image_url": {"url": "https://example.com/a.png"}}]
        assert adapter._convert_content_to_anthropic_format(content) == []

    def test_openrouter_style_model_id(self):
        adapter = AnthropicAdapter("anthropic/claude-sonnet-4-5", api_key="k", base_url="https://x/v1/")
        assert adapter.model_name == "claude-sonnet-4-5"
        assert adapter.get_endpoint_url() == "https://x/v1/messages"

    def test_harmonize_tool_use(self, adapter):
        raw = {
            "id": "msg_1",
            "model": "claude-sonnet-4-5",
            "role": "assistant",
            "content": [
                {"type": "text", "text": "Clicking."},
                {"type": "tool_use", "id": "tu_1", "name": "click_element", "input": {"selector": "#accept"}},
            ],
            "stop_reason": "tool_use",
            "usage": {"input_tokens": 100, "output_tokens": 20},
        }

        response = adapter.harmonize_response(raw, 0.0)

        assert response.content == "Clicking."
        assert response.tool_calls[0].name == "click_element"
        assert response.tool_calls[0].parsed_arguments() == {"selector": "#accept"}
        assert response.metadata.usage.total_tokens == 120
        assert response.metadata.stop_reason == "tool_use"


# =============================================================================
# OpenAI / OpenRouter
# =============================================================================

class TestOpenAIAdapter:

    @pytest.fixture
    def adapter(self):
        return OpenAIAdapter("gpt-4o", api_key="key", base_url="https://api.openai.com/v1/")

    def test_payload(self, adapter):
        messages = conversation()
        payload = adapter.format_request_payload(messages, tools=TOOLS, temperature=0.0)

        assert payload["tools"] == TOOLS
        assert payload["tool_choice"] == "auto"
        assert payload["temperature"] == 0.0
        assert len(payload["messages"]) == len(messages)
        assert adapter.get_endpoint_url() == "https://api.openai.com/v1/chat/completions"

    def test_null_content_becomes_empty(self, adapter):
        messages = [{"role": "assistant", "content": None, "tool_calls": []}]

        payload = adapter.format_request_payload(messages)

        assert payload["messages"][0]["content"] == ""
        assert messages[0]["content"] is None

    def test_harmonize(self, adapter):
        raw = {
            "id": "chatcmpl-1",
            "model": "gpt-4o",
            "choices": [{
                "message": {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [{"id": "c1", "type": "function",
                                    "function": {"name": "scroll", "arguments": '{"direction": "down"}'}}],
                },
                "finish_reason": "tool_calls",
            }],
            "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
        }

        response = adapter.harmonize_response(raw, 0.0)

        assert response.has_tool_calls()
        assert response.tool_calls[0].parsed_arguments() == {"direction": "down"}
        assert response.metadata.finish_reason == "tool_calls"

    def test_openrouter_headers(self):
        adapter = OpenRouterAdapter("x/y", api_key="k", base_url="https://openrouter.ai/api/v1",
                                    site_url="https://webpilot.dev", site_name="webpilot")
        headers = adapter.get_headers()
        assert headers["Authorization"] == "Bearer k"
        assert headers["HTTP-Referer"] == "https://webpilot.dev"
        assert headers["X-Title"] == "webpilot"


# =============================================================================
# Factory and model config
# =============================================================================

class TestFactoryAndConfig:

    @pytest.mark.parametrize("provider,cls", [
        ("anthropic", AsyncAnthropicAdapter),
        ("openai", AsyncOpenAIAdapter),
        ("openrouter", AsyncOpenRouterAdapter),
        ("local-gateway", AsyncOpenAIAdapter),
    ])
    def test_factory(self, provider, cls):
        adapter = ProviderAdapterFactory.create_adapter(provider, "m", "k", "https://x/v1")
        assert isinstance(adapter, cls)

    def test_config_reads_env_key(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "from-env")

        config = ModelConfig(name="claude-sonnet-4-5")

        assert config.api_key == "from-env"
        assert config.base_url == "https://api.anthropic.com/v1"

    def test_config_missing_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ValueError, match="OPENAI_API_KEY"):
            ModelConfig(name="gpt-4o", provider="openai")

    def test_model_from_config(self):
        model = BaseAPIModel.from_config(ModelConfig(name="gpt-4o", provider="openai", api_key="k"))
        assert model.provider == "openai"
        assert model.async_adapter.model_name == "gpt-4o"


# =============================================================================
# Async request path
# =============================================================================

class FakeResponse:
    def __init__(self, status, body, headers=None):
        self.status = status
        self._body = body
        self.headers = headers or {}

    async def json(self, content_type=None):
        return self._body

    async def text(self):
        return json.dumps(self._body)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.posts = []
        self.closed = False

    def post(self, url, headers=None, json=None, timeout=None):
        self.posts.append({"url": url, "headers": headers, "json": json})
        return self.responses.pop(0)

    async def close(self):
        self.closed = True


OPENAI_OK = {
    "model": "gpt-4o",
    "choices": [{"message": {"role": "assistant", "content": "Done."}, "finish_reason": "stop"}],
}


class TestAsyncRequests:

    def make_adapter(self, responses):
        adapter = AsyncOpenAIAdapter("gpt-4o", api_key="k", base_url="https://api.openai.com/v1")
        adapter.base_delay = 0
        adapter._session = FakeSession(responses)
        return adapter

    @pytest.mark.asyncio
    async def test_success(self):
        adapter = self.make_adapter([FakeResponse(200, OPENAI_OK)])

        response = await adapter.arun([{"role": "user", "content": "hi"}], tools=TOOLS)

        assert response.content == "Done."
        assert adapter._session.posts[0]["json"]["tools"] == TOOLS

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        adapter = self.make_adapter([
            FakeResponse(503, {"error": {"message": "overloaded"}}),
            FakeResponse(200, OPENAI_OK),
        ])

        response = await adapter.arun([{"role": "user", "content": "hi"}])

        assert response.content == "Done."
        assert len(adapter._session.posts) == 2

    @pytest.mark.asyncio
    async def test_auth_error_is_classified(self):
        adapter = self.make_adapter([FakeResponse(401, {"error": {"message": "bad key"}})])

        with pytest.raises(ModelAPIError) as exc_info:
            await adapter.arun([{"role": "user", "content": "hi"}])

        assert exc_info.value.classification == "authentication_failed"
        assert exc_info.value.provider == "openai"

    @pytest.mark.asyncio
    async def test_rate_limit_exhausts_retries(self):
        adapter = self.make_adapter([
            FakeResponse(429, {}, {"retry-after": "0"}) for _ in range(adapter_retries() + 1)
        ])

        with pytest.raises(ModelAPIError) as exc_info:
            await adapter.arun([{"role": "user", "content": "hi"}])

        assert exc_info.value.classification == "rate_limit"
        assert len(adapter._session.posts) == adapter_retries() + 1

    @pytest.mark.asyncio
    async def test_unusable_body(self):
        adapter = self.make_adapter([FakeResponse(200, {"choices": [{"message": {"role": "assistant"}}]})])

        with pytest.raises(ModelResponseError):
            await adapter.arun([{"role": "user", "content": "hi"}])

    @pytest.mark.asyncio
    async def test_cleanup(self):
        adapter = self.make_adapter([])
        session = adapter._session
        await adapter.cleanup()
        assert session.closed


def adapter_retries() -> int:
    return AsyncOpenAIAdapter.max_retries
