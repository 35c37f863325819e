import logging
import time
from typing import Any, Dict, List, Optional

from webpilot.models.adapters.base import APIProviderAdapter, AsyncBaseAPIAdapter
from webpilot.models.response_models import (
    HarmonizedResponse,
    ResponseMetadata,
    ToolCall,
    UsageInfo,
)

logger = logging.getLogger(__name__)


class OpenAIAdapter(APIProviderAdapter):
    """Adapter for OpenAI-compatible /chat/completions endpoints"""

    provider_name = "openai"

    def __init__(
        self,
        model_name: str,
        api_key: str,
        base_url: str,
        max_tokens: int = 4096,
        temperature: float = 0.2,
        **kwargs,
    ):
        super().__init__(model_name, **kwargs)
        self.api_key = api_key
        self.base_url = base_url
        self.max_tokens = max_tokens
        self.temperature = temperature

    def get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def format_request_payload(self, messages: List[Dict], **kwargs) -> Dict[str, Any]:
        cleaned_messages = []
        for msg in messages:
            cleaned_msg = msg.copy()
            if cleaned_msg.get("content") is None:
                cleaned_msg["content"] = ""
            cleaned_messages.append(cleaned_msg)

        payload = {
            "model": self.model_name,
            "messages": cleaned_messages,
            "max_tokens": kwargs.get("max_tokens") or self.max_tokens,
        }

        temperature = kwargs.get("temperature")
        payload["temperature"] = self.temperature if temperature is None else temperature

        if kwargs.get("tools"):
            payload["tools"] = kwargs["tools"]
            payload["tool_choice"] = kwargs.get("tool_choice") or "auto"

        return payload

    def get_endpoint_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/chat/completions"

    def harmonize_response(
        self, raw_response: Dict[str, Any], request_start_time: float
    ) -> HarmonizedResponse:
        choice = raw_response.get("choices", [{}])[0]
        message = choice.get("message", {})

        tool_calls = [
            ToolCall(
                id=tc.get("id", ""),
                type=tc.get("type", "function"),
                function=tc.get("function", {}),
            )
            for tc in message.get("tool_calls") or []
        ]

        usage_data = raw_response.get("usage") or {}
        usage = None
        if usage_data:
            usage = UsageInfo(
                prompt_tokens=usage_data.get("prompt_tokens"),
                completion_tokens=usage_data.get("completion_tokens"),
                total_tokens=usage_data.get("total_tokens"),
            )

        metadata = ResponseMetadata(
            provider=self.provider_name,
            model=raw_response.get("model", self.model_name),
            request_id=raw_response.get("id"),
            usage=usage,
            finish_reason=choice.get("finish_reason"),
            response_time=time.time() - request_start_time,
        )

        return HarmonizedResponse(
            role=message.get("role", "assistant"),
            content=message.get("content"),
            tool_calls=tool_calls,
            metadata=metadata,
        )


class OpenRouterAdapter(OpenAIAdapter):
    """OpenRouter speaks the same wire format, plus optional ranking headers."""

    provider_name = "openrouter"

    def __init__(
        self,
        model_name: str,
        api_key: str,
        base_url: str,
        site_url: Optional[str] = None,
        site_name: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(model_name, api_key, base_url, **kwargs)
        self.site_url = site_url
        self.site_name = site_name

    def get_headers(self) -> Dict[str, str]:
        headers = super().get_headers()
        if self.site_url:
            headers["HTTP-Referer"] = self.site_url
        if self.site_name:
            headers["X-Title"] = self.site_name
        return headers


class AsyncOpenAIAdapter(AsyncBaseAPIAdapter, OpenAIAdapter):
    """Async version of OpenAI adapter using aiohttp."""
    pass


class AsyncOpenRouterAdapter(AsyncBaseAPIAdapter, OpenRouterAdapter):
    """Async version of OpenRouter adapter using aiohttp."""
    pass
