import json
import logging
import time
from typing import Any, Dict, List

from webpilot.models.adapters.base import APIProviderAdapter, AsyncBaseAPIAdapter
from webpilot.models.response_models import (
    HarmonizedResponse,
    ResponseMetadata,
    ToolCall,
    UsageInfo,
)

logger = logging.getLogger(__name__)


class AnthropicAdapter(APIProviderAdapter):
    """Adapter for Anthropic Claude API"""

    provider_name = "anthropic"

    def __init__(
        self,
        model_name: str,
        api_key: str,
        base_url: str,
        max_tokens: int = 4096,
        temperature: float = 0.2,
        **kwargs,
    ):
        # OpenRouter-style ids ("anthropic/claude-...") are not valid on the direct API
        if model_name.startswith("anthropic/"):
            model_name = model_name[len("anthropic/"):]

        super().__init__(model_name, **kwargs)
        self.api_key = api_key
        self.base_url = base_url
        self.max_tokens = max_tokens
        self.temperature = temperature

    def get_headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "Content-Type": "application/json",
            "anthropic-version": "2023-06-01",
        }

    def _convert_content_to_anthropic_format(self, content: Any) -> Any:
        """
        Convert OpenAI-style image parts to Anthropic image blocks.

        ``{"type": "image_url", "image_url": {"url": "data:image/png;base64,..."}}`` becomes
        ``{"type": "image", "source": {"type": "base64", "media_type": "image/png", "data": "..."}}``.
        Non-data URLs are dropped.
        """
        if not isinstance(content, list):
            return content

        converted_content = []
        for part in content:
            if not isinstance(part, dict) or part.get("type") != "image_url":
                converted_content.append(part)
                continue

            image_url = part.get("image_url", {}).get("url", "")
            if not image_url.startswith("data:") or "," not in image_url:
                logger.debug("Skipping non-inline image for Anthropic request")
                continue

            header, base64_data = image_url.split(",", 1)
            media_type = header.split(";")[0].replace("data:", "")
            converted_content.append({
                "type": "image",
                "source": {"type": "base64", "media_type": media_type, "data": base64_data},
            })

        return converted_content

    def format_request_payload(self, messages: List[Dict], **kwargs) -> Dict[str, Any]:
        system_message = None
        converted: List[Dict[str, Any]] = []

        for msg in messages:
            role = msg.get("role")
            if role == "system":
                system_message = msg.get("content")
            elif role == "tool":
                block = {
                    "type": "tool_result",
                    "tool_use_id": msg.get("tool_call_id"),
                    "content": self._convert_content_to_anthropic_format(msg.get("content") or ""),
                }
                # Consecutive tool results belong in one user turn
                if converted and converted[-1]["role"] == "user" and isinstance(converted[-1]["content"], list) \
                        and converted[-1]["content"] and converted[-1]["content"][0].get("type") == "tool_result":
                    converted[-1]["content"].append(block)
                else:
                    converted.append({"role": "user", "content": [block]})
            elif role == "assistant" and msg.get("tool_calls"):
                content_blocks = []
                if msg.get("content"):
                    content_blocks.append({"type": "text", "text": msg["content"]})
                for tc in msg["tool_calls"]:
                    func = tc.get("function", {})
                    args = func.get("arguments", "{}")
                    if isinstance(args, str):
                        try:
                            args = json.loads(args) if args.strip() else {}
                        except json.JSONDecodeError:
                            args = {}
                    content_blocks.append({
                        "type": "tool_use",
                        "id": tc.get("id"),
                        "name": func.get("name"),
                        "input": args,
                    })
                converted.append({"role": "assistant", "content": content_blocks})
            else:
                cleaned_msg = {"role": role, "content": msg.get("content")}
                if cleaned_msg["content"] is None:
                    cleaned_msg["content"] = ""
                else:
                    cleaned_msg["content"] = self._convert_content_to_anthropic_format(cleaned_msg["content"])
                # Screenshots that follow tool results ride in the same user turn
                if role == "user" and converted and converted[-1]["role"] == "user" \
                        and isinstance(converted[-1]["content"], list):
                    extra = cleaned_msg["content"]
                    if isinstance(extra, str):
                        extra = [{"type": "text", "text": extra}] if extra else []
                    converted[-1]["content"].extend(extra)
                    continue
                converted.append(cleaned_msg)

        payload = {
            "model": self.model_name,
            "messages": converted,
            "max_tokens": kwargs.get("max_tokens") or self.max_tokens,
        }

        temperature = kwargs.get("temperature")
        payload["temperature"] = self.temperature if temperature is None else temperature

        if system_message:
            payload["system"] = system_message

        # OpenAI function format -> Anthropic tool format
        if kwargs.get("tools"):
            anthropic_tools = []
            for tool in kwargs["tools"]:
                if tool.get("type") == "function" and "function" in tool:
                    func = tool["function"]
                    anthropic_tools.append({
                        "name": func.get("name"),
                        "description": func.get("description", ""),
                        "input_schema": func.get("parameters", {"type": "object", "properties": {}}),
                    })
                elif "name" in tool and "input_schema" in tool:
                    anthropic_tools.append(tool)
            if anthropic_tools:
                payload["tools"] = anthropic_tools

        return payload

    def get_endpoint_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/messages"

    def harmonize_response(
        self, raw_response: Dict[str, Any], request_start_time: float
    ) -> HarmonizedResponse:
        text_content = ""
        tool_calls = []

        for block in raw_response.get("content", []):
            if block.get("type") == "text":
                text_content += block.get("text", "")
            elif block.get("type") == "tool_use":
                tool_calls.append(
                    ToolCall(
                        id=block.get("id", ""),
                        type="function",
                        function={
                            "name": block.get("name", ""),
                            "arguments": block.get("input", {}),
                        },
                    )
                )

        usage_data = raw_response.get("usage") or {}
        usage = None
        if usage_data:
            usage = UsageInfo(
                prompt_tokens=usage_data.get("input_tokens"),
                completion_tokens=usage_data.get("output_tokens"),
            )

        metadata = ResponseMetadata(
            provider=self.provider_name,
            model=raw_response.get("model", self.model_name),
            request_id=raw_response.get("id"),
            usage=usage,
            finish_reason=raw_response.get("stop_reason"),
            response_time=time.time() - request_start_time,
            stop_reason=raw_response.get("stop_reason"),
        )

        return HarmonizedResponse(
            role=raw_response.get("role", "assistant"),
            content=text_content or None,
            tool_calls=tool_calls,
            metadata=metadata,
        )


class AsyncAnthropicAdapter(AsyncBaseAPIAdapter, AnthropicAdapter):
    """Async version of Anthropic adapter using aiohttp."""
    pass
