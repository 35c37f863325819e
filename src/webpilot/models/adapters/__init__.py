from webpilot.models.adapters.anthropic import AnthropicAdapter, AsyncAnthropicAdapter
from webpilot.models.adapters.base import APIProviderAdapter, AsyncBaseAPIAdapter
from webpilot.models.adapters.factory import ProviderAdapterFactory
from webpilot.models.adapters.openai import (
    AsyncOpenAIAdapter,
    AsyncOpenRouterAdapter,
    OpenAIAdapter,
    OpenRouterAdapter,
)

__all__ = [
    "APIProviderAdapter",
    "AsyncBaseAPIAdapter",
    "OpenAIAdapter",
    "AsyncOpenAIAdapter",
    "OpenRouterAdapter",
    "AsyncOpenRouterAdapter",
    "AnthropicAdapter",
    "AsyncAnthropicAdapter",
    "ProviderAdapterFactory",
]
