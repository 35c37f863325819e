"""Factory for creating async provider adapters."""

from webpilot.models.adapters.anthropic import AsyncAnthropicAdapter
from webpilot.models.adapters.base import AsyncBaseAPIAdapter
from webpilot.models.adapters.openai import AsyncOpenAIAdapter, AsyncOpenRouterAdapter


class ProviderAdapterFactory:
    """Factory to create the right adapter based on provider"""

    adapters = {
        "openai": AsyncOpenAIAdapter,
        "openrouter": AsyncOpenRouterAdapter,
        "anthropic": AsyncAnthropicAdapter,
    }

    @classmethod
    def create_adapter(
        cls, provider: str, model_name: str, api_key: str, base_url: str, **kwargs
    ) -> AsyncBaseAPIAdapter:
        # Unknown providers are assumed to be OpenAI-compatible
        adapter_class = cls.adapters.get(provider, AsyncOpenAIAdapter)
        return adapter_class(model_name, api_key, base_url, **kwargs)
