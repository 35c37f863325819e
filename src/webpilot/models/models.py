import logging
import os
import warnings
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from webpilot.models.adapters.factory import ProviderAdapterFactory
from webpilot.models.response_models import HarmonizedResponse

logger = logging.getLogger(__name__)


PROVIDER_BASE_URLS = {
    "openai": "https://api.openai.com/v1/",
    "openrouter": "https://openrouter.ai/api/v1",
    "anthropic": "https://api.anthropic.com/v1",
}

PROVIDER_API_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


class ModelConfig(BaseModel):
    """
    Pydantic schema for validating the model provider configuration.

    Reads API keys from environment variables if not provided directly.
    """

    name: str = Field(..., description="Model identifier (e.g., 'gpt-4o', 'claude-sonnet-4-5')")
    provider: Literal["openai", "openrouter", "anthropic"] = Field(
        "anthropic", description="API provider name (used to determine base_url if not set)"
    )
    base_url: Optional[str] = Field(None, description="Specific API endpoint URL (overrides provider)")
    api_key: Optional[str] = Field(None, description="API authentication key (reads from env if None)")
    max_tokens: int = Field(4096, gt=0, description="Maximum tokens per model turn")
    temperature: float = Field(0.2, ge=0.0, le=2.0, description="Sampling temperature")

    model_config = ConfigDict(extra="allow")

    @model_validator(mode="before")
    @classmethod
    def _set_base_url_from_provider(cls, data: Any) -> Any:
        """Sets base_url from PROVIDER_BASE_URLS when it is not given explicitly."""
        if not isinstance(data, dict):
            return data
        if not data.get("base_url"):
            provider = data.get("provider", "anthropic")
            data["base_url"] = PROVIDER_BASE_URLS[provider] if provider in PROVIDER_BASE_URLS else None
        return data

    @model_validator(mode="after")
    def _validate_api_key(self) -> "ModelConfig":
        """Reads the API key from the provider's environment variable if missing."""
        if self.api_key is not None:
            return self

        env_var = PROVIDER_API_KEY_ENV.get(self.provider)
        env_api_key = os.getenv(env_var) if env_var else None
        if env_api_key:
            object.__setattr__(self, "api_key", env_api_key)
            logging.debug(f"Read API key for provider '{self.provider}' from env var '{env_var}'.")
        elif env_var:
            raise ValueError(
                f"API key for provider '{self.provider}' not found. "
                f"Set the '{env_var}' environment variable or provide 'api_key' directly."
            )
        else:
            warnings.warn(
                f"No API key configured. Ensure authentication is handled by the API at '{self.base_url}'."
            )
        return self


class BaseAPIModel:
    """
    Client for tool-calling LLMs behind an HTTP API.

    Uses the adapter pattern so the agent loop only ever sees OpenAI-shaped
    messages and HarmonizedResponse objects.
    """

    def __init__(
        self,
        model_name: str,
        api_key: str,
        base_url: str,
        max_tokens: int = 4096,
        temperature: float = 0.2,
        provider: str = "anthropic",
        **kwargs,
    ) -> None:
        self.async_adapter = ProviderAdapterFactory.create_adapter(
            provider=provider,
            model_name=model_name,
            api_key=api_key,
            base_url=base_url,
            max_tokens=max_tokens,
            temperature=temperature,
            **kwargs,
        )

    @classmethod
    def from_config(cls, config: ModelConfig) -> "BaseAPIModel":
        return cls(
            model_name=config.name,
            api_key=config.api_key,
            base_url=config.base_url,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            provider=config.provider,
        )

    @property
    def provider(self) -> str:
        return self.async_adapter.provider_name

    async def arun(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        **kwargs,
    ) -> HarmonizedResponse:
        """
        Request the next assistant turn.

        Args:
            messages: A list of message dictionaries, following the OpenAI format.
            tools: Tool definitions in OpenAI function format.
            max_tokens: Overrides the default max_tokens for this call.
            temperature: Overrides the default temperature for this call.

        Returns:
            HarmonizedResponse with content and/or tool calls.

        Raises:
            ModelAPIError: The provider request failed.
            ModelResponseError: The provider answered with an unusable body.
        """
        response = await self.async_adapter.arun(
            messages=messages,
            tools=tools,
            max_tokens=max_tokens,
            temperature=temperature,
            **kwargs,
        )
        logger.debug(f"Model {self.async_adapter.model_name} response: {response}")
        return response

    async def cleanup(self):
        """Clean up async resources."""
        await self.async_adapter.cleanup()
