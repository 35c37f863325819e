"""
Pydantic models for harmonized API responses.
Provides validation and structure for all provider responses.
"""

import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ToolCall(BaseModel):
    """Represents a tool/function call."""
    id: str
    type: str = "function"
    function: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("function")
    @classmethod
    def validate_function(cls, v):
        """Ensure function has required fields."""
        if "name" not in v:
            raise ValueError("Function must have 'name' field")
        if "arguments" not in v:
            v["arguments"] = {}
        return v

    @property
    def name(self) -> str:
        return self.function["name"]

    def parsed_arguments(self) -> Any:
        """Arguments as a Python object; providers send either a JSON string or a dict."""
        arguments = self.function.get("arguments") or {}
        if isinstance(arguments, str):
            return json.loads(arguments) if arguments.strip() else {}
        return arguments


class UsageInfo(BaseModel):
    """Token usage information."""
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None

    @model_validator(mode="after")
    def calculate_total(self):
        """Calculate total tokens if not provided."""
        if self.total_tokens is None:
            self.total_tokens = (self.prompt_tokens or 0) + (self.completion_tokens or 0)
        return self


class ResponseMetadata(BaseModel):
    """Metadata about the API response."""
    provider: str
    model: str
    request_id: Optional[str] = None
    usage: Optional[UsageInfo] = None
    finish_reason: Optional[str] = None
    response_time: Optional[float] = None

    # Anthropic
    stop_reason: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class HarmonizedResponse(BaseModel):
    """
    Standardized response format for all API providers.
    This is the single format that all adapters must return.
    """
    role: str = "assistant"
    content: Optional[str] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)
    metadata: ResponseMetadata

    model_config = ConfigDict(extra="allow")

    @field_validator("role")
    @classmethod
    def validate_role(cls, v):
        valid_roles = ["assistant", "user", "system", "tool"]
        if v not in valid_roles:
            raise ValueError(f"Role must be one of {valid_roles}, got {v}")
        return v

    @model_validator(mode="after")
    def validate_content_or_tool_calls(self):
        """Ensure we have either content or tool_calls."""
        if not self.content and not self.tool_calls:
            raise ValueError("Response must have either content or tool_calls")
        return self

    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0

