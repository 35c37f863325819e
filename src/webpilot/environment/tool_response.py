"""Structured result of a single browser tool call."""

import json
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from webpilot.agents.exceptions import WebPilotError
from webpilot.agents.utils import truncate_text
from webpilot.environment.page_models import Viewport


class ToolResult(BaseModel):
    """
    Outcome of executing one tool call.

    A failed action is data, not an exception: the result is serialized and handed
    back to the model as ordinary tool output so it can pick another strategy.
    Every result carries the post-action URL and viewport so the model can ground
    its next decision without a separate catalog round-trip.

    Examples:
        ToolResult(success=True, data={"strategy": "direct"}, page_url_after="https://a.b/")

        ToolResult.from_error(ElementResolutionError("No element matches '#go'", selector="#go"))
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    data: Optional[Union[str, Dict[str, Any], List[Any]]] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    attempts: List[str] = Field(default_factory=list)
    page_url_after: Optional[str] = None
    viewport_after: Optional[Viewport] = None
    # Base64 PNG data URL
    screenshot: Optional[str] = None

    @classmethod
    def from_error(cls, error: Exception, **kwargs) -> "ToolResult":
        """Convert an exception raised while executing an action into a failed result."""
        if isinstance(error, WebPilotError):
            attempts = getattr(error, "attempts", None) or []
            return cls(
                success=False,
                error=error.developer_message,
                error_kind=error.error_kind,
                attempts=kwargs.pop("attempts", attempts),
                data=kwargs.pop("data", None) or (
                    {"suggestion": error.suggestion} if error.suggestion else None
                ),
                **kwargs,
            )
        return cls(success=False, error=f"{type(error).__name__}: {error}", error_kind="error", **kwargs)

    @classmethod
    def failure(cls, error: str, error_kind: str, **kwargs) -> "ToolResult":
        return cls(success=False, error=error, error_kind=error_kind, **kwargs)

    def with_page_state(self, url: Optional[str], viewport: Optional[Viewport]) -> "ToolResult":
        return self.model_copy(update={"page_url_after": url, "viewport_after": viewport})

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)

    def to_content(self, char_limit: Optional[int] = None) -> str:
        """
        Text shown to the model in the tool message.

        The screenshot is left out; it travels as a separate image block.
        """
        payload = self.model_dump(
            by_alias=True, mode="json", exclude_none=True, exclude={"screenshot"}
        )
        if self.screenshot:
            payload["screenshot"] = "attached"
        text = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
        if char_limit:
            text = truncate_text(text, char_limit)
        return text

    def has_images(self) -> bool:
        return bool(self.screenshot)
