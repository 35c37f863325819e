"""
Browser actions as a closed tagged union.

Each tool the model can call is one pydantic model discriminated by ``name``.
The tool schemas handed to the model provider are generated from these models,
and incoming tool-call arguments are validated against the same schemas before
an action is built, so the two can never drift apart.
"""

import inspect
import json
import logging
from functools import lru_cache
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from webpilot.agents.exceptions import ActionValidationError
from webpilot.agents.utils import validate_data
from webpilot.environment.coordinates import GRID_SIZE

logger = logging.getLogger(__name__)

# Settle classes: how long the executor waits after an action before capturing state
SETTLE_NAVIGATION = "navigation"
SETTLE_DEFAULT = "default"
SETTLE_NONE = "none"

# Upper bound for wait_for_modal; keeps one action inside the relay's execute_action timeout
MAX_MODAL_WAIT_MS = 20000


class BaseAction(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    settle: ClassVar[str] = SETTLE_DEFAULT
    requires_dom: ClassVar[bool] = False


class NavigateAction(BaseAction):
    """Open a URL in the current tab. A missing scheme defaults to https://."""

    name: Literal["navigate"] = "navigate"
    url: str = Field(min_length=1, description="Absolute URL or bare host, e.g. 'example.com/path'")

    settle: ClassVar[str] = SETTLE_NAVIGATION

    @field_validator("url")
    @classmethod
    def add_scheme(cls, value: str) -> str:
        value = value.strip()
        if "://" not in value and not value.startswith(("about:", "data:", "file:")):
            value = "https://" + value
        return value


class GoBackAction(BaseAction):
    """Go back one entry in the tab's history."""

    name: Literal["go_back"] = "go_back"

    settle: ClassVar[str] = SETTLE_NAVIGATION


class ClickElementAction(BaseAction):
    """
    Click an element by CSS selector (from get_page_context) or by its visible text.
    Elements inside an open modal are preferred when matching by text.
    """

    name: Literal["click_element"] = "click_element"
    selector: Optional[str] = Field(None, description="CSS selector from the interactiveElements list")
    text: Optional[str] = Field(None, description="Visible text or accessible name of the element")

    requires_dom: ClassVar[bool] = True

    @model_validator(mode="after")
    def require_target(self):
        if not self.selector and not self.text:
            raise ValueError("Either 'selector' or 'text' must be provided")
        return self


class ClickAction(BaseAction):
    """Click at a point on the screenshot. Coordinates are on a 0-1000 grid in both axes."""

    name: Literal["click"] = "click"
    x: float = Field(ge=0, le=GRID_SIZE, description="Horizontal position, 0 (left) to 1000 (right)")
    y: float = Field(ge=0, le=GRID_SIZE, description="Vertical position, 0 (top) to 1000 (bottom)")


class HoverAction(BaseAction):
    """Move the pointer to a point on the 0-1000 grid without clicking."""

    name: Literal["hover"] = "hover"
    x: float = Field(ge=0, le=GRID_SIZE, description="Horizontal position, 0 (left) to 1000 (right)")
    y: float = Field(ge=0, le=GRID_SIZE, description="Vertical position, 0 (top) to 1000 (bottom)")


class TypeAction(BaseAction):
    """
    Type text into an input. With a selector the element is focused (and cleared
    unless clear is false) first; without one the text goes to the focused element.
    """

    name: Literal["type"] = "type"
    text: str = Field(description="Text to enter")
    selector: Optional[str] = Field(None, description="CSS selector of the input to fill")
    clear: bool = Field(True, description="Clear the existing value before typing")
    submit: bool = Field(False, description="Press Enter after typing")


class ScrollAction(BaseAction):
    """Scroll the page's main scrollable area."""

    name: Literal["scroll"] = "scroll"
    direction: Literal["up", "down"]
    amount: int = Field(500, gt=0, le=10000, description="Distance in pixels")


class PressKeyAction(BaseAction):
    """Press a key or chord on the focused element, e.g. 'Enter', 'Escape', 'Control+A'."""

    name: Literal["press_key"] = "press_key"
    key: str = Field(min_length=1)


class GetPageContextAction(BaseAction):
    """
    Describe the current page: URL, title, text, links, forms, search inputs, ranked
    interactive elements with selectors, and any open modals.
    """

    name: Literal["get_page_context"] = "get_page_context"

    settle: ClassVar[str] = SETTLE_NONE


class ScreenshotAction(BaseAction):
    """Capture the visible viewport as an image."""

    name: Literal["screenshot"] = "screenshot"

    settle: ClassVar[str] = SETTLE_NONE


class WaitForModalAction(BaseAction):
    """Wait until a modal or dialog becomes visible, up to the timeout."""

    name: Literal["wait_for_modal"] = "wait_for_modal"
    timeout: int = Field(5000, ge=0, le=MAX_MODAL_WAIT_MS, description="Maximum wait in milliseconds")

    settle: ClassVar[str] = SETTLE_NONE


class CloseModalAction(BaseAction):
    """Close the topmost visible modal (close button, Escape, backdrop click, then native close)."""

    name: Literal["close_modal"] = "close_modal"


ACTION_CLASSES: List[Type[BaseAction]] = [
    NavigateAction,
    GoBackAction,
    ClickElementAction,
    ClickAction,
    HoverAction,
    TypeAction,
    ScrollAction,
    PressKeyAction,
    GetPageContextAction,
    ScreenshotAction,
    WaitForModalAction,
    CloseModalAction,
]

Action = Annotated[
    Union[
        NavigateAction,
        GoBackAction,
        ClickElementAction,
        ClickAction,
        HoverAction,
        TypeAction,
        ScrollAction,
        PressKeyAction,
        GetPageContextAction,
        ScreenshotAction,
        WaitForModalAction,
        CloseModalAction,
    ],
    Field(discriminator="name"),
]

ACTION_TYPES: Dict[str, Type[BaseAction]] = {
    cls.model_fields["name"].default: cls for cls in ACTION_CLASSES
}


# =============================================================================
# Tool schemas
# =============================================================================

def _clean_schema(node: Any) -> Any:
    """Drop pydantic titles and collapse ``Optional[X]`` into plain ``X``."""
    if isinstance(node, list):
        return [_clean_schema(item) for item in node]
    if not isinstance(node, dict):
        return node

    cleaned = {}
    for key, value in node.items():
        if key == "title":
            continue
        cleaned[key] = _clean_schema(value)

    variants = cleaned.get("anyOf")
    if variants:
        non_null = [v for v in variants if v.get("type") != "null"]
        if len(non_null) == 1 and len(non_null) < len(variants):
            cleaned.pop("anyOf")
            cleaned.update(non_null[0])
    return cleaned


@lru_cache(maxsize=None)
def parameters_schema(name: str) -> Dict[str, Any]:
    cls = ACTION_TYPES[name]
    schema = _clean_schema(cls.model_json_schema())
    schema.get("properties", {}).pop("name", None)
    if "required" in schema:
        schema["required"] = [field for field in schema["required"] if field != "name"]
        if not schema["required"]:
            schema.pop("required")
    schema.setdefault("properties", {})
    return schema


def tool_schemas(names: Optional[List[str]] = None) -> List[Dict[str, Any]]:
    """
    Tool definitions in OpenAI function format.

    Args:
        names: Restrict the list to these tools (all tools when None).
    """
    tools = []
    for tool_name, cls in ACTION_TYPES.items():
        if names is not None and tool_name not in names:
            continue
        tools.append({
            "type": "function",
            "function": {
                "name": tool_name,
                "description": inspect.cleandoc(cls.__doc__ or tool_name),
                # Copy so adapters can reshape without touching the cached schema
                "parameters": json.loads(json.dumps(parameters_schema(tool_name))),
            },
        })
    return tools


def parse_action(name: str, arguments: Union[str, Dict[str, Any], None]) -> BaseAction:
    """
    Build an action from a model tool call.

    Raises:
        ActionValidationError: Unknown tool, malformed JSON, or arguments that fail the schema.
    """
    cls = ACTION_TYPES.get(name)
    if cls is None:
        raise ActionValidationError(
            f"Unknown tool '{name}'",
            valid_actions=list(ACTION_TYPES),
            arguments=arguments,
        )

    if arguments is None or arguments == "":
        arguments = {}
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments)
        except json.JSONDecodeError as e:
            raise ActionValidationError(
                f"Arguments for '{name}' are not valid JSON: {e}", arguments=arguments, action=name
            ) from e
    if not isinstance(arguments, dict):
        raise ActionValidationError(
            f"Arguments for '{name}' must be a JSON object", arguments=arguments, action=name
        )

    # Models often send explicit nulls for optional arguments
    arguments = {
        key: value for key, value in arguments.items() if key != "name" and value is not None
    }
    is_valid, error_msg = validate_data(arguments, parameters_schema(name))
    if not is_valid:
        raise ActionValidationError(f"Invalid arguments for '{name}': {error_msg}", arguments=arguments, action=name)

    try:
        return cls.model_validate({**arguments, "name": name})
    except ValidationError as e:
        messages = "; ".join(err["msg"] for err in e.errors())
        raise ActionValidationError(
            f"Invalid arguments for '{name}': {messages}", arguments=arguments, action=name
        ) from e
