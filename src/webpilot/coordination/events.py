"""
Progress event definitions for the coordination system.

Events are one-way notifications from the coordinator to the chat interface.
They cross the relay as plain dicts, so every event can be flattened with
``to_dict`` and rebuilt with ``event_from_dict``.
"""

import time
import uuid
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Literal, Optional, Type


@dataclass
class StatusEvent:
    """Base class for all status events."""
    session_id: str
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()), kw_only=True)
    timestamp: float = field(default_factory=time.time, kw_only=True)
    metadata: Dict[str, Any] = field(default_factory=dict, kw_only=True)

    @property
    def event_type(self) -> str:
        """Get event type for filtering."""
        return self.__class__.__name__.replace("Event", "").lower()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event"] = type(self).__name__
        return data


@dataclass
class LoopStateEvent(StatusEvent):
    """Control loop moved to a new state."""
    state: str
    turn: int = 0


@dataclass
class AssistantMessageEvent(StatusEvent):
    """Text the model produced in a turn (may accompany tool calls)."""
    text: str
    turn: int = 0


@dataclass
class ToolCallEvent(StatusEvent):
    """Tool being called."""
    tool_name: str
    status: Literal["started", "completed", "failed"]
    turn: int = 0
    duration: Optional[float] = None
    arguments: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


@dataclass
class FinalResponseEvent(StatusEvent):
    """Loop finished; carries the outcome."""
    final_response: str
    state: str
    reason: str
    total_duration: float
    total_turns: int
    success: bool


@dataclass
class CriticalErrorEvent(StatusEvent):
    """Event for errors that ended a run and need the user's attention."""
    error_type: str = ""
    error_code: str = ""
    message: str = ""
    provider: Optional[str] = None
    suggested_action: Optional[str] = None

    def get_event_type(self) -> str:
        return "critical_error"


EVENT_TYPES: Dict[str, Type[StatusEvent]] = {
    cls.__name__: cls
    for cls in (LoopStateEvent, AssistantMessageEvent, ToolCallEvent, FinalResponseEvent, CriticalErrorEvent)
}


def event_from_dict(data: Dict[str, Any]) -> StatusEvent:
    """Rebuild an event produced by ``StatusEvent.to_dict``."""
    name = data.get("event")
    cls = EVENT_TYPES.get(name)
    if cls is None:
        raise ValueError(f"Unknown event type '{name}'")
    known = {f.name for f in fields(cls)}
    return cls(**{key: value for key, value in data.items() if key in known})
