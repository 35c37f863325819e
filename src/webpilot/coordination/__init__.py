"""
Coordination layer: relay between contexts, sessions, progress events and configuration.

The context classes live in ``webpilot.coordination.contexts`` and are imported
from there; they depend on the agent control loop, which itself uses this package.
"""

from .config import LoopConfig, RelayConfig, SettleConfig, TimeoutPolicy
from .event_bus import ALL_EVENTS, EventBus
from .events import (
    AssistantMessageEvent,
    CriticalErrorEvent,
    FinalResponseEvent,
    LoopStateEvent,
    StatusEvent,
    ToolCallEvent,
    event_from_dict,
)
from .relay import MessageEnvelope, MessageRelay, RelayEndpoint
from .session import Session, SessionRegistry

__all__ = [
    "LoopConfig",
    "RelayConfig",
    "SettleConfig",
    "TimeoutPolicy",
    "ALL_EVENTS",
    "EventBus",
    "StatusEvent",
    "LoopStateEvent",
    "AssistantMessageEvent",
    "ToolCallEvent",
    "FinalResponseEvent",
    "CriticalErrorEvent",
    "event_from_dict",
    "MessageEnvelope",
    "MessageRelay",
    "RelayEndpoint",
    "Session",
    "SessionRegistry",
]
