from .control_loop import (
    AgentControlLoop,
    DirectToolDispatcher,
    LoopOutcome,
    LoopState,
    ToolDispatcher,
)
from .memory import ConversationMemory, PageContextPayload, ToolCallMsg, Turn, compact

__all__ = [
    "AgentControlLoop",
    "DirectToolDispatcher",
    "LoopOutcome",
    "LoopState",
    "ToolDispatcher",
    "ConversationMemory",
    "PageContextPayload",
    "ToolCallMsg",
    "Turn",
    "compact",
]
