"""
webpilot - browser automation agent core

A tool-calling model works a live web page through a ranked element catalog,
modal detection and a layered action executor, with a message relay between
the coordinator, the page executor and the chat interface.
"""

__version__ = "0.1.0"

from .agents import AgentControlLoop, ConversationMemory, LoopOutcome, LoopState
from .coordination import LoopConfig, MessageRelay, SessionRegistry
from .coordination.contexts import CapabilityHost, ChatInterface, Coordinator, PageExecutorHost
from .environment import ActionExecutor, ElementCatalog, ModalDetector, PageSnapshot, ToolResult
from .models import BaseAPIModel, ModelConfig

__all__ = [
    "__version__",
    "AgentControlLoop",
    "ConversationMemory",
    "LoopOutcome",
    "LoopState",
    "LoopConfig",
    "MessageRelay",
    "SessionRegistry",
    "CapabilityHost",
    "ChatInterface",
    "Coordinator",
    "PageExecutorHost",
    "ActionExecutor",
    "ElementCatalog",
    "ModalDetector",
    "PageSnapshot",
    "ToolResult",
    "BaseAPIModel",
    "ModelConfig",
]
