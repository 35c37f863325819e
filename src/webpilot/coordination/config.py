"""
Configuration classes for the coordination system.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass
class SettleConfig:
    """
    Post-action settle policy (seconds).

    Navigation-class actions wait longer before the next catalog/screenshot capture
    so the model is not shown a document that is mid-transition.
    """
    navigation: float = 2.5
    default: float = 0.5

    def __post_init__(self):
        if self.navigation < 0 or self.default < 0:
            raise ValueError("Settle delays must be non-negative")

    def delay_for(self, settle_class: str) -> float:
        if settle_class == "navigation":
            return self.navigation
        if settle_class == "none":
            return 0.0
        return self.default


@dataclass
class TimeoutPolicy:
    """
    The single timeout policy shared by the relay.

    Overrides are matched by exact message type first, then by prefix for keys
    ending in ``*`` (e.g. ``capability:*``); everything else gets ``default``.
    """
    default: float = 8.0
    overrides: Dict[str, float] = field(default_factory=lambda: {
        "execute_action": 30.0,    # must exceed ExecutorConfig.longest_action()
        "capture_snapshot": 10.0,  # catalog ready-wait is capped at 5s
        "run_task": 600.0,         # a whole control-loop run
        "capability:*": 15.0,
    })

    def __post_init__(self):
        if self.default <= 0:
            raise ValueError("Default timeout must be positive")
        for message_type, seconds in self.overrides.items():
            if seconds <= 0:
                raise ValueError(f"Timeout for '{message_type}' must be positive, got {seconds}")

    def timeout_for(self, message_type: str) -> float:
        if message_type in self.overrides:
            return self.overrides[message_type]
        # Longest wildcard prefix wins
        best: Optional[str] = None
        for key in self.overrides:
            if key.endswith("*") and message_type.startswith(key[:-1]):
                if best is None or len(key) > len(best):
                    best = key
        return self.overrides[best] if best else self.default


@dataclass
class RelayConfig:
    """Configuration for the message relay."""
    timeout_policy: TimeoutPolicy = field(default_factory=TimeoutPolicy)

    # 0 = unbounded inboxes
    inbox_size: int = 0

    # How long a dropped correlation id is remembered for the late-response counter
    expired_id_memory: int = 1000


@dataclass
class LoopConfig:
    """
    Configuration for the agent control loop.

    Attributes:
        max_turns: Hard ceiling on model requests per run
        full_context_turns: Tool-bearing turns that keep their full page-context payload;
                            older ones are compacted to a one-line synopsis
        tool_output_char_limit: Tool output text longer than this is truncated
        attach_page_context: Append a fresh page digest after each tool-bearing turn
        attach_screenshot: Attach a screenshot to that digest; ``None`` means only for
                           the coordinate-only backend
        max_tokens / temperature: Per-request overrides for the model client
    """
    max_turns: int = 20
    full_context_turns: int = 2
    tool_output_char_limit: int = 20000
    attach_page_context: bool = True
    attach_screenshot: Optional[bool] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None

    def __post_init__(self):
        if self.max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        if self.full_context_turns < 0:
            raise ValueError("full_context_turns must be non-negative")

    def wants_screenshot(self, backend_kind: str) -> bool:
        if self.attach_screenshot is None:
            return backend_kind == "coordinate"
        return self.attach_screenshot
