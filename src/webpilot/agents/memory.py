import dataclasses
import json
import logging
import uuid
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

from webpilot.agents.utils import truncate_text
from webpilot.models.response_models import ToolCall

if TYPE_CHECKING:
    from webpilot.environment.page_models import PageSnapshot

logger = logging.getLogger(__name__)

TURN_ROLES = ("user", "model", "tool-result")

COMPACTED_PREFIX = "[page context compacted]"


# --- Structured Content Data Classes ---

@dataclasses.dataclass(frozen=True)
class ToolCallMsg:
    """Represents a tool call in a model turn."""
    id: str
    name: str
    arguments: str = "{}"

    def __post_init__(self):
        if not self.id:
            raise ValueError("Tool call id cannot be empty")
        if not self.name:
            raise ValueError("Tool call name cannot be empty")
        if not isinstance(self.arguments, str):
            raise ValueError("Tool call arguments must be a string")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format compatible with OpenAI API."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_tool_call(cls, tool_call: ToolCall) -> "ToolCallMsg":
        arguments = tool_call.function.get("arguments", "{}")
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments, ensure_ascii=False)
        return cls(id=tool_call.id, name=tool_call.name, arguments=arguments)


@dataclasses.dataclass(frozen=True)
class PageContextPayload:
    """
    Page state embedded in a tool-result turn: a snapshot digest and/or a screenshot.

    This is the only part of a turn that compaction replaces; ``url``, ``title`` and
    ``element_count`` survive so the synopsis can still be rendered.
    """
    url: str
    title: str = ""
    element_count: int = 0
    digest: Optional[str] = None
    screenshot: Optional[str] = None
    compacted: bool = False

    @classmethod
    def from_snapshot(
        cls,
        snapshot: "PageSnapshot",
        screenshot: Optional[str] = None,
        char_limit: Optional[int] = None,
    ) -> "PageContextPayload":
        digest = json.dumps(snapshot.to_wire(), ensure_ascii=False, separators=(",", ":"))
        return cls(
            url=snapshot.url,
            title=snapshot.title,
            element_count=len(snapshot.interactive_elements),
            digest=truncate_text(digest, char_limit),
            screenshot=screenshot,
        )

    def synopsis(self) -> str:
        return f"{COMPACTED_PREFIX} {self.url} | {self.title} | {self.element_count} interactive elements"

    def compact(self) -> "PageContextPayload":
        if self.compacted:
            return self
        return dataclasses.replace(self, digest=None, screenshot=None, compacted=True)

    def render(self) -> str:
        if self.compacted:
            return self.synopsis()
        if self.digest:
            return f"[page context] {self.digest}"
        return f"[page context] {self.url} | {self.title}"


@dataclasses.dataclass(frozen=True)
class Turn:
    """A single entry of the conversation state."""
    role: str
    content: Optional[str] = None
    tool_calls: Tuple[ToolCallMsg, ...] = ()
    tool_call_id: Optional[str] = None
    name: Optional[str] = None
    page_context: Optional[PageContextPayload] = None
    turn_id: str = dataclasses.field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        if self.role not in TURN_ROLES:
            raise ValueError(f"Invalid turn role '{self.role}'. Must be one of {TURN_ROLES}")
        if self.role == "tool-result" and not self.tool_call_id:
            raise ValueError("tool-result turns need the tool_call_id they answer")

    @property
    def is_tool_bearing(self) -> bool:
        return self.role == "model" and bool(self.tool_calls)


# --- Compaction ---

def compact(turns: Sequence[Turn], keep: int = 2) -> List[Turn]:
    """
    Replace the page-context payload of every turn older than the ``keep`` most
    recent tool-bearing model turns with its one-line synopsis.

    Pure and deterministic: the input is not modified, the output depends only on
    the input, and message text (including everything the model wrote) is untouched.
    """
    tool_bearing = [index for index, turn in enumerate(turns) if turn.is_tool_bearing]
    if len(tool_bearing) <= keep:
        return list(turns)

    boundary = tool_bearing[-keep] if keep > 0 else len(turns)
    result = []
    for index, turn in enumerate(turns):
        if index < boundary and turn.page_context is not None and not turn.page_context.compacted:
            turn = dataclasses.replace(turn, page_context=turn.page_context.compact())
        result.append(turn)
    return result


def to_llm_messages(turns: Sequence[Turn], system_prompt: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Convert turns into OpenAI chat-format messages.

    Tool messages must be plain strings, so screenshots carried by tool-result
    turns are sent in a user message placed right after the run of tool messages.
    """
    messages: List[Dict[str, Any]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})

    pending_images: List[Tuple[str, str]] = []

    def flush_images():
        if not pending_images:
            return
        parts: List[Dict[str, Any]] = []
        for tool_call_id, image in pending_images:
            parts.append({"type": "text", "text": f"Screenshot for tool call {tool_call_id}:"})
            parts.append({"type": "image_url", "image_url": {"url": image}})
        messages.append({"role": "user", "content": parts})
        pending_images.clear()

    for turn in turns:
        if turn.role != "tool-result":
            flush_images()

        if turn.role == "user":
            messages.append({"role": "user", "content": turn.content or ""})
        elif turn.role == "model":
            message: Dict[str, Any] = {"role": "assistant", "content": turn.content}
            if turn.tool_calls:
                message["tool_calls"] = [tc.to_dict() for tc in turn.tool_calls]
            messages.append(message)
        else:
            content = turn.content or ""
            if turn.page_context is not None:
                content = f"{content}\n\n{turn.page_context.render()}" if content else turn.page_context.render()
                if turn.page_context.screenshot:
                    pending_images.append((turn.tool_call_id, turn.page_context.screenshot))
            message = {"role": "tool", "tool_call_id": turn.tool_call_id, "content": content}
            if turn.name:
                message["name"] = turn.name
            messages.append(message)

    flush_images()
    return messages


class ConversationMemory:
    """
    Ordered conversation state for one session.

    Turns are appended, never edited in place; compaction is applied to a copy
    every time messages are built for a model request.
    """

    def __init__(self, full_context_turns: int = 2) -> None:
        self.full_context_turns = full_context_turns
        self.turns: List[Turn] = []

    def __len__(self) -> int:
        return len(self.turns)

    def add_user(self, text: str) -> Turn:
        return self._append(Turn(role="user", content=text))

    def add_model(self, content: Optional[str], tool_calls: Sequence[ToolCallMsg] = ()) -> Turn:
        return self._append(Turn(role="model", content=content, tool_calls=tuple(tool_calls)))

    def add_tool_result(
        self,
        tool_call_id: str,
        name: str,
        content: str,
        page_context: Optional[PageContextPayload] = None,
    ) -> Turn:
        return self._append(Turn(
            role="tool-result",
            content=content,
            tool_call_id=tool_call_id,
            name=name,
            page_context=page_context,
        ))

    def attach_page_context(self, payload: PageContextPayload) -> None:
        """Embed the post-turn page digest in the last tool-result turn."""
        for index in range(len(self.turns) - 1, -1, -1):
            turn = self.turns[index]
            if turn.role != "tool-result":
                break
            if turn.page_context is None or not turn.page_context.screenshot:
                self.turns[index] = dataclasses.replace(turn, page_context=payload)
                return
            # Keep the tool's own screenshot and add the digest beside it
            self.turns[index] = dataclasses.replace(
                turn, page_context=dataclasses.replace(payload, screenshot=turn.page_context.screenshot)
            )
            return
        logger.debug("No tool-result turn to attach page context to")

    def unanswered_tool_calls(self) -> List[ToolCallMsg]:
        """Tool calls of the last model turn that have no result yet."""
        for index in range(len(self.turns) - 1, -1, -1):
            turn = self.turns[index]
            if turn.role == "model":
                answered = {t.tool_call_id for t in self.turns[index + 1:]}
                return [tc for tc in turn.tool_calls if tc.id not in answered]
        return []

    def compacted(self) -> List[Turn]:
        return compact(self.turns, self.full_context_turns)

    def to_llm_messages(self, system_prompt: Optional[str] = None) -> List[Dict[str, Any]]:
        return to_llm_messages(self.compacted(), system_prompt)

    def reset_memory(self) -> None:
        self.turns.clear()

    def _append(self, turn: Turn) -> Turn:
        self.turns.append(turn)
        return turn
