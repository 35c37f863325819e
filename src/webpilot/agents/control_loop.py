"""
Agent Control Loop

Drives the model/action/observation cycle for one session:

    AWAITING_MODEL -> (tool calls?) -> EXECUTING_TOOLS -> AWAITING_MODEL -> ... -> DONE | CANCELLED | FAILED

Tool calls from one model turn run sequentially in declared order, because later
calls usually depend on the DOM left behind by earlier ones. A failed tool result
is ordinary tool output for the model; the loop itself only fails on a model/API
error or when the turn ceiling is reached, and stops early on cancellation.
"""

import dataclasses
import json
import logging
import time
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Protocol

from webpilot.agents.exceptions import AgentLimitError, ModelAPIError, ModelError
from webpilot.agents.instructions import get_system_instruction, tools_for_backend
from webpilot.agents.memory import PageContextPayload, ToolCallMsg
from webpilot.agents.utils import session_extra
from webpilot.coordination.config import LoopConfig
from webpilot.coordination.events import (
    AssistantMessageEvent,
    CriticalErrorEvent,
    FinalResponseEvent,
    LoopStateEvent,
    StatusEvent,
    ToolCallEvent,
)
from webpilot.environment.actions import tool_schemas
from webpilot.environment.page_models import PageSnapshot
from webpilot.environment.tool_response import ToolResult

if TYPE_CHECKING:
    from webpilot.coordination.session import Session
    from webpilot.environment.action_executor import ActionExecutor
    from webpilot.models.models import BaseAPIModel

logger = logging.getLogger(__name__)


class LoopState(Enum):
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATES = (LoopState.DONE, LoopState.CANCELLED, LoopState.FAILED)


@dataclasses.dataclass
class LoopOutcome:
    """How a run ended."""
    state: LoopState
    reason: str  # completed | cancelled | model_error | turn_ceiling
    final_text: Optional[str] = None
    turns: int = 0
    error: Optional[Dict[str, Any]] = None
    duration: float = 0.0

    @property
    def success(self) -> bool:
        return self.state == LoopState.DONE

    def to_dict(self) -> Dict[str, Any]:
        data = dataclasses.asdict(self)
        data["state"] = self.state.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoopOutcome":
        return cls(**{**data, "state": LoopState(data["state"])})


class ToolDispatcher(Protocol):
    """Where the loop sends tool calls for one session."""

    backend_kind: str

    async def dispatch(self, name: str, arguments: Any) -> ToolResult:
        """Execute one tool call; failures come back as failed results."""

    async def capture_snapshot(self) -> Optional[PageSnapshot]:
        """Fresh page snapshot, or None when the page could not be reached."""


class DirectToolDispatcher:
    """Dispatcher for an executor living in the same context as the loop."""

    def __init__(self, executor: "ActionExecutor"):
        self.executor = executor
        self.backend_kind = executor.backend.kind

    async def dispatch(self, name: str, arguments: Any) -> ToolResult:
        return await self.executor.execute_call(name, arguments)

    async def capture_snapshot(self) -> Optional[PageSnapshot]:
        return await self.executor.catalog.catalog()


EventSink = Callable[[StatusEvent], Awaitable[None]]


class AgentControlLoop:
    """
    Multi-turn tool-calling loop for a single session.

    Usage:
        loop = AgentControlLoop(model, DirectToolDispatcher(executor))
        outcome = await loop.run("dismiss the cookie banner", session)
    """

    def __init__(
        self,
        model: "BaseAPIModel",
        dispatcher: ToolDispatcher,
        config: Optional[LoopConfig] = None,
        emit: Optional[EventSink] = None,
        custom_instruction: Optional[str] = None,
    ):
        self.model = model
        self.dispatcher = dispatcher
        self.config = config or LoopConfig()
        self.emit = emit
        self.custom_instruction = custom_instruction
        self.state: Optional[LoopState] = None

    async def run(self, instruction: str, session: "Session") -> LoopOutcome:
        started = time.time()
        backend_kind = self.dispatcher.backend_kind
        memory = session.memory
        extra = session_extra(session.session_id)

        system_prompt = get_system_instruction(backend_kind, self.custom_instruction)
        tools = tool_schemas(tools_for_backend(backend_kind))
        memory.add_user(instruction)
        logger.info(f"Starting run: {instruction[:100]}", extra=extra)

        turns = 0
        while True:
            if session.abort_event.is_set():
                return await self._finish(session, LoopState.CANCELLED, "cancelled", turns, started)

            if turns >= self.config.max_turns:
                limit_error = AgentLimitError(
                    f"Turn ceiling of {self.config.max_turns} reached without the task being resolved",
                    current_value=turns,
                    limit_value=self.config.max_turns,
                    session_id=session.session_id,
                )
                logger.warning(str(limit_error), extra=extra)
                return await self._finish(
                    session, LoopState.FAILED, "turn_ceiling", turns, started,
                    final_text=limit_error.user_message, error=limit_error.to_dict(),
                )

            await self._set_state(session, LoopState.AWAITING_MODEL, turns)
            try:
                response = await self.model.arun(
                    memory.to_llm_messages(system_prompt),
                    tools=tools,
                    max_tokens=self.config.max_tokens,
                    temperature=self.config.temperature,
                )
            except ModelError as e:
                e.session_id = e.session_id or session.session_id
                logger.error(f"Model request failed: {e}", extra=extra)
                await self._emit(CriticalErrorEvent(
                    session_id=session.session_id,
                    error_type=type(e).__name__,
                    error_code=e.error_code,
                    message=e.user_message,
                    provider=e.provider if isinstance(e, ModelAPIError) else None,
                    suggested_action=e.suggestion,
                ))
                return await self._finish(
                    session, LoopState.FAILED, "model_error", turns, started,
                    final_text=e.user_message, error=e.to_dict(),
                )
            turns += 1

            if session.abort_event.is_set():
                # Response arrived after the user aborted; it is not recorded
                return await self._finish(session, LoopState.CANCELLED, "cancelled", turns, started)

            tool_calls = [ToolCallMsg.from_tool_call(tc) for tc in response.tool_calls]
            memory.add_model(response.content, tool_calls)
            if response.content:
                await self._emit(AssistantMessageEvent(
                    session_id=session.session_id, text=response.content, turn=turns
                ))

            if not tool_calls:
                return await self._finish(
                    session, LoopState.DONE, "completed", turns, started, final_text=response.content or ""
                )

            await self._set_state(session, LoopState.EXECUTING_TOOLS, turns)
            if not await self._execute_tools(session, tool_calls, turns):
                self._close_unanswered(session)
                return await self._finish(session, LoopState.CANCELLED, "cancelled", turns, started)

            if self.config.attach_page_context:
                await self._attach_page_context(session)

    async def _execute_tools(self, session: "Session", tool_calls: List[ToolCallMsg], turn: int) -> bool:
        """Run the turn's tool calls in order. Returns False if the session was aborted."""
        extra = session_extra(session.session_id)
        for tool_call in tool_calls:
            if session.abort_event.is_set():
                return False

            await self._emit(ToolCallEvent(
                session_id=session.session_id,
                tool_name=tool_call.name,
                status="started",
                turn=turn,
                arguments=_arguments_preview(tool_call.arguments),
            ))
            started = time.time()
            result = await self.dispatcher.dispatch(tool_call.name, tool_call.arguments)
            duration = time.time() - started

            if session.abort_event.is_set():
                # Actions are not preemptible; the late result is dropped instead
                logger.info(f"Dropping result of '{tool_call.name}' resolved after abort", extra=extra)
                return False

            page_context = None
            if result.screenshot:
                page_context = PageContextPayload(url=result.page_url_after or "", screenshot=result.screenshot)
            session.memory.add_tool_result(
                tool_call.id,
                tool_call.name,
                result.to_content(self.config.tool_output_char_limit),
                page_context=page_context,
            )
            await self._emit(ToolCallEvent(
                session_id=session.session_id,
                tool_name=tool_call.name,
                status="completed" if result.success else "failed",
                turn=turn,
                duration=duration,
                error=result.error,
            ))
        return True

    async def _attach_page_context(self, session: "Session") -> None:
        snapshot = await self.dispatcher.capture_snapshot()
        if snapshot is None:
            logger.warning("Page context unavailable after tool turn", extra=session_extra(session.session_id))
            return

        screenshot = None
        if self.config.wants_screenshot(self.dispatcher.backend_kind):
            shot = await self.dispatcher.dispatch("screenshot", {})
            screenshot = shot.screenshot if shot.success else None

        session.memory.attach_page_context(
            PageContextPayload.from_snapshot(snapshot, screenshot, self.config.tool_output_char_limit)
        )

    def _close_unanswered(self, session: "Session") -> None:
        """Answer skipped calls so the conversation stays well-formed for the next run."""
        cancelled = ToolResult.failure("Cancelled by the user before this call ran", "cancelled")
        for tool_call in session.memory.unanswered_tool_calls():
            session.memory.add_tool_result(tool_call.id, tool_call.name, cancelled.to_content())

    async def _set_state(self, session: "Session", state: LoopState, turn: int) -> None:
        self.state = state
        logger.debug(f"Loop state -> {state.value} (turn {turn})", extra=session_extra(session.session_id))
        await self._emit(LoopStateEvent(session_id=session.session_id, state=state.value, turn=turn))

    async def _finish(
        self,
        session: "Session",
        state: LoopState,
        reason: str,
        turns: int,
        started: float,
        final_text: Optional[str] = None,
        error: Optional[Dict[str, Any]] = None,
    ) -> LoopOutcome:
        outcome = LoopOutcome(
            state=state,
            reason=reason,
            final_text=final_text,
            turns=turns,
            error=error,
            duration=time.time() - started,
        )
        await self._set_state(session, state, turns)
        await self._emit(FinalResponseEvent(
            session_id=session.session_id,
            final_response=final_text or "",
            state=state.value,
            reason=reason,
            total_duration=outcome.duration,
            total_turns=turns,
            success=outcome.success,
        ))
        logger.info(
            f"Run finished: {state.value} ({reason}) after {turns} turns in {outcome.duration:.1f}s",
            extra=session_extra(session.session_id),
        )
        return outcome

    async def _emit(self, event: StatusEvent) -> None:
        if self.emit is not None:
            await self.emit(event)


def _arguments_preview(arguments: str) -> Optional[Dict[str, Any]]:
    try:
        parsed = json.loads(arguments) if arguments else {}
    except json.JSONDecodeError:
        return {"raw": arguments[:200]}
    return parsed if isinstance(parsed, dict) else {"value": parsed}
