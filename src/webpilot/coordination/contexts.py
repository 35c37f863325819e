"""
Execution contexts connected through the message relay.

- ``PageExecutorHost`` (``page:<session>``): runs actions and catalog passes against one page.
- ``Coordinator`` (``coordinator``): owns sessions, the model client and the control loops.
- ``ChatInterface`` (``chat``): submits tasks, aborts/resets sessions, receives progress events.
- ``CapabilityHost`` (``capability``): serves named hardware capabilities (e.g. microphone).

Contexts only talk through envelopes; none of them holds a reference to another.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from webpilot.agents.control_loop import AgentControlLoop, LoopOutcome, LoopState
from webpilot.agents.utils import session_extra
from webpilot.coordination.config import LoopConfig
from webpilot.coordination.event_bus import EventBus
from webpilot.coordination.events import StatusEvent, event_from_dict
from webpilot.coordination.relay import MessageEnvelope, MessageRelay, RelayEndpoint
from webpilot.coordination.session import BackendKind, SessionRegistry
from webpilot.environment.action_executor import ActionExecutor
from webpilot.environment.page_models import PageSnapshot
from webpilot.environment.tool_response import ToolResult

logger = logging.getLogger(__name__)

COORDINATOR_ADDRESS = "coordinator"
CHAT_ADDRESS = "chat"
CAPABILITY_ADDRESS = "capability"
CAPABILITY_PREFIX = "capability:"

# Event types sent by page hosts to the coordinator
PAGE_ATTACHED = "page_attached"
PAGE_CLOSED = "page_closed"
# Event type carrying a StatusEvent to the chat interface
PROGRESS = "progress"


def page_address(session_id: str) -> str:
    return f"page:{session_id}"


# =============================================================================
# Page executor
# =============================================================================

class PageExecutorHost:
    """Relay face of an ``ActionExecutor`` bound to one session's page."""

    def __init__(self, relay: MessageRelay, session_id: str, executor: ActionExecutor,
                 coordinator_address: str = COORDINATOR_ADDRESS):
        self.relay = relay
        self.session_id = session_id
        self.executor = executor
        self.coordinator_address = coordinator_address
        self.address = page_address(session_id)
        self.endpoint: Optional[RelayEndpoint] = None
        # One page, one action at a time; also holds after the caller has timed out
        self._page_lock = asyncio.Lock()

    async def start(self) -> None:
        action_timeout = self.relay.config.timeout_policy.timeout_for("execute_action")
        longest = self.executor.config.longest_action()
        if action_timeout <= longest:
            logger.warning(
                f"execute_action timeout ({action_timeout}s) does not exceed the longest action ({longest}s); "
                f"timed-out actions will delay the ones after them",
                extra=session_extra(self.session_id),
            )
        self.endpoint = self.relay.connect(self.address)
        self.endpoint.register_handler("execute_action", self._execute_action)
        self.endpoint.register_handler("capture_snapshot", self._capture_snapshot)
        self.endpoint.register_handler("ping", self._ping)
        await self.endpoint.notify(
            self.coordinator_address,
            PAGE_ATTACHED,
            {"sessionId": self.session_id, "backendKind": self.executor.backend.kind},
        )

    async def stop(self, page_closed: bool = False) -> None:
        if self.endpoint is None:
            return
        if page_closed:
            await self.endpoint.notify(self.coordinator_address, PAGE_CLOSED, {"sessionId": self.session_id})
        await self.relay.disconnect(self.address)
        self.endpoint = None

    async def _execute_action(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        async with self._page_lock:
            result = await self.executor.execute_call(payload.get("name", ""), payload.get("arguments") or {})
        return result.to_wire()

    async def _capture_snapshot(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        async with self._page_lock:
            snapshot = await self.executor.catalog.catalog()
        return {"success": True, "snapshot": snapshot.to_wire()}

    async def _ping(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "success": True,
            "backendKind": self.executor.backend.kind,
            "url": await self.executor.backend.url(),
        }


# =============================================================================
# Coordinator
# =============================================================================

class RelayToolDispatcher:
    """Sends a session's tool calls to its page host over the relay."""

    def __init__(self, endpoint: RelayEndpoint, session_id: str, backend_kind: BackendKind = "dom"):
        self.endpoint = endpoint
        self.session_id = session_id
        self.backend_kind = backend_kind
        self.target = page_address(session_id)

    async def dispatch(self, name: str, arguments: Any) -> ToolResult:
        payload = await self.endpoint.request(
            self.target, "execute_action", {"name": name, "arguments": arguments}
        )
        return ToolResult.model_validate(payload)

    async def capture_snapshot(self) -> Optional[PageSnapshot]:
        payload = await self.endpoint.request(self.target, "capture_snapshot")
        if not payload.get("success") or "snapshot" not in payload:
            logger.warning(
                f"Snapshot capture failed: {payload.get('error')}", extra=session_extra(self.session_id)
            )
            return None
        return PageSnapshot.model_validate(payload["snapshot"])

    async def ping(self) -> Dict[str, Any]:
        return await self.endpoint.request(self.target, "ping")


class Coordinator:
    """
    Privileged context routing between the chat interface, page hosts and the model.

    Sessions appear when a page host announces itself and are torn down when its
    page closes. Each ``run_task`` gets a fresh control loop over the session's
    conversation; a session runs at most one task at a time.
    """

    def __init__(
        self,
        relay: MessageRelay,
        model,
        loop_config: Optional[LoopConfig] = None,
        registry: Optional[SessionRegistry] = None,
        custom_instruction: Optional[str] = None,
        chat_address: str = CHAT_ADDRESS,
    ):
        self.relay = relay
        self.model = model
        self.loop_config = loop_config or LoopConfig()
        self.registry = registry or SessionRegistry(self.loop_config.full_context_turns)
        self.custom_instruction = custom_instruction
        self.chat_address = chat_address
        self.endpoint: Optional[RelayEndpoint] = None

    async def start(self) -> None:
        self.endpoint = self.relay.connect(COORDINATOR_ADDRESS)
        self.endpoint.register_handler("run_task", self._run_task)
        self.endpoint.register_handler("abort_session", self._abort_session)
        self.endpoint.register_handler("reset_session", self._reset_session)
        self.endpoint.register_handler("capability_request", self._capability_request)
        self.endpoint.on_event(self._on_page_event)

    async def stop(self) -> None:
        for session_id in self.registry.ids():
            self.registry.destroy(session_id)
        await self.relay.disconnect(COORDINATOR_ADDRESS)
        self.endpoint = None

    def attach_page(self, session_id: str, backend_kind: BackendKind = "dom"):
        return self.registry.get_or_create(session_id, backend_kind)

    async def _on_page_event(self, envelope: MessageEnvelope) -> None:
        session_id = envelope.payload.get("sessionId")
        if not session_id:
            return
        if envelope.type == PAGE_ATTACHED:
            self.attach_page(session_id, envelope.payload.get("backendKind", "dom"))
        elif envelope.type == PAGE_CLOSED:
            self.registry.destroy(session_id)

    async def _run_task(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        session = self.registry.get(payload.get("sessionId", ""))
        session.claim()
        async with session.run_lock:
            session.abort_event.clear()
            dispatcher = RelayToolDispatcher(self.endpoint, session.session_id, session.backend_kind)

            ping = await dispatcher.ping()
            if not ping.get("success"):
                logger.warning("Page executor did not answer ping", extra=session_extra(session.session_id))
                return ping

            loop = AgentControlLoop(
                self.model,
                dispatcher,
                config=self.loop_config,
                emit=self._progress_sink(),
                custom_instruction=self.custom_instruction,
            )
            outcome = await loop.run(payload.get("instruction", ""), session)
        return {"success": outcome.success, "outcome": outcome.to_dict()}

    async def _abort_session(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        session = self.registry.get(payload.get("sessionId", ""))
        session.abort()
        logger.info("Abort requested", extra=session_extra(session.session_id))
        return {"success": True, "wasRunning": session.is_running}

    async def _reset_session(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        session_id = payload.get("sessionId", "")
        self.registry.get(session_id)
        self.registry.reset(session_id)
        return {"success": True}

    async def _capability_request(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        name = payload.get("capability", "")
        return await self.endpoint.request(
            CAPABILITY_ADDRESS, f"{CAPABILITY_PREFIX}{name}", payload.get("arguments") or {}
        )

    def _progress_sink(self) -> Callable[[StatusEvent], Awaitable[None]]:
        async def forward(event: StatusEvent) -> None:
            await self.endpoint.notify(self.chat_address, PROGRESS, event.to_dict())
        return forward


# =============================================================================
# Chat interface
# =============================================================================

class ChatInterface:
    """
    User-facing context.

    Progress events from the coordinator are re-emitted on ``event_bus``;
    subscribe there to follow a run.
    """

    def __init__(self, relay: MessageRelay, address: str = CHAT_ADDRESS,
                 coordinator_address: str = COORDINATOR_ADDRESS):
        self.relay = relay
        self.address = address
        self.coordinator_address = coordinator_address
        self.event_bus = EventBus()
        self.endpoint: Optional[RelayEndpoint] = None

    async def start(self) -> None:
        self.endpoint = self.relay.connect(self.address)
        self.endpoint.on_event(self._on_event)

    async def stop(self) -> None:
        await self.relay.disconnect(self.address)
        self.endpoint = None

    async def submit(self, session_id: str, instruction: str) -> LoopOutcome:
        """Run a task on a session and wait for the outcome."""
        payload = await self.endpoint.request(
            self.coordinator_address, "run_task", {"sessionId": session_id, "instruction": instruction}
        )
        if "outcome" in payload:
            return LoopOutcome.from_dict(payload["outcome"])
        # Refused or unreachable before a loop could start
        return LoopOutcome(
            state=LoopState.FAILED,
            reason=payload.get("errorKind", "transport"),
            final_text=payload.get("error"),
            error=payload,
        )

    async def abort(self, session_id: str) -> bool:
        payload = await self.endpoint.request(self.coordinator_address, "abort_session", {"sessionId": session_id})
        return bool(payload.get("success"))

    async def reset(self, session_id: str) -> bool:
        payload = await self.endpoint.request(self.coordinator_address, "reset_session", {"sessionId": session_id})
        return bool(payload.get("success"))

    async def request_capability(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.endpoint.request(
            self.coordinator_address, "capability_request", {"capability": name, "arguments": arguments or {}}
        )

    async def _on_event(self, envelope: MessageEnvelope) -> None:
        if envelope.type != PROGRESS:
            return
        try:
            event = event_from_dict(envelope.payload)
        except (TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed progress event: {e}")
            return
        await self.event_bus.emit(event)


# =============================================================================
# Capability host
# =============================================================================

Capability = Callable[[Dict[str, Any]], Awaitable[Any]]


class CapabilityHost:
    """
    Serves hardware capabilities the chat context cannot reach directly.

    Usage:
        host = CapabilityHost(relay)
        host.register("microphone", capture_audio)
        await host.start()
    """

    def __init__(self, relay: MessageRelay, address: str = CAPABILITY_ADDRESS):
        self.relay = relay
        self.address = address
        self.capabilities: Dict[str, Capability] = {}
        self.endpoint: Optional[RelayEndpoint] = None

    def register(self, name: str, capability: Capability) -> None:
        self.capabilities[name] = capability
        if self.endpoint is not None:
            self._register_handler(name, capability)

    async def start(self) -> None:
        self.endpoint = self.relay.connect(self.address)
        for name, capability in self.capabilities.items():
            self._register_handler(name, capability)

    async def stop(self) -> None:
        await self.relay.disconnect(self.address)
        self.endpoint = None

    def _register_handler(self, name: str, capability: Capability) -> None:
        async def handler(payload: Dict[str, Any]) -> Dict[str, Any]:
            return {"success": True, "data": await capability(payload)}

        self.endpoint.register_handler(f"{CAPABILITY_PREFIX}{name}", handler)
