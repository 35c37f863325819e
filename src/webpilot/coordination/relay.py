"""
Message relay between isolated execution contexts.

Each context (coordinator, page executor, chat interface, capability host) owns a
``RelayEndpoint`` with its own inbox. Endpoints never share Python objects: every
envelope is serialized to a JSON string on the way in and parsed again by the
receiver, so a context only ever sees its own copies of the data.

Requests are explicit futures keyed by correlation id. The timeout for a request
comes from the single ``TimeoutPolicy`` held by the relay; a request that expires
resolves to a synthetic transport failure, and a response arriving afterwards is
discarded because its correlation id is no longer pending.
"""

import asyncio
import logging
import time
import uuid
from collections import OrderedDict
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Set

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from webpilot.agents.exceptions import ContextUnavailableError, RelayTimeoutError, WebPilotError
from webpilot.coordination.config import RelayConfig
from webpilot.environment.tool_response import ToolResult

logger = logging.getLogger(__name__)

EnvelopeKind = Literal["request", "response", "event"]

RequestHandler = Callable[[Dict[str, Any]], Awaitable[Optional[Dict[str, Any]]]]
EventHandler = Callable[["MessageEnvelope"], Awaitable[None]]


class MessageEnvelope(BaseModel):
    """
    Wire unit of the relay.

    A response echoes the ``correlationId`` of its request; events are one-way
    and never answered.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    type: str
    correlation_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp_sent: float = Field(default_factory=time.time)
    source: str = ""
    target: str = ""
    kind: EnvelopeKind = "request"

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw: str) -> "MessageEnvelope":
        return cls.model_validate_json(raw)

    def reply(self, payload: Dict[str, Any]) -> "MessageEnvelope":
        return MessageEnvelope(
            type=self.type,
            correlation_id=self.correlation_id,
            payload=payload,
            source=self.target,
            target=self.source,
            kind="response",
        )


@dataclass
class RelayStats:
    delivered: int = 0
    dropped: int = 0
    timed_out: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def failure_payload(error: Exception) -> Dict[str, Any]:
    """Response payload for a request that could not be served."""
    return ToolResult.from_error(error).to_wire()


class RelayEndpoint:
    """
    One context's connection to the relay.

    Incoming requests are served concurrently, each in its own task, so a long
    ``run_task`` does not block the inbox. Events are handled in arrival order.
    """

    def __init__(self, address: str, relay: "MessageRelay", inbox_size: int = 0, expired_id_memory: int = 1000):
        self.address = address
        self.relay = relay
        self.inbox: asyncio.Queue = asyncio.Queue(maxsize=inbox_size)
        self.handlers: Dict[str, RequestHandler] = {}
        self.event_handlers: List[EventHandler] = []
        self.pending: Dict[str, asyncio.Future] = {}
        self.stats = RelayStats()

        self._expired: "OrderedDict[str, float]" = OrderedDict()
        self._expired_id_memory = expired_id_memory
        self._pump_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    # --- registration ---

    def register_handler(self, message_type: str, handler: RequestHandler) -> None:
        """Serve requests of ``message_type`` with ``handler(payload) -> payload``."""
        self.handlers[message_type] = handler
        logger.debug(f"[{self.address}] handler registered for '{message_type}'")

    def on_event(self, handler: EventHandler) -> None:
        self.event_handlers.append(handler)

    # --- lifecycle ---

    def start(self) -> None:
        if self._pump_task is None:
            self._pump_task = asyncio.create_task(self._pump(), name=f"relay-pump:{self.address}")

    async def close(self) -> None:
        tasks = [t for t in (self._pump_task, *self._tasks) if t is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._pump_task = None
        self._tasks.clear()

        for future in self.pending.values():
            if not future.done():
                future.cancel()
        self.pending.clear()

    # --- outgoing ---

    async def request(
        self,
        target: str,
        message_type: str,
        payload: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Send a request and wait for its response payload.

        Never raises for transport problems: an unreachable target or an expired
        timeout comes back as a failed result payload with ``errorKind="transport"``.
        """
        envelope = MessageEnvelope(
            type=message_type, payload=payload or {}, source=self.address, target=target
        )
        if not self.relay.is_connected(target):
            logger.warning(f"[{self.address}] '{message_type}' to unknown context '{target}'")
            return failure_payload(
                ContextUnavailableError(f"No context is connected at '{target}'", address=target)
            )

        if timeout is None:
            timeout = self.relay.config.timeout_policy.timeout_for(message_type)

        future = asyncio.get_running_loop().create_future()
        self.pending[envelope.correlation_id] = future
        try:
            await self.relay.deliver(envelope)
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            self.stats.timed_out += 1
            self._remember_expired(envelope.correlation_id)
            logger.warning(
                f"[{self.address}] '{message_type}' to '{target}' timed out after {timeout}s "
                f"(correlation id {envelope.correlation_id})"
            )
            return failure_payload(RelayTimeoutError(
                f"No response to '{message_type}' from '{target}' within {timeout}s",
                message_type=message_type,
                correlation_id=envelope.correlation_id,
                timeout=timeout,
            ))
        finally:
            self.pending.pop(envelope.correlation_id, None)

    async def notify(self, target: str, message_type: str, payload: Optional[Dict[str, Any]] = None) -> bool:
        """Send a one-way event. Returns False when the target is not connected."""
        envelope = MessageEnvelope(
            type=message_type, payload=payload or {}, source=self.address, target=target, kind="event"
        )
        delivered = await self.relay.deliver(envelope)
        if not delivered:
            logger.debug(f"[{self.address}] event '{message_type}' for '{target}' had no receiver")
        return delivered

    # --- incoming ---

    async def _pump(self) -> None:
        while True:
            raw = await self.inbox.get()
            try:
                envelope = MessageEnvelope.from_json(raw)
            except ValueError as e:
                self.stats.dropped += 1
                logger.error(f"[{self.address}] malformed envelope dropped: {e}")
                continue
            await self.receive(envelope)

    async def receive(self, envelope: MessageEnvelope) -> None:
        if envelope.kind == "response":
            self._resolve(envelope)
        elif envelope.kind == "event":
            self.stats.delivered += 1
            for handler in list(self.event_handlers):
                try:
                    await handler(envelope)
                except Exception as e:
                    logger.error(f"[{self.address}] event handler failed for '{envelope.type}': {e}")
        else:
            self.stats.delivered += 1
            task = asyncio.create_task(self._serve(envelope))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    def _resolve(self, envelope: MessageEnvelope) -> None:
        future = self.pending.get(envelope.correlation_id)
        if future is None or future.done():
            self.stats.dropped += 1
            late = envelope.correlation_id in self._expired
            logger.warning(
                f"[{self.address}] dropped {'late' if late else 'unknown'} response "
                f"'{envelope.type}' (correlation id {envelope.correlation_id})"
            )
            return
        self.stats.delivered += 1
        future.set_result(envelope.payload)

    async def _serve(self, envelope: MessageEnvelope) -> None:
        handler = self.handlers.get(envelope.type)
        if handler is None:
            payload = ToolResult.failure(
                f"Context '{self.address}' does not handle '{envelope.type}'", "transport"
            ).to_wire()
        else:
            try:
                payload = await handler(envelope.payload) or {}
            except WebPilotError as e:
                payload = failure_payload(e)
            except Exception as e:
                logger.exception(f"[{self.address}] handler for '{envelope.type}' raised")
                payload = failure_payload(e)

        if not await self.relay.deliver(envelope.reply(payload)):
            logger.warning(f"[{self.address}] requester '{envelope.source}' left before the response")

    def _remember_expired(self, correlation_id: str) -> None:
        self._expired[correlation_id] = time.time()
        while len(self._expired) > self._expired_id_memory:
            self._expired.popitem(last=False)


class MessageRelay:
    """
    Routes envelopes to endpoints by address.

    Usage:
        relay = MessageRelay()
        page = relay.connect("page:s1")
        page.register_handler("ping", ping)
        coordinator = relay.connect("coordinator")
        response = await coordinator.request("page:s1", "ping")
    """

    def __init__(self, config: Optional[RelayConfig] = None):
        self.config = config or RelayConfig()
        self.endpoints: Dict[str, RelayEndpoint] = {}

    def connect(self, address: str) -> RelayEndpoint:
        """Create and start the endpoint for ``address``. Needs a running event loop."""
        if address in self.endpoints:
            raise ValueError(f"A context is already connected at '{address}'")
        endpoint = RelayEndpoint(
            address,
            self,
            inbox_size=self.config.inbox_size,
            expired_id_memory=self.config.expired_id_memory,
        )
        self.endpoints[address] = endpoint
        endpoint.start()
        logger.info(f"Context connected: {address}")
        return endpoint

    async def disconnect(self, address: str) -> None:
        endpoint = self.endpoints.pop(address, None)
        if endpoint is not None:
            await endpoint.close()
            logger.info(f"Context disconnected: {address}")

    def is_connected(self, address: str) -> bool:
        return address in self.endpoints

    async def deliver(self, envelope: MessageEnvelope) -> bool:
        endpoint = self.endpoints.get(envelope.target)
        if endpoint is None:
            return False
        await endpoint.inbox.put(envelope.to_json())
        return True

    def stats(self) -> Dict[str, Dict[str, int]]:
        return {address: endpoint.stats.to_dict() for address, endpoint in self.endpoints.items()}

    async def close(self) -> None:
        for address in list(self.endpoints):
            await self.disconnect(address)
