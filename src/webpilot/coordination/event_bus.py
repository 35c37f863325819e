"""
Event bus for the chat-facing context.

Progress events arriving over the relay are re-emitted here so any number of
local consumers (CLI printer, UI adapter, tests) can follow a run.
"""

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

# Subscribe with this to receive every event type
ALL_EVENTS = "*"


class EventBus:
    """
    Simple event bus for status events.

    Listeners are async callables keyed by event class name. A listener that keeps
    failing is removed so it cannot flood the log on every event.
    """

    def __init__(self, max_history: int = 1000):
        """Initialize the event bus."""
        self.events: List[Any] = []
        self.max_history = max_history
        self.listeners: Dict[str, List[Callable]] = defaultdict(list)
        self._listener_errors: Dict[str, int] = defaultdict(int)
        self._max_listener_errors = 5

    async def emit(self, event: Any) -> None:
        """
        Emit an event to all listeners.

        Args:
            event: The event object to emit
        """
        self.events.append(event)
        if len(self.events) > self.max_history:
            del self.events[: len(self.events) - self.max_history]

        event_type = type(event).__name__
        for key in (event_type, ALL_EVENTS):
            for listener in list(self.listeners.get(key, [])):
                try:
                    await listener(event)
                except Exception as e:
                    # Listener failures must not break the run that produced the event
                    listener_id = f"{key}:{id(listener)}"
                    self._listener_errors[listener_id] += 1

                    logger.error(f"Error in event listener for {event_type}: {e}")

                    if self._listener_errors[listener_id] >= self._max_listener_errors:
                        logger.warning(f"Removing failing listener for {key} after {self._max_listener_errors} errors")
                        self.listeners[key].remove(listener)

    def subscribe(self, event_type: str, listener: Callable) -> None:
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Name of the event class, or ``"*"`` for every event
            listener: Async callable to handle events
        """
        if listener not in self.listeners[event_type]:
            self.listeners[event_type].append(listener)
            logger.debug(f"Subscribed listener to {event_type}")

    def unsubscribe(self, event_type: str, listener: Callable) -> None:
        if event_type in self.listeners and listener in self.listeners[event_type]:
            self.listeners[event_type].remove(listener)
            logger.debug(f"Unsubscribed listener from {event_type}")

    def clear_listeners(self, event_type: Optional[str] = None) -> None:
        """
        Clear listeners for a specific event type or all listeners.

        Args:
            event_type: Optional event type to clear. If None, clears all.
        """
        if event_type:
            self.listeners.pop(event_type, None)
        else:
            self.listeners.clear()
            self._listener_errors.clear()

    def get_event_count(self, event_type: Optional[str] = None) -> int:
        """Count events in history, optionally of one type."""
        if event_type:
            return sum(1 for e in self.events if type(e).__name__ == event_type)
        return len(self.events)
