"""
Per-conversation session state.

A session binds one conversation to one page context. All state that used to be
keyed by tab id lives on the ``Session`` object and is reached only through the
``SessionRegistry``.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional

from webpilot.agents.exceptions import SessionBusyError, SessionNotFoundError
from webpilot.agents.memory import ConversationMemory
from webpilot.agents.utils import session_extra

logger = logging.getLogger(__name__)

BackendKind = Literal["dom", "coordinate"]


@dataclass
class Session:
    session_id: str
    backend_kind: BackendKind = "dom"
    memory: ConversationMemory = field(default_factory=ConversationMemory)
    abort_event: asyncio.Event = field(default_factory=asyncio.Event)
    run_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    created_at: float = field(default_factory=time.time)

    @property
    def is_running(self) -> bool:
        return self.run_lock.locked()

    def abort(self) -> None:
        self.abort_event.set()

    def claim(self) -> None:
        """Fail fast when a run is already in progress instead of queueing behind it."""
        if self.run_lock.locked():
            raise SessionBusyError(
                f"Session '{self.session_id}' already has a task running", session_id=self.session_id
            )


class SessionRegistry:
    """Owns every live session; the only way to create, find or tear one down."""

    def __init__(self, full_context_turns: int = 2):
        self.full_context_turns = full_context_turns
        self._sessions: Dict[str, Session] = {}

    def get_or_create(self, session_id: str, backend_kind: BackendKind = "dom") -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            session = Session(
                session_id=session_id,
                backend_kind=backend_kind,
                memory=ConversationMemory(self.full_context_turns),
            )
            self._sessions[session_id] = session
            logger.info(f"Session created ({backend_kind} backend)", extra=session_extra(session_id))
        return session

    def get(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"No session '{session_id}'", session_id=session_id)
        return session

    def find(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def destroy(self, session_id: str) -> bool:
        """Remove the session, aborting any run still in progress."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.abort()
        logger.info("Session destroyed", extra=session_extra(session_id))
        return True

    def reset(self, session_id: str) -> Session:
        """Start a new conversation on the same page."""
        previous = self._sessions.get(session_id)
        backend_kind = previous.backend_kind if previous else "dom"
        self.destroy(session_id)
        return self.get_or_create(session_id, backend_kind)

    def ids(self) -> List[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions
