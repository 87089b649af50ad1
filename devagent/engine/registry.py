"""In-process registry of live sessions.

A session becomes live (an ``ActiveSessionState``) on first interaction:
create, start, subscribe, or any read that needs its context. Live state
is rebuilt from the store by replaying the persisted event log, so a
process restart loses nothing but attached agents and viewers.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .config import EngineConfig
from .context import ContextAggregate, apply_event
from .errors import SessionNotFoundError
from .lifecycle import STALE_STATUSES
from .models import Session, SessionStatus
from .ring_buffer import RecentEventCache

if TYPE_CHECKING:
    from devagent.adapters.base import AgentAdapter
    from devagent.adapters.events import AgentEvent
    from devagent.shared.services.event_store import EventStore
    from .broadcast import Subscription

logger = logging.getLogger(__name__)


@dataclass
class ActiveSessionState:
    """Everything the engine holds in memory for one live session."""
    session: Session
    cache: RecentEventCache[AgentEvent]
    context: ContextAggregate
    subscribers: set[Subscription] = field(default_factory=set)
    adapter: AgentAdapter | None = None
    # True while adapter.start() is awaited; the slot is already taken
    starting: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class SessionRegistry:
    """Maps session ids to live state. Owned by a single event loop."""

    def __init__(self, store: EventStore, config: EngineConfig | None = None):
        self._store = store
        self._config = config or EngineConfig()
        self._sessions: dict[str, ActiveSessionState] = {}

    def _new_state(self, session: Session) -> ActiveSessionState:
        return ActiveSessionState(
            session=session,
            cache=RecentEventCache(self._config.cache_capacity),
            context=ContextAggregate.empty(session.tokens_limit),
        )

    def get(self, session_id: str) -> ActiveSessionState | None:
        return self._sessions.get(session_id)

    def register(self, session: Session) -> ActiveSessionState:
        """Make a freshly created session live. Its log is empty."""
        state = self._new_state(session)
        self._sessions[session.id] = state
        return state

    def attach(self, session_id: str) -> ActiveSessionState:
        """Return live state, materializing it from the store if needed."""
        state = self._sessions.get(session_id)
        if state is not None:
            return state

        session = self._store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        state = self._new_state(session)
        count = 0
        for event in self._store.iter_events(session_id):
            state.cache.push(event)
            try:
                state.context = apply_event(
                    state.context, event,
                    recent_tools_limit=self._config.recent_tools_limit,
                )
            except Exception:
                # Same outcome as the live fold: context unchanged
                logger.exception(
                    "Failed to replay event session=%s id=%s type=%s",
                    session_id, event.id, event.type.value,
                )
            count += 1

        if session.status in STALE_STATUSES:
            # No agent process survives a restart
            logger.info(
                "Resetting stale session status session=%s status=%s",
                session_id, session.status.value,
            )
            session.status = SessionStatus.STOPPED
            session.touch()
            try:
                self._store.update_session(
                    session_id,
                    status=session.status,
                    updated_at=session.updated_at,
                )
            except Exception:
                logger.exception("Failed to persist status reset session=%s", session_id)

        self._sessions[session_id] = state
        logger.info(
            "Session materialized session=%s events=%d status=%s",
            session_id, count, session.status.value,
        )
        return state

    def remove(self, session_id: str) -> ActiveSessionState | None:
        """Forget live state, closing any remaining subscribers."""
        state = self._sessions.pop(session_id, None)
        if state is None:
            return None
        for subscription in list(state.subscribers):
            subscription.close()
        state.subscribers.clear()
        return state

    def list_active(self) -> list[ActiveSessionState]:
        return list(self._sessions.values())

    def running_count(self) -> int:
        """Sessions whose attached agent process is still alive."""
        return sum(
            1 for s in self._sessions.values()
            if s.adapter is not None and (s.starting or s.adapter.is_running)
        )

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
