"""Session engine: lifecycle operations and event delivery.

The single entry point used by the HTTP layer and by adapters. All
state is owned by one asyncio event loop. ``deliver`` and ``subscribe``
are synchronous, so each runs to completion without interleaving and
every session sees one total order of events. Lifecycle operations
that await adapter I/O hold that session's own lock.
"""
from __future__ import annotations

import logging
from dataclasses import replace

from devagent.adapters.base import AdapterRegistry
from devagent.adapters.events import (
    AgentEvent,
    EventType,
    MessageData,
    new_event,
)
from devagent.shared.services.event_store import DEFAULT_PAGE_SIZE, EventStore

from .broadcast import Broadcaster, Subscription
from .config import EngineConfig
from .context import ContextAggregate
from .errors import (
    AdapterNotAvailableError,
    InvalidSessionStateError,
    SessionLimitError,
    SessionNotFoundError,
)
from .lifecycle import STALE_STATUSES, SessionOp, next_status
from .models import DEFAULT_AGENT_TYPE, Session, SessionStatus, SessionSummary
from .registry import ActiveSessionState, SessionRegistry

logger = logging.getLogger(__name__)


class SessionEngine:
    """Owns live sessions, their agents and their viewers."""

    def __init__(
        self,
        store: EventStore,
        adapters: AdapterRegistry,
        config: EngineConfig | None = None,
    ):
        self.config = config or EngineConfig()
        self.store = store
        self.adapters = adapters
        self.registry = SessionRegistry(store, self.config)
        self.broadcaster = Broadcaster(store, self.config)

    # ── Sessions ──

    def create_session(
        self,
        working_dir: str,
        name: str | None = None,
        agent_type: str = DEFAULT_AGENT_TYPE,
    ) -> Session:
        if not working_dir or not isinstance(working_dir, str):
            raise ValueError("workingDir is required")
        session = Session.new(
            working_dir,
            name=name or None,
            agent_type=agent_type or DEFAULT_AGENT_TYPE,
            tokens_limit=self.config.tokens_limit,
        )
        self.store.create_session(session)
        self.registry.register(session)
        logger.info(
            "Session created session=%s agent=%s cwd=%s",
            session.id, session.agent_type, working_dir,
        )
        return replace(session)

    def get_session(self, session_id: str) -> Session:
        """Live copy if attached, else the persisted row."""
        state = self.registry.get(session_id)
        if state is not None:
            return replace(state.session)
        session = self.store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        if session.status in STALE_STATUSES:
            # Not live means no agent in this process
            session.status = SessionStatus.STOPPED
        return session

    def list_sessions(self) -> list[SessionSummary]:
        summaries = self.store.list_sessions()
        # Live status and usage are authoritative over the stored row
        for summary in summaries:
            state = self.registry.get(summary.id)
            if state is not None:
                summary.status = state.session.status
                summary.tokens_used = state.session.tokens_used
                summary.tokens_limit = state.session.tokens_limit
            elif summary.status in STALE_STATUSES:
                summary.status = SessionStatus.STOPPED
        return summaries

    def _set_status(self, state: ActiveSessionState, status: SessionStatus) -> None:
        session = state.session
        previous = session.status
        session.status = status
        session.touch()
        try:
            self.store.update_session(
                session.id, status=status, updated_at=session.updated_at,
            )
        except Exception:
            logger.exception("Failed to persist session status session=%s", session.id)
        logger.info(
            "Session status session=%s %s -> %s",
            session.id, previous.value, status.value,
        )

    # ── Lifecycle ──

    async def start_session(self, session_id: str) -> Session:
        state = self.registry.attach(session_id)
        async with state.lock:
            session = state.session
            target = next_status(session.status, SessionOp.START)
            if state.adapter is not None or target is None:
                raise InvalidSessionStateError(
                    session_id, session.status.value, SessionOp.START.value,
                )

            factory = self.adapters.get(session.agent_type)
            if factory is None or not factory.is_available():
                raise AdapterNotAvailableError(
                    session.agent_type, self.adapters.list_available(),
                )
            if self.registry.running_count() >= self.config.max_running_sessions:
                raise SessionLimitError(self.config.max_running_sessions)

            adapter = factory.create(
                session_id,
                session.working_dir,
                lambda event: self.deliver(session_id, event),
            )
            # Reserve the slot before awaiting so concurrent starts count it
            state.adapter = adapter
            state.starting = True
            try:
                await adapter.start()
            except BaseException:
                state.adapter = None
                raise
            finally:
                state.starting = False
            self._set_status(state, target)
            return replace(session)

    async def pause_session(self, session_id: str) -> Session:
        state = self.registry.attach(session_id)
        async with state.lock:
            target = next_status(state.session.status, SessionOp.PAUSE)
            if state.adapter is not None and target is not None:
                state.adapter.pause()
                self._set_status(state, target)
            return replace(state.session)

    async def resume_session(self, session_id: str) -> Session:
        state = self.registry.attach(session_id)
        async with state.lock:
            target = next_status(state.session.status, SessionOp.RESUME)
            if state.adapter is not None and target is not None:
                state.adapter.resume()
                self._set_status(state, target)
            return replace(state.session)

    async def stop_session(self, session_id: str) -> Session:
        state = self.registry.attach(session_id)
        async with state.lock:
            await self._stop_locked(state)
            return replace(state.session)

    async def _stop_locked(self, state: ActiveSessionState) -> None:
        adapter = state.adapter
        if adapter is None:
            return
        try:
            await adapter.stop()
        finally:
            state.adapter = None
            self._set_status(state, SessionStatus.STOPPED)

    async def delete_session(self, session_id: str) -> None:
        state = self.registry.get(session_id)
        if state is None:
            if self.store.get_session(session_id) is None:
                raise SessionNotFoundError(session_id)
            self.store.delete_session(session_id)
            logger.info("Session deleted session=%s", session_id)
            return

        async with state.lock:
            try:
                await self._stop_locked(state)
            finally:
                self.registry.remove(session_id)
                self.store.delete_session(session_id)
        logger.info("Session deleted session=%s", session_id)

    async def send_prompt(self, session_id: str, message: str) -> None:
        """Record the prompt as a user message and forward it to the agent."""
        if not isinstance(message, str) or not message:
            raise ValueError("message is required")
        state = self.registry.attach(session_id)
        adapter = state.adapter
        if adapter is None:
            raise InvalidSessionStateError(
                session_id, state.session.status.value, "prompt",
            )
        self.deliver(session_id, new_event(
            session_id, EventType.MESSAGE, MessageData(role="user", content=message),
        ))
        await adapter.send_prompt(message)

    # ── Reads ──

    def get_context_summary(self, session_id: str) -> ContextAggregate:
        return self.registry.attach(session_id).context

    def list_events(
        self,
        session_id: str,
        offset: int = 0,
        limit: int = DEFAULT_PAGE_SIZE,
        type: str | None = None,
    ) -> list[AgentEvent]:
        """A newest-first page of the persisted log."""
        if self.registry.get(session_id) is None and self.store.get_session(session_id) is None:
            raise SessionNotFoundError(session_id)
        if type is not None:
            type = EventType(type).value
        if offset < 0 or limit < 0:
            raise ValueError("offset and limit must be non-negative")
        return self.store.list_events(session_id, offset=offset, limit=limit, type=type)

    # ── Viewers ──

    def subscribe(self, session_id: str) -> Subscription:
        """Register a viewer. Its queue already holds the backfill."""
        state = self.registry.attach(session_id)
        return self.broadcaster.attach(state)

    def unsubscribe(self, session_id: str, subscription: Subscription) -> None:
        state = self.registry.get(session_id)
        if state is None:
            subscription.close()
            return
        self.broadcaster.detach(state, subscription)

    # ── Delivery ──

    def deliver(self, session_id: str, event: AgentEvent) -> None:
        """Accept one event from an adapter. Never raises."""
        state = self.registry.get(session_id)
        if state is None:
            logger.debug(
                "Dropping event for unknown session session=%s type=%s",
                session_id, event.type.value,
            )
            return
        if event.session_id != session_id:
            event = replace(event, session_id=session_id)
        try:
            self.broadcaster.dispatch(state, event)
        except Exception:
            logger.exception(
                "Event dispatch failed session=%s type=%s",
                session_id, event.type.value,
            )

    # ── Shutdown ──

    async def shutdown(self) -> None:
        """Stop every attached agent and disconnect every viewer."""
        for state in self.registry.list_active():
            async with state.lock:
                try:
                    await self._stop_locked(state)
                except Exception:
                    logger.exception(
                        "Failed to stop agent on shutdown session=%s", state.session.id,
                    )
            self.broadcaster.close_all(state)
        logger.info("Session engine shut down")
