"""Fan-out of session events to connected viewers.

Each viewer owns a ``Subscription``: a queue drained by its transport
task. Delivery into it is non-blocking. A viewer that falls too far
behind is closed and detached so that it cannot stall the others; it
can reconnect and receive a fresh backfill.
"""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from devagent.adapters.events import AgentEvent, ContextUpdateEvent, event_to_dict

from .context import apply_event
from .config import EngineConfig
from .models import make_id

if TYPE_CHECKING:
    from devagent.shared.services.event_store import EventStore
    from .registry import ActiveSessionState

logger = logging.getLogger(__name__)


class Subscription:
    """One viewer's ordered stream of serialized events.

    Iterating yields payload strings until the subscription is closed.
    """

    def __init__(
        self,
        session_id: str,
        max_pending: int,
        backfill: Iterable[str] = (),
    ) -> None:
        self.id = make_id(8)
        self.session_id = session_id
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._closed = False
        backfill = list(backfill)
        for payload in backfill:
            self._queue.put_nowait(payload)
        # Backfill does not count against the live-event allowance
        self._limit = max_pending + len(backfill)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def offer(self, payload: str) -> bool:
        """Enqueue without blocking. False when closed or full."""
        if self._closed or self._queue.qsize() >= self._limit:
            return False
        self._queue.put_nowait(payload)
        return True

    def close(self) -> None:
        """Drop anything pending and wake the consumer so it can exit."""
        if self._closed:
            return
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> str:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        payload = await self._queue.get()
        if payload is None:
            raise StopAsyncIteration
        return payload


class Broadcaster:
    """Cache, persist, fold and fan out each delivered event."""

    def __init__(self, store: EventStore, config: EngineConfig | None = None):
        self._store = store
        self._config = config or EngineConfig()

    def attach(self, state: ActiveSessionState) -> Subscription:
        """Snapshot the cache and register in one step.

        No await happens between the snapshot and registration, so the
        new viewer sees every event exactly once.
        """
        backfill = [json.dumps(event_to_dict(e)) for e in state.cache.snapshot()]
        subscription = Subscription(
            state.session.id,
            self._config.subscriber_queue_size,
            backfill=backfill,
        )
        state.subscribers.add(subscription)
        logger.info(
            "Subscriber attached session=%s sub=%s backfill=%d subscribers=%d",
            state.session.id, subscription.id, len(backfill), len(state.subscribers),
        )
        return subscription

    def detach(self, state: ActiveSessionState, subscription: Subscription) -> None:
        state.subscribers.discard(subscription)
        subscription.close()
        logger.info(
            "Subscriber detached session=%s sub=%s subscribers=%d",
            state.session.id, subscription.id, len(state.subscribers),
        )

    def close_all(self, state: ActiveSessionState) -> None:
        for subscription in list(state.subscribers):
            subscription.close()
        state.subscribers.clear()

    def dispatch(self, state: ActiveSessionState, event: AgentEvent) -> None:
        """Process one event for a live session. Runs without awaiting."""
        session = state.session
        state.cache.push(event)

        try:
            self._store.append_event(event)
        except Exception:
            logger.exception(
                "Failed to persist event session=%s id=%s type=%s",
                session.id, event.id, event.type.value,
            )

        try:
            state.context = apply_event(
                state.context, event,
                recent_tools_limit=self._config.recent_tools_limit,
            )
        except Exception:
            logger.exception(
                "Failed to fold event session=%s id=%s type=%s",
                session.id, event.id, event.type.value,
            )
        else:
            if event.tokens is not None or isinstance(event, ContextUpdateEvent):
                self._write_usage(state)

        payload = json.dumps(event_to_dict(event))
        for subscription in list(state.subscribers):
            if subscription.offer(payload):
                continue
            logger.warning(
                "Subscriber queue full, disconnecting session=%s sub=%s pending=%d",
                session.id, subscription.id, subscription.pending,
            )
            state.subscribers.discard(subscription)
            subscription.close()

        logger.debug(
            "Event delivered session=%s type=%s subscribers=%d",
            session.id, event.type.value, len(state.subscribers),
        )

    def _write_usage(self, state: ActiveSessionState) -> None:
        session = state.session
        session.tokens_used = state.context.tokens.used
        session.tokens_limit = state.context.tokens.limit
        session.touch()
        try:
            self._store.update_session(
                session.id,
                tokens_used=session.tokens_used,
                tokens_limit=session.tokens_limit,
                updated_at=session.updated_at,
            )
        except Exception:
            logger.exception("Failed to persist token usage session=%s", session.id)
