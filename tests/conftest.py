"""Shared fixtures: an on-disk store and a fake agent adapter."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import pytest

from devagent.adapters.base import AdapterFactory, AdapterRegistry, AgentAdapter, EmitCallback
from devagent.adapters.events import AgentEvent
from devagent.engine.config import EngineConfig
from devagent.engine.engine import SessionEngine
from devagent.engine.errors import AdapterError
from devagent.shared.services.event_store import EventStore


class FakeAdapter(AgentAdapter):
    """Records lifecycle calls; tests push events through ``emit``."""

    def __init__(self, session_id: str, working_dir: str, emit: EmitCallback, fail_start: bool = False):
        super().__init__(session_id, working_dir, emit)
        self.fail_start = fail_start
        self.calls: list[str] = []
        self.prompts: list[str] = []
        self._running = False
        # Optional coroutine run inside stop(), before the process "exits"
        self.on_stop: Callable[[FakeAdapter], Awaitable[None]] | None = None

    async def start(self) -> None:
        self.calls.append("start")
        if self.fail_start:
            raise AdapterError("spawn failed")
        self._running = True

    async def stop(self) -> None:
        self.calls.append("stop")
        if self.on_stop is not None:
            await self.on_stop(self)
        self._running = False

    async def send_prompt(self, text: str) -> None:
        if not self._running:
            raise AdapterError("not running")
        self.prompts.append(text)

    def pause(self) -> None:
        self.calls.append("pause")

    def resume(self) -> None:
        self.calls.append("resume")

    @property
    def is_running(self) -> bool:
        return self._running

    def emit(self, event: AgentEvent) -> None:
        self._emit(event)


class FakeFactory(AdapterFactory):
    def __init__(self, name: str = "claude-code", available: bool = True):
        self._name = name
        self.available = available
        self.fail_start = False
        self.created: list[FakeAdapter] = []

    @property
    def name(self) -> str:
        return self._name

    def is_available(self) -> bool:
        return self.available

    def create(self, session_id: str, working_dir: str, emit: EmitCallback) -> FakeAdapter:
        adapter = FakeAdapter(session_id, working_dir, emit, fail_start=self.fail_start)
        self.created.append(adapter)
        return adapter

    @property
    def last(self) -> FakeAdapter:
        return self.created[-1]


@pytest.fixture
def store(tmp_path) -> EventStore:
    return EventStore(tmp_path / "devagent.db")


@pytest.fixture
def fake_factory() -> FakeFactory:
    return FakeFactory()


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(cache_capacity=100, max_running_sessions=10, subscriber_queue_size=1000)


@pytest.fixture
def engine(store, fake_factory, engine_config) -> SessionEngine:
    adapters = AdapterRegistry()
    adapters.register(fake_factory)
    return SessionEngine(store, adapters, engine_config)
