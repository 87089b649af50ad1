"""Abstract base for agent adapters.

An adapter wraps one running agent for one session. It turns whatever
the agent emits into normalized events and hands each one to the
``emit`` callback it was created with. The engine supplies that
callback; it never raises.
"""
from __future__ import annotations

import abc
import logging
import shutil
from collections.abc import Callable

from .events import AgentEvent

logger = logging.getLogger(__name__)

EmitCallback = Callable[[AgentEvent], None]


class AgentAdapter(abc.ABC):
    """One agent process attached to one session."""

    def __init__(self, session_id: str, working_dir: str, emit: EmitCallback):
        self.session_id = session_id
        self.working_dir = working_dir
        self._emit = emit

    @abc.abstractmethod
    async def start(self) -> None:
        """Launch the agent. Raises AdapterError if it cannot be started."""

    @abc.abstractmethod
    async def stop(self) -> None:
        """Terminate the agent and release its resources. Idempotent."""

    @abc.abstractmethod
    async def send_prompt(self, text: str) -> None:
        """Forward user input to the running agent."""

    @abc.abstractmethod
    def pause(self) -> None:
        """Stop consuming agent output until resume()."""

    @abc.abstractmethod
    def resume(self) -> None:
        """Continue consuming agent output."""

    @property
    @abc.abstractmethod
    def is_running(self) -> bool:
        """True while the underlying agent is alive."""


class AdapterFactory(abc.ABC):
    """Builds adapters for one agent type."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Agent type served by this factory (e.g. 'claude-code')."""

    @abc.abstractmethod
    def is_available(self) -> bool:
        """Check if this agent's runtime is installed."""

    @abc.abstractmethod
    def create(
        self, session_id: str, working_dir: str, emit: EmitCallback,
    ) -> AgentAdapter:
        """Build a not-yet-started adapter for a session."""

    @staticmethod
    def resolve_command(command: str) -> str | None:
        """Absolute path of an executable, or None if it is not on PATH."""
        return shutil.which(command)


class AdapterRegistry:
    """Registry of adapter factories.

    Maps agent types (e.g. 'claude-code') to AdapterFactory instances.
    """

    def __init__(self) -> None:
        self._factories: dict[str, AdapterFactory] = {}

    def register(self, factory: AdapterFactory) -> None:
        """Register a factory under its agent type."""
        self._factories[factory.name] = factory
        logger.info(
            "Adapter registered: %s (available=%s)",
            factory.name,
            factory.is_available(),
        )

    def get(self, name: str) -> AdapterFactory | None:
        """Get a factory by agent type, or None if not registered."""
        return self._factories.get(name)

    def list_names(self) -> list[str]:
        """Return all registered agent types."""
        return list(self._factories.keys())

    def list_available(self) -> list[str]:
        """Return agent types whose runtime is installed."""
        return [
            name for name, f in self._factories.items()
            if f.is_available()
        ]

    def __contains__(self, name: object) -> bool:
        return name in self._factories
