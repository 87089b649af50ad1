"""Adapters package - Bridge between agent processes and the engine.

This package contains the normalized event model, the adapter contract
and the generic subprocess adapter that feeds events to the engine.
"""
from __future__ import annotations

__all__ = [
    "AgentEvent",
    "EventType",
    "AgentAdapter",
    "AdapterFactory",
    "AdapterRegistry",
]

from devagent.adapters.events import AgentEvent, EventType
from devagent.adapters.base import AdapterFactory, AdapterRegistry, AgentAdapter
