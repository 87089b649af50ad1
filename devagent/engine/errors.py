"""Exception hierarchy for the session engine.

Specific exceptions for each failure mode. The server maps each one
to an HTTP status in a single place.
"""
from __future__ import annotations


class EngineError(Exception):
    """Base exception for all session engine errors."""


class SessionNotFoundError(EngineError):
    """No session with this id exists (or it has been deleted)."""
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class InvalidSessionStateError(EngineError):
    """The requested operation does not apply to the session's status."""
    def __init__(self, session_id: str, status: str, operation: str):
        self.session_id = session_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} session {session_id} while {status}"
        )


class AdapterNotAvailableError(EngineError):
    """Unknown agent type, or its executable is not installed."""
    def __init__(self, agent_type: str, available: list[str] | None = None):
        self.agent_type = agent_type
        self.available = list(available or [])
        available_str = ", ".join(self.available) or "none"
        super().__init__(
            f"Agent adapter not available: {agent_type} "
            f"(available: {available_str})"
        )


class SessionLimitError(EngineError):
    """Too many sessions already have a running agent."""
    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(
            f"Running session limit reached ({limit})"
        )


class AdapterError(EngineError):
    """The agent process could not be spawned or is not accepting input."""
    def __init__(self, message: str, agent_type: str | None = None):
        self.agent_type = agent_type
        super().__init__(message)
