"""Core data models for the session engine.

Sessions, statuses and token accounting records. Single source of truth
to avoid circular imports: the event model and the store both build on
these types.
"""
from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

DEFAULT_TOKENS_LIMIT = 200_000
DEFAULT_AGENT_TYPE = "claude-code"


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def make_id(length: int = 21) -> str:
    """URL-safe random identifier (same alphabet as nanoid)."""
    return secrets.token_urlsafe(length)[:length]


class SessionStatus(str, Enum):
    """Session lifecycle states. See lifecycle.py for transition rules."""
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    REPLAY = "replay"


class ToolStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class TokenBreakdown:
    """Named token quantities.

    ``buffer`` is headroom, not an additive component, so the fields do
    not need to sum to the reported total.
    """
    system: int = 0
    skills: int = 0
    mcp: int = 0
    messages: int = 0
    buffer: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "system": self.system,
            "skills": self.skills,
            "mcp": self.mcp,
            "messages": self.messages,
            "buffer": self.buffer,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> TokenBreakdown:
        data = data or {}
        return cls(
            system=int(data.get("system") or 0),
            skills=int(data.get("skills") or 0),
            mcp=int(data.get("mcp") or 0),
            messages=int(data.get("messages") or 0),
            buffer=int(data.get("buffer") or 0),
        )


@dataclass(frozen=True)
class TokenInfo:
    """Token accounting carried by an event."""
    added: int = 0
    total: int = 0
    limit: int = DEFAULT_TOKENS_LIMIT
    breakdown: TokenBreakdown = field(default_factory=TokenBreakdown)

    def to_dict(self) -> dict[str, Any]:
        return {
            "added": self.added,
            "total": self.total,
            "limit": self.limit,
            "breakdown": self.breakdown.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenInfo:
        return cls(
            added=int(data.get("added") or 0),
            total=int(data.get("total") or 0),
            limit=int(data.get("limit") or DEFAULT_TOKENS_LIMIT),
            breakdown=TokenBreakdown.from_dict(data.get("breakdown")),
        )


@dataclass
class Session:
    """One tracked agent working context.

    While a session is attached in-process, the registry holds the
    authoritative copy of this record; the store is written through.
    """
    id: str
    name: str
    working_dir: str
    status: SessionStatus = SessionStatus.STOPPED
    agent_type: str = DEFAULT_AGENT_TYPE
    tokens_used: int = 0
    tokens_limit: int = DEFAULT_TOKENS_LIMIT
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)

    @classmethod
    def new(
        cls,
        working_dir: str,
        name: str | None = None,
        agent_type: str = DEFAULT_AGENT_TYPE,
        tokens_limit: int = DEFAULT_TOKENS_LIMIT,
    ) -> Session:
        session_id = make_id(10)
        now = now_ms()
        return cls(
            id=session_id,
            name=name or f"session-{session_id[:6]}",
            working_dir=working_dir,
            agent_type=agent_type,
            tokens_limit=tokens_limit,
            created_at=now,
            updated_at=now,
        )

    def touch(self) -> None:
        self.updated_at = now_ms()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "workingDir": self.working_dir,
            "agentType": self.agent_type,
            "tokensUsed": self.tokens_used,
            "tokensLimit": self.tokens_limit,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class SessionSummary:
    """Session row rolled up with its persisted event count."""
    id: str
    name: str
    status: SessionStatus
    agent_type: str
    tokens_used: int
    tokens_limit: int
    event_count: int
    created_at: int
    updated_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "agentType": self.agent_type,
            "tokensUsed": self.tokens_used,
            "tokensLimit": self.tokens_limit,
            "eventCount": self.event_count,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
