"""Incrementally maintained context summary for a session.

``apply_event`` is a pure fold: it returns a new ``ContextAggregate`` and
never mutates its input. Folding events one at a time as they arrive
yields the same aggregate as ``replay`` over the persisted log.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Iterable

from devagent.adapters.events import (
    AgentEvent,
    ContextUpdateEvent,
    McpCallEvent,
    SkillActivatedEvent,
    ToolCallEvent,
    ToolResultEvent,
)

from .models import DEFAULT_TOKENS_LIMIT, TokenBreakdown, ToolStatus

RECENT_TOOLS_LIMIT = 50

_TOOL_NAME_ALIASES: dict[str, str] = {
    "write": "Write",
    "write_file": "Write",
    "file_write": "Write",
    "create_file": "Write",
    "edit": "Edit",
    "edit_file": "Edit",
    "file_edit": "Edit",
    "replace_string": "Edit",
    "replacestring": "Edit",
    "multiedit": "MultiEdit",
    "multi_edit": "MultiEdit",
    "notebookedit": "NotebookEdit",
    "notebook_edit": "NotebookEdit",
}

FILE_MUTATING_TOOLS = frozenset({"Write", "Edit", "MultiEdit", "NotebookEdit"})
_PATH_KEYS = ("file_path", "notebook_path")


def normalize_tool_name(name: str) -> str:
    """Strip MCP server prefix and map provider aliases to canonical names.

    E.g. ``mcp__fs__write_file`` → ``Write`` and ``edit_file`` → ``Edit``.
    """
    if name.startswith("mcp__") and name.count("__") >= 2:
        name = name.split("__", 2)[2]
    return _TOOL_NAME_ALIASES.get(name.lower(), name)


@dataclass(frozen=True)
class TokenUsage:
    used: int = 0
    limit: int = DEFAULT_TOKENS_LIMIT
    breakdown: TokenBreakdown = field(default_factory=TokenBreakdown)

    def to_dict(self) -> dict[str, Any]:
        return {
            "used": self.used,
            "limit": self.limit,
            "breakdown": self.breakdown.to_dict(),
        }


@dataclass(frozen=True)
class SkillEntry:
    name: str
    source: str
    tokens: int

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "source": self.source, "tokens": self.tokens}


@dataclass(frozen=True)
class McpServerEntry:
    server: str
    tools: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"server": self.server, "tools": list(self.tools)}


@dataclass(frozen=True)
class ToolEntry:
    name: str
    status: str
    timestamp: int
    tool_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "timestamp": self.timestamp,
            "toolId": self.tool_id,
        }


@dataclass(frozen=True)
class ContextAggregate:
    """Derived session state. ``recent_tools`` is most-recent-first."""
    tokens: TokenUsage = field(default_factory=TokenUsage)
    active_skills: tuple[SkillEntry, ...] = ()
    active_mcp: tuple[McpServerEntry, ...] = ()
    recent_tools: tuple[ToolEntry, ...] = ()
    files_modified: tuple[str, ...] = ()

    @classmethod
    def empty(cls, tokens_limit: int = DEFAULT_TOKENS_LIMIT) -> ContextAggregate:
        return cls(tokens=TokenUsage(limit=tokens_limit))

    def to_dict(self) -> dict[str, Any]:
        return {
            "tokens": self.tokens.to_dict(),
            "activeSkills": [s.to_dict() for s in self.active_skills],
            "activeMcp": [m.to_dict() for m in self.active_mcp],
            "recentTools": [t.to_dict() for t in self.recent_tools],
            "filesModified": list(self.files_modified),
        }


def _add_mcp_tool(
    servers: tuple[McpServerEntry, ...], server: str, tool: str
) -> tuple[McpServerEntry, ...]:
    for i, entry in enumerate(servers):
        if entry.server == server:
            if tool in entry.tools:
                return servers
            updated = replace(entry, tools=entry.tools + (tool,))
            return servers[:i] + (updated,) + servers[i + 1:]
    return servers + (McpServerEntry(server=server, tools=(tool,)),)


def _modified_path(tool_name: str, tool_input: dict) -> str | None:
    if normalize_tool_name(tool_name) not in FILE_MUTATING_TOOLS:
        return None
    for key in _PATH_KEYS:
        path = tool_input.get(key)
        if isinstance(path, str) and path:
            return path
    return None


def _mark_tool_result(
    tools: tuple[ToolEntry, ...], tool_id: str, is_error: bool
) -> tuple[ToolEntry, ...]:
    if not tool_id:
        return tools
    status = ToolStatus.ERROR.value if is_error else ToolStatus.DONE.value
    # recent_tools is newest-first, so the first hit is the most recent call
    for i, entry in enumerate(tools):
        if entry.tool_id == tool_id:
            return tools[:i] + (replace(entry, status=status),) + tools[i + 1:]
    return tools


def apply_event(
    aggregate: ContextAggregate,
    event: AgentEvent,
    *,
    recent_tools_limit: int = RECENT_TOOLS_LIMIT,
) -> ContextAggregate:
    """Fold one event into the aggregate, returning a new aggregate."""
    agg = aggregate

    if event.tokens is not None:
        agg = replace(agg, tokens=TokenUsage(
            used=event.tokens.total,
            limit=event.tokens.limit,
            breakdown=event.tokens.breakdown,
        ))

    if isinstance(event, SkillActivatedEvent):
        skill = SkillEntry(
            name=event.data.skill_name,
            source=event.data.source,
            tokens=event.data.tokens_added,
        )
        agg = replace(agg, active_skills=agg.active_skills + (skill,))

    elif isinstance(event, McpCallEvent):
        agg = replace(agg, active_mcp=_add_mcp_tool(
            agg.active_mcp, event.data.server, event.data.tool,
        ))

    elif isinstance(event, ToolCallEvent):
        entry = ToolEntry(
            name=event.data.tool_name,
            status=event.data.status,
            timestamp=event.timestamp,
            tool_id=event.data.tool_id,
        )
        tools = ((entry,) + agg.recent_tools)[:recent_tools_limit]
        files = agg.files_modified
        path = _modified_path(event.data.tool_name, event.data.input)
        if path is not None and path not in files:
            files = files + (path,)
        agg = replace(agg, recent_tools=tools, files_modified=files)

    elif isinstance(event, ToolResultEvent):
        agg = replace(agg, recent_tools=_mark_tool_result(
            agg.recent_tools, event.data.tool_id, event.data.is_error,
        ))

    elif isinstance(event, ContextUpdateEvent):
        agg = replace(agg, tokens=TokenUsage(
            used=event.data.total_tokens,
            limit=event.data.limit,
            breakdown=event.data.breakdown,
        ))

    return agg


def replay(
    events: Iterable[AgentEvent],
    *,
    tokens_limit: int = DEFAULT_TOKENS_LIMIT,
    recent_tools_limit: int = RECENT_TOOLS_LIMIT,
) -> ContextAggregate:
    """Fold an ordered event log from the empty aggregate."""
    agg = ContextAggregate.empty(tokens_limit)
    for event in events:
        agg = apply_event(agg, event, recent_tools_limit=recent_tools_limit)
    return agg
