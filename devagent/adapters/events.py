"""Event types emitted by agent adapters.

Each event is a frozen dataclass carrying a typed payload. The wire form
is the camelCase JSON document consumed by viewers:

    {"id", "sessionId", "type", "timestamp", "data", "tokens"?}
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar

from devagent.engine.models import (
    DEFAULT_TOKENS_LIMIT,
    TokenBreakdown,
    TokenInfo,
    make_id,
    now_ms,
)


class EventType(str, Enum):
    MESSAGE = "message"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    THINKING = "thinking"
    SKILL_ACTIVATED = "skill_activated"
    MCP_CALL = "mcp_call"
    CONTEXT_UPDATE = "context_update"
    ERROR = "error"
    LOOP_EVENT = "loop_event"


MESSAGE_ROLES = frozenset({"user", "assistant"})
CALL_STATUSES = frozenset({"pending", "running", "done", "error"})
LOOP_TYPES = frozenset({
    "plan_created",
    "task_started",
    "task_progress",
    "task_completed",
    "validation_started",
    "validation_passed",
    "validation_failed",
    "loop_completed",
    "loop_aborted",
})


# ── Payloads ──


@dataclass(frozen=True)
class MessageData:
    role: str = "assistant"
    content: str = ""


@dataclass(frozen=True)
class ToolCallData:
    tool_name: str = ""
    tool_id: str = ""
    input: dict = field(default_factory=dict)
    status: str = "pending"


@dataclass(frozen=True)
class ToolResultData:
    tool_id: str = ""
    tool_name: str = ""
    result: Any = None
    is_error: bool = False
    duration: int | None = None


@dataclass(frozen=True)
class ThinkingData:
    content: str = ""


@dataclass(frozen=True)
class SkillActivatedData:
    skill_name: str = ""
    source: str = ""
    tokens_added: int = 0


@dataclass(frozen=True)
class McpCallData:
    server: str = ""
    tool: str = ""
    input: dict = field(default_factory=dict)
    status: str = "pending"


@dataclass(frozen=True)
class ContextUpdateData:
    breakdown: TokenBreakdown = field(default_factory=TokenBreakdown)
    total_tokens: int = 0
    limit: int = DEFAULT_TOKENS_LIMIT


@dataclass(frozen=True)
class ErrorData:
    message: str = ""
    code: str | None = None


@dataclass(frozen=True)
class LoopEventData:
    """Autonomous-loop progress. Only ``loop_type`` is always present."""
    loop_type: str = ""
    task_id: str | None = None
    tasks: list | None = None
    progress: Any = None
    step: str | None = None
    check: str | None = None
    error: str | None = None


# ── Events ──


@dataclass(frozen=True)
class AgentEvent:
    """Base event. Subclasses pin ``type`` and carry a typed ``data`` payload."""
    type: ClassVar[EventType]
    session_id: str = ""
    id: str = field(default_factory=make_id)
    timestamp: int = field(default_factory=now_ms)
    tokens: TokenInfo | None = None


@dataclass(frozen=True)
class MessageEvent(AgentEvent):
    type: ClassVar[EventType] = EventType.MESSAGE
    data: MessageData = field(default_factory=MessageData)


@dataclass(frozen=True)
class ToolCallEvent(AgentEvent):
    type: ClassVar[EventType] = EventType.TOOL_CALL
    data: ToolCallData = field(default_factory=ToolCallData)


@dataclass(frozen=True)
class ToolResultEvent(AgentEvent):
    type: ClassVar[EventType] = EventType.TOOL_RESULT
    data: ToolResultData = field(default_factory=ToolResultData)


@dataclass(frozen=True)
class ThinkingEvent(AgentEvent):
    type: ClassVar[EventType] = EventType.THINKING
    data: ThinkingData = field(default_factory=ThinkingData)


@dataclass(frozen=True)
class SkillActivatedEvent(AgentEvent):
    type: ClassVar[EventType] = EventType.SKILL_ACTIVATED
    data: SkillActivatedData = field(default_factory=SkillActivatedData)


@dataclass(frozen=True)
class McpCallEvent(AgentEvent):
    type: ClassVar[EventType] = EventType.MCP_CALL
    data: McpCallData = field(default_factory=McpCallData)


@dataclass(frozen=True)
class ContextUpdateEvent(AgentEvent):
    type: ClassVar[EventType] = EventType.CONTEXT_UPDATE
    data: ContextUpdateData = field(default_factory=ContextUpdateData)


@dataclass(frozen=True)
class ErrorEvent(AgentEvent):
    type: ClassVar[EventType] = EventType.ERROR
    data: ErrorData = field(default_factory=ErrorData)


@dataclass(frozen=True)
class LoopEvent(AgentEvent):
    type: ClassVar[EventType] = EventType.LOOP_EVENT
    data: LoopEventData = field(default_factory=LoopEventData)


# Map of event type strings to dataclass constructors
_EVENT_MAP: dict[str, type[AgentEvent]] = {
    EventType.MESSAGE.value: MessageEvent,
    EventType.TOOL_CALL.value: ToolCallEvent,
    EventType.TOOL_RESULT.value: ToolResultEvent,
    EventType.THINKING.value: ThinkingEvent,
    EventType.SKILL_ACTIVATED.value: SkillActivatedEvent,
    EventType.MCP_CALL.value: McpCallEvent,
    EventType.CONTEXT_UPDATE.value: ContextUpdateEvent,
    EventType.ERROR.value: ErrorEvent,
    EventType.LOOP_EVENT.value: LoopEvent,
}

_PAYLOAD_MAP: dict[str, type] = {
    etype: cls.__dataclass_fields__["data"].default_factory
    for etype, cls in _EVENT_MAP.items()
}


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _payload_to_dict(payload: Any) -> dict[str, Any]:
    d: dict[str, Any] = {}
    for f in fields(payload):
        val = getattr(payload, f.name)
        if val is None:
            continue
        if isinstance(val, TokenBreakdown):
            val = val.to_dict()
        d[_camel(f.name)] = val
    return d


def _payload_from_dict(cls: type, data: dict[str, Any]) -> Any:
    # Unknown keys are ignored, missing keys take the dataclass default
    kwargs: dict[str, Any] = {}
    for f in fields(cls):
        key = _camel(f.name)
        if key not in data:
            continue
        val = data[key]
        if f.name == "breakdown":
            if not isinstance(val, dict):
                raise ValueError("breakdown must be an object")
            val = TokenBreakdown.from_dict(val)
        kwargs[f.name] = val
    return cls(**kwargs)


_STR = (str,)
_OPT_STR = (str, type(None))
_INT = (int,)

# JSON types each payload field must carry
_FIELD_TYPES: dict[type, dict[str, tuple[type, ...]]] = {
    MessageData: {"role": _STR, "content": _STR},
    ToolCallData: {"tool_name": _STR, "tool_id": _STR, "status": _STR},
    ToolResultData: {
        "tool_id": _STR,
        "tool_name": _STR,
        "is_error": (bool,),
        "duration": (int, type(None)),
    },
    ThinkingData: {"content": _STR},
    SkillActivatedData: {"skill_name": _STR, "source": _STR, "tokens_added": _INT},
    McpCallData: {"server": _STR, "tool": _STR, "status": _STR},
    ContextUpdateData: {"total_tokens": _INT, "limit": _INT},
    ErrorData: {"message": _STR, "code": _OPT_STR},
    LoopEventData: {
        "loop_type": _STR,
        "task_id": _OPT_STR,
        "tasks": (list, type(None)),
        "step": _OPT_STR,
        "check": _OPT_STR,
        "error": _OPT_STR,
    },
}


def _check_field_types(payload: Any) -> None:
    for name, expected in _FIELD_TYPES.get(payload.__class__, {}).items():
        val = getattr(payload, name)
        # bool is an int subclass but never a valid count
        if isinstance(val, bool) and bool not in expected:
            ok = False
        else:
            ok = isinstance(val, expected)
        if not ok:
            raise ValueError(
                f"{_camel(name)} has invalid type {val.__class__.__name__}"
            )


def _validate_payload(payload: Any) -> None:
    _check_field_types(payload)
    if isinstance(payload, MessageData) and payload.role not in MESSAGE_ROLES:
        raise ValueError(f"Invalid message role: {payload.role!r}")
    if isinstance(payload, (ToolCallData, McpCallData)):
        if payload.status not in CALL_STATUSES:
            raise ValueError(f"Invalid call status: {payload.status!r}")
        if not isinstance(payload.input, dict):
            raise ValueError("input must be an object")
    if isinstance(payload, LoopEventData) and payload.loop_type not in LOOP_TYPES:
        raise ValueError(f"Invalid loop type: {payload.loop_type!r}")


def event_to_dict(event: AgentEvent) -> dict[str, Any]:
    """Convert a typed event to its wire dict. ``tokens`` is omitted when absent."""
    d: dict[str, Any] = {
        "id": event.id,
        "sessionId": event.session_id,
        "type": event.type.value,
        "timestamp": event.timestamp,
        "data": _payload_to_dict(event.data),
    }
    if event.tokens is not None:
        d["tokens"] = event.tokens.to_dict()
    return d


def event_to_json(event: AgentEvent) -> str:
    return json.dumps(event_to_dict(event))


def dict_to_event(data: dict[str, Any]) -> AgentEvent:
    """Parse a wire dict into a typed event.

    Raises ValueError for an unknown ``type`` or a payload that does not
    match the type's schema.
    """
    if not isinstance(data, dict):
        raise ValueError("Event must be a JSON object")
    event_type = data.get("type", "")
    cls = _EVENT_MAP.get(event_type)
    if cls is None:
        raise ValueError(f"Unknown event type: {event_type!r}")

    raw_payload = data.get("data") or {}
    if not isinstance(raw_payload, dict):
        raise ValueError("Event data must be a JSON object")
    try:
        payload = _payload_from_dict(_PAYLOAD_MAP[event_type], raw_payload)
    except TypeError as exc:
        raise ValueError(f"Invalid {event_type} payload: {exc}") from exc
    _validate_payload(payload)

    tokens = data.get("tokens")
    if tokens is not None and not isinstance(tokens, dict):
        raise ValueError("tokens must be an object")

    try:
        timestamp = int(data.get("timestamp") or now_ms())
        token_info = TokenInfo.from_dict(tokens) if tokens is not None else None
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid event envelope: {exc}") from exc

    return cls(
        session_id=str(data.get("sessionId") or ""),
        id=str(data.get("id") or make_id()),
        timestamp=timestamp,
        tokens=token_info,
        data=payload,
    )


def new_event(
    session_id: str,
    type: EventType | str,
    data: Any = None,
    tokens: TokenInfo | None = None,
    timestamp: int | None = None,
) -> AgentEvent:
    """Build an event with a fresh id.

    ``data`` may be the payload dataclass or a wire-form dict.
    """
    etype = EventType(type)
    payload_cls = _PAYLOAD_MAP[etype.value]
    if data is None:
        payload = payload_cls()
    elif isinstance(data, dict):
        payload = _payload_from_dict(payload_cls, data)
    else:
        payload = data
    if not isinstance(payload, payload_cls):
        raise ValueError(
            f"{etype.value} event needs {payload_cls.__name__}, got {payload.__class__.__name__}"
        )
    _validate_payload(payload)
    return _EVENT_MAP[etype.value](
        session_id=session_id,
        timestamp=timestamp if timestamp is not None else now_ms(),
        tokens=tokens,
        data=payload,
    )
