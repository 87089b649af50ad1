from __future__ import annotations

import json

import pytest

from devagent.adapters.events import (
    ContextUpdateEvent,
    ErrorData,
    EventType,
    LoopEvent,
    MessageData,
    MessageEvent,
    ToolCallEvent,
    ToolResultEvent,
    dict_to_event,
    event_to_dict,
    event_to_json,
    new_event,
)
from devagent.engine.models import TokenBreakdown, TokenInfo


def test_tool_call_wire_form_is_camel_case() -> None:
    event = new_event(
        "s1",
        EventType.TOOL_CALL,
        {"toolName": "Write", "toolId": "t1", "input": {"file_path": "a.ts"}, "status": "running"},
        timestamp=1000,
    )
    assert isinstance(event, ToolCallEvent)
    wire = event_to_dict(event)
    assert wire["sessionId"] == "s1"
    assert wire["type"] == "tool_call"
    assert wire["timestamp"] == 1000
    assert wire["data"] == {
        "toolName": "Write",
        "toolId": "t1",
        "input": {"file_path": "a.ts"},
        "status": "running",
    }
    assert "tokens" not in wire


def test_optional_payload_fields_omitted() -> None:
    event = new_event("s1", EventType.ERROR, ErrorData(message="boom"))
    assert event_to_dict(event)["data"] == {"message": "boom"}


def test_tokens_serialized_when_present() -> None:
    tokens = TokenInfo(added=5, total=120, limit=1000, breakdown=TokenBreakdown(system=20, messages=100))
    event = new_event("s1", EventType.MESSAGE, MessageData(content="hi"), tokens=tokens)
    wire = json.loads(event_to_json(event))
    assert wire["tokens"] == {
        "added": 5,
        "total": 120,
        "limit": 1000,
        "breakdown": {"system": 20, "skills": 0, "mcp": 0, "messages": 100, "buffer": 0},
    }


def test_dict_to_event_parses_wire_form() -> None:
    event = dict_to_event({
        "id": "e1",
        "sessionId": "s1",
        "type": "tool_result",
        "timestamp": 42,
        "data": {"toolId": "t1", "toolName": "Bash", "result": "ok", "isError": False, "duration": 12},
    })
    assert isinstance(event, ToolResultEvent)
    assert event.id == "e1"
    assert event.data.tool_id == "t1"
    assert event.data.duration == 12
    assert event.tokens is None


def test_dict_to_event_context_update_breakdown() -> None:
    event = dict_to_event({
        "type": "context_update",
        "data": {"breakdown": {"system": 3, "buffer": 7}, "totalTokens": 10, "limit": 500},
    })
    assert isinstance(event, ContextUpdateEvent)
    assert event.data.breakdown == TokenBreakdown(system=3, buffer=7)
    assert event.data.total_tokens == 10
    assert event.id
    assert event.timestamp > 0


def test_dict_to_event_ignores_unknown_payload_keys() -> None:
    event = dict_to_event({"type": "thinking", "data": {"content": "hmm", "extra": 1}})
    assert event.data.content == "hmm"


def test_loop_event_optional_fields() -> None:
    event = dict_to_event({
        "type": "loop_event",
        "data": {"loopType": "task_started", "taskId": "task-1"},
    })
    assert isinstance(event, LoopEvent)
    assert event_to_dict(event)["data"] == {"loopType": "task_started", "taskId": "task-1"}


@pytest.mark.parametrize("payload", [
    {"type": "nope", "data": {}},
    {"type": "message", "data": {"role": "system", "content": "x"}},
    {"type": "tool_call", "data": {"toolName": "Bash", "status": "weird"}},
    {"type": "loop_event", "data": {"loopType": "unknown"}},
    {"type": "message", "data": "not an object"},
    ["not", "a", "dict"],
])
def test_dict_to_event_rejects_invalid(payload) -> None:
    with pytest.raises(ValueError):
        dict_to_event(payload)


def test_events_are_immutable() -> None:
    event = new_event("s1", EventType.MESSAGE, MessageData(content="hi"))
    assert isinstance(event, MessageEvent)
    with pytest.raises(AttributeError):
        event.session_id = "s2"  # type: ignore[misc]


def test_new_event_assigns_unique_ids() -> None:
    a = new_event("s1", "thinking", {"content": "a"})
    b = new_event("s1", "thinking", {"content": "b"})
    assert a.id != b.id


def test_new_event_rejects_mismatched_payload() -> None:
    with pytest.raises(ValueError):
        new_event("s1", EventType.TOOL_CALL, MessageData(content="hi"))


@pytest.mark.parametrize("event_type,data", [
    ("tool_call", {"toolName": None, "toolId": "t1"}),
    ("tool_call", {"toolName": 5, "toolId": "t1"}),
    ("tool_result", {"toolId": "t1", "isError": "yes"}),
    ("tool_result", {"toolId": "t1", "duration": "12ms"}),
    ("message", {"role": "assistant", "content": ["a", "b"]}),
    ("skill_activated", {"skillName": "pdf", "tokensAdded": True}),
    ("mcp_call", {"server": 1, "tool": "query"}),
    ("context_update", {"totalTokens": "900"}),
    ("error", {"message": "boom", "code": 7}),
])
def test_payload_field_types_enforced(event_type: str, data: dict) -> None:
    with pytest.raises(ValueError):
        dict_to_event({"type": event_type, "data": data})
    with pytest.raises(ValueError):
        new_event("s1", event_type, data)
