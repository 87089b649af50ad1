from __future__ import annotations

import asyncio
import json
import logging
import sys

import pytest

from devagent.adapters.events import ErrorEvent, EventType, MessageEvent, ThinkingEvent
from devagent.adapters.subprocess_adapter import SubprocessAdapterFactory, parse_line
from devagent.engine.errors import AdapterError

AGENT_SCRIPT = r"""
import json, sys
print("hello from agent", flush=True)
print(json.dumps({"type": "thinking", "data": {"content": "pondering"}}), flush=True)
for line in sys.stdin:
    reply = {"type": "message", "data": {"role": "assistant", "content": "echo:" + line.strip()}}
    print(json.dumps(reply), flush=True)
"""

FAILING_SCRIPT = r"""
import sys
sys.stderr.write("bad things happened\n")
sys.exit(3)
"""


async def _wait_for(predicate, timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


# ── parse_line ──


def test_plain_text_becomes_assistant_message() -> None:
    event = parse_line("s1", "Working on it...\n")
    assert isinstance(event, MessageEvent)
    assert event.session_id == "s1"
    assert event.data.role == "assistant"
    assert event.data.content == "Working on it..."


@pytest.mark.parametrize("line", ["", "   \n", "╭──────╮", "│ Claude │", "╰──────╯"])
def test_blank_and_box_drawing_lines_skipped(line: str) -> None:
    assert parse_line("s1", line) is None


def test_normalized_json_becomes_event_with_defaults() -> None:
    event = parse_line("s1", json.dumps({"type": "thinking", "data": {"content": "hmm"}}))
    assert isinstance(event, ThinkingEvent)
    assert event.session_id == "s1"
    assert event.id
    assert event.timestamp > 0


def test_json_keeps_supplied_id_and_timestamp() -> None:
    line = json.dumps({"id": "e9", "timestamp": 77, "type": "thinking", "data": {"content": "x"}})
    event = parse_line("s1", line)
    assert event.id == "e9"
    assert event.timestamp == 77


def test_malformed_json_becomes_parse_error() -> None:
    event = parse_line("s1", '{"type": "thinking", ')
    assert isinstance(event, ErrorEvent)
    assert event.data.code == "parse_error"


def test_invalid_event_becomes_parse_error() -> None:
    event = parse_line("s1", json.dumps({"type": "message", "data": {"role": "robot"}}))
    assert isinstance(event, ErrorEvent)
    assert event.data.code == "parse_error"


def test_foreign_json_records_ignored() -> None:
    assert parse_line("s1", json.dumps({"type": "system", "subtype": "init"})) is None


# ── Factory ──


def test_factory_availability() -> None:
    assert SubprocessAdapterFactory("py", [sys.executable]).is_available()
    assert not SubprocessAdapterFactory("nope", ["devagent-no-such-binary-xyz"]).is_available()


def test_factory_rejects_empty_command() -> None:
    with pytest.raises(ValueError):
        SubprocessAdapterFactory("empty", [])


# ── Live process ──


@pytest.mark.asyncio
async def test_process_output_and_prompts(tmp_path) -> None:
    events = []
    factory = SubprocessAdapterFactory("py", [sys.executable, "-u", "-c", AGENT_SCRIPT])
    adapter = factory.create("s1", str(tmp_path), events.append)

    await adapter.start()
    try:
        assert adapter.is_running
        await _wait_for(lambda: len(events) >= 2)
        assert events[0].type == EventType.MESSAGE
        assert events[0].data.content == "hello from agent"
        assert events[1].type == EventType.THINKING

        await adapter.send_prompt("ping")
        await _wait_for(lambda: len(events) >= 3)
        assert events[2].data.content == "echo:ping"
    finally:
        await adapter.stop()

    assert not adapter.is_running
    # Intentional stop is not reported as a failure
    assert not any(e.type == EventType.ERROR for e in events)


@pytest.mark.asyncio
async def test_pause_holds_output_until_resume(tmp_path) -> None:
    events = []
    factory = SubprocessAdapterFactory("py", [sys.executable, "-u", "-c", AGENT_SCRIPT])
    adapter = factory.create("s1", str(tmp_path), events.append)
    await adapter.start()
    try:
        await _wait_for(lambda: len(events) >= 2)
        adapter.pause()
        await adapter.send_prompt("a")
        await adapter.send_prompt("b")
        await asyncio.sleep(0.3)
        # At most one read already in flight when paused
        assert len(events) <= 3
        adapter.resume()
        await _wait_for(lambda: len(events) >= 4)
        assert [e.data.content for e in events[2:]] == ["echo:a", "echo:b"]
    finally:
        await adapter.stop()


@pytest.mark.asyncio
async def test_nonzero_exit_emits_process_exit_error(tmp_path) -> None:
    events = []
    factory = SubprocessAdapterFactory("py", [sys.executable, "-c", FAILING_SCRIPT])
    adapter = factory.create("s1", str(tmp_path), events.append)
    await adapter.start()
    try:
        await _wait_for(lambda: any(e.type == EventType.ERROR for e in events))
    finally:
        await adapter.stop()
    [error] = [e for e in events if e.type == EventType.ERROR]
    assert error.data.code == "process_exit"
    assert "code 3" in error.data.message


@pytest.mark.asyncio
async def test_missing_command_raises_adapter_error(tmp_path) -> None:
    factory = SubprocessAdapterFactory("nope", ["devagent-no-such-binary-xyz"])
    adapter = factory.create("s1", str(tmp_path), lambda e: None)
    with pytest.raises(AdapterError):
        await adapter.start()
    assert not adapter.is_running


@pytest.mark.asyncio
async def test_send_prompt_requires_running_process(tmp_path) -> None:
    factory = SubprocessAdapterFactory("py", [sys.executable, "-c", "pass"])
    adapter = factory.create("s1", str(tmp_path), lambda e: None)
    with pytest.raises(AdapterError):
        await adapter.send_prompt("hello")


@pytest.mark.parametrize("tool_name", [None, 5, ["Bash"]])
def test_mistyped_event_field_becomes_parse_error(tool_name) -> None:
    line = json.dumps({"type": "tool_call", "data": {"toolName": tool_name, "toolId": "t1"}})
    event = parse_line("s1", line)
    assert isinstance(event, ErrorEvent)
    assert event.data.code == "parse_error"


FOREIGN_SCRIPT = r"""
import json
import logging
for n in range(3):
    print(json.dumps({"type": "assistant", "message": {"content": str(n)}}), flush=True)
"""


@pytest.mark.asyncio
async def test_foreign_json_only_output_logs_warning(tmp_path, caplog) -> None:
    caplog.set_level(logging.WARNING, logger="devagent.adapters.subprocess_adapter")
    events = []
    factory = SubprocessAdapterFactory("py", [sys.executable, "-u", "-c", FOREIGN_SCRIPT])
    adapter = factory.create("s1", str(tmp_path), events.append)
    await adapter.start()
    try:
        await _wait_for(lambda: "but no events" in caplog.text)
    finally:
        await adapter.stop()
    assert events == []
    assert caplog.text.count("but no events") == 1
