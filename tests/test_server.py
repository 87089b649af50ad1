from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field

import pytest
import pytest_asyncio
from aiohttp import WSMsgType, test_utils, web

from devagent.adapters.events import EventType, new_event
from devagent.engine.errors import (
    AdapterError,
    AdapterNotAvailableError,
    InvalidSessionStateError,
    SessionLimitError,
    SessionNotFoundError,
)
from devagent.server.server import DevAgentServer, error_status


@dataclass
class _Request:
    match_info: dict[str, str]
    query: dict[str, str] = field(default_factory=dict)
    body: dict | None = None

    @property
    def can_read_body(self) -> bool:
        return self.body is not None

    async def json(self) -> dict:
        return self.body or {}


def _json_payload(resp) -> dict:
    return json.loads(resp.text)


@pytest.fixture
def server(engine) -> DevAgentServer:
    return DevAgentServer(engine)


@pytest_asyncio.fixture
async def client(server):
    async with test_utils.TestClient(test_utils.TestServer(server.app)) as c:
        yield c


def test_error_status_mapping() -> None:
    assert error_status(SessionNotFoundError("x")) == 404
    assert error_status(InvalidSessionStateError("x", "running", "start")) == 409
    assert error_status(AdapterNotAvailableError("aider", [])) == 400
    assert error_status(SessionLimitError(2)) == 429
    assert error_status(AdapterError("boom")) == 502


@pytest.mark.asyncio
async def test_handlers_without_transport(server, engine) -> None:
    created = await server._handle_create_session(_Request(match_info={}, body={"workingDir": "/tmp/p"}))
    assert created.status == 201
    session_id = _json_payload(created)["id"]

    got = await server._handle_get_session(_Request(match_info={"id": session_id}))
    assert _json_payload(got)["workingDir"] == "/tmp/p"

    missing_dir = await server._handle_create_session(_Request(match_info={}, body={}))
    assert missing_dir.status == 400
    assert _json_payload(missing_dir) == {"error": "workingDir is required"}


@pytest.mark.asyncio
async def test_health(client) -> None:
    resp = await client.get("/health")
    assert resp.status == 200
    body = await resp.json()
    assert body["status"] == "ok"
    assert resp.headers["Access-Control-Allow-Origin"] == "*"


@pytest.mark.asyncio
async def test_session_crud_over_http(client) -> None:
    resp = await client.post("/session", json={"workingDir": "/tmp/project", "name": "demo"})
    assert resp.status == 201
    created = await resp.json()
    assert created["name"] == "demo"
    assert created["status"] == "stopped"
    assert created["tokensLimit"] == 200000

    listed = await (await client.get("/sessions")).json()
    assert [s["id"] for s in listed] == [created["id"]]
    assert listed[0]["eventCount"] == 0

    resp = await client.delete(f"/session/{created['id']}")
    assert await resp.json() == {"success": True}

    resp = await client.get(f"/session/{created['id']}")
    assert resp.status == 404
    assert "error" in await resp.json()


@pytest.mark.asyncio
async def test_lifecycle_over_http(client, fake_factory) -> None:
    created = await (await client.post("/session", json={"workingDir": "/tmp/project"})).json()
    sid = created["id"]

    resp = await client.post(f"/session/{sid}/start")
    assert await resp.json() == {"success": True}
    assert (await (await client.get(f"/session/{sid}")).json())["status"] == "running"

    resp = await client.post(f"/session/{sid}/start")
    assert resp.status == 409

    await client.post(f"/session/{sid}/pause")
    assert (await (await client.get(f"/session/{sid}")).json())["status"] == "paused"
    await client.post(f"/session/{sid}/resume")
    await client.post(f"/session/{sid}/prompt", json={"message": "hi"})
    assert fake_factory.last.prompts == ["hi"]

    resp = await client.post(f"/session/{sid}/prompt", json={})
    assert resp.status == 400

    await client.post(f"/session/{sid}/stop")
    assert (await (await client.get(f"/session/{sid}")).json())["status"] == "stopped"


@pytest.mark.asyncio
async def test_start_unavailable_agent_is_400(client) -> None:
    created = await (await client.post("/session", json={"workingDir": "/tmp/p", "agentType": "aider"})).json()
    resp = await client.post(f"/session/{created['id']}/start")
    assert resp.status == 400


@pytest.mark.asyncio
async def test_events_and_context_summary(client, engine) -> None:
    created = await (await client.post("/session", json={"workingDir": "/tmp/project"})).json()
    sid = created["id"]
    engine.deliver(sid, new_event(sid, EventType.TOOL_CALL, {
        "toolName": "Write", "toolId": "t1", "input": {"file_path": "a.ts"}, "status": "running",
    }))
    engine.deliver(sid, new_event(sid, EventType.TOOL_RESULT, {"toolId": "t1", "toolName": "Write"}))

    events = await (await client.get(f"/session/{sid}/events")).json()
    assert [e["type"] for e in events] == ["tool_result", "tool_call"]

    filtered = await (await client.get(f"/session/{sid}/events", params={"type": "tool_call", "limit": "1"})).json()
    assert len(filtered) == 1 and filtered[0]["data"]["toolName"] == "Write"

    bad = await client.get(f"/session/{sid}/events", params={"limit": "x"})
    assert bad.status == 400

    summary = await (await client.get(f"/session/{sid}/context-summary")).json()
    assert summary["filesModified"] == ["a.ts"]
    assert summary["recentTools"][0]["status"] == "done"


@pytest.mark.asyncio
async def test_options_preflight(client) -> None:
    resp = await client.options("/session")
    assert resp.status == 204
    assert resp.headers["Access-Control-Allow-Methods"] == "GET, POST, PUT, DELETE, OPTIONS"


@pytest.mark.asyncio
async def test_websocket_backfill_live_and_ping(client, engine) -> None:
    created = await (await client.post("/session", json={"workingDir": "/tmp/project"})).json()
    sid = created["id"]
    for n in range(3):
        engine.deliver(sid, new_event(sid, EventType.THINKING, {"content": f"e{n}"}))

    ws = await client.ws_connect(f"/ws/{sid}")
    backfill = [json.loads((await ws.receive(timeout=2)).data) for _ in range(3)]
    assert [e["data"]["content"] for e in backfill] == ["e0", "e1", "e2"]

    engine.deliver(sid, new_event(sid, EventType.THINKING, {"content": "live"}))
    live = json.loads((await ws.receive(timeout=2)).data)
    assert live["data"]["content"] == "live"
    assert live["sessionId"] == sid

    await ws.send_str(json.dumps({"type": "ping"}))
    assert json.loads((await ws.receive(timeout=2)).data) == {"type": "pong"}

    await ws.close()
    state = engine.registry.get(sid)
    for _ in range(100):
        if not state.subscribers:
            break
        await asyncio.sleep(0.01)
    assert state.subscribers == set()


@pytest.mark.asyncio
async def test_websocket_unknown_session_closes(client) -> None:
    ws = await client.ws_connect("/ws/missing")
    msg = await ws.receive(timeout=2)
    assert msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED)


class _IdleWebSocket:
    """Stands in for a WebSocketResponse whose client never sends anything."""

    def __init__(self, **kwargs) -> None:
        self.closed = False

    async def prepare(self, request) -> None:
        return None

    async def send_str(self, data: str) -> None:
        return None

    async def close(self, **kwargs) -> None:
        self.closed = True

    def __aiter__(self):
        return self

    async def __anext__(self):
        await asyncio.Event().wait()


@dataclass
class _WsRequest:
    match_info: dict[str, str]

    def get(self, key: str, default=None):
        return default


@pytest.mark.asyncio
async def test_websocket_handler_propagates_cancellation(server, engine, monkeypatch) -> None:
    session = engine.create_session("/tmp/project")
    monkeypatch.setattr(web, "WebSocketResponse", _IdleWebSocket)

    task = asyncio.create_task(server._handle_ws(_WsRequest(match_info={"id": session.id})))
    state = engine.registry.get(session.id)
    for _ in range(100):
        if state.subscribers:
            break
        await asyncio.sleep(0.01)
    assert len(state.subscribers) == 1

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert task.cancelled()
    assert state.subscribers == set()
