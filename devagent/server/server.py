"""HTTP + WebSocket server for the session engine.

Exposes a multi-session REST API and a per-session WebSocket push
channel. The server is a thin adapter: all session state lives in
SessionEngine. This class only handles routing, request validation,
error mapping and WebSocket fan-out.

Usage:
    devagent [--host HOST] [--port PORT]
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from typing import Any

from aiohttp import WSMsgType, web

from devagent.adapters.events import event_to_dict
from devagent.engine.engine import SessionEngine
from devagent.engine.errors import (
    AdapterError,
    AdapterNotAvailableError,
    EngineError,
    InvalidSessionStateError,
    SessionLimitError,
    SessionNotFoundError,
)
from devagent.shared.services.event_store import DEFAULT_PAGE_SIZE

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

_ERROR_STATUS: list[tuple[type[EngineError], int]] = [
    (SessionNotFoundError, 404),
    (InvalidSessionStateError, 409),
    (AdapterNotAvailableError, 400),
    (SessionLimitError, 429),
    (AdapterError, 502),
]


def error_status(exc: EngineError) -> int:
    for exc_type, status in _ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status
    return 500


def _error_response(message: str, status: int) -> web.Response:
    return web.json_response({"error": message}, status=status)


class DevAgentServer:
    """REST + WebSocket front end over a SessionEngine."""

    def __init__(
        self,
        engine: SessionEngine,
        host: str = "127.0.0.1",
        port: int = 3001,
    ) -> None:
        self._engine = engine
        self._host = host
        self._port = port
        self._started_at = time.time()
        self._ws_clients: set[web.WebSocketResponse] = set()
        self._app = web.Application(middlewares=[
            self._cors_middleware,
            self._request_logging_middleware,
            self._error_middleware,
        ])
        self._setup_routes()

    @property
    def app(self) -> web.Application:
        return self._app

    @property
    def engine(self) -> SessionEngine:
        return self._engine

    # ── Middleware ──

    @web.middleware
    async def _cors_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        if request.method == "OPTIONS":
            return web.Response(status=204, headers=CORS_HEADERS)
        try:
            response = await handler(request)
        except web.HTTPException as exc:
            exc.headers.update(CORS_HEADERS)
            raise
        if not response.prepared:
            response.headers.update(CORS_HEADERS)
        return response

    @web.middleware
    async def _request_logging_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        req_id = request.headers.get("x-devagent-request-id", str(uuid.uuid4())[:8])
        request["req_id"] = req_id
        start = time.monotonic()
        logger.info("HTTP %s %s req=%s from=%s", request.method, request.path_qs, req_id, request.remote)
        try:
            response = await handler(request)
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.info(
                "HTTP %s %s req=%s status=%s duration_ms=%.1f",
                request.method, request.path_qs, req_id,
                getattr(response, "status", "?"), elapsed_ms,
            )
            return response
        except web.HTTPException:
            raise
        except Exception:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.exception("HTTP %s %s req=%s failed duration_ms=%.1f", request.method, request.path_qs, req_id, elapsed_ms)
            raise

    @web.middleware
    async def _error_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except EngineError as exc:
            status = error_status(exc)
            logger.info(
                "HTTP %s %s req=%s error=%s status=%d",
                request.method, request.path, request.get("req_id", "unknown"),
                type(exc).__name__, status,
            )
            return _error_response(str(exc), status)
        except ValueError as exc:
            return _error_response(str(exc), 400)
        except Exception:
            logger.exception(
                "Unhandled error req=%s path=%s",
                request.get("req_id", "unknown"), request.path,
            )
            return _error_response("Internal server error", 500)

    # ── Route setup ──

    def _setup_routes(self) -> None:
        r = self._app.router
        r.add_get("/health", self._handle_health)
        # Session CRUD
        r.add_get("/sessions", self._handle_list_sessions)
        r.add_post("/session", self._handle_create_session)
        r.add_get("/session/{id}", self._handle_get_session)
        r.add_delete("/session/{id}", self._handle_delete_session)
        # Lifecycle
        r.add_post("/session/{id}/start", self._handle_start)
        r.add_post("/session/{id}/pause", self._handle_pause)
        r.add_post("/session/{id}/resume", self._handle_resume)
        r.add_post("/session/{id}/stop", self._handle_stop)
        r.add_post("/session/{id}/prompt", self._handle_prompt)
        # Reads
        r.add_get("/session/{id}/events", self._handle_list_events)
        r.add_get("/session/{id}/context-summary", self._handle_context_summary)
        # Push channel
        r.add_get("/ws/{id}", self._handle_ws)

    async def start(self) -> None:
        """Start the server and block until cancelled."""
        runner = web.AppRunner(self._app)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        await site.start()
        logger.info("devagent server listening on %s:%d", self._host, self._port)

        try:
            await asyncio.Event().wait()
        except (KeyboardInterrupt, asyncio.CancelledError):
            logger.info("Server shutting down")
        finally:
            await self.shutdown()
            await runner.cleanup()

    async def shutdown(self) -> None:
        await self._engine.shutdown()
        for ws in list(self._ws_clients):
            await ws.close(code=1001, message=b"server shutdown")
        self._ws_clients.clear()

    # ── Helpers ──

    @staticmethod
    async def _read_json(request: web.Request) -> dict[str, Any]:
        if not request.can_read_body:
            return {}
        try:
            body = await request.json()
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON body: {exc.msg}") from exc
        if not isinstance(body, dict):
            raise ValueError("JSON body must be an object")
        return body

    @staticmethod
    def _int_query(request: web.Request, name: str, default: int) -> int:
        raw = request.query.get(name)
        if raw is None or raw == "":
            return default
        try:
            value = int(raw)
        except ValueError:
            raise ValueError(f"{name} must be an integer") from None
        if value < 0:
            raise ValueError(f"{name} must be >= 0")
        return value

    # ── Handlers ──

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "ok",
            "timestamp": int(time.time() * 1000),
            "uptimeSeconds": round(time.time() - self._started_at, 1),
            "activeSessions": len(self._engine.registry),
            "runningSessions": self._engine.registry.running_count(),
        })

    async def _handle_list_sessions(self, request: web.Request) -> web.Response:
        summaries = self._engine.list_sessions()
        return web.json_response([s.to_dict() for s in summaries])

    async def _handle_create_session(self, request: web.Request) -> web.Response:
        body = await self._read_json(request)
        working_dir = body.get("workingDir")
        if not working_dir or not isinstance(working_dir, str):
            return _error_response("workingDir is required", 400)
        name = body.get("name")
        agent_type = body.get("agentType")
        if name is not None and not isinstance(name, str):
            return _error_response("name must be a string", 400)
        if agent_type is not None and not isinstance(agent_type, str):
            return _error_response("agentType must be a string", 400)
        session = self._engine.create_session(
            working_dir, name=name, agent_type=agent_type or "claude-code",
        )
        return web.json_response(session.to_dict(), status=201)

    async def _handle_get_session(self, request: web.Request) -> web.Response:
        session = self._engine.get_session(request.match_info["id"])
        return web.json_response(session.to_dict())

    async def _handle_delete_session(self, request: web.Request) -> web.Response:
        await self._engine.delete_session(request.match_info["id"])
        return web.json_response({"success": True})

    async def _handle_start(self, request: web.Request) -> web.Response:
        await self._engine.start_session(request.match_info["id"])
        return web.json_response({"success": True})

    async def _handle_pause(self, request: web.Request) -> web.Response:
        await self._engine.pause_session(request.match_info["id"])
        return web.json_response({"success": True})

    async def _handle_resume(self, request: web.Request) -> web.Response:
        await self._engine.resume_session(request.match_info["id"])
        return web.json_response({"success": True})

    async def _handle_stop(self, request: web.Request) -> web.Response:
        await self._engine.stop_session(request.match_info["id"])
        return web.json_response({"success": True})

    async def _handle_prompt(self, request: web.Request) -> web.Response:
        body = await self._read_json(request)
        message = body.get("message")
        if not message or not isinstance(message, str):
            return _error_response("message is required", 400)
        await self._engine.send_prompt(request.match_info["id"], message)
        return web.json_response({"success": True})

    async def _handle_list_events(self, request: web.Request) -> web.Response:
        offset = self._int_query(request, "offset", 0)
        limit = self._int_query(request, "limit", DEFAULT_PAGE_SIZE)
        event_type = request.query.get("type") or None
        events = self._engine.list_events(
            request.match_info["id"], offset=offset, limit=limit, type=event_type,
        )
        return web.json_response([event_to_dict(e) for e in events])

    async def _handle_context_summary(self, request: web.Request) -> web.Response:
        context = self._engine.get_context_summary(request.match_info["id"])
        return web.json_response(context.to_dict())

    async def _handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        session_id = request.match_info["id"]
        req_id = request.get("req_id", "unknown")
        ws = web.WebSocketResponse(heartbeat=30.0)
        await ws.prepare(request)

        try:
            subscription = self._engine.subscribe(session_id)
        except SessionNotFoundError:
            logger.info("WS rejected unknown session session=%s req=%s", session_id, req_id)
            await ws.close(code=4004, message=b"session not found")
            return ws

        self._ws_clients.add(ws)
        logger.info(
            "WS client connected session=%s sub=%s req=%s",
            session_id, subscription.id, req_id,
        )

        async def pump() -> None:
            async for payload in subscription:
                await ws.send_str(payload)
            # Subscription closed by the engine (overflow or delete)
            if not ws.closed:
                await ws.close()

        pump_task = asyncio.create_task(pump())
        try:
            async for msg in ws:
                if msg.type != WSMsgType.TEXT:
                    continue
                try:
                    data = json.loads(msg.data)
                except json.JSONDecodeError:
                    logger.debug("WS ignoring non-JSON message session=%s", session_id)
                    continue
                if isinstance(data, dict) and data.get("type") == "ping":
                    await ws.send_str(json.dumps({"type": "pong"}))
        finally:
            self._engine.unsubscribe(session_id, subscription)
            pump_task.cancel()
            await asyncio.gather(pump_task, return_exceptions=True)
            self._ws_clients.discard(ws)
            logger.info(
                "WS client disconnected session=%s sub=%s req=%s",
                session_id, subscription.id, req_id,
            )
        return ws
