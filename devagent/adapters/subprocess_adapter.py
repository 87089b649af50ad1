"""Generic line-oriented subprocess adapter.

Runs a configured agent command in the session's working directory.
Prompts are written to stdin one per line; stdout is read line by line:

- JSON objects already in the normalized event form become events
  (session id, id and timestamp filled in when absent).
- Other JSON records are ignored. An agent that writes only such records
  produces no events, and a warning is logged once per process.
- Plain text lines become assistant messages, except terminal
  box-drawing chrome.
- Malformed JSON, or a nonzero exit, becomes an ``error`` event.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
from collections import deque

from devagent.engine.errors import AdapterError

from .base import AdapterFactory, AgentAdapter, EmitCallback
from .events import (
    AgentEvent,
    ErrorData,
    EventType,
    MessageData,
    dict_to_event,
    new_event,
)

logger = logging.getLogger(__name__)

# Single stdout lines can carry whole file contents in tool payloads
STREAM_LIMIT = 16 * 1024 * 1024
STDERR_TAIL_LINES = 20
# Non-event JSON records seen before warning that the agent's format is unsupported
FOREIGN_RECORD_WARN_AFTER = 20

_EVENT_TYPES = frozenset(t.value for t in EventType)
_BOX_DRAWING_PREFIXES = ("╭", "│", "╰")


def _error_event(session_id: str, message: str, code: str) -> AgentEvent:
    return new_event(session_id, EventType.ERROR, ErrorData(message=message, code=code))


def parse_line(session_id: str, line: str) -> AgentEvent | None:
    """Translate one line of agent output into an event, or None to skip it."""
    text = line.strip()
    if not text:
        return None

    if text.startswith("{"):
        try:
            record = json.loads(text)
        except json.JSONDecodeError as exc:
            return _error_event(session_id, f"Malformed JSON from agent: {exc}", "parse_error")
        if not isinstance(record, dict) or record.get("type") not in _EVENT_TYPES:
            logger.debug(
                "Ignoring non-event JSON session=%s type=%s",
                session_id, record.get("type") if isinstance(record, dict) else None,
            )
            return None
        if not record.get("sessionId"):
            record["sessionId"] = session_id
        try:
            return dict_to_event(record)
        except ValueError as exc:
            return _error_event(session_id, f"Invalid event from agent: {exc}", "parse_error")

    if text.startswith(_BOX_DRAWING_PREFIXES):
        return None
    return new_event(
        session_id, EventType.MESSAGE, MessageData(role="assistant", content=text),
    )


class SubprocessAdapter(AgentAdapter):
    """One agent subprocess bound to one session."""

    def __init__(
        self,
        session_id: str,
        working_dir: str,
        emit: EmitCallback,
        command: list[str],
        env: dict[str, str] | None = None,
        stop_timeout: float = 5.0,
    ):
        super().__init__(session_id, working_dir, emit)
        self._command = list(command)
        self._env = env
        self._stop_timeout = stop_timeout
        self._process: asyncio.subprocess.Process | None = None
        self._reader: asyncio.Task | None = None
        self._stderr_reader: asyncio.Task | None = None
        self._resumed = asyncio.Event()
        self._resumed.set()
        self._stopping = False
        self._stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._events_emitted = 0
        self._foreign_records = 0
        self._format_warned = False

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    def _build_env(self) -> dict[str, str] | None:
        if not self._env:
            return None
        env = os.environ.copy()
        env.update(self._env)
        return env

    async def start(self) -> None:
        if self._process is not None:
            raise AdapterError(f"Agent already started for session {self.session_id}")
        try:
            # create_subprocess_exec passes args as array, no shell
            self._process = await asyncio.create_subprocess_exec(
                *self._command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.working_dir,
                env=self._build_env(),
                limit=STREAM_LIMIT,
            )
        except FileNotFoundError as exc:
            raise AdapterError(
                f"Agent command not found: {self._command[0]} ({exc})"
            ) from exc
        except OSError as exc:
            raise AdapterError(f"Failed to start agent: {exc}") from exc

        self._stopping = False
        self._reader = asyncio.create_task(self._read_stdout())
        self._stderr_reader = asyncio.create_task(self._read_stderr())
        logger.info(
            "Agent process started session=%s pid=%d cmd=%s cwd=%s",
            self.session_id, self._process.pid, self._command[0], self.working_dir,
        )

    async def _read_stdout(self) -> None:
        proc = self._process
        assert proc is not None and proc.stdout is not None
        while True:
            await self._resumed.wait()
            try:
                raw = await proc.stdout.readline()
            except ValueError:
                self._emit(_error_event(
                    self.session_id,
                    f"Agent output line exceeds {STREAM_LIMIT} bytes",
                    "parse_error",
                ))
                continue
            if not raw:
                break
            line = raw.decode("utf-8", errors="replace")
            event = parse_line(self.session_id, line)
            if event is not None:
                self._events_emitted += 1
                self._emit(event)
            elif line.lstrip().startswith("{"):
                self._foreign_records += 1
                if self._foreign_records >= FOREIGN_RECORD_WARN_AFTER:
                    self._warn_foreign_format()

        returncode = await proc.wait()
        logger.info(
            "Agent process exited session=%s pid=%d rc=%s",
            self.session_id, proc.pid, returncode,
        )
        if self._foreign_records:
            self._warn_foreign_format()
        if returncode != 0 and not self._stopping:
            stderr = "\n".join(self._stderr_tail)
            message = f"Agent process exited with code {returncode}"
            if stderr:
                message = f"{message}: {stderr}"
            self._emit(_error_event(self.session_id, message, "process_exit"))

    def _warn_foreign_format(self) -> None:
        """Warn once when the agent writes JSON that is never in event form."""
        if self._format_warned or self._events_emitted:
            return
        self._format_warned = True
        logger.warning(
            "Agent emitted %d JSON records but no events session=%s cmd=%s; "
            "configure an agent command that writes normalized event JSONL",
            self._foreign_records, self.session_id, self._command[0],
        )

    async def _read_stderr(self) -> None:
        proc = self._process
        assert proc is not None and proc.stderr is not None
        while True:
            try:
                raw = await proc.stderr.readline()
            except ValueError:
                continue
            if not raw:
                break
            text = raw.decode("utf-8", errors="replace").rstrip()
            if text:
                self._stderr_tail.append(text)
                logger.debug("agent stderr session=%s: %s", self.session_id, text)

    def pause(self) -> None:
        self._resumed.clear()
        logger.info("Agent output paused session=%s", self.session_id)

    def resume(self) -> None:
        self._resumed.set()
        logger.info("Agent output resumed session=%s", self.session_id)

    async def send_prompt(self, text: str) -> None:
        proc = self._process
        if not self.is_running or proc is None or proc.stdin is None:
            raise AdapterError(f"Agent is not running for session {self.session_id}")
        try:
            proc.stdin.write(text.encode("utf-8") + b"\n")
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise AdapterError(f"Agent stdin closed: {exc}") from exc
        logger.debug("Prompt forwarded session=%s chars=%d", self.session_id, len(text))

    async def stop(self) -> None:
        proc = self._process
        if proc is None:
            return
        self._stopping = True
        pid = proc.pid
        if proc.returncode is None:
            try:
                proc.terminate()
                try:
                    await asyncio.wait_for(proc.wait(), timeout=self._stop_timeout)
                except asyncio.TimeoutError:
                    logger.warning(
                        "Agent did not exit after terminate, killing session=%s pid=%d",
                        self.session_id, pid,
                    )
                    proc.kill()
                    await proc.wait()
            except ProcessLookupError:
                pass

        tasks = [t for t in (self._reader, self._stderr_reader) if t is not None]
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._reader = None
        self._stderr_reader = None
        self._process = None
        self._resumed.set()
        logger.info("Agent process stopped session=%s pid=%d", self.session_id, pid)


class SubprocessAdapterFactory(AdapterFactory):
    """Adapter factory for one configured agent command."""

    def __init__(
        self,
        name: str,
        command: list[str],
        env: dict[str, str] | None = None,
        stop_timeout: float = 5.0,
    ):
        if not command:
            raise ValueError(f"Agent {name} has an empty command")
        self._name = name
        self._command = list(command)
        self._env = dict(env or {})
        self._stop_timeout = stop_timeout

    @property
    def name(self) -> str:
        return self._name

    @property
    def command(self) -> list[str]:
        return list(self._command)

    def is_available(self) -> bool:
        return self.resolve_command(self._command[0]) is not None

    def create(
        self, session_id: str, working_dir: str, emit: EmitCallback,
    ) -> SubprocessAdapter:
        return SubprocessAdapter(
            session_id,
            working_dir,
            emit,
            command=self._command,
            env=self._env,
            stop_timeout=self._stop_timeout,
        )
