"""SQLite persistence for sessions and their event logs.

Events are stored in insertion order (``seq``), which is the order
replay folds them in. Timestamps come from the agent and are not
guaranteed to be monotonic.
"""
from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import closing, contextmanager
from pathlib import Path

from devagent.adapters.events import AgentEvent, dict_to_event, event_to_dict
from devagent.engine.models import Session, SessionStatus, SessionSummary, now_ms

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50


class EventStore:
    """Sessions table plus an append-only events table per session."""

    def __init__(self, db_path: str | Path):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with closing(self._connect()) as conn:
            with conn:
                yield conn

    def _ensure_schema(self) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sessions (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'stopped',
                    working_dir TEXT NOT NULL,
                    agent_type TEXT NOT NULL DEFAULT 'claude-code',
                    tokens_used INTEGER NOT NULL DEFAULT 0,
                    tokens_limit INTEGER NOT NULL DEFAULT 200000,
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS events (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    session_id TEXT NOT NULL
                        REFERENCES sessions(id) ON DELETE CASCADE,
                    type TEXT NOT NULL,
                    data TEXT NOT NULL,
                    tokens TEXT,
                    timestamp INTEGER NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_session_seq ON events(session_id, seq)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_session_type ON events(session_id, type)"
            )

    # ── Sessions ──

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> Session:
        return Session(
            id=row["id"],
            name=row["name"],
            status=SessionStatus(row["status"]),
            working_dir=row["working_dir"],
            agent_type=row["agent_type"],
            tokens_used=int(row["tokens_used"]),
            tokens_limit=int(row["tokens_limit"]),
            created_at=int(row["created_at"]),
            updated_at=int(row["updated_at"]),
        )

    def create_session(self, session: Session) -> Session:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO sessions(id, name, status, working_dir, agent_type,
                                     tokens_used, tokens_limit, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session.id,
                    session.name,
                    session.status.value,
                    session.working_dir,
                    session.agent_type,
                    session.tokens_used,
                    session.tokens_limit,
                    session.created_at,
                    session.updated_at,
                ),
            )
        logger.info("Session persisted session=%s name=%s", session.id, session.name)
        return session

    def get_session(self, session_id: str) -> Session | None:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE id = ?", (session_id,)
            ).fetchone()
        return self._row_to_session(row) if row is not None else None

    def list_sessions(self) -> list[SessionSummary]:
        """All sessions with event counts, most recently updated first."""
        with closing(self._connect()) as conn:
            rows = conn.execute(
                """
                SELECT s.id, s.name, s.status, s.agent_type, s.tokens_used,
                       s.tokens_limit, s.created_at, s.updated_at,
                       COUNT(e.seq) AS event_count
                FROM sessions s
                LEFT JOIN events e ON e.session_id = s.id
                GROUP BY s.id
                ORDER BY s.updated_at DESC
                """
            ).fetchall()
        return [
            SessionSummary(
                id=row["id"],
                name=row["name"],
                status=SessionStatus(row["status"]),
                agent_type=row["agent_type"],
                tokens_used=int(row["tokens_used"]),
                tokens_limit=int(row["tokens_limit"]),
                event_count=int(row["event_count"]),
                created_at=int(row["created_at"]),
                updated_at=int(row["updated_at"]),
            )
            for row in rows
        ]

    def update_session(
        self,
        session_id: str,
        *,
        status: SessionStatus | None = None,
        tokens_used: int | None = None,
        tokens_limit: int | None = None,
        name: str | None = None,
        updated_at: int | None = None,
    ) -> bool:
        """Update the given columns. Returns False when the row is gone."""
        assignments: list[str] = []
        params: list[object] = []
        if status is not None:
            assignments.append("status = ?")
            params.append(SessionStatus(status).value)
        if tokens_used is not None:
            assignments.append("tokens_used = ?")
            params.append(int(tokens_used))
        if tokens_limit is not None:
            assignments.append("tokens_limit = ?")
            params.append(int(tokens_limit))
        if name is not None:
            assignments.append("name = ?")
            params.append(name)
        assignments.append("updated_at = ?")
        params.append(updated_at if updated_at is not None else now_ms())
        params.append(session_id)

        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE sessions SET {', '.join(assignments)} WHERE id = ?",
                params,
            )
        return cursor.rowcount > 0

    def delete_session(self, session_id: str) -> bool:
        """Delete the session and its whole event log."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM events WHERE session_id = ?", (session_id,))
            cursor = conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Session deleted from store session=%s", session_id)
        return deleted

    # ── Events ──

    def append_event(self, event: AgentEvent) -> None:
        wire = event_to_dict(event)
        tokens = wire.get("tokens")
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO events(id, session_id, type, data, tokens, timestamp)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    event.id,
                    event.session_id,
                    event.type.value,
                    json.dumps(wire["data"]),
                    json.dumps(tokens) if tokens is not None else None,
                    event.timestamp,
                ),
            )

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> AgentEvent:
        data = {
            "id": row["id"],
            "sessionId": row["session_id"],
            "type": row["type"],
            "timestamp": row["timestamp"],
            "data": json.loads(row["data"]),
        }
        if row["tokens"] is not None:
            data["tokens"] = json.loads(row["tokens"])
        return dict_to_event(data)

    def list_events(
        self,
        session_id: str,
        offset: int = 0,
        limit: int = DEFAULT_PAGE_SIZE,
        type: str | None = None,
    ) -> list[AgentEvent]:
        """A page of events, newest first."""
        query = "SELECT * FROM events WHERE session_id = ?"
        params: list[object] = [session_id]
        if type is not None:
            query += " AND type = ?"
            params.append(type)
        query += " ORDER BY seq DESC LIMIT ? OFFSET ?"
        params.extend([max(0, int(limit)), max(0, int(offset))])
        with closing(self._connect()) as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_event(row) for row in rows]

    def iter_events(self, session_id: str) -> Iterator[AgentEvent]:
        """The full event log in insertion order. Unreadable rows are skipped."""
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT * FROM events WHERE session_id = ? ORDER BY seq ASC",
                (session_id,),
            ).fetchall()
        for row in rows:
            try:
                yield self._row_to_event(row)
            except ValueError:
                logger.warning(
                    "Skipping unreadable stored event session=%s id=%s",
                    session_id, row["id"],
                )

    def count_events(self, session_id: str, type: str | None = None) -> int:
        query = "SELECT COUNT(*) AS n FROM events WHERE session_id = ?"
        params: list[object] = [session_id]
        if type is not None:
            query += " AND type = ?"
            params.append(type)
        with closing(self._connect()) as conn:
            row = conn.execute(query, params).fetchone()
        return int(row["n"]) if row is not None else 0
