"""SQLite session store for durable single-host runs."""

from __future__ import annotations

import sqlite3
import threading
from datetime import UTC, datetime
from pathlib import Path

from iconix_workflow.engine.errors import ConcurrentModificationError, SessionNotFoundError
from iconix_workflow.engine.models import Session, SessionSummary
from iconix_workflow.storage.codec import count_steps

_COLUMNS = (
    "run_id",
    "narrative",
    "narrative_override",
    "goal",
    "task",
    "state_json",
    "logs_json",
    "plan_json",
    "current_step_index",
    "status",
    "pending_review_json",
    "error",
    "version",
    "created_at",
    "updated_at",
)


class SQLiteSessionStore:
    """Persist sessions in one SQLite table; JSON columns are stored as TEXT."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self.migrate()

    def migrate(self) -> None:
        with self._lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS workflow_sessions (
                    run_id TEXT PRIMARY KEY,
                    narrative TEXT NOT NULL DEFAULT '',
                    narrative_override TEXT,
                    goal TEXT NOT NULL DEFAULT '',
                    task TEXT NOT NULL DEFAULT '',
                    state_json TEXT NOT NULL DEFAULT '{}',
                    logs_json TEXT NOT NULL DEFAULT '[]',
                    plan_json TEXT NOT NULL,
                    current_step_index INTEGER NOT NULL DEFAULT 0,
                    status TEXT NOT NULL,
                    pending_review_json TEXT,
                    error TEXT,
                    version INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            self._conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_workflow_sessions_created_at
                ON workflow_sessions(created_at DESC)
                """
            )
            self._conn.commit()

    def save(self, session: Session) -> Session:
        now = datetime.now(tz=UTC)
        next_version = session.version + 1
        with self._lock:
            if session.version == 0:
                stored = session.model_copy(update={"version": next_version, "updated_at": now})
                try:
                    self._conn.execute(
                        f"INSERT INTO workflow_sessions ({', '.join(_COLUMNS)}) "
                        f"VALUES ({', '.join('?' for _ in _COLUMNS)})",
                        self._params(stored),
                    )
                except sqlite3.IntegrityError as exc:
                    self._conn.rollback()
                    raise ConcurrentModificationError(
                        session.run_id, "session already exists"
                    ) from exc
            else:
                row = self._conn.execute(
                    "SELECT created_at FROM workflow_sessions WHERE run_id = ?",
                    (session.run_id,),
                ).fetchone()
                created_at = (
                    datetime.fromisoformat(row["created_at"]) if row else session.created_at
                )
                stored = session.model_copy(
                    update={
                        "version": next_version,
                        "created_at": created_at,
                        "updated_at": now,
                    }
                )
                assignments = ", ".join(f"{column} = ?" for column in _COLUMNS[1:])
                cursor = self._conn.execute(
                    f"UPDATE workflow_sessions SET {assignments} WHERE run_id = ? AND version = ?",
                    (*self._params(stored)[1:], session.run_id, session.version),
                )
                if cursor.rowcount != 1:
                    self._conn.rollback()
                    raise ConcurrentModificationError(
                        session.run_id, f"stored version is no longer {session.version}"
                    )
            self._conn.commit()
        return stored

    def load(self, run_id: str) -> Session:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM workflow_sessions WHERE run_id = ?",
                (run_id,),
            ).fetchone()
        if row is None:
            raise SessionNotFoundError(run_id)
        return Session.model_validate(dict(row))

    def list_sessions(self) -> list[SessionSummary]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT run_id, status, current_step_index, plan_json, created_at, updated_at
                FROM workflow_sessions
                ORDER BY created_at DESC
                """
            ).fetchall()
        return [
            SessionSummary(
                run_id=row["run_id"],
                status=row["status"],
                current_step_index=row["current_step_index"],
                total_steps=count_steps(row["plan_json"]),
                created_at=row["created_at"],
                updated_at=row["updated_at"],
            )
            for row in rows
        ]

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @staticmethod
    def _params(session: Session) -> tuple[object, ...]:
        values = session.model_dump()
        return tuple(
            values[column].isoformat() if isinstance(values[column], datetime) else values[column]
            for column in _COLUMNS
        )
