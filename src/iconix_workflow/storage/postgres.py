"""PostgreSQL session store.

Beginner terms:
- Migration: creating/updating database tables before normal reads/writes.
- JSONB: PostgreSQL JSON type used for state, logs, plan and review payload.
- Row factory: returns query rows as dict-like objects instead of tuples.
"""

from __future__ import annotations

import json
import threading
from datetime import UTC, datetime
from typing import Any

from iconix_workflow.engine.errors import ConcurrentModificationError, SessionNotFoundError
from iconix_workflow.engine.models import Session, SessionSummary
from iconix_workflow.storage.codec import count_steps


class PostgresSessionStore:
    """Thread-safe PostgreSQL-backed storage for workflow sessions."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("database_url is required")
        self.database_url = database_url
        # Lock guards DB operations done through this storage instance.
        self._lock = threading.Lock()
        self._psycopg, self._dict_row, self._json_wrapper = self._load_psycopg()
        self.migrate()

    def migrate(self) -> None:
        """Create required table and indexes if they do not already exist."""
        with self._lock, self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS workflow_sessions (
                    run_id TEXT PRIMARY KEY,
                    narrative TEXT NOT NULL DEFAULT '',
                    narrative_override TEXT,
                    goal TEXT NOT NULL DEFAULT '',
                    task TEXT NOT NULL DEFAULT '',
                    state_json JSONB NOT NULL DEFAULT '{}'::jsonb,
                    logs_json JSONB NOT NULL DEFAULT '[]'::jsonb,
                    plan_json JSONB NOT NULL,
                    current_step_index INTEGER NOT NULL DEFAULT 0,
                    status TEXT NOT NULL,
                    pending_review_json JSONB,
                    error TEXT,
                    version INTEGER NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_workflow_sessions_status
                ON workflow_sessions(status)
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_workflow_sessions_created_at
                ON workflow_sessions(created_at DESC)
                """)
            conn.commit()

    def save(self, session: Session) -> Session:
        """Insert (version 0) or conditionally update (version N) one session row."""
        now = datetime.now(tz=UTC)
        stored = session.model_copy(update={"version": session.version + 1, "updated_at": now})
        with self._lock, self._connect() as conn:
            if session.version == 0:
                cursor = conn.execute(
                    """
                    INSERT INTO workflow_sessions (
                        run_id, narrative, narrative_override, goal, task,
                        state_json, logs_json, plan_json, current_step_index, status,
                        pending_review_json, error, version, created_at, updated_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (run_id) DO NOTHING
                    """,
                    (
                        stored.run_id,
                        stored.narrative,
                        stored.narrative_override,
                        stored.goal,
                        stored.task,
                        *self._json_columns(stored),
                        stored.current_step_index,
                        stored.status,
                        self._json_optional(stored.pending_review_json),
                        stored.error,
                        stored.version,
                        stored.created_at,
                        stored.updated_at,
                    ),
                )
                if cursor.rowcount != 1:
                    conn.rollback()
                    raise ConcurrentModificationError(session.run_id, "session already exists")
                conn.commit()
                return stored

            row = conn.execute(
                """
                UPDATE workflow_sessions
                SET narrative = %s,
                    narrative_override = %s,
                    goal = %s,
                    task = %s,
                    state_json = %s,
                    logs_json = %s,
                    plan_json = %s,
                    current_step_index = %s,
                    status = %s,
                    pending_review_json = %s,
                    error = %s,
                    version = %s,
                    updated_at = %s
                WHERE run_id = %s AND version = %s
                RETURNING created_at
                """,
                (
                    stored.narrative,
                    stored.narrative_override,
                    stored.goal,
                    stored.task,
                    *self._json_columns(stored),
                    stored.current_step_index,
                    stored.status,
                    self._json_optional(stored.pending_review_json),
                    stored.error,
                    stored.version,
                    stored.updated_at,
                    session.run_id,
                    session.version,
                ),
            ).fetchone()
            if row is None:
                conn.rollback()
                raise ConcurrentModificationError(
                    session.run_id, f"stored version is no longer {session.version}"
                )
            conn.commit()
        return stored.model_copy(update={"created_at": self._parse_datetime(row["created_at"])})

    def load(self, run_id: str) -> Session:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM workflow_sessions WHERE run_id = %s",
                (run_id,),
            ).fetchone()
        if row is None:
            raise SessionNotFoundError(run_id)
        return self._row_to_session(row)

    def list_sessions(self) -> list[SessionSummary]:
        with self._lock, self._connect() as conn:
            rows = conn.execute("""
                SELECT run_id, status, current_step_index, plan_json, created_at, updated_at
                FROM workflow_sessions
                ORDER BY created_at DESC
                """).fetchall()
        return [
            SessionSummary(
                run_id=row["run_id"],
                status=row["status"],
                current_step_index=row["current_step_index"],
                total_steps=count_steps(self._json_text(row["plan_json"])),
                created_at=self._parse_datetime(row["created_at"]),
                updated_at=self._parse_datetime(row["updated_at"]),
            )
            for row in rows
        ]

    def _connect(self) -> Any:
        """Open a psycopg connection that yields dict-like rows."""
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    def _json_columns(self, session: Session) -> tuple[Any, Any, Any]:
        return (
            self._json_wrapper(json.loads(session.state_json)),
            self._json_wrapper(json.loads(session.logs_json)),
            self._json_wrapper(json.loads(session.plan_json)),
        )

    def _json_optional(self, raw: str | None) -> Any:
        if raw is None:
            return None
        return self._json_wrapper(json.loads(raw))

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any, Any]:
        """Import psycopg and helpers with a friendly install hint on failure."""
        try:
            import psycopg
            from psycopg.rows import dict_row
            from psycopg.types.json import Json
        except ImportError as exc:  # pragma: no cover - exercised only without dependency
            raise RuntimeError(
                "PostgreSQL backend requires psycopg. Install with: "
                'python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row, Json

    @staticmethod
    def _json_text(raw: Any) -> str:
        """JSONB comes back already decoded; the Session model keeps JSON text."""
        if isinstance(raw, str):
            return raw
        return json.dumps(raw, ensure_ascii=False)

    @staticmethod
    def _parse_datetime(raw: Any) -> datetime:
        """Parse datetime value from database driver output."""
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, str):
            return datetime.fromisoformat(raw)
        raise TypeError(f"Unsupported datetime value: {type(raw)!r}")

    @classmethod
    def _row_to_session(cls, row: Any) -> Session:
        """Map one DB row to the canonical Session model."""
        review_raw = row["pending_review_json"]
        return Session(
            run_id=str(row["run_id"]),
            narrative=row["narrative"] or "",
            narrative_override=row["narrative_override"],
            goal=row["goal"] or "",
            task=row["task"] or "",
            state_json=cls._json_text(row["state_json"]),
            logs_json=cls._json_text(row["logs_json"]),
            plan_json=cls._json_text(row["plan_json"]),
            current_step_index=row["current_step_index"],
            status=row["status"],
            pending_review_json=cls._json_text(review_raw) if review_raw is not None else None,
            error=row["error"],
            version=row["version"],
            created_at=cls._parse_datetime(row["created_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
        )
