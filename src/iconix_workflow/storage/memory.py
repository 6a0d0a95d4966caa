"""Process-local session store for tests and throwaway runs."""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Any

from iconix_workflow.engine.errors import ConcurrentModificationError, SessionNotFoundError
from iconix_workflow.engine.models import Session, SessionSummary
from iconix_workflow.storage.codec import count_steps


class InMemorySessionStore:
    """Keeps sessions as plain JSON-mode dicts, never as live objects.

    Loaded sessions are fresh copies, so callers cannot mutate stored state.
    """

    def __init__(self) -> None:
        self._rows: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def migrate(self) -> None:
        return None

    def save(self, session: Session) -> Session:
        with self._lock:
            existing = self._rows.get(session.run_id)
            stored_version = int(existing["version"]) if existing else 0
            if stored_version != session.version:
                raise ConcurrentModificationError(
                    session.run_id,
                    f"expected version {session.version}, found {stored_version}",
                )
            stored = session.model_copy(
                update={
                    "version": stored_version + 1,
                    "created_at": (
                        datetime.fromisoformat(existing["created_at"])
                        if existing
                        else session.created_at
                    ),
                    "updated_at": datetime.now(tz=UTC),
                }
            )
            row = stored.model_dump(mode="json")
            self._rows[session.run_id] = row
        return Session.model_validate(row)

    def load(self, run_id: str) -> Session:
        with self._lock:
            row = self._rows.get(run_id)
        if row is None:
            raise SessionNotFoundError(run_id)
        return Session.model_validate(row)

    def list_sessions(self) -> list[SessionSummary]:
        with self._lock:
            rows = list(self._rows.values())
        summaries = [
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
        return sorted(summaries, key=lambda item: item.created_at, reverse=True)
