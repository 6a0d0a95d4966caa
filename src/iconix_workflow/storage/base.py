"""Storage contract shared by every session backend.

Beginner terms:
- Upsert: insert when missing, otherwise overwrite.
- Compare-and-swap (CAS): the write succeeds only if the stored ``version``
  still equals the version the caller read; the store then bumps it by one.
"""

from __future__ import annotations

from typing import Protocol

from iconix_workflow.engine.models import Session, SessionSummary


class SessionStore(Protocol):
    def migrate(self) -> None:
        """Create backing tables if needed. Safe to call repeatedly."""
        ...

    def save(self, session: Session) -> Session:
        """Upsert ``session`` with CAS on ``session.version``.

        Returns the stored record (with the bumped version). Raises
        ``ConcurrentModificationError`` if the stored version differs.
        """
        ...

    def load(self, run_id: str) -> Session:
        """Return the stored session or raise ``SessionNotFoundError``."""
        ...

    def list_sessions(self) -> list[SessionSummary]:
        """Summaries ordered newest first."""
        ...
