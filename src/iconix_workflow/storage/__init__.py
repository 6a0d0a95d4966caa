"""Session persistence backends and the URL-based factory that picks one."""

from __future__ import annotations

from iconix_workflow.storage.base import SessionStore
from iconix_workflow.storage.memory import InMemorySessionStore
from iconix_workflow.storage.postgres import PostgresSessionStore
from iconix_workflow.storage.sqlite import SQLiteSessionStore


def build_session_store(database_url: str | None) -> SessionStore:
    """Pick a backend from the URL scheme.

    Empty URL gives an in-memory store; ``sqlite://<path>`` gives SQLite;
    ``postgres://`` or ``postgresql://`` gives PostgreSQL.
    """
    if not database_url:
        return InMemorySessionStore()
    if database_url.startswith("sqlite://"):
        return SQLiteSessionStore(database_url.replace("sqlite://", "", 1))
    if database_url.startswith(("postgres://", "postgresql://")):
        return PostgresSessionStore(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


__all__ = [
    "InMemorySessionStore",
    "PostgresSessionStore",
    "SQLiteSessionStore",
    "SessionStore",
    "build_session_store",
]
