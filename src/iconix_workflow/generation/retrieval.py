"""Retrieval-augmented context lookup boundary.

Workers ask a retriever for background fragments before calling the writer.
A vector-store lookup can be injected through ``build_registry``. Otherwise
``build_retriever`` serves fragments from a plain-text corpus file, or falls
back to ``NullRetriever`` when none is configured.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
import re
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetrievedContext:
    text: str = ""
    fragments: int = 0
    # False when no backing store is configured or reachable.
    available: bool = False


class ContextRetriever(Protocol):
    def retrieve(self, query: str, limit: int) -> RetrievedContext: ...


class NullRetriever:
    def retrieve(self, query: str, limit: int) -> RetrievedContext:
        return RetrievedContext()


class StaticRetriever:
    """Serve a fixed list of fragments; handy for local runs and tests."""

    def __init__(self, fragments: list[str]) -> None:
        self.fragments = [item for item in fragments if item.strip()]

    def retrieve(self, query: str, limit: int) -> RetrievedContext:
        selected = self.fragments[: max(0, limit)]
        return RetrievedContext(
            text="\n\n".join(selected),
            fragments=len(selected),
            available=True,
        )


def load_fragments(path: str | Path) -> list[str]:
    """Split a UTF-8 text file into fragments on blank lines."""
    text = Path(path).read_text(encoding="utf-8")
    return [block.strip() for block in re.split(r"\n\s*\n", text) if block.strip()]


def build_retriever(corpus_path: str) -> ContextRetriever:
    if not corpus_path.strip():
        return NullRetriever()
    try:
        fragments = load_fragments(corpus_path)
    except OSError as exc:
        logger.warning(
            "retriever_resolution event=fallback path=%s reason=%s", corpus_path, exc
        )
        return NullRetriever()
    logger.info("retriever_resolution event=loaded path=%s fragments=%d", corpus_path, len(fragments))
    return StaticRetriever(fragments)
