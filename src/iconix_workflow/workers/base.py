"""Worker contract and the explicit step outcome returned by every worker."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from iconix_workflow.engine.cancellation import CancellationToken
from iconix_workflow.engine.context import WorkflowContext
from iconix_workflow.engine.errors import WorkflowCancelledError
from iconix_workflow.generation.retrieval import ContextRetriever
from iconix_workflow.generation.writers import ArtifactWriter

# Closed vocabulary of state keys workers may write. The registry rejects
# workers that declare anything else.
ARTIFACT_KEYS: frozenset[str] = frozenset(
    {
        "plantuml",
        "issues",
        "narrativeIssues",
        "useCaseModel",
        "mvcDiagram",
        "scenario",
    }
)

OutcomeKind = Literal["ok", "paused", "failed"]


@dataclass(frozen=True)
class StepOutcome:
    """Result of one worker invocation: ok, paused for review, or failed.

    Pausing is a normal outcome, not an exception: the orchestrator persists
    ``review_payload`` and returns control to the caller.
    """

    kind: OutcomeKind
    review_payload: dict[str, Any] = field(default_factory=dict)
    error: BaseException | None = None

    @classmethod
    def ok(cls) -> StepOutcome:
        return cls(kind="ok")

    @classmethod
    def paused(cls, payload: dict[str, Any]) -> StepOutcome:
        return cls(kind="paused", review_payload=dict(payload))

    @classmethod
    def failed(cls, error: BaseException) -> StepOutcome:
        return cls(kind="failed", error=error)


class Worker(Protocol):
    """Named unit of work that mutates a context.

    Workers must be safe to re-invoke with the same context: a crash between
    the pre-step checkpoint and completion re-attempts the step.
    """

    name: str
    # State keys this worker may write; validated against ARTIFACT_KEYS.
    writes: frozenset[str]

    def execute(
        self,
        ctx: WorkflowContext,
        args: dict[str, Any],
        *,
        cancel: CancellationToken | None = None,
    ) -> StepOutcome: ...


class MissingArtifactError(RuntimeError):
    """A worker ran before the step that produces its input."""

    def __init__(self, key: str, producer: str) -> None:
        super().__init__(f"No {key} in context; run {producer} first.")
        self.key = key
        self.producer = producer


def require_text(ctx: WorkflowContext, key: str, *, producer: str) -> str:
    value = ctx.state.get(key)
    if not isinstance(value, str) or not value.strip():
        raise MissingArtifactError(key, producer)
    return value


def raise_if_cancelled(ctx: WorkflowContext, cancel: CancellationToken | None) -> None:
    """Stop before a writer call once the run has been cancelled."""
    if cancel is not None and cancel.is_set():
        ctx.log("cancelled: writer call skipped")
        raise WorkflowCancelledError(ctx.run_id)


class RetrievalWorker:
    """Shared wiring for workers that look up background context, then call the writer."""

    name: str = ""
    writes: frozenset[str] = frozenset()

    def __init__(
        self,
        *,
        writer: ArtifactWriter,
        retriever: ContextRetriever,
        retrieval_limit: int = 4,
    ) -> None:
        self.writer = writer
        self.retriever = retriever
        self.retrieval_limit = retrieval_limit

    def retrieve(self, ctx: WorkflowContext, query: str) -> str:
        rag = self.retriever.retrieve(query, self.retrieval_limit)
        ctx.log(f"rag.{self.name}: fragments={rag.fragments}, vs={str(rag.available).lower()}")
        return rag.text
