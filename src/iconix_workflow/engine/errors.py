"""Exception types raised by the orchestration engine.

Beginner terms:
- Fatal: the engine never retries it; a human or a code change must fix the cause.
- User-input error: the caller asked for something the stored session cannot do.
"""

from __future__ import annotations


class WorkflowError(Exception):
    """Base class for every engine error."""


class UnknownToolError(WorkflowError):
    """A plan step names a tool that has no registered worker."""

    def __init__(self, tool: str, run_id: str | None = None) -> None:
        super().__init__(f"Unknown tool: {tool}")
        self.tool = tool
        # Filled in by the orchestrator when the lookup happened inside a run.
        self.run_id = run_id


class SessionNotFoundError(WorkflowError):
    def __init__(self, run_id: str) -> None:
        super().__init__(f"Session not found: {run_id}")
        self.run_id = run_id


class InvalidResumeStateError(WorkflowError):
    """The stored session status does not allow the requested re-entry."""

    def __init__(self, run_id: str, status: str, expected: tuple[str, ...]) -> None:
        super().__init__(
            f"Session {run_id} has status '{status}'; expected one of {', '.join(expected)}"
        )
        self.run_id = run_id
        self.status = status
        self.expected = expected


class ConcurrentModificationError(WorkflowError):
    """Another writer advanced the session, or a call for the same run is in flight."""

    def __init__(self, run_id: str, reason: str) -> None:
        super().__init__(f"Concurrent modification of session {run_id}: {reason}")
        self.run_id = run_id
        self.reason = reason


class StepExecutionError(WorkflowError):
    """A worker failed; the cause is chained via ``__cause__``."""

    def __init__(self, run_id: str, step_index: int, tool: str, message: str) -> None:
        super().__init__(f"Step {step_index} ('{tool}') of run {run_id} failed: {message}")
        self.run_id = run_id
        self.step_index = step_index
        self.tool = tool


class WorkflowCancelledError(WorkflowError):
    """Cancellation was observed; ``step_index`` is None when raised from inside a worker."""

    def __init__(self, run_id: str, step_index: int | None = None) -> None:
        where = f" at step {step_index}" if step_index is not None else ""
        super().__init__(f"Run {run_id} cancelled{where}")
        self.run_id = run_id
        self.step_index = step_index
