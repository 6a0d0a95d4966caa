"""Pydantic models shared across planner, orchestrator, storage and API.

Beginner terms used in this file:
- Plan: ordered, immutable list of steps the orchestrator executes.
- Session: the persisted projection of one run (what survives a restart).
- Checkpoint: one write of a Session before/after a step.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# Run lifecycle states.
SessionStatus = Literal["running", "suspended_for_review", "completed", "failed"]

# A fresh run may replace a stored session only in one of these states.
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})


class PlanStep(BaseModel):
    """One tool invocation in a plan."""

    model_config = ConfigDict(frozen=True)

    # Tool name must match a worker name in the registry.
    tool: str
    args: dict[str, Any] = Field(default_factory=dict)


class Plan(BaseModel):
    """Ordered steps plus the reason the planner chose them."""

    model_config = ConfigDict(frozen=True)

    rationale: str = ""
    steps: tuple[PlanStep, ...] = ()

    def tools(self) -> list[str]:
        return [step.tool for step in self.steps]


class Session(BaseModel):
    """Durable record of a run, keyed by ``run_id``.

    ``state_json``, ``logs_json``, ``plan_json`` and ``pending_review_json`` are
    JSON text produced by ``storage.codec``; stores persist them verbatim.
    """

    run_id: str
    narrative: str = ""
    # Effective-narrative override written by the narrative worker or a resume call.
    narrative_override: str | None = None
    goal: str = ""
    task: str = ""
    state_json: str = "{}"
    logs_json: str = "[]"
    plan_json: str
    # Index of the last step attempted (not necessarily completed).
    current_step_index: int = 0
    status: SessionStatus = "running"
    pending_review_json: str | None = None
    error: str | None = None
    # Compare-and-swap counter; 0 means "never saved".
    version: int = 0
    created_at: datetime
    updated_at: datetime


class SessionSummary(BaseModel):
    run_id: str
    status: SessionStatus
    current_step_index: int
    total_steps: int
    created_at: datetime
    updated_at: datetime


class RunRequest(BaseModel):
    """Request body for starting (or idempotently re-entering) a run."""

    run_id: str | None = None
    narrative: str | None = None
    goal: str | None = None
    task: str | None = None
    # Hand-edited domain model; on a fresh run it seeds state["plantuml"].
    domain_model_override: str | None = None
    # Explicit narrative-only review plan (no goal-text heuristics).
    review_only: bool = False


class ResumeRequest(BaseModel):
    """Caller edits merged into a suspended run before it continues."""

    narrative: str | None = None
    domain_model: str | None = None


class WorkflowResponse(BaseModel):
    """Response for run/resume/recover and stored-session reads.

    ``artifacts["_status"]`` carries the session status; when suspended,
    ``artifacts["_reviewData"]`` carries the review payload.
    """

    run_id: str
    plan: Plan
    artifacts: dict[str, Any] = Field(default_factory=dict)
    logs: list[str] = Field(default_factory=list)

    @property
    def status(self) -> str:
        return str(self.artifacts.get("_status", ""))
