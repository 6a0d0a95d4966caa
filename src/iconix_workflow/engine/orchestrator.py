"""Step loop and run lifecycle: run, suspend for review, resume, recover.

State machine (one row per ``run_id`` in the session store):

    running --all steps ok--> completed
    running --worker paused--> suspended_for_review (review payload stored)
    running --worker failed--> failed (error stored, then raised)
    suspended_for_review --resume--> running, at current_step_index + 1
    running | failed --recover--> running, at current_step_index
    completed | failed --run (same id)--> running, fresh plan from step 0

Checkpoint contract: a ``running`` checkpoint with ``current_step_index = i``
is written before step ``i`` executes. A crash after that write re-attempts
step ``i`` on recover, so workers must tolerate being re-invoked.

Beginner terms:
- Checkpoint: one session write before or after a step.
- Review payload: the artifact snapshot a human inspects while a run is suspended.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any
from uuid import uuid4

from iconix_workflow.engine.cancellation import CancellationToken
from iconix_workflow.engine.context import WorkflowContext
from iconix_workflow.engine.errors import (
    ConcurrentModificationError,
    InvalidResumeStateError,
    SessionNotFoundError,
    StepExecutionError,
    UnknownToolError,
    WorkflowCancelledError,
)
from iconix_workflow.engine.models import (
    Plan,
    ResumeRequest,
    RunRequest,
    Session,
    SessionStatus,
    TERMINAL_STATUSES,
    SessionSummary,
    WorkflowResponse,
)
from iconix_workflow.engine.planner import PlanBuilder
from iconix_workflow.storage.base import SessionStore
from iconix_workflow.storage.codec import (
    decode_review,
    decode_state,
    encode_review,
    encode_state,
    restore_context,
    restore_plan,
    to_session,
)
from iconix_workflow.workers.base import StepOutcome
from iconix_workflow.workers.registry import WorkerRegistry

logger = logging.getLogger(__name__)

# Artifact keys copied from ``ctx.state`` into responses, in display order.
CORE_STATE_KEYS = ("plantuml", "issues", "narrativeIssues", "useCaseModel", "mvcDiagram", "scenario")

RESUMABLE_STATUSES: tuple[str, ...] = ("suspended_for_review",)
RECOVERABLE_STATUSES: tuple[str, ...] = ("running", "failed")


class RunLocks:
    """Non-blocking per-run exclusion for calls inside this process.

    Only run ids with a call in flight are tracked; an id is forgotten on release.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._held: set[str] = set()

    @contextmanager
    def hold(self, run_id: str) -> Iterator[None]:
        with self._guard:
            if run_id in self._held:
                raise ConcurrentModificationError(run_id, "another call for this run is in progress")
            self._held.add(run_id)
        try:
            yield
        finally:
            with self._guard:
                self._held.discard(run_id)

    def active(self) -> list[str]:
        with self._guard:
            return sorted(self._held)


def build_core_artifacts(ctx: WorkflowContext) -> dict[str, Any]:
    """Caller-facing artifact snapshot: goal, effective narrative, then present state keys."""
    artifacts: dict[str, Any] = {}
    if ctx.goal.strip():
        artifacts["goal"] = ctx.goal
    artifacts["narrative"] = ctx.effective_narrative()
    for key in CORE_STATE_KEYS:
        if key in ctx.state:
            artifacts[key] = ctx.state[key]
    return artifacts


class Orchestrator:
    """Runs plans against a worker registry, checkpointing every step to a session store.

    Nothing about a run is cached between calls; every entry point re-reads the
    session from the store.
    """

    def __init__(
        self,
        *,
        registry: WorkerRegistry,
        store: SessionStore,
        planner: PlanBuilder | None = None,
        locks: RunLocks | None = None,
    ) -> None:
        self.registry = registry
        self.store = store
        self.planner = planner or PlanBuilder()
        self._locks = locks or RunLocks()

    def run(self, request: RunRequest, *, cancel: CancellationToken | None = None) -> WorkflowResponse:
        """Start a run, or re-enter it when the stored session is suspended for review.

        Re-entry behaves like ``resume``: only ``domain_model_override`` is carried
        over, since the request's ``narrative`` is the run's original input.
        """
        run_id = request.run_id or str(uuid4())
        with self._locks.hold(run_id):
            existing = self._find(run_id)
            if existing is not None and existing.status == "suspended_for_review":
                logger.info("workflow_run event=reenter run_id=%s", run_id)
                overrides = ResumeRequest(domain_model=request.domain_model_override)
                return self._resume_session(existing, overrides, cancel=cancel)
            if existing is not None and existing.status not in TERMINAL_STATUSES:
                # Interrupted runs continue through recover, never a fresh run.
                raise InvalidResumeStateError(
                    run_id, existing.status, tuple(sorted(TERMINAL_STATUSES))
                )

            ctx = WorkflowContext.new(run_id, request.narrative, request.goal, request.task)
            override = request.domain_model_override
            if override is not None and override.strip():
                ctx.state["plantuml"] = override
            plan = self.planner.build(ctx.goal, ctx.narrative, review_only=request.review_only)
            ctx.log(f"plan: {' -> '.join(plan.tools())}")
            logger.info(
                "workflow_run event=plan_built run_id=%s steps=%d review_only=%s",
                run_id,
                len(plan.steps),
                request.review_only,
            )
            # A finished run with the same id is replaced by this fresh one.
            version = existing.version if existing is not None else 0
            return self._execute(ctx, plan, start_index=0, version=version, cancel=cancel)

    def resume(
        self,
        run_id: str,
        overrides: ResumeRequest | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> WorkflowResponse:
        """Continue a suspended run after the step that paused it."""
        with self._locks.hold(run_id):
            session = self.store.load(run_id)
            return self._resume_session(session, overrides or ResumeRequest(), cancel=cancel)

    def recover(self, run_id: str, *, cancel: CancellationToken | None = None) -> WorkflowResponse:
        """Re-attempt the checkpointed step of an interrupted or failed run."""
        with self._locks.hold(run_id):
            session = self.store.load(run_id)
            if session.status not in RECOVERABLE_STATUSES:
                raise InvalidResumeStateError(run_id, session.status, RECOVERABLE_STATUSES)
            ctx = restore_context(session)
            plan = restore_plan(session)
            ctx.log(f"recover: from step {session.current_step_index}")
            logger.info(
                "workflow_run event=recover run_id=%s from_status=%s step=%d",
                run_id,
                session.status,
                session.current_step_index,
            )
            return self._execute(
                ctx,
                plan,
                start_index=session.current_step_index,
                version=session.version,
                created_at=session.created_at,
                cancel=cancel,
            )

    def get_session_data(self, run_id: str) -> WorkflowResponse:
        """Rebuild the response for a stored run without executing anything."""
        session = self.store.load(run_id)
        return self._response(
            restore_context(session),
            restore_plan(session),
            session.status,
            decode_review(session.pending_review_json),
        )

    def list_sessions(self) -> list[SessionSummary]:
        return self.store.list_sessions()

    def list_tools(self) -> list[str]:
        return self.registry.names()

    def _find(self, run_id: str) -> Session | None:
        try:
            return self.store.load(run_id)
        except SessionNotFoundError:
            return None

    def _resume_session(
        self,
        session: Session,
        overrides: ResumeRequest,
        *,
        cancel: CancellationToken | None,
    ) -> WorkflowResponse:
        if session.status not in RESUMABLE_STATUSES:
            raise InvalidResumeStateError(session.run_id, session.status, RESUMABLE_STATUSES)

        ctx = restore_context(session)
        plan = restore_plan(session)
        ctx.override_narrative(overrides.narrative)
        if overrides.domain_model is not None and overrides.domain_model.strip():
            ctx.state["plantuml"] = overrides.domain_model
        start_index = session.current_step_index + 1
        ctx.log(f"resume: from step {start_index}")
        logger.info(
            "workflow_run event=resume run_id=%s step=%d narrative_override=%s domain_model_override=%s",
            session.run_id,
            start_index,
            bool(overrides.narrative and overrides.narrative.strip()),
            bool(overrides.domain_model and overrides.domain_model.strip()),
        )
        return self._execute(
            ctx,
            plan,
            start_index=start_index,
            version=session.version,
            created_at=session.created_at,
            cancel=cancel,
        )

    def _execute(
        self,
        ctx: WorkflowContext,
        plan: Plan,
        *,
        start_index: int,
        version: int,
        created_at: datetime | None = None,
        cancel: CancellationToken | None = None,
    ) -> WorkflowResponse:
        run_id = ctx.run_id
        for index in range(start_index, len(plan.steps)):
            step = plan.steps[index]
            if cancel is not None and cancel.is_set():
                logger.info("workflow_run event=cancelled run_id=%s step=%d", run_id, index)
                raise WorkflowCancelledError(run_id, index)

            saved = self._checkpoint(
                ctx, plan, "running", index, version=version, created_at=created_at
            )
            version, created_at = saved.version, saved.created_at
            logger.info(
                "workflow_run event=step_start run_id=%s step=%d/%d tool=%s",
                run_id,
                index + 1,
                len(plan.steps),
                step.tool,
            )

            try:
                worker = self.registry.get(step.tool)
                outcome = worker.execute(ctx, dict(step.args), cancel=cancel)
                # Anything the next checkpoint cannot store fails this step.
                encode_state(ctx.state)
                if outcome.kind == "paused":
                    encode_review(outcome.review_payload)
            except UnknownToolError as exc:
                exc.run_id = run_id
                self._checkpoint(
                    ctx, plan, "failed", index, version=version, created_at=created_at, error=str(exc)
                )
                logger.error("workflow_run event=failed run_id=%s step=%d reason=%s", run_id, index, exc)
                raise
            except WorkflowCancelledError as exc:
                logger.info("workflow_run event=cancelled run_id=%s step=%d", run_id, index)
                raise WorkflowCancelledError(run_id, index) from exc
            except Exception as exc:  # noqa: BLE001
                outcome = StepOutcome.failed(exc)

            if outcome.kind == "paused":
                self._checkpoint(
                    ctx,
                    plan,
                    "suspended_for_review",
                    index,
                    version=version,
                    created_at=created_at,
                    review_payload=outcome.review_payload,
                )
                logger.info(
                    "workflow_run event=suspended run_id=%s step=%d tool=%s",
                    run_id,
                    index,
                    step.tool,
                )
                return self._response(ctx, plan, "suspended_for_review", outcome.review_payload)

            if outcome.kind == "failed":
                cause = outcome.error or RuntimeError("worker reported failure without an error")
                _rollback_unstorable_state(ctx, saved)
                self._checkpoint(
                    ctx, plan, "failed", index, version=version, created_at=created_at, error=str(cause)
                )
                logger.error(
                    "workflow_run event=failed run_id=%s step=%d tool=%s reason=%s",
                    run_id,
                    index,
                    step.tool,
                    cause,
                )
                raise StepExecutionError(run_id, index, step.tool, str(cause)) from cause

        last_index = max(len(plan.steps) - 1, 0)
        self._checkpoint(ctx, plan, "completed", last_index, version=version, created_at=created_at)
        logger.info("workflow_run event=completed run_id=%s steps=%d", run_id, len(plan.steps))
        return self._response(ctx, plan, "completed", None)

    def _checkpoint(
        self,
        ctx: WorkflowContext,
        plan: Plan,
        status: SessionStatus,
        step_index: int,
        *,
        version: int,
        created_at: datetime | None,
        review_payload: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> Session:
        return self.store.save(
            to_session(
                ctx,
                plan,
                status=status,
                step_index=step_index,
                version=version,
                created_at=created_at,
                review_payload=review_payload,
                error=error,
            )
        )

    @staticmethod
    def _response(
        ctx: WorkflowContext,
        plan: Plan,
        status: str,
        review_payload: dict[str, Any] | None,
    ) -> WorkflowResponse:
        artifacts = build_core_artifacts(ctx)
        artifacts["_status"] = status
        if status == "suspended_for_review" and review_payload is not None:
            artifacts["_reviewData"] = review_payload
        return WorkflowResponse(run_id=ctx.run_id, plan=plan, artifacts=artifacts, logs=list(ctx.logs))


def _rollback_unstorable_state(ctx: WorkflowContext, checkpoint: Session) -> None:
    """Reset ``ctx.state`` to the pre-step checkpoint when it no longer encodes as JSON."""
    try:
        encode_state(ctx.state)
    except (TypeError, ValueError):
        ctx.state.clear()
        ctx.state.update(decode_state(checkpoint.state_json))
