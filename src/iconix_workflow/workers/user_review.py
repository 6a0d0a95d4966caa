"""Human-in-the-loop checkpoint: hands the current artifacts to a reviewer."""

from __future__ import annotations

from typing import Any

from iconix_workflow.engine.cancellation import CancellationToken
from iconix_workflow.engine.context import WorkflowContext
from iconix_workflow.workers.base import StepOutcome


class UserReviewWorker:
    name = "userReview"
    writes: frozenset[str] = frozenset()

    def execute(
        self,
        ctx: WorkflowContext,
        args: dict[str, Any],
        *,
        cancel: CancellationToken | None = None,
    ) -> StepOutcome:
        payload: dict[str, Any] = {"narrative": ctx.effective_narrative()}
        if "plantuml" in ctx.state:
            payload["domainModel"] = ctx.state["plantuml"]
        if "issues" in ctx.state:
            payload["issues"] = ctx.state["issues"]
        if "narrativeIssues" in ctx.state:
            payload["narrativeIssues"] = ctx.state["narrativeIssues"]
        ctx.log("userReview: paused for user review")
        return StepOutcome.paused(payload)
