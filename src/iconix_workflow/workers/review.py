"""Automated review of the domain model or of the narrative."""

from __future__ import annotations

from typing import Any

from iconix_workflow.engine.cancellation import CancellationToken
from iconix_workflow.engine.context import WorkflowContext
from iconix_workflow.workers.base import (
    RetrievalWorker,
    StepOutcome,
    raise_if_cancelled,
    require_text,
)


class ReviewWorker(RetrievalWorker):
    name = "review"
    writes = frozenset({"issues", "narrativeIssues"})

    def execute(
        self,
        ctx: WorkflowContext,
        args: dict[str, Any],
        *,
        cancel: CancellationToken | None = None,
    ) -> StepOutcome:
        target = str(args.get("target", "model")).lower()
        narrative = ctx.effective_narrative()

        if target == "narrative":
            rag_context = self.retrieve(ctx, narrative)
            raise_if_cancelled(ctx, cancel)
            issues = self.writer.evaluate_narrative(narrative, rag_context)
            ctx.state["narrativeIssues"] = [issue.model_dump() for issue in issues]
            ctx.log(f"review.narrative: issues={len(issues)}")
            return StepOutcome.ok()

        plantuml = require_text(ctx, "plantuml", producer="model")
        rag_context = self.retrieve(ctx, narrative)
        raise_if_cancelled(ctx, cancel)
        issues = self.writer.evaluate_domain_model(narrative, rag_context, plantuml)
        ctx.state["issues"] = [issue.model_dump() for issue in issues]
        ctx.log(f"review.model: issues={len(issues)}")
        return StepOutcome.ok()
