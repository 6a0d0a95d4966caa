"""Domain model generation and issue-driven refinement."""

from __future__ import annotations

from typing import Any

from iconix_workflow.engine.cancellation import CancellationToken
from iconix_workflow.engine.context import WorkflowContext
from iconix_workflow.generation.writers import Issue
from iconix_workflow.workers.base import RetrievalWorker, StepOutcome, raise_if_cancelled


class ModelWorker(RetrievalWorker):
    """``mode=generate`` builds a fresh model; ``mode=refine`` applies review issues.

    Refine falls back to generate when no model exists yet.
    """

    name = "model"
    writes = frozenset({"plantuml"})

    def execute(
        self,
        ctx: WorkflowContext,
        args: dict[str, Any],
        *,
        cancel: CancellationToken | None = None,
    ) -> StepOutcome:
        mode = str(args.get("mode", "generate")).lower()
        narrative = ctx.effective_narrative()
        current = ctx.state.get("plantuml")
        rag_context = self.retrieve(ctx, narrative)
        raise_if_cancelled(ctx, cancel)

        if mode == "generate" or not isinstance(current, str) or not current.strip():
            plantuml = self.writer.generate_domain_model(narrative, rag_context)
            ctx.log(f"model.generate: {len(plantuml)} chars")
        else:
            issues = issues_from_state(ctx.state.get("issues"))
            plantuml = self.writer.refine_domain_model(narrative, current, issues, rag_context)
            ctx.log(f"model.refine: {len(plantuml)} chars")
        ctx.state["plantuml"] = plantuml
        return StepOutcome.ok()


def issues_from_state(raw: Any) -> list[Issue]:
    """Rebuild typed issues from the plain dicts kept in (serialisable) state."""
    if not isinstance(raw, list):
        return []
    issues: list[Issue] = []
    for index, item in enumerate(raw, start=1):
        if isinstance(item, Issue):
            issues.append(item)
        elif isinstance(item, dict):
            issues.append(
                Issue(
                    id=str(item.get("id") or f"ISSUE-{index}"),
                    title=str(item.get("title", "")),
                    severity=str(item.get("severity", "MEDIUM")),
                    suggestion=str(item.get("suggestion", "")),
                )
            )
    return issues
