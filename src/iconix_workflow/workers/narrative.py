"""First pipeline step: turn the caller's goal into a domain narrative."""

from __future__ import annotations

import logging
from typing import Any

from iconix_workflow.engine.cancellation import CancellationToken
from iconix_workflow.engine.context import WorkflowContext
from iconix_workflow.workers.base import RetrievalWorker, StepOutcome, raise_if_cancelled

logger = logging.getLogger(__name__)

NO_GOAL_MESSAGE = (
    "No goal or task description was given. Enter the goal text and run the workflow again."
)


class NarrativeWorker(RetrievalWorker):
    name = "narrative"
    writes: frozenset[str] = frozenset()

    def execute(
        self,
        ctx: WorkflowContext,
        args: dict[str, Any],
        *,
        cancel: CancellationToken | None = None,
    ) -> StepOutcome:
        description = _first_non_blank(args.get("description"), ctx.goal)
        if not description:
            logger.warning("narrative_worker event=skipped run_id=%s reason=empty_goal", ctx.run_id)
            ctx.log("narrative.skipped: goal empty")
            ctx.override_narrative(NO_GOAL_MESSAGE)
            return StepOutcome.ok()

        rag_context = self.retrieve(ctx, ctx.goal.strip() or description)
        raise_if_cancelled(ctx, cancel)
        generated = self.writer.compose_narrative(description, ctx.goal, rag_context)
        ctx.override_narrative(generated)
        ctx.log(f"narrative.generated: chars={len(generated)}")
        return StepOutcome.ok()


def _first_non_blank(*values: Any) -> str:
    for value in values:
        if isinstance(value, str) and value.strip():
            return value
    return ""
