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


class UseCaseWorker(RetrievalWorker):
    name = "usecase"
    writes = frozenset({"useCaseModel"})

    def execute(
        self,
        ctx: WorkflowContext,
        args: dict[str, Any],
        *,
        cancel: CancellationToken | None = None,
    ) -> StepOutcome:
        narrative = ctx.effective_narrative()
        domain_model = require_text(ctx, "plantuml", producer="model")
        rag_context = self.retrieve(ctx, narrative)
        raise_if_cancelled(ctx, cancel)
        use_case_model = self.writer.generate_use_case_model(narrative, domain_model, rag_context)
        ctx.state["useCaseModel"] = use_case_model
        ctx.log(f"usecase.generate: {len(use_case_model)} chars")
        return StepOutcome.ok()
