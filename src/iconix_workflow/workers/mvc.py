"""Robustness (boundary/control/entity) diagram step."""

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


class MVCWorker(RetrievalWorker):
    name = "mvc"
    writes = frozenset({"mvcDiagram"})

    def execute(
        self,
        ctx: WorkflowContext,
        args: dict[str, Any],
        *,
        cancel: CancellationToken | None = None,
    ) -> StepOutcome:
        narrative = ctx.effective_narrative()
        domain_model = require_text(ctx, "plantuml", producer="model")
        use_case_model = require_text(ctx, "useCaseModel", producer="usecase")
        rag_context = self.retrieve(ctx, narrative)
        raise_if_cancelled(ctx, cancel)
        diagram = self.writer.generate_mvc_diagram(
            narrative, domain_model, use_case_model, rag_context
        )
        ctx.state["mvcDiagram"] = diagram
        ctx.log(f"mvc.generate: {len(diagram)} chars")
        return StepOutcome.ok()
