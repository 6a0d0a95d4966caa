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


class ScenarioWorker(RetrievalWorker):
    """Final step: use case text written against all earlier diagrams."""

    name = "scenario"
    writes = frozenset({"scenario"})

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
        diagram = require_text(ctx, "mvcDiagram", producer="mvc")
        rag_context = self.retrieve(ctx, narrative)
        raise_if_cancelled(ctx, cancel)
        scenario = self.writer.generate_scenario(
            narrative, domain_model, use_case_model, diagram, rag_context
        )
        ctx.state["scenario"] = scenario
        ctx.log(f"scenario.generate: {len(scenario)} chars")
        return StepOutcome.ok()
