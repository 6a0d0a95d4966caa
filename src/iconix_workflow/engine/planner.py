"""Planning layer: decides which workers run, in which order.

The planner never executes anything; its output is the to-do list the
orchestrator walks. Planning is deterministic and pure: the same inputs
always produce an equal ``Plan``.

Beginner terms:
- Full plan: the complete ICONIX pipeline from narrative to scenario.
- Review-only plan: narrative plus an automated narrative review, then a
  human checkpoint. Only chosen when the caller asks for it explicitly.
"""

from __future__ import annotations

from iconix_workflow.engine.models import Plan, PlanStep

FULL_RATIONALE = "Full ICONIX pipeline: narrative -> domain model -> use cases -> MVC -> scenario"
REVIEW_ONLY_RATIONALE = "Narrative review: compose the narrative, review it, hand it to a reviewer"


class PlanBuilder:
    def build(self, goal: str | None, narrative: str | None, *, review_only: bool = False) -> Plan:
        """Build the plan for a run.

        ``goal`` and ``narrative`` do not change the step list: goal phrasing is
        never parsed for intent. Use ``review_only`` for the short plan.
        """
        if review_only:
            return Plan(
                rationale=REVIEW_ONLY_RATIONALE,
                steps=(
                    PlanStep(tool="narrative"),
                    PlanStep(tool="review", args={"target": "narrative"}),
                    PlanStep(tool="userReview"),
                ),
            )
        return Plan(
            rationale=FULL_RATIONALE,
            steps=(
                PlanStep(tool="narrative"),
                PlanStep(tool="userReview"),
                PlanStep(tool="model", args={"mode": "generate"}),
                PlanStep(tool="review", args={"target": "model"}),
                PlanStep(tool="model", args={"mode": "refine"}),
                PlanStep(tool="usecase"),
                PlanStep(tool="mvc"),
                PlanStep(tool="scenario"),
            ),
        )
