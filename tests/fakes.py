"""Worker and planner doubles shared by the test modules."""

from __future__ import annotations

from typing import Any

from iconix_workflow.engine.cancellation import CancellationToken
from iconix_workflow.engine.context import WorkflowContext
from iconix_workflow.engine.models import Plan, PlanStep
from iconix_workflow.workers.base import StepOutcome


class RecordingWorker:
    """Test double that records each call and optionally writes one state key."""

    def __init__(
        self,
        name: str,
        *,
        key: str | None = None,
        value: Any = None,
        pause: bool = False,
        error: Exception | None = None,
    ) -> None:
        self.name = name
        self.writes = frozenset({key}) if key else frozenset()
        self.key = key
        self.value = value if value is not None else f"{name}-output"
        self.pause = pause
        self.error = error
        self.calls: list[dict[str, Any]] = []

    def execute(
        self,
        ctx: WorkflowContext,
        args: dict[str, Any],
        *,
        cancel: CancellationToken | None = None,
    ) -> StepOutcome:
        self.calls.append(dict(args))
        if self.error is not None:
            raise self.error
        if self.key:
            ctx.state[self.key] = self.value
        ctx.log(f"{self.name}: called")
        if self.pause:
            return StepOutcome.paused({"narrative": ctx.effective_narrative()})
        return StepOutcome.ok()


class NarrativeStub:
    """Sets the effective narrative the way the real narrative worker does."""

    name = "narrative"
    writes: frozenset[str] = frozenset()

    def __init__(self, text: str = "Generated narrative") -> None:
        self.text = text
        self.calls = 0

    def execute(
        self,
        ctx: WorkflowContext,
        args: dict[str, Any],
        *,
        cancel: CancellationToken | None = None,
    ) -> StepOutcome:
        self.calls += 1
        ctx.override_narrative(self.text)
        return StepOutcome.ok()


class FixedPlanner:
    def __init__(self, *tools: str) -> None:
        self.plan = Plan(rationale="test", steps=tuple(PlanStep(tool=tool) for tool in tools))

    def build(self, goal: str | None, narrative: str | None, *, review_only: bool = False) -> Plan:
        return self.plan
