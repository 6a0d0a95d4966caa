"""Per-run mutable state shared by every worker in a plan."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class WorkflowContext:
    """One run's evolving state.

    ``state`` holds generated artifacts keyed by the recognised artifact names
    (see ``workers.base.ARTIFACT_KEYS``). ``logs`` is an append-only, user-facing
    trace; it never drives control flow.
    """

    run_id: str
    narrative: str = ""
    goal: str = ""
    task: str = ""
    narrative_override: str | None = None
    state: dict[str, Any] = field(default_factory=dict)
    logs: list[str] = field(default_factory=list)

    @classmethod
    def new(
        cls,
        run_id: str,
        narrative: str | None = None,
        goal: str | None = None,
        task: str | None = None,
    ) -> WorkflowContext:
        return cls(
            run_id=run_id,
            narrative=narrative or "",
            goal=goal or "",
            task=task or "",
        )

    def log(self, line: str) -> None:
        self.logs.append(line)

    def override_narrative(self, text: str | None) -> None:
        # Blank input keeps whatever override was already set.
        if text is not None and text.strip():
            self.narrative_override = text

    def effective_narrative(self) -> str:
        if self.narrative_override is not None and self.narrative_override.strip():
            return self.narrative_override
        return self.narrative
