"""Artifact writers: the text/diagram generation boundary used by workers.

Two implementations share one interface:
1) TemplateArtifactWriter: deterministic, offline, rule-based output.
2) LLMArtifactWriter: prompts an OpenAI-compatible chat model.

Beginner terms:
- PlantUML: plain-text diagram language (``@startuml ... @enduml``).
- Robustness diagram: ICONIX view of boundary, control and entity objects (MVC).
- Issue: one review finding with a concrete suggestion.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

from iconix_workflow.config.settings import Settings
from iconix_workflow.generation.llm import LLMAdapter, OpenAIChatCompletionsAdapter

logger = logging.getLogger(__name__)


class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class Issue(StrictModel):
    id: str
    title: str
    severity: str = "MEDIUM"
    suggestion: str = ""


class IssueList(StrictModel):
    issues: list[Issue] = Field(default_factory=list)


class ArtifactWriter(Protocol):
    def compose_narrative(self, description: str, goal: str, rag_context: str) -> str: ...

    def generate_domain_model(self, narrative: str, rag_context: str) -> str: ...

    def refine_domain_model(
        self, narrative: str, plantuml: str, issues: list[Issue], rag_context: str
    ) -> str: ...

    def evaluate_domain_model(
        self, narrative: str, rag_context: str, plantuml: str
    ) -> list[Issue]: ...

    def evaluate_narrative(self, narrative: str, rag_context: str) -> list[Issue]: ...

    def generate_use_case_model(
        self, narrative: str, domain_model: str, rag_context: str
    ) -> str: ...

    def generate_mvc_diagram(
        self, narrative: str, domain_model: str, use_case_model: str, rag_context: str
    ) -> str: ...

    def generate_scenario(
        self,
        narrative: str,
        domain_model: str,
        use_case_model: str,
        mvc_diagram: str,
        rag_context: str,
    ) -> str: ...


# Capitalised words that start sentences rather than name domain objects.
_STOPWORDS = {
    "A",
    "An",
    "And",
    "As",
    "At",
    "Background",
    "By",
    "Each",
    "Every",
    "For",
    "Goal",
    "If",
    "In",
    "It",
    "Narrative",
    "Of",
    "On",
    "Once",
    "Or",
    "The",
    "Then",
    "There",
    "This",
    "To",
    "When",
    "With",
}


class TemplateArtifactWriter:
    """Deterministic writer: same inputs always produce the same artifacts."""

    def __init__(self, *, max_classes: int = 12) -> None:
        self.max_classes = max_classes

    def compose_narrative(self, description: str, goal: str, rag_context: str) -> str:
        parts = [description.strip()]
        if goal.strip() and goal.strip() != description.strip():
            parts.append(f"Goal: {goal.strip()}")
        if rag_context.strip():
            parts.append(f"Background:\n{rag_context.strip()}")
        return "\n\n".join(part for part in parts if part)

    def generate_domain_model(self, narrative: str, rag_context: str) -> str:
        return _render_class_diagram(_entities(narrative)[: self.max_classes])

    def refine_domain_model(
        self, narrative: str, plantuml: str, issues: list[Issue], rag_context: str
    ) -> str:
        classes = _class_names(plantuml)
        for entity in _entities(narrative):
            if entity not in classes and len(classes) < self.max_classes:
                classes.append(entity)
        return _render_class_diagram(classes, notes=[issue.title for issue in issues])

    def evaluate_domain_model(
        self, narrative: str, rag_context: str, plantuml: str
    ) -> list[Issue]:
        classes = set(_class_names(plantuml))
        issues: list[Issue] = []
        for entity in _entities(narrative)[: self.max_classes]:
            if entity in classes:
                continue
            issues.append(
                Issue(
                    id=f"DM-{len(issues) + 1}",
                    title=f"Missing class: {entity}",
                    severity="HIGH",
                    suggestion=f"Add a {entity} class to the domain model.",
                )
            )
        if len(classes) > 1 and " -- " not in plantuml:
            issues.append(
                Issue(
                    id=f"DM-{len(issues) + 1}",
                    title="No associations between classes",
                    severity="MEDIUM",
                    suggestion="Connect related classes with associations.",
                )
            )
        return issues

    def evaluate_narrative(self, narrative: str, rag_context: str) -> list[Issue]:
        issues: list[Issue] = []
        sentences = [item for item in re.split(r"[.!?]\s", narrative) if item.strip()]
        if len(sentences) < 2:
            issues.append(
                Issue(
                    id="NR-1",
                    title="Narrative is too short",
                    severity="MEDIUM",
                    suggestion="Describe who uses the system and what they do, step by step.",
                )
            )
        if not _entities(narrative):
            issues.append(
                Issue(
                    id=f"NR-{len(issues) + 1}",
                    title="No domain objects named",
                    severity="HIGH",
                    suggestion="Name the key business objects with capitalised nouns.",
                )
            )
        return issues

    def generate_use_case_model(
        self, narrative: str, domain_model: str, rag_context: str
    ) -> str:
        lines = ["@startuml", "left to right direction", "actor User"]
        for index, name in enumerate(_class_names(domain_model), start=1):
            lines.append(f'usecase "Manage {name}" as UC{index}')
            lines.append(f"User --> UC{index}")
        lines.append("@enduml")
        return "\n".join(lines)

    def generate_mvc_diagram(
        self, narrative: str, domain_model: str, use_case_model: str, rag_context: str
    ) -> str:
        entities = set(_class_names(domain_model))
        lines = ["@startuml", "actor User"]
        for alias, label in _use_cases(use_case_model):
            target = label.removeprefix("Manage ").strip()
            lines.append(f'boundary "{label} Screen" as {alias}_B')
            lines.append(f'control "{label} Controller" as {alias}_C')
            lines.append(f"User --> {alias}_B")
            lines.append(f"{alias}_B --> {alias}_C")
            if target in entities:
                lines.append(f"entity {target}")
                lines.append(f"{alias}_C --> {target}")
        lines.append("@enduml")
        return "\n".join(lines)

    def generate_scenario(
        self,
        narrative: str,
        domain_model: str,
        use_case_model: str,
        mvc_diagram: str,
        rag_context: str,
    ) -> str:
        sections: list[str] = []
        for _, label in _use_cases(use_case_model):
            target = label.removeprefix("Manage ").strip()
            sections.append(
                "\n".join(
                    [
                        f"Use case: {label}",
                        "Basic course:",
                        f"1. The User opens the {label} Screen.",
                        f"2. The {label} Controller loads the {target} records.",
                        f"3. The User edits a {target} and submits the change.",
                        f"4. The {label} Controller validates and saves the {target}.",
                        "Alternate course:",
                        f"A1. Validation fails: the {label} Screen shows the errors.",
                    ]
                )
            )
        return "\n\n".join(sections)


class LLMArtifactWriter:
    """LLM-backed writer; prompt text is kept short and role-specific."""

    def __init__(self, *, llm_adapter: LLMAdapter, timeout_s: float = 30.0) -> None:
        self.llm_adapter = llm_adapter
        self.timeout_s = timeout_s

    def compose_narrative(self, description: str, goal: str, rag_context: str) -> str:
        return self._text(
            "You are a requirements analyst. Write a clear domain narrative in prose: "
            "actors, business objects, and what happens step by step. No markdown headings.",
            f"Description:\n{description}\n\nGoal:\n{goal}\n\n{_context_block(rag_context)}",
        )

    def generate_domain_model(self, narrative: str, rag_context: str) -> str:
        return self._plantuml(
            "You build ICONIX domain models. Return only PlantUML class diagram text "
            "between @startuml and @enduml. Classes and associations only, no methods.",
            f"Narrative:\n{narrative}\n\n{_context_block(rag_context)}",
        )

    def refine_domain_model(
        self, narrative: str, plantuml: str, issues: list[Issue], rag_context: str
    ) -> str:
        findings = "\n".join(
            f"- {issue.title} => {issue.suggestion} (severity={issue.severity})"
            for issue in issues
        )
        return self._plantuml(
            "You refine ICONIX domain models. Apply the review findings and return only "
            "the corrected PlantUML class diagram.",
            f"Narrative:\n{narrative}\n\nCurrent model:\n{plantuml}\n\n"
            f"Findings:\n{findings or 'none'}\n\n{_context_block(rag_context)}",
        )

    def evaluate_domain_model(
        self, narrative: str, rag_context: str, plantuml: str
    ) -> list[Issue]:
        return self._issues(
            "You review ICONIX domain models against their narrative. Report missing "
            "classes, wrong associations and ambiguities. severity is LOW, MEDIUM or HIGH.",
            f"Narrative:\n{narrative}\n\nModel:\n{plantuml}\n\n{_context_block(rag_context)}",
        )

    def evaluate_narrative(self, narrative: str, rag_context: str) -> list[Issue]:
        return self._issues(
            "You review requirement narratives. Report incompleteness, ambiguity, "
            "contradictions and missing business rules. severity is LOW, MEDIUM or HIGH.",
            f"Narrative:\n{narrative}\n\n{_context_block(rag_context)}",
        )

    def generate_use_case_model(
        self, narrative: str, domain_model: str, rag_context: str
    ) -> str:
        return self._plantuml(
            "You build ICONIX use case diagrams. Return only PlantUML use case diagram text.",
            f"Narrative:\n{narrative}\n\nDomain model:\n{domain_model}\n\n"
            f"{_context_block(rag_context)}",
        )

    def generate_mvc_diagram(
        self, narrative: str, domain_model: str, use_case_model: str, rag_context: str
    ) -> str:
        return self._plantuml(
            "You build ICONIX robustness diagrams (boundary, control, entity). "
            "Return only PlantUML text.",
            f"Narrative:\n{narrative}\n\nDomain model:\n{domain_model}\n\n"
            f"Use cases:\n{use_case_model}\n\n{_context_block(rag_context)}",
        )

    def generate_scenario(
        self,
        narrative: str,
        domain_model: str,
        use_case_model: str,
        mvc_diagram: str,
        rag_context: str,
    ) -> str:
        return self._text(
            "You write ICONIX use case scenarios: basic course and alternate courses, "
            "naming boundary, control and entity objects from the robustness diagram.",
            f"Narrative:\n{narrative}\n\nDomain model:\n{domain_model}\n\n"
            f"Use cases:\n{use_case_model}\n\nRobustness diagram:\n{mvc_diagram}\n\n"
            f"{_context_block(rag_context)}",
        )

    def _text(self, system_prompt: str, user_prompt: str) -> str:
        return self.llm_adapter.generate_text(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            timeout_s=self.timeout_s,
        )

    def _plantuml(self, system_prompt: str, user_prompt: str) -> str:
        return _strip_fences(self._text(system_prompt, user_prompt))

    def _issues(self, system_prompt: str, user_prompt: str) -> list[Issue]:
        result = self.llm_adapter.generate_structured(
            system_prompt=f"{system_prompt} Return JSON only with key 'issues'.",
            user_prompt=user_prompt,
            response_model=IssueList,
            timeout_s=self.timeout_s,
        )
        return list(result.issues)


@dataclass(frozen=True)
class WriterResolution:
    writer: ArtifactWriter
    requested_mode: str
    effective_mode: str
    fallback_reason: str | None = None


def resolve_artifact_writer(
    *,
    requested_mode: str,
    provider: str,
    api_key: str,
    model: str,
    base_url: str,
    timeout_s: float,
    max_retries: int,
    backoff_s: float,
) -> WriterResolution:
    """Pick the writer for the requested mode, degrading to deterministic output."""
    normalized_mode = requested_mode.lower().strip()
    deterministic = TemplateArtifactWriter()

    if normalized_mode != "llm":
        return WriterResolution(
            writer=deterministic,
            requested_mode=normalized_mode,
            effective_mode="deterministic",
        )

    fallback_reason: str | None = None
    if provider.lower().strip() != "openai":
        fallback_reason = f"unsupported generator provider: {provider}"
    elif not api_key:
        fallback_reason = "OPENAI_API_KEY is missing for generator llm mode"
    if fallback_reason:
        logger.warning("Artifact writer falling back to deterministic. reason=%s", fallback_reason)
        return WriterResolution(
            writer=deterministic,
            requested_mode=normalized_mode,
            effective_mode="deterministic",
            fallback_reason=fallback_reason,
        )

    adapter = OpenAIChatCompletionsAdapter(
        api_key=api_key,
        model=model,
        base_url=base_url,
        max_retries=max_retries,
        backoff_s=backoff_s,
    )
    return WriterResolution(
        writer=LLMArtifactWriter(llm_adapter=adapter, timeout_s=timeout_s),
        requested_mode=normalized_mode,
        effective_mode="llm",
    )


def build_artifact_writer(settings: Settings) -> WriterResolution:
    return resolve_artifact_writer(
        requested_mode=settings.generator_mode,
        provider=settings.llm_provider,
        api_key=settings.resolved_openai_api_key(),
        model=settings.llm_model,
        base_url=settings.llm_base_url,
        timeout_s=settings.llm_timeout_s,
        max_retries=settings.llm_max_retries,
        backoff_s=settings.llm_backoff_s,
    )


def _entities(text: str) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for match in re.findall(r"\b[A-Z][a-zA-Z0-9_]*\b", text):
        if match in _STOPWORDS or match in seen:
            continue
        seen.add(match)
        ordered.append(match)
    return ordered


def _class_names(plantuml: str) -> list[str]:
    return re.findall(r"^\s*class\s+([A-Za-z0-9_]+)", plantuml, flags=re.MULTILINE)


def _use_cases(use_case_model: str) -> list[tuple[str, str]]:
    return [
        (alias, label)
        for label, alias in re.findall(r'usecase\s+"([^"]+)"\s+as\s+(\w+)', use_case_model)
    ]


def _render_class_diagram(classes: list[str], *, notes: list[str] | None = None) -> str:
    lines = ["@startuml"]
    lines.extend(f"class {name}" for name in classes)
    for left, right in zip(classes, classes[1:]):
        lines.append(f"{left} -- {right}")
    if notes:
        lines.append("note as ReviewNotes")
        lines.extend(f"  addressed: {title}" for title in notes)
        lines.append("end note")
    lines.append("@enduml")
    return "\n".join(lines)


def _context_block(rag_context: str) -> str:
    if not rag_context.strip():
        return "Reference context: none"
    return f"Reference context:\n{rag_context.strip()}"


def _strip_fences(text: str) -> str:
    stripped = text.strip()
    match = re.search(r"```(?:plantuml|puml|uml)?\s*\n(.*?)```", stripped, flags=re.DOTALL)
    if match:
        return match.group(1).strip()
    return stripped
