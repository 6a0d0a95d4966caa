from __future__ import annotations

import pytest

from iconix_workflow.engine.cancellation import CancellationToken
from iconix_workflow.engine.context import WorkflowContext
from iconix_workflow.engine.errors import StepExecutionError, WorkflowCancelledError
from iconix_workflow.engine.models import Plan, PlanStep, ResumeRequest, RunRequest
from iconix_workflow.engine.orchestrator import Orchestrator
from iconix_workflow.generation.retrieval import (
    NullRetriever,
    StaticRetriever,
    build_retriever,
    load_fragments,
)
from iconix_workflow.generation.writers import TemplateArtifactWriter
from iconix_workflow.workers.base import MissingArtifactError
from iconix_workflow.workers.model import ModelWorker, issues_from_state
from iconix_workflow.workers.narrative import NO_GOAL_MESSAGE, NarrativeWorker
from iconix_workflow.workers.registry import WorkerRegistry, build_registry
from iconix_workflow.workers.review import ReviewWorker
from iconix_workflow.workers.usecase import UseCaseWorker
from iconix_workflow.workers.user_review import UserReviewWorker

GOAL = "Librarians lend Books to Members. Members return Books before the Deadline."


def test_full_pipeline_with_template_writer(store, template_registry: WorkerRegistry) -> None:
    orchestrator = Orchestrator(registry=template_registry, store=store)

    paused = orchestrator.run(RunRequest(run_id="lib", goal=GOAL))

    assert paused.status == "suspended_for_review"
    assert paused.artifacts["narrative"] == GOAL
    assert paused.artifacts["_reviewData"] == {"narrative": GOAL}
    assert store.load("lib").current_step_index == 1

    done = orchestrator.resume("lib")

    assert done.status == "completed"
    artifacts = done.artifacts
    for name in ("Librarians", "Books", "Members", "Deadline"):
        assert f"class {name}" in artifacts["plantuml"]
    assert artifacts["issues"] == []
    assert 'usecase "Manage Books" as UC2' in artifacts["useCaseModel"]
    assert 'boundary "Manage Books Screen" as UC2_B' in artifacts["mvcDiagram"]
    assert "Use case: Manage Librarians" in artifacts["scenario"]
    assert "model.generate: " in " ".join(done.logs)
    assert "model.refine: " in " ".join(done.logs)


def test_edited_narrative_drives_generated_model(store, template_registry: WorkerRegistry) -> None:
    orchestrator = Orchestrator(registry=template_registry, store=store)
    orchestrator.run(RunRequest(run_id="hotel", goal="Guests book Rooms."))

    done = orchestrator.resume(
        "hotel", ResumeRequest(narrative="Guests reserve Suites through the Concierge.")
    )

    assert "class Suites" in done.artifacts["plantuml"]
    assert "class Concierge" in done.artifacts["plantuml"]
    assert "class Rooms" not in done.artifacts["plantuml"]


def test_review_only_run_pauses_with_narrative_issues(store, template_registry) -> None:
    orchestrator = Orchestrator(registry=template_registry, store=store)

    response = orchestrator.run(RunRequest(run_id="short", goal="make an app", review_only=True))

    assert response.status == "suspended_for_review"
    review_data = response.artifacts["_reviewData"]
    titles = [issue["title"] for issue in review_data["narrativeIssues"]]
    assert titles == ["Narrative is too short", "No domain objects named"]
    assert response.artifacts["narrativeIssues"] == review_data["narrativeIssues"]


def test_narrative_worker_without_goal_writes_hint() -> None:
    ctx = WorkflowContext.new("r")
    worker = NarrativeWorker(writer=TemplateArtifactWriter(), retriever=StaticRetriever([]))

    outcome = worker.execute(ctx, {})

    assert outcome.kind == "ok"
    assert ctx.effective_narrative() == NO_GOAL_MESSAGE
    assert ctx.logs == ["narrative.skipped: goal empty"]


def test_narrative_worker_prefers_description_arg_and_logs_retrieval() -> None:
    ctx = WorkflowContext.new("r", goal="Hotel")
    worker = NarrativeWorker(
        writer=TemplateArtifactWriter(),
        retriever=StaticRetriever(["Rooms have a nightly Rate."]),
    )

    worker.execute(ctx, {"description": "Guests book Rooms."})

    assert ctx.effective_narrative().startswith("Guests book Rooms.")
    assert "Goal: Hotel" in ctx.effective_narrative()
    assert "Rooms have a nightly Rate." in ctx.effective_narrative()
    assert ctx.logs[0] == "rag.narrative: fragments=1, vs=true"


def test_user_review_payload_includes_present_artifacts() -> None:
    ctx = WorkflowContext.new("r", narrative="n")
    ctx.state["plantuml"] = "@startuml\n@enduml"
    ctx.state["issues"] = [{"id": "DM-1", "title": "t", "severity": "LOW", "suggestion": ""}]

    outcome = UserReviewWorker().execute(ctx, {})

    assert outcome.kind == "paused"
    assert outcome.review_payload == {
        "narrative": "n",
        "domainModel": "@startuml\n@enduml",
        "issues": [{"id": "DM-1", "title": "t", "severity": "LOW", "suggestion": ""}],
    }
    assert ctx.logs == ["userReview: paused for user review"]


def test_review_then_refine_adds_missing_class() -> None:
    writer = TemplateArtifactWriter()
    retriever = StaticRetriever([])
    ctx = WorkflowContext.new("r", narrative="Pilots fly Planes from an Airport.")
    ctx.state["plantuml"] = "@startuml\nclass Pilots\nclass Planes\nPilots -- Planes\n@enduml"

    ReviewWorker(writer=writer, retriever=retriever).execute(ctx, {"target": "model"})

    assert [issue["title"] for issue in ctx.state["issues"]] == ["Missing class: Airport"]

    ModelWorker(writer=writer, retriever=retriever).execute(ctx, {"mode": "refine"})

    assert "class Airport" in ctx.state["plantuml"]
    assert "addressed: Missing class: Airport" in ctx.state["plantuml"]
    assert ctx.logs[-1].startswith("model.refine: ")


def test_refine_without_model_generates_one() -> None:
    ctx = WorkflowContext.new("r", narrative="Drivers rent Cars.")

    ModelWorker(writer=TemplateArtifactWriter(), retriever=StaticRetriever([])).execute(
        ctx, {"mode": "refine"}
    )

    assert "class Drivers" in ctx.state["plantuml"]
    assert ctx.logs[-1].startswith("model.generate: ")


def test_review_model_requires_plantuml() -> None:
    worker = ReviewWorker(writer=TemplateArtifactWriter(), retriever=StaticRetriever([]))

    with pytest.raises(MissingArtifactError, match="No plantuml in context; run model first."):
        worker.execute(WorkflowContext.new("r"), {"target": "model"})


def test_missing_prerequisite_fails_the_run(store) -> None:
    registry = WorkerRegistry(
        [UseCaseWorker(writer=TemplateArtifactWriter(), retriever=StaticRetriever([]))]
    )

    class UseCaseOnly:
        def build(self, goal, narrative, *, review_only=False):
            return Plan(steps=(PlanStep(tool="usecase"),))

    orchestrator = Orchestrator(registry=registry, store=store, planner=UseCaseOnly())  # type: ignore[arg-type]

    with pytest.raises(StepExecutionError) as excinfo:
        orchestrator.run(RunRequest(run_id="no-model"))

    assert isinstance(excinfo.value.__cause__, MissingArtifactError)
    assert store.load("no-model").status == "failed"


def test_issues_from_state_fills_defaults() -> None:
    issues = issues_from_state([{"title": "Vague actor"}, "ignored"])

    assert len(issues) == 1
    assert issues[0].id == "ISSUE-1"
    assert issues[0].severity == "MEDIUM"
    assert issues_from_state(None) == []


def test_registry_passes_retrieval_limit() -> None:
    registry = build_registry(
        writer=TemplateArtifactWriter(),
        retriever=StaticRetriever(["a", "b", "c"]),
        retrieval_limit=2,
    )
    ctx = WorkflowContext.new("r", narrative="Cooks prepare Meals.")

    registry.get("model").execute(ctx, {"mode": "generate"})

    assert ctx.logs[0] == "rag.model: fragments=2, vs=true"


def test_cancelled_worker_skips_the_writer_call() -> None:
    token = CancellationToken()
    token.cancel()
    ctx = WorkflowContext.new("r-cancel", narrative="Clerks stamp Forms.")
    ctx.state["plantuml"] = "@startuml\nclass Clerks\nclass Forms\n@enduml"
    worker = UseCaseWorker(writer=TemplateArtifactWriter(), retriever=StaticRetriever([]))

    with pytest.raises(WorkflowCancelledError) as excinfo:
        worker.execute(ctx, {}, cancel=token)

    assert excinfo.value.run_id == "r-cancel"
    assert excinfo.value.step_index is None
    assert "useCaseModel" not in ctx.state
    assert ctx.logs[-1] == "cancelled: writer call skipped"


def test_corpus_file_is_split_on_blank_lines(tmp_path) -> None:
    corpus = tmp_path / "corpus.txt"
    corpus.write_text(
        "Rooms have a Rate.\n\n  \nGuests pay Invoices.\nInvoices list Charges.\n",
        encoding="utf-8",
    )

    assert load_fragments(corpus) == [
        "Rooms have a Rate.",
        "Guests pay Invoices.\nInvoices list Charges.",
    ]
    retriever = build_retriever(str(corpus))
    assert isinstance(retriever, StaticRetriever)
    assert retriever.retrieve("rooms", 1).fragments == 1


def test_missing_or_unset_corpus_falls_back_to_null_retriever(tmp_path) -> None:
    assert isinstance(build_retriever(""), NullRetriever)
    assert isinstance(build_retriever(str(tmp_path / "absent.txt")), NullRetriever)
