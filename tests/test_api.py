from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from fakes import RecordingWorker
from iconix_workflow.api.main import create_app
from iconix_workflow.config.settings import Settings
from iconix_workflow.storage.memory import InMemorySessionStore
from iconix_workflow.workers.registry import WorkerRegistry

GOAL = "Customers place Orders. Couriers deliver Orders."


@pytest.fixture
def settings() -> Settings:
    return Settings(app_name="iconix-test", database_url="", _env_file=None)


@pytest.fixture
def client(settings: Settings) -> Iterator[TestClient]:
    app = create_app(store=InMemorySessionStore(), settings_override=settings)
    with TestClient(app) as test_client:
        yield test_client


def test_health_and_tools(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok", "service": "iconix-test"}
    assert client.get("/tools").json()["tools"] == [
        "model",
        "mvc",
        "narrative",
        "review",
        "scenario",
        "usecase",
        "userReview",
    ]


def test_run_suspend_resume_over_http(client: TestClient) -> None:
    response = client.post("/workflow/run", json={"run_id": "http-1", "goal": GOAL})

    assert response.status_code == 200
    body = response.json()
    assert body["run_id"] == "http-1"
    assert body["artifacts"]["_status"] == "suspended_for_review"
    assert body["artifacts"]["_reviewData"]["narrative"] == GOAL
    assert [step["tool"] for step in body["plan"]["steps"]][:2] == ["narrative", "userReview"]

    resumed = client.post(
        "/workflow/http-1/resume",
        json={"narrative": "Customers place Orders. Couriers deliver Parcels."},
    )

    assert resumed.status_code == 200
    artifacts = resumed.json()["artifacts"]
    assert artifacts["_status"] == "completed"
    assert "class Parcels" in artifacts["plantuml"]
    assert artifacts["scenario"]

    stored = client.get("/workflow/sessions/http-1").json()
    assert stored["artifacts"]["_status"] == "completed"
    sessions = client.get("/workflow/sessions").json()
    assert sessions[0]["run_id"] == "http-1"
    assert sessions[0]["total_steps"] == 8


def test_resume_without_body_is_accepted(client: TestClient) -> None:
    client.post("/workflow/run", json={"run_id": "http-2", "goal": GOAL})

    response = client.post("/workflow/http-2/resume")

    assert response.status_code == 200
    assert response.json()["artifacts"]["_status"] == "completed"


def test_error_mapping(client: TestClient) -> None:
    assert client.get("/workflow/sessions/missing").status_code == 404
    assert client.post("/workflow/missing/resume", json={}).status_code == 404

    client.post("/workflow/run", json={"run_id": "http-3", "goal": GOAL})
    client.post("/workflow/http-3/resume", json={})

    conflict = client.post("/workflow/http-3/resume", json={})
    assert conflict.status_code == 409
    assert "completed" in conflict.json()["detail"]
    assert client.post("/workflow/http-3/recover").status_code == 409


def test_step_failure_maps_to_500_with_run_id(settings: Settings) -> None:
    registry = WorkerRegistry(
        [
            RecordingWorker("narrative"),
            RecordingWorker("userReview", error=RuntimeError("reviewer service down")),
        ]
    )
    app = create_app(store=InMemorySessionStore(), settings_override=settings, registry=registry)

    with TestClient(app) as client:
        response = client.post("/workflow/run", json={"run_id": "http-4", "goal": GOAL})
        stored = client.get("/workflow/sessions/http-4").json()

    assert response.status_code == 500
    detail = response.json()["detail"]
    assert detail["run_id"] == "http-4"
    assert detail["step"] == 1
    assert detail["tool"] == "userReview"
    assert stored["artifacts"]["_status"] == "failed"


def test_unknown_tool_maps_to_500(settings: Settings) -> None:
    registry = WorkerRegistry([RecordingWorker("narrative")])
    app = create_app(store=InMemorySessionStore(), settings_override=settings, registry=registry)

    with TestClient(app) as client:
        response = client.post("/workflow/run", json={"run_id": "http-5", "goal": GOAL})

    assert response.status_code == 500
    assert response.json()["detail"] == {
        "run_id": "http-5",
        "tool": "userReview",
        "error": "Unknown tool: userReview",
    }


def test_retrieval_corpus_from_settings_reaches_workers(tmp_path) -> None:
    corpus = tmp_path / "corpus.txt"
    corpus.write_text("Orders have Line Items.\n\nCouriers carry Parcels.\n", encoding="utf-8")
    settings = Settings(
        app_name="iconix-test",
        database_url="",
        retrieval_corpus_path=str(corpus),
        retrieval_limit=1,
        _env_file=None,
    )
    app = create_app(store=InMemorySessionStore(), settings_override=settings)

    with TestClient(app) as client:
        response = client.post("/workflow/run", json={"run_id": "http-rag", "goal": GOAL})

    assert response.status_code == 200
    body = response.json()
    assert "rag.narrative: fragments=1, vs=true" in body["logs"]
    assert "Orders have Line Items." in body["artifacts"]["narrative"]
