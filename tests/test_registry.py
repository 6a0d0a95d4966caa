from __future__ import annotations

import pytest

from fakes import RecordingWorker
from iconix_workflow.engine.errors import UnknownToolError
from iconix_workflow.workers.registry import WorkerRegistry


def test_unknown_tool_raises_without_invoking_workers() -> None:
    worker = RecordingWorker("model", key="plantuml")
    registry = WorkerRegistry([worker])

    with pytest.raises(UnknownToolError) as excinfo:
        registry.get("nonexistent-tool")

    assert excinfo.value.tool == "nonexistent-tool"
    assert worker.calls == []


def test_duplicate_names_are_rejected() -> None:
    with pytest.raises(ValueError, match="Duplicate worker name: model"):
        WorkerRegistry([RecordingWorker("model"), RecordingWorker("model")])


def test_undeclared_state_keys_are_rejected() -> None:
    with pytest.raises(ValueError, match="surprise"):
        WorkerRegistry([RecordingWorker("model", key="surprise")])


def test_lookup_helpers() -> None:
    registry = WorkerRegistry([RecordingWorker("usecase"), RecordingWorker("mvc")])

    assert registry.has("mvc")
    assert not registry.has("scenario")
    assert registry.names() == ["mvc", "usecase"]
    assert [worker.name for worker in registry.workers()] == ["mvc", "usecase"]
    assert registry.get("usecase").name == "usecase"


def test_built_in_registry_covers_every_planned_tool(template_registry: WorkerRegistry) -> None:
    assert template_registry.names() == [
        "model",
        "mvc",
        "narrative",
        "review",
        "scenario",
        "usecase",
        "userReview",
    ]
