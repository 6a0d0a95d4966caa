from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from fakes import FixedPlanner
from iconix_workflow.engine.orchestrator import Orchestrator
from iconix_workflow.generation.writers import TemplateArtifactWriter
from iconix_workflow.storage.memory import InMemorySessionStore
from iconix_workflow.workers.registry import WorkerRegistry, build_registry


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def template_registry() -> WorkerRegistry:
    return build_registry(writer=TemplateArtifactWriter())


@pytest.fixture
def build_orchestrator(store: InMemorySessionStore) -> Callable[..., Orchestrator]:
    """Orchestrator over the given fake workers with a fixed plan of ``tools``."""

    def _build(workers: list[Any], *tools: str) -> Orchestrator:
        return Orchestrator(
            registry=WorkerRegistry(workers),
            store=store,
            planner=FixedPlanner(*tools),  # type: ignore[arg-type]
        )

    return _build
