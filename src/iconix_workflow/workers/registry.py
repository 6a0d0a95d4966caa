"""Name-to-worker resolution for plan execution."""

from __future__ import annotations

from collections.abc import Iterable

from iconix_workflow.engine.errors import UnknownToolError
from iconix_workflow.generation.retrieval import ContextRetriever, NullRetriever
from iconix_workflow.generation.writers import ArtifactWriter
from iconix_workflow.workers.base import ARTIFACT_KEYS, Worker
from iconix_workflow.workers.model import ModelWorker
from iconix_workflow.workers.mvc import MVCWorker
from iconix_workflow.workers.narrative import NarrativeWorker
from iconix_workflow.workers.review import ReviewWorker
from iconix_workflow.workers.scenario import ScenarioWorker
from iconix_workflow.workers.usecase import UseCaseWorker
from iconix_workflow.workers.user_review import UserReviewWorker


class WorkerRegistry:
    """Immutable lookup of workers by their unique ``name``."""

    def __init__(self, workers: Iterable[Worker]) -> None:
        by_name: dict[str, Worker] = {}
        for worker in workers:
            if worker.name in by_name:
                raise ValueError(f"Duplicate worker name: {worker.name}")
            undeclared = set(worker.writes) - ARTIFACT_KEYS
            if undeclared:
                raise ValueError(
                    f"Worker '{worker.name}' writes unrecognised state keys: "
                    f"{', '.join(sorted(undeclared))}"
                )
            by_name[worker.name] = worker
        self._by_name = by_name

    def get(self, name: str) -> Worker:
        worker = self._by_name.get(name)
        if worker is None:
            raise UnknownToolError(name)
        return worker

    def has(self, name: str) -> bool:
        return name in self._by_name

    def names(self) -> list[str]:
        return sorted(self._by_name)

    def workers(self) -> list[Worker]:
        return [self._by_name[name] for name in self.names()]


def build_registry(
    *,
    writer: ArtifactWriter,
    retriever: ContextRetriever | None = None,
    retrieval_limit: int = 4,
) -> WorkerRegistry:
    """Registry with every built-in worker wired to the given collaborators."""
    rag = retriever or NullRetriever()
    shared = {"writer": writer, "retriever": rag, "retrieval_limit": retrieval_limit}
    return WorkerRegistry(
        [
            NarrativeWorker(**shared),
            UserReviewWorker(),
            ModelWorker(**shared),
            ReviewWorker(**shared),
            UseCaseWorker(**shared),
            MVCWorker(**shared),
            ScenarioWorker(**shared),
        ]
    )
