"""FastAPI application wiring for the ICONIX workflow engine.

Beginner terms used in this file:
- FastAPI app: the main web application object.
- app.state: a place to store shared runtime objects (orchestrator, settings).
- Resume: continue a run that paused for human review.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException

from iconix_workflow.config.settings import Settings, configure_logging, get_settings
from iconix_workflow.engine.errors import (
    ConcurrentModificationError,
    InvalidResumeStateError,
    SessionNotFoundError,
    StepExecutionError,
    UnknownToolError,
    WorkflowError,
)
from iconix_workflow.engine.models import (
    ResumeRequest,
    RunRequest,
    SessionSummary,
    WorkflowResponse,
)
from iconix_workflow.engine.orchestrator import Orchestrator
from iconix_workflow.generation.retrieval import build_retriever
from iconix_workflow.generation.writers import build_artifact_writer
from iconix_workflow.storage import SessionStore, build_session_store
from iconix_workflow.workers.registry import WorkerRegistry, build_registry

logger = logging.getLogger(__name__)


def create_app(
    *,
    store: SessionStore | None = None,
    settings_override: Settings | None = None,
    registry: WorkerRegistry | None = None,
) -> FastAPI:
    """Application factory; tests pass their own store and registry."""
    settings = settings_override or get_settings()
    configure_logging(settings.log_level)

    if registry is None:
        resolution = build_artifact_writer(settings)
        logger.info(
            "app_start event=writer_resolved requested_mode=%s effective_mode=%s fallback_reason=%s",
            resolution.requested_mode,
            resolution.effective_mode,
            resolution.fallback_reason,
        )
        registry = build_registry(
            writer=resolution.writer,
            retriever=build_retriever(settings.retrieval_corpus_path),
            retrieval_limit=settings.retrieval_limit,
        )
    session_store = store or build_session_store(settings.resolved_database_url())

    app = FastAPI(title=settings.app_name, version="0.1.0")
    app.state.settings = settings
    app.state.orchestrator = Orchestrator(registry=registry, store=session_store)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    @app.get("/tools")
    def list_tools() -> dict[str, list[str]]:
        return {"tools": app.state.orchestrator.list_tools()}

    @app.post("/workflow/run", response_model=WorkflowResponse)
    def run_workflow(payload: RunRequest) -> WorkflowResponse:
        try:
            return app.state.orchestrator.run(payload)
        except WorkflowError as exc:
            raise _to_http_error(exc) from exc

    @app.post("/workflow/{run_id}/resume", response_model=WorkflowResponse)
    def resume_workflow(run_id: str, payload: ResumeRequest | None = None) -> WorkflowResponse:
        try:
            return app.state.orchestrator.resume(run_id, payload)
        except WorkflowError as exc:
            raise _to_http_error(exc) from exc

    @app.post("/workflow/{run_id}/recover", response_model=WorkflowResponse)
    def recover_workflow(run_id: str) -> WorkflowResponse:
        try:
            return app.state.orchestrator.recover(run_id)
        except WorkflowError as exc:
            raise _to_http_error(exc) from exc

    @app.get("/workflow/sessions", response_model=list[SessionSummary])
    def list_sessions() -> list[SessionSummary]:
        return app.state.orchestrator.list_sessions()

    @app.get("/workflow/sessions/{run_id}", response_model=WorkflowResponse)
    def get_session(run_id: str) -> WorkflowResponse:
        try:
            return app.state.orchestrator.get_session_data(run_id)
        except WorkflowError as exc:
            raise _to_http_error(exc) from exc

    return app


def _to_http_error(exc: WorkflowError) -> HTTPException:
    if isinstance(exc, SessionNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (InvalidResumeStateError, ConcurrentModificationError)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, StepExecutionError):
        return HTTPException(
            status_code=500,
            detail={"run_id": exc.run_id, "step": exc.step_index, "tool": exc.tool, "error": str(exc)},
        )
    if isinstance(exc, UnknownToolError):
        return HTTPException(
            status_code=500,
            detail={"run_id": exc.run_id, "tool": exc.tool, "error": str(exc)},
        )
    logger.error("workflow_api event=unmapped_error type=%s reason=%s", type(exc).__name__, exc)
    return HTTPException(status_code=500, detail=str(exc))
