"""JSON (de)serialisation between live run objects and the persisted Session.

Everything that crosses the store boundary goes through this module, so the
in-memory, SQLite and Postgres backends all persist the same text.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from iconix_workflow.engine.context import WorkflowContext
from iconix_workflow.engine.models import Plan, Session, SessionStatus


def encode_state(state: dict[str, Any]) -> str:
    return json.dumps(state, ensure_ascii=False, sort_keys=True)


def decode_state(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        raise ValueError("Session state must be a JSON object")
    return parsed


def encode_logs(logs: list[str]) -> str:
    return json.dumps(list(logs), ensure_ascii=False)


def decode_logs(raw: str | None) -> list[str]:
    if not raw:
        return []
    parsed = json.loads(raw)
    if not isinstance(parsed, list):
        raise ValueError("Session logs must be a JSON array")
    return [str(line) for line in parsed]


def encode_plan(plan: Plan) -> str:
    return plan.model_dump_json()


def decode_plan(raw: str) -> Plan:
    return Plan.model_validate_json(raw)


def encode_review(payload: dict[str, Any] | None) -> str | None:
    if payload is None:
        return None
    return json.dumps(payload, ensure_ascii=False)


def decode_review(raw: str | None) -> dict[str, Any] | None:
    if not raw:
        return None
    parsed = json.loads(raw)
    return parsed if isinstance(parsed, dict) else None


def to_session(
    ctx: WorkflowContext,
    plan: Plan,
    *,
    status: SessionStatus,
    step_index: int,
    version: int,
    created_at: datetime | None = None,
    review_payload: dict[str, Any] | None = None,
    error: str | None = None,
) -> Session:
    """Project a live context and plan into a checkpoint record.

    ``version`` is the version last read from the store (0 for a new run).
    """
    now = datetime.now(tz=UTC)
    return Session(
        run_id=ctx.run_id,
        narrative=ctx.narrative,
        narrative_override=ctx.narrative_override,
        goal=ctx.goal,
        task=ctx.task,
        state_json=encode_state(ctx.state),
        logs_json=encode_logs(ctx.logs),
        plan_json=encode_plan(plan),
        current_step_index=step_index,
        status=status,
        pending_review_json=encode_review(review_payload),
        error=error,
        version=version,
        created_at=created_at or now,
        updated_at=now,
    )


def restore_context(session: Session) -> WorkflowContext:
    return WorkflowContext(
        run_id=session.run_id,
        narrative=session.narrative,
        goal=session.goal,
        task=session.task,
        narrative_override=session.narrative_override,
        state=decode_state(session.state_json),
        logs=decode_logs(session.logs_json),
    )


def restore_plan(session: Session) -> Plan:
    return decode_plan(session.plan_json)


def count_steps(plan_json: str) -> int:
    return len(decode_plan(plan_json).steps)
