"""
Step Query Service: read-only lookups over roles, steps and step progress.

Business logic for:
    - Role resolution:   by id or by name (tools accept either)
    - Step ordering:     first step, next step by sequence number, steps by role
    - Step detail:       step + MCP_CALL actions + conditions + latest progress
    - Executions:        newest active execution of a task
    - Statistics:        per-role step counts by latest progress status
    - History:           progress attempts for a step, newest first

Nothing here writes to the session.
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from app.core.exceptions import NotFoundError, StepNotFoundError
from app.models import db
from app.models.workflow import (
    StepAction,
    WorkflowExecution,
    WorkflowRole,
    WorkflowStep,
    WorkflowStepProgress,
)

logger = logging.getLogger(__name__)


# ── Roles ────────────────────────────────────────────────────────────────────


def resolve_role(role_ref: str) -> WorkflowRole:
    """Return the role whose id or name equals ``role_ref``."""
    role = db.session.get(WorkflowRole, role_ref) if role_ref else None
    if role is None and role_ref:
        role = db.session.execute(
            select(WorkflowRole).where(WorkflowRole.name == role_ref)
        ).scalar_one_or_none()
    if role is None:
        raise NotFoundError("WorkflowRole", role_ref)
    return role


def list_roles(active_only: bool = True) -> list[WorkflowRole]:
    stmt = select(WorkflowRole).order_by(WorkflowRole.priority, WorkflowRole.name)
    if active_only:
        stmt = stmt.where(WorkflowRole.is_active.is_(True))
    return list(db.session.execute(stmt).scalars())


# ── Steps ────────────────────────────────────────────────────────────────────


def get_step(step_id: str) -> WorkflowStep:
    step = db.session.get(WorkflowStep, step_id) if step_id else None
    if step is None:
        raise StepNotFoundError(step_id)
    return step


def get_steps_by_role(role_id: str) -> list[WorkflowStep]:
    """All steps of a role ordered by sequence number."""
    return list(
        db.session.execute(
            select(WorkflowStep)
            .where(WorkflowStep.role_id == role_id)
            .order_by(WorkflowStep.sequence_number)
        ).scalars()
    )


def get_first_step(role_id: str) -> WorkflowStep | None:
    return db.session.execute(
        select(WorkflowStep)
        .where(WorkflowStep.role_id == role_id)
        .order_by(WorkflowStep.sequence_number)
        .limit(1)
    ).scalar_one_or_none()


def get_step_by_name(role_id: str, name: str) -> WorkflowStep | None:
    return db.session.execute(
        select(WorkflowStep).where(
            WorkflowStep.role_id == role_id,
            WorkflowStep.name == name,
        )
    ).scalar_one_or_none()


def get_next_step_in_sequence(step: WorkflowStep) -> WorkflowStep | None:
    """
    The step with the smallest sequence_number strictly greater than
    ``step.sequence_number`` in the same role, or None at the end of the role.
    """
    return db.session.execute(
        select(WorkflowStep)
        .where(
            WorkflowStep.role_id == step.role_id,
            WorkflowStep.sequence_number > step.sequence_number,
        )
        .order_by(WorkflowStep.sequence_number)
        .limit(1)
    ).scalar_one_or_none()


def _completed_step_ids(task_id: int | None, role_id: str | None = None) -> set[str]:
    stmt = select(WorkflowStepProgress.step_id).where(
        WorkflowStepProgress.status == "COMPLETED",
    )
    if task_id is not None:
        stmt = stmt.where(WorkflowStepProgress.task_id == task_id)
    if role_id is not None:
        stmt = stmt.where(WorkflowStepProgress.role_id == role_id)
    return set(db.session.execute(stmt).scalars())


def get_next_available_step(
    role_id: str,
    current_step_id: str | None = None,
    task_id: int | None = None,
) -> WorkflowStep | None:
    """
    First step of the role, after ``current_step_id`` when given, that has no
    COMPLETED progress row (scoped to ``task_id`` when given).
    """
    after = -1
    if current_step_id:
        after = get_step(current_step_id).sequence_number

    completed = _completed_step_ids(task_id, role_id)
    for step in get_steps_by_role(role_id):
        if step.sequence_number <= after:
            continue
        if step.id not in completed:
            return step
    return None


def get_mcp_actions(step_id: str) -> list[StepAction]:
    return list(
        db.session.execute(
            select(StepAction)
            .where(StepAction.step_id == step_id, StepAction.action_type == "MCP_CALL")
            .order_by(StepAction.sequence_order)
        ).scalars()
    )


def get_latest_progress(step_id: str, task_id: int | None = None) -> WorkflowStepProgress | None:
    stmt = select(WorkflowStepProgress).where(WorkflowStepProgress.step_id == step_id)
    if task_id is not None:
        stmt = stmt.where(WorkflowStepProgress.task_id == task_id)
    stmt = stmt.order_by(WorkflowStepProgress.started_at.desc()).limit(1)
    return db.session.execute(stmt).scalar_one_or_none()


def get_step_with_execution_data(step_id: str, task_id: int | None = None) -> dict:
    """Step plus its MCP_CALL actions, conditions and latest progress."""
    step = get_step(step_id)
    latest = get_latest_progress(step_id, task_id)
    result = step.to_dict()
    result.update({
        "behavioralContext": step.behavioral_context,
        "approachGuidance": step.approach_guidance,
        "qualityChecklist": step.quality_checklist,
        "actionData": step.action_data,
        "actions": [a.to_dict() for a in get_mcp_actions(step_id)],
        "conditions": [c.to_dict() for c in step.conditions],
        "latestProgress": latest.to_dict() if latest else None,
    })
    return result


def get_steps_with_mcp_actions(role_id: str) -> list[dict]:
    result = []
    for step in get_steps_by_role(role_id):
        actions = get_mcp_actions(step.id)
        if actions:
            entry = step.to_dict()
            entry["actions"] = [a.to_dict() for a in actions]
            result.append(entry)
    return result


def validate_step_for_mcp_execution(step_id: str) -> dict:
    """Check that a step exists and carries well-formed MCP_CALL actions."""
    errors: list[str] = []
    step = db.session.get(WorkflowStep, step_id) if step_id else None
    if step is None:
        return {"valid": False, "errors": [f"Step '{step_id}' not found"]}

    actions = get_mcp_actions(step.id)
    if not actions:
        errors.append(f"Step '{step.name}' has no MCP_CALL actions")
    for action in actions:
        data = action.action_data or {}
        if not isinstance(data.get("serviceName"), str):
            errors.append(f"Action '{action.name}' is missing serviceName")
        if not isinstance(data.get("operation"), str):
            errors.append(f"Action '{action.name}' is missing operation")
    return {"valid": not errors, "errors": errors}


# ── Executions ───────────────────────────────────────────────────────────────


def active_execution_query(task_id: int):
    """Select for the newest not-yet-completed execution of a task."""
    return (
        select(WorkflowExecution)
        .where(
            WorkflowExecution.task_id == task_id,
            WorkflowExecution.completed_at.is_(None),
        )
        .order_by(WorkflowExecution.created_at.desc())
        .limit(1)
    )


def get_active_execution(task_id: int) -> WorkflowExecution | None:
    return db.session.execute(active_execution_query(task_id)).scalar_one_or_none()


# ── Progress views ───────────────────────────────────────────────────────────


def get_role_step_statistics(role_id: str, task_id: int | None = None) -> dict:
    """Count the role's steps by the status of their latest progress row."""
    stats = {"totalSteps": 0, "completed": 0, "inProgress": 0, "failed": 0, "notStarted": 0}
    for step in get_steps_by_role(role_id):
        stats["totalSteps"] += 1
        latest = get_latest_progress(step.id, task_id)
        status = latest.status if latest else "NOT_STARTED"
        if status == "COMPLETED":
            stats["completed"] += 1
        elif status == "IN_PROGRESS":
            stats["inProgress"] += 1
        elif status == "FAILED":
            stats["failed"] += 1
        else:
            stats["notStarted"] += 1
    return stats


def get_step_execution_history(step_id: str, task_id: int | None = None, limit: int = 20) -> list[dict]:
    stmt = select(WorkflowStepProgress).where(WorkflowStepProgress.step_id == step_id)
    if task_id is not None:
        stmt = stmt.where(WorkflowStepProgress.task_id == task_id)
    stmt = stmt.order_by(WorkflowStepProgress.started_at.desc()).limit(limit)
    return [p.to_dict() for p in db.session.execute(stmt).scalars()]
