"""
Step Progress Tracker: per-attempt WorkflowStepProgress rows.

Lifecycle per row: NOT_STARTED → IN_PROGRESS → COMPLETED | FAILED.
A closed row is never reopened; retrying a failed step opens a new row.

Transaction policy: functions flush, callers commit.
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from app.core.exceptions import ValidationError
from app.models import db
from app.models.workflow import (
    WorkflowStepProgress,
    validate_progress_transition,
)
from app.services import step_query_service
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)

# Denominator for tracker-level progress; execution-level progress uses the
# role's real step count instead.
PROGRESS_TOTAL_STEPS = 15
MINUTES_PER_STEP = 5

RECOVERY_GUIDANCE = [
    "Review error message details",
    "Check prerequisites are met",
    "Retry the operation",
    "Get help if issue persists",
]


def _open_progress(task_id, step_id, execution_id=None) -> WorkflowStepProgress | None:
    stmt = select(WorkflowStepProgress).where(
        WorkflowStepProgress.step_id == step_id,
        WorkflowStepProgress.status.in_(("NOT_STARTED", "IN_PROGRESS")),
    )
    if task_id is not None:
        stmt = stmt.where(WorkflowStepProgress.task_id == task_id)
    if execution_id is not None:
        stmt = stmt.where(WorkflowStepProgress.execution_id == execution_id)
    stmt = stmt.order_by(WorkflowStepProgress.started_at.desc()).limit(1)
    return db.session.execute(stmt).scalar_one_or_none()


def _transition(progress: WorkflowStepProgress, new_status: str) -> None:
    if not validate_progress_transition(progress.status, new_status):
        raise ValidationError(
            f"Invalid step progress transition: {progress.status} → {new_status}",
            details={"progressId": progress.id},
        )
    progress.status = new_status


# ── Lifecycle ────────────────────────────────────────────────────────────────


def start_step(task_id, step_id, role_id=None, execution_id=None) -> WorkflowStepProgress:
    """Open an IN_PROGRESS row, or return the attempt that is already open."""
    step = step_query_service.get_step(step_id)
    existing = _open_progress(task_id, step.id, execution_id)
    if existing is not None:
        if existing.status == "NOT_STARTED":
            _transition(existing, "IN_PROGRESS")
            existing.started_at = utcnow()
            db.session.flush()
        return existing

    progress = WorkflowStepProgress(
        task_id=task_id,
        execution_id=execution_id,
        step_id=step.id,
        role_id=role_id or step.role_id,
        status="IN_PROGRESS",
        started_at=utcnow(),
    )
    db.session.add(progress)
    db.session.flush()
    logger.info(
        "Step started: %s", step.name,
        extra={"task_id": task_id, "step_id": step.id, "execution_id": execution_id},
    )
    return progress


def complete_step(task_id, step_id, execution_data=None, duration_ms=None,
                  role_id=None, execution_id=None) -> WorkflowStepProgress:
    """Close the open attempt as COMPLETED, creating one when none is open."""
    step = step_query_service.get_step(step_id)
    progress = _open_progress(task_id, step.id, execution_id)
    if progress is None:
        progress = WorkflowStepProgress(
            task_id=task_id,
            execution_id=execution_id,
            step_id=step.id,
            role_id=role_id or step.role_id,
            status="NOT_STARTED",
            started_at=utcnow(),
        )
        db.session.add(progress)

    _transition(progress, "COMPLETED")
    progress.result = "SUCCESS"
    progress.execution_data = execution_data or {}
    progress.duration_ms = duration_ms
    progress.completed_at = utcnow()
    db.session.flush()
    logger.info(
        "Step completed: %s", step.name,
        extra={"task_id": task_id, "step_id": step.id, "execution_id": execution_id},
    )
    return progress


def fail_step(task_id, step_id, error, execution_data=None, duration_ms=None,
              role_id=None, execution_id=None) -> dict:
    """Close the open attempt as FAILED and return recovery guidance."""
    step = step_query_service.get_step(step_id)
    progress = _open_progress(task_id, step.id, execution_id)
    if progress is None:
        progress = WorkflowStepProgress(
            task_id=task_id,
            execution_id=execution_id,
            step_id=step.id,
            role_id=role_id or step.role_id,
            status="NOT_STARTED",
            started_at=utcnow(),
        )
        db.session.add(progress)

    _transition(progress, "FAILED")
    progress.result = "FAILURE"
    progress.execution_data = execution_data or {}
    progress.error_details = {"message": str(error)}
    progress.duration_ms = duration_ms
    progress.failed_at = utcnow()
    db.session.flush()
    logger.warning(
        "Step failed: %s (%s)", step.name, error,
        extra={"task_id": task_id, "step_id": step.id, "execution_id": execution_id},
    )
    return {
        "progress": progress.to_dict(),
        "recoveryGuidance": list(RECOVERY_GUIDANCE),
    }


def record_step_completion(task_id, step_id, role_id, result, execution_data=None,
                           duration_ms=None, execution_id=None) -> WorkflowStepProgress:
    """Record an agent-reported outcome. ``result`` is "success" or "failure"."""
    if result == "success":
        return complete_step(
            task_id, step_id, execution_data, duration_ms,
            role_id=role_id, execution_id=execution_id,
        )
    error = (execution_data or {}).get("error", "Step reported as failed")
    fail_step(
        task_id, step_id, error, execution_data, duration_ms,
        role_id=role_id, execution_id=execution_id,
    )
    return _latest_for(task_id, step_id)


def _latest_for(task_id, step_id) -> WorkflowStepProgress | None:
    return step_query_service.get_latest_progress(step_id, task_id)


# ── Views ────────────────────────────────────────────────────────────────────


def calculate_progress_percentage(completed: int) -> int:
    return min(round(completed / PROGRESS_TOTAL_STEPS * 100), 100)


def get_step_progress(task_id, role_id=None) -> dict:
    """All attempts for a task plus a summary with percentage and time remaining."""
    stmt = select(WorkflowStepProgress).where(WorkflowStepProgress.task_id == task_id)
    if role_id:
        stmt = stmt.where(WorkflowStepProgress.role_id == role_id)
    rows = list(db.session.execute(stmt.order_by(WorkflowStepProgress.started_at)).scalars())

    completed_steps = {r.step_id for r in rows if r.status == "COMPLETED"}
    completed = len(completed_steps)
    remaining = max(PROGRESS_TOTAL_STEPS - completed, 0)
    return {
        "taskId": task_id,
        "progress": [r.to_dict() for r in rows],
        "summary": {
            "totalAttempts": len(rows),
            "completed": completed,
            "inProgress": sum(1 for r in rows if r.status == "IN_PROGRESS"),
            "failed": sum(1 for r in rows if r.status == "FAILED"),
            "progressPercentage": calculate_progress_percentage(completed),
            "estimatedTimeRemaining": f"{remaining * MINUTES_PER_STEP} minutes",
        },
    }


def get_next_available_step(role_id, task_id=None) -> dict | None:
    step = step_query_service.get_next_available_step(role_id, task_id=task_id)
    return step.to_dict() if step else None
