"""
Step Execution Service: runs a step and advances the execution cursor.

    execute_step               open a progress row and return guidance
    process_execution_results  fold agent-reported MCP action results into errors
    process_step_completion    record the outcome and, on success, move the cursor

Cursor advancement reads, computes and writes inside one transaction. The
execution row is selected FOR UPDATE (a no-op on SQLite) and carries a
``version_id_col``; a flush that loses a concurrent race raises
StaleDataError, which is rolled back and surfaced as ConcurrentUpdateError.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import ConcurrentUpdateError, NotFoundError, ValidationError
from app.models import db
from app.models.workflow import WorkflowExecution
from app.services import step_guidance_service, step_progress_service, step_query_service
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)

VALID_RESULTS = ("success", "failure")


def execute_step(task_id, step_id, role_id=None, execution_id=None) -> dict:
    """Start a step and return its guidance. A failure while preparing is recorded on the step."""
    progress = step_progress_service.start_step(
        task_id, step_id, role_id=role_id, execution_id=execution_id,
    )
    try:
        guidance = step_guidance_service.get_step_guidance(task_id, role_id, step_id)
    except Exception as exc:
        logger.exception(
            "Step execution failed for %s", step_id,
            extra={"task_id": task_id, "step_id": step_id},
        )
        step_progress_service.fail_step(
            task_id, step_id, str(exc), role_id=role_id, execution_id=execution_id,
        )
        raise
    return {
        "progressId": progress.id,
        "status": progress.status,
        "guidance": guidance,
    }


def process_execution_results(results) -> dict:
    """
    ``results`` is a list of ``{actionName, success, error?, data?}``.
    Every unsuccessful entry becomes "MCP action failed: {actionName} - {error}".
    """
    errors = []
    for item in results or []:
        if not item.get("success", False):
            errors.append(
                f"MCP action failed: {item.get('actionName', 'unknown')} - "
                f"{item.get('error', 'Unknown error')}"
            )
    return {
        "success": not errors,
        "processed": len(results or []),
        "errors": errors,
    }


def _lock_execution(task_id, execution_id) -> WorkflowExecution | None:
    if execution_id:
        stmt = select(WorkflowExecution).where(WorkflowExecution.id == execution_id)
    elif task_id is not None:
        stmt = step_query_service.active_execution_query(task_id)
    else:
        return None
    stmt = stmt.with_for_update().execution_options(populate_existing=True)
    execution = db.session.execute(stmt).scalar_one_or_none()
    if execution is None and execution_id:
        raise NotFoundError("WorkflowExecution", execution_id)
    return execution


def role_steps_completed(execution: WorkflowExecution) -> int:
    """Steps completed since the execution entered its current role."""
    baseline = (execution.execution_state or {}).get("roleStepsBaseline", 0)
    return max((execution.steps_completed or 0) - baseline, 0)


def _progress_percentage(completed: int, total: int | None) -> float:
    if not total:
        return 0.0
    return float(min(round(completed / total * 100), 100))


def process_step_completion(task_id, step_id, result, execution_data=None,
                            duration_ms=None, execution_id=None) -> dict:
    """
    Record a reported step outcome.

    On "success": stepsCompleted increases by exactly one, and the cursor
    moves to the next step of the same role when that step's sequence number
    is above the current one. The cursor never moves backwards. At the end of
    a role it stays on the last step.
    On "failure": the attempt is recorded as FAILED and the cursor is untouched.

    Returns ``{success, stepId, executionData, nextStep}``.
    """
    if result not in VALID_RESULTS:
        raise ValidationError(
            f"result must be one of: {', '.join(VALID_RESULTS)}",
            details={"result": result},
        )

    step = step_query_service.get_step(step_id)
    execution = _lock_execution(task_id, execution_id)
    if execution is not None and execution.completed_at is not None:
        raise ValidationError(f"Execution {execution.id} is already completed")
    if execution is not None and task_id is None:
        task_id = execution.task_id

    step_progress_service.record_step_completion(
        task_id, step.id, step.role_id, result, execution_data, duration_ms,
        execution_id=execution.id if execution else None,
    )

    if result == "failure":
        if execution is not None:
            execution.last_error = {
                "stepId": step.id,
                "message": (execution_data or {}).get("error", "Step reported as failed"),
                "timestamp": utcnow().isoformat(),
            }
            flush_execution(execution)
        return {
            "success": False,
            "stepId": step.id,
            "executionData": execution_data or {},
            "nextStep": None,
        }

    next_step = step_query_service.get_next_step_in_sequence(step)

    if execution is not None:
        current = execution.current_step
        execution.steps_completed = (execution.steps_completed or 0) + 1

        advance = (
            next_step is not None
            and step.role_id == execution.current_role_id
            and (current is None or next_step.sequence_number > current.sequence_number)
        )
        if advance:
            execution.current_step = next_step

        now = utcnow().isoformat()
        state = dict(execution.execution_state or {})
        state["lastCompletedStep"] = {"id": step.id, "name": step.name, "completedAt": now}
        if advance:
            state["currentStep"] = {
                "id": next_step.id,
                "name": next_step.name,
                "sequenceNumber": next_step.sequence_number,
                "assignedAt": now,
            }
        elif next_step is None and step.role_id == execution.current_role_id:
            state["phase"] = "role_steps_completed"
        # JSON columns are only dirty on reassignment
        execution.execution_state = state
        execution.progress_percentage = _progress_percentage(
            role_steps_completed(execution), execution.total_steps,
        )
        flush_execution(execution)

        logger.info(
            "Execution advanced: %d steps completed", execution.steps_completed,
            extra={"execution_id": execution.id, "task_id": task_id, "step_id": step.id},
        )

    return {
        "success": True,
        "stepId": step.id,
        "executionData": execution_data or {},
        "nextStep": next_step.brief() if next_step else None,
    }


def flush_execution(execution: WorkflowExecution) -> None:
    try:
        db.session.flush()
    except StaleDataError:
        execution_id = execution.id
        db.session.rollback()
        logger.warning(
            "Concurrent update detected on execution %s", execution_id,
            extra={"execution_id": execution_id},
        )
        raise ConcurrentUpdateError(execution_id)
