"""
Workflow Execution Service: lifecycle of a WorkflowExecution row.

    create_execution            first step of the role becomes current, phase "initialized"
    get_execution               by id, or the latest execution of a task
    update_execution            whitelisted field updates on the cursor row
    complete_execution          completedAt, 100%, phase "completed"
    get_active_executions       open executions with a per-role summary
    execute_step_with_services  run a step's service calls through the orchestrator
    get_execution_context       whole context, or a single key
    update_execution_context    shallow merge, bounded by MAX_CONTEXT_BYTES
    handle_execution_error      record the error and count a recovery attempt

Writes go through the same row lock and version check as step completion,
so an execution updated concurrently is reported as a conflict.
"""

from __future__ import annotations

import json
import logging
from collections import Counter

from flask import current_app
from sqlalchemy import func, select

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.workflow import EXECUTION_MODES, WorkflowExecution, WorkflowStep
from app.services import core_orchestrator, role_transition_service, step_query_service
from app.services.operations.task_operations import get_task_or_raise
from app.services.step_execution_service import flush_execution, role_steps_completed
from app.services.step_progress_service import MINUTES_PER_STEP
from app.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_EXECUTION_MODE = "GUIDED"

PHASE_INITIALIZED = "initialized"
PHASE_IN_PROGRESS = "in-progress"
PHASE_COMPLETED = "completed"

FALLBACK_RECOMMENDATIONS = [
    "Review task requirements",
    "Execute next workflow step",
    "Validate current progress",
    "Check for blockers",
    "Update task status",
]

FINAL_RECOMMENDATIONS = [
    "Review execution metrics and performance",
    "Archive execution data for future reference",
    "Update workflow patterns based on learnings",
    "Prepare final deliverables and documentation",
    "Conduct retrospective on workflow effectiveness",
]

# camelCase key -> attribute; anything else in updateData is rejected
UPDATABLE_FIELDS = {
    "currentStepId": "current_step_id",
    "executionMode": "execution_mode",
    "executionState": "execution_state",
    "executionContext": "execution_context",
    "progressPercentage": "progress_percentage",
    "totalSteps": "total_steps",
}


# ── Validation ───────────────────────────────────────────────────────────────


def _require_task_id(task_id, operation):
    if not task_id:
        raise ValidationError(f"taskId is required for {operation}")


def _require_execution_id(execution_id, operation):
    if not execution_id:
        raise ValidationError(f"executionId is required for {operation}")


def _check_execution_mode(mode):
    if mode and mode not in EXECUTION_MODES:
        raise ValidationError(
            f"Execution mode must be one of: {', '.join(sorted(EXECUTION_MODES))}",
            details={"executionMode": mode},
        )


def check_context_size(context: dict | None) -> None:
    limit = current_app.config["MAX_CONTEXT_BYTES"]
    size = len(json.dumps(context or {}, default=str).encode("utf-8"))
    if size > limit:
        raise ValidationError(
            f"Execution context too large: {size} bytes. Maximum: {limit} bytes",
            details={"size": size, "maximum": limit},
        )


# ── Lookups ──────────────────────────────────────────────────────────────────


def _get_execution(execution_id, lock=False) -> WorkflowExecution:
    stmt = select(WorkflowExecution).where(WorkflowExecution.id == execution_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    execution = db.session.execute(stmt).scalar_one_or_none()
    if execution is None:
        raise NotFoundError("WorkflowExecution", execution_id)
    return execution


def latest_execution_for_task(task_id) -> WorkflowExecution | None:
    return db.session.execute(
        select(WorkflowExecution)
        .where(WorkflowExecution.task_id == task_id)
        .order_by(WorkflowExecution.created_at.desc())
        .limit(1)
    ).scalar_one_or_none()


def count_role_steps(role_id) -> int:
    return db.session.execute(
        select(func.count(WorkflowStep.id)).where(WorkflowStep.role_id == role_id)
    ).scalar() or 0


# ── Enrichment ───────────────────────────────────────────────────────────────


def get_next_steps_for_execution(execution: WorkflowExecution) -> list[dict]:
    """The next step the agent should pick up, or a single fallback entry."""
    if execution.current_role_id is None:
        return [{
            "name": "Review workflow state",
            "status": "ready",
            "description": "No role assigned to this execution",
        }]

    step = step_query_service.get_next_available_step(
        execution.current_role_id,
        current_step_id=None,
        task_id=execution.task_id,
    )
    if step is None:
        if count_role_steps(execution.current_role_id):
            return [{
                "name": "Role transition or completion",
                "status": "ready",
                "description": "All steps completed for current role - consider role transition",
            }]
        return [{
            "name": "Review workflow state",
            "status": "ready",
            "description": "No workflow steps defined for the current role",
        }]

    latest = step_query_service.get_latest_progress(step.id, execution.task_id)
    return [{
        "id": step.id,
        "name": step.name,
        "displayName": step.display_name,
        "description": step.description,
        "sequenceNumber": step.sequence_number,
        "status": "pending" if latest and latest.status == "IN_PROGRESS" else "ready",
    }]


def calculate_progress_metrics(execution: WorkflowExecution) -> dict:
    completed = execution.steps_completed or 0
    total = execution.total_steps or 0
    remaining = max(total - role_steps_completed(execution), 0)
    return {
        "percentage": execution.progress_percentage or 0,
        "stepsCompleted": completed,
        "totalSteps": total,
        "estimatedCompletion": (
            f"{remaining * MINUTES_PER_STEP} minutes" if total and remaining else None
        ),
    }


def get_role_recommendations(role_name) -> list[str]:
    """Generic guidance plus the hand-offs available from the role; nothing is validated here."""
    transitions = role_transition_service.get_role_transitions(role_name)
    return list(FALLBACK_RECOMMENDATIONS) + [
        f"When ready, hand off via '{t['transitionName']}' to {t['toRole']['displayName']}"
        for t in transitions
    ]


def _format_duration(start, end) -> str:
    if start is None or end is None:
        return "0h 0m"
    seconds = int((as_utc(end) - as_utc(start)).total_seconds())
    hours, rest = divmod(max(seconds, 0), 3600)
    return f"{hours}h {rest // 60}m"


def generate_completion_summary(execution: WorkflowExecution) -> dict:
    return {
        "totalDuration": _format_duration(execution.started_at, execution.completed_at),
        "stepsCompleted": execution.steps_completed or 0,
        "finalRole": execution.current_role.name if execution.current_role else "unknown",
        "qualityMetrics": {
            "recoveryAttempts": execution.recovery_attempts or 0,
            "hasErrors": bool(execution.last_error),
            "executionMode": execution.execution_mode or DEFAULT_EXECUTION_MODE,
        },
    }


# ── Operations ───────────────────────────────────────────────────────────────


def create_execution(task_id, role_name, execution_mode=None, auto_created_task=False,
                     execution_context=None) -> dict:
    _require_task_id(task_id, "create")
    if not role_name:
        raise ValidationError("roleName is required for create")
    _check_execution_mode(execution_mode)
    check_context_size(execution_context)

    task = get_task_or_raise(task_id)
    role = step_query_service.resolve_role(role_name)
    first_step = step_query_service.get_first_step(role.id)

    state = {
        "phase": PHASE_INITIALIZED,
        "currentContext": {},
        "progressMarkers": [],
    }
    if first_step is not None:
        state["currentStep"] = {
            "id": first_step.id,
            "name": first_step.name,
            "sequenceNumber": first_step.sequence_number,
            "assignedAt": utcnow().isoformat(),
        }

    execution = WorkflowExecution(
        task_id=task.id,
        current_role_id=role.id,
        current_step_id=first_step.id if first_step else None,
        execution_mode=execution_mode or DEFAULT_EXECUTION_MODE,
        auto_created_task=bool(auto_created_task),
        total_steps=count_role_steps(role.id),
        execution_state=state,
        execution_context=dict(execution_context or {}),
        max_recovery_attempts=current_app.config["MAX_RECOVERY_ATTEMPTS"],
    )
    db.session.add(execution)
    db.session.flush()

    logger.info(
        "Execution created for task %s as %s", task.id, role.name,
        extra={"execution_id": execution.id, "task_id": task.id, "role_name": role.name},
    )
    return {
        "execution": execution.to_dict(),
        "nextSteps": get_next_steps_for_execution(execution),
        "recommendations": get_role_recommendations(role.name),
    }


def get_execution(task_id=None, execution_id=None) -> dict:
    if execution_id:
        execution = _get_execution(execution_id)
    else:
        _require_task_id(task_id, "get")
        execution = latest_execution_for_task(task_id)
        if execution is None:
            raise NotFoundError("WorkflowExecution for task", task_id)
    return {
        "execution": execution.to_dict(),
        "nextSteps": get_next_steps_for_execution(execution),
        "progressUpdate": calculate_progress_metrics(execution),
    }


def update_execution(execution_id, update_data: dict | None) -> dict:
    """
    Apply ``update_data`` (camelCase keys, see UPDATABLE_FIELDS).

    executionState and executionContext are merged into the stored dicts.
    A new currentStepId must belong to the execution's current role.
    """
    _require_execution_id(execution_id, "update")
    update_data = dict(update_data or {})
    unknown = sorted(set(update_data) - set(UPDATABLE_FIELDS))
    if unknown:
        raise ValidationError(
            f"Unsupported execution fields: {', '.join(unknown)}",
            details={"allowedFields": sorted(UPDATABLE_FIELDS)},
        )

    execution = _get_execution(execution_id, lock=True)

    if "currentStepId" in update_data:
        step = step_query_service.get_step(update_data["currentStepId"])
        if step.role_id != execution.current_role_id:
            raise ValidationError(
                f"Step {step.id} does not belong to the execution's current role",
                details={"stepId": step.id},
            )
        execution.current_step = step
    if "executionMode" in update_data:
        _check_execution_mode(update_data["executionMode"])
        execution.execution_mode = update_data["executionMode"]
    if "executionState" in update_data:
        execution.execution_state = {
            **(execution.execution_state or {}), **(update_data["executionState"] or {}),
        }
    if "executionContext" in update_data:
        merged = {**(execution.execution_context or {}), **(update_data["executionContext"] or {})}
        check_context_size(merged)
        execution.execution_context = merged
    if "progressPercentage" in update_data:
        value = float(update_data["progressPercentage"])
        if not 0 <= value <= 100:
            raise ValidationError("progressPercentage must be between 0 and 100")
        execution.progress_percentage = value
    if "totalSteps" in update_data:
        execution.total_steps = int(update_data["totalSteps"])

    state = dict(execution.execution_state or {})
    if state.get("phase") == PHASE_INITIALIZED:
        state["phase"] = PHASE_IN_PROGRESS
        execution.execution_state = state
    flush_execution(execution)

    return {
        "execution": execution.to_dict(),
        "progressUpdate": calculate_progress_metrics(execution),
        "nextActions": get_next_steps_for_execution(execution),
    }


def complete_execution(execution_id) -> dict:
    _require_execution_id(execution_id, "complete")
    execution = _get_execution(execution_id, lock=True)
    if execution.completed_at is not None:
        raise ValidationError(f"Execution {execution_id} is already completed")

    now = utcnow()
    execution.completed_at = now
    execution.progress_percentage = 100.0
    execution.execution_state = {
        **(execution.execution_state or {}),
        "phase": PHASE_COMPLETED,
        "completedAt": now.isoformat(),
    }
    flush_execution(execution)

    logger.info(
        "Execution completed after %d steps", execution.steps_completed,
        extra={"execution_id": execution.id, "task_id": execution.task_id},
    )
    return {
        "execution": execution.to_dict(),
        "completionSummary": generate_completion_summary(execution),
        "finalRecommendations": list(FINAL_RECOMMENDATIONS),
    }


def get_active_executions() -> dict:
    executions = list(db.session.execute(
        select(WorkflowExecution)
        .where(WorkflowExecution.completed_at.is_(None))
        .order_by(WorkflowExecution.created_at.desc())
    ).scalars())

    total = len(executions)
    average = (
        round(sum(e.progress_percentage or 0 for e in executions) / total) if total else 0
    )
    return {
        "executions": [e.to_dict() for e in executions],
        "summary": {
            "total": total,
            "byRole": dict(Counter(
                e.current_role.name if e.current_role else "unknown" for e in executions
            )),
            "progressOverview": {"averageProgress": average, "totalActive": total},
        },
    }


def execute_step_with_services(task_id, step_id, orchestration_config: dict | None) -> dict:
    _require_task_id(task_id, "execute_step_with_services")
    config = orchestration_config or {}
    calls = config.get("serviceCalls")
    if not step_id or not calls:
        raise ValidationError(
            "stepId and orchestrationConfig.serviceCalls are required "
            "for executing a step with services"
        )
    limit = current_app.config["MAX_SERVICE_CALLS"]
    if len(calls) > limit:
        raise ValidationError(f"Too many service calls: {len(calls)}. Maximum allowed: {limit}")

    step = step_query_service.get_step(step_id)
    result = core_orchestrator.execute_step_with_services(
        step.id,
        calls,
        execution_mode=config.get("executionMode") or "sequential",
        continue_on_failure=bool(config.get("continueOnFailure", False)),
    )
    return {
        "executionResult": result,
        "taskId": task_id,
        "stepId": step.id,
        "timestamp": utcnow().isoformat(),
    }


def get_execution_context(execution_id, data_key=None) -> dict:
    _require_execution_id(execution_id, "get_execution_context")
    execution = _get_execution(execution_id)
    context = execution.execution_context or {}
    if data_key:
        return {
            "executionId": execution.id,
            "dataKey": data_key,
            "found": data_key in context,
            "value": context.get(data_key),
        }
    return {
        "executionId": execution.id,
        "executionContext": context,
        "keys": sorted(context),
    }


def update_execution_context(execution_id, context_updates: dict | None) -> dict:
    _require_execution_id(execution_id, "update_execution_context")
    if not context_updates:
        raise ValidationError("contextUpdates is required for update_execution_context")

    execution = _get_execution(execution_id, lock=True)
    merged = {**(execution.execution_context or {}), **context_updates}
    check_context_size(merged)
    execution.execution_context = merged
    flush_execution(execution)

    return {
        "executionId": execution.id,
        "executionContext": merged,
        "updatedKeys": sorted(context_updates),
    }


def handle_execution_error(execution_id, error_message: str) -> dict:
    """Record ``error_message`` and count one recovery attempt."""
    _require_execution_id(execution_id, "handle_execution_error")
    execution = _get_execution(execution_id, lock=True)

    attempts = (execution.recovery_attempts or 0) + 1
    execution.recovery_attempts = attempts
    execution.last_error = {
        "message": error_message or "Unknown error",
        "timestamp": utcnow().isoformat(),
    }
    flush_execution(execution)

    can_retry = attempts < execution.max_recovery_attempts
    logger.warning(
        "Execution error recorded (attempt %d/%d)", attempts, execution.max_recovery_attempts,
        extra={"execution_id": execution.id, "task_id": execution.task_id},
    )
    return {
        "canRetry": can_retry,
        "retryCount": attempts,
        "maxRetries": execution.max_recovery_attempts,
    }
