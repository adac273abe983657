"""
Role Transition Service: validate and execute hand-offs between roles.

Validation runs every condition and requirement check independently and
collects errors (blocking) and warnings (advisory):

    conditions.requiredStepsCompleted   COMPLETED progress exists per step id
    conditions.requiredTaskStatus       task.status equals the value
    conditions.minimumTimeInRole        ms since the last hand-off (warning only)
    requirements.requiredDeliverables   see quality_gates.check_deliverable
    requirements.qualityGates           see quality_gates.check_quality_gate

A transition executes only when the error list is empty. Nothing is written
on a failed validation.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select

from app.models import db
from app.models.task import Task
from app.models.workflow import DelegationRecord, RoleTransition, WorkflowStep
from app.services import quality_gates, step_query_service
from app.services.step_execution_service import flush_execution
from app.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

RECOMMENDATION_BASE_SCORE = 50
COMMON_TRANSITION_BONUS = 20
MAX_RECOMMENDATIONS = 3

COMMON_TRANSITIONS = frozenset({
    "research_to_architecture",
    "architecture_to_implementation",
    "implementation_to_review",
    "review_to_completion",
})


# ── Lookups ──────────────────────────────────────────────────────────────────


def find_transition(transition_ref: str) -> RoleTransition | None:
    """Find a transition by id or by transition name."""
    if not transition_ref:
        return None
    transition = db.session.get(RoleTransition, transition_ref)
    if transition is None:
        transition = db.session.execute(
            select(RoleTransition).where(RoleTransition.transition_name == transition_ref)
        ).scalar_one_or_none()
    return transition


def get_role_transitions(from_role: str, task_id=None, include_validation=False,
                         context: dict | None = None) -> list[dict]:
    """Active transitions out of a role (id or name), optionally validated for a task."""
    role = step_query_service.resolve_role(from_role)
    transitions = db.session.execute(
        select(RoleTransition)
        .where(RoleTransition.from_role_id == role.id, RoleTransition.is_active.is_(True))
        .order_by(RoleTransition.transition_name)
    ).scalars()

    result = []
    for transition in transitions:
        entry = transition.to_dict()
        if include_validation and task_id is not None:
            entry["validation"] = validate_transition(transition.id, task_id, context)
        result.append(entry)
    return result


# ── Validation ───────────────────────────────────────────────────────────────


def _step_completed(task_id, step_id) -> bool:
    return quality_gates.has_completed_progress(task_id, step_id)


def _time_in_role_ms(task: Task) -> float:
    last = db.session.execute(
        select(DelegationRecord)
        .where(DelegationRecord.task_id == task.id)
        .order_by(DelegationRecord.delegation_timestamp.desc(), DelegationRecord.id.desc())
        .limit(1)
    ).scalar_one_or_none()
    since = last.delegation_timestamp if last else task.created_at
    if since is None:
        return 0.0
    return (utcnow() - as_utc(since)).total_seconds() * 1000


def _passes(check, *args) -> bool:
    """Run one condition or requirement check; a check that raises has failed."""
    try:
        return bool(check(*args))
    except Exception:
        logger.exception("Transition check %s raised for %r", check.__name__, args[0])
        return False


def _check_conditions(conditions: dict, task: Task | None, task_id, errors, warnings) -> None:
    for step_id in conditions.get("requiredStepsCompleted") or []:
        if not _passes(_step_completed, task_id, step_id):
            errors.append(f"Required step '{step_id}' not completed")

    required_status = conditions.get("requiredTaskStatus")
    if required_status and (task is None or task.status != required_status):
        errors.append(f"Task status must be '{required_status}'")

    minimum = conditions.get("minimumTimeInRole")
    if minimum and task is not None:
        try:
            minimum_ms = float(minimum)
        except (TypeError, ValueError):
            warnings.append(f"Invalid minimumTimeInRole: {minimum!r}")
            return
        elapsed = _time_in_role_ms(task)
        if elapsed < minimum_ms:
            warnings.append(
                f"Minimum time in role not met ({int(elapsed)}ms < {int(minimum_ms)}ms)"
            )


def _check_requirements(requirements: dict, task_id, project_path, errors) -> None:
    for deliverable in requirements.get("requiredDeliverables") or []:
        if not _passes(quality_gates.check_deliverable, deliverable, task_id, project_path):
            errors.append(f"Required deliverable '{deliverable}' not found")

    for gate in requirements.get("qualityGates") or []:
        if not _passes(quality_gates.check_quality_gate, gate, task_id, project_path):
            errors.append(f"Quality gate '{gate}' not passed")


def validate_transition(transition_ref: str, task_id, context: dict | None = None) -> dict:
    """Return ``{valid, errors, warnings}``. Never writes."""
    errors: list[str] = []
    warnings: list[str] = []
    context = context or {}

    transition = find_transition(transition_ref)
    if transition is None or not transition.is_active:
        return {"valid": False, "errors": ["Transition not found"], "warnings": []}

    try:
        task = db.session.get(Task, task_id) if task_id is not None else None
        if task is None:
            errors.append(f"Task not found: {task_id}")
        _check_conditions(transition.conditions or {}, task, task_id, errors, warnings)
        _check_requirements(
            transition.requirements or {}, task_id, context.get("projectPath"), errors,
        )
    except Exception as exc:
        logger.exception(
            "Transition validation raised for %s", transition.transition_name,
            extra={"task_id": task_id},
        )
        errors.append(f"Validation error: {exc}")

    return {"valid": not errors, "errors": errors, "warnings": warnings}


# ── Execution ────────────────────────────────────────────────────────────────


def execute_transition(transition_ref: str, task_id, handoff_message: str | None = None,
                       context: dict | None = None) -> dict:
    """
    Validate, then record a DelegationRecord, move the task to the target
    role and point the active execution at that role's first step.
    """
    validation = validate_transition(transition_ref, task_id, context)
    if not validation["valid"]:
        logger.info(
            "Transition %s rejected: %s", transition_ref, "; ".join(validation["errors"]),
            extra={"task_id": task_id},
        )
        return {
            "success": False,
            "message": f"Transition validation failed: {', '.join(validation['errors'])}",
            "errors": validation["errors"],
            "warnings": validation["warnings"],
        }

    transition = find_transition(transition_ref)
    from_role, to_role = transition.from_role, transition.to_role

    record = DelegationRecord(
        task_id=task_id,
        from_mode=from_role.name,
        to_mode=to_role.name,
        message=handoff_message or f"Transitioned via {transition.transition_name}",
        success=True,
        delegation_timestamp=utcnow(),
    )
    db.session.add(record)

    task = db.session.get(Task, task_id)
    if task is not None:
        task.owner = to_role.name
        task.current_mode = to_role.name

    execution = db.session.execute(
        step_query_service.active_execution_query(task_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if execution is not None:
        first_step = step_query_service.get_first_step(to_role.id)
        execution.current_role = to_role
        execution.current_step = first_step
        execution.total_steps = db.session.execute(
            select(func.count(WorkflowStep.id)).where(WorkflowStep.role_id == to_role.id)
        ).scalar()
        state = dict(execution.execution_state or {})
        state["phase"] = "transitioned"
        # Progress is per role; stepsCompleted stays cumulative
        state["roleStepsBaseline"] = execution.steps_completed or 0
        execution.progress_percentage = 0.0
        state["lastTransition"] = {
            "transitionName": transition.transition_name,
            "fromRole": from_role.name,
            "toRole": to_role.name,
            "transitionedAt": utcnow().isoformat(),
        }
        if first_step:
            state["currentStep"] = {
                "id": first_step.id,
                "name": first_step.name,
                "sequenceNumber": first_step.sequence_number,
                "assignedAt": utcnow().isoformat(),
            }
        execution.execution_state = state
        flush_execution(execution)
    else:
        db.session.flush()

    logger.info(
        "Transitioned %s → %s", from_role.name, to_role.name,
        extra={"task_id": task_id, "role_name": to_role.name},
    )
    return {
        "success": True,
        "message": f"Successfully transitioned from {from_role.display_name} to {to_role.display_name}",
        "newRoleId": to_role.id,
        "newRoleName": to_role.name,
        "delegationRecordId": record.id,
        "warnings": validation["warnings"],
    }


# ── History / recommendations ────────────────────────────────────────────────


def get_transition_history(task_id) -> list[dict]:
    records = db.session.execute(
        select(DelegationRecord)
        .where(DelegationRecord.task_id == task_id)
        .order_by(DelegationRecord.delegation_timestamp.desc(), DelegationRecord.id.desc())
    ).scalars()
    return [r.to_dict() for r in records]


def get_recommended_transitions(from_role: str, task_id, context: dict | None = None,
                                validated: list[dict] | None = None) -> list[dict]:
    """
    Valid transitions scored 50 (+20 for the common pipeline hand-offs),
    ordered by score then name, at most three.

    ``validated`` reuses the output of
    ``get_role_transitions(..., include_validation=True)`` so the checks run once.
    """
    if validated is None:
        validated = get_role_transitions(from_role, task_id, include_validation=True, context=context)
    scored = []
    for entry in validated:
        if not entry["validation"]["valid"]:
            continue
        common = entry["transitionName"] in COMMON_TRANSITIONS
        score = RECOMMENDATION_BASE_SCORE + (COMMON_TRANSITION_BONUS if common else 0)
        scored.append({
            "transition": entry,
            "score": score,
            "reason": "Common workflow transition" if common else "Available transition",
        })
    scored.sort(key=lambda r: (-r["score"], r["transition"]["transitionName"]))
    return scored[:MAX_RECOMMENDATIONS]
