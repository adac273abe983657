"""
Workflow Operations: task-level role hand-offs and status changes.

    delegate   DelegationRecord + owner/currentMode to the target role
    complete   WorkflowTransition to "completed"; task completed
    escalate   WorkflowTransition to "escalated"
    transition WorkflowTransition with a new task status

These are the lightweight hand-offs agents report directly; gated role
transitions live in role_transition_service.
"""

import logging

from app.core.exceptions import ValidationError
from app.models import db
from app.models.task import WorkflowTransition
from app.models.workflow import DelegationRecord
from app.services.operations import dispatch
from app.services.operations.schemas import WorkflowOperationsInput
from app.services.operations.task_operations import get_task_or_raise
from app.utils.errors import E
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)

SERVICE_NAME = "WorkflowOperations"
ERROR_CODE = E.WORKFLOW_OPERATION_FAILED


def delegate(data: WorkflowOperationsInput) -> dict:
    if not data.from_role or not data.to_role:
        raise ValidationError("fromRole and toRole are required for delegation")
    task = get_task_or_raise(data.task_id)

    record = DelegationRecord(
        task_id=task.id,
        from_mode=data.from_role,
        to_mode=data.to_role,
        message=data.message or "",
        delegation_timestamp=utcnow(),
    )
    db.session.add(record)
    task.current_mode = data.to_role
    task.owner = data.to_role
    task.redelegation_count = (task.redelegation_count or 0) + 1
    db.session.flush()

    logger.info(
        "Task delegated %s → %s", data.from_role, data.to_role,
        extra={"task_id": task.id, "role_name": data.to_role},
    )
    return record.to_dict()


def complete(data: WorkflowOperationsInput) -> dict:
    if data.completion_data is None:
        raise ValidationError("Completion data is required for task completion")
    task = get_task_or_raise(data.task_id)

    transition = WorkflowTransition(
        task_id=task.id,
        from_mode=data.from_role or task.current_mode or "boomerang",
        to_mode="completed",
        reason=f"Task completed: {data.completion_data.summary}",
    )
    db.session.add(transition)
    task.status = "completed"
    task.completion_date = utcnow()
    db.session.flush()
    return transition.to_dict()


def escalate(data: WorkflowOperationsInput) -> dict:
    if data.escalation_data is None:
        raise ValidationError("Escalation data is required for task escalation")
    task = get_task_or_raise(data.task_id)

    transition = WorkflowTransition(
        task_id=task.id,
        from_mode=data.from_role or task.current_mode or "boomerang",
        to_mode="escalated",
        reason=f"Escalation: {data.escalation_data.reason}",
    )
    db.session.add(transition)
    db.session.flush()
    logger.warning(
        "Task escalated (%s): %s", data.escalation_data.severity, data.escalation_data.reason,
        extra={"task_id": task.id},
    )
    return transition.to_dict()


def transition(data: WorkflowOperationsInput) -> dict:
    if not data.new_status:
        raise ValidationError("New status is required for task transition")
    task = get_task_or_raise(data.task_id)
    from_mode = data.from_role or task.current_mode or "boomerang"

    record = WorkflowTransition(
        task_id=task.id,
        from_mode=from_mode,
        to_mode=data.to_role or from_mode,
        reason=data.message or f"Status changed to {data.new_status}",
    )
    db.session.add(record)
    task.status = data.new_status
    if data.new_status == "completed":
        task.completion_date = utcnow()
    if data.to_role:
        task.current_mode = data.to_role
        task.owner = data.to_role
    db.session.flush()
    return record.to_dict()


_HANDLERS = {
    "delegate": delegate,
    "complete": complete,
    "escalate": escalate,
    "transition": transition,
}

SUPPORTED_OPERATIONS = tuple(_HANDLERS)
INPUT_MODEL = WorkflowOperationsInput


def execute(operation, params):
    return dispatch(SERVICE_NAME, _HANDLERS, INPUT_MODEL, operation, params)
