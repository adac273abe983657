"""
Workflow Bootstrap Service: start a workflow before the real task exists.

A placeholder task is created and an execution is pointed at the first step
of the initial role. The real task data travels in ``task_creation_data``
until the boomerang role creates the task. Everything happens inside one
SAVEPOINT, so a failure leaves no placeholder behind.

The result always has the same shape; failures are reported with
``success: false`` and a message rather than raised.
"""

import logging
import time
import uuid

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import ValidationError
from app.models import db
from app.models.task import TASK_PRIORITIES, Task
from app.models.workflow import EXECUTION_MODES, ROLE_NAMES, WorkflowExecution, WorkflowRole
from app.services import step_query_service
from app.services.workflow_execution_service import (
    DEFAULT_EXECUTION_MODE,
    PHASE_INITIALIZED,
    check_context_size,
    count_role_steps,
)
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)

TASK_NAME_MIN_LENGTH = 3
TASK_NAME_MAX_LENGTH = 200
PLACEHOLDER_PREFIX = "[PLACEHOLDER]"


def validate_bootstrap_input(task_name, initial_role, execution_mode=None, priority=None) -> dict:
    """Collect every input problem; ``{valid, errors}``."""
    errors = []
    if not task_name or not task_name.strip():
        errors.append("Task name is required")
    if task_name and len(task_name) > TASK_NAME_MAX_LENGTH:
        errors.append(f"Task name must be less than {TASK_NAME_MAX_LENGTH} characters")
    if task_name and len(task_name) < TASK_NAME_MIN_LENGTH:
        errors.append(f"Task name must be at least {TASK_NAME_MIN_LENGTH} characters")
    if initial_role not in ROLE_NAMES:
        errors.append(f"Initial role must be one of: {', '.join(ROLE_NAMES)}")
    if execution_mode and execution_mode not in EXECUTION_MODES:
        errors.append(f"Execution mode must be one of: {', '.join(sorted(EXECUTION_MODES))}")
    if priority and priority not in TASK_PRIORITIES:
        errors.append(f"Priority must be one of: {', '.join(sorted(TASK_PRIORITIES))}")
    return {"valid": not errors, "errors": errors}


def _failure(message) -> dict:
    return {
        "success": False,
        "placeholderTask": None,
        "workflowExecution": None,
        "firstStep": None,
        "message": message,
        "resources": {"taskId": "", "executionId": "", "firstStepId": None},
    }


def _placeholder_slug() -> str:
    return f"bootstrap-placeholder-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


def bootstrap_workflow(task_name, initial_role, execution_mode=None, task_description=None,
                       business_requirements=None, technical_requirements=None,
                       acceptance_criteria=None, priority=None, project_path=None,
                       execution_context=None) -> dict:
    validation = validate_bootstrap_input(task_name, initial_role, execution_mode, priority)
    if not validation["valid"]:
        return _failure(f"Bootstrap validation failed: {', '.join(validation['errors'])}")

    try:
        with db.session.begin_nested():
            task = Task(
                name=f"{PLACEHOLDER_PREFIX} {task_name}",
                slug=_placeholder_slug(),
                status="not-started",
                priority="Medium",
                dependencies=[],
                owner="boomerang",
                current_mode="boomerang",
                creation_date=utcnow(),
            )
            db.session.add(task)
            db.session.flush()

            role = db.session.execute(
                select(WorkflowRole).where(WorkflowRole.name == initial_role)
            ).scalar_one_or_none()
            if role is None:
                raise LookupError(f"Role '{initial_role}' not found")
            first_step = step_query_service.get_first_step(role.id)
            if first_step is None:
                raise LookupError(f"No workflow steps found for role '{initial_role}'")

            now = utcnow().isoformat()
            context = {
                "bootstrapped": True,
                "bootstrapTime": now,
                "projectPath": project_path,
                "initialRoleName": role.name,
                "firstStepName": first_step.name,
                "placeholderTaskCreated": True,
                "realTaskPending": True,
                **(execution_context or {}),
            }
            check_context_size(context)

            execution = WorkflowExecution(
                task_id=task.id,
                current_role_id=role.id,
                current_step_id=first_step.id,
                execution_mode=execution_mode or DEFAULT_EXECUTION_MODE,
                auto_created_task=True,
                total_steps=count_role_steps(role.id),
                task_creation_data={
                    "realTaskName": task_name,
                    "taskDescription": task_description,
                    "businessRequirements": business_requirements,
                    "technicalRequirements": technical_requirements,
                    "acceptanceCriteria": acceptance_criteria or [],
                    "priority": priority,
                    "projectPath": project_path,
                },
                execution_context=context,
                execution_state={
                    "phase": PHASE_INITIALIZED,
                    "currentContext": execution_context or {},
                    "progressMarkers": [],
                    "currentStep": {
                        "id": first_step.id,
                        "name": first_step.name,
                        "displayName": first_step.display_name,
                        "sequenceNumber": first_step.sequence_number,
                        "assignedAt": now,
                    },
                    "placeholderTask": {"id": task.id, "name": task.name, "isPlaceholder": True},
                },
            )
            db.session.add(execution)
            db.session.flush()
    except (LookupError, ValidationError) as exc:
        logger.warning("Bootstrap failed: %s", exc, extra={"role_name": initial_role})
        return _failure(f"Bootstrap failed: {exc}")
    except SQLAlchemyError as exc:
        logger.exception("Bootstrap failed", extra={"role_name": initial_role})
        return _failure(f"Bootstrap failed: {exc}")

    logger.info(
        "Workflow bootstrapped for '%s' as %s", task_name, initial_role,
        extra={"task_id": task.id, "execution_id": execution.id, "role_name": initial_role},
    )
    return {
        "success": True,
        "placeholderTask": task.to_dict(),
        "workflowExecution": execution.to_dict(),
        "firstStep": first_step.to_dict(),
        "message": (
            "Workflow successfully bootstrapped with placeholder task. "
            "The boomerang role creates the real task once setup and analysis are done."
        ),
        "resources": {
            "taskId": str(task.id),
            "executionId": execution.id,
            "firstStepId": first_step.id,
        },
    }
