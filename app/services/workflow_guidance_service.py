"""
Workflow Guidance Service: role-level orientation for an agent.

Current step resolution:
    1. the explicit step_id
    2. the current step of the task's active execution, when it is in this role
    3. the role's first step
"""

import logging

from flask import current_app
from sqlalchemy import select

from app.core.exceptions import NotFoundError
from app.models import db
from app.models.workflow import WorkflowRole
from app.services import step_query_service

logger = logging.getLogger(__name__)


def _quality_reminders(role: WorkflowRole) -> list[str]:
    reminders = (role.capabilities or {}).get("qualityReminders")
    if not isinstance(reminders, list):
        return []
    return [r for r in reminders if isinstance(r, str)]


def _resolve_current_step(role, task_id=None, step_id=None):
    if step_id:
        return step_query_service.get_step(step_id)
    if task_id is not None:
        execution = step_query_service.get_active_execution(task_id)
        if execution is not None and execution.current_role_id == role.id and execution.current_step:
            return execution.current_step
    return step_query_service.get_first_step(role.id)


def get_workflow_guidance(role_name, task_id=None, step_id=None, project_path=None) -> dict:
    role = db.session.execute(
        select(WorkflowRole).where(WorkflowRole.name == role_name)
    ).scalar_one_or_none()
    if role is None:
        raise NotFoundError(f"Workflow role '{role_name}'")

    step = _resolve_current_step(role, task_id, step_id)
    actions = list(step.actions) if step is not None else []

    logger.debug(
        "Workflow guidance for %s", role.name,
        extra={"role_name": role.name, "task_id": task_id, "step_id": step.id if step else None},
    )
    return {
        "currentRole": {
            "name": role.name,
            "displayName": role.display_name,
            "description": role.description,
            "capabilities": role.capabilities or {},
        },
        "currentStep": (
            {
                "id": step.id,
                "name": step.name,
                "displayName": step.display_name,
                "description": step.description,
                "stepType": step.step_type,
                "sequenceNumber": step.sequence_number,
                "estimatedTime": step.estimated_time or "",
                "behavioralContext": step.behavioral_context,
                "approachGuidance": step.approach_guidance,
                "qualityChecklist": step.quality_checklist,
            }
            if step is not None else None
        ),
        "nextActions": [
            {
                "name": a.name,
                "actionType": a.action_type,
                "actionData": a.action_data or {},
                "sequenceOrder": a.sequence_order,
            }
            for a in actions
        ],
        "qualityReminders": _quality_reminders(role),
        "projectContext": {
            "projectPath": project_path or current_app.config["PROJECT_ROOT"],
        },
    }
