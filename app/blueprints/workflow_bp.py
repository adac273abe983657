"""
Workflow Blueprint: read-mostly HTTP views over the workflow tables.

Endpoints:
    GET  /api/v1/workflow/roles                                 - active roles by priority
    GET  /api/v1/workflow/roles/<name>/steps                    - a role's steps with actions
    GET  /api/v1/workflow/executions/<id>                       - execution with next steps
    GET  /api/v1/workflow/tasks/<id>/delegations                - hand-off history
    POST /api/v1/workflow/tasks/<id>/steps/<step_id>/start      - open a step attempt

Agents normally use the MCP tools; these routes serve dashboards and scripts.
The start route commits here; services only flush.
"""

import logging

from flask import Blueprint, jsonify, request

from app.core.exceptions import (
    ConcurrentUpdateError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from app.models import db
from app.models.task import Task
from app.services import (
    role_transition_service,
    step_execution_service,
    step_query_service,
    workflow_execution_service,
)
from app.utils.helpers import get_or_404

logger = logging.getLogger(__name__)

workflow_bp = Blueprint("workflow", __name__, url_prefix="/api/v1/workflow")


# ── Error handlers ────────────────────────────────────────────────────────────


@workflow_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return jsonify({"error": str(error)}), 404


@workflow_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return jsonify({"error": str(error), "details": error.details}), 422


@workflow_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return jsonify({"error": str(error)}), 409


@workflow_bp.errorhandler(ConcurrentUpdateError)
def _handle_concurrent(error: ConcurrentUpdateError):
    return jsonify({"error": str(error), "retryable": True}), 409


# ── Roles / steps ─────────────────────────────────────────────────────────────


@workflow_bp.route("/roles", methods=["GET"])
def list_roles():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    roles = step_query_service.list_roles(active_only=not include_inactive)
    return jsonify({"roles": [r.to_dict() for r in roles], "total": len(roles)}), 200


@workflow_bp.route("/roles/<string:name>/steps", methods=["GET"])
def list_role_steps(name):
    role = step_query_service.resolve_role(name)
    steps = step_query_service.get_steps_by_role(role.id)
    return jsonify({
        "role": role.to_dict(),
        "steps": [s.to_dict(include_children=True) for s in steps],
        "total": len(steps),
    }), 200


# ── Executions / tasks ────────────────────────────────────────────────────────


@workflow_bp.route("/executions/<string:execution_id>", methods=["GET"])
def get_execution(execution_id):
    return jsonify(workflow_execution_service.get_execution(execution_id=execution_id)), 200


@workflow_bp.route("/tasks/<int:task_id>/delegations", methods=["GET"])
def list_delegations(task_id):
    _, err = get_or_404(Task, task_id)
    if err:
        return err
    history = role_transition_service.get_transition_history(task_id)
    return jsonify({"taskId": task_id, "delegations": history, "total": len(history)}), 200


@workflow_bp.route("/tasks/<int:task_id>/steps/<string:step_id>/start", methods=["POST"])
def start_step(task_id, step_id):
    """
    Open an attempt at a step and return its guidance.

    Body (optional): {"roleId": "...", "executionId": "..."}
    """
    _, err = get_or_404(Task, task_id)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    try:
        result = step_execution_service.execute_step(
            task_id, step_id, role_id=data.get("roleId"), execution_id=data.get("executionId"),
        )
    except Exception:
        # Keep the FAILED attempt execute_step recorded before propagating
        db.session.commit()
        raise
    db.session.commit()
    logger.info("Step %s started over HTTP", step_id, extra={"task_id": task_id, "step_id": step_id})
    return jsonify(result), 201
