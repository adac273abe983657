"""Standardised error codes and HTTP error responses.

Usage
-----
    from app.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Execution not found")
    return api_error(E.VALIDATION_REQUIRED, "taskId is required")

The MCP surface reuses the same ``E`` constants for the ``code`` field of its
error envelope (see ``app.mcp.envelope``).
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for HTTP application errors
     • bare UPPER_SNAKE names for MCP tool error codes
    """

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"

    # MCP tool errors (returned inside the tool envelope, never raised)
    MCP_OPERATION_ERROR = "MCP_OPERATION_ERROR"
    STEP_GUIDANCE_ERROR = "STEP_GUIDANCE_ERROR"
    STEP_COMPLETION_ERROR = "STEP_COMPLETION_ERROR"
    STEP_PROGRESS_ERROR = "STEP_PROGRESS_ERROR"
    NEXT_STEP_ERROR = "NEXT_STEP_ERROR"
    WORKFLOW_EXECUTION_FAILED = "WORKFLOW_EXECUTION_FAILED"
    TRANSITION_QUERY_ERROR = "TRANSITION_QUERY_ERROR"
    TRANSITION_VALIDATION_ERROR = "TRANSITION_VALIDATION_ERROR"
    TRANSITION_EXECUTION_ERROR = "TRANSITION_EXECUTION_ERROR"
    TRANSITION_HISTORY_ERROR = "TRANSITION_HISTORY_ERROR"
    BOOTSTRAP_ERROR = "BOOTSTRAP_ERROR"
    WORKFLOW_GUIDANCE_ERROR = "WORKFLOW_GUIDANCE_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNKNOWN_TOOL = "UNKNOWN_TOOL"

    # Operations-service failures (inside orchestrator results)
    TASK_OPERATION_FAILED = "TASK_OPERATION_FAILED"
    PLANNING_OPERATION_FAILED = "PLANNING_OPERATION_FAILED"
    WORKFLOW_OPERATION_FAILED = "WORKFLOW_OPERATION_FAILED"
    REVIEW_OPERATION_FAILED = "REVIEW_OPERATION_FAILED"
    RESEARCH_OPERATION_FAILED = "RESEARCH_OPERATION_FAILED"
    SUBTASK_OPERATION_FAILED = "INDIVIDUAL_SUBTASK_OPERATION_FAILED"
    SERVICE_NOT_FOUND = "SERVICE_NOT_FOUND"
    INVALID_OPERATION = "INVALID_OPERATION"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload.

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status
