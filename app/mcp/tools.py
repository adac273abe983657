"""
MCP tool registry and dispatch.

Each tool is a plain function registered with ``@tool``. ``call_tool`` is the
only place a tool runs:

    1. unknown name           → UNKNOWN_TOOL envelope
    2. pydantic validation    → VALIDATION_ERROR envelope
    3. handler                → payload, then ``db.session.commit()``
    4. any exception          → rollback, log, error envelope with the tool's code

Nothing raised by a handler reaches the transport.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Callable

from pydantic import ValidationError as PydanticValidationError

from app.core.exceptions import (
    ConcurrentUpdateError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from app.mcp import schemas
from app.mcp.envelope import error_response, success_response
from app.models import db
from app.models.workflow import WorkflowExecution
from app.services import (
    core_orchestrator,
    role_transition_service,
    step_execution_service,
    step_guidance_service,
    step_progress_service,
    step_query_service,
    workflow_bootstrap_service,
    workflow_execution_service,
    workflow_guidance_service,
)
from app.utils.errors import E
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)

DOMAIN_ERRORS = (NotFoundError, ValidationError, ConflictError, ConcurrentUpdateError)


class ToolError(Exception):
    """A handler finished but the outcome must be reported as an error envelope."""

    def __init__(self, message: str, details=None) -> None:
        self.details = details
        super().__init__(message)


@dataclass(frozen=True)
class RegisteredTool:
    name: str
    description: str
    input_model: type
    handler: Callable
    error_code: str
    failure_message: str

    def input_schema(self) -> dict:
        return self.input_model.model_json_schema(by_alias=True)


TOOL_REGISTRY: dict[str, RegisteredTool] = {}


def tool(name, description, input_model, error_code, failure_message):
    def decorator(fn):
        TOOL_REGISTRY[name] = RegisteredTool(name, description, input_model, fn, error_code, failure_message)
        return fn
    return decorator


def list_tools() -> list[dict]:
    return [
        {"name": s.name, "description": s.description, "inputSchema": s.input_schema()}
        for s in TOOL_REGISTRY.values()
    ]


def call_tool(name: str, arguments: dict | None) -> dict:
    """Run a tool and return its envelope. Never raises."""
    entry = TOOL_REGISTRY.get(name)
    if entry is None:
        logger.warning("Unknown tool requested: %s", name, extra={"tool_name": name})
        return error_response(
            f"Unknown tool: {name}", {"availableTools": sorted(TOOL_REGISTRY)}, E.UNKNOWN_TOOL,
        )

    try:
        params = entry.input_model.model_validate(arguments or {})
    except PydanticValidationError as exc:
        logger.info("Invalid input for %s", name, extra={"tool_name": name})
        return error_response(
            f"Invalid input for {name}",
            json.loads(exc.json(include_url=False)),
            E.VALIDATION_ERROR,
        )

    start = time.perf_counter()
    try:
        payload = entry.handler(params)
        db.session.commit()
    except ToolError as exc:
        db.session.rollback()
        logger.info("Tool %s reported failure: %s", name, exc, extra={"tool_name": name})
        return error_response(str(exc), exc.details, entry.error_code)
    except DOMAIN_ERRORS as exc:
        db.session.rollback()
        logger.warning("Tool %s rejected: %s", name, exc, extra={"tool_name": name})
        return error_response(entry.failure_message, str(exc), entry.error_code)
    except Exception as exc:
        db.session.rollback()
        logger.exception("Tool %s failed", name, extra={"tool_name": name})
        return error_response(entry.failure_message, str(exc), entry.error_code)

    duration = round((time.perf_counter() - start) * 1000)
    logger.info(
        "Tool %s completed (%dms)", name, duration,
        extra={"tool_name": name, "duration_ms": duration},
    )
    return success_response(payload)


# ── Helpers ──────────────────────────────────────────────────────────────────


def _execution_by_id(execution_id) -> WorkflowExecution:
    execution = db.session.get(WorkflowExecution, execution_id)
    if execution is None:
        raise NotFoundError("WorkflowExecution", execution_id)
    return execution


def _transition_context(project_path) -> dict:
    return {"projectPath": project_path} if project_path else {}


def _parameter_lists(service_name) -> tuple[list[str], list[str]]:
    """Required and optional camelCase parameters of a service, ``operation`` excluded."""
    module = core_orchestrator.SERVICE_REGISTRY.get(service_name)
    if module is None:
        return [], []
    schema = module.INPUT_MODEL.model_json_schema(by_alias=True)
    required = [p for p in schema.get("required", []) if p != "operation"]
    optional = [p for p in schema.get("properties", {}) if p not in required and p != "operation"]
    return required, optional


def _local_commands(step, mcp_actions) -> list[str]:
    commands = []
    for action in step.actions:
        if action.action_type != "COMMAND":
            continue
        command = (action.action_data or {}).get("command")
        if isinstance(command, str) and command:
            commands.append(command)
    commands.extend(f"Execute {a['serviceName']}.{a['operation']}" for a in mcp_actions)
    return commands or ["No specific commands available"]


# ── Step tools ───────────────────────────────────────────────────────────────


@tool(
    "get_step_guidance",
    "Guidance for the current (or given) step: local commands, validation criteria, "
    "behavioural and approach guidance, and the MCP operations to call.",
    schemas.GetStepGuidanceInput,
    E.STEP_GUIDANCE_ERROR,
    "Failed to get step guidance",
)
def get_step_guidance(params):
    role = step_query_service.resolve_role(params.role_id)
    execution = _execution_by_id(params.execution_id) if params.execution_id else None
    task_id = params.task_id if params.task_id is not None else execution.task_id
    if execution is None:
        execution = step_query_service.get_active_execution(task_id)

    step_id = params.step_id
    if not step_id and execution is not None and execution.current_role_id == role.id:
        step_id = execution.current_step_id
    if not step_id:
        step = step_query_service.get_next_available_step(role.id, task_id=task_id)
        if step is None:
            raise NotFoundError(f"Available step for role '{role.name}'")
        step_id = step.id

    guidance = step_guidance_service.get_step_guidance(task_id, role.id, step_id)
    step = step_query_service.get_step(step_id)

    payload = {
        "stepInfo": {
            "taskId": task_id,
            "roleId": role.id,
            "roleName": role.name,
            "executionId": execution.id if execution else None,
            **guidance["step"],
        },
        "localExecution": {
            "commands": _local_commands(step, guidance["mcpActions"]),
            "description": guidance["step"]["description"],
        },
        "validation": {
            "successCriteria": guidance["successCriteria"],
            "failureCriteria": guidance["failureCriteria"],
            "qualityChecklist": guidance["qualityChecklist"],
        },
        "behavioralGuidance": guidance["behavioralGuidance"],
        "approachGuidance": guidance["approachGuidance"],
        "troubleshooting": guidance["troubleshooting"],
    }
    if guidance["mcpActions"]:
        operations = []
        for action in guidance["mcpActions"]:
            required, optional = _parameter_lists(action["serviceName"])
            operations.append({
                "name": action["name"],
                "serviceName": action["serviceName"],
                "operation": action["operation"],
                "parameters": action["parameters"],
                "requiredParameters": required,
                "optionalParameters": optional,
                "sequenceOrder": action["sequenceOrder"],
            })
        payload["mcpOperations"] = operations
    return payload


@tool(
    "report_step_completion",
    "Report the outcome of a step. On success the execution advances to the next step "
    "of the role; on failure the attempt is recorded and the step can be retried.",
    schemas.ReportStepCompletionInput,
    E.STEP_COMPLETION_ERROR,
    "Failed to report step completion",
)
def report_step_completion(params):
    result = params.result
    execution_data = dict(params.execution_data or {})
    processed = step_execution_service.process_execution_results(
        [r.model_dump(by_alias=True) for r in params.mcp_results or []]
    )
    if result == "success" and not processed["success"]:
        result = "failure"
        execution_data["error"] = "; ".join(processed["errors"])
        execution_data["mcpErrors"] = processed["errors"]

    completion = step_execution_service.process_step_completion(
        params.task_id,
        params.step_id,
        result,
        execution_data,
        params.execution_time,
        params.execution_id,
    )

    if params.execution_id:
        execution = _execution_by_id(params.execution_id)
    else:
        execution = step_query_service.get_active_execution(params.task_id)

    next_step = completion["nextStep"]
    if next_step is not None:
        message = f"Continue with step '{next_step['name']}'"
    elif result == "success":
        message = "No further steps in this role; consider a role transition"
    else:
        message = "Retry the step after reviewing the error"
    return {
        "completion": {
            "stepId": completion["stepId"],
            "result": result,
            "status": "reported",
            "reportedAt": utcnow().isoformat(),
        },
        "nextGuidance": {
            "hasNextStep": next_step is not None,
            "nextStep": next_step,
            "message": message,
        },
        "execution": (
            {
                "id": execution.id,
                "stepsCompleted": execution.steps_completed,
                "currentStepId": execution.current_step_id,
            }
            if execution is not None else None
        ),
        "errors": processed["errors"],
    }


@tool(
    "execute_mcp_operation",
    "Call an Operations service directly: serviceName is one of TaskOperations, "
    "PlanningOperations, WorkflowOperations, ReviewOperations, ResearchOperations, "
    "SubtaskOperations.",
    schemas.ExecuteMcpOperationInput,
    E.MCP_OPERATION_ERROR,
    "Failed to execute MCP operation",
)
def execute_mcp_operation(params):
    result = core_orchestrator.execute_service_call(
        params.service_name, params.operation, params.parameters,
    )
    if not result["success"]:
        raise ToolError(
            f"Failed to execute {params.service_name}.{params.operation}",
            {
                "error": result["error"],
                "errorCode": result["errorCode"],
                "supportedServices": core_orchestrator.get_supported_services(),
                **({"validation": result["details"]} if "details" in result else {}),
            },
        )
    return result


@tool(
    "get_step_progress",
    "Execution status and every recorded step attempt for a task.",
    schemas.GetStepProgressInput,
    E.STEP_PROGRESS_ERROR,
    "Failed to get step progress",
)
def get_step_progress(params):
    execution = workflow_execution_service.latest_execution_for_task(params.task_id)
    progress = step_progress_service.get_step_progress(params.task_id, params.role_id)

    if execution is None:
        status = "no_execution"
    elif execution.completed_at is not None:
        status = "completed"
    else:
        status = "in_progress"

    return {
        "taskId": params.task_id,
        "status": status,
        "executionId": execution.id if execution else None,
        "currentStep": (
            execution.current_step.brief() if execution and execution.current_step else None
        ),
        "progress": (
            workflow_execution_service.calculate_progress_metrics(execution) if execution else None
        ),
        "attempts": progress["progress"],
        "summary": progress["summary"],
    }


@tool(
    "get_next_available_step",
    "The next step of a role that has not been completed for the task.",
    schemas.GetNextStepInput,
    E.NEXT_STEP_ERROR,
    "Failed to get next available step",
)
def get_next_available_step(params):
    role = step_query_service.resolve_role(params.role_id)
    execution = step_query_service.get_active_execution(params.task_id)

    if execution is not None and execution.current_role_id != role.id:
        current = execution.current_role
        return {
            "status": "role_mismatch",
            "taskId": params.task_id,
            "roleName": role.name,
            "currentRole": current.name if current else None,
            "nextStep": None,
            "message": f"Task is currently assigned to role '{current.name if current else 'unknown'}'",
        }

    next_step = step_progress_service.get_next_available_step(role.id, params.task_id)
    if next_step is None:
        return {
            "status": "no_steps_available",
            "taskId": params.task_id,
            "roleName": role.name,
            "nextStep": None,
            "message": f"All steps for role '{role.name}' are completed",
        }
    return {
        "status": "step_available",
        "taskId": params.task_id,
        "roleName": role.name,
        "nextStep": next_step,
        "message": f"Next step: {next_step['displayName'] or next_step['name']}",
    }


# ── Workflow execution ───────────────────────────────────────────────────────


def _orchestration_config(params):
    config = params.orchestration_config
    return config.model_dump(by_alias=True) if config is not None else None


_EXECUTION_OPERATIONS = {
    "create_execution": lambda p: workflow_execution_service.create_execution(
        p.task_id, p.role_name, p.execution_mode, p.auto_created_task, p.execution_context,
    ),
    "get_execution": lambda p: workflow_execution_service.get_execution(p.task_id, p.execution_id),
    "update_execution": lambda p: workflow_execution_service.update_execution(
        p.execution_id, p.update_data,
    ),
    "complete_execution": lambda p: workflow_execution_service.complete_execution(p.execution_id),
    "get_active_executions": lambda p: workflow_execution_service.get_active_executions(),
    "execute_step_with_services": lambda p: workflow_execution_service.execute_step_with_services(
        p.task_id, p.step_id, _orchestration_config(p),
    ),
    "get_execution_context": lambda p: workflow_execution_service.get_execution_context(
        p.execution_id, p.data_key,
    ),
    "update_execution_context": lambda p: workflow_execution_service.update_execution_context(
        p.execution_id, p.context_updates,
    ),
    "handle_execution_error": lambda p: workflow_execution_service.handle_execution_error(
        p.execution_id, p.error_message,
    ),
}


@tool(
    "workflow_execution_operations",
    "Manage workflow executions: create, get, update, complete, list active, run a "
    "step's service calls, read or merge execution context, record errors.",
    schemas.WorkflowExecutionOperationsInput,
    E.WORKFLOW_EXECUTION_FAILED,
    "Failed to execute workflow operation",
)
def workflow_execution_operations(params):
    data = _EXECUTION_OPERATIONS[params.operation](params)
    return {
        "operation": params.operation,
        "taskId": params.task_id,
        "success": True,
        "data": data,
    }


# ── Role transitions ─────────────────────────────────────────────────────────


@tool(
    "get_role_transitions",
    "Transitions out of a role, each validated for the task, plus up to three recommendations.",
    schemas.GetRoleTransitionsInput,
    E.TRANSITION_QUERY_ERROR,
    "Failed to get role transitions",
)
def get_role_transitions(params):
    context = _transition_context(params.project_path)
    transitions = role_transition_service.get_role_transitions(
        params.from_role_name, params.task_id, include_validation=True, context=context,
    )
    recommended = role_transition_service.get_recommended_transitions(
        params.from_role_name, params.task_id, context, validated=transitions,
    )
    return {
        "fromRole": params.from_role_name,
        "taskId": params.task_id,
        "availableTransitions": transitions,
        "recommendations": recommended,
        "summary": {
            "total": len(transitions),
            "valid": sum(1 for t in transitions if t["validation"]["valid"]),
        },
    }


@tool(
    "validate_transition",
    "Check a transition's conditions and requirements for a task without changing anything.",
    schemas.ValidateTransitionInput,
    E.TRANSITION_VALIDATION_ERROR,
    "Failed to validate transition",
)
def validate_transition(params):
    validation = role_transition_service.validate_transition(
        params.transition_id, params.task_id, _transition_context(params.project_path),
    )
    return {
        "transitionId": params.transition_id,
        "taskId": params.task_id,
        "validation": validation,
        "canExecute": validation["valid"],
    }


@tool(
    "execute_transition",
    "Validate and perform a role hand-off; records a delegation and moves the execution "
    "to the first step of the target role.",
    schemas.ExecuteTransitionInput,
    E.TRANSITION_EXECUTION_ERROR,
    "Failed to execute transition",
)
def execute_transition(params):
    result = role_transition_service.execute_transition(
        params.transition_id,
        params.task_id,
        params.handoff_message,
        _transition_context(params.project_path),
    )
    return {
        "success": result["success"],
        "transitionId": params.transition_id,
        "transitionResult": result,
    }


@tool(
    "get_transition_history",
    "Role hand-offs recorded for a task, newest first.",
    schemas.GetTransitionHistoryInput,
    E.TRANSITION_HISTORY_ERROR,
    "Failed to get transition history",
)
def get_transition_history(params):
    history = role_transition_service.get_transition_history(params.task_id)
    return {
        "taskId": params.task_id,
        "history": history,
        "totalTransitions": len(history),
    }


# ── Bootstrap / role guidance ────────────────────────────────────────────────


@tool(
    "bootstrap_workflow",
    "Start a workflow before the real task exists: creates a placeholder task and an "
    "execution positioned on the first step of the initial role.",
    schemas.BootstrapWorkflowInput,
    E.BOOTSTRAP_ERROR,
    "Failed to bootstrap workflow",
)
def bootstrap_workflow(params):
    result = workflow_bootstrap_service.bootstrap_workflow(
        params.task_name,
        params.initial_role,
        execution_mode=params.execution_mode,
        task_description=params.task_description,
        business_requirements=params.business_requirements,
        technical_requirements=params.technical_requirements,
        acceptance_criteria=params.acceptance_criteria,
        priority=params.priority,
        project_path=params.project_path,
        execution_context=params.execution_context,
    )
    if not result["success"]:
        raise ToolError(result["message"], result)
    return result


@tool(
    "get_workflow_guidance",
    "Role-level orientation: role profile, current step, its actions and quality reminders.",
    schemas.GetWorkflowGuidanceInput,
    E.WORKFLOW_GUIDANCE_ERROR,
    "Failed to get workflow guidance",
)
def get_workflow_guidance(params):
    guidance = workflow_guidance_service.get_workflow_guidance(
        params.role_name, params.task_id, params.step_id, params.project_path,
    )
    if params.execution_data:
        guidance["executionData"] = params.execution_data
    return guidance
