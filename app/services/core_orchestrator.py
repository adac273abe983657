"""
Core Service Orchestrator: name-based dispatch to the Operations services.

    execute_service_call(serviceName, operation, parameters)
        → {success, serviceName, operation, data | error, errorCode, duration}
    execute_batch_service_calls(calls)
        → {overallSuccess, results, successCount, failureCount, totalDuration}
    execute_step_with_services(step_id, calls, mode, continue_on_failure)

Each call runs inside a SAVEPOINT so a failing call rolls back only its own
writes. Failures are reported in the result, never raised.
"""

from __future__ import annotations

import logging
import time

from app.core.exceptions import InvalidOperationError, ServiceNotFoundError, ValidationError
from app.models import db
from app.services.operations import (
    planning_operations,
    research_operations,
    review_operations,
    subtask_operations,
    task_operations,
    workflow_operations,
)
from app.utils.errors import E

logger = logging.getLogger(__name__)

SERVICE_REGISTRY = {
    module.SERVICE_NAME: module
    for module in (
        task_operations,
        planning_operations,
        workflow_operations,
        review_operations,
        research_operations,
        subtask_operations,
    )
}

EXECUTION_MODES = ("sequential", "parallel")


def get_supported_services() -> dict[str, list[str]]:
    return {name: list(module.SUPPORTED_OPERATIONS) for name, module in SERVICE_REGISTRY.items()}


def is_operation_supported(service_name: str, operation: str) -> bool:
    module = SERVICE_REGISTRY.get(service_name)
    return module is not None and operation in module.SUPPORTED_OPERATIONS


def _validate_call(service_name, operation):
    module = SERVICE_REGISTRY.get(service_name)
    if module is None:
        raise ServiceNotFoundError(service_name)
    if operation not in module.SUPPORTED_OPERATIONS:
        raise InvalidOperationError(service_name, operation, list(module.SUPPORTED_OPERATIONS))
    return module


def execute_service_call(service_name: str, operation: str, parameters: dict | None = None) -> dict:
    start = time.perf_counter()
    log_extra = {"service_name": service_name, "operation": operation}
    module = None
    try:
        module = _validate_call(service_name, operation)
        with db.session.begin_nested():
            data = module.execute(operation, parameters or {})
    except ServiceNotFoundError as exc:
        return _failure(service_name, operation, exc, E.SERVICE_NOT_FOUND, start)
    except InvalidOperationError as exc:
        return _failure(service_name, operation, exc, E.INVALID_OPERATION, start, exc.details)
    except ValidationError as exc:
        return _failure(service_name, operation, exc, module.ERROR_CODE, start, exc.details)
    except Exception as exc:
        logger.exception("Service call failed: %s.%s", service_name, operation, extra=log_extra)
        return _failure(service_name, operation, exc, module.ERROR_CODE, start)

    duration = round((time.perf_counter() - start) * 1000)
    logger.debug(
        "Service call completed: %s.%s (%dms)", service_name, operation, duration,
        extra={**log_extra, "duration_ms": duration},
    )
    return {
        "success": True,
        "serviceName": service_name,
        "operation": operation,
        "data": data,
        "duration": duration,
    }


def _failure(service_name, operation, exc, code, start, details=None) -> dict:
    duration = round((time.perf_counter() - start) * 1000)
    logger.warning(
        "Service call rejected: %s.%s: %s", service_name, operation, exc,
        extra={"service_name": service_name, "operation": operation},
    )
    result = {
        "success": False,
        "serviceName": service_name,
        "operation": operation,
        "error": str(exc),
        "errorCode": code,
        "duration": duration,
    }
    if details:
        result["details"] = details
    return result


def execute_batch_service_calls(calls: list[dict]) -> dict:
    """Run every call in order. ``overallSuccess`` is true when at least one succeeded."""
    start = time.perf_counter()
    results = [
        execute_service_call(c.get("serviceName"), c.get("operation"), c.get("parameters"))
        for c in calls
    ]
    success_count = sum(1 for r in results if r["success"])
    return {
        "overallSuccess": success_count > 0,
        "results": results,
        "successCount": success_count,
        "failureCount": len(results) - success_count,
        "totalDuration": round((time.perf_counter() - start) * 1000),
    }


def execute_step_with_services(step_id: str, calls: list[dict], execution_mode: str = "sequential",
                               continue_on_failure: bool = False) -> dict:
    """
    Run a step's service calls.

    sequential  stops at the first failure unless ``continue_on_failure``
    parallel    runs the whole batch, then fails if nothing succeeded

    Raises ValidationError when there is nothing to run, an unknown mode is
    given, or a failure is not tolerated.
    """
    if not calls:
        raise ValidationError(f"No service calls provided for step: {step_id}")
    if execution_mode not in EXECUTION_MODES:
        raise ValidationError(f"Execution mode must be one of: {', '.join(EXECUTION_MODES)}")

    logger.debug(
        "Executing step %s with %d service calls (%s)", step_id, len(calls), execution_mode,
        extra={"step_id": step_id},
    )

    if execution_mode == "parallel":
        batch = execute_batch_service_calls(calls)
        if not batch["overallSuccess"] and not continue_on_failure:
            raise ValidationError(
                f"Step execution failed: {step_id}. "
                f"{batch['failureCount']} of {len(calls)} operations failed.",
                details={"results": batch["results"]},
            )
        return {"stepId": step_id, "executionMode": execution_mode, **batch}

    results = []
    for call in calls:
        result = execute_service_call(call.get("serviceName"), call.get("operation"), call.get("parameters"))
        results.append(result)
        if not result["success"] and not continue_on_failure:
            raise ValidationError(
                f"Step execution failed at operation "
                f"{result['serviceName']}.{result['operation']}: {result['error']}",
                details={"results": results},
            )

    success_count = sum(1 for r in results if r["success"])
    return {
        "stepId": step_id,
        "executionMode": execution_mode,
        "results": results,
        "overallSuccess": success_count > 0,
        "successCount": success_count,
        "failureCount": len(results) - success_count,
        "totalDuration": sum(r["duration"] for r in results),
    }
