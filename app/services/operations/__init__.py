"""
Domain Operations services dispatched by name from the core orchestrator.

Each module exposes:
    SERVICE_NAME          registry key ("TaskOperations", ...)
    ERROR_CODE            code reported when an operation fails
    SUPPORTED_OPERATIONS  operation names accepted by ``execute``
    INPUT_MODEL           pydantic model the parameters are validated against
    execute(operation, params) -> dict

Transaction policy: operations flush; the tool or blueprint boundary commits.
"""

import json
import logging

from pydantic import ValidationError as PydanticValidationError

from app.core.exceptions import InvalidOperationError, ValidationError

logger = logging.getLogger(__name__)


def parse_input(model, operation, params):
    """Validate camelCase ``params`` against ``model``; raise ValidationError on failure."""
    data = dict(params or {})
    data["operation"] = operation
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        errors = json.loads(exc.json(include_url=False))
        first = errors[0] if errors else {}
        location = ".".join(str(p) for p in first.get("loc", ()))
        message = first.get("msg", "invalid parameters")
        raise ValidationError(
            f"Invalid parameters for '{operation}': {location + ': ' if location else ''}{message}",
            details={"errors": errors},
        ) from exc


def dispatch(service_name, handlers, input_model, operation, params):
    handler = handlers.get(operation)
    if handler is None:
        raise InvalidOperationError(service_name, operation, sorted(handlers))
    data = parse_input(input_model, operation, params)
    logger.debug(
        "%s.%s", service_name, operation,
        extra={"service_name": service_name, "operation": operation},
    )
    return handler(data)
