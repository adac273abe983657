"""
Server-wide exception hierarchy.

Services raise these types; the MCP tool layer converts them into the error
envelope and HTTP blueprints register handlers against them once, so every
surface reports the same failure the same way.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="WorkflowStep", resource_id=step_id)
    raise ValidationError("taskId is required", details={"taskId": "missing"})
"""


class NotFoundError(Exception):
    """Raised when a requested record does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Task", "WorkflowStep").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Maps to HTTP 422 in blueprint error handlers and VALIDATION_ERROR in
    tool responses.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique value. Maps to HTTP 409."""

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


# ── Workflow-specific subclasses ─────────────────────────────────────────────


class StepNotFoundError(NotFoundError):
    def __init__(self, step_id: str | None) -> None:
        super().__init__("WorkflowStep", step_id)


class ServiceNotFoundError(NotFoundError):
    """No Operations service is registered under the requested name."""

    def __init__(self, service_name: str) -> None:
        self.service_name = service_name
        super().__init__("Service", service_name)


class InvalidOperationError(ValidationError):
    """The service exists but does not support the requested operation."""

    def __init__(self, service_name: str, operation: str, supported: list[str] | None = None) -> None:
        self.service_name = service_name
        self.operation = operation
        super().__init__(
            f"Operation '{operation}' is not supported by {service_name}",
            details={"supportedOperations": supported or []},
        )


class ConcurrentUpdateError(Exception):
    """Another writer advanced the same execution first; the caller may retry."""

    def __init__(self, execution_id: str) -> None:
        self.execution_id = execution_id
        super().__init__(f"WorkflowExecution id={execution_id} was modified concurrently")
