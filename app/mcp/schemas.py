"""
Pydantic input models for the MCP tools.

Attribute names are snake_case; ``CamelModel`` exposes them as camelCase,
which is what ``model_json_schema(by_alias=True)`` advertises to clients.
"""

from typing import Any, Literal, Optional

from pydantic import Field, model_validator

from app.services.operations.schemas import CamelModel, RoleName

ExecutionMode = Literal["GUIDED", "AUTOMATED", "HYBRID"]
TaskPriority = Literal["Low", "Medium", "High", "Critical"]


# ── Step tools ───────────────────────────────────────────────────────────────


class GetStepGuidanceInput(CamelModel):
    task_id: Optional[int] = Field(None, description="Task the step belongs to")
    execution_id: Optional[str] = Field(None, description="Alternative to taskId")
    role_id: str = Field(..., description="Role id or role name")
    step_id: Optional[str] = Field(
        None, description="Defaults to the execution's current step, then the next available one",
    )

    @model_validator(mode="after")
    def _task_or_execution(self):
        if self.task_id is None and not self.execution_id:
            raise ValueError("Either taskId or executionId is required")
        return self


class McpActionResult(CamelModel):
    action_name: str
    success: bool
    error: Optional[str] = None
    data: Any = None


class ReportStepCompletionInput(CamelModel):
    task_id: Optional[int] = None
    execution_id: Optional[str] = None
    step_id: str
    result: Literal["success", "failure"]
    execution_data: Optional[dict[str, Any]] = None
    execution_time: Optional[int] = Field(None, ge=0, description="Milliseconds spent on the step")
    mcp_results: Optional[list[McpActionResult]] = None

    @model_validator(mode="after")
    def _task_or_execution(self):
        if self.task_id is None and not self.execution_id:
            raise ValueError("Either taskId or executionId is required")
        return self


class ExecuteMcpOperationInput(CamelModel):
    service_name: str = Field(..., description="TaskOperations, PlanningOperations, ...")
    operation: str
    parameters: dict[str, Any] = Field(default_factory=dict)


class GetStepProgressInput(CamelModel):
    task_id: int
    role_id: Optional[str] = None


class GetNextStepInput(CamelModel):
    role_id: str
    task_id: int


# ── Workflow execution ───────────────────────────────────────────────────────


class ServiceCall(CamelModel):
    service_name: str
    operation: str
    parameters: dict[str, Any] = Field(default_factory=dict)


class OrchestrationConfig(CamelModel):
    service_calls: list[ServiceCall] = Field(default_factory=list)
    execution_mode: Literal["sequential", "parallel"] = "sequential"
    continue_on_failure: bool = False


class WorkflowExecutionOperationsInput(CamelModel):
    operation: Literal[
        "create_execution",
        "get_execution",
        "update_execution",
        "complete_execution",
        "get_active_executions",
        "execute_step_with_services",
        "get_execution_context",
        "update_execution_context",
        "handle_execution_error",
    ]
    task_id: Optional[int] = None
    execution_id: Optional[str] = None
    role_name: Optional[RoleName] = None
    execution_mode: Optional[ExecutionMode] = None
    auto_created_task: bool = False
    execution_context: Optional[dict[str, Any]] = None
    update_data: Optional[dict[str, Any]] = Field(
        None, description="currentStepId, executionMode, executionState, executionContext, "
                          "progressPercentage, totalSteps",
    )
    step_id: Optional[str] = None
    orchestration_config: Optional[OrchestrationConfig] = None
    data_key: Optional[str] = None
    context_updates: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None

    @model_validator(mode="after")
    def _required_per_operation(self):
        if self.operation == "create_execution" and not self.role_name:
            raise ValueError("roleName is required for create_execution")
        return self


# ── Role transitions ─────────────────────────────────────────────────────────


class GetRoleTransitionsInput(CamelModel):
    from_role_name: RoleName
    task_id: int
    role_id: Optional[str] = None
    project_path: Optional[str] = None


class ValidateTransitionInput(CamelModel):
    transition_id: str = Field(..., description="Transition id or transition name")
    task_id: int
    role_id: Optional[str] = None
    project_path: Optional[str] = None


class ExecuteTransitionInput(CamelModel):
    transition_id: str = Field(..., description="Transition id or transition name")
    task_id: int
    role_id: Optional[str] = None
    handoff_message: Optional[str] = None
    project_path: Optional[str] = None


class GetTransitionHistoryInput(CamelModel):
    task_id: int


# ── Bootstrap / role guidance ────────────────────────────────────────────────


class BootstrapWorkflowInput(CamelModel):
    # Loose types here; bootstrap_workflow reports every problem in one message
    task_name: str
    initial_role: str
    execution_mode: Optional[str] = None
    task_description: Optional[str] = None
    business_requirements: Optional[str] = None
    technical_requirements: Optional[str] = None
    acceptance_criteria: Optional[list[str]] = None
    priority: Optional[str] = None
    project_path: Optional[str] = None
    execution_context: Optional[dict[str, Any]] = None


class GetWorkflowGuidanceInput(CamelModel):
    role_name: RoleName
    task_id: Optional[int] = None
    step_id: Optional[str] = None
    project_path: Optional[str] = None
    execution_data: Optional[dict[str, Any]] = None
