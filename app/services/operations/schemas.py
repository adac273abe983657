"""
Pydantic input models for the six Operations services.

Wire format is camelCase; attributes are snake_case. ``populate_by_name``
lets tests and internal callers pass either form.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

TaskStatus = Literal[
    "not-started", "in-progress", "needs-review", "completed",
    "needs-changes", "paused", "cancelled",
]
TaskPriority = Literal["Low", "Medium", "High", "Critical"]
SubtaskStatus = Literal[
    "not-started", "in-progress", "completed", "needs-review", "needs-changes",
]
RoleName = Literal["boomerang", "researcher", "architect", "senior-developer", "code-review"]
ReviewStatus = Literal["APPROVED", "APPROVED_WITH_RESERVATIONS", "NEEDS_CHANGES"]
CommentContext = Literal["general", "technical", "business", "clarification"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Task ─────────────────────────────────────────────────────────────────────


class TaskData(CamelModel):
    name: Optional[str] = Field(None, description="Task name; required for create")
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    dependencies: Optional[list[str]] = None
    git_branch: Optional[str] = None


class TaskDescriptionData(CamelModel):
    description: Optional[str] = None
    business_requirements: Optional[str] = None
    technical_requirements: Optional[str] = None
    acceptance_criteria: Optional[list[str]] = None


class CodebaseAnalysisData(CamelModel):
    architecture_findings: Any = None
    problems_identified: Any = None
    implementation_context: Any = None
    integration_points: Any = None
    quality_assessment: Any = None
    files_covered: Optional[list[str]] = None
    technology_stack: Any = None
    analyzed_by: Optional[str] = None


class TaskOperationsInput(CamelModel):
    operation: Literal["create", "update", "get", "list"]
    task_id: Optional[int] = Field(None, description="Required for get and update")
    task_slug: Optional[str] = Field(None, description="Alternative key for get; substring filter for list")
    task_data: Optional[TaskData] = None
    description: Optional[TaskDescriptionData] = None
    codebase_analysis: Optional[CodebaseAnalysisData] = None
    status: Optional[str] = Field(None, description="list filter")
    priority: Optional[str] = Field(None, description="list filter")
    include_description: bool = False
    include_analysis: bool = False

    @model_validator(mode="after")
    def _task_id_for_get_and_update(self):
        if self.operation == "update" and self.task_id is None:
            raise ValueError("taskId is required for 'get' and 'update' operations")
        if self.operation == "get" and self.task_id is None and not self.task_slug:
            raise ValueError("taskId is required for 'get' and 'update' operations")
        return self


# ── Planning ─────────────────────────────────────────────────────────────────


class PlanData(CamelModel):
    overview: Optional[str] = None
    approach: Optional[str] = None
    technical_decisions: Any = None
    files_to_modify: Optional[list[str]] = None
    strategic_guidance: Any = None
    created_by: Optional[str] = None


class BatchSubtask(CamelModel):
    name: str
    description: str = ""
    sequence_number: int
    status: SubtaskStatus = "not-started"
    acceptance_criteria: Optional[list[str]] = None
    strategic_guidance: Any = None
    technical_specifications: Any = None
    estimated_duration: Optional[str] = None


class BatchData(CamelModel):
    batch_id: Optional[str] = None
    batch_title: Optional[str] = None
    subtasks: list[BatchSubtask] = Field(default_factory=list)


class PlanningOperationsInput(CamelModel):
    operation: Literal[
        "create_plan", "update_plan", "get_plan",
        "create_subtasks", "update_batch", "get_batch",
    ]
    task_id: int
    plan_data: Optional[PlanData] = None
    batch_data: Optional[BatchData] = None
    batch_id: Optional[str] = None
    new_status: Optional[SubtaskStatus] = None
    plan_id: Optional[int] = None
    include_batches: bool = True


# ── Workflow ─────────────────────────────────────────────────────────────────


class CompletionData(CamelModel):
    summary: str
    files_modified: Optional[list[str]] = None
    acceptance_criteria_verification: Any = None


class EscalationData(CamelModel):
    reason: str
    severity: Literal["low", "medium", "high", "critical"] = "medium"
    blockers: Optional[list[str]] = None


class WorkflowOperationsInput(CamelModel):
    operation: Literal["delegate", "complete", "escalate", "transition"]
    task_id: int
    from_role: Optional[RoleName] = None
    to_role: Optional[RoleName] = None
    message: Optional[str] = None
    completion_data: Optional[CompletionData] = None
    escalation_data: Optional[EscalationData] = None
    new_status: Optional[TaskStatus] = None


# ── Review ───────────────────────────────────────────────────────────────────


class ReviewData(CamelModel):
    status: Optional[ReviewStatus] = None
    summary: Optional[str] = None
    strengths: Optional[str] = None
    issues: Optional[str] = None
    acceptance_criteria_verification: Any = None
    manual_testing_results: Optional[str] = None
    required_changes: Optional[str] = None


class CompletionReportData(CamelModel):
    summary: str
    files_modified: Optional[list[str]] = None
    acceptance_criteria_verification: Any = None
    delegation_summary: Optional[str] = None
    quality_validation: Optional[str] = None


class ReviewOperationsInput(CamelModel):
    operation: Literal[
        "create_review", "update_review", "get_review",
        "create_completion", "get_completion",
    ]
    task_id: int
    review_data: Optional[ReviewData] = None
    completion_data: Optional[CompletionReportData] = None
    include_details: bool = False


# ── Research ─────────────────────────────────────────────────────────────────


class ResearchData(CamelModel):
    findings: Optional[str] = None
    recommendations: Optional[str] = None
    investigation_summary: Optional[str] = None
    technology_options: Optional[list[Any]] = None
    implementation_approaches: Optional[list[Any]] = None
    risk_assessment: Optional[str] = None
    resource_requirements: Optional[str] = None
    researched_by: Optional[str] = None


class CommentData(CamelModel):
    content: str
    author: Optional[str] = None
    context_type: CommentContext = "general"
    subtask_id: Optional[int] = None


class ResearchOperationsInput(CamelModel):
    operation: Literal[
        "create_research", "update_research", "get_research",
        "add_comment", "get_comments",
    ]
    task_id: int
    research_data: Optional[ResearchData] = None
    comment_data: Optional[CommentData] = None
    include_comments: bool = False
    comment_type: Optional[CommentContext] = None


# ── Individual subtasks ──────────────────────────────────────────────────────


class SubtaskData(CamelModel):
    name: str
    description: str = ""
    batch_id: Optional[str] = None
    batch_title: Optional[str] = None
    sequence_number: int
    acceptance_criteria: Optional[list[str]] = None
    strategic_guidance: Any = None
    technical_specifications: Any = None
    estimated_duration: Optional[str] = None
    dependencies: Optional[list[str]] = Field(None, description="Names of subtasks this one waits on")


class SubtaskUpdateData(CamelModel):
    status: Optional[SubtaskStatus] = None
    completion_evidence: Optional[dict[str, Any]] = None


class SubtaskOperationsInput(CamelModel):
    operation: Literal["create_subtask", "update_subtask", "get_subtask", "get_next_subtask"]
    task_id: int
    subtask_data: Optional[SubtaskData] = None
    update_data: Optional[SubtaskUpdateData] = None
    subtask_id: Optional[int] = None
    include_evidence: bool = False
    current_subtask_id: Optional[int] = None
    status: Optional[SubtaskStatus] = None
