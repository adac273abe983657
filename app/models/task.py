"""
Workflow Guidance Server
Task domain models, the records the six Operations services read and write.

Models:
    - Task:                 the unit of work flowing through the role pipeline
    - TaskDescription:      1:1 business/technical requirements and acceptance criteria
    - CodebaseAnalysis:     1:1 structured findings captured by the boomerang role
    - ImplementationPlan:   architect's plan; owns subtasks
    - Subtask:              batch-grouped implementation unit
    - SubtaskDependency:    dependent → required edge between subtasks
    - CodeReviewReport:     code-review verdict for a task
    - CompletionReport:     final delivery summary
    - ResearchReport:       researcher findings
    - Comment:              free-form notes on a task or subtask
    - WorkflowTransition:   status-level transitions (completed, escalated, ...)

Architecture:
    Task ──1:1──▶ TaskDescription, CodebaseAnalysis
    Task ──1:N──▶ ImplementationPlan ──1:N──▶ Subtask
    Subtask ──N:M──▶ Subtask  (via SubtaskDependency)
    Task ──1:N──▶ CodeReviewReport, CompletionReport, ResearchReport, Comment

Lifecycle states:
    Task:     not-started → in-progress → needs-review → completed
              needs-review → needs-changes → in-progress; any → paused | cancelled
    Subtask:  not-started → in-progress → completed | needs-review → needs-changes
"""

from datetime import datetime, timezone

from app.models import db


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ── Constants ────────────────────────────────────────────────────────────────

TASK_STATUSES = {
    "not-started", "in-progress", "needs-review", "completed",
    "needs-changes", "paused", "cancelled",
}

TASK_PRIORITIES = {"Low", "Medium", "High", "Critical"}

SUBTASK_STATUSES = {
    "not-started", "in-progress", "completed", "needs-review", "needs-changes",
}

REVIEW_STATUSES = {"APPROVED", "APPROVED_WITH_RESERVATIONS", "NEEDS_CHANGES"}

COMMENT_CONTEXT_TYPES = {"general", "technical", "business", "clarification"}


# ═════════════════════════════════════════════════════════════════════════════
# 1. Task
# ═════════════════════════════════════════════════════════════════════════════


class Task(db.Model):
    __tablename__ = "tasks"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), unique=True, nullable=True, index=True)
    status = db.Column(db.String(30), default="not-started", nullable=False)
    priority = db.Column(db.String(20), default="Medium", nullable=False)
    owner = db.Column(db.String(50), default="boomerang")
    current_mode = db.Column(db.String(50), default="boomerang")
    dependencies = db.Column(db.JSON, default=list)
    git_branch = db.Column(db.String(255), nullable=True)
    redelegation_count = db.Column(db.Integer, default=0, nullable=False)

    creation_date = db.Column(db.DateTime(timezone=True), default=_utcnow)
    completion_date = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('not-started','in-progress','needs-review','completed',"
            "'needs-changes','paused','cancelled')",
            name="ck_task_status",
        ),
        db.CheckConstraint(
            "priority IN ('Low','Medium','High','Critical')",
            name="ck_task_priority",
        ),
    )

    description = db.relationship(
        "TaskDescription", backref="task", uselist=False, cascade="all, delete-orphan",
    )
    codebase_analysis = db.relationship(
        "CodebaseAnalysis", backref="task", uselist=False, cascade="all, delete-orphan",
    )
    plans = db.relationship(
        "ImplementationPlan", backref="task", lazy="dynamic",
        cascade="all, delete-orphan", order_by="ImplementationPlan.id",
    )

    def to_dict(self, include_description=False, include_analysis=False):
        result = {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "status": self.status,
            "priority": self.priority,
            "owner": self.owner,
            "currentMode": self.current_mode,
            "dependencies": self.dependencies or [],
            "gitBranch": self.git_branch,
            "redelegationCount": self.redelegation_count,
            "creationDate": _iso(self.creation_date),
            "completionDate": _iso(self.completion_date),
            "updatedAt": _iso(self.updated_at),
        }
        if include_description:
            result["description"] = self.description.to_dict() if self.description else None
        if include_analysis:
            result["codebaseAnalysis"] = (
                self.codebase_analysis.to_dict() if self.codebase_analysis else None
            )
        return result

    def __repr__(self):
        return f"<Task {self.id}: {self.name} [{self.status}]>"


class TaskDescription(db.Model):
    __tablename__ = "task_descriptions"

    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True,
    )
    description = db.Column(db.Text, default="")
    business_requirements = db.Column(db.Text, default="")
    technical_requirements = db.Column(db.Text, default="")
    acceptance_criteria = db.Column(db.JSON, default=list)

    def to_dict(self):
        return {
            "taskId": self.task_id,
            "description": self.description,
            "businessRequirements": self.business_requirements,
            "technicalRequirements": self.technical_requirements,
            "acceptanceCriteria": self.acceptance_criteria or [],
        }


class CodebaseAnalysis(db.Model):
    __tablename__ = "codebase_analyses"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"),
        unique=True, nullable=False,
    )
    architecture_findings = db.Column(db.JSON, default=dict)
    problems_identified = db.Column(db.JSON, default=dict)
    implementation_context = db.Column(db.JSON, default=dict)
    integration_points = db.Column(db.JSON, default=dict)
    quality_assessment = db.Column(db.JSON, default=dict)
    files_covered = db.Column(db.JSON, default=list)
    technology_stack = db.Column(db.JSON, default=dict)
    analyzed_by = db.Column(db.String(50), default="system")
    analyzed_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "taskId": self.task_id,
            "architectureFindings": self.architecture_findings or {},
            "problemsIdentified": self.problems_identified or {},
            "implementationContext": self.implementation_context or {},
            "integrationPoints": self.integration_points or {},
            "qualityAssessment": self.quality_assessment or {},
            "filesCovered": self.files_covered or [],
            "technologyStack": self.technology_stack or {},
            "analyzedBy": self.analyzed_by,
            "analyzedAt": _iso(self.analyzed_at),
        }


# ═════════════════════════════════════════════════════════════════════════════
# 2. ImplementationPlan / Subtask / SubtaskDependency
# ═════════════════════════════════════════════════════════════════════════════


class ImplementationPlan(db.Model):
    __tablename__ = "implementation_plans"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    overview = db.Column(db.Text, default="")
    approach = db.Column(db.Text, default="")
    technical_decisions = db.Column(db.JSON, default=dict)
    files_to_modify = db.Column(db.JSON, default=list)
    strategic_guidance = db.Column(db.JSON, nullable=True)
    created_by = db.Column(db.String(50), default="system")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    subtasks = db.relationship(
        "Subtask", backref="plan", lazy="dynamic",
        cascade="all, delete-orphan",
        order_by="Subtask.sequence_number",
    )

    def to_dict(self, include_subtasks=False):
        result = {
            "id": self.id,
            "taskId": self.task_id,
            "overview": self.overview,
            "approach": self.approach,
            "technicalDecisions": self.technical_decisions,
            "filesToModify": self.files_to_modify or [],
            "strategicGuidance": self.strategic_guidance,
            "createdBy": self.created_by,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
        if include_subtasks:
            result["subtasks"] = [s.to_dict() for s in self.subtasks]
        return result

    def __repr__(self):
        return f"<ImplementationPlan {self.id} task={self.task_id}>"


class Subtask(db.Model):
    __tablename__ = "subtasks"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    plan_id = db.Column(
        db.Integer, db.ForeignKey("implementation_plans.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, default="")
    sequence_number = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(30), default="not-started", nullable=False)
    batch_id = db.Column(db.String(100), nullable=True, index=True)
    batch_title = db.Column(db.String(255), nullable=True)
    acceptance_criteria = db.Column(db.JSON, default=list)
    strategic_guidance = db.Column(db.JSON, nullable=True)
    technical_specifications = db.Column(db.JSON, nullable=True)
    estimated_duration = db.Column(db.String(50), nullable=True)
    completion_evidence = db.Column(db.JSON, nullable=True)

    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('not-started','in-progress','completed','needs-review','needs-changes')",
            name="ck_subtask_status",
        ),
    )

    # Edges where this subtask is the dependent (it waits on required_subtask)
    dependencies_from = db.relationship(
        "SubtaskDependency",
        foreign_keys="SubtaskDependency.dependent_subtask_id",
        backref="dependent_subtask", lazy="dynamic", cascade="all, delete-orphan",
    )
    # Edges where this subtask is required by others
    dependencies_to = db.relationship(
        "SubtaskDependency",
        foreign_keys="SubtaskDependency.required_subtask_id",
        backref="required_subtask", lazy="dynamic", cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "taskId": self.task_id,
            "planId": self.plan_id,
            "name": self.name,
            "description": self.description,
            "sequenceNumber": self.sequence_number,
            "status": self.status,
            "batchId": self.batch_id,
            "batchTitle": self.batch_title,
            "acceptanceCriteria": self.acceptance_criteria or [],
            "strategicGuidance": self.strategic_guidance,
            "technicalSpecifications": self.technical_specifications,
            "estimatedDuration": self.estimated_duration,
            "completionEvidence": self.completion_evidence,
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
        }

    def __repr__(self):
        return f"<Subtask {self.id}: {self.name} [{self.status}]>"


class SubtaskDependency(db.Model):
    __tablename__ = "subtask_dependencies"

    id = db.Column(db.Integer, primary_key=True)
    dependent_subtask_id = db.Column(
        db.Integer, db.ForeignKey("subtasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    required_subtask_id = db.Column(
        db.Integer, db.ForeignKey("subtasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    dependency_type = db.Column(db.String(30), default="sequential")

    __table_args__ = (
        db.UniqueConstraint(
            "dependent_subtask_id", "required_subtask_id",
            name="uq_subtask_dependency_pair",
        ),
    )


# ═════════════════════════════════════════════════════════════════════════════
# 3. Reports and comments
# ═════════════════════════════════════════════════════════════════════════════


class CodeReviewReport(db.Model):
    __tablename__ = "code_review_reports"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    status = db.Column(db.String(40), nullable=False)
    summary = db.Column(db.Text, default="")
    strengths = db.Column(db.Text, default="")
    issues = db.Column(db.Text, default="")
    acceptance_criteria_verification = db.Column(db.JSON, default=dict)
    manual_testing_results = db.Column(db.Text, default="")
    required_changes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('APPROVED','APPROVED_WITH_RESERVATIONS','NEEDS_CHANGES')",
            name="ck_code_review_status",
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "taskId": self.task_id,
            "status": self.status,
            "summary": self.summary,
            "strengths": self.strengths,
            "issues": self.issues,
            "acceptanceCriteriaVerification": self.acceptance_criteria_verification or {},
            "manualTestingResults": self.manual_testing_results,
            "requiredChanges": self.required_changes,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class CompletionReport(db.Model):
    __tablename__ = "completion_reports"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    summary = db.Column(db.Text, nullable=False)
    files_modified = db.Column(db.JSON, default=list)
    acceptance_criteria_verification = db.Column(db.JSON, default=dict)
    delegation_summary = db.Column(db.Text, default="")
    quality_validation = db.Column(db.Text, default="")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "taskId": self.task_id,
            "summary": self.summary,
            "filesModified": self.files_modified or [],
            "acceptanceCriteriaVerification": self.acceptance_criteria_verification or {},
            "delegationSummary": self.delegation_summary,
            "qualityValidation": self.quality_validation,
            "createdAt": _iso(self.created_at),
        }


class ResearchReport(db.Model):
    __tablename__ = "research_reports"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    findings = db.Column(db.Text, nullable=False)
    recommendations = db.Column(db.Text, default="")
    investigation_summary = db.Column(db.Text, default="")
    technology_options = db.Column(db.JSON, default=list)
    implementation_approaches = db.Column(db.JSON, default=list)
    risk_assessment = db.Column(db.Text, default="")
    resource_requirements = db.Column(db.Text, default="")
    researched_by = db.Column(db.String(50), default="researcher")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "taskId": self.task_id,
            "findings": self.findings,
            "recommendations": self.recommendations,
            "investigationSummary": self.investigation_summary,
            "technologyOptions": self.technology_options or [],
            "implementationApproaches": self.implementation_approaches or [],
            "riskAssessment": self.risk_assessment,
            "resourceRequirements": self.resource_requirements,
            "researchedBy": self.researched_by,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class Comment(db.Model):
    __tablename__ = "comments"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    subtask_id = db.Column(
        db.Integer, db.ForeignKey("subtasks.id", ondelete="SET NULL"), nullable=True,
    )
    author = db.Column(db.String(50), nullable=False)
    content = db.Column(db.Text, nullable=False)
    context_type = db.Column(db.String(30), default="general", nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "context_type IN ('general','technical','business','clarification')",
            name="ck_comment_context_type",
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "taskId": self.task_id,
            "subtaskId": self.subtask_id,
            "author": self.author,
            "content": self.content,
            "contextType": self.context_type,
            "createdAt": _iso(self.created_at),
        }


class WorkflowTransition(db.Model):
    __tablename__ = "workflow_transitions"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    from_mode = db.Column(db.String(50), nullable=False)
    to_mode = db.Column(db.String(50), nullable=False)
    reason = db.Column(db.Text, default="")
    transition_timestamp = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "taskId": self.task_id,
            "fromMode": self.from_mode,
            "toMode": self.to_mode,
            "reason": self.reason,
            "transitionTimestamp": _iso(self.transition_timestamp),
        }
