"""
Workflow Guidance Server
Workflow-rules domain models.

Models:
    - WorkflowRole:          a role in the task pipeline (boomerang, researcher, ...)
    - WorkflowStep:          one ordered unit of a role's checklist
    - StepAction:            something the agent is told to do for a step (command, MCP call, ...)
    - StepCondition:         named criteria attached to a step (descriptive, not a hard gate)
    - WorkflowExecution:     one run of the workflow for a task; holds the step cursor
    - WorkflowStepProgress:  append-only record of each attempt at a step
    - RoleTransition:        directed edge between two roles with conditions/requirements
    - DelegationRecord:      append-only history of role hand-offs per task

Architecture:
    WorkflowRole ──1:N──▶ WorkflowStep ──1:N──▶ StepAction
                                        ──1:N──▶ StepCondition
    WorkflowRole ──N:M──▶ WorkflowRole  (via RoleTransition)
    Task ──1:N──▶ WorkflowExecution ──N:1──▶ WorkflowStep (current step)
    Task ──1:N──▶ WorkflowStepProgress, DelegationRecord

Lifecycle states (per progress row, one row per attempt):
    Step progress:  NOT_STARTED → IN_PROGRESS → COMPLETED | FAILED
                    a retry after FAILED opens a new row

JSON payloads are serialised with camelCase keys; that is the wire format
the MCP tools hand to agents.
"""

import uuid
from datetime import datetime, timezone

from app.models import db


# ── Helpers ──────────────────────────────────────────────────────────────────

def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ── Constants ────────────────────────────────────────────────────────────────

ROLE_NAMES = (
    "boomerang", "researcher", "architect",
    "senior-developer", "code-review",
)

STEP_TYPES = {"VALIDATION", "ANALYSIS", "ACTION", "DELEGATION", "REPORTING"}

ACTION_TYPES = {
    "COMMAND", "MCP_CALL", "VALIDATION",
    "REMINDER", "FILE_OPERATION", "REPORT_GENERATION",
}

PROGRESS_STATUSES = {"NOT_STARTED", "IN_PROGRESS", "COMPLETED", "FAILED"}

PROGRESS_RESULTS = {"SUCCESS", "FAILURE"}

EXECUTION_MODES = {"GUIDED", "AUTOMATED", "HYBRID"}


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

STEP_PROGRESS_TRANSITIONS = {
    "NOT_STARTED": ["IN_PROGRESS", "COMPLETED", "FAILED"],
    "IN_PROGRESS": ["COMPLETED", "FAILED"],
    "COMPLETED":   [],
    "FAILED":      [],
}


def validate_progress_transition(old_status, new_status):
    """Return True if a step-progress status change is allowed."""
    return new_status in STEP_PROGRESS_TRANSITIONS.get(old_status or "NOT_STARTED", [])


# ═════════════════════════════════════════════════════════════════════════════
# 1. WorkflowRole
# ═════════════════════════════════════════════════════════════════════════════


class WorkflowRole(db.Model):
    """A role in the pipeline. Steps are ordered per role by sequence_number."""

    __tablename__ = "workflow_roles"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(50), unique=True, nullable=False, index=True)
    display_name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, default="")
    priority = db.Column(
        db.Integer, default=0,
        comment="Pipeline position; lower runs earlier",
    )
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    capabilities = db.Column(
        db.JSON, default=dict,
        comment="Free-form role profile; qualityReminders list is read for guidance",
    )

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    steps = db.relationship(
        "WorkflowStep", backref="role", lazy="dynamic",
        cascade="all, delete-orphan", order_by="WorkflowStep.sequence_number",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "displayName": self.display_name,
            "description": self.description,
            "priority": self.priority,
            "isActive": self.is_active,
            "capabilities": self.capabilities or {},
        }

    def __repr__(self):
        return f"<WorkflowRole {self.name}>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. WorkflowStep
# ═════════════════════════════════════════════════════════════════════════════


class WorkflowStep(db.Model):
    """
    One unit of a role's ordered checklist.

    The JSON columns (behavioral_context, approach_guidance, quality_checklist,
    action_data) have no enforced shape; guidance assembly extracts what it
    can and falls back to generic text.
    """

    __tablename__ = "workflow_steps"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    role_id = db.Column(
        db.String(36), db.ForeignKey("workflow_roles.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(100), nullable=False)
    display_name = db.Column(db.String(200), default="")
    description = db.Column(db.Text, default="")
    sequence_number = db.Column(db.Integer, nullable=False)
    step_type = db.Column(db.String(20), nullable=False, default="ACTION")
    is_required = db.Column(db.Boolean, default=True, nullable=False)
    estimated_time = db.Column(db.String(50), nullable=True)

    behavioral_context = db.Column(db.JSON, nullable=True)
    approach_guidance = db.Column(db.JSON, nullable=True)
    quality_checklist = db.Column(db.JSON, nullable=True)
    action_data = db.Column(
        db.JSON, nullable=True,
        comment="successCriteria / failureCriteria / troubleshooting lists",
    )

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("role_id", "sequence_number", name="uq_step_role_sequence"),
        db.UniqueConstraint("role_id", "name", name="uq_step_role_name"),
        db.CheckConstraint(
            "step_type IN ('VALIDATION','ANALYSIS','ACTION','DELEGATION','REPORTING')",
            name="ck_workflow_step_type",
        ),
    )

    actions = db.relationship(
        "StepAction", backref="step", lazy="dynamic",
        cascade="all, delete-orphan", order_by="StepAction.sequence_order",
    )
    conditions = db.relationship(
        "StepCondition", backref="step", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_children=False):
        result = {
            "id": self.id,
            "roleId": self.role_id,
            "name": self.name,
            "displayName": self.display_name,
            "description": self.description,
            "sequenceNumber": self.sequence_number,
            "stepType": self.step_type,
            "isRequired": self.is_required,
            "estimatedTime": self.estimated_time,
        }
        if include_children:
            result["behavioralContext"] = self.behavioral_context
            result["approachGuidance"] = self.approach_guidance
            result["qualityChecklist"] = self.quality_checklist
            result["actionData"] = self.action_data
            result["actions"] = [a.to_dict() for a in self.actions]
            result["conditions"] = [c.to_dict() for c in self.conditions]
        return result

    def brief(self):
        """Compact reference used inside other payloads."""
        return {
            "id": self.id,
            "name": self.name,
            "sequenceNumber": self.sequence_number,
        }

    def __repr__(self):
        return f"<WorkflowStep {self.name} #{self.sequence_number}>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. StepAction / StepCondition
# ═════════════════════════════════════════════════════════════════════════════


class StepAction(db.Model):
    __tablename__ = "step_actions"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    step_id = db.Column(
        db.String(36), db.ForeignKey("workflow_steps.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(100), nullable=False)
    action_type = db.Column(db.String(30), nullable=False)
    action_data = db.Column(db.JSON, default=dict)
    sequence_order = db.Column(db.Integer, default=1, nullable=False)

    __table_args__ = (
        db.CheckConstraint(
            "action_type IN ('COMMAND','MCP_CALL','VALIDATION','REMINDER',"
            "'FILE_OPERATION','REPORT_GENERATION')",
            name="ck_step_action_type",
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "stepId": self.step_id,
            "name": self.name,
            "actionType": self.action_type,
            "actionData": self.action_data or {},
            "sequenceOrder": self.sequence_order,
        }

    def __repr__(self):
        return f"<StepAction {self.name} [{self.action_type}]>"


class StepCondition(db.Model):
    __tablename__ = "step_conditions"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    step_id = db.Column(
        db.String(36), db.ForeignKey("workflow_steps.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(100), nullable=False)
    condition_type = db.Column(db.String(50), default="criteria")
    logic = db.Column(db.JSON, default=dict)
    is_required = db.Column(db.Boolean, default=True, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "stepId": self.step_id,
            "name": self.name,
            "conditionType": self.condition_type,
            "logic": self.logic or {},
            "isRequired": self.is_required,
        }

    def __repr__(self):
        return f"<StepCondition {self.name}>"


# ═════════════════════════════════════════════════════════════════════════════
# 4. WorkflowExecution
# ═════════════════════════════════════════════════════════════════════════════


class WorkflowExecution(db.Model):
    """
    One run of the workflow for a task.

    current_step_id is the single step cursor. ``version`` is the optimistic
    concurrency counter: every flush that updates the row bumps it and
    fails with StaleDataError if another writer got there first.
    """

    __tablename__ = "workflow_executions"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    current_role_id = db.Column(
        db.String(36), db.ForeignKey("workflow_roles.id"), nullable=False, index=True,
    )
    current_step_id = db.Column(
        db.String(36), db.ForeignKey("workflow_steps.id", ondelete="SET NULL"),
        nullable=True,
    )
    execution_mode = db.Column(db.String(20), default="GUIDED", nullable=False)
    steps_completed = db.Column(db.Integer, default=0, nullable=False)
    total_steps = db.Column(db.Integer, nullable=True)
    progress_percentage = db.Column(db.Float, default=0.0)
    auto_created_task = db.Column(db.Boolean, default=False, nullable=False)

    execution_state = db.Column(db.JSON, default=dict)
    execution_context = db.Column(db.JSON, default=dict)
    task_creation_data = db.Column(db.JSON, nullable=True)
    last_error = db.Column(db.JSON, nullable=True)
    recovery_attempts = db.Column(db.Integer, default=0, nullable=False)
    max_recovery_attempts = db.Column(db.Integer, default=3, nullable=False)

    started_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    version = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        db.CheckConstraint(
            "execution_mode IN ('GUIDED','AUTOMATED','HYBRID')",
            name="ck_execution_mode",
        ),
        db.CheckConstraint("steps_completed >= 0", name="ck_execution_steps_completed"),
    )

    current_role = db.relationship("WorkflowRole", foreign_keys=[current_role_id])
    current_step = db.relationship("WorkflowStep", foreign_keys=[current_step_id])

    def to_dict(self):
        return {
            "id": self.id,
            "taskId": self.task_id,
            "currentRoleId": self.current_role_id,
            "currentRole": (
                {"id": self.current_role.id, "name": self.current_role.name,
                 "displayName": self.current_role.display_name}
                if self.current_role else None
            ),
            "currentStepId": self.current_step_id,
            "currentStep": self.current_step.brief() if self.current_step else None,
            "executionMode": self.execution_mode,
            "stepsCompleted": self.steps_completed,
            "totalSteps": self.total_steps,
            "progressPercentage": self.progress_percentage or 0,
            "autoCreatedTask": self.auto_created_task,
            "executionState": self.execution_state or {},
            "executionContext": self.execution_context or {},
            "taskCreationData": self.task_creation_data,
            "lastError": self.last_error,
            "recoveryAttempts": self.recovery_attempts,
            "maxRecoveryAttempts": self.max_recovery_attempts,
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
            "updatedAt": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<WorkflowExecution {self.id} task={self.task_id} steps={self.steps_completed}>"


# ═════════════════════════════════════════════════════════════════════════════
# 5. WorkflowStepProgress
# ═════════════════════════════════════════════════════════════════════════════


class WorkflowStepProgress(db.Model):
    """Per-attempt record of a step. Rows are added, never rewritten to an earlier status."""

    __tablename__ = "workflow_step_progress"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=True, index=True,
    )
    execution_id = db.Column(
        db.String(36), db.ForeignKey("workflow_executions.id", ondelete="CASCADE"),
        nullable=True, index=True,
    )
    step_id = db.Column(
        db.String(36), db.ForeignKey("workflow_steps.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    role_id = db.Column(
        db.String(36), db.ForeignKey("workflow_roles.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    status = db.Column(db.String(20), nullable=False, default="IN_PROGRESS")
    result = db.Column(db.String(20), nullable=True)
    execution_data = db.Column(db.JSON, nullable=True)
    error_details = db.Column(db.JSON, nullable=True)
    duration_ms = db.Column(db.Integer, nullable=True)

    started_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    failed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('NOT_STARTED','IN_PROGRESS','COMPLETED','FAILED')",
            name="ck_step_progress_status",
        ),
    )

    step = db.relationship("WorkflowStep")

    def to_dict(self):
        return {
            "id": self.id,
            "taskId": self.task_id,
            "executionId": self.execution_id,
            "stepId": self.step_id,
            "roleId": self.role_id,
            "status": self.status,
            "result": self.result,
            "executionData": self.execution_data,
            "errorDetails": self.error_details,
            "durationMs": self.duration_ms,
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
            "failedAt": _iso(self.failed_at),
        }

    def __repr__(self):
        return f"<WorkflowStepProgress step={self.step_id} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 6. RoleTransition / DelegationRecord
# ═════════════════════════════════════════════════════════════════════════════


class RoleTransition(db.Model):
    """
    Directed hand-off edge between two roles.

    conditions:   requiredStepsCompleted, requiredTaskStatus, minimumTimeInRole (ms)
    requirements: requiredDeliverables, qualityGates
    """

    __tablename__ = "role_transitions"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    from_role_id = db.Column(
        db.String(36), db.ForeignKey("workflow_roles.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    to_role_id = db.Column(
        db.String(36), db.ForeignKey("workflow_roles.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    transition_name = db.Column(db.String(100), unique=True, nullable=False)
    conditions = db.Column(db.JSON, nullable=True)
    requirements = db.Column(db.JSON, nullable=True)
    handoff_guidance = db.Column(db.JSON, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    from_role = db.relationship("WorkflowRole", foreign_keys=[from_role_id])
    to_role = db.relationship("WorkflowRole", foreign_keys=[to_role_id])

    def to_dict(self):
        return {
            "id": self.id,
            "transitionName": self.transition_name,
            "fromRole": {
                "name": self.from_role.name,
                "displayName": self.from_role.display_name,
            },
            "toRole": {
                "name": self.to_role.name,
                "displayName": self.to_role.display_name,
            },
            "conditions": self.conditions,
            "requirements": self.requirements,
            "handoffGuidance": self.handoff_guidance,
            "isActive": self.is_active,
        }

    def __repr__(self):
        return f"<RoleTransition {self.transition_name}>"


class DelegationRecord(db.Model):
    """Append-only role hand-off history for a task."""

    __tablename__ = "delegation_records"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    from_mode = db.Column(db.String(50), nullable=False)
    to_mode = db.Column(db.String(50), nullable=False)
    delegation_timestamp = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    message = db.Column(db.Text, default="")
    success = db.Column(db.Boolean, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "taskId": self.task_id,
            "fromMode": self.from_mode,
            "toMode": self.to_mode,
            "delegationTimestamp": _iso(self.delegation_timestamp),
            "message": self.message,
            "success": self.success,
            "rejectionReason": self.rejection_reason,
        }

    def __repr__(self):
        return f"<DelegationRecord task={self.task_id} {self.from_mode}→{self.to_mode}>"
