"""initial_workflow_schema

Task domain tables (tasks, plans, subtasks, reports, comments) and the
workflow-rules tables (roles, steps, actions, conditions, executions,
step progress, role transitions, delegation records).

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, nullable=True):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    # ── Task domain ──────────────────────────────────────────────────────
    if "tasks" not in existing_tables:
        op.create_table(
            "tasks",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("slug", sa.String(length=255), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False),
            sa.Column("priority", sa.String(length=20), nullable=False),
            sa.Column("owner", sa.String(length=50), nullable=True),
            sa.Column("current_mode", sa.String(length=50), nullable=True),
            sa.Column("dependencies", sa.JSON(), nullable=True),
            sa.Column("git_branch", sa.String(length=255), nullable=True),
            sa.Column("redelegation_count", sa.Integer(), nullable=False, server_default="0"),
            _ts("creation_date"),
            _ts("completion_date"),
            _ts("created_at"),
            _ts("updated_at"),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint(
                "status IN ('not-started','in-progress','needs-review','completed',"
                "'needs-changes','paused','cancelled')",
                name="ck_task_status",
            ),
            sa.CheckConstraint(
                "priority IN ('Low','Medium','High','Critical')",
                name="ck_task_priority",
            ),
        )
        op.create_index("ix_tasks_slug", "tasks", ["slug"], unique=True)

    if "task_descriptions" not in existing_tables:
        op.create_table(
            "task_descriptions",
            sa.Column("task_id", sa.Integer(), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("business_requirements", sa.Text(), nullable=True),
            sa.Column("technical_requirements", sa.Text(), nullable=True),
            sa.Column("acceptance_criteria", sa.JSON(), nullable=True),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("task_id"),
        )

    if "codebase_analyses" not in existing_tables:
        op.create_table(
            "codebase_analyses",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("task_id", sa.Integer(), nullable=False),
            sa.Column("architecture_findings", sa.JSON(), nullable=True),
            sa.Column("problems_identified", sa.JSON(), nullable=True),
            sa.Column("implementation_context", sa.JSON(), nullable=True),
            sa.Column("integration_points", sa.JSON(), nullable=True),
            sa.Column("quality_assessment", sa.JSON(), nullable=True),
            sa.Column("files_covered", sa.JSON(), nullable=True),
            sa.Column("technology_stack", sa.JSON(), nullable=True),
            sa.Column("analyzed_by", sa.String(length=50), nullable=True),
            _ts("analyzed_at"),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("task_id"),
        )

    if "implementation_plans" not in existing_tables:
        op.create_table(
            "implementation_plans",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("task_id", sa.Integer(), nullable=False),
            sa.Column("overview", sa.Text(), nullable=True),
            sa.Column("approach", sa.Text(), nullable=True),
            sa.Column("technical_decisions", sa.JSON(), nullable=True),
            sa.Column("files_to_modify", sa.JSON(), nullable=True),
            sa.Column("strategic_guidance", sa.JSON(), nullable=True),
            sa.Column("created_by", sa.String(length=50), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_implementation_plans_task_id", "implementation_plans", ["task_id"])

    if "subtasks" not in existing_tables:
        op.create_table(
            "subtasks",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("task_id", sa.Integer(), nullable=False),
            sa.Column("plan_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("sequence_number", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=30), nullable=False),
            sa.Column("batch_id", sa.String(length=100), nullable=True),
            sa.Column("batch_title", sa.String(length=255), nullable=True),
            sa.Column("acceptance_criteria", sa.JSON(), nullable=True),
            sa.Column("strategic_guidance", sa.JSON(), nullable=True),
            sa.Column("technical_specifications", sa.JSON(), nullable=True),
            sa.Column("estimated_duration", sa.String(length=50), nullable=True),
            sa.Column("completion_evidence", sa.JSON(), nullable=True),
            _ts("started_at"),
            _ts("completed_at"),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["plan_id"], ["implementation_plans.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint(
                "status IN ('not-started','in-progress','completed','needs-review','needs-changes')",
                name="ck_subtask_status",
            ),
        )
        op.create_index("ix_subtasks_task_id", "subtasks", ["task_id"])
        op.create_index("ix_subtasks_plan_id", "subtasks", ["plan_id"])
        op.create_index("ix_subtasks_batch_id", "subtasks", ["batch_id"])

    if "subtask_dependencies" not in existing_tables:
        op.create_table(
            "subtask_dependencies",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("dependent_subtask_id", sa.Integer(), nullable=False),
            sa.Column("required_subtask_id", sa.Integer(), nullable=False),
            sa.Column("dependency_type", sa.String(length=30), nullable=True),
            sa.ForeignKeyConstraint(["dependent_subtask_id"], ["subtasks.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["required_subtask_id"], ["subtasks.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "dependent_subtask_id", "required_subtask_id",
                name="uq_subtask_dependency_pair",
            ),
        )
        op.create_index(
            "ix_subtask_dependencies_dependent_subtask_id",
            "subtask_dependencies", ["dependent_subtask_id"],
        )
        op.create_index(
            "ix_subtask_dependencies_required_subtask_id",
            "subtask_dependencies", ["required_subtask_id"],
        )

    if "code_review_reports" not in existing_tables:
        op.create_table(
            "code_review_reports",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("task_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=40), nullable=False),
            sa.Column("summary", sa.Text(), nullable=True),
            sa.Column("strengths", sa.Text(), nullable=True),
            sa.Column("issues", sa.Text(), nullable=True),
            sa.Column("acceptance_criteria_verification", sa.JSON(), nullable=True),
            sa.Column("manual_testing_results", sa.Text(), nullable=True),
            sa.Column("required_changes", sa.Text(), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint(
                "status IN ('APPROVED','APPROVED_WITH_RESERVATIONS','NEEDS_CHANGES')",
                name="ck_code_review_status",
            ),
        )
        op.create_index("ix_code_review_reports_task_id", "code_review_reports", ["task_id"])

    if "completion_reports" not in existing_tables:
        op.create_table(
            "completion_reports",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("task_id", sa.Integer(), nullable=False),
            sa.Column("summary", sa.Text(), nullable=False),
            sa.Column("files_modified", sa.JSON(), nullable=True),
            sa.Column("acceptance_criteria_verification", sa.JSON(), nullable=True),
            sa.Column("delegation_summary", sa.Text(), nullable=True),
            sa.Column("quality_validation", sa.Text(), nullable=True),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_completion_reports_task_id", "completion_reports", ["task_id"])

    if "research_reports" not in existing_tables:
        op.create_table(
            "research_reports",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("task_id", sa.Integer(), nullable=False),
            sa.Column("findings", sa.Text(), nullable=False),
            sa.Column("recommendations", sa.Text(), nullable=True),
            sa.Column("investigation_summary", sa.Text(), nullable=True),
            sa.Column("technology_options", sa.JSON(), nullable=True),
            sa.Column("implementation_approaches", sa.JSON(), nullable=True),
            sa.Column("risk_assessment", sa.Text(), nullable=True),
            sa.Column("resource_requirements", sa.Text(), nullable=True),
            sa.Column("researched_by", sa.String(length=50), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_research_reports_task_id", "research_reports", ["task_id"])

    if "comments" not in existing_tables:
        op.create_table(
            "comments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("task_id", sa.Integer(), nullable=False),
            sa.Column("subtask_id", sa.Integer(), nullable=True),
            sa.Column("author", sa.String(length=50), nullable=False),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("context_type", sa.String(length=30), nullable=False),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["subtask_id"], ["subtasks.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint(
                "context_type IN ('general','technical','business','clarification')",
                name="ck_comment_context_type",
            ),
        )
        op.create_index("ix_comments_task_id", "comments", ["task_id"])

    if "workflow_transitions" not in existing_tables:
        op.create_table(
            "workflow_transitions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("task_id", sa.Integer(), nullable=False),
            sa.Column("from_mode", sa.String(length=50), nullable=False),
            sa.Column("to_mode", sa.String(length=50), nullable=False),
            sa.Column("reason", sa.Text(), nullable=True),
            _ts("transition_timestamp"),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_workflow_transitions_task_id", "workflow_transitions", ["task_id"])

    # ── Workflow rules ───────────────────────────────────────────────────
    if "workflow_roles" not in existing_tables:
        op.create_table(
            "workflow_roles",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=50), nullable=False),
            sa.Column("display_name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("priority", sa.Integer(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("capabilities", sa.JSON(), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_workflow_roles_name", "workflow_roles", ["name"], unique=True)

    if "workflow_steps" not in existing_tables:
        op.create_table(
            "workflow_steps",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("role_id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("display_name", sa.String(length=200), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("sequence_number", sa.Integer(), nullable=False),
            sa.Column("step_type", sa.String(length=20), nullable=False),
            sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("estimated_time", sa.String(length=50), nullable=True),
            sa.Column("behavioral_context", sa.JSON(), nullable=True),
            sa.Column("approach_guidance", sa.JSON(), nullable=True),
            sa.Column("quality_checklist", sa.JSON(), nullable=True),
            sa.Column("action_data", sa.JSON(), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["role_id"], ["workflow_roles.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("role_id", "sequence_number", name="uq_step_role_sequence"),
            sa.UniqueConstraint("role_id", "name", name="uq_step_role_name"),
            sa.CheckConstraint(
                "step_type IN ('VALIDATION','ANALYSIS','ACTION','DELEGATION','REPORTING')",
                name="ck_workflow_step_type",
            ),
        )
        op.create_index("ix_workflow_steps_role_id", "workflow_steps", ["role_id"])

    if "step_actions" not in existing_tables:
        op.create_table(
            "step_actions",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("step_id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("action_type", sa.String(length=30), nullable=False),
            sa.Column("action_data", sa.JSON(), nullable=True),
            sa.Column("sequence_order", sa.Integer(), nullable=False, server_default="1"),
            sa.ForeignKeyConstraint(["step_id"], ["workflow_steps.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint(
                "action_type IN ('COMMAND','MCP_CALL','VALIDATION','REMINDER',"
                "'FILE_OPERATION','REPORT_GENERATION')",
                name="ck_step_action_type",
            ),
        )
        op.create_index("ix_step_actions_step_id", "step_actions", ["step_id"])

    if "step_conditions" not in existing_tables:
        op.create_table(
            "step_conditions",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("step_id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("condition_type", sa.String(length=50), nullable=True),
            sa.Column("logic", sa.JSON(), nullable=True),
            sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.ForeignKeyConstraint(["step_id"], ["workflow_steps.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_step_conditions_step_id", "step_conditions", ["step_id"])

    if "workflow_executions" not in existing_tables:
        op.create_table(
            "workflow_executions",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("task_id", sa.Integer(), nullable=False),
            sa.Column("current_role_id", sa.String(length=36), nullable=False),
            sa.Column("current_step_id", sa.String(length=36), nullable=True),
            sa.Column("execution_mode", sa.String(length=20), nullable=False, server_default="GUIDED"),
            sa.Column("steps_completed", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_steps", sa.Integer(), nullable=True),
            sa.Column("progress_percentage", sa.Float(), nullable=True),
            sa.Column("auto_created_task", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("execution_state", sa.JSON(), nullable=True),
            sa.Column("execution_context", sa.JSON(), nullable=True),
            sa.Column("task_creation_data", sa.JSON(), nullable=True),
            sa.Column("last_error", sa.JSON(), nullable=True),
            sa.Column("recovery_attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("max_recovery_attempts", sa.Integer(), nullable=False, server_default="3"),
            _ts("started_at"),
            _ts("completed_at"),
            _ts("created_at"),
            _ts("updated_at"),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["current_role_id"], ["workflow_roles.id"]),
            sa.ForeignKeyConstraint(["current_step_id"], ["workflow_steps.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint(
                "execution_mode IN ('GUIDED','AUTOMATED','HYBRID')",
                name="ck_execution_mode",
            ),
            sa.CheckConstraint("steps_completed >= 0", name="ck_execution_steps_completed"),
        )
        op.create_index("ix_workflow_executions_task_id", "workflow_executions", ["task_id"])
        op.create_index(
            "ix_workflow_executions_current_role_id", "workflow_executions", ["current_role_id"],
        )

    if "workflow_step_progress" not in existing_tables:
        op.create_table(
            "workflow_step_progress",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("task_id", sa.Integer(), nullable=True),
            sa.Column("execution_id", sa.String(length=36), nullable=True),
            sa.Column("step_id", sa.String(length=36), nullable=False),
            sa.Column("role_id", sa.String(length=36), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("result", sa.String(length=20), nullable=True),
            sa.Column("execution_data", sa.JSON(), nullable=True),
            sa.Column("error_details", sa.JSON(), nullable=True),
            sa.Column("duration_ms", sa.Integer(), nullable=True),
            _ts("started_at"),
            _ts("completed_at"),
            _ts("failed_at"),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["execution_id"], ["workflow_executions.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["step_id"], ["workflow_steps.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["role_id"], ["workflow_roles.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint(
                "status IN ('NOT_STARTED','IN_PROGRESS','COMPLETED','FAILED')",
                name="ck_step_progress_status",
            ),
        )
        for column in ("task_id", "execution_id", "step_id", "role_id"):
            op.create_index(
                f"ix_workflow_step_progress_{column}", "workflow_step_progress", [column],
            )

    if "role_transitions" not in existing_tables:
        op.create_table(
            "role_transitions",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("from_role_id", sa.String(length=36), nullable=False),
            sa.Column("to_role_id", sa.String(length=36), nullable=False),
            sa.Column("transition_name", sa.String(length=100), nullable=False),
            sa.Column("conditions", sa.JSON(), nullable=True),
            sa.Column("requirements", sa.JSON(), nullable=True),
            sa.Column("handoff_guidance", sa.JSON(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["from_role_id"], ["workflow_roles.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["to_role_id"], ["workflow_roles.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("transition_name"),
        )
        op.create_index("ix_role_transitions_from_role_id", "role_transitions", ["from_role_id"])
        op.create_index("ix_role_transitions_to_role_id", "role_transitions", ["to_role_id"])

    if "delegation_records" not in existing_tables:
        op.create_table(
            "delegation_records",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("task_id", sa.Integer(), nullable=False),
            sa.Column("from_mode", sa.String(length=50), nullable=False),
            sa.Column("to_mode", sa.String(length=50), nullable=False),
            _ts("delegation_timestamp", nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("success", sa.Boolean(), nullable=True),
            sa.Column("rejection_reason", sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_delegation_records_task_id", "delegation_records", ["task_id"])


def downgrade():
    for table in (
        "delegation_records",
        "role_transitions",
        "workflow_step_progress",
        "workflow_executions",
        "step_conditions",
        "step_actions",
        "workflow_steps",
        "workflow_roles",
        "workflow_transitions",
        "comments",
        "research_reports",
        "completion_reports",
        "code_review_reports",
        "subtask_dependencies",
        "subtasks",
        "implementation_plans",
        "codebase_analyses",
        "task_descriptions",
        "tasks",
    ):
        op.drop_table(table)
