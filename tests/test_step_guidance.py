"""
Step guidance, role guidance and the step progress tracker.

Guidance is assembled from loosely-shaped JSON columns; every field falls
back to generic text when the stored value is missing or unusable.
"""

import pytest

from app.core.exceptions import NotFoundError
from app.models import db
from app.models.workflow import StepAction, WorkflowRole, WorkflowStep, WorkflowStepProgress
from app.services import (
    step_guidance_service,
    step_progress_service,
    workflow_execution_service,
    workflow_guidance_service,
)


def _role(name="architect", **kw):
    role = WorkflowRole(name=name, display_name=name.title(), priority=3, **kw)
    db.session.add(role)
    db.session.flush()
    return role


def _step(role, name="bare", sequence=1, **kw):
    step = WorkflowStep(role_id=role.id, name=name, sequence_number=sequence, step_type="ACTION", **kw)
    db.session.add(step)
    db.session.flush()
    return step


def _seeded_step(role_name, step_name):
    role = WorkflowRole.query.filter_by(name=role_name).first()
    return WorkflowStep.query.filter_by(role_id=role.id, name=step_name).first()


# ═════════════════════════════════════════════════════════════════════════════
# Step guidance
# ═════════════════════════════════════════════════════════════════════════════


class TestStepGuidanceFallbacks:
    def test_empty_step_gets_every_default(self, task):
        step = _step(_role(), description="")
        guidance = step_guidance_service.get_step_guidance(task.id, None, step.id)

        assert guidance["step"]["description"] == "Execute workflow step"
        assert guidance["step"]["estimatedTime"] == "5-10 minutes"
        assert guidance["step"]["displayName"] == "bare"
        assert guidance["behavioralGuidance"] == step_guidance_service.DEFAULT_BEHAVIORAL_GUIDANCE
        assert guidance["approachGuidance"] == step_guidance_service.DEFAULT_APPROACH_GUIDANCE
        assert guidance["qualityChecklist"] == ["Verify step completion"]
        assert guidance["successCriteria"] == ["Step completed successfully"]
        assert guidance["failureCriteria"] == ["Step failed to complete"]
        assert guidance["troubleshooting"] == ["Check logs for errors"]
        assert guidance["mcpActions"] == []

    def test_role_id_defaults_to_step_role(self, task):
        step = _step(_role())
        guidance = step_guidance_service.get_step_guidance(task.id, None, step.id)
        assert guidance["roleId"] == step.role_id

    def test_wrong_json_shapes_fall_back(self, task):
        step = _step(
            _role(),
            behavioral_context=["not", "a", "dict"],
            approach_guidance={"stepByStep": "not a list"},
            quality_checklist=[1, 2, 3],
            action_data="free text",
        )
        guidance = step_guidance_service.get_step_guidance(task.id, None, step.id)
        assert guidance["behavioralGuidance"]["approach"] == "Execute step according to requirements"
        assert guidance["approachGuidance"]["stepByStep"] == ["Follow standard procedure"]
        assert guidance["qualityChecklist"] == ["Verify step completion"]
        assert guidance["successCriteria"] == ["Step completed successfully"]

    def test_partial_behavioral_context(self, task):
        step = _step(_role(), behavioral_context={"approach": "Be careful", "principles": ["a", 2]})
        guidance = step_guidance_service.get_step_guidance(task.id, None, step.id)["behavioralGuidance"]
        assert guidance["approach"] == "Be careful"
        assert guidance["principles"] == ["a"]
        assert guidance["methodology"] == "Standard workflow execution"

    def test_approach_guidance_keeps_only_strings(self, task):
        step = _step(_role(), approach_guidance={
            "stepByStep": ["Open the diff", {"nested": True}, 3],
            "errorHandling": [None],
        })
        guidance = step_guidance_service.get_step_guidance(task.id, None, step.id)["approachGuidance"]
        assert guidance["stepByStep"] == ["Open the diff"]
        assert guidance["errorHandling"] == ["Handle errors appropriately"]


class TestStepGuidanceFromSeed:
    def test_stored_values_win(self, seeded, task):
        step = _seeded_step("boomerang", "git_integration_setup")
        guidance = step_guidance_service.get_step_guidance(task.id, None, step.id)
        assert guidance["step"]["estimatedTime"] == "2-5 minutes"
        assert guidance["approachGuidance"]["stepByStep"] == ["Run git status", "Create a feature branch"]
        assert guidance["approachGuidance"]["validationSteps"] == ["Verify completion"]
        assert guidance["successCriteria"] == ["Feature branch exists"]
        assert guidance["troubleshooting"] == ["Stash or commit pending changes first"]

    def test_checklist_stored_as_items_dict(self, seeded, task):
        step = _seeded_step("architect", "create_subtasks")
        guidance = step_guidance_service.get_step_guidance(task.id, None, step.id)
        assert guidance["qualityChecklist"] == ["Each batch is independently reviewable"]

    def test_mcp_actions_ordered_and_reminders_excluded(self, seeded, task):
        step = _seeded_step("architect", "review_requirements")
        actions = step_guidance_service.get_step_guidance(task.id, None, step.id)["mcpActions"]
        assert actions == [{
            "name": "load_task",
            "serviceName": "TaskOperations",
            "operation": "get",
            "parameters": {"includeDescription": True, "includeAnalysis": True},
            "sequenceOrder": 1,
        }]

    def test_malformed_mcp_action_dropped(self, task):
        step = _step(_role())
        db.session.add_all([
            StepAction(step_id=step.id, name="ok", action_type="MCP_CALL", sequence_order=2,
                       action_data={"serviceName": "TaskOperations", "operation": "list"}),
            StepAction(step_id=step.id, name="no_service", action_type="MCP_CALL",
                       action_data={"operation": "list"}),
            StepAction(step_id=step.id, name="bad_params", action_type="MCP_CALL",
                       action_data={"serviceName": "TaskOperations", "operation": "get",
                                    "parameters": ["x"]}),
        ])
        db.session.flush()
        actions = step_guidance_service.get_step_guidance(task.id, None, step.id)["mcpActions"]
        assert [a["name"] for a in actions] == ["ok"]
        assert actions[0]["parameters"] == {}

    def test_validation_criteria(self, seeded):
        step = _seeded_step("boomerang", "git_integration_setup")
        criteria = step_guidance_service.get_step_validation_criteria(step.id)
        assert criteria["failureCriteria"] == ["Uncommitted changes present"]
        assert [c["name"] for c in criteria["conditions"]] == ["repository_present"]


# ═════════════════════════════════════════════════════════════════════════════
# Role-level guidance
# ═════════════════════════════════════════════════════════════════════════════


class TestWorkflowGuidance:
    def test_defaults_to_first_step(self, seeded, app):
        guidance = workflow_guidance_service.get_workflow_guidance("boomerang")
        assert guidance["currentRole"]["name"] == "boomerang"
        assert guidance["currentStep"]["name"] == "git_integration_setup"
        assert guidance["nextActions"][0]["actionType"] == "COMMAND"
        assert guidance["qualityReminders"][0].startswith("Confirm the git working tree")
        assert guidance["projectContext"]["projectPath"] == app.config["PROJECT_ROOT"]

    def test_follows_execution_cursor(self, execution):
        execution.current_step = _seeded_step("boomerang", "task_creation")
        db.session.flush()
        guidance = workflow_guidance_service.get_workflow_guidance("boomerang", execution.task_id)
        assert guidance["currentStep"]["name"] == "task_creation"

    def test_cursor_of_other_role_ignored(self, execution):
        guidance = workflow_guidance_service.get_workflow_guidance("architect", execution.task_id)
        assert guidance["currentStep"]["name"] == "review_requirements"

    def test_explicit_step_and_project_path(self, seeded):
        step = _seeded_step("code-review", "manual_testing")
        guidance = workflow_guidance_service.get_workflow_guidance(
            "code-review", step_id=step.id, project_path="/srv/repo",
        )
        assert guidance["currentStep"]["id"] == step.id
        assert guidance["nextActions"] == []
        assert guidance["projectContext"] == {"projectPath": "/srv/repo"}

    def test_role_without_steps_or_reminders(self):
        _role("researcher", capabilities={"qualityReminders": "not a list"})
        guidance = workflow_guidance_service.get_workflow_guidance("researcher")
        assert guidance["currentStep"] is None
        assert guidance["nextActions"] == []
        assert guidance["qualityReminders"] == []

    def test_unknown_role(self):
        with pytest.raises(NotFoundError):
            workflow_guidance_service.get_workflow_guidance("boomerang")


# ═════════════════════════════════════════════════════════════════════════════
# Progress tracker
# ═════════════════════════════════════════════════════════════════════════════


class TestProgressTracker:
    def test_start_is_idempotent_while_open(self, seeded, task):
        step = _seeded_step("boomerang", "codebase_analysis")
        first = step_progress_service.start_step(task.id, step.id)
        second = step_progress_service.start_step(task.id, step.id)
        assert first.id == second.id
        assert first.status == "IN_PROGRESS"
        assert first.role_id == step.role_id

    def test_complete_closes_open_attempt(self, seeded, task):
        step = _seeded_step("boomerang", "codebase_analysis")
        started = step_progress_service.start_step(task.id, step.id)
        done = step_progress_service.complete_step(task.id, step.id, {"notes": "ok"}, 1200)
        assert done.id == started.id
        assert done.status == "COMPLETED"
        assert done.result == "SUCCESS"
        assert done.duration_ms == 1200
        assert done.completed_at is not None

    def test_complete_without_start_creates_row(self, seeded, task):
        step = _seeded_step("boomerang", "codebase_analysis")
        done = step_progress_service.complete_step(task.id, step.id)
        assert done.status == "COMPLETED"
        assert WorkflowStepProgress.query.count() == 1

    def test_retry_after_failure_opens_new_row(self, seeded, task):
        step = _seeded_step("boomerang", "codebase_analysis")
        step_progress_service.start_step(task.id, step.id)
        failed = step_progress_service.fail_step(task.id, step.id, "disk full")
        retry = step_progress_service.start_step(task.id, step.id)

        assert failed["progress"]["status"] == "FAILED"
        assert failed["progress"]["errorDetails"] == {"message": "disk full"}
        assert failed["recoveryGuidance"] == step_progress_service.RECOVERY_GUIDANCE
        assert retry.id != failed["progress"]["id"]
        assert WorkflowStepProgress.query.count() == 2

    def test_record_failure_uses_reported_error(self, seeded, task):
        step = _seeded_step("boomerang", "codebase_analysis")
        row = step_progress_service.record_step_completion(
            task.id, step.id, step.role_id, "failure", {"error": "lint failed"},
        )
        assert row.status == "FAILED"
        assert row.error_details == {"message": "lint failed"}

    def test_summary(self, seeded, task):
        steps = [_seeded_step("boomerang", n) for n in ("git_integration_setup", "codebase_analysis")]
        step_progress_service.complete_step(task.id, steps[0].id)
        step_progress_service.start_step(task.id, steps[1].id)
        step_progress_service.fail_step(task.id, steps[1].id, "boom")
        step_progress_service.start_step(task.id, steps[1].id)

        summary = step_progress_service.get_step_progress(task.id)["summary"]
        assert summary == {
            "totalAttempts": 3,
            "completed": 1,
            "inProgress": 1,
            "failed": 1,
            "progressPercentage": 7,
            "estimatedTimeRemaining": "70 minutes",
        }

    def test_repeated_completions_count_once(self, seeded, task):
        step = _seeded_step("boomerang", "codebase_analysis")
        step_progress_service.complete_step(task.id, step.id)
        step_progress_service.complete_step(task.id, step.id)
        assert step_progress_service.get_step_progress(task.id)["summary"]["completed"] == 1

    def test_filter_by_role(self, seeded, task):
        step_progress_service.complete_step(task.id, _seeded_step("boomerang", "codebase_analysis").id)
        step_progress_service.complete_step(task.id, _seeded_step("architect", "create_subtasks").id)
        architect = WorkflowRole.query.filter_by(name="architect").first()
        rows = step_progress_service.get_step_progress(task.id, architect.id)["progress"]
        assert len(rows) == 1

    @pytest.mark.parametrize("completed,expected", [(0, 0), (3, 20), (15, 100), (40, 100)])
    def test_percentage_is_capped(self, completed, expected):
        assert step_progress_service.calculate_progress_percentage(completed) == expected

    def test_next_available_step(self, seeded, task):
        step = _seeded_step("researcher", "research_scoping")
        step_progress_service.complete_step(task.id, step.id)
        nxt = step_progress_service.get_next_available_step(step.role_id, task.id)
        assert nxt["name"] == "investigate_options"

    def test_next_available_step_none(self, seeded, task):
        role = WorkflowRole.query.filter_by(name="researcher").first()
        for step in role.steps:
            step_progress_service.complete_step(task.id, step.id)
        assert step_progress_service.get_next_available_step(role.id, task.id) is None


class TestExecutionNextSteps:
    def test_next_step_status_pending_when_started(self, execution):
        step_progress_service.start_step(execution.task_id, execution.current_step_id)
        entries = workflow_execution_service.get_next_steps_for_execution(execution)
        assert entries[0]["name"] == "git_integration_setup"
        assert entries[0]["status"] == "pending"
