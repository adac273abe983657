"""
Role transitions: validation, execution, deliverables and quality gates.

Quality-gate commands never spawn processes here; ``no_commands`` records
the argument lists instead.
"""

import pytest

from app.models import db
from app.models.task import CodeReviewReport, Task
from app.models.workflow import DelegationRecord, RoleTransition, WorkflowRole, WorkflowStep
from app.services import quality_gates, role_transition_service
from app.services.role_transition_service import (
    execute_transition,
    get_recommended_transitions,
    get_role_transitions,
    get_transition_history,
    validate_transition,
)


def _role(name):
    return WorkflowRole.query.filter_by(name=name).first()


def _seeded_step(role_name, step_name):
    return WorkflowStep.query.filter_by(role_id=_role(role_name).id, name=step_name).first()


def _transition(name="custom_handoff", conditions=None, requirements=None,
                from_role="architect", to_role="senior-developer"):
    transition = RoleTransition(
        transition_name=name,
        from_role_id=_role(from_role).id,
        to_role_id=_role(to_role).id,
        conditions=conditions or {},
        requirements=requirements or {},
    )
    db.session.add(transition)
    db.session.flush()
    return transition


def _complete(task, role_name, step_name):
    from app.services import step_progress_service
    step_progress_service.complete_step(task.id, _seeded_step(role_name, step_name).id)


# ═════════════════════════════════════════════════════════════════════════════
# Listing
# ═════════════════════════════════════════════════════════════════════════════


class TestListing:
    def test_transitions_out_of_role_sorted_by_name(self, seeded):
        names = [t["transitionName"] for t in get_role_transitions("boomerang")]
        assert names == ["boomerang_to_architect", "boomerang_to_researcher"]

    def test_inactive_transitions_hidden(self, seeded):
        RoleTransition.query.filter_by(transition_name="boomerang_to_researcher").first().is_active = False
        db.session.flush()
        names = [t["transitionName"] for t in get_role_transitions("boomerang")]
        assert names == ["boomerang_to_architect"]

    def test_with_validation(self, seeded, task):
        entries = get_role_transitions("boomerang", task.id, include_validation=True)
        by_name = {e["transitionName"]: e["validation"] for e in entries}
        assert by_name["boomerang_to_researcher"]["valid"] is True
        assert by_name["boomerang_to_architect"]["errors"] == [
            "Required deliverable 'report:codebase_analysis' not found",
        ]

    def test_find_by_id_or_name(self, seeded):
        by_name = role_transition_service.find_transition("review_to_completion")
        assert role_transition_service.find_transition(by_name.id) is by_name
        assert role_transition_service.find_transition("") is None


# ═════════════════════════════════════════════════════════════════════════════
# Validation
# ═════════════════════════════════════════════════════════════════════════════


class TestValidation:
    def test_unknown_transition(self, seeded, task):
        assert validate_transition("nowhere", task.id) == {
            "valid": False, "errors": ["Transition not found"], "warnings": [],
        }

    def test_missing_task(self, seeded):
        result = validate_transition("boomerang_to_researcher", 9999)
        assert result["errors"] == ["Task not found: 9999"]

    def test_report_deliverable_needs_completed_step(self, seeded, task):
        assert validate_transition("boomerang_to_architect", task.id)["valid"] is False
        _complete(task, "boomerang", "codebase_analysis")
        assert validate_transition("boomerang_to_architect", task.id)["valid"] is True

    def test_required_steps(self, seeded, task):
        step = _seeded_step("architect", "create_implementation_plan")
        _transition(conditions={"requiredStepsCompleted": [step.id]})
        result = validate_transition("custom_handoff", task.id)
        assert result["errors"] == [f"Required step '{step.id}' not completed"]

        _complete(task, "architect", "create_implementation_plan")
        assert validate_transition("custom_handoff", task.id)["valid"] is True

    def test_required_task_status(self, seeded, task):
        _transition(conditions={"requiredTaskStatus": "in-progress"})
        result = validate_transition("custom_handoff", task.id)
        assert result["errors"] == ["Task status must be 'in-progress'"]

        task.status = "in-progress"
        db.session.flush()
        assert validate_transition("custom_handoff", task.id)["valid"] is True

    def test_minimum_time_in_role_only_warns(self, seeded, task):
        _transition(conditions={"minimumTimeInRole": 3_600_000})
        result = validate_transition("custom_handoff", task.id)
        assert result["valid"] is True
        assert len(result["warnings"]) == 1
        assert result["warnings"][0].startswith("Minimum time in role not met")

    def test_errors_are_collected_not_short_circuited(self, seeded, task):
        _transition(
            conditions={"requiredTaskStatus": "completed"},
            requirements={"requiredDeliverables": ["report:plan"], "qualityGates": ["peer_review"]},
        )
        result = validate_transition("custom_handoff", task.id)
        assert result["errors"] == [
            "Task status must be 'completed'",
            "Required deliverable 'report:plan' not found",
            "Quality gate 'peer_review' not passed",
        ]

    def test_raising_check_fails_only_itself(self, seeded, task, monkeypatch):
        real_check = quality_gates.check_deliverable

        def flaky(deliverable, *args):
            if deliverable == "report:plan":
                raise RuntimeError("disk on fire")
            return real_check(deliverable, *args)

        monkeypatch.setattr(quality_gates, "check_deliverable", flaky)
        _transition(
            conditions={"requiredTaskStatus": "completed"},
            requirements={
                "requiredDeliverables": ["report:plan", "step:missing"],
                "qualityGates": ["peer_review"],
            },
        )
        result = validate_transition("custom_handoff", task.id)
        assert result["errors"] == [
            "Task status must be 'completed'",
            "Required deliverable 'report:plan' not found",
            "Required deliverable 'step:missing' not found",
            "Quality gate 'peer_review' not passed",
        ]

    def test_command_that_cannot_start_fails_its_gate(self, seeded, task, monkeypatch):
        def denied(*args, **kwargs):
            raise PermissionError("npm: permission denied")

        monkeypatch.setattr(quality_gates.subprocess, "run", denied)
        _transition(requirements={"qualityGates": ["build_success", "code_quality"]})
        result = validate_transition("custom_handoff", task.id)
        assert result["errors"] == [
            "Quality gate 'build_success' not passed",
            "Quality gate 'code_quality' not passed",
        ]

    def test_non_numeric_minimum_time_is_a_warning(self, seeded, task):
        _transition(
            conditions={"minimumTimeInRole": "an hour"},
            requirements={"qualityGates": ["peer_review"]},
        )
        result = validate_transition("custom_handoff", task.id)
        assert result["warnings"] == ["Invalid minimumTimeInRole: 'an hour'"]
        assert result["errors"] == ["Quality gate 'peer_review' not passed"]

    def test_validation_never_writes(self, seeded, task):
        validate_transition("boomerang_to_researcher", task.id)
        assert DelegationRecord.query.count() == 0


# ═════════════════════════════════════════════════════════════════════════════
# Deliverables and quality gates
# ═════════════════════════════════════════════════════════════════════════════


class TestDeliverables:
    def test_file_deliverable(self, seeded, task, tmp_path):
        _transition(requirements={"requiredDeliverables": ["file:docs/plan.md"]})
        context = {"projectPath": str(tmp_path)}
        assert validate_transition("custom_handoff", task.id, context)["valid"] is False

        (tmp_path / "docs").mkdir()
        (tmp_path / "docs" / "plan.md").write_text("# Plan\n")
        assert validate_transition("custom_handoff", task.id, context)["valid"] is True

    def test_bare_path_is_a_file(self, task, tmp_path):
        (tmp_path / "NOTES.md").write_text("notes")
        assert quality_gates.check_deliverable("NOTES.md", task.id, str(tmp_path)) is True
        assert quality_gates.check_deliverable("MISSING.md", task.id, str(tmp_path)) is False

    def test_step_deliverable(self, seeded, task):
        step = _seeded_step("researcher", "record_findings")
        assert quality_gates.check_deliverable(f"step:{step.id}", task.id) is False
        _complete(task, "researcher", "record_findings")
        assert quality_gates.check_deliverable(f"step:{step.id}", task.id) is True

    @pytest.mark.parametrize("kind,args", [
        ("unit", ("npm", "run", "test:unit")),
        ("e2e", ("npm", "run", "test:e2e")),
        ("anything", ("npm", "test")),
    ])
    def test_test_deliverable_runs_script(self, task, tmp_path, no_commands, kind, args):
        assert quality_gates.check_deliverable(f"test:{kind}", task.id, str(tmp_path)) is True
        assert no_commands == [(args, str(tmp_path))]

    def test_failing_test_script(self, task, tmp_path, no_commands):
        no_commands.result = (False, "1 failing")
        assert quality_gates.check_deliverable("test:unit", task.id, str(tmp_path)) is False


class TestQualityGates:
    def test_command_gates(self, task, tmp_path, no_commands):
        root = str(tmp_path)
        assert quality_gates.check_quality_gate("code_quality", task.id, root) is True
        assert quality_gates.check_quality_gate("build_success", task.id, root) is True
        assert [c[0] for c in no_commands] == [
            ("npm", "run", "lint"),
            ("npm", "run", "build"),
        ]

    @pytest.mark.parametrize("output,expected", [
        ("All files | 85.5% |", True),
        ("All files | 62% |", False),
        ("coverage written", True),
    ])
    def test_coverage_threshold(self, task, tmp_path, no_commands, output, expected):
        no_commands.result = (True, output)
        assert quality_gates.check_quality_gate("test_coverage", task.id, str(tmp_path)) is expected

    def test_coverage_command_failure(self, task, tmp_path, no_commands):
        no_commands.result = (False, "99%")
        assert quality_gates.check_quality_gate("test_coverage", task.id, str(tmp_path)) is False

    def test_documentation(self, task, tmp_path):
        root = str(tmp_path)
        assert quality_gates.check_quality_gate("documentation", task.id, root) is False
        (tmp_path / "README.md").write_text("short")
        assert quality_gates.check_quality_gate("documentation", task.id, root) is False
        (tmp_path / "README.md").write_text("x" * 101)
        assert quality_gates.check_quality_gate("documentation", task.id, root) is True

    def test_peer_review_needs_approval(self, task):
        db.session.add(CodeReviewReport(task_id=task.id, status="NEEDS_CHANGES", summary="fix"))
        db.session.flush()
        assert quality_gates.check_quality_gate("peer_review", task.id) is False
        db.session.add(CodeReviewReport(task_id=task.id, status="APPROVED", summary="ok"))
        db.session.flush()
        assert quality_gates.check_quality_gate("peer_review", task.id) is True

    def test_security_scan_and_unknown_gates_pass(self, task):
        assert quality_gates.check_quality_gate("security_scan", task.id) is True
        assert quality_gates.check_quality_gate("vibe_check", task.id) is True


# ═════════════════════════════════════════════════════════════════════════════
# Execution
# ═════════════════════════════════════════════════════════════════════════════


class TestExecuteTransition:
    def test_success_moves_task_and_execution(self, execution):
        task = db.session.get(Task, execution.task_id)
        result = execute_transition("boomerang_to_researcher", task.id, "Investigate auth libraries")

        assert result["success"] is True
        assert result["newRoleName"] == "researcher"
        assert result["message"].startswith("Successfully transitioned from")

        record = db.session.get(DelegationRecord, result["delegationRecordId"])
        assert (record.from_mode, record.to_mode) == ("boomerang", "researcher")
        assert record.message == "Investigate auth libraries"
        assert task.owner == "researcher"
        assert task.current_mode == "researcher"

        assert execution.current_role.name == "researcher"
        assert execution.current_step.name == "research_scoping"
        assert execution.total_steps == 3
        assert execution.execution_state["phase"] == "transitioned"
        assert execution.execution_state["lastTransition"]["transitionName"] == "boomerang_to_researcher"

    def test_default_handoff_message(self, seeded, task):
        result = execute_transition("boomerang_to_researcher", task.id)
        record = db.session.get(DelegationRecord, result["delegationRecordId"])
        assert record.message == "Transitioned via boomerang_to_researcher"

    def test_failed_validation_writes_nothing(self, execution):
        result = execute_transition("boomerang_to_architect", execution.task_id)

        assert result["success"] is False
        assert result["message"] == (
            "Transition validation failed: Required deliverable 'report:codebase_analysis' not found"
        )
        assert DelegationRecord.query.count() == 0
        assert execution.current_role.name == "boomerang"

    def test_without_execution_only_records_delegation(self, seeded, task):
        result = execute_transition("boomerang_to_researcher", task.id)
        assert result["success"] is True
        assert DelegationRecord.query.count() == 1

    def test_full_pipeline_to_review(self, execution):
        task_id = execution.task_id
        _complete(db.session.get(Task, task_id), "boomerang", "codebase_analysis")
        assert execute_transition("boomerang_to_architect", task_id)["success"] is True
        assert execute_transition("architecture_to_implementation", task_id)["success"] is True
        assert execute_transition("implementation_to_review", task_id)["success"] is True
        assert execution.current_role.name == "code-review"
        assert execution.current_step.name == "review_changes"


# ═════════════════════════════════════════════════════════════════════════════
# History / recommendations
# ═════════════════════════════════════════════════════════════════════════════


class TestHistoryAndRecommendations:
    def test_history_newest_first(self, seeded, task):
        execute_transition("boomerang_to_researcher", task.id)
        _complete(task, "researcher", "record_findings")
        execute_transition("research_to_architecture", task.id)

        history = get_transition_history(task.id)
        assert [(h["fromMode"], h["toMode"]) for h in history] == [
            ("researcher", "architect"),
            ("boomerang", "researcher"),
        ]

    def test_history_empty(self, task):
        assert get_transition_history(task.id) == []

    def test_recommendations_score_common_transitions_higher(self, seeded, task):
        db.session.add(CodeReviewReport(task_id=task.id, status="APPROVED", summary="ok"))
        db.session.flush()
        recommended = get_recommended_transitions("code-review", task.id)
        assert [(r["transition"]["transitionName"], r["score"]) for r in recommended] == [
            ("review_to_completion", 70),
            ("review_to_implementation", 50),
        ]
        assert recommended[0]["reason"] == "Common workflow transition"

    def test_invalid_transitions_not_recommended(self, seeded, task):
        recommended = get_recommended_transitions("boomerang", task.id)
        assert [r["transition"]["transitionName"] for r in recommended] == ["boomerang_to_researcher"]

    def test_at_most_three(self, seeded, task):
        for i in range(4):
            _transition(f"extra_{i}", from_role="boomerang", to_role="architect")
        assert len(get_recommended_transitions("boomerang", task.id)) == 3
