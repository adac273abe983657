"""
Core orchestrator: name-based dispatch, error codes, savepoints, step modes.
"""

import pytest

from app.core.exceptions import ValidationError
from app.models import db
from app.models.task import Task
from app.services import core_orchestrator
from app.services.operations import task_operations


def _create_call(name="Write docs"):
    return {
        "serviceName": "TaskOperations",
        "operation": "create",
        "parameters": {"taskData": {"name": name}},
    }


def _bad_call():
    return {"serviceName": "TaskOperations", "operation": "explode", "parameters": {}}


# ═════════════════════════════════════════════════════════════════════════════
# Registry
# ═════════════════════════════════════════════════════════════════════════════


class TestRegistry:
    def test_six_services_registered(self):
        assert sorted(core_orchestrator.get_supported_services()) == [
            "PlanningOperations",
            "ResearchOperations",
            "ReviewOperations",
            "SubtaskOperations",
            "TaskOperations",
            "WorkflowOperations",
        ]

    def test_is_operation_supported(self):
        assert core_orchestrator.is_operation_supported("TaskOperations", "create") is True
        assert core_orchestrator.is_operation_supported("TaskOperations", "delete") is False
        assert core_orchestrator.is_operation_supported("Nope", "create") is False


# ═════════════════════════════════════════════════════════════════════════════
# Single call
# ═════════════════════════════════════════════════════════════════════════════


class TestExecuteServiceCall:
    def test_success(self):
        result = core_orchestrator.execute_service_call(
            "TaskOperations", "create", {"taskData": {"name": "Write docs"}},
        )
        assert result["success"] is True
        assert result["data"]["task"]["name"] == "Write docs"
        assert isinstance(result["duration"], int)
        assert Task.query.count() == 1

    def test_unknown_service(self):
        result = core_orchestrator.execute_service_call("MagicOperations", "create", {})
        assert result["success"] is False
        assert result["errorCode"] == "SERVICE_NOT_FOUND"

    def test_unsupported_operation_lists_alternatives(self):
        result = core_orchestrator.execute_service_call("TaskOperations", "delete", {})
        assert result["errorCode"] == "INVALID_OPERATION"
        assert result["details"]["supportedOperations"] == ["create", "update", "get", "list"]

    def test_business_rule_uses_service_error_code(self):
        result = core_orchestrator.execute_service_call("TaskOperations", "create", {"taskData": {}})
        assert result["errorCode"] == "TASK_OPERATION_FAILED"
        assert result["error"] == "Task name is required for creation"

    def test_schema_violation(self):
        result = core_orchestrator.execute_service_call(
            "TaskOperations", "create", {"taskData": {"name": "x", "priority": "Urgent"}},
        )
        assert result["success"] is False
        assert result["error"].startswith("Invalid parameters for 'create'")
        assert result["details"]["errors"]

    def test_missing_record(self):
        result = core_orchestrator.execute_service_call("TaskOperations", "get", {"taskId": 404})
        assert result["success"] is False
        assert result["errorCode"] == "TASK_OPERATION_FAILED"
        assert "not found" in result["error"]

    def test_failed_call_rolls_back_only_its_own_writes(self, monkeypatch):
        core_orchestrator.execute_batch_service_calls([_create_call("Kept")])

        def half_then_fail(data):
            db.session.add(Task(name="Half written", slug="half-written"))
            db.session.flush()
            raise ValidationError("stopped halfway")

        monkeypatch.setitem(task_operations._HANDLERS, "create", half_then_fail)
        result = core_orchestrator.execute_service_call(
            "TaskOperations", "create", {"taskData": {"name": "Lost"}},
        )

        assert result["success"] is False
        assert [t.name for t in Task.query.all()] == ["Kept"]


# ═════════════════════════════════════════════════════════════════════════════
# Batches and step execution
# ═════════════════════════════════════════════════════════════════════════════


class TestBatch:
    def test_counts(self):
        result = core_orchestrator.execute_batch_service_calls([_create_call("A"), _bad_call()])
        assert result["overallSuccess"] is True
        assert (result["successCount"], result["failureCount"]) == (1, 1)

    def test_all_failed(self):
        result = core_orchestrator.execute_batch_service_calls([_bad_call()])
        assert result["overallSuccess"] is False


class TestExecuteStepWithServices:
    def test_no_calls(self):
        with pytest.raises(ValidationError, match="No service calls provided"):
            core_orchestrator.execute_step_with_services("step-1", [])

    def test_unknown_mode(self):
        with pytest.raises(ValidationError, match="Execution mode"):
            core_orchestrator.execute_step_with_services("step-1", [_create_call()], "random")

    def test_sequential_stops_at_first_failure(self):
        with pytest.raises(ValidationError) as exc_info:
            core_orchestrator.execute_step_with_services(
                "step-1", [_create_call("A"), _bad_call(), _create_call("B")],
            )
        assert "TaskOperations.explode" in str(exc_info.value)
        assert len(exc_info.value.details["results"]) == 2
        assert [t.name for t in Task.query.all()] == ["A"]

    def test_sequential_continue_on_failure(self):
        result = core_orchestrator.execute_step_with_services(
            "step-1", [_bad_call(), _create_call("B")], continue_on_failure=True,
        )
        assert (result["successCount"], result["failureCount"]) == (1, 1)
        assert result["executionMode"] == "sequential"

    def test_parallel_tolerates_partial_failure(self):
        result = core_orchestrator.execute_step_with_services(
            "step-1", [_bad_call(), _create_call("B")], "parallel",
        )
        assert result["overallSuccess"] is True
        assert result["failureCount"] == 1

    def test_parallel_all_failed(self):
        with pytest.raises(ValidationError, match="1 of 1 operations failed"):
            core_orchestrator.execute_step_with_services("step-1", [_bad_call()], "parallel")
