"""
MCP tool surface: registry, envelope, per-tool behaviour and the stdio server handlers.

``call_tool`` commits on success, so fixtures that must survive a rollback
inside a tool are committed first.
"""

import asyncio
import json
import logging

import pytest
from sqlalchemy import text

from app.mcp import server, tools
from app.mcp.envelope import error_response, is_error, payload_of, success_response
from app.models import db
from app.models.task import Task
from app.models.workflow import WorkflowExecution, WorkflowRole, WorkflowStep, WorkflowStepProgress
from app.services import step_progress_service


def _call(name, **arguments):
    return payload_of(tools.call_tool(name, arguments))


def _error(name, **arguments):
    envelope = tools.call_tool(name, arguments)
    assert is_error(envelope)
    return payload_of(envelope)["error"]


def _seeded_step(role_name, step_name):
    role = WorkflowRole.query.filter_by(name=role_name).first()
    return WorkflowStep.query.filter_by(role_id=role.id, name=step_name).first()


# ═════════════════════════════════════════════════════════════════════════════
# Registry and envelope
# ═════════════════════════════════════════════════════════════════════════════


class TestRegistry:
    def test_twelve_tools(self):
        assert sorted(tools.TOOL_REGISTRY) == [
            "bootstrap_workflow",
            "execute_mcp_operation",
            "execute_transition",
            "get_next_available_step",
            "get_role_transitions",
            "get_step_guidance",
            "get_step_progress",
            "get_transition_history",
            "get_workflow_guidance",
            "report_step_completion",
            "validate_transition",
            "workflow_execution_operations",
        ]

    def test_schemas_are_camel_case(self):
        schema = tools.TOOL_REGISTRY["report_step_completion"].input_schema()
        assert {"taskId", "executionId", "stepId", "result", "mcpResults"} <= set(schema["properties"])
        assert "task_id" not in schema["properties"]

    def test_list_tools_shape(self):
        for entry in tools.list_tools():
            assert set(entry) == {"name", "description", "inputSchema"}
            assert entry["description"]


class TestEnvelope:
    def test_success_is_single_text_item(self):
        envelope = success_response({"a": 1})
        assert len(envelope["content"]) == 1
        assert envelope["content"][0]["type"] == "text"
        assert envelope["content"][0]["text"] == '{\n  "a": 1\n}'

    def test_error_body(self):
        body = payload_of(error_response("nope", {"k": "v"}, "SOME_CODE"))
        assert body["type"] == "error"
        assert body["success"] is False
        assert body["error"] == {"message": "nope", "details": {"k": "v"}, "code": "SOME_CODE"}
        assert body["timestamp"]

    def test_unknown_tool(self):
        error = _error("summon_dragon")
        assert error["code"] == "UNKNOWN_TOOL"
        assert "get_step_guidance" in error["details"]["availableTools"]

    def test_invalid_input(self):
        error = _error("report_step_completion", stepId="s", result="success")
        assert error["code"] == "VALIDATION_ERROR"
        assert error["message"] == "Invalid input for report_step_completion"

    def test_domain_error_uses_tool_code(self, seeded):
        error = _error("get_next_available_step", roleId="wizard", taskId=1)
        assert error["code"] == "NEXT_STEP_ERROR"
        assert error["message"] == "Failed to get next available step"
        assert "not found" in error["details"]


# ═════════════════════════════════════════════════════════════════════════════
# Step tools
# ═════════════════════════════════════════════════════════════════════════════


class TestStepGuidanceTool:
    def test_defaults_to_execution_cursor(self, execution):
        payload = _call("get_step_guidance", taskId=execution.task_id, roleId="boomerang")
        assert payload["stepInfo"]["name"] == "git_integration_setup"
        assert payload["stepInfo"]["executionId"] == execution.id
        assert payload["localExecution"]["commands"] == ["git status --porcelain"]
        assert "mcpOperations" not in payload

    def test_by_execution_id(self, execution):
        payload = _call("get_step_guidance", executionId=execution.id, roleId="boomerang")
        assert payload["stepInfo"]["taskId"] == execution.task_id

    def test_mcp_operations_listed(self, execution):
        step = _seeded_step("boomerang", "task_creation")
        payload = _call("get_step_guidance", taskId=execution.task_id, roleId="boomerang", stepId=step.id)
        operation = payload["mcpOperations"][0]
        assert (operation["serviceName"], operation["operation"]) == ("TaskOperations", "create")
        assert "taskData" in operation["optionalParameters"]
        assert payload["localExecution"]["commands"] == ["Execute TaskOperations.create"]

    def test_read_only(self, execution):
        _call("get_step_guidance", taskId=execution.task_id, roleId="boomerang")
        assert WorkflowStepProgress.query.count() == 0

    def test_task_or_execution_required(self, seeded):
        assert _error("get_step_guidance", roleId="boomerang")["code"] == "VALIDATION_ERROR"


class TestReportStepCompletionTool:
    def test_success_advances(self, execution):
        step_id = execution.current_step_id
        payload = _call(
            "report_step_completion",
            taskId=execution.task_id, stepId=step_id, result="success", executionTime=1200,
        )
        assert payload["completion"]["result"] == "success"
        assert payload["nextGuidance"]["nextStep"]["name"] == "codebase_analysis"
        assert payload["execution"]["stepsCompleted"] == 1
        assert WorkflowStepProgress.query.one().duration_ms == 1200

    def test_failed_mcp_action_downgrades_success(self, execution):
        payload = _call(
            "report_step_completion",
            executionId=execution.id,
            stepId=execution.current_step_id,
            result="success",
            mcpResults=[{"actionName": "create_task", "success": False, "error": "boom"}],
        )
        assert payload["completion"]["result"] == "failure"
        assert payload["errors"] == ["MCP action failed: create_task - boom"]
        assert payload["nextGuidance"]["message"] == "Retry the step after reviewing the error"
        assert payload["execution"]["stepsCompleted"] == 0

    def test_last_step_of_role(self, execution):
        step = _seeded_step("boomerang", "delegate_work")
        payload = _call("report_step_completion", taskId=execution.task_id, stepId=step.id, result="success")
        assert payload["nextGuidance"]["hasNextStep"] is False
        assert payload["nextGuidance"]["message"].startswith("No further steps in this role")

    def test_concurrent_update_is_reported(self, execution, monkeypatch):
        execution_id, step_id, task_id = execution.id, execution.current_step_id, execution.task_id
        db.session.commit()

        original = step_progress_service.record_step_completion

        def racing(*args, **kwargs):
            progress = original(*args, **kwargs)
            db.session.execute(
                text("UPDATE workflow_executions SET version = version + 1 WHERE id = :id"),
                {"id": execution_id},
            )
            return progress

        monkeypatch.setattr(step_progress_service, "record_step_completion", racing)
        error = _error("report_step_completion", taskId=task_id, stepId=step_id, result="success")

        assert error["code"] == "STEP_COMPLETION_ERROR"
        assert "modified concurrently" in error["details"]
        assert db.session.get(WorkflowExecution, execution_id).steps_completed == 0
        assert WorkflowStepProgress.query.count() == 0

    def test_logs_tool_name(self, execution, caplog):
        caplog.set_level(logging.INFO, logger="app.mcp.tools")
        _call("report_step_completion", taskId=execution.task_id,
              stepId=execution.current_step_id, result="success")
        records = [r for r in caplog.records if r.name == "app.mcp.tools"]
        assert records[-1].tool_name == "report_step_completion"
        assert records[-1].getMessage().startswith("Tool report_step_completion completed")


class TestExecuteMcpOperationTool:
    def test_success(self):
        payload = _call(
            "execute_mcp_operation",
            serviceName="TaskOperations", operation="create",
            parameters={"taskData": {"name": "From agent"}},
        )
        assert payload["success"] is True
        assert payload["data"]["task"]["slug"] == "from-agent"
        assert Task.query.count() == 1

    def test_failure_is_an_error_envelope(self):
        error = _error("execute_mcp_operation", serviceName="TaskOperations", operation="delete")
        assert error["code"] == "MCP_OPERATION_ERROR"
        assert error["message"] == "Failed to execute TaskOperations.delete"
        assert error["details"]["errorCode"] == "INVALID_OPERATION"
        assert "TaskOperations" in error["details"]["supportedServices"]

    def test_unknown_service_is_an_error_envelope(self):
        envelope = tools.call_tool(
            "execute_mcp_operation",
            {"serviceName": "NoSuchService", "operation": "create", "parameters": {}},
        )
        error = payload_of(envelope)["error"]
        assert payload_of(envelope)["success"] is False
        assert error["code"] == "MCP_OPERATION_ERROR"
        assert error["details"]["errorCode"] == "SERVICE_NOT_FOUND"
        assert Task.query.count() == 0


class TestProgressTools:
    def test_no_execution(self, task):
        payload = _call("get_step_progress", taskId=task.id)
        assert payload["status"] == "no_execution"
        assert payload["summary"]["totalAttempts"] == 0

    def test_in_progress(self, execution):
        payload = _call("get_step_progress", taskId=execution.task_id)
        assert payload["status"] == "in_progress"
        assert payload["currentStep"]["name"] == "git_integration_setup"
        assert payload["progress"]["totalSteps"] == 4

    def test_next_available_step(self, execution):
        payload = _call("get_next_available_step", roleId="boomerang", taskId=execution.task_id)
        assert payload["status"] == "step_available"
        assert payload["nextStep"]["name"] == "git_integration_setup"

    def test_role_mismatch(self, execution):
        payload = _call("get_next_available_step", roleId="architect", taskId=execution.task_id)
        assert payload["status"] == "role_mismatch"
        assert payload["currentRole"] == "boomerang"


# ═════════════════════════════════════════════════════════════════════════════
# Execution, transitions, bootstrap, guidance
# ═════════════════════════════════════════════════════════════════════════════


class TestWorkflowExecutionTool:
    def test_create_and_get(self, seeded, task):
        created = _call("workflow_execution_operations", operation="create_execution",
                        taskId=task.id, roleName="architect")
        assert created["success"] is True
        execution_id = created["data"]["execution"]["id"]

        fetched = _call("workflow_execution_operations", operation="get_execution",
                        executionId=execution_id)
        assert fetched["data"]["execution"]["currentStep"]["name"] == "review_requirements"

    def test_create_requires_role(self, task):
        error = _error("workflow_execution_operations", operation="create_execution", taskId=task.id)
        assert error["code"] == "VALIDATION_ERROR"

    def test_unknown_execution(self):
        error = _error("workflow_execution_operations", operation="get_execution", executionId="nope")
        assert error["code"] == "WORKFLOW_EXECUTION_FAILED"
        assert error["message"] == "Failed to execute workflow operation"

    def test_context_round_trip(self, execution):
        _call("workflow_execution_operations", operation="update_execution_context",
              executionId=execution.id, contextUpdates={"branch": "main"})
        payload = _call("workflow_execution_operations", operation="get_execution_context",
                        executionId=execution.id, dataKey="branch")
        assert payload["data"]["value"] == "main"

    def test_step_with_services(self, execution):
        step = _seeded_step("boomerang", "task_creation")
        payload = _call(
            "workflow_execution_operations", operation="execute_step_with_services",
            taskId=execution.task_id, stepId=step.id,
            orchestrationConfig={"serviceCalls": [{
                "serviceName": "TaskOperations", "operation": "create",
                "parameters": {"taskData": {"name": "Real task"}},
            }]},
        )
        assert payload["data"]["executionResult"]["successCount"] == 1


class TestTransitionTools:
    def test_role_transitions_summary(self, execution):
        payload = _call("get_role_transitions", fromRoleName="boomerang", taskId=execution.task_id)
        assert payload["summary"] == {"total": 2, "valid": 1}
        assert [r["transition"]["transitionName"] for r in payload["recommendations"]] == [
            "boomerang_to_researcher",
        ]

    def test_validate(self, execution):
        payload = _call("validate_transition", transitionId="boomerang_to_architect",
                        taskId=execution.task_id)
        assert payload["canExecute"] is False

    def test_execute_failure_is_a_normal_payload(self, execution):
        payload = _call("execute_transition", transitionId="boomerang_to_architect",
                        taskId=execution.task_id)
        assert payload["success"] is False
        assert payload["transitionResult"]["errors"]

    def test_execute_and_history(self, execution):
        payload = _call("execute_transition", transitionId="boomerang_to_researcher",
                        taskId=execution.task_id, handoffMessage="Compare auth libraries")
        assert payload["success"] is True

        history = _call("get_transition_history", taskId=execution.task_id)
        assert history["totalTransitions"] == 1
        assert history["history"][0]["message"] == "Compare auth libraries"
        assert db.session.get(WorkflowExecution, execution.id).current_role.name == "researcher"


class TestBootstrapTool:
    def test_success(self, seeded):
        payload = _call("bootstrap_workflow", taskName="Add password reset", initialRole="boomerang")
        assert payload["success"] is True
        assert payload["resources"]["executionId"]

    def test_failure_envelope(self, seeded):
        error = _error("bootstrap_workflow", taskName="ab", initialRole="boomerang")
        assert error["code"] == "BOOTSTRAP_ERROR"
        assert error["message"].startswith("Bootstrap validation failed")
        assert error["details"]["success"] is False
        assert Task.query.count() == 0


class TestWorkflowGuidanceTool:
    def test_role_guidance(self, seeded):
        payload = _call("get_workflow_guidance", roleName="architect", executionData={"note": "x"})
        assert payload["currentRole"]["name"] == "architect"
        assert payload["currentStep"]["name"] == "review_requirements"
        assert payload["executionData"] == {"note": "x"}

    def test_unknown_role_rejected_by_schema(self):
        assert _error("get_workflow_guidance", roleName="wizard")["code"] == "VALIDATION_ERROR"


# ═════════════════════════════════════════════════════════════════════════════
# stdio server handlers
# ═════════════════════════════════════════════════════════════════════════════


class TestServer:
    @pytest.fixture(autouse=True)
    def _use_test_app(self, app, monkeypatch):
        monkeypatch.setattr(server, "_flask_app", app)

    def test_list_tools(self):
        listed = asyncio.run(server.handle_list_tools())
        assert len(listed) == 12
        assert listed[0].inputSchema["type"] == "object"

    def test_call_tool_returns_text_content(self):
        content = asyncio.run(server.handle_call_tool("get_transition_history", {"taskId": 1}))
        assert len(content) == 1
        assert content[0].type == "text"
        assert json.loads(content[0].text)["totalTransitions"] == 0

    def test_slow_tool_does_not_block_the_loop(self, monkeypatch):
        import time

        def slow_call(name, arguments):
            time.sleep(0.5)
            return success_response({"done": True})

        monkeypatch.setattr(tools, "call_tool", slow_call)

        async def scenario():
            ticks = 0

            async def ticker():
                nonlocal ticks
                while True:
                    await asyncio.sleep(0.02)
                    ticks += 1

            ticking = asyncio.create_task(ticker())
            content = await server.handle_call_tool("validate_transition", {})
            ticking.cancel()
            return ticks, content

        ticks, content = asyncio.run(scenario())
        assert json.loads(content[0].text) == {"done": True}
        assert ticks >= 10

    def test_call_unknown_tool(self):
        content = asyncio.run(server.handle_call_tool("summon_dragon", {}))
        assert json.loads(content[0].text)["error"]["code"] == "UNKNOWN_TOOL"

    def test_describe_tools(self):
        described = json.loads(server.describe_tools())
        assert {d["name"] for d in described} == set(tools.TOOL_REGISTRY)
