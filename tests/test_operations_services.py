"""
Operations services driven through their name-based ``execute`` entry point.

    TaskOperations, PlanningOperations, WorkflowOperations,
    ReviewOperations, ResearchOperations, SubtaskOperations

Parameters are passed in their camelCase wire form.
"""

import pytest

from app.core.exceptions import InvalidOperationError, NotFoundError, ValidationError
from app.models import db
from app.models.task import CodeReviewReport, Task, WorkflowTransition
from app.models.workflow import DelegationRecord
from app.services.operations import (
    planning_operations,
    research_operations,
    review_operations,
    subtask_operations,
    task_operations,
    workflow_operations,
)


def _plan(task_id):
    return planning_operations.execute("create_plan", {
        "taskId": task_id,
        "planData": {"overview": "Login form", "approach": "Server-side session"},
    })


def _subtask(task_id, name, sequence, dependencies=None, batch_id="B001"):
    return subtask_operations.execute("create_subtask", {
        "taskId": task_id,
        "subtaskData": {
            "name": name,
            "description": f"Implement {name}",
            "batchId": batch_id,
            "batchTitle": "Backend",
            "sequenceNumber": sequence,
            "dependencies": dependencies,
        },
    })["subtask"]


def _update_subtask(task_id, subtask_id, status, evidence=None):
    update = {"status": status}
    if evidence is not None:
        update["completionEvidence"] = evidence
    return subtask_operations.execute("update_subtask", {
        "taskId": task_id, "subtaskId": subtask_id, "updateData": update,
    })


# ═════════════════════════════════════════════════════════════════════════════
# TaskOperations
# ═════════════════════════════════════════════════════════════════════════════


class TestTaskOperations:
    def test_create_with_description(self):
        result = task_operations.execute("create", {
            "taskData": {"name": "Add Login Page", "priority": "High"},
            "description": {"description": "Email + password", "acceptanceCriteria": ["form renders"]},
        })
        assert result["task"]["slug"] == "add-login-page"
        assert result["task"]["owner"] == "boomerang"
        assert result["taskDescription"]["acceptanceCriteria"] == ["form renders"]
        assert result["codebaseAnalysis"] is None

    def test_name_required(self):
        with pytest.raises(ValidationError, match="Task name is required"):
            task_operations.execute("create", {"taskData": {"priority": "Low"}})

    def test_duplicate_names_get_unique_slugs(self):
        slugs = [
            task_operations.execute("create", {"taskData": {"name": "Fix bug"}})["task"]["slug"]
            for _ in range(3)
        ]
        assert slugs == ["fix-bug", "fix-bug-1", "fix-bug-2"]

    def test_get_by_id_or_slug(self, task):
        by_id = task_operations.execute("get", {"taskId": task.id})
        by_slug = task_operations.execute("get", {"taskSlug": "add-login-page"})
        assert by_id == by_slug

    def test_get_requires_a_key(self):
        with pytest.raises(ValidationError, match="taskId is required"):
            task_operations.execute("get", {})

    def test_get_missing(self):
        with pytest.raises(NotFoundError):
            task_operations.execute("get", {"taskId": 999})

    def test_update_upserts_analysis(self, task):
        task_operations.execute("update", {
            "taskId": task.id,
            "taskData": {"status": "in-progress"},
            "codebaseAnalysis": {"filesCovered": ["app.py"]},
        })
        task_operations.execute("update", {
            "taskId": task.id,
            "codebaseAnalysis": {"technologyStack": {"language": "python"}},
        })
        result = task_operations.execute("get", {"taskId": task.id, "includeAnalysis": True})
        assert result["status"] == "in-progress"
        assert result["codebaseAnalysis"]["filesCovered"] == ["app.py"]
        assert result["codebaseAnalysis"]["technologyStack"] == {"language": "python"}

    def test_completed_sets_completion_date(self, task):
        result = task_operations.execute("update", {
            "taskId": task.id, "taskData": {"status": "completed"},
        })
        assert result["task"]["completionDate"] is not None

    def test_list_filters(self, task):
        task_operations.execute("create", {"taskData": {"name": "Refactor", "priority": "Low"}})
        result = task_operations.execute("list", {"priority": "Low"})
        assert [t["name"] for t in result["tasks"]] == ["Refactor"]
        assert task_operations.execute("list", {"taskSlug": "login"})["count"] == 1

    def test_unknown_operation(self):
        with pytest.raises(InvalidOperationError):
            task_operations.execute("delete", {"taskId": 1})


# ═════════════════════════════════════════════════════════════════════════════
# PlanningOperations
# ═════════════════════════════════════════════════════════════════════════════


class TestPlanningOperations:
    def test_create_and_get_plan(self, task):
        plan = _plan(task.id)
        assert plan["createdBy"] == "architect"

        fetched = planning_operations.execute("get_plan", {"taskId": task.id})
        assert fetched["id"] == plan["id"]
        assert fetched["batches"] == []

    def test_plan_data_required(self, task):
        with pytest.raises(ValidationError):
            planning_operations.execute("create_plan", {"taskId": task.id})

    def test_update_plan(self, task):
        _plan(task.id)
        result = planning_operations.execute("update_plan", {
            "taskId": task.id, "planData": {"filesToModify": ["auth.py"]},
        })
        assert result["filesToModify"] == ["auth.py"]
        assert result["overview"] == "Login form"

    def test_get_plan_missing(self, task):
        with pytest.raises(NotFoundError):
            planning_operations.execute("get_plan", {"taskId": task.id})

    def test_create_subtasks_and_get_batch(self, task):
        _plan(task.id)
        created = planning_operations.execute("create_subtasks", {
            "taskId": task.id,
            "batchData": {
                "batchId": "B001",
                "batchTitle": "Backend",
                "subtasks": [
                    {"name": "model", "sequenceNumber": 1},
                    {"name": "routes", "sequenceNumber": 2},
                ],
            },
        })
        assert created["created"] == 2

        batch = planning_operations.execute("get_batch", {"taskId": task.id, "batchId": "B001"})
        assert (batch["totalSubtasks"], batch["notStarted"], batch["completed"]) == (2, 2, 0)

        plan = planning_operations.execute("get_plan", {"taskId": task.id})
        assert [b["batchTitle"] for b in plan["batches"]] == ["Backend"]

    def test_create_subtasks_needs_batch_id(self, task):
        _plan(task.id)
        with pytest.raises(ValidationError, match="Batch ID and subtasks are required"):
            planning_operations.execute("create_subtasks", {
                "taskId": task.id, "batchData": {"subtasks": [{"name": "x", "sequenceNumber": 1}]},
            })

    def test_update_batch_status(self, task):
        _plan(task.id)
        _subtask(task.id, "model", 1)
        _subtask(task.id, "routes", 2)
        result = planning_operations.execute("update_batch", {
            "taskId": task.id, "batchId": "B001", "newStatus": "completed",
        })
        assert result["updated"] == 2
        assert all(s["completedAt"] for s in result["subtasks"])

    def test_get_batch_unknown(self, task):
        with pytest.raises(NotFoundError):
            planning_operations.execute("get_batch", {"taskId": task.id, "batchId": "B404"})


# ═════════════════════════════════════════════════════════════════════════════
# WorkflowOperations
# ═════════════════════════════════════════════════════════════════════════════


class TestWorkflowOperations:
    def test_delegate(self, task):
        result = workflow_operations.execute("delegate", {
            "taskId": task.id, "fromRole": "boomerang", "toRole": "architect", "message": "Plan it",
        })
        assert (result["fromMode"], result["toMode"]) == ("boomerang", "architect")
        assert task.current_mode == "architect"
        assert task.redelegation_count == 1
        assert DelegationRecord.query.count() == 1

    def test_delegate_requires_both_roles(self, task):
        with pytest.raises(ValidationError, match="fromRole and toRole"):
            workflow_operations.execute("delegate", {"taskId": task.id, "toRole": "architect"})

    def test_unknown_role_name_rejected(self, task):
        with pytest.raises(ValidationError, match="Invalid parameters for 'delegate'"):
            workflow_operations.execute("delegate", {
                "taskId": task.id, "fromRole": "boomerang", "toRole": "wizard",
            })

    def test_complete(self, task):
        result = workflow_operations.execute("complete", {
            "taskId": task.id, "completionData": {"summary": "Shipped"},
        })
        assert result["toMode"] == "completed"
        assert result["reason"] == "Task completed: Shipped"
        assert task.status == "completed"

    def test_escalate_keeps_status(self, task):
        workflow_operations.execute("escalate", {
            "taskId": task.id, "escalationData": {"reason": "Blocked on API keys", "severity": "high"},
        })
        assert task.status == "not-started"
        assert WorkflowTransition.query.one().to_mode == "escalated"

    def test_transition(self, task):
        result = workflow_operations.execute("transition", {
            "taskId": task.id, "newStatus": "needs-review", "toRole": "code-review",
        })
        assert result["reason"] == "Status changed to needs-review"
        assert task.status == "needs-review"
        assert task.owner == "code-review"


# ═════════════════════════════════════════════════════════════════════════════
# ReviewOperations
# ═════════════════════════════════════════════════════════════════════════════


class TestReviewOperations:
    def _review(self, task_id, status="NEEDS_CHANGES"):
        return review_operations.execute("create_review", {
            "taskId": task_id,
            "reviewData": {"status": status, "summary": "Looks close", "issues": "Missing tests"},
        })

    def test_create_and_get_brief(self, task):
        self._review(task.id)
        brief = review_operations.execute("get_review", {"taskId": task.id})
        assert set(brief) == {"taskId", "status", "summary", "createdAt"}
        detail = review_operations.execute("get_review", {"taskId": task.id, "includeDetails": True})
        assert detail["issues"] == "Missing tests"

    def test_status_and_summary_required(self, task):
        with pytest.raises(ValidationError, match="status and summary"):
            review_operations.execute("create_review", {
                "taskId": task.id, "reviewData": {"status": "APPROVED"},
            })

    def test_update_acts_on_latest(self, task):
        self._review(task.id)
        self._review(task.id)
        result = review_operations.execute("update_review", {
            "taskId": task.id, "reviewData": {"status": "APPROVED"},
        })
        assert result["status"] == "APPROVED"
        assert review_operations.execute("get_review", {"taskId": task.id})["status"] == "APPROVED"
        first = review_operations.latest_review(task.id).id - 1
        assert db.session.get(CodeReviewReport, first).status == "NEEDS_CHANGES"

    def test_completion_report(self, task):
        review_operations.execute("create_completion", {
            "taskId": task.id, "completionData": {"summary": "Done", "filesModified": ["a.py"]},
        })
        brief = review_operations.execute("get_completion", {"taskId": task.id})
        assert set(brief) == {"taskId", "summary", "createdAt"}

    def test_missing_review(self, task):
        with pytest.raises(NotFoundError):
            review_operations.execute("get_review", {"taskId": task.id})


# ═════════════════════════════════════════════════════════════════════════════
# ResearchOperations
# ═════════════════════════════════════════════════════════════════════════════


class TestResearchOperations:
    def test_create_update_get(self, task):
        research_operations.execute("create_research", {
            "taskId": task.id, "researchData": {"findings": "Use argon2"},
        })
        research_operations.execute("update_research", {
            "taskId": task.id, "researchData": {"recommendations": "argon2-cffi"},
        })
        result = research_operations.execute("get_research", {"taskId": task.id})
        assert result["findings"] == "Use argon2"
        assert result["recommendations"] == "argon2-cffi"
        assert result["researchedBy"] == "researcher"

    def test_findings_required(self, task):
        with pytest.raises(ValidationError, match="findings are required"):
            research_operations.execute("create_research", {
                "taskId": task.id, "researchData": {"recommendations": "x"},
            })

    def test_comments(self, task):
        task.current_mode = "architect"
        db.session.flush()
        research_operations.execute("add_comment", {
            "taskId": task.id, "commentData": {"content": "Which hash?", "contextType": "technical"},
        })
        research_operations.execute("add_comment", {
            "taskId": task.id, "commentData": {"content": "Budget?", "author": "boomerang",
                                               "contextType": "business"},
        })
        result = research_operations.execute("get_comments", {"taskId": task.id})
        assert result["summary"] == {"total": 2, "byType": {"technical": 1, "business": 1}}
        authors = {c["content"]: c["author"] for c in result["comments"]}
        assert authors == {"Which hash?": "architect", "Budget?": "boomerang"}

        filtered = research_operations.execute("get_comments", {
            "taskId": task.id, "commentType": "business",
        })
        assert filtered["summary"]["total"] == 1

    def test_research_with_comments(self, task):
        research_operations.execute("create_research", {
            "taskId": task.id, "researchData": {"findings": "f"},
        })
        research_operations.execute("add_comment", {
            "taskId": task.id, "commentData": {"content": "c"},
        })
        result = research_operations.execute("get_research", {"taskId": task.id, "includeComments": True})
        assert [c["content"] for c in result["comments"]] == ["c"]


# ═════════════════════════════════════════════════════════════════════════════
# SubtaskOperations
# ═════════════════════════════════════════════════════════════════════════════


class TestSubtaskOperations:
    def test_create_requires_plan(self, task):
        with pytest.raises(NotFoundError):
            _subtask(task.id, "model", 1)

    def test_dependencies_by_name(self, task):
        _plan(task.id)
        model = _subtask(task.id, "model", 1)
        routes = _subtask(task.id, "routes", 2, dependencies=["model"])

        result = subtask_operations.execute("get_subtask", {"taskId": task.id, "subtaskId": routes["id"]})
        assert [d["name"] for d in result["dependsOn"]] == ["model"]
        assert result["dependencyStatus"] == {
            "totalDependencies": 1, "completedDependencies": 0, "canStart": False,
        }
        assert "completionEvidence" not in result["subtask"]

        upstream = subtask_operations.execute("get_subtask", {"taskId": task.id, "subtaskId": model["id"]})
        assert [d["name"] for d in upstream["dependents"]] == ["routes"]

    def test_missing_dependency(self, task):
        _plan(task.id)
        with pytest.raises(ValidationError, match="Dependency subtasks not found: ghost"):
            _subtask(task.id, "routes", 2, dependencies=["ghost"])

    def test_start_blocked_by_incomplete_dependency(self, task):
        _plan(task.id)
        _subtask(task.id, "model", 1)
        routes = _subtask(task.id, "routes", 2, dependencies=["model"])
        with pytest.raises(ValidationError) as exc_info:
            _update_subtask(task.id, routes["id"], "in-progress")
        assert exc_info.value.details == {"incompleteDependencies": ["model"]}

    def test_needs_review_is_not_gated(self, task):
        _plan(task.id)
        _subtask(task.id, "model", 1)
        routes = _subtask(task.id, "routes", 2, dependencies=["model"])
        assert _update_subtask(task.id, routes["id"], "needs-review")["subtask"]["status"] == "needs-review"

    def test_next_subtask_skips_blocked(self, task):
        _plan(task.id)
        model = _subtask(task.id, "model", 1)
        _subtask(task.id, "routes", 2, dependencies=["model"])

        nxt = subtask_operations.execute("get_next_subtask", {"taskId": task.id})
        assert nxt["nextSubtask"]["name"] == "model"

        blocked = subtask_operations.execute("get_next_subtask", {
            "taskId": task.id, "currentSubtaskId": model["id"],
        })
        assert blocked["nextSubtask"] is None
        pending = {b["name"]: b["pendingDependencies"] for b in blocked["blockedSubtasks"]}
        assert pending["routes"] == ["model"]

    def test_next_subtask_none(self, task):
        result = subtask_operations.execute("get_next_subtask", {"taskId": task.id})
        assert result == {"nextSubtask": None, "message": "No eligible subtasks found"}

    def test_batch_completion_aggregates_evidence(self, task):
        _plan(task.id)
        model = _subtask(task.id, "model", 1)
        routes = _subtask(task.id, "routes", 2, dependencies=["model"])

        first = _update_subtask(task.id, model["id"], "completed", {"filesModified": ["models.py"]})
        assert first["batchCompletionInfo"]["batchCompleted"] is False
        assert first["batchCompletionInfo"]["message"].endswith("1/2 subtasks completed")

        last = _update_subtask(
            task.id, routes["id"], "completed", {"filesModified": ["routes.py", "models.py"]},
        )
        info = last["batchCompletionInfo"]
        assert info["batchCompleted"] is True
        assert info["aggregatedEvidence"]["filesModified"] == ["models.py", "routes.py"]
        assert info["aggregatedEvidence"]["totalSubtasks"] == 2

    def test_subtask_of_other_task_not_found(self, task):
        _plan(task.id)
        model = _subtask(task.id, "model", 1)
        other = Task(name="Other", slug="other")
        db.session.add(other)
        db.session.flush()
        with pytest.raises(NotFoundError):
            subtask_operations.execute("get_subtask", {"taskId": other.id, "subtaskId": model["id"]})
