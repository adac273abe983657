"""
Default workflow definition: five roles, their ordered steps and the
hand-off transitions between them.

    seed_default_workflow()  insert whatever is missing; safe to run repeatedly

Existing rows are never modified, so local edits to a seeded step survive
a re-seed. Call from the ``flask seed-workflow`` command or from tests.
"""

import logging

from app.models import db
from app.models.workflow import RoleTransition, StepAction, StepCondition, WorkflowRole, WorkflowStep

logger = logging.getLogger(__name__)


def _mcp(name, service, operation, order=1, **parameters):
    return {
        "name": name,
        "action_type": "MCP_CALL",
        "sequence_order": order,
        "action_data": {"serviceName": service, "operation": operation, "parameters": parameters},
    }


def _command(name, command, order=1):
    return {
        "name": name,
        "action_type": "COMMAND",
        "sequence_order": order,
        "action_data": {"command": command},
    }


def _reminder(name, text, order=1):
    return {
        "name": name,
        "action_type": "REMINDER",
        "sequence_order": order,
        "action_data": {"message": text},
    }


DEFAULT_ROLES = [
    {
        "name": "boomerang",
        "display_name": "Boomerang",
        "description": "Intake and final delivery: sets up the task and hands work around the pipeline.",
        "priority": 1,
        "capabilities": {
            "taskCreation": True,
            "delegation": True,
            "qualityReminders": [
                "Confirm the git working tree is clean before starting",
                "Capture acceptance criteria before delegating",
            ],
        },
    },
    {
        "name": "researcher",
        "display_name": "Researcher",
        "description": "Investigates options and risks before design starts.",
        "priority": 2,
        "capabilities": {
            "research": True,
            "qualityReminders": ["Cite evidence for every recommendation"],
        },
    },
    {
        "name": "architect",
        "display_name": "Architect",
        "description": "Designs the solution and breaks it into batched subtasks.",
        "priority": 3,
        "capabilities": {
            "planning": True,
            "qualityReminders": [
                "Every subtask needs acceptance criteria",
                "Keep batches independently reviewable",
            ],
        },
    },
    {
        "name": "senior-developer",
        "display_name": "Senior Developer",
        "description": "Implements subtasks in dependency order with evidence.",
        "priority": 4,
        "capabilities": {
            "implementation": True,
            "qualityReminders": [
                "Run the test suite before marking a subtask completed",
                "Record modified files as completion evidence",
            ],
        },
    },
    {
        "name": "code-review",
        "display_name": "Code Review",
        "description": "Verifies the implementation against acceptance criteria.",
        "priority": 5,
        "capabilities": {
            "review": True,
            "qualityReminders": ["Test manually, do not rely on the diff alone"],
        },
    },
]


DEFAULT_STEPS = {
    "boomerang": [
        {
            "name": "git_integration_setup",
            "display_name": "Git integration setup",
            "description": "Verify the repository state and create a feature branch.",
            "step_type": "VALIDATION",
            "estimated_time": "2-5 minutes",
            "behavioral_context": {
                "approach": "Check before changing anything",
                "principles": ["Never work on a dirty tree"],
            },
            "approach_guidance": {
                "stepByStep": ["Run git status", "Create a feature branch"],
            },
            "quality_checklist": ["Working tree clean", "Feature branch checked out"],
            "action_data": {
                "successCriteria": ["Feature branch exists"],
                "failureCriteria": ["Uncommitted changes present"],
                "troubleshooting": ["Stash or commit pending changes first"],
            },
            "actions": [_command("check_git_status", "git status --porcelain")],
            "conditions": [{"name": "repository_present", "logic": {"path": ".git"}}],
        },
        {
            "name": "codebase_analysis",
            "display_name": "Codebase analysis",
            "description": "Survey the codebase and capture architecture findings.",
            "step_type": "ANALYSIS",
            "estimated_time": "10-15 minutes",
            "approach_guidance": {
                "stepByStep": ["Identify the stack", "Note integration points", "List problem areas"],
            },
            "actions": [],
        },
        {
            "name": "task_creation",
            "display_name": "Create the task",
            "description": "Create the real task with description and codebase analysis.",
            "step_type": "ACTION",
            "estimated_time": "5 minutes",
            "quality_checklist": ["Acceptance criteria are testable"],
            "actions": [
                _mcp("create_task", "TaskOperations", "create"),
            ],
        },
        {
            "name": "delegate_work",
            "display_name": "Delegate",
            "description": "Hand the task to the researcher or the architect.",
            "step_type": "DELEGATION",
            "estimated_time": "2 minutes",
            "actions": [
                _mcp("delegate_task", "WorkflowOperations", "delegate", fromRole="boomerang"),
            ],
        },
    ],
    "researcher": [
        {
            "name": "research_scoping",
            "display_name": "Scope the research",
            "description": "Turn open questions into concrete research goals.",
            "step_type": "ANALYSIS",
            "estimated_time": "5 minutes",
            "actions": [_mcp("load_task", "TaskOperations", "get", includeDescription=True)],
        },
        {
            "name": "investigate_options",
            "display_name": "Investigate options",
            "description": "Compare technology options and implementation approaches.",
            "step_type": "ANALYSIS",
            "estimated_time": "20-30 minutes",
            "actions": [],
        },
        {
            "name": "record_findings",
            "display_name": "Record findings",
            "description": "Store findings, recommendations and risks.",
            "step_type": "REPORTING",
            "estimated_time": "10 minutes",
            "actions": [_mcp("create_research_report", "ResearchOperations", "create_research")],
        },
    ],
    "architect": [
        {
            "name": "review_requirements",
            "display_name": "Review requirements",
            "description": "Read the task, its analysis and any research report.",
            "step_type": "ANALYSIS",
            "estimated_time": "10 minutes",
            "actions": [
                _mcp("load_task", "TaskOperations", "get", 1,
                     includeDescription=True, includeAnalysis=True),
                _reminder("check_research", "Read the research report if one exists", 2),
            ],
        },
        {
            "name": "create_implementation_plan",
            "display_name": "Create implementation plan",
            "description": "Write the overview, approach and technical decisions.",
            "step_type": "ACTION",
            "estimated_time": "15-20 minutes",
            "actions": [_mcp("create_plan", "PlanningOperations", "create_plan")],
        },
        {
            "name": "create_subtasks",
            "display_name": "Create subtasks",
            "description": "Break the plan into batches of ordered subtasks.",
            "step_type": "ACTION",
            "estimated_time": "15 minutes",
            "quality_checklist": {"items": ["Each batch is independently reviewable"]},
            "actions": [_mcp("create_subtasks", "PlanningOperations", "create_subtasks")],
        },
    ],
    "senior-developer": [
        {
            "name": "pick_next_subtask",
            "display_name": "Pick next subtask",
            "description": "Select the next subtask whose dependencies are complete.",
            "step_type": "ANALYSIS",
            "estimated_time": "2 minutes",
            "actions": [_mcp("next_subtask", "SubtaskOperations", "get_next_subtask")],
        },
        {
            "name": "implement_subtask",
            "display_name": "Implement subtask",
            "description": "Write the code and tests for the subtask.",
            "step_type": "ACTION",
            "estimated_time": "30-60 minutes",
            "actions": [_command("run_tests", "npm test")],
        },
        {
            "name": "record_subtask_evidence",
            "display_name": "Record evidence",
            "description": "Mark the subtask completed with files and test results.",
            "step_type": "VALIDATION",
            "estimated_time": "5 minutes",
            "actions": [_mcp("complete_subtask", "SubtaskOperations", "update_subtask")],
        },
        {
            "name": "hand_off_for_review",
            "display_name": "Hand off for review",
            "description": "Move the task to code review once every batch is done.",
            "step_type": "DELEGATION",
            "estimated_time": "2 minutes",
            "actions": [],
        },
    ],
    "code-review": [
        {
            "name": "review_changes",
            "display_name": "Review changes",
            "description": "Read the diff against the plan and acceptance criteria.",
            "step_type": "ANALYSIS",
            "estimated_time": "15-30 minutes",
            "actions": [_mcp("load_plan", "PlanningOperations", "get_plan")],
        },
        {
            "name": "manual_testing",
            "display_name": "Manual testing",
            "description": "Exercise the feature by hand.",
            "step_type": "VALIDATION",
            "estimated_time": "15 minutes",
            "actions": [],
        },
        {
            "name": "record_review",
            "display_name": "Record review",
            "description": "Store the verdict with strengths, issues and required changes.",
            "step_type": "REPORTING",
            "estimated_time": "10 minutes",
            "actions": [_mcp("create_review", "ReviewOperations", "create_review")],
        },
    ],
}


DEFAULT_TRANSITIONS = [
    {
        "transition_name": "boomerang_to_researcher",
        "from_role": "boomerang",
        "to_role": "researcher",
        "conditions": {},
        "requirements": {},
        "handoff_guidance": {"summary": ["List the open questions to investigate"]},
    },
    {
        "transition_name": "boomerang_to_architect",
        "from_role": "boomerang",
        "to_role": "architect",
        "conditions": {},
        "requirements": {"requiredDeliverables": ["report:codebase_analysis"]},
        "handoff_guidance": {"summary": ["Point at the codebase analysis"]},
    },
    {
        "transition_name": "research_to_architecture",
        "from_role": "researcher",
        "to_role": "architect",
        "conditions": {},
        "requirements": {"requiredDeliverables": ["report:research_findings"]},
        "handoff_guidance": {"summary": ["Summarise the recommended option"]},
    },
    {
        "transition_name": "architecture_to_implementation",
        "from_role": "architect",
        "to_role": "senior-developer",
        "conditions": {},
        "requirements": {"requiredDeliverables": ["report:implementation_plan"]},
        "handoff_guidance": {"summary": ["Start with the first batch"]},
    },
    {
        "transition_name": "implementation_to_review",
        "from_role": "senior-developer",
        "to_role": "code-review",
        "conditions": {},
        "requirements": {
            "requiredDeliverables": ["report:implementation"],
            "qualityGates": ["security_scan"],
        },
        "handoff_guidance": {"summary": ["List the files changed per batch"]},
    },
    {
        "transition_name": "review_to_implementation",
        "from_role": "code-review",
        "to_role": "senior-developer",
        "conditions": {},
        "requirements": {},
        "handoff_guidance": {"summary": ["Quote every required change"]},
    },
    {
        "transition_name": "review_to_completion",
        "from_role": "code-review",
        "to_role": "boomerang",
        "conditions": {},
        "requirements": {"qualityGates": ["peer_review"]},
        "handoff_guidance": {"summary": ["Prepare the completion report"]},
    },
]


def _seed_role(definition) -> tuple[WorkflowRole, bool]:
    role = WorkflowRole.query.filter_by(name=definition["name"]).first()
    if role is not None:
        return role, False
    role = WorkflowRole(is_active=True, **definition)
    db.session.add(role)
    db.session.flush()
    return role, True


def _seed_step(role, sequence, definition) -> bool:
    if WorkflowStep.query.filter_by(role_id=role.id, name=definition["name"]).first():
        return False
    fields = {k: v for k, v in definition.items() if k not in ("actions", "conditions")}
    step = WorkflowStep(role_id=role.id, sequence_number=sequence, **fields)
    db.session.add(step)
    db.session.flush()
    for action in definition.get("actions", []):
        db.session.add(StepAction(step_id=step.id, **action))
    for condition in definition.get("conditions", []):
        db.session.add(StepCondition(step_id=step.id, **condition))
    return True


def seed_default_workflow() -> dict:
    """Insert missing default roles, steps and transitions. Returns counts of new rows."""
    created = {"roles": 0, "steps": 0, "transitions": 0}
    roles = {}

    for definition in DEFAULT_ROLES:
        role, is_new = _seed_role(definition)
        roles[role.name] = role
        created["roles"] += int(is_new)

    for role_name, steps in DEFAULT_STEPS.items():
        for sequence, definition in enumerate(steps, start=1):
            created["steps"] += int(_seed_step(roles[role_name], sequence, definition))

    for definition in DEFAULT_TRANSITIONS:
        if RoleTransition.query.filter_by(transition_name=definition["transition_name"]).first():
            continue
        db.session.add(RoleTransition(
            transition_name=definition["transition_name"],
            from_role_id=roles[definition["from_role"]].id,
            to_role_id=roles[definition["to_role"]].id,
            conditions=definition["conditions"],
            requirements=definition["requirements"],
            handoff_guidance=definition["handoff_guidance"],
            is_active=True,
        ))
        created["transitions"] += 1

    db.session.flush()
    if any(created.values()):
        logger.info(
            "Seeded %d roles, %d steps, %d transitions",
            created["roles"], created["steps"], created["transitions"],
        )
    return created
