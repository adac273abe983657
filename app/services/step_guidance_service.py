"""
Step Guidance Service: turns a WorkflowStep's loosely-shaped JSON columns
into the guidance payload an agent executes locally.

Every field has a generic fallback so callers never receive null guidance:
    description        → "Execute workflow step"
    estimatedTime      → "5-10 minutes"
    behavioralGuidance → DEFAULT_BEHAVIORAL_GUIDANCE
    approachGuidance   → per-field defaults (DEFAULT_APPROACH_GUIDANCE)
    qualityChecklist   → ["Verify step completion"]
    successCriteria    → ["Step completed successfully"]
    failureCriteria    → ["Step failed to complete"]
    troubleshooting    → ["Check logs for errors"]
"""

from __future__ import annotations

import logging

from app.services import step_query_service

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTION = "Execute workflow step"
DEFAULT_ESTIMATED_TIME = "5-10 minutes"

DEFAULT_BEHAVIORAL_GUIDANCE = {
    "approach": "Execute step according to requirements",
    "principles": [],
    "methodology": "Standard workflow execution",
    "keyFocus": [],
    "qualityStandards": [],
}

DEFAULT_APPROACH_GUIDANCE = {
    "stepByStep": ["Follow standard procedure"],
    "validationSteps": ["Verify completion"],
    "errorHandling": ["Handle errors appropriately"],
    "bestPractices": ["Follow best practices"],
}

DEFAULT_QUALITY_CHECKLIST = ["Verify step completion"]
DEFAULT_SUCCESS_CRITERIA = ["Step completed successfully"]
DEFAULT_FAILURE_CRITERIA = ["Step failed to complete"]
DEFAULT_TROUBLESHOOTING = ["Check logs for errors"]


# ── Extractors ───────────────────────────────────────────────────────────────


def _string_list(value, fallback: list[str]) -> list[str]:
    """Keep the string items of ``value``; fall back when nothing usable remains."""
    if isinstance(value, list):
        items = [v for v in value if isinstance(v, str)]
        if items:
            return items
    return list(fallback)


def extract_behavioral_guidance(raw) -> dict:
    if not isinstance(raw, dict):
        return dict(DEFAULT_BEHAVIORAL_GUIDANCE)
    result = dict(DEFAULT_BEHAVIORAL_GUIDANCE)
    for key in ("approach", "methodology"):
        if isinstance(raw.get(key), str) and raw[key]:
            result[key] = raw[key]
    for key in ("principles", "keyFocus", "qualityStandards"):
        if isinstance(raw.get(key), list):
            result[key] = [v for v in raw[key] if isinstance(v, str)]
    return result


def extract_approach_guidance(raw) -> dict:
    raw = raw if isinstance(raw, dict) else {}
    return {
        key: _string_list(raw.get(key), default)
        for key, default in DEFAULT_APPROACH_GUIDANCE.items()
    }


def extract_quality_checklist(raw) -> list[str]:
    # Seeds store either a bare list or {"items": [...]}
    if isinstance(raw, dict):
        raw = raw.get("items")
    return _string_list(raw, DEFAULT_QUALITY_CHECKLIST)


def extract_mcp_actions(actions) -> list[dict]:
    """
    Parse MCP_CALL actions into ``{name, serviceName, operation, parameters,
    sequenceOrder}``. Actions missing serviceName/operation or with
    non-dict parameters are dropped with a warning.
    """
    result = []
    for action in actions:
        data = action.action_data or {}
        service = data.get("serviceName")
        operation = data.get("operation")
        parameters = data.get("parameters", {})
        if not isinstance(service, str) or not isinstance(operation, str) or not isinstance(parameters, dict):
            logger.warning(
                "Skipping malformed MCP action %s on step %s", action.name, action.step_id,
                extra={"step_id": action.step_id},
            )
            continue
        result.append({
            "name": action.name,
            "serviceName": service,
            "operation": operation,
            "parameters": parameters,
            "sequenceOrder": action.sequence_order or 1,
        })
    result.sort(key=lambda a: a["sequenceOrder"])
    return result


# ── Public API ───────────────────────────────────────────────────────────────


def get_step_guidance(task_id, role_id, step_id) -> dict:
    """Assemble the full guidance payload for one step."""
    step = step_query_service.get_step(step_id)
    action_data = step.action_data if isinstance(step.action_data, dict) else {}

    logger.debug(
        "Building guidance for step %s", step.name,
        extra={"task_id": task_id, "step_id": step.id},
    )
    return {
        "taskId": task_id,
        "roleId": role_id or step.role_id,
        "step": {
            "id": step.id,
            "name": step.name,
            "displayName": step.display_name or step.name,
            "description": step.description or DEFAULT_DESCRIPTION,
            "stepType": step.step_type,
            "sequenceNumber": step.sequence_number,
            "estimatedTime": step.estimated_time or DEFAULT_ESTIMATED_TIME,
        },
        "mcpActions": extract_mcp_actions(step_query_service.get_mcp_actions(step.id)),
        "behavioralGuidance": extract_behavioral_guidance(step.behavioral_context),
        "approachGuidance": extract_approach_guidance(step.approach_guidance),
        "qualityChecklist": extract_quality_checklist(step.quality_checklist),
        "successCriteria": _string_list(action_data.get("successCriteria"), DEFAULT_SUCCESS_CRITERIA),
        "failureCriteria": _string_list(action_data.get("failureCriteria"), DEFAULT_FAILURE_CRITERIA),
        "troubleshooting": _string_list(action_data.get("troubleshooting"), DEFAULT_TROUBLESHOOTING),
    }


def get_step_validation_criteria(step_id) -> dict:
    step = step_query_service.get_step(step_id)
    action_data = step.action_data if isinstance(step.action_data, dict) else {}
    return {
        "stepId": step.id,
        "successCriteria": _string_list(action_data.get("successCriteria"), DEFAULT_SUCCESS_CRITERIA),
        "failureCriteria": _string_list(action_data.get("failureCriteria"), DEFAULT_FAILURE_CRITERIA),
        "qualityChecklist": extract_quality_checklist(step.quality_checklist),
        "conditions": [c.to_dict() for c in step.conditions],
    }
