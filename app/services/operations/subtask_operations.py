"""
Individual Subtask Operations: one subtask at a time, with dependency gating.

    create_subtask    add a subtask to the task's plan; dependencies are names
                      of existing subtasks in the same task
    update_subtask    status/evidence update; in-progress and completed are
                      blocked while any dependency is incomplete; completing
                      the last subtask of a batch reports batch completion
    get_subtask       subtask with dependsOn / dependents and dependency status
    get_next_subtask  first eligible subtask by (batchId, sequenceNumber),
                      otherwise the blocked list
"""

import logging

from sqlalchemy import select

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.task import Subtask, SubtaskDependency
from app.services.operations import dispatch
from app.services.operations.planning_operations import UNTITLED_BATCH, first_plan_for_task
from app.services.operations.schemas import SubtaskOperationsInput
from app.utils.errors import E
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)

SERVICE_NAME = "SubtaskOperations"
ERROR_CODE = E.SUBTASK_OPERATION_FAILED

GATED_STATUSES = ("in-progress", "completed")


def _get_subtask(task_id, subtask_id) -> Subtask:
    subtask = db.session.execute(
        select(Subtask).where(Subtask.id == subtask_id, Subtask.task_id == task_id)
    ).scalar_one_or_none()
    if subtask is None:
        raise NotFoundError(f"Subtask {subtask_id} for task {task_id}")
    return subtask


def _brief(subtask: Subtask) -> dict:
    return {
        "id": subtask.id,
        "name": subtask.name,
        "status": subtask.status,
        "sequenceNumber": subtask.sequence_number,
    }


def _depends_on(subtask: Subtask) -> list[Subtask]:
    return [dep.required_subtask for dep in subtask.dependencies_from]


def _dependents(subtask: Subtask) -> list[Subtask]:
    return [dep.dependent_subtask for dep in subtask.dependencies_to]


def _subtasks_by_name(task_id, names) -> list[Subtask]:
    return list(db.session.execute(
        select(Subtask).where(Subtask.task_id == task_id, Subtask.name.in_(names))
    ).scalars())


def check_batch_completion(task_id, batch_id) -> dict:
    subtasks = list(db.session.execute(
        select(Subtask)
        .where(Subtask.task_id == task_id, Subtask.batch_id == batch_id)
        .order_by(Subtask.sequence_number)
    ).scalars())
    completed = [s for s in subtasks if s.status == "completed"]
    if not subtasks or len(completed) < len(subtasks):
        return {
            "batchId": batch_id,
            "batchCompleted": False,
            "message": (
                f"Batch {batch_id} not ready for completion: "
                f"{len(completed)}/{len(subtasks)} subtasks completed"
            ),
        }

    files = []
    for s in subtasks:
        for path in (s.completion_evidence or {}).get("filesModified") or []:
            if path not in files:
                files.append(path)
    notes = [f"Batch completed with {len(subtasks)} subtasks:"]
    notes += [f"- {s.name}: {s.description}" for s in subtasks]

    logger.info("Batch %s completed", batch_id, extra={"task_id": task_id})
    return {
        "batchId": batch_id,
        "batchCompleted": True,
        "message": f"Batch {batch_id} completed - all {len(subtasks)} subtasks finished",
        "aggregatedEvidence": {
            "completionSummary": f"All {len(subtasks)} subtasks completed successfully",
            "filesModified": files,
            "implementationNotes": "\n".join(notes),
            "totalSubtasks": len(subtasks),
            "completedAt": utcnow().isoformat(),
        },
    }


# ── Operations ───────────────────────────────────────────────────────────────


def create_subtask(data: SubtaskOperationsInput) -> dict:
    sd = data.subtask_data
    if sd is None:
        raise ValidationError("Subtask data is required for individual subtask creation")

    plan = first_plan_for_task(data.task_id)
    if plan is None:
        raise NotFoundError(f"Implementation plan for task {data.task_id}")

    names = list(dict.fromkeys(sd.dependencies or []))
    required = _subtasks_by_name(data.task_id, names) if names else []
    missing = [n for n in names if n not in {s.name for s in required}]
    if missing:
        raise ValidationError(
            f"Dependency subtasks not found: {', '.join(missing)}",
            details={"missing": missing},
        )

    subtask = Subtask(
        task_id=data.task_id,
        plan_id=plan.id,
        name=sd.name,
        description=sd.description,
        sequence_number=sd.sequence_number,
        status="not-started",
        batch_id=sd.batch_id,
        batch_title=sd.batch_title or UNTITLED_BATCH,
        acceptance_criteria=sd.acceptance_criteria or [],
        strategic_guidance=sd.strategic_guidance or {},
        technical_specifications=sd.technical_specifications or {},
        estimated_duration=sd.estimated_duration,
    )
    db.session.add(subtask)
    db.session.flush()

    for req in required:
        db.session.add(SubtaskDependency(
            dependent_subtask_id=subtask.id,
            required_subtask_id=req.id,
        ))
    db.session.flush()

    return {
        "subtask": subtask.to_dict(),
        "dependsOn": [_brief(s) for s in required],
        "message": f"Subtask '{sd.name}' created with {len(required)} dependencies",
    }


def update_subtask(data: SubtaskOperationsInput) -> dict:
    if not data.subtask_id:
        raise ValidationError("Subtask ID is required for individual subtask update")
    if data.update_data is None:
        raise ValidationError("Update data is required for subtask update")

    subtask = _get_subtask(data.task_id, data.subtask_id)
    new_status = data.update_data.status

    if new_status in GATED_STATUSES:
        incomplete = [d.name for d in _depends_on(subtask) if d.status != "completed"]
        if incomplete:
            raise ValidationError(
                f"Cannot transition to '{new_status}' - incomplete dependencies: "
                f"{', '.join(incomplete)}",
                details={"incompleteDependencies": incomplete},
            )

    if new_status:
        subtask.status = new_status
        if new_status == "completed":
            subtask.completed_at = utcnow()
        elif new_status == "in-progress":
            subtask.started_at = utcnow()
    if data.update_data.completion_evidence is not None:
        subtask.completion_evidence = dict(data.update_data.completion_evidence)
    db.session.flush()

    batch_info = None
    if new_status == "completed" and subtask.batch_id:
        batch_info = check_batch_completion(data.task_id, subtask.batch_id)

    return {
        "subtask": subtask.to_dict(),
        "message": f"Subtask '{subtask.name}' updated to status: {new_status or 'unchanged'}",
        "batchCompletionInfo": batch_info,
    }


def get_subtask(data: SubtaskOperationsInput) -> dict:
    if not data.subtask_id:
        raise ValidationError("Subtask ID is required for subtask retrieval")

    subtask = _get_subtask(data.task_id, data.subtask_id)
    depends_on = _depends_on(subtask)
    payload = subtask.to_dict()
    if not data.include_evidence:
        payload.pop("completionEvidence", None)

    return {
        "subtask": payload,
        "dependsOn": [_brief(s) for s in depends_on],
        "dependents": [_brief(s) for s in _dependents(subtask)],
        "dependencyStatus": {
            "totalDependencies": len(depends_on),
            "completedDependencies": sum(1 for s in depends_on if s.status == "completed"),
            "canStart": all(s.status == "completed" for s in depends_on),
        },
    }


def get_next_subtask(data: SubtaskOperationsInput) -> dict:
    stmt = select(Subtask).where(Subtask.task_id == data.task_id)
    if data.status:
        stmt = stmt.where(Subtask.status == data.status)
    else:
        stmt = stmt.where(Subtask.status.in_(("not-started", "in-progress")))
    candidates = list(db.session.execute(
        stmt.order_by(Subtask.batch_id, Subtask.sequence_number)
    ).scalars())

    if not candidates:
        return {"nextSubtask": None, "message": "No eligible subtasks found"}

    for subtask in candidates:
        if data.current_subtask_id and subtask.id == data.current_subtask_id:
            continue
        if all(d.status == "completed" for d in _depends_on(subtask)):
            return {
                "nextSubtask": subtask.to_dict(),
                "message": f"Next available subtask: '{subtask.name}' in batch {subtask.batch_id}",
            }

    return {
        "nextSubtask": None,
        "message": "No subtasks available - all have incomplete dependencies",
        "blockedSubtasks": [
            {
                "id": s.id,
                "name": s.name,
                "pendingDependencies": [d.name for d in _depends_on(s) if d.status != "completed"],
            }
            for s in candidates
        ],
    }


_HANDLERS = {
    "create_subtask": create_subtask,
    "update_subtask": update_subtask,
    "get_subtask": get_subtask,
    "get_next_subtask": get_next_subtask,
}

SUPPORTED_OPERATIONS = tuple(_HANDLERS)
INPUT_MODEL = SubtaskOperationsInput


def execute(operation, params):
    return dispatch(SERVICE_NAME, _HANDLERS, INPUT_MODEL, operation, params)
