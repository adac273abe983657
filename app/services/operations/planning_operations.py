"""
Planning Operations: implementation plans and batch-grouped subtasks.

    create_plan      new ImplementationPlan for a task
    update_plan      partial update by planId, or the task's first plan
    get_plan         plan with subtasks grouped into batches
    create_subtasks  add a batch of subtasks to the task's plan
    update_batch     set status on every subtask of a batch
    get_batch        batch summary with status counts
"""

import logging

from sqlalchemy import select

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.task import ImplementationPlan, Subtask
from app.services.operations import dispatch
from app.services.operations.schemas import PlanningOperationsInput
from app.services.operations.task_operations import get_task_or_raise
from app.utils.errors import E
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)

SERVICE_NAME = "PlanningOperations"
ERROR_CODE = E.PLANNING_OPERATION_FAILED

NO_BATCH_ID = "no-batch"
UNTITLED_BATCH = "Untitled Batch"

_PLAN_FIELDS = (
    "overview", "approach", "technical_decisions",
    "files_to_modify", "strategic_guidance", "created_by",
)


def first_plan_for_task(task_id) -> ImplementationPlan | None:
    return db.session.execute(
        select(ImplementationPlan)
        .where(ImplementationPlan.task_id == task_id)
        .order_by(ImplementationPlan.id)
        .limit(1)
    ).scalar_one_or_none()


def _require_plan(task_id) -> ImplementationPlan:
    plan = first_plan_for_task(task_id)
    if plan is None:
        raise NotFoundError(f"Implementation plan for task {task_id}")
    return plan


def _batch_subtasks(task_id, batch_id) -> list[Subtask]:
    return list(db.session.execute(
        select(Subtask)
        .where(Subtask.task_id == task_id, Subtask.batch_id == batch_id)
        .order_by(Subtask.sequence_number)
    ).scalars())


def group_into_batches(subtasks) -> list[dict]:
    batches: dict[str, dict] = {}
    for subtask in subtasks:
        key = subtask.batch_id or NO_BATCH_ID
        batch = batches.setdefault(key, {
            "batchId": key,
            "batchTitle": subtask.batch_title or UNTITLED_BATCH,
            "subtasks": [],
        })
        batch["subtasks"].append(subtask.to_dict())
    return list(batches.values())


# ── Operations ───────────────────────────────────────────────────────────────


def create_plan(data: PlanningOperationsInput) -> dict:
    if data.plan_data is None:
        raise ValidationError("Plan data is required for creation")
    get_task_or_raise(data.task_id)
    pd = data.plan_data
    plan = ImplementationPlan(
        task_id=data.task_id,
        overview=pd.overview or "",
        approach=pd.approach or "",
        technical_decisions=pd.technical_decisions or {},
        files_to_modify=pd.files_to_modify or [],
        strategic_guidance=pd.strategic_guidance,
        created_by=pd.created_by or "architect",
    )
    db.session.add(plan)
    db.session.flush()
    logger.info("Implementation plan %s created", plan.id, extra={"task_id": data.task_id})
    return plan.to_dict(include_subtasks=True)


def update_plan(data: PlanningOperationsInput) -> dict:
    if data.plan_data is None:
        raise ValidationError("Plan data is required for update")
    if data.plan_id:
        plan = db.session.get(ImplementationPlan, data.plan_id)
        if plan is None:
            raise NotFoundError("ImplementationPlan", data.plan_id)
    else:
        plan = _require_plan(data.task_id)

    for field in _PLAN_FIELDS:
        value = getattr(data.plan_data, field)
        if value:
            setattr(plan, field, value)
    db.session.flush()
    return plan.to_dict(include_subtasks=True)


def get_plan(data: PlanningOperationsInput) -> dict:
    if data.plan_id:
        plan = db.session.get(ImplementationPlan, data.plan_id)
        if plan is None:
            raise NotFoundError("ImplementationPlan", data.plan_id)
    else:
        plan = _require_plan(data.task_id)

    result = plan.to_dict(include_subtasks=data.include_batches)
    if data.include_batches:
        result["batches"] = group_into_batches(plan.subtasks)
    return result


def create_subtasks(data: PlanningOperationsInput) -> dict:
    batch = data.batch_data
    if batch is None or not batch.batch_id or not batch.subtasks:
        raise ValidationError("Batch ID and subtasks are required")

    plan = _require_plan(data.task_id)
    title = batch.batch_title or UNTITLED_BATCH
    for subtask_data in batch.subtasks:
        db.session.add(Subtask(
            task_id=data.task_id,
            plan_id=plan.id,
            name=subtask_data.name,
            description=subtask_data.description,
            sequence_number=subtask_data.sequence_number,
            status=subtask_data.status,
            batch_id=batch.batch_id,
            batch_title=title,
            acceptance_criteria=subtask_data.acceptance_criteria or [],
            strategic_guidance=subtask_data.strategic_guidance,
            technical_specifications=subtask_data.technical_specifications,
            estimated_duration=subtask_data.estimated_duration,
        ))
    db.session.flush()

    subtasks = _batch_subtasks(data.task_id, batch.batch_id)
    return {
        "created": len(batch.subtasks),
        "count": len(subtasks),
        "batchId": batch.batch_id,
        "batchTitle": title,
        "subtasks": [s.to_dict() for s in subtasks],
    }


def update_batch(data: PlanningOperationsInput) -> dict:
    if not data.batch_id:
        raise ValidationError("Batch ID is required for batch updates")

    subtasks = _batch_subtasks(data.task_id, data.batch_id)
    if data.new_status:
        now = utcnow()
        for subtask in subtasks:
            subtask.status = data.new_status
            if data.new_status == "completed":
                subtask.completed_at = now
            elif data.new_status == "in-progress":
                subtask.started_at = now
        db.session.flush()

    return {
        "updated": len(subtasks) if data.new_status else 0,
        "count": len(subtasks),
        "batchId": data.batch_id,
        "batchTitle": (subtasks[0].batch_title if subtasks else None) or UNTITLED_BATCH,
        "subtasks": [s.to_dict() for s in subtasks],
    }


def get_batch(data: PlanningOperationsInput) -> dict:
    if not data.batch_id:
        raise ValidationError("Batch ID is required for batch retrieval")

    subtasks = _batch_subtasks(data.task_id, data.batch_id)
    if not subtasks:
        raise NotFoundError(f"Subtasks for batch {data.batch_id} in task {data.task_id}")

    return {
        "batchId": data.batch_id,
        "batchTitle": subtasks[0].batch_title or UNTITLED_BATCH,
        "totalSubtasks": len(subtasks),
        "completed": sum(1 for s in subtasks if s.status == "completed"),
        "inProgress": sum(1 for s in subtasks if s.status == "in-progress"),
        "notStarted": sum(1 for s in subtasks if s.status == "not-started"),
        "count": len(subtasks),
        "subtasks": [s.to_dict() for s in subtasks],
    }


_HANDLERS = {
    "create_plan": create_plan,
    "update_plan": update_plan,
    "get_plan": get_plan,
    "create_subtasks": create_subtasks,
    "update_batch": update_batch,
    "get_batch": get_batch,
}

SUPPORTED_OPERATIONS = tuple(_HANDLERS)
INPUT_MODEL = PlanningOperationsInput


def execute(operation, params):
    return dispatch(SERVICE_NAME, _HANDLERS, INPUT_MODEL, operation, params)
