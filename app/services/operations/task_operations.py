"""
Task Operations: Task, TaskDescription and CodebaseAnalysis lifecycle.

    create  new task (slug derived from the name, made unique with -N)
    update  partial update; description / analysis are upserted
    get     by taskId or slug, optionally with description and analysis
    list    filter by status, priority, slug substring; newest first
"""

import logging

from sqlalchemy import select

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.task import CodebaseAnalysis, Task, TaskDescription
from app.services.operations import dispatch
from app.services.operations.schemas import TaskOperationsInput
from app.utils.errors import E
from app.utils.helpers import slugify, utcnow

logger = logging.getLogger(__name__)

SERVICE_NAME = "TaskOperations"
ERROR_CODE = E.TASK_OPERATION_FAILED

_ANALYSIS_FIELDS = (
    "architecture_findings", "problems_identified", "implementation_context",
    "integration_points", "quality_assessment", "technology_stack",
)


def unique_slug(name, exclude_task_id=None):
    base = slugify(name) or "task"
    slug, counter = base, 1
    while True:
        stmt = select(Task.id).where(Task.slug == slug)
        if exclude_task_id is not None:
            stmt = stmt.where(Task.id != exclude_task_id)
        if db.session.execute(stmt).first() is None:
            return slug
        slug = f"{base}-{counter}"
        counter += 1


def _upsert_description(task_id, data):
    desc = db.session.get(TaskDescription, task_id)
    if desc is None:
        desc = TaskDescription(
            task_id=task_id,
            description=data.description or "",
            business_requirements=data.business_requirements or "",
            technical_requirements=data.technical_requirements or "",
            acceptance_criteria=data.acceptance_criteria or [],
        )
        db.session.add(desc)
    else:
        for field in ("description", "business_requirements", "technical_requirements",
                      "acceptance_criteria"):
            value = getattr(data, field)
            if value:
                setattr(desc, field, value)
    return desc


def _upsert_analysis(task_id, data):
    analysis = db.session.execute(
        select(CodebaseAnalysis).where(CodebaseAnalysis.task_id == task_id)
    ).scalar_one_or_none()
    if analysis is None:
        analysis = CodebaseAnalysis(
            task_id=task_id,
            files_covered=data.files_covered or [],
            analyzed_by=data.analyzed_by or "system",
            **{f: getattr(data, f) or {} for f in _ANALYSIS_FIELDS},
        )
        db.session.add(analysis)
    else:
        for field in _ANALYSIS_FIELDS + ("files_covered", "analyzed_by"):
            value = getattr(data, field)
            if value:
                setattr(analysis, field, value)
    return analysis


def get_task_or_raise(task_id) -> Task:
    task = db.session.get(Task, task_id) if task_id is not None else None
    if task is None:
        raise NotFoundError("Task", task_id)
    return task


# ── Operations ───────────────────────────────────────────────────────────────


def create_task(data: TaskOperationsInput) -> dict:
    task_data = data.task_data
    if task_data is None or not task_data.name:
        raise ValidationError("Task name is required for creation")

    task = Task(
        name=task_data.name,
        slug=unique_slug(task_data.name),
        status=task_data.status or "not-started",
        priority=task_data.priority or "Medium",
        dependencies=task_data.dependencies or [],
        git_branch=task_data.git_branch,
        owner="boomerang",
        current_mode="boomerang",
        creation_date=utcnow(),
    )
    db.session.add(task)
    db.session.flush()

    description = _upsert_description(task.id, data.description) if data.description else None
    analysis = _upsert_analysis(task.id, data.codebase_analysis) if data.codebase_analysis else None
    db.session.flush()

    logger.info("Task created: %s", task.slug, extra={"task_id": task.id})
    return {
        "task": task.to_dict(),
        "taskDescription": description.to_dict() if description else None,
        "codebaseAnalysis": analysis.to_dict() if analysis else None,
    }


def update_task(data: TaskOperationsInput) -> dict:
    task = get_task_or_raise(data.task_id)
    updated = None
    if data.task_data:
        td = data.task_data
        if td.name:
            task.name = td.name
        if td.status:
            task.status = td.status
            if td.status == "completed" and task.completion_date is None:
                task.completion_date = utcnow()
        if td.priority:
            task.priority = td.priority
        if td.dependencies:
            task.dependencies = list(td.dependencies)
        if td.git_branch:
            task.git_branch = td.git_branch
        updated = task

    description = _upsert_description(task.id, data.description) if data.description else None
    analysis = _upsert_analysis(task.id, data.codebase_analysis) if data.codebase_analysis else None
    db.session.flush()

    return {
        "task": updated.to_dict() if updated else None,
        "taskDescription": description.to_dict() if description else None,
        "codebaseAnalysis": analysis.to_dict() if analysis else None,
    }


def get_task(data: TaskOperationsInput) -> dict:
    if data.task_slug:
        task = db.session.execute(
            select(Task).where(Task.slug == data.task_slug)
        ).scalar_one_or_none()
    else:
        task = db.session.get(Task, data.task_id)
    if task is None:
        raise NotFoundError("Task", data.task_slug or data.task_id)
    return task.to_dict(
        include_description=data.include_description,
        include_analysis=data.include_analysis,
    )


def list_tasks(data: TaskOperationsInput) -> dict:
    stmt = select(Task)
    if data.status:
        stmt = stmt.where(Task.status == data.status)
    if data.priority:
        stmt = stmt.where(Task.priority == data.priority)
    if data.task_slug:
        stmt = stmt.where(Task.slug.contains(data.task_slug))
    stmt = stmt.order_by(Task.creation_date.desc(), Task.id.desc())

    tasks = [
        t.to_dict(include_description=data.include_description,
                  include_analysis=data.include_analysis)
        for t in db.session.execute(stmt).scalars()
    ]
    return {
        "tasks": tasks,
        "count": len(tasks),
        "filters": {"status": data.status, "priority": data.priority, "taskSlug": data.task_slug},
    }


_HANDLERS = {
    "create": create_task,
    "update": update_task,
    "get": get_task,
    "list": list_tasks,
}

SUPPORTED_OPERATIONS = tuple(_HANDLERS)
INPUT_MODEL = TaskOperationsInput


def execute(operation, params):
    return dispatch(SERVICE_NAME, _HANDLERS, INPUT_MODEL, operation, params)
