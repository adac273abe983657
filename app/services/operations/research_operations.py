"""
Research Operations: researcher findings and task comments.

    create_research / update_research / get_research   latest ResearchReport per task
    add_comment / get_comments                         comments, newest first, with per-type counts
"""

import logging
from collections import Counter

from sqlalchemy import select

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.task import Comment, ResearchReport
from app.services.operations import dispatch
from app.services.operations.schemas import ResearchOperationsInput
from app.services.operations.task_operations import get_task_or_raise
from app.utils.errors import E

logger = logging.getLogger(__name__)

SERVICE_NAME = "ResearchOperations"
ERROR_CODE = E.RESEARCH_OPERATION_FAILED

_RESEARCH_FIELDS = (
    "findings", "recommendations", "investigation_summary", "technology_options",
    "implementation_approaches", "risk_assessment", "resource_requirements", "researched_by",
)


def _latest_research(task_id) -> ResearchReport | None:
    return db.session.execute(
        select(ResearchReport)
        .where(ResearchReport.task_id == task_id)
        .order_by(ResearchReport.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def _comments(task_id, context_type=None) -> list[Comment]:
    stmt = select(Comment).where(Comment.task_id == task_id)
    if context_type:
        stmt = stmt.where(Comment.context_type == context_type)
    return list(db.session.execute(
        stmt.order_by(Comment.created_at.desc(), Comment.id.desc())
    ).scalars())


def create_research(data: ResearchOperationsInput) -> dict:
    rd = data.research_data
    if rd is None:
        raise ValidationError("Research data is required for creation")
    if not rd.findings:
        raise ValidationError("Research findings are required")
    get_task_or_raise(data.task_id)

    report = ResearchReport(
        task_id=data.task_id,
        findings=rd.findings,
        recommendations=rd.recommendations or "",
        investigation_summary=rd.investigation_summary or "",
        technology_options=rd.technology_options or [],
        implementation_approaches=rd.implementation_approaches or [],
        risk_assessment=rd.risk_assessment or "",
        resource_requirements=rd.resource_requirements or "",
        researched_by=rd.researched_by or "researcher",
    )
    db.session.add(report)
    db.session.flush()
    return report.to_dict()


def update_research(data: ResearchOperationsInput) -> dict:
    if data.research_data is None:
        raise ValidationError("Research data is required for update")
    report = _latest_research(data.task_id)
    if report is None:
        raise NotFoundError(f"Research report for task {data.task_id}")

    for field in _RESEARCH_FIELDS:
        value = getattr(data.research_data, field)
        if value:
            setattr(report, field, value)
    db.session.flush()
    return report.to_dict()


def get_research(data: ResearchOperationsInput) -> dict:
    report = _latest_research(data.task_id)
    if report is None:
        raise NotFoundError(f"Research report for task {data.task_id}")
    result = report.to_dict()
    if data.include_comments:
        result["comments"] = [c.to_dict() for c in _comments(data.task_id)]
    return result


def add_comment(data: ResearchOperationsInput) -> dict:
    cd = data.comment_data
    if cd is None:
        raise ValidationError("Comment data is required for creation")
    task = get_task_or_raise(data.task_id)

    comment = Comment(
        task_id=task.id,
        subtask_id=cd.subtask_id,
        author=cd.author or task.current_mode or "researcher",
        content=cd.content,
        context_type=cd.context_type,
    )
    db.session.add(comment)
    db.session.flush()
    return comment.to_dict()


def get_comments(data: ResearchOperationsInput) -> dict:
    comments = _comments(data.task_id, data.comment_type)
    return {
        "summary": {
            "total": len(comments),
            "byType": dict(Counter(c.context_type for c in comments)),
        },
        "comments": [c.to_dict() for c in comments],
    }


_HANDLERS = {
    "create_research": create_research,
    "update_research": update_research,
    "get_research": get_research,
    "add_comment": add_comment,
    "get_comments": get_comments,
}

SUPPORTED_OPERATIONS = tuple(_HANDLERS)
INPUT_MODEL = ResearchOperationsInput


def execute(operation, params):
    return dispatch(SERVICE_NAME, _HANDLERS, INPUT_MODEL, operation, params)
