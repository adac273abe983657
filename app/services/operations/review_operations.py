"""
Review Operations: code-review verdicts and completion reports.

A task may accumulate several review reports; update/get act on the latest.
"""

import logging

from sqlalchemy import select

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.task import CodeReviewReport, CompletionReport
from app.services.operations import dispatch
from app.services.operations.schemas import ReviewOperationsInput
from app.services.operations.task_operations import get_task_or_raise
from app.utils.errors import E

logger = logging.getLogger(__name__)

SERVICE_NAME = "ReviewOperations"
ERROR_CODE = E.REVIEW_OPERATION_FAILED

_REVIEW_FIELDS = (
    "status", "summary", "strengths", "issues",
    "acceptance_criteria_verification", "manual_testing_results", "required_changes",
)


def latest_review(task_id) -> CodeReviewReport | None:
    return db.session.execute(
        select(CodeReviewReport)
        .where(CodeReviewReport.task_id == task_id)
        .order_by(CodeReviewReport.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def _latest_completion(task_id) -> CompletionReport | None:
    return db.session.execute(
        select(CompletionReport)
        .where(CompletionReport.task_id == task_id)
        .order_by(CompletionReport.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def create_review(data: ReviewOperationsInput) -> dict:
    rd = data.review_data
    if rd is None:
        raise ValidationError("Review data is required for creation")
    if not rd.status or not rd.summary:
        raise ValidationError("Review status and summary are required")
    get_task_or_raise(data.task_id)

    review = CodeReviewReport(
        task_id=data.task_id,
        status=rd.status,
        summary=rd.summary,
        strengths=rd.strengths or "",
        issues=rd.issues or "",
        acceptance_criteria_verification=rd.acceptance_criteria_verification or {},
        manual_testing_results=rd.manual_testing_results or "",
        required_changes=rd.required_changes,
    )
    db.session.add(review)
    db.session.flush()
    logger.info("Code review %s recorded: %s", review.id, review.status,
                extra={"task_id": data.task_id})
    return review.to_dict()


def update_review(data: ReviewOperationsInput) -> dict:
    if data.review_data is None:
        raise ValidationError("Review data is required for update")
    review = latest_review(data.task_id)
    if review is None:
        raise NotFoundError(f"Code review for task {data.task_id}")

    for field in _REVIEW_FIELDS:
        value = getattr(data.review_data, field)
        if value:
            setattr(review, field, value)
    db.session.flush()
    return review.to_dict()


def get_review(data: ReviewOperationsInput) -> dict:
    review = latest_review(data.task_id)
    if review is None:
        raise NotFoundError(f"Code review for task {data.task_id}")
    if not data.include_details:
        return {
            "taskId": review.task_id,
            "status": review.status,
            "summary": review.summary,
            "createdAt": review.to_dict()["createdAt"],
        }
    return review.to_dict()


def create_completion(data: ReviewOperationsInput) -> dict:
    cd = data.completion_data
    if cd is None:
        raise ValidationError("Completion data is required for creation")
    get_task_or_raise(data.task_id)

    report = CompletionReport(
        task_id=data.task_id,
        summary=cd.summary,
        files_modified=cd.files_modified or [],
        acceptance_criteria_verification=cd.acceptance_criteria_verification or {},
        delegation_summary=cd.delegation_summary or "",
        quality_validation=cd.quality_validation or "",
    )
    db.session.add(report)
    db.session.flush()
    return report.to_dict()


def get_completion(data: ReviewOperationsInput) -> dict:
    report = _latest_completion(data.task_id)
    if report is None:
        raise NotFoundError(f"Completion report for task {data.task_id}")
    result = report.to_dict()
    if not data.include_details:
        return {key: result[key] for key in ("taskId", "summary", "createdAt")}
    return result


_HANDLERS = {
    "create_review": create_review,
    "update_review": update_review,
    "get_review": get_review,
    "create_completion": create_completion,
    "get_completion": get_completion,
}

SUPPORTED_OPERATIONS = tuple(_HANDLERS)
INPUT_MODEL = ReviewOperationsInput


def execute(operation, params):
    return dispatch(SERVICE_NAME, _HANDLERS, INPUT_MODEL, operation, params)
