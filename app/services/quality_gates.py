"""
Deliverable and quality-gate checks used by role transitions.

Deliverables (``requirements.requiredDeliverables``):
    file:<path>    path exists under the project root
    report:<name>  the task has at least one COMPLETED step attempt
    step:<id>      that step has a COMPLETED attempt for the task
    test:<kind>    npm test script passes (unit / integration / e2e / any)
    <path>         bare value is treated as file:<path>

Quality gates (``requirements.qualityGates``):
    code_quality   npm run lint
    test_coverage  npm run test:coverage reports >= 80%
    security_scan  always passes
    documentation  README.md has more than 100 characters
    peer_review    an APPROVED code review exists
    build_success  npm run build
    anything else  passes with a warning

Commands run synchronously through ``_run_command`` with a timeout and no shell.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess

from flask import current_app
from sqlalchemy import select

from app.models import db
from app.models.task import CodeReviewReport
from app.models.workflow import WorkflowStepProgress

logger = logging.getLogger(__name__)

COVERAGE_THRESHOLD = 80.0
README_MIN_CHARS = 100

_COVERAGE_RE = re.compile(r"(\d+(?:\.\d+)?)%")

TEST_SCRIPTS = {
    "unit": ["npm", "run", "test:unit"],
    "integration": ["npm", "run", "test:integration"],
    "e2e": ["npm", "run", "test:e2e"],
}


def _project_root(project_path: str | None = None) -> str:
    return project_path or current_app.config.get("PROJECT_ROOT") or os.getcwd()


def _run_command(args: list[str], cwd: str) -> tuple[bool, str]:
    """Run ``args`` in ``cwd``. Returns ``(succeeded, combined output)``."""
    timeout = current_app.config.get("QUALITY_GATE_TIMEOUT", 120)
    try:
        result = subprocess.run(
            args,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        return result.returncode == 0, (result.stdout or "") + (result.stderr or "")
    except subprocess.TimeoutExpired:
        logger.warning("Command timed out after %ss: %s", timeout, " ".join(args))
        return False, f"Command timed out after {timeout}s"
    except OSError as exc:
        logger.warning("Command could not start: %s (%s)", " ".join(args), exc)
        return False, str(exc)


def has_completed_progress(task_id, step_id=None) -> bool:
    stmt = select(WorkflowStepProgress.id).where(
        WorkflowStepProgress.task_id == task_id,
        WorkflowStepProgress.status == "COMPLETED",
    )
    if step_id:
        stmt = stmt.where(WorkflowStepProgress.step_id == step_id)
    return db.session.execute(stmt.limit(1)).first() is not None


# ── Deliverables ─────────────────────────────────────────────────────────────


def check_deliverable(deliverable: str, task_id, project_path: str | None = None) -> bool:
    kind, sep, value = deliverable.partition(":")
    if not sep:
        kind, value = "file", deliverable

    if kind == "file":
        return os.path.exists(os.path.join(_project_root(project_path), value))
    if kind == "report":
        return has_completed_progress(task_id)
    if kind == "step":
        return has_completed_progress(task_id, value)
    if kind == "test":
        args = TEST_SCRIPTS.get(value, ["npm", "test"])
        ok, _ = _run_command(args, _project_root(project_path))
        return ok

    # Unrecognised prefix: the whole string is a relative path
    return os.path.exists(os.path.join(_project_root(project_path), deliverable))


# ── Quality gates ────────────────────────────────────────────────────────────


def _code_quality(task_id, root):
    ok, _ = _run_command(["npm", "run", "lint"], root)
    return ok


def _test_coverage(task_id, root):
    ok, output = _run_command(["npm", "run", "test:coverage"], root)
    if not ok:
        return False
    match = _COVERAGE_RE.search(output)
    if match is None:
        # Coverage ran but printed no percentage
        return True
    return float(match.group(1)) >= COVERAGE_THRESHOLD


def _security_scan(task_id, root):
    return True


def _documentation(task_id, root):
    path = os.path.join(root, "README.md")
    try:
        with open(path, encoding="utf-8") as fh:
            return len(fh.read().strip()) > README_MIN_CHARS
    except OSError:
        return False


def _peer_review(task_id, root):
    return db.session.execute(
        select(CodeReviewReport.id)
        .where(CodeReviewReport.task_id == task_id, CodeReviewReport.status == "APPROVED")
        .limit(1)
    ).first() is not None


def _build_success(task_id, root):
    ok, _ = _run_command(["npm", "run", "build"], root)
    return ok


QUALITY_GATES = {
    "code_quality": _code_quality,
    "test_coverage": _test_coverage,
    "security_scan": _security_scan,
    "documentation": _documentation,
    "peer_review": _peer_review,
    "build_success": _build_success,
}


def check_quality_gate(gate: str, task_id, project_path: str | None = None) -> bool:
    check = QUALITY_GATES.get(gate)
    if check is None:
        logger.warning("Unknown quality gate '%s' treated as passed", gate)
        return True
    return check(task_id, _project_root(project_path))
