"""
Shared pytest fixtures for the Workflow Guidance Server test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - seeded: default roles, steps and transitions
    - task / execution: a plain task and an execution in the boomerang role
    - no_commands: quality-gate commands replaced by a recorder
"""

import pytest

from app import create_app
from app.models import db as _db
from app.models.task import Task


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def seeded():
    """Seed the default workflow and return the created-row counts."""
    from app.services.seed_service import seed_default_workflow
    counts = seed_default_workflow()
    _db.session.flush()
    return counts


@pytest.fixture()
def task():
    t = Task(name="Add login page", slug="add-login-page", status="not-started", priority="Medium")
    _db.session.add(t)
    _db.session.flush()
    return t


@pytest.fixture()
def execution(seeded, task):
    """An execution of ``task`` positioned on the first boomerang step."""
    from app.models.workflow import WorkflowExecution
    from app.services import workflow_execution_service
    result = workflow_execution_service.create_execution(task.id, "boomerang")
    return _db.session.get(WorkflowExecution, result["execution"]["id"])


@pytest.fixture()
def no_commands(monkeypatch):
    """Replace subprocess-backed gate commands; returns the list of recorded calls.

    Set ``no_commands.result`` to ``(ok, output)`` to control the outcome.
    """
    from app.services import quality_gates

    class Recorder(list):
        result = (True, "")

    calls = Recorder()

    def fake_run(args, cwd):
        calls.append((tuple(args), cwd))
        return calls.result

    monkeypatch.setattr(quality_gates, "_run_command", fake_run)
    return calls
