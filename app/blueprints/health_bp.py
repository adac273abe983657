"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  - simple 200 for load balancers
    GET /api/v1/health/live   - database check plus seeded-workflow counts
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from app.mcp.tools import TOOL_REGISTRY
from app.models import db
from app.models.workflow import RoleTransition, WorkflowRole, WorkflowStep

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness check, always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except SQLAlchemyError as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check: database failed: %s", exc)

    # ── Workflow definitions ─────────────────────────────────────────
    if overall:
        counts = {
            "roles": db.session.execute(select(func.count(WorkflowRole.id))).scalar(),
            "steps": db.session.execute(select(func.count(WorkflowStep.id))).scalar(),
            "transitions": db.session.execute(select(func.count(RoleTransition.id))).scalar(),
        }
        # Empty tables are not fatal; `flask seed-workflow` fills them
        checks["workflow"] = {
            "status": "ok" if counts["roles"] else "not_seeded",
            **counts,
        }

    # ── App info ─────────────────────────────────────────────────────
    checks["app"] = {
        "name": current_app.config["MCP_SERVER_NAME"],
        "version": current_app.config["MCP_SERVER_VERSION"],
        "tools": len(TOOL_REGISTRY),
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
