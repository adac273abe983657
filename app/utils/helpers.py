"""Shared helpers used across services and blueprints.

get_or_404:      tuple-return lookup for blueprints
slugify:         kebab-case slug from a free-form name
utcnow / as_utc: timezone-aware timestamps that behave the same on SQLite and PostgreSQL
"""
import logging
import re
from datetime import datetime, timezone

from flask import jsonify

from app.models import db

logger = logging.getLogger(__name__)


def get_or_404(model, pk, label=None):
    """Fetch a model instance by primary key or return a 404 error tuple.

    - Success: (obj, None)
    - Failure: (None, (jsonify_response, 404))

        obj, err = get_or_404(WorkflowExecution, execution_id)
        if err:
            return err
    """
    label = label or model.__name__
    obj = db.session.get(model, pk)
    if not obj:
        return None, (jsonify({"error": f"{label} not found"}), 404)
    return obj, None


def slugify(name: str) -> str:
    """Lowercase, strip punctuation, collapse whitespace/hyphens into single hyphens."""
    slug = re.sub(r"[^a-z0-9\s-]", "", (name or "").lower())
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Normalise a datetime to UTC-aware regardless of whether SQLite stored it naive."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
