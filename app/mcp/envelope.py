"""
Tool response envelope.

Every tool result, successful or not, is a single text content item holding
indented JSON:

    {"content": [{"type": "text", "text": "<json>"}]}

Errors carry ``{"type": "error", "success": false, "error": {...}, "timestamp"}``
inside the text.
"""

import json

from app.utils.helpers import utcnow


def _dumps(payload) -> str:
    return json.dumps(payload, indent=2, default=str)


def success_response(payload) -> dict:
    return {"content": [{"type": "text", "text": _dumps(payload)}]}


def error_response(message: str, details=None, code: str | None = None) -> dict:
    body = {
        "type": "error",
        "success": False,
        "error": {
            "message": message,
            "details": details,
            "code": code,
        },
        "timestamp": utcnow().isoformat(),
    }
    return {"content": [{"type": "text", "text": _dumps(body)}]}


def payload_of(envelope: dict) -> dict:
    """Decode the JSON text of an envelope."""
    return json.loads(envelope["content"][0]["text"])


def is_error(envelope: dict) -> bool:
    data = payload_of(envelope)
    return isinstance(data, dict) and data.get("type") == "error"
