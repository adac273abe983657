"""
MCP tool bridge over HTTP.

Endpoints:
    GET  /api/v1/mcp/tools          - tool names, descriptions and input schemas
    POST /api/v1/mcp/tools/<name>   - run a tool; body is the tool's arguments

The response body is the same envelope the stdio server returns, so an
error is still HTTP 200 with ``{"type": "error", ...}`` inside the text.
"""

import logging

from flask import Blueprint, jsonify, request

from app.mcp import tools
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

mcp_bp = Blueprint("mcp", __name__, url_prefix="/api/v1/mcp")


@mcp_bp.route("/tools", methods=["GET"])
def list_tools():
    items = tools.list_tools()
    return jsonify({"tools": items, "total": len(items)}), 200


@mcp_bp.route("/tools/<string:name>", methods=["POST"])
def call_tool(name):
    if name not in tools.TOOL_REGISTRY:
        return api_error(E.NOT_FOUND, f"Unknown tool: {name}")
    arguments = request.get_json(silent=True)
    if arguments is not None and not isinstance(arguments, dict):
        return api_error(E.VALIDATION_INVALID, "Tool arguments must be a JSON object")
    return jsonify(tools.call_tool(name, arguments or {})), 200
