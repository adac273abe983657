"""
MCP tool surface.

    schemas   pydantic input models, one per tool (camelCase on the wire)
    tools     TOOL_REGISTRY and ``call_tool``, the single error boundary
    envelope  the fixed ``{content: [{type, text}]}`` response shape
    server    stdio transport built on the ``mcp`` SDK

The same registry backs the HTTP bridge in ``app.blueprints.mcp_bp``.
"""
