"""
Workflow Guidance MCP server (stdio).

    workflow-guidance-mcp          console script
    flask mcp-serve                same server from the Flask CLI

Logging goes to stderr; stdout belongs to the protocol.
"""

import asyncio
import json
import logging

import mcp.types as types
from dotenv import load_dotenv
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions
from mcp.types import TextContent, Tool

from app.mcp import tools

load_dotenv()

logger = logging.getLogger(__name__)

server = Server("workflow-guidance")

_flask_app = None


def get_flask_app():
    """The Flask app whose config and database the tools run against."""
    global _flask_app
    if _flask_app is None:
        from app import create_app

        _flask_app = create_app()
    return _flask_app


def set_flask_app(app):
    global _flask_app
    _flask_app = app


@server.list_tools()
async def handle_list_tools() -> list[Tool]:
    return [
        Tool(name=entry.name, description=entry.description, inputSchema=entry.input_schema())
        for entry in tools.TOOL_REGISTRY.values()
    ]


def _call_in_app_context(name: str, arguments: dict | None) -> dict:
    with get_flask_app().app_context():
        return tools.call_tool(name, arguments)


@server.call_tool()
async def handle_call_tool(name: str, arguments: dict | None) -> list[TextContent]:
    # Tools hit the database and may shell out to gate commands; keep the loop free
    envelope = await asyncio.to_thread(_call_in_app_context, name, arguments)
    return [
        types.TextContent(type="text", text=item["text"])
        for item in envelope["content"]
    ]


async def main():
    from mcp.server.stdio import stdio_server

    app = get_flask_app()
    logger.info(
        "Starting MCP server %s %s with %d tools",
        app.config["MCP_SERVER_NAME"], app.config["MCP_SERVER_VERSION"], len(tools.TOOL_REGISTRY),
    )
    async with stdio_server() as streams:
        await server.run(
            streams[0],
            streams[1],
            InitializationOptions(
                server_name=app.config["MCP_SERVER_NAME"],
                server_version=app.config["MCP_SERVER_VERSION"],
                capabilities=server.get_capabilities(
                    notification_options=NotificationOptions(),
                    experimental_capabilities={},
                ),
            ),
        )


def run():
    asyncio.run(main())


def describe_tools() -> str:
    """Tool names and schemas as JSON, for ``flask mcp-serve --list``."""
    return json.dumps(tools.list_tools(), indent=2)


if __name__ == "__main__":
    run()
