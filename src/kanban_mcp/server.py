"""Kanban MCP Server - expose the ticket board to AI agents over stdio."""
import os
import sys
import asyncio
import logging
from typing import Any, Optional

import httpx
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from . import formatters
from . import handlers
from . import tools


# Configure logging to stderr; stdout carries the MCP protocol
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stderr,
    force=True
)
logger = logging.getLogger("kanban-mcp")

# API Configuration
API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000/api")
KANBAN_API_KEY = os.getenv("KANBAN_API_KEY")
# Distinguishes concurrent agent sessions sharing one API key
KANBAN_AGENT_SESSION_ID = os.getenv("KANBAN_AGENT_SESSION_ID")

logger.info(f"MCP Server starting with API_BASE_URL: {API_BASE_URL}")
if not KANBAN_API_KEY:
    logger.warning("KANBAN_API_KEY is not set; every tool call will be rejected by the API")


# MCP Server instance
app = Server("kanban-mcp")


def build_headers(api_key: Optional[str] = None, agent_session_id: Optional[str] = None) -> dict[str, str]:
    headers = {}
    if api_key:
        headers["X-API-Key"] = api_key
    if agent_session_id:
        headers["X-Agent-Session-Id"] = agent_session_id
    return headers


def create_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=API_BASE_URL,
        timeout=30.0,
        headers=build_headers(KANBAN_API_KEY, KANBAN_AGENT_SESSION_ID),
    )


async def dispatch(name: str, arguments: Optional[dict], client: httpx.AsyncClient) -> list[TextContent]:
    """
    Run one tool against the API.

    API errors are returned to the agent as text (including context such as
    the current status after a lost claim) rather than raised.
    """
    handler = handlers.HANDLERS.get(name)
    if not handler:
        logger.warning(f"Unknown tool requested: {name}")
        return [TextContent(type="text", text=f"Unknown tool: {name}")]

    try:
        return await handler(dict(arguments or {}), client)

    except httpx.HTTPStatusError as e:
        logger.warning(f"{name} failed: {e.response.status_code} {e.request.method} {e.request.url}")
        return [TextContent(type="text", text=formatters.format_api_error(e.response))]

    except httpx.RequestError as e:
        logger.error(f"Request error during {name} call: {type(e).__name__}: {e}")
        return [TextContent(type="text", text=f"Error: Connection failed - {str(e)}")]

    except KeyError as e:
        return [TextContent(type="text", text=f"Error: missing argument {e}")]


@app.list_tools()
async def list_tools() -> list[Tool]:
    """List available MCP tools."""
    return tools.get_tools()


@app.call_tool()
async def call_tool(name: str, arguments: Any) -> list[TextContent]:
    """Handle MCP tool calls by delegating to the handlers."""
    logger.info(f"Tool call: {name} with arguments: {arguments}")
    async with create_client() as client:
        return await dispatch(name, arguments, client)


async def main():
    """Run the MCP server."""
    async with stdio_server() as (read_stream, write_stream):
        await app.run(read_stream, write_stream, app.create_initialization_options())


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
