"""MCP control channel for external AI agents."""

from leadhub.mcp.commands import McpRequest, McpResponse, describe_commands
from leadhub.mcp.server import (
    McpCommandHandler,
    McpConnectionTracker,
    get_connection_tracker,
    router,
    set_connection_tracker,
)

__all__ = [
    "McpCommandHandler",
    "McpConnectionTracker",
    "McpRequest",
    "McpResponse",
    "describe_commands",
    "get_connection_tracker",
    "router",
    "set_connection_tracker",
]
