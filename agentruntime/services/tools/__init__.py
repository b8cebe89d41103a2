"""Agent tool registry.

Each tool handler is a simple async function with signature:

    async def handle(ctx: ToolContext, arguments: dict[str, str]) -> ToolResult

The registry maps tool names to handlers and schemas, and filters them by
the active agent mode.
"""

from __future__ import annotations

from agentruntime.services.tools.registry import AgentTool, ToolRegistry, build_default_registry

__all__ = ["AgentTool", "ToolRegistry", "build_default_registry"]
