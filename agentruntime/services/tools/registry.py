"""Tool registry: maps tool names to handlers and filters them by mode."""

from __future__ import annotations

import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any

from agentruntime.models.agent_mode import AgentMode
from agentruntime.models.tool import FileChange, ToolResult, ToolSchema
from agentruntime.services.stores import MemoryStore, OutputBuffer
from agentruntime.services.tools.context import ToolContext

logger = logging.getLogger(__name__)

# Type aliases for tool callables
ToolHandler = Callable[[ToolContext, dict], Coroutine[Any, Any, ToolResult]]
ChangePreview = Callable[[ToolContext, dict], FileChange | None]


@dataclass(frozen=True)
class AgentTool:
    schema: ToolSchema
    handler: ToolHandler
    prepare_change: ChangePreview | None = None
    always_requires_approval: bool = False

    @property
    def name(self) -> str:
        return self.schema.name

    @property
    def description(self) -> str:
        return self.schema.description

    @property
    def mutates_files(self) -> bool:
        return self.prepare_change is not None


class ToolRegistry:
    """Named tools plus the per-run output buffer and memory store.

    One instance is owned by each orchestrator; ``clear_session`` must be
    called at the start of every run.
    """

    def __init__(self, tools: list[AgentTool] | None = None) -> None:
        self._tools: dict[str, AgentTool] = {}
        self.outputs = OutputBuffer()
        self.memory = MemoryStore()
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: AgentTool) -> None:
        self._tools[tool.name] = tool

    def get(self, name: str) -> AgentTool | None:
        return self._tools.get(name)

    @property
    def names(self) -> list[str]:
        return sorted(self._tools)

    def tools(self, mode: AgentMode) -> list[AgentTool]:
        allowed = mode.allowed_tools
        return [self._tools[name] for name in sorted(self._tools) if name in allowed]

    def is_tool_available(self, name: str, mode: AgentMode) -> bool:
        return name in self._tools and name in mode.allowed_tools

    def schemas(self, mode: AgentMode) -> list[ToolSchema]:
        return [tool.schema for tool in self.tools(mode)]

    def descriptions(self, mode: AgentMode) -> str:
        """One line per sanctioned tool, for prompts."""
        return "\n".join(f"- {tool.name}: {tool.description}" for tool in self.tools(mode))

    def clear_session(self) -> None:
        self.outputs.clear()
        self.memory.clear()

    def prepare_change(self, name: str, args: dict[str, str], ctx: ToolContext) -> FileChange | None:
        """Side-effect-free preview of the change a file tool would make."""
        tool = self._tools.get(name)
        if tool is None or tool.prepare_change is None:
            return None
        try:
            return tool.prepare_change(ctx, args)
        except (OSError, ValueError) as e:
            logger.debug("No change preview for %s: %s", name, e)
            return None

    async def execute(self, name: str, args: dict[str, str], ctx: ToolContext) -> ToolResult:
        tool = self._tools.get(name)
        if tool is None:
            return ToolResult.fail(f"Unknown tool: {name}")
        try:
            return await tool.handler(ctx, args)
        except (KeyError, ValueError) as e:
            message = str(e.args[0]) if isinstance(e, KeyError) and e.args else str(e)
            if isinstance(e, KeyError):
                message = f"Missing required argument: {message}"
            logger.warning("Tool %s rejected arguments: %s", name, message)
            return ToolResult.fail(message)
        except Exception as e:
            logger.exception("Tool %s failed", name)
            return ToolResult.fail(f"{type(e).__name__}: {e}")


def build_default_registry() -> ToolRegistry:
    """Build a registry holding every built-in tool."""
    from agentruntime.services.tools import file_tools, info_tools, plan_tools, process_tools

    return ToolRegistry([
        *file_tools.TOOLS,
        *process_tools.TOOLS,
        *info_tools.TOOLS,
        *plan_tools.TOOLS,
    ])
