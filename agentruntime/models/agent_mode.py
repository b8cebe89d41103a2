"""Agent capability modes and their sanctioned tool sets."""

from __future__ import annotations

from enum import Enum

SCOUT_TOOLS = frozenset({
    "read_file",
    "list_dir",
    "search_files",
    "search_output",
    "check_process",
    "http_request",
    "memory",
})

NAVIGATOR_TOOLS = SCOUT_TOOLS | {"create_plan"}

COPILOT_TOOLS = SCOUT_TOOLS | {
    "write_file",
    "edit_file",
    "insert_lines",
    "delete_lines",
    "delete_file",
    "plan_and_track",
}

PILOT_TOOLS = COPILOT_TOOLS | {"shell", "run_background", "stop_process"}

FILE_MUTATING_TOOLS = frozenset({"write_file", "edit_file", "insert_lines", "delete_lines"})


class AgentMode(str, Enum):
    SCOUT = "scout"
    NAVIGATOR = "navigator"
    COPILOT = "copilot"
    PILOT = "pilot"

    @property
    def allowed_tools(self) -> frozenset[str]:
        return _ALLOWED[self]

    @property
    def can_run_commands(self) -> bool:
        return "shell" in self.allowed_tools

    @property
    def can_modify_files(self) -> bool:
        return bool(FILE_MUTATING_TOOLS & self.allowed_tools)

    @property
    def label(self) -> str:
        return self.value.capitalize()


_ALLOWED = {
    AgentMode.SCOUT: SCOUT_TOOLS,
    AgentMode.NAVIGATOR: NAVIGATOR_TOOLS,
    AgentMode.COPILOT: COPILOT_TOOLS,
    AgentMode.PILOT: PILOT_TOOLS,
}
