"""Tool execution context: shared dependencies for all tool handlers."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from agentruntime.services.stores import MemoryStore, OutputBuffer

if TYPE_CHECKING:
    import httpx

    from agentruntime.infra.file_lock import FileLockCoordinator
    from agentruntime.infra.process_mgr import ProcessManager
    from agentruntime.infra.shell import ShellExecutor
    from agentruntime.models.checklist import TaskChecklist
    from agentruntime.services.approval import ApprovalGate, CommandPolicy


@dataclass
class ToolContext:
    """Dependency bundle passed to every tool handler.

    Built by the orchestrator for one run, so handlers never reach back
    into the session that owns them.
    """

    session_id: str
    cwd: str
    locks: FileLockCoordinator
    outputs: OutputBuffer = field(default_factory=OutputBuffer)
    memory: MemoryStore = field(default_factory=MemoryStore)
    shell: ShellExecutor | None = None
    processes: ProcessManager | None = None
    approval: ApprovalGate | None = None
    policy: CommandPolicy | None = None
    http_client: httpx.AsyncClient | None = None

    lock_timeout: float = 30.0
    http_timeout: float = 10.0
    command_timeout: float = 300.0
    background_timeout: float = 5.0

    # Plan tools replace or update this; the orchestrator reads it back
    checklist: TaskChecklist | None = None
    goal: str = ""

    # Callbacks into the orchestrator for status display
    on_lock_wait: Callable[[str, str], None] | None = None  # (path, holder)
    on_approval_wait: Callable[[str], None] | None = None  # (command or path)

    @property
    def working_dir(self) -> str:
        """The shell's current directory once commands have moved it."""
        if self.shell is not None:
            return self.shell.cwd
        return self.cwd
