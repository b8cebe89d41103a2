"""Approval handshake for gated shell commands and file mutations."""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

from agentruntime.config import ApprovalConfig
from agentruntime.infra.event_bus import EventBus
from agentruntime.models.agent_event import AgentEvent, AgentEventType
from agentruntime.models.tool import FileChange

logger = logging.getLogger(__name__)

READ_ONLY_COMMANDS = frozenset({
    "ls", "cat", "head", "tail", "less", "more", "pwd", "echo", "printf",
    "grep", "rg", "find", "which", "whereis", "type", "wc", "file", "stat",
    "tree", "du", "df", "env", "printenv", "whoami", "id", "date", "uname",
    "hostname", "ps", "top", "diff", "sort", "uniq", "cut", "basename", "dirname",
    "realpath", "readlink", "md5sum", "sha256sum", "true",
})

READ_ONLY_SUBCOMMANDS = {
    "git": frozenset({"status", "log", "diff", "show", "branch", "remote", "rev-parse", "blame"}),
    "npm": frozenset({"ls", "list", "view", "outdated"}),
    "pip": frozenset({"list", "show", "freeze"}),
    "docker": frozenset({"ps", "images", "logs", "inspect"}),
}

_SEGMENT_SPLIT = re.compile(r"\|\||&&|;|\|")


def _segments(command: str) -> list[str]:
    return [s.strip() for s in _SEGMENT_SPLIT.split(command) if s.strip()]


class CommandPolicy:
    """Classifies commands against the configured approval lists."""

    def __init__(self, config: ApprovalConfig) -> None:
        self._config = config

    def is_read_only(self, command: str) -> bool:
        if ">" in command or "`" in command or "$(" in command:
            return False
        segments = _segments(command)
        if not segments:
            return False
        for segment in segments:
            words = segment.split()
            head = words[0]
            if head in READ_ONLY_SUBCOMMANDS:
                if len(words) < 2 or words[1] not in READ_ONLY_SUBCOMMANDS[head]:
                    return False
            elif head not in READ_ONLY_COMMANDS:
                return False
        return True

    def is_destructive(self, command: str) -> bool:
        segments = _segments(command)
        for pattern in self._config.blocked_command_patterns:
            if pattern != pattern.lower():
                # SQL-style patterns match anywhere, case-insensitively
                if pattern.lower() in command.lower():
                    return True
                continue
            single_word = " " not in pattern and "/" not in pattern
            for segment in segments:
                if single_word:
                    if segment == pattern or segment.startswith(pattern + " "):
                        return True
                elif segment.startswith(pattern):
                    return True
        return False

    def should_auto_approve(self, command: str) -> bool:
        return (
            self._config.auto_approve_read_only
            and self.is_read_only(command)
            and not self.is_destructive(command)
        )

    def requires_approval(self, command: str) -> bool:
        if self.is_destructive(command):
            return True
        return self._config.require_command_approval and not self.should_auto_approve(command)


class ApprovalKind(str, Enum):
    COMMAND = "command"
    FILE_CHANGE = "file_change"


class ApprovalStatus(str, Enum):
    APPROVED = "approved"
    EDITED = "edited"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class ApprovalRequest:
    id: str
    kind: ApprovalKind
    command: str | None = None
    file_change: FileChange | None = None

    @property
    def summary(self) -> str:
        if self.kind == ApprovalKind.COMMAND:
            return self.command or ""
        return self.file_change.summary if self.file_change else ""


@dataclass(frozen=True)
class ApprovalDecision:
    status: ApprovalStatus
    command: str | None = None

    @property
    def approved(self) -> bool:
        return self.status in (ApprovalStatus.APPROVED, ApprovalStatus.EDITED)


Approver = Callable[[ApprovalRequest], Awaitable[tuple[bool, str | None]]]


@dataclass
class _Pending:
    request: ApprovalRequest
    future: asyncio.Future = field(repr=False)


class ApprovalGate:
    """Suspends the run until an external approver answers.

    Each request owns one future. Whichever comes first of an answer,
    cancellation or the timeout resolves it; later resolutions are ignored.
    """

    def __init__(
        self,
        session_id: str,
        event_bus: EventBus | None = None,
        timeout: float = 300.0,
        approver: Approver | None = None,
        auto_approve: bool = False,
    ) -> None:
        self._session_id = session_id
        self._bus = event_bus
        self._timeout = timeout
        self._approver = approver
        self.auto_approve = auto_approve
        self._pending: dict[str, _Pending] = {}

    async def request(
        self,
        kind: ApprovalKind,
        command: str | None = None,
        file_change: FileChange | None = None,
    ) -> ApprovalDecision:
        if self.auto_approve:
            return ApprovalDecision(ApprovalStatus.APPROVED, command)

        request = ApprovalRequest(
            id=uuid.uuid4().hex[:12], kind=kind, command=command, file_change=file_change,
        )
        future = asyncio.get_running_loop().create_future()
        self._pending[request.id] = _Pending(request=request, future=future)

        if self._bus is not None:
            self._bus.emit(AgentEvent(
                session_id=self._session_id,
                event_type=AgentEventType.WAITING_FOR_APPROVAL,
                title="Approval required",
                detail=request.summary,
                data={
                    "approval_id": request.id,
                    "kind": kind.value,
                    "command": command,
                    "file_path": file_change.file_path if file_change else None,
                    "before": file_change.before_content if file_change else None,
                    "after": file_change.after_content if file_change else None,
                },
            ))

        asker = None
        if self._approver is not None:
            asker = asyncio.create_task(self._ask(request))

        try:
            decision = await asyncio.wait_for(asyncio.shield(future), timeout=self._timeout)
        except TimeoutError:
            logger.warning("Approval %s timed out after %.0fs", request.id, self._timeout)
            self._settle(request.id, ApprovalDecision(ApprovalStatus.TIMEOUT))
            decision = future.result()
        finally:
            self._pending.pop(request.id, None)
            if asker is not None and not asker.done():
                asker.cancel()
        return decision

    async def _ask(self, request: ApprovalRequest) -> None:
        try:
            approved, edited = await self._approver(request)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Approver failed for %s", request.id)
            self.resolve(request.id, False)
            return
        self.resolve(request.id, approved, edited)

    def resolve(self, approval_id: str, approved: bool, edited_command: str | None = None) -> bool:
        """Answer a pending request. Returns False if it was already settled."""
        pending = self._pending.get(approval_id)
        if pending is None:
            return False
        if not approved:
            decision = ApprovalDecision(ApprovalStatus.REJECTED)
        elif edited_command and edited_command != pending.request.command:
            decision = ApprovalDecision(ApprovalStatus.EDITED, edited_command)
        else:
            decision = ApprovalDecision(ApprovalStatus.APPROVED, pending.request.command)
        return self._settle(approval_id, decision)

    def cancel_all(self) -> int:
        cancelled = 0
        for approval_id in list(self._pending):
            if self._settle(approval_id, ApprovalDecision(ApprovalStatus.CANCELLED)):
                cancelled += 1
        return cancelled

    def _settle(self, approval_id: str, decision: ApprovalDecision) -> bool:
        pending = self._pending.get(approval_id)
        if pending is None or pending.future.done():
            return False
        pending.future.set_result(decision)
        return True

    @property
    def pending_ids(self) -> list[str]:
        return list(self._pending)
