"""Tests for the command approval policy and the approval gate."""

from __future__ import annotations

import asyncio

import pytest

from agentruntime.config import ApprovalConfig
from agentruntime.infra.event_bus import EventBus
from agentruntime.models.agent_event import AgentEventType
from agentruntime.models.tool import FileChange, FileOperationType
from agentruntime.services.approval import (
    ApprovalGate,
    ApprovalKind,
    ApprovalStatus,
    CommandPolicy,
)


@pytest.fixture
def policy():
    return CommandPolicy(ApprovalConfig())


class TestCommandPolicy:
    def test_read_only_commands(self, policy):
        assert policy.is_read_only("ls -la")
        assert policy.is_read_only("cat README.md | grep install")
        assert policy.is_read_only("git status")

    def test_not_read_only(self, policy):
        assert not policy.is_read_only("git commit -m x")
        assert not policy.is_read_only("echo hi > out.txt")
        assert not policy.is_read_only("ls $(pwd)")
        assert not policy.is_read_only("npm install")
        assert not policy.is_read_only("")

    def test_destructive_single_word_matches_whole_command_name(self, policy):
        assert policy.is_destructive("rm -rf build")
        assert policy.is_destructive("ls && rm file")
        assert not policy.is_destructive("rmate notes.txt")

    def test_destructive_phrase(self, policy):
        assert policy.is_destructive("git push --force origin main")
        assert not policy.is_destructive("git push origin main")

    def test_sql_patterns_case_insensitive(self, policy):
        assert policy.is_destructive('psql -c "drop table users"')

    def test_requires_approval_default(self, policy):
        assert policy.requires_approval("rm -rf /tmp/x")
        assert not policy.requires_approval("pytest -q")

    def test_requires_approval_when_enabled(self):
        policy = CommandPolicy(ApprovalConfig(require_command_approval=True))
        assert policy.requires_approval("pytest -q")
        assert not policy.requires_approval("ls")

    def test_read_only_not_auto_approved_when_disabled(self):
        policy = CommandPolicy(ApprovalConfig(
            require_command_approval=True, auto_approve_read_only=False,
        ))
        assert policy.requires_approval("ls")


class TestApprovalGate:
    @pytest.mark.asyncio
    async def test_auto_approve(self):
        gate = ApprovalGate("s1", auto_approve=True)
        decision = await gate.request(ApprovalKind.COMMAND, command="make")
        assert decision.status == ApprovalStatus.APPROVED
        assert decision.command == "make"

    @pytest.mark.asyncio
    async def test_resolve_through_event(self):
        bus = EventBus()
        events = []
        bus.subscribe(events.append)
        gate = ApprovalGate("s1", event_bus=bus)

        task = asyncio.create_task(gate.request(ApprovalKind.COMMAND, command="make"))
        await asyncio.sleep(0)
        assert len(gate.pending_ids) == 1
        assert events[0].event_type == AgentEventType.WAITING_FOR_APPROVAL
        approval_id = events[0].data["approval_id"]

        assert gate.resolve(approval_id, True)
        decision = await task
        assert decision.approved
        assert decision.status == ApprovalStatus.APPROVED
        assert gate.pending_ids == []

    @pytest.mark.asyncio
    async def test_second_resolution_ignored(self):
        gate = ApprovalGate("s1")
        task = asyncio.create_task(gate.request(ApprovalKind.COMMAND, command="make"))
        await asyncio.sleep(0)
        approval_id = gate.pending_ids[0]
        assert gate.resolve(approval_id, False)
        assert not gate.resolve(approval_id, True)
        decision = await task
        assert decision.status == ApprovalStatus.REJECTED
        assert not decision.approved

    @pytest.mark.asyncio
    async def test_edited_command(self):
        gate = ApprovalGate("s1")
        task = asyncio.create_task(gate.request(ApprovalKind.COMMAND, command="make"))
        await asyncio.sleep(0)
        gate.resolve(gate.pending_ids[0], True, "make -j4")
        decision = await task
        assert decision.status == ApprovalStatus.EDITED
        assert decision.command == "make -j4"
        assert decision.approved

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        gate = ApprovalGate("s1")
        task = asyncio.create_task(gate.request(ApprovalKind.COMMAND, command="make"))
        await asyncio.sleep(0)
        assert gate.cancel_all() == 1
        decision = await task
        assert decision.status == ApprovalStatus.CANCELLED
        assert gate.cancel_all() == 0

    @pytest.mark.asyncio
    async def test_timeout(self):
        gate = ApprovalGate("s1", timeout=0.05)
        decision = await gate.request(ApprovalKind.COMMAND, command="make")
        assert decision.status == ApprovalStatus.TIMEOUT
        assert gate.pending_ids == []

    @pytest.mark.asyncio
    async def test_approver_callback(self):
        seen = []

        async def approver(request):
            seen.append(request)
            return True, None

        gate = ApprovalGate("s1", approver=approver)
        change = FileChange("/tmp/a.txt", FileOperationType.CREATE, after_content="x")
        decision = await gate.request(ApprovalKind.FILE_CHANGE, file_change=change)
        assert decision.approved
        assert seen[0].summary == "Create /tmp/a.txt"

    @pytest.mark.asyncio
    async def test_failing_approver_rejects(self):
        async def approver(request):
            raise RuntimeError("terminal closed")

        gate = ApprovalGate("s1", approver=approver)
        decision = await gate.request(ApprovalKind.COMMAND, command="make")
        assert decision.status == ApprovalStatus.REJECTED
