"""Tests for the goal and checklist tools."""

from __future__ import annotations

import pytest

from agentruntime.infra.file_lock import FileLockCoordinator
from agentruntime.models.checklist import TaskChecklist, TaskStatus
from agentruntime.services.tools.context import ToolContext
from agentruntime.services.tools.plan_tools import (
    handle_create_plan,
    handle_plan_and_track,
    parse_task_list,
)


@pytest.fixture
def ctx(tmp_path):
    return ToolContext(session_id="s1", cwd=str(tmp_path), locks=FileLockCoordinator())


class TestParseTaskList:
    def test_json_array(self):
        assert parse_task_list('["a", " b ", ""]') == ["a", "b"]

    def test_newlines(self):
        assert parse_task_list("write code\nrun tests") == ["write code", "run tests"]

    def test_commas(self):
        assert parse_task_list('["a", "b"') == ["a", "b"]

    def test_single(self):
        assert parse_task_list("just one") == ["just one"]


class TestPlanAndTrack:
    @pytest.mark.asyncio
    async def test_new_plan(self, ctx):
        result = await handle_plan_and_track(ctx, {
            "goal": "Ship it", "tasks": '["write", "test"]',
        })
        assert result.success
        assert ctx.goal == "Ship it"
        assert [item.description for item in ctx.checklist.items] == ["write", "test"]
        assert "Task checklist created with 2 items" in result.output

    @pytest.mark.asyncio
    async def test_goal_only_keeps_checklist(self, ctx):
        ctx.checklist = TaskChecklist.from_plan(["a"], "old")
        result = await handle_plan_and_track(ctx, {"goal": "New goal"})
        assert result.output == "Goal set: New goal"
        assert len(ctx.checklist.items) == 1

    @pytest.mark.asyncio
    async def test_start_and_complete(self, ctx):
        ctx.checklist = TaskChecklist.from_plan(["a", "b"], "g")
        await handle_plan_and_track(ctx, {"start_task": "1"})
        assert ctx.checklist.get(1).status == TaskStatus.IN_PROGRESS

        result = await handle_plan_and_track(ctx, {"complete_task": "1", "task_note": "done"})
        assert ctx.checklist.get(1).status == TaskStatus.COMPLETED
        assert ctx.checklist.get(1).verification_note == "done"
        assert result.output.startswith("Marked task 1 complete.")
        assert "Current checklist:" in result.output

    @pytest.mark.asyncio
    async def test_missing_goal(self, ctx):
        with pytest.raises(ValueError, match="goal"):
            await handle_plan_and_track(ctx, {})


class TestCreatePlan:
    @pytest.mark.asyncio
    async def test_creates_checklist_from_markdown(self, ctx):
        content = "# Plan\n\nSome context.\n\n- [ ] Add model\n- [x] Wire API\n* [ ] Write tests\n"
        result = await handle_create_plan(ctx, {"title": "Auth", "content": content})
        assert result.success
        assert "Checklist items: 3" in result.output
        assert [item.description for item in ctx.checklist.items] == [
            "Add model", "Wire API", "Write tests",
        ]
        assert ctx.goal == "Auth"

    @pytest.mark.asyncio
    async def test_requires_checklist(self, ctx):
        result = await handle_create_plan(ctx, {"title": "Auth", "content": "just prose"})
        assert not result.success
        assert "- [ ]" in result.error
