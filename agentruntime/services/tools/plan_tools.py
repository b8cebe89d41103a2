"""Goal and checklist tool handlers."""

from __future__ import annotations

import json
import re

from agentruntime.models.checklist import TaskChecklist
from agentruntime.models.tool import ParameterType, ToolParameter, ToolResult, ToolSchema
from agentruntime.services.tools.args import optional_int, require
from agentruntime.services.tools.context import ToolContext
from agentruntime.services.tools.registry import AgentTool

_CHECKBOX = re.compile(r"^\s*[-*]\s*\[[ xX]\]\s*(.+?)\s*$")


def parse_task_list(raw: str) -> list[str]:
    """Parse a JSON array of task strings, falling back to newline/comma splits."""
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        parsed = None
    if isinstance(parsed, list):
        return [str(task).strip() for task in parsed if str(task).strip()]

    cleaned = raw.strip().strip("[]")
    if "\n" in cleaned:
        parts = cleaned.split("\n")
    elif "," in cleaned:
        parts = cleaned.split(",")
    else:
        parts = [cleaned]
    return [p.strip().strip('"').strip() for p in parts if p.strip().strip('"').strip()]


def _status(ctx: ToolContext) -> str:
    return ctx.checklist.status_lines() if ctx.checklist else ""


async def handle_plan_and_track(ctx: ToolContext, arguments: dict) -> ToolResult:
    start_task = optional_int(arguments, "start_task")
    if start_task is not None:
        if ctx.checklist is not None:
            ctx.checklist.mark_in_progress(start_task)
        status = _status(ctx)
        message = f"Started task {start_task}."
        return ToolResult.ok(f"{message}\n\nCurrent checklist:\n{status}" if status else message)

    complete_task = optional_int(arguments, "complete_task")
    if complete_task is not None:
        if ctx.checklist is not None:
            ctx.checklist.mark_completed(complete_task, arguments.get("task_note") or None)
        status = _status(ctx)
        message = f"Marked task {complete_task} complete."
        return ToolResult.ok(f"{message}\n\nCurrent checklist:\n{status}" if status else message)

    goal = require(arguments, "goal", "Provide a clear, actionable goal statement.")
    tasks = parse_task_list(arguments["tasks"]) if arguments.get("tasks") else []

    ctx.goal = goal
    if tasks:
        ctx.checklist = TaskChecklist.from_plan(tasks, goal)
    lines = [f"Goal set: {goal}"]
    if tasks:
        lines.append(f"\nTask checklist created with {len(tasks)} items:")
        lines.extend(f"  {i}. {task}" for i, task in enumerate(tasks, start=1))
    return ToolResult.ok("\n".join(lines))


async def handle_create_plan(ctx: ToolContext, arguments: dict) -> ToolResult:
    title = require(arguments, "title", "Provide a clear, descriptive title for the plan.")
    content = require(
        arguments, "content", "Provide the full markdown plan with implementation checklist.",
    )
    items = [m.group(1) for line in content.split("\n") if (m := _CHECKBOX.match(line))]
    if not items:
        return ToolResult.fail(
            "Plan content must include a checklist with '- [ ]' items. "
            "Please restructure the plan with actionable checklist items."
        )

    ctx.goal = ctx.goal or title
    ctx.checklist = TaskChecklist.from_plan(items, title)
    return ToolResult.ok(
        "PLAN CREATED SUCCESSFULLY\n\n"
        f"Title: {title}\n"
        f"Checklist items: {len(items)}\n\n"
        "The plan is ready for review. Do not create any more plans or continue exploring."
    )


TOOLS = [
    AgentTool(
        ToolSchema(
            "plan_and_track",
            "Call this FIRST before multi-step work. Sets your goal and creates a "
            "trackable task checklist. Also use to mark tasks as started or complete.",
            (
                ToolParameter(
                    "goal", description="Clear, actionable goal statement (required for a new plan)",
                    required=False,
                ),
                ToolParameter(
                    "tasks",
                    description='JSON array of task descriptions, e.g. ["task 1", "task 2"]',
                    required=False,
                ),
                ToolParameter(
                    "start_task", ParameterType.INTEGER,
                    "Task ID to mark as in-progress (1-based)", required=False,
                ),
                ToolParameter(
                    "complete_task", ParameterType.INTEGER,
                    "Task ID to mark complete (1-based)", required=False,
                ),
                ToolParameter(
                    "task_note", description="Optional note for the completed task",
                    required=False,
                ),
            ),
        ),
        handle_plan_and_track,
    ),
    AgentTool(
        ToolSchema(
            "create_plan",
            "Write an implementation plan in markdown, ending with a flat checklist of "
            "'- [ ]' items.",
            (
                ToolParameter("title", description="Clear, descriptive title for the plan"),
                ToolParameter(
                    "content",
                    description="Markdown plan with context first, then a checklist using - [ ] syntax",
                ),
            ),
        ),
        handle_create_plan,
    ),
]
