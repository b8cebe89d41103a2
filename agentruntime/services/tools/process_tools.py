"""Shell and background process tool handlers."""

from __future__ import annotations

import logging

from agentruntime.models.tool import ParameterType, ToolParameter, ToolResult, ToolSchema
from agentruntime.services.approval import ApprovalKind
from agentruntime.services.tools.args import flag, optional_float, optional_int, require
from agentruntime.services.tools.context import ToolContext
from agentruntime.services.tools.registry import AgentTool

logger = logging.getLogger(__name__)


async def approve_command(ctx: ToolContext, command: str) -> tuple[str | None, str]:
    """Pass ``command`` through the approval policy.

    Returns the command to run (possibly edited by the approver) and an
    empty message, or ``None`` and the reason it will not run.
    """
    if ctx.policy is None or ctx.approval is None:
        return command, ""
    if not ctx.policy.requires_approval(command):
        return command, ""

    if ctx.on_approval_wait is not None:
        ctx.on_approval_wait(command)
    decision = await ctx.approval.request(ApprovalKind.COMMAND, command=command)
    if decision.approved:
        return decision.command or command, ""
    logger.info("Command not approved (%s): %s", decision.status.value, command)
    return None, f"Command was not approved ({decision.status.value}): {command}"


async def handle_shell(ctx: ToolContext, arguments: dict) -> ToolResult:
    command = require(arguments, "command")
    if ctx.shell is None:
        return ToolResult.fail("Shell command executor not configured. This is an internal error.")

    approved, reason = await approve_command(ctx, command)
    if approved is None:
        return ToolResult.fail(reason)

    timeout = optional_float(arguments, "timeout", ctx.command_timeout)
    result = await ctx.shell.execute(approved, timeout=timeout)
    ctx.outputs.store(result.output, approved)

    if result.success:
        output = result.output or (
            f"(command completed with no output, exit code: {result.exit_code})"
        )
        return ToolResult.ok(output)
    if not result.output:
        return ToolResult.fail(f"Command failed with exit code {result.exit_code}")
    return ToolResult.fail(f"Command failed (exit {result.exit_code}): {result.output}")


async def handle_run_background(ctx: ToolContext, arguments: dict) -> ToolResult:
    command = require(arguments, "command")
    if ctx.processes is None:
        return ToolResult.fail("Process manager not configured. This is an internal error.")

    approved, reason = await approve_command(ctx, command)
    if approved is None:
        return ToolResult.fail(reason)

    result = await ctx.processes.start_process(
        approved,
        cwd=ctx.working_dir,
        wait_for=arguments.get("wait_for") or None,
        timeout=optional_float(arguments, "timeout", ctx.background_timeout),
    )
    if result.error:
        return ToolResult.fail(result.error)

    output = f"Started background process with PID: {result.pid}"
    if result.initial_output:
        output += f"\n\nInitial output:\n{result.initial_output[:1500]}"
    return ToolResult.ok(output)


async def handle_check_process(ctx: ToolContext, arguments: dict) -> ToolResult:
    if ctx.processes is None:
        return ToolResult.fail("Process manager not configured. This is an internal error.")

    if flag(arguments, "list"):
        processes = ctx.processes.list_processes()
        if not processes:
            return ToolResult.ok("No managed background processes")
        lines = ["Managed background processes:"]
        for proc in processes:
            status = "RUNNING" if proc.running else "STOPPED"
            lines.append(
                f"  PID {proc.pid}: {status} (uptime: {int(proc.uptime)}s) - {proc.command[:50]}"
            )
        return ToolResult.ok("\n".join(lines))

    pid = optional_int(arguments, "pid")
    if pid is not None:
        status = ctx.processes.check_process(pid)
        output = f"Process {pid}: {'RUNNING' if status.running else 'NOT RUNNING'}"
        if status.output:
            output += f"\n\nRecent output:\n{status.output}"
        return ToolResult.ok(output)

    port = optional_int(arguments, "port")
    if port is not None:
        port_status = await ctx.processes.check_port(port)
        output = f"Port {port}: {'IN USE' if port_status.in_use else 'FREE'}"
        if port_status.pid is not None:
            output += f" (PID: {port_status.pid})"
        return ToolResult.ok(output)

    return ToolResult.fail("Must provide either 'pid', 'port', or 'list=true'")


async def handle_stop_process(ctx: ToolContext, arguments: dict) -> ToolResult:
    if ctx.processes is None:
        return ToolResult.fail("Process manager not configured. This is an internal error.")

    if flag(arguments, "all"):
        await ctx.processes.stop_all()
        return ToolResult.ok("Stopped all managed background processes")

    pid = optional_int(arguments, "pid")
    if pid is None:
        raise ValueError("Missing required argument: pid")
    if await ctx.processes.stop_process(pid):
        return ToolResult.ok(f"Stopped process {pid}")
    return ToolResult.fail(f"Process {pid} not found or already stopped")


_INT = ParameterType.INTEGER
_BOOL = ParameterType.BOOLEAN

TOOLS = [
    AgentTool(
        ToolSchema(
            "shell",
            "Execute a shell command. Environment changes (cd, source, export) persist "
            "between commands.",
            (
                ToolParameter("command", description="Shell command to execute"),
                ToolParameter(
                    "timeout", _INT,
                    "Seconds to wait for command output (default: 300, use higher for "
                    "long builds/tests)",
                    required=False,
                ),
            ),
        ),
        handle_shell,
    ),
    AgentTool(
        ToolSchema("run_background", "Start a process in the background (e.g., a server)", (
            ToolParameter("command", description="Command to run in the background"),
            ToolParameter(
                "wait_for", description="Text to wait for in output to confirm startup",
                required=False,
            ),
            ToolParameter(
                "timeout", _INT, "Seconds to wait for startup confirmation (default: 5)",
                required=False,
            ),
        )),
        handle_run_background,
    ),
    AgentTool(
        ToolSchema("check_process", "Check if a background process is running", (
            ToolParameter("pid", _INT, "Process ID to check", required=False),
            ToolParameter("port", _INT, "Port number to check for a listening process", required=False),
            ToolParameter("list", _BOOL, "List all managed background processes", required=False),
        )),
        handle_check_process,
    ),
    AgentTool(
        ToolSchema("stop_process", "Stop a background process", (
            ToolParameter("pid", _INT, "Process ID to stop", required=False),
            ToolParameter("all", _BOOL, "Stop all managed background processes", required=False),
        )),
        handle_stop_process,
    ),
]
