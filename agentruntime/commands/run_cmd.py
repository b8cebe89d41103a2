"""CLI handler for running the agent on a prompt."""

from __future__ import annotations

import asyncio
import difflib
import signal

import click

from agentruntime.config import load_config
from agentruntime.errors import AgentAPIError
from agentruntime.models.agent_event import AgentEvent, AgentEventType
from agentruntime.models.agent_mode import AgentMode
from agentruntime.services.approval import ApprovalKind, ApprovalRequest

_QUIET_EVENTS = (AgentEventType.SUMMARY, AgentEventType.PHASE_CHANGED)


def _diff(before: str | None, after: str | None, path: str) -> str:
    lines = difflib.unified_diff(
        (before or "").splitlines(keepends=True),
        (after or "").splitlines(keepends=True),
        fromfile=f"a/{path}",
        tofile=f"b/{path}",
    )
    return "".join(lines)


def _ask_approval(request: ApprovalRequest) -> tuple[bool, str | None]:
    click.echo("")
    if request.kind == ApprovalKind.COMMAND:
        click.secho(f"Approve command: {request.command}", fg="yellow")
        choice = click.prompt(
            "[y]es / [n]o / [e]dit", type=click.Choice(["y", "n", "e"]), default="n",
        )
        if choice == "e":
            return True, click.prompt("Command", default=request.command)
        return choice == "y", None

    click.secho(f"Approve change: {request.summary}", fg="yellow")
    change = request.file_change
    if change is not None and change.after_content is not None:
        click.echo(_diff(change.before_content, change.after_content, change.file_path))
    return click.confirm("Apply this change?", default=False), None


async def prompt_approval(request: ApprovalRequest) -> tuple[bool, str | None]:
    """Approver that asks on the terminal without blocking the event loop."""
    return await asyncio.to_thread(_ask_approval, request)


def print_event(event: AgentEvent) -> None:
    kind = event.event_type
    if kind in _QUIET_EVENTS:
        return
    if kind == AgentEventType.REPLY_CHUNK:
        click.echo(event.detail, nl=False)
    elif kind == AgentEventType.GOAL:
        click.secho(f"Goal: {event.title}", bold=True)
    elif kind in (AgentEventType.PLAN, AgentEventType.CHECKLIST_CHANGED):
        click.secho(event.title, bold=True)
        click.echo(event.detail)
    elif kind == AgentEventType.STEP_STARTED:
        click.secho(f"→ {event.title}", fg="cyan")
    elif kind == AgentEventType.COMMAND_STARTED:
        click.secho(f"$ {event.title}", fg="cyan")
    elif kind == AgentEventType.COMMAND_OUTPUT:
        lines = event.detail.splitlines()
        for line in lines[:10]:
            click.secho(f"  {line}", dim=True)
        if len(lines) > 10:
            click.secho(f"  ... ({len(lines) - 10} more lines)", dim=True)
    elif kind == AgentEventType.TOOL_RESULT:
        color = "green" if event.data.get("success") else "red"
        click.secho(event.title, fg=color)
    elif kind == AgentEventType.ERROR:
        click.secho(f"Error: {event.title} {event.detail}", fg="red", err=True)
    elif kind in (AgentEventType.WAITING_FOR_LOCK, AgentEventType.STUCK):
        click.secho(f"{event.title} {event.detail}".strip(), fg="yellow")
    else:
        click.echo(f"{event.title} {event.detail}".strip())


@click.command("run")
@click.argument("prompt")
@click.option(
    "--mode", "-m",
    type=click.Choice([m.value for m in AgentMode], case_sensitive=False),
    default=None,
    help="Agent mode (default from config)",
)
@click.option("--cwd", "-C", default="", help="Working directory for the run")
@click.option("--provider", "-p", default="", help="LLM provider (anthropic, llamacpp)")
@click.option("--model", default="", help="Model name override")
@click.option("--approve-all", is_flag=True, help="Approve every command and file change")
def run_command(prompt: str, mode: str | None, cwd: str, provider: str, model: str, approve_all: bool):
    """Run the agent on PROMPT until it completes, fails or is interrupted."""

    async def _run() -> int:
        from agentruntime.context import AppContext

        config = load_config()
        if provider:
            config.provider = provider
        if model:
            config.model = model

        ctx = AppContext(config)
        await ctx.initialize()
        try:
            try:
                session = ctx.create_session(
                    mode=mode,
                    cwd=cwd or None,
                    approver=None if approve_all else prompt_approval,
                    auto_approve=approve_all,
                )
            except (AgentAPIError, RuntimeError, ValueError) as e:
                click.echo(f"Error: {e}", err=True)
                return 1

            ctx.event_bus.subscribe(print_event)
            loop = asyncio.get_running_loop()
            try:
                loop.add_signal_handler(
                    signal.SIGINT, lambda: asyncio.ensure_future(session.cancel()),
                )
            except NotImplementedError:
                pass

            result = await session.run(prompt)
        finally:
            await ctx.close()

        click.echo("")
        if result.summary:
            click.echo(result.summary)
        click.secho(
            f"[{result.phase} after {result.iterations} iterations] {result.status}".rstrip(),
            dim=True,
        )
        click.echo(f"Session: {session.session_id}")
        return 0 if result.completed else 1

    raise SystemExit(asyncio.run(_run()))
