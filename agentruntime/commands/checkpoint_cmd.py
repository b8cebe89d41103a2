"""CLI handlers for inspecting saved run checkpoints."""

from __future__ import annotations

import asyncio

import click


def _run(coro):
    return asyncio.run(coro)


@click.group("checkpoint")
def checkpoint_group():
    """Inspect saved run checkpoints."""
    pass


@checkpoint_group.command("show")
@click.argument("session_id")
@click.option("--log", "show_log", is_flag=True, help="Print the full context log")
def checkpoint_show(session_id: str, show_log: bool):
    """Show the last checkpoint of SESSION_ID."""

    async def _show():
        from agentruntime.context import AppContext

        ctx = AppContext()
        await ctx.initialize()
        try:
            checkpoint = await ctx.store.load(session_id)
        finally:
            await ctx.close()

        if checkpoint is None:
            click.echo(f"No checkpoint for session {session_id}", err=True)
            return
        click.echo(f"Session: {checkpoint.session_id} ({checkpoint.mode} mode)")
        click.echo(f"  Goal: {checkpoint.goal}")
        click.echo(f"  Phase: {checkpoint.phase} after {checkpoint.iterations} iterations")
        click.echo(
            f"  Tokens: {checkpoint.prompt_tokens} prompt / {checkpoint.completion_tokens} completion"
            f", {checkpoint.summarization_count} summarizations"
        )
        click.echo(f"  Saved: {checkpoint.created_at:%Y-%m-%d %H:%M:%S}")
        if checkpoint.checklist is not None:
            click.echo("\n" + checkpoint.checklist.display_string)
        if show_log:
            click.echo("\n" + "\n".join(checkpoint.context_log))

    _run(_show())


@checkpoint_group.command("list")
@click.option("--limit", "-n", default=20, help="Number of checkpoints to show")
def checkpoint_list(limit: int):
    """List the most recent checkpoints."""

    async def _list():
        from agentruntime.context import AppContext

        ctx = AppContext()
        await ctx.initialize()
        try:
            checkpoints = await ctx.store.list_recent(limit)
        finally:
            await ctx.close()

        if not checkpoints:
            click.echo("No checkpoints saved.")
            return
        for cp in checkpoints:
            goal = cp.goal if len(cp.goal) <= 50 else cp.goal[:47] + "..."
            click.echo(f"  {cp.session_id}  {cp.created_at:%Y-%m-%d %H:%M}  {cp.phase:<20} {goal}")

    _run(_list())
