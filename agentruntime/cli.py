"""Click CLI definitions - main entry point."""

from __future__ import annotations

import logging
import sys

import click

from agentruntime.commands.checkpoint_cmd import checkpoint_group
from agentruntime.commands.config_cmd import config_group
from agentruntime.commands.run_cmd import run_command
from agentruntime.commands.tools_cmd import tools_command


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, debug: bool) -> None:
    """agentruntime - Autonomous terminal agent runtime."""
    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


cli.add_command(run_command, "run")
cli.add_command(tools_command, "tools")
cli.add_command(config_group, "config")
cli.add_command(checkpoint_group, "checkpoint")


if __name__ == "__main__":
    cli()
