"""CLI handler for listing agent tools."""

from __future__ import annotations

import click

from agentruntime.models.agent_mode import AgentMode
from agentruntime.services.tools import build_default_registry


@click.command("tools")
@click.option(
    "--mode", "-m",
    type=click.Choice([m.value for m in AgentMode], case_sensitive=False),
    default=None,
    help="Only show tools available in this mode",
)
@click.option("--verbose", "-v", is_flag=True, help="Show tool parameters")
def tools_command(mode: str | None, verbose: bool):
    """List the built-in agent tools."""
    registry = build_default_registry()
    if mode:
        tools = registry.tools(AgentMode(mode))
    else:
        tools = [registry.get(name) for name in registry.names]

    if not tools:
        click.echo("No tools available.")
        return

    for tool in tools:
        modes = ",".join(m.value for m in AgentMode if registry.is_tool_available(tool.name, m))
        flags = " [approval]" if tool.always_requires_approval else ""
        click.echo(f"{tool.name:<16} {tool.description}{flags}")
        click.echo(f"{'':<16} modes: {modes}")
        if verbose:
            for param in tool.schema.parameters:
                required = "required" if param.required else "optional"
                choices = f" {{{'|'.join(param.enum_values)}}}" if param.enum_values else ""
                click.echo(
                    f"{'':<18}- {param.name} ({param.type.value}, {required}){choices}: "
                    f"{param.description}"
                )
