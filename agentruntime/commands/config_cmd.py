"""CLI handlers for config commands."""

from __future__ import annotations

import json
import tomllib

import click

from agentruntime.config import DEFAULT_CONFIG_PATH, init_config, load_config


@click.group("config")
def config_group():
    """Manage configuration."""
    pass


@config_group.command("init")
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
def config_init(force: bool):
    """Create default configuration file."""
    if DEFAULT_CONFIG_PATH.exists() and not force:
        click.echo(f"Config already exists at: {DEFAULT_CONFIG_PATH} (use --force to overwrite)")
        return
    path = init_config()
    click.echo(f"Configuration created at: {path}")


@config_group.command("show")
def config_show():
    """Show current configuration."""
    config = load_config()
    agent = config.agent
    click.echo(f"Config file: {config.config_path}")
    click.echo(f"  Mode: {config.default_mode}")
    click.echo(f"  Provider: {config.provider} (model={config.resolved_model or 'default'})")
    click.echo(f"  Working dir: {config.resolved_working_dir}")
    click.echo(
        f"  Agent: max_iterations={agent.max_iterations}, planning={agent.enable_planning}, "
        f"reflection={agent.enable_reflection}/{agent.reflection_interval}, "
        f"verification={agent.enable_verification}"
    )
    click.echo(
        f"  Timeouts: command={agent.command_timeout:g}s, http={agent.http_request_timeout:g}s, "
        f"file_lock={agent.file_lock_timeout:g}s"
    )
    click.echo(
        f"  Context: limit_override={config.context.context_limit_override}, "
        f"max_output_capture={config.context.max_output_capture}"
    )
    click.echo(
        f"  Approval: commands={config.approval.require_command_approval}, "
        f"file_edits={config.approval.require_file_edit_approval}, "
        f"auto_read_only={config.approval.auto_approve_read_only}"
    )
    persistence = config.persistence
    if persistence.backend == "mongodb":
        click.echo(f"  Checkpoints: {persistence.mongodb_uri}/{persistence.mongodb_database}")
    else:
        click.echo(f"  Checkpoints: {persistence.resolved_checkpoint_dir}")

    click.echo("\n  Providers:")
    for name, prov in config.providers.items():
        has_key = "configured" if prov.api_key else "not set"
        target = prov.base_url or f"key={has_key}"
        click.echo(f"    {name}: model={prov.default_model}, {target}")


def coerce_value(value: str):
    """Interpret a command-line value as a TOML scalar, list or table."""
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    if value.isdigit():
        return int(value)
    try:
        return float(value)
    except ValueError:
        pass
    if value.startswith(("[", "{")):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


@config_group.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str):
    """Set a configuration value.

    Modifies the TOML config file. Key uses dot notation, e.g.:
    general.default_mode, agent.max_iterations, approval.require_command_approval
    """
    import tomli_w

    path = DEFAULT_CONFIG_PATH
    if not path.exists():
        click.echo("No config file found. Run 'agentruntime config init' first.", err=True)
        return

    with open(path, "rb") as f:
        data = tomllib.load(f)

    parts = key.split(".")
    target = data
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = coerce_value(value)

    with open(path, "wb") as f:
        tomli_w.dump(data, f)

    click.echo(f"Set {key} = {value}")
