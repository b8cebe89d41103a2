"""Configuration loading: TOML file + environment variable overlay."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "agentruntime"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.toml"

DEFAULT_BLOCKED_PATTERNS = [
    "rm",
    "rmdir",
    "unlink",
    "sudo",
    "su ",
    "doas",
    "chmod",
    "chown",
    "chgrp",
    "git push --force",
    "git push -f",
    "git reset --hard",
    "git clean -fd",
    "git clean -f",
    "git checkout -- .",
    "mv /",
    "cp /dev/",
    "dd ",
    "mkfs",
    "fdisk",
    "kill ",
    "killall ",
    "pkill ",
    "shutdown",
    "reboot",
    "halt",
    "pip uninstall",
    "npm uninstall -g",
    "apt remove",
    "apt purge",
    "DROP DATABASE",
    "DROP TABLE",
    "TRUNCATE",
    "DELETE FROM",
]

DEFAULT_CONFIG_TOML = """\
[general]
default_mode = "pilot"
provider = "anthropic"
model = ""
working_dir = ""

[providers.anthropic]
api_key_env = "ANTHROPIC_API_KEY"
default_model = "claude-sonnet-4-20250514"

[providers.llamacpp]
base_url = "http://localhost:8080"

[agent]
max_iterations = 100
max_fix_attempts = 3
max_step_retries = 3
retry_backoff_seconds = 1.0
max_empty_responses = 3
max_unknown_tools = 3
enable_planning = true
enable_reflection = true
reflection_interval = 10
stuck_detection_threshold = 3
enable_verification = true
continue_check_interval = 20
command_timeout = 300.0
http_request_timeout = 10.0
background_process_timeout = 5.0
file_lock_timeout = 30.0
enable_file_merging = true
temperature = 0.2
max_tokens = 4096

[context]
context_limit_override = 0
max_output_capture = 8000
output_summarization_threshold = 10000
enable_output_summarization = true

[approval]
require_command_approval = false
auto_approve_read_only = true
require_file_edit_approval = false
approval_timeout = 300.0
# blocked_command_patterns defaults to a built-in list of destructive commands

[persistence]
backend = "json"
checkpoint_dir = "~/.local/share/agentruntime/checkpoints"
mongodb_uri = "mongodb://localhost:27017"
mongodb_database = "agentruntime"
"""


@dataclass
class ProviderConfig:
    api_key_env: str = ""
    api_key: str = ""
    default_model: str = ""
    base_url: str = ""


@dataclass
class AgentConfig:
    max_iterations: int = 100  # 0 = unbounded
    max_fix_attempts: int = 3
    max_step_retries: int = 3
    retry_backoff_seconds: float = 1.0
    max_empty_responses: int = 3
    max_unknown_tools: int = 3
    enable_planning: bool = True
    enable_reflection: bool = True
    reflection_interval: int = 10
    stuck_detection_threshold: int = 3
    enable_verification: bool = True
    continue_check_interval: int = 20
    command_timeout: float = 300.0
    http_request_timeout: float = 10.0
    background_process_timeout: float = 5.0
    file_lock_timeout: float = 30.0
    enable_file_merging: bool = True
    temperature: float = 0.2
    max_tokens: int = 4096


@dataclass
class ContextConfig:
    context_limit_override: int = 0
    max_output_capture: int = 8000
    output_summarization_threshold: int = 10000
    enable_output_summarization: bool = True


@dataclass
class ApprovalConfig:
    require_command_approval: bool = False
    auto_approve_read_only: bool = True
    require_file_edit_approval: bool = False
    approval_timeout: float = 300.0
    blocked_command_patterns: list[str] = field(
        default_factory=lambda: list(DEFAULT_BLOCKED_PATTERNS)
    )


@dataclass
class PersistenceConfig:
    backend: str = "json"  # "json" or "mongodb"
    checkpoint_dir: str = "~/.local/share/agentruntime/checkpoints"
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "agentruntime"

    @property
    def resolved_checkpoint_dir(self) -> Path:
        return Path(self.checkpoint_dir).expanduser()


@dataclass
class AppConfig:
    default_mode: str = "pilot"
    provider: str = "anthropic"
    model: str = ""
    working_dir: str = ""
    providers: dict[str, ProviderConfig] = field(default_factory=dict)
    agent: AgentConfig = field(default_factory=AgentConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    approval: ApprovalConfig = field(default_factory=ApprovalConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    config_path: Path = DEFAULT_CONFIG_PATH

    @property
    def resolved_working_dir(self) -> Path:
        if self.working_dir:
            return Path(self.working_dir).expanduser()
        return Path.cwd()

    @property
    def resolved_model(self) -> str:
        if self.model:
            return self.model
        prov = self.providers.get(self.provider)
        return prov.default_model if prov else ""


def _env_overlay(config: AppConfig) -> None:
    """Override config values with environment variables where applicable."""
    if mode := os.environ.get("AGENTRUNTIME_MODE"):
        config.default_mode = mode
    if provider := os.environ.get("AGENTRUNTIME_PROVIDER"):
        config.provider = provider
    if model := os.environ.get("AGENTRUNTIME_MODEL"):
        config.model = model

    for prov in config.providers.values():
        if prov.api_key_env:
            prov.api_key = os.environ.get(prov.api_key_env, "")


def _parse_provider(data: dict) -> ProviderConfig:
    return ProviderConfig(
        api_key_env=data.get("api_key_env", ""),
        default_model=data.get("default_model", ""),
        base_url=data.get("base_url", ""),
    )


def _parse_section(cls, data: dict):
    """Build a flat dataclass section, ignoring unknown keys."""
    known = cls.__dataclass_fields__
    return cls(**{k: v for k, v in data.items() if k in known})


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load configuration from TOML file with env var overlay."""
    path = config_path or DEFAULT_CONFIG_PATH

    if path.exists():
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    else:
        raw = tomllib.loads(DEFAULT_CONFIG_TOML)

    general = raw.get("general", {})
    providers_raw = raw.get("providers", {})

    config = AppConfig(
        default_mode=general.get("default_mode", "pilot"),
        provider=general.get("provider", "anthropic"),
        model=general.get("model", ""),
        working_dir=general.get("working_dir", ""),
        providers={name: _parse_provider(data) for name, data in providers_raw.items()},
        agent=_parse_section(AgentConfig, raw.get("agent", {})),
        context=_parse_section(ContextConfig, raw.get("context", {})),
        approval=_parse_section(ApprovalConfig, raw.get("approval", {})),
        persistence=_parse_section(PersistenceConfig, raw.get("persistence", {})),
        config_path=path,
    )

    _env_overlay(config)
    return config


def init_config(config_path: Path | None = None) -> Path:
    """Create default config file."""
    path = config_path or DEFAULT_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG_TOML)
    return path
