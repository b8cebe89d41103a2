"""Tests for config loading."""

from pathlib import Path

from agentruntime.config import (
    DEFAULT_BLOCKED_PATTERNS,
    AppConfig,
    ProviderConfig,
    init_config,
    load_config,
)


class TestConfig:
    def test_load_defaults(self, monkeypatch):
        """Loading with no file should return defaults."""
        monkeypatch.delenv("AGENTRUNTIME_MODE", raising=False)
        monkeypatch.delenv("AGENTRUNTIME_PROVIDER", raising=False)
        config = load_config(Path("/nonexistent/config.toml"))
        assert config.default_mode == "pilot"
        assert config.provider == "anthropic"
        assert config.agent.max_iterations == 100
        assert config.agent.reflection_interval == 10
        assert config.context.max_output_capture == 8000
        assert config.approval.blocked_command_patterns == DEFAULT_BLOCKED_PATTERNS
        assert config.persistence.backend == "json"

    def test_init_config(self, tmp_path):
        path = tmp_path / "config.toml"
        result = init_config(path)
        assert result == path
        assert path.exists()
        config = load_config(path)
        assert config.agent.enable_planning is True
        assert config.config_path == path

    def test_sections_from_file(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text(
            "[agent]\nmax_iterations = 0\nunknown_key = 1\n"
            "[approval]\nrequire_command_approval = true\n"
            "blocked_command_patterns = [\"rm\"]\n"
        )
        config = load_config(path)
        assert config.agent.max_iterations == 0
        assert config.agent.max_fix_attempts == 3
        assert config.approval.require_command_approval is True
        assert config.approval.blocked_command_patterns == ["rm"]

    def test_env_overlay(self, tmp_path, monkeypatch):
        path = tmp_path / "config.toml"
        init_config(path)
        monkeypatch.setenv("AGENTRUNTIME_MODE", "scout")
        monkeypatch.setenv("AGENTRUNTIME_MODEL", "claude-test")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        config = load_config(path)
        assert config.default_mode == "scout"
        assert config.resolved_model == "claude-test"
        assert config.providers["anthropic"].api_key == "sk-test"

    def test_resolved_model_falls_back_to_provider_default(self):
        config = AppConfig(providers={"anthropic": ProviderConfig(default_model="m1")})
        assert config.resolved_model == "m1"

    def test_resolved_working_dir(self):
        config = AppConfig(working_dir="~/projects")
        assert "~" not in str(config.resolved_working_dir)
        assert AppConfig().resolved_working_dir == Path.cwd()

    def test_resolved_checkpoint_dir(self):
        config = AppConfig()
        assert "~" not in str(config.persistence.resolved_checkpoint_dir)
