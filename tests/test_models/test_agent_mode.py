"""Tests for agent modes."""

from agentruntime.models.agent_mode import FILE_MUTATING_TOOLS, AgentMode


class TestAgentMode:
    def test_scout_is_read_only(self):
        assert not AgentMode.SCOUT.can_run_commands
        assert not AgentMode.SCOUT.can_modify_files
        assert "read_file" in AgentMode.SCOUT.allowed_tools

    def test_navigator_can_plan(self):
        assert "create_plan" in AgentMode.NAVIGATOR.allowed_tools
        assert not AgentMode.NAVIGATOR.can_modify_files

    def test_copilot_edits_without_shell(self):
        assert AgentMode.COPILOT.can_modify_files
        assert not AgentMode.COPILOT.can_run_commands

    def test_pilot_has_everything(self):
        assert AgentMode.PILOT.can_run_commands
        assert FILE_MUTATING_TOOLS <= AgentMode.PILOT.allowed_tools
        assert AgentMode.COPILOT.allowed_tools <= AgentMode.PILOT.allowed_tools

    def test_label(self):
        assert AgentMode.PILOT.label == "Pilot"
