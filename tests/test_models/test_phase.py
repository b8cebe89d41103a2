"""Tests for the execution phase state machine."""

from agentruntime.models.phase import AgentExecutionPhase, PhaseKind


class TestTransitions:
    def test_idle_to_starting(self):
        assert AgentExecutionPhase.idle().can_transition(AgentExecutionPhase.starting())

    def test_idle_cannot_jump_to_executing(self):
        assert not AgentExecutionPhase.idle().can_transition(AgentExecutionPhase.executing(1))

    def test_deciding_paths(self):
        deciding = AgentExecutionPhase.deciding()
        assert deciding.can_transition(AgentExecutionPhase.setting_goal())
        assert deciding.can_transition(AgentExecutionPhase.executing(1, 1))
        assert deciding.can_transition(AgentExecutionPhase.failed("x"))
        assert not deciding.can_transition(AgentExecutionPhase.completed())

    def test_executing_to_waiting_states(self):
        executing = AgentExecutionPhase.executing(2, 5)
        assert executing.can_transition(AgentExecutionPhase.waiting_for_approval("ls"))
        assert executing.can_transition(AgentExecutionPhase.waiting_for_file_lock("/tmp/a"))
        assert executing.can_transition(AgentExecutionPhase.executing(3, 5))

    def test_waiting_for_approval_exits(self):
        waiting = AgentExecutionPhase.waiting_for_approval("rm -rf x")
        assert waiting.can_transition(AgentExecutionPhase.executing(1))
        assert waiting.can_transition(AgentExecutionPhase.cancelled())
        assert not waiting.can_transition(AgentExecutionPhase.completed())

    def test_terminal_phases_return_to_idle(self):
        for phase in (
            AgentExecutionPhase.completed(),
            AgentExecutionPhase.failed("boom"),
            AgentExecutionPhase.cancelled(),
        ):
            assert phase.can_transition(AgentExecutionPhase.idle())
            assert not phase.can_transition(AgentExecutionPhase.executing(1))


class TestActivity:
    def test_active_phases(self):
        assert AgentExecutionPhase.executing(1).is_active
        assert AgentExecutionPhase.waiting_for_approval().is_active
        assert AgentExecutionPhase.planning().is_active

    def test_terminal_phases(self):
        assert AgentExecutionPhase.idle().is_terminal
        assert AgentExecutionPhase.completed().is_terminal
        assert AgentExecutionPhase.failed("x").is_terminal
        assert not AgentExecutionPhase.cancelled().is_active

    def test_requires_user_action(self):
        assert AgentExecutionPhase.waiting_for_approval("ls").requires_user_action
        assert not AgentExecutionPhase.executing(1).requires_user_action


class TestDescription:
    def test_executing_with_total(self):
        assert AgentExecutionPhase.executing(2, 5).description == "Step 2/5"

    def test_executing_without_total(self):
        assert AgentExecutionPhase.executing(4).description == "Step 4"

    def test_failed(self):
        assert AgentExecutionPhase.failed("no key").description == "Failed: no key"

    def test_waiting_for_lock_uses_basename(self):
        phase = AgentExecutionPhase.waiting_for_file_lock("/work/src/app.py")
        assert phase.description == "Waiting for app.py"

    def test_idle_str(self):
        assert str(AgentExecutionPhase.idle()) == "Idle"

    def test_step_accessors_only_for_executing(self):
        assert AgentExecutionPhase.executing(3, 7).current_step == 3
        assert AgentExecutionPhase.executing(3, 7).estimated_steps == 7
        assert AgentExecutionPhase.reflecting(10).current_step == 0

    def test_value_equality(self):
        assert AgentExecutionPhase.executing(1, 2) == AgentExecutionPhase.executing(1, 2)
        assert AgentExecutionPhase.executing(1, 2).kind == PhaseKind.EXECUTING
