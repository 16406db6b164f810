from unittest.mock import MagicMock

import pytest

from appforge.workflow.controller import WorkflowAction, WorkflowController
from appforge.workflow.models import AutomationMode, StepStatus
from appforge.workflow.state_machine import WorkflowStateMachine
from appforge.workflow.steps import StepId


class TestWorkflowController:
    """Test cases for WorkflowController."""

    @pytest.fixture
    def machine(self):
        return WorkflowStateMachine()

    @pytest.fixture
    def executor(self):
        return MagicMock()

    @pytest.fixture
    def controller(self, machine, executor):
        return WorkflowController(machine, executor)

    def complete(self, machine, *step_ids):
        for step_id in step_ids:
            machine.start_step(step_id)
            machine.complete_step(step_id)

    def test_available_actions_at_start(self, controller):
        assert controller.available_actions() == [
            WorkflowAction.SKIP,
            WorkflowAction.MANUAL,
            WorkflowAction.PAUSE,
        ]

    def test_available_actions_later_in_manual_mode(self, controller, machine):
        self.complete(machine, StepId.BRAINSTORMING)
        machine.go_to_step(StepId.RESEARCH)
        machine.set_automation_mode(StepId.RESEARCH, AutomationMode.MANUAL)
        controller.pause()

        assert controller.available_actions() == [
            WorkflowAction.SKIP,
            WorkflowAction.BACK,
            WorkflowAction.AUTO,
            WorkflowAction.RESUME,
        ]

    def test_skip_current_step(self, controller, machine, executor):
        result = controller.skip_current_step()

        assert result.success is True
        assert result.step_id == StepId.BRAINSTORMING
        assert machine.get_step_state(StepId.BRAINSTORMING).status == StepStatus.SKIPPED
        executor.mark_step_skipped.assert_called_once_with(StepId.BRAINSTORMING)

    def test_cannot_skip_completed_step(self, controller, machine, executor):
        self.complete(machine, StepId.BRAINSTORMING)

        result = controller.skip_current_step()

        assert result.success is False
        executor.mark_step_skipped.assert_not_called()

    def test_go_to_previous_step(self, controller, machine):
        self.complete(machine, StepId.BRAINSTORMING, StepId.RESEARCH)

        result = controller.go_to_previous_step()

        assert result.success is True
        assert result.step_id == StepId.BRAINSTORMING
        assert result.new_step_index == 0
        assert machine.get_step_state(StepId.BRAINSTORMING).status == StepStatus.PENDING

    def test_cannot_go_back_from_first_step(self, controller):
        result = controller.go_to_previous_step()
        assert result.success is False

    def test_go_to_in_progress_step_fails(self, controller, machine):
        machine.start_step(StepId.PRD)
        result = controller.go_to_step(3)
        assert result.success is False
        assert result.step_id == StepId.PRD

    @pytest.mark.parametrize("index", [-1, 12])
    def test_go_to_invalid_index(self, controller, index):
        assert controller.go_to_step(index).success is False

    def test_switch_modes(self, controller, machine):
        assert controller.switch_to_manual().success
        assert machine.get_automation_mode(StepId.BRAINSTORMING) == AutomationMode.MANUAL
        assert controller.switch_to_auto().success
        assert machine.get_automation_mode(StepId.BRAINSTORMING) == AutomationMode.AUTO

    def test_set_step_automation(self, controller, machine):
        result = controller.set_step_automation(StepId.QA_TESTING, AutomationMode.SKIP)
        assert result.success
        assert machine.get_automation_mode(StepId.QA_TESTING) == AutomationMode.SKIP

    def test_execute_action_dispatch(self, controller, machine):
        assert controller.execute_action(WorkflowAction.PAUSE).success
        assert controller.is_paused
        assert controller.execute_action("resume").success
        assert not controller.is_paused
        assert controller.execute_action(WorkflowAction.MANUAL).step_id == StepId.BRAINSTORMING
        assert controller.execute_action(WorkflowAction.SKIP).success
        assert controller.execute_action("retry").success is False

    def test_current_step_info(self, controller, machine):
        machine.start_step(StepId.BRAINSTORMING)

        info = controller.current_step_info()

        assert info == {
            "step_id": StepId.BRAINSTORMING,
            "step_name": "Brainstorming",
            "step_index": 0,
            "status": StepStatus.IN_PROGRESS,
            "automation_mode": AutomationMode.AUTO,
        }
