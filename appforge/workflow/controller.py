"""Interactive controls over a workflow: skip, go back, switch modes, pause."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import InvalidTransitionError
from .models import AutomationMode, StepStatus
from .runner import Executor
from .state_machine import WorkflowStateMachine
from .steps import TOTAL_STEPS, StepId, step_at, step_name

logger = logging.getLogger(__name__)


class WorkflowAction(str, Enum):
    SKIP = "skip"
    BACK = "back"
    MANUAL = "manual"
    AUTO = "auto"
    PAUSE = "pause"
    RESUME = "resume"


@dataclass
class ActionResult:
    success: bool
    message: str
    step_id: Optional[StepId] = None
    new_step_index: Optional[int] = None


class WorkflowController:
    """
    Applies user actions to the state machine.

    Illegal requests are reported as unsuccessful ``ActionResult``s, not raised.
    """

    def __init__(self, state_machine: WorkflowStateMachine, executor: Executor):
        self.state_machine = state_machine
        self.executor = executor
        self._paused = False

    @property
    def is_paused(self) -> bool:
        return self._paused

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def available_actions(self) -> List[WorkflowAction]:
        current = self.state_machine.get_step_state(self.state_machine.current_step)
        actions = []

        if current.status in (StepStatus.PENDING, StepStatus.IN_PROGRESS):
            actions.append(WorkflowAction.SKIP)
        if self.state_machine.current_step_index > 0:
            actions.append(WorkflowAction.BACK)

        if current.automation_mode == AutomationMode.AUTO:
            actions.append(WorkflowAction.MANUAL)
        else:
            actions.append(WorkflowAction.AUTO)

        actions.append(WorkflowAction.RESUME if self._paused else WorkflowAction.PAUSE)
        return actions

    def skip_current_step(self) -> ActionResult:
        step_id = self.state_machine.current_step
        status = self.state_machine.get_step_state(step_id).status

        if status not in (StepStatus.PENDING, StepStatus.IN_PROGRESS):
            return ActionResult(
                success=False,
                step_id=step_id,
                message=f"Cannot skip a {status.value} step",
            )

        self.state_machine.skip_step(step_id)
        self.executor.mark_step_skipped(step_id)
        return ActionResult(
            success=True,
            step_id=step_id,
            message=f"Skipped {step_name(step_id)}",
            new_step_index=self.state_machine.current_step_index,
        )

    def go_to_previous_step(self) -> ActionResult:
        index = self.state_machine.current_step_index
        if index == 0:
            return ActionResult(success=False, message="Already at the first step")
        return self.go_to_step(index - 1)

    def go_to_step(self, index: int) -> ActionResult:
        if index < 0 or index >= TOTAL_STEPS:
            return ActionResult(success=False, message=f"Invalid step index: {index}")

        step_id = step_at(index)
        try:
            self.state_machine.go_to_step(step_id)
        except InvalidTransitionError as e:
            logger.info(f"Rejected go to step: {e}")
            return ActionResult(
                success=False,
                step_id=step_id,
                message=f"Cannot go back to {step_id.value}",
            )

        return ActionResult(
            success=True,
            step_id=step_id,
            message=f"Went back to {step_name(step_id)}",
            new_step_index=index,
        )

    def set_step_automation(self, step_id: StepId, mode: AutomationMode) -> ActionResult:
        self.state_machine.set_automation_mode(step_id, mode)
        return ActionResult(
            success=True,
            step_id=step_id,
            message=f"{step_name(step_id)} switched to {AutomationMode(mode).value} mode",
        )

    def switch_to_manual(self) -> ActionResult:
        return self.set_step_automation(self.state_machine.current_step, AutomationMode.MANUAL)

    def switch_to_auto(self) -> ActionResult:
        return self.set_step_automation(self.state_machine.current_step, AutomationMode.AUTO)

    def current_step_info(self) -> Dict[str, Any]:
        step_id = self.state_machine.current_step
        state = self.state_machine.get_step_state(step_id)
        return {
            "step_id": step_id,
            "step_name": step_name(step_id),
            "step_index": self.state_machine.current_step_index,
            "status": state.status,
            "automation_mode": state.automation_mode,
        }

    def execute_action(self, action: WorkflowAction) -> ActionResult:
        try:
            action = WorkflowAction(action)
        except ValueError:
            return ActionResult(success=False, message=f"Invalid action: {action}")

        if action == WorkflowAction.SKIP:
            return self.skip_current_step()
        if action == WorkflowAction.BACK:
            return self.go_to_previous_step()
        if action == WorkflowAction.MANUAL:
            return self.switch_to_manual()
        if action == WorkflowAction.AUTO:
            return self.switch_to_auto()
        if action == WorkflowAction.PAUSE:
            self.pause()
            return ActionResult(success=True, message="Workflow paused")

        self.resume()
        return ActionResult(success=True, message="Workflow resumed")
