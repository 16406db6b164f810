"""
Workflow state machine for the fixed step pipeline.

Owns the lifecycle of every step and the position of the current step.
Legal transitions are::

    pending -> in-progress -> completed
    pending | in-progress -> skipped
    completed | skipped -> pending      (explicit rewind via go_to_step)

Every successful transition emits a ``WorkflowEvent`` through the
machine's ``EventBus``.
"""

import logging
from typing import Dict, List, Optional

from .errors import InvalidTransitionError, StepStatusMismatchError
from .events import EventBus, Listener
from .models import (
    DONE_STATUSES,
    AutomationMode,
    StepError,
    StepState,
    StepStatus,
    WorkflowEvent,
    WorkflowEventType,
    WorkflowState,
    utc_now,
)
from .steps import STEP_ORDER, TOTAL_STEPS, StepId, step_at

logger = logging.getLogger(__name__)


class WorkflowStateMachine:
    """
    Tracks step statuses, automation modes and the current step.

    Step state is kept in a list indexed by step ordinal, so every step id
    always has a state.
    """

    def __init__(
        self,
        automation_mode: AutomationMode = AutomationMode.AUTO,
        events: Optional[EventBus[WorkflowEventType]] = None,
    ):
        self.events: EventBus[WorkflowEventType] = events or EventBus()
        self._state = WorkflowState(
            steps=[
                StepState(step_id=step_id, automation_mode=automation_mode)
                for step_id in STEP_ORDER
            ],
            current_step_index=0,
            global_automation_mode=automation_mode,
        )

    # Subscriptions

    def on(self, event_type: WorkflowEventType, listener: Listener):
        return self.events.on(event_type, listener)

    def off(self, event_type: WorkflowEventType, listener: Listener) -> None:
        self.events.off(event_type, listener)

    def subscribe_all(self, listener: Listener):
        return self.events.subscribe_all(listener)

    # Queries

    @property
    def current_step(self) -> StepId:
        return step_at(self._state.current_step_index)

    @property
    def current_step_index(self) -> int:
        return self._state.current_step_index

    @property
    def global_automation_mode(self) -> AutomationMode:
        return self._state.global_automation_mode

    def get_step_state(self, step_id: StepId) -> StepState:
        """Return a copy of a step's state."""
        return self._step(step_id).model_copy(deep=True)

    def get_all_step_states(self) -> List[StepState]:
        return [state.model_copy(deep=True) for state in self._state.steps]

    def step_statuses(self) -> Dict[StepId, StepStatus]:
        """Statuses of every step in pipeline order."""
        return {state.step_id: state.status for state in self._state.steps}

    def get_automation_mode(self, step_id: StepId) -> AutomationMode:
        return self._step(step_id).automation_mode

    def is_complete(self) -> bool:
        return all(state.status in DONE_STATUSES for state in self._state.steps)

    def is_started(self) -> bool:
        return self._state.started_at is not None

    def snapshot_state(self) -> WorkflowState:
        return self._state.model_copy(deep=True)

    # Transitions

    def start_step(self, step_id: StepId) -> None:
        state = self._step(step_id)
        if state.status != StepStatus.PENDING:
            raise StepStatusMismatchError(
                state.step_id,
                StepStatus.PENDING.value,
                state.status.value,
                StepStatus.IN_PROGRESS.value,
            )

        now = utc_now()
        first_step = self._state.started_at is None
        if first_step:
            self._state.started_at = now

        state.status = StepStatus.IN_PROGRESS
        state.started_at = now
        state.completed_at = None
        state.error = None
        self._state.current_step_index = state.step_id.ordinal

        logger.debug("Step started: %s", state.step_id.value)
        if first_step:
            self._emit(WorkflowEventType.WORKFLOW_STARTED)
        self._emit(
            WorkflowEventType.STEP_STARTED,
            state.step_id,
            StepStatus.PENDING.value,
            StepStatus.IN_PROGRESS.value,
        )

    def complete_step(self, step_id: StepId) -> None:
        state = self._step(step_id)
        if state.status != StepStatus.IN_PROGRESS:
            raise StepStatusMismatchError(
                state.step_id,
                StepStatus.IN_PROGRESS.value,
                state.status.value,
                StepStatus.COMPLETED.value,
            )

        state.status = StepStatus.COMPLETED
        state.completed_at = utc_now()
        state.error = None

        logger.debug("Step completed: %s", state.step_id.value)
        self._emit(
            WorkflowEventType.STEP_COMPLETED,
            state.step_id,
            StepStatus.IN_PROGRESS.value,
            StepStatus.COMPLETED.value,
        )
        self._check_workflow_completed()

    def skip_step(self, step_id: StepId) -> None:
        state = self._step(step_id)
        if state.status not in (StepStatus.PENDING, StepStatus.IN_PROGRESS):
            raise InvalidTransitionError(
                state.step_id, state.status.value, StepStatus.SKIPPED.value
            )

        previous = state.status
        state.status = StepStatus.SKIPPED
        state.completed_at = utc_now()
        state.error = None

        logger.debug("Step skipped: %s", state.step_id.value)
        self._emit(
            WorkflowEventType.STEP_SKIPPED,
            state.step_id,
            previous.value,
            StepStatus.SKIPPED.value,
        )
        self._check_workflow_completed()

    def go_to_step(self, step_id: StepId) -> None:
        """
        Move the cursor to a step.

        A completed or skipped step is reset to pending. A pending step is
        only selected. An in-progress step cannot be rewound.
        """
        state = self._step(step_id)

        if state.status == StepStatus.PENDING:
            self._state.current_step_index = state.step_id.ordinal
            return

        if state.status not in DONE_STATUSES:
            raise InvalidTransitionError(
                state.step_id, state.status.value, StepStatus.PENDING.value
            )

        previous = state.status
        state.status = StepStatus.PENDING
        state.started_at = None
        state.completed_at = None
        state.error = None
        self._state.completed_at = None
        self._state.current_step_index = state.step_id.ordinal

        logger.debug("Step reset: %s", state.step_id.value)
        self._emit(
            WorkflowEventType.STEP_RESET,
            state.step_id,
            previous.value,
            StepStatus.PENDING.value,
        )

    def record_step_error(self, step_id: StepId, error: StepError) -> None:
        """Attach an error to an in-progress step without changing its status."""
        state = self._step(step_id)
        if state.status != StepStatus.IN_PROGRESS:
            raise StepStatusMismatchError(
                state.step_id,
                StepStatus.IN_PROGRESS.value,
                state.status.value,
                StepStatus.IN_PROGRESS.value,
            )
        state.error = error.model_copy()

    def set_automation_mode(self, step_id: StepId, mode: AutomationMode) -> None:
        state = self._step(step_id)
        mode = AutomationMode(mode)
        if state.automation_mode == mode:
            return

        previous = state.automation_mode
        state.automation_mode = mode
        self._emit(
            WorkflowEventType.MODE_CHANGED, state.step_id, previous.value, mode.value
        )

    def set_global_automation_mode(self, mode: AutomationMode) -> None:
        """Change the default mode; pending steps adopt it."""
        mode = AutomationMode(mode)
        if self._state.global_automation_mode == mode:
            return

        previous = self._state.global_automation_mode
        self._state.global_automation_mode = mode
        for state in self._state.steps:
            if state.status == StepStatus.PENDING:
                state.automation_mode = mode

        self._emit(WorkflowEventType.MODE_CHANGED, None, previous.value, mode.value)

    # Internals

    def _step(self, step_id: StepId) -> StepState:
        return self._state.steps[StepId(step_id).ordinal]

    def _check_workflow_completed(self) -> None:
        if self.is_complete():
            self._state.completed_at = utc_now()
            logger.info("Workflow completed: %d steps done", TOTAL_STEPS)
            self._emit(WorkflowEventType.WORKFLOW_COMPLETED)

    def _emit(
        self,
        event_type: WorkflowEventType,
        step_id: Optional[StepId] = None,
        previous_value: Optional[str] = None,
        new_value: Optional[str] = None,
    ) -> None:
        self.events.emit(
            event_type,
            WorkflowEvent(
                type=event_type,
                step_id=step_id,
                previous_value=previous_value,
                new_value=new_value,
            ),
        )
