"""
Tests for the workflow state machine.

This module tests step transitions, cursor movement, automation modes and
event delivery, including isolation of failing listeners.
"""

import itertools

import pytest

from appforge.workflow.errors import InvalidTransitionError, StepStatusMismatchError
from appforge.workflow.models import (
    AutomationMode,
    StepError,
    StepStatus,
    WorkflowEventType,
)
from appforge.workflow.state_machine import WorkflowStateMachine
from appforge.workflow.steps import STEP_ORDER, StepId


class TestWorkflowStateMachine:
    """Test cases for WorkflowStateMachine."""

    @pytest.fixture
    def machine(self):
        return WorkflowStateMachine()

    @pytest.fixture
    def recorded(self, machine):
        events = []
        machine.subscribe_all(events.append)
        return events

    def test_initial_state(self, machine):
        assert machine.current_step == StepId.BRAINSTORMING
        assert machine.current_step_index == 0
        assert not machine.is_started()
        assert not machine.is_complete()
        assert all(status == StepStatus.PENDING for status in machine.step_statuses().values())
        assert list(machine.step_statuses()) == list(STEP_ORDER)

    @pytest.mark.parametrize("step_id", list(StepId))
    def test_start_then_complete_emits_one_event_each(self, machine, step_id):
        """Every step goes pending -> in-progress -> completed with two step events."""
        started = []
        completed = []
        machine.on(WorkflowEventType.STEP_STARTED, started.append)
        machine.on(WorkflowEventType.STEP_COMPLETED, completed.append)

        machine.start_step(step_id)
        assert machine.get_step_state(step_id).status == StepStatus.IN_PROGRESS
        assert machine.current_step == step_id

        machine.complete_step(step_id)
        assert machine.get_step_state(step_id).status == StepStatus.COMPLETED

        assert [event.step_id for event in started] == [step_id]
        assert [event.step_id for event in completed] == [step_id]
        assert started[0].previous_value == "pending"
        assert started[0].new_value == "in-progress"

    def test_first_start_emits_workflow_started_before_step_started(self, machine, recorded):
        machine.start_step(StepId.BRAINSTORMING)
        machine.complete_step(StepId.BRAINSTORMING)
        machine.start_step(StepId.RESEARCH)

        types = [event.type for event in recorded]
        assert types == [
            WorkflowEventType.WORKFLOW_STARTED,
            WorkflowEventType.STEP_STARTED,
            WorkflowEventType.STEP_COMPLETED,
            WorkflowEventType.STEP_STARTED,
        ]
        assert machine.is_started()

    def test_workflow_started_listener_sees_step_in_progress(self, machine):
        seen = []
        machine.on(
            WorkflowEventType.WORKFLOW_STARTED,
            lambda event: seen.append(machine.get_step_state(StepId.BRAINSTORMING).status),
        )

        machine.start_step(StepId.BRAINSTORMING)

        assert seen == [StepStatus.IN_PROGRESS]

    def test_complete_pending_step_raises_and_leaves_state(self, machine, recorded):
        before = machine.snapshot_state()

        with pytest.raises(StepStatusMismatchError):
            machine.complete_step(StepId.RESEARCH)

        assert machine.snapshot_state() == before
        assert recorded == []

    def test_status_mismatch_is_a_transition_error(self, machine):
        with pytest.raises(InvalidTransitionError) as exc_info:
            machine.complete_step(StepId.PRD)
        assert exc_info.value.step_id == StepId.PRD
        assert "step-04-prd" in str(exc_info.value)

    def test_start_twice_raises(self, machine):
        machine.start_step(StepId.BRAINSTORMING)
        with pytest.raises(StepStatusMismatchError):
            machine.start_step(StepId.BRAINSTORMING)

    def test_skip_from_pending_and_in_progress(self, machine):
        machine.skip_step(StepId.BRAINSTORMING)
        machine.start_step(StepId.RESEARCH)
        machine.skip_step(StepId.RESEARCH)

        assert machine.get_step_state(StepId.BRAINSTORMING).status == StepStatus.SKIPPED
        assert machine.get_step_state(StepId.RESEARCH).status == StepStatus.SKIPPED

    def test_skip_clears_recorded_error(self, machine):
        machine.start_step(StepId.RESEARCH)
        machine.record_step_error(StepId.RESEARCH, StepError(code="E010", message="boom"))

        machine.skip_step(StepId.RESEARCH)

        state = machine.get_step_state(StepId.RESEARCH)
        assert state.status == StepStatus.SKIPPED
        assert state.error is None

    def test_skip_completed_step_raises(self, machine):
        machine.start_step(StepId.BRAINSTORMING)
        machine.complete_step(StepId.BRAINSTORMING)
        with pytest.raises(InvalidTransitionError):
            machine.skip_step(StepId.BRAINSTORMING)

    def test_go_to_step_resets_completed_step(self, machine, recorded):
        machine.start_step(StepId.BRAINSTORMING)
        machine.complete_step(StepId.BRAINSTORMING)
        machine.start_step(StepId.RESEARCH)
        machine.complete_step(StepId.RESEARCH)

        machine.go_to_step(StepId.BRAINSTORMING)

        state = machine.get_step_state(StepId.BRAINSTORMING)
        assert state.status == StepStatus.PENDING
        assert state.started_at is None
        assert state.completed_at is None
        assert machine.current_step == StepId.BRAINSTORMING
        assert recorded[-1].type == WorkflowEventType.STEP_RESET

    def test_go_to_step_resets_skipped_step(self, machine):
        machine.skip_step(StepId.BRAINSTORMING)
        machine.go_to_step(StepId.BRAINSTORMING)
        assert machine.get_step_state(StepId.BRAINSTORMING).status == StepStatus.PENDING

    def test_go_to_pending_step_only_moves_cursor(self, machine, recorded):
        machine.go_to_step(StepId.ARCHITECTURE)
        assert machine.current_step == StepId.ARCHITECTURE
        assert machine.current_step_index == 5
        assert recorded == []

    def test_go_to_in_progress_step_raises(self, machine):
        machine.start_step(StepId.BRAINSTORMING)
        with pytest.raises(InvalidTransitionError):
            machine.go_to_step(StepId.BRAINSTORMING)

    def test_go_to_step_clears_workflow_completion(self, machine):
        for step_id in STEP_ORDER:
            machine.skip_step(step_id)
        assert machine.snapshot_state().completed_at is not None

        machine.go_to_step(StepId.QA_TESTING)
        assert not machine.is_complete()
        assert machine.snapshot_state().completed_at is None

    def test_workflow_completed_emitted_once_all_done(self, machine):
        completed = []
        machine.on(WorkflowEventType.WORKFLOW_COMPLETED, completed.append)

        for step_id in STEP_ORDER[:-1]:
            machine.start_step(step_id)
            machine.complete_step(step_id)
        assert completed == []

        machine.skip_step(STEP_ORDER[-1])
        assert len(completed) == 1
        assert machine.is_complete()

    @pytest.mark.parametrize(
        "statuses",
        [
            (StepStatus.COMPLETED,) * 12,
            (StepStatus.SKIPPED,) * 12,
            (StepStatus.COMPLETED, StepStatus.SKIPPED) * 6,
            (StepStatus.COMPLETED,) * 11 + (StepStatus.PENDING,),
            (StepStatus.SKIPPED,) * 5 + (StepStatus.IN_PROGRESS,) + (StepStatus.COMPLETED,) * 6,
        ],
    )
    def test_is_complete_iff_every_step_done(self, machine, statuses):
        for step_id, status in zip(STEP_ORDER, statuses):
            if status == StepStatus.COMPLETED:
                machine.start_step(step_id)
                machine.complete_step(step_id)
            elif status == StepStatus.SKIPPED:
                machine.skip_step(step_id)
            elif status == StepStatus.IN_PROGRESS:
                machine.start_step(step_id)

        expected = all(s in (StepStatus.COMPLETED, StepStatus.SKIPPED) for s in statuses)
        assert machine.is_complete() is expected

    def test_is_complete_for_each_single_unfinished_step(self):
        for unfinished, status in itertools.product(STEP_ORDER, (StepStatus.PENDING, StepStatus.IN_PROGRESS)):
            machine = WorkflowStateMachine()
            for step_id in STEP_ORDER:
                if step_id == unfinished:
                    if status == StepStatus.IN_PROGRESS:
                        machine.start_step(step_id)
                    continue
                machine.skip_step(step_id)
            assert not machine.is_complete()

    def test_record_step_error_keeps_status(self, machine, recorded):
        machine.start_step(StepId.BRAINSTORMING)
        recorded.clear()

        machine.record_step_error(
            StepId.BRAINSTORMING, StepError(code="E010", message="boom", retry_count=2)
        )

        state = machine.get_step_state(StepId.BRAINSTORMING)
        assert state.status == StepStatus.IN_PROGRESS
        assert state.error.code == "E010"
        assert state.error.retry_count == 2
        assert recorded == []

    def test_get_step_state_returns_copy(self, machine):
        state = machine.get_step_state(StepId.BRAINSTORMING)
        state.status = StepStatus.COMPLETED
        assert machine.get_step_state(StepId.BRAINSTORMING).status == StepStatus.PENDING

    def test_set_automation_mode_is_idempotent(self, machine):
        changes = []
        machine.on(WorkflowEventType.MODE_CHANGED, changes.append)

        machine.set_automation_mode(StepId.PRD, AutomationMode.MANUAL)
        machine.set_automation_mode(StepId.PRD, AutomationMode.MANUAL)

        assert machine.get_automation_mode(StepId.PRD) == AutomationMode.MANUAL
        assert len(changes) == 1
        assert changes[0].previous_value == "auto"
        assert changes[0].new_value == "manual"

    def test_global_mode_applies_to_pending_steps_only(self, machine):
        machine.start_step(StepId.BRAINSTORMING)
        machine.complete_step(StepId.BRAINSTORMING)
        changes = []
        machine.on(WorkflowEventType.MODE_CHANGED, changes.append)

        machine.set_global_automation_mode(AutomationMode.SKIP)

        assert machine.global_automation_mode == AutomationMode.SKIP
        assert machine.get_automation_mode(StepId.BRAINSTORMING) == AutomationMode.AUTO
        assert machine.get_automation_mode(StepId.RESEARCH) == AutomationMode.SKIP
        assert len(changes) == 1
        assert changes[0].step_id is None

    def test_failing_listener_does_not_block_others(self, machine):
        received = []

        def broken(event):
            raise RuntimeError("listener failure")

        machine.on(WorkflowEventType.STEP_STARTED, broken)
        machine.on(WorkflowEventType.STEP_STARTED, received.append)

        machine.start_step(StepId.BRAINSTORMING)

        assert len(received) == 1
        assert machine.get_step_state(StepId.BRAINSTORMING).status == StepStatus.IN_PROGRESS

    def test_off_and_unsubscribe(self, machine):
        received = []
        machine.on(WorkflowEventType.STEP_STARTED, received.append)
        machine.off(WorkflowEventType.STEP_STARTED, received.append)
        unsubscribe = machine.subscribe_all(received.append)
        unsubscribe()

        machine.start_step(StepId.BRAINSTORMING)
        assert received == []
