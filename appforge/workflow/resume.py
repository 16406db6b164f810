"""
Resume support for interrupted workflow runs.

A halted run leaves a resumable snapshot behind. The coordinator describes
that snapshot, replays it into a fresh state machine and consumes it once
the replay succeeded, or discards all checkpoints for a fresh start.
A crashed run leaves only per-step checkpoints, which can be replayed the
same way.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Mapping, Optional

from .checkpoints import CheckpointStore
from .errors import ResumeError, WorkflowError
from .models import StepOutput, StepStatus, WorkflowSnapshot
from .state_machine import WorkflowStateMachine
from .steps import STEP_ORDER, TOTAL_STEPS, StepId, step_name

logger = logging.getLogger(__name__)


class ResumeAction(str, Enum):
    RESUME = "resume"
    FRESH = "fresh"


@dataclass
class ResumeInfo:
    """Read-only description of a saved snapshot."""
    can_resume: bool
    total_steps: int = TOTAL_STEPS
    current_step: Optional[StepId] = None
    current_step_name: Optional[str] = None
    step_number: Optional[int] = None
    completed_steps: Optional[int] = None
    saved_at: Optional[datetime] = None
    error_message: Optional[str] = None
    retry_count: Optional[int] = None


@dataclass
class ResumeResult:
    success: bool
    action: ResumeAction
    start_step: StepId
    message: str
    restored_outputs: Dict[StepId, StepOutput] = field(default_factory=dict)


class ResumeCoordinator:
    """Restores workflow progress from the checkpoint store."""

    def __init__(self, store: CheckpointStore):
        self.store = store

    def detect_resumable(self) -> bool:
        return self.store.has_resumable_snapshot()

    def get_resume_info(self) -> ResumeInfo:
        snapshot = self.store.load_latest_snapshot()
        if snapshot is None:
            return ResumeInfo(can_resume=False)

        return ResumeInfo(
            can_resume=snapshot.resumable,
            current_step=snapshot.current_step,
            current_step_name=step_name(snapshot.current_step),
            step_number=snapshot.current_step.number,
            completed_steps=sum(
                1 for entry in snapshot.step_statuses if entry.status == StepStatus.COMPLETED
            ),
            saved_at=snapshot.saved_at,
            error_message=snapshot.error.message if snapshot.error else None,
            retry_count=snapshot.error.retry_count if snapshot.error else None,
        )

    def format_resume_info(self, info: ResumeInfo) -> str:
        if not info.can_resume:
            return "No resumable checkpoint found"

        lines = ["Previous run was interrupted"]
        if info.step_number and info.current_step_name:
            lines.append(f"Step {info.step_number}/{info.total_steps} - {info.current_step_name}")
        if info.error_message:
            lines.append(f"Error: {info.error_message}")
        if info.retry_count:
            lines.append(f"Failed after {info.retry_count} retries")
        return "\n".join(lines)

    def resume_workflow(self, state_machine: WorkflowStateMachine) -> ResumeResult:
        """
        Replay the saved snapshot into ``state_machine``.

        Completed steps are replayed as start + complete and skipped steps as
        skip. Steps that were in progress stay pending so they run again.
        The snapshot is deleted only after the replay succeeded.

        Raises:
            ResumeError: If the snapshot cannot be replayed; the snapshot is kept.
        """
        snapshot = self.store.load_latest_snapshot()
        if snapshot is None or not snapshot.resumable:
            return ResumeResult(
                success=False,
                action=ResumeAction.RESUME,
                start_step=STEP_ORDER[0],
                message="No resumable checkpoint found",
            )

        resume_step = self._resume_step(snapshot)
        try:
            self._replay(state_machine, self.store.restore_step_statuses(snapshot))
            state_machine.go_to_step(resume_step)
        except WorkflowError as e:
            raise ResumeError(f"Failed to restore workflow state: {e}") from e

        restored_outputs = self.store.restore_completed_outputs(snapshot)
        self.store.clear_snapshot()

        logger.info(
            f"Resuming workflow from {resume_step.value}",
            extra={"step_id": resume_step.value, "project_path": str(self.store.project_path)},
        )
        return ResumeResult(
            success=True,
            action=ResumeAction.RESUME,
            start_step=resume_step,
            message=f"Resuming from {step_name(resume_step)}",
            restored_outputs=restored_outputs,
        )

    def recover_from_checkpoints(self, state_machine: WorkflowStateMachine) -> ResumeResult:
        """
        Rebuild progress from per-step checkpoints when no snapshot exists.

        Used after a crash, where the process died before a snapshot could be
        written. Completed and skipped records are replayed; in-progress
        records stay pending so the interrupted step runs again. Nothing is
        deleted.

        Raises:
            ResumeError: If the checkpoints cannot be replayed.
        """
        checkpoints = self.store.load_all_step_checkpoints()
        statuses = {checkpoint.step_id: checkpoint.status for checkpoint in checkpoints}

        try:
            self._replay(state_machine, statuses)
            start_step = next(
                (
                    step_id
                    for step_id, status in state_machine.step_statuses().items()
                    if status == StepStatus.PENDING
                ),
                None,
            )
            if start_step is not None:
                state_machine.go_to_step(start_step)
        except WorkflowError as e:
            raise ResumeError(f"Failed to recover from step checkpoints: {e}") from e

        if start_step is None:
            start_step = state_machine.current_step

        if not checkpoints:
            return ResumeResult(
                success=False,
                action=ResumeAction.RESUME,
                start_step=start_step,
                message="No step checkpoints found",
            )

        restored_outputs = self.store.load_completed_outputs()
        logger.info(
            f"Recovered {len(checkpoints)} step checkpoints, continuing from {start_step.value}",
            extra={"step_id": start_step.value, "project_path": str(self.store.project_path)},
        )
        return ResumeResult(
            success=True,
            action=ResumeAction.RESUME,
            start_step=start_step,
            message=f"Recovered progress, continuing from {step_name(start_step)}",
            restored_outputs=restored_outputs,
        )

    def start_fresh(self) -> ResumeResult:
        """Delete every checkpoint artifact and start at the first step."""
        self.store.clear_all()
        return ResumeResult(
            success=True,
            action=ResumeAction.FRESH,
            start_step=STEP_ORDER[0],
            message="Workflow restarted from the beginning",
        )

    @staticmethod
    def _replay(state_machine: WorkflowStateMachine, statuses: Mapping[StepId, StepStatus]) -> None:
        for step_id in STEP_ORDER:
            status = statuses.get(step_id)
            if state_machine.get_step_state(step_id).status != StepStatus.PENDING:
                continue
            if status == StepStatus.COMPLETED:
                state_machine.start_step(step_id)
                state_machine.complete_step(step_id)
            elif status == StepStatus.SKIPPED:
                state_machine.skip_step(step_id)

    @staticmethod
    def _resume_step(snapshot: WorkflowSnapshot) -> StepId:
        if snapshot.error is not None:
            return snapshot.error.step_id
        return snapshot.current_step
