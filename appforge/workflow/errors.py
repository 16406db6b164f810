"""
Exception taxonomy for workflow execution and recovery.

Transition errors are contract violations raised synchronously and never
retried. Checkpoint errors always chain the underlying cause. Execution
errors carry the structured ``code``/``message``/``retry_count`` triple that
ends up in checkpoints.
"""

from typing import Optional

from .steps import StepId


class WorkflowError(Exception):
    """Base class for all workflow engine errors."""


class InvalidTransitionError(WorkflowError):
    """A state machine call is illegal for the step's current status."""

    def __init__(
        self,
        step_id: StepId,
        from_status: str,
        to_status: str,
        message: Optional[str] = None,
    ):
        self.step_id = step_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            message or f"Invalid transition for {step_id.value}: {from_status} -> {to_status}"
        )


class StepStatusMismatchError(InvalidTransitionError):
    """A step is not in the status the operation requires."""

    def __init__(self, step_id: StepId, expected: str, actual: str, to_status: str):
        self.expected = expected
        self.actual = actual
        super().__init__(
            step_id,
            actual,
            to_status,
            f"Step {step_id.value} must be {expected} to become {to_status}, "
            f"current status: {actual}",
        )


class CheckpointError(WorkflowError):
    """Base class for checkpoint persistence failures."""


class CheckpointWriteError(CheckpointError):
    """A checkpoint could not be written."""


class CheckpointReadError(CheckpointError):
    """A checkpoint exists but could not be read or parsed."""


class InvalidCheckpointFormatError(CheckpointReadError):
    """A checkpoint parsed but lacks required fields."""


class StepExecutionError(WorkflowError):
    """A step runner failed; carries the error recorded in the checkpoint."""

    def __init__(
        self,
        step_id: StepId,
        message: str,
        code: str = "E010",
        retry_count: int = 0,
        retryable: Optional[bool] = None,
    ):
        super().__init__(message)
        self.step_id = step_id
        self.code = code
        self.message = message
        self.retry_count = retry_count
        if retryable is not None:
            self.retryable = retryable


class TemplateError(WorkflowError):
    """Base class for prompt template failures."""


class TemplateNotFoundError(TemplateError):
    """No template exists for a step."""


class TemplateReadError(TemplateError):
    """A template exists but could not be read."""


class ManualOutputReadError(WorkflowError):
    """A manual output file exists but could not be read."""


class ResumeError(WorkflowError):
    """Replaying a snapshot into a state machine failed."""


class WorkflowAlreadyRunningError(WorkflowError):
    """A run was requested while another run is in progress."""
