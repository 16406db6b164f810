"""
Pydantic models for workflow execution and recovery.

This module defines the data models shared by the state machine, the
checkpoint store, the retry engine and the runner: step lifecycle state,
persisted checkpoint records, workflow snapshots and retry policy.

On disk every record uses camelCase keys; in memory attributes are snake_case.
"""

from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .steps import StepId

SNAPSHOT_VERSION = "1.0.0"


def utc_now() -> datetime:
    return datetime.now(UTC)


class StepStatus(str, Enum):
    """Lifecycle status of a single step."""
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class AutomationMode(str, Enum):
    """Per-step execution policy."""
    AUTO = "auto"
    MANUAL = "manual"
    SKIP = "skip"


class DelayStrategy(str, Enum):
    """Delay growth between retry attempts."""
    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class WorkflowEventType(str, Enum):
    """Events emitted by the workflow state machine."""
    STEP_STARTED = "step-started"
    STEP_COMPLETED = "step-completed"
    STEP_SKIPPED = "step-skipped"
    STEP_RESET = "step-reset"
    MODE_CHANGED = "mode-changed"
    WORKFLOW_STARTED = "workflow-started"
    WORKFLOW_COMPLETED = "workflow-completed"


DONE_STATUSES = frozenset({StepStatus.COMPLETED, StepStatus.SKIPPED})


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class StepError(CamelModel):
    """Structured error attached to a failed step."""
    code: str
    message: str
    retry_count: int = 0


class StepState(CamelModel):
    """State of a single step inside the state machine."""
    step_id: StepId
    status: StepStatus = StepStatus.PENDING
    automation_mode: AutomationMode = AutomationMode.AUTO
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[StepError] = None


class WorkflowState(CamelModel):
    """Complete workflow state; ``steps`` is indexed by step ordinal."""
    steps: List[StepState]
    current_step_index: int = 0
    global_automation_mode: AutomationMode = AutomationMode.AUTO
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class WorkflowEvent(CamelModel):
    """Event payload delivered to state machine listeners."""
    type: WorkflowEventType
    step_id: Optional[StepId] = None
    previous_value: Optional[str] = None
    new_value: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)


class StepOutput(CamelModel):
    """Output produced by a step runner or adopted from a manual file."""
    content: str
    files: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class StepCheckpoint(CamelModel):
    """Current-schema per-step checkpoint record."""
    step_id: StepId
    status: StepStatus
    automation_mode: AutomationMode = AutomationMode.AUTO
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: int = Field(default=0, alias="duration")
    output: Optional[StepOutput] = None
    error: Optional[StepError] = None


class LegacyStepCheckpoint(CamelModel):
    """Older per-step record shape, only ever read."""
    step_id: StepId
    executed_at: datetime
    duration: int = 0
    success: bool
    output: StepOutput


class ProjectInfo(CamelModel):
    """Project the workflow runs against."""
    project_path: str
    project_idea: str
    llm_provider: Optional[str] = None
    automation_template: Optional[str] = None


class CheckpointErrorInfo(CamelModel):
    """Error details stored in a workflow snapshot."""
    code: str
    message: str
    technical_details: Optional[str] = None
    step_id: StepId
    retry_count: int = 0
    occurred_at: datetime = Field(default_factory=utc_now)


class PartialOutput(CamelModel):
    """Partial content captured from an interrupted step."""
    step_id: StepId
    content: str
    captured_at: datetime = Field(default_factory=utc_now)


class StepStatusEntry(CamelModel):
    model_config = ConfigDict(frozen=True)

    step_id: StepId
    status: StepStatus


class StepOutputEntry(CamelModel):
    model_config = ConfigDict(frozen=True)

    step_id: StepId
    output: StepOutput


class WorkflowSnapshot(CamelModel):
    """Whole-workflow snapshot used for crash recovery."""
    model_config = ConfigDict(frozen=True)

    version: str = SNAPSHOT_VERSION
    saved_at: datetime = Field(default_factory=utc_now)
    project_info: ProjectInfo
    current_step: StepId
    step_statuses: Tuple[StepStatusEntry, ...] = ()
    completed_outputs: Tuple[StepOutputEntry, ...] = ()
    partial_output: Optional[PartialOutput] = None
    error: Optional[CheckpointErrorInfo] = None
    resumable: bool = True


class RetryConfig(BaseModel):
    """Retry policy: bounded attempts and delay growth."""
    max_retries: int = Field(default=3, ge=0)
    base_delay_ms: int = Field(default=10_000, ge=0)
    max_delay_ms: int = Field(default=60_000, ge=0)
    strategy: DelayStrategy = DelayStrategy.EXPONENTIAL
    delay_sequence: Optional[List[int]] = None

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


class StepExecutionContext(BaseModel):
    """Inputs available to a step when its prompt is resolved."""
    project_path: Path
    project_idea: str
    previous_outputs: Dict[StepId, StepOutput] = Field(default_factory=dict)
    automation_mode: AutomationMode = AutomationMode.AUTO
