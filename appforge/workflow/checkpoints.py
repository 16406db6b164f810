"""
Checkpoint persistence for workflow runs.

Two kinds of records live in ``<project>/checkpoints/``:

* ``<step-id>.json`` holds the latest state of one step and is overwritten
  on every write.
* ``workflow-state.json`` is the whole-workflow snapshot written when a run
  halts, used to offer "resume from step N" on the next start.

Writes go through a temporary file and ``os.replace`` so a crash never
leaves a half-written record behind. Per-step records written by older
releases (``executedAt``/``success`` shape) are normalized into
``StepCheckpoint`` at the read boundary.
"""

import json
import logging
import os
import shutil
import tempfile
import traceback
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ValidationError

from .errors import (
    CheckpointReadError,
    CheckpointWriteError,
    InvalidCheckpointFormatError,
)
from .models import (
    DONE_STATUSES,
    CheckpointErrorInfo,
    LegacyStepCheckpoint,
    PartialOutput,
    ProjectInfo,
    StepCheckpoint,
    StepOutput,
    StepOutputEntry,
    StepStatus,
    StepStatusEntry,
    WorkflowSnapshot,
)
from .steps import STEP_ORDER, TOTAL_STEPS, StepId

logger = logging.getLogger(__name__)

DEFAULT_ERROR_CODE = "E999"
REQUIRED_SNAPSHOT_KEYS = ("version", "projectInfo", "currentStep")


def _atomic_write_text(path: Path, content: str) -> None:
    """Write ``content`` to ``path`` via a same-directory temp file and rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def _read_json(path: Path, label: str) -> Optional[Dict[str, Any]]:
    """Read a JSON object; None when the file does not exist."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as e:
        raise CheckpointReadError(f"Failed to read {label} at {path}: {e}") from e

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise CheckpointReadError(f"Corrupt {label} at {path}: {e}") from e

    if not isinstance(data, dict):
        raise InvalidCheckpointFormatError(f"Invalid {label} at {path}: expected a JSON object")
    return data


def _dump(model: BaseModel) -> str:
    return model.model_dump_json(by_alias=True, exclude_none=True, indent=2)


class CheckpointStore:
    """
    Reads and writes per-step checkpoints and the workflow snapshot.

    The store only touches files under its checkpoints directory; it holds
    no in-memory state besides the paths.
    """

    SNAPSHOT_FILE = "workflow-state.json"

    def __init__(self, project_path: Union[str, Path], checkpoints_dirname: str = "checkpoints"):
        self.project_path = Path(project_path)
        self.checkpoints_dir = self.project_path / checkpoints_dirname

    @property
    def snapshot_path(self) -> Path:
        return self.checkpoints_dir / self.SNAPSHOT_FILE

    def step_checkpoint_path(self, step_id: StepId) -> Path:
        return self.checkpoints_dir / f"{StepId(step_id).value}.json"

    # Workflow snapshot

    def capture_snapshot(
        self,
        project_info: ProjectInfo,
        current_step: StepId,
        step_statuses: Mapping[StepId, StepStatus],
        completed_outputs: Mapping[StepId, StepOutput],
        error: Optional[CheckpointErrorInfo] = None,
        partial_output: Optional[PartialOutput] = None,
    ) -> WorkflowSnapshot:
        """Build a resumable snapshot; entries are ordered by pipeline position."""
        return WorkflowSnapshot(
            project_info=project_info,
            current_step=current_step,
            step_statuses=tuple(
                StepStatusEntry(step_id=step_id, status=step_statuses[step_id])
                for step_id in STEP_ORDER
                if step_id in step_statuses
            ),
            completed_outputs=tuple(
                StepOutputEntry(step_id=step_id, output=completed_outputs[step_id])
                for step_id in STEP_ORDER
                if step_id in completed_outputs
            ),
            partial_output=partial_output,
            error=error,
            resumable=True,
        )

    def create_error_info(
        self,
        error: BaseException,
        step_id: StepId,
        retry_count: int = 0,
    ) -> CheckpointErrorInfo:
        code = getattr(error, "code", None)
        return CheckpointErrorInfo(
            code=code if isinstance(code, str) and code else DEFAULT_ERROR_CODE,
            message=str(error) or type(error).__name__,
            technical_details="".join(traceback.format_exception(error)),
            step_id=step_id,
            retry_count=retry_count,
        )

    def create_partial_output(self, step_id: StepId, content: str) -> PartialOutput:
        return PartialOutput(step_id=step_id, content=content)

    def save_snapshot(self, snapshot: WorkflowSnapshot) -> Path:
        """
        Persist the workflow snapshot atomically.

        Raises:
            CheckpointWriteError: If the snapshot cannot be written.
        """
        try:
            _atomic_write_text(self.snapshot_path, _dump(snapshot))
        except OSError as e:
            raise CheckpointWriteError(
                f"Failed to save workflow snapshot to {self.snapshot_path}: {e}"
            ) from e

        logger.info(
            "Workflow snapshot saved at %s",
            snapshot.current_step.value,
            extra={"step_id": snapshot.current_step.value, "project_path": str(self.project_path)},
        )
        return self.snapshot_path

    def load_latest_snapshot(self) -> Optional[WorkflowSnapshot]:
        """
        Load the workflow snapshot.

        Returns:
            The snapshot, or None when no snapshot has been written.

        Raises:
            CheckpointReadError: If the file cannot be read or is not JSON.
            InvalidCheckpointFormatError: If required fields are missing or invalid.
        """
        data = _read_json(self.snapshot_path, "workflow snapshot")
        if data is None:
            return None

        missing = [key for key in REQUIRED_SNAPSHOT_KEYS if key not in data]
        if missing:
            raise InvalidCheckpointFormatError(
                f"Workflow snapshot is missing required fields: {', '.join(missing)}"
            )

        try:
            return WorkflowSnapshot.model_validate(data)
        except ValidationError as e:
            raise InvalidCheckpointFormatError(f"Invalid workflow snapshot: {e}") from e

    def has_resumable_snapshot(self) -> bool:
        try:
            snapshot = self.load_latest_snapshot()
        except CheckpointReadError as e:
            logger.warning(f"Ignoring unreadable workflow snapshot: {e}")
            return False
        return snapshot is not None and snapshot.resumable

    def clear_snapshot(self) -> None:
        self.snapshot_path.unlink(missing_ok=True)

    def save_error_snapshot(
        self,
        project_info: ProjectInfo,
        current_step: StepId,
        step_statuses: Mapping[StepId, StepStatus],
        completed_outputs: Mapping[StepId, StepOutput],
        error: BaseException,
        retry_count: int = 0,
        partial_output: Optional[PartialOutput] = None,
    ) -> WorkflowSnapshot:
        """Capture and save a snapshot describing a failed step."""
        snapshot = self.capture_snapshot(
            project_info,
            current_step,
            step_statuses,
            completed_outputs,
            error=self.create_error_info(error, current_step, retry_count),
            partial_output=partial_output,
        )
        self.save_snapshot(snapshot)
        return snapshot

    def restore_step_statuses(self, snapshot: WorkflowSnapshot) -> Dict[StepId, StepStatus]:
        return {entry.step_id: entry.status for entry in snapshot.step_statuses}

    def restore_completed_outputs(self, snapshot: WorkflowSnapshot) -> Dict[StepId, StepOutput]:
        return {entry.step_id: entry.output for entry in snapshot.completed_outputs}

    # Per-step checkpoints

    def write_step_checkpoint(self, checkpoint: StepCheckpoint) -> Path:
        path = self.step_checkpoint_path(checkpoint.step_id)
        try:
            _atomic_write_text(path, _dump(checkpoint))
        except OSError as e:
            raise CheckpointWriteError(
                f"Failed to write checkpoint for {checkpoint.step_id.value}: {e}"
            ) from e

        logger.debug(
            "Checkpoint written: %s (%s)",
            checkpoint.step_id.value,
            checkpoint.status.value,
        )
        return path

    def load_step_checkpoint(self, step_id: StepId) -> Optional[StepCheckpoint]:
        """
        Load a step's checkpoint, normalizing legacy records.

        A legacy record carries ``success`` instead of ``status``: a
        successful one becomes ``completed`` (completed at its execution
        time), a failed one becomes ``in-progress``.
        """
        step_id = StepId(step_id)
        data = _read_json(self.step_checkpoint_path(step_id), f"checkpoint for {step_id.value}")
        if data is None:
            return None

        try:
            if "status" in data:
                return StepCheckpoint.model_validate(data)
            return self._normalize_legacy(LegacyStepCheckpoint.model_validate(data))
        except ValidationError as e:
            raise InvalidCheckpointFormatError(
                f"Invalid checkpoint for {step_id.value}: {e}"
            ) from e

    def _normalize_legacy(self, legacy: LegacyStepCheckpoint) -> StepCheckpoint:
        if legacy.success:
            return StepCheckpoint(
                step_id=legacy.step_id,
                status=StepStatus.COMPLETED,
                started_at=legacy.executed_at,
                completed_at=legacy.executed_at,
                duration_ms=legacy.duration,
                output=legacy.output,
            )
        return StepCheckpoint(
            step_id=legacy.step_id,
            status=StepStatus.IN_PROGRESS,
            started_at=legacy.executed_at,
            duration_ms=legacy.duration,
            output=legacy.output,
        )

    def load_step_output(self, step_id: StepId) -> Optional[StepOutput]:
        checkpoint = self.load_step_checkpoint(step_id)
        return checkpoint.output if checkpoint else None

    def load_all_step_checkpoints(self) -> List[StepCheckpoint]:
        """Every stored step checkpoint, in pipeline order."""
        checkpoints = []
        for step_id in STEP_ORDER:
            checkpoint = self.load_step_checkpoint(step_id)
            if checkpoint is not None:
                checkpoints.append(checkpoint)
        return checkpoints

    def load_completed_outputs(self) -> Dict[StepId, StepOutput]:
        return {
            checkpoint.step_id: checkpoint.output
            for checkpoint in self.load_all_step_checkpoints()
            if checkpoint.status == StepStatus.COMPLETED and checkpoint.output is not None
        }

    def step_progress(self) -> Dict[str, int]:
        """Counts of steps per status according to stored checkpoints."""
        progress = {
            "total": TOTAL_STEPS,
            "completed": 0,
            "skipped": 0,
            "in_progress": 0,
            "pending": TOTAL_STEPS,
        }
        for checkpoint in self.load_all_step_checkpoints():
            key = {
                StepStatus.COMPLETED: "completed",
                StepStatus.SKIPPED: "skipped",
                StepStatus.IN_PROGRESS: "in_progress",
            }.get(checkpoint.status)
            if key:
                progress[key] += 1
                progress["pending"] -= 1
        return progress

    def get_step_status(self, step_id: StepId) -> StepStatus:
        checkpoint = self.load_step_checkpoint(step_id)
        return checkpoint.status if checkpoint else StepStatus.PENDING

    def is_step_done(self, step_id: StepId) -> bool:
        return self.get_step_status(step_id) in DONE_STATUSES

    def clear_all(self) -> None:
        """Delete every file in the checkpoints directory."""
        if not self.checkpoints_dir.exists():
            return

        for entry in self.checkpoints_dir.iterdir():
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()

        logger.info(f"Cleared checkpoints in {self.checkpoints_dir}")
