"""
Sequential workflow runner.

Walks the pipeline once from the first step. Finished steps are counted and
bypassed, skip-mode steps are skipped, manual-mode steps adopt a manual
output when one exists, and everything else is executed by the step
executor. The first failure halts the run and leaves a resumable snapshot.
The runner performs no retries of its own.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional, Protocol, Union

from .checkpoints import CheckpointStore
from .errors import WorkflowAlreadyRunningError
from .manual_detector import ManualStepDetector
from .models import (
    AutomationMode,
    ProjectInfo,
    StepError,
    StepExecutionContext,
    StepOutput,
    StepStatus,
)
from .state_machine import WorkflowStateMachine
from .step_executor import STEP_FAILED_CODE
from .steps import STEP_ORDER, TOTAL_STEPS, StepId

logger = logging.getLogger(__name__)


class Executor(Protocol):
    store: CheckpointStore

    async def execute_step(
        self, step_id: StepId, context: StepExecutionContext, retry_count: int = 0
    ) -> StepOutput:
        ...

    def mark_step_skipped(self, step_id: StepId) -> None:
        ...

    def save_step_output(
        self, step_id: StepId, output: StepOutput, automation_mode: AutomationMode = ...
    ) -> None:
        ...


@dataclass
class RunOptions:
    """Optional callbacks and project metadata for a run."""
    llm_provider: Optional[str] = None
    automation_template: Optional[str] = None
    on_progress: Optional[Callable[[int, int, StepId], None]] = None
    on_step_complete: Optional[Callable[[StepId, StepOutput], None]] = None
    on_step_skip: Optional[Callable[[StepId], None]] = None
    on_manual_step_detected: Optional[Callable[[StepId, StepOutput], None]] = None
    pause_requested: Optional[Callable[[], bool]] = None


@dataclass
class WorkflowResult:
    success: bool
    outputs: Dict[StepId, StepOutput] = field(default_factory=dict)
    completed_count: int = 0
    skipped_count: int = 0
    error: Optional[BaseException] = None
    failed_step: Optional[StepId] = None
    paused: bool = False


class WorkflowRunner:
    """Drives a state machine through every step of the pipeline."""

    def __init__(
        self,
        state_machine: WorkflowStateMachine,
        executor: Executor,
        manual_detector: Optional[ManualStepDetector] = None,
    ):
        self.state_machine = state_machine
        self.executor = executor
        self.manual_detector = manual_detector
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def run(
        self,
        project_path: Union[str, Path],
        project_idea: str,
        options: Optional[RunOptions] = None,
        restored_outputs: Optional[Mapping[StepId, StepOutput]] = None,
    ) -> WorkflowResult:
        """
        Run every unfinished step in pipeline order.

        Args:
            project_path: Project the workflow runs against.
            project_idea: Idea passed to every step prompt.
            options: Callbacks, pause hook and project metadata.
            restored_outputs: Outputs recovered by a resume; when omitted,
                outputs of completed steps are read from their checkpoints.

        Raises:
            WorkflowAlreadyRunningError: If this runner is already running.
            ValueError: If the project path or idea is missing.
        """
        if self._running:
            raise WorkflowAlreadyRunningError("Workflow is already running")
        if not project_path or not str(project_path).strip():
            raise ValueError("Project path is required")
        if not project_idea or not project_idea.strip():
            raise ValueError("Project idea is required")

        options = options or RunOptions()
        project_path = Path(project_path)
        project_info = ProjectInfo(
            project_path=str(project_path),
            project_idea=project_idea,
            llm_provider=options.llm_provider,
            automation_template=options.automation_template,
        )

        self._running = True
        try:
            return await self._run_steps(project_path, project_info, options, restored_outputs)
        finally:
            self._running = False

    async def _run_steps(
        self,
        project_path: Path,
        project_info: ProjectInfo,
        options: RunOptions,
        restored_outputs: Optional[Mapping[StepId, StepOutput]],
    ) -> WorkflowResult:
        result = WorkflowResult(success=False)
        result.outputs.update(self._initial_outputs(restored_outputs))

        for index, step_id in enumerate(STEP_ORDER):
            if options.on_progress:
                options.on_progress(index + 1, TOTAL_STEPS, step_id)

            state = self.state_machine.get_step_state(step_id)
            if state.status == StepStatus.COMPLETED:
                result.completed_count += 1
                continue
            if state.status == StepStatus.SKIPPED:
                result.skipped_count += 1
                continue

            if options.pause_requested and options.pause_requested():
                self._pause(step_id, project_info, result.outputs)
                result.paused = True
                return result

            mode = state.automation_mode

            if mode == AutomationMode.SKIP:
                self.state_machine.skip_step(step_id)
                self.executor.mark_step_skipped(step_id)
                result.skipped_count += 1
                if options.on_step_skip:
                    options.on_step_skip(step_id)
                continue

            if mode == AutomationMode.MANUAL and self._adopt_manual_output(step_id, result, options):
                continue

            context = StepExecutionContext(
                project_path=project_path,
                project_idea=project_info.project_idea,
                previous_outputs=dict(result.outputs),
                automation_mode=mode,
            )

            if state.status == StepStatus.PENDING:
                self.state_machine.start_step(step_id)

            try:
                output = await self.executor.execute_step(step_id, context)
            except Exception as e:
                self._halt(step_id, project_info, result.outputs, e)
                result.error = e
                result.failed_step = step_id
                return result

            self.state_machine.complete_step(step_id)
            result.outputs[step_id] = output
            result.completed_count += 1
            if options.on_step_complete:
                options.on_step_complete(step_id, output)

        result.success = self.state_machine.is_complete()
        return result

    def _initial_outputs(
        self, restored_outputs: Optional[Mapping[StepId, StepOutput]]
    ) -> Dict[StepId, StepOutput]:
        if restored_outputs is not None:
            return dict(restored_outputs)

        statuses = self.state_machine.step_statuses()
        return {
            step_id: output
            for step_id, output in self.executor.store.load_completed_outputs().items()
            if statuses[step_id] == StepStatus.COMPLETED
        }

    def _adopt_manual_output(
        self, step_id: StepId, result: WorkflowResult, options: RunOptions
    ) -> bool:
        if self.manual_detector is None:
            return False

        output = self.manual_detector.load(step_id)
        if output is None:
            logger.info(f"No manual output for {step_id.value}, executing automatically")
            return False

        if self.state_machine.get_step_state(step_id).status == StepStatus.PENDING:
            self.state_machine.start_step(step_id)
        self.executor.save_step_output(step_id, output, AutomationMode.MANUAL)
        self.state_machine.complete_step(step_id)

        result.outputs[step_id] = output
        result.completed_count += 1
        if options.on_manual_step_detected:
            options.on_manual_step_detected(step_id, output)
        if options.on_step_complete:
            options.on_step_complete(step_id, output)
        return True

    def _halt(
        self,
        step_id: StepId,
        project_info: ProjectInfo,
        outputs: Mapping[StepId, StepOutput],
        error: Exception,
    ) -> None:
        code = getattr(error, "code", None)
        retry_count = getattr(error, "retry_count", 0)
        if not isinstance(retry_count, int):
            retry_count = 0

        self.state_machine.record_step_error(
            step_id,
            StepError(
                code=code if isinstance(code, str) and code else STEP_FAILED_CODE,
                message=str(error) or type(error).__name__,
                retry_count=retry_count,
            ),
        )
        self.executor.store.save_error_snapshot(
            project_info,
            step_id,
            self.state_machine.step_statuses(),
            outputs,
            error,
            retry_count=retry_count,
        )
        logger.error(
            f"Workflow halted at {step_id.value}: {error}",
            extra={"step_id": step_id.value, "project_path": project_info.project_path},
        )

    def _pause(
        self,
        step_id: StepId,
        project_info: ProjectInfo,
        outputs: Mapping[StepId, StepOutput],
    ) -> None:
        if self.state_machine.get_step_state(step_id).status == StepStatus.PENDING:
            self.state_machine.go_to_step(step_id)
        store = self.executor.store
        store.save_snapshot(
            store.capture_snapshot(
                project_info, step_id, self.state_machine.step_statuses(), outputs
            )
        )
        logger.info(f"Workflow paused before {step_id.value}")

    def progress(self) -> Dict[str, Union[int, StepId]]:
        statuses = self.state_machine.step_statuses().values()
        completed = sum(1 for status in statuses if status == StepStatus.COMPLETED)
        skipped = sum(1 for status in statuses if status == StepStatus.SKIPPED)
        in_progress = sum(1 for status in statuses if status == StepStatus.IN_PROGRESS)
        return {
            "total": TOTAL_STEPS,
            "completed": completed,
            "skipped": skipped,
            "in_progress": in_progress,
            "pending": TOTAL_STEPS - completed - skipped - in_progress,
            "current": self.state_machine.current_step,
        }
