"""
Workflow orchestrator.

Wires the workflow components together for one project from
``WorkflowSettings`` and composes the retry engine around step execution.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Union

from .config import WorkflowSettings, get_settings
from .logging import configure_logging
from .workflow.checkpoints import CheckpointStore
from .workflow.controller import WorkflowController
from .workflow.errors import StepExecutionError, WorkflowAlreadyRunningError
from .workflow.manual_detector import ManualStepDetector
from .workflow.models import (
    AutomationMode,
    StepExecutionContext,
    StepOutput,
    WorkflowEventType,
)
from .workflow.resume import ResumeCoordinator
from .workflow.events import EventBus
from .workflow.retry import RetryEngine
from .workflow.runner import RunOptions, WorkflowResult, WorkflowRunner
from .workflow.state_machine import WorkflowStateMachine
from .workflow.step_executor import STEP_FAILED_CODE, StepExecutor, StepRunner
from .workflow.steps import StepId
from .workflow.templates import FileTemplateLoader, StaticTemplateLoader, TemplateLoader

logger = logging.getLogger(__name__)


def setup_logging(settings: Optional[WorkflowSettings] = None, log_file: Optional[Path] = None) -> None:
    """Configure logging from workflow settings."""
    settings = settings or get_settings()
    configure_logging(
        level=getattr(logging, settings.log_level),
        log_file=log_file,
        enable_structured_logging=settings.structured_logging,
    )


class RetryingStepExecutor:
    """
    Step executor that retries transient runner failures.

    Each attempt goes through the wrapped executor, so every attempt writes
    its own in-progress and outcome checkpoints. When attempts are used up,
    or the error is not retryable, a ``StepExecutionError`` carrying the
    retry count is raised.
    """

    def __init__(self, executor: StepExecutor, retry_engine: RetryEngine):
        self.executor = executor
        self.retry_engine = retry_engine

    @property
    def store(self) -> CheckpointStore:
        return self.executor.store

    async def execute_step(
        self,
        step_id: StepId,
        context: StepExecutionContext,
        retry_count: int = 0,
    ) -> StepOutput:
        attempt = 0

        async def operation() -> StepOutput:
            nonlocal attempt
            attempt += 1
            return await self.executor.execute_step(
                step_id, context, retry_count=retry_count + attempt - 1
            )

        result = await self.retry_engine.with_retry(operation)
        if result.success:
            return result.result

        error = result.error
        code = getattr(error, "code", None)
        raise StepExecutionError(
            step_id,
            str(error) or type(error).__name__,
            code=code if isinstance(code, str) and code else STEP_FAILED_CODE,
            retry_count=retry_count + result.attempts - 1,
            retryable=False,
        ) from error

    def mark_step_skipped(self, step_id: StepId) -> None:
        self.executor.mark_step_skipped(step_id)

    def save_step_output(
        self,
        step_id: StepId,
        output: StepOutput,
        automation_mode: AutomationMode = AutomationMode.MANUAL,
    ) -> None:
        self.executor.save_step_output(step_id, output, automation_mode)


class WorkflowOrchestrator:
    """
    Builds and owns every workflow component for one project.

    Components are exposed as attributes so callers can subscribe to state
    machine events, drive the controller or inspect checkpoints. Each
    ``run`` works on a new state machine; event subscriptions and per-step
    automation modes carry over from the previous one.
    """

    def __init__(
        self,
        project_path: Union[str, Path],
        step_runner: StepRunner,
        settings: Optional[WorkflowSettings] = None,
        template_loader: Optional[TemplateLoader] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        configure_logs: bool = False,
        log_file: Optional[Path] = None,
    ):
        self.settings = settings or get_settings()
        self.project_path = Path(project_path)

        if configure_logs:
            setup_logging(self.settings, log_file)

        if template_loader is None:
            if self.settings.templates_dir:
                template_loader = FileTemplateLoader(self.settings.templates_dir)
            else:
                template_loader = StaticTemplateLoader()

        self.events: EventBus[WorkflowEventType] = EventBus()
        self.state_machine = WorkflowStateMachine(
            self.settings.default_automation_mode, events=self.events
        )
        self.store = CheckpointStore(self.project_path, self.settings.checkpoints_dirname)
        self.retry_engine = RetryEngine(self.settings.retry.to_retry_config(), sleep=sleep)
        self.step_executor = StepExecutor(self.store, step_runner, template_loader)
        self.executor = RetryingStepExecutor(self.step_executor, self.retry_engine)
        self.manual_detector = ManualStepDetector(
            self.project_path, self.settings.outputs_path_for(self.project_path)
        )
        self.resume_coordinator = ResumeCoordinator(self.store)
        self.runner = WorkflowRunner(self.state_machine, self.executor, self.manual_detector)
        self.controller = WorkflowController(self.state_machine, self.executor)

    def _reset_state_machine(self) -> WorkflowStateMachine:
        """Swap in a pending-only state machine that keeps the current modes."""
        previous = self.state_machine
        machine = WorkflowStateMachine(previous.global_automation_mode)
        for state in previous.get_all_step_states():
            machine.set_automation_mode(state.step_id, state.automation_mode)
        machine.events = self.events

        self.state_machine = machine
        self.runner.state_machine = machine
        self.controller.state_machine = machine
        return machine

    async def run(
        self,
        project_idea: str,
        resume: bool = True,
        options: Optional[RunOptions] = None,
    ) -> WorkflowResult:
        """
        Run the workflow, picking up earlier progress when possible.

        With ``resume`` set, a saved snapshot is replayed; without one, the
        per-step checkpoints left by a crashed run are replayed instead.

        Args:
            project_idea: Idea passed to every step prompt.
            resume: Continue from saved progress. When False, every
                checkpoint is deleted and the run starts at the first step.
            options: Run callbacks; the pause hook defaults to the controller.

        Raises:
            ResumeError: If saved progress cannot be replayed.
            WorkflowAlreadyRunningError: If a run is already in progress.
        """
        options = options or RunOptions()
        if options.pause_requested is None:
            options.pause_requested = lambda: self.controller.is_paused

        if self.runner.is_running:
            raise WorkflowAlreadyRunningError("Workflow is already running")

        state_machine = self._reset_state_machine()

        if not resume:
            self.resume_coordinator.start_fresh()
            restored_outputs = {}
        elif self.resume_coordinator.detect_resumable():
            info = self.resume_coordinator.get_resume_info()
            logger.info(self.resume_coordinator.format_resume_info(info))
            restored_outputs = self.resume_coordinator.resume_workflow(state_machine).restored_outputs
        else:
            restored_outputs = self.resume_coordinator.recover_from_checkpoints(
                state_machine
            ).restored_outputs

        return await self.runner.run(
            self.project_path, project_idea, options, restored_outputs=restored_outputs
        )
