"""
Single-step execution with checkpointing.

The executor resolves a step's prompt, hands it to the external step runner
and records the outcome as a per-step checkpoint. An in-progress checkpoint
is always written before the runner is called, so an interrupted step is
visible on disk.
"""

import logging
from datetime import datetime
from typing import Optional, Protocol

from ..logging import log_step_operation
from .checkpoints import CheckpointStore
from .models import (
    AutomationMode,
    StepCheckpoint,
    StepError,
    StepExecutionContext,
    StepOutput,
    StepStatus,
    utc_now,
)
from .steps import StepId
from .templates import StaticTemplateLoader, TemplateLoader, render_prompt

logger = logging.getLogger(__name__)

STEP_FAILED_CODE = "E010"


class StepRunner(Protocol):
    """External collaborator that produces a step's output from a prompt."""

    async def run(self, step_id: StepId, prompt: str) -> StepOutput:
        ...


def _error_code(error: BaseException) -> str:
    code = getattr(error, "code", None)
    return code if isinstance(code, str) and code else STEP_FAILED_CODE


def _duration_ms(started_at: datetime) -> int:
    return max(int((utc_now() - started_at).total_seconds() * 1000), 0)


class StepExecutor:
    """Executes one step at a time and persists its checkpoints."""

    def __init__(
        self,
        store: CheckpointStore,
        step_runner: StepRunner,
        template_loader: Optional[TemplateLoader] = None,
    ):
        self.store = store
        self.step_runner = step_runner
        self.template_loader = template_loader or StaticTemplateLoader()

    def resolve_prompt(self, step_id: StepId, context: StepExecutionContext) -> str:
        template = self.template_loader.load(step_id)
        return render_prompt(template, context, step_id)

    async def execute_step(
        self,
        step_id: StepId,
        context: StepExecutionContext,
        retry_count: int = 0,
    ) -> StepOutput:
        """
        Execute a step through the step runner.

        Args:
            step_id: Step to execute.
            context: Project idea and earlier outputs for prompt resolution.
            retry_count: Number of earlier failed attempts, recorded on failure.

        Returns:
            The output produced by the runner.

        Raises:
            Exception: Whatever the template loader or runner raised, after
                the failure has been recorded in the step's checkpoint.
        """
        step_id = StepId(step_id)
        started_at = utc_now()
        self.mark_step_started(step_id, context.automation_mode, started_at)

        log_step_operation(
            logger, "Executing step", step_id=step_id,
            project_path=str(context.project_path), attempt=retry_count + 1,
        )

        try:
            prompt = self.resolve_prompt(step_id, context)
            output = await self.step_runner.run(step_id, prompt)
        except Exception as e:
            error = StepError(
                code=_error_code(e),
                message=str(e) or type(e).__name__,
                retry_count=retry_count,
            )
            self.store.write_step_checkpoint(
                StepCheckpoint(
                    step_id=step_id,
                    status=StepStatus.IN_PROGRESS,
                    automation_mode=context.automation_mode,
                    started_at=started_at,
                    duration_ms=_duration_ms(started_at),
                    error=error,
                )
            )
            log_step_operation(
                logger, f"Step failed: {error.message}", step_id=step_id,
                level=logging.ERROR, attempt=retry_count + 1,
            )
            raise

        self.store.write_step_checkpoint(
            StepCheckpoint(
                step_id=step_id,
                status=StepStatus.COMPLETED,
                automation_mode=context.automation_mode,
                started_at=started_at,
                completed_at=utc_now(),
                duration_ms=_duration_ms(started_at),
                output=output,
            )
        )
        log_step_operation(logger, "Step completed", step_id=step_id, status="completed")
        return output

    def mark_step_started(
        self,
        step_id: StepId,
        automation_mode: AutomationMode = AutomationMode.AUTO,
        started_at: Optional[datetime] = None,
    ) -> None:
        self.store.write_step_checkpoint(
            StepCheckpoint(
                step_id=step_id,
                status=StepStatus.IN_PROGRESS,
                automation_mode=automation_mode,
                started_at=started_at or utc_now(),
            )
        )

    def mark_step_skipped(self, step_id: StepId) -> None:
        now = utc_now()
        self.store.write_step_checkpoint(
            StepCheckpoint(
                step_id=step_id,
                status=StepStatus.SKIPPED,
                automation_mode=AutomationMode.SKIP,
                started_at=now,
                completed_at=now,
            )
        )
        log_step_operation(logger, "Step skipped", step_id=step_id, status="skipped")

    def save_step_output(
        self,
        step_id: StepId,
        output: StepOutput,
        automation_mode: AutomationMode = AutomationMode.MANUAL,
        started_at: Optional[datetime] = None,
    ) -> None:
        """Record an output produced outside the runner as a completed step."""
        now = utc_now()
        started_at = started_at or now
        self.store.write_step_checkpoint(
            StepCheckpoint(
                step_id=step_id,
                status=StepStatus.COMPLETED,
                automation_mode=automation_mode,
                started_at=started_at,
                completed_at=now,
                duration_ms=_duration_ms(started_at),
                output=output,
            )
        )
