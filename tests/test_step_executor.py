"""
Tests for single-step execution.

The step runner is an AsyncMock; checkpoints are written to a temporary
project directory.
"""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from appforge.workflow.checkpoints import CheckpointStore
from appforge.workflow.models import (
    AutomationMode,
    StepExecutionContext,
    StepOutput,
    StepStatus,
)
from appforge.workflow.step_executor import StepExecutor
from appforge.workflow.steps import StepId
from appforge.workflow.templates import StaticTemplateLoader


class CodedError(Exception):
    code = "E042"


class TestStepExecutor:
    """Test cases for StepExecutor."""

    @pytest.fixture
    def store(self, tmp_path: Path):
        return CheckpointStore(tmp_path)

    @pytest.fixture
    def runner(self):
        runner = AsyncMock()
        runner.run.return_value = StepOutput(content="generated", files=["brief.md"])
        return runner

    @pytest.fixture
    def executor(self, store, runner):
        loader = StaticTemplateLoader(default="{{stepName}}: {{projectIdea}}\n{{allPreviousOutputs}}")
        return StepExecutor(store, runner, loader)

    @pytest.fixture
    def context(self, tmp_path: Path):
        return StepExecutionContext(
            project_path=tmp_path,
            project_idea="A podcast app",
            previous_outputs={StepId.BRAINSTORMING: StepOutput(content="ideas")},
        )

    @pytest.mark.asyncio
    async def test_success_writes_completed_checkpoint(self, executor, runner, store, context):
        output = await executor.execute_step(StepId.RESEARCH, context)

        assert output.content == "generated"
        runner.run.assert_awaited_once()
        step_id, prompt = runner.run.await_args.args
        assert step_id == StepId.RESEARCH
        assert prompt.startswith("Research: A podcast app")
        assert "## Brainstorming\n\nideas" in prompt

        checkpoint = store.load_step_checkpoint(StepId.RESEARCH)
        assert checkpoint.status == StepStatus.COMPLETED
        assert checkpoint.output == output
        assert checkpoint.started_at is not None
        assert checkpoint.completed_at >= checkpoint.started_at
        assert checkpoint.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_in_progress_checkpoint_written_before_runner(self, executor, runner, store, context):
        seen = {}

        async def run(step_id, prompt):
            seen["checkpoint"] = store.load_step_checkpoint(step_id)
            return StepOutput(content="ok")

        runner.run.side_effect = run

        await executor.execute_step(StepId.PRD, context)

        assert seen["checkpoint"].status == StepStatus.IN_PROGRESS
        assert seen["checkpoint"].started_at is not None

    @pytest.mark.asyncio
    async def test_failure_records_error_and_reraises(self, executor, runner, store, context):
        error = RuntimeError("Model overloaded")
        runner.run.side_effect = error

        with pytest.raises(RuntimeError) as exc_info:
            await executor.execute_step(StepId.PRD, context, retry_count=2)

        assert exc_info.value is error
        checkpoint = store.load_step_checkpoint(StepId.PRD)
        assert checkpoint.status == StepStatus.IN_PROGRESS
        assert checkpoint.error.code == "E010"
        assert checkpoint.error.message == "Model overloaded"
        assert checkpoint.error.retry_count == 2
        assert checkpoint.output is None

    @pytest.mark.asyncio
    async def test_failure_keeps_error_code(self, executor, runner, store, context):
        runner.run.side_effect = CodedError("quota")

        with pytest.raises(CodedError):
            await executor.execute_step(StepId.PRD, context)

        assert store.load_step_checkpoint(StepId.PRD).error.code == "E042"

    def test_mark_step_skipped(self, executor, store):
        executor.mark_step_skipped(StepId.UX_DESIGN)

        checkpoint = store.load_step_checkpoint(StepId.UX_DESIGN)
        assert checkpoint.status == StepStatus.SKIPPED
        assert checkpoint.automation_mode == AutomationMode.SKIP
        assert store.is_step_done(StepId.UX_DESIGN)

    def test_save_step_output(self, executor, store):
        executor.save_step_output(StepId.PRD, StepOutput(content="hand written"))

        checkpoint = store.load_step_checkpoint(StepId.PRD)
        assert checkpoint.status == StepStatus.COMPLETED
        assert checkpoint.automation_mode == AutomationMode.MANUAL
        assert checkpoint.output.content == "hand written"

    def test_resolve_prompt(self, executor, context):
        assert executor.resolve_prompt(StepId.PRD, context).startswith("Requirements: A podcast app")
