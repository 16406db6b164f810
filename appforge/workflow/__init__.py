"""
Workflow execution and recovery engine.

This package provides the step catalogue, the workflow state machine,
checkpoint persistence, retry handling, step execution, resume support
and the sequential runner and interactive controller built on them.
"""

from .checkpoints import CheckpointStore
from .controller import ActionResult, WorkflowAction, WorkflowController
from .errors import (
    CheckpointError,
    CheckpointReadError,
    CheckpointWriteError,
    InvalidCheckpointFormatError,
    InvalidTransitionError,
    ManualOutputReadError,
    ResumeError,
    StepExecutionError,
    StepStatusMismatchError,
    TemplateError,
    TemplateNotFoundError,
    TemplateReadError,
    WorkflowAlreadyRunningError,
    WorkflowError,
)
from .events import EventBus
from .manual_detector import ManualStepDetector, ManualStepResult
from .models import *
from .resume import ResumeAction, ResumeCoordinator, ResumeInfo, ResumeResult
from .retry import (
    DEFAULT_RETRY_CONFIG,
    RetryEngine,
    RetryEvent,
    RetryEventType,
    RetryResult,
    calculate_delay,
    is_retryable_error,
)
from .runner import RunOptions, WorkflowResult, WorkflowRunner
from .state_machine import WorkflowStateMachine
from .step_executor import StepExecutor, StepRunner
from .steps import STEP_ORDER, STEPS, TOTAL_STEPS, Step, StepCategory, StepId, get_step
from .templates import FileTemplateLoader, StaticTemplateLoader, TemplateLoader, render_prompt

__all__ = [
    'ActionResult',
    'CheckpointError',
    'CheckpointReadError',
    'CheckpointStore',
    'CheckpointWriteError',
    'DEFAULT_RETRY_CONFIG',
    'EventBus',
    'FileTemplateLoader',
    'InvalidCheckpointFormatError',
    'InvalidTransitionError',
    'ManualOutputReadError',
    'ManualStepDetector',
    'ManualStepResult',
    'ResumeAction',
    'ResumeCoordinator',
    'ResumeError',
    'ResumeInfo',
    'ResumeResult',
    'RetryEngine',
    'RetryEvent',
    'RetryEventType',
    'RetryResult',
    'RunOptions',
    'STEPS',
    'STEP_ORDER',
    'StaticTemplateLoader',
    'Step',
    'StepCategory',
    'StepExecutionError',
    'StepExecutor',
    'StepId',
    'StepRunner',
    'StepStatusMismatchError',
    'TOTAL_STEPS',
    'TemplateError',
    'TemplateLoader',
    'TemplateNotFoundError',
    'TemplateReadError',
    'WorkflowAction',
    'WorkflowAlreadyRunningError',
    'WorkflowController',
    'WorkflowError',
    'WorkflowResult',
    'WorkflowRunner',
    'WorkflowStateMachine',
    'calculate_delay',
    'get_step',
    'is_retryable_error',
    'render_prompt',
]
