from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from appforge.workflow.models import AutomationMode, DelayStrategy, RetryConfig


class RetrySettings(BaseSettings):
    """Retry policy applied around step runner calls."""

    max_retries: int = Field(default=3, ge=0, le=20)
    base_delay_ms: int = Field(default=10_000, ge=0)
    max_delay_ms: int = Field(default=60_000, ge=0)
    strategy: DelayStrategy = DelayStrategy.EXPONENTIAL
    delay_sequence: list[int] | None = Field(default_factory=lambda: [10_000, 30_000, 60_000])

    model_config = SettingsConfigDict(env_prefix="APPFORGE_RETRY_", env_file=None)

    def to_retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_retries=self.max_retries,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
            strategy=self.strategy,
            delay_sequence=list(self.delay_sequence) if self.delay_sequence else None,
        )


class WorkflowSettings(BaseSettings):
    """Configuration for workflow execution and checkpoint storage."""

    checkpoints_dirname: str = "checkpoints"
    outputs_dirname: str = "outputs"
    templates_dir: Path | None = None
    default_automation_mode: AutomationMode = AutomationMode.AUTO
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    structured_logging: bool = False
    retry: RetrySettings = Field(default_factory=RetrySettings)

    model_config = SettingsConfigDict(env_prefix="APPFORGE_", env_file=None)

    def outputs_path_for(self, project_path: Path) -> Path:
        return project_path.expanduser().resolve() / self.outputs_dirname


@lru_cache(maxsize=1)
def get_settings() -> WorkflowSettings:
    settings = WorkflowSettings()
    if not settings.checkpoints_dirname.strip():
        raise ValueError("APPFORGE_CHECKPOINTS_DIRNAME must be non-empty")
    if settings.retry.max_delay_ms < settings.retry.base_delay_ms:
        raise ValueError("APPFORGE_RETRY_MAX_DELAY_MS must be >= APPFORGE_RETRY_BASE_DELAY_MS")
    return settings
