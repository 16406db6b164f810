import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s %(levelname)s [%(name)s] %(funcName)s:%(lineno)d %(message)s'
SIMPLE_FORMAT = '%(asctime)s %(levelname)s %(message)s'

WORKFLOW_LOGGERS = [
    'appforge.workflow.state_machine',
    'appforge.workflow.checkpoints',
    'appforge.workflow.retry',
    'appforge.workflow.step_executor',
    'appforge.workflow.resume',
    'appforge.workflow.runner',
    'appforge.workflow.controller',
    'appforge.orchestrator',
]


def configure_logging(
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
    enable_structured_logging: bool = False,
) -> None:
    """Configure console and optional rotating file logging for workflow runs."""

    env_level = os.getenv('APPFORGE_LOG_LEVEL', '').upper()
    if env_level in ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']:
        level = getattr(logging, env_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    formatter: logging.Formatter
    if enable_structured_logging:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    configure_workflow_loggers(level)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured - Level: {logging.getLevelName(level)}")
    if log_file:
        logger.info(f"Log file: {log_file}")


def configure_workflow_loggers(level: int) -> None:
    """Align the workflow component loggers with the configured level."""
    for logger_name in WORKFLOW_LOGGERS:
        logging.getLogger(logger_name).setLevel(level)

    # Retry and executor chatter is only interesting when debugging a run
    if level == logging.DEBUG:
        logging.getLogger('appforge.workflow.retry').setLevel(logging.DEBUG)
        logging.getLogger('appforge.workflow.step_executor').setLevel(logging.DEBUG)


class StructuredFormatter(logging.Formatter):
    """Structured JSON formatter for machine-readable run logs."""

    EXTRA_FIELDS = ('step_id', 'attempt', 'project_path', 'event', 'status')

    def format(self, record: logging.LogRecord) -> str:
        import json
        from datetime import datetime, timezone

        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        for field_name in self.EXTRA_FIELDS:
            if hasattr(record, field_name):
                value = getattr(record, field_name)
                log_entry[field_name] = str(getattr(value, 'value', value))

        return json.dumps(log_entry, ensure_ascii=False)


def log_step_operation(
    logger: logging.Logger,
    operation: str,
    step_id: Optional[str] = None,
    project_path: Optional[str] = None,
    level: int = logging.INFO,
    **kwargs
) -> None:
    """Log a step operation with structured context."""
    extra = {}
    if step_id:
        extra['step_id'] = getattr(step_id, 'value', step_id)
    if project_path:
        extra['project_path'] = project_path

    extra.update(kwargs)

    logger.log(level, operation, extra=extra)
