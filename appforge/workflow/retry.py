"""
Retry engine with bounded attempts and configurable delay growth.

``with_retry`` never raises for operation failures: the outcome, including
the last error, is returned in a ``RetryResult``. Only task cancellation
propagates.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from .events import EventBus, Listener
from .models import DelayStrategy, RetryConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRY_CONFIG = RetryConfig(
    max_retries=3,
    base_delay_ms=10_000,
    max_delay_ms=60_000,
    strategy=DelayStrategy.EXPONENTIAL,
    delay_sequence=[10_000, 30_000, 60_000],
)

TRANSIENT_ERROR_PATTERNS = (
    "timeout",
    "timed out",
    "rate limit",
    "429",
    "network",
    "connection reset",
    "connection refused",
    "econnreset",
    "econnrefused",
    "enotfound",
    "name resolution",
    "dns",
    "fetch failed",
)


class RetryEventType(str, Enum):
    ATTEMPT = "attempt"
    RETRY = "retry"
    SUCCESS = "success"
    FAILURE = "failure"
    EXHAUSTED = "exhausted"


@dataclass
class RetryEvent:
    type: RetryEventType
    attempt: int
    max_attempts: int
    delay_ms: Optional[int] = None
    error: Optional[BaseException] = None


@dataclass
class RetryResult(Generic[T]):
    """Outcome of a retried operation."""
    success: bool
    attempts: int
    total_time_ms: int
    result: Optional[T] = None
    error: Optional[BaseException] = None


def calculate_delay(attempt: int, config: RetryConfig) -> int:
    """
    Delay in milliseconds after failed attempt ``attempt`` (1-based).

    An explicit ``delay_sequence`` long enough to cover the attempt wins;
    otherwise the delay grows from ``base_delay_ms`` according to the
    strategy and is capped at ``max_delay_ms``.
    """
    if config.delay_sequence and len(config.delay_sequence) >= attempt:
        return config.delay_sequence[attempt - 1]

    if config.strategy == DelayStrategy.FIXED:
        delay = config.base_delay_ms
    elif config.strategy == DelayStrategy.LINEAR:
        delay = config.base_delay_ms * attempt
    else:
        delay = config.base_delay_ms * 2 ** (attempt - 1)

    return min(delay, config.max_delay_ms)


def is_retryable_error(error: BaseException) -> bool:
    """
    Decide whether an error is worth retrying.

    An explicit boolean ``retryable`` attribute always wins. Otherwise only
    transient failures qualify: built-in timeout and connection errors, or
    messages matching a known transient signature.
    """
    retryable = getattr(error, "retryable", None)
    if isinstance(retryable, bool):
        return retryable

    if isinstance(error, (TimeoutError, ConnectionError)):
        return True

    message = str(error).lower()
    return any(pattern in message for pattern in TRANSIENT_ERROR_PATTERNS)


class RetryEngine:
    """Runs async operations with retries according to a ``RetryConfig``."""

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        classifier: Callable[[BaseException], bool] = is_retryable_error,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        events: Optional[EventBus[RetryEventType]] = None,
    ):
        self._config = (config or DEFAULT_RETRY_CONFIG).model_copy(deep=True)
        self._classifier = classifier
        self._sleep = sleep
        self.events: EventBus[RetryEventType] = events or EventBus()

    @property
    def config(self) -> RetryConfig:
        return self._config.model_copy(deep=True)

    def update_config(self, **changes) -> None:
        self._config = self._config.model_copy(update=changes)

    def on(self, event_type: RetryEventType, listener: Listener):
        return self.events.on(event_type, listener)

    def subscribe_all(self, listener: Listener):
        return self.events.subscribe_all(listener)

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        **overrides,
    ) -> RetryResult[T]:
        """
        Run ``operation`` until it succeeds or attempts are used up.

        Args:
            operation: Zero-argument coroutine function to call per attempt.
            **overrides: ``RetryConfig`` fields applied to this call only.

        Returns:
            RetryResult with the operation's result or its last error.
        """
        config = self._config.model_copy(update=overrides) if overrides else self._config
        max_attempts = config.max_retries + 1
        started = time.monotonic()
        last_error: Optional[BaseException] = None

        for attempt in range(1, max_attempts + 1):
            self._emit(RetryEvent(RetryEventType.ATTEMPT, attempt, max_attempts))

            try:
                result = await operation()
            except Exception as e:
                last_error = e
            else:
                self._emit(RetryEvent(RetryEventType.SUCCESS, attempt, max_attempts))
                return RetryResult(
                    success=True,
                    attempts=attempt,
                    total_time_ms=self._elapsed_ms(started),
                    result=result,
                )

            is_last_attempt = attempt == max_attempts
            if is_last_attempt or not self._classifier(last_error):
                event_type = RetryEventType.EXHAUSTED if is_last_attempt else RetryEventType.FAILURE
                logger.warning(
                    f"Operation failed after {attempt} attempt(s): {last_error}",
                    extra={"attempt": attempt, "event": event_type.value},
                )
                self._emit(RetryEvent(event_type, attempt, max_attempts, error=last_error))
                return RetryResult(
                    success=False,
                    attempts=attempt,
                    total_time_ms=self._elapsed_ms(started),
                    error=last_error,
                )

            delay_ms = calculate_delay(attempt, config)
            logger.info(
                self.format_retry_message(attempt + 1, max_attempts, delay_ms),
                extra={"attempt": attempt, "event": RetryEventType.RETRY.value},
            )
            self._emit(
                RetryEvent(RetryEventType.RETRY, attempt, max_attempts, delay_ms, last_error)
            )
            await self._sleep(delay_ms / 1000)

        return RetryResult(
            success=False,
            attempts=max_attempts,
            total_time_ms=self._elapsed_ms(started),
            error=last_error,
        )

    async def with_retry_no_delay(
        self,
        operation: Callable[[], Awaitable[T]],
        **overrides,
    ) -> RetryResult[T]:
        """Retry without waiting between attempts."""
        max_retries = overrides.get("max_retries", self._config.max_retries)
        overrides["delay_sequence"] = [0] * max(max_retries, 1)
        return await self.with_retry(operation, **overrides)

    def format_retry_message(
        self,
        attempt: int,
        max_attempts: int,
        delay_ms: Optional[int] = None,
    ) -> str:
        parts = ["Retrying", f"attempt {attempt}/{max_attempts}"]
        if delay_ms is not None:
            parts.append(f"waiting {round(delay_ms / 1000)} seconds")
        return " - ".join(parts)

    def _emit(self, event: RetryEvent) -> None:
        self.events.emit(event.type, event)

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)
