"""Retry policy with exponential backoff for transient I/O failures."""

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Tuple

from tablepipe.core.errors import TablePipeError
from tablepipe.logging import get_logger

logger = get_logger(__name__)

# Lower-cased message fragments of driver errors worth retrying
TRANSIENT_MARKERS: Tuple[str, ...] = (
    "timeout",
    "timed out",
    "deadlock",
    "connection",
    "network",
    "broken pipe",
    "transport",
    "io error",
    "locked",
    "busy",
    "not open",
    "socket",
    "server closed",
)


def is_transient(exception: BaseException) -> bool:
    """Tell whether a failure looks like a transient I/O problem.

    Configuration, state and localized conversion errors are never transient.
    """
    if isinstance(exception, TablePipeError):
        return False
    if isinstance(exception, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True
    message = str(exception).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


@dataclass
class RetryConfig:
    """Configuration for retry mechanism with exponential backoff."""

    max_retries: int = 3
    initial_delay: float = 1.0  # seconds
    max_delay: float = 60.0  # seconds
    backoff_multiplier: float = 2.0
    jitter: bool = False


class RetryPolicy:
    """Retries an async operation on transient failures."""

    def __init__(self, config: RetryConfig, name: str = "operation"):
        self.config = config
        self.name = name

    def should_retry(self, exception: BaseException, attempt: int) -> bool:
        """Decide whether ``attempt`` (1-based) may be followed by another one."""
        if attempt > self.config.max_retries:
            return False
        return is_transient(exception)

    def calculate_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        delay = min(
            self.config.initial_delay * (self.config.backoff_multiplier ** (attempt - 1)),
            self.config.max_delay,
        )
        if self.config.jitter:
            # 10% jitter
            delay *= 1 + random.uniform(-0.1, 0.1)
        return max(delay, 0.0)

    async def execute(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        """Await ``operation()``, retrying transient failures with backoff."""
        attempt = 0
        while True:
            attempt += 1
            try:
                result = await operation()
            except Exception as e:
                if not self.should_retry(e, attempt):
                    if attempt > 1:
                        logger.error(
                            f"{self.name} failed permanently after {attempt} attempts: {e}"
                        )
                    raise
                delay = self.calculate_delay(attempt)
                logger.warning(
                    f"Retry attempt {attempt}/{self.config.max_retries} for {self.name} "
                    f"after error: {e}. Next retry in {delay:.2f} seconds"
                )
                if delay > 0:
                    await asyncio.sleep(delay)
                continue
            if attempt > 1:
                logger.info(f"{self.name} succeeded after {attempt - 1} retry attempts")
            return result
