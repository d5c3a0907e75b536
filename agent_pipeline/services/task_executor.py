"""
Task Executor Base

Common contract of the per-kind executors driven by the TaskRunner.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Optional, TypeVar

from agent_pipeline.exceptions import OperationTimeoutError
from agent_pipeline.logging_config import get_logger
from agent_pipeline.schemas import ExecutionResult, TaskEnvelope, TaskKind
from agent_pipeline.services.retry_policy import RETRY_POLICIES, RetryConfig, is_terminal_attempt

logger = get_logger(__name__)

T = TypeVar("T")


class TaskExecutor(ABC):
    """
    Runs one attempt of one task kind

    Executors never raise for task faults: they persist the failure and
    return a tagged ExecutionResult the runner feeds to the retry policy.
    """

    kind: TaskKind

    def __init__(self, retry_config: Optional[RetryConfig] = None):
        self.retry_config = retry_config or RETRY_POLICIES[self.kind]

    @abstractmethod
    async def run(self, envelope: TaskEnvelope) -> ExecutionResult:
        """Execute the attempt carried by ``envelope``"""

    async def on_exhausted(self, envelope: TaskEnvelope, result: ExecutionResult) -> None:
        """Called once when the last allowed attempt failed"""
        logger.critical(
            "Task permanently failed",
            task_id=str(envelope.task_id),
            attempts=envelope.attempt,
            error=result.error,
            tags=envelope.tags(),
        )

    def is_terminal(self, result: ExecutionResult, attempt: int) -> bool:
        return is_terminal_attempt(result, attempt, self.retry_config)

    async def with_timeout(self, awaitable: Awaitable[T], what: str) -> T:
        """
        Bound ``awaitable`` by the per-attempt timeout

        Raises:
            OperationTimeoutError: The attempt ran past the timeout
        """
        try:
            return await asyncio.wait_for(awaitable, timeout=self.retry_config.timeout)
        except asyncio.TimeoutError as e:
            raise OperationTimeoutError(
                f"{what} timed out after {self.retry_config.timeout}s",
                details={"timeout": self.retry_config.timeout},
            ) from e


class Stopwatch:
    """Wall clock of one attempt in milliseconds"""

    def __init__(self):
        self.started = time.monotonic()

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)
