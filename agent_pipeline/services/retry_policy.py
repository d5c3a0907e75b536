"""
Retry Policy

Per-kind retry configuration and the pure decision function the task runner
applies after every attempt.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from agent_pipeline.schemas import ExecutionResult, ResultTag, TaskKind


@dataclass(frozen=True)
class RetryConfig:
    """
    Retry configuration for one task kind

    Attributes:
        max_attempts: Total attempts allowed, including the first one
        backoff: Wait in seconds before retry 1, 2, ... (last entry reused)
        timeout: Per-attempt timeout in seconds
    """
    max_attempts: int
    backoff: Tuple[int, ...] = field(default_factory=tuple)
    timeout: float = 30.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if any(delay < 0 for delay in self.backoff):
            raise ValueError("backoff delays must be >= 0")


RETRY_POLICIES: Mapping[TaskKind, RetryConfig] = MappingProxyType({
    TaskKind.AGENT_EXECUTION: RetryConfig(max_attempts=3, backoff=(10, 30, 60), timeout=300),
    TaskKind.WORKFLOW_EXECUTION: RetryConfig(max_attempts=2, backoff=(), timeout=600),
    TaskKind.NOTIFICATION: RetryConfig(max_attempts=3, backoff=(10, 30, 60), timeout=30),
    TaskKind.WEBHOOK_DELIVERY: RetryConfig(max_attempts=3, backoff=(5, 15, 30), timeout=30),
})


def backoff_delay(retry_index: int, config: RetryConfig) -> int:
    """
    Wait before retry number ``retry_index`` (1-based)

    Uses the last backoff entry when the list is shorter, 0 when it is empty.
    """
    if not config.backoff:
        return 0
    index = min(max(retry_index, 1), len(config.backoff)) - 1
    return config.backoff[index]


class RetryAction(str, Enum):
    COMPLETE = "complete"
    RETRY = "retry"
    GIVE_UP = "give_up"


@dataclass(frozen=True)
class RetryDecision:
    action: RetryAction
    delay: Optional[int] = None

    @property
    def should_retry(self) -> bool:
        return self.action == RetryAction.RETRY


def decide(result: ExecutionResult, attempt: int, config: RetryConfig) -> RetryDecision:
    """
    Decide what happens after ``attempt`` finished with ``result``

    Args:
        result: Tagged result of the attempt
        attempt: 1-based number of the attempt that just ran
        config: Retry configuration of the task kind

    Returns:
        COMPLETE for successes and discarded attempts, RETRY with the backoff
        delay while attempts remain, GIVE_UP otherwise
    """
    if result.tag in (ResultTag.SUCCESS, ResultTag.DISCARDED):
        return RetryDecision(RetryAction.COMPLETE)

    if result.tag == ResultTag.FATAL_FAILURE or attempt >= config.max_attempts:
        return RetryDecision(RetryAction.GIVE_UP)

    return RetryDecision(RetryAction.RETRY, delay=backoff_delay(attempt, config))


def is_terminal_attempt(result: ExecutionResult, attempt: int, config: RetryConfig) -> bool:
    """True when a failed attempt will not be retried"""
    return result.is_fatal or attempt >= config.max_attempts
