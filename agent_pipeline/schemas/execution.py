"""Tagged execution results returned by task executors"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from agent_pipeline.exceptions import AppException, ErrorCode


class ResultTag(str, Enum):
    """Outcome of one task attempt"""
    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable_failure"
    FATAL_FAILURE = "fatal_failure"
    DISCARDED = "discarded"  # attempt already claimed by another worker


@dataclass(frozen=True)
class ExecutionResult:
    """
    Result of a single task attempt.

    The retry policy branches on ``tag`` only; ``error`` keeps the message of
    the fault that produced a failure for the exhaustion hook.
    """
    tag: ResultTag
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    skipped: bool = False

    @classmethod
    def success(cls, output: Optional[Dict[str, Any]] = None) -> "ExecutionResult":
        return cls(tag=ResultTag.SUCCESS, output=output)

    @classmethod
    def skip(cls, reason: str) -> "ExecutionResult":
        """Skip conditions are not errors: the attempt succeeds without work"""
        return cls(tag=ResultTag.SUCCESS, output={"skipped": reason}, skipped=True)

    @classmethod
    def discarded(cls, reason: str) -> "ExecutionResult":
        return cls(tag=ResultTag.DISCARDED, error=reason, error_code=ErrorCode.TASK_CLAIM_CONFLICT.value)

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ExecutionResult":
        """
        Classify a fault.

        AppExceptions carry their own ``retryable`` flag. Anything else is an
        uncaught fault and is handed to the retry layer.
        """
        if isinstance(exc, AppException):
            tag = ResultTag.RETRYABLE_FAILURE if exc.retryable else ResultTag.FATAL_FAILURE
            return cls(tag=tag, error=exc.message, error_code=exc.error_code.value)
        message = str(exc) or type(exc).__name__
        return cls(
            tag=ResultTag.RETRYABLE_FAILURE,
            error=message,
            error_code=ErrorCode.TASK_EXECUTION_FAILED.value,
        )

    @property
    def is_success(self) -> bool:
        return self.tag == ResultTag.SUCCESS

    @property
    def is_retryable(self) -> bool:
        return self.tag == ResultTag.RETRYABLE_FAILURE

    @property
    def is_fatal(self) -> bool:
        return self.tag == ResultTag.FATAL_FAILURE
