"""
Custom Exception Classes

Exceptions raised inside task executors. Every exception carries a
standardized error code and a ``retryable`` flag; executors turn them into
tagged ExecutionResults so the retry policy never has to branch on
exception types.
"""

from typing import Any, Dict, Optional
from enum import Enum


class ErrorCode(str, Enum):
    """
    Standardized error codes.

    Format: CATEGORY_SPECIFIC_ERROR
    """
    # Resource errors
    RESOURCE_NOT_FOUND = "RESOURCE_001"

    # Configuration errors
    CONFIG_INVALID = "CONFIG_001"
    CONFIG_UNKNOWN_NODE_TYPE = "CONFIG_002"
    CONFIG_UNKNOWN_NOTIFICATION_TYPE = "CONFIG_003"
    CONFIG_UNKNOWN_TASK_KIND = "CONFIG_004"

    # Service errors
    SERVICE_UNAVAILABLE = "SERVICE_001"
    SERVICE_EXTERNAL_ERROR = "SERVICE_004"

    # Task execution errors
    TASK_EXECUTION_FAILED = "TASK_001"
    TASK_TIMEOUT = "TASK_003"
    TASK_CLAIM_CONFLICT = "TASK_006"

    # Webhook errors
    WEBHOOK_DELIVERY_FAILED = "WEBHOOK_001"

    # Internal errors
    INTERNAL_ERROR = "INTERNAL_001"


class AppException(Exception):
    """
    Base pipeline exception

    Attributes:
        message: Human-readable error message
        error_code: Standardized error code
        details: Additional error details as a dictionary
        retryable: Whether the failed task attempt may be retried
        retry_after: Suggested retry delay in seconds (if retryable)
    """
    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None,
        retryable: bool = False,
        retry_after: Optional[int] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.retryable = retryable
        self.retry_after = retry_after
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for logs and event payloads"""
        result = {
            "error_code": self.error_code.value,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable
        }
        if self.retry_after:
            result["retry_after"] = self.retry_after
        return result


class NotFoundError(AppException):
    """
    Record not found

    Raised when a task, agent, workflow or webhook referenced by an envelope
    no longer exists. Retrying cannot help.

    Example:
        raise NotFoundError("AgentExecution", "123e4567-e89b-12d3-a456-426614174000")
    """
    def __init__(self, resource: str, identifier: str):
        super().__init__(
            f"{resource} with id {identifier} not found",
            error_code=ErrorCode.RESOURCE_NOT_FOUND,
            details={"resource": resource, "identifier": identifier}
        )


class ConfigurationError(AppException):
    """
    Configuration fault

    Unknown node type, unknown notification type, malformed definition.
    Always fatal: the task is failed without further attempts.
    """
    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: ErrorCode = ErrorCode.CONFIG_INVALID
    ):
        super().__init__(
            message,
            error_code=error_code,
            details=details,
            retryable=False
        )


class TaskExecutionError(AppException):
    """
    Transient execution fault

    Backend error, network error or a failed workflow node. Retryable by
    default.

    Example:
        raise TaskExecutionError(
            "Inference backend returned 502",
            details={"status_code": 502}
        )
    """
    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: ErrorCode = ErrorCode.TASK_EXECUTION_FAILED,
        retryable: bool = True
    ):
        super().__init__(
            message,
            error_code=error_code,
            details=details,
            retryable=retryable
        )


class OperationTimeoutError(AppException):
    """
    Per-attempt timeout exceeded

    Treated exactly like any other transient fault.

    Example:
        raise OperationTimeoutError("Agent execution timed out", details={"timeout": 300})
    """
    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        retry_after: Optional[int] = None
    ):
        super().__init__(
            message,
            error_code=ErrorCode.TASK_TIMEOUT,
            details=details,
            retryable=True,
            retry_after=retry_after
        )


class WebhookDeliveryError(AppException):
    """
    Webhook endpoint answered with a non-2xx status or could not be reached

    Example:
        raise WebhookDeliveryError("Webhook failed with status 500", status_code=500)
    """
    def __init__(self, message: str, status_code: Optional[int] = None):
        details = {}
        if status_code is not None:
            details["status_code"] = status_code
        self.status_code = status_code
        super().__init__(
            message,
            error_code=ErrorCode.WEBHOOK_DELIVERY_FAILED,
            details=details,
            retryable=True
        )

