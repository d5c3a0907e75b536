"""
Services Package

Store, router, event bus, executors and the worker pool.
"""

from .retry_policy import RETRY_POLICIES, RetryAction, RetryConfig, RetryDecision, backoff_delay, decide
from .task_store import TaskStore
from .queue_router import QueueRouter
from .inference_client import InferenceClient, InferenceResponse
from .event_bus import EventBroadcaster, EventBus
from .task_service import TaskService
from .task_runner import TaskRunner
from .worker import WorkerPool

__all__ = [
    "RETRY_POLICIES",
    "RetryAction",
    "RetryConfig",
    "RetryDecision",
    "backoff_delay",
    "decide",
    "TaskStore",
    "QueueRouter",
    "InferenceClient",
    "InferenceResponse",
    "EventBroadcaster",
    "EventBus",
    "TaskService",
    "TaskRunner",
    "WorkerPool",
]
