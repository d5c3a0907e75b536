"""
Dependency Injection Container

Wires the store, router, event bus, executors, runner and worker pool.
Every component receives its collaborators here; nothing is looked up
from module globals at run time.
"""

from dataclasses import dataclass, field
from typing import Optional

import httpx
import redis.asyncio as redis
import structlog
from sqlalchemy.ext.asyncio import async_sessionmaker

from agent_pipeline.config import Settings
from agent_pipeline.schemas import Lane
from agent_pipeline.services.agent_executor import AgentExecutor
from agent_pipeline.services.event_bus import EventBroadcaster, EventBus
from agent_pipeline.services.inference_client import InferenceClient
from agent_pipeline.services.listeners import build_listener_registry
from agent_pipeline.services.notification_service import (
    EmailChannel,
    LogChannel,
    NotificationExecutor,
    NotificationService,
)
from agent_pipeline.services.queue_router import QueueRouter
from agent_pipeline.services.task_runner import TaskRunner
from agent_pipeline.services.task_service import TaskService
from agent_pipeline.services.task_store import TaskStore
from agent_pipeline.services.webhook_delivery import WebhookDeliveryExecutor
from agent_pipeline.services.worker import WorkerPool
from agent_pipeline.services.workflow_engine import WorkflowExecutor
from agent_pipeline.workflows import NodeContext

logger = structlog.get_logger(__name__)


@dataclass
class AppContainer:
    """
    Application dependency container.

    Usage:
        container = build_container(settings, session_factory, redis_client.client, http_client)
        await container.worker_pool.start()
        ...
        await container.shutdown()
    """

    settings: Settings
    store: TaskStore
    router: QueueRouter
    event_bus: EventBus
    task_service: TaskService
    runner: TaskRunner
    worker_pool: WorkerPool
    http_client: Optional[httpx.AsyncClient] = None

    _shutdown: bool = field(default=False, repr=False)

    async def shutdown(self) -> None:
        """Stop the workers; connections are owned by the caller"""
        if self._shutdown:
            return

        logger.info("Shutting down container services")
        try:
            await self.worker_pool.stop()
        except Exception as e:
            logger.error("Error stopping worker pool", error=str(e))

        self._shutdown = True
        logger.info("Container shutdown complete")

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown


def build_container(
    settings: Settings,
    session_factory: async_sessionmaker,
    redis_client: redis.Redis,
    http_client: Optional[httpx.AsyncClient] = None,
) -> AppContainer:
    """
    Build the object graph

    Args:
        settings: Application settings
        session_factory: Session factory for the task store
        redis_client: Connected Redis client (lanes and broadcasts)
        http_client: Shared HTTP client for outbound calls

    Returns:
        AppContainer
    """
    store = TaskStore(session_factory)
    router = QueueRouter(redis_client)
    task_service = TaskService(store, router)

    registry = build_listener_registry(store, task_service)
    event_bus = EventBus(registry, EventBroadcaster(redis_client))
    task_service.event_bus = event_bus

    inference = InferenceClient(
        base_url=settings.INFERENCE_BASE_URL,
        default_model=settings.INFERENCE_MODEL,
        api_key=settings.INFERENCE_API_KEY,
        cost_per_1k_tokens=settings.INFERENCE_COST_PER_1K_TOKENS,
        http_client=http_client,
    )
    node_context = NodeContext(
        inference=inference,
        store=store,
        http_client=http_client,
        api_call_timeout=settings.API_CALL_TIMEOUT,
    )
    notifications = NotificationService({
        "email": EmailChannel(
            api_url=settings.MAIL_API_URL,
            from_address=settings.MAIL_FROM_ADDRESS,
            http_client=http_client,
        ),
        "push": LogChannel("push"),
        "sms": LogChannel("sms"),
    })

    runner = TaskRunner(
        [
            AgentExecutor(store, inference, event_bus),
            WorkflowExecutor(store, node_context, event_bus),
            NotificationExecutor(store, notifications),
            WebhookDeliveryExecutor(
                store,
                http_client=http_client,
                request_timeout=settings.WEBHOOK_REQUEST_TIMEOUT,
                auto_disable_threshold=settings.WEBHOOK_AUTO_DISABLE_THRESHOLD,
            ),
        ],
        router,
    )
    worker_pool = WorkerPool(
        runner,
        router,
        lanes=[Lane(lane) for lane in settings.WORKER_LANES],
        concurrency=settings.WORKER_CONCURRENCY,
        poll_timeout=settings.QUEUE_POLL_TIMEOUT,
    )

    logger.info("Container built", lanes=settings.WORKER_LANES)
    return AppContainer(
        settings=settings,
        store=store,
        router=router,
        event_bus=event_bus,
        task_service=task_service,
        runner=runner,
        worker_pool=worker_pool,
        http_client=http_client,
    )
