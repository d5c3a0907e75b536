"""
Task Service

Enqueue API used by callers outside the pipeline. Agent and workflow
executions get a pending record before their envelope is queued; the
returned id is that record's id.
"""

from typing import Any, Dict, Optional
from uuid import UUID

from agent_pipeline.exceptions import ConfigurationError, ErrorCode
from agent_pipeline.logging_config import get_logger
from agent_pipeline.schemas import TaskEnvelope, TaskKind
from agent_pipeline.services.event_bus import EventBus
from agent_pipeline.services.events import HITLApprovalRequested
from agent_pipeline.services.queue_router import QueueRouter
from agent_pipeline.services.task_store import TaskStore

logger = get_logger(__name__)


def _uuid(value: Any) -> Optional[UUID]:
    if value is None or isinstance(value, UUID):
        return value
    return UUID(str(value))


class TaskService:
    """
    Creates tasks and routes them to their lane

    Usage:
        task_id = await task_service.enqueue_agent_execution(
            tenant_id=tenant_id,
            agent_id=agent_id,
            input_data={"message": "hi"},
        )
    """

    def __init__(self, store: TaskStore, router: QueueRouter, event_bus: Optional[EventBus] = None):
        self.store = store
        self.router = router
        self.event_bus = event_bus

    async def enqueue(self, kind: TaskKind, payload: Dict[str, Any]) -> UUID:
        """
        Generic entry point: ``enqueue(kind, payload) -> task_id``

        Raises:
            ConfigurationError: Unknown task kind or missing payload fields
        """
        try:
            kind = TaskKind(kind)
        except ValueError:
            raise ConfigurationError(
                f"Unknown task kind: {kind}",
                error_code=ErrorCode.CONFIG_UNKNOWN_TASK_KIND,
            )

        try:
            if kind == TaskKind.AGENT_EXECUTION:
                return await self.enqueue_agent_execution(
                    tenant_id=_uuid(payload["tenant_id"]),
                    agent_id=_uuid(payload["agent_id"]),
                    input_data=payload.get("input_data"),
                    triggered_by_user_id=_uuid(payload.get("triggered_by_user_id")),
                    job_flow_id=_uuid(payload.get("job_flow_id")),
                    workflow_execution_id=_uuid(payload.get("workflow_execution_id")),
                )
            if kind == TaskKind.WORKFLOW_EXECUTION:
                return await self.enqueue_workflow_execution(
                    tenant_id=_uuid(payload["tenant_id"]),
                    workflow_id=_uuid(payload["workflow_id"]),
                    input_data=payload.get("input_data"),
                    triggered_by_user_id=_uuid(payload.get("triggered_by_user_id")),
                )
            if kind == TaskKind.NOTIFICATION:
                return await self.enqueue_notification(
                    tenant_id=_uuid(payload.get("tenant_id")),
                    user_id=_uuid(payload["user_id"]),
                    notification_type=payload["type"],
                    data=payload.get("data") or {},
                )
            return await self.enqueue_webhook_delivery(
                tenant_id=_uuid(payload.get("tenant_id")),
                webhook_id=_uuid(payload["webhook_id"]),
                event_name=payload["event"],
                payload=payload.get("data") or {},
            )
        except KeyError as e:
            raise ConfigurationError(
                f"Missing field {e.args[0]!r} for {kind.value} task",
                details={"kind": kind.value, "field": e.args[0]},
            )

    async def enqueue_agent_execution(
        self,
        tenant_id: UUID,
        agent_id: UUID,
        input_data: Optional[Dict[str, Any]] = None,
        triggered_by_user_id: Optional[UUID] = None,
        job_flow_id: Optional[UUID] = None,
        workflow_execution_id: Optional[UUID] = None,
    ) -> UUID:
        agent = await self.store.get_agent(agent_id)
        execution = await self.store.create_agent_execution(
            tenant_id=tenant_id,
            agent_id=agent_id,
            input_data=input_data,
            triggered_by_user_id=triggered_by_user_id,
            job_flow_id=job_flow_id,
            workflow_execution_id=workflow_execution_id,
        )
        lane = self.router.lane_for(TaskKind.AGENT_EXECUTION, agent.is_high_priority())
        await self._push(execution.id, TaskKind.AGENT_EXECUTION, tenant_id, lane, {"agent_id": str(agent_id)})
        return execution.id

    async def enqueue_workflow_execution(
        self,
        tenant_id: UUID,
        workflow_id: UUID,
        input_data: Optional[Dict[str, Any]] = None,
        triggered_by_user_id: Optional[UUID] = None,
    ) -> UUID:
        await self.store.get_workflow(workflow_id)
        execution = await self.store.create_workflow_execution(
            tenant_id=tenant_id,
            workflow_id=workflow_id,
            input_data=input_data,
            triggered_by_user_id=triggered_by_user_id,
        )
        lane = self.router.lane_for(TaskKind.WORKFLOW_EXECUTION)
        await self._push(
            execution.id, TaskKind.WORKFLOW_EXECUTION, tenant_id, lane, {"workflow_id": str(workflow_id)}
        )
        return execution.id

    async def enqueue_notification(
        self,
        tenant_id: Optional[UUID],
        user_id: UUID,
        notification_type: str,
        data: Dict[str, Any],
    ) -> UUID:
        envelope = TaskEnvelope(
            kind=TaskKind.NOTIFICATION,
            tenant_id=tenant_id,
            lane=self.router.lane_for(TaskKind.NOTIFICATION),
            payload={"user_id": str(user_id), "type": notification_type, "data": data},
        )
        await self.router.enqueue(envelope)
        return envelope.task_id

    async def enqueue_webhook_delivery(
        self,
        tenant_id: Optional[UUID],
        webhook_id: UUID,
        event_name: str,
        payload: Dict[str, Any],
    ) -> UUID:
        envelope = TaskEnvelope(
            kind=TaskKind.WEBHOOK_DELIVERY,
            tenant_id=tenant_id,
            lane=self.router.lane_for(TaskKind.WEBHOOK_DELIVERY),
            payload={"webhook_id": str(webhook_id), "event": event_name, "data": payload},
        )
        await self.router.enqueue(envelope)
        return envelope.task_id

    async def request_hitl_approval(self, approval_id: UUID) -> None:
        """Announce a pending HITL approval to its assignee"""
        if self.event_bus is None:
            raise ConfigurationError("TaskService has no event bus")
        approval = await self.store.get_hitl_approval(approval_id)
        await self.event_bus.publish(HITLApprovalRequested(approval))

    async def _push(self, task_id: UUID, kind: TaskKind, tenant_id: UUID, lane, payload: Dict[str, Any]) -> None:
        envelope = TaskEnvelope(task_id=task_id, kind=kind, tenant_id=tenant_id, lane=lane, payload=payload)
        await self.router.enqueue(envelope)
        logger.info("Task enqueued", task_id=str(task_id), kind=kind.value, lane=lane.value)
