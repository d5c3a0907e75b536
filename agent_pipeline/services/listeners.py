"""
Event Listeners

Reactions to pipeline events: user notifications and webhook fan-out. All
work is handed to the queue as new tasks, so a listener only reads the store
and enqueues.
"""

from typing import Any, Dict, Optional, Protocol
from uuid import UUID

from agent_pipeline.logging_config import get_logger
from agent_pipeline.services.event_bus import ListenerRegistry, freeze_registry
from agent_pipeline.services.events import (
    AgentExecutionCompleted,
    AgentExecutionFailed,
    HITLApprovalRequested,
    WorkflowCompleted,
    WorkflowFailed,
)
from agent_pipeline.services.task_store import TaskStore

logger = get_logger(__name__)

URGENT_PRIORITIES = ("high", "urgent")


class TaskEnqueuer(Protocol):
    """Subset of TaskService the listeners depend on"""

    async def enqueue_notification(
        self, tenant_id: UUID, user_id: UUID, notification_type: str, data: Dict[str, Any]
    ) -> UUID:
        ...

    async def enqueue_webhook_delivery(
        self, tenant_id: UUID, webhook_id: UUID, event_name: str, payload: Dict[str, Any]
    ) -> UUID:
        ...


class _Listener:
    def __init__(self, store: TaskStore, tasks: TaskEnqueuer):
        self.store = store
        self.tasks = tasks

    async def _notify(
        self, tenant_id: UUID, user_id: Optional[UUID], notification_type: str, data: Dict[str, Any]
    ) -> None:
        if user_id is None:
            return
        await self.tasks.enqueue_notification(tenant_id, user_id, notification_type, data)

    async def _fan_out(self, tenant_id: UUID, event_name: str, payload: Dict[str, Any]) -> int:
        """Enqueue one delivery per active webhook subscribed to ``event_name``"""
        webhooks = await self.store.find_subscribed_webhooks(tenant_id, event_name)
        for webhook in webhooks:
            await self.tasks.enqueue_webhook_delivery(tenant_id, webhook.id, event_name, payload)

        if webhooks:
            logger.info("Webhooks triggered", event_name=event_name, count=len(webhooks))
        return len(webhooks)


class NotifyUserOfExecutionCompletion(_Listener):
    """Email the triggering user and trigger ``agent.executed`` webhooks"""

    async def handle(self, event: AgentExecutionCompleted) -> None:
        execution = event.execution
        agent = await self.store.get_agent(execution.agent_id)

        await self._notify(
            execution.tenant_id,
            execution.triggered_by_user_id,
            "email",
            {
                "subject": "Agent Execution Completed",
                "content": f"Your agent '{agent.name}' has completed execution successfully.",
            },
        )

        await self._fan_out(
            execution.tenant_id,
            "agent.executed",
            {
                "execution_id": str(execution.id),
                "agent_id": str(execution.agent_id),
                "status": execution.status.value,
                "execution_time_ms": execution.execution_time_ms,
            },
        )


class NotifyUserOfWorkflowCompletion(_Listener):
    """Email the triggering user and trigger ``workflow.completed`` webhooks"""

    async def handle(self, event: WorkflowCompleted) -> None:
        execution = event.execution
        workflow = await self.store.get_workflow(execution.workflow_id)

        await self._notify(
            execution.tenant_id,
            execution.triggered_by_user_id,
            "email",
            {
                "subject": "Workflow Completed",
                "content": f"Your workflow '{workflow.name}' has completed successfully.",
            },
        )

        await self._fan_out(
            execution.tenant_id,
            "workflow.completed",
            {
                "execution_id": str(execution.id),
                "workflow_id": str(execution.workflow_id),
                "status": execution.status.value,
            },
        )


class AlertOnExecutionFailure(_Listener):
    """
    Alert people about a failed execution

    Acts on terminal failures only, so users are not mailed once per retry.
    The job flow's HITL supervisor is alerted as well when there is one.
    """

    async def handle(self, event) -> None:
        if not event.terminal:
            logger.debug(
                "Ignoring non-terminal failure",
                event_name=event.broadcast_name,
                execution_id=str(event.execution.id),
            )
            return

        execution = event.execution
        logger.error(
            "Execution failed - alerting user",
            event_name=event.broadcast_name,
            execution_id=str(execution.id),
            error=event.error,
        )

        if isinstance(event, AgentExecutionFailed):
            await self._alert_agent_failure(event)
        elif isinstance(event, WorkflowFailed):
            workflow = await self.store.get_workflow(execution.workflow_id)
            await self._notify(
                execution.tenant_id,
                execution.triggered_by_user_id,
                "email",
                {
                    "subject": "Workflow Failed",
                    "content": f"Your workflow '{workflow.name}' failed: {execution.error_message or event.error}",
                },
            )

    async def _alert_agent_failure(self, event: AgentExecutionFailed) -> None:
        execution = event.execution
        if execution.triggered_by_user_id:
            agent = await self.store.get_agent(execution.agent_id)
            await self._notify(
                execution.tenant_id,
                execution.triggered_by_user_id,
                "email",
                {
                    "subject": "Agent Execution Failed",
                    "content": f"Your agent '{agent.name}' execution failed: {execution.error_message or event.error}",
                },
            )

        if execution.job_flow_id:
            job_flow = await self.store.get_job_flow(execution.job_flow_id)
            if job_flow.hitl_supervisor_id:
                await self._notify(
                    execution.tenant_id,
                    job_flow.hitl_supervisor_id,
                    "email",
                    {
                        "subject": "Job Flow Execution Failed",
                        "content": f"Job flow '{job_flow.job_title}' execution failed and requires attention.",
                    },
                )


class SendHITLApprovalNotification(_Listener):
    """Email the assignee; push as well for high and urgent approvals"""

    async def handle(self, event: HITLApprovalRequested) -> None:
        approval = event.approval
        if approval.assigned_to_user_id is None:
            logger.warning("HITL approval has no assignee", approval_id=str(approval.id))
            return

        agent_name = "unknown"
        if approval.agent_id:
            agent_name = (await self.store.get_agent(approval.agent_id)).name

        await self._notify(
            approval.tenant_id,
            approval.assigned_to_user_id,
            "email",
            {
                "subject": "HITL Approval Required",
                "content": (
                    f"An AI decision requires your approval. "
                    f"Priority: {approval.priority}. Agent: {agent_name}"
                ),
            },
        )

        if approval.priority in URGENT_PRIORITIES:
            await self._notify(
                approval.tenant_id,
                approval.assigned_to_user_id,
                "push",
                {
                    "title": "Urgent: Approval Required",
                    "body": "AI decision needs immediate review",
                },
            )


def build_listener_registry(store: TaskStore, tasks: TaskEnqueuer) -> ListenerRegistry:
    """
    Build the read-only event -> listeners table

    Called once at startup; the result is injected into the EventBus.
    """
    on_failure = AlertOnExecutionFailure(store, tasks)
    return freeze_registry({
        AgentExecutionCompleted: (NotifyUserOfExecutionCompletion(store, tasks),),
        AgentExecutionFailed: (on_failure,),
        WorkflowCompleted: (NotifyUserOfWorkflowCompletion(store, tasks),),
        WorkflowFailed: (on_failure,),
        HITLApprovalRequested: (SendHITLApprovalNotification(store, tasks),),
    })
