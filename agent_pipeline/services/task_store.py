"""
Task Store

Persistence layer for task records and the records executors consult.

Every call opens its own session, commits explicitly and returns a frozen
snapshot. No ORM instance ever leaves this module, so the order in which
state changes become visible is the order of the store calls.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Type
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from agent_pipeline.exceptions import NotFoundError
from agent_pipeline.logging_config import get_logger
from agent_pipeline.models import (
    ActivityLog,
    Agent,
    AgentExecution,
    HITLApproval,
    JobFlow,
    TaskRecord,
    TaskStatus,
    User,
    Webhook,
    Workflow,
    WorkflowExecution,
)
from agent_pipeline.schemas import (
    AgentExecutionSnapshot,
    AgentSnapshot,
    HITLApprovalSnapshot,
    JobFlowSnapshot,
    StepRecord,
    TaskKind,
    TaskSnapshot,
    UserSnapshot,
    WebhookSnapshot,
    WorkflowExecutionSnapshot,
    WorkflowSnapshot,
)

logger = get_logger(__name__)

EXHAUSTED_PREFIX = "Maximum retry attempts exceeded"

_TASK_MODELS: Dict[TaskKind, Type[TaskRecord]] = {
    TaskKind.AGENT_EXECUTION: AgentExecution,
    TaskKind.WORKFLOW_EXECUTION: WorkflowExecution,
}

_TASK_SNAPSHOTS: Dict[TaskKind, Type[TaskSnapshot]] = {
    TaskKind.AGENT_EXECUTION: AgentExecutionSnapshot,
    TaskKind.WORKFLOW_EXECUTION: WorkflowExecutionSnapshot,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _dump_log(execution_log: List[StepRecord]) -> List[Dict[str, Any]]:
    return [entry.model_dump(mode="json", exclude_none=True) for entry in execution_log]


class TaskStore:
    """
    SQLAlchemy-backed task record store

    Args:
        session_factory: async_sessionmaker bound to the pipeline database
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    # ==================== Reads ====================

    async def _get(self, model, snapshot_cls, record_id: UUID, resource: str):
        async with self.session_factory() as session:
            record = await session.get(model, record_id)
            if record is None:
                raise NotFoundError(resource, str(record_id))
            return snapshot_cls.model_validate(record)

    async def get_agent(self, agent_id: UUID) -> AgentSnapshot:
        return await self._get(Agent, AgentSnapshot, agent_id, "Agent")

    async def get_workflow(self, workflow_id: UUID) -> WorkflowSnapshot:
        return await self._get(Workflow, WorkflowSnapshot, workflow_id, "Workflow")

    async def get_user(self, user_id: UUID) -> UserSnapshot:
        return await self._get(User, UserSnapshot, user_id, "User")

    async def get_job_flow(self, job_flow_id: UUID) -> JobFlowSnapshot:
        return await self._get(JobFlow, JobFlowSnapshot, job_flow_id, "JobFlow")

    async def get_hitl_approval(self, approval_id: UUID) -> HITLApprovalSnapshot:
        return await self._get(HITLApproval, HITLApprovalSnapshot, approval_id, "HITLApproval")

    async def get_webhook(self, webhook_id: UUID) -> WebhookSnapshot:
        return await self._get(Webhook, WebhookSnapshot, webhook_id, "Webhook")

    async def get_agent_execution(self, execution_id: UUID) -> AgentExecutionSnapshot:
        return await self._get(AgentExecution, AgentExecutionSnapshot, execution_id, "AgentExecution")

    async def get_workflow_execution(self, execution_id: UUID) -> WorkflowExecutionSnapshot:
        return await self._get(
            WorkflowExecution, WorkflowExecutionSnapshot, execution_id, "WorkflowExecution"
        )

    # ==================== Task creation ====================

    async def create_agent_execution(
        self,
        tenant_id: UUID,
        agent_id: UUID,
        input_data: Optional[Dict[str, Any]] = None,
        triggered_by_user_id: Optional[UUID] = None,
        job_flow_id: Optional[UUID] = None,
        workflow_execution_id: Optional[UUID] = None,
        execution_id: Optional[UUID] = None,
    ) -> AgentExecutionSnapshot:
        """Persist a pending agent execution"""
        async with self.session_factory() as session:
            execution = AgentExecution(
                tenant_id=tenant_id,
                agent_id=agent_id,
                input_data=input_data or {},
                triggered_by_user_id=triggered_by_user_id,
                job_flow_id=job_flow_id,
                workflow_execution_id=workflow_execution_id,
                status=TaskStatus.PENDING.value,
                attempt_count=0,
            )
            if execution_id is not None:
                execution.id = execution_id
            session.add(execution)
            await session.commit()
            await session.refresh(execution)
            return AgentExecutionSnapshot.model_validate(execution)

    async def create_workflow_execution(
        self,
        tenant_id: UUID,
        workflow_id: UUID,
        input_data: Optional[Dict[str, Any]] = None,
        triggered_by_user_id: Optional[UUID] = None,
        execution_id: Optional[UUID] = None,
    ) -> WorkflowExecutionSnapshot:
        """Persist a pending workflow execution"""
        async with self.session_factory() as session:
            execution = WorkflowExecution(
                tenant_id=tenant_id,
                workflow_id=workflow_id,
                input_data=input_data or {},
                triggered_by_user_id=triggered_by_user_id,
                status=TaskStatus.PENDING.value,
                attempt_count=0,
                current_step=0,
                execution_log=[],
            )
            if execution_id is not None:
                execution.id = execution_id
            session.add(execution)
            await session.commit()
            await session.refresh(execution)
            return WorkflowExecutionSnapshot.model_validate(execution)

    # ==================== Claim & lifecycle ====================

    @staticmethod
    def _model_for(kind: TaskKind) -> Type[TaskRecord]:
        try:
            return _TASK_MODELS[kind]
        except KeyError:
            raise ValueError(f"{kind.value} tasks have no persisted record")

    async def claim(self, kind: TaskKind, task_id: UUID, attempt: int) -> Optional[TaskSnapshot]:
        """
        Atomically move a task into ``running`` for ``attempt``

        Attempt n may claim any unfinished record whose ``attempt_count`` is
        below n. A retry therefore also picks up a record its predecessor left
        pending or running because the store failed mid-attempt. The
        conditional UPDATE matches at most one row and raises
        ``attempt_count`` to n, so of two concurrent claims exactly one wins
        and a stale envelope never reclaims.

        Args:
            kind: Task kind (agent or workflow execution)
            task_id: Task record id
            attempt: 1-based attempt number carried by the envelope

        Returns:
            Snapshot of the running task, or None if the claim was lost
        """
        model = self._model_for(kind)
        unfinished = (TaskStatus.PENDING.value, TaskStatus.RUNNING.value, TaskStatus.FAILED.value)

        async with self.session_factory() as session:
            result = await session.execute(
                update(model)
                .where(
                    model.id == task_id,
                    model.status.in_(unfinished),
                    model.attempt_count < attempt,
                )
                .values(
                    status=TaskStatus.RUNNING.value,
                    attempt_count=attempt,
                    started_at=_now(),
                    completed_at=None,
                    error_message=None,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

            if result.rowcount != 1:
                logger.info(
                    "Task claim lost",
                    task_id=str(task_id),
                    kind=kind.value,
                    attempt=attempt,
                )
                return None

            record = await session.get(model, task_id, populate_existing=True)
            return _TASK_SNAPSHOTS[kind].model_validate(record)

    async def _finish(self, model, snapshot_cls, task_id: UUID, values: Dict[str, Any]):
        # Only a running record can finish; anything else is a stale writer
        async with self.session_factory() as session:
            result = await session.execute(
                update(model)
                .where(model.id == task_id, model.status == TaskStatus.RUNNING.value)
                .values(completed_at=_now(), **values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            if result.rowcount != 1:
                logger.warning(
                    "Task finish matched no running record",
                    task_id=str(task_id),
                    status=values.get("status"),
                )
            record = await session.get(model, task_id, populate_existing=True)
            if record is None:
                raise NotFoundError(model.__name__, str(task_id))
            return snapshot_cls.model_validate(record)

    async def complete_agent_execution(
        self,
        execution_id: UUID,
        output_data: Dict[str, Any],
        tokens_used: int,
        cost: float,
        execution_time_ms: int,
    ) -> AgentExecutionSnapshot:
        return await self._finish(
            AgentExecution,
            AgentExecutionSnapshot,
            execution_id,
            {
                "status": TaskStatus.COMPLETED.value,
                "output_data": output_data,
                "tokens_used": tokens_used,
                "cost": cost,
                "execution_time_ms": execution_time_ms,
            },
        )

    async def fail_agent_execution(
        self,
        execution_id: UUID,
        error_message: str,
        execution_time_ms: int,
    ) -> AgentExecutionSnapshot:
        return await self._finish(
            AgentExecution,
            AgentExecutionSnapshot,
            execution_id,
            {
                "status": TaskStatus.FAILED.value,
                "error_message": error_message,
                "execution_time_ms": execution_time_ms,
            },
        )

    async def update_workflow_progress(
        self,
        execution_id: UUID,
        current_step: int,
        execution_log: List[StepRecord],
    ) -> None:
        """Persist the step counter and the log while the workflow runs"""
        async with self.session_factory() as session:
            await session.execute(
                update(WorkflowExecution)
                .where(WorkflowExecution.id == execution_id)
                .values(current_step=current_step, execution_log=_dump_log(execution_log))
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def complete_workflow_execution(
        self,
        execution_id: UUID,
        output_data: Dict[str, Any],
        execution_log: List[StepRecord],
    ) -> WorkflowExecutionSnapshot:
        return await self._finish(
            WorkflowExecution,
            WorkflowExecutionSnapshot,
            execution_id,
            {
                "status": TaskStatus.COMPLETED.value,
                "output_data": output_data,
                "execution_log": _dump_log(execution_log),
            },
        )

    async def fail_workflow_execution(
        self,
        execution_id: UUID,
        error_message: str,
        execution_log: List[StepRecord],
    ) -> WorkflowExecutionSnapshot:
        return await self._finish(
            WorkflowExecution,
            WorkflowExecutionSnapshot,
            execution_id,
            {
                "status": TaskStatus.FAILED.value,
                "error_message": error_message,
                "execution_log": _dump_log(execution_log),
            },
        )

    async def mark_exhausted(self, kind: TaskKind, task_id: UUID, cause: Optional[str]) -> TaskSnapshot:
        """
        Record permanent failure after the last attempt

        Overwrites ``error_message`` with the exhaustion message; status stays
        (or becomes) ``failed``.
        """
        model = self._model_for(kind)
        message = f"{EXHAUSTED_PREFIX}: {cause}" if cause else EXHAUSTED_PREFIX

        async with self.session_factory() as session:
            await session.execute(
                update(model)
                .where(model.id == task_id)
                .values(status=TaskStatus.FAILED.value, error_message=message)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            record = await session.get(model, task_id, populate_existing=True)
            if record is None:
                raise NotFoundError(model.__name__, str(task_id))
            return _TASK_SNAPSHOTS[kind].model_validate(record)

    # ==================== Webhooks ====================

    async def find_subscribed_webhooks(self, tenant_id: UUID, event_name: str) -> List[WebhookSnapshot]:
        """Active webhooks of the tenant subscribed to ``event_name``"""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Webhook)
                .where(Webhook.tenant_id == tenant_id, Webhook.is_active.is_(True))
                .order_by(Webhook.created_at)
            )
            webhooks = result.scalars().all()

        # JSON containment differs per dialect; the event list is short
        return [
            WebhookSnapshot.model_validate(webhook)
            for webhook in webhooks
            if webhook.subscribes_to(event_name)
        ]

    async def increment_total_calls(self, webhook_id: UUID) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(Webhook)
                .where(Webhook.id == webhook_id)
                .values(total_calls=Webhook.total_calls + 1, terminal_failures=0, last_triggered_at=_now())
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def increment_failed_calls(self, webhook_id: UUID) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(Webhook)
                .where(Webhook.id == webhook_id)
                .values(failed_calls=Webhook.failed_calls + 1)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def increment_terminal_failures(self, webhook_id: UUID) -> None:
        """Count one exhausted delivery; a successful delivery resets the count"""
        async with self.session_factory() as session:
            await session.execute(
                update(Webhook)
                .where(Webhook.id == webhook_id)
                .values(terminal_failures=Webhook.terminal_failures + 1)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def disable_webhook_if_over_threshold(self, webhook_id: UUID, threshold: int) -> bool:
        """
        Deactivate the webhook after ``threshold`` consecutive exhausted deliveries

        Returns:
            True if this call flipped ``is_active`` to false
        """
        async with self.session_factory() as session:
            result = await session.execute(
                update(Webhook)
                .where(
                    Webhook.id == webhook_id,
                    Webhook.is_active.is_(True),
                    Webhook.terminal_failures >= threshold,
                )
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    # ==================== Audit ====================

    async def record_activity(
        self,
        subject_type: str,
        subject_id: UUID,
        description: str,
        tenant_id: Optional[UUID] = None,
        causer_id: Optional[UUID] = None,
        properties: Optional[Dict[str, Any]] = None,
    ) -> None:
        async with self.session_factory() as session:
            session.add(
                ActivityLog(
                    tenant_id=tenant_id,
                    subject_type=subject_type,
                    subject_id=subject_id,
                    causer_id=causer_id,
                    description=description,
                    properties=properties or {},
                )
            )
            await session.commit()
