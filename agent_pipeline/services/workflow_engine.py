"""
Workflow Engine

Sequential step machine over a workflow definition's node list, and the
executor that runs one workflow execution attempt with it.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from agent_pipeline.logging_config import get_logger
from agent_pipeline.schemas import (
    ExecutionResult,
    StepRecord,
    StepStatus,
    TaskEnvelope,
    TaskKind,
    WorkflowExecutionSnapshot,
)
from agent_pipeline.services.event_bus import EventBus
from agent_pipeline.services.events import WorkflowCompleted, WorkflowFailed
from agent_pipeline.services.retry_policy import RetryConfig
from agent_pipeline.services.task_executor import TaskExecutor
from agent_pipeline.services.task_store import TaskStore
from agent_pipeline.workflows import NodeContext, parse_node

logger = get_logger(__name__)


def _error_message(exc: BaseException) -> str:
    return getattr(exc, "message", None) or str(exc) or type(exc).__name__


class StepMachine:
    """
    Runs workflow nodes strictly in list order

    Edges in the definition do not affect traversal. ``current_step`` and
    the execution log carry over from earlier attempts, so both only grow.
    """

    def __init__(
        self,
        execution: WorkflowExecutionSnapshot,
        store: TaskStore,
        ctx: NodeContext,
        attempt: int = 1,
    ):
        self.execution_id = execution.id
        self.store = store
        self.ctx = ctx
        self.attempt = attempt
        self.current_step = execution.current_step
        self.current_data: Dict[str, Any] = dict(execution.input_data)
        self.execution_log: List[StepRecord] = list(execution.execution_log)

    async def run(self, nodes: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Execute every node and return the merged data

        Raises:
            Exception: The first node fault, after its log entry is marked failed
        """
        for definition in nodes:
            self.current_step += 1
            self.execution_log.append(
                StepRecord(
                    step=self.current_step,
                    node_id=str(definition.get("id", "")),
                    node_type=str(definition.get("type", "")),
                    timestamp=datetime.now(timezone.utc).isoformat(),
                    status=StepStatus.PROCESSING,
                    attempt=self.attempt,
                )
            )
            await self.store.update_workflow_progress(
                self.execution_id, self.current_step, self.execution_log
            )

            try:
                node = parse_node(definition)
                output = await node.execute(dict(self.current_data), self.ctx)
            except Exception as e:
                self._close_step(StepStatus.FAILED, error=_error_message(e))
                logger.warning(
                    "Workflow step failed",
                    execution_id=str(self.execution_id),
                    step=self.current_step,
                    node_id=definition.get("id"),
                    error=_error_message(e),
                )
                raise

            self.current_data = {**self.current_data, **output}
            self._close_step(StepStatus.COMPLETED, output=output)
            logger.debug(
                "Workflow step completed",
                execution_id=str(self.execution_id),
                step=self.current_step,
                node_id=definition.get("id"),
            )

        return self.current_data

    def fail_open_step(self, error: str) -> None:
        """Mark a step left in ``processing`` (e.g. by a timeout) as failed"""
        if self.execution_log and self.execution_log[-1].status == StepStatus.PROCESSING:
            self._close_step(StepStatus.FAILED, error=error)

    def _close_step(
        self,
        status: StepStatus,
        output: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        self.execution_log[-1] = self.execution_log[-1].model_copy(
            update={"status": status, "output": output, "error": error}
        )


class WorkflowExecutor(TaskExecutor):
    """
    Workflow execution executor

    The per-attempt timeout bounds the whole run, not a single node. A node
    fault fails the whole attempt; there is no per-node retry.
    """

    kind = TaskKind.WORKFLOW_EXECUTION

    def __init__(
        self,
        store: TaskStore,
        node_context: NodeContext,
        event_bus: EventBus,
        retry_config: Optional[RetryConfig] = None,
    ):
        super().__init__(retry_config)
        self.store = store
        self.node_context = node_context
        self.event_bus = event_bus

    async def run(self, envelope: TaskEnvelope) -> ExecutionResult:
        execution = await self.store.claim(self.kind, envelope.task_id, envelope.attempt)
        if execution is None:
            return ExecutionResult.discarded("workflow execution already claimed")
        return await self.execute(execution, envelope.attempt)

    async def execute(self, execution: WorkflowExecutionSnapshot, attempt: int) -> ExecutionResult:
        machine = StepMachine(execution, self.store, self.node_context, attempt)
        logger.info(
            "Workflow execution started",
            execution_id=str(execution.id),
            workflow_id=str(execution.workflow_id),
            attempt=attempt,
        )

        try:
            workflow = await self.store.get_workflow(execution.workflow_id)
            output = await self.with_timeout(machine.run(workflow.nodes), "Workflow execution")
        except Exception as e:
            result = ExecutionResult.from_exception(e)
            machine.fail_open_step(result.error)
            failed = await self.store.fail_workflow_execution(
                execution.id, result.error, machine.execution_log
            )
            terminal = self.is_terminal(result, attempt)
            logger.error(
                "Workflow execution failed",
                execution_id=str(execution.id),
                workflow_id=str(execution.workflow_id),
                step=machine.current_step,
                error=result.error,
                terminal=terminal,
            )
            await self.event_bus.publish(WorkflowFailed(failed, result.error, terminal))
            return result

        completed = await self.store.complete_workflow_execution(
            execution.id, output, machine.execution_log
        )
        logger.info(
            "Workflow execution completed",
            execution_id=str(execution.id),
            steps=completed.current_step,
        )

        await self.event_bus.publish(WorkflowCompleted(completed))
        try:
            await self.store.record_activity(
                subject_type=self.kind.value,
                subject_id=completed.id,
                description="Workflow execution completed",
                tenant_id=completed.tenant_id,
                causer_id=completed.triggered_by_user_id,
                properties={"workflow_id": str(workflow.id), "steps": completed.current_step},
            )
        except Exception as e:
            logger.warning("Failed to record activity", execution_id=str(completed.id), error=str(e))

        return ExecutionResult.success(output)

    async def on_exhausted(self, envelope: TaskEnvelope, result: ExecutionResult) -> None:
        logger.critical(
            "Workflow permanently failed",
            execution_id=str(envelope.task_id),
            attempts=envelope.attempt,
            error=result.error,
            tags=envelope.tags(),
        )
