"""
Agent Execution Executor

Runs one agent execution attempt against the inference backend and records
the outcome on the execution record.
"""

from typing import Optional

from agent_pipeline.logging_config import get_logger
from agent_pipeline.schemas import (
    AgentExecutionSnapshot,
    AgentSnapshot,
    ExecutionResult,
    TaskEnvelope,
    TaskKind,
)
from agent_pipeline.services.event_bus import EventBus
from agent_pipeline.services.events import AgentExecutionCompleted, AgentExecutionFailed
from agent_pipeline.services.inference_client import InferenceClient
from agent_pipeline.services.retry_policy import RetryConfig
from agent_pipeline.services.task_executor import Stopwatch, TaskExecutor
from agent_pipeline.services.task_store import TaskStore

logger = get_logger(__name__)


class AgentExecutor(TaskExecutor):
    """
    Agent execution executor

    Lifecycle of one attempt:
    1. Claim the record for this attempt
    2. Call the inference backend within the per-attempt timeout
    3. Persist completed/failed with timing, tokens and cost
    4. Publish AgentExecutionCompleted or AgentExecutionFailed
    """

    kind = TaskKind.AGENT_EXECUTION

    def __init__(
        self,
        store: TaskStore,
        inference: InferenceClient,
        event_bus: EventBus,
        retry_config: Optional[RetryConfig] = None,
    ):
        super().__init__(retry_config)
        self.store = store
        self.inference = inference
        self.event_bus = event_bus

    async def run(self, envelope: TaskEnvelope) -> ExecutionResult:
        execution = await self.store.claim(self.kind, envelope.task_id, envelope.attempt)
        if execution is None:
            return ExecutionResult.discarded("agent execution already claimed")
        return await self.execute(execution, envelope.attempt)

    async def execute(self, execution: AgentExecutionSnapshot, attempt: int) -> ExecutionResult:
        """
        Execute a claimed agent execution

        Args:
            execution: Snapshot of the running execution
            attempt: 1-based attempt number

        Returns:
            ExecutionResult tagged success, retryable or fatal failure
        """
        stopwatch = Stopwatch()
        logger.info(
            "Agent execution started",
            execution_id=str(execution.id),
            agent_id=str(execution.agent_id),
            attempt=attempt,
        )

        try:
            agent = await self.store.get_agent(execution.agent_id)
            response = await self.with_timeout(
                self.inference.generate(
                    execution.input_data,
                    agent.config,
                    timeout=self.retry_config.timeout,
                ),
                "Agent execution",
            )
        except Exception as e:
            result = ExecutionResult.from_exception(e)
            failed = await self.store.fail_agent_execution(
                execution.id, result.error, stopwatch.elapsed_ms
            )
            terminal = self.is_terminal(result, attempt)
            logger.error(
                "Agent execution failed",
                execution_id=str(execution.id),
                attempt=attempt,
                error=result.error,
                error_code=result.error_code,
                terminal=terminal,
            )
            await self.event_bus.publish(AgentExecutionFailed(failed, result.error, terminal))
            return result

        completed = await self.store.complete_agent_execution(
            execution.id,
            output_data=response.to_dict(),
            tokens_used=response.tokens_used,
            cost=response.cost,
            execution_time_ms=stopwatch.elapsed_ms,
        )
        logger.info(
            "Agent execution completed",
            execution_id=str(execution.id),
            execution_time_ms=completed.execution_time_ms,
            tokens_used=completed.tokens_used,
        )

        await self.event_bus.publish(AgentExecutionCompleted(completed))
        await self._record_activity(completed, agent)
        return ExecutionResult.success(completed.output_data)

    async def _record_activity(self, execution: AgentExecutionSnapshot, agent: AgentSnapshot) -> None:
        # Audit trail is best effort; the execution is already committed
        try:
            await self.store.record_activity(
                subject_type=self.kind.value,
                subject_id=execution.id,
                description="Agent execution completed",
                tenant_id=execution.tenant_id,
                causer_id=execution.triggered_by_user_id,
                properties={"agent_id": str(agent.id), "agent_name": agent.name},
            )
        except Exception as e:
            logger.warning("Failed to record activity", execution_id=str(execution.id), error=str(e))

    async def on_exhausted(self, envelope: TaskEnvelope, result: ExecutionResult) -> None:
        execution = await self.store.mark_exhausted(self.kind, envelope.task_id, result.error)
        logger.critical(
            "Agent execution permanently failed",
            execution_id=str(envelope.task_id),
            attempts=envelope.attempt,
            error=execution.error_message,
            tags=envelope.tags(),
        )
