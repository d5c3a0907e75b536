"""
Task Runner

Retry layer around the executors: runs one attempt, applies the retry
policy and either finishes, schedules the next attempt or gives up.
"""

from typing import Iterable, Mapping

from agent_pipeline.exceptions import ConfigurationError, ErrorCode
from agent_pipeline.logging_config import get_logger
from agent_pipeline.schemas import ExecutionResult, TaskEnvelope, TaskKind
from agent_pipeline.services.queue_router import QueueRouter
from agent_pipeline.services.retry_policy import RetryAction, RetryDecision, decide
from agent_pipeline.services.task_executor import TaskExecutor

logger = get_logger(__name__)


class TaskRunner:
    """
    Runs envelopes through their executor

    Usage:
        runner = TaskRunner([agent_executor, workflow_executor], router)
        decision = await runner.run(envelope)
    """

    def __init__(self, executors: Iterable[TaskExecutor], router: QueueRouter):
        self.executors: Mapping[TaskKind, TaskExecutor] = {executor.kind: executor for executor in executors}
        self.router = router

    def executor_for(self, kind: TaskKind) -> TaskExecutor:
        try:
            return self.executors[kind]
        except KeyError:
            raise ConfigurationError(
                f"No executor registered for {kind.value}",
                error_code=ErrorCode.CONFIG_UNKNOWN_TASK_KIND,
            )

    async def run(self, envelope: TaskEnvelope) -> RetryDecision:
        """
        Run one attempt and act on the retry decision

        Returns:
            The decision taken for this attempt
        """
        executor = self.executor_for(envelope.kind)
        log = logger.bind(task_id=str(envelope.task_id), attempt=envelope.attempt, tags=envelope.tags())

        try:
            result = await executor.run(envelope)
        except Exception as e:
            # Executors persist task faults themselves; this is a store or broker fault
            log.error("Executor raised", error=str(e), exc_info=True)
            result = ExecutionResult.from_exception(e)

        decision = decide(result, envelope.attempt, executor.retry_config)

        if decision.action == RetryAction.COMPLETE:
            log.debug("Task attempt finished", result=result.tag.value, skipped=result.skipped)
        elif decision.action == RetryAction.RETRY:
            await self.router.schedule_retry(envelope.next_attempt(), decision.delay)
        elif result.is_fatal:
            log.error("Task failed permanently", error=result.error, error_code=result.error_code)
        else:
            await executor.on_exhausted(envelope, result)

        return decision
