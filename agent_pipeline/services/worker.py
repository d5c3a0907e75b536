"""
Worker Pool

Asyncio workers consuming task lanes. Each loop iteration promotes due
retries, blocks on the lanes and hands the envelope to the task runner.
"""

import asyncio
from typing import List, Sequence

from pydantic import ValidationError
from redis.exceptions import RedisError

from agent_pipeline.logging_config import get_logger, task_context
from agent_pipeline.schemas import Lane
from agent_pipeline.services.queue_router import QueueRouter
from agent_pipeline.services.task_runner import TaskRunner

logger = get_logger(__name__)


class WorkerPool:
    """
    Fixed-size pool of lane consumers

    Running tasks are never cancelled by ``stop``: workers finish their
    current envelope and exit, bounded by ``shutdown_grace_period``.
    """

    def __init__(
        self,
        runner: TaskRunner,
        router: QueueRouter,
        lanes: Sequence[Lane],
        concurrency: int = 4,
        poll_timeout: int = 5,
        shutdown_grace_period: float = 630.0,
    ):
        """
        Args:
            runner: Task runner applying the retry layer
            router: Queue router the workers consume from
            lanes: Lanes in priority order
            concurrency: Number of concurrent workers
            poll_timeout: Seconds a worker blocks waiting for work
            shutdown_grace_period: Max seconds stop() waits for running tasks
        """
        self.runner = runner
        self.router = router
        self.lanes = list(lanes)
        self.concurrency = concurrency
        self.poll_timeout = poll_timeout
        self.shutdown_grace_period = shutdown_grace_period
        self.error_backoff = 1.0
        self._running = False
        self._tasks: List[asyncio.Task] = []

    async def start(self) -> None:
        """Start the workers"""
        if self._running:
            logger.warning("Worker pool already running")
            return

        self._running = True
        self._tasks = [
            asyncio.create_task(self._worker_loop(index), name=f"pipeline-worker-{index}")
            for index in range(self.concurrency)
        ]
        logger.info(
            "Worker pool started",
            concurrency=self.concurrency,
            lanes=[lane.value for lane in self.lanes],
        )

    async def stop(self) -> None:
        """Stop accepting work and wait for running tasks"""
        self._running = False
        if not self._tasks:
            return

        done, pending = await asyncio.wait(self._tasks, timeout=self.shutdown_grace_period)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("Workers cancelled after grace period", count=len(pending))

        self._tasks = []
        logger.info("Worker pool stopped")

    def is_running(self) -> bool:
        return self._running

    async def run_once(self, worker_index: int = 0) -> bool:
        """
        One consume cycle

        Returns:
            True if an envelope was processed
        """
        for lane in self.lanes:
            await self.router.promote_due(lane)

        envelope = await self.router.dequeue(self.lanes, timeout=self.poll_timeout)
        if envelope is None:
            return False

        with task_context(worker_index, envelope.lane.value, str(envelope.task_id), envelope.kind.value):
            logger.debug("Task dequeued", attempt=envelope.attempt)
            await self.runner.run(envelope)
        return True

    async def _worker_loop(self, worker_index: int) -> None:
        """Main worker loop"""
        while self._running:
            try:
                await self.run_once(worker_index)
            except ValidationError as e:
                logger.error("Dropping malformed envelope", worker=worker_index, error=str(e))
            except RedisError as e:
                logger.error("Queue unavailable", worker=worker_index, error=str(e))
                await asyncio.sleep(self.error_backoff)
            except Exception as e:
                logger.error("Worker loop error", worker=worker_index, error=str(e), exc_info=True)
                await asyncio.sleep(self.error_backoff)
