"""
Queue Router

Places task envelopes on named Redis lanes and holds delayed retries until
they are due.

Redis keys:
- queues:<lane>          - List, FIFO lane consumed with BLPOP
- queues:<lane>:delayed  - Sorted set of retry envelopes scored by ready time
"""

import time
from typing import Any, Dict, Iterable, List, Optional

import redis.asyncio as redis

from agent_pipeline.logging_config import get_logger
from agent_pipeline.schemas import Lane, TaskEnvelope, TaskKind

logger = get_logger(__name__)

QUEUE_PREFIX = "queues"

_KIND_LANES = {
    TaskKind.WORKFLOW_EXECUTION: Lane.WORKFLOWS,
    TaskKind.NOTIFICATION: Lane.NOTIFICATIONS,
    TaskKind.WEBHOOK_DELIVERY: Lane.WEBHOOKS,
}


def lane_key(lane: Lane) -> str:
    return f"{QUEUE_PREFIX}:{lane.value}"


def delayed_key(lane: Lane) -> str:
    return f"{QUEUE_PREFIX}:{lane.value}:delayed"


class QueueRouter:
    """
    Redis-backed lane router

    Priority is expressed only by lane: workers pass lanes to BLPOP in
    priority order, entries inside one lane stay FIFO.
    """

    # Lua script for atomic promotion of due retries
    # Prevents two workers from pushing the same delayed envelope twice
    _PROMOTE_DUE_SCRIPT = """
    -- KEYS[1] = delayed sorted set key
    -- KEYS[2] = lane list key
    -- ARGV[1] = current unix time
    -- ARGV[2] = max envelopes to move

    local due = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1], 'LIMIT', 0, tonumber(ARGV[2]))

    for _, envelope in ipairs(due) do
        redis.call('ZREM', KEYS[1], envelope)
        redis.call('RPUSH', KEYS[2], envelope)
    end

    return #due
    """

    def __init__(self, redis_client: redis.Redis, promote_batch_size: int = 100):
        """
        Args:
            redis_client: Async Redis client instance
            promote_batch_size: Max delayed envelopes moved per promotion
        """
        self.redis = redis_client
        self.promote_batch_size = promote_batch_size

    @staticmethod
    def lane_for(kind: TaskKind, high_priority: bool = False) -> Lane:
        """
        Lane a new task is routed to

        Agent executions go to ``high`` when the agent is configured with
        high priority, otherwise ``default``. Other kinds have their own lane.
        """
        if kind == TaskKind.AGENT_EXECUTION:
            return Lane.HIGH if high_priority else Lane.DEFAULT
        return _KIND_LANES[kind]

    async def enqueue(self, envelope: TaskEnvelope) -> None:
        """Append the envelope to the tail of its lane"""
        await self.redis.rpush(lane_key(envelope.lane), envelope.model_dump_json())
        logger.debug(
            "Task enqueued",
            task_id=str(envelope.task_id),
            attempt=envelope.attempt,
            tags=envelope.tags(),
        )

    async def schedule_retry(self, envelope: TaskEnvelope, delay: float) -> None:
        """
        Hold the envelope until ``delay`` seconds have passed

        A zero delay pushes straight onto the lane.
        """
        if delay <= 0:
            await self.enqueue(envelope)
            return

        ready_at = time.time() + delay
        await self.redis.zadd(delayed_key(envelope.lane), {envelope.model_dump_json(): ready_at})
        logger.info(
            "Task retry scheduled",
            task_id=str(envelope.task_id),
            attempt=envelope.attempt,
            delay=delay,
            tags=envelope.tags(),
        )

    async def promote_due(self, lane: Lane, now: Optional[float] = None) -> int:
        """
        Move due retries of ``lane`` back onto the lane

        Returns:
            Number of envelopes promoted
        """
        moved = await self.redis.eval(
            self._PROMOTE_DUE_SCRIPT,
            2,  # number of keys
            delayed_key(lane),
            lane_key(lane),
            str(now if now is not None else time.time()),
            str(self.promote_batch_size),
        )
        moved = int(moved or 0)
        if moved:
            logger.debug("Promoted delayed tasks", lane=lane.value, count=moved)
        return moved

    async def dequeue(self, lanes: Iterable[Lane], timeout: int = 5) -> Optional[TaskEnvelope]:
        """
        Block until an envelope is available on any of ``lanes``

        Lanes are checked in the order given.

        Returns:
            The envelope, or None on timeout
        """
        keys = [lane_key(lane) for lane in lanes]
        item = await self.redis.blpop(keys, timeout=timeout)
        if item is None:
            return None

        _, raw = item
        if isinstance(raw, bytes):
            raw = raw.decode()
        return TaskEnvelope.model_validate_json(raw)

    async def queue_lengths(self, lanes: Optional[List[Lane]] = None) -> Dict[str, Dict[str, Any]]:
        """Ready and delayed counts per lane"""
        stats = {}
        for lane in lanes or list(Lane):
            stats[lane.value] = {
                "ready": await self.redis.llen(lane_key(lane)),
                "delayed": await self.redis.zcard(delayed_key(lane)),
            }
        return stats
