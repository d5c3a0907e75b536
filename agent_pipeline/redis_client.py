"""
Redis Client Configuration

Async Redis client with connection pooling. Redis carries the task lanes,
the delayed-retry sets and the event broadcast channels.
"""

from typing import Optional

import redis.asyncio as redis

from agent_pipeline.logging_config import get_logger

logger = get_logger(__name__)


class RedisClient:
    """
    Async Redis client wrapper with connection pooling

    Usage:
        redis_client = RedisClient("redis://localhost:6379/0")
        await redis_client.connect()
        router = QueueRouter(redis_client.client)
        await redis_client.close()
    """

    def __init__(self, url: str, max_connections: int = 50):
        """
        Args:
            url: Redis connection URL (redis://host:port/db)
            max_connections: Maximum connections in pool
        """
        self.url = url
        self.max_connections = max_connections
        self.pool: Optional[redis.ConnectionPool] = None
        self.client: Optional[redis.Redis] = None

    async def connect(self) -> None:
        """
        Establish connection to Redis server

        Raises:
            redis.ConnectionError: If connection fails
        """
        # socket_timeout must outlast the BLPOP timeout used by workers
        self.pool = redis.ConnectionPool.from_url(
            self.url,
            max_connections=self.max_connections,
            decode_responses=True,
            socket_timeout=30,
            socket_connect_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        self.client = redis.Redis(connection_pool=self.pool)

        try:
            await self.client.ping()
        except redis.ConnectionError as e:
            logger.error("Failed to connect to Redis", url=self.url, error=str(e))
            raise

        logger.info("Redis connected", url=self.url)

    async def close(self) -> None:
        """Close Redis connection and cleanup pool"""
        if self.client:
            try:
                await self.client.aclose()
                logger.info("Redis client closed")
            except redis.RedisError as e:
                logger.error("Error closing Redis client", error=str(e))

        if self.pool:
            try:
                await self.pool.disconnect()
            except redis.RedisError as e:
                logger.error("Error disconnecting Redis pool", error=str(e))

        self.client = None
        self.pool = None

    async def ping(self) -> bool:
        """Return True if the connection is alive"""
        if not self.client:
            return False

        try:
            await self.client.ping()
            return True
        except redis.ConnectionError:
            return False
