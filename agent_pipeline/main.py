"""
Worker Entry Point

Runs the pipeline worker pool until SIGINT/SIGTERM.

    python -m agent_pipeline.main
"""

import asyncio
import signal

import httpx

from agent_pipeline.config import get_settings
from agent_pipeline.container import build_container
from agent_pipeline.database import close_db, init_db
from agent_pipeline.logging_config import get_logger, setup_logging
from agent_pipeline.redis_client import RedisClient

logger = get_logger(__name__)


async def run_worker() -> None:
    """Connect, start the pool and wait for a stop signal"""
    settings = get_settings()
    session_factory = await init_db(settings, create_schema=settings.ENVIRONMENT == "development")
    redis_client = RedisClient(settings.REDIS_URL, max_connections=settings.REDIS_MAX_CONNECTIONS)
    await redis_client.connect()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    async with httpx.AsyncClient() as http_client:
        container = build_container(settings, session_factory, redis_client.client, http_client)
        await container.worker_pool.start()
        logger.info(
            "Worker started",
            version=settings.APP_VERSION,
            environment=settings.ENVIRONMENT,
        )

        try:
            await stop.wait()
            logger.info("Stop signal received")
        finally:
            await container.shutdown()
            await redis_client.close()
            await close_db()

    logger.info("Worker stopped")


def main() -> None:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT, settings.APP_NAME)
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
