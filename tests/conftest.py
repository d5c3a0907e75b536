"""Pytest configuration and fixtures for pipeline tests"""

import pytest
import pytest_asyncio
import structlog
from unittest.mock import AsyncMock
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from agent_pipeline.logging_config import setup_logging
from agent_pipeline.models import Agent, Base, JobFlow, User, Webhook, Workflow
from agent_pipeline.services.event_bus import EventBus
from agent_pipeline.services.queue_router import QueueRouter
from agent_pipeline.services.task_store import TaskStore


# ==================== Database Fixtures ====================


@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path):
    """SQLite database engine, one file per test"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'pipeline.db'}",
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def store(session_factory):
    return TaskStore(session_factory)


# ==================== Logging ====================


@pytest.fixture
def configured_logging():
    """structlog configured the way the worker process configures it"""
    setup_logging("DEBUG", "json")
    yield
    structlog.reset_defaults()


# ==================== Mock Redis ====================


@pytest.fixture
def mock_redis():
    """Mock redis.asyncio client"""
    redis = AsyncMock()
    redis.rpush = AsyncMock(return_value=1)
    redis.zadd = AsyncMock(return_value=1)
    redis.eval = AsyncMock(return_value=0)
    redis.blpop = AsyncMock(return_value=None)
    redis.publish = AsyncMock(return_value=1)
    redis.llen = AsyncMock(return_value=0)
    redis.zcard = AsyncMock(return_value=0)
    return redis


@pytest.fixture
def router(mock_redis):
    return QueueRouter(mock_redis)


@pytest.fixture
def mock_event_bus():
    bus = AsyncMock(spec=EventBus)
    bus.publish = AsyncMock()
    return bus


# ==================== Sample Data Fixtures ====================


@pytest.fixture
def tenant_id():
    return uuid4()


async def _add(session_factory, record):
    async with session_factory() as session:
        session.add(record)
        await session.commit()
        await session.refresh(record)
        return record


@pytest_asyncio.fixture
async def sample_user(session_factory, tenant_id):
    return await _add(session_factory, User(tenant_id=tenant_id, name="Test User", email="user@example.com"))


@pytest_asyncio.fixture
async def sample_supervisor(session_factory, tenant_id):
    return await _add(
        session_factory, User(tenant_id=tenant_id, name="Supervisor", email="supervisor@example.com")
    )


@pytest_asyncio.fixture
async def sample_agent(session_factory, tenant_id):
    return await _add(
        session_factory,
        Agent(tenant_id=tenant_id, name="Summarizer", config={"model": "llama3", "priority": "normal"}),
    )


@pytest_asyncio.fixture
async def high_priority_agent(session_factory, tenant_id):
    return await _add(
        session_factory,
        Agent(tenant_id=tenant_id, name="Escalation", config={"priority": "high"}),
    )


@pytest_asyncio.fixture
async def sample_job_flow(session_factory, tenant_id, sample_supervisor):
    return await _add(
        session_factory,
        JobFlow(tenant_id=tenant_id, job_title="Invoice triage", hitl_supervisor_id=sample_supervisor.id),
    )


@pytest.fixture
def workflow_factory(session_factory, tenant_id):
    async def create(nodes, name="Pipeline"):
        return await _add(
            session_factory,
            Workflow(tenant_id=tenant_id, name=name, definition={"nodes": nodes, "edges": []}),
        )

    return create


@pytest.fixture
def webhook_factory(session_factory, tenant_id):
    async def create(**overrides):
        values = {
            "tenant_id": tenant_id,
            "name": "Receiver",
            "url": "https://hooks.example.com/pipeline",
            "events": ["agent.executed"],
            "headers": {},
            "secret": None,
            "is_active": True,
            "total_calls": 0,
            "failed_calls": 0,
            "terminal_failures": 0,
        }
        values.update(overrides)
        return await _add(session_factory, Webhook(**values))

    return create
