"""Unit tests for AgentExecutor and the retry layer around it"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from agent_pipeline.exceptions import ConfigurationError, OperationTimeoutError
from agent_pipeline.models import TaskStatus
from agent_pipeline.schemas import Lane, ResultTag, TaskEnvelope, TaskKind
from agent_pipeline.services.agent_executor import AgentExecutor
from agent_pipeline.services.events import AgentExecutionCompleted, AgentExecutionFailed
from agent_pipeline.services.inference_client import InferenceResponse
from agent_pipeline.services.retry_policy import RetryAction, RetryConfig
from agent_pipeline.services.task_runner import TaskRunner


@pytest.fixture
def mock_inference():
    inference = MagicMock()
    inference.generate = AsyncMock(
        return_value=InferenceResponse(output="Summary", model="llama3", tokens_used=120, cost=0.0012)
    )
    return inference


@pytest.fixture
def executor(store, mock_inference, mock_event_bus):
    return AgentExecutor(store, mock_inference, mock_event_bus)


@pytest.fixture
def retry_router():
    router = MagicMock()
    router.schedule_retry = AsyncMock()
    return router


@pytest.fixture
def pending_execution(store, sample_agent, sample_user):
    async def create():
        return await store.create_agent_execution(
            tenant_id=sample_agent.tenant_id,
            agent_id=sample_agent.id,
            input_data={"message": "Summarize the report"},
            triggered_by_user_id=sample_user.id,
        )

    return create


def envelope_for(execution):
    return TaskEnvelope(
        task_id=execution.id,
        kind=TaskKind.AGENT_EXECUTION,
        tenant_id=execution.tenant_id,
        lane=Lane.DEFAULT,
        payload={"agent_id": str(execution.agent_id)},
    )


async def drive(runner, router, envelope):
    """Run attempts until the runner stops scheduling retries"""
    decisions = []
    while True:
        decision = await runner.run(envelope)
        decisions.append(decision)
        if decision.action != RetryAction.RETRY:
            return decisions
        envelope = router.schedule_retry.call_args.args[0]


# ==================== Success Path Tests ====================


@pytest.mark.unit
@pytest.mark.asyncio
async def test_successful_execution(executor, store, pending_execution, mock_event_bus):
    """Test a successful attempt persists output and publishes completion"""
    execution = await pending_execution()

    result = await executor.run(envelope_for(execution))

    assert result.tag == ResultTag.SUCCESS
    stored = await store.get_agent_execution(execution.id)
    assert stored.status == TaskStatus.COMPLETED
    assert stored.output_data == {"response": "Summary", "model": "llama3"}
    assert stored.tokens_used == 120
    assert stored.execution_time_ms is not None

    event = mock_event_bus.publish.call_args.args[0]
    assert isinstance(event, AgentExecutionCompleted)
    assert event.execution.status == TaskStatus.COMPLETED


@pytest.mark.unit
@pytest.mark.asyncio
async def test_execution_passes_agent_config(executor, pending_execution, mock_inference):
    execution = await pending_execution()

    await executor.run(envelope_for(execution))

    input_data, agent_config = mock_inference.generate.call_args.args
    assert input_data == {"message": "Summarize the report"}
    assert agent_config["model"] == "llama3"
    assert mock_inference.generate.call_args.kwargs["timeout"] == 300


@pytest.mark.unit
@pytest.mark.asyncio
async def test_lost_claim_is_discarded(executor, store, pending_execution, mock_inference):
    execution = await pending_execution()
    await store.claim(TaskKind.AGENT_EXECUTION, execution.id, 1)

    result = await executor.run(envelope_for(execution))

    assert result.tag == ResultTag.DISCARDED
    mock_inference.generate.assert_not_called()


# ==================== Failure Path Tests ====================


@pytest.mark.unit
@pytest.mark.asyncio
async def test_retryable_failure_publishes_non_terminal_event(
    executor, store, pending_execution, mock_inference, mock_event_bus
):
    mock_inference.generate.side_effect = OperationTimeoutError("Inference backend timed out")
    execution = await pending_execution()

    result = await executor.run(envelope_for(execution))

    assert result.tag == ResultTag.RETRYABLE_FAILURE
    stored = await store.get_agent_execution(execution.id)
    assert stored.status == TaskStatus.FAILED
    assert stored.error_message == "Inference backend timed out"

    event = mock_event_bus.publish.call_args.args[0]
    assert isinstance(event, AgentExecutionFailed)
    assert event.terminal is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_timeouts_exhaust_after_three_attempts(
    executor, store, pending_execution, mock_inference, mock_event_bus, retry_router
):
    """Test three timed out attempts back off 10s then 30s and end failed"""
    mock_inference.generate.side_effect = OperationTimeoutError("Inference backend timed out")
    execution = await pending_execution()
    runner = TaskRunner([executor], retry_router)

    decisions = await drive(runner, retry_router, envelope_for(execution))

    assert mock_inference.generate.await_count == 3
    assert [d.action for d in decisions] == [RetryAction.RETRY, RetryAction.RETRY, RetryAction.GIVE_UP]
    delays = [call.args[1] for call in retry_router.schedule_retry.call_args_list]
    assert delays == [10, 30]

    stored = await store.get_agent_execution(execution.id)
    assert stored.status == TaskStatus.FAILED
    assert stored.attempt_count == 3
    assert "Maximum retry attempts exceeded" in stored.error_message

    terminal_flags = [call.args[0].terminal for call in mock_event_bus.publish.call_args_list]
    assert terminal_flags == [False, False, True]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_retry_succeeds_on_second_attempt(
    executor, store, pending_execution, mock_inference, retry_router
):
    mock_inference.generate.side_effect = [
        OperationTimeoutError("Inference backend timed out"),
        InferenceResponse(output="Late summary", model="llama3", tokens_used=10),
    ]
    execution = await pending_execution()
    runner = TaskRunner([executor], retry_router)

    decisions = await drive(runner, retry_router, envelope_for(execution))

    assert decisions[-1].action == RetryAction.COMPLETE
    stored = await store.get_agent_execution(execution.id)
    assert stored.status == TaskStatus.COMPLETED
    assert stored.attempt_count == 2
    assert stored.error_message is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_fatal_failure_is_not_retried(
    executor, store, pending_execution, mock_inference, retry_router
):
    mock_inference.generate.side_effect = ConfigurationError("Agent has no model configured")
    execution = await pending_execution()
    runner = TaskRunner([executor], retry_router)

    decisions = await drive(runner, retry_router, envelope_for(execution))

    assert [d.action for d in decisions] == [RetryAction.GIVE_UP]
    retry_router.schedule_retry.assert_not_called()
    stored = await store.get_agent_execution(execution.id)
    assert stored.error_message == "Agent has no model configured"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_slow_backend_hits_attempt_timeout(
    store, mock_inference, mock_event_bus, pending_execution
):
    async def hang(*args, **kwargs):
        await asyncio.sleep(5)

    mock_inference.generate = hang
    executor = AgentExecutor(
        store, mock_inference, mock_event_bus, retry_config=RetryConfig(max_attempts=1, timeout=0.05)
    )
    execution = await pending_execution()

    result = await executor.run(envelope_for(execution))

    assert result.tag == ResultTag.RETRYABLE_FAILURE
    assert "timed out" in result.error
    assert mock_event_bus.publish.call_args.args[0].terminal is True


# ==================== Store Fault Tests ====================


def database_locked():
    return OperationalError("UPDATE agent_executions", {}, Exception("database is locked"))


def fail_first_call(method):
    calls = 0

    async def wrapper(*args, **kwargs):
        nonlocal calls
        calls += 1
        if calls == 1:
            raise database_locked()
        return await method(*args, **kwargs)

    return wrapper


@pytest.mark.unit
@pytest.mark.asyncio
async def test_claim_fault_is_recovered_by_retry(
    executor, store, pending_execution, mock_inference, retry_router, monkeypatch
):
    """Test a claim that never committed does not strand the record as pending"""
    monkeypatch.setattr(store, "claim", fail_first_call(store.claim))
    execution = await pending_execution()
    runner = TaskRunner([executor], retry_router)

    decisions = await drive(runner, retry_router, envelope_for(execution))

    assert [d.action for d in decisions] == [RetryAction.RETRY, RetryAction.COMPLETE]
    assert mock_inference.generate.await_count == 1
    stored = await store.get_agent_execution(execution.id)
    assert stored.status == TaskStatus.COMPLETED
    assert stored.attempt_count == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failed_write_is_recovered_by_retry(
    executor, store, pending_execution, mock_inference, retry_router, monkeypatch
):
    """Test a record left running by a failed write is reclaimed by the next attempt"""
    mock_inference.generate.side_effect = [
        OperationTimeoutError("Inference backend timed out"),
        InferenceResponse(output="Late summary", model="llama3", tokens_used=10),
    ]
    monkeypatch.setattr(store, "fail_agent_execution", fail_first_call(store.fail_agent_execution))
    execution = await pending_execution()
    runner = TaskRunner([executor], retry_router)

    decisions = await drive(runner, retry_router, envelope_for(execution))

    assert [d.action for d in decisions] == [RetryAction.RETRY, RetryAction.COMPLETE]
    stored = await store.get_agent_execution(execution.id)
    assert stored.status == TaskStatus.COMPLETED
    assert stored.attempt_count == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_persistent_claim_faults_end_failed(
    executor, store, pending_execution, mock_inference, retry_router, monkeypatch
):
    monkeypatch.setattr(store, "claim", AsyncMock(side_effect=database_locked()))
    execution = await pending_execution()
    runner = TaskRunner([executor], retry_router)

    decisions = await drive(runner, retry_router, envelope_for(execution))

    assert [d.action for d in decisions] == [RetryAction.RETRY, RetryAction.RETRY, RetryAction.GIVE_UP]
    mock_inference.generate.assert_not_called()
    stored = await store.get_agent_execution(execution.id)
    assert stored.status == TaskStatus.FAILED
    assert stored.error_message.startswith("Maximum retry attempts exceeded")
