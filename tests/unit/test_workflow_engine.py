"""Unit tests for the workflow step machine and WorkflowExecutor"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from agent_pipeline.exceptions import ConfigurationError, ErrorCode, TaskExecutionError
from agent_pipeline.models import TaskStatus
from agent_pipeline.schemas import Lane, ResultTag, StepStatus, TaskEnvelope, TaskKind
from agent_pipeline.services.events import WorkflowCompleted, WorkflowFailed
from agent_pipeline.services.inference_client import InferenceResponse
from agent_pipeline.services.retry_policy import RetryConfig
from agent_pipeline.services.workflow_engine import WorkflowExecutor
from agent_pipeline.workflows import (
    ConditionNode,
    NodeContext,
    TransformNode,
    parse_node,
)


AGENT_NODE = {"id": "summarize", "type": "agent", "prompt": "Summarize: {text}"}
TRANSFORM_NODE = {"id": "shape", "type": "transform", "config": {"mapping": {"summary": "agent_result"}}}


@pytest.fixture
def node_context():
    inference = MagicMock()
    inference.generate = AsyncMock(
        return_value=InferenceResponse(output="Short summary", model="llama3", tokens_used=5)
    )
    return NodeContext(inference=inference)


@pytest.fixture
def executor(store, node_context, mock_event_bus):
    return WorkflowExecutor(store, node_context, mock_event_bus)


@pytest.fixture
def start_workflow(store, workflow_factory, tenant_id, sample_user):
    async def start(nodes, input_data=None):
        workflow = await workflow_factory(nodes)
        execution = await store.create_workflow_execution(
            tenant_id,
            workflow.id,
            input_data if input_data is not None else {"text": "Quarterly report"},
            triggered_by_user_id=sample_user.id,
        )
        return TaskEnvelope(
            task_id=execution.id,
            kind=TaskKind.WORKFLOW_EXECUTION,
            tenant_id=tenant_id,
            lane=Lane.WORKFLOWS,
        )

    return start


# ==================== Node Tests ====================


@pytest.mark.unit
def test_parse_node_merges_config():
    node = parse_node(TRANSFORM_NODE)

    assert isinstance(node, TransformNode)
    assert node.mapping == {"summary": "agent_result"}


@pytest.mark.unit
def test_parse_node_unknown_type():
    with pytest.raises(ConfigurationError) as exc_info:
        parse_node({"id": "x", "type": "loop"})

    assert exc_info.value.error_code == ErrorCode.CONFIG_UNKNOWN_NODE_TYPE


@pytest.mark.unit
def test_parse_node_numeric_id():
    node = parse_node({"id": 3, "type": "condition", "conditions": []})
    assert node.id == "3"


@pytest.mark.unit
def test_parse_api_call_requires_url():
    with pytest.raises(ConfigurationError):
        parse_node({"id": "call", "type": "api_call"})


@pytest.mark.unit
def test_condition_nested_path():
    node = ConditionNode(
        id="check",
        conditions=[
            {"field": "order.total", "operator": ">=", "value": 100},
            {"field": "order.status", "operator": "in", "value": ["paid", "shipped"]},
        ],
    )

    assert node.evaluate({"order": {"total": 120, "status": "paid"}}) is True
    assert node.evaluate({"order": {"total": 80, "status": "paid"}}) is False


@pytest.mark.unit
def test_condition_unknown_operator_is_fatal():
    node = ConditionNode(id="check", conditions=[{"field": "a", "operator": "~=", "value": 1}])

    with pytest.raises(ConfigurationError):
        node.evaluate({"a": 1})


@pytest.mark.unit
def test_condition_incomparable_values():
    node = ConditionNode(id="check", conditions=[{"field": "missing", "operator": "<", "value": 5}])

    with pytest.raises(TaskExecutionError):
        node.evaluate({})


@pytest.mark.unit
@pytest.mark.asyncio
async def test_transform_mapping_and_set(node_context):
    node = parse_node(
        {"id": "t", "type": "transform", "mapping": {"total": "order.total"}, "set": {"source": "api"}}
    )

    output = await node.execute({"order": {"total": 7}}, node_context)

    assert output == {"total": 7, "source": "api"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_agent_node_renders_prompt(node_context):
    node = parse_node(AGENT_NODE)

    output = await node.execute({"text": "Q3 numbers"}, node_context)

    assert output == {"agent_result": "Short summary"}
    input_data = node_context.inference.generate.call_args.args[0]
    assert input_data["message"] == "Summarize: Q3 numbers"


# ==================== Step Machine Tests ====================


@pytest.mark.unit
@pytest.mark.asyncio
async def test_workflow_runs_nodes_in_order(executor, store, start_workflow, mock_event_bus):
    """Test every node runs once and outputs merge into the data"""
    envelope = await start_workflow([AGENT_NODE, TRANSFORM_NODE])

    result = await executor.run(envelope)

    assert result.tag == ResultTag.SUCCESS
    assert result.output == {
        "text": "Quarterly report",
        "agent_result": "Short summary",
        "summary": "Short summary",
    }

    stored = await store.get_workflow_execution(envelope.task_id)
    assert stored.status == TaskStatus.COMPLETED
    assert stored.current_step == 2
    assert [e.node_id for e in stored.execution_log] == ["summarize", "shape"]
    assert all(e.status == StepStatus.COMPLETED for e in stored.execution_log)
    assert [e.step for e in stored.execution_log] == [1, 2]
    assert isinstance(mock_event_bus.publish.call_args.args[0], WorkflowCompleted)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failing_node_stops_workflow(executor, store, start_workflow, mock_event_bus):
    """Test a node fault stops the run and later nodes are never logged"""
    failing_condition = {
        "id": "threshold",
        "type": "condition",
        "conditions": [{"field": "agent_result", "operator": "<", "value": 5}],
    }
    envelope = await start_workflow([AGENT_NODE, failing_condition, TRANSFORM_NODE])

    result = await executor.run(envelope)

    assert result.tag == ResultTag.RETRYABLE_FAILURE
    stored = await store.get_workflow_execution(envelope.task_id)
    assert stored.status == TaskStatus.FAILED
    assert stored.current_step == 2
    assert [e.status for e in stored.execution_log] == [StepStatus.COMPLETED, StepStatus.FAILED]
    assert "threshold" in stored.execution_log[1].error
    assert "shape" not in [e.node_id for e in stored.execution_log]

    event = mock_event_bus.publish.call_args.args[0]
    assert isinstance(event, WorkflowFailed)
    assert event.terminal is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unknown_node_type_fails_fatally(executor, store, start_workflow, mock_event_bus):
    envelope = await start_workflow([AGENT_NODE, {"id": "loop", "type": "loop"}])

    result = await executor.run(envelope)

    assert result.tag == ResultTag.FATAL_FAILURE
    assert result.error == "Unknown node type: loop"
    stored = await store.get_workflow_execution(envelope.task_id)
    assert stored.execution_log[-1].status == StepStatus.FAILED
    assert mock_event_bus.publish.call_args.args[0].terminal is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_retry_continues_step_counter(executor, store, start_workflow, node_context):
    """Test the second attempt appends to the log of the first"""
    node_context.inference.generate.side_effect = [
        TaskExecutionError("backend down"),
        InferenceResponse(output="Recovered", model="llama3"),
    ]
    envelope = await start_workflow([AGENT_NODE, TRANSFORM_NODE])

    first = await executor.run(envelope)
    second = await executor.run(envelope.next_attempt())

    assert first.tag == ResultTag.RETRYABLE_FAILURE
    assert second.tag == ResultTag.SUCCESS

    stored = await store.get_workflow_execution(envelope.task_id)
    assert stored.current_step == 3
    assert [e.step for e in stored.execution_log] == [1, 2, 3]
    assert [e.attempt for e in stored.execution_log] == [1, 2, 2]
    assert [e.status for e in stored.execution_log] == [
        StepStatus.FAILED,
        StepStatus.COMPLETED,
        StepStatus.COMPLETED,
    ]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failing_node_after_full_retry_cycle(executor, store, start_workflow):
    """Test both attempts of a failing node append to one log"""
    failing_condition = {
        "id": "threshold",
        "type": "condition",
        "conditions": [{"field": "agent_result", "operator": "<", "value": 5}],
    }
    envelope = await start_workflow([AGENT_NODE, failing_condition, TRANSFORM_NODE])

    await executor.run(envelope)
    second = await executor.run(envelope.next_attempt())

    assert second.tag == ResultTag.RETRYABLE_FAILURE
    stored = await store.get_workflow_execution(envelope.task_id)
    assert stored.status == TaskStatus.FAILED
    assert stored.current_step == 4
    assert [e.status for e in stored.execution_log] == [
        StepStatus.COMPLETED,
        StepStatus.FAILED,
        StepStatus.COMPLETED,
        StepStatus.FAILED,
    ]
    assert [e.attempt for e in stored.execution_log] == [1, 1, 2, 2]
    assert "shape" not in [e.node_id for e in stored.execution_log]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_workflow_timeout_marks_open_step_failed(store, start_workflow, node_context, mock_event_bus):
    async def hang(*args, **kwargs):
        await asyncio.sleep(5)

    node_context.inference.generate = hang
    executor = WorkflowExecutor(
        store, node_context, mock_event_bus, retry_config=RetryConfig(max_attempts=2, timeout=0.05)
    )
    envelope = await start_workflow([AGENT_NODE])

    result = await executor.run(envelope)

    assert result.tag == ResultTag.RETRYABLE_FAILURE
    stored = await store.get_workflow_execution(envelope.task_id)
    assert stored.execution_log[-1].status == StepStatus.FAILED
    assert "timed out" in stored.execution_log[-1].error


@pytest.mark.unit
@pytest.mark.asyncio
async def test_empty_workflow_completes(executor, store, start_workflow):
    envelope = await start_workflow([], input_data={"a": 1})

    result = await executor.run(envelope)

    assert result.output == {"a": 1}
    stored = await store.get_workflow_execution(envelope.task_id)
    assert stored.current_step == 0
    assert stored.execution_log == []
