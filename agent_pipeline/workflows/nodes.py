"""
Workflow Node Types

Node handlers run by the workflow step machine:
- Agent: Run a prompt through the inference backend
- Condition: Evaluate conditions against the current data
- Transform: Rename, copy and set keys
- ApiCall: Call an external HTTP endpoint

Each node is a function of (node definition, current data) returning a
partial output that the step machine merges into the current data.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from agent_pipeline.exceptions import ConfigurationError, ErrorCode, TaskExecutionError
from agent_pipeline.services.inference_client import InferenceClient
from agent_pipeline.services.task_store import TaskStore

CONDITION_OPERATORS = ("==", "!=", "<", ">", "<=", ">=", "in", "not_in", "contains", "is_none", "is_not_none")


class NodeType(str, Enum):
    """Types of workflow nodes."""
    AGENT = "agent"
    CONDITION = "condition"
    TRANSFORM = "transform"
    API_CALL = "api_call"


@dataclass
class NodeContext:
    """Collaborators available to node handlers"""
    inference: InferenceClient
    store: Optional[TaskStore] = None
    http_client: Optional[httpx.AsyncClient] = None
    api_call_timeout: float = 30.0


def get_nested_value(data: Dict[str, Any], path: str) -> Any:
    """Get nested value using dot notation."""
    value: Any = data
    for key in path.split("."):
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return None
    return value


class BaseNode(BaseModel, ABC):
    """
    Base class for all workflow nodes.

    Definitions may put node options at the top level or under ``config``.
    """
    id: str
    node_type: NodeType
    name: str = ""

    model_config = ConfigDict(extra="ignore", frozen=True, coerce_numbers_to_str=True)

    @abstractmethod
    async def execute(self, data: Dict[str, Any], ctx: NodeContext) -> Dict[str, Any]:
        """Execute the node and return its partial output."""


class AgentNode(BaseNode):
    """
    Agent node - runs a prompt through the inference backend.

    Configuration:
    - agent_id: Agent whose config (model, system_prompt) is used
    - prompt: Message sent to the model; str.format fields come from data
    """
    node_type: NodeType = NodeType.AGENT

    agent_id: Optional[UUID] = None
    prompt: Optional[str] = None
    agent_config: Dict[str, Any] = Field(default_factory=dict)

    def render_prompt(self, data: Dict[str, Any]) -> Optional[str]:
        if self.prompt is None:
            return None
        try:
            return self.prompt.format_map(data)
        except (KeyError, IndexError, ValueError) as e:
            raise TaskExecutionError(
                f"Node {self.id}: cannot render prompt: {e}",
                details={"node_id": self.id},
            ) from e

    async def execute(self, data: Dict[str, Any], ctx: NodeContext) -> Dict[str, Any]:
        agent_config = dict(self.agent_config)
        if self.agent_id and ctx.store is not None:
            agent = await ctx.store.get_agent(self.agent_id)
            agent_config = {**agent.config, **agent_config}

        message = self.render_prompt(data)
        input_data = {**data, "message": message} if message is not None else data

        response = await ctx.inference.generate(input_data, agent_config)
        return {"agent_result": response.output}


class ConditionNode(BaseNode):
    """
    Condition node - evaluates the current data.

    Supports:
    - Simple comparisons (==, !=, <, >, etc.)
    - Path expressions for nested values
    - Multiple conditions (all must pass)
    """
    node_type: NodeType = NodeType.CONDITION

    conditions: List[Dict[str, Any]] = Field(default_factory=list)
    # Format: [{"field": "agent_result.status", "operator": "==", "value": "ok"}]

    async def execute(self, data: Dict[str, Any], ctx: NodeContext) -> Dict[str, Any]:
        return {"condition_met": self.evaluate(data)}

    def evaluate(self, data: Dict[str, Any]) -> bool:
        """Evaluate all conditions against data."""
        for condition in self.conditions:
            field = condition.get("field", "")
            operator = condition.get("operator", "==")
            expected = condition.get("value")

            if operator not in CONDITION_OPERATORS:
                raise ConfigurationError(
                    f"Node {self.id}: unknown condition operator {operator!r}",
                    details={"node_id": self.id, "operator": operator},
                )

            actual = get_nested_value(data, field)
            try:
                matched = self._compare(actual, operator, expected)
            except TypeError as e:
                raise TaskExecutionError(
                    f"Node {self.id}: cannot evaluate {field} {operator} {expected!r}: {e}",
                    details={"node_id": self.id, "field": field},
                ) from e

            if not matched:
                return False

        return True

    def _compare(self, actual: Any, operator: str, expected: Any) -> bool:
        """Compare values using operator."""
        if operator == "==":
            return actual == expected
        elif operator == "!=":
            return actual != expected
        elif operator == "<":
            return actual < expected
        elif operator == ">":
            return actual > expected
        elif operator == "<=":
            return actual <= expected
        elif operator == ">=":
            return actual >= expected
        elif operator == "in":
            return actual in expected
        elif operator == "not_in":
            return actual not in expected
        elif operator == "contains":
            return expected in actual
        elif operator == "is_none":
            return actual is None
        else:
            return actual is not None


class TransformNode(BaseNode):
    """
    Transform node - reshapes the current data.

    Configuration:
    - mapping: {target_key: source_path} copies (dot paths allowed)
    - set: {key: constant} assignments, applied after mapping
    """
    node_type: NodeType = NodeType.TRANSFORM

    mapping: Dict[str, str] = Field(default_factory=dict)
    set_values: Dict[str, Any] = Field(default_factory=dict, alias="set")

    model_config = ConfigDict(extra="ignore", frozen=True, coerce_numbers_to_str=True, populate_by_name=True)

    async def execute(self, data: Dict[str, Any], ctx: NodeContext) -> Dict[str, Any]:
        output = {target: get_nested_value(data, source) for target, source in self.mapping.items()}
        output.update(self.set_values)
        return output


class ApiCallNode(BaseNode):
    """
    API call node - sends an HTTP request.

    Configuration:
    - method: HTTP method (default GET)
    - url: Target URL
    - headers: Request headers
    - body: JSON body; when omitted, POST/PUT/PATCH send the current data
    """
    node_type: NodeType = NodeType.API_CALL

    method: str = "GET"
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[Any] = None

    async def execute(self, data: Dict[str, Any], ctx: NodeContext) -> Dict[str, Any]:
        method = self.method.upper()
        body = self.body
        if body is None and method in ("POST", "PUT", "PATCH"):
            body = data

        try:
            if ctx.http_client is not None:
                response = await self._send(ctx.http_client, method, body, ctx.api_call_timeout)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._send(client, method, body, ctx.api_call_timeout)
        except httpx.HTTPError as e:
            raise TaskExecutionError(
                f"Node {self.id}: request to {self.url} failed: {e}",
                details={"node_id": self.id, "url": self.url},
            ) from e

        if not response.is_success:
            raise TaskExecutionError(
                f"Node {self.id}: {self.url} returned {response.status_code}",
                details={"node_id": self.id, "status_code": response.status_code},
            )

        try:
            payload = response.json()
        except ValueError:
            payload = response.text
        return {"api_response": payload}

    async def _send(self, client: httpx.AsyncClient, method: str, body: Any, timeout: float):
        return await client.request(
            method,
            self.url,
            headers=self.headers,
            json=body,
            timeout=timeout,
        )


NODE_CLASSES = {
    NodeType.AGENT: AgentNode,
    NodeType.CONDITION: ConditionNode,
    NodeType.TRANSFORM: TransformNode,
    NodeType.API_CALL: ApiCallNode,
}


def parse_node(definition: Dict[str, Any]) -> BaseNode:
    """
    Build a node from its definition

    Raises:
        ConfigurationError: Unknown node type or invalid node options
    """
    node_type = definition.get("type")
    try:
        node_cls = NODE_CLASSES[NodeType(node_type)]
    except ValueError:
        raise ConfigurationError(
            f"Unknown node type: {node_type}",
            details={"node_id": definition.get("id"), "node_type": node_type},
            error_code=ErrorCode.CONFIG_UNKNOWN_NODE_TYPE,
        )

    options = {key: value for key, value in definition.items() if key not in ("type", "config")}
    options.update(definition.get("config") or {})
    try:
        return node_cls.model_validate(options)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid {node_type} node {definition.get('id')}: {e.error_count()} error(s)",
            details={"node_id": definition.get("id"), "errors": e.errors(include_url=False)},
        ) from e
