"""
Workflow Node System

Node types interpreted by the sequential workflow step machine.
"""

from .nodes import (
    AgentNode,
    ApiCallNode,
    BaseNode,
    ConditionNode,
    NodeContext,
    NodeType,
    TransformNode,
    get_nested_value,
    parse_node,
)

__all__ = [
    "AgentNode",
    "ApiCallNode",
    "BaseNode",
    "ConditionNode",
    "NodeContext",
    "NodeType",
    "TransformNode",
    "get_nested_value",
    "parse_node",
]
