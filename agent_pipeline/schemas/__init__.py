"""
Pydantic Schemas Package

Snapshots of stored records, queue envelopes and execution results.
"""

from .task import (
    AgentExecutionSnapshot,
    AgentSnapshot,
    HITLApprovalSnapshot,
    JobFlowSnapshot,
    StepRecord,
    StepStatus,
    TaskKind,
    TaskSnapshot,
    UserSnapshot,
    WebhookSnapshot,
    WorkflowExecutionSnapshot,
    WorkflowSnapshot,
)
from .queue import Lane, TaskEnvelope
from .execution import ExecutionResult, ResultTag

__all__ = [
    "AgentExecutionSnapshot",
    "AgentSnapshot",
    "HITLApprovalSnapshot",
    "JobFlowSnapshot",
    "StepRecord",
    "StepStatus",
    "TaskKind",
    "TaskSnapshot",
    "UserSnapshot",
    "WebhookSnapshot",
    "WorkflowExecutionSnapshot",
    "WorkflowSnapshot",
    "Lane",
    "TaskEnvelope",
    "ExecutionResult",
    "ResultTag",
]
