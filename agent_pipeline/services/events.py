"""
Pipeline Events

Immutable facts published after a task reaches a state worth telling
anyone about. Each event carries a snapshot of its source record and knows
its broadcast name, channels and payload.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Optional
from uuid import UUID

from agent_pipeline.schemas import (
    AgentExecutionSnapshot,
    HITLApprovalSnapshot,
    WorkflowExecutionSnapshot,
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _str(value: Optional[UUID]) -> Optional[str]:
    return str(value) if value else None


@dataclass(frozen=True)
class Event(ABC):
    """Base class for pipeline events"""
    broadcast_name: ClassVar[str] = ""

    @property
    @abstractmethod
    def tenant_id(self) -> UUID:
        ...

    @abstractmethod
    def resource_channel(self) -> str:
        ...

    def channels(self) -> List[str]:
        """Tenant-scoped channel first, then the resource channel"""
        return [f"tenant.{self.tenant_id}", self.resource_channel()]

    @abstractmethod
    def broadcast_payload(self) -> Dict[str, Any]:
        ...


@dataclass(frozen=True)
class AgentExecutionCompleted(Event):
    execution: AgentExecutionSnapshot
    broadcast_name: ClassVar[str] = "agent.execution.completed"

    @property
    def tenant_id(self) -> UUID:
        return self.execution.tenant_id

    def resource_channel(self) -> str:
        return f"agent.{self.execution.agent_id}"

    def broadcast_payload(self) -> Dict[str, Any]:
        return {
            "execution_id": str(self.execution.id),
            "agent_id": str(self.execution.agent_id),
            "status": self.execution.status.value,
            "execution_time_ms": self.execution.execution_time_ms,
            "completed_at": _iso(self.execution.completed_at),
        }


@dataclass(frozen=True)
class AgentExecutionFailed(Event):
    """
    An agent execution attempt failed

    ``terminal`` is True when no further attempt will run.
    """
    execution: AgentExecutionSnapshot
    error: str
    terminal: bool = False
    broadcast_name: ClassVar[str] = "agent.execution.failed"

    @property
    def tenant_id(self) -> UUID:
        return self.execution.tenant_id

    def resource_channel(self) -> str:
        return f"agent.{self.execution.agent_id}"

    def broadcast_payload(self) -> Dict[str, Any]:
        return {
            "execution_id": str(self.execution.id),
            "agent_id": str(self.execution.agent_id),
            "status": self.execution.status.value,
            "error_message": self.execution.error_message,
        }


@dataclass(frozen=True)
class WorkflowCompleted(Event):
    execution: WorkflowExecutionSnapshot
    broadcast_name: ClassVar[str] = "workflow.completed"

    @property
    def tenant_id(self) -> UUID:
        return self.execution.tenant_id

    def resource_channel(self) -> str:
        return f"workflow.{self.execution.workflow_id}"

    def broadcast_payload(self) -> Dict[str, Any]:
        return {
            "execution_id": str(self.execution.id),
            "workflow_id": str(self.execution.workflow_id),
            "status": self.execution.status.value,
            "completed_at": _iso(self.execution.completed_at),
        }


@dataclass(frozen=True)
class WorkflowFailed(Event):
    execution: WorkflowExecutionSnapshot
    error: str
    terminal: bool = False
    broadcast_name: ClassVar[str] = "workflow.failed"

    @property
    def tenant_id(self) -> UUID:
        return self.execution.tenant_id

    def resource_channel(self) -> str:
        return f"workflow.{self.execution.workflow_id}"

    def broadcast_payload(self) -> Dict[str, Any]:
        return {
            "execution_id": str(self.execution.id),
            "workflow_id": str(self.execution.workflow_id),
            "status": self.execution.status.value,
            "error_message": self.execution.error_message,
        }


@dataclass(frozen=True)
class HITLApprovalRequested(Event):
    approval: HITLApprovalSnapshot
    broadcast_name: ClassVar[str] = "hitl.approval.requested"

    @property
    def tenant_id(self) -> UUID:
        return self.approval.tenant_id

    def resource_channel(self) -> str:
        return f"user.{self.approval.assigned_to_user_id}"

    def broadcast_payload(self) -> Dict[str, Any]:
        return {
            "approval_id": str(self.approval.id),
            "agent_id": _str(self.approval.agent_id),
            "priority": self.approval.priority,
            "assigned_to_user_id": _str(self.approval.assigned_to_user_id),
            "expires_at": _iso(self.approval.expires_at),
        }
