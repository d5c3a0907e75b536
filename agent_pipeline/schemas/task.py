"""Task-related Pydantic schemas

Every store call returns one of these frozen snapshots, never a live ORM
object, so listeners and executors only observe state that was committed.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from agent_pipeline.models.task import TaskStatus


class TaskKind(str, Enum):
    """Kinds of background task the pipeline runs"""
    AGENT_EXECUTION = "agent_execution"
    WORKFLOW_EXECUTION = "workflow_execution"
    NOTIFICATION = "notification"
    WEBHOOK_DELIVERY = "webhook_delivery"


class StepStatus(str, Enum):
    """Status of one workflow step record"""
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Snapshot(BaseModel):
    """Immutable copy of a stored record"""
    model_config = ConfigDict(frozen=True, from_attributes=True)


def _empty_dict(v: Any) -> Any:
    return {} if v is None else v


def _empty_list(v: Any) -> Any:
    return [] if v is None else v


class TaskSnapshot(Snapshot):
    """Columns shared by all persisted task kinds"""
    id: UUID
    tenant_id: UUID
    status: TaskStatus
    attempt_count: int = 0
    triggered_by_user_id: Optional[UUID] = None
    input_data: Dict[str, Any] = Field(default_factory=dict)
    output_data: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    coerce_input = field_validator("input_data", mode="before")(_empty_dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class AgentExecutionSnapshot(TaskSnapshot):
    """Agent execution state"""
    agent_id: UUID
    job_flow_id: Optional[UUID] = None
    workflow_execution_id: Optional[UUID] = None
    tokens_used: int = 0
    cost: float = 0.0
    execution_time_ms: Optional[int] = None


class StepRecord(Snapshot):
    """One entry of a workflow execution log"""
    step: int
    node_id: str
    node_type: str
    timestamp: str
    status: StepStatus
    attempt: Optional[int] = None
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class WorkflowExecutionSnapshot(TaskSnapshot):
    """Workflow execution state"""
    workflow_id: UUID
    current_step: int = 0
    execution_log: List[StepRecord] = Field(default_factory=list)

    coerce_log = field_validator("execution_log", mode="before")(_empty_list)


class WebhookSnapshot(Snapshot):
    """Webhook subscription as read by the delivery executor"""
    id: UUID
    tenant_id: UUID
    name: str = ""
    url: str
    events: List[str] = Field(default_factory=list)
    headers: Dict[str, str] = Field(default_factory=dict)
    secret: Optional[str] = None
    is_active: bool = True
    total_calls: int = 0
    failed_calls: int = 0
    terminal_failures: int = 0
    last_triggered_at: Optional[datetime] = None

    coerce_events = field_validator("events", mode="before")(_empty_list)
    coerce_headers = field_validator("headers", mode="before")(_empty_dict)

    def subscribes_to(self, event_name: str) -> bool:
        return event_name in self.events


class AgentSnapshot(Snapshot):
    id: UUID
    tenant_id: UUID
    name: str
    config: Dict[str, Any] = Field(default_factory=dict)

    coerce_config = field_validator("config", mode="before")(_empty_dict)

    def is_high_priority(self) -> bool:
        return self.config.get("priority") == "high"


class WorkflowSnapshot(Snapshot):
    id: UUID
    tenant_id: UUID
    name: str
    definition: Dict[str, Any] = Field(default_factory=dict)

    coerce_definition = field_validator("definition", mode="before")(_empty_dict)

    @property
    def nodes(self) -> List[Dict[str, Any]]:
        return list(self.definition.get("nodes") or [])

    @property
    def edges(self) -> List[Dict[str, Any]]:
        return list(self.definition.get("edges") or [])


class UserSnapshot(Snapshot):
    id: UUID
    tenant_id: Optional[UUID] = None
    name: str = ""
    email: str


class JobFlowSnapshot(Snapshot):
    id: UUID
    tenant_id: UUID
    job_title: str
    hitl_supervisor_id: Optional[UUID] = None


class HITLApprovalSnapshot(Snapshot):
    id: UUID
    tenant_id: UUID
    agent_id: Optional[UUID] = None
    execution_id: Optional[UUID] = None
    assigned_to_user_id: Optional[UUID] = None
    priority: str = "normal"
    expires_at: Optional[datetime] = None
