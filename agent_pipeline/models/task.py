"""
Task Models

Persisted state of the execution units run by the pipeline: agent
executions and workflow executions. Both share the task lifecycle columns.
"""

import enum

from sqlalchemy import CheckConstraint, Column, Float, ForeignKey, Integer, String, TEXT, TIMESTAMP, Uuid

from .base import BaseModel, JSONType


class TaskStatus(str, enum.Enum):
    """Task lifecycle status: pending -> running -> completed | failed."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskRecord(BaseModel):
    """Columns shared by every persisted task kind."""

    __abstract__ = True

    tenant_id = Column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
        comment="Owning tenant",
    )

    status = Column(
        String(20),
        nullable=False,
        default=TaskStatus.PENDING.value,
        index=True,
        comment="Task status: pending | running | completed | failed",
    )

    attempt_count = Column(
        Integer,
        nullable=False,
        default=0,
        comment="Attempt number of the latest claim (0 while pending)",
    )

    triggered_by_user_id = Column(
        Uuid(as_uuid=True),
        nullable=True,
        index=True,
        comment="User who triggered the execution",
    )

    input_data = Column(JSONType, nullable=True, comment="Task input payload")
    output_data = Column(JSONType, nullable=True, comment="Task output payload")

    error_message = Column(TEXT, nullable=True, comment="Error message if failed")

    started_at = Column(
        TIMESTAMP(timezone=True), nullable=True, comment="Start of the latest attempt"
    )

    completed_at = Column(
        TIMESTAMP(timezone=True), nullable=True, comment="End of the latest attempt"
    )


class AgentExecution(TaskRecord):
    """One run of an agent against the inference backend."""

    __tablename__ = "agent_executions"

    agent_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("agents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    job_flow_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("job_flows.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    workflow_execution_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("workflow_executions.id", ondelete="SET NULL"),
        nullable=True,
    )

    tokens_used = Column(Integer, nullable=False, default=0)
    cost = Column(Float, nullable=False, default=0.0)
    execution_time_ms = Column(Integer, nullable=True, comment="Wall clock of the latest attempt")

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed')",
            name="chk_agent_execution_status",
        ),
    )

    def __repr__(self):
        return f"<AgentExecution(id={self.id}, agent_id={self.agent_id}, status={self.status})>"


class WorkflowExecution(TaskRecord):
    """One run of a workflow definition through the step machine."""

    __tablename__ = "workflow_executions"

    workflow_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    current_step = Column(
        Integer,
        nullable=False,
        default=0,
        comment="Number of nodes started so far",
    )

    execution_log = Column(
        JSONType,
        nullable=True,
        comment="Append-only list of step records",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed')",
            name="chk_workflow_execution_status",
        ),
    )

    def __repr__(self):
        return f"<WorkflowExecution(id={self.id}, workflow_id={self.workflow_id}, status={self.status})>"
