"""
Agent, Workflow and Job Flow Models

Definitions owned by the management API. The pipeline reads them to build
tasks and to address notifications; it never modifies them.
"""

from sqlalchemy import Column, String, TEXT, Uuid

from .base import BaseModel, JSONType


class Agent(BaseModel):
    """An AI agent configuration."""

    __tablename__ = "agents"

    tenant_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    config = Column(
        JSONType,
        nullable=True,
        comment='Agent config: {model, system_prompt, temperature, priority: "high" | "normal"}',
    )

    def is_high_priority(self) -> bool:
        return (self.config or {}).get("priority") == "high"


class Workflow(BaseModel):
    """A workflow definition: an ordered node list plus edges."""

    __tablename__ = "workflows"

    tenant_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(TEXT, nullable=True)
    definition = Column(
        JSONType,
        nullable=True,
        comment="Workflow structure: {nodes: [...], edges: [...]}",
    )


class JobFlow(BaseModel):
    """A job flow grouping agent executions under a HITL supervisor."""

    __tablename__ = "job_flows"

    tenant_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    job_title = Column(String(200), nullable=False)
    hitl_supervisor_id = Column(Uuid(as_uuid=True), nullable=True)
