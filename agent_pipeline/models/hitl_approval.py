"""
HITL Approval Model

Human-in-the-loop approval requests raised by upstream collaborators.
The pipeline only reads them to notify the assigned reviewer.
"""

from sqlalchemy import Column, String, TIMESTAMP, Uuid

from .base import BaseModel, JSONType


class HITLApproval(BaseModel):
    """Pending approval of an AI decision."""

    __tablename__ = "hitl_approvals"

    tenant_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    agent_id = Column(Uuid(as_uuid=True), nullable=True)
    execution_id = Column(Uuid(as_uuid=True), nullable=True)
    assigned_to_user_id = Column(Uuid(as_uuid=True), nullable=True, index=True)

    status = Column(String(20), nullable=False, default="pending")
    priority = Column(
        String(20),
        nullable=False,
        default="normal",
        comment="low | normal | high | urgent",
    )

    ai_decision = Column(JSONType, nullable=True)

    expires_at = Column(TIMESTAMP(timezone=True), nullable=True)
