"""
Webhook Model

Tenant-registered HTTP endpoints receiving pipeline events.
"""

from sqlalchemy import Boolean, Column, Integer, String, TEXT, TIMESTAMP, Uuid

from .base import BaseModel, JSONType


class Webhook(BaseModel):
    """Webhook subscription with delivery counters."""

    __tablename__ = "webhooks"

    tenant_id = Column(Uuid(as_uuid=True), nullable=False, index=True)

    name = Column(String(200), nullable=False, default="")

    url = Column(TEXT, nullable=False, comment="Delivery endpoint")

    events = Column(
        JSONType,
        nullable=False,
        default=list,
        comment='Subscribed event names: ["agent.executed", "workflow.completed"]',
    )

    headers = Column(JSONType, nullable=True, comment="Custom request headers")

    secret = Column(String(255), nullable=True, comment="HMAC-SHA256 signing secret")

    is_active = Column(Boolean, nullable=False, default=True, index=True)

    # Only ever changed through atomic SQL updates
    total_calls = Column(Integer, nullable=False, default=0)
    failed_calls = Column(Integer, nullable=False, default=0, comment="Failed attempts, never reset")
    terminal_failures = Column(
        Integer,
        nullable=False,
        default=0,
        comment="Exhausted deliveries since the last successful one",
    )

    last_triggered_at = Column(TIMESTAMP(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Webhook(id={self.id}, url={self.url}, active={self.is_active})>"

    def subscribes_to(self, event_name: str) -> bool:
        """Check if the webhook listens for the event"""
        return event_name in (self.events or [])
