"""
User Model

Notification recipients. Accounts are managed by the auth service.
"""

from sqlalchemy import Column, String, Uuid

from .base import BaseModel


class User(BaseModel):
    """User account as seen by the notification pipeline."""

    __tablename__ = "users"

    tenant_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    name = Column(String(200), nullable=False, default="")
    email = Column(String(255), nullable=False, index=True)

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email})>"
