"""
Activity Log Model

Audit trail of task outcomes, attributed to the triggering user.
"""

from sqlalchemy import BigInteger, Column, Integer, String, TEXT, TIMESTAMP, Uuid, func

from .base import Base, JSONType


class ActivityLog(Base):
    """Activity Log model - audit entries written by executors"""

    __tablename__ = "activity_logs"

    log_id = Column(
        # SQLite only autoincrements INTEGER PRIMARY KEY
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
        comment="Auto-incrementing log ID",
    )

    tenant_id = Column(Uuid(as_uuid=True), nullable=True, index=True)

    subject_type = Column(String(50), nullable=False, comment="agent_execution | workflow_execution")
    subject_id = Column(Uuid(as_uuid=True), nullable=False, index=True)

    causer_id = Column(Uuid(as_uuid=True), nullable=True, comment="User the activity is attributed to")

    description = Column(TEXT, nullable=False)

    properties = Column(JSONType, nullable=True, comment="Additional structured data")

    created_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        index=True,
    )

    def __repr__(self):
        return f"<ActivityLog(log_id={self.log_id}, subject={self.subject_type}:{self.subject_id})>"
