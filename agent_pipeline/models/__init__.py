"""
Database Models Package

SQLAlchemy ORM models for the agent pipeline.
"""

from .base import Base, BaseModel
from .agent import Agent, JobFlow, Workflow
from .user import User
from .task import AgentExecution, TaskRecord, TaskStatus, WorkflowExecution
from .webhook import Webhook
from .hitl_approval import HITLApproval
from .activity_log import ActivityLog

__all__ = [
    "Base",
    "BaseModel",
    "Agent",
    "JobFlow",
    "Workflow",
    "User",
    "AgentExecution",
    "TaskRecord",
    "TaskStatus",
    "WorkflowExecution",
    "Webhook",
    "HITLApproval",
    "ActivityLog",
]
