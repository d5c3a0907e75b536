"""Queue envelope schemas"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from agent_pipeline.schemas.task import TaskKind


class Lane(str, Enum):
    """Named queue partitions, listed in consumption priority order"""
    HIGH = "high"
    DEFAULT = "default"
    WORKFLOWS = "workflows"
    NOTIFICATIONS = "notifications"
    WEBHOOKS = "webhooks"


class TaskEnvelope(BaseModel):
    """
    One task attempt as it travels through Redis.

    The lane is decided once at enqueue time and carried unchanged by every
    retry of the same task.
    """
    task_id: UUID = Field(default_factory=uuid4)
    kind: TaskKind
    tenant_id: Optional[UUID] = None
    lane: Lane
    attempt: int = Field(default=1, ge=1)
    payload: Dict[str, Any] = Field(default_factory=dict)
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    def next_attempt(self) -> "TaskEnvelope":
        """Envelope for the retry of this attempt"""
        return self.model_copy(
            update={"attempt": self.attempt + 1, "enqueued_at": datetime.now(timezone.utc)}
        )

    def tags(self) -> list[str]:
        """Monitoring tags attached to log lines"""
        tags = [f"type:{self.kind.value}", f"lane:{self.lane.value}"]
        if self.tenant_id:
            tags.append(f"tenant:{self.tenant_id}")
        return tags
