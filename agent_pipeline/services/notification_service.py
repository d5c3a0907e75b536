"""
Notification Service

Sends user notifications over email, push and sms channels.
"""

from typing import Any, Dict, Mapping, Optional, Protocol
from uuid import UUID

import httpx

from agent_pipeline.exceptions import ConfigurationError, ErrorCode, TaskExecutionError
from agent_pipeline.logging_config import get_logger
from agent_pipeline.schemas import ExecutionResult, TaskEnvelope, TaskKind, UserSnapshot
from agent_pipeline.services.retry_policy import RetryConfig
from agent_pipeline.services.task_executor import TaskExecutor
from agent_pipeline.services.task_store import TaskStore

logger = get_logger(__name__)


class NotificationChannel(Protocol):
    async def send(self, user: UserSnapshot, data: Dict[str, Any]) -> None:
        ...


class EmailChannel:
    """
    Email channel

    Posts {from, to, subject, content} to the mail API when one is
    configured, otherwise only logs the message.
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        from_address: str = "no-reply@agent-pipeline.local",
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
    ):
        self.api_url = api_url
        self.from_address = from_address
        self.http_client = http_client
        self.timeout = timeout

    async def send(self, user: UserSnapshot, data: Dict[str, Any]) -> None:
        message = {
            "from": self.from_address,
            "to": user.email,
            "subject": data.get("subject", "Notification"),
            "content": data.get("content", ""),
        }

        if not self.api_url:
            logger.info("Email notification", to=user.email, subject=message["subject"])
            return

        try:
            if self.http_client is not None:
                response = await self.http_client.post(self.api_url, json=message, timeout=self.timeout)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(self.api_url, json=message, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise TaskExecutionError(
                f"Mail API request failed: {e}",
                error_code=ErrorCode.SERVICE_EXTERNAL_ERROR,
            ) from e


class LogChannel:
    """Channel without a provider: records the notification in the log"""

    def __init__(self, name: str):
        self.name = name

    async def send(self, user: UserSnapshot, data: Dict[str, Any]) -> None:
        logger.info(f"{self.name} notification", user_id=str(user.id), data=data)


class NotificationService:
    """
    Dispatches notifications to channel senders

    Args:
        channels: Notification type -> sender
    """

    def __init__(self, channels: Mapping[str, NotificationChannel]):
        self.channels = dict(channels)

    async def send(self, user: UserSnapshot, notification_type: str, data: Dict[str, Any]) -> None:
        """
        Send one notification

        Raises:
            ConfigurationError: Unknown notification type
        """
        channel = self.channels.get(notification_type)
        if channel is None:
            raise ConfigurationError(
                f"Unknown notification type: {notification_type}",
                details={"type": notification_type},
                error_code=ErrorCode.CONFIG_UNKNOWN_NOTIFICATION_TYPE,
            )

        await channel.send(user, data)
        logger.info("Notification sent successfully", user_id=str(user.id), type=notification_type)


class NotificationExecutor(TaskExecutor):
    """
    Notification executor

    Envelope payload: {"user_id", "type", "data"}.
    """

    kind = TaskKind.NOTIFICATION

    def __init__(
        self,
        store: TaskStore,
        service: NotificationService,
        retry_config: Optional[RetryConfig] = None,
    ):
        super().__init__(retry_config)
        self.store = store
        self.service = service

    async def run(self, envelope: TaskEnvelope) -> ExecutionResult:
        notification_type = envelope.payload.get("type")
        try:
            user = await self.store.get_user(UUID(str(envelope.payload["user_id"])))
            await self.with_timeout(
                self.service.send(user, notification_type, envelope.payload.get("data") or {}),
                "Notification",
            )
        except Exception as e:
            result = ExecutionResult.from_exception(e)
            logger.error(
                "Notification failed",
                user_id=envelope.payload.get("user_id"),
                type=notification_type,
                error=result.error,
            )
            return result

        return ExecutionResult.success()
