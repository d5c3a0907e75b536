"""
Webhook Delivery

POSTs pipeline events to tenant webhooks, signs payloads and keeps the
delivery counters.

Wire format:
    POST <url>
    {"event": <name>, "data": <payload>, "timestamp": <ISO-8601>}

The signature covers the JSON encoding of ``payload`` alone, not the body.
Existing receivers verify it that way.
"""

import hashlib
import hmac
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

import httpx

from agent_pipeline.exceptions import ConfigurationError, WebhookDeliveryError
from agent_pipeline.logging_config import get_logger
from agent_pipeline.schemas import ExecutionResult, TaskEnvelope, TaskKind, WebhookSnapshot
from agent_pipeline.services.retry_policy import RetryConfig
from agent_pipeline.services.task_executor import TaskExecutor
from agent_pipeline.services.task_store import TaskStore

logger = get_logger(__name__)

FIXED_HEADERS = (
    "Content-Type",
    "X-Webhook-Event",
    "X-Webhook-ID",
    "X-Webhook-Timestamp",
    "X-Webhook-Signature",
)


def encode_payload(payload: Any) -> str:
    """Compact JSON with escaped slashes and ASCII-only output, the form receivers verify"""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=True, default=str).replace("/", "\\/")


def sign_payload(payload: Any, secret: str) -> str:
    """HMAC-SHA256 hex digest of the encoded payload"""
    return hmac.new(secret.encode(), encode_payload(payload).encode(), hashlib.sha256).hexdigest()


def build_headers(webhook: WebhookSnapshot, event_name: str, payload: Any, timestamp: str) -> Dict[str, str]:
    """
    Request headers for one delivery

    Custom headers are applied first; a custom header with the name of a
    fixed header (any case) is dropped.
    """
    reserved = {name.lower() for name in FIXED_HEADERS}
    headers = {
        name: str(value)
        for name, value in webhook.headers.items()
        if name.lower() not in reserved
    }
    headers.update({
        "Content-Type": "application/json",
        "X-Webhook-Event": event_name,
        "X-Webhook-ID": str(webhook.id),
        "X-Webhook-Timestamp": timestamp,
    })
    if webhook.secret:
        headers["X-Webhook-Signature"] = sign_payload(payload, webhook.secret)
    return headers


class WebhookDeliveryExecutor(TaskExecutor):
    """
    Webhook delivery executor

    Envelope payload: {"webhook_id", "event", "data"}. Deliveries to
    inactive or unsubscribed webhooks succeed without doing anything.
    """

    kind = TaskKind.WEBHOOK_DELIVERY

    def __init__(
        self,
        store: TaskStore,
        http_client: Optional[httpx.AsyncClient] = None,
        request_timeout: float = 15.0,
        auto_disable_threshold: int = 10,
        retry_config: Optional[RetryConfig] = None,
    ):
        super().__init__(retry_config)
        self.store = store
        self.http_client = http_client
        self.request_timeout = request_timeout
        self.auto_disable_threshold = auto_disable_threshold

    async def run(self, envelope: TaskEnvelope) -> ExecutionResult:
        try:
            if "webhook_id" not in envelope.payload or "event" not in envelope.payload:
                raise ConfigurationError(
                    "Webhook delivery needs webhook_id and event",
                    details={"task_id": str(envelope.task_id)},
                )
            webhook = await self.store.get_webhook(UUID(str(envelope.payload["webhook_id"])))
            return await self.with_timeout(
                self.deliver(webhook, envelope.payload["event"], envelope.payload.get("data") or {}),
                "Webhook delivery",
            )
        except Exception as e:
            return ExecutionResult.from_exception(e)

    async def deliver(self, webhook: WebhookSnapshot, event_name: str, payload: Dict[str, Any]) -> ExecutionResult:
        """
        Deliver one event to one webhook

        Returns:
            Success (possibly skipped) or a retryable failure with the status code
        """
        if not webhook.is_active:
            logger.info("Webhook inactive, skipping", webhook_id=str(webhook.id), event_name=event_name)
            return ExecutionResult.skip("inactive")

        if not webhook.subscribes_to(event_name):
            logger.debug("Webhook not subscribed, skipping", webhook_id=str(webhook.id), event_name=event_name)
            return ExecutionResult.skip("unsubscribed")

        timestamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
        headers = build_headers(webhook, event_name, payload, timestamp)
        body = json.dumps({"event": event_name, "data": payload, "timestamp": timestamp}, default=str)

        try:
            try:
                if self.http_client is not None:
                    response = await self._post(self.http_client, webhook.url, headers, body)
                else:
                    async with httpx.AsyncClient() as client:
                        response = await self._post(client, webhook.url, headers, body)
            except httpx.HTTPError as e:
                raise WebhookDeliveryError(f"Webhook request failed: {e}") from e

            if not response.is_success:
                raise WebhookDeliveryError(
                    f"Webhook failed with status {response.status_code}",
                    status_code=response.status_code,
                )
        except WebhookDeliveryError as e:
            await self.store.increment_failed_calls(webhook.id)
            logger.error(
                "Webhook trigger failed",
                webhook_id=str(webhook.id),
                event_name=event_name,
                error=e.message,
                status_code=e.status_code,
            )
            return ExecutionResult.from_exception(e)

        await self.store.increment_total_calls(webhook.id)
        logger.info(
            "Webhook triggered successfully",
            webhook_id=str(webhook.id),
            event_name=event_name,
            status=response.status_code,
        )
        return ExecutionResult.success({"status_code": response.status_code})

    async def _post(self, client: httpx.AsyncClient, url: str, headers: Dict[str, str], body: str):
        return await client.post(url, headers=headers, content=body, timeout=self.request_timeout)

    async def on_exhausted(self, envelope: TaskEnvelope, result: ExecutionResult) -> None:
        webhook_id = UUID(str(envelope.payload["webhook_id"]))
        logger.critical(
            "Webhook permanently failed",
            webhook_id=str(webhook_id),
            event_name=envelope.payload.get("event"),
            error=result.error,
        )

        await self.store.increment_terminal_failures(webhook_id)
        if await self.store.disable_webhook_if_over_threshold(webhook_id, self.auto_disable_threshold):
            logger.warning(
                "Webhook auto-disabled due to excessive failures",
                webhook_id=str(webhook_id),
                threshold=self.auto_disable_threshold,
            )
