"""Unit tests for webhook delivery"""

import hashlib
import hmac
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import respx

from agent_pipeline.schemas import Lane, ResultTag, TaskEnvelope, TaskKind
from agent_pipeline.services.retry_policy import RetryAction
from agent_pipeline.services.task_runner import TaskRunner
from agent_pipeline.services.webhook_delivery import (
    WebhookDeliveryExecutor,
    build_headers,
    encode_payload,
    sign_payload,
)

URL = "https://hooks.example.com/pipeline"


@pytest.fixture
def executor(store):
    return WebhookDeliveryExecutor(store, http_client=httpx.AsyncClient())


@pytest.fixture
def retry_router():
    router = MagicMock()
    router.schedule_retry = AsyncMock()
    return router


def delivery(webhook, event="agent.executed", data=None):
    return TaskEnvelope(
        kind=TaskKind.WEBHOOK_DELIVERY,
        tenant_id=webhook.tenant_id,
        lane=Lane.WEBHOOKS,
        payload={"webhook_id": str(webhook.id), "event": event, "data": data or {"execution_id": "e-1"}},
    )


async def deliver_with_retries(runner, router, envelope):
    while True:
        decision = await runner.run(envelope)
        if decision.action != RetryAction.RETRY:
            return decision
        envelope = router.schedule_retry.call_args.args[0]


# ==================== Signing Tests ====================


@pytest.mark.unit
def test_encode_payload_escapes_slashes():
    encoded = encode_payload({"url": "https://a/b", "name": "café"})
    assert encoded == '{"url":"https:\\/\\/a\\/b","name":"caf\\u00e9"}'


@pytest.mark.unit
def test_signature_matches_hmac_of_encoded_payload():
    payload = {"execution_id": "e-1", "link": "https://app/x"}
    expected = hmac.new(
        b"s3cret",
        b'{"execution_id":"e-1","link":"https:\\/\\/app\\/x"}',
        hashlib.sha256,
    ).hexdigest()

    assert sign_payload(payload, "s3cret") == expected


@pytest.mark.unit
@pytest.mark.asyncio
async def test_fixed_headers_cannot_be_overridden(store, webhook_factory):
    webhook = await store.get_webhook(
        (await webhook_factory(
            secret="s3cret",
            headers={"x-webhook-event": "spoofed", "content-type": "text/plain", "X-Team": "ops"},
        )).id
    )

    headers = build_headers(webhook, "agent.executed", {"a": 1}, "2026-01-01T00:00:00+00:00")

    assert headers["X-Webhook-Event"] == "agent.executed"
    assert headers["Content-Type"] == "application/json"
    assert headers["X-Team"] == "ops"
    assert "x-webhook-event" not in headers
    assert "content-type" not in headers
    assert headers["X-Webhook-Signature"] == sign_payload({"a": 1}, "s3cret")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_no_signature_without_secret(store, webhook_factory):
    webhook = await store.get_webhook((await webhook_factory()).id)

    headers = build_headers(webhook, "agent.executed", {}, "2026-01-01T00:00:00+00:00")

    assert "X-Webhook-Signature" not in headers


# ==================== Delivery Tests ====================


@pytest.mark.unit
@pytest.mark.asyncio
async def test_successful_delivery_increments_total_calls(executor, store, webhook_factory):
    webhook = await webhook_factory(secret="s3cret")

    with respx.mock:
        route = respx.post(URL).mock(return_value=httpx.Response(204))
        result = await executor.run(delivery(webhook, data={"execution_id": "e-1"}))

    assert result.tag == ResultTag.SUCCESS
    request = route.calls.last.request
    body = json.loads(request.content)
    assert body["event"] == "agent.executed"
    assert body["data"] == {"execution_id": "e-1"}
    assert body["timestamp"] == request.headers["X-Webhook-Timestamp"]
    assert request.headers["X-Webhook-ID"] == str(webhook.id)
    assert request.headers["X-Webhook-Signature"] == sign_payload({"execution_id": "e-1"}, "s3cret")

    stored = await store.get_webhook(webhook.id)
    assert stored.total_calls == 1
    assert stored.failed_calls == 0
    assert stored.last_triggered_at is not None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unsubscribed_event_is_skipped(executor, store, webhook_factory):
    webhook = await webhook_factory(events=["agent.executed"])

    with respx.mock:
        route = respx.post(URL).mock(return_value=httpx.Response(200))
        result = await executor.run(delivery(webhook, event="workflow.completed"))

    assert result.skipped
    assert not route.called
    stored = await store.get_webhook(webhook.id)
    assert (stored.total_calls, stored.failed_calls) == (0, 0)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_inactive_webhook_is_skipped(executor, store, webhook_factory):
    webhook = await webhook_factory(is_active=False)

    with respx.mock:
        route = respx.post(URL).mock(return_value=httpx.Response(200))
        result = await executor.run(delivery(webhook))

    assert result.output == {"skipped": "inactive"}
    assert not route.called


@pytest.mark.unit
@pytest.mark.asyncio
async def test_server_error_increments_failed_calls(executor, store, webhook_factory):
    webhook = await webhook_factory()

    with respx.mock:
        respx.post(URL).mock(return_value=httpx.Response(500))
        result = await executor.run(delivery(webhook))

    assert result.tag == ResultTag.RETRYABLE_FAILURE
    assert result.error == "Webhook failed with status 500"
    stored = await store.get_webhook(webhook.id)
    assert stored.failed_calls == 1
    assert stored.total_calls == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_connection_error_is_retryable(executor, store, webhook_factory):
    webhook = await webhook_factory()

    with respx.mock:
        respx.post(URL).mock(side_effect=httpx.ConnectError("refused"))
        result = await executor.run(delivery(webhook))

    assert result.tag == ResultTag.RETRYABLE_FAILURE
    assert (await store.get_webhook(webhook.id)).failed_calls == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_malformed_envelope_is_fatal(executor):
    envelope = TaskEnvelope(kind=TaskKind.WEBHOOK_DELIVERY, lane=Lane.WEBHOOKS, payload={"event": "x"})

    result = await executor.run(envelope)

    assert result.tag == ResultTag.FATAL_FAILURE


# ==================== Auto-disable Tests ====================


async def exhaust_delivery(executor, webhook):
    router = MagicMock()
    router.schedule_retry = AsyncMock()
    return await deliver_with_retries(TaskRunner([executor], router), router, delivery(webhook))


@pytest.mark.unit
@pytest.mark.asyncio
async def test_exhausted_delivery_below_threshold_stays_active(
    executor, store, webhook_factory, retry_router
):
    webhook = await webhook_factory(failed_calls=24, terminal_failures=8)
    runner = TaskRunner([executor], retry_router)

    with respx.mock:
        route = respx.post(URL).mock(return_value=httpx.Response(503))
        decision = await deliver_with_retries(runner, retry_router, delivery(webhook))

    assert decision.action == RetryAction.GIVE_UP
    assert route.call_count == 3
    assert [c.args[1] for c in retry_router.schedule_retry.call_args_list] == [5, 15]
    stored = await store.get_webhook(webhook.id)
    assert stored.failed_calls == 27
    assert stored.terminal_failures == 9
    assert stored.is_active is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_exhausted_delivery_at_threshold_disables(executor, store, webhook_factory):
    webhook = await webhook_factory(failed_calls=27, terminal_failures=9)

    with respx.mock:
        respx.post(URL).mock(return_value=httpx.Response(503))
        await exhaust_delivery(executor, webhook)

    stored = await store.get_webhook(webhook.id)
    assert stored.terminal_failures == 10
    assert stored.is_active is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_tenth_exhausted_delivery_disables(executor, store, webhook_factory):
    """Test a clean webhook stays active through 9 exhausted deliveries and flips on the 10th"""
    webhook = await webhook_factory()

    with respx.mock:
        respx.post(URL).mock(return_value=httpx.Response(503))
        for _ in range(9):
            await exhaust_delivery(executor, webhook)

        stored = await store.get_webhook(webhook.id)
        assert stored.failed_calls == 27
        assert stored.terminal_failures == 9
        assert stored.is_active is True

        await exhaust_delivery(executor, webhook)

    stored = await store.get_webhook(webhook.id)
    assert stored.terminal_failures == 10
    assert stored.is_active is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_successful_delivery_resets_terminal_failures(executor, store, webhook_factory):
    webhook = await webhook_factory(failed_calls=27, terminal_failures=9)

    with respx.mock:
        respx.post(URL).mock(return_value=httpx.Response(200))
        await executor.run(delivery(webhook))
        respx.post(URL).mock(return_value=httpx.Response(503))
        await exhaust_delivery(executor, webhook)

    stored = await store.get_webhook(webhook.id)
    assert stored.failed_calls == 30
    assert stored.terminal_failures == 1
    assert stored.is_active is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_threshold_not_checked_before_exhaustion(executor, store, webhook_factory):
    webhook = await webhook_factory(failed_calls=40, terminal_failures=12)

    with respx.mock:
        respx.post(URL).mock(return_value=httpx.Response(503))
        await executor.run(delivery(webhook))

    stored = await store.get_webhook(webhook.id)
    assert stored.failed_calls == 41
    assert stored.is_active is True


# ==================== Logging Tests ====================


@pytest.mark.unit
@pytest.mark.asyncio
async def test_delivery_paths_log_with_configured_logging(executor, store, webhook_factory, configured_logging):
    """Test skip, failure and exhaustion paths log through the worker's structlog setup"""
    inactive = await webhook_factory(is_active=False)
    failing = await webhook_factory(terminal_failures=9)

    with respx.mock:
        respx.post(URL).mock(return_value=httpx.Response(503))
        skipped = await executor.run(delivery(inactive))
        unsubscribed = await executor.run(delivery(failing, event="workflow.completed"))
        await exhaust_delivery(executor, failing)

    assert skipped.tag == ResultTag.SUCCESS
    assert unsubscribed.skipped
    assert (await store.get_webhook(failing.id)).is_active is False
