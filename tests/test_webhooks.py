import json

import httpx
import pytest
import pytest_asyncio

from bazaruto.database.redis import RedisJobStore
from bazaruto.errors import InvalidInputError, NotFoundError
from bazaruto.events.bus import EventBus
from bazaruto.events.events import PAYMENT_COMPLETED, POLICY_CREATED, new_event
from bazaruto.jobs import jobs as jobs_module
from bazaruto.jobs.dispatcher import JobDispatcher
from bazaruto.services.webhooks import WebhookConfig, WebhookService, sign


class Partner:
    """Scripted webhook receiver: replies with ``statuses`` in turn, then 200."""

    def __init__(self, *statuses):
        self.statuses = list(statuses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses.pop(0) if self.statuses else 200
        return httpx.Response(status, text="ok" if status < 300 else "nope")


@pytest.fixture
def store():
    return RedisJobStore()


@pytest_asyncio.fixture
async def dispatcher(store):
    d = JobDispatcher(store, queues={"notifications": 1})
    yield d
    await d.close(timeout=1)


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    monkeypatch.setattr(jobs_module.WebhookDeliveryJob, "retry_backoff", 0.01)


def _service(dispatcher, partner):
    return WebhookService(dispatcher, transport=httpx.MockTransport(partner))


async def _publish(bus, dispatcher, event):
    await bus.publish(event)
    await bus.wait_idle(timeout=1)
    await dispatcher.join(timeout=2)


@pytest.mark.asyncio
async def test_events_are_posted_to_matching_webhooks(dispatcher):
    partner = Partner()
    service = _service(dispatcher, partner)
    policy_hook = service.create_config(
        WebhookConfig(
            url="https://partner.example.com/hooks",
            event_types=[POLICY_CREATED],
            secret="s3cret",
            headers={"X-Partner": "acme"},
        )
    )
    service.create_config(WebhookConfig(url="https://other.example.com/hooks", event_types=[PAYMENT_COMPLETED]))
    bus = EventBus(close_timeout=1)
    service.subscribe(bus)

    event = new_event(POLICY_CREATED, "pol-1", policy_number="P-1")
    await _publish(bus, dispatcher, event)
    await bus.close()

    assert len(partner.requests) == 1
    request = partner.requests[0]
    assert request.method == "POST"
    assert str(request.url) == "https://partner.example.com/hooks"
    assert request.headers["X-Event-Type"] == POLICY_CREATED
    assert request.headers["X-Event-ID"] == event.id
    assert request.headers["User-Agent"] == "Bazaruto-Webhook/1.0"
    assert request.headers["X-Partner"] == "acme"
    assert request.headers["X-Webhook-Signature"] == sign("s3cret", request.content)
    body = json.loads(request.content)
    assert body["event"]["payload"] == {"policy_number": "P-1"}

    [delivery] = service.list_deliveries(policy_hook.id)
    assert delivery.status == "delivered"
    assert delivery.attempt_count == 1
    assert delivery.response_status == 200
    assert delivery.delivered_at is not None


@pytest.mark.asyncio
async def test_inactive_webhooks_receive_nothing(dispatcher):
    partner = Partner()
    service = _service(dispatcher, partner)
    config = service.create_config(
        WebhookConfig(url="https://partner.example.com/hooks", event_types=[POLICY_CREATED], is_active=False)
    )

    assert await service.handle_event(new_event(POLICY_CREATED, "pol-1")) == []
    await dispatcher.join(timeout=1)

    assert partner.requests == []
    assert service.list_deliveries(config.id) == []


@pytest.mark.asyncio
async def test_server_errors_are_retried(dispatcher):
    partner = Partner(503)
    service = _service(dispatcher, partner)
    config = service.create_config(WebhookConfig(url="https://partner.example.com/hooks", event_types=[POLICY_CREATED]))

    [delivery_id] = await service.handle_event(new_event(POLICY_CREATED, "pol-1"))
    await dispatcher.join(timeout=2)

    delivery = service.get_delivery(delivery_id)
    assert len(partner.requests) == 2
    assert delivery.status == "delivered"
    assert delivery.attempt_count == 2
    assert delivery.error_message is None
    assert dispatcher.stats()["notifications"]["retried"] == 1
    assert service.list_deliveries(config.id, status="delivered") == [delivery]


@pytest.mark.asyncio
async def test_rejected_delivery_is_not_retried(dispatcher, store):
    partner = Partner(404)
    service = _service(dispatcher, partner)
    service.create_config(WebhookConfig(url="https://partner.example.com/hooks", event_types=[POLICY_CREATED]))

    [delivery_id] = await service.handle_event(new_event(POLICY_CREATED, "pol-1"))
    await dispatcher.join(timeout=2)

    delivery = service.get_delivery(delivery_id)
    assert len(partner.requests) == 1
    assert delivery.status == "failed"
    assert delivery.response_status == 404
    assert "returned 404" in delivery.error_message
    assert store.dead_jobs("notifications") == []


@pytest.mark.asyncio
async def test_delivery_fails_once_retries_are_spent(dispatcher, store):
    partner = Partner(500, 500, 500)
    service = _service(dispatcher, partner)
    service.create_config(
        WebhookConfig(url="https://partner.example.com/hooks", event_types=[POLICY_CREATED], retry_count=1)
    )

    [delivery_id] = await service.handle_event(new_event(POLICY_CREATED, "pol-1"))
    await dispatcher.join(timeout=2)

    delivery = service.get_delivery(delivery_id)
    assert len(partner.requests) == 2
    assert delivery.status == "failed"
    assert delivery.attempt_count == 2
    assert delivery.failed_at is not None
    [dead] = store.dead_jobs("notifications")
    assert dead["job_class"] == "WebhookDeliveryJob"
    assert dead["payload"] == {"delivery_id": delivery_id}


@pytest.mark.asyncio
async def test_unreachable_partner_is_retried(dispatcher):
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(204)

    service = WebhookService(dispatcher, transport=httpx.MockTransport(handler))
    service.create_config(WebhookConfig(url="https://partner.example.com/hooks", event_types=[POLICY_CREATED]))

    [delivery_id] = await service.handle_event(new_event(POLICY_CREATED, "pol-1"))
    await dispatcher.join(timeout=2)

    delivery = service.get_delivery(delivery_id)
    assert len(calls) == 2
    assert delivery.status == "delivered"
    assert delivery.response_status == 204


def test_config_validation():
    service = WebhookService()

    for bad in (
        WebhookConfig(url="ftp://partner.example.com", event_types=[POLICY_CREATED]),
        WebhookConfig(url="", event_types=[POLICY_CREATED]),
        WebhookConfig(url="https://partner.example.com", event_types=[]),
        WebhookConfig(url="https://partner.example.com", event_types=["policy.exploded"]),
        WebhookConfig(url="https://partner.example.com", event_types=[POLICY_CREATED], method="GET"),
        WebhookConfig(url="https://partner.example.com", event_types=[POLICY_CREATED], timeout=0),
    ):
        with pytest.raises(InvalidInputError):
            service.create_config(bad)

    config = service.create_config(
        WebhookConfig(url="https://partner.example.com", event_types=[POLICY_CREATED], method="put", secret="x")
    )
    assert config.method == "PUT"
    assert "secret" not in config.to_dict()
    assert config.to_dict()["signed"] is True

    service.delete_config(config.id)
    with pytest.raises(NotFoundError):
        service.get_config(config.id)
