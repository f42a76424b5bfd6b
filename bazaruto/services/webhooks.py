"""
Outbound webhooks.

Partners register a URL and the event types they want. ``handle_event`` is
subscribed on the event bus; for every active config matching an event it
records a pending delivery and dispatches a ``WebhookDeliveryJob`` that posts
the event and records each attempt.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import threading
import uuid
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from bazaruto.errors import InvalidInputError, NotFoundError
from bazaruto.events.events import ALL_EVENT_TYPES, Event
from bazaruto.jobs.dispatcher import dispatch_safely
from bazaruto.jobs.jobs import WebhookDeliveryJob
from bazaruto.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

SUBSCRIPTION_NAME = "webhook_dispatcher"
USER_AGENT = "Bazaruto-Webhook/1.0"
METHODS = ("POST", "PUT", "PATCH")
MAX_REMEMBERED_DELIVERIES = 10_000
MAX_RESPONSE_BODY = 1000


@dataclass
class WebhookConfig:
    url: str
    event_types: List[str]
    method: str = "POST"
    headers: Dict[str, str] = field(default_factory=dict)
    secret: str = ""
    description: str = ""
    is_active: bool = True
    retry_count: int = 3
    timeout: float = 30.0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("secret")
        data["signed"] = bool(self.secret)
        return data


@dataclass
class WebhookDelivery:
    config_id: str
    event_id: str
    event_type: str
    url: str
    method: str
    headers: Dict[str, str]
    payload: Dict[str, Any]
    status: str = "pending"
    attempt_count: int = 0
    last_attempt_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    response_status: Optional[int] = None
    response_body: Optional[str] = None
    error_message: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)


def validate_config(config: WebhookConfig) -> List[str]:
    errors: List[str] = []
    try:
        scheme = httpx.URL(config.url).scheme if config.url else ""
    except httpx.InvalidURL:
        scheme = ""
    if scheme not in ("http", "https"):
        errors.append("url must be an http(s) URL")
    if not config.event_types:
        errors.append("at least one event type is required")
    unknown = [t for t in config.event_types if t not in ALL_EVENT_TYPES]
    if unknown:
        errors.append("unknown event types: " + ", ".join(unknown))
    if config.method not in METHODS:
        errors.append(f"method must be one of {', '.join(METHODS)}")
    if config.retry_count < 0:
        errors.append("retry_count cannot be negative")
    if config.timeout <= 0:
        errors.append("timeout must be positive")
    return errors


def sign(secret: str, body: bytes) -> str:
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class WebhookService:
    def __init__(
        self,
        dispatcher=None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_deliveries: int = MAX_REMEMBERED_DELIVERIES,
    ) -> None:
        self._dispatcher = dispatcher
        self._transport = transport
        self._max_deliveries = max(1, max_deliveries)
        self._configs: Dict[str, WebhookConfig] = {}
        self._deliveries: "OrderedDict[str, WebhookDelivery]" = OrderedDict()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Configs
    # ------------------------------------------------------------------ #
    def create_config(self, config: WebhookConfig) -> WebhookConfig:
        config.method = config.method.upper()
        errors = validate_config(config)
        if errors:
            raise InvalidInputError("invalid webhook: " + "; ".join(errors))
        with self._lock:
            self._configs[config.id] = config
        logger.info("Registered webhook %s -> %s for %s", config.id, config.url, ", ".join(config.event_types))
        return config

    def get_config(self, config_id: str) -> WebhookConfig:
        with self._lock:
            config = self._configs.get(config_id)
        if config is None:
            raise NotFoundError.for_entity("webhook", config_id)
        return config

    def list_configs(self) -> List[WebhookConfig]:
        with self._lock:
            return sorted(self._configs.values(), key=lambda c: c.created_at)

    def delete_config(self, config_id: str) -> None:
        with self._lock:
            if self._configs.pop(config_id, None) is None:
                raise NotFoundError.for_entity("webhook", config_id)
        logger.info("Deleted webhook %s", config_id)

    def configs_for_event(self, event_type: str) -> List[WebhookConfig]:
        with self._lock:
            return [c for c in self._configs.values() if c.is_active and event_type in c.event_types]

    # ------------------------------------------------------------------ #
    # Deliveries
    # ------------------------------------------------------------------ #
    def subscribe(self, bus) -> None:
        bus.subscribe(SUBSCRIPTION_NAME, self.handle_event)

    async def handle_event(self, event: Event) -> List[str]:
        """Queue one delivery per matching config; returns the delivery ids."""
        ids = []
        for config in self.configs_for_event(event.type):
            delivery = self._new_delivery(config, event)
            job = WebhookDeliveryJob(
                self,
                delivery.id,
                max_retries=config.retry_count,
                timeout=config.timeout,
                transport=self._transport,
            )
            await dispatch_safely(self._dispatcher, job)
            ids.append(delivery.id)
        return ids

    def _new_delivery(self, config: WebhookConfig, event: Event) -> WebhookDelivery:
        headers = dict(config.headers)
        headers.update(
            {
                "Content-Type": "application/json",
                "User-Agent": USER_AGENT,
                "X-Event-Type": event.type,
                "X-Event-ID": event.id,
                "X-Aggregate-ID": event.aggregate_id,
            }
        )
        delivery = WebhookDelivery(
            config_id=config.id,
            event_id=event.id,
            event_type=event.type,
            url=config.url,
            method=config.method,
            headers=headers,
            payload={"event": event.to_dict(), "timestamp": utcnow().isoformat()},
        )
        with self._lock:
            self._deliveries[delivery.id] = delivery
            while len(self._deliveries) > self._max_deliveries:
                self._deliveries.popitem(last=False)
        return delivery

    def get_delivery(self, delivery_id: str) -> WebhookDelivery:
        with self._lock:
            delivery = self._deliveries.get(delivery_id)
        if delivery is None:
            raise NotFoundError.for_entity("webhook delivery", delivery_id)
        return delivery

    def list_deliveries(self, config_id: str, status: Optional[str] = None) -> List[WebhookDelivery]:
        with self._lock:
            return [
                d
                for d in self._deliveries.values()
                if d.config_id == config_id and (status is None or d.status == status)
            ]

    def request_headers(self, delivery: WebhookDelivery, body: bytes, now: datetime) -> Dict[str, str]:
        """Headers for one attempt; signed when the config carries a secret."""
        headers = dict(delivery.headers)
        headers["X-Timestamp"] = str(int(now.timestamp()))
        with self._lock:
            config = self._configs.get(delivery.config_id)
        if config is not None and config.secret:
            headers["X-Webhook-Signature"] = sign(config.secret, body)
        return headers

    def record_attempt(
        self,
        delivery_id: str,
        now: datetime,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        error: Optional[str] = None,
        delivered: bool = False,
        final: bool = False,
    ) -> WebhookDelivery:
        delivery = self.get_delivery(delivery_id)
        with self._lock:
            delivery.attempt_count += 1
            delivery.last_attempt_at = now
            delivery.response_status = status_code
            delivery.response_body = response_body[:MAX_RESPONSE_BODY] if response_body else None
            delivery.error_message = error
            if delivered:
                delivery.status = "delivered"
                delivery.delivered_at = now
            elif final:
                delivery.status = "failed"
                delivery.failed_at = now
        return delivery
