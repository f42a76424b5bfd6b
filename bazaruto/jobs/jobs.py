"""
Concrete background jobs submitted by the claim workflow, the policy lifecycle
and the webhook dispatcher.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import httpx

from bazaruto.database.entities import ClaimStatus
from bazaruto.jobs.dispatcher import Job
from bazaruto.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

PRIORITY_HIGH = 10
PRIORITY_NORMAL = 5
PRIORITY_LOW = 1

_PRIORITIES = {"high": PRIORITY_HIGH, "normal": PRIORITY_NORMAL, "low": PRIORITY_LOW}


class NotificationJob(Job):
    """
    Deliver a notification to a customer or an internal team.

    Delivery channels (email, SMS) sit behind an optional ``sender`` callable;
    without one the notification is only logged.
    """

    queue_name = "notifications"
    max_retries = 3
    retry_backoff = 5.0

    def __init__(
        self,
        recipient_id: str,
        notification_type: str,
        subject: str,
        message: str,
        priority: str = "normal",
        data: Optional[Dict[str, Any]] = None,
        sender=None,
    ) -> None:
        super().__init__()
        self.recipient_id = recipient_id
        self.notification_type = notification_type
        self.subject = subject
        self.message = message
        self.priority_name = priority
        self.priority = _PRIORITIES.get(priority, PRIORITY_NORMAL)
        self.data = data or {}
        self._sender = sender

    async def perform(self) -> None:
        if self._sender is not None:
            await self._sender(self)
        logger.info(
            "Notification %s (%s) to %s: %s",
            self.notification_type,
            self.priority_name,
            self.recipient_id,
            self.subject,
        )

    def payload(self) -> Dict[str, Any]:
        return {
            "recipient_id": self.recipient_id,
            "notification_type": self.notification_type,
            "subject": self.subject,
            "priority": self.priority_name,
            "data": self.data,
        }


class SettleClaimPayoutJob(Job):
    """Mark an approved claim as paid in full."""

    queue_name = "payments"
    max_retries = 3
    retry_backoff = 5.0
    priority = 1

    def __init__(self, claims, claim_id: str, amount: float) -> None:
        super().__init__()
        self._claims = claims
        self.claim_id = claim_id
        self.amount = amount

    async def perform(self) -> None:
        claim = self._claims.get(self.claim_id)
        if claim.status == ClaimStatus.PAID:
            logger.info("Claim %s already paid; skipping payout", claim.id)
            return
        if claim.status != ClaimStatus.APPROVED:
            raise RuntimeError(f"claim {claim.id} is {claim.status}, expected approved")
        claim.paid_amount = min(self.amount, claim.claim_amount)
        claim.status = ClaimStatus.PAID.value
        claim.resolved_date = utcnow()
        self._claims.update(claim)
        logger.info("Settled payout of %.2f %s for claim %s", claim.paid_amount, claim.currency, claim.id)

    def payload(self) -> Dict[str, Any]:
        return {"claim_id": self.claim_id, "amount": self.amount}


class WebhookDeliveryError(Exception):
    pass


class WebhookDeliveryJob(Job):
    """
    POST one recorded webhook delivery.

    A 2xx response marks the delivery delivered. 400, 401, 403 and 404 mark it
    failed without retrying; any other status or a transport error is retried
    until the config's retry count is spent.
    """

    queue_name = "notifications"
    max_retries = 3
    retry_backoff = 5.0
    priority = 2
    timeout = 30.0

    NON_RETRYABLE = (400, 401, 403, 404)

    def __init__(
        self,
        webhooks,
        delivery_id: str,
        max_retries: Optional[int] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__()
        self._webhooks = webhooks
        self.delivery_id = delivery_id
        if max_retries is not None:
            self.max_retries = max_retries
        if timeout is not None:
            self.timeout = timeout
        self._transport = transport

    def _last_attempt(self) -> bool:
        return self.attempts > self.max_retries

    async def perform(self) -> None:
        delivery = self._webhooks.get_delivery(self.delivery_id)
        if delivery.status == "delivered":
            logger.info("Webhook delivery %s already delivered; skipping", delivery.id)
            return

        now = utcnow()
        body = json.dumps(delivery.payload, default=str).encode("utf-8")
        headers = self._webhooks.request_headers(delivery, body, now)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(delivery.method, delivery.url, content=body, headers=headers)
        except httpx.HTTPError as e:
            self._webhooks.record_attempt(delivery.id, now, error=str(e) or type(e).__name__, final=self._last_attempt())
            raise WebhookDeliveryError(f"webhook {delivery.url} unreachable: {e}") from e

        status = response.status_code
        if 200 <= status < 300:
            self._webhooks.record_attempt(delivery.id, now, status_code=status, response_body=response.text, delivered=True)
            logger.info("Delivered %s webhook %s to %s", delivery.event_type, delivery.id, delivery.url)
            return

        error = f"webhook {delivery.url} returned {status}"
        if status in self.NON_RETRYABLE:
            self._webhooks.record_attempt(
                delivery.id, now, status_code=status, response_body=response.text, error=error, final=True
            )
            logger.warning("Webhook delivery %s rejected: %s; not retrying", delivery.id, error)
            return
        self._webhooks.record_attempt(
            delivery.id, now, status_code=status, response_body=response.text, error=error, final=self._last_attempt()
        )
        raise WebhookDeliveryError(error)

    def payload(self) -> Dict[str, Any]:
        return {"delivery_id": self.delivery_id}
