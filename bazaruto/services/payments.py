"""
Payment service: creation, gateway processing and refunds.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from bazaruto.database.entities import Payment, PaymentStatus
from bazaruto.errors import InvalidInputError, PaymentFailedError
from bazaruto.events import events
from bazaruto.events.bus import publish_safely
from bazaruto.integrations.contracts import ChargeRequest, PaymentGatewayError
from bazaruto.utils.timeutil import make_number, utcnow

logger = logging.getLogger(__name__)


class PaymentService:
    def __init__(self, db, bus, gateway) -> None:
        self._payments = db.payments
        self._bus = bus
        self._gateway = gateway

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #
    def get_payment(self, payment_id: str) -> Payment:
        return self._payments.get(payment_id)

    def list_payments(self, filters: Optional[Dict[str, Any]] = None, limit: int = 20, offset: int = 0) -> List[Payment]:
        return self._payments.list(filters, limit, offset)

    def count_payments(self, filters: Optional[Dict[str, Any]] = None) -> int:
        return self._payments.count(filters)

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #
    async def create_payment(self, payment: Payment) -> Payment:
        errors = []
        if not payment.user_id:
            errors.append("user_id is required")
        if payment.amount <= 0:
            errors.append("amount must be greater than zero")
        if not payment.currency:
            errors.append("currency is required")
        if not payment.payment_method:
            errors.append("payment_method is required")
        if errors:
            raise InvalidInputError("; ".join(errors))

        payment.status = PaymentStatus.PENDING.value
        if not payment.payment_number:
            payment.payment_number = make_number("PAY")
        payment = self._payments.create(payment)
        await publish_safely(
            self._bus,
            events.new_event(
                events.PAYMENT_INITIATED,
                payment.id,
                user_id=payment.user_id,
                policy_id=payment.policy_id,
                amount=payment.amount,
                currency=payment.currency,
                payment_method=payment.payment_method,
            ),
        )
        return payment

    async def process_payment(self, payment_id: str) -> Payment:
        """
        Charge a pending payment through the gateway.

        The payment always ends up persisted as completed or failed: a gateway
        failure raises PaymentFailedError, a cancellation is recorded and re-raised.
        """
        payment = self._payments.get(payment_id)
        if payment.status != PaymentStatus.PENDING:
            raise InvalidInputError(f"payment {payment.id} is {payment.status}; only pending payments can be processed")

        request = ChargeRequest(
            reference=payment.id,
            amount=payment.amount,
            currency=payment.currency,
            payment_method=payment.payment_method,
            description=payment.description,
            metadata={"payment_number": payment.payment_number, "policy_id": payment.policy_id},
        )
        try:
            result = await self._gateway.charge(request)
        except asyncio.CancelledError:
            self._mark_failed(payment, "cancelled")
            logger.warning("Payment %s cancelled while processing", payment.id)
            raise
        except PaymentGatewayError as e:
            payment = self._mark_failed(payment, str(e))
            logger.warning("Payment %s failed: %s", payment.id, e)
            await publish_safely(
                self._bus,
                events.new_event(
                    events.PAYMENT_FAILED,
                    payment.id,
                    user_id=payment.user_id,
                    policy_id=payment.policy_id,
                    amount=payment.amount,
                    reason=payment.failure_reason,
                ),
            )
            raise PaymentFailedError(f"payment failed: {e}", payment.id) from e

        payment.status = PaymentStatus.COMPLETED.value
        payment.transaction_id = result.transaction_id
        payment.payment_provider = result.provider
        payment.processed_at = utcnow()
        payment = self._payments.update(payment)
        logger.info("Payment %s completed (%s)", payment.id, payment.transaction_id)
        await publish_safely(
            self._bus,
            events.new_event(
                events.PAYMENT_COMPLETED,
                payment.id,
                user_id=payment.user_id,
                policy_id=payment.policy_id,
                amount=payment.amount,
                transaction_id=payment.transaction_id,
            ),
        )
        return payment

    def _mark_failed(self, payment: Payment, reason: str) -> Payment:
        payment.status = PaymentStatus.FAILED.value
        payment.failed_at = utcnow()
        payment.failure_reason = reason
        return self._payments.update(payment)

    async def record_refund(
        self,
        user_id: str,
        policy_id: Optional[str],
        amount: float,
        currency: str,
        refund_method: str,
        reason: str = "",
    ) -> Payment:
        """Persist a completed refund as a negative-amount payment."""
        if amount <= 0:
            raise InvalidInputError("refund amount must be greater than zero")
        now = utcnow()
        refund = Payment(
            user_id=user_id,
            policy_id=policy_id,
            amount=-amount,
            currency=currency,
            status=PaymentStatus.COMPLETED.value,
            payment_method=refund_method,
            payment_number=make_number("REF"),
            description=reason,
            transaction_id=f"refund_{int(now.timestamp())}_{(policy_id or user_id)[:8]}",
            processed_at=now,
            refund_amount=amount,
            refunded_at=now,
        )
        refund = self._payments.create(refund)
        logger.info("Recorded refund %s of %.2f %s for policy %s", refund.id, amount, currency, policy_id)
        return refund
