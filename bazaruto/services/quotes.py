"""
Quote service.

A quote is a persisted pricing result. It starts ``pending`` and can move only
to ``active``, ``expired`` or ``used``; a pending quote read after its
``valid_until`` is persisted as ``expired``.
"""

import dataclasses
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from bazaruto.database.entities import QUOTE_TRANSITIONS, Quote, QuoteStatus
from bazaruto.errors import InvalidInputError
from bazaruto.events import events
from bazaruto.events.bus import publish_safely
from bazaruto.services.pricing import PricingEngine, PricingRequest
from bazaruto.utils.timeutil import ensure_aware, make_number, utcnow

logger = logging.getLogger(__name__)


class QuoteService:
    def __init__(self, db, pricing: PricingEngine, bus=None) -> None:
        self._quotes = db.quotes
        self._pricing = pricing
        self._bus = bus

    async def create_quote(self, request: PricingRequest) -> Quote:
        result = self._pricing.calculate_premium(request)
        tax = result.factor("taxes")
        quote = Quote(
            product_id=request.product_id,
            user_id=request.user_id,
            quote_number=make_number("Q"),
            base_price=round(result.base_premium, 2),
            final_price=round(result.final_premium, 2),
            currency=result.currency,
            status=QuoteStatus.PENDING.value,
            valid_until=result.valid_until,
            coverage_amount=request.coverage_amount,
            payment_frequency=request.payment_frequency,
            effective_date=ensure_aware(request.effective_date),
            expiration_date=ensure_aware(request.expiration_date),
            risk_factors=[dataclasses.asdict(f) for f in result.factors],
            discount=round(abs(result.breakdown.discount_adjustment), 2),
            tax=round(tax.value if tax else 0.0, 2),
        )
        quote = self._quotes.create(quote)
        logger.info("Created quote %s for user %s: %.2f %s", quote.quote_number, quote.user_id, quote.final_price, quote.currency)

        await publish_safely(
            self._bus,
            events.new_event(
                events.QUOTE_CREATED,
                quote.id,
                quote_number=quote.quote_number,
                user_id=quote.user_id,
                product_id=quote.product_id,
            ),
        )
        await publish_safely(
            self._bus,
            events.new_event(
                events.QUOTE_CALCULATED,
                quote.id,
                base_price=quote.base_price,
                final_price=quote.final_price,
                currency=quote.currency,
                valid_until=quote.valid_until.isoformat(),
            ),
        )
        return quote

    # ------------------------------------------------------------------ #
    # Reads (with expiry repair)
    # ------------------------------------------------------------------ #
    def _repair(self, quote: Quote, now: Optional[datetime] = None) -> Quote:
        if quote.status == QuoteStatus.PENDING and quote.is_expired(now):
            quote.status = QuoteStatus.EXPIRED.value
            quote.updated_at = utcnow()
            quote = self._quotes.update(quote)
            logger.info("Quote %s expired on read", quote.id)
        return quote

    def get_quote(self, quote_id: str) -> Quote:
        return self._repair(self._quotes.get(quote_id))

    def get_by_number(self, number: str) -> Quote:
        return self._repair(self._quotes.get_by_number(number))

    def list_quotes(self, filters: Optional[Dict[str, Any]] = None, limit: int = 20, offset: int = 0) -> List[Quote]:
        return [self._repair(q) for q in self._quotes.list(filters, limit, offset)]

    def count_quotes(self, filters: Optional[Dict[str, Any]] = None) -> int:
        return self._quotes.count(filters)

    # ------------------------------------------------------------------ #
    # Transitions
    # ------------------------------------------------------------------ #
    def transition(self, quote_id: str, status: str) -> Quote:
        quote = self.get_quote(quote_id)
        if quote.status == status:
            return quote
        allowed = QUOTE_TRANSITIONS.get(quote.status, set())
        if status not in allowed:
            raise InvalidInputError(f"quote {quote.quote_number} cannot move from {quote.status} to {status}")
        quote.status = status
        quote.updated_at = utcnow()
        return self._quotes.update(quote)

    def update_quote(self, quote_id: str, changes: Dict[str, Any]) -> Quote:
        unsupported = sorted(k for k in changes if k != "status")
        if unsupported:
            raise InvalidInputError("only status can be changed on a quote; got " + ", ".join(unsupported))
        if "status" not in changes:
            return self.get_quote(quote_id)
        return self.transition(quote_id, changes["status"])

    def expire_quote(self, quote_id: str) -> Quote:
        quote = self._quotes.get(quote_id)
        if quote.status != QuoteStatus.PENDING:
            raise InvalidInputError(f"quote {quote.quote_number} is {quote.status}; only pending quotes can expire")
        quote.status = QuoteStatus.EXPIRED.value
        quote.updated_at = utcnow()
        return self._quotes.update(quote)

    def use_quote(self, quote_id: str) -> Quote:
        quote = self.get_quote(quote_id)
        if quote.status != QuoteStatus.PENDING:
            raise InvalidInputError(f"quote {quote.quote_number} is {quote.status}; a pending quote is required")
        return self.transition(quote_id, QuoteStatus.USED.value)

    def delete_quote(self, quote_id: str) -> None:
        self._quotes.delete(quote_id)
