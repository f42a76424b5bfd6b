"""
Simulated payment gateway.

Used whenever no gateway URL is configured. Makes no network calls: charges
above ``decline_above`` fail with a gateway timeout, everything else succeeds.
"""

from __future__ import annotations

import asyncio
import time

from bazaruto.integrations.contracts import ChargeRequest, ChargeResult, PaymentGatewayError, validate_charge_request


class MockPaymentsClient:
    provider = "simulated"

    def __init__(self, decline_above: float = 10_000, delay_seconds: float = 0.1) -> None:
        self.decline_above = decline_above
        self.delay_seconds = delay_seconds

    async def charge(self, request: ChargeRequest) -> ChargeResult:
        errors = validate_charge_request(request)
        if errors:
            raise PaymentGatewayError("; ".join(errors))
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if request.amount > self.decline_above:
            raise PaymentGatewayError("payment gateway timeout")
        return ChargeResult(
            reference=request.reference,
            transaction_id=f"txn_{int(time.time())}_{request.reference[:8]}",
            status="completed",
            provider=self.provider,
        )
