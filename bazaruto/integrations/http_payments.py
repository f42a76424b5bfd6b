"""
Real payment gateway HTTP client.

Used when a gateway URL is configured. Posts a JSON charge and expects a JSON
body carrying ``status`` and a transaction id.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Optional

import httpx

from bazaruto.integrations.contracts import ChargeRequest, ChargeResult, PaymentGatewayError, validate_charge_request

_SUCCESS_STATUSES = {"completed", "succeeded", "success", "paid"}


class RealPaymentsClient:
    provider = "http"

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        charge_path: str = "/charges",
        timeout_seconds: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or os.getenv("PAYMENT_GATEWAY_URL", "")).rstrip("/")
        self.api_key = api_key or os.getenv("PAYMENT_GATEWAY_API_KEY", "")
        self.charge_path = charge_path
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def charge(self, request: ChargeRequest) -> ChargeResult:
        if not self.base_url:
            raise ValueError("PAYMENT_GATEWAY_URL is not configured.")
        errors = validate_charge_request(request)
        if errors:
            raise PaymentGatewayError("; ".join(errors))

        headers: Dict[str, str] = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload: Dict[str, Any] = {
            "reference": request.reference,
            "amount": request.amount,
            "currency": request.currency,
            "payment_method": request.payment_method,
            "description": request.description,
            "metadata": request.metadata,
        }

        url = f"{self.base_url}{self.charge_path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = await client.post(url, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json() if response.content else {}
        except httpx.TimeoutException as e:
            raise PaymentGatewayError("payment gateway timeout") from e
        except httpx.HTTPStatusError as e:
            raise PaymentGatewayError(f"payment gateway returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise PaymentGatewayError(f"payment gateway unreachable: {e}") from e

        status = str(data.get("status", "")).lower()
        if status not in _SUCCESS_STATUSES:
            raise PaymentGatewayError(data.get("message") or f"payment declined ({status or 'unknown'})")

        return ChargeResult(
            reference=request.reference,
            transaction_id=str(data.get("transaction_id") or data.get("id") or ""),
            status="completed",
            provider=self.provider,
            message=data.get("message"),
            raw=data,
        )
