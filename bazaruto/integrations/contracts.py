"""
Payment gateway contracts.

Shared by the simulated client (mock_payments.py) and the HTTP client
(http_payments.py) so PaymentService does not care which one is wired in.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class PaymentGatewayError(Exception):
    """The gateway rejected or failed to process a charge."""


@dataclass
class ChargeRequest:
    reference: str
    amount: float
    currency: str
    payment_method: str
    description: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ChargeResult:
    reference: str
    transaction_id: str
    status: str
    provider: str
    message: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


def validate_charge_request(request: ChargeRequest) -> List[str]:
    """
    Return a list of validation errors.
    Empty list means the request is valid.
    """
    errors: List[str] = []
    if not request.reference:
        errors.append("reference is required")
    if request.amount <= 0:
        errors.append("amount must be greater than zero")
    if not request.currency:
        errors.append("currency is required")
    if not request.payment_method:
        errors.append("payment_method is required")
    return errors
