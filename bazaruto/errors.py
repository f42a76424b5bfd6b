"""
Domain error hierarchy.

Services raise these; the API layer maps ``kind`` to an HTTP status and renders
``{"error": message}``.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNAUTHORIZED = "unauthorized"
    IO = "io"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


class ServiceError(Exception):
    """Base class for errors raised by the service layer."""

    kind = ErrorKind.INTERNAL

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message}


class InvalidInputError(ServiceError):
    kind = ErrorKind.VALIDATION


class NotFoundError(ServiceError):
    kind = ErrorKind.NOT_FOUND

    @classmethod
    def for_entity(cls, entity: str, key: str) -> "NotFoundError":
        return cls(f"{entity} not found: {key}", {"entity": entity, "key": key})


class ConflictError(ServiceError):
    kind = ErrorKind.CONFLICT


class UnauthorizedError(ServiceError):
    kind = ErrorKind.UNAUTHORIZED


class RepositoryError(ServiceError):
    kind = ErrorKind.IO


class OperationCancelledError(ServiceError):
    kind = ErrorKind.CANCELLED


class PaymentFailedError(ServiceError):
    kind = ErrorKind.IO

    def __init__(self, message: str, payment_id: str) -> None:
        super().__init__(message, {"payment_id": payment_id})
        self.payment_id = payment_id


class FraudDetectionDisabledError(ServiceError):
    kind = ErrorKind.VALIDATION

    def __init__(self) -> None:
        super().__init__("fraud detection is disabled")


class RulesValidationError(ServiceError):
    """Raised when a business-rules candidate fails validation. Lists every problem found."""

    kind = ErrorKind.VALIDATION

    def __init__(self, problems: List[str]) -> None:
        super().__init__("invalid business rules: " + "; ".join(problems), {"problems": problems})
        self.problems = problems


_HTTP_STATUS = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.CONFLICT: 400,
    ErrorKind.NOT_FOUND: 404,
}


def http_status_for(error: ServiceError) -> int:
    return _HTTP_STATUS.get(error.kind, 500)
